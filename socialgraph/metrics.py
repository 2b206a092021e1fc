from __future__ import annotations

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info, generate_latest

from socialgraph.core.settings import S

METRICS_ENABLED = S.metrics_enabled

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
UPTIME_SECONDS = Gauge(
    "app_uptime_seconds",
    "Application uptime in seconds",
)
APP_INFO = Info(
    "app",
    "Application metadata",
)

CAS_CONFLICTS = Counter(
    "cas_conflicts_total",
    "Compare-and-swap attempts lost to a concurrent writer",
    ["kind"],
)
CAS_EXHAUSTED = Counter(
    "cas_retries_exhausted_total",
    "Operations that gave up after the retry bound",
    ["kind"],
)
COMPENSATIONS = Counter(
    "compensations_total",
    "Compensating actions run after a failed second write",
    ["operation", "outcome"],
)
EDGE_SETTLE_SECONDS = Histogram(
    "edge_settle_seconds",
    "Time between the first and second write of a two-document edge mutation",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)
CASCADE_FAILURES = Counter(
    "block_cascade_failures_total",
    "Follow edges a block could not remove (left for the repair job)",
)
NOTIFICATIONS = Counter(
    "notifications_total",
    "Notification gate decisions",
    ["result"],
)
DELIVERY_FAILURES = Counter(
    "notification_delivery_failures_total",
    "Notification handoffs to the delivery channel that failed",
    ["channel"],
)
VIEWS_PRUNED = Counter(
    "view_events_pruned_total",
    "View log entries dropped by retention cleanup",
)
CONSISTENCY_MISMATCHES = Counter(
    "consistency_mismatches_total",
    "Derived-state mismatches found by the consistency checker",
    ["kind", "field"],
)

_START_TIME = time.monotonic()


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    if route and getattr(route, "path", None):
        return route.path
    return request.url.path


async def metrics_middleware(request: Request, call_next: Callable[[Request], Response]) -> Response:
    path = _route_path(request)
    method = request.method
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        REQUEST_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - start)
        REQUEST_COUNT.labels(method=method, path=path, status=str(status_code)).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})


def metrics_endpoint() -> Response:
    UPTIME_SECONDS.set(time.monotonic() - _START_TIME)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
