from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Set

from botocore.exceptions import BotoCoreError, ClientError

from socialgraph.core.aws import sqs_client
from socialgraph.core.settings import S
from socialgraph.metrics import DELIVERY_FAILURES
from socialgraph.services.audit import audit_event

# In-memory pubsub for SSE (single-process). Cross-process fanout goes through the SQS queue.
_SSE_SUBSCRIBERS: Dict[str, Set[asyncio.Queue]] = {}

def sse_subscribe(recipient_id: str) -> asyncio.Queue:
    q: asyncio.Queue = asyncio.Queue(maxsize=200)
    _SSE_SUBSCRIBERS.setdefault(recipient_id, set()).add(q)
    return q

def sse_unsubscribe(recipient_id: str, q: asyncio.Queue) -> None:
    subs = _SSE_SUBSCRIBERS.get(recipient_id)
    if not subs:
        return
    subs.discard(q)
    if not subs:
        _SSE_SUBSCRIBERS.pop(recipient_id, None)

def sse_publish(recipient_id: str, payload: Dict[str, Any]) -> int:
    subs = _SSE_SUBSCRIBERS.get(recipient_id)
    if not subs:
        return 0
    sent = 0
    dead = []
    for q in list(subs):
        try:
            q.put_nowait(payload)
            sent += 1
        except asyncio.QueueFull:
            dead.append(q)
    for q in dead:
        sse_unsubscribe(recipient_id, q)
    return sent

def delivery_payload(record: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "notification_id": record["notification_id"],
        "recipient_id": record["recipient_id"],
        "payload": {
            "sender_id": record["sender_id"],
            "type": record["type"],
            "related_content_id": record.get("related_content_id"),
            "message": record["message"],
            "created_at": record["created_at"],
        },
    }

def deliver(record: Dict[str, Any]) -> bool:
    """Hand a stored notification to the delivery channels.

    A failed handoff never undoes the stored record; it is counted and audited.
    """
    body = delivery_payload(record)
    ok = True
    sse_publish(record["recipient_id"], body)
    if S.delivery_queue_url:
        try:
            sqs_client().send_message(
                QueueUrl=S.delivery_queue_url,
                MessageBody=json.dumps(body, separators=(",", ":"), default=str),
            )
        except (ClientError, BotoCoreError) as exc:
            ok = False
            DELIVERY_FAILURES.labels(channel="sqs").inc()
            audit_event(
                "notification_delivery_failed",
                record["sender_id"],
                recipient_id=record["recipient_id"],
                notification_id=record["notification_id"],
                error=exc,
            )
    return ok
