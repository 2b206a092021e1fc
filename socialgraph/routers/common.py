from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException

from socialgraph.core.errors import (
    Conflict,
    ConsistencyError,
    DeadlineExceeded,
    DocumentNotFound,
    PartialFailure,
    PreconditionViolation,
    StoreUnavailable,
)
from socialgraph.core.results import GraphResult

GRAPH_STATUS = {
    GraphResult.SELF_FOLLOW: (400, "You cannot follow yourself"),
    GraphResult.SELF_BLOCK: (400, "You cannot block yourself"),
    GraphResult.BLOCKED: (403, "Cannot follow this user"),
    GraphResult.ERROR: (500, "Relationship update failed; no change was made"),
}

def status_for(exc: ConsistencyError) -> int:
    if isinstance(exc, DocumentNotFound):
        return 404
    if isinstance(exc, PreconditionViolation):
        return 400
    if isinstance(exc, Conflict):
        return 409
    if isinstance(exc, DeadlineExceeded):
        return 504
    if isinstance(exc, StoreUnavailable):
        return 503
    if isinstance(exc, PartialFailure):
        return 500
    return 500

@contextmanager
def translate_errors() -> Iterator[None]:
    try:
        yield
    except ConsistencyError as exc:
        raise HTTPException(status_for(exc), str(exc)) from exc

def raise_for_graph_result(result: GraphResult) -> None:
    if result in GRAPH_STATUS:
        code, detail = GRAPH_STATUS[result]
        raise HTTPException(code, detail)
