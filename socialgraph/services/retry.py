from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from socialgraph.core.errors import Conflict, DeadlineExceeded, DocumentNotFound
from socialgraph.core.settings import S
from socialgraph.core.tables import T
from socialgraph.metrics import CAS_CONFLICTS, CAS_EXHAUSTED

# mutate(doc) edits the document in place and returns (result, changed)
Mutator = Callable[[Dict[str, Any]], Tuple[Any, bool]]


class Deadline:
    def __init__(self, seconds: Optional[float]):
        self.expires_at = None if seconds is None else time.monotonic() + float(seconds)

    @classmethod
    def after(cls, seconds: Optional[float]) -> "Deadline":
        return cls(seconds)

    def remaining(self) -> Optional[float]:
        if self.expires_at is None:
            return None
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.expires_at is not None and time.monotonic() >= self.expires_at

    def check(self, what: str) -> None:
        if self.expired():
            raise DeadlineExceeded(f"deadline expired before {what}")


@dataclass(frozen=True)
class CasOutcome:
    value: Any
    version: int
    written: bool


def backoff_delay(attempt: int) -> float:
    base = S.cas_base_delay_ms / 1000.0
    return base * (2 ** attempt) + random.uniform(0, base)


def key_kind(key: str) -> str:
    return key.split("#", 1)[0].lower()


def cas_update(
    key: str,
    mutate: Mutator,
    *,
    deadline: Optional[Deadline] = None,
    attempts: Optional[int] = None,
) -> CasOutcome:
    """Read-check-write loop against one document.

    The mutator runs on a fresh copy on every attempt, so every decision it makes
    (membership checks, wall-clock windows) is taken against the version being replaced.
    Missing documents raise DocumentNotFound; losing every race raises Conflict.
    """
    max_attempts = attempts or S.cas_max_attempts
    for attempt in range(max_attempts):
        if deadline is not None:
            deadline.check(f"write to {key}")
        current = T.documents.get(key)
        if not current.exists:
            raise DocumentNotFound(key)
        doc = current.doc
        value, changed = mutate(doc)
        if not changed:
            return CasOutcome(value, current.version, False)
        ok, version = T.documents.compare_and_swap(key, current.version, doc)
        if ok:
            return CasOutcome(value, version, True)
        CAS_CONFLICTS.labels(kind=key_kind(key)).inc()
        if attempt + 1 < max_attempts:
            delay = backoff_delay(attempt)
            if deadline is not None:
                remaining = deadline.remaining()
                if remaining is not None:
                    delay = min(delay, remaining)
            time.sleep(delay)
    CAS_EXHAUSTED.labels(kind=key_kind(key)).inc()
    raise Conflict(key, max_attempts)


def read_doc(key: str) -> Dict[str, Any]:
    current = T.documents.get(key)
    if not current.exists:
        raise DocumentNotFound(key)
    return current.doc
