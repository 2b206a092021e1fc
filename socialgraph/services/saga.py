from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from socialgraph.core.errors import PartialFailure, RolledBack, StoreUnavailable
from socialgraph.metrics import COMPENSATIONS
from socialgraph.services.audit import audit_event
from socialgraph.services.retry import Deadline


@dataclass
class Step:
    """One local write of a multi-document operation.

    ``landed`` re-reads the store after an ambiguous failure (StoreUnavailable) and
    reports whether the forward write committed anyway.
    """

    name: str
    forward: Callable[[], Any]
    compensate: Optional[Callable[[], Any]] = None
    landed: Optional[Callable[[], bool]] = None


def _landed_anyway(step: Step) -> bool:
    if step.landed is None:
        return False
    try:
        return bool(step.landed())
    except Exception:
        return False


def _rollback(operation: str, actor_id: str, done: List[Step], failed: Step, cause: BaseException) -> None:
    for step in reversed(done):
        if step.compensate is None:
            continue
        try:
            step.compensate()
        except Exception as exc:
            COMPENSATIONS.labels(operation=operation, outcome="failed").inc()
            audit_event(
                "compensation_failed",
                actor_id,
                operation=operation,
                step=step.name,
                failed_step=failed.name,
                cause=cause,
                error=exc,
            )
            raise PartialFailure(failed.name, cause, exc) from exc
    COMPENSATIONS.labels(operation=operation, outcome="rolled_back").inc()
    audit_event("compensation_applied", actor_id, operation=operation, failed_step=failed.name, cause=cause)


def apply_with_compensation(
    steps: List[Step],
    *,
    operation: str,
    actor_id: str,
    deadline: Optional[Deadline] = None,
) -> List[Any]:
    """Run steps in order; on failure at step k compensate steps 1..k-1 in reverse.

    A failure of the first step propagates untouched since nothing was written.
    After a successful rollback RolledBack is raised with the original cause; if a
    compensation fails PartialFailure is raised instead. A deadline that expires
    between steps is treated like a failure of the next step, so committed work is
    still compensated before the caller sees DeadlineExceeded.
    """
    done: List[Step] = []
    results: List[Any] = []
    for step in steps:
        try:
            if done and deadline is not None:
                deadline.check(step.name)
            results.append(step.forward())
        except Exception as exc:
            if isinstance(exc, StoreUnavailable) and _landed_anyway(step):
                results.append(None)
                done.append(step)
                continue
            if not done:
                raise
            _rollback(operation, actor_id, done, step, exc)
            raise RolledBack(step.name, exc) from exc
        done.append(step)
    return results
