from __future__ import annotations

from typing import Optional


class ConsistencyError(Exception):
    """Base class for failures surfaced by the consistency layer."""


class PreconditionViolation(ConsistencyError):
    """Caller asked for something that can never succeed (self-follow, bad notification type, ...)."""


class DocumentNotFound(PreconditionViolation):
    def __init__(self, key: str):
        super().__init__(f"document not found: {key}")
        self.key = key


class EdgeBlocked(PreconditionViolation):
    """A block between the two actors was discovered while writing an edge."""


class Conflict(ConsistencyError):
    """Compare-and-swap kept losing to concurrent writers until the retry bound ran out."""

    def __init__(self, key: str, attempts: int):
        super().__init__(f"concurrent modification of {key} after {attempts} attempts")
        self.key = key
        self.attempts = attempts


class StoreUnavailable(ConsistencyError):
    """The document store could not be reached or rejected the request."""


class DeadlineExceeded(ConsistencyError):
    pass


class PartialFailure(ConsistencyError):
    """A later step failed and compensating an earlier, committed step failed too.

    The documents are left inconsistent until the consistency checker repairs them.
    """

    def __init__(self, step: str, cause: BaseException, compensation_error: Optional[BaseException] = None):
        super().__init__(f"step {step!r} failed ({cause!r}); compensation failed ({compensation_error!r})")
        self.step = step
        self.cause = cause
        self.compensation_error = compensation_error


class RolledBack(ConsistencyError):
    """A later step failed and every committed step was compensated."""

    def __init__(self, step: str, cause: BaseException):
        super().__init__(f"step {step!r} failed ({cause!r}); earlier steps compensated")
        self.step = step
        self.cause = cause
