"""Error taxonomy shared by the compose pipeline, the version store and the
suggestion workflow.

Every error carries a machine ``code`` so failed jobs can expose it next to
the human-readable message. ``retryable`` tells the queue worker whether a
blind retry could possibly succeed.
"""
from __future__ import annotations

from typing import Any, Optional


class ComposeError(Exception):
    code = "COMPOSE_ERROR"
    retryable = False

    def __init__(self, message: str, *, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        out = {"code": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


class ValidationError(ComposeError):
    """Malformed input. Never retried."""
    code = "VALIDATION_ERROR"


class CitationValidationError(ValidationError):
    code = "CITATION_VALIDATION_FAILED"

    def __init__(self, message: str, errors: list[dict]):
        super().__init__(message, details=errors)
        self.errors = errors


class NotFoundError(ComposeError):
    """Missing or cross-project entity."""
    code = "NOT_FOUND"


class GuardError(ComposeError):
    """Policy block, e.g. resolving a suggestion that does not exist."""
    code = "GUARD_BLOCKED"


class TransientError(ComposeError):
    """Queue, store or generator failure; the queue retries these."""
    code = "TRANSIENT"
    retryable = True


class FatalJobError(ComposeError):
    """Deterministic mid-job failure. Fails the whole job; sections already
    committed by the job stay persisted."""
    code = "FATAL_JOB_ERROR"


MISSING_LEDGER_ENTRIES = "MISSING_LEDGER_ENTRIES"


def from_pydantic(exc, message: str = "Invalid input") -> ValidationError:
    """Wrap a pydantic.ValidationError raised at a service boundary."""
    return ValidationError(message, details=exc.errors(include_url=False))


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ComposeError):
        return exc.retryable
    # unknown failures (driver errors, timeouts) are assumed transient
    return True
