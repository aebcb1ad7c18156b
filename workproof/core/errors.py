"""WorkProof error hierarchy.

Integrity mismatches and missing GPS fixes are not errors: verification
returns them as findings on a successful result.
"""

from typing import Any


class WorkProofError(Exception):
    """Base exception for WorkProof errors."""

    code = "WORKPROOF_INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(WorkProofError):
    """Invalid request parameters or malformed evidence."""

    code = "WORKPROOF_INVALID_REQUEST"
    status_code = 400


class NotFoundError(WorkProofError):
    """Pack, job, task or evidence missing."""

    code = "WORKPROOF_NOT_FOUND"
    status_code = 404


class ForbiddenError(WorkProofError):
    """Caller does not own the resource."""

    code = "WORKPROOF_FORBIDDEN"
    status_code = 403


class ConflictError(WorkProofError):
    """Resource conflict (duplicate id, illegal state transition, idempotency)."""

    code = "WORKPROOF_CONFLICT"
    status_code = 409


class StorageLimitExceededError(WorkProofError):
    """Capture rejected because the local queue is full. Sync or delete first."""

    code = "WORKPROOF_STORAGE_LIMIT_EXCEEDED"
    status_code = 507

    def __init__(
        self,
        message: str,
        limit: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details={**(details or {}), "limit": limit})
        self.limit = limit


class DependencyError(WorkProofError):
    """External dependency failure."""

    code = "WORKPROOF_DEPENDENCY_FAILURE"
    status_code = 502


class IncompleteListingError(DependencyError):
    """A record store listing hit the page limit before reaching the end.

    Raised instead of returning a partial list, so callers never hash or
    verify a subset of the evidence as if it were the whole.
    """

    code = "WORKPROOF_INCOMPLETE_LISTING"
    status_code = 502


class TransientSyncError(DependencyError):
    """Network error, timeout or 5xx from a remote store. Safe to retry."""

    code = "WORKPROOF_TRANSIENT_SYNC_FAILURE"
    status_code = 503

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.retry_after = retry_after


class RateLimitedError(TransientSyncError):
    """Remote store answered 429. Retried on a slower schedule."""

    code = "WORKPROOF_RATE_LIMITED"
    status_code = 429


class FatalSyncError(DependencyError):
    """Validation or authentication rejection from a remote store. Not retried."""

    code = "WORKPROOF_FATAL_SYNC_FAILURE"
    status_code = 502

    def __init__(
        self,
        message: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details={**(details or {}), "reason": reason})
        self.reason = reason


class InternalError(WorkProofError):
    """Internal server error."""

    code = "WORKPROOF_INTERNAL_ERROR"
    status_code = 500


ERROR_STATUS_MAP: dict[type[WorkProofError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ForbiddenError: 403,
    ConflictError: 409,
    StorageLimitExceededError: 507,
    DependencyError: 502,
    IncompleteListingError: 502,
    TransientSyncError: 503,
    RateLimitedError: 429,
    FatalSyncError: 502,
    InternalError: 500,
}


def get_status_code(error: WorkProofError) -> int:
    """Get HTTP status code for error."""
    return ERROR_STATUS_MAP.get(type(error), error.status_code)
