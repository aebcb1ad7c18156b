"""Unit tests for errors module."""

from workproof.core.errors import (
    ConflictError,
    DependencyError,
    FatalSyncError,
    ForbiddenError,
    IncompleteListingError,
    InternalError,
    NotFoundError,
    RateLimitedError,
    StorageLimitExceededError,
    TransientSyncError,
    ValidationError,
    WorkProofError,
    get_status_code,
)


def test_workproof_error_base():
    error = WorkProofError("test message")
    assert error.message == "test message"
    assert error.code == "WORKPROOF_INTERNAL_ERROR"
    assert error.status_code == 500
    assert error.details is None


def test_client_errors():
    assert get_status_code(ValidationError("bad")) == 400
    assert get_status_code(NotFoundError("missing")) == 404
    assert get_status_code(ForbiddenError("nope")) == 403
    assert get_status_code(ConflictError("dup")) == 409


def test_storage_limit_error_carries_limit():
    error = StorageLimitExceededError("Queue full", "max_items", details={"max_items": 250})
    assert error.limit == "max_items"
    assert error.details == {"max_items": 250, "limit": "max_items"}
    assert get_status_code(error) == 507


def test_sync_error_hierarchy():
    transient = TransientSyncError("timeout")
    limited = RateLimitedError("slow down", retry_after=3.0)
    fatal = FatalSyncError("rejected", "auth_rejected")

    assert isinstance(transient, DependencyError)
    assert isinstance(limited, TransientSyncError)
    assert limited.retry_after == 3.0
    assert transient.retry_after is None
    assert fatal.reason == "auth_rejected"
    assert fatal.details == {"reason": "auth_rejected"}
    assert get_status_code(transient) == 503
    assert get_status_code(limited) == 429
    assert get_status_code(fatal) == 502


def test_internal_error():
    assert get_status_code(InternalError("boom")) == 500


def test_unmapped_subclass_falls_back_to_class_status():
    class TeapotError(WorkProofError):
        status_code = 418

    assert get_status_code(TeapotError("short and stout")) == 418


def test_incomplete_listing_is_a_dependency_failure_not_transient():
    error = IncompleteListingError("Record store listing exceeded the page limit")

    assert isinstance(error, DependencyError)
    assert not isinstance(error, TransientSyncError)
    assert get_status_code(error) == 502
    assert error.code == "WORKPROOF_INCOMPLETE_LISTING"
