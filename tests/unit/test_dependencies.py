"""Unit tests for dependencies module."""

from types import SimpleNamespace

import pytest

from workproof.core.dependencies import (
    AuthenticatedUser,
    get_assembler,
    get_object_store,
    get_ownership_service,
    get_repository,
    get_verification_service,
)
from workproof.core.errors import DependencyError
from workproof.services.audit_pack_service import AuditPackAssembler
from workproof.services.verification_service import VerificationService


def _request(**state):
    return SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(**state)))


def test_authenticated_user_defaults():
    user = AuthenticatedUser(user_id="auth0|w1")
    assert user.user_id == "auth0|w1"
    assert user.email is None
    assert user.name is None


def test_providers_read_app_state(repository, object_store):
    request = _request(repository=repository, object_store=object_store, ownership="svc")
    assert get_repository(request) is repository
    assert get_object_store(request) is object_store
    assert get_ownership_service(request) == "svc"


def test_missing_clients_are_dependency_errors():
    request = _request()
    with pytest.raises(DependencyError):
        get_repository(request)
    with pytest.raises(DependencyError):
        get_ownership_service(request)
    assert get_object_store(request) is None


def test_services_are_built_per_request(repository, object_store):
    assert isinstance(get_assembler(repository), AuditPackAssembler)
    assert isinstance(get_verification_service(repository, object_store), VerificationService)
