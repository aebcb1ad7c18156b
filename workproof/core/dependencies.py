"""Dependency providers and injection type aliases.

Long-lived clients are built once in the application lifespan and stored on
``app.state``; services are cheap and built per request from them.
"""

from typing import Annotated

from fastapi import Depends, Request

from workproof.clients.object_store import ObjectStore
from workproof.core.auth import AuthenticatedUser, CurrentUser
from workproof.core.config import get_settings
from workproof.core.errors import DependencyError
from workproof.persistence.evidence_repository import EvidenceRepository
from workproof.services.audit_pack_service import AuditPackAssembler
from workproof.services.ownership import OwnershipService
from workproof.services.verification_service import VerificationService


def get_repository(request: Request) -> EvidenceRepository:
    repository = getattr(request.app.state, "repository", None)
    if repository is None:
        raise DependencyError("Record store is not configured")
    return repository


def get_object_store(request: Request) -> ObjectStore | None:
    return getattr(request.app.state, "object_store", None)


def get_ownership_service(request: Request) -> OwnershipService:
    ownership = getattr(request.app.state, "ownership", None)
    if ownership is None:
        raise DependencyError("Ownership service is not configured")
    return ownership


Repository = Annotated[EvidenceRepository, Depends(get_repository)]
Ownership = Annotated[OwnershipService, Depends(get_ownership_service)]


def get_assembler(repository: Repository) -> AuditPackAssembler:
    return AuditPackAssembler(repository)


def get_verification_service(
    repository: Repository,
    object_store: Annotated[ObjectStore | None, Depends(get_object_store)],
) -> VerificationService:
    return VerificationService(repository, object_store, get_settings().verification)


Assembler = Annotated[AuditPackAssembler, Depends(get_assembler)]
Verifier = Annotated[VerificationService, Depends(get_verification_service)]

__all__ = [
    "Assembler",
    "AuthenticatedUser",
    "CurrentUser",
    "Ownership",
    "Repository",
    "Verifier",
    "get_assembler",
    "get_object_store",
    "get_ownership_service",
    "get_repository",
    "get_verification_service",
]
