"""Audit pack routes for authenticated workers."""

from fastapi import APIRouter, status

from workproof.core.dependencies import Assembler, CurrentUser, Ownership
from workproof.core.errors import NotFoundError
from workproof.persistence.records import AuditPackRecord
from workproof.schemas.v1.audit_packs import (
    AuditPackListResponse,
    AuditPackResponse,
    FullPackResponse,
    GeneratedPackResponse,
    GeneratePackRequest,
    SharePackRequest,
    SharePackResponse,
)
from workproof.services.audit_pack_service import AuditPackAssembler
from workproof.services.ownership import OwnershipService

router = APIRouter(prefix="/audit-packs", tags=["audit-packs"])


async def _owned_pack(
    pack_id: str,
    user_id: str,
    assembler: AuditPackAssembler,
    ownership: OwnershipService,
) -> AuditPackRecord:
    pack = await assembler.get(pack_id)
    if not pack.job_id:
        raise NotFoundError("Pack has no associated job", details={"pack_id": pack_id})
    await ownership.assert_owns_job(user_id, pack.job_id)
    return pack


@router.post(
    "/generate",
    response_model=GeneratedPackResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_pack(
    request: GeneratePackRequest,
    user: CurrentUser,
    assembler: Assembler,
    ownership: Ownership,
):
    """Snapshot a job's evidence into a new hashed audit pack."""
    await ownership.assert_owns_job(user.user_id, request.job_id)
    generated = await assembler.generate(request.job_id)
    return GeneratedPackResponse.from_generated(generated)


@router.get("/job/{job_id}", response_model=AuditPackListResponse)
async def list_job_packs(
    job_id: str,
    user: CurrentUser,
    assembler: Assembler,
    ownership: Ownership,
):
    """List a job's packs, newest first."""
    await ownership.assert_owns_job(user.user_id, job_id)
    packs = await assembler.list_for_job(job_id)
    return AuditPackListResponse(
        packs=[AuditPackResponse.from_record(p) for p in packs],
        total=len(packs),
    )


@router.get("/{pack_id}", response_model=AuditPackResponse)
async def get_pack(
    pack_id: str,
    user: CurrentUser,
    assembler: Assembler,
    ownership: Ownership,
):
    pack = await _owned_pack(pack_id, user.user_id, assembler, ownership)
    return AuditPackResponse.from_record(pack)


@router.get("/{pack_id}/full", response_model=FullPackResponse)
async def get_full_pack(
    pack_id: str,
    user: CurrentUser,
    assembler: Assembler,
    ownership: Ownership,
):
    """Pack with its job and evidence grouped by task, for document rendering."""
    await _owned_pack(pack_id, user.user_id, assembler, ownership)
    full = await assembler.get_full(pack_id)
    return FullPackResponse.from_full(full)


@router.post("/{pack_id}/downloaded", response_model=AuditPackResponse)
async def mark_downloaded(
    pack_id: str,
    user: CurrentUser,
    assembler: Assembler,
    ownership: Ownership,
):
    await _owned_pack(pack_id, user.user_id, assembler, ownership)
    pack = await assembler.mark_downloaded(pack_id)
    return AuditPackResponse.from_record(pack)


@router.post("/{pack_id}/share", response_model=SharePackResponse)
async def share_pack(
    pack_id: str,
    request: SharePackRequest,
    user: CurrentUser,
    assembler: Assembler,
    ownership: Ownership,
):
    """Record the client email the pack was shared with."""
    await _owned_pack(pack_id, user.user_id, assembler, ownership)
    pack = await assembler.share(pack_id, request.email)
    return SharePackResponse(success=True, message=f"Pack shared with {pack.shared_with}")
