"""Unit tests for public audit pack verification."""

from __future__ import annotations

import pytest

from workproof.core.config import VerificationConfig
from workproof.core.errors import IncompleteListingError, NotFoundError
from workproof.services.audit_pack_service import AuditPackAssembler
from workproof.services.verification_service import Finding, HashStatus, VerificationService

BRISTOL = {"latitude": 51.4545, "longitude": -2.5879}


async def _generate(repository, job_id: str = "job-1"):
    return (await AuditPackAssembler(repository).generate(job_id)).pack


def _service(repository, object_store, **config) -> VerificationService:
    return VerificationService(repository, object_store, VerificationConfig(**config))


@pytest.mark.asyncio
async def test_intact_pack_verifies(repository, object_store, seed_job, seed_evidence):
    seed_job()
    seed_evidence("ev-1", photo=b"before", photo_stage="before", **BRISTOL)
    seed_evidence("ev-2", photo=b"after", photo_stage="after", **BRISTOL)
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.verified is True
    assert result.hash_status is HashStatus.MATCH
    assert result.pack_hash == pack.pack_hash
    assert result.job_title == "Boiler Service"
    assert result.client_name == "Acme Ltd"
    assert result.evidence_count == 2
    assert result.recorded_evidence_count == 2
    assert result.gps_verified is True
    assert result.gps_summary is not None
    assert result.gps_summary.radius_meters == 0
    assert result.evidence_summary.before == 1
    assert result.evidence_summary.after == 1
    assert result.item_check.performed is True
    assert result.item_check.checked == 2
    assert result.findings == []
    assert result.pack_hash_display == f"{pack.pack_hash[:16]}...{pack.pack_hash[-16:]}"


@pytest.mark.asyncio
async def test_pack_read_back_with_date_object_still_matches(
    repository, object_store, record_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    stored = record_store.tables["audit_packs"][pack.id]
    stored["generated_at"] = {"date": pack.generated_at, "include_time": True}

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_status is HashStatus.MATCH
    assert result.verified is True


@pytest.mark.asyncio
async def test_incomplete_evidence_listing_is_not_a_verdict(
    repository, object_store, record_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    listing = record_store.list_records

    async def capped_listing(table, **kwargs):
        if table == "evidence":
            raise IncompleteListingError("Record store listing exceeded the page limit")
        return await listing(table, **kwargs)

    record_store.list_records = capped_listing

    with pytest.raises(IncompleteListingError):
        await _service(repository, object_store).verify(pack.id)


@pytest.mark.asyncio
async def test_edited_photo_is_flagged(repository, object_store, seed_job, seed_evidence):
    seed_job()
    record = seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    object_store.objects[record["photo_url"]] = b"edited-bytes"

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_status is HashStatus.MATCH
    assert result.hash_valid is False
    assert result.item_check.tampered == 1
    assert result.findings == [Finding.ITEM_HASH_MISMATCH]


@pytest.mark.asyncio
async def test_missing_photo_is_flagged(repository, object_store, seed_job, seed_evidence):
    seed_job()
    seed_evidence("ev-1", store_photo=False, **BRISTOL)
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_valid is False
    assert result.item_check.missing == 1
    assert Finding.PHOTO_MISSING in result.findings


@pytest.mark.asyncio
async def test_evidence_added_after_generation_breaks_pack_hash(
    repository, object_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    seed_evidence("ev-2", photo=b"late", **BRISTOL)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_status is HashStatus.MISMATCH
    assert result.hash_valid is False
    assert result.evidence_count == 2
    assert result.recorded_evidence_count == 1
    assert result.pack_hash != pack.pack_hash
    assert Finding.PACK_HASH_MISMATCH in result.findings


@pytest.mark.asyncio
async def test_renamed_job_breaks_pack_hash(
    repository, object_store, record_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    record_store.tables["jobs"]["job-1"]["title"] = "Boiler Replacement"

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_status is HashStatus.MISMATCH


@pytest.mark.asyncio
async def test_stored_hash_comparison_ignores_case(
    repository, object_store, record_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    record_store.tables["audit_packs"][pack.id]["pack_hash"] = f" {pack.pack_hash.upper()} "

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_status is HashStatus.MATCH


@pytest.mark.asyncio
async def test_legacy_unhashed_pack(
    repository, object_store, record_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    record_store.seed(
        "audit_packs",
        {"id": "pack-legacy", "job": ["job-1"], "generated_at": "2025-06-01T12:00:00.000Z"},
    )

    result = await _service(repository, object_store).verify("pack-legacy")

    assert result.hash_valid is True
    assert result.hash_status is HashStatus.LEGACY_UNHASHED
    assert Finding.LEGACY_UNHASHED in result.findings


@pytest.mark.asyncio
async def test_missing_gps_fails_geo_check(repository, object_store, seed_job, seed_evidence):
    seed_job()
    seed_evidence("ev-1", photo=b"located", **BRISTOL)
    seed_evidence("ev-2", photo=b"indoors")
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.hash_valid is True
    assert result.gps_verified is False
    assert result.verified is False
    assert result.gps_summary is not None
    assert result.gps_summary.latitude == pytest.approx(51.4545)
    assert result.findings == [Finding.INCOMPLETE_GEO_DATA]


@pytest.mark.asyncio
async def test_no_coordinates_at_all(repository, object_store, seed_job, seed_evidence):
    seed_job()
    seed_evidence("ev-1")
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.gps_verified is False
    assert result.gps_summary is None


@pytest.mark.asyncio
async def test_empty_evidence_set(repository, object_store, seed_job):
    seed_job()
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.evidence_count == 0
    assert result.hash_status is HashStatus.MATCH
    assert result.gps_verified is True
    assert result.gps_summary is None


@pytest.mark.asyncio
async def test_unhashed_evidence_is_counted_but_not_checked(
    repository, object_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", photo=b"hashed", **BRISTOL)
    seed_evidence("ev-2", photo=b"legacy", hashed=False, **BRISTOL)
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert pack.evidence_count == 2
    assert result.hash_status is HashStatus.MATCH
    assert result.item_check.checked == 1
    assert result.item_check.unverifiable == 1


@pytest.mark.asyncio
async def test_item_check_skipped_without_object_store(repository, seed_job, seed_evidence):
    seed_job()
    seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)

    result = await _service(repository, None).verify(pack.id)

    assert result.item_check.performed is False
    assert result.verified is True


@pytest.mark.asyncio
async def test_item_check_can_be_disabled(repository, object_store, seed_job, seed_evidence):
    seed_job()
    record = seed_evidence("ev-1", **BRISTOL)
    pack = await _generate(repository)
    object_store.objects[record["photo_url"]] = b"edited-bytes"

    result = await _service(repository, object_store, recompute_item_hashes=False).verify(pack.id)

    assert result.item_check.performed is False
    assert result.hash_valid is True


@pytest.mark.asyncio
async def test_custom_evidence_counted_separately(
    repository, object_store, seed_job, seed_evidence
):
    seed_job()
    seed_evidence("ev-1", photo=b"a", photo_stage="during", **BRISTOL)
    seed_evidence("ev-2", photo=b"b", evidence_type="additional_evidence", **BRISTOL)
    pack = await _generate(repository)

    result = await _service(repository, object_store).verify(pack.id)

    assert result.evidence_summary.during == 1
    assert result.evidence_summary.custom == 1


@pytest.mark.asyncio
async def test_unknown_pack(repository, object_store):
    with pytest.raises(NotFoundError):
        await _service(repository, object_store).verify("missing")


@pytest.mark.asyncio
async def test_pack_without_job(repository, object_store, record_store):
    record_store.seed("audit_packs", {"id": "pack-1", "pack_hash": "a" * 64})
    with pytest.raises(NotFoundError, match="no associated job"):
        await _service(repository, object_store).verify("pack-1")


@pytest.mark.asyncio
async def test_pack_whose_job_was_deleted(repository, object_store, record_store):
    record_store.seed("audit_packs", {"id": "pack-1", "job": ["job-gone"], "pack_hash": "a" * 64})
    with pytest.raises(NotFoundError, match="Job not found"):
        await _service(repository, object_store).verify("pack-1")
