"""End-to-end evidence pipeline: capture, sync, generate, verify, tamper.

Runs the real capture queue on a SQLite file and the real repository and
services over the in-memory record and object stores.
"""

import pytest
import pytest_asyncio

from workproof.capture.models import SyncStatus
from workproof.capture.queue import CaptureQueue
from workproof.capture.sync_engine import SyncEngine
from workproof.capture.uploader import RemoteEvidenceUploader
from workproof.core.config import QueueConfig, SyncConfig, VerificationConfig
from workproof.core.errors import TransientSyncError
from workproof.services.audit_pack_service import AuditPackAssembler
from workproof.services.verification_service import Finding, HashStatus, VerificationService
from workproof.utils.hashing import item_hash

CAPTURED_AT = "2026-01-24T09:00:00.000Z"
NO_BACKOFF = SyncConfig(backoff_seconds=0.0, rate_limit_backoff_seconds=0.0)


@pytest_asyncio.fixture
async def queue(queue_engine):
    # Fixed capture times in the past, so the age limit is lifted.
    capture_queue = CaptureQueue(queue_engine, QueueConfig(max_capture_age_seconds=10**9))
    await capture_queue.initialize()
    return capture_queue


async def _capture_two(queue: CaptureQueue):
    located = await queue.capture(
        task_id="task-1",
        job_id="job-1",
        worker_id="W1",
        photo=b"boiler-before",
        captured_at=CAPTURED_AT,
        latitude=51.4545,
        longitude=-2.5879,
        gps_accuracy_m=8.0,
        photo_stage="before",
    )
    indoors = await queue.capture(
        task_id="task-1",
        job_id="job-1",
        worker_id="W1",
        photo=b"boiler-after",
        captured_at=CAPTURED_AT,
        photo_stage="after",
    )
    return located, indoors


@pytest.mark.asyncio
async def test_capture_sync_generate_verify_and_tamper(
    queue, repository, record_store, object_store, seed_job
):
    seed_job()
    located, indoors = await _capture_two(queue)
    assert located.content_hash == item_hash(b"boiler-before", CAPTURED_AT, "W1")

    uploader = RemoteEvidenceUploader(object_store, repository)
    result = await SyncEngine(queue, uploader, NO_BACKOFF).sync_all()

    assert result.succeeded == 2
    assert result.still_pending == 0
    for item in (located, indoors):
        synced = await queue.get(item.id)
        assert synced.sync_status == SyncStatus.SYNCED
        assert synced.photo is None
        assert object_store.objects[synced.photo_ref] == item.photo

    generated = await AuditPackAssembler(repository).generate("job-1")
    assert generated.pack.evidence_count == 2

    verifier = VerificationService(repository, object_store, VerificationConfig())
    verdict = await verifier.verify(generated.pack.id)

    assert verdict.evidence_count == 2
    assert verdict.hash_valid is True
    assert verdict.hash_status is HashStatus.MATCH
    assert verdict.gps_verified is False
    assert verdict.gps_summary.radius_meters == 0
    assert verdict.findings == [Finding.INCOMPLETE_GEO_DATA]

    # Point one record at the other photo: the stored hash no longer matches its bytes.
    records = record_store.tables["evidence"]
    first, second = records.values()
    first["photo_url"] = second["photo_url"]

    tampered = await verifier.verify(generated.pack.id)

    assert tampered.hash_valid is False
    assert tampered.hash_status is HashStatus.MATCH
    assert tampered.item_check.tampered == 1
    assert Finding.ITEM_HASH_MISMATCH in tampered.findings


@pytest.mark.asyncio
async def test_sync_survives_a_record_store_outage(
    queue, repository, record_store, object_store, seed_job
):
    seed_job()
    located, indoors = await _capture_two(queue)
    record_store.create_errors.extend([TransientSyncError("503"), TransientSyncError("503")])

    uploader = RemoteEvidenceUploader(object_store, repository)
    result = await SyncEngine(queue, uploader, NO_BACKOFF).sync_all()

    assert result.succeeded == 2
    assert result.failed == 0
    assert len(record_store.tables["evidence"]) == 2
    # Retries overwrite the same object key rather than adding new ones.
    assert len(object_store.objects) == 2

    generated = await AuditPackAssembler(repository).generate("job-1")
    verdict = await VerificationService(
        repository, object_store, VerificationConfig()
    ).verify(generated.pack.id)
    assert verdict.hash_valid is True


@pytest.mark.asyncio
async def test_evidence_synced_after_generation_is_detected(
    queue, repository, object_store, seed_job
):
    seed_job()
    uploader = RemoteEvidenceUploader(object_store, repository)
    await queue.capture(
        task_id="task-1", job_id="job-1", worker_id="W1", photo=b"first", captured_at=CAPTURED_AT
    )
    await SyncEngine(queue, uploader, NO_BACKOFF).sync_all()
    generated = await AuditPackAssembler(repository).generate("job-1")

    await queue.capture(
        task_id="task-1", job_id="job-1", worker_id="W1", photo=b"late", captured_at=CAPTURED_AT
    )
    await SyncEngine(queue, uploader, NO_BACKOFF).sync_all()

    verdict = await VerificationService(
        repository, object_store, VerificationConfig()
    ).verify(generated.pack.id)

    assert verdict.hash_status is HashStatus.MISMATCH
    assert verdict.evidence_count == 2
    assert verdict.recorded_evidence_count == 1
