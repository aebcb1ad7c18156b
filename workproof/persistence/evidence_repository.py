"""Evidence repository over the record store.

The record store cannot filter on linked-record fields, so "all evidence
under job J" is answered by listing tasks and evidence broadly and filtering
locally. Consistency caveat: the store is eventually consistent and this
repository does not guarantee read-your-writes. Two reads of the same job
moments apart, or a read right after a write, may observe different evidence
sets. Verification and pack generation accept that gap.
"""

from __future__ import annotations

from typing import Any

import structlog

from workproof.capture.models import EvidenceItem
from workproof.clients.record_store_client import RecordStoreClient
from workproof.core.config import RecordStoreConfig
from workproof.core.errors import ConflictError, FatalSyncError, NotFoundError
from workproof.persistence.records import (
    AuditPackRecord,
    JobRecord,
    RemoteEvidence,
    TaskRecord,
    as_float,
    as_int,
    as_text,
    extract_linked_id,
    extract_linked_ids,
    extract_option,
    unwrap_date,
)
from workproof.utils.clock import utc_now_iso

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Field maps: record store field slugs -> internal names
# ---------------------------------------------------------------------------

JOB_FIELD_MAP: dict[str, str] = {
    "title": "title",
    "client_name": "client_name",
    "site_address": "address",
    "postcode": "postcode",
    "user": "owner",
}

TASK_FIELD_MAP: dict[str, str] = {
    "job": "job",
    "title": "title",
    "status": "status",
}

EVIDENCE_FIELD_MAP: dict[str, str] = {
    "task": "task",
    "capture_id": "capture_id",
    "photo_hash": "content_hash",
    "photo_url": "photo_ref",
    "captured_at": "captured_at",
    "worker": "worker_id",
    "latitude": "latitude",
    "longitude": "longitude",
    "gps_accuracy": "gps_accuracy_m",
    "photo_stage": "photo_stage",
    "evidence_type": "evidence_type",
    "notes": "notes",
    "synced_at": "synced_at",
    "is_synced": "is_synced",
}

AUDIT_PACK_FIELD_MAP: dict[str, str] = {
    "title": "title",
    "job": "job",
    "generated_at": "generated_at",
    "evidence_count": "evidence_count",
    "pack_hash": "pack_hash",
    "downloaded_at": "downloaded_at",
    "shared_with": "shared_with",
}

USER_EXTERNAL_ID_FIELD = "external_id"

# Single-select option ids used by the evidence table's photo stage field.
PHOTO_STAGE_OPTIONS: dict[str, str] = {
    "DZX3Z": "before",
    "cDYca": "during",
    "U6zl3": "after",
}

_REVERSE_EVIDENCE_MAP = {internal: remote for remote, internal in EVIDENCE_FIELD_MAP.items()}
_REVERSE_PACK_MAP = {internal: remote for remote, internal in AUDIT_PACK_FIELD_MAP.items()}


def _remap(data: dict[str, Any], field_map: dict[str, str]) -> dict[str, Any]:
    """Translate record store field slugs to internal names."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        result[field_map.get(key, key)] = value
    return result


def to_job(data: dict[str, Any]) -> JobRecord:
    row = _remap(data, JOB_FIELD_MAP)
    return JobRecord(
        id=str(row["id"]),
        title=as_text(row.get("title")),
        client_name=as_text(row.get("client_name")),
        address=as_text(row.get("address")),
        postcode=as_text(row.get("postcode")),
        owner_ids=tuple(extract_linked_ids(row.get("owner"))),
    )


def to_task(data: dict[str, Any]) -> TaskRecord:
    row = _remap(data, TASK_FIELD_MAP)
    return TaskRecord(
        id=str(row["id"]),
        job_id=extract_linked_id(row.get("job")),
        title=as_text(row.get("title")),
        status=extract_option(row.get("status")),
    )


def to_evidence(data: dict[str, Any]) -> RemoteEvidence:
    row = _remap(data, EVIDENCE_FIELD_MAP)
    return RemoteEvidence(
        id=str(row["id"]),
        task_id=extract_linked_id(row.get("task")),
        capture_id=as_text(row.get("capture_id")),
        content_hash=as_text(row.get("content_hash")),
        photo_ref=as_text(row.get("photo_ref")),
        # Stored as plain text so it round-trips byte-for-byte into the hash.
        captured_at=as_text(row.get("captured_at")),
        worker_id=as_text(row.get("worker_id")),
        latitude=as_float(row.get("latitude")),
        longitude=as_float(row.get("longitude")),
        gps_accuracy_m=as_float(row.get("gps_accuracy_m")),
        photo_stage=extract_option(row.get("photo_stage"), PHOTO_STAGE_OPTIONS),
        evidence_type=extract_option(row.get("evidence_type")),
        notes=as_text(row.get("notes")),
    )


def to_audit_pack(data: dict[str, Any]) -> AuditPackRecord:
    row = _remap(data, AUDIT_PACK_FIELD_MAP)
    return AuditPackRecord(
        id=str(row["id"]),
        job_id=extract_linked_id(row.get("job")),
        title=as_text(row.get("title")),
        generated_at=unwrap_date(row.get("generated_at")),
        evidence_count=as_int(row.get("evidence_count")),
        pack_hash=as_text(row.get("pack_hash")),
        downloaded_at=unwrap_date(row.get("downloaded_at")),
        shared_with=as_text(row.get("shared_with")),
    )


class EvidenceRepository:
    """Jobs, tasks, evidence and audit packs as the pipeline needs them."""

    def __init__(self, client: RecordStoreClient, config: RecordStoreConfig) -> None:
        self._client = client
        self._users_table = config.users_table
        self._jobs_table = config.jobs_table
        self._tasks_table = config.tasks_table
        self._evidence_table = config.evidence_table
        self._packs_table = config.audit_packs_table

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> JobRecord | None:
        data = await self._client.get_record(self._jobs_table, job_id)
        return to_job(data) if data else None

    async def get_pack(self, pack_id: str) -> AuditPackRecord | None:
        data = await self._client.get_record(self._packs_table, pack_id)
        return to_audit_pack(data) if data else None

    async def list_job_tasks(self, job_id: str) -> list[TaskRecord]:
        records = await self._client.list_records(self._tasks_table)
        tasks = [to_task(r) for r in records]
        return [t for t in tasks if t.job_id == job_id]

    async def list_job_evidence(
        self, job_id: str
    ) -> tuple[list[TaskRecord], list[RemoteEvidence]]:
        """Tasks under the job and every evidence record linked to one of them."""
        tasks = await self.list_job_tasks(job_id)
        if not tasks:
            return [], []
        task_ids = {t.id for t in tasks}
        records = await self._client.list_records(self._evidence_table)
        evidence = [e for e in (to_evidence(r) for r in records) if e.task_id in task_ids]
        logger.debug(
            "Loaded job evidence",
            job_id=job_id,
            tasks=len(tasks),
            evidence=len(evidence),
            scanned=len(records),
        )
        return tasks, evidence

    async def list_packs_for_job(self, job_id: str) -> list[AuditPackRecord]:
        """Packs generated for the job, newest first."""
        records = await self._client.list_records(self._packs_table)
        packs = [p for p in (to_audit_pack(r) for r in records) if p.job_id == job_id]
        return sorted(packs, key=lambda p: p.generated_at or "", reverse=True)

    async def find_user_record_id(self, external_user_id: str) -> str | None:
        record = await self._client.find_by_field(
            self._users_table, USER_EXTERNAL_ID_FIELD, external_user_id
        )
        return str(record["id"]) if record and record.get("id") else None

    async def job_owner_ids(self, job_id: str) -> tuple[str, ...] | None:
        """Worker record ids linked to the job; None if the job does not exist."""
        job = await self.get_job(job_id)
        return job.owner_ids if job else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_pack(
        self,
        *,
        job_id: str,
        title: str,
        generated_at: str,
        evidence_count: int,
        pack_hash: str,
    ) -> AuditPackRecord:
        """Append a new audit pack record. Packs are never regenerated in place."""
        fields = {
            _REVERSE_PACK_MAP["title"]: title,
            _REVERSE_PACK_MAP["job"]: [job_id],
            _REVERSE_PACK_MAP["generated_at"]: generated_at,
            _REVERSE_PACK_MAP["evidence_count"]: evidence_count,
            _REVERSE_PACK_MAP["pack_hash"]: pack_hash,
        }
        data = await self._client.create_record(self._packs_table, fields)
        if not data.get("id"):
            raise FatalSyncError("Record store did not return a pack id", "missing_id")
        return to_audit_pack({**fields, **data})

    async def update_pack(self, pack_id: str, **changes: Any) -> AuditPackRecord:
        """Set lifecycle markers (downloaded_at, shared_with). Never touches the hash."""
        disallowed = set(changes) - {"downloaded_at", "shared_with"}
        if disallowed:
            raise ValueError(f"Audit pack fields are immutable: {sorted(disallowed)}")
        fields = {_REVERSE_PACK_MAP[name]: value for name, value in changes.items()}
        try:
            data = await self._client.update_record(self._packs_table, pack_id, fields)
        except NotFoundError:
            raise NotFoundError("Pack not found", details={"pack_id": pack_id}) from None
        return to_audit_pack({"id": pack_id, **data})

    async def create_evidence(self, item: EvidenceItem, *, photo_ref: str) -> str | None:
        """Create the evidence record for a synced capture, idempotently.

        ``(item.id, item.content_hash)`` is the idempotency key: a record that
        already carries this capture id and hash is returned as-is, and a 409
        from the store means an earlier attempt already landed.
        """
        existing = await self._client.find_by_field(
            self._evidence_table, _REVERSE_EVIDENCE_MAP["capture_id"], item.id
        )
        if existing:
            recorded_hash = existing.get(_REVERSE_EVIDENCE_MAP["content_hash"])
            if recorded_hash != item.content_hash:
                raise FatalSyncError(
                    "Capture id already recorded with a different content hash",
                    "conflicting_record",
                    details={"id": item.id},
                )
            logger.info("Evidence record already exists", evidence_id=item.id)
            return str(existing["id"])

        fields: dict[str, Any] = {
            _REVERSE_EVIDENCE_MAP["task"]: [item.task_id],
            _REVERSE_EVIDENCE_MAP["capture_id"]: item.id,
            _REVERSE_EVIDENCE_MAP["content_hash"]: item.content_hash,
            _REVERSE_EVIDENCE_MAP["photo_ref"]: photo_ref,
            _REVERSE_EVIDENCE_MAP["captured_at"]: item.captured_at,
            _REVERSE_EVIDENCE_MAP["worker_id"]: item.worker_id,
            _REVERSE_EVIDENCE_MAP["evidence_type"]: str(item.evidence_type),
            _REVERSE_EVIDENCE_MAP["synced_at"]: utc_now_iso(),
            _REVERSE_EVIDENCE_MAP["is_synced"]: True,
        }
        if item.has_coordinates:
            fields[_REVERSE_EVIDENCE_MAP["latitude"]] = item.latitude
            fields[_REVERSE_EVIDENCE_MAP["longitude"]] = item.longitude
        if item.gps_accuracy_m is not None:
            fields[_REVERSE_EVIDENCE_MAP["gps_accuracy_m"]] = item.gps_accuracy_m
        if item.photo_stage:
            fields[_REVERSE_EVIDENCE_MAP["photo_stage"]] = item.photo_stage
        if item.notes:
            fields[_REVERSE_EVIDENCE_MAP["notes"]] = item.notes

        try:
            data = await self._client.create_record(
                self._evidence_table,
                fields,
                idempotency_key=f"{item.id}:{item.content_hash}",
            )
        except ConflictError:
            logger.info("Evidence record created by an earlier attempt", evidence_id=item.id)
            again = await self._client.find_by_field(
                self._evidence_table, _REVERSE_EVIDENCE_MAP["capture_id"], item.id
            )
            return str(again["id"]) if again and again.get("id") else None

        record_id = data.get("id")
        return str(record_id) if record_id else None
