"""Evidence item and queue statistics."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class EvidenceType(StrEnum):
    PHOTO = "photo"
    ADDITIONAL = "additional_evidence"


class PhotoStage(StrEnum):
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"


# Allowed sync transitions. syncing -> pending covers both a retryable
# failure and a rollback after cancellation.
VALID_SYNC_TRANSITIONS: dict[SyncStatus, set[SyncStatus]] = {
    SyncStatus.PENDING: {SyncStatus.SYNCING, SyncStatus.FAILED},
    SyncStatus.SYNCING: {SyncStatus.SYNCED, SyncStatus.PENDING, SyncStatus.FAILED},
    SyncStatus.FAILED: {SyncStatus.PENDING},
    SyncStatus.SYNCED: set(),
}


@dataclass
class EvidenceItem:
    """One captured photo plus its proof metadata.

    ``photo`` holds the raw bytes while the item is local. Once synced the
    bytes are released and ``photo_ref`` names the remote object.
    """

    id: str
    task_id: str
    job_id: str
    worker_id: str
    captured_at: str
    content_hash: str
    photo: bytes | None = None
    photo_ref: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    gps_accuracy_m: float | None = None
    evidence_type: str = EvidenceType.PHOTO
    photo_stage: str | None = None
    notes: str | None = None
    sync_status: SyncStatus = SyncStatus.PENDING
    retry_count: int = 0
    last_error: str | None = None
    next_attempt_at: float | None = None
    created_at: str | None = None
    synced_at: str | None = None
    remote_record_id: str | None = None
    size_bytes: int = 0

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> EvidenceItem:
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            job_id=row["job_id"],
            worker_id=row["worker_id"],
            captured_at=row["captured_at"],
            content_hash=row["content_hash"],
            photo=row.get("photo"),
            photo_ref=row.get("photo_ref"),
            latitude=row.get("latitude"),
            longitude=row.get("longitude"),
            gps_accuracy_m=row.get("gps_accuracy_m"),
            evidence_type=row.get("evidence_type") or EvidenceType.PHOTO,
            photo_stage=row.get("photo_stage"),
            notes=row.get("notes"),
            sync_status=SyncStatus(row["sync_status"]),
            retry_count=row.get("retry_count") or 0,
            last_error=row.get("last_error"),
            next_attempt_at=row.get("next_attempt_at"),
            created_at=row.get("created_at"),
            synced_at=row.get("synced_at"),
            remote_record_id=row.get("remote_record_id"),
            size_bytes=row.get("size_bytes") or 0,
        )


@dataclass(frozen=True)
class QueueStats:
    """Snapshot of the local queue.

    ``item_count`` and ``total_bytes`` cover unconfirmed items only (pending,
    syncing and failed); those are what the capture budget limits.
    """

    item_count: int
    total_bytes: int
    pending_count: int
    syncing_count: int
    failed_count: int
    synced_count: int
    oldest_pending_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_count": self.item_count,
            "total_bytes": self.total_bytes,
            "pending_count": self.pending_count,
            "syncing_count": self.syncing_count,
            "failed_count": self.failed_count,
            "synced_count": self.synced_count,
            "oldest_pending_at": self.oldest_pending_at,
        }
