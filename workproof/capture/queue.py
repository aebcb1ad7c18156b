"""Local capture queue.

Holds evidence that has been captured but not yet confirmed by the remote
store. Backed by SQLite so it survives restarts and loss of connectivity.

Capture only appends (``enqueue``); the sync engine only claims and
transitions (``dequeue_next`` and the ``mark_*`` methods). Every write runs
in one immediate transaction under an in-process lock, which makes the
budget check atomic with its insert and makes a claim atomic with its
status flip.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from workproof.capture.models import (
    VALID_SYNC_TRANSITIONS,
    EvidenceItem,
    EvidenceType,
    PhotoStage,
    QueueStats,
    SyncStatus,
)
from workproof.core.config import QueueConfig
from workproof.core.errors import (
    ConflictError,
    NotFoundError,
    StorageLimitExceededError,
    ValidationError,
)
from workproof.core.metrics import (
    workproof_capture_enqueued_total,
    workproof_capture_rejected_total,
)
from workproof.utils.clock import parse_iso, utc_now, utc_now_iso
from workproof.utils.hashing import item_hash

logger = structlog.get_logger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS capture_queue (
        id TEXT PRIMARY KEY,
        task_id TEXT NOT NULL,
        job_id TEXT NOT NULL,
        worker_id TEXT NOT NULL,
        captured_at TEXT NOT NULL,
        content_hash TEXT NOT NULL,
        photo BLOB,
        photo_ref TEXT,
        size_bytes INTEGER NOT NULL DEFAULT 0,
        latitude REAL,
        longitude REAL,
        gps_accuracy_m REAL,
        evidence_type TEXT NOT NULL DEFAULT 'photo',
        photo_stage TEXT,
        notes TEXT,
        sync_status TEXT NOT NULL DEFAULT 'pending',
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        next_attempt_at REAL,
        created_at TEXT NOT NULL,
        synced_at TEXT,
        remote_record_id TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS ix_capture_queue_status_created
        ON capture_queue (sync_status, created_at)
    """,
)

_COLUMNS = (
    "id, task_id, job_id, worker_id, captured_at, content_hash, photo, photo_ref, "
    "size_bytes, latitude, longitude, gps_accuracy_m, evidence_type, photo_stage, notes, "
    "sync_status, retry_count, last_error, next_attempt_at, created_at, synced_at, "
    "remote_record_id"
)


def _row_to_dict(row: Any) -> dict[str, Any]:
    return dict(row._mapping)


class CaptureQueue:
    """Size-bounded, durable queue of unconfirmed evidence."""

    def __init__(
        self,
        engine: AsyncEngine,
        config: QueueConfig,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._engine = engine
        self._config = config
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def config(self) -> QueueConfig:
        return self._config

    async def initialize(self) -> None:
        """Create the queue table if it does not exist yet."""
        async with self._engine.begin() as conn:
            for statement in _SCHEMA:
                await conn.execute(text(statement))

    # ------------------------------------------------------------------
    # Capture side
    # ------------------------------------------------------------------

    async def capture(
        self,
        *,
        task_id: str,
        job_id: str,
        worker_id: str,
        photo: bytes,
        captured_at: str | None = None,
        latitude: float | None = None,
        longitude: float | None = None,
        gps_accuracy_m: float | None = None,
        evidence_type: str = EvidenceType.PHOTO,
        photo_stage: str | None = None,
        notes: str | None = None,
    ) -> EvidenceItem:
        """Stamp a new capture with its content hash and enqueue it.

        The content hash is computed here, once, and never recomputed for
        this item's own record.
        """
        if not photo:
            raise ValidationError("Photo is empty")
        if not worker_id:
            raise ValidationError("Worker id is required")
        captured_at = captured_at or utc_now_iso()
        self._validate_captured_at(captured_at)
        _validate_coordinates(latitude, longitude)
        if photo_stage is not None and photo_stage not in {s.value for s in PhotoStage}:
            raise ValidationError("Unknown photo stage", details={"photo_stage": photo_stage})
        if evidence_type not in {t.value for t in EvidenceType}:
            raise ValidationError(
                "Unknown evidence type", details={"evidence_type": evidence_type}
            )

        item = EvidenceItem(
            id=str(uuid.uuid4()),
            task_id=task_id,
            job_id=job_id,
            worker_id=worker_id,
            captured_at=captured_at,
            content_hash=item_hash(photo, captured_at, worker_id),
            photo=photo,
            latitude=latitude,
            longitude=longitude,
            gps_accuracy_m=gps_accuracy_m,
            evidence_type=evidence_type,
            photo_stage=photo_stage,
            notes=notes,
        )
        return await self.enqueue(item)

    async def enqueue(self, item: EvidenceItem) -> EvidenceItem:
        """Accept an item, or reject it outright if either ceiling would be exceeded.

        A rejected call writes nothing.
        """
        if not item.photo:
            raise ValidationError("Evidence item has no photo bytes", details={"id": item.id})
        if not item.content_hash:
            raise ValidationError("Evidence item has no content hash", details={"id": item.id})

        size = len(item.photo)
        created_at = utc_now_iso()

        async with self._lock, self._engine.begin() as conn:
            existing = await conn.execute(
                text("SELECT 1 FROM capture_queue WHERE id = :id"), {"id": item.id}
            )
            if existing.first() is not None:
                raise ConflictError("Evidence id already used", details={"id": item.id})

            stats = await self._stats(conn)
            if stats.item_count + 1 > self._config.max_items:
                workproof_capture_rejected_total.labels(reason="max_items").inc()
                logger.warning(
                    "Capture rejected, queue item limit reached",
                    evidence_id=item.id,
                    item_count=stats.item_count,
                    max_items=self._config.max_items,
                )
                raise StorageLimitExceededError(
                    "Offline storage is full. Sync or delete evidence before continuing.",
                    limit="max_items",
                    details={"item_count": stats.item_count, "max_items": self._config.max_items},
                )
            if stats.total_bytes + size > self._config.max_bytes:
                workproof_capture_rejected_total.labels(reason="max_bytes").inc()
                logger.warning(
                    "Capture rejected, queue byte limit reached",
                    evidence_id=item.id,
                    total_bytes=stats.total_bytes,
                    item_bytes=size,
                    max_bytes=self._config.max_bytes,
                )
                raise StorageLimitExceededError(
                    "Offline storage is full. Sync or delete evidence before continuing.",
                    limit="max_bytes",
                    details={
                        "total_bytes": stats.total_bytes,
                        "item_bytes": size,
                        "max_bytes": self._config.max_bytes,
                    },
                )

            await conn.execute(
                text("""
                    INSERT INTO capture_queue
                        (id, task_id, job_id, worker_id, captured_at, content_hash, photo,
                         size_bytes, latitude, longitude, gps_accuracy_m, evidence_type,
                         photo_stage, notes, sync_status, retry_count, created_at)
                    VALUES
                        (:id, :task_id, :job_id, :worker_id, :captured_at, :content_hash,
                         :photo, :size_bytes, :latitude, :longitude, :gps_accuracy_m,
                         :evidence_type, :photo_stage, :notes, 'pending', 0, :created_at)
                """),
                {
                    "id": item.id,
                    "task_id": item.task_id,
                    "job_id": item.job_id,
                    "worker_id": item.worker_id,
                    "captured_at": item.captured_at,
                    "content_hash": item.content_hash,
                    "photo": item.photo,
                    "size_bytes": size,
                    "latitude": item.latitude,
                    "longitude": item.longitude,
                    "gps_accuracy_m": item.gps_accuracy_m,
                    "evidence_type": str(item.evidence_type),
                    "photo_stage": item.photo_stage,
                    "notes": item.notes,
                    "created_at": created_at,
                },
            )

        workproof_capture_enqueued_total.inc()
        logger.info(
            "Evidence captured",
            evidence_id=item.id,
            job_id=item.job_id,
            task_id=item.task_id,
            size_bytes=size,
        )
        item.sync_status = SyncStatus.PENDING
        item.retry_count = 0
        item.size_bytes = size
        item.created_at = created_at
        return item

    # ------------------------------------------------------------------
    # Sync side
    # ------------------------------------------------------------------

    async def dequeue_next(self) -> EvidenceItem | None:
        """Claim the oldest eligible pending item, flipping it to syncing first."""
        async with self._lock, self._engine.begin() as conn:
            result = await conn.execute(
                text("""
                    SELECT id FROM capture_queue
                    WHERE sync_status = 'pending'
                      AND (next_attempt_at IS NULL OR next_attempt_at <= :now)
                    ORDER BY created_at, rowid
                    LIMIT 1
                """),
                {"now": self._clock()},
            )
            row = result.first()
            if row is None:
                return None

            claimed = await conn.execute(
                text("""
                    UPDATE capture_queue SET sync_status = 'syncing'
                    WHERE id = :id AND sync_status = 'pending'
                """),
                {"id": row.id},
            )
            if claimed.rowcount != 1:
                return None
            return await self._fetch(conn, row.id)

    async def mark_syncing(self, item_id: str) -> EvidenceItem:
        async with self._lock, self._engine.begin() as conn:
            return await self._transition(conn, item_id, SyncStatus.SYNCING)

    async def mark_synced(
        self,
        item_id: str,
        photo_ref: str | None = None,
        remote_record_id: str | None = None,
    ) -> EvidenceItem:
        """Record confirmation. With a remote reference the local bytes are released."""
        fields: dict[str, Any] = {
            "synced_at": utc_now_iso(),
            "last_error": None,
            "next_attempt_at": None,
            "remote_record_id": remote_record_id,
        }
        if photo_ref is not None:
            fields["photo_ref"] = photo_ref
            fields["photo"] = None
        async with self._lock, self._engine.begin() as conn:
            return await self._transition(conn, item_id, SyncStatus.SYNCED, fields)

    async def mark_failed(
        self,
        item_id: str,
        error: str,
        *,
        retryable: bool = False,
        next_attempt_at: float | None = None,
    ) -> EvidenceItem:
        """Record a failed attempt. Increments retry_count, never deletes.

        Retryable failures go back to pending behind ``next_attempt_at``;
        everything else lands in failed until a manual resync.
        """
        target = SyncStatus.PENDING if retryable else SyncStatus.FAILED
        fields = {
            "last_error": error,
            "next_attempt_at": next_attempt_at if retryable else None,
        }
        async with self._lock, self._engine.begin() as conn:
            return await self._transition(conn, item_id, target, fields, count_attempt=True)

    async def release(self, item_id: str) -> bool:
        """Roll a claimed item back to pending without counting an attempt."""
        async with self._lock, self._engine.begin() as conn:
            result = await conn.execute(
                text("""
                    UPDATE capture_queue SET sync_status = 'pending'
                    WHERE id = :id AND sync_status = 'syncing'
                """),
                {"id": item_id},
            )
            return result.rowcount == 1

    async def release_syncing(self) -> int:
        """Roll every syncing item back to pending (startup recovery)."""
        async with self._lock, self._engine.begin() as conn:
            result = await conn.execute(
                text(
                    "UPDATE capture_queue SET sync_status = 'pending' "
                    "WHERE sync_status = 'syncing'"
                )
            )
            released = result.rowcount
        if released:
            logger.warning("Released items left in syncing state", count=released)
        return released

    async def retry_failed(self, item_ids: Iterable[str] | None = None) -> int:
        """Manual resync: failed items re-enter pending with a fresh attempt budget."""
        query = """
            UPDATE capture_queue
            SET sync_status = 'pending', retry_count = 0, next_attempt_at = NULL
            WHERE sync_status = 'failed'
        """
        params: dict[str, Any] = {}
        if item_ids is not None:
            ids = list(item_ids)
            if not ids:
                return 0
            query += " AND id IN :ids"
            params["ids"] = ids
        statement = text(query)
        if "ids" in params:
            statement = statement.bindparams(bindparam("ids", expanding=True))

        async with self._lock, self._engine.begin() as conn:
            result = await conn.execute(statement, params)
            count = result.rowcount
        logger.info("Failed evidence requeued", count=count)
        return count

    async def purge_synced(self) -> int:
        """Delete confirmed items. Separate from sync so synced never means deleted."""
        async with self._lock, self._engine.begin() as conn:
            result = await conn.execute(
                text("DELETE FROM capture_queue WHERE sync_status = 'synced'")
            )
            count = result.rowcount
        logger.info("Purged synced evidence", count=count)
        return count

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get(self, item_id: str) -> EvidenceItem | None:
        async with self._engine.connect() as conn:
            row = await self._fetch_row(conn, item_id)
        return EvidenceItem.from_row(row) if row is not None else None

    async def list_failed(self) -> list[EvidenceItem]:
        return await self.list_items(SyncStatus.FAILED)

    async def list_items(
        self, status: SyncStatus | None = None, limit: int = 500
    ) -> list[EvidenceItem]:
        query = f"SELECT {_COLUMNS} FROM capture_queue"
        params: dict[str, Any] = {"limit": limit}
        if status is not None:
            query += " WHERE sync_status = :status"
            params["status"] = str(status)
        query += " ORDER BY created_at, rowid LIMIT :limit"
        async with self._engine.connect() as conn:
            result = await conn.execute(text(query), params)
            return [EvidenceItem.from_row(_row_to_dict(row)) for row in result.fetchall()]

    async def next_eligible_at(self) -> float | None:
        """When the next pending item may be claimed; None if nothing is pending."""
        async with self._engine.connect() as conn:
            result = await conn.execute(
                text("""
                    SELECT COUNT(*) AS pending, MIN(COALESCE(next_attempt_at, 0)) AS earliest
                    FROM capture_queue WHERE sync_status = 'pending'
                """)
            )
            row = result.one()
        if not row.pending:
            return None
        return float(row.earliest)

    async def stats(self) -> QueueStats:
        async with self._engine.connect() as conn:
            return await self._stats(conn)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _stats(self, conn: AsyncConnection) -> QueueStats:
        result = await conn.execute(
            text("""
                SELECT
                    SUM(CASE WHEN sync_status != 'synced' THEN 1 ELSE 0 END) AS item_count,
                    SUM(CASE WHEN sync_status != 'synced' AND photo IS NOT NULL
                             THEN size_bytes ELSE 0 END) AS total_bytes,
                    SUM(CASE WHEN sync_status = 'pending' THEN 1 ELSE 0 END) AS pending_count,
                    SUM(CASE WHEN sync_status = 'syncing' THEN 1 ELSE 0 END) AS syncing_count,
                    SUM(CASE WHEN sync_status = 'failed' THEN 1 ELSE 0 END) AS failed_count,
                    SUM(CASE WHEN sync_status = 'synced' THEN 1 ELSE 0 END) AS synced_count,
                    MIN(CASE WHEN sync_status = 'pending' THEN created_at END)
                        AS oldest_pending_at
                FROM capture_queue
            """)
        )
        row = result.one()
        return QueueStats(
            item_count=row.item_count or 0,
            total_bytes=row.total_bytes or 0,
            pending_count=row.pending_count or 0,
            syncing_count=row.syncing_count or 0,
            failed_count=row.failed_count or 0,
            synced_count=row.synced_count or 0,
            oldest_pending_at=row.oldest_pending_at,
        )

    async def _fetch_row(self, conn: AsyncConnection, item_id: str) -> dict[str, Any] | None:
        result = await conn.execute(
            text(f"SELECT {_COLUMNS} FROM capture_queue WHERE id = :id"), {"id": item_id}
        )
        row = result.first()
        return _row_to_dict(row) if row is not None else None

    async def _fetch(self, conn: AsyncConnection, item_id: str) -> EvidenceItem:
        row = await self._fetch_row(conn, item_id)
        if row is None:
            raise NotFoundError("Evidence item not found", details={"id": item_id})
        return EvidenceItem.from_row(row)

    async def _transition(
        self,
        conn: AsyncConnection,
        item_id: str,
        target: SyncStatus,
        fields: dict[str, Any] | None = None,
        *,
        count_attempt: bool = False,
    ) -> EvidenceItem:
        current = await self._fetch(conn, item_id)
        if target not in VALID_SYNC_TRANSITIONS[current.sync_status]:
            raise ConflictError(
                f"Cannot move evidence from {current.sync_status} to {target}",
                details={"id": item_id, "from": current.sync_status, "to": target},
            )

        assignments = ["sync_status = :sync_status"]
        params: dict[str, Any] = {"id": item_id, "sync_status": str(target)}
        for column, value in (fields or {}).items():
            assignments.append(f"{column} = :{column}")
            params[column] = value
        if count_attempt:
            assignments.append("retry_count = retry_count + 1")

        await conn.execute(
            text(f"UPDATE capture_queue SET {', '.join(assignments)} WHERE id = :id"),
            params,
        )
        return await self._fetch(conn, item_id)

    def _validate_captured_at(self, captured_at: str) -> None:
        try:
            captured = parse_iso(captured_at)
        except ValueError as e:
            raise ValidationError(
                "Capture timestamp is not ISO-8601", details={"captured_at": captured_at}
            ) from e

        now = utc_now()
        if captured > now + timedelta(seconds=self._config.max_future_skew_seconds):
            raise ValidationError(
                "Capture timestamp is in the future", details={"captured_at": captured_at}
            )
        if captured < now - timedelta(seconds=self._config.max_capture_age_seconds):
            raise ValidationError(
                "Capture timestamp is too old", details={"captured_at": captured_at}
            )


def _validate_coordinates(latitude: float | None, longitude: float | None) -> None:
    if (latitude is None) != (longitude is None):
        raise ValidationError("Latitude and longitude must be given together")
    if latitude is not None and not -90 <= latitude <= 90:
        raise ValidationError("Latitude out of range", details={"latitude": latitude})
    if longitude is not None and not -180 <= longitude <= 180:
        raise ValidationError("Longitude out of range", details={"longitude": longitude})
