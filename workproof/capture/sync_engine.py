"""Sync engine: drains the capture queue into the remote evidence store.

A pass runs a small pool of workers. Each worker claims one item at a time
through ``CaptureQueue.dequeue_next`` and uploads it; the item's own
transitions stay sequential (pending -> syncing -> synced | pending | failed).
Failures are local to the item and never stop the pass.

Retryable failures (timeouts, connection errors, 5xx, 429) go back to
pending behind an exponential backoff gate; rate limits use a longer base
delay. Fatal failures (validation and auth rejections) and exhausted retry
budgets land in failed and wait for a manual resync.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol

import structlog

from workproof.capture.models import EvidenceItem
from workproof.capture.queue import CaptureQueue
from workproof.core.config import SyncConfig
from workproof.core.errors import (
    ConflictError,
    FatalSyncError,
    RateLimitedError,
    TransientSyncError,
    ValidationError,
)
from workproof.core.metrics import (
    workproof_queue_pending_items,
    workproof_sync_attempts_total,
    workproof_sync_pass_latency_seconds,
)

logger = structlog.get_logger(__name__)

_IDLE_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class UploadReceipt:
    photo_ref: str
    record_id: str | None = None


class EvidenceUploader(Protocol):
    async def upload(self, item: EvidenceItem) -> UploadReceipt: ...


class FailureKind(StrEnum):
    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"


@dataclass
class SyncResult:
    succeeded: int = 0
    failed: int = 0
    still_pending: int = 0
    attempts: int = 0
    timed_out: bool = False


@dataclass
class SyncProgress:
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return min(100, round(self.processed * 100 / self.total))


def classify_failure(exc: BaseException) -> tuple[FailureKind, str]:
    """Decide whether an upload failure is worth retrying, and why."""
    if isinstance(exc, RateLimitedError):
        return FailureKind.RATE_LIMITED, f"rate_limited: {exc.message}"
    if isinstance(exc, TransientSyncError):
        return FailureKind.RETRYABLE, f"transient: {exc.message}"
    if isinstance(exc, FatalSyncError):
        return FailureKind.FATAL, f"{exc.reason}: {exc.message}"
    if isinstance(exc, ValidationError):
        return FailureKind.FATAL, f"invalid_evidence: {exc.message}"
    # Unknown failures are retried so evidence is never stranded by a bug
    # in an adapter; the attempt ceiling still bounds them.
    return FailureKind.RETRYABLE, f"unexpected: {type(exc).__name__}: {exc}"


def backoff_delay(
    config: SyncConfig,
    attempt: int,
    kind: FailureKind,
    retry_after: float | None = None,
) -> float:
    """Delay before attempt ``attempt + 1``, in seconds."""
    base = (
        config.rate_limit_backoff_seconds
        if kind is FailureKind.RATE_LIMITED
        else config.backoff_seconds
    )
    delay = min(config.max_backoff_seconds, base * 2 ** max(attempt - 1, 0))
    if retry_after is not None:
        delay = max(delay, min(retry_after, config.max_backoff_seconds))
    return delay


class SyncEngine:
    """Uploads pending evidence with bounded concurrency and a wall-clock budget."""

    def __init__(
        self,
        queue: CaptureQueue,
        uploader: EvidenceUploader,
        config: SyncConfig,
        *,
        on_progress: Callable[[SyncProgress], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._queue = queue
        self._uploader = uploader
        self._config = config
        self._on_progress = on_progress
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._running = False
        self._claimed: set[str] = set()
        self._progress = SyncProgress()

    @property
    def progress(self) -> SyncProgress:
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._running

    async def sync_all(self) -> SyncResult:
        """Run one sync pass until the queue is drained or the budget runs out."""
        if self._running:
            raise ConflictError("Sync already in progress")
        self._running = True
        started = self._clock()
        result = SyncResult()

        try:
            await self._queue.release_syncing()
            stats = await self._queue.stats()
            self._progress = SyncProgress(total=stats.pending_count)
            self._report_progress()

            logger.info(
                "Sync pass started",
                pending=stats.pending_count,
                failed=stats.failed_count,
                concurrency=self._config.concurrency,
            )
            deadline = started + self._config.time_budget_seconds
            await self._run_workers(deadline, result)
            await self._release_claimed()

            final = await self._queue.stats()
            result.still_pending = final.pending_count
            workproof_queue_pending_items.set(final.pending_count)
        finally:
            await self._release_claimed()
            self._running = False
            workproof_sync_pass_latency_seconds.observe(self._clock() - started)

        logger.info(
            "Sync pass finished",
            succeeded=result.succeeded,
            failed=result.failed,
            still_pending=result.still_pending,
            attempts=result.attempts,
            timed_out=result.timed_out,
        )
        return result

    async def _run_workers(self, deadline: float, result: SyncResult) -> None:
        workers = [
            asyncio.create_task(self._worker(deadline, result))
            for _ in range(self._config.concurrency)
        ]
        try:
            done, pending = await asyncio.wait(
                workers,
                timeout=self._config.time_budget_seconds + self._config.cancel_grace_seconds,
            )
        except asyncio.CancelledError:
            logger.warning("Sync pass cancelled", in_flight=len(self._claimed))
            await _cancel_all(workers)
            raise

        if pending:
            result.timed_out = True
            logger.warning(
                "Sync pass exceeded its budget, cancelling uploads", in_flight=len(pending)
            )
            await _cancel_all(pending)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                await _cancel_all(workers)
                raise task.exception()

        if self._clock() >= deadline:
            result.timed_out = True

    async def _worker(self, deadline: float, result: SyncResult) -> None:
        while self._clock() < deadline:
            item = await self._queue.dequeue_next()
            if item is None:
                eligible_at = await self._queue.next_eligible_at()
                if eligible_at is None:
                    return
                wait = eligible_at - self._wall_clock()
                if wait >= deadline - self._clock():
                    return
                await self._sleep(max(wait, _IDLE_POLL_SECONDS))
                continue

            # Claimed ids left here on cancellation are rolled back by sync_all.
            self._claimed.add(item.id)
            await self._process(item, result)
            self._claimed.discard(item.id)

    async def _process(self, item: EvidenceItem, result: SyncResult) -> None:
        result.attempts += 1
        try:
            receipt = await self._uploader.upload(item)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._handle_failure(item, exc, result)
            return

        await self._queue.mark_synced(
            item.id, photo_ref=receipt.photo_ref, remote_record_id=receipt.record_id
        )
        result.succeeded += 1
        self._progress.processed += 1
        self._progress.succeeded += 1
        workproof_sync_attempts_total.labels(outcome="success").inc()
        logger.info(
            "Evidence synced",
            evidence_id=item.id,
            job_id=item.job_id,
            attempt=item.retry_count + 1,
            record_id=receipt.record_id,
        )
        self._report_progress()

    async def _handle_failure(
        self, item: EvidenceItem, exc: Exception, result: SyncResult
    ) -> None:
        kind, reason = classify_failure(exc)
        attempt = item.retry_count + 1

        if kind is FailureKind.FATAL or attempt >= self._config.max_attempts:
            outcome = "fatal" if kind is FailureKind.FATAL else "exhausted"
            await self._queue.mark_failed(item.id, reason, retryable=False)
            result.failed += 1
            self._progress.processed += 1
            self._progress.failed += 1
            workproof_sync_attempts_total.labels(outcome=outcome).inc()
            logger.error(
                "Evidence sync failed",
                evidence_id=item.id,
                attempt=attempt,
                outcome=outcome,
                error=reason,
            )
            self._report_progress()
            return

        retry_after = getattr(exc, "retry_after", None)
        delay = backoff_delay(self._config, attempt, kind, retry_after)
        await self._queue.mark_failed(
            item.id,
            reason,
            retryable=True,
            next_attempt_at=self._wall_clock() + delay,
        )
        workproof_sync_attempts_total.labels(outcome=str(kind)).inc()
        logger.warning(
            "Evidence sync attempt failed, will retry",
            evidence_id=item.id,
            attempt=attempt,
            kind=str(kind),
            delay_seconds=delay,
            error=reason,
        )

    async def _release_claimed(self) -> None:
        """Put anything still claimed by this pass back to pending."""
        for item_id in list(self._claimed):
            if await self._queue.release(item_id):
                logger.info("Rolled back in-flight evidence", evidence_id=item_id)
            self._claimed.discard(item_id)

    def _report_progress(self) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(self._progress)
        except Exception:
            logger.exception("Sync progress callback failed")


async def _cancel_all(tasks) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
