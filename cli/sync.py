"""Device-side capture queue commands.

Usage:
    uv run workproof-sync capture --task T --job J --worker W photo.jpg [--lat .. --lng ..]
    uv run workproof-sync sync
    uv run workproof-sync stats
    uv run workproof-sync failed
    uv run workproof-sync retry-failed [ID ...]
    uv run workproof-sync purge
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from pathlib import Path

import structlog

from workproof.capture.models import EvidenceType, PhotoStage
from workproof.capture.queue import CaptureQueue
from workproof.capture.sync_engine import SyncEngine, SyncProgress
from workproof.capture.uploader import RemoteEvidenceUploader
from workproof.clients.object_store import S3ObjectStore
from workproof.clients.record_store_client import RecordStoreClient
from workproof.core.config import Settings, get_settings
from workproof.core.database import get_engine, reset_engine
from workproof.core.errors import WorkProofError
from workproof.core.logging import setup_logging
from workproof.persistence.evidence_repository import EvidenceRepository

logger = structlog.get_logger(__name__)


def _emit(payload: dict) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _print_progress(progress: SyncProgress) -> None:
    print(
        f"sync {progress.processed}/{progress.total} "
        f"({progress.percent}%) ok={progress.succeeded} failed={progress.failed}",
        file=sys.stderr,
    )


async def _capture(queue: CaptureQueue, args: argparse.Namespace) -> None:
    photo = Path(args.photo).read_bytes()
    item = await queue.capture(
        task_id=args.task,
        job_id=args.job,
        worker_id=args.worker,
        photo=photo,
        captured_at=args.captured_at,
        latitude=args.lat,
        longitude=args.lng,
        gps_accuracy_m=args.accuracy,
        evidence_type=args.type,
        photo_stage=args.stage,
        notes=args.notes,
    )
    _emit({"id": item.id, "content_hash": item.content_hash, "captured_at": item.captured_at})


async def _sync(queue: CaptureQueue, settings: Settings) -> None:
    if not settings.object_store.endpoint_url:
        raise WorkProofError("OBJECT_STORE_ENDPOINT_URL must be set to sync evidence")
    record_store = RecordStoreClient(settings.record_store)
    try:
        uploader = RemoteEvidenceUploader(
            S3ObjectStore(settings.object_store),
            EvidenceRepository(record_store, settings.record_store),
        )
        engine = SyncEngine(queue, uploader, settings.sync, on_progress=_print_progress)
        result = await engine.sync_all()
    finally:
        await record_store.close()
    _emit(dataclasses.asdict(result))


async def _run(args: argparse.Namespace) -> None:
    settings = get_settings()
    engine = get_engine()
    queue = CaptureQueue(engine, settings.queue)
    try:
        await queue.initialize()
        if args.command == "capture":
            await _capture(queue, args)
        elif args.command == "sync":
            await _sync(queue, settings)
        elif args.command == "stats":
            _emit((await queue.stats()).to_dict())
        elif args.command == "failed":
            items = await queue.list_failed()
            _emit(
                {
                    "failed": [
                        {"id": i.id, "retry_count": i.retry_count, "last_error": i.last_error}
                        for i in items
                    ]
                }
            )
        elif args.command == "retry-failed":
            _emit({"requeued": await queue.retry_failed(args.ids or None)})
        elif args.command == "purge":
            _emit({"purged": await queue.purge_synced()})
    finally:
        await reset_engine()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="workproof-sync", description=__doc__.splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    capture = commands.add_parser("capture", help="Queue a photo as evidence")
    capture.add_argument("photo", help="Path to the image file")
    capture.add_argument("--task", required=True)
    capture.add_argument("--job", required=True)
    capture.add_argument("--worker", required=True)
    capture.add_argument("--captured-at", default=None, help="ISO-8601 UTC; defaults to now")
    capture.add_argument("--lat", type=float, default=None)
    capture.add_argument("--lng", type=float, default=None)
    capture.add_argument("--accuracy", type=float, default=None, help="GPS accuracy in metres")
    capture.add_argument(
        "--type", default=EvidenceType.PHOTO, choices=[t.value for t in EvidenceType]
    )
    capture.add_argument("--stage", default=None, choices=[s.value for s in PhotoStage])
    capture.add_argument("--notes", default=None)

    commands.add_parser("sync", help="Upload pending evidence")
    commands.add_parser("stats", help="Show queue usage")
    commands.add_parser("failed", help="List items that exhausted their retries")
    retry = commands.add_parser("retry-failed", help="Requeue failed items")
    retry.add_argument("ids", nargs="*", help="Item ids; all failed items when omitted")
    commands.add_parser("purge", help="Delete confirmed items")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        asyncio.run(_run(args))
    except WorkProofError as exc:
        logger.error("Command failed", command=args.command, error=exc.message, code=exc.code)
        _emit({"error": exc.code, "detail": exc.message, **(exc.details or {})})
        sys.exit(1)


if __name__ == "__main__":
    main()
