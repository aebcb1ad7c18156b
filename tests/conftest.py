"""Root conftest for tests."""

import os
from itertools import count
from typing import Any

import pytest
import pytest_asyncio

if os.getenv("APP_ENV", "").strip().lower() == "prod":
    raise RuntimeError("Refusing to run tests with APP_ENV=prod")

os.environ["APP_ENV"] = "local"
os.environ["SECURITY_SKIP_JWT_VALIDATION"] = "true"
os.environ.setdefault("METRICS_TOKEN", "test-metrics-token")
os.environ.setdefault("QUEUE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    dir_marker_map = {
        "unit": pytest.mark.unit,
        "smoke": pytest.mark.smoke,
        "e2e": pytest.mark.e2e,
    }
    for item in items:
        test_path = str(item.fspath)
        for dir_name, marker in dir_marker_map.items():
            if f"/{dir_name}/" in test_path or f"\\{dir_name}\\" in test_path:
                item.add_marker(marker)
                break


# ── In-memory stand-ins for the remote stores ────────────────────


class FakeRecordStore:
    """Dict-backed RecordStoreClient with the same async surface.

    ``create_errors`` / ``list_errors`` are consumed one per call, letting
    tests script transient failures.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.create_calls: list[tuple[str, dict[str, Any], str | None]] = []
        self.create_errors: list[Exception] = []
        self.list_errors: list[Exception] = []
        self.list_calls = 0
        self.healthy = True
        self.closed = False
        self._ids = count(1)

    def seed(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        self.tables.setdefault(table, {})[record["id"]] = dict(record)
        return record

    async def get_record(self, table: str, record_id: str) -> dict[str, Any] | None:
        record = self.tables.get(table, {}).get(record_id)
        return dict(record) if record else None

    async def list_records(
        self,
        table: str,
        *,
        filter: dict[str, Any] | None = None,
        sort: list[dict[str, str]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self.list_calls += 1
        if self.list_errors:
            raise self.list_errors.pop(0)
        records = [dict(r) for r in self.tables.get(table, {}).values()]
        for clause in (filter or {}).get("fields", []):
            records = [r for r in records if r.get(clause["field"]) == clause["value"]]
        return records[:limit] if limit else records

    async def find_by_field(self, table: str, field: str, value: Any) -> dict[str, Any] | None:
        for record in self.tables.get(table, {}).values():
            if record.get(field) == value:
                return dict(record)
        return None

    async def create_record(
        self,
        table: str,
        fields: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        self.create_calls.append((table, fields, idempotency_key))
        if self.create_errors:
            raise self.create_errors.pop(0)
        record_id = f"{table}-{next(self._ids)}"
        record = {**fields, "id": record_id}
        self.tables.setdefault(table, {})[record_id] = record
        return dict(record)

    async def update_record(
        self, table: str, record_id: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        from workproof.core.errors import NotFoundError

        record = self.tables.get(table, {}).get(record_id)
        if record is None:
            raise NotFoundError("Record store resource not found")
        record.update(fields)
        return dict(record)

    async def health_check(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.closed = True


class FakeObjectStore:
    """Dict-backed ObjectStore. ``put_errors`` are consumed one per call."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.put_errors: list[Exception] = []
        self.put_calls: list[tuple[str, str]] = []

    async def put_object(self, key: str, data: bytes, *, content_type: str = "image/jpeg") -> str:
        self.put_calls.append((key, content_type))
        if self.put_errors:
            raise self.put_errors.pop(0)
        self.objects[key] = bytes(data)
        return key

    async def get_object(self, key: str) -> bytes | None:
        return self.objects.get(key)


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def repository(record_store: FakeRecordStore):
    from workproof.core.config import RecordStoreConfig
    from workproof.persistence.evidence_repository import EvidenceRepository

    return EvidenceRepository(record_store, RecordStoreConfig())


@pytest.fixture
def seed_job(record_store: FakeRecordStore):
    """Seed a worker, a job they own and one task under it."""

    def _seed(
        job_id: str = "job-1",
        *,
        title: str | None = "Boiler Service",
        client_name: str | None = "Acme Ltd",
        owner_record_id: str = "user-rec-1",
        external_id: str = "local-dev-worker",
        task_ids: tuple[str, ...] = ("task-1",),
    ) -> None:
        record_store.seed("users", {"id": owner_record_id, "external_id": external_id})
        record_store.seed(
            "jobs",
            {
                "id": job_id,
                "title": title,
                "client_name": client_name,
                "site_address": {"location_address": "1 High Street, Bristol"},
                "postcode": "BS1 4DJ",
                "user": [owner_record_id],
            },
        )
        for task_id in task_ids:
            record_store.seed(
                "tasks",
                {"id": task_id, "job": [job_id], "title": f"Task {task_id}", "status": "Completed"},
            )

    return _seed


@pytest_asyncio.fixture
async def queue_engine(tmp_path):
    """File-backed SQLite engine for the capture queue, disposed after the test."""
    from workproof.core.config import QueueConfig
    from workproof.core.database import create_async_engine

    engine = create_async_engine(
        QueueConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    )
    yield engine
    await engine.dispose()


@pytest.fixture
def seed_evidence(record_store: FakeRecordStore, object_store: FakeObjectStore):
    """Seed a synced evidence record and, by default, its photo object."""
    from workproof.utils.hashing import item_hash

    def _seed(
        evidence_id: str,
        *,
        task_id: str = "task-1",
        photo: bytes = b"photo-bytes",
        captured_at: str = "2026-01-24T09:00:00.000Z",
        worker_id: str = "W1",
        latitude: float | None = None,
        longitude: float | None = None,
        photo_stage: str | None = None,
        evidence_type: str = "photo",
        hashed: bool = True,
        store_photo: bool = True,
    ) -> dict[str, Any]:
        photo_ref = f"evidence/{worker_id}/{evidence_id}.jpg"
        if store_photo:
            object_store.objects[photo_ref] = photo
        record: dict[str, Any] = {
            "id": evidence_id,
            "task": [task_id],
            "capture_id": f"cap-{evidence_id}",
            "photo_hash": item_hash(photo, captured_at, worker_id) if hashed else None,
            "photo_url": photo_ref,
            "captured_at": captured_at,
            "worker": worker_id,
            "latitude": latitude,
            "longitude": longitude,
            "photo_stage": photo_stage,
            "evidence_type": evidence_type,
        }
        return record_store.seed("evidence", record)

    return _seed
