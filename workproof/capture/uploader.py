"""Upload step used by the sync engine: photo to object storage, then the record."""

from __future__ import annotations

import re

from workproof.capture.models import EvidenceItem
from workproof.capture.sync_engine import UploadReceipt
from workproof.clients.object_store import ObjectStore
from workproof.core.errors import ValidationError
from workproof.persistence.evidence_repository import EvidenceRepository

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def _key_part(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value) or "_"


def sniff_image(data: bytes) -> tuple[str, str]:
    """Return (content type, file extension) for the photo bytes."""
    if data.startswith(PNG_MAGIC):
        return "image/png", "png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp", "webp"
    return "image/jpeg", "jpg"


def evidence_object_key(item: EvidenceItem, extension: str = "jpg") -> str:
    """Deterministic object key, so a retried upload overwrites rather than duplicates."""
    return "/".join(
        [
            "evidence",
            _key_part(item.worker_id),
            _key_part(item.job_id),
            _key_part(item.task_id),
            f"{_key_part(item.id)}.{extension}",
        ]
    )


class RemoteEvidenceUploader:
    """Puts the photo bytes, then creates the evidence record idempotently."""

    def __init__(self, object_store: ObjectStore, repository: EvidenceRepository) -> None:
        self._object_store = object_store
        self._repository = repository

    async def upload(self, item: EvidenceItem) -> UploadReceipt:
        if not item.photo:
            raise ValidationError("Queued evidence has no photo bytes", details={"id": item.id})

        content_type, extension = sniff_image(item.photo)
        key = evidence_object_key(item, extension)
        await self._object_store.put_object(key, item.photo, content_type=content_type)
        record_id = await self._repository.create_evidence(item, photo_ref=key)
        return UploadReceipt(photo_ref=key, record_id=record_id)
