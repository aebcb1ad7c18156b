"""Audit pack request and response schemas."""

from __future__ import annotations

from pydantic import Field

from workproof.persistence.records import AuditPackRecord, RemoteEvidence
from workproof.schemas.v1.common import CamelModel
from workproof.services.audit_pack_service import FullPack, GeneratedPack
from workproof.utils.hashing import truncate_hash


class GeneratePackRequest(CamelModel):
    job_id: str = Field(min_length=1)


class SharePackRequest(CamelModel):
    email: str = ""


class AuditPackResponse(CamelModel):
    id: str
    title: str | None = None
    job_id: str | None = None
    generated_at: str | None = None
    evidence_count: int = 0
    pack_hash: str | None = None
    downloaded_at: str | None = None
    shared_with: str | None = None

    @classmethod
    def from_record(cls, pack: AuditPackRecord) -> AuditPackResponse:
        return cls(
            id=pack.id,
            title=pack.title,
            job_id=pack.job_id,
            generated_at=pack.generated_at,
            evidence_count=pack.evidence_count,
            pack_hash=pack.pack_hash,
            downloaded_at=pack.downloaded_at,
            shared_with=pack.shared_with,
        )


class GeneratedPackResponse(AuditPackResponse):
    job_title: str
    task_count: int
    completed_tasks: int

    @classmethod
    def from_generated(cls, generated: GeneratedPack) -> GeneratedPackResponse:
        base = AuditPackResponse.from_record(generated.pack)
        return cls(
            **base.model_dump(),
            job_title=generated.job.display_title,
            task_count=generated.task_count,
            completed_tasks=generated.completed_tasks,
        )


class AuditPackListResponse(CamelModel):
    packs: list[AuditPackResponse]
    total: int = 0


class EvidenceEntry(CamelModel):
    id: str
    photo_ref: str | None = None
    photo_stage: str | None = None
    evidence_type: str | None = None
    captured_at: str | None = None
    content_hash: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    gps_accuracy: float | None = None
    notes: str | None = None

    @classmethod
    def from_record(cls, evidence: RemoteEvidence) -> EvidenceEntry:
        return cls(
            id=evidence.id,
            photo_ref=evidence.photo_ref,
            photo_stage=evidence.photo_stage,
            evidence_type=evidence.evidence_type,
            captured_at=evidence.captured_at,
            content_hash=truncate_hash(evidence.content_hash),
            latitude=evidence.latitude,
            longitude=evidence.longitude,
            gps_accuracy=evidence.gps_accuracy_m,
            notes=evidence.notes,
        )


class TaskEntry(CamelModel):
    id: str
    title: str | None = None
    status: str | None = None
    evidence: list[EvidenceEntry]


class JobEntry(CamelModel):
    id: str
    title: str
    client_name: str | None = None
    address: str | None = None
    postcode: str | None = None


class FullPackResponse(CamelModel):
    pack: AuditPackResponse
    pack_hash_display: str | None = None
    job: JobEntry
    tasks: list[TaskEntry]
    evidence_count: int

    @classmethod
    def from_full(cls, full: FullPack) -> FullPackResponse:
        return cls(
            pack=AuditPackResponse.from_record(full.pack),
            pack_hash_display=truncate_hash(full.pack.pack_hash),
            job=JobEntry(
                id=full.job.id,
                title=full.job.display_title,
                client_name=full.job.client_name,
                address=full.job.address,
                postcode=full.job.postcode,
            ),
            tasks=[
                TaskEntry(
                    id=entry.task.id,
                    title=entry.task.title,
                    status=entry.task.status,
                    evidence=[EvidenceEntry.from_record(e) for e in entry.evidence],
                )
                for entry in full.tasks
            ],
            evidence_count=full.evidence_count,
        )


class SharePackResponse(CamelModel):
    success: bool
    message: str
