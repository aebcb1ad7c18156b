"""Audit pack assembly and lifecycle.

``generate`` materialises the current evidence set of a job into a named,
hashed snapshot. Verification later recomputes against live evidence, so any
change made after generation shows up as a hash mismatch.

Callers are expected to have checked job ownership already.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

import structlog

from workproof.core.errors import NotFoundError, ValidationError
from workproof.core.metrics import workproof_audit_packs_generated_total
from workproof.persistence.evidence_repository import EvidenceRepository
from workproof.persistence.records import AuditPackRecord, JobRecord, RemoteEvidence, TaskRecord
from workproof.utils.clock import parse_iso, utc_now_iso
from workproof.utils.hashing import pack_hash

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


@dataclass(frozen=True)
class GeneratedPack:
    pack: AuditPackRecord
    job: JobRecord
    task_count: int
    completed_tasks: int


@dataclass(frozen=True)
class TaskEvidence:
    task: TaskRecord
    evidence: list[RemoteEvidence] = field(default_factory=list)


@dataclass(frozen=True)
class FullPack:
    """Everything a document renderer needs for one pack."""

    pack: AuditPackRecord
    job: JobRecord
    tasks: list[TaskEvidence]

    @property
    def evidence_count(self) -> int:
        return sum(len(t.evidence) for t in self.tasks)


def pack_title(job: JobRecord, generated_at: str) -> str:
    day = parse_iso(generated_at).strftime("%d/%m/%Y")
    return f"Audit Pack - {job.client_name or job.display_title} - {day}"


class AuditPackAssembler:
    def __init__(self, repository: EvidenceRepository) -> None:
        self._repository = repository

    async def generate(self, job_id: str) -> GeneratedPack:
        """Snapshot the job's evidence into a new audit pack."""
        job = await self._require_job(job_id)
        tasks, evidence = await self._repository.list_job_evidence(job.id)

        generated_at = utc_now_iso()
        digest = pack_hash(
            (e.content_hash for e in evidence if e.content_hash),
            job.id,
            job.display_title,
            generated_at,
        )
        pack = await self._repository.create_pack(
            job_id=job.id,
            title=pack_title(job, generated_at),
            generated_at=generated_at,
            evidence_count=len(evidence),
            pack_hash=digest,
        )

        workproof_audit_packs_generated_total.inc()
        unhashed = sum(1 for e in evidence if not e.content_hash)
        logger.info(
            "Audit pack generated",
            pack_id=pack.id,
            job_id=job.id,
            evidence_count=len(evidence),
            unhashed_evidence=unhashed,
        )
        return GeneratedPack(
            pack=pack,
            job=job,
            task_count=len(tasks),
            completed_tasks=sum(1 for t in tasks if t.is_completed),
        )

    async def list_for_job(self, job_id: str) -> list[AuditPackRecord]:
        await self._require_job(job_id)
        return await self._repository.list_packs_for_job(job_id)

    async def get(self, pack_id: str) -> AuditPackRecord:
        pack = await self._repository.get_pack(pack_id)
        if pack is None:
            raise NotFoundError("Pack not found", details={"pack_id": pack_id})
        return pack

    async def get_full(self, pack_id: str) -> FullPack:
        """Pack, job and every task with its evidence, for document rendering."""
        pack = await self.get(pack_id)
        if not pack.job_id:
            raise NotFoundError("Pack has no associated job", details={"pack_id": pack_id})
        job = await self._require_job(pack.job_id)
        tasks, evidence = await self._repository.list_job_evidence(job.id)

        by_task: dict[str, list[RemoteEvidence]] = {t.id: [] for t in tasks}
        for item in evidence:
            if item.task_id in by_task:
                by_task[item.task_id].append(item)
        for items in by_task.values():
            items.sort(key=lambda e: e.captured_at or "")

        return FullPack(
            pack=pack,
            job=job,
            tasks=[TaskEvidence(task=t, evidence=by_task[t.id]) for t in tasks],
        )

    async def mark_downloaded(self, pack_id: str) -> AuditPackRecord:
        await self.get(pack_id)
        pack = await self._repository.update_pack(pack_id, downloaded_at=utc_now_iso())
        logger.info("Audit pack downloaded", pack_id=pack_id)
        return pack

    async def share(self, pack_id: str, email: str) -> AuditPackRecord:
        email = (email or "").strip()
        if not email:
            raise ValidationError("Missing required field: email")
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format")
        await self.get(pack_id)
        pack = await self._repository.update_pack(pack_id, shared_with=email)
        logger.info("Audit pack shared", pack_id=pack_id)
        return pack

    async def _require_job(self, job_id: str) -> JobRecord:
        job = await self._repository.get_job(job_id)
        if job is None:
            raise NotFoundError("Job not found", details={"job_id": job_id})
        return job
