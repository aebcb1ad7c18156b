"""Public audit pack verification.

Answers "is this evidence set intact, and is it geographically
self-consistent" for anyone holding a pack id, without trusting the worker
who submitted it.

A missing pack, job or linkage raises NotFoundError: that is "cannot
verify". Tampering and missing GPS fixes are findings on a successful
result: that is "verified, and it failed".
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from workproof.capture.models import EvidenceType, PhotoStage
from workproof.clients.object_store import ObjectStore
from workproof.core.config import VerificationConfig
from workproof.core.errors import NotFoundError
from workproof.core.metrics import (
    workproof_verification_latency_seconds,
    workproof_verifications_total,
)
from workproof.persistence.evidence_repository import EvidenceRepository
from workproof.persistence.records import AuditPackRecord, JobRecord, RemoteEvidence
from workproof.utils.geo import GpsSummary, gps_summary
from workproof.utils.hashing import pack_hash, truncate_hash, verify_item_hash

logger = structlog.get_logger(__name__)


class HashStatus(StrEnum):
    MATCH = "match"
    MISMATCH = "mismatch"
    # Packs generated before hashing existed. Counted as hash-valid for
    # compatibility, but reported as their own state.
    LEGACY_UNHASHED = "legacy_unhashed"


class Finding(StrEnum):
    PACK_HASH_MISMATCH = "pack_hash_mismatch"
    ITEM_HASH_MISMATCH = "item_hash_mismatch"
    PHOTO_MISSING = "photo_missing"
    LEGACY_UNHASHED = "legacy_unhashed"
    INCOMPLETE_GEO_DATA = "incomplete_geo_data"


@dataclass(frozen=True)
class EvidenceSummary:
    before: int = 0
    during: int = 0
    after: int = 0
    custom: int = 0


@dataclass(frozen=True)
class ItemCheck:
    """Outcome of recomputing each item's content hash from its stored photo."""

    performed: bool = False
    checked: int = 0
    tampered: int = 0
    missing: int = 0
    unverifiable: int = 0


@dataclass(frozen=True)
class VerificationResult:
    pack_id: str
    job_title: str
    client_name: str | None
    address: str | None
    postcode: str | None
    generated_at: str | None
    recorded_evidence_count: int
    evidence_count: int
    hash_valid: bool
    hash_status: HashStatus
    pack_hash: str
    gps_verified: bool
    gps_summary: GpsSummary | None
    evidence_summary: EvidenceSummary
    item_check: ItemCheck
    findings: list[Finding] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return self.hash_valid and self.gps_verified

    @property
    def pack_hash_display(self) -> str | None:
        return truncate_hash(self.pack_hash)


def summarize_stages(evidence: list[RemoteEvidence]) -> EvidenceSummary:
    """Counts by capture stage; additional evidence is counted as custom."""
    return EvidenceSummary(
        before=sum(1 for e in evidence if e.photo_stage == PhotoStage.BEFORE),
        during=sum(1 for e in evidence if e.photo_stage == PhotoStage.DURING),
        after=sum(1 for e in evidence if e.photo_stage == PhotoStage.AFTER),
        custom=sum(1 for e in evidence if e.evidence_type == EvidenceType.ADDITIONAL),
    )


def recompute_pack_hash(
    pack: AuditPackRecord, job: JobRecord, evidence: list[RemoteEvidence]
) -> str:
    """Pack hash over the live evidence set, using the pack's recorded generation time."""
    return pack_hash(
        (e.content_hash for e in evidence if e.content_hash),
        job.id,
        job.display_title,
        pack.generated_at or "",
    )


class VerificationService:
    """Recomputes pack and item hashes and summarises GPS consistency."""

    def __init__(
        self,
        repository: EvidenceRepository,
        object_store: ObjectStore | None,
        config: VerificationConfig,
    ) -> None:
        self._repository = repository
        self._object_store = object_store
        self._config = config

    async def verify(self, pack_id: str) -> VerificationResult:
        started = time.perf_counter()

        pack = await self._repository.get_pack(pack_id)
        if pack is None:
            raise NotFoundError("Pack not found", details={"pack_id": pack_id})
        if not pack.job_id:
            raise NotFoundError("Pack has no associated job", details={"pack_id": pack_id})
        job = await self._repository.get_job(pack.job_id)
        if job is None:
            raise NotFoundError("Job not found", details={"pack_id": pack_id})

        _tasks, evidence = await self._repository.list_job_evidence(job.id)

        findings: list[Finding] = []
        recomputed = recompute_pack_hash(pack, job, evidence)
        if not pack.pack_hash:
            hash_status = HashStatus.LEGACY_UNHASHED
            findings.append(Finding.LEGACY_UNHASHED)
        elif recomputed == pack.pack_hash.strip().lower():
            hash_status = HashStatus.MATCH
        else:
            hash_status = HashStatus.MISMATCH
            findings.append(Finding.PACK_HASH_MISMATCH)

        item_check = await self._check_items(evidence)
        if item_check.tampered:
            findings.append(Finding.ITEM_HASH_MISMATCH)
        if item_check.missing:
            findings.append(Finding.PHOTO_MISSING)

        hash_valid = (
            hash_status is not HashStatus.MISMATCH
            and item_check.tampered == 0
            and item_check.missing == 0
        )

        gps_verified = all(e.has_coordinates for e in evidence)
        if not gps_verified:
            findings.append(Finding.INCOMPLETE_GEO_DATA)
        summary = gps_summary(
            (e.latitude, e.longitude) for e in evidence if e.has_coordinates
        )

        result = VerificationResult(
            pack_id=pack.id,
            job_title=job.display_title,
            client_name=job.client_name,
            address=job.address,
            postcode=job.postcode,
            generated_at=pack.generated_at,
            recorded_evidence_count=pack.evidence_count,
            evidence_count=len(evidence),
            hash_valid=hash_valid,
            hash_status=hash_status,
            pack_hash=recomputed,
            gps_verified=gps_verified,
            gps_summary=summary,
            evidence_summary=summarize_stages(evidence),
            item_check=item_check,
            findings=findings,
        )

        verdict = "verified" if result.verified else "unverified"
        workproof_verifications_total.labels(verdict=verdict).inc()
        workproof_verification_latency_seconds.observe(time.perf_counter() - started)
        logger.info(
            "Pack verified",
            pack_id=pack.id,
            verdict=verdict,
            hash_status=str(hash_status),
            gps_verified=gps_verified,
            evidence_count=len(evidence),
            findings=[str(f) for f in findings],
        )
        return result

    async def _check_items(self, evidence: list[RemoteEvidence]) -> ItemCheck:
        if self._object_store is None or not self._config.recompute_item_hashes:
            return ItemCheck()

        semaphore = asyncio.Semaphore(self._config.fetch_concurrency)
        checkable = [
            e
            for e in evidence
            if e.content_hash and e.photo_ref and e.captured_at and e.worker_id
        ]

        async def check(item: RemoteEvidence) -> str:
            async with semaphore:
                data = await self._object_store.get_object(item.photo_ref)
            if data is None:
                logger.warning("Evidence photo missing", evidence_id=item.id)
                return "missing"
            if not verify_item_hash(data, item.captured_at, item.worker_id, item.content_hash):
                logger.warning("Evidence content hash mismatch", evidence_id=item.id)
                return "tampered"
            return "ok"

        outcomes = await asyncio.gather(*(check(e) for e in checkable))
        return ItemCheck(
            performed=True,
            checked=len(checkable),
            tampered=outcomes.count("tampered"),
            missing=outcomes.count("missing"),
            unverifiable=len(evidence) - len(checkable),
        )
