"""Public verification response."""

from __future__ import annotations

from workproof.schemas.v1.common import CamelModel
from workproof.services.verification_service import HashStatus, VerificationResult

# Centroid precision on the public surface (about one metre).
CENTROID_DECIMALS = 5


class GpsSummaryResponse(CamelModel):
    latitude: float
    longitude: float
    radius: int


class EvidenceSummaryResponse(CamelModel):
    before_count: int
    during_count: int
    after_count: int
    custom_count: int


class ItemCheckResponse(CamelModel):
    performed: bool
    checked: int
    tampered: int
    missing: int
    unverifiable: int


class VerificationResponse(CamelModel):
    verified: bool
    pack_id: str
    job_title: str
    client_name: str | None = None
    address: str | None = None
    postcode: str | None = None
    generated_at: str | None = None
    evidence_count: int
    recorded_evidence_count: int
    hash_valid: bool
    hash_status: HashStatus
    pack_hash: str | None
    gps_verified: bool
    gps_summary: GpsSummaryResponse | None = None
    evidence_summary: EvidenceSummaryResponse
    item_check: ItemCheckResponse
    findings: list[str]

    @classmethod
    def from_result(cls, result: VerificationResult) -> VerificationResponse:
        gps = None
        if result.gps_summary is not None:
            gps = GpsSummaryResponse(
                latitude=round(result.gps_summary.latitude, CENTROID_DECIMALS),
                longitude=round(result.gps_summary.longitude, CENTROID_DECIMALS),
                radius=result.gps_summary.radius_meters,
            )
        summary = result.evidence_summary
        check = result.item_check
        return cls(
            verified=result.verified,
            pack_id=result.pack_id,
            job_title=result.job_title,
            client_name=result.client_name,
            address=result.address,
            postcode=result.postcode,
            generated_at=result.generated_at,
            evidence_count=result.evidence_count,
            recorded_evidence_count=result.recorded_evidence_count,
            hash_valid=result.hash_valid,
            hash_status=result.hash_status,
            pack_hash=result.pack_hash_display,
            gps_verified=result.gps_verified,
            gps_summary=gps,
            evidence_summary=EvidenceSummaryResponse(
                before_count=summary.before,
                during_count=summary.during,
                after_count=summary.after,
                custom_count=summary.custom,
            ),
            item_check=ItemCheckResponse(
                performed=check.performed,
                checked=check.checked,
                tampered=check.tampered,
                missing=check.missing,
                unverifiable=check.unverifiable,
            ),
            findings=[str(f) for f in result.findings],
        )
