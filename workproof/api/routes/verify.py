"""Public pack verification route.

Anyone holding a pack id may verify it; no authentication is required.
"""

from fastapi import APIRouter

from workproof.core.dependencies import Verifier
from workproof.schemas.v1.verify import VerificationResponse

router = APIRouter(prefix="/verify", tags=["verify"])


@router.get("/{pack_id}", response_model=VerificationResponse)
async def verify_pack(pack_id: str, verifier: Verifier):
    """Recompute the pack's integrity hash and summarise its evidence."""
    result = await verifier.verify(pack_id)
    return VerificationResponse.from_result(result)
