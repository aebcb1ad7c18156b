"""Health check routes.

The API process serves verification and pack generation straight from the
record store, so that is the dependency readiness reports on. The capture
queue lives on the device running ``workproof-sync`` and is not checked here.
"""

import logging

from fastapi import APIRouter, Request

from workproof.core.metrics import workproof_dependency_failures_total
from workproof.schemas.v1.health import HealthResponse, ReadyResponse

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic health check."""
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=ReadyResponse)
async def readiness_check(request: Request):
    """Readiness check with dependency status."""
    record_store_ok = False
    record_store = getattr(request.app.state, "record_store", None)
    if record_store is None:
        logger.warning("Record store client not available on app.state for readiness check")
    else:
        record_store_ok = await record_store.health_check()
    if not record_store_ok:
        workproof_dependency_failures_total.labels(dependency="record_store").inc()

    return ReadyResponse(
        status="ready" if record_store_ok else "degraded",
        dependencies={
            "record_store": record_store_ok,
            "object_store": getattr(request.app.state, "object_store", None) is not None,
        },
    )


@router.get("/health/live", response_model=HealthResponse)
async def liveness_check():
    """Liveness check."""
    return HealthResponse(status="alive")
