"""Prometheus scrape endpoint."""

import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from workproof.core.config import get_settings

router = APIRouter(tags=["Monitoring"])
logger = logging.getLogger(__name__)


def require_metrics_token(request: Request) -> None:
    """Only scrapers holding the shared ``X-Metrics-Token`` secret get metrics."""
    expected = get_settings().metrics_token
    if not expected:
        logger.error(
            "Metrics scrape refused: METRICS_TOKEN is not set",
            extra={"security_event": True, "event_type": "METRICS_NOT_CONFIGURED"},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Metrics token not configured",
        )

    provided = request.headers.get("X-Metrics-Token") or ""
    if not hmac.compare_digest(provided, expected):
        logger.warning(
            "Metrics scrape with a bad token",
            extra={
                "security_event": True,
                "event_type": "METRICS_ACCESS_DENIED",
                "client_ip": request.client.host if request.client else "unknown",
            },
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid metrics token")


@router.get("/metrics", dependencies=[Depends(require_metrics_token)])
async def get_metrics() -> Response:
    """Queue, sync, verification and record store metrics in text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
