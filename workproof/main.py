"""WorkProof Evidence Service.

Serves audit pack generation for authenticated workers and public,
unauthenticated verification of audit pack integrity.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from workproof.api.middleware import register_middleware, request_log_context
from workproof.api.routes.audit_packs import router as audit_packs_router
from workproof.api.routes.health import router as health_router
from workproof.api.routes.monitoring import router as monitoring_router
from workproof.api.routes.verify import router as verify_router
from workproof.clients.object_store import S3ObjectStore
from workproof.clients.record_store_client import RecordStoreClient
from workproof.core.auth import close_jwks_provider
from workproof.core.config import AppEnvironment, Settings, get_settings
from workproof.core.errors import WorkProofError, get_status_code
from workproof.core.logging import setup_logging
from workproof.persistence.evidence_repository import EvidenceRepository
from workproof.services.ownership import OwnershipService

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Build the record store, object store and ownership cache once per process."""
    settings = get_settings()
    setup_logging()
    logger.info(
        "Evidence service starting",
        env=settings.app.env.value,
        version=settings.app.version,
        record_store=settings.record_store.base_url,
        object_store_configured=bool(settings.object_store.endpoint_url),
    )

    record_store = RecordStoreClient(settings.record_store)
    repository = EvidenceRepository(record_store, settings.record_store)
    object_store = None
    if settings.object_store.endpoint_url:
        object_store = S3ObjectStore(settings.object_store)
    else:
        logger.warning("Object store not configured; per-item photo checks are disabled")

    app.state.settings = settings
    app.state.record_store = record_store
    app.state.repository = repository
    app.state.object_store = object_store
    app.state.ownership = OwnershipService.from_config(repository, settings.cache)

    try:
        yield
    finally:
        await record_store.close()
        await close_jwks_provider()
        logger.info("Evidence service stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    expose_docs = settings.app.env != AppEnvironment.PROD

    app = FastAPI(
        title="WorkProof Evidence Service",
        description="Tamper-evident audit packs for field work evidence.",
        version=settings.app.version,
        lifespan=lifespan,
        docs_url="/docs" if expose_docs else None,
        redoc_url="/redoc" if expose_docs else None,
        openapi_url="/openapi.json" if expose_docs else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_allowed_origins,
        allow_credentials=settings.security.cors_allow_credentials,
        allow_methods=settings.security.cors_allow_methods,
        allow_headers=settings.security.cors_allow_headers,
    )

    for router in (monitoring_router, health_router, verify_router, audit_packs_router):
        app.include_router(router, prefix=settings.app.api_prefix)

    setup_telemetry(app, settings)
    register_middleware(app, settings.security)

    @app.exception_handler(WorkProofError)
    async def workproof_error_handler(request: Request, exc: WorkProofError) -> JSONResponse:
        """Map domain errors to their status code with a ``detail``/``errors`` body."""
        status_code = get_status_code(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "Request failed",
            **request_log_context(request),
            status_code=status_code,
            error_code=exc.code,
            error=exc.message,
        )
        body: dict = {"detail": exc.message}
        if exc.details:
            body["errors"] = exc.details
        return JSONResponse(status_code=status_code, content=body)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception", **request_log_context(request), error=str(exc))
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    return app


def setup_telemetry(app: FastAPI, settings: Settings) -> None:
    """Export traces over OTLP when an endpoint is configured."""
    if not settings.observability.otlp_endpoint:
        return

    provider = TracerProvider(
        resource=Resource(attributes={SERVICE_NAME: settings.observability.service_name})
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.observability.otlp_endpoint,
                insecure=settings.observability.otlp_insecure,
            )
        )
    )
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app)


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    local = settings.app.env == AppEnvironment.LOCAL

    uvicorn.run(
        "workproof.main:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        reload=local,
        workers=1 if local else settings.server.workers,
        log_level=settings.app.log_level.lower(),
    )


if __name__ == "__main__":
    run()
