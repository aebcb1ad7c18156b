"""HTTP middleware installed by the app factory."""

import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from workproof.core.config import SecurityConfig
from workproof.core.tracing import clear_tracing_context, set_request_id, set_trace_parent

logger = structlog.get_logger(__name__)

API_CSP_POLICY = (
    "default-src 'none'; frame-ancestors 'none'; base-uri 'none'; "
    "form-action 'none'; object-src 'none'"
)
DOCS_CSP_POLICY = (
    "default-src 'self'; img-src 'self' data:; style-src 'self' 'unsafe-inline'; "
    "script-src 'self' 'unsafe-inline'; frame-ancestors 'none'; object-src 'none'; "
    "base-uri 'self'"
)
HSTS_POLICY = "max-age=63072000; includeSubDomains; preload"
DOCS_PREFIXES = ("/docs", "/redoc", "/openapi.json")
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def request_log_context(request: Request) -> dict[str, str]:
    """Fields attached to every log line about an HTTP request."""
    return {
        "path": request.url.path,
        "method": request.method,
        "request_id": getattr(request.state, "request_id", "")
        or request.headers.get("x-request-id", ""),
        "client_host": request.client.host if request.client else "",
    }


def _content_length(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def register_middleware(app: FastAPI, security: SecurityConfig) -> None:
    """Install request correlation, size limits and response hardening.

    Starlette runs the middleware added last first, so security headers wrap
    everything, including 413 responses from the size guard.
    """

    @app.middleware("http")
    async def correlate_request(request: Request, call_next):
        # The id flows into structlog context and outbound record store headers.
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        set_request_id(request_id)
        set_trace_parent(request.headers.get("traceparent"))
        request.state.request_id = request_id
        try:
            response = await call_next(request)
        finally:
            clear_tracing_context()
        response.headers["X-Request-ID"] = request_id
        return response

    @app.middleware("http")
    async def limit_payload_size(request: Request, call_next):
        declared = request.headers.get("content-length")
        size = _content_length(declared)
        if declared and size is None:
            logger.warning(
                "Unparseable Content-Length header",
                **request_log_context(request),
                content_length=declared,
            )
        if size is None and request.method in BODY_METHODS:
            size = len(await request.body())
        if size is not None and size > security.max_request_size_bytes:
            logger.warning(
                "Request body over limit",
                **request_log_context(request),
                size_bytes=size,
                limit_bytes=security.max_request_size_bytes,
            )
            return JSONResponse(status_code=413, content={"detail": "Request payload too large"})

        response = await call_next(request)

        response_size = _content_length(response.headers.get("content-length"))
        if response_size is not None and response_size > security.max_response_size_bytes:
            logger.error(
                "Response body over limit",
                **request_log_context(request),
                size_bytes=response_size,
                limit_bytes=security.max_response_size_bytes,
            )
            return JSONResponse(status_code=500, content={"detail": "Response payload too large"})
        return response

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        csp = DOCS_CSP_POLICY if request.url.path.startswith(DOCS_PREFIXES) else API_CSP_POLICY
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Strict-Transport-Security", HSTS_POLICY)
        response.headers.setdefault("Content-Security-Policy", csp)
        return response
