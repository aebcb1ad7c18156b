"""Request-scoped correlation context.

The HTTP middleware stores the request id here; outbound record store calls
read it back so a verification request can be followed across services.
"""

import uuid
from contextvars import ContextVar

import structlog

REQUEST_ID_HEADER = "X-Request-ID"
TRACEPARENT_HEADER = "traceparent"

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)
trace_parent_ctx: ContextVar[str | None] = ContextVar("trace_parent", default=None)


def get_request_id() -> str | None:
    return request_id_ctx.get()


def set_request_id(value: str | None) -> str:
    """Adopt ``value`` (or a fresh uuid4) as the request id, also for log lines."""
    request_id = value or str(uuid.uuid4())
    request_id_ctx.set(request_id)
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def set_trace_parent(value: str | None) -> None:
    trace_parent_ctx.set(value or None)


def clear_tracing_context() -> None:
    for var in (request_id_ctx, trace_parent_ctx):
        var.set(None)
    structlog.contextvars.unbind_contextvars("request_id")


def get_tracing_headers() -> dict[str, str]:
    """Correlation headers for calls made on behalf of the current request."""
    pairs = (
        (REQUEST_ID_HEADER, request_id_ctx.get()),
        (TRACEPARENT_HEADER, trace_parent_ctx.get()),
    )
    return {name: value for name, value in pairs if value}
