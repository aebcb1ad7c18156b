"""Unit tests for tracing context helpers."""

import structlog

from workproof.core.tracing import (
    clear_tracing_context,
    get_request_id,
    get_tracing_headers,
    set_request_id,
    set_trace_parent,
)

TRACEPARENT = "00-aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa-bbbbbbbbbbbbbbbb-01"


def test_set_request_id_generates_when_missing():
    clear_tracing_context()
    generated = set_request_id(None)
    assert get_request_id() == generated


def test_set_request_id_binds_structlog_context():
    clear_tracing_context()
    set_request_id("req-456")
    assert structlog.contextvars.get_contextvars()["request_id"] == "req-456"
    clear_tracing_context()
    assert "request_id" not in structlog.contextvars.get_contextvars()


def test_get_tracing_headers_includes_request_id_and_traceparent():
    clear_tracing_context()
    set_request_id("req-123")
    set_trace_parent(TRACEPARENT)
    headers = get_tracing_headers()
    assert headers == {"X-Request-ID": "req-123", "traceparent": TRACEPARENT}
    clear_tracing_context()


def test_clear_tracing_context_resets_headers():
    set_request_id("req-to-clear")
    set_trace_parent(TRACEPARENT)
    clear_tracing_context()
    assert get_request_id() is None
    assert get_tracing_headers() == {}
