"""Prometheus metrics for the evidence pipeline."""

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# Capture queue
# ---------------------------------------------------------------------------

workproof_capture_enqueued_total = Counter(
    "workproof_capture_enqueued_total",
    "Evidence items accepted into the local capture queue",
)

workproof_capture_rejected_total = Counter(
    "workproof_capture_rejected_total",
    "Evidence items rejected by the local capture queue",
    ["reason"],
)

workproof_queue_pending_items = Gauge(
    "workproof_queue_pending_items",
    "Pending items observed at the end of the last sync pass",
)

# ---------------------------------------------------------------------------
# Sync engine
# ---------------------------------------------------------------------------

workproof_sync_attempts_total = Counter(
    "workproof_sync_attempts_total",
    "Upload attempts by outcome",
    ["outcome"],
)

workproof_sync_pass_latency_seconds = Histogram(
    "workproof_sync_pass_latency_seconds",
    "Wall-clock duration of a sync pass",
    buckets=[0.5, 1, 2.5, 5, 10, 30, 60, 120, 300],
)

# ---------------------------------------------------------------------------
# Verification and audit packs
# ---------------------------------------------------------------------------

workproof_verifications_total = Counter(
    "workproof_verifications_total",
    "Audit pack verifications by verdict",
    ["verdict"],
)

workproof_verification_latency_seconds = Histogram(
    "workproof_verification_latency_seconds",
    "Latency of audit pack verification",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

workproof_audit_packs_generated_total = Counter(
    "workproof_audit_packs_generated_total",
    "Audit packs generated",
)

# ---------------------------------------------------------------------------
# Remote stores
# ---------------------------------------------------------------------------

workproof_record_store_requests_total = Counter(
    "workproof_record_store_requests_total",
    "Record store requests by method and status code",
    ["method", "status_code"],
)

workproof_record_store_latency_seconds = Histogram(
    "workproof_record_store_latency_seconds",
    "Record store request latency",
    ["method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

workproof_dependency_failures_total = Counter(
    "workproof_dependency_failures_total",
    "Failures talking to external dependencies",
    ["dependency"],
)
