"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Ingestion metrics
events_ingested = Counter(
    "auditchain_events_ingested_total",
    "Audit events accepted, by the tier that produced their hash",
    ["source"],
)

events_rejected = Counter(
    "auditchain_events_rejected_total",
    "Audit events rejected by validation",
)

ingest_duration = Histogram(
    "auditchain_ingest_duration_seconds",
    "Batch ingestion duration",
)

# Degraded-mode metrics
delegate_failures = Counter(
    "auditchain_delegate_failures_total",
    "Ledger delegate calls that fell back to local chaining",
)

persist_failures = Counter(
    "auditchain_persist_failures_total",
    "Audit store failures, by operation",
    ["operation"],
)

chain_conflicts = Counter(
    "auditchain_chain_conflicts_total",
    "Local chain writes that lost a race on the session sequence",
)
