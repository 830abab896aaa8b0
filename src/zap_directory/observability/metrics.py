"""Prometheus metrics endpoint.

Exposes directory service metrics for monitoring via Grafana.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
)

# ---------------------------------------------------------------------------
# System metrics
# ---------------------------------------------------------------------------

SYSTEM_INFO = Info("zap_directory", "Zap directory service information")

# ---------------------------------------------------------------------------
# Ingestion metrics
# ---------------------------------------------------------------------------

ZAPS_INGESTED = Counter(
    "zap_directory_zaps_ingested_total",
    "New zap receipts added to the store",
)

EVENTS_REJECTED = Counter(
    "zap_directory_events_rejected_total",
    "Events that failed id/signature verification",
)

# ---------------------------------------------------------------------------
# Scheduling metrics
# ---------------------------------------------------------------------------

TRIGGERS_TOTAL = Counter(
    "zap_directory_triggers_total",
    "Recompute triggers emitted",
    ["source"],
)

TRIGGERS_COALESCED = Counter(
    "zap_directory_triggers_coalesced_total",
    "Triggers dropped because one was already pending",
    ["source"],
)

# ---------------------------------------------------------------------------
# Cycle metrics
# ---------------------------------------------------------------------------

CYCLES_TOTAL = Counter(
    "zap_directory_cycles_total",
    "Publish cycles by outcome",
    ["outcome"],
)

CYCLE_DURATION = Histogram(
    "zap_directory_cycle_duration_seconds",
    "Aggregate + publish cycle duration",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

DIRECTORY_NAMES = Gauge(
    "zap_directory_names",
    "Names in the last computed directory (root excluded)",
)

DROPPED_ZAPS = Counter(
    "zap_directory_dropped_zaps_total",
    "Zap receipts dropped as unparseable during aggregation",
)

# ---------------------------------------------------------------------------
# Storage metrics
# ---------------------------------------------------------------------------

STORAGE_OPS = Counter(
    "zap_directory_storage_ops_total",
    "Blossom operations by op and status",
    ["op", "status"],
)


def start_metrics_server(port: int = 9090) -> None:
    """Start Prometheus metrics HTTP server in a background thread."""
    SYSTEM_INFO.info({"version": "0.1.0"})
    start_http_server(port)


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def record_zap_ingested() -> None:
    ZAPS_INGESTED.inc()


def record_event_rejected() -> None:
    EVENTS_REJECTED.inc()


def record_trigger(source: str) -> None:
    TRIGGERS_TOTAL.labels(source=source).inc()


def record_trigger_coalesced(source: str) -> None:
    TRIGGERS_COALESCED.labels(source=source).inc()


def record_cycle(outcome: str, seconds: float) -> None:
    """Record a finished cycle and its duration."""
    CYCLES_TOTAL.labels(outcome=outcome).inc()
    CYCLE_DURATION.observe(seconds)


def record_dropped_zaps(count: int) -> None:
    if count:
        DROPPED_ZAPS.inc(count)


def update_directory_size(names: int) -> None:
    DIRECTORY_NAMES.set(names)


def record_storage_op(op: str, ok: bool) -> None:
    STORAGE_OPS.labels(op=op, status="ok" if ok else "error").inc()
