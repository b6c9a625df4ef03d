"""
Prometheus metrics collection for histovault

This module provides metrics instrumentation for monitoring load cycles,
history growth, rejected rows and maintenance activity.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# APPEND PHASE METRICS
# =======================

entities_inserted_total = Counter(
    name="vault_entities_inserted_total",
    documentation="Total number of new business keys registered in entity stores",
    labelnames=["entity"],
    registry=REGISTRY,
)

versions_appended_total = Counter(
    name="vault_versions_appended_total",
    documentation="Total number of attribute versions appended to satellites",
    labelnames=["satellite"],
    registry=REGISTRY,
)

versions_unchanged_total = Counter(
    name="vault_versions_unchanged_total",
    documentation="Total number of candidate versions skipped because their diff hash was known",
    labelnames=["satellite"],
    registry=REGISTRY,
)

version_collisions_total = Counter(
    name="vault_version_collisions_total",
    documentation="Same-hash candidates collapsed to their earliest load time",
    labelnames=["satellite"],
    registry=REGISTRY,
)

relationships_inserted_total = Counter(
    name="vault_relationships_inserted_total",
    documentation="Total number of new relationships registered",
    labelnames=["relationship"],
    registry=REGISTRY,
)

intervals_opened_total = Counter(
    name="vault_intervals_opened_total",
    documentation="Total number of validity intervals opened",
    labelnames=["relationship"],
    registry=REGISTRY,
)

# =======================
# DATA QUALITY METRICS
# =======================

rows_rejected_total = Counter(
    name="vault_rows_rejected_total",
    documentation="Total number of source rows rejected during a load cycle",
    labelnames=["entity", "reason"],
    registry=REGISTRY,
)

# =======================
# MAINTENANCE METRICS
# =======================

maintenance_updates_total = Counter(
    name="vault_maintenance_updates_total",
    documentation="Rows rewritten by current-flag and interval maintenance passes",
    labelnames=["store", "kind"],  # kind: satellite, validity
    registry=REGISTRY,
)

pit_rows = Gauge(
    name="vault_pit_rows",
    documentation="Number of rows in the most recent point-in-time build",
    labelnames=["satellite"],
    registry=REGISTRY,
)

# =======================
# CYCLE METRICS
# =======================

cycle_duration_seconds = Histogram(
    name="vault_cycle_duration_seconds",
    documentation="Time spent running a load cycle in seconds",
    labelnames=["status"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 600.0],
    registry=REGISTRY,
)

cycle_rows_received = Histogram(
    name="vault_cycle_rows_received",
    documentation="Number of source rows handed to a load cycle",
    buckets=[10, 100, 1000, 10000, 100000, 1000000],
    registry=REGISTRY,
)

cycles_total = Counter(
    name="vault_cycles_total",
    documentation="Total number of load cycles run",
    labelnames=["status"],  # status: success, failure
    registry=REGISTRY,
)

# =======================
# HELPER FUNCTIONS
# =======================


def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: avoids port binding on import
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if value <= 0:
        return
    counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """Set a gauge metric value"""
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    """Observe a value in a histogram metric"""
    if labels:
        histogram.labels(**labels).observe(value)
    else:
        histogram.observe(value)


# =======================
# CYCLE HELPERS
# =======================


def record_cycle(
    rows_received: int,
    duration_seconds: float,
    success: bool = True,
) -> None:
    """
    Record load cycle metrics.

    Args:
        rows_received: Source rows handed to the cycle
        duration_seconds: Cycle duration in seconds
        success: Whether the cycle completed
    """
    status = "success" if success else "failure"
    increment_counter(cycles_total, 1, status=status)
    observe_histogram(cycle_duration_seconds, duration_seconds, status=status)
    observe_histogram(cycle_rows_received, rows_received)


def record_rejection(entity: str, reason: str, count: int = 1) -> None:
    """
    Record rejected source rows.

    Args:
        entity: Entity type the rows belonged to
        reason: Rejection reason code
        count: Number of rows
    """
    increment_counter(rows_rejected_total, count, entity=entity, reason=reason)
