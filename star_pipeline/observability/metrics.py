"""
Prometheus metrics collection for star-pipeline

This module provides metrics instrumentation for monitoring
build stages, warehouse writes and validation outcomes.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# STAGE METRICS
# =======================

stage_duration_seconds = Histogram(
    name="star_pipeline_stage_duration_seconds",
    documentation="Time spent in each pipeline stage in seconds",
    labelnames=["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=REGISTRY,
)

stage_runs_total = Counter(
    name="star_pipeline_stage_runs_total",
    documentation="Total number of stage executions",
    labelnames=["stage", "status"],  # status: COMPLETED, WARNING, FAILED
    registry=REGISTRY,
)

# =======================
# BUILD METRICS
# =======================

rows_written_total = Counter(
    name="star_pipeline_rows_written_total",
    documentation="Rows written to the warehouse",
    labelnames=["table", "operation"],  # operation: insert, update, delete
    registry=REGISTRY,
)

build_rejections_total = Counter(
    name="star_pipeline_build_rejections_total",
    documentation="Source records rejected during the build",
    labelnames=["table", "reason"],
    registry=REGISTRY,
)

surrogate_keys_allocated_total = Counter(
    name="star_pipeline_surrogate_keys_allocated_total",
    documentation="Surrogate keys handed out by the key allocator",
    labelnames=["sequence"],
    registry=REGISTRY,
)

readmissions_flagged = Gauge(
    name="star_pipeline_readmissions_flagged",
    documentation="Discharges with a 30-day readmission in the latest run",
    registry=REGISTRY,
)

# =======================
# VALIDATION METRICS
# =======================

validation_findings_total = Counter(
    name="star_pipeline_validation_findings_total",
    documentation="Validation findings emitted",
    labelnames=["category", "severity"],
    registry=REGISTRY,
)

validation_affected_rows_total = Counter(
    name="star_pipeline_validation_affected_rows_total",
    documentation="Rows affected by validation findings",
    labelnames=["table", "category"],
    registry=REGISTRY,
)

validation_verdicts_total = Counter(
    name="star_pipeline_validation_verdicts_total",
    documentation="Terminal verdicts of validation runs",
    labelnames=["verdict"],
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="star_pipeline_errors_total",
    documentation="Total number of errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: no port binding on import
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(stage_duration_seconds, stage="build_facts"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        """Start timer"""
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Stop timer"""
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    """
    Set a gauge metric value

    Args:
        gauge: Prometheus Gauge metric
        value: Value to set
        **labels: Label values for the metric
    """
    if labels:
        gauge.labels(**labels).set(value)
    else:
        gauge.set(value)


# =======================
# PIPELINE-SPECIFIC HELPERS
# =======================

def record_table_writes(table: str, inserted: int = 0, updated: int = 0, deleted: int = 0) -> None:
    """
    Record warehouse write counts for a table.

    Args:
        table: Warehouse table name
        inserted: Rows inserted
        updated: Rows updated
        deleted: Rows deleted
    """
    for operation, count in (("insert", inserted), ("update", updated), ("delete", deleted)):
        if count > 0:
            increment_counter(rows_written_total, count, table=table, operation=operation)


def record_rejection(table: str, reason: str, count: int = 1) -> None:
    """Record source records rejected by a builder."""
    if count > 0:
        increment_counter(build_rejections_total, count, table=table, reason=reason)


def record_findings(findings) -> None:
    """
    Record validation findings.

    Args:
        findings: Iterable of ValidationFinding
    """
    for finding in findings:
        increment_counter(
            validation_findings_total, 1,
            category=finding.category.value, severity=finding.severity.value,
        )
        if finding.affected_rows > 0:
            increment_counter(
                validation_affected_rows_total, finding.affected_rows,
                table=finding.table_name, category=finding.category.value,
            )


def record_verdict(verdict: str) -> None:
    """Record the terminal verdict of a validation run."""
    increment_counter(validation_verdicts_total, 1, verdict=verdict)
