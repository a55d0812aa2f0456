"""
Prometheus Metrics for Observability

Tracks per-operation latency, artifact lifecycle and HTTP traffic.
Exposes /metrics endpoint for Prometheus scraping.
"""

import time
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Operation outcomes
operations_total = Counter(
    "toolbox_operations_total",
    "Total number of processing requests by outcome",
    labelnames=["operation", "status"]
)

# Transform latency - per operation
transform_latency_seconds = Histogram(
    "toolbox_transform_latency_seconds",
    "Time spent running a transform strategy",
    labelnames=["operation", "status"],
    buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]
)

# Artifact lifecycle
artifacts_materialized_total = Counter(
    "toolbox_artifacts_materialized_total",
    "Artifacts written to the store",
    labelnames=["namespace"]
)

artifacts_reclaimed_total = Counter(
    "toolbox_artifacts_reclaimed_total",
    "Artifact deletions by outcome",
    labelnames=["trigger", "outcome"]  # trigger: early|scheduled, outcome: removed|absent|error
)

pending_reclamations_gauge = Gauge(
    "toolbox_pending_reclamations",
    "Number of scheduled deletions that have not fired yet"
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0]
)

# Application Info
app_info = Info(
    "toolbox_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_transform_latency(operation: str):
    """
    Context manager to track transform latency.

    Usage:
        with track_transform_latency("pdf-merger"):
            # run strategy
    """
    start = time.time()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        duration = time.time() - start
        transform_latency_seconds.labels(operation=operation, status=status).observe(duration)


def record_operation(operation: str, status: str):
    """Record the terminal state of one processing request."""
    operations_total.labels(operation=operation, status=status).inc()


def record_materialized(namespace: str):
    artifacts_materialized_total.labels(namespace=namespace).inc()


def record_reclaimed(trigger: str, outcome: str):
    artifacts_reclaimed_total.labels(trigger=trigger, outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
