"""Prometheus metrics collection and export.

This module provides Prometheus instrumentation for the PetShare client,
counting remote store calls, mutation runs and query-cache activity.

Metric Types:
    Counters (always increase):
        - remote_operations_total: Remote calls by table, operation, status
        - mutations_total: Mutation runs by name and outcome
        - cache_fetches_total: Query fetches by tag and outcome
        - cache_invalidations_total: Invalidated entries by tag
        - errors_total: Errors by type and component

    Gauges (can go up or down):
        - cache_entries: Number of entries held by the query cache
        - cache_subscribers: Number of live query subscriptions

    Histograms (track distributions):
        - remote_operation_duration_seconds: Remote call latency

Usage:
    ```python
    from petshare.metrics import generate_metrics_output

    print(generate_metrics_output().decode())
    ```

References:
    - Prometheus Python Client: https://github.com/prometheus/client_python
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry for explicit metric control
registry = CollectorRegistry()

# Latency bucket definitions (in seconds)
REMOTE_LATENCY_BUCKETS = (
    0.01,   # 10ms
    0.05,   # 50ms
    0.1,    # 100ms
    0.25,   # 250ms
    0.5,    # 500ms
    1.0,    # 1s
    2.5,    # 2.5s
    5.0,    # 5s
)


# ========== COUNTER METRICS (always increase) ==========

remote_operations_total = Counter(
    "remote_operations_total",
    "Total number of remote store operations",
    labelnames=["table", "operation", "status"],
    registry=registry,
)
"""Counter for remote calls.

Labels:
    table: Table or bucket name (e.g., "pet_posts", "pet_photos", "auth")
    operation: One of "select", "insert", "upsert", "delete", "upload", "auth"
    status: "success" or "error"
"""

mutations_total = Counter(
    "mutations_total",
    "Total number of mutation runs",
    labelnames=["mutation", "status"],
    registry=registry,
)
"""Counter for mutation runs.

Labels:
    mutation: Mutation name (e.g., "toggle-reaction", "add-comment")
    status: Final state ("success" or "failed")
"""

cache_fetches_total = Counter(
    "cache_fetches_total",
    "Total number of query fetches issued by the query cache",
    labelnames=["tag", "status"],
    registry=registry,
)

cache_invalidations_total = Counter(
    "cache_invalidations_total",
    "Total number of query cache entries marked stale",
    labelnames=["tag"],
    registry=registry,
)

errors_total = Counter(
    "errors_total",
    "Total number of errors encountered",
    labelnames=["error_type", "component"],
    registry=registry,
)
"""Counter for errors by type and component.

Labels:
    error_type: Store error code or exception class name
    component: "api", "storage", "auth", "cache" or "mutation"
"""


# ========== GAUGE METRICS (can go up or down) ==========

cache_entries = Gauge(
    "cache_entries",
    "Number of entries held by the query cache",
    registry=registry,
)

cache_subscribers = Gauge(
    "cache_subscribers",
    "Number of live query cache subscriptions",
    registry=registry,
)


# ========== HISTOGRAM METRICS (track distributions) ==========

remote_operation_duration_seconds = Histogram(
    "remote_operation_duration_seconds",
    "Remote store operation latency in seconds",
    labelnames=["operation", "status"],
    buckets=REMOTE_LATENCY_BUCKETS,
    registry=registry,
)


def generate_metrics_output() -> bytes:
    """Render all metrics in the Prometheus text exposition format."""
    return generate_latest(registry)


def get_sample_value(name: str, labels: dict[str, str] | None = None) -> float | None:
    """Read a single sample from the registry (None when absent)."""
    return registry.get_sample_value(name, labels or {})


__all__ = [
    "registry",
    "remote_operations_total",
    "mutations_total",
    "cache_fetches_total",
    "cache_invalidations_total",
    "errors_total",
    "cache_entries",
    "cache_subscribers",
    "remote_operation_duration_seconds",
    "generate_metrics_output",
    "get_sample_value",
]
