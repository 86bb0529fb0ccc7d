"""Prometheus metrics for record operations, queries and index maintenance."""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


RECORD_OPERATIONS = Counter(
    "kv_record_operations_total",
    "Record operations by outcome",
    ["type", "operation", "status"],
)

QUERY_LATENCY = Histogram(
    "kv_query_latency_seconds",
    "Query execution latency",
    ["type", "path"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

INDEX_OPERATIONS = Counter(
    "kv_index_operations_total",
    "Derived index key writes and deletes",
    ["type", "action"],
)

INDEX_FAILURES = Counter(
    "kv_index_failures_total",
    "Index batches that completed with failed operations",
    ["type"],
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    """Get content type for metrics endpoint."""
    return CONTENT_TYPE_LATEST
