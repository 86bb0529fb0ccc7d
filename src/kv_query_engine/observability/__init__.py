"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from kv_query_engine.observability.context import (
    bind_record_type,
    get_trace_context,
    set_trace_context,
    trace_context,
)
from kv_query_engine.observability.logging import JsonFormatter, configure_logging
from kv_query_engine.observability.metrics import (
    INDEX_FAILURES,
    INDEX_OPERATIONS,
    QUERY_LATENCY,
    RECORD_OPERATIONS,
    get_metrics,
    get_metrics_content_type,
    track_latency,
)
from kv_query_engine.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "INDEX_FAILURES",
    "INDEX_OPERATIONS",
    "QUERY_LATENCY",
    "RECORD_OPERATIONS",
    "JsonFormatter",
    "bind_record_type",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "track_latency",
]
