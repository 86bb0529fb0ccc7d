"""Context propagation for trace correlation across async boundaries."""

from __future__ import annotations

from contextvars import ContextVar
from uuid import uuid4


# Per-task context for trace propagation
trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def generate_trace_id() -> str:
    """Generate a 32-char hex trace ID."""
    return uuid4().hex


def generate_span_id() -> str:
    """Generate a 16-char hex span ID."""
    return uuid4().hex[:16]


def get_trace_context() -> dict:
    """Get current trace context with trace_id and span_id.

    Missing ids are generated; other keys already bound (such as
    ``record_type``) are kept.
    """
    ctx = trace_context.get() or {}
    if not ctx.get("trace_id") or not ctx.get("span_id"):
        ctx = {
            **ctx,
            "trace_id": ctx.get("trace_id") or generate_trace_id(),
            "span_id": ctx.get("span_id") or generate_span_id(),
        }
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    """Set trace context for the current async context.

    Extra keys (for example ``record_type``) are copied into every JSON log line.
    """
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def update_span_id(span_id: str) -> None:
    """Update span_id while preserving trace_id."""
    ctx = trace_context.get() or {}
    trace_context.set({**ctx, "span_id": span_id})


def bind_record_type(type_name: str) -> None:
    """Tag subsequent log lines in this context with the record type."""
    ctx = trace_context.get() or {}
    trace_context.set({**ctx, "record_type": type_name})
