"""Structured logging, log correlation and tracing of queries and jobs."""

from resource_search.observability.context import (
    bind_reference_id,
    bind_span_id,
    get_reference_id,
    get_trace_context,
    set_trace_context,
)
from resource_search.observability.logging import JsonFormatter, configure_logging
from resource_search.observability.tracing import create_span, init_tracing


__all__ = [
    "JsonFormatter",
    "bind_reference_id",
    "bind_span_id",
    "configure_logging",
    "create_span",
    "get_reference_id",
    "get_trace_context",
    "init_tracing",
    "set_trace_context",
]
