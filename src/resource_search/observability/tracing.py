"""OpenTelemetry tracing for queries and batch jobs.

Spans are created through the global tracer provider. Until
:func:`init_tracing` installs one, the API hands out non-recording spans,
so instrumented code runs unchanged in tests and one-off CLI calls.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager, nullcontext
import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from resource_search.observability.context import bind_span_id


logger = logging.getLogger(__name__)

TRACER_NAME = "resource_search"


def init_tracing(service_name: str = "resource-search", *, console_export: bool = False) -> TracerProvider:
    """Install an SDK tracer provider; ``console_export`` prints finished spans to stdout."""
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    logger.info("Tracing initialized for service %s (console export: %s)", service_name, console_export)
    return provider


def _span_attributes(attributes: Mapping[str, Any] | None) -> dict[str, Any]:
    # OpenTelemetry rejects None attribute values
    return {key: value for key, value in (attributes or {}).items() if value is not None}


@contextmanager
def create_span(
    name: str,
    *,
    attributes: Mapping[str, Any] | None = None,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Iterator[Span]:
    """Run the block in a span named after the operation (``search.query``, ``job.run``).

    The span id is copied into the log context while the block runs, so JSON
    log lines of the block point at the span. Exceptions mark the span as
    failed and propagate.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(
        name, kind=kind, attributes=_span_attributes(attributes), record_exception=False
    ) as span:
        span_context = span.get_span_context()
        binding = bind_span_id(format(span_context.span_id, "016x")) if span_context.is_valid else nullcontext()
        with binding:
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
