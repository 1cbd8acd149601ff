"""Log correlation context shared by jobs, queries and the JSON formatter.

The context is a small dict held in a ContextVar: a trace id, the current
span id and, while a job runs, the job's reference id
(``search/suggester/job_<id>``, ``search/index/job_<id>``).
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4


trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def _new_context() -> dict:
    trace_id = uuid4().hex
    return {"trace_id": trace_id, "span_id": trace_id[:16]}


def get_trace_context() -> dict:
    """Current context, created with fresh ids on first use."""
    ctx = trace_context.get()
    if not ctx or not ctx.get("trace_id"):
        ctx = {**(ctx or {}), **_new_context()}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


@contextmanager
def bind_span_id(span_id: str) -> Iterator[str]:
    """Point log records of the block at ``span_id``; the previous span id is restored on exit."""
    token = trace_context.set({**get_trace_context(), "span_id": span_id})
    try:
        yield span_id
    finally:
        trace_context.reset(token)


def get_reference_id() -> str | None:
    return (trace_context.get() or {}).get("reference_id")


@contextmanager
def bind_reference_id(reference_id: str) -> Iterator[str]:
    """Tag every log record of the block with ``reference_id``; nesting restores the outer one."""
    token = trace_context.set({**get_trace_context(), "reference_id": reference_id})
    try:
        yield reference_id
    finally:
        trace_context.reset(token)
