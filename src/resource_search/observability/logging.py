"""Structured JSON logging with trace and job correlation.

Every record becomes one JSON line. Records emitted while a job or a query
is bound (see :func:`bind_reference_id`) carry its ``reference_id``, so the
whole output of ``search/suggester/job_12`` can be grepped back together.
Values passed through ``extra=`` (a query dump, batch counters) are copied
into the entry after redaction.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
import sys
from typing import Any

import orjson

from resource_search.observability.context import get_trace_context


_STANDARD_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}
_CORRELATION_KEYS = ("trace_id", "span_id")
_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _encode_fallback(value: Any) -> Any:
    """orjson ``default`` hook for the odd values found in ``extra``."""
    if isinstance(value, (set, frozenset)):
        try:
            return sorted(value)
        except TypeError:
            return list(value)
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (Path, Exception)):
        return str(value)
    return repr(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, correlated with the bound job or query."""

    REDACT_KEYS = frozenset({"password", "token", "api_key", "secret", "authorization"})
    MAX_MESSAGE_LEN = 2000
    MAX_EXTRA_LEN = 500

    def format(self, record: logging.LogRecord) -> str:
        entry = self._base_entry(record)
        entry.update(self._extra_fields(record))
        return orjson.dumps(entry, default=_encode_fallback).decode("utf-8")

    def _base_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        ctx = get_trace_context()
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": self._shorten(record.getMessage(), self.MAX_MESSAGE_LEN),
        }
        for key in _CORRELATION_KEYS:
            entry[key] = ctx.get(key, "")
        # "resource_search.jobs.index_suggestions" -> "index_suggestions"
        _, dot, component = record.name.rpartition(".")
        if dot:
            entry["component"] = component
        if ctx.get("reference_id"):
            entry["reference_id"] = ctx["reference_id"]
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return entry

    def _extra_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _STANDARD_ATTRIBUTES or key.startswith("_"):
                continue
            if key.lower() in self.REDACT_KEYS:
                fields[key] = "[REDACTED]"
            elif isinstance(value, str):
                fields[key] = self._shorten(value, self.MAX_EXTRA_LEN)
            else:
                fields[key] = value
        return fields

    @staticmethod
    def _shorten(text: str, limit: int) -> str:
        return text if len(text) <= limit else text[:limit] + "..."


def _resolve_level(name: str) -> int:
    name = name.upper()
    return getattr(logging, name) if name in _LEVELS else logging.INFO


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    *,
    logger_levels: dict[str, str] | None = None,
) -> None:
    """Replace the root handlers with a single stderr handler.

    Args:
        level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: Emit JSON lines when True, plain text otherwise
        logger_levels: Per-logger overrides, e.g. ``{"resource_search.store": "warning"}``
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(_resolve_level(level))

    logging.getLogger("opentelemetry").setLevel(logging.WARNING)
    for name, override in (logger_levels or {}).items():
        logging.getLogger(name).setLevel(_resolve_level(override))
