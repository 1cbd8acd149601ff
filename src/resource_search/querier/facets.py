"""Facet counting and active facet narrowing."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
import logging
import sqlite3
from typing import Any

from resource_search.query import FacetRequest
from resource_search.querier.fields import ALWAYS, NEVER, Condition, FieldSource, all_of


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FacetBucket:
    value: Any
    count: int
    label: str | None = None


def _digits_literal(first_digits: bool | int) -> int:
    # 0 asks facet_bucket() for the whole leading integer.
    return 0 if first_digits is True else int(first_digits)


def bucket_expression(source: FieldSource, request: FacetRequest | None) -> str:
    if request is not None and request.first_digits:
        return f"facet_bucket({source.value_expr}, {_digits_literal(request.first_digits)})"
    return source.value_expr


def language_condition(source: FieldSource, languages: Iterable[str]) -> Condition:
    """Restrict values to languages; an empty string stands for "no language"."""
    languages = list(languages)
    if not languages or source.lang_expr is None:
        return ALWAYS
    named = [language for language in languages if language]
    parts = []
    if named:
        parts.append(f"{source.lang_expr} IN ({', '.join('?' for _ in named)})")
    if len(named) != len(languages):
        parts.append(f"COALESCE({source.lang_expr}, '') = ''")
    return Condition(" OR ".join(parts), tuple(named))


def active_facet_condition(
    source: FieldSource | None,
    values: list[Any],
    request: FacetRequest | None,
    *,
    public: bool,
) -> Condition:
    """One OR-ed equality over the selected values of a facet."""
    if source is None:
        return NEVER
    if request is not None and request.first_digits:
        buckets = []
        for value in values:
            try:
                buckets.append(int(str(value).strip()))
            except ValueError:
                logger.debug("Ignoring non numeric selection %r for facet %s", value, source.name)
        if not buckets:
            return NEVER
        params: tuple[Any, ...] = tuple(buckets)
    else:
        params = tuple(str(value) for value in values)
    if not params:
        return ALWAYS
    placeholders = ", ".join("?" for _ in params)
    match = Condition(f"{bucket_expression(source, request)} IN ({placeholders})", params)
    if request is not None:
        match = all_of([match, language_condition(source, request.languages)])
    return source.exists(match, public=public)


def count_facet(
    conn: sqlite3.Connection,
    source: FieldSource,
    request: FacetRequest,
    where: Condition,
    *,
    public: bool,
) -> list[FacetBucket]:
    """Distinct resources per bucket among the resources matching ``where``."""
    bucket = bucket_expression(source, request)
    label = f"MIN({source.label_expr})" if source.label_expr else "NULL"
    join, join_condition = source.join_clause(public=public)
    condition = all_of(
        [
            where,
            join_condition,
            Condition(f"{bucket} IS NOT NULL"),
            language_condition(source, request.languages),
        ]
    )
    sql = f"""
        SELECT {bucket} AS bucket, COUNT(DISTINCT r.id) AS total, {label} AS label
        FROM resource r
        {join}
        WHERE {condition.sql}
        GROUP BY bucket
    """
    return [
        FacetBucket(value=row["bucket"], count=int(row["total"]), label=row["label"])
        for row in conn.execute(sql, condition.params)
    ]


def _parse_order(order: str) -> tuple[str, bool]:
    """Return the sort key ("total" or "values") and whether it is descending."""
    parts = (order or "").strip().lower().replace("_", " ").split()
    key = parts[0] if parts else "total"
    if key in ("alphabetic", "value", "values", "alpha"):
        key = "values"
    elif key not in ("total", "count"):
        logger.debug("Unknown facet order %r, using total desc", order)
        return "total", True
    else:
        key = "total"
    if len(parts) > 1:
        return key, parts[1] == "desc"
    return key, key == "total"


def _value_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return 0, value
    text = str(value)
    try:
        return 0, float(text)
    except ValueError:
        return 1, text.casefold()


def order_buckets(buckets: list[FacetBucket], order: str, limit: int) -> list[FacetBucket]:
    """Order buckets by total or value, numeric values numerically; ``limit`` 0 keeps all."""
    key, descending = _parse_order(order)
    # Stable two-pass sort: secondary key first.
    if key == "total":
        ordered = sorted(buckets, key=lambda bucket: _value_key(bucket.value))
        ordered.sort(key=lambda bucket: bucket.count, reverse=descending)
    else:
        ordered = sorted(buckets, key=lambda bucket: _value_key(bucket.value), reverse=descending)
    if limit > 0:
        return ordered[:limit]
    return ordered
