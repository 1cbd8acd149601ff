"""Resolution of query field names to SQL sources.

A :class:`FieldSource` describes where the values of one field live relative
to the outer resource alias ``r``: the table to read, how it links back to
``r``, the expression used for comparisons and facet buckets, and the
expressions matched by textual operators. Every filter, facet and sort built
by the internal querier goes through one.

The :class:`FieldCatalog` caches the property, class and template lookups
needed for resolution. It is owned by the engine's querier and dropped with
it; call :meth:`FieldCatalog.invalidate` after vocabulary changes.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
import logging
import sqlite3
import threading
from typing import Any

from resource_search.store.database import Database


logger = logging.getLogger(__name__)

# Field names accepted for metadata, mapped to their canonical name.
FIELD_ALIASES = {
    "o:id": "id",
    "o:title": "title",
    "o:created": "created",
    "o:modified": "modified",
    "o:resource_type": "resource_type",
    "resource_name": "resource_type",
    "item_set": "item_set_id",
    "o:item_set": "item_set_id",
    "resource_class": "resource_class_id",
    "o:resource_class": "resource_class_id",
    "resource_template": "resource_template_id",
    "o:resource_template": "resource_template_id",
    "o:is_public": "is_public",
}

IGNORED_FIELDS = frozenset({"is_public"})


@dataclass(frozen=True, slots=True)
class Condition:
    """A SQL boolean expression with its positional parameters."""

    sql: str
    params: tuple[Any, ...] = ()

    def negate(self) -> Condition:
        return Condition(f"NOT ({self.sql})", self.params)


ALWAYS = Condition("1")
NEVER = Condition("0")


def all_of(conditions: Iterable[Condition]) -> Condition:
    parts = [condition for condition in conditions if condition != ALWAYS]
    if not parts:
        return ALWAYS
    if len(parts) == 1:
        return parts[0]
    return Condition(
        " AND ".join(f"({part.sql})" for part in parts),
        tuple(param for part in parts for param in part.params),
    )


def any_of(conditions: Iterable[Condition]) -> Condition:
    parts = [condition for condition in conditions if condition != NEVER]
    if not parts:
        return NEVER
    if len(parts) == 1:
        return parts[0]
    return Condition(
        " OR ".join(f"({part.sql})" for part in parts),
        tuple(param for part in parts for param in part.params),
    )


@dataclass(frozen=True, slots=True)
class FieldSource:
    """Where the values of one field are read from."""

    name: str
    table: str
    link: str
    value_expr: str
    text_exprs: tuple[str, ...]
    joins: str = ""
    scope: str = ""
    id_expr: str | None = None
    label_expr: str | None = None
    public_expr: str | None = None
    lang_expr: str | None = None

    def _where(self, *, public: bool, extra: str = "") -> str:
        clauses = [self.link]
        if self.scope:
            clauses.append(self.scope)
        if public and self.public_expr:
            clauses.append(self.public_expr)
        if extra:
            clauses.append(f"({extra})")
        return " AND ".join(clauses)

    def exists(self, match: Condition | None = None, *, public: bool) -> Condition:
        """``EXISTS`` over the field's values for the outer resource ``r``, optionally narrowed."""
        extra = match.sql if match is not None else f"{self.value_expr} IS NOT NULL"
        params = match.params if match is not None else ()
        sql = f"EXISTS (SELECT 1 FROM {self.table} {self.joins} WHERE {self._where(public=public, extra=extra)})"
        return Condition(sql, params)

    def count(self, match: Condition, *, public: bool) -> Condition:
        """Number of the resource's values matching, used as a relevance score."""
        sql = f"(SELECT COUNT(*) FROM {self.table} {self.joins} WHERE {self._where(public=public, extra=match.sql)})"
        return Condition(sql, match.params)

    def join_clause(self, *, public: bool) -> tuple[str, Condition]:
        """Inner join of the field's values onto ``r`` and its WHERE restriction, for grouped facet counts."""
        on = self.link if not self.scope else f"{self.link} AND {self.scope}"
        join = f"JOIN {self.table} ON {on} {self.joins}".rstrip()
        if public and self.public_expr:
            return join, Condition(self.public_expr)
        return join, ALWAYS

    def min_value(self, *, public: bool) -> str:
        """Smallest value of the field for ``r``, used for sorting."""
        return f"(SELECT MIN({self.value_expr}) FROM {self.table} {self.joins} WHERE {self._where(public=public)})"


def property_source(name: str, property_ids: Sequence[int]) -> FieldSource:
    ids = ", ".join(str(int(property_id)) for property_id in property_ids)
    return FieldSource(
        name=name,
        table="value v",
        joins="LEFT JOIN resource lr ON lr.id = v.value_resource_id",
        link="v.resource_id = r.id",
        scope=f"v.property_id IN ({ids})" if property_ids else "",
        value_expr="COALESCE(v.value, v.uri, CAST(v.value_resource_id AS TEXT))",
        text_exprs=("v.value", "v.uri", "lr.title"),
        id_expr="v.value_resource_id",
        label_expr="lr.title",
        public_expr="v.is_public = 1",
        lang_expr="v.lang",
    )


def _resource_column_source(name: str, column: str, text_exprs: tuple[str, ...], **extra: Any) -> FieldSource:
    return FieldSource(
        name=name,
        table="resource c",
        link="c.id = r.id",
        value_expr=f"c.{column}",
        text_exprs=text_exprs,
        **extra,
    )


ITEM_SET_SOURCE = FieldSource(
    name="item_set_id",
    table="item_item_set iis",
    joins="JOIN resource s ON s.id = iis.item_set_id",
    link="iis.item_id = r.id",
    value_expr="iis.item_set_id",
    text_exprs=("CAST(iis.item_set_id AS TEXT)", "s.title"),
    id_expr="iis.item_set_id",
    label_expr="s.title",
    public_expr="s.is_public = 1",
)

COLUMN_SOURCES = {
    "id": _resource_column_source("id", "id", ("CAST(c.id AS TEXT)",), id_expr="c.id"),
    "title": _resource_column_source("title", "title", ("c.title",)),
    "created": _resource_column_source("created", "created", ("c.created",)),
    "modified": _resource_column_source("modified", "modified", ("c.modified",)),
    "resource_type": _resource_column_source("resource_type", "resource_type", ("c.resource_type",)),
    "resource_class_id": _resource_column_source(
        "resource_class_id",
        "resource_class_id",
        ("CAST(c.resource_class_id AS TEXT)", "kv.prefix || ':' || k.local_name", "k.label"),
        joins=(
            "LEFT JOIN resource_class k ON k.id = c.resource_class_id "
            "LEFT JOIN vocabulary kv ON kv.id = k.vocabulary_id"
        ),
        id_expr="c.resource_class_id",
        label_expr="k.label",
    ),
    "resource_template_id": _resource_column_source(
        "resource_template_id",
        "resource_template_id",
        ("CAST(c.resource_template_id AS TEXT)", "t.label"),
        joins="LEFT JOIN resource_template t ON t.id = c.resource_template_id",
        id_expr="c.resource_template_id",
        label_expr="t.label",
    ),
}

# Columns of ``r`` that can be sorted on directly.
SORT_COLUMNS = {
    "id": "r.id",
    "title": "r.title",
    "created": "r.created",
    "modified": "r.modified",
    "resource_type": "r.resource_type",
}


def canonical_field_name(name: str) -> str:
    """Normalize a field name: strip ``_field`` suffixes and map ``o:`` aliases."""
    name = name.strip()
    if name.endswith("_field"):
        name = name[: -len("_field")]
    return FIELD_ALIASES.get(name, name)


def is_ignored_field(name: str) -> bool:
    """Visibility is governed by the query itself, never by a filter."""
    return canonical_field_name(name) in IGNORED_FIELDS


@dataclass
class FieldCatalog:
    """Cached vocabulary lookups of one database, scoped to a querier."""

    database: Database
    _property_ids: dict[str, int] | None = field(default=None, init=False, repr=False)
    _used_property_ids: tuple[int, ...] | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def invalidate(self) -> None:
        with self._lock:
            self._property_ids = None
            self._used_property_ids = None

    def _load(self, conn: sqlite3.Connection) -> None:
        rows = conn.execute(
            """
            SELECT voc.prefix || ':' || p.local_name AS term, p.id
            FROM property p
            JOIN vocabulary voc ON voc.id = p.vocabulary_id
            """
        ).fetchall()
        used = conn.execute("SELECT DISTINCT property_id FROM value ORDER BY property_id").fetchall()
        self._property_ids = {row["term"]: int(row["id"]) for row in rows}
        self._used_property_ids = tuple(int(row[0]) for row in used)
        logger.debug("Loaded %d properties, %d in use", len(self._property_ids), len(self._used_property_ids))

    def _ensure_loaded(self, conn: sqlite3.Connection | None) -> None:
        with self._lock:
            if self._property_ids is not None:
                return
            if conn is not None:
                self._load(conn)
                return
            with self.database.read() as read_conn:
                self._load(read_conn)

    def property_id(self, term: str, conn: sqlite3.Connection | None = None) -> int | None:
        self._ensure_loaded(conn)
        assert self._property_ids is not None
        return self._property_ids.get(term)

    def property_ids(self, terms: Iterable[str], conn: sqlite3.Connection | None = None) -> list[int]:
        """Ids of the known terms, in order; unknown terms are dropped."""
        self._ensure_loaded(conn)
        assert self._property_ids is not None
        return [self._property_ids[term] for term in terms if term in self._property_ids]

    def used_property_ids(self, conn: sqlite3.Connection | None = None) -> tuple[int, ...]:
        self._ensure_loaded(conn)
        assert self._used_property_ids is not None
        return self._used_property_ids

    def resolve(self, name: str, conn: sqlite3.Connection | None = None) -> FieldSource | None:
        """Source of a field, or ``None`` for unknown fields."""
        canonical = canonical_field_name(name)
        if canonical == "item_set_id":
            return ITEM_SET_SOURCE
        if canonical in COLUMN_SOURCES:
            return COLUMN_SOURCES[canonical]
        property_id = self.property_id(canonical, conn)
        if property_id is None:
            return None
        return property_source(canonical, [property_id])
