"""Querier running directly against the relational store.

A query is compiled into one set of SQL conditions on the resource alias
``r``: the base conditions (text, visibility, site), the filters and one
condition per active facet. Results use all of them. The counts of a facet
use all of them except that facet's own selection, so sibling values keep
meaningful counts. Results and facet counts are read inside one read
transaction and therefore from the same snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import sqlite3
from typing import Any

from resource_search.config import Settings
from resource_search.engine_config import SearchEngineConfig, SuggesterConfig
from resource_search.observability.tracing import create_span
from resource_search.query import Query
from resource_search.querier.base import AbstractQuerier, QuerierException
from resource_search.querier.facets import active_facet_condition, count_facet, order_buckets
from resource_search.querier.fields import (
    ALWAYS,
    NEVER,
    SORT_COLUMNS,
    Condition,
    FieldCatalog,
    FieldSource,
    all_of,
    any_of,
    canonical_field_name,
    is_ignored_field,
    property_source,
)
from resource_search.querier.filters import build_filter_condition, text_match
from resource_search.response import Response
from resource_search.store.database import Database
from resource_search.text import LIKE_ESCAPE, escape_like, is_quoted_phrase, split_words


logger = logging.getLogger(__name__)

_LIKE_TEMPLATE = "{expr} LIKE ? ESCAPE '" + LIKE_ESCAPE + "'"


@dataclass
class _Plan:
    """Compiled conditions of one query."""

    base: Condition
    filters: Condition
    active: dict[str, Condition] = field(default_factory=dict)
    score: Condition | None = None
    order_by: str = "r.id ASC"

    def where(self, *, excluding: str | None = None) -> Condition:
        return all_of(
            [self.base, self.filters, *(condition for name, condition in self.active.items() if name != excluding)]
        )


def _types_condition(resource_types: list[str]) -> Condition:
    return Condition(f"r.resource_type IN ({', '.join('?' for _ in resource_types)})", tuple(resource_types))


class InternalQuerier(AbstractQuerier):
    """Querier of the "internal" adapter."""

    def __init__(
        self,
        engine: SearchEngineConfig,
        database: Database,
        *,
        settings: Settings | None = None,
        catalog: FieldCatalog | None = None,
    ) -> None:
        super().__init__(engine, settings)
        self.database = database
        self.catalog = catalog or FieldCatalog(database)

    # Query

    def query(self, query: Query) -> Response:
        resource_types = self.resource_types_for(query)
        if not resource_types:
            return Response.error("no resource type to search")

        if not (query.has_predicate() or query.is_wildcard or query.default_query):
            logger.debug("Query on engine %s has no predicate and is not a default query", self.engine.name)
            return Response()

        public = query.is_public is not False
        attributes = {
            "search.engine": self.engine.name,
            "search.resource_types": ",".join(resource_types),
            "search.public": public,
        }
        with create_span("search.query", attributes=attributes):
            try:
                with self.database.read() as conn:
                    plan = self._plan(conn, query, public=public)
                    response = Response()
                    self._collect_results(conn, query, plan, resource_types, response)
                    self._collect_facets(conn, query, plan, resource_types, response, public=public)
            except sqlite3.Error as e:
                logger.error(
                    "Search engine %s failed to run query: %s",
                    self.engine.name,
                    e,
                    extra={"query": query.to_dict()},
                )
                raise QuerierException(f"Search query failed: {e}") from e

        response.active_facets = {name: list(values) for name, values in query.active_facets.items() if values}
        return response

    def query_all_resource_ids(
        self,
        query: Query,
        resource_type: str | None = None,
        *,
        by_resource_type: bool = False,
    ) -> list[int] | dict[str, list[int]]:
        resource_types = self.resource_types_for(query)
        if resource_type is not None:
            resource_types = [item for item in resource_types if item == resource_type]
        if not resource_types:
            return {} if by_resource_type else []

        public = query.is_public is not False
        try:
            with self.database.read() as conn:
                plan = self._plan(conn, query, public=public)
                ids_by_type: dict[str, list[int]] = {}
                for current_type in resource_types:
                    where = all_of([Condition("r.resource_type = ?", (current_type,)), plan.where()])
                    rows = conn.execute(f"SELECT r.id FROM resource r WHERE {where.sql} ORDER BY r.id", where.params)
                    ids_by_type[current_type] = [int(row["id"]) for row in rows]
        except sqlite3.Error as e:
            raise QuerierException(f"Failed to list resource ids: {e}") from e

        if by_resource_type:
            return ids_by_type
        return sorted(resource_id for ids in ids_by_type.values() for resource_id in ids)

    def _plan(self, conn: sqlite3.Connection, query: Query, *, public: bool) -> _Plan:
        base = []
        text_condition, score = self._text_condition(conn, query, public=public)
        base.append(text_condition)
        if public:
            base.append(Condition("r.is_public = 1"))
        if query.site_id:
            base.append(
                Condition(
                    "EXISTS (SELECT 1 FROM resource_site rs "
                    "WHERE rs.site_id = ? AND rs.resource_id = COALESCE(r.item_id, r.id))",
                    (int(query.site_id),),
                )
            )

        active = {}
        for name, values in query.active_facets.items():
            if not values or is_ignored_field(name):
                continue
            source = self.catalog.resolve(name, conn)
            if source is None:
                logger.warning("Unknown active facet %s on engine %s", name, self.engine.name)
            active[name] = active_facet_condition(source, list(values), query.facets.get(name), public=public)

        return _Plan(
            base=all_of(base),
            filters=build_filter_condition(query.filters, self.catalog, conn, public=public),
            active=active,
            score=score,
            order_by=self._order_by(conn, query, has_score=score is not None, public=public),
        )

    def _text_sources(self, conn: sqlite3.Connection, query: Query) -> tuple[FieldSource | None, bool]:
        """Property source searched by free text and whether the title is searched too."""
        if query.excluded_fields:
            excluded = set(self.catalog.property_ids(query.excluded_fields, conn))
            ids = [property_id for property_id in self.catalog.used_property_ids(conn) if property_id not in excluded]
            return (property_source("_text", ids) if ids else None), False

        if self.engine.default_fields:
            include_title = False
            terms = []
            for name in self.engine.default_fields:
                if canonical_field_name(name) == "title":
                    include_title = True
                else:
                    terms.append(name)
            ids = self.catalog.property_ids(terms, conn)
            return (property_source("_text", ids) if ids else None), include_title

        return property_source("_text", []), True

    def _text_condition(
        self, conn: sqlite3.Connection, query: Query, *, public: bool
    ) -> tuple[Condition, Condition | None]:
        text = query.query_text
        if not text or query.is_wildcard:
            return ALWAYS, None

        if is_quoted_phrase(text):
            terms = [text[1:-1].strip()]
        else:
            terms = list(split_words(text))
        terms = [term for term in terms if term]
        if not terms:
            return ALWAYS, None

        source, include_title = self._text_sources(conn, query)
        matches = []
        scores = []
        for term in terms:
            pattern = f"%{escape_like(term)}%"
            alternatives = []
            if source is not None:
                match = text_match(source, _LIKE_TEMPLATE, [pattern])
                alternatives.append(source.exists(match, public=public))
                scores.append(source.count(match, public=public))
            if include_title:
                title_match = Condition(_LIKE_TEMPLATE.format(expr="r.title"), (pattern,))
                alternatives.append(title_match)
                scores.append(title_match)
            matches.append(any_of(alternatives))

        if not scores:
            return NEVER, None
        score = Condition(
            " + ".join(f"({part.sql})" for part in scores),
            tuple(param for part in scores for param in part.params),
        )
        return all_of(matches), score

    def _order_by(self, conn: sqlite3.Connection, query: Query, *, has_score: bool, public: bool) -> str:
        default = "score DESC, r.id ASC" if has_score else "r.id ASC"
        sort = query.sort
        if sort is None:
            return default

        name = canonical_field_name(self.engine.sort_fields.get(sort.field, sort.field))
        if name == "relevance":
            return default
        if name in SORT_COLUMNS:
            expression = SORT_COLUMNS[name]
        else:
            property_id = self.catalog.property_id(name, conn)
            if property_id is None:
                logger.debug("Unsortable field %s on engine %s, using default order", sort.field, self.engine.name)
                return default
            expression = property_source(name, [property_id]).min_value(public=public)

        direction = "DESC" if sort.direction == "desc" else "ASC"
        return f"{expression} IS NULL, {expression} {direction}, r.id ASC"

    def _collect_results(
        self,
        conn: sqlite3.Connection,
        query: Query,
        plan: _Plan,
        resource_types: list[str],
        response: Response,
    ) -> None:
        limit = query.limit or self.settings.default_per_page
        score_sql = plan.score.sql if plan.score is not None else "NULL"
        score_params = plan.score.params if plan.score is not None else ()
        total = 0
        for resource_type in resource_types:
            where = all_of([Condition("r.resource_type = ?", (resource_type,)), plan.where()])
            count = int(conn.execute(f"SELECT COUNT(*) FROM resource r WHERE {where.sql}", where.params).fetchone()[0])
            rows = conn.execute(
                f"""
                SELECT r.id, {score_sql} AS score
                FROM resource r
                WHERE {where.sql}
                ORDER BY {plan.order_by}
                LIMIT ? OFFSET ?
                """,
                (*score_params, *where.params, limit, query.offset),
            )
            results: list[dict[str, Any]] = []
            for row in rows:
                result: dict[str, Any] = {"id": int(row["id"])}
                if plan.score is not None:
                    result["score"] = int(row["score"] or 0)
                results.append(result)
            response.set_resource_total_results(resource_type, count)
            response.add_results(resource_type, results)
            total += count
        response.total_results = total

    def _collect_facets(
        self,
        conn: sqlite3.Connection,
        query: Query,
        plan: _Plan,
        resource_types: list[str],
        response: Response,
        *,
        public: bool,
    ) -> None:
        types = _types_condition(resource_types)
        for name, request in query.facets.items():
            if is_ignored_field(name):
                continue
            source = self.catalog.resolve(name, conn)
            if source is None:
                logger.warning("Unknown facet field %s on engine %s", name, self.engine.name)
                continue
            where = all_of([types, plan.where(excluding=name)])
            buckets = count_facet(conn, source, request, where, public=public)
            limit = request.limit if request.limit is not None else self.settings.default_facet_limit
            for bucket in order_buckets(buckets, request.order, limit):
                response.add_facet_count(name, bucket.value, bucket.count, bucket.label)

    # Suggestions

    def query_suggestions(self, query: Query, suggester: SuggesterConfig) -> Response:
        text = query.query_text[: suggester.length].strip()
        if not text:
            return Response()

        public = query.is_public is not False
        if suggester.mode_search == "contain":
            pattern = f"%{escape_like(text)}%"
        else:
            pattern = f"{escape_like(text)}%"

        with create_span("search.suggest", attributes={"search.suggester": suggester.name, "search.public": public}):
            try:
                with self.database.read() as conn:
                    if query.suggest_fields:
                        rows = self._suggest_from_values(conn, query, suggester, pattern, public=public)
                    else:
                        rows = self._suggest_from_index(conn, query, suggester, pattern, public=public)
            except sqlite3.Error as e:
                logger.error("Suggester %s failed: %s", suggester.name, e)
                raise QuerierException(f"Suggestion query failed: {e}") from e

        response = Response()
        for row in rows:
            response.add_suggestion(row["text"], row["total"])
        return response

    def _suggest_from_index(
        self,
        conn: sqlite3.Connection,
        query: Query,
        suggester: SuggesterConfig,
        pattern: str,
        *,
        public: bool,
    ) -> list[sqlite3.Row]:
        column = "total_public" if public else "total_all"
        return conn.execute(
            f"""
            SELECT s.text AS text, ss.{column} AS total
            FROM search_suggestion s
            JOIN search_suggestion_site ss ON ss.suggestion_id = s.id
            WHERE s.suggester_id = ? AND ss.site_id = ? AND ss.{column} > 0
              AND s.text LIKE ? ESCAPE '{LIKE_ESCAPE}'
            ORDER BY total DESC, s.text ASC
            LIMIT ?
            """,
            (suggester.id, int(query.site_id or 0), pattern, suggester.limit),
        ).fetchall()

    def _suggest_from_values(
        self,
        conn: sqlite3.Connection,
        query: Query,
        suggester: SuggesterConfig,
        pattern: str,
        *,
        public: bool,
    ) -> list[sqlite3.Row]:
        """Read suggestions straight from field values when the caller restricts fields."""
        ids = self.catalog.property_ids(query.suggest_fields, conn)
        if not ids:
            return []
        resource_types = self.resource_types_for(query)
        conditions = [
            _types_condition(resource_types),
            Condition(f"v.property_id IN ({', '.join('?' for _ in ids)})", tuple(ids)),
            Condition(f"v.value LIKE ? ESCAPE '{LIKE_ESCAPE}'", (pattern,)),
        ]
        if public:
            conditions.append(Condition("v.is_public = 1 AND r.is_public = 1"))
        if query.site_id:
            conditions.append(
                Condition(
                    "EXISTS (SELECT 1 FROM resource_site rs "
                    "WHERE rs.site_id = ? AND rs.resource_id = COALESCE(r.item_id, r.id))",
                    (int(query.site_id),),
                )
            )
        where = all_of(conditions)
        return conn.execute(
            f"""
            SELECT v.value AS text, COUNT(DISTINCT v.resource_id) AS total
            FROM value v
            JOIN resource r ON r.id = v.resource_id
            WHERE {where.sql}
            GROUP BY v.value
            ORDER BY total DESC, v.value ASC
            LIMIT ?
            """,
            (*where.params, suggester.limit),
        ).fetchall()

    # Values

    def query_values(self, field: str) -> dict[str, str]:
        if is_ignored_field(field) or not self.engine.resource_types:
            return {}
        try:
            with self.database.read() as conn:
                source = self.catalog.resolve(field, conn)
                if source is None:
                    return {}
                join, join_condition = source.join_clause(public=False)
                label = source.label_expr or "NULL"
                where = all_of(
                    [
                        _types_condition(list(self.engine.resource_types)),
                        join_condition,
                        Condition(f"{source.value_expr} IS NOT NULL"),
                    ]
                )
                rows = conn.execute(
                    f"""
                    SELECT {source.value_expr} AS value, MIN({label}) AS label
                    FROM resource r
                    {join}
                    WHERE {where.sql}
                    GROUP BY value
                    ORDER BY value
                    """,
                    where.params,
                ).fetchall()
        except sqlite3.Error as e:
            raise QuerierException(f"Failed to list values of {field}: {e}") from e
        return {str(row["value"]): str(row["label"] if row["label"] is not None else row["value"]) for row in rows}
