"""Rebuild the autosuggest index of one suggester.

The job scans the configured fields of the engine's resource types in
batches on a read snapshot, cuts each value into candidates, counts them
globally and per site, filters short candidates and stop words and merges
case variants. Only then are the previous suggestions of the suggester
replaced, in one short write transaction: a failure leaves them in place,
a cooperative stop commits the deletion only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import sqlite3
import time

from resource_search.engine_config import (
    DEFAULT_EXCLUDED_FIELDS,
    ConfigurationError,
    SearchEngineConfig,
    SuggesterConfig,
)
from resource_search.jobs.base import AbstractJob
from resource_search.store.repository import iter_value_batches, property_ids, site_memberships
from resource_search.text import (
    front_ngrams,
    full_value,
    has_boundary_stopword,
    normalize_stopwords,
    single_words,
)


logger = logging.getLogger(__name__)

MIN_SUGGESTION_LENGTH = 2


@dataclass(slots=True)
class SuggestionTotals:
    """Occurrence counts of one suggestion text, globally and per site."""

    total_all: int = 0
    total_public: int = 0
    sites: dict[int, list[int]] = field(default_factory=dict)

    def add(self, *, public: bool, sites: tuple[int, ...]) -> None:
        self.total_all += 1
        if public:
            self.total_public += 1
        for site_id in sites:
            site_totals = self.sites.setdefault(site_id, [0, 0])
            site_totals[0] += 1
            if public:
                site_totals[1] += 1

    def merge(self, other: SuggestionTotals) -> None:
        self.total_all += other.total_all
        self.total_public += other.total_public
        for site_id, (total_all, total_public) in other.sites.items():
            site_totals = self.sites.setdefault(site_id, [0, 0])
            site_totals[0] += total_all
            site_totals[1] += total_public


class SuggestionAggregator:
    """In-memory aggregation of candidates keyed by exact text, in first-seen order."""

    def __init__(self, suggester: SuggesterConfig, *, max_length: int) -> None:
        self.suggester = suggester
        self.max_length = max_length
        self.counts: dict[str, SuggestionTotals] = {}
        self.values_read = 0

    def candidates(self, value: str) -> list[str]:
        """Candidates of one value according to the suggester's index mode, deduplicated."""
        suggester = self.suggester
        candidates: list[str] = []
        if suggester.indexes_start:
            candidates.extend(front_ngrams(value, suggester.max_words, max_length=self.max_length))
        if suggester.indexes_contain:
            candidates.extend(single_words(value, max_length=self.max_length))
        if suggester.indexes_full:
            candidates.append(full_value(value, max_length=self.max_length))
        return list(dict.fromkeys(candidate for candidate in candidates if candidate))

    def add(self, value: str, *, public: bool, sites: tuple[int, ...] = ()) -> None:
        self.values_read += 1
        for candidate in self.candidates(value):
            totals = self.counts.get(candidate)
            if totals is None:
                totals = self.counts[candidate] = SuggestionTotals()
            totals.add(public=public, sites=sites)

    def finalize(self) -> dict[str, SuggestionTotals]:
        """Drop short candidates and stop words, then merge case variants."""
        stopwords = normalize_stopwords(self.suggester.stopwords)
        mode = self.suggester.stopwords_mode
        kept = {
            text: totals
            for text, totals in self.counts.items()
            if len(text) >= MIN_SUGGESTION_LENGTH and not has_boundary_stopword(text, stopwords, mode)
        }
        return merge_case_variants(kept)


def merge_case_variants(counts: dict[str, SuggestionTotals]) -> dict[str, SuggestionTotals]:
    """Keep one text per case-insensitive group: the most frequent variant, first seen on ties."""
    groups: dict[str, list[tuple[str, SuggestionTotals]]] = {}
    for text, totals in counts.items():
        groups.setdefault(text.casefold(), []).append((text, totals))

    merged: dict[str, SuggestionTotals] = {}
    for variants in groups.values():
        winner_text, winner_totals = variants[0]
        for text, totals in variants[1:]:
            if totals.total_all > winner_totals.total_all:
                winner_text, winner_totals = text, totals
        combined = SuggestionTotals()
        for _, totals in variants:
            combined.merge(totals)
        merged[winner_text] = combined
    return merged


class IndexSuggestions(AbstractJob):
    """Job arguments: ``search_suggester_id``, optional ``resource_types`` and ``force``."""

    job_class = "IndexSuggestions"
    reference_prefix = "search/suggester"

    def perform(self) -> None:
        suggester_id = self.get_arg("search_suggester_id")
        try:
            suggester = self.configs.get_suggester(int(suggester_id)) if suggester_id else None
            engine = self.configs.get_engine(suggester.engine_id) if suggester else None
        except ConfigurationError as e:
            logger.error("Suggester #%s cannot be indexed: %s", suggester_id, e)
            return
        if suggester is None:
            logger.error("Suggester #%s not found", suggester_id)
            return
        if engine is None:
            logger.error("Search engine #%s of suggester %s not found", suggester.engine_id, suggester.name)
            return
        if engine.adapter != "internal":
            logger.error(
                "Suggester %s: only engines of the internal adapter can be indexed, not %s",
                suggester.name,
                engine.adapter,
            )
            return

        resource_types = self._resource_types(engine)
        if not resource_types:
            logger.info("Suggester %s: no resource type to index", suggester.name)
            return

        if not self.guard_concurrency():
            return

        started = time.monotonic()
        logger.info(
            "Suggester %s: indexing suggestions for %s (mode %s)",
            suggester.name,
            ", ".join(resource_types),
            suggester.mode_index,
        )

        aggregator = SuggestionAggregator(suggester, max_length=self.settings.suggestion_max_length)
        stopped = False
        with self.database.read() as conn:
            include_ids, excluded_ids = self._property_filter(conn, suggester)
            batches = iter_value_batches(
                conn,
                resource_types=resource_types,
                include_property_ids=include_ids,
                excluded_property_ids=excluded_ids,
                batch_size=self.settings.suggestion_batch_size,
            )
            for batch_number, batch in enumerate(batches, start=1):
                if self.should_stop():
                    stopped = True
                    break
                memberships = site_memberships(conn, (row.owner_id for row in batch))
                for row in batch:
                    aggregator.add(
                        row.value,
                        public=row.is_public and row.resource_is_public,
                        sites=memberships.get(row.owner_id, ()),
                    )
                logger.info(
                    "Suggester %s: batch %d, %d values read, %d candidates",
                    suggester.name,
                    batch_number,
                    aggregator.values_read,
                    len(aggregator.counts),
                )

        if stopped:
            with self.database.transaction() as conn:
                deleted = self._delete_suggestions(conn, suggester.id)
            logger.warning(
                "Suggester %s: job stopped after %d values; %d suggestions were deleted and not rebuilt",
                suggester.name,
                aggregator.values_read,
                deleted,
            )
            self.mark_stopped()
            return

        suggestions = aggregator.finalize()
        with self.database.transaction() as conn:
            deleted = self._delete_suggestions(conn, suggester.id)
            self._insert_suggestions(conn, suggester.id, suggestions)
        logger.info("Suggester %s: %d previous suggestions replaced", suggester.name, deleted)

        logger.info(
            "Suggester %s: %d suggestions indexed from %d values in %.2fs",
            suggester.name,
            len(suggestions),
            aggregator.values_read,
            time.monotonic() - started,
        )

    def _resource_types(self, engine: SearchEngineConfig) -> list[str]:
        requested = self.get_list_arg("resource_types")
        if not requested:
            return list(engine.resource_types)
        return [resource_type for resource_type in engine.resource_types if resource_type in requested]

    def _property_filter(
        self, conn: sqlite3.Connection, suggester: SuggesterConfig
    ) -> tuple[list[int] | None, list[int]]:
        """Included property ids (``None`` for all) and excluded ones."""
        excluded_terms = set(suggester.excluded_fields) | set(DEFAULT_EXCLUDED_FIELDS)
        excluded_ids = sorted(property_ids(conn, excluded_terms).values())
        if not suggester.fields:
            return None, excluded_ids
        known = property_ids(conn, suggester.fields)
        unknown = [term for term in suggester.fields if term not in known]
        if unknown:
            logger.warning("Suggester %s: unknown fields ignored: %s", suggester.name, ", ".join(unknown))
        included = [property_id for property_id in known.values() if property_id not in excluded_ids]
        return included, excluded_ids

    def _delete_suggestions(self, conn: sqlite3.Connection, suggester_id: int) -> int:
        conn.execute(
            """
            DELETE FROM search_suggestion_site
            WHERE suggestion_id IN (SELECT id FROM search_suggestion WHERE suggester_id = ?)
            """,
            (suggester_id,),
        )
        cursor = conn.execute("DELETE FROM search_suggestion WHERE suggester_id = ?", (suggester_id,))
        return cursor.rowcount

    def _insert_suggestions(
        self, conn: sqlite3.Connection, suggester_id: int, suggestions: dict[str, SuggestionTotals]
    ) -> None:
        site_rows: list[tuple[int, int, int, int]] = []
        for text, totals in suggestions.items():
            cursor = conn.execute(
                "INSERT INTO search_suggestion (suggester_id, text, total_all, total_public) VALUES (?, ?, ?, ?)",
                (suggester_id, text, totals.total_all, totals.total_public),
            )
            suggestion_id = int(cursor.lastrowid)
            site_rows.append((suggestion_id, 0, totals.total_all, totals.total_public))
            for site_id, (total_all, total_public) in sorted(totals.sites.items()):
                site_rows.append((suggestion_id, site_id, total_all, total_public))
        conn.executemany(
            "INSERT INTO search_suggestion_site (suggestion_id, site_id, total_all, total_public) VALUES (?, ?, ?, ?)",
            site_rows,
        )
