"""Tests for the suggestion indexing job."""

import sqlite3

import pytest

from resource_search.engine_config import SuggesterConfig
from resource_search.jobs import CancellationToken, IndexSuggestions, JobStatus, run_job
from resource_search.jobs import index_suggestions
from resource_search.jobs.index_suggestions import SuggestionAggregator, SuggestionTotals, merge_case_variants
from resource_search.store import Database, JobStore, SettingsStore


def suggestions(database, suggester_id):
    with database.read() as conn:
        rows = conn.execute(
            "SELECT text, total_all, total_public FROM search_suggestion WHERE suggester_id = ?",
            (suggester_id,),
        ).fetchall()
    return {row["text"]: (row["total_all"], row["total_public"]) for row in rows}


def scope_totals(database, suggester_id, text):
    with database.read() as conn:
        rows = conn.execute(
            """
            SELECT ss.site_id, ss.total_all, ss.total_public
            FROM search_suggestion_site ss
            JOIN search_suggestion s ON s.id = ss.suggestion_id
            WHERE s.suggester_id = ? AND s.text = ?
            """,
            (suggester_id, text),
        ).fetchall()
    return {row["site_id"]: (row["total_all"], row["total_public"]) for row in rows}


@pytest.fixture
def suggester(configs, engine):
    return configs.add_suggester(engine.id, "titles", fields=["dcterms:title"], max_words=2)


@pytest.fixture
def index(database, settings):
    def _index(suggester_id, token=None, **args):
        job = IndexSuggestions(database, {"search_suggester_id": suggester_id, **args}, token=token, settings=settings)
        return job, run_job(job)

    return _index


class TestIndexSuggestions:
    """Test the job end to end against the seeded collection."""

    def test_front_ngrams_with_totals(self, index, database, suggester, seeded):
        job, status = index(suggester.id, resource_types=["items"])

        assert status is JobStatus.COMPLETED
        assert suggestions(database, suggester.id) == {
            "Paris": (2, 2),
            "Paris in": (1, 1),
            "Paris at": (1, 1),
            "London": (1, 1),
            "London Bridge": (1, 1),
            "Secret": (1, 0),
            "Secret Paris": (1, 0),
            "Untitled": (1, 1),
        }

    def test_site_scopes(self, index, database, suggester, seeded):
        index(suggester.id)

        assert scope_totals(database, suggester.id, "Paris") == {
            0: (2, 2),
            seeded.archive: (2, 2),
            seeded.exhibit: (1, 1),
        }
        assert scope_totals(database, suggester.id, "Secret") == {0: (1, 0)}
        # Media values count for the sites of their item.
        assert scope_totals(database, suggester.id, "Bridge photo") == {0: (1, 1), seeded.exhibit: (1, 1)}

    def test_stopwords(self, index, database, configs, engine, seeded):
        suggester = configs.add_suggester(
            engine.id,
            "no trailing stop words",
            fields=["dcterms:title"],
            stopwords=["In", "at"],
            stopwords_mode="end",
        )

        index(suggester.id, resource_types=["items"])

        texts = set(suggestions(database, suggester.id))
        assert "Paris in" not in texts
        assert "Paris at" not in texts
        assert {"Paris", "London Bridge"} <= texts

    def test_every_property_but_excluded_ones(self, index, database, configs, engine, seeded):
        suggester = configs.add_suggester(engine.id, "everything", max_words=1)

        index(suggester.id, resource_types=["items"])

        indexed = suggestions(database, suggester.id)
        assert indexed["Paris"] == (5, 4)
        assert indexed["hidden"] == (1, 0)
        assert "Long" not in indexed

    def test_reindex_is_idempotent(self, index, database, suggester, seeded):
        index(suggester.id)
        first = suggestions(database, suggester.id)

        index(suggester.id)

        assert suggestions(database, suggester.id) == first

    def test_stop_commits_the_deletion_only(self, index, database, suggester, seeded):
        index(suggester.id)
        token = CancellationToken()
        token.cancel()

        job, status = index(suggester.id, token=token)

        assert status is JobStatus.STOPPED
        assert suggestions(database, suggester.id) == {}
        assert JobStore(database).get(job.job_id)["status"] == "stopped"

    def test_failure_rolls_everything_back(self, index, database, suggester, seeded, monkeypatch):
        index(suggester.id)
        before = suggestions(database, suggester.id)

        def broken_finalize(self):
            raise RuntimeError("aggregation failed")

        monkeypatch.setattr(index_suggestions.SuggestionAggregator, "finalize", broken_finalize)
        job = IndexSuggestions(database, {"search_suggester_id": suggester.id})

        with pytest.raises(RuntimeError, match="aggregation failed"):
            run_job(job)

        assert suggestions(database, suggester.id) == before
        assert JobStore(database).get(job.job_id)["status"] == "error"

    def test_other_writers_proceed_while_values_are_read(self, index, database, suggester, seeded, monkeypatch):
        writer = SettingsStore(Database(database.path, busy_timeout_ms=100))
        read_memberships = index_suggestions.site_memberships

        def write_between_batches(conn, resource_ids):
            writer.set("written_during_indexing", True)
            return read_memberships(conn, resource_ids)

        monkeypatch.setattr(index_suggestions, "site_memberships", write_between_batches)

        _, status = index(suggester.id)

        assert status is JobStatus.COMPLETED
        assert SettingsStore(database).get("written_during_indexing") is True
        assert suggestions(database, suggester.id)["Paris"] == (2, 2)

    def test_failed_insert_keeps_previous_suggestions(self, index, database, suggester, seeded, monkeypatch):
        index(suggester.id)
        before = suggestions(database, suggester.id)

        def broken_insert(self, conn, suggester_id, suggestions):
            raise sqlite3.OperationalError("database or disk is full")

        monkeypatch.setattr(IndexSuggestions, "_insert_suggestions", broken_insert)

        with pytest.raises(sqlite3.OperationalError, match="disk is full"):
            index(suggester.id)

        assert suggestions(database, suggester.id) == before

    def test_resource_types_given_as_text(self, index, database, suggester, seeded):
        index(suggester.id, resource_types="item_sets, media")

        indexed = suggestions(database, suggester.id)
        assert "Bridge photo" in indexed
        assert "Paris" not in indexed

    def test_invalid_suggester_settings(self, index, database, suggester, seeded, caplog):
        with database.transaction() as conn:
            conn.execute("UPDATE search_suggester SET settings = ? WHERE id = ?", ('{"max_words": 0}', suggester.id))

        _, status = index(suggester.id)

        assert status is JobStatus.COMPLETED
        assert f"Suggester #{suggester.id} cannot be indexed" in caplog.text

    def test_concurrency_guard(self, index, database, suggester, seeded, caplog):
        JobStore(database).create("IndexSuggestions", {}, status="in_progress")

        _, status = index(suggester.id)

        assert status is JobStatus.COMPLETED
        assert suggestions(database, suggester.id) == {}
        assert "already running" in caplog.text

    def test_forced_job_runs_anyway(self, index, database, suggester, seeded, caplog):
        JobStore(database).create("IndexSuggestions", {}, status="in_progress")

        index(suggester.id, force=True)

        assert "Paris" in suggestions(database, suggester.id)
        assert "continuing because the job is forced" in caplog.text

    def test_only_internal_engines_are_indexed(self, index, database, configs, seeded, caplog):
        engine = configs.add_engine("remote", adapter="noop", resource_types=["items"])
        suggester = configs.add_suggester(engine.id, "remote titles")

        _, status = index(suggester.id)

        assert status is JobStatus.COMPLETED
        assert suggestions(database, suggester.id) == {}
        assert "only engines of the internal adapter" in caplog.text

    def test_missing_suggester(self, index, seeded, caplog):
        _, status = index(999)

        assert status is JobStatus.COMPLETED
        assert "Suggester #999 not found" in caplog.text


class TestAggregation:
    """Test candidate extraction and case merging without a database."""

    def make(self, **settings):
        return SuggestionAggregator(SuggesterConfig(id=1, name="test", engine_id=1, **settings), max_length=190)

    @pytest.mark.parametrize(
        ("mode", "max_words", "expected"),
        [
            ("start", 2, ["Paris", "Paris in"]),
            ("contain", 2, ["Paris", "in", "Spring"]),
            ("full", 2, ["Paris in Spring"]),
            ("start_full", 1, ["Paris", "Paris in Spring"]),
            ("contain_full", 1, ["Paris", "in", "Spring", "Paris in Spring"]),
        ],
    )
    def test_candidates_per_mode(self, mode, max_words, expected):
        assert self.make(mode_index=mode, max_words=max_words).candidates("Paris in Spring") == expected

    def test_candidates_are_counted_once_per_value(self):
        aggregator = self.make(mode_index="start_full", max_words=2)

        aggregator.add("Paris", public=True)

        assert aggregator.counts["Paris"].total_all == 1

    def test_short_candidates_are_dropped(self):
        aggregator = self.make(mode_index="contain")

        aggregator.add("a bridge", public=True)

        assert set(aggregator.finalize()) == {"bridge"}

    def test_most_frequent_case_variant_wins(self):
        aggregator = self.make(max_words=1)
        for value in ("Paris", "paris", "paris", "PARIS"):
            aggregator.add(value, public=value != "PARIS", sites=(3,))

        merged = aggregator.finalize()

        assert list(merged) == ["paris"]
        assert merged["paris"].total_all == 4
        assert merged["paris"].total_public == 3
        assert merged["paris"].sites == {3: [4, 3]}

    def test_first_seen_variant_wins_ties(self):
        counts = {
            "Paris": SuggestionTotals(total_all=1, total_public=1),
            "paris": SuggestionTotals(total_all=1, total_public=0),
        }

        merged = merge_case_variants(counts)

        assert list(merged) == ["Paris"]
        assert merged["Paris"].total_all == 2
