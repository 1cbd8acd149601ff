"""Tests for the internal querier: text, visibility, site scope, sorting and pagination."""

import sqlite3

import pytest

from resource_search.config import Settings
from resource_search.querier import InternalQuerier, QuerierException
from resource_search.query import Query


@pytest.fixture
def querier(engine, database):
    return InternalQuerier(engine, database, settings=Settings(database_path=database.path))


def items_query(text="*", **kwargs):
    return Query(query_text=text, resource_types=["items"], **kwargs)


class TestExecution:
    """Test resource type resolution and executability."""

    def test_wildcard_returns_public_items_in_id_order(self, querier, seeded):
        response = querier.query(items_query())

        assert response.is_success
        assert response.result_ids("items") == seeded.public_items
        assert response.get_resource_total_results("items") == 4
        assert response.total_results == 4

    def test_unrestricted_query_includes_private_items(self, querier, seeded):
        response = querier.query(items_query(is_public=False))

        assert seeded.item4 in response.result_ids("items")
        assert response.total_results == 5

    def test_no_resource_type_to_search(self, configs, database, seeded):
        engine = configs.add_engine("items only", resource_types=["items"])
        querier = InternalQuerier(engine, database)

        response = querier.query(Query(query_text="*", resource_types=["media"]))

        assert not response.is_success
        assert response.message == "no resource type to search"

    def test_empty_request_means_every_engine_type(self, querier, seeded):
        response = querier.query(Query(query_text="*"))

        assert set(response.resource_total_results) == {"items", "item_sets", "media"}
        assert response.get_resource_total_results("item_sets") == 2
        assert response.get_resource_total_results("media") == 1
        assert response.total_results == 7

    def test_non_executable_query_is_an_empty_success(self, querier, seeded):
        response = querier.query(Query(resource_types=["items"]))

        assert response.is_success
        assert response.total_results == 0
        assert response.results == {}

    def test_filter_without_value_is_not_a_predicate(self, querier, seeded):
        response = querier.query(Query(resource_types=["items"]).add_filter("dcterms:title", "", "eq"))

        assert response.is_success
        assert response.total_results == 0

    def test_default_query_returns_everything(self, querier, seeded):
        response = querier.query(Query(resource_types=["items"], default_query=True))

        assert response.result_ids("items") == seeded.public_items

    def test_store_errors_become_querier_exceptions(self, querier, monkeypatch, seeded):
        def broken_plan(*args, **kwargs):
            raise sqlite3.OperationalError("no such table: resource")

        monkeypatch.setattr(querier, "_plan", broken_plan)

        with pytest.raises(QuerierException, match="no such table"):
            querier.query(items_query())


class TestFullText:
    """Test free text matching and relevance."""

    def test_word_matches_values_and_titles(self, querier, seeded):
        response = querier.query(items_query("paris"))

        assert response.result_ids("items") == [seeded.item1, seeded.item2]
        assert all(result["score"] > 0 for result in response.get_results("items"))

    def test_every_word_must_match(self, querier, seeded):
        response = querier.query(items_query("paris spring"))

        assert response.result_ids("items") == [seeded.item1]

    def test_quoted_phrase(self, querier, seeded):
        response = querier.query(items_query('"Paris at"'))

        assert response.result_ids("items") == [seeded.item2]

    def test_private_values_are_not_searched(self, querier, seeded):
        assert querier.query(items_query("hidden")).total_results == 0
        assert querier.query(items_query("hidden", is_public=False)).result_ids("items") == [seeded.item5]

    def test_like_wildcards_are_literal(self, querier, seeded):
        assert querier.query(items_query("%")).total_results == 0

    def test_excluded_fields(self, querier, seeded):
        assert querier.query(items_query("bridges")).result_ids("items") == [seeded.item3]

        query = items_query("bridges")
        query.excluded_fields = ["bibo:content"]
        assert querier.query(query).total_results == 0

    def test_default_fields_restrict_text_search(self, configs, database, seeded):
        engine = configs.add_engine("subjects", resource_types=["items"], default_fields=["dcterms:subject"])
        querier = InternalQuerier(engine, database)

        assert querier.query(items_query("spring")).total_results == 0
        assert querier.query(items_query("london")).result_ids("items") == [seeded.item3]


class TestScope:
    """Test site scope and pagination."""

    def test_site_scope(self, querier, seeded):
        response = querier.query(items_query(site_id=seeded.archive))

        assert response.result_ids("items") == [seeded.item1, seeded.item2]

    def test_media_follow_their_item_site(self, querier, seeded):
        exhibit = querier.query(Query(query_text="*", resource_types=["media"], site_id=seeded.exhibit))
        archive = querier.query(Query(query_text="*", resource_types=["media"], site_id=seeded.archive))

        assert exhibit.result_ids("media") == [seeded.media1]
        assert archive.total_results == 0

    def test_pagination_keeps_totals(self, querier, seeded):
        query = items_query().set_limit_page(2, 2)

        response = querier.query(query)

        assert response.result_ids("items") == [seeded.item3, seeded.item5]
        assert response.get_resource_total_results("items") == 4


class TestSort:
    """Test sorting and its fallbacks."""

    def test_title_descending(self, querier, seeded):
        response = querier.query(items_query().set_sort("title desc"))

        assert response.result_ids("items") == [seeded.item5, seeded.item1, seeded.item2, seeded.item3]

    def test_alias_to_property_puts_missing_values_last(self, querier, seeded):
        ascending = querier.query(items_query().set_sort("date asc"))
        descending = querier.query(items_query().set_sort("date desc"))

        assert ascending.result_ids("items") == [seeded.item1, seeded.item2, seeded.item3, seeded.item5]
        assert descending.result_ids("items") == [seeded.item3, seeded.item2, seeded.item1, seeded.item5]

    def test_unknown_field_falls_back_to_id(self, querier, seeded):
        response = querier.query(items_query().set_sort("foo:bar desc"))

        assert response.result_ids("items") == seeded.public_items

    def test_relevance_ignores_direction(self, querier, seeded):
        response = querier.query(items_query("paris").set_sort("relevance asc"))

        assert response.result_ids("items") == [seeded.item1, seeded.item2]


class TestValuesAndIds:
    def test_query_values(self, querier, seeded):
        assert querier.query_values("dcterms:subject") == {"London": "London", "Paris": "Paris", "hidden": "hidden"}

    def test_query_values_of_item_sets_have_labels(self, querier, seeded):
        values = querier.query_values("item_set")

        assert values == {str(seeded.photographs): "Photographs", str(seeded.letters): "Letters"}

    def test_query_values_of_unknown_field(self, querier, seeded):
        assert querier.query_values("foo:bar") == {}

    def test_all_resource_ids(self, querier, seeded):
        query = Query(query_text="paris", is_public=False)

        assert querier.query_all_resource_ids(query) == [seeded.item1, seeded.item2, seeded.item4]
        by_type = querier.query_all_resource_ids(query, by_resource_type=True)
        assert by_type == {"items": [seeded.item1, seeded.item2, seeded.item4], "item_sets": [], "media": []}
        assert querier.query_all_resource_ids(query, "media") == []
