"""Tests for filter operators, joiners and metadata fields."""

import pytest

from resource_search.querier import InternalQuerier
from resource_search.querier.filters import parse_range
from resource_search.query import Query


@pytest.fixture
def querier(engine, database):
    return InternalQuerier(engine, database)


def run(querier, *clauses, is_public=None):
    """Ids of the items matching the filter clauses ``(field, operator, value[, joiner])``."""
    query = Query(query_text="*", resource_types=["items"], is_public=is_public)
    for clause in clauses:
        query.add_filter(clause[0], clause[2], clause[1], clause[3] if len(clause) > 3 else "and")
    return querier.query(query).result_ids("items")


class TestOperators:
    """Test each operator against the seeded collection."""

    def test_eq(self, querier, seeded):
        assert run(querier, ("dcterms:subject", "eq", "London")) == [seeded.item3]

    def test_eq_is_exact(self, querier, seeded):
        assert run(querier, ("dcterms:subject", "eq", "Lond")) == []

    def test_eq_list_means_any_of(self, querier, seeded):
        result = run(querier, ("dcterms:subject", "eq", ["London", "Paris"]))
        assert result == [seeded.item1, seeded.item2, seeded.item3]

    def test_neq(self, querier, seeded):
        assert run(querier, ("dcterms:subject", "neq", "Paris")) == [seeded.item3, seeded.item5]

    def test_in_is_case_insensitive_containment(self, querier, seeded):
        assert run(querier, ("dcterms:title", "in", "bridge")) == [seeded.item3]

    def test_nin(self, querier, seeded):
        assert run(querier, ("dcterms:title", "nin", "paris")) == [seeded.item3, seeded.item5]

    def test_in_escapes_wildcards(self, querier, seeded):
        assert run(querier, ("dcterms:title", "in", "_")) == []

    def test_sw_and_ew(self, querier, seeded):
        assert run(querier, ("dcterms:title", "sw", "Paris")) == [seeded.item1, seeded.item2]
        assert run(querier, ("dcterms:title", "ew", "Night")) == [seeded.item2]

    def test_ex_and_nex(self, querier, seeded):
        assert run(querier, ("dcterms:date", "ex", None)) == [seeded.item1, seeded.item2, seeded.item3]
        assert run(querier, ("dcterms:date", "nex", None)) == [seeded.item5]

    def test_ex_only_sees_public_values(self, querier, seeded):
        assert run(querier, ("dcterms:subject", "nex", None)) == [seeded.item5]

    def test_res(self, querier, seeded):
        assert run(querier, ("dcterms:relation", "res", seeded.letters)) == [seeded.item3]
        assert run(querier, ("dcterms:relation", "res", seeded.photographs)) == []

    def test_eq_matches_linked_resource_title(self, querier, seeded):
        assert run(querier, ("dcterms:relation", "eq", "Letters")) == [seeded.item3]

    def test_numeric_comparison(self, querier, seeded):
        assert run(querier, ("dcterms:date", "gte", "1925")) == [seeded.item2, seeded.item3]
        assert run(querier, ("dcterms:date", "gt", 1931)) == [seeded.item3]

    def test_date_comparison(self, querier, seeded):
        assert run(querier, ("dcterms:date", "lt", "2000-01-01")) == [seeded.item1, seeded.item2]
        assert run(querier, ("dcterms:date", "lte", "1923")) == [seeded.item1]

    def test_range_bounds_are_inclusive_and_optional(self, querier, seeded):
        assert run(querier, ("dcterms:date", "range", "1923..1931")) == [seeded.item1, seeded.item2]
        assert run(querier, ("dcterms:date", "range", {"from": "1930"})) == [seeded.item2, seeded.item3]
        assert run(querier, ("dcterms:date", "range", [None, 1925])) == [seeded.item1]

    def test_negative_values_compare_numerically(self, querier, seeded):
        assert run(querier, ("dcterms:date", "lt", 0), is_public=False) == [seeded.item4]

    def test_empty_value_skips_the_clause(self, querier, seeded):
        assert run(querier, ("dcterms:subject", "eq", "")) == seeded.public_items


class TestJoiners:
    """Test left-to-right folding of clauses on one field."""

    def test_or(self, querier, seeded):
        result = run(querier, ("dcterms:subject", "eq", "London"), ("dcterms:subject", "eq", "Paris", "or"))
        assert result == [seeded.item1, seeded.item2, seeded.item3]

    def test_and_not(self, querier, seeded):
        result = run(querier, ("dcterms:title", "sw", "Paris"), ("dcterms:title", "ew", "Night", "not"))
        assert result == [seeded.item1]

    def test_leading_not_negates_the_first_clause(self, querier, seeded):
        assert run(querier, ("dcterms:subject", "eq", "Paris", "not")) == [seeded.item3, seeded.item5]

    def test_distinct_fields_are_anded(self, querier, seeded):
        result = run(querier, ("dcterms:subject", "eq", "Paris"), ("dcterms:date", "gte", 1925))
        assert result == [seeded.item2]


class TestFields:
    """Test metadata fields, aliases and unknown fields."""

    def test_item_set_membership_is_inclusive(self, querier, seeded):
        assert run(querier, ("item_set_id", "eq", seeded.photographs)) == [seeded.item1, seeded.item2]
        assert run(querier, ("o:item_set", "eq", seeded.letters)) == [seeded.item2, seeded.item3]
        assert run(querier, ("item_set_id", "eq", [seeded.photographs, seeded.letters])) == [
            seeded.item1,
            seeded.item2,
            seeded.item3,
        ]

    def test_item_set_negation(self, querier, seeded):
        assert run(querier, ("item_set_id", "neq", seeded.photographs)) == [seeded.item3, seeded.item5]

    def test_resource_class_by_id_or_term(self, querier, seeded):
        assert run(querier, ("resource_class_id", "eq", seeded.image_class)) == [seeded.item1, seeded.item2]
        assert run(querier, ("resource_class", "eq", "dctype:Text")) == [seeded.item3]

    def test_resource_template_by_label(self, querier, seeded):
        assert run(querier, ("resource_template_id", "eq", "Base Resource")) == [seeded.item1, seeded.item3]

    def test_title_alias_and_field_suffix(self, querier, seeded):
        assert run(querier, ("o:title", "eq", "Untitled")) == [seeded.item5]
        assert run(querier, ("dcterms:subject_field", "eq", "London")) == [seeded.item3]

    def test_id(self, querier, seeded):
        assert run(querier, ("id", "eq", [seeded.item1, seeded.item3])) == [seeded.item1, seeded.item3]

    def test_is_public_filter_is_ignored(self, querier, seeded):
        assert run(querier, ("is_public", "eq", 0)) == seeded.public_items

    def test_unknown_field_never_matches_positively(self, querier, seeded, caplog):
        assert run(querier, ("foo:bar", "eq", "x")) == []
        assert "Unknown filter field foo:bar" in caplog.text

    def test_unknown_field_negated_matches_everything(self, querier, seeded):
        assert run(querier, ("foo:bar", "neq", "x")) == seeded.public_items


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("1900..1950", ("1900", "1950")),
        ("1900..", ("1900", None)),
        ("..1950", (None, "1950")),
        ([1, 2], (1, 2)),
        ({"min": 3, "max": 4}, (3, 4)),
        ("1923", ("1923", "1923")),
    ],
)
def test_parse_range(value, expected):
    assert parse_range(value) == expected
