"""Tests for text normalization helpers."""

import pytest

from resource_search.text import (
    escape_like,
    first_digits_bucket,
    front_ngrams,
    full_value,
    has_boundary_stopword,
    is_quoted_phrase,
    leading_integer,
    normalize_first_digits,
    normalize_stopwords,
    single_words,
    trim_boundaries,
    truncate,
)


class TestFrontNgrams:
    """Test leading word extraction."""

    def test_extracts_leading_words_only(self):
        assert front_ngrams("Paris in Spring", 2) == ["Paris", "Paris in"]
        assert front_ngrams("Paris in Spring", 5) == ["Paris", "Paris in", "Paris in Spring"]

    def test_collapses_line_breaks(self):
        assert front_ngrams("Paris\r\nin\nSpring", 3) == ["Paris", "Paris in", "Paris in Spring"]

    def test_trims_quotes_and_punctuation(self):
        assert front_ngrams('"Paris", in (Spring)', 3) == ["Paris", 'Paris", in', 'Paris", in (Spring']

    def test_drops_candidates_empty_after_trimming(self):
        assert front_ngrams("% off", 1) == []

    def test_deduplicates(self):
        assert front_ngrams("Paris. Paris", 1) == ["Paris"]


class TestSingleWords:
    def test_every_word_in_order(self):
        assert single_words("The bridge, the river & the city") == ["The", "bridge", "the", "river", "city"]

    def test_separators_are_removed(self):
        assert single_words("l'art (moderne)") == ["l", "art", "moderne"]


class TestFullValue:
    def test_single_line(self):
        assert full_value("Paris\nin Spring") == "Paris in Spring"

    def test_truncates_long_values(self):
        value = "word " * 100
        assert len(full_value(value, max_length=20)) <= 20

    def test_truncate_trims_the_cut(self):
        assert truncate("Paris, France", 6) == "Paris"

    def test_trim_boundaries(self):
        assert trim_boundaries("  'Paris?'  ") == "Paris"


class TestStopwords:
    """Test stop word boundary checks."""

    @pytest.mark.parametrize(
        ("candidate", "mode", "expected"),
        [
            ("the bridge", "start", True),
            ("the bridge", "end", False),
            ("bridge of", "end", True),
            ("bridge of", "start", False),
            ("of the", "start_end", True),
            ("bridge", "start_end", False),
        ],
    )
    def test_modes(self, candidate, mode, expected):
        stopwords = normalize_stopwords(["The", "of"])
        assert has_boundary_stopword(candidate, stopwords, mode) is expected

    def test_metacharacters_are_literal(self):
        stopwords = normalize_stopwords(["a_b", "x%"])
        assert has_boundary_stopword("a_b c", stopwords, "start")
        assert not has_boundary_stopword("axb c", stopwords, "start")
        assert not has_boundary_stopword("xyz c", stopwords, "start")

    def test_punctuation_attached_to_a_boundary_word(self):
        stopwords = normalize_stopwords(["the", "of"])
        candidates = [c for c in front_ngrams("The, cat sat", 2) if not has_boundary_stopword(c, stopwords, "start")]

        assert candidates == []
        assert has_boundary_stopword("bridge (of)", stopwords, "end")
        assert has_boundary_stopword("x% c", normalize_stopwords(["x%"]), "start")

    def test_no_stopwords(self):
        assert not has_boundary_stopword("the bridge", normalize_stopwords(None), "start_end")

    def test_normalize_drops_blank_entries(self):
        assert normalize_stopwords([" The ", "", "  "]) == frozenset({"the"})


class TestFirstDigits:
    """Test numeric prefix bucketing."""

    @pytest.mark.parametrize(
        ("value", "digits", "expected"),
        [
            (-523, 2, -52),
            (-500, 3, -500),
            (-500, 2, -50),
            (2014, 3, 201),
            ("2014-05-01", 3, 201),
            ("1923", True, 1923),
            ("-523 BC", 1, -5),
        ],
    )
    def test_bucket(self, value, digits, expected):
        assert first_digits_bucket(value, digits) == expected

    def test_value_without_integer_is_skipped(self):
        assert first_digits_bucket("circa", 2) is None
        assert leading_integer(None) is None

    @pytest.mark.parametrize(
        ("option", "expected"),
        [(None, False), (False, False), (True, True), (3, 3), ("3", 3), ("true", True), ("0", False), ("", False)],
    )
    def test_normalize_option(self, option, expected):
        assert normalize_first_digits(option) == expected


def test_escape_like():
    assert escape_like("100%_\\") == "100\\%\\_\\\\"


def test_is_quoted_phrase():
    assert is_quoted_phrase('"Paris at"')
    assert not is_quoted_phrase('"')
    assert not is_quoted_phrase("Paris")
