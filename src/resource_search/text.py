"""Text normalization helpers shared by the querier and the suggestion indexer."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
import re


SUGGESTION_MAX_LENGTH = 190

# Characters removed from both ends of a suggestion candidate. The first group
# could be abused in LIKE patterns or markup, the second is plain punctuation.
SECURITY_TRIM_CHARS = "\"'\\%_#?$"
PUNCTUATION_TRIM_CHARS = ",;!:.[]<>(){}=&\u2019"
BOUNDARY_TRIM_CHARS = SECURITY_TRIM_CHARS + PUNCTUATION_TRIM_CHARS + " \t\n\r\x0b\x0c\x00"

# Separators replaced by spaces before splitting a value into single words.
_WORD_SEPARATORS = re.compile(r"[\"'\\%_#?$,;!\u2019\[\]<>(){}=&]")
_LINE_BREAKS = re.compile(r"[\r\n]+")
_LEADING_INTEGER = re.compile(r"^\s*(-?)(\d+)")

LIKE_ESCAPE = "\\"


def collapse_line_breaks(value: str) -> str:
    """Replace carriage returns and newlines by single spaces."""
    return _LINE_BREAKS.sub(" ", value)


def trim_boundaries(value: str) -> str:
    """Strip quotes, backslashes, wildcards and punctuation from both ends."""
    return value.strip(BOUNDARY_TRIM_CHARS)


def truncate(value: str, max_length: int = SUGGESTION_MAX_LENGTH) -> str:
    if len(value) <= max_length:
        return value
    return trim_boundaries(value[:max_length])


def front_ngrams(value: str, max_words: int, *, max_length: int = SUGGESTION_MAX_LENGTH) -> list[str]:
    """Return the first 1..max_words words of a value, cleaned and deduplicated.

    Extraction always starts at the front of the value: "Paris in Spring"
    gives "Paris", "Paris in" and "Paris in Spring", never "in Spring".
    """
    tokens = collapse_line_breaks(value).split()
    candidates: list[str] = []
    for width in range(1, min(max_words, len(tokens)) + 1):
        candidate = truncate(trim_boundaries(" ".join(tokens[:width])), max_length)
        if candidate:
            candidates.append(candidate)
    return list(dict.fromkeys(candidates))


def single_words(value: str, *, max_length: int = SUGGESTION_MAX_LENGTH) -> list[str]:
    """Return every word of a value, separators removed, deduplicated in order."""
    cleaned = _WORD_SEPARATORS.sub(" ", collapse_line_breaks(value))
    words = (truncate(trim_boundaries(word), max_length) for word in cleaned.split())
    return list(dict.fromkeys(word for word in words if word))


def full_value(value: str, *, max_length: int = SUGGESTION_MAX_LENGTH) -> str:
    """Return the whole value on a single line, truncated."""
    return truncate(collapse_line_breaks(value).replace("\\", " ").strip(), max_length)


def normalize_stopwords(stopwords: Iterable[str] | None) -> frozenset[str]:
    """Casefold stop words; they are compared as literal tokens, never as patterns."""
    if not stopwords:
        return frozenset()
    return frozenset(word.strip().casefold() for word in stopwords if word and word.strip())


def _is_stopword(token: str, stopwords: frozenset[str]) -> bool:
    # "The," at the start of "The, cat" is still "the"
    token = token.casefold()
    return token in stopwords or trim_boundaries(token) in stopwords


def has_boundary_stopword(candidate: str, stopwords: frozenset[str], mode: str) -> bool:
    """Check whether the first and/or last token of a candidate is a stop word.

    Args:
        candidate: Suggestion text, tokens separated by whitespace.
        stopwords: Casefolded stop words from :func:`normalize_stopwords`.
        mode: "start", "end" or "start_end".
    """
    if not stopwords:
        return False
    tokens = candidate.split()
    if not tokens:
        return False
    if mode in ("start", "start_end") and _is_stopword(tokens[0], stopwords):
        return True
    if mode in ("end", "start_end") and _is_stopword(tokens[-1], stopwords):
        return True
    return False


def normalize_first_digits(option: object) -> bool | int:
    """Coerce a facet ``first_digits`` option to ``False``, ``True`` or a digit count.

    Strings are accepted the way form configuration stores them: ``"3"`` is
    3, ``"true"`` is True, empty strings and ``"0"`` disable extraction.
    """
    if option is None or option is False:
        return False
    if option is True:
        return True
    if isinstance(option, int):
        return option if option > 0 else False
    if isinstance(option, str):
        text = option.strip().lower()
        if text in ("true", "yes", "on"):
            return True
        if text.isdigit():
            digits = int(text)
            return digits if digits > 0 else False
    return False


def leading_integer(value: object) -> int | None:
    """Extract the leading signed integer of a value, e.g. the year of a date."""
    if value is None:
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    match = _LEADING_INTEGER.match(str(value))
    if not match:
        return None
    sign, digits = match.groups()
    number = int(digits)
    return -number if sign else number


def first_digits_bucket(value: object, first_digits: bool | int) -> int | None:
    """Bucket a value by the first significant digits of its leading integer.

    ``True`` keeps the full integer, an int N keeps the first N significant
    digits with the sign preserved: ``-523`` with 2 gives ``-52``, ``2014``
    with 3 gives ``201`` and ``-500`` with 3 stays ``-500``.
    """
    number = leading_integer(value)
    if number is None:
        return None
    if first_digits is True or not first_digits:
        return number
    digits = str(abs(number))[:first_digits]
    truncated = int(digits)
    return -truncated if number < 0 else truncated


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally (use with ESCAPE '\\')."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def split_words(text: str) -> Iterator[str]:
    """Yield the non-empty whitespace-separated words of a search text."""
    for word in text.split():
        word = word.strip()
        if word:
            yield word


def is_quoted_phrase(text: str) -> bool:
    return len(text) >= 2 and text.startswith('"') and text.endswith('"')
