"""Search engine and suggester configuration using Pydantic.

A search engine configuration names the adapter that answers queries
("internal" reads the relational store directly) and the resource types it
exposes. A suggester configuration describes which fields feed the
autosuggest index of one engine and how they are cut into suggestions.

Configuration validates on load so a broken row fails fast instead of
producing a half-indexed suggester.
"""

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator


RESOURCE_TYPES = ("items", "item_sets", "media")

DEFAULT_EXCLUDED_FIELDS = (
    "dcterms:tableOfContents",
    "bibo:content",
    "extracttext:extracted_text",
)


class ConfigurationError(LookupError):
    """A search engine or suggester is missing or unusable."""


def _split_csv(raw_value: str | None) -> list[str]:
    """Split comma-separated config strings into trimmed entries."""

    if not raw_value:
        return []
    return [entry.strip() for entry in raw_value.split(",") if entry.strip()]


def _normalize_string_list(value: object) -> list[str]:
    """Normalize strings or iterables into a trimmed, deduplicated list."""

    if value is None or value == "":
        return []

    if isinstance(value, str):
        return list(dict.fromkeys(_split_csv(value)))

    if isinstance(value, (list, tuple, set, frozenset)):
        normalized: list[str] = []
        for item in value:
            if item is None:
                continue
            stripped = str(item).strip()
            if stripped:
                normalized.append(stripped)
        return list(dict.fromkeys(normalized))

    raise TypeError("Expected string, list, tuple, or set when parsing configuration lists")


class SearchEngineConfig(BaseModel):
    """Configuration of one search engine."""

    model_config = {"extra": "forbid"}

    id: int
    name: str = Field(min_length=1)
    adapter: Annotated[
        Literal["internal", "noop"],
        Field(description="Querier/indexer family bound to this engine"),
    ] = "internal"
    resource_types: list[str] = Field(
        default_factory=lambda: ["items"],
        description="Resource types this engine can search and index",
    )
    default_fields: list[str] = Field(
        default_factory=list,
        description="Property terms searched by free text; empty means every property and the title",
    )
    sort_fields: dict[str, str] = Field(
        default_factory=dict,
        description="Sort aliases exposed to callers, mapped to sortable fields (e.g. 'date' -> 'dcterms:date')",
    )

    @field_validator("resource_types", mode="before")
    @classmethod
    def _validate_resource_types(cls, value: object) -> list[str]:
        resource_types = _normalize_string_list(value)
        unknown = [resource_type for resource_type in resource_types if resource_type not in RESOURCE_TYPES]
        if unknown:
            raise ValueError(f"Unsupported resource types: {', '.join(unknown)}")
        return resource_types

    @field_validator("default_fields", mode="before")
    @classmethod
    def _validate_fields(cls, value: object) -> list[str]:
        return _normalize_string_list(value)


class SuggesterConfig(BaseModel):
    """Configuration of one suggester (autosuggest index)."""

    model_config = {"extra": "forbid"}

    id: int
    name: str = Field(min_length=1)
    engine_id: int
    mode_index: Annotated[
        Literal["start", "contain", "full", "start_full", "contain_full"],
        Field(description="How values are cut: leading words, every word, and/or the full value"),
    ] = "start"
    mode_search: Annotated[
        Literal["start", "contain"],
        Field(description="Whether typed text must start a suggestion or may appear anywhere in it"),
    ] = "start"
    limit: Annotated[int, Field(ge=1, le=1000, description="Maximum suggestions returned")] = 25
    length: Annotated[int, Field(ge=1, le=190, description="Maximum length of the typed text")] = 50
    max_words: Annotated[
        int,
        Field(ge=1, le=10, description="Largest number of leading words kept in start mode"),
    ] = 2
    fields: list[str] = Field(
        default_factory=list,
        description="Property terms feeding the index; empty means every text-bearing property",
    )
    excluded_fields: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_FIELDS),
        description="Property terms never used, typically long extracted texts",
    )
    stopwords: list[str] = Field(
        default_factory=list,
        description="Words that may not start and/or end a suggestion",
    )
    stopwords_mode: Annotated[
        Literal["start", "end", "start_end"],
        Field(description="Which boundary of a suggestion is checked against stop words"),
    ] = "start_end"

    @field_validator("fields", "excluded_fields", "stopwords", mode="before")
    @classmethod
    def _validate_lists(cls, value: object) -> list[str]:
        return _normalize_string_list(value)

    @property
    def indexes_start(self) -> bool:
        return self.mode_index in ("start", "start_full")

    @property
    def indexes_contain(self) -> bool:
        return self.mode_index in ("contain", "contain_full")

    @property
    def indexes_full(self) -> bool:
        return self.mode_index in ("full", "start_full", "contain_full")


def engine_from_row(row: dict[str, Any]) -> SearchEngineConfig:
    """Build an engine configuration from a stored row with JSON settings."""
    settings = dict(row.get("settings") or {})
    try:
        return SearchEngineConfig(id=row["id"], name=row["name"], adapter=row.get("adapter") or "internal", **settings)
    except ValidationError as e:
        raise ConfigurationError(f"Search engine #{row['id']} has an invalid configuration: {e}") from e


def suggester_from_row(row: dict[str, Any]) -> SuggesterConfig:
    """Build a suggester configuration from a stored row with JSON settings."""
    settings = dict(row.get("settings") or {})
    try:
        return SuggesterConfig(id=row["id"], name=row["name"], engine_id=row["engine_id"], **settings)
    except ValidationError as e:
        raise ConfigurationError(f"Suggester #{row['id']} has an invalid configuration: {e}") from e
