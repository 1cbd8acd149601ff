"""Engine-agnostic description of one search request."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from resource_search.text import normalize_first_digits


WILDCARD = "*"


class Operator(str, Enum):
    """Closed set of filter operators understood by every querier."""

    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    NIN = "nin"
    SW = "sw"
    EW = "ew"
    EX = "ex"
    NEX = "nex"
    RES = "res"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    RANGE = "range"

    @classmethod
    def parse(cls, value: str | Operator) -> Operator:
        if isinstance(value, Operator):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unknown filter operator: {value!r}") from exc


class Joiner(str, Enum):
    AND = "and"
    OR = "or"
    NOT = "not"

    @classmethod
    def parse(cls, value: str | Joiner | None) -> Joiner:
        if isinstance(value, Joiner):
            return value
        text = str(value or "and").strip().lower()
        # "not-and" and "not" are the same joiner.
        if text in ("not", "not-and", "not_and", "and-not"):
            return cls.NOT
        try:
            return cls(text)
        except ValueError as exc:
            raise ValueError(f"Unknown filter joiner: {value!r}") from exc


def clause_values(value: Any) -> list[Any]:
    """Clause values as a list; ``None`` and empty strings are dropped."""
    if isinstance(value, (list, tuple, set, frozenset)):
        raw_values = list(value)
    else:
        raw_values = [value]
    values = []
    for raw_value in raw_values:
        if raw_value is None:
            continue
        if isinstance(raw_value, str):
            raw_value = raw_value.strip()
            if not raw_value:
                continue
        values.append(raw_value)
    return list(dict.fromkeys(values))


@dataclass(slots=True)
class FilterClause:
    """One ``{operator, value, joiner}`` condition on a field."""

    operator: Operator = Operator.EQ
    value: Any = None
    joiner: Joiner = Joiner.AND

    @property
    def is_effective(self) -> bool:
        """False when the clause has nothing to compare with, like ``eq`` with ``""``."""
        if self.operator in (Operator.EX, Operator.NEX):
            return True
        value = self.value
        if isinstance(value, dict):
            value = list(value.values())
        elif self.operator is Operator.RANGE and isinstance(value, str):
            value = value.split("..", 1)
        return bool(clause_values(value))

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.operator.value, "value": self.value, "joiner": self.joiner.value}


@dataclass(slots=True)
class FacetRequest:
    """Display and grouping options of a requested facet."""

    type: str = "checkbox"
    order: str = "total desc"
    limit: int | None = None
    first_digits: bool | int = False
    languages: tuple[str, ...] = ()
    label: str | None = None

    def __post_init__(self) -> None:
        self.first_digits = normalize_first_digits(self.first_digits)
        if self.limit is not None:
            self.limit = max(0, int(self.limit))
        self.languages = tuple(self.languages or ())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FacetRequest:
        # Options may be nested under "options", as stored by form configuration.
        options = data.get("options") or {}
        first_digits = data.get("first_digits", options.get("first_digits", False))
        return cls(
            type=str(data.get("type") or "checkbox"),
            order=str(data.get("order") or "total desc"),
            limit=data.get("limit"),
            first_digits=first_digits,
            languages=tuple(data.get("languages") or ()),
            label=data.get("label"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "order": self.order,
            "limit": self.limit,
            "first_digits": self.first_digits,
            "languages": list(self.languages),
            "label": self.label,
        }


@dataclass(frozen=True, slots=True)
class Sort:
    field: str
    direction: str = "asc"

    @classmethod
    def parse(cls, value: str | Sort | None) -> Sort | None:
        """Parse ``"field direction"`` strings; ``None`` keeps the engine default."""
        if value is None or isinstance(value, Sort):
            return value
        parts = str(value).split()
        if not parts:
            return None
        direction = parts[1].lower() if len(parts) > 1 else "asc"
        return cls(field=parts[0], direction="desc" if direction == "desc" else "asc")


@dataclass
class Query:
    """A search request, assembled by the caller and handed to a querier.

    The object is request-scoped: callers mutate it while building it and
    never share it between requests.
    """

    query_text: str = ""
    resource_types: list[str] = field(default_factory=list)
    is_public: bool | None = None
    site_id: int | None = None
    filters: dict[str, list[FilterClause]] = field(default_factory=dict)
    facets: dict[str, FacetRequest] = field(default_factory=dict)
    active_facets: dict[str, list[Any]] = field(default_factory=dict)
    excluded_fields: list[str] = field(default_factory=list)
    sort: Sort | None = None
    offset: int = 0
    limit: int = 0
    default_query: bool = False
    suggest_fields: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.query_text = (self.query_text or "").strip()

    def set_query_text(self, text: str | None) -> Query:
        self.query_text = (text or "").strip()
        return self

    def set_resource_types(self, resource_types: Iterable[str]) -> Query:
        self.resource_types = list(dict.fromkeys(resource_types))
        return self

    def add_filter(
        self,
        name: str,
        value: Any = None,
        operator: str | Operator = Operator.EQ,
        joiner: str | Joiner = Joiner.AND,
    ) -> Query:
        if isinstance(value, str):
            value = value.strip()
        clause = FilterClause(operator=Operator.parse(operator), value=value, joiner=Joiner.parse(joiner))
        self.filters.setdefault(name, []).append(clause)
        return self

    def add_facet(self, name: str, request: FacetRequest | dict[str, Any] | None = None) -> Query:
        if request is None:
            request = FacetRequest()
        elif isinstance(request, dict):
            request = FacetRequest.from_dict(request)
        self.facets[name] = request
        return self

    def add_active_facet(self, name: str, value: Any) -> Query:
        selected = self.active_facets.setdefault(name, [])
        if value not in selected:
            selected.append(value)
        return self

    def set_sort(self, sort: str | Sort | None) -> Query:
        self.sort = Sort.parse(sort)
        return self

    def set_limit_page(self, page: int, per_page: int) -> Query:
        """Paginate with a 1-based page number; replaces any offset/limit pair."""
        page = page if page > 0 else 1
        per_page = per_page if per_page > 0 else 1
        self.limit = int(per_page)
        self.offset = int(per_page) * (page - 1)
        return self

    def set_limit_offset(self, limit: int, offset: int = 0) -> Query:
        self.limit = max(0, int(limit))
        self.offset = max(0, int(offset))
        return self

    @property
    def page(self) -> int:
        if not self.limit:
            return 1
        return self.offset // self.limit + 1

    @property
    def per_page(self) -> int:
        return self.limit

    @property
    def is_wildcard(self) -> bool:
        return self.query_text == WILDCARD

    def has_predicate(self) -> bool:
        """True when text, filters or active facets narrow the result set."""
        if self.query_text and not self.is_wildcard:
            return True
        if any(clause.is_effective for clauses in self.filters.values() for clause in clauses):
            return True
        return any(clause_values(values) for values in self.active_facets.values())

    def is_executable(self) -> bool:
        if not self.resource_types:
            return False
        return self.has_predicate() or self.is_wildcard or self.default_query

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query_text,
            "resource_types": list(self.resource_types),
            "is_public": self.is_public,
            "site_id": self.site_id,
            "filters": {name: [clause.to_dict() for clause in clauses] for name, clauses in self.filters.items()},
            "facets": {name: request.to_dict() for name, request in self.facets.items()},
            "active_facets": {name: list(values) for name, values in self.active_facets.items()},
            "excluded_fields": list(self.excluded_fields),
            "sort": f"{self.sort.field} {self.sort.direction}" if self.sort else None,
            "offset": self.offset,
            "limit": self.limit,
            "default_query": self.default_query,
        }
