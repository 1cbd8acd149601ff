"""Translation of query filters into SQL conditions.

Each operator has one resolver, selected through :data:`OPERATOR_RESOLVERS`.
A resolver receives the field source and the clause value and returns a
condition on the outer resource ``r``, or ``None`` when the clause carries no
usable value and must be skipped. Negated operators are the negation of their
positive counterpart, so ``neq`` means "no value of the field is equal".
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
import logging
import sqlite3
from typing import Any

from resource_search.query import FilterClause, Joiner, Operator, clause_values
from resource_search.querier.fields import (
    ALWAYS,
    NEVER,
    Condition,
    FieldCatalog,
    FieldSource,
    all_of,
    any_of,
    is_ignored_field,
)
from resource_search.text import LIKE_ESCAPE, escape_like


logger = logging.getLogger(__name__)

Resolver = Callable[[FieldSource, Any, bool], Condition | None]

NEGATED_OPERATORS = {
    Operator.NEQ: Operator.EQ,
    Operator.NIN: Operator.IN,
    Operator.NEX: Operator.EX,
}

_COMPARISONS = {
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def text_match(source: FieldSource, template: str, params: list[Any]) -> Condition:
    """Apply ``template`` (with ``{expr}``) to every text expression, any param matching."""
    parts = []
    all_params: list[Any] = []
    for expr in source.text_exprs:
        for param in params:
            parts.append(template.format(expr=expr))
            all_params.append(param)
    return Condition(" OR ".join(parts), tuple(all_params))


def resolve_eq(source: FieldSource, value: Any, public: bool) -> Condition | None:
    values = [str(item) for item in clause_values(value)]
    if not values:
        return None
    return source.exists(text_match(source, "{expr} = ?", values), public=public)


def _resolve_like(source: FieldSource, value: Any, public: bool, *, prefix: str, suffix: str) -> Condition | None:
    values = clause_values(value)
    if not values:
        return None
    patterns = [f"{prefix}{escape_like(str(item))}{suffix}" for item in values]
    template = "{expr} LIKE ? ESCAPE '" + LIKE_ESCAPE + "'"
    return source.exists(text_match(source, template, patterns), public=public)


def resolve_in(source: FieldSource, value: Any, public: bool) -> Condition | None:
    return _resolve_like(source, value, public, prefix="%", suffix="%")


def resolve_sw(source: FieldSource, value: Any, public: bool) -> Condition | None:
    return _resolve_like(source, value, public, prefix="", suffix="%")


def resolve_ew(source: FieldSource, value: Any, public: bool) -> Condition | None:
    return _resolve_like(source, value, public, prefix="%", suffix="")


def resolve_ex(source: FieldSource, value: Any, public: bool) -> Condition | None:
    return source.exists(public=public)


def resolve_res(source: FieldSource, value: Any, public: bool) -> Condition | None:
    ids = []
    for item in clause_values(value):
        number = _as_number(item)
        if number is not None and number.is_integer():
            ids.append(int(number))
    if not ids:
        return None
    if source.id_expr is None:
        return NEVER
    placeholders = ", ".join("?" for _ in ids)
    return source.exists(Condition(f"{source.id_expr} IN ({placeholders})", tuple(ids)), public=public)


def _compare(source: FieldSource, symbol: str, bound: Any) -> Condition:
    """Numeric comparison for numeric bounds, string (date-like) comparison otherwise."""
    number = _as_number(bound)
    if number is not None:
        return Condition(f"numeric_value({source.value_expr}) {symbol} ?", (number,))
    return Condition(f"{source.value_expr} {symbol} ?", (str(bound),))


def _make_comparison(operator: Operator) -> Resolver:
    symbol = _COMPARISONS[operator]

    def resolve(source: FieldSource, value: Any, public: bool) -> Condition | None:
        values = clause_values(value)
        if not values:
            return None
        return source.exists(_compare(source, symbol, values[0]), public=public)

    resolve.__name__ = f"resolve_{operator.value}"
    return resolve


def parse_range(value: Any) -> tuple[Any, Any]:
    """Bounds of a range given as ``"a..b"``, a two-item list or ``{"from", "to"}``."""
    if isinstance(value, Mapping):
        low = value.get("from", value.get("min"))
        high = value.get("to", value.get("max"))
    elif isinstance(value, (list, tuple)):
        low = value[0] if len(value) > 0 else None
        high = value[1] if len(value) > 1 else None
    elif isinstance(value, str) and ".." in value:
        low, _, high = value.partition("..")
    else:
        low, high = value, value
    if isinstance(low, str):
        low = low.strip() or None
    if isinstance(high, str):
        high = high.strip() or None
    return low, high


def resolve_range(source: FieldSource, value: Any, public: bool) -> Condition | None:
    low, high = parse_range(value)
    bounds = []
    if low is not None:
        bounds.append(_compare(source, ">=", low))
    if high is not None:
        bounds.append(_compare(source, "<=", high))
    if not bounds:
        return None
    return source.exists(all_of(bounds), public=public)


OPERATOR_RESOLVERS: dict[Operator, Resolver] = {
    Operator.EQ: resolve_eq,
    Operator.IN: resolve_in,
    Operator.SW: resolve_sw,
    Operator.EW: resolve_ew,
    Operator.EX: resolve_ex,
    Operator.RES: resolve_res,
    Operator.GT: _make_comparison(Operator.GT),
    Operator.GTE: _make_comparison(Operator.GTE),
    Operator.LT: _make_comparison(Operator.LT),
    Operator.LTE: _make_comparison(Operator.LTE),
    Operator.RANGE: resolve_range,
}


def resolve_clause(source: FieldSource | None, clause: FilterClause, *, public: bool) -> Condition | None:
    """Condition of one clause; unknown fields never match positively."""
    positive = NEGATED_OPERATORS.get(clause.operator, clause.operator)
    negated = positive is not clause.operator
    if source is None:
        return ALWAYS if negated else NEVER
    condition = OPERATOR_RESOLVERS[positive](source, clause.value, public)
    if condition is None:
        return None
    return condition.negate() if negated else condition


def fold_clauses(source: FieldSource | None, clauses: list[FilterClause], *, public: bool) -> Condition | None:
    """Combine the clauses of one field left to right according to their joiners."""
    result: Condition | None = None
    for clause in clauses:
        condition = resolve_clause(source, clause, public=public)
        if condition is None:
            continue
        if result is None:
            result = condition.negate() if clause.joiner is Joiner.NOT else condition
        elif clause.joiner is Joiner.OR:
            result = any_of([result, condition])
        elif clause.joiner is Joiner.NOT:
            result = all_of([result, condition.negate()])
        else:
            result = all_of([result, condition])
    return result


def build_filter_condition(
    filters: Mapping[str, list[FilterClause]],
    catalog: FieldCatalog,
    conn: sqlite3.Connection,
    *,
    public: bool,
) -> Condition:
    """AND of every field's folded clauses."""
    conditions = []
    for name, clauses in filters.items():
        if is_ignored_field(name):
            logger.debug("Ignoring filter on %s: visibility is set on the query", name)
            continue
        source = catalog.resolve(name, conn)
        if source is None:
            logger.warning("Unknown filter field %s; positive clauses will match nothing", name)
        condition = fold_clauses(source, clauses, public=public)
        if condition is not None:
            conditions.append(condition)
    return all_of(conditions)
