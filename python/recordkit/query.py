"""Query descriptions handed to the query executor.

A :class:`QueryDescription` is an immutable value: every builder method
returns a new description. Column names may be qualified with a source
alias (``"roles_pivot.user_id"``); unqualified names refer to the main
source.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import Any

# Operators understood by executors
OPERATORS = frozenset(
    {"=", "!=", ">", ">=", "<", "<=", "in", "not in", "is null", "is not null", "like"}
)

_FILTER_SUFFIXES = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "in": "in",
    "notin": "not in",
    "isnull": "is null",
    "like": "like",
    "contains": "like",
    "startswith": "like",
    "endswith": "like",
}


@dataclass(frozen=True)
class Condition:
    """A single ``column operator value`` predicate."""

    column: str
    operator: str = "="
    value: Any = None

    def __post_init__(self) -> None:
        if self.operator not in OPERATORS:
            raise ValueError(f"Unsupported operator: {self.operator!r}")


@dataclass(frozen=True)
class OrGroup:
    """Predicates joined with OR. Members may be nested AND groups (tuples)."""

    members: tuple[Condition | OrGroup | tuple[Condition | OrGroup, ...], ...]


@dataclass(frozen=True)
class Join:
    """Inner join of ``source AS alias`` on ``left = right``.

    Extra ``conditions`` are applied to the joined rows.
    """

    source: str
    alias: str
    left: str
    right: str
    conditions: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class Selection:
    """A selected column; ``column="*"`` selects every column of ``source``."""

    column: str
    source: str | None = None
    alias: str | None = None

    @property
    def output_name(self) -> str:
        return self.alias or self.column


@dataclass(frozen=True)
class QueryDescription:
    """Represents an assembled SELECT/UPDATE/DELETE target."""

    source: str
    alias: str | None = None
    select: tuple[Selection, ...] = ()
    where: tuple[Condition | OrGroup, ...] = ()
    joins: tuple[Join, ...] = ()
    order: tuple[tuple[str, str], ...] = ()
    limit: int | None = None
    offset: int | None = None

    @property
    def name(self) -> str:
        """Name used to qualify columns of the main source."""
        return self.alias or self.source

    def qualify(self, column: str) -> str:
        """Qualify a column with the main source name."""
        if "." in column:
            return column
        return f"{self.name}.{column}"

    def with_where(self, *conditions: Condition | OrGroup) -> QueryDescription:
        return replace(self, where=self.where + conditions)

    def with_select(self, *selections: Selection) -> QueryDescription:
        return replace(self, select=self.select + selections)

    def with_join(self, join: Join) -> QueryDescription:
        if any(j.alias == join.alias for j in self.joins):
            return self
        return replace(self, joins=self.joins + (join,))

    def with_order(self, column: str, direction: str = "ASC") -> QueryDescription:
        return replace(self, order=self.order + ((column, direction.upper()),))

    def with_limit(self, n: int | None) -> QueryDescription:
        return replace(self, limit=n)

    def with_offset(self, n: int | None) -> QueryDescription:
        return replace(self, offset=n)


# ========== Q Objects for Complex Conditions ==========


@dataclass
class Q:
    """Django-style Q object for OR conditions.

    Example:
        >>> query.filter(Q(age__gt=18) | Q(vip=True))
        >>> query.filter((Q(role="admin") | Q(role="owner")) & Q(active=True))
    """

    _filters: list[Condition] = field(default_factory=list)
    _children: list[Q] = field(default_factory=list)
    _connector: str = "AND"

    def __init__(self, **kwargs: Any) -> None:
        self._filters = [parse_filter(key, value) for key, value in kwargs.items()]
        self._children = []
        self._connector = "AND"

    def __or__(self, other: Q) -> Q:
        result = Q()
        result._children = [self, other]
        result._connector = "OR"
        return result

    def __and__(self, other: Q) -> Q:
        result = Q()
        result._children = [self, other]
        return result

    def to_conditions(self) -> tuple[Condition | OrGroup, ...]:
        """Flatten into AND-ed conditions for a query's ``where``."""
        if not self._children:
            return tuple(self._filters)
        if self._connector == "OR":
            return (OrGroup(tuple(_as_member(child.to_conditions()) for child in self._children)),)
        conditions: tuple[Condition | OrGroup, ...] = ()
        for child in self._children:
            conditions += child.to_conditions()
        return conditions


def _as_member(conditions: tuple[Condition | OrGroup, ...]) -> Condition | OrGroup | tuple[Condition | OrGroup, ...]:
    if len(conditions) == 1:
        return conditions[0]
    return conditions


def parse_filter(key: str, value: Any) -> Condition:
    """Parse a Django-style filter key into a condition.

    Supports ``field``, ``field__gt``, ``field__in``, ``field__isnull``,
    ``field__contains`` and the other suffixes in ``_FILTER_SUFFIXES``.
    """
    column, suffix = key, "eq"
    if "__" in key:
        head, tail = key.rsplit("__", 1)
        if tail in _FILTER_SUFFIXES:
            column, suffix = head, tail

    operator = _FILTER_SUFFIXES[suffix]

    if suffix == "eq" and value is None:
        return Condition(column, "is null")
    if suffix == "isnull":
        return Condition(column, "is null" if value else "is not null")
    if suffix == "contains":
        value = f"%{value}%"
    elif suffix == "startswith":
        value = f"{value}%"
    elif suffix == "endswith":
        value = f"%{value}"
    elif suffix in ("in", "notin"):
        value = tuple(value)

    return Condition(column, operator, value)


def unique(values: Iterable[Any]) -> list[Any]:
    """Distinct non-null values, first occurrence order."""
    seen: set[str] = set()
    result = []
    for value in values:
        if value is None:
            continue
        marker = f"{type(value).__name__}:{value}"
        if marker in seen:
            continue
        seen.add(marker)
        result.append(value)
    return result
