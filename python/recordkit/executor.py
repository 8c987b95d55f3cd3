"""Interface to the query backend."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from recordkit.query import QueryDescription

Row = Mapping[str, Any]


@runtime_checkable
class QueryExecutor(Protocol):
    """Protocol for query backends consumed by mappers.

    Rows are flat mappings from column name to scalar. Columns selected with
    an alias (e.g. pivot columns as ``pivot_<column>``) appear under that
    alias.
    """

    async def fetch_one(self, query: QueryDescription) -> Row | None:
        """Return the first matching row, or None."""
        ...

    async def fetch_all(self, query: QueryDescription) -> list[Row]:
        """Return every matching row."""
        ...

    async def insert(self, source: str, data: Mapping[str, Any]) -> Any:
        """Insert a row; return the generated key or the stored row."""
        ...

    async def update(self, query: QueryDescription, data: Mapping[str, Any]) -> int:
        """Update matching rows; return the affected count."""
        ...

    async def delete(self, query: QueryDescription) -> int:
        """Delete matching rows; return the affected count."""
        ...
