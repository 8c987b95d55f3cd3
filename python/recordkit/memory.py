"""In-process query executor backed by lists of dicts.

Useful as a reference backend and in tests: every call is recorded in
``executor.log`` so callers can assert how many queries ran.

Example:
    >>> executor = MemoryExecutor()
    >>> executor.seed("users", {"id": 1, "name": "Alice"})
    >>> users = UserMapper(executor)
    >>> alice = await users.find(1)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from recordkit.query import Condition, OrGroup, QueryDescription

logger = logging.getLogger(__name__)

Env = dict[str, Any]


@dataclass(frozen=True)
class LoggedCall:
    """One executor call: method name plus its query or source."""

    method: str
    target: QueryDescription | str
    data: Mapping[str, Any] | None = None

    @property
    def source(self) -> str:
        return self.target if isinstance(self.target, str) else self.target.source


class MemoryExecutor:
    """Executor implementing :class:`~recordkit.executor.QueryExecutor` in memory."""

    def __init__(
        self,
        tables: Mapping[str, list[Mapping[str, Any]]] | None = None,
        *,
        primary_keys: Mapping[str, str | None] | None = None,
    ) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.primary_keys: dict[str, str | None] = dict(primary_keys or {})
        self.log: list[LoggedCall] = []

    # ========== Fixtures ==========

    def seed(self, source: str, *rows: Mapping[str, Any]) -> None:
        """Store rows without logging a call."""
        self.tables.setdefault(source, []).extend(dict(row) for row in rows)

    def rows(self, source: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(source, [])

    def calls(self, method: str | None = None, source: str | None = None) -> list[LoggedCall]:
        """Logged calls, optionally filtered by method and source."""
        return [
            call
            for call in self.log
            if (method is None or call.method == method) and (source is None or call.source == source)
        ]

    def reset_log(self) -> None:
        self.log.clear()

    # ========== QueryExecutor ==========

    async def fetch_one(self, query: QueryDescription) -> dict[str, Any] | None:
        self._record("fetch_one", query)
        rows = self._select(query.with_limit(1))
        return rows[0] if rows else None

    async def fetch_all(self, query: QueryDescription) -> list[dict[str, Any]]:
        self._record("fetch_all", query)
        return self._select(query)

    async def insert(self, source: str, data: Mapping[str, Any]) -> Any:
        self._record("insert", source, data)
        row = dict(data)
        pk = self.primary_keys.get(source, "id")
        table = self.rows(source)

        if pk is not None and row.get(pk) is None:
            existing = [r.get(pk) for r in table if isinstance(r.get(pk), int)]
            row[pk] = max(existing, default=0) + 1

        table.append(row)
        return row.get(pk) if pk is not None else None

    async def update(self, query: QueryDescription, data: Mapping[str, Any]) -> int:
        self._record("update", query, data)
        count = 0
        for row in self.rows(query.source):
            if self._matches(self._env(query.name, row), query.name, query.where):
                row.update(data)
                count += 1
        return count

    async def delete(self, query: QueryDescription) -> int:
        self._record("delete", query)
        table = self.rows(query.source)
        keep = [row for row in table if not self._matches(self._env(query.name, row), query.name, query.where)]
        count = len(table) - len(keep)
        table[:] = keep
        return count

    # ========== Evaluation ==========

    def _record(self, method: str, target: QueryDescription | str, data: Mapping[str, Any] | None = None) -> None:
        logger.debug("%s %s", method, target)
        self.log.append(LoggedCall(method, target, dict(data) if data is not None else None))

    @staticmethod
    def _env(name: str, row: Mapping[str, Any]) -> Env:
        return {f"{name}.{col}": value for col, value in row.items()}

    def _select(self, query: QueryDescription) -> list[dict[str, Any]]:
        name = query.name
        envs = [self._env(name, row) for row in self.rows(query.source)]

        for join in query.joins:
            joined: list[Env] = []
            for env in envs:
                for other in self.rows(join.source):
                    merged = {**env, **self._env(join.alias, other)}
                    if not _equal(_resolve(merged, name, join.left), _resolve(merged, name, join.right)):
                        continue
                    if self._matches(merged, name, join.conditions):
                        joined.append(merged)
            envs = joined

        envs = [env for env in envs if self._matches(env, name, query.where)]

        for column, direction in reversed(query.order):
            envs.sort(
                key=lambda env: _sort_key(_resolve(env, name, column)),
                reverse=direction == "DESC",
            )

        start = query.offset or 0
        stop = start + query.limit if query.limit is not None else None
        return [self._project(env, query) for env in envs[start:stop]]

    @staticmethod
    def _project(env: Env, query: QueryDescription) -> dict[str, Any]:
        selections = query.select
        if not selections:
            prefix = f"{query.name}."
            return {key[len(prefix):]: value for key, value in env.items() if key.startswith(prefix)}

        row: dict[str, Any] = {}
        for selection in selections:
            source = selection.source or query.name
            if selection.column == "*":
                prefix = f"{source}."
                row.update({key[len(prefix):]: value for key, value in env.items() if key.startswith(prefix)})
            else:
                row[selection.output_name] = env.get(f"{source}.{selection.column}")
        return row

    def _matches(self, env: Env, name: str, conditions: tuple[Any, ...]) -> bool:
        return all(self._test(env, name, condition) for condition in conditions)

    def _test(self, env: Env, name: str, predicate: Any) -> bool:
        if isinstance(predicate, OrGroup):
            return any(self._test(env, name, member) for member in predicate.members)
        if isinstance(predicate, tuple):
            return self._matches(env, name, predicate)
        return _evaluate(predicate, _resolve(env, name, predicate.column))


def _resolve(env: Env, name: str, column: str) -> Any:
    if "." in column:
        return env.get(column)
    return env.get(f"{name}.{column}")


def _equal(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    if a == b:
        return True
    # Integer and string keys compare the way SQL coerces them: 1 matches "1"
    return _is_key(a) and _is_key(b) and str(a) == str(b)


def _is_key(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


def _sort_key(value: Any) -> tuple[int, Any]:
    return (0, 0) if value is None else (1, value)


def _like(pattern: str) -> re.Pattern[str]:
    parts = [re.escape(part) for part in pattern.split("%")]
    return re.compile("^" + ".*".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _evaluate(condition: Condition, actual: Any) -> bool:
    op, expected = condition.operator, condition.value
    if op == "is null":
        return actual is None
    if op == "is not null":
        return actual is not None
    if actual is None:
        return False
    if op == "=":
        return _equal(actual, expected)
    if op == "!=":
        return expected is not None and actual != expected
    if op == "in":
        return any(_equal(actual, value) for value in expected)
    if op == "not in":
        return not any(_equal(actual, value) for value in expected)
    if op == "like":
        return bool(_like(str(expected)).match(str(actual)))
    if expected is None:
        return False
    if op == ">":
        return actual > expected
    if op == ">=":
        return actual >= expected
    if op == "<":
        return actual < expected
    return actual <= expected
