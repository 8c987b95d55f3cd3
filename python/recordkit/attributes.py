"""Attribute state tracking for a single record."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType
from typing import Any

_MISSING: Any = object()


def same_value(a: Any, b: Any) -> bool:
    """Strict equality: ``1``, ``1.0`` and ``True`` are different values."""
    if a is b:
        return True
    if type(a) is not type(b):
        return False
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        # e.g. array-like values with ambiguous truthiness
        return False


class AttributeStore:
    """Current values of a record plus the baseline of the last commit.

    ``original`` only holds fields changed since the last commit, keyed to
    the value they had at that commit. A field whose value returns to its
    baseline is no longer dirty.

    Example:
        >>> store = AttributeStore({"name": "Alice"})
        >>> store.commit()
        >>> store.set("name", "Bob")
        True
        >>> store.dirty_fields()
        ['name']
    """

    __slots__ = ("_current", "_original")

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._current: dict[str, Any] = {}
        self._original: dict[str, Any] = {}
        if data:
            for key, value in data.items():
                self.set(key, value)

    def set(self, field: str, value: Any) -> bool:
        """Set a field value. Returns False when nothing changed."""
        old = self._current.get(field, _MISSING)
        if old is not _MISSING and same_value(old, value):
            return False

        self._current[field] = value

        if field not in self._original:
            self._original[field] = old
        elif self._original[field] is not _MISSING and same_value(self._original[field], value):
            del self._original[field]

        return True

    def get(self, field: str, default: Any = None) -> Any:
        return self._current.get(field, default)

    def has(self, field: str) -> bool:
        return field in self._current

    def unset(self, field: str) -> None:
        """Remove a field; it stays dirty if it existed at the last commit."""
        if field not in self._current:
            return
        old = self._current.pop(field)
        if field not in self._original:
            self._original[field] = old
        elif self._original[field] is _MISSING:
            del self._original[field]

    def commit(self) -> None:
        """Make the current values the new baseline."""
        self._original.clear()

    def hydrate(self, data: Mapping[str, Any]) -> None:
        """Replace all values with persisted data and commit."""
        self._current = dict(data)
        self._original.clear()

    def is_dirty(self, field: str | None = None) -> bool:
        if field is None:
            return bool(self._original)
        return field in self._original

    def dirty_fields(self) -> list[str]:
        return list(self._original)

    def get_dirty(self) -> dict[str, Any]:
        """Dirty fields mapped to their current values."""
        return {f: self._current[f] for f in self._original if f in self._current}

    def original_value(self, field: str, default: Any = None) -> Any:
        """Value of a field at the last commit."""
        if field in self._original:
            value = self._original[field]
            return default if value is _MISSING else value
        return self._current.get(field, default)

    def snapshot(self) -> Mapping[str, Any]:
        """Read-only copy of the current values."""
        return MappingProxyType(dict(self._current))

    def keys(self) -> list[str]:
        return list(self._current)

    def __contains__(self, field: object) -> bool:
        return field in self._current

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._current))

    def __len__(self) -> int:
        return len(self._current)

    def __repr__(self) -> str:
        return f"<AttributeStore {self._current!r} dirty={self.dirty_fields()!r}>"
