"""Exceptions raised by the mapping layer."""

from __future__ import annotations

from typing import Any


class RecordKitError(Exception):
    """Base class for all recordkit errors."""


class ValidationError(RecordKitError):
    """An attribute value was rejected by its column rules.

    The record keeps its previous value; the error is stored on
    ``record.errors`` and an ``invalid`` notification is emitted.
    """

    def __init__(self, field: str, value: Any, message: str | None = None) -> None:
        self.field = field
        self.value = value
        super().__init__(message or f"Invalid value {value!r} for attribute '{field}'")


class NotFoundError(RecordKitError):
    """A single-record lookup found no rows."""

    def __init__(self, message: str = "Record not found", *, mapper: str | None = None, key: Any = None) -> None:
        self.mapper = mapper
        self.key = key
        super().__init__(message)


class RelationConfigurationError(RecordKitError):
    """A relation name does not resolve to a usable relation descriptor."""

    def __init__(self, relation: str, message: str | None = None) -> None:
        self.relation = relation
        super().__init__(message or f"The relationship '{relation}' must be a relation descriptor")


class RelationStateError(RecordKitError):
    """A relation was resolved before being constrained, or resolved twice."""


class HookError(RecordKitError):
    """A lifecycle hook aborted an operation."""

    def __init__(self, message: str = "Hook failed", *, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)
