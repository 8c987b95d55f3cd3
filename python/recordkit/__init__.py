"""recordkit - records, relations and lifecycle hooks over a pluggable query executor."""

from __future__ import annotations

from recordkit.attributes import AttributeStore
from recordkit.errors import (
    HookError,
    NotFoundError,
    RecordKitError,
    RelationConfigurationError,
    RelationStateError,
    ValidationError,
)
from recordkit.events import EventEmitter
from recordkit.executor import QueryExecutor
from recordkit.fields import ColumnInfo, mapped_column
from recordkit.hooks import Hooks, Proceed
from recordkit.loader import EagerLoader, LoadOption, noload, selectinload
from recordkit.mapper import Mapper, MapperQuery
from recordkit.memory import MemoryExecutor
from recordkit.query import Condition, Join, OrGroup, Q, QueryDescription, Selection
from recordkit.record import Record
from recordkit.registry import Registry
from recordkit.relations import (
    Relation,
    RelationInfo,
    RelationKind,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    morph_many,
    morph_one,
    morph_to,
    morph_to_many,
)

__version__ = "0.1.0"

__all__ = [
    # Mapping
    "Mapper",
    "MapperQuery",
    "Record",
    "Registry",
    "AttributeStore",
    "mapped_column",
    "ColumnInfo",
    # Relations
    "Relation",
    "RelationInfo",
    "RelationKind",
    "has_one",
    "has_many",
    "belongs_to",
    "belongs_to_many",
    "morph_one",
    "morph_many",
    "morph_to_many",
    "morph_to",
    # Eager loading
    "EagerLoader",
    "LoadOption",
    "selectinload",
    "noload",
    # Hooks and notifications
    "Hooks",
    "Proceed",
    "EventEmitter",
    # Query execution
    "QueryExecutor",
    "MemoryExecutor",
    "QueryDescription",
    "Condition",
    "OrGroup",
    "Join",
    "Selection",
    "Q",
    # Errors
    "RecordKitError",
    "ValidationError",
    "NotFoundError",
    "RelationConfigurationError",
    "RelationStateError",
    "HookError",
]
