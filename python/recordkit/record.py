"""Record instances produced by mappers."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from recordkit.attributes import AttributeStore
from recordkit.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from recordkit.mapper import Mapper
    from recordkit.relations import Relation

logger = logging.getLogger(__name__)

# Instance attributes stored on the object itself rather than in the store
_INTERNAL = frozenset({"mapper", "store", "related", "errors", "exists"})


class Record:
    """A row bound to its mapper.

    Attribute values live in an :class:`AttributeStore`. Loaded relations
    live in ``related``; a missing key means "not loaded", never "empty".

    Example:
        >>> user = users.new_instance({"name": "Alice"})
        >>> user.name = "Bob"
        >>> user.dirty_fields()
        ['name']
        >>> await user.save()
    """

    mapper: Mapper
    store: AttributeStore
    related: dict[str, Any]
    errors: dict[str, ValidationError]
    exists: bool

    def __init__(self, mapper: Mapper, data: Mapping[str, Any] | None = None, *, exists: bool = False) -> None:
        object.__setattr__(self, "mapper", mapper)
        object.__setattr__(self, "store", AttributeStore())
        object.__setattr__(self, "related", {})
        object.__setattr__(self, "errors", {})
        object.__setattr__(self, "exists", exists)

        if exists:
            self.store.hydrate(data or {})
            return

        provided = set(data or ())
        for name, column in mapper.columns.items():
            if name not in provided and column.default is not None:
                self.store.set(name, column.get_default())
        if data:
            self.fill(data)

    def __repr__(self) -> str:
        pk = self.mapper.primary_key
        if pk and self.store.has(pk):
            return f"<{type(self).__name__} {self.mapper.name} {pk}={self.get(pk)!r}>"
        return f"<{type(self).__name__} {self.mapper.name}>"

    def __getattr__(self, name: str) -> Any:
        """Attribute-style access to values and loaded relations."""
        if name.startswith("_") or name in _INTERNAL:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

        mapper = object.__getattribute__(self, "mapper")
        if name in mapper.relations:
            related = object.__getattribute__(self, "related")
            if name in related:
                return related[name]
            raise AttributeError(
                f"Relation '{name}' is not loaded. "
                "Use mapper.load(), query.with_related() or record.load() first."
            )

        store = object.__getattribute__(self, "store")
        if store.has(name) or name in mapper.columns:
            return store.get(name)

        # e.g. the nested "pivot" record of many-to-many results
        related = object.__getattribute__(self, "related")
        if name in related:
            return related[name]

        raise AttributeError(f"'{type(self).__name__}' object has no attribute '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("_") or name in _INTERNAL:
            object.__setattr__(self, name, value)
        elif name in self.mapper.relations:
            self.set_related(name, value)
        else:
            self.set(name, value)

    # ========== Attributes ==========

    def get(self, field: str, default: Any = None) -> Any:
        return self.store.get(field, default)

    def has(self, field: str) -> bool:
        return self.store.has(field)

    def set(self, field: str, value: Any) -> Record:
        """Set an attribute value.

        Values for declared columns are coerced and validated first. A
        rejected value leaves the record unchanged, is recorded in
        ``errors`` and emits ``invalid`` / ``invalid:<field>``.
        """
        column = self.mapper.columns.get(field)
        if column is not None:
            try:
                value = column.clean(value)
            except ValidationError as error:
                logger.debug("rejected %r for %s.%s: %s", value, self.mapper.name, field, error)
                self.errors[field] = error
                events = self.mapper.events
                events.emit("invalid", self, error)
                events.emit(f"invalid:{field}", self, error)
                return self

        self.errors.pop(field, None)
        if self.store.set(field, value):
            events = self.mapper.events
            events.emit("change", self, field, value)
            events.emit(f"change:{field}", self, field, value)
        return self

    def fill(self, data: Mapping[str, Any]) -> Record:
        """Set several attributes; relation names are stored as loaded relations."""
        for key, value in data.items():
            if key in self.mapper.relations:
                self.set_related(key, value)
            else:
                self.set(key, value)
        return self

    def unset(self, field: str) -> Record:
        self.store.unset(field)
        return self

    def get_id(self) -> Any:
        pk = self.mapper.primary_key
        return self.store.get(pk) if pk else None

    def set_id(self, value: Any) -> Record:
        pk = self.mapper.primary_key
        if pk is None:
            raise AttributeError(f"Mapper '{self.mapper.name}' has no primary key")
        return self.set(pk, value)

    @property
    def is_new(self) -> bool:
        return not self.exists

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def is_dirty(self, field: str | None = None) -> bool:
        return self.store.is_dirty(field)

    def dirty_fields(self) -> list[str]:
        return self.store.dirty_fields()

    def get_dirty(self) -> dict[str, Any]:
        return self.store.get_dirty()

    def original(self, field: str, default: Any = None) -> Any:
        return self.store.original_value(field, default)

    def to_dict(self, include_related: bool = False) -> dict[str, Any]:
        """Convert the record to a dictionary."""
        result = dict(self.store.snapshot())

        if include_related:
            for name, value in self.related.items():
                if isinstance(value, list):
                    result[name] = [item.to_dict(include_related=True) for item in value]
                elif value is not None:
                    result[name] = value.to_dict(include_related=True)
                else:
                    result[name] = None

        return result

    # ========== Relations ==========

    def set_related(self, name: str, value: Any) -> Record:
        self.related[name] = value
        return self

    def get_related(self, name: str, default: Any = None) -> Any:
        return self.related.get(name, default)

    def is_loaded(self, name: str) -> bool:
        return name in self.related

    def relation(self, name: str) -> Relation:
        """Relation ``name`` constrained to this record."""
        return self.mapper.get_relation(name, self)

    async def load(self, *names: Any) -> Record:
        """Eager load relations onto this record."""
        await self.mapper.load([self], *names)
        return self

    # ========== Persistence ==========

    async def save(self, *, force_insert: bool = False) -> Record:
        return await self.mapper.save(self, force_insert=force_insert)

    async def update(self, data: Mapping[str, Any]) -> Record:
        """Set ``data`` on a persisted record and save it.

        Raises:
            NotFoundError: If the record does not exist.
        """
        if not self.exists:
            raise NotFoundError(
                f"Cannot update a {self.mapper.name} record that does not exist", mapper=self.mapper.name
            )
        return await self.fill(data).save()

    async def destroy(self) -> Record:
        return await self.mapper.destroy(self)

    async def fetch(self) -> Record:
        return await self.mapper.fetch(self)
