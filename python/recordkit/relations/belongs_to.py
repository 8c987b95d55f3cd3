"""Relations whose foreign key lives on the parent."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from recordkit.errors import RelationConfigurationError
from recordkit.record import Record
from recordkit.relations.base import Relation, RelationState

if TYPE_CHECKING:
    from recordkit.mapper import Mapper


class BelongsTo(Relation):
    """Inverse of has-one/has-many: ``parent.local_key`` references ``target.other_key``."""

    def associate(self, target: Record | Any) -> Record:
        """Point the parent's foreign key at a record or raw key; returns the parent."""
        parent = self._require_record()
        if isinstance(target, Record):
            parent.set(self.local_key, target.get(self.other_key))
            parent.set_related(self.name, target)
        else:
            parent.set(self.local_key, target)
            parent.related.pop(self.name, None)
        return parent

    def dissociate(self) -> Record:
        """Clear the parent's foreign key; returns the parent."""
        parent = self._require_record()
        parent.set(self.local_key, None)
        parent.set_related(self.name, None)
        return parent


class MorphTo(BelongsTo):
    """Polymorphic belongs-to: the target mapper is named by ``morph_type`` on the parent.

    Targets are looked up in the parent mapper's registry. Eager loading
    groups parents by discriminator and runs one query per distinct value.
    """

    def __init__(
        self,
        name: str,
        parent: Mapper,
        local_key: str,
        morph_type: str,
        *,
        record: Record | None = None,
    ) -> None:
        super().__init__(name, parent, None, local_key, None, record=record)
        self.morph_type = morph_type
        self._modifiers: list[tuple[Callable[..., Any], tuple[Any, ...]]] = []

    def resolve_target(self, type_name: str) -> Mapper:
        registry = self.parent.registry
        if registry is None:
            raise RelationConfigurationError(
                self.name, f"Relation '{self.name}' needs a registry to resolve '{type_name}'"
            )
        return registry.get(type_name)

    def set_target(self, target: Mapper) -> Relation:
        super().set_target(target)
        self.other_key = target.primary_key
        for fn, args in self._modifiers:
            fn(self.query, *args)
        return self

    def modify(self, fn: Callable[..., Any], *args: Any) -> Relation:
        """Apply ``fn(query, *args)`` to the query of every target type."""
        self._modifiers.append((fn, args))
        if self.query is not None:
            fn(self.query, *args)
        return self

    def apply_constraints(self) -> Relation:
        record = self._require_record()
        type_name = record.get(self.morph_type)
        if type_name is None:
            self._transition(RelationState.CONSTRAINED)
            return self
        self.set_target(self.resolve_target(type_name))
        return super().apply_constraints()

    def apply_eager_constraints(self, parents: Sequence[Record]) -> Relation:
        # Constraints are built per discriminator group in eager_load
        self._transition(RelationState.CONSTRAINED)
        return self

    async def load(self) -> Record | None:
        self._transition(RelationState.RESOLVED)
        if self.query is None or self.record.get(self.local_key) is None:
            return None
        return await self.query.first()

    async def eager_load(self, parents: Sequence[Record]) -> Sequence[Record]:
        if self.state is RelationState.UNCONSTRAINED:
            self.apply_eager_constraints(parents)
        self._transition(RelationState.RESOLVED)

        groups: dict[str, list[Record]] = {}
        for parent in parents:
            type_name = parent.get(self.morph_type)
            if type_name is None:
                parent.set_related(self.name, None)
            else:
                groups.setdefault(type_name, []).append(parent)

        targets = {type_name: self.resolve_target(type_name) for type_name in groups}
        await asyncio.gather(
            *(self._load_group(targets[type_name], group) for type_name, group in groups.items())
        )
        return parents

    async def _load_group(self, target: Mapper, parents: list[Record]) -> None:
        key = target.primary_key
        query = target.new_query(alias=self.name).where_in(f"{self.name}.{key}", self.get_keys(parents, self.local_key))
        for fn, args in self._modifiers:
            fn(query, *args)

        dictionary = {str(result.get(key)): result for result in await query.all()}
        for parent in parents:
            value = parent.get(self.local_key)
            parent.set_related(self.name, dictionary.get(str(value)) if value is not None else None)

    def associate(self, target: Record | Any) -> Record:
        """Point the parent at ``target``, setting both the key and the discriminator."""
        if not isinstance(target, Record):
            raise TypeError("Polymorphic relations can only be associated with records")
        parent = self._require_record()
        parent.set(self.local_key, target.get_id())
        parent.set(self.morph_type, target.mapper.morph_name)
        parent.set_related(self.name, target)
        return parent

    def dissociate(self) -> Record:
        parent = self._require_record()
        parent.set(self.local_key, None)
        parent.set(self.morph_type, None)
        parent.set_related(self.name, None)
        return parent
