"""Relations whose foreign key lives on the target: has-one/many and their morph forms."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from recordkit.relations.base import Relation

if TYPE_CHECKING:
    from recordkit.mapper import Mapper
    from recordkit.record import Record


class HasOneOrMany(Relation):
    """Shared persistence helpers: related records get the parent key preset."""

    async def save(self, record: Record) -> Record:
        """Set the foreign key on ``record`` then persist it."""
        parent = self._require_record()
        record.set(self.other_key, parent.get(self.local_key))
        return await self.target.save(record)

    async def create(self, attrs: Mapping[str, Any]) -> Record:
        return await self.save(self.target.new_instance(attrs))

    async def save_many(self, records: Iterable[Record]) -> list[Record]:
        return [await self.save(record) for record in records]

    async def create_many(self, items: Iterable[Mapping[str, Any]]) -> list[Record]:
        return [await self.create(attrs) for attrs in items]


class HasOne(HasOneOrMany):
    pass


class HasMany(HasOneOrMany):
    many = True


class MorphOneOrMany(HasOneOrMany):
    """Has-one/many where the target also stores the parent's morph name.

    Every constraint application adds ``morph_type == morph_name``.
    """

    def __init__(
        self,
        name: str,
        parent: Mapper,
        target: Mapper,
        local_key: str,
        other_key: str,
        morph_type: str,
        morph_name: str,
        *,
        record: Record | None = None,
    ) -> None:
        super().__init__(name, parent, target, local_key, other_key, record=record)
        self.morph_type = morph_type
        self.morph_name = morph_name

    def apply_constraints(self) -> Relation:
        super().apply_constraints()
        self._add_morph_type_constraint()
        return self

    def apply_eager_constraints(self, parents: Sequence[Record]) -> Relation:
        super().apply_eager_constraints(parents)
        self._add_morph_type_constraint()
        return self

    async def save(self, record: Record) -> Record:
        record.set(self.morph_type, self.morph_name)
        return await super().save(record)

    def _add_morph_type_constraint(self) -> None:
        self.query.where(f"{self.name}.{self.morph_type}", self.morph_name)


class MorphOne(MorphOneOrMany):
    pass


class MorphMany(MorphOneOrMany):
    many = True
