"""Relation descriptors and the relation variants built from them."""

from __future__ import annotations

from typing import TYPE_CHECKING, assert_never

from recordkit.relations.base import Relation, RelationState
from recordkit.relations.belongs_to import BelongsTo, MorphTo
from recordkit.relations.descriptors import (
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
    singular,
)
from recordkit.relations.has import HasMany, HasOne, HasOneOrMany, MorphMany, MorphOne, MorphOneOrMany
from recordkit.relations.pivot import BelongsToMany, MorphToMany

if TYPE_CHECKING:
    from recordkit.mapper import Mapper
    from recordkit.record import Record


def build_relation(parent: Mapper, info: RelationInfo, record: Record | None = None) -> Relation:
    """Build an unconstrained relation of ``parent`` from its descriptor.

    Keys the descriptor leaves open follow the naming conventions: foreign
    keys are ``<singular table>_id`` (``<relation name>_id`` for
    belongs-to), pivot tables join both singular names in sorted order.
    """
    name = info.name
    assert name is not None

    match info.kind:
        case RelationKind.HAS_ONE | RelationKind.HAS_MANY:
            target = parent.resolve(info.target, name)
            cls = HasOne if info.kind is RelationKind.HAS_ONE else HasMany
            return cls(
                name,
                parent,
                target,
                info.local_key or parent.primary_key,
                info.other_key or f"{singular(parent.table)}_id",
                record=record,
            )

        case RelationKind.BELONGS_TO:
            target = parent.resolve(info.target, name)
            return BelongsTo(
                name,
                parent,
                target,
                info.local_key or f"{name}_id",
                info.other_key or target.primary_key,
                record=record,
            )

        case RelationKind.BELONGS_TO_MANY:
            target = parent.resolve(info.target, name)
            parent_key, target_key = singular(parent.table), singular(target.table)
            return BelongsToMany(
                name,
                parent,
                target,
                info.pivot_table or "_".join(sorted((parent_key, target_key))),
                info.pivot_foreign_key or f"{parent_key}_id",
                info.pivot_related_key or f"{target_key}_id",
                pivot_columns=info.pivot_columns,
                record=record,
            )

        case RelationKind.MORPH_ONE | RelationKind.MORPH_MANY:
            target = parent.resolve(info.target, name)
            cls = MorphOne if info.kind is RelationKind.MORPH_ONE else MorphMany
            return cls(
                name,
                parent,
                target,
                info.local_key or parent.primary_key,
                info.other_key,
                info.morph_type,
                info.morph_name or parent.morph_name,
                record=record,
            )

        case RelationKind.MORPH_TO_MANY:
            target = parent.resolve(info.target, name)
            return MorphToMany(
                name,
                parent,
                target,
                info.pivot_table,
                info.pivot_foreign_key,
                info.pivot_related_key or f"{singular(target.table)}_id",
                info.morph_type,
                info.morph_name or parent.morph_name,
                pivot_columns=info.pivot_columns,
                record=record,
            )

        case RelationKind.MORPH_TO:
            return MorphTo(
                name,
                parent,
                info.local_key or f"{name}_id",
                info.morph_type or f"{name}_type",
                record=record,
            )

        case _:
            assert_never(info.kind)


__all__ = [
    "BelongsTo",
    "BelongsToMany",
    "HasMany",
    "HasOne",
    "HasOneOrMany",
    "MorphMany",
    "MorphOne",
    "MorphOneOrMany",
    "MorphTo",
    "MorphToMany",
    "Relation",
    "RelationInfo",
    "RelationKind",
    "RelationState",
    "belongs_to",
    "belongs_to_many",
    "build_relation",
    "has_many",
    "has_one",
    "morph_many",
    "morph_one",
    "morph_to",
    "morph_to_many",
    "singular",
]
