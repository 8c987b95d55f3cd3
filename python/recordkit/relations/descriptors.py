"""Relation descriptors declared on mapper classes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class RelationKind(Enum):
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO = "belongs_to"
    BELONGS_TO_MANY = "belongs_to_many"
    MORPH_ONE = "morph_one"
    MORPH_MANY = "morph_many"
    MORPH_TO_MANY = "morph_to_many"
    MORPH_TO = "morph_to"

    @property
    def many(self) -> bool:
        return self in (
            RelationKind.HAS_MANY,
            RelationKind.BELONGS_TO_MANY,
            RelationKind.MORPH_MANY,
            RelationKind.MORPH_TO_MANY,
        )


@dataclass(frozen=True)
class RelationInfo:
    """Stores the configuration of one relation on a mapper.

    Keys left as None are derived when the relation is built:

    - ``local_key``: column read from the parent record
    - ``other_key``: column of the target compared against ``local_key``
    - ``pivot_*``: intermediate table and its two key columns
    - ``morph_type``: discriminator column, ``morph_name``: its value
    """

    kind: RelationKind
    target: str | None = None
    name: str | None = None
    local_key: str | None = None
    other_key: str | None = None
    pivot_table: str | None = None
    pivot_foreign_key: str | None = None
    pivot_related_key: str | None = None
    pivot_columns: tuple[str, ...] = ()
    morph: str | None = None
    morph_type: str | None = None
    morph_name: str | None = None

    @property
    def many(self) -> bool:
        return self.kind.many


def singular(table: str) -> str:
    """Naive singular form of a table name (``users`` -> ``user``)."""
    return table[:-1] if table.endswith("s") else table


def has_one(target: str, foreign_key: str | None = None, local_key: str | None = None) -> Any:
    """Define a one-to-one relation whose foreign key lives on the target.

    Args:
        target: Registry name of the target mapper
        foreign_key: Column on the target (default ``<parent singular>_id``)
        local_key: Column on the parent (default: its primary key)

    Example:
        >>> class UserMapper(Mapper):
        ...     profile = has_one("profiles")
    """
    return RelationInfo(RelationKind.HAS_ONE, target, local_key=local_key, other_key=foreign_key)


def has_many(target: str, foreign_key: str | None = None, local_key: str | None = None) -> Any:
    """Define a one-to-many relation whose foreign key lives on the target.

    Example:
        >>> class UserMapper(Mapper):
        ...     posts = has_many("posts", "author_id")
    """
    return RelationInfo(RelationKind.HAS_MANY, target, local_key=local_key, other_key=foreign_key)


def belongs_to(target: str, foreign_key: str | None = None, owner_key: str | None = None) -> Any:
    """Define the inverse of has_one/has_many; the foreign key lives on the parent.

    Args:
        target: Registry name of the target mapper
        foreign_key: Column on the parent (default ``<relation name>_id``)
        owner_key: Column on the target (default: its primary key)

    Example:
        >>> class PostMapper(Mapper):
        ...     author = belongs_to("users")
    """
    return RelationInfo(RelationKind.BELONGS_TO, target, local_key=foreign_key, other_key=owner_key)


def belongs_to_many(
    target: str,
    pivot_table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    *,
    pivot_columns: tuple[str, ...] | list[str] = (),
) -> Any:
    """Define a many-to-many relation through a pivot table.

    Pivot key columns follow the ``{table}_id`` convention: ``users`` and
    ``roles`` are linked through ``role_user(user_id, role_id)`` by default.

    Args:
        target: Registry name of the target mapper
        pivot_table: Intermediate table (default: both singular names, sorted)
        foreign_pivot_key: Pivot column holding the parent key
        related_pivot_key: Pivot column holding the target key
        pivot_columns: Extra pivot columns loaded into each record's ``pivot``

    Example:
        >>> class UserMapper(Mapper):
        ...     roles = belongs_to_many("roles", pivot_columns=["granted_by"])
    """
    return RelationInfo(
        RelationKind.BELONGS_TO_MANY,
        target,
        pivot_table=pivot_table,
        pivot_foreign_key=foreign_pivot_key,
        pivot_related_key=related_pivot_key,
        pivot_columns=tuple(pivot_columns),
    )


def morph_one(
    target: str,
    name: str,
    type_column: str | None = None,
    id_column: str | None = None,
    local_key: str | None = None,
) -> Any:
    """Define a polymorphic one-to-one relation (e.g. ``image`` of a post or user).

    ``name`` is the morph prefix: the target stores ``<name>_type`` and
    ``<name>_id`` unless the columns are given.
    """
    return RelationInfo(
        RelationKind.MORPH_ONE,
        target,
        local_key=local_key,
        other_key=id_column or f"{name}_id",
        morph=name,
        morph_type=type_column or f"{name}_type",
    )


def morph_many(
    target: str,
    name: str,
    type_column: str | None = None,
    id_column: str | None = None,
    local_key: str | None = None,
) -> Any:
    """Define a polymorphic one-to-many relation.

    Example:
        >>> class PostMapper(Mapper):
        ...     comments = morph_many("comments", "commentable")
    """
    return RelationInfo(
        RelationKind.MORPH_MANY,
        target,
        local_key=local_key,
        other_key=id_column or f"{name}_id",
        morph=name,
        morph_type=type_column or f"{name}_type",
    )


def morph_to_many(
    target: str,
    name: str,
    pivot_table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    *,
    pivot_columns: tuple[str, ...] | list[str] = (),
) -> Any:
    """Define a polymorphic many-to-many relation; the discriminator lives on the pivot.

    Example:
        >>> class PostMapper(Mapper):
        ...     tags = morph_to_many("tags", "taggable")  # pivot "taggables"
    """
    return RelationInfo(
        RelationKind.MORPH_TO_MANY,
        target,
        pivot_table=pivot_table or f"{name}s",
        pivot_foreign_key=foreign_pivot_key or f"{name}_id",
        pivot_related_key=related_pivot_key,
        pivot_columns=tuple(pivot_columns),
        morph=name,
        morph_type=f"{name}_type",
    )


def morph_to(type_column: str | None = None, id_column: str | None = None) -> Any:
    """Define the inverse of a polymorphic relation.

    The target mapper is looked up in the registry from the discriminator
    value stored on each record. Columns default to ``<relation name>_type``
    and ``<relation name>_id``.

    Example:
        >>> class CommentMapper(Mapper):
        ...     commentable = morph_to()
    """
    return RelationInfo(RelationKind.MORPH_TO, local_key=id_column, morph_type=type_column)
