"""Batched eager loading of relations onto parent records."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from recordkit.errors import RelationConfigurationError

if TYPE_CHECKING:
    from recordkit.mapper import Mapper
    from recordkit.record import Record
    from recordkit.relations import Relation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadOption:
    """Represents a relation loading option."""

    strategy: str  # "selectin" or "noload"
    name: str
    constraint: Callable[..., Any] | None = None

    def __repr__(self) -> str:
        return f"<LoadOption {self.strategy} {self.name}>"


def selectinload(name: str, constraint: Callable[..., Any] | None = None) -> LoadOption:
    """Eager load a relation with one batched query.

    ``constraint(query)`` may further restrict the relation query.

    Example:
        >>> users = await mapper.query().options(selectinload("posts")).all()
        >>> await mapper.load(users, selectinload("posts", lambda q: q.where("published", True)))
    """
    return LoadOption("selectin", name, constraint)


def noload(name: str) -> LoadOption:
    """Mark a relation as loaded with its default value, without querying.

    Example:
        >>> users = await mapper.query().options(noload("posts")).all()
    """
    return LoadOption("noload", name)


def parse_options(names: Iterable[Any]) -> list[LoadOption]:
    """Normalize names, ``{name: constraint}`` mappings and LoadOptions."""
    options: list[LoadOption] = []
    for item in names:
        if isinstance(item, LoadOption):
            options.append(item)
        elif isinstance(item, Mapping):
            options.extend(selectinload(name, constraint) for name, constraint in item.items())
        elif isinstance(item, str):
            options.append(selectinload(item))
        else:
            raise TypeError(f"Cannot eager load {item!r}")
    return options


class EagerLoader:
    """Resolves relations of one mapper for a batch of parent records.

    Every relation name costs exactly one query regardless of how many
    parents there are (polymorphic belongs-to: one per discriminator).
    Names are resolved concurrently.
    """

    def __init__(self, mapper: Mapper) -> None:
        self.mapper = mapper

    async def load(self, records: Sequence[Record], names: Iterable[Any]) -> Sequence[Record]:
        options = parse_options(names)
        relations = [(option, self._relation(option)) for option in options]
        if not records or not relations:
            return records

        await asyncio.gather(*(self._load_one(records, option, relation) for option, relation in relations))
        return records

    def _relation(self, option: LoadOption) -> Relation:
        if "." in option.name:
            raise RelationConfigurationError(
                option.name, f"Nested relation '{option.name}' is not supported; load single relations"
            )
        return self.mapper.get_relation(option.name)

    async def _load_one(self, records: Sequence[Record], option: LoadOption, relation: Relation) -> None:
        if option.strategy == "noload":
            for record in records:
                record.set_related(option.name, relation.get_default_value())
            return

        if option.constraint is not None:
            relation.modify(option.constraint)

        logger.debug("eager loading %s.%s for %d record(s)", self.mapper.name, option.name, len(records))
        await relation.eager_load(records)
