"""Relation base class and its constraint state machine."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from recordkit.errors import RelationStateError
from recordkit.query import unique

if TYPE_CHECKING:
    from recordkit.mapper import Mapper, MapperQuery
    from recordkit.record import Record

logger = logging.getLogger(__name__)


class RelationState(Enum):
    UNCONSTRAINED = "unconstrained"
    CONSTRAINED = "constrained"
    RESOLVED = "resolved"


class Relation:
    """A relation between a parent mapper and a target mapper.

    Instances are single use: constrain with :meth:`apply_constraints` (one
    parent) or :meth:`apply_eager_constraints` (many parents), then resolve
    with :meth:`load` or :meth:`eager_load`. Related rows are read through a
    query on the target aliased with the relation name.

    ``local_key`` is read from parent records, ``other_key`` from target
    rows; a parent matches a target row when both are equal.
    """

    many: ClassVar[bool] = False

    def __init__(
        self,
        name: str,
        parent: Mapper,
        target: Mapper | None,
        local_key: str,
        other_key: str | None,
        *,
        record: Record | None = None,
    ) -> None:
        self.name = name
        self.parent = parent
        self.record = record
        self.local_key = local_key
        self.other_key = other_key
        self.state = RelationState.UNCONSTRAINED
        self.target: Mapper | None = None
        self.query: MapperQuery | None = None
        if target is not None:
            self.set_target(target)

    def __repr__(self) -> str:
        target = self.target.name if self.target is not None else None
        return f"<{type(self).__name__} {self.parent.name}.{self.name} -> {target} ({self.state.value})>"

    def set_target(self, target: Mapper) -> Relation:
        self.target = target
        self.query = target.new_query(alias=self.name)
        return self

    @property
    def compare_key(self) -> str:
        """Qualified column of the relation query matched against parent keys."""
        return f"{self.name}.{self.other_key}"

    # ========== Constraints ==========

    def apply_constraints(self) -> Relation:
        """Restrict the query to rows related to the bound parent record."""
        record = self._require_record()
        self._transition(RelationState.CONSTRAINED)
        self.query.where(self.compare_key, record.get(self.local_key))
        return self

    def apply_eager_constraints(self, parents: Sequence[Record]) -> Relation:
        """Restrict the query to rows related to any of ``parents``."""
        self._transition(RelationState.CONSTRAINED)
        self.query.where_in(self.compare_key, self.get_keys(parents, self.local_key))
        return self

    def modify(self, fn: Callable[..., Any], *args: Any) -> Relation:
        """Apply a custom constraint callback ``fn(query, *args)`` to the relation query."""
        fn(self.query, *args)
        return self

    @staticmethod
    def get_keys(records: Iterable[Record], key: str) -> list[Any]:
        return unique(record.get(key) for record in records)

    # ========== Resolution ==========

    async def load(self) -> Any:
        """Run the constrained query: a record (or None) to-one, a list to-many."""
        self._transition(RelationState.RESOLVED)
        if self.record is not None and self.record.get(self.local_key) is None:
            return self.get_default_value()
        if self.many:
            return await self.query.all()
        return await self.query.first()

    async def eager_load(self, parents: Sequence[Record]) -> Sequence[Record]:
        """Load related records for every parent with one query."""
        if self.state is RelationState.UNCONSTRAINED:
            self.apply_eager_constraints(parents)
        self._transition(RelationState.RESOLVED)

        results = await self.query.all()
        logger.debug("eager loaded %d %s record(s) for %d parent(s)", len(results), self.name, len(parents))
        self.match(parents, results)
        return parents

    def build_dictionary(self, results: Iterable[Record]) -> dict[str, list[Record]]:
        """Group results by their join key; keys are strings so 1 and "1" collide."""
        dictionary: dict[str, list[Record]] = {}
        for result in results:
            dictionary.setdefault(str(result.get(self.other_key)), []).append(result)
        return dictionary

    def match(self, parents: Iterable[Record], results: Iterable[Record]) -> None:
        """Assign each parent its related value, or the default value."""
        dictionary = self.build_dictionary(results)
        for parent in parents:
            key = parent.get(self.local_key)
            matches = dictionary.get(str(key)) if key is not None else None
            parent.set_related(self.name, self.parse_value(matches))

    def parse_value(self, matches: list[Record] | None) -> Any:
        if not matches:
            return self.get_default_value()
        return list(matches) if self.many else matches[0]

    def get_default_value(self) -> Any:
        return [] if self.many else None

    # ========== State ==========

    def _transition(self, state: RelationState) -> None:
        if state is RelationState.CONSTRAINED and self.state is not RelationState.UNCONSTRAINED:
            raise RelationStateError(f"Relation '{self.name}' is already constrained")
        if state is RelationState.RESOLVED:
            if self.state is RelationState.UNCONSTRAINED:
                raise RelationStateError(f"Relation '{self.name}' must be constrained before it is resolved")
            if self.state is RelationState.RESOLVED:
                raise RelationStateError(f"Relation '{self.name}' has already been resolved")
        self.state = state

    def _require_record(self) -> Record:
        if self.record is None:
            raise RelationStateError(f"Relation '{self.name}' is not bound to a parent record")
        return self.record
