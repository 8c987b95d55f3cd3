"""Many-to-many relations through a pivot table."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from recordkit.record import Record
from recordkit.relations.base import Relation, RelationState

if TYPE_CHECKING:
    from recordkit.executor import Row
    from recordkit.mapper import Mapper, MapperQuery

PIVOT_PREFIX = "pivot_"


class BelongsToMany(Relation):
    """Many-to-many relation joined through ``pivot_table``.

    The pivot table is joined under the alias ``<relation>_pivot``. Pivot
    columns are selected as ``pivot_<column>`` and split off into a nested
    ``pivot`` record on every related record.

    Example:
        >>> roles = user.relation("roles").with_pivot("granted_by")
        >>> for role in await roles.load():
        ...     print(role.name, role.pivot.granted_by)
        >>> await user.relation("roles").sync([1, (2, {"granted_by": "admin"})])
    """

    many = True

    def __init__(
        self,
        name: str,
        parent: Mapper,
        target: Mapper,
        pivot_table: str,
        foreign_pivot_key: str,
        related_pivot_key: str,
        *,
        pivot_columns: Iterable[str] = (),
        record: Record | None = None,
    ) -> None:
        super().__init__(name, parent, target, parent.primary_key, foreign_pivot_key, record=record)
        self.table = pivot_table
        self.foreign_pivot_key = foreign_pivot_key
        self.related_pivot_key = related_pivot_key
        self.pivot_alias = f"{name}_pivot"
        self.pivot_columns = list(dict.fromkeys((foreign_pivot_key, related_pivot_key, *pivot_columns)))
        self.pivot = parent.pivot_mapper(pivot_table)
        self.query.hydrator = self._hydrate

    @property
    def compare_key(self) -> str:
        return f"{self.pivot_alias}.{self.foreign_pivot_key}"

    def with_pivot(self, *columns: str) -> BelongsToMany:
        """Load extra pivot columns into each record's ``pivot``."""
        added = [column for column in columns if column not in self.pivot_columns]
        self.pivot_columns.extend(added)
        if self.state is not RelationState.UNCONSTRAINED:
            self._select_pivot_columns(added)
        return self

    # ========== Constraints ==========

    def apply_constraints(self) -> Relation:
        super().apply_constraints()
        self._add_pivot_join()
        return self

    def apply_eager_constraints(self, parents: Sequence[Record]) -> Relation:
        super().apply_eager_constraints(parents)
        self._add_pivot_join()
        return self

    def _add_pivot_join(self) -> None:
        self.query.join(
            self.table,
            f"{self.pivot_alias}.{self.related_pivot_key}",
            f"{self.name}.{self.target.primary_key}",
            alias=self.pivot_alias,
        )
        self.query.select(f"{self.name}.*")
        self._select_pivot_columns(self.pivot_columns)

    def _select_pivot_columns(self, columns: Iterable[str]) -> None:
        for column in columns:
            self.query.select(f"{self.pivot_alias}.{column} as {PIVOT_PREFIX}{column}")

    # ========== Hydration ==========

    def _hydrate(self, rows: Iterable[Row]) -> list[Record]:
        aliases = {f"{PIVOT_PREFIX}{column}": column for column in self.pivot_columns}
        records = []
        for row in rows:
            attributes: dict[str, Any] = {}
            pivot: dict[str, Any] = {}
            for key, value in row.items():
                if key in aliases:
                    pivot[aliases[key]] = value
                else:
                    attributes[key] = value
            record = self.target.new_instance(attributes, exists=True)
            record.set_related("pivot", self.pivot.new_instance(pivot, exists=True))
            records.append(record)
        return records

    def build_dictionary(self, results: Iterable[Record]) -> dict[str, list[Record]]:
        dictionary: dict[str, list[Record]] = {}
        for result in results:
            key = result.related["pivot"].get(self.foreign_pivot_key)
            dictionary.setdefault(str(key), []).append(result)
        return dictionary

    # ========== Pivot operations ==========

    def new_pivot_query(self, constrained: bool = True) -> MapperQuery:
        """Query on the pivot table, restricted to the parent's rows by default."""
        query = self.pivot.new_query()
        if constrained:
            query.where(self.foreign_pivot_key, self._require_record().get(self.local_key))
        return query

    def pivot_record(self, key: Any, attrs: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Row inserted into the pivot table to link the parent with ``key``."""
        return {
            self.foreign_pivot_key: self._require_record().get(self.local_key),
            self.related_pivot_key: key,
            **(attrs or {}),
        }

    def _parse_ids(self, ids: Any) -> list[tuple[Any, dict[str, Any]]]:
        """Normalize keys, records, ``(key, attrs)`` items or ``{key: attrs}`` into pairs."""
        if isinstance(ids, Mapping):
            return [(self._key(key), dict(attrs or {})) for key, attrs in ids.items()]
        # A top-level tuple is a collection of keys; pairs only appear as items
        if isinstance(ids, (Record, str, bytes)) or not isinstance(ids, Iterable):
            ids = [ids]

        parsed: dict[str, tuple[Any, dict[str, Any]]] = {}
        for item in ids:
            if isinstance(item, tuple):
                key, attrs = item
                entry = (self._key(key), dict(attrs or {}))
            else:
                entry = (self._key(item), {})
            parsed[str(entry[0])] = entry
        return list(parsed.values())

    def _key(self, value: Any) -> Any:
        if isinstance(value, Record):
            return value.get(self.target.primary_key)
        return value

    async def attach(self, ids: Any, attrs: Mapping[str, Any] | None = None) -> list[Any]:
        """Insert pivot rows linking the parent to ``ids``; returns the attached keys.

        ``attrs`` are written to every inserted row; attributes given per key
        take precedence.
        """
        entries = self._parse_ids(ids)
        for key, extra in entries:
            await self.parent.executor.insert(self.table, self.pivot_record(key, {**(attrs or {}), **extra}))
        return [key for key, _ in entries]

    async def detach(self, ids: Any = None) -> int:
        """Delete pivot rows for ``ids``, or every row of the parent when None."""
        query = self.new_pivot_query()
        if ids is not None:
            keys = [key for key, _ in self._parse_ids(ids)]
            if not keys:
                return 0
            query.where_in(self.related_pivot_key, keys)
        return await query.delete()

    async def update_pivot(self, key: Any, attrs: Mapping[str, Any]) -> int:
        """Update the pivot row linking the parent with ``key``."""
        return await self.new_pivot_query().where(self.related_pivot_key, self._key(key)).update(**attrs)

    async def sync(self, ids: Any) -> dict[str, list[Any]]:
        """Make the pivot rows of the parent match ``ids`` exactly.

        Keys no longer requested are detached, new keys are attached, keys
        present on both sides are left alone unless pivot attributes are
        given for them, in which case their pivot row is updated. The steps
        are separate queries: a failure part way leaves earlier steps applied.
        """
        current = await self.new_pivot_query().pluck(self.related_pivot_key)
        current_keys = {str(key) for key in current}
        requested = self._parse_ids(ids)
        requested_keys = {str(key) for key, _ in requested}

        detached = [key for key in current if str(key) not in requested_keys]
        attached = [(key, attrs) for key, attrs in requested if str(key) not in current_keys]
        updated = [(key, attrs) for key, attrs in requested if str(key) in current_keys and attrs]

        if detached:
            await self.detach(detached)
        if attached:
            await self.attach(attached)
        for key, attrs in updated:
            await self.update_pivot(key, attrs)

        return {
            "attached": [key for key, _ in attached],
            "detached": detached,
            "updated": [key for key, _ in updated],
        }

    async def save(self, record: Record, pivot: Mapping[str, Any] | None = None) -> Record:
        """Persist ``record`` then attach it to the parent."""
        await self.target.save(record)
        await self.attach([(record.get_id(), dict(pivot or {}))])
        return record

    async def create(self, attrs: Mapping[str, Any], pivot: Mapping[str, Any] | None = None) -> Record:
        return await self.save(self.target.new_instance(attrs), pivot)

    async def save_many(
        self, records: Iterable[Record], pivots: Sequence[Mapping[str, Any]] | None = None
    ) -> list[Record]:
        pivots = pivots or []
        return [
            await self.save(record, pivots[i] if i < len(pivots) else None) for i, record in enumerate(records)
        ]


class MorphToMany(BelongsToMany):
    """Polymorphic many-to-many: the pivot also stores the parent's morph name."""

    def __init__(
        self,
        name: str,
        parent: Mapper,
        target: Mapper,
        pivot_table: str,
        foreign_pivot_key: str,
        related_pivot_key: str,
        morph_type: str,
        morph_name: str,
        *,
        pivot_columns: Iterable[str] = (),
        record: Record | None = None,
    ) -> None:
        self.morph_type = morph_type
        self.morph_name = morph_name
        super().__init__(
            name,
            parent,
            target,
            pivot_table,
            foreign_pivot_key,
            related_pivot_key,
            pivot_columns=(morph_type, *pivot_columns),
            record=record,
        )

    def apply_constraints(self) -> Relation:
        super().apply_constraints()
        self._add_morph_type_constraint()
        return self

    def apply_eager_constraints(self, parents: Sequence[Record]) -> Relation:
        super().apply_eager_constraints(parents)
        self._add_morph_type_constraint()
        return self

    def _add_morph_type_constraint(self) -> None:
        self.query.where(f"{self.pivot_alias}.{self.morph_type}", self.morph_name)

    def new_pivot_query(self, constrained: bool = True) -> MapperQuery:
        query = super().new_pivot_query(constrained)
        if constrained:
            query.where(self.morph_type, self.morph_name)
        return query

    def pivot_record(self, key: Any, attrs: Mapping[str, Any] | None = None) -> dict[str, Any]:
        record = super().pivot_record(key, attrs)
        record[self.morph_type] = self.morph_name
        return record
