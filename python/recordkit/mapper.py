"""Declarative record mappers and their fluent query."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from functools import partial
from typing import Any, ClassVar

from recordkit.errors import NotFoundError, RelationConfigurationError
from recordkit.events import EventEmitter
from recordkit.executor import QueryExecutor, Row
from recordkit.fields import ColumnInfo
from recordkit.hooks import HookFn, Hooks
from recordkit.loader import EagerLoader, LoadOption, parse_options
from recordkit.query import (
    Condition,
    Join,
    OrGroup,
    Q,
    QueryDescription,
    Selection,
    parse_filter,
)
from recordkit.record import Record
from recordkit.registry import Registry
from recordkit.relations import Relation, RelationInfo, build_relation

logger = logging.getLogger(__name__)

# Lifecycle event name -> (hook side, operation)
EVENTS: dict[str, tuple[str, str]] = {
    "saving": ("pre", "save"),
    "saved": ("post", "save"),
    "creating": ("pre", "create"),
    "created": ("post", "create"),
    "updating": ("pre", "update"),
    "updated": ("post", "update"),
    "deleting": ("pre", "delete"),
    "deleted": ("post", "delete"),
    "fetching": ("pre", "fetch"),
    "fetched": ("post", "fetch"),
}


class MapperMeta(type):
    """Metaclass for mappers that collects column and relation descriptors.

    Each mapper class gets its own copy of its base's columns, relations,
    hooks and event listeners, so registering on a subclass never changes
    the base.
    """

    def __new__(
        mcs,
        name: str,
        bases: tuple[type, ...],
        namespace: dict[str, Any],
        **kwargs: Any,
    ) -> MapperMeta:
        cls = super().__new__(mcs, name, bases, namespace, **kwargs)
        parents = [b for b in bases if isinstance(b, MapperMeta)]

        columns: dict[str, ColumnInfo] = {}
        relations: dict[str, RelationInfo] = {}
        for base in reversed(parents):
            columns.update(base.__columns__)
            relations.update(base.__relations__)

        for attr_name, attr_value in list(namespace.items()):
            if attr_name.startswith("_"):
                continue
            if isinstance(attr_value, ColumnInfo):
                # Copy so a descriptor object shared between classes is not renamed
                columns[attr_name] = replace(attr_value, name=attr_name)
            elif isinstance(attr_value, RelationInfo):
                relations[attr_name] = replace(attr_value, name=attr_name)
                # Relations are reached through get_relation(), not as attributes
                delattr(cls, attr_name)

        cls.__columns__ = columns  # type: ignore[attr-defined]
        cls.__relations__ = relations  # type: ignore[attr-defined]

        if parents:
            if getattr(cls, "__tablename__", None) is None:
                cls.__tablename__ = _default_tablename(name)  # type: ignore[attr-defined]
            if "__primary_key__" not in namespace:
                for col_name, col_info in columns.items():
                    if col_info.primary_key:
                        cls.__primary_key__ = col_name  # type: ignore[attr-defined]
                        break
            cls.__hooks__ = parents[0].__hooks__.clone()  # type: ignore[attr-defined]
            cls.__events__ = parents[0].__events__.clone()  # type: ignore[attr-defined]
        else:
            cls.__hooks__ = Hooks()  # type: ignore[attr-defined]
            cls.__events__ = EventEmitter()  # type: ignore[attr-defined]

        return cls


def _default_tablename(class_name: str) -> str:
    base = class_name.removesuffix("Mapper") or class_name
    return base.lower() + "s"


class Mapper(metaclass=MapperMeta):
    """Binds a record schema, its relations and hooks to a query executor.

    Example:
        >>> class UserMapper(Mapper):
        ...     __tablename__ = "users"
        ...     __timestamps__ = True
        ...     id = mapped_column(int, primary_key=True)
        ...     name = mapped_column(str, max_length=100, nullable=False)
        ...     posts = has_many("posts", "author_id")
        ...
        >>> registry = Registry()
        >>> users = UserMapper(executor, registry=registry)
        >>> alice = await users.create({"name": "Alice"})
        >>> await users.query().where("name", "Alice").with_related("posts").all()
    """

    __tablename__: ClassVar[str | None] = None
    __primary_key__: ClassVar[str | None] = "id"
    __mapper_name__: ClassVar[str | None] = None
    __morph_name__: ClassVar[str | None] = None
    __timestamps__: ClassVar[bool] = False
    __created_at__: ClassVar[str] = "created_at"
    __updated_at__: ClassVar[str] = "updated_at"
    __record_class__: ClassVar[type[Record]] = Record

    __columns__: ClassVar[dict[str, ColumnInfo]]
    __relations__: ClassVar[dict[str, RelationInfo]]
    __hooks__: ClassVar[Hooks]
    __events__: ClassVar[EventEmitter]

    def __init__(
        self,
        executor: QueryExecutor,
        *,
        registry: Registry | None = None,
        name: str | None = None,
        table: str | None = None,
    ) -> None:
        table = table or type(self).__tablename__
        if table is None:
            raise ValueError(f"{type(self).__name__} needs a table name")

        self.executor = executor
        self.table = table
        self.name = name or type(self).__mapper_name__ or table
        self.registry = registry
        if registry is not None:
            registry.register(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r} table={self.table!r}>"

    # ========== Schema ==========

    @property
    def primary_key(self) -> str | None:
        return type(self).__primary_key__

    @property
    def morph_name(self) -> str:
        return type(self).__morph_name__ or self.name

    @property
    def columns(self) -> dict[str, ColumnInfo]:
        return type(self).__columns__

    @property
    def relations(self) -> dict[str, RelationInfo]:
        return type(self).__relations__

    @property
    def events(self) -> EventEmitter:
        return type(self).__events__

    @property
    def hooks(self) -> Hooks:
        return type(self).__hooks__

    def resolve(self, name: str | None, relation: str | None = None) -> Mapper:
        """Look up another mapper in the registry."""
        if name is None:
            raise RelationConfigurationError(relation or "?", f"Relation '{relation}' has no target")
        if self.registry is None:
            raise RelationConfigurationError(
                relation or name, f"Mapper '{self.name}' has no registry to resolve '{name}'"
            )
        return self.registry.get(name)

    def pivot_mapper(self, table: str) -> Mapper:
        """Mapper for an intermediate table, sharing this mapper's executor."""
        return PivotMapper(self.executor, table=table)

    def use(self, executor: QueryExecutor) -> Mapper:
        """Run later operations against another executor; returns the mapper."""
        self.executor = executor
        return self

    # ========== Collaborator surface ==========

    def new_query(self, *, alias: str | None = None) -> MapperQuery:
        return MapperQuery(self, alias=alias)

    def query(self) -> MapperQuery:
        return self.new_query()

    def new_instance(self, data: Mapping[str, Any] | None = None, exists: bool = False) -> Record:
        return type(self).__record_class__(self, data, exists=exists)

    def hydrate(self, rows: Iterable[Row]) -> list[Record]:
        """Build persisted records from executor rows."""
        return [self.new_instance(row, exists=True) for row in rows]

    def get_relation(self, name: str, record: Record | None = None) -> Relation:
        """Build the relation ``name``; constrained to ``record`` when given.

        Raises:
            RelationConfigurationError: If ``name`` is not a declared relation.
        """
        info = self.relations.get(name)
        if info is None:
            if name in self.columns or hasattr(self, name):
                raise RelationConfigurationError(name)
            raise RelationConfigurationError(name, f"Mapper '{self.name}' has no relation '{name}'")

        relation = build_relation(self, info, record)
        if record is not None:
            relation.apply_constraints()
        return relation

    async def load(self, records: Record | Sequence[Record], *names: Any) -> Any:
        """Eager load relations onto one or many records of this mapper."""
        if isinstance(records, Record):
            await EagerLoader(self).load([records], names)
            return records
        return await EagerLoader(self).load(records, names)

    # ========== Persistence ==========

    async def save(self, record: Record, *, force_insert: bool = False) -> Record:
        """Insert or update a record.

        Records without a primary key value (or with ``force_insert``) are
        inserted, others are updated. Saving a persisted record without
        changes does nothing.
        """
        insert = force_insert or record.get_id() is None
        if not insert and record.exists and not record.is_dirty():
            return record

        hooks = type(self).__hooks__

        async def persist() -> Record:
            if insert:
                return await hooks.run("create", record, partial(self._insert, record))
            return await hooks.run("update", record, partial(self._update, record))

        return await hooks.run("save", record, persist)

    async def _insert(self, record: Record) -> Record:
        if type(self).__timestamps__:
            now = self._now()
            if record.get(self.__created_at__) is None:
                record.set(self.__created_at__, now)
            record.set(self.__updated_at__, now)

        pk = self.primary_key
        data = {key: value for key, value in record.store.snapshot().items() if not (key == pk and value is None)}
        result = await self.executor.insert(self.table, data)

        if isinstance(result, Mapping):
            record.store.hydrate({**record.store.snapshot(), **result})
        else:
            if pk is not None and result is not None:
                record.store.set(pk, result)
            record.store.commit()

        record.exists = True
        logger.debug("inserted %s %s=%r", self.name, pk, record.get_id())
        return record

    async def _update(self, record: Record) -> Record:
        if type(self).__timestamps__:
            record.set(self.__updated_at__, self._now())

        # A changed key is updated on the row that still holds the committed key
        key = record.original(self.primary_key, record.get_id())
        data = record.get_dirty()
        await self.executor.update(self._key_query(key), data)
        record.store.commit()
        record.exists = True
        logger.debug("updated %s %s=%r fields=%s", self.name, self.primary_key, key, sorted(data))
        return record

    async def destroy(self, record: Record) -> Record:
        """Delete a record. The record keeps its values but no longer exists.

        Raises:
            NotFoundError: If the record has no primary key value.
        """
        if record.get_id() is None:
            raise NotFoundError(f"Cannot delete a {self.name} record without a key", mapper=self.name)
        return await type(self).__hooks__.run("delete", record, partial(self._delete, record))

    async def _delete(self, record: Record) -> Record:
        await self.executor.delete(self._key_query(record.get_id()))
        record.exists = False
        return record

    async def fetch(self, record: Record) -> Record:
        """Refresh a record from the executor.

        Raises:
            NotFoundError: If no row matches the record's key.
        """
        return await type(self).__hooks__.run("fetch", record, partial(self._fetch, record))

    async def _fetch(self, record: Record) -> Record:
        key = record.get_id()
        row = await self.executor.fetch_one(self._key_query(key)) if key is not None else None
        if row is None:
            raise NotFoundError(f"No {self.name} record with key {key!r}", mapper=self.name, key=key)
        record.store.hydrate(row)
        record.errors.clear()
        record.exists = True
        return record

    def _key_query(self, key: Any) -> QueryDescription:
        return QueryDescription(self.table).with_where(Condition(self.primary_key, "=", key))

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    # ========== Shortcuts ==========

    async def find(self, key: Any, *names: Any) -> Record | None:
        return await self.query().with_related(*names).find(key)

    async def find_or_fail(self, key: Any, *names: Any) -> Record:
        return await self.query().with_related(*names).find_or_fail(key)

    async def find_many(self, keys: Iterable[Any], *names: Any) -> list[Record]:
        return await self.query().with_related(*names).find_many(keys)

    async def all(self, *names: Any) -> list[Record]:
        return await self.query().with_related(*names).all()

    async def first(self, *names: Any) -> Record | None:
        return await self.query().with_related(*names).first()

    async def find_or_new(self, key: Any) -> Record:
        return await self.query().find_or_new(key)

    async def first_or_new(self, attrs: Mapping[str, Any]) -> Record:
        return await self.query().first_or_new(attrs)

    async def first_or_create(self, attrs: Mapping[str, Any]) -> Record:
        return await self.query().first_or_create(attrs)

    async def create(self, attrs: Mapping[str, Any] | None = None) -> Record:
        return await self.save(self.new_instance(attrs))

    # ========== Hooks ==========

    @classmethod
    def pre(cls, name: str, fn: HookFn, *, is_async: bool = False) -> type[Mapper]:
        """Register a pre hook for an operation of this mapper class."""
        cls.__hooks__.pre(name, fn, is_async=is_async)
        return cls

    @classmethod
    def post(cls, name: str, fn: HookFn) -> type[Mapper]:
        cls.__hooks__.post(name, fn)
        return cls

    @classmethod
    def listen(cls, event: str, fn: HookFn, is_async: bool = False) -> type[Mapper]:
        """Register a hook by lifecycle event name (``saving``, ``deleted``, ...)."""
        try:
            side, operation = EVENTS[event]
        except KeyError:
            raise ValueError(f"Unknown lifecycle event: {event!r}") from None

        if side == "pre":
            cls.__hooks__.pre(operation, fn, is_async=is_async)
        elif is_async:
            raise ValueError(f"'{event}' hooks cannot be asynchronous with proceed")
        else:
            cls.__hooks__.post(operation, fn)
        return cls

    @classmethod
    def listens_for(cls, event: str, *, is_async: bool = False) -> Callable[[HookFn], HookFn]:
        """Decorator form of :meth:`listen`.

        Example:
            >>> @UserMapper.listens_for("creating")
            ... def set_slug(record):
            ...     record.set("slug", slugify(record.get("name")))
        """

        def decorator(fn: HookFn) -> HookFn:
            cls.listen(event, fn, is_async)
            return fn

        return decorator

    @classmethod
    def hook(cls, name: str) -> type[Mapper]:
        """Run a custom coroutine method through this class's hooks.

        Hooks of the wrapped method receive the mapper as context, followed
        by the call arguments.
        """
        Hooks.wrap(cls, name)
        return cls

    @classmethod
    def on(cls, event: str, fn: Callable[..., Any]) -> type[Mapper]:
        """Listen for attribute notifications (``change``, ``invalid:<field>``, ...)."""
        cls.__events__.on(event, fn)
        return cls


class PivotMapper(Mapper):
    """Mapper for intermediate tables; rows have no single primary key."""

    __primary_key__ = None


class MapperQuery:
    """Fluent query for the records of one mapper.

    Supports Django-style filter kwargs:
        - field=value: Exact match (None means IS NULL)
        - field__gt / __gte / __lt / __lte / __ne: Comparisons
        - field__in=[values], field__notin=[values]
        - field__isnull=True/False
        - field__like / __contains / __startswith / __endswith: LIKE patterns

    Example:
        >>> await users.query().filter(age__gte=18).order_by("-age").limit(10).all()
        >>> await users.query().filter(Q(role="admin") | Q(role="owner")).all()
    """

    def __init__(self, mapper: Mapper, *, alias: str | None = None) -> None:
        self.mapper = mapper
        self.description = QueryDescription(mapper.table, alias=alias)
        self.hydrator: Callable[[Iterable[Row]], list[Record]] = mapper.hydrate
        self._load_options: list[LoadOption] = []

    def __repr__(self) -> str:
        return f"<MapperQuery {self.description!r}>"

    # ========== Building ==========

    def where(self, column: str, *args: Any) -> MapperQuery:
        """Add a condition: ``where(column, value)`` or ``where(column, operator, value)``."""
        self.description = self.description.with_where(_condition(column, *args))
        return self

    def or_where(self, column: str, *args: Any) -> MapperQuery:
        """OR a condition with the previous one."""
        condition = _condition(column, *args)
        where = self.description.where
        if not where:
            return self.where(column, *args)

        last = where[-1]
        members = last.members if isinstance(last, OrGroup) else (last,)
        self.description = replace(self.description, where=where[:-1] + (OrGroup((*members, condition)),))
        return self

    def where_in(self, column: str, values: Iterable[Any]) -> MapperQuery:
        self.description = self.description.with_where(Condition(column, "in", tuple(values)))
        return self

    def filter(self, *q_objects: Q, **kwargs: Any) -> MapperQuery:
        """Add filter conditions using Django-style kwargs or Q objects.

        Example:
            >>> query.filter(name="Alice", age__gt=18)
            >>> query.filter(Q(age__gt=18) | Q(vip=True))
        """
        conditions: list[Condition | OrGroup] = []
        for q in q_objects:
            conditions.extend(q.to_conditions())
        conditions.extend(parse_filter(key, value) for key, value in kwargs.items())
        self.description = self.description.with_where(*conditions)
        return self

    def select(self, *columns: str) -> MapperQuery:
        """Select columns: ``"name"``, ``"alias.column"``, ``"alias.*"`` or ``"column as name"``."""
        self.description = self.description.with_select(*(_selection(column) for column in columns))
        return self

    def join(
        self,
        source: str,
        left: str,
        right: str,
        *,
        alias: str | None = None,
        conditions: Iterable[Condition] = (),
    ) -> MapperQuery:
        """Inner join ``source`` on ``left = right``."""
        join = Join(source, alias or source, left, right, tuple(conditions))
        self.description = self.description.with_join(join)
        return self

    def order_by(self, *columns: str, desc: bool = False) -> MapperQuery:
        """Add ORDER BY columns; a ``-`` prefix sorts that column descending."""
        direction = "DESC" if desc else "ASC"
        for column in columns:
            if column.startswith("-"):
                self.description = self.description.with_order(column[1:], "DESC")
            else:
                self.description = self.description.with_order(column, direction)
        return self

    def limit(self, n: int) -> MapperQuery:
        self.description = self.description.with_limit(n)
        return self

    def offset(self, n: int) -> MapperQuery:
        self.description = self.description.with_offset(n)
        return self

    def with_related(self, *names: Any) -> MapperQuery:
        """Eager load relations with the results.

        Accepts relation names, ``{name: constraint}`` mappings and load options.
        """
        self._load_options.extend(parse_options(names))
        return self

    def options(self, *opts: LoadOption) -> MapperQuery:
        """Add loading options for relations.

        Example:
            >>> query.options(selectinload("posts"), noload("comments"))
        """
        return self.with_related(*opts)

    # ========== Execution ==========

    async def rows(self) -> list[Row]:
        """Fetch the raw rows."""
        logger.debug("fetch %s", self.description)
        return list(await self.mapper.executor.fetch_all(self.description))

    async def all(self) -> list[Record]:
        """Execute the query and return all records."""
        records = self.hydrator(await self.rows())
        await self._eager_load(records)
        return records

    async def first(self) -> Record | None:
        row = await self.mapper.executor.fetch_one(self.description)
        if row is None:
            return None
        records = self.hydrator([row])
        await self._eager_load(records)
        return records[0]

    async def first_or_fail(self) -> Record:
        record = await self.first()
        if record is None:
            raise NotFoundError(f"No {self.mapper.name} record matches the query", mapper=self.mapper.name)
        return record

    async def find(self, key: Any) -> Record | None:
        return await self.where(self._primary_key(), key).first()

    async def find_or_fail(self, key: Any) -> Record:
        record = await self.find(key)
        if record is None:
            raise NotFoundError(f"No {self.mapper.name} record with key {key!r}", mapper=self.mapper.name, key=key)
        return record

    async def find_many(self, keys: Iterable[Any]) -> list[Record]:
        return await self.where_in(self._primary_key(), keys).all()

    async def find_or_new(self, key: Any) -> Record:
        """Find a record by key, or return a new empty record."""
        record = await self.find(key)
        return record if record is not None else self.mapper.new_instance()

    async def first_or_new(self, attrs: Mapping[str, Any]) -> Record:
        """First record matching ``attrs``, or a new unsaved record filled with them."""
        for column, value in attrs.items():
            self.where(column, value)
        record = await self.first()
        return record if record is not None else self.mapper.new_instance(attrs)

    async def first_or_create(self, attrs: Mapping[str, Any]) -> Record:
        """Like :meth:`first_or_new`, saving the new record."""
        record = await self.first_or_new(attrs)
        if record.exists:
            return record
        return await self.mapper.save(record)

    async def pluck(self, column: str) -> list[Any]:
        """Values of one column for every matching row."""
        selection = _selection(column)
        description = replace(self.description, select=(selection,))
        rows = await self.mapper.executor.fetch_all(description)
        return [row.get(selection.output_name) for row in rows]

    async def exists(self) -> bool:
        return await self.mapper.executor.fetch_one(self.description.with_limit(1)) is not None

    async def update(self, **values: Any) -> int:
        """Update matching rows; returns the affected count."""
        return await self.mapper.executor.update(self.description, values)

    async def delete(self) -> int:
        """Delete matching rows; returns the affected count."""
        return await self.mapper.executor.delete(self.description)

    async def _eager_load(self, records: list[Record]) -> None:
        if records and self._load_options:
            await EagerLoader(self.mapper).load(records, self._load_options)

    def _primary_key(self) -> str:
        pk = self.mapper.primary_key
        if pk is None:
            raise ValueError(f"Mapper '{self.mapper.name}' has no primary key")
        return f"{self.description.name}.{pk}"


def _condition(column: str, *args: Any) -> Condition:
    if len(args) == 1:
        operator, value = "=", args[0]
    elif len(args) == 2:
        operator, value = args
    else:
        raise TypeError("where() takes a column and either a value or an operator and a value")

    operator = operator.lower()
    if value is None and operator in ("=", "!="):
        operator = "is null" if operator == "=" else "is not null"
    elif operator in ("in", "not in"):
        value = tuple(value)
    return Condition(column, operator, value)


def _selection(column: str) -> Selection:
    alias = None
    if " as " in column.lower():
        index = column.lower().index(" as ")
        column, alias = column[:index].strip(), column[index + 4 :].strip()

    source = None
    if "." in column:
        source, column = column.split(".", 1)
    return Selection(column, source, alias)
