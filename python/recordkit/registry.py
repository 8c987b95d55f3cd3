"""Name to mapper lookup table used to resolve relation targets."""

from __future__ import annotations

from typing import TYPE_CHECKING

from recordkit.errors import RelationConfigurationError

if TYPE_CHECKING:
    from recordkit.mapper import Mapper


class Registry:
    """Maps mapper names (and morph names) to bound mapper instances.

    A registry is passed explicitly to every mapper that takes part in a
    relation graph; there is no module-level registry.

    Example:
        >>> registry = Registry()
        >>> users = UserMapper(executor, registry=registry)
        >>> registry.get("users") is users
        True
    """

    def __init__(self) -> None:
        self._mappers: dict[str, Mapper] = {}

    def register(self, mapper: Mapper, *names: str) -> Mapper:
        """Register a mapper under its name, its morph name and any extra names."""
        keys = dict.fromkeys((mapper.name, mapper.morph_name, *names))
        for key in keys:
            existing = self._mappers.get(key)
            if existing is not None and existing is not mapper:
                raise ValueError(f"A mapper is already registered under '{key}'")
            self._mappers[key] = mapper
        return mapper

    def get(self, name: str) -> Mapper:
        try:
            return self._mappers[name]
        except KeyError:
            raise RelationConfigurationError(name, f"No mapper registered under '{name}'") from None

    def has(self, name: str) -> bool:
        return name in self._mappers

    def names(self) -> list[str]:
        return list(self._mappers)

    def __contains__(self, name: object) -> bool:
        return name in self._mappers

    def __len__(self) -> int:
        return len(self._mappers)
