"""Synchronous notifications for attribute changes.

Records notify their mapper's emitter when an attribute changes or when a
value is rejected by its column rules:

- ``change`` / ``change:<field>``: ``fn(record, field, value)``
- ``invalid`` / ``invalid:<field>``: ``fn(record, error)``

Example:
    >>> users.events.on("invalid:email", lambda record, error: print(error))
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class EventEmitter:
    """Ordered listener lists keyed by event name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, fn: Callable[..., Any]) -> EventEmitter:
        self._listeners.setdefault(event, []).append(fn)
        return self

    def listens_for(self, event: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator form of :meth:`on`."""

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.on(event, fn)
            return fn

        return decorator

    def off(self, event: str | None = None, fn: Callable[..., Any] | None = None) -> EventEmitter:
        """Remove one listener, all listeners of an event, or everything."""
        if event is None:
            self._listeners.clear()
        elif fn is None:
            self._listeners.pop(event, None)
        else:
            listeners = self._listeners.get(event, [])
            if fn in listeners:
                listeners.remove(fn)
        return self

    def has_listeners(self, event: str) -> bool:
        return bool(self._listeners.get(event))

    def emit(self, event: str, *args: Any) -> None:
        """Call the listeners of an event in registration order."""
        listeners = list(self._listeners.get(event, ()))
        if listeners:
            logger.debug("emit %s to %d listener(s)", event, len(listeners))
        for fn in listeners:
            fn(*args)

    def clone(self) -> EventEmitter:
        other = EventEmitter()
        other._listeners = {name: list(fns) for name, fns in self._listeners.items()}
        return other
