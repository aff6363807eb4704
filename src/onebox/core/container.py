"""Lazy service registry used to assemble the runtime object graph."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

Factory = Callable[["ServiceContainer"], Any]


class ServiceContainer:
    """Build each registered service on first use and remember creation order.

    The creation order lets callers release services in reverse, so a
    consumer is always torn down before the things it depends on.
    """

    def __init__(self) -> None:
        self._factories: dict[str, Factory] = {}
        self._instances: dict[str, Any] = {}
        self._lock = threading.RLock()

    def register(self, key: str, factory: Factory) -> None:
        with self._lock:
            if key in self._instances:
                raise ValueError(f"Service '{key}' has already been created")
            self._factories[key] = factory

    def resolve(self, key: str) -> Any:
        """Return the instance for ``key``, creating it on first request."""
        with self._lock:
            if key in self._instances:
                return self._instances[key]
            try:
                factory = self._factories[key]
            except KeyError:
                raise KeyError(f"Service '{key}' is not registered") from None
            instance = factory(self)
            # dicts keep insertion order, which is the creation order here
            self._instances[key] = instance
            return instance

    def resolved(self) -> list[tuple[str, Any]]:
        """Return created instances, most recently created first."""
        with self._lock:
            return list(reversed(self._instances.items()))


__all__ = ["ServiceContainer"]
