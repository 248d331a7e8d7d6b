"""Key-value store abstraction used by the response cache."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable


class KeyValueStore(ABC):
    """String-keyed, string-valued store with per-entry TTL."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value, or ``None`` if absent or expired."""

    @abstractmethod
    async def put(self, key: str, value: str, *, ttl_seconds: float | None = None) -> None:
        """Store ``value``; it disappears after ``ttl_seconds`` when given."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store. Expired entries are dropped on read."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._items: dict[str, tuple[str, float | None]] = {}

    async def get(self, key: str) -> str | None:
        item = self._items.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._items[key]
            return None
        return value

    async def put(self, key: str, value: str, *, ttl_seconds: float | None = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        self._items[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __len__(self) -> int:
        return len(self._items)
