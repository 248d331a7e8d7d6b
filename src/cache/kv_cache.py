"""Read-through cache with stale-while-revalidate and stampede protection.

Entries are stored as one JSON document holding the payload and its
absolute expiry timestamps:

    {"data": ..., "metadata": {"expires": <epoch s>, "swrExpires": <epoch s>}}

Lookup outcomes:
- fresh (now < expires): return cached data
- stale (expires <= now < swrExpires): return cached data, refresh in background
- miss / expired: fetch, store, return

Concurrent callers for the same key share one in-flight fetch. The store is
guarded by its own circuit breaker; any store failure degrades to calling
``fetch_fn`` directly.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from src.cache.store import KeyValueStore
from src.resilience.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheMetadata:
    expires: float
    swr_expires: float


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """Cached payload plus its freshness window."""

    data: T
    metadata: CacheMetadata

    def serialize(self) -> str:
        return json.dumps(
            {
                "data": self.data,
                "metadata": {
                    "expires": self.metadata.expires,
                    "swrExpires": self.metadata.swr_expires,
                },
            }
        )

    @classmethod
    def parse(cls, raw: str | None) -> CacheEntry[Any] | None:
        """Decode a stored entry; malformed or missing values yield ``None``."""
        if not raw:
            return None
        try:
            doc = json.loads(raw)
            metadata = CacheMetadata(
                expires=float(doc["metadata"]["expires"]),
                swr_expires=float(doc["metadata"]["swrExpires"]),
            )
            return cls(data=doc["data"], metadata=metadata)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed cache entry")
            return None


class _InFlight:
    """One lookup shared by every caller of a key.

    The entry is registered before the first store read, so callers that
    arrive while the read is pending join ``task`` instead of starting their
    own. ``has_stale`` marks a background revalidation; callers arriving
    meanwhile get ``stale_data`` instead of waiting.
    """

    __slots__ = ("task", "has_stale", "stale_data")

    def __init__(self) -> None:
        self.task: asyncio.Future[Any] | None = None
        self.has_stale = False
        self.stale_data: Any = None


class KVCache:
    """Read-through cache over a ``KeyValueStore``.

    Parameters
    ----------
    store:
        Backing key-value store.
    breaker:
        Circuit breaker dedicated to the store.
    clock:
        Wall-clock source in epoch seconds, injectable for tests.
    """

    def __init__(
        self,
        store: KeyValueStore,
        breaker: CircuitBreaker,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._breaker = breaker
        self._clock = clock
        self._in_flight: dict[str, _InFlight] = {}
        # Strong references so background revalidations are not garbage collected
        self._background: set[asyncio.Task[Any]] = set()

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        *,
        ttl: float = 300,
        swr_ttl: float | None = None,
    ) -> T:
        """Return the cached value for ``key`` or fetch, store and return it.

        ``ttl`` and ``swr_ttl`` are in seconds. ``fetch_fn`` results must be
        JSON-serializable. Exceptions from ``fetch_fn`` propagate.
        """
        if not self._breaker.can_call():
            logger.debug("Cache store breaker open, fetching directly", extra={"cache_key": key})
            return await fetch_fn()

        flight = self._in_flight.get(key)
        if flight is None:
            # Claimed synchronously, before any await
            flight = _InFlight()
            self._in_flight[key] = flight
            flight.task = asyncio.ensure_future(self._lookup(key, flight, fetch_fn, ttl, swr_ttl))
        elif flight.has_stale:
            return flight.stale_data
        return await asyncio.shield(flight.task)

    async def delete(self, key: str) -> None:
        """Invalidate one key. Store errors are logged, not raised."""
        try:
            await self._breaker.execute(lambda: self._store.delete(key))
        except Exception as exc:
            logger.warning(
                "Cache delete failed",
                extra={"cache_key": key, "error_reason": exc},
            )

    async def delete_many(self, keys: list[str]) -> None:
        await asyncio.gather(*(self.delete(key) for key in keys))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lookup(
        self,
        key: str,
        flight: _InFlight,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl: float,
        swr_ttl: float | None,
    ) -> T:
        revalidating = False
        try:
            now = self._clock()
            try:
                raw = await self._breaker.execute(lambda: self._store.get(key))
            except Exception as exc:
                logger.warning(
                    "Cache read failed, fetching directly",
                    extra={"cache_key": key, "error_reason": exc},
                )
                return await fetch_fn()

            entry = CacheEntry.parse(raw)
            if entry is not None and now < entry.metadata.expires:
                return entry.data

            if entry is not None and now < entry.metadata.swr_expires:
                flight.has_stale = True
                flight.stale_data = entry.data
                task = asyncio.ensure_future(self._revalidate(key, flight, fetch_fn, ttl, swr_ttl))
                self._background.add(task)
                task.add_done_callback(self._background.discard)
                task.add_done_callback(self._log_background_failure)
                revalidating = True
                return entry.data

            fresh = await fetch_fn()
            await self._write(key, fresh, ttl, swr_ttl)
            return fresh
        finally:
            if not revalidating:
                self._release(key, flight)

    async def _revalidate(
        self,
        key: str,
        flight: _InFlight,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl: float,
        swr_ttl: float | None,
    ) -> T:
        try:
            fresh = await fetch_fn()
            await self._write(key, fresh, ttl, swr_ttl)
            return fresh
        finally:
            self._release(key, flight)

    def _release(self, key: str, flight: _InFlight) -> None:
        if self._in_flight.get(key) is flight:
            del self._in_flight[key]

    async def _write(self, key: str, data: Any, ttl: float, swr_ttl: float | None) -> None:
        now = self._clock()
        expires = now + ttl
        swr_expires = max(now + (swr_ttl if swr_ttl is not None else ttl * 2), expires)
        entry = CacheEntry(data=data, metadata=CacheMetadata(expires, swr_expires))
        store_ttl = ttl + (swr_ttl if swr_ttl is not None else ttl)
        try:
            await self._breaker.execute(
                lambda: self._store.put(key, entry.serialize(), ttl_seconds=store_ttl)
            )
        except Exception as exc:
            logger.warning(
                "Cache write failed",
                extra={"cache_key": key, "error_reason": exc},
            )

    @staticmethod
    def _log_background_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(
                "Background revalidation failed",
                extra={"error_reason": exc},
            )
