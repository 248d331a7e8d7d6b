"""Shared test fixtures for the checker test suite."""

from __future__ import annotations

import pytest

from src.cache.kv_cache import KVCache
from src.cache.store import InMemoryKeyValueStore
from src.config.settings import CheckerSettings
from src.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from src.resilience.rate_limiter import FixedWindowRateLimiter


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> CheckerSettings:
    """Test settings with fast probe options."""
    return CheckerSettings(
        probe_timeout_ms=1000,
        probe_max_retries=1,
        probe_retry_delay_ms=0,
        rate_limit_limit=3,
        rate_limit_window_seconds=60,
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker(
        "test",
        threshold=3,
        cooldown_seconds=30.0,
        half_open_timeout_seconds=5.0,
        clock=clock,
    )


@pytest.fixture
def registry(clock: FakeClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def store(clock: FakeClock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def cache(store: InMemoryKeyValueStore, breaker: CircuitBreaker, clock: FakeClock) -> KVCache:
    return KVCache(store, breaker, clock=clock)


@pytest.fixture
def rate_limiter(clock: FakeClock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(clock=clock)

