"""Named circuit breakers for outbound dependencies.

Each dependency (remote probe network, cache store, ...) gets its own breaker
from a ``CircuitBreakerRegistry`` owned by the application. A breaker counts
failures and transitions through closed → open → half-open states so a
struggling dependency is failed fast instead of timed out repeatedly.

State machine:
- Closed → Open: failure count reaches threshold
- Open → Half-Open: cooldown since the last failure elapses
- Half-Open → Closed: trial call succeeds (failure count reset)
- Half-Open → Open: trial call fails
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TypeVar

from src.middleware.error_handler import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Point-in-time view of a breaker. Times are epoch seconds."""

    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float | None = None
    last_state_change: float | None = None
    next_attempt_time: float | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreaker:
    """Fail-fast wrapper around one dependency.

    Args:
        name: Logical dependency name, used in errors and logs.
        threshold: Failures while closed that trigger the open state.
        cooldown_seconds: Seconds after the last failure before a half-open trial.
        half_open_timeout_seconds: Upper bound on the half-open trial call.
        clock: Wall-clock source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        *,
        threshold: int = 5,
        cooldown_seconds: float = 60.0,
        half_open_timeout_seconds: float = 10.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self.name = name
        self._threshold = threshold
        self._cooldown_seconds = cooldown_seconds
        self._half_open_timeout = half_open_timeout_seconds
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float | None = None
        self._last_state_change: float | None = None

    @property
    def state(self) -> CircuitState:
        return self._state

    def can_call(self) -> bool:
        """Check whether a call is allowed right now.

        - Closed: always allowed.
        - Open: allowed only if cooldown has elapsed (transitions to half-open).
        - Half-open: allowed (trial call).
        """
        if self._state == CircuitState.OPEN:
            if (
                self._last_failure_time is not None
                and self._clock() - self._last_failure_time >= self._cooldown_seconds
            ):
                self._transition_to(CircuitState.HALF_OPEN)
                return True
            return False
        return True

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` under breaker protection.

        Raises:
            CircuitOpenError: When open; ``fn`` is not invoked.
            Exception: Whatever ``fn`` raised, after recording the failure.
        """
        if not self.can_call():
            raise CircuitOpenError(self.name, self.get_stats())

        try:
            if self._state == CircuitState.HALF_OPEN:
                result = await asyncio.wait_for(fn(), timeout=self._half_open_timeout)
            else:
                result = await fn()
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful call. In half-open state, closes the circuit."""
        self._success_count += 1
        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed call.

        In half-open state, transitions back to open.
        In closed state, opens once failures reach the threshold.
        """
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to(CircuitState.OPEN)
        elif self._failure_count >= self._threshold:
            self._transition_to(CircuitState.OPEN)

    def get_stats(self) -> CircuitBreakerStats:
        next_attempt = None
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            next_attempt = self._last_failure_time + self._cooldown_seconds
        return CircuitBreakerStats(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure_time=self._last_failure_time,
            last_state_change=self._last_state_change,
            next_attempt_time=next_attempt,
        )

    def reset(self) -> None:
        """Clear all counters and return to closed."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        self._last_state_change = None

    def _transition_to(self, new_state: CircuitState) -> None:
        if self._state == new_state:
            return
        old_state = self._state
        self._state = new_state
        self._last_state_change = self._clock()
        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(
            "Circuit breaker %s: %s -> %s",
            self.name,
            old_state.value,
            new_state.value,
            extra={"breaker": self.name, "count": self._failure_count},
        )


class CircuitBreakerRegistry:
    """One breaker per logical name, created lazily with first-supplied options."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(
        self,
        name: str,
        *,
        threshold: int = 5,
        cooldown_seconds: float = 60.0,
        half_open_timeout_seconds: float = 10.0,
    ) -> CircuitBreaker:
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(
                name,
                threshold=threshold,
                cooldown_seconds=cooldown_seconds,
                half_open_timeout_seconds=half_open_timeout_seconds,
                clock=self._clock,
            )
        return self._breakers[name]

    def reset(self, name: str) -> None:
        breaker = self._breakers.get(name)
        if breaker is not None:
            breaker.reset()

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def get_stats(self, name: str) -> CircuitBreakerStats | None:
        breaker = self._breakers.get(name)
        return breaker.get_stats() if breaker is not None else None

    def get_all_stats(self) -> dict[str, CircuitBreakerStats]:
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}
