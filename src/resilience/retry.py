"""Retry with exponential backoff and jitter.

Retryability is decided structurally first: an exception carrying a boolean
``retryable`` attribute (every ``CheckerError`` can) is taken at its word.
Untagged exceptions fall back to keyword matching on the message.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "econnrefused",
    "econnreset",
    "etimedout",
    "connection reset",
    "connection refused",
    "network",
    "fetch failed",
    "temporary",
    "try again",
    "rate limit",
    "too many requests",
)

_NON_RETRYABLE_PATTERNS = (
    "unauthorized",
    "forbidden",
    "not found",
    "404",
    "401",
    "403",
    "validation",
    "invalid",
    "ssl",
    "certificate",
)


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    """Value of the successful attempt plus bookkeeping."""

    value: T
    attempts: int
    total_delay_ms: float


def is_retryable(exc: BaseException) -> bool:
    """Decide whether ``exc`` is worth another attempt."""
    tag = getattr(exc, "retryable", None)
    if isinstance(tag, bool):
        return tag

    message = str(exc).lower()
    if any(pattern in message for pattern in _NON_RETRYABLE_PATTERNS):
        return False
    return any(pattern in message for pattern in _RETRYABLE_PATTERNS)


def compute_delay(
    attempt: int,
    *,
    initial_delay_ms: float,
    max_delay_ms: float,
    multiplier: float,
    jitter: bool,
) -> float:
    """Backoff in milliseconds before retrying after zero-based ``attempt``."""
    delay = min(initial_delay_ms * multiplier**attempt, max_delay_ms)
    if jitter:
        delay *= 0.5 + random.random() * 0.5
    return delay


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay_ms: float = 1000,
    max_delay_ms: float = 10_000,
    multiplier: float = 2,
    jitter: bool = True,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """Call ``fn`` until it succeeds, a failure is non-retryable, or attempts run out.

    The last exception is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    total_delay = 0.0
    for attempt in range(max_attempts):
        try:
            value = await fn()
        except Exception as exc:
            if attempt == max_attempts - 1 or not is_retryable(exc):
                raise

            delay = compute_delay(
                attempt,
                initial_delay_ms=initial_delay_ms,
                max_delay_ms=max_delay_ms,
                multiplier=multiplier,
                jitter=jitter,
            )
            total_delay += delay
            logger.debug(
                "Retrying after failure (attempt %d/%d) in %.0fms",
                attempt + 1,
                max_attempts,
                delay,
                extra={"attempt": attempt + 1, "delay_ms": delay, "error_reason": exc},
            )
            await sleep(delay / 1000)
            continue

        return RetryResult(value=value, attempts=attempt + 1, total_delay_ms=total_delay)

    raise AssertionError("unreachable")  # pragma: no cover
