"""Fixed-window per-client rate limiter.

Counts requests per ``prefix:client_ip`` key inside a fixed window. The first
request of a window replaces any stale state with a fresh counter; later
requests increment it and are allowed while the count stays within the limit.

Key behaviors:
- Client IP comes from ``cf-connecting-ip`` (trusted proxy), then the first
  ``x-forwarded-for`` hop, else the ``0.0.0.0`` sentinel
- Header values that do not look like an IP address are ignored
- Rejections are logged as security events
- State is local to this process
"""

from __future__ import annotations

import logging
import math
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_IP_LIKE = re.compile(r"^[\d.:a-fA-F]+$")
_MAX_IP_LENGTH = 45
UNKNOWN_CLIENT_IP = "0.0.0.0"


@dataclass
class RateLimitState:
    """Counter for one key in the current window."""

    count: int
    reset: float  # epoch seconds when the window ends


@dataclass(frozen=True)
class RateLimitResult:
    """Admission decision plus the values for rate-limit headers."""

    allowed: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds
    retry_after: int  # seconds

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
            "Retry-After": str(self.retry_after),
        }


def _looks_like_ip(value: str) -> bool:
    return bool(_IP_LIKE.match(value)) and len(value) <= _MAX_IP_LENGTH


def client_ip_from_headers(headers: Mapping[str, str]) -> str:
    """Extract the client IP, preferring the trusted proxy header."""
    connecting = headers.get("cf-connecting-ip")
    if connecting:
        connecting = connecting.strip()
        if _looks_like_ip(connecting):
            return connecting

    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if _looks_like_ip(first):
            return first

    return UNKNOWN_CLIENT_IP


class FixedWindowRateLimiter:
    """Per-key fixed-window counter.

    Args:
        clock: Wall-clock source in epoch seconds, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._states: dict[str, RateLimitState] = {}

    def hit(
        self,
        headers: Mapping[str, str],
        *,
        limit: int,
        window_seconds: float,
        key_prefix: str,
    ) -> RateLimitResult:
        """Count one request from the client identified by ``headers``."""
        client_ip = client_ip_from_headers(headers)
        key = f"{key_prefix}:{client_ip}"
        now = self._clock()

        state = self._states.get(key)
        if state is None or now > state.reset:
            state = RateLimitState(count=1, reset=now + window_seconds)
            self._states[key] = state
            allowed = True
        else:
            state.count += 1
            allowed = state.count <= limit

        result = RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(limit - state.count, 0),
            reset=math.floor(state.reset),
            retry_after=max(math.ceil(state.reset - now), 1),
        )

        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                extra={
                    "client_ip": client_ip,
                    "key_prefix": key_prefix,
                    "count": state.count,
                },
            )

        return result

    def get_state(self, key: str) -> RateLimitState | None:
        return self._states.get(key)

    def prune(self) -> int:
        """Drop keys whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, state in self._states.items() if now > state.reset]
        for key in expired:
            del self._states[key]
        return len(expired)
