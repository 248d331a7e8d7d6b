"""Resilience components for the checker service."""

from src.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitBreakerStats,
    CircuitState,
)
from src.resilience.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitResult,
    client_ip_from_headers,
)
from src.resilience.retry import RetryResult, is_retryable, with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStats",
    "CircuitState",
    "FixedWindowRateLimiter",
    "RateLimitResult",
    "RetryResult",
    "client_ip_from_headers",
    "is_retryable",
    "with_retry",
]
