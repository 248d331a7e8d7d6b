"""Pydantic Settings for the checker service.

All environment variables use the CHECKER_ prefix.
Example: CHECKER_PORT=8002, CHECKER_RATE_LIMIT_LIMIT=50
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class CheckerSettings(BaseSettings):
    """Checker service configuration validated from environment variables."""

    # Service
    port: int = 8002
    log_level: str = "INFO"
    user_agent: str = DEFAULT_USER_AGENT
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Single-target probe
    probe_timeout_ms: int = Field(default=5000, ge=100)
    probe_max_retries: int = Field(default=2, ge=0)
    probe_retry_delay_ms: int = Field(default=1000, ge=0)

    # Rate limiting (fixed window per client IP)
    rate_limit_limit: int = Field(default=100, ge=1)
    rate_limit_window_seconds: int = Field(default=60, ge=1)

    # Response cache
    single_cache_ttl_seconds: int = Field(default=30, ge=1)
    single_cache_swr_seconds: int = Field(default=60, ge=0)
    multi_cache_ttl_seconds: int = Field(default=60, ge=1)
    multi_cache_swr_seconds: int = Field(default=120, ge=0)

    # Cache store circuit breaker
    cache_cb_threshold: int = Field(default=5, ge=1)
    cache_cb_cooldown_seconds: float = Field(default=60.0, ge=0)
    cache_cb_half_open_timeout_seconds: float = Field(default=10.0, gt=0)

    # Remote probe network (Globalping)
    globalping_api_url: str = "https://api.globalping.io/v1"
    globalping_user_agent: str = "ReachabilityChecker/1.0"
    remote_cb_threshold: int = Field(default=3, ge=1)
    remote_cb_cooldown_seconds: float = Field(default=30.0, ge=0)
    remote_cb_half_open_timeout_seconds: float = Field(default=5.0, gt=0)

    # Filtered DNS-over-HTTPS resolver
    dns_resolver_url: str = "https://family.cloudflare-dns.com/dns-query"

    # Queue shared by outbound region checks
    region_queue_concurrency: int = Field(default=4, ge=1)
    region_queue_timeout_seconds: float = Field(default=15.0, gt=0)

    model_config = {"env_prefix": "CHECKER_"}
