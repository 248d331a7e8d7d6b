"""FastAPI application entry point with lifespan management.

Startup: configure logging, open the shared HTTP client, build the breaker
registry, response cache, rate limiter, probers and region queue, mount
routers, start the rate-limit pruning loop.
Shutdown: clear the region queue, cancel background tasks, close the HTTP
client.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from src.cache.kv_cache import KVCache
from src.cache.store import InMemoryKeyValueStore
from src.config.settings import CheckerSettings
from src.integration.dns_client import FilteredDnsClient
from src.integration.globalping_client import GlobalpingClient
from src.logging_config import configure_logging
from src.middleware.error_handler import register_error_handlers
from src.middleware.request_id import RequestIdMiddleware
from src.resilience.circuit_breaker import CircuitBreakerRegistry
from src.resilience.rate_limiter import FixedWindowRateLimiter
from src.routers.check import create_check_router
from src.routers.health import create_health_router
from src.services.prober import WebsiteProber
from src.services.region_checker import MultiRegionChecker
from src.services.request_queue import RequestQueue

logger = logging.getLogger(__name__)

CACHE_BREAKER = "cache-store"
REMOTE_BREAKER = "remote-probe"


async def _prune_rate_limits(rate_limiter: FixedWindowRateLimiter, interval: float) -> None:
    """Periodically drop rate-limit windows that have elapsed."""
    while True:
        await asyncio.sleep(interval)
        removed = rate_limiter.prune()
        if removed:
            logger.debug("Pruned %d expired rate-limit windows", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings: CheckerSettings = app.state.settings

    configure_logging(settings.log_level)
    logger.info("Starting checker service on port %d", settings.port)

    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    # Circuit breakers
    breakers = CircuitBreakerRegistry()
    cache_breaker = breakers.get(
        CACHE_BREAKER,
        threshold=settings.cache_cb_threshold,
        cooldown_seconds=settings.cache_cb_cooldown_seconds,
        half_open_timeout_seconds=settings.cache_cb_half_open_timeout_seconds,
    )
    remote_breaker = breakers.get(
        REMOTE_BREAKER,
        threshold=settings.remote_cb_threshold,
        cooldown_seconds=settings.remote_cb_cooldown_seconds,
        half_open_timeout_seconds=settings.remote_cb_half_open_timeout_seconds,
    )

    # Response cache
    cache = KVCache(InMemoryKeyValueStore(), cache_breaker)

    # Rate limiter
    rate_limiter = FixedWindowRateLimiter()
    prune_task = asyncio.create_task(
        _prune_rate_limits(rate_limiter, settings.rate_limit_window_seconds)
    )

    # Probers
    prober = WebsiteProber(http_client, user_agent=settings.user_agent)
    region_queue = RequestQueue(
        concurrency=settings.region_queue_concurrency,
        timeout_seconds=settings.region_queue_timeout_seconds,
    )
    region_checker = MultiRegionChecker(
        prober=prober,
        remote_client=GlobalpingClient(
            http_client,
            api_url=settings.globalping_api_url,
            user_agent=settings.globalping_user_agent,
        ),
        dns_client=FilteredDnsClient(http_client, resolver_url=settings.dns_resolver_url),
        breaker=remote_breaker,
        queue=region_queue,
    )

    # Mount routers
    app.include_router(create_health_router(breakers=breakers, region_queue=region_queue))
    app.include_router(
        create_check_router(
            prober=prober,
            region_checker=region_checker,
            cache=cache,
            rate_limiter=rate_limiter,
            settings=settings,
        )
    )

    logger.info("Checker service started successfully")

    yield

    # --- Shutdown ---
    logger.info("Shutting down checker service…")

    region_queue.clear()

    prune_task.cancel()
    try:
        await prune_task
    except asyncio.CancelledError:
        pass

    await http_client.aclose()

    logger.info("Checker service shut down")


def create_app(settings: CheckerSettings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Loads ``CheckerSettings`` eagerly so that invalid ``CHECKER_*`` environment
    variables fail at import time rather than on the first request.
    """
    settings = settings or CheckerSettings()

    app = FastAPI(
        title="Reachability Checker Service",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    register_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)

    return app


app = create_app()
