"""Reachability check endpoint.

- GET /api/check?url=<target>&multi=<bool> — single-target or multi-region check

Requests are rate limited per client IP, the target is validated before any
outbound call, and results are served through the stale-while-revalidate
response cache.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from src.cache.kv_cache import KVCache
from src.config.settings import CheckerSettings
from src.middleware.error_handler import InvalidRequestError, RateLimitExceededError
from src.models.responses import CheckResponse, MultiRegionCheckResponse
from src.resilience.rate_limiter import FixedWindowRateLimiter
from src.services.prober import WebsiteProber
from src.services.region_checker import MultiRegionChecker
from src.validators.url_validator import validate_url

logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "check"


def cache_key(url: str, *, multi: bool) -> str:
    return f"check:{'multi' if multi else 'single'}:{url}"


def create_check_router(
    *,
    prober: WebsiteProber,
    region_checker: MultiRegionChecker,
    cache: KVCache,
    rate_limiter: FixedWindowRateLimiter,
    settings: CheckerSettings,
) -> APIRouter:
    """Factory that creates the check router with injected dependencies.

    Parameters
    ----------
    prober:
        Single-target prober for plain checks.
    region_checker:
        Orchestrator for ``multi=true`` checks.
    cache:
        Response cache shared by both modes.
    rate_limiter:
        Per-client fixed-window limiter.
    settings:
        Probe options, limits and cache windows.
    """
    check_router = APIRouter(prefix="/api", tags=["check"])

    @check_router.get("/check")
    async def check(
        request: Request,
        url: str | None = Query(default=None),
        multi: bool = Query(default=False),
    ) -> JSONResponse:
        """Check whether ``url`` is reachable, optionally from several regions."""
        request_id: str | None = getattr(request.state, "request_id", None)

        rate = rate_limiter.hit(
            request.headers,
            limit=settings.rate_limit_limit,
            window_seconds=settings.rate_limit_window_seconds,
            key_prefix=RATE_LIMIT_PREFIX,
        )
        if not rate.allowed:
            raise RateLimitExceededError(
                f"Too many requests. Please try again in {rate.retry_after} seconds.",
                retry_after=rate.retry_after,
                limit=rate.limit,
                remaining=rate.remaining,
                reset=rate.reset,
                request_id=request_id,
            )

        validation = validate_url(url)
        if not validation.valid or validation.sanitized is None:
            raise InvalidRequestError(
                "Invalid URL",
                request_id=request_id,
                headers=rate.headers(),
                reason=validation.error,
            )
        target = validation.sanitized

        if multi:
            ttl = settings.multi_cache_ttl_seconds
            swr = settings.multi_cache_swr_seconds

            async def fetch() -> dict[str, Any]:
                result = await region_checker.check_multi_region(target, request_id=request_id)
                return MultiRegionCheckResponse.from_result(result).to_wire()

        else:
            ttl = settings.single_cache_ttl_seconds
            swr = settings.single_cache_swr_seconds

            async def fetch() -> dict[str, Any]:
                result = await prober.check(
                    target,
                    timeout_ms=settings.probe_timeout_ms,
                    max_retries=settings.probe_max_retries,
                    retry_delay_ms=settings.probe_retry_delay_ms,
                    request_id=request_id,
                )
                return CheckResponse.from_result(result).to_wire()

        body = await cache.get_or_fetch(cache_key(target, multi=multi), fetch, ttl=ttl, swr_ttl=swr)

        headers = rate.headers()
        headers["Cache-Control"] = f"public, max-age={ttl}, stale-while-revalidate={swr}"
        return JSONResponse(content=body, headers=headers)

    return check_router
