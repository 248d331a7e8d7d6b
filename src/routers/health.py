"""Health endpoint.

- GET /health — service status, circuit breaker stats and region queue load
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter


def create_health_router(
    *,
    breakers: Any = None,
    region_queue: Any = None,
    version: str = "1.0.0",
) -> APIRouter:
    """Factory that creates the health router with injected dependencies."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        """Service health check with breaker and queue statistics."""
        breaker_stats = (
            {name: stats.to_dict() for name, stats in breakers.get_all_stats().items()}
            if breakers
            else {}
        )
        queue_stats = region_queue.get_status() if region_queue else {}

        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": version,
            "breakers": breaker_stats,
            "region_queue": queue_stats,
        }

    return health_router
