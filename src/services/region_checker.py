"""Multi-region reachability orchestrator.

Combines three vantage points into one regional picture:

- edge: a direct probe from this service
- remote: HTTP HEAD measurements from fixed countries on the Globalping network
- filtered DNS: a family-safe resolver approximating school/work networks

The remote and DNS paths only ever degrade the result: a tripped breaker,
an API failure or a queue timeout drops or downgrades their rows, but never
fails the whole check.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

from src.integration.dns_client import FilteredDnsClient, dns_row
from src.integration.globalping_client import GlobalpingClient
from src.middleware.error_handler import CheckerError, CircuitOpenError
from src.middleware.request_id import new_request_id
from src.models.check import (
    CheckResult,
    EdgeResult,
    MultiRegionCheckResult,
    RegionCheckResult,
    RegionSource,
    RegionStatus,
    edge_status,
    summarize,
)
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.retry import with_retry
from src.services.prober import WebsiteProber
from src.services.request_queue import RequestQueue

logger = logging.getLogger(__name__)

EDGE_LABEL = "Edge (closest)"
POLL_ATTEMPTS = 4
POLL_INTERVAL_SECONDS = 0.5


@dataclass(frozen=True)
class RemoteRegion:
    key: str
    label: str
    country: str


REMOTE_REGIONS: tuple[RemoteRegion, ...] = (
    RemoteRegion("us", "United States", "US"),
    RemoteRegion("eu", "Europe (Germany)", "DE"),
    RemoteRegion("asia", "Asia (Singapore)", "SG"),
    RemoteRegion("cn", "China", "CN"),
)


def map_http_status(code: int | None) -> RegionStatus:
    """Status code seen by a remote probe -> region status."""
    if code is None:
        return RegionStatus.ERROR
    if 200 <= code < 400:
        return RegionStatus.ACCESSIBLE
    if 400 <= code < 500:
        return RegionStatus.BLOCKED
    return RegionStatus.ERROR


def build_remote_regions(measurement: dict[str, Any]) -> list[RegionCheckResult]:
    """Turn a measurement document into one row per fixed remote region."""
    by_country: dict[str, dict[str, Any]] = {}
    for item in measurement.get("results") or []:
        country = (item.get("probe") or {}).get("country")
        if country and country not in by_country:
            by_country[country] = item

    rows: list[RegionCheckResult] = []
    for region in REMOTE_REGIONS:
        item = by_country.get(region.country)
        result = item.get("result") if item else None
        if not result:
            rows.append(_remote_row(region, RegionStatus.UNKNOWN, details="No probe data available"))
            continue

        status = result.get("status")
        latency = (result.get("timings") or {}).get("total")
        if status == "finished":
            code = result.get("statusCode")
            rows.append(
                _remote_row(
                    region,
                    map_http_status(code),
                    latency_ms=latency,
                    code=code,
                    details=result.get("statusCodeName"),
                )
            )
        elif status in ("failed", "offline"):
            rows.append(
                _remote_row(
                    region,
                    RegionStatus.ERROR,
                    latency_ms=latency,
                    details=result.get("error") or "Probe failed",
                )
            )
        else:
            rows.append(
                _remote_row(region, RegionStatus.UNKNOWN, latency_ms=latency, details="Probe still running")
            )
    return rows


def _remote_row(
    region: RemoteRegion,
    status: RegionStatus,
    *,
    latency_ms: float | None = None,
    code: int | None = None,
    details: str | None = None,
) -> RegionCheckResult:
    return RegionCheckResult(
        region=region.key,
        label=region.label,
        status=status,
        latency_ms=latency_ms,
        source=RegionSource.REMOTE_PROBE,
        code=code,
        details=details,
    )


def _edge_row(result: CheckResult) -> RegionCheckResult:
    return RegionCheckResult(
        region="edge",
        label=EDGE_LABEL,
        status=edge_status(result),
        latency_ms=result.latency_ms,
        source=RegionSource.EDGE,
        code=result.code,
    )


class MultiRegionChecker:
    """Orchestrates the edge, remote and filtered-DNS checks for one target.

    Parameters
    ----------
    prober:
        Single-target prober used for the edge row.
    remote_client:
        Globalping API client.
    dns_client:
        Filtered DNS-over-HTTPS client.
    breaker:
        Circuit breaker guarding measurement creation.
    queue:
        Shared queue bounding concurrent outbound remote and DNS calls.
    sleep:
        Poll interval sleep, injectable for tests.
    """

    def __init__(
        self,
        *,
        prober: WebsiteProber,
        remote_client: GlobalpingClient,
        dns_client: FilteredDnsClient,
        breaker: CircuitBreaker,
        queue: RequestQueue,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._prober = prober
        self._remote = remote_client
        self._dns = dns_client
        self._breaker = breaker
        self._queue = queue
        self._sleep = sleep

    async def check_multi_region(
        self, url: str, *, request_id: str | None = None
    ) -> MultiRegionCheckResult:
        request_id = request_id or new_request_id()
        parts = urlsplit(url)
        hostname = parts.hostname or ""
        protocol = "HTTP" if parts.scheme == "http" else "HTTPS"

        edge, remote_rows, dns_result = await asyncio.gather(
            self._prober.check(url, timeout_ms=5000, max_retries=1, request_id=request_id),
            self._check_remote(hostname, protocol, request_id),
            self._check_dns(hostname, request_id),
        )

        regions = [_edge_row(edge), *remote_rows, dns_result]
        return MultiRegionCheckResult(
            edge=EdgeResult.from_check(edge),
            regions=regions,
            summary=summarize(regions),
        )

    async def _check_dns(self, hostname: str, request_id: str) -> RegionCheckResult:
        try:
            return await self._queue.run(lambda: self._dns.check(hostname))
        except Exception as exc:
            logger.warning(
                "Filtered DNS check did not complete",
                extra={"request_id": request_id, "target_url": hostname, "error_reason": exc},
            )
            details = exc.message if isinstance(exc, CheckerError) else "DNS resolution failed"
            return dns_row(RegionStatus.ERROR, details=details)

    async def _check_remote(
        self, hostname: str, protocol: str, request_id: str
    ) -> list[RegionCheckResult]:
        try:
            return await self._queue.run(lambda: self._measure(hostname, protocol))
        except CircuitOpenError as exc:
            logger.warning(
                "Remote probe circuit breaker is open, skipping region checks",
                extra={
                    "request_id": request_id,
                    "target_url": hostname,
                    "breaker": exc.name,
                    "breaker_stats": exc.stats.to_dict() if exc.stats is not None else None,
                },
            )
        except Exception as exc:
            logger.warning(
                "Remote probe measurement failed",
                extra={"request_id": request_id, "target_url": hostname, "error_reason": exc},
            )
        return []

    async def _measure(self, hostname: str, protocol: str) -> list[RegionCheckResult]:
        countries = [region.country for region in REMOTE_REGIONS]
        created = await self._breaker.execute(
            lambda: with_retry(
                lambda: self._remote.create_measurement(
                    hostname, protocol=protocol, countries=countries
                ),
                max_attempts=3,
                initial_delay_ms=500,
                max_delay_ms=3000,
                sleep=self._sleep,
            )
        )
        measurement = await self._poll(created.value)
        return build_remote_regions(measurement)

    async def _poll(self, measurement_id: str) -> dict[str, Any]:
        measurement: dict[str, Any] = {}
        for attempt in range(POLL_ATTEMPTS):
            if attempt:
                await self._sleep(POLL_INTERVAL_SECONDS)
            measurement = await self._remote.get_measurement(measurement_id)
            status = measurement.get("status")
            if status and status != "in-progress":
                break
        return measurement
