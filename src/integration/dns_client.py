"""Filtered DNS-over-HTTPS probe.

Resolves the target's A record through a family-safe resolver. Filtering
resolvers answer blocked names with a null route (``0.0.0.0`` or ``::``)
or with no answer at all, which approximates what a school or workplace
network would see.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from src.models.check import RegionCheckResult, RegionSource, RegionStatus

logger = logging.getLogger(__name__)

DNS_REGION = "school"
DNS_LABEL = "School/Work DNS (filtered)"

_NULL_ROUTES = frozenset({"0.0.0.0", "::"})


def dns_row(
    status: RegionStatus,
    *,
    latency_ms: int | None = None,
    details: str | None = None,
) -> RegionCheckResult:
    return RegionCheckResult(
        region=DNS_REGION,
        label=DNS_LABEL,
        status=status,
        latency_ms=latency_ms,
        source=RegionSource.FILTERED_DNS,
        details=details,
    )


def classify_dns_answer(body: dict[str, Any]) -> tuple[RegionStatus, str]:
    """Classify a DoH JSON response body."""
    if not isinstance(body, dict) or body.get("Status") != 0:
        return RegionStatus.ERROR, "DNS resolution failed"
    answers = body.get("Answer")
    if answers is not None and not isinstance(answers, list):
        return RegionStatus.ERROR, "Malformed DNS response"
    if not answers:
        return RegionStatus.BLOCKED, "Filtered by family-safe DNS"
    if any(
        isinstance(answer, dict) and str(answer.get("data", "")).strip() in _NULL_ROUTES
        for answer in answers
    ):
        return RegionStatus.BLOCKED, "Filtered by family-safe DNS"
    return RegionStatus.ACCESSIBLE, "Family-safe DNS result"


class FilteredDnsClient:
    """Checks a hostname against a filtering DoH resolver.

    ``check()`` never raises; every failure becomes an error row.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        resolver_url: str = "https://family.cloudflare-dns.com/dns-query",
    ) -> None:
        self._client = client
        self._resolver_url = resolver_url

    async def check(self, hostname: str) -> RegionCheckResult:
        start = time.monotonic()
        try:
            response = await self._client.get(
                self._resolver_url,
                params={"name": hostname, "type": "A"},
                headers={"Accept": "application/dns-json"},
            )
            latency = int((time.monotonic() - start) * 1000)
            if not response.is_success:
                return dns_row(
                    RegionStatus.ERROR,
                    latency_ms=latency,
                    details=f"DNS query failed ({response.status_code})",
                )
            status, details = classify_dns_answer(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "Filtered DNS check failed for %s",
                hostname,
                extra={"error_reason": exc},
            )
            return dns_row(
                RegionStatus.ERROR,
                latency_ms=int((time.monotonic() - start) * 1000),
                details=str(exc) or "DNS resolution failed",
            )

        return dns_row(status, latency_ms=latency, details=details)
