"""Single-target reachability prober.

Issues one HTTP request per attempt (HEAD by default, redirects followed),
classifies the outcome into a ``CheckStatus`` / ``BlockReason`` pair and
retries transient failures with exponential backoff. ``check()`` never raises
for an unreachable target: unreachability is a typed result.

Transport exceptions are normalised exactly once, in
``classify_transport_error``. Exception types are inspected first
(including the ``__cause__`` chain that httpx builds from httpcore and the
socket layer); message keywords are only the fallback for anything
unrecognised.
"""

from __future__ import annotations

import asyncio
import logging
import socket
import ssl
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from enum import Enum

import httpx

from src.config.settings import DEFAULT_USER_AGENT
from src.middleware.request_id import new_request_id
from src.models.check import BlockReason, CheckResult, CheckStatus

logger = logging.getLogger(__name__)

MAX_BACKOFF_MS = 10_000
BATCH_SIZE = 5


class FailureKind(str, Enum):
    """Closed set of transport failure kinds."""

    TIMEOUT = "timeout"
    DNS = "dns"
    REFUSED = "refused"
    SSL = "ssl"
    NETWORK = "network"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProbeFailure:
    """A transport failure mapped onto the public status vocabulary."""

    kind: FailureKind
    status: CheckStatus
    block_reason: BlockReason
    message: str

    @property
    def fatal(self) -> bool:
        """DNS and TLS failures will not change on retry."""
        return self.kind in (FailureKind.DNS, FailureKind.SSL)


_FAILURES: dict[FailureKind, ProbeFailure] = {
    FailureKind.TIMEOUT: ProbeFailure(
        FailureKind.TIMEOUT, CheckStatus.TIMEOUT, BlockReason.NETWORK_TIMEOUT, "Connection timeout"
    ),
    FailureKind.DNS: ProbeFailure(
        FailureKind.DNS, CheckStatus.DNS_ERROR, BlockReason.DNS_FAILURE, "DNS resolution failed"
    ),
    FailureKind.REFUSED: ProbeFailure(
        FailureKind.REFUSED, CheckStatus.CONNECTION_REFUSED, BlockReason.UNKNOWN, "Connection refused"
    ),
    FailureKind.SSL: ProbeFailure(
        FailureKind.SSL, CheckStatus.SSL_ERROR, BlockReason.SSL_ERROR, "SSL/TLS error"
    ),
    FailureKind.NETWORK: ProbeFailure(
        FailureKind.NETWORK, CheckStatus.BLOCKED, BlockReason.UNKNOWN, "Network error"
    ),
    FailureKind.UNKNOWN: ProbeFailure(
        FailureKind.UNKNOWN, CheckStatus.UNKNOWN, BlockReason.UNKNOWN, "Unknown error"
    ),
}

# Keyword fallback, checked in order
_KEYWORDS: tuple[tuple[FailureKind, tuple[str, ...]], ...] = (
    (FailureKind.TIMEOUT, ("timeout", "timed out")),
    (
        FailureKind.DNS,
        (
            "dns",
            "enotfound",
            "hostname",
            "name or service not known",
            "nodename nor servname",
            "getaddrinfo",
            "name resolution",
        ),
    ),
    (FailureKind.REFUSED, ("econnrefused", "connection refused")),
    (FailureKind.SSL, ("ssl", "tls", "certificate")),
    (FailureKind.NETWORK, ("network", "fetch failed")),
)


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def _kind_from_type(exc: BaseException) -> FailureKind | None:
    for item in _exception_chain(exc):
        if isinstance(item, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
            return FailureKind.TIMEOUT
        if isinstance(item, socket.gaierror):
            return FailureKind.DNS
        if isinstance(item, ssl.SSLError):
            return FailureKind.SSL
        if isinstance(item, ConnectionRefusedError):
            return FailureKind.REFUSED
    return None


def _kind_from_message(exc: BaseException) -> FailureKind | None:
    message = " ".join(str(item) for item in _exception_chain(exc)).lower()
    for kind, keywords in _KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return kind
    return None


def classify_transport_error(exc: BaseException) -> ProbeFailure:
    """Map any exception raised while sending a probe to a ``ProbeFailure``."""
    kind = _kind_from_type(exc) or _kind_from_message(exc)
    if kind is None:
        kind = FailureKind.NETWORK if isinstance(exc, httpx.NetworkError) else FailureKind.UNKNOWN
    return _FAILURES[kind]


def classify_status_code(code: int) -> tuple[CheckStatus, BlockReason | None]:
    """Map an HTTP response code to status and optional block reason."""
    if 200 <= code < 400:
        return CheckStatus.ACCESSIBLE, None
    if code == 403:
        return CheckStatus.BLOCKED, BlockReason.FIREWALL
    if code == 404:
        return CheckStatus.SERVER_ERROR, None
    if 400 <= code < 500:
        return CheckStatus.BLOCKED, BlockReason.UNKNOWN
    if code >= 500:
        return CheckStatus.SERVER_ERROR, BlockReason.SERVER_ERROR
    return CheckStatus.UNKNOWN, None


def backoff_delay_ms(attempt: int, retry_delay_ms: float) -> float:
    return min(retry_delay_ms * 2**attempt, MAX_BACKOFF_MS)


_BLOCK_DESCRIPTIONS: dict[BlockReason, str] = {
    BlockReason.ISP_BLOCK: "This website appears to be blocked by your ISP",
    BlockReason.GOVERNMENT_CENSORSHIP: "This website appears to be censored",
    BlockReason.FIREWALL: "This website is being blocked by a firewall",
    BlockReason.GEO_RESTRICTION: "This website is not available in your region",
    BlockReason.NETWORK_TIMEOUT: "Connection timed out - the website may be slow or down",
    BlockReason.DNS_FAILURE: "DNS resolution failed - the domain may not exist",
    BlockReason.SSL_ERROR: "SSL/TLS certificate error",
    BlockReason.SERVER_ERROR: "The server returned an error",
}


def describe_block(result: CheckResult) -> str:
    """Human-readable explanation of a check result."""
    if result.is_accessible:
        return "Website is accessible"
    if result.block_reason in _BLOCK_DESCRIPTIONS:
        return _BLOCK_DESCRIPTIONS[result.block_reason]
    return result.error or "Website is not accessible"


class WebsiteProber:
    """Classified reachability checks against one target at a time.

    Parameters
    ----------
    client:
        Shared ``httpx.AsyncClient``; the prober never closes it.
    user_agent:
        User-Agent sent with every probe.
    sleep:
        Backoff sleep, injectable for tests.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        }
        self._sleep = sleep

    async def check(
        self,
        url: str,
        *,
        timeout_ms: int = 5000,
        max_retries: int = 2,
        retry_delay_ms: int = 1000,
        method: str = "HEAD",
        follow_redirects: bool = True,
        request_id: str | None = None,
    ) -> CheckResult:
        """Probe ``url`` and return a classified result. Never raises."""
        request_id = request_id or new_request_id()
        logger.info(
            "Starting website check",
            extra={"request_id": request_id, "target_url": url},
        )

        failure: ProbeFailure | None = None
        retry_count = 0
        start = time.monotonic()

        for attempt in range(max_retries + 1):
            retry_count = attempt
            try:
                response = await asyncio.wait_for(
                    self._client.request(
                        method,
                        url,
                        headers=self._headers,
                        follow_redirects=follow_redirects,
                    ),
                    timeout=timeout_ms / 1000,
                )
            except Exception as exc:
                failure = classify_transport_error(exc)
                if failure.fatal:
                    break
                if attempt < max_retries:
                    delay = backoff_delay_ms(attempt, retry_delay_ms)
                    logger.debug(
                        "Retrying website check",
                        extra={
                            "request_id": request_id,
                            "target_url": url,
                            "attempt": attempt + 1,
                            "delay_ms": delay,
                            "error_reason": exc,
                        },
                    )
                    await self._sleep(delay / 1000)
                continue

            status, reason = classify_status_code(response.status_code)
            latency = _elapsed_ms(start)
            logger.info(
                "Website check completed",
                extra={
                    "request_id": request_id,
                    "target_url": url,
                    "status": status.value,
                    "code": response.status_code,
                    "latency_ms": latency,
                    "attempt": attempt + 1,
                },
            )
            return CheckResult(
                status=status,
                code=response.status_code,
                latency_ms=latency,
                target=url,
                block_reason=reason,
                retry_count=attempt,
                request_id=request_id,
            )

        if failure is None:
            failure = _FAILURES[FailureKind.UNKNOWN]
        latency = _elapsed_ms(start)
        logger.warning(
            "Website check failed after retries",
            extra={
                "request_id": request_id,
                "target_url": url,
                "status": failure.status.value,
                "latency_ms": latency,
                "retry_count": retry_count,
                "error_reason": failure.message,
            },
        )
        return CheckResult(
            status=failure.status,
            latency_ms=latency,
            target=url,
            error=failure.message,
            block_reason=failure.block_reason,
            retry_count=retry_count,
            request_id=request_id,
        )

    async def check_batch(
        self,
        urls: list[str],
        *,
        request_id: str | None = None,
        **options: object,
    ) -> dict[str, CheckResult]:
        """Check many URLs in groups of five.

        Each group runs concurrently and must fully settle before the next
        group starts.
        """
        request_id = request_id or new_request_id()
        logger.info(
            "Starting batch website check",
            extra={"request_id": request_id, "count": len(urls)},
        )

        results: dict[str, CheckResult] = {}
        for offset in range(0, len(urls), BATCH_SIZE):
            chunk = urls[offset : offset + BATCH_SIZE]
            outcomes = await asyncio.gather(
                *(self.check(url, request_id=request_id, **options) for url in chunk),  # type: ignore[arg-type]
                return_exceptions=True,
            )
            for url, outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Batch check crashed for %s",
                        url,
                        extra={"request_id": request_id, "error_reason": outcome},
                    )
                    continue
                results[url] = outcome

        success = sum(1 for result in results.values() if result.is_accessible)
        logger.info(
            "Batch website check completed",
            extra={
                "request_id": request_id,
                "count": len(urls),
                "success": success,
                "failed": len(urls) - success,
            },
        )
        return results


def _elapsed_ms(start: float) -> int:
    return max(int((time.monotonic() - start) * 1000), 0)
