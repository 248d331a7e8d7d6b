"""In-memory result models for single-target and multi-region checks."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum


class CheckStatus(str, Enum):
    """Outcome of a single-target probe."""

    ACCESSIBLE = "accessible"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    DNS_ERROR = "dns_error"
    CONNECTION_REFUSED = "connection_refused"
    FIREWALL_BLOCK = "firewall_block"
    GEO_RESTRICTION = "geo_restriction"
    SSL_ERROR = "ssl_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


class BlockReason(str, Enum):
    """Why a target is considered unreachable."""

    ISP_BLOCK = "ISP_BLOCK"
    GOVERNMENT_CENSORSHIP = "GOVERNMENT_CENSORSHIP"
    FIREWALL = "FIREWALL"
    GEO_RESTRICTION = "GEO_RESTRICTION"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    DNS_FAILURE = "DNS_FAILURE"
    SSL_ERROR = "SSL_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN"


class RegionStatus(str, Enum):
    """Coarse status reported per vantage point."""

    ACCESSIBLE = "accessible"
    BLOCKED = "blocked"
    ERROR = "error"
    UNKNOWN = "unknown"


class RegionSource(str, Enum):
    """Where a region row came from."""

    EDGE = "edge"
    REMOTE_PROBE = "remote-probe"
    FILTERED_DNS = "filtered-dns"


@dataclass
class CheckResult:
    """Typed outcome of one single-target check."""

    status: CheckStatus
    latency_ms: int
    target: str
    request_id: str
    retry_count: int = 0
    code: int | None = None
    error: str | None = None
    block_reason: BlockReason | None = None

    def __post_init__(self) -> None:
        if self.latency_ms < 0:
            raise ValueError("latency_ms must be >= 0")
        if self.is_accessible and self.block_reason is not None:
            raise ValueError("block_reason is only valid for inaccessible results")

    @property
    def is_accessible(self) -> bool:
        return self.status == CheckStatus.ACCESSIBLE


@dataclass
class RegionCheckResult:
    """Reachability as seen from one vantage point."""

    region: str
    label: str
    status: RegionStatus
    latency_ms: int | float | None
    source: RegionSource
    code: int | None = None
    details: str | None = None


@dataclass
class EdgeResult:
    """Reduced CheckResult reported alongside the region rows."""

    status: RegionStatus
    latency_ms: int
    target: str
    code: int | None = None
    error: str | None = None
    block_reason: BlockReason | None = None

    @classmethod
    def from_check(cls, result: CheckResult) -> EdgeResult:
        return cls(
            status=edge_status(result),
            latency_ms=result.latency_ms,
            target=result.target,
            code=result.code,
            error=result.error,
            block_reason=result.block_reason,
        )


@dataclass
class MultiRegionCheckResult:
    """Aggregated regional picture for one target."""

    edge: EdgeResult
    regions: list[RegionCheckResult] = field(default_factory=list)
    summary: dict[str, int] = field(default_factory=dict)


def edge_status(result: CheckResult) -> RegionStatus:
    """Collapse a probe status into the coarse region vocabulary."""
    if result.is_accessible:
        return RegionStatus.ACCESSIBLE
    if result.status == CheckStatus.BLOCKED:
        return RegionStatus.BLOCKED
    return RegionStatus.ERROR


def summarize(regions: list[RegionCheckResult]) -> dict[str, int]:
    """Count rows per status. Every status key is present; values sum to len(regions)."""
    counts = Counter(region.status for region in regions)
    return {status.value: counts.get(status, 0) for status in RegionStatus}
