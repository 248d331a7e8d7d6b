"""Public models for the checker service."""

from src.models.check import (
    BlockReason,
    CheckResult,
    CheckStatus,
    EdgeResult,
    MultiRegionCheckResult,
    RegionCheckResult,
    RegionSource,
    RegionStatus,
    edge_status,
    summarize,
)
from src.models.responses import (
    CheckResponse,
    MultiRegionCheckResponse,
    RegionResponse,
)

__all__ = [
    "BlockReason",
    "CheckResponse",
    "CheckResult",
    "CheckStatus",
    "EdgeResult",
    "MultiRegionCheckResponse",
    "MultiRegionCheckResult",
    "RegionCheckResult",
    "RegionResponse",
    "RegionSource",
    "RegionStatus",
    "edge_status",
    "summarize",
]
