"""Public response models.

Field names are snake_case in Python and camelCase on the wire
(``blockReason``, ``retryCount``). Dump with ``by_alias=True,
exclude_none=True``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from src.models.check import CheckResult, MultiRegionCheckResult, RegionCheckResult


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CheckResponse(_CamelModel):
    """Body for a single-target check."""

    status: str
    code: int | None = None
    latency: int
    target: str
    block_reason: str | None = None
    error: str | None = None
    retry_count: int | None = None

    @classmethod
    def from_result(cls, result: CheckResult) -> CheckResponse:
        return cls(
            status=result.status.value,
            code=result.code,
            latency=result.latency_ms,
            target=result.target,
            block_reason=result.block_reason.value if result.block_reason else None,
            error=result.error,
            retry_count=result.retry_count,
        )


class RegionResponse(_CamelModel):
    """One region row."""

    region: str
    label: str
    status: str
    latency: float | None
    code: int | None = None
    source: str
    details: str | None = None

    @classmethod
    def from_result(cls, row: RegionCheckResult) -> RegionResponse:
        return cls(
            region=row.region,
            label=row.label,
            status=row.status.value,
            latency=row.latency_ms,
            code=row.code,
            source=row.source.value,
            details=row.details,
        )

    def to_wire(self) -> dict:
        # latency is nullable on purpose, so keep it even when None
        data = super().to_wire()
        data.setdefault("latency", None)
        return data


class MultiRegionCheckResponse(_CamelModel):
    """Body for a multi-region check: the edge fields plus regions and summary."""

    status: str
    code: int | None = None
    latency: int
    target: str
    block_reason: str | None = None
    error: str | None = None
    regions: list[RegionResponse]
    summary: dict[str, int]

    @classmethod
    def from_result(cls, result: MultiRegionCheckResult) -> MultiRegionCheckResponse:
        edge = result.edge
        return cls(
            status=edge.status.value,
            code=edge.code,
            latency=edge.latency_ms,
            target=edge.target,
            block_reason=edge.block_reason.value if edge.block_reason else None,
            error=edge.error,
            regions=[RegionResponse.from_result(row) for row in result.regions],
            summary=result.summary,
        )

    def to_wire(self) -> dict:
        data = super().to_wire()
        data["regions"] = [region.to_wire() for region in self.regions]
        return data
