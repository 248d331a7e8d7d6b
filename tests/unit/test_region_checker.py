"""Unit tests for the multi-region orchestrator."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.integration.dns_client import dns_row
from src.middleware.error_handler import RemoteProbeError
from src.models.check import CheckResult, CheckStatus, RegionSource, RegionStatus
from src.resilience.circuit_breaker import CircuitBreaker, CircuitState
from src.services.region_checker import (
    MultiRegionChecker,
    build_remote_regions,
    map_http_status,
)
from src.services.request_queue import RequestQueue


def _probe(country: str, status: str = "finished", **result) -> dict:
    return {"probe": {"country": country}, "result": {"status": status, **result}}


FINISHED = {
    "status": "finished",
    "results": [
        _probe("US", statusCode=200, statusCodeName="OK", timings={"total": 120}),
        _probe("DE", statusCode=403, statusCodeName="Forbidden", timings={"total": 80}),
        _probe("SG", "failed", error="connect ECONNREFUSED", timings={"total": None}),
        _probe("CN", statusCode=503, statusCodeName="Service Unavailable", timings={"total": 300}),
    ],
}


class TestMapHttpStatus:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            (200, RegionStatus.ACCESSIBLE),
            (301, RegionStatus.ACCESSIBLE),
            (401, RegionStatus.BLOCKED),
            (403, RegionStatus.BLOCKED),
            (407, RegionStatus.BLOCKED),
            (429, RegionStatus.BLOCKED),
            (451, RegionStatus.BLOCKED),
            (404, RegionStatus.BLOCKED),
            (500, RegionStatus.ERROR),
            (None, RegionStatus.ERROR),
        ],
    )
    def test_mapping(self, code, expected):
        assert map_http_status(code) == expected


class TestBuildRemoteRegions:
    def test_one_row_per_fixed_region_in_order(self):
        rows = build_remote_regions(FINISHED)
        assert [r.region for r in rows] == ["us", "eu", "asia", "cn"]
        assert [r.label for r in rows] == [
            "United States",
            "Europe (Germany)",
            "Asia (Singapore)",
            "China",
        ]
        assert {r.source for r in rows} == {RegionSource.REMOTE_PROBE}

    def test_finished_and_failed_rows(self):
        us, eu, asia, cn = build_remote_regions(FINISHED)
        assert (us.status, us.code, us.latency_ms, us.details) == (RegionStatus.ACCESSIBLE, 200, 120, "OK")
        assert eu.status == RegionStatus.BLOCKED
        assert (asia.status, asia.details) == (RegionStatus.ERROR, "connect ECONNREFUSED")
        assert cn.status == RegionStatus.ERROR

    def test_missing_country_is_unknown(self):
        rows = build_remote_regions({"status": "finished", "results": [FINISHED["results"][0]]})
        assert rows[1].status == RegionStatus.UNKNOWN
        assert rows[1].details == "No probe data available"
        assert rows[1].latency_ms is None

    def test_first_result_per_country_wins(self):
        doc = {"results": [_probe("US", statusCode=200), _probe("US", statusCode=500)]}
        assert build_remote_regions(doc)[0].status == RegionStatus.ACCESSIBLE

    def test_offline_without_error_text(self):
        rows = build_remote_regions({"results": [_probe("US", "offline")]})
        assert (rows[0].status, rows[0].details) == (RegionStatus.ERROR, "Probe failed")

    def test_in_progress_is_unknown(self):
        rows = build_remote_regions({"results": [_probe("US", "in-progress")]})
        assert (rows[0].status, rows[0].details) == (RegionStatus.UNKNOWN, "Probe still running")

    def test_empty_document(self):
        assert all(r.status == RegionStatus.UNKNOWN for r in build_remote_regions({}))


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def _edge(status: CheckStatus = CheckStatus.ACCESSIBLE, code: int | None = 200) -> CheckResult:
    return CheckResult(status=status, latency_ms=42, target="https://example.com", request_id="r", code=code)


@pytest.fixture
def prober():
    mock = MagicMock()
    mock.check = AsyncMock(return_value=_edge())
    return mock


@pytest.fixture
def dns():
    mock = MagicMock()
    mock.check = AsyncMock(return_value=dns_row(RegionStatus.ACCESSIBLE, latency_ms=5))
    return mock


@pytest.fixture
def remote():
    mock = MagicMock()
    mock.create_measurement = AsyncMock(return_value="m-1")
    mock.get_measurement = AsyncMock(return_value=FINISHED)
    return mock


@pytest.fixture
def remote_breaker(clock) -> CircuitBreaker:
    return CircuitBreaker("remote-probe", threshold=3, cooldown_seconds=30, clock=clock)


@pytest.fixture
def checker(prober, dns, remote, remote_breaker, sleep) -> MultiRegionChecker:
    return MultiRegionChecker(
        prober=prober,
        remote_client=remote,
        dns_client=dns,
        breaker=remote_breaker,
        queue=RequestQueue(concurrency=4, timeout_seconds=5),
        sleep=sleep,
    )


class TestCheckMultiRegion:
    @pytest.mark.asyncio
    async def test_rows_ordered_edge_remote_dns(self, checker, prober):
        result = await checker.check_multi_region("https://example.com", request_id="req-9")

        assert [r.region for r in result.regions] == ["edge", "us", "eu", "asia", "cn", "school"]
        edge_row = result.regions[0]
        assert (edge_row.label, edge_row.source, edge_row.code) == ("Edge (closest)", RegionSource.EDGE, 200)
        assert result.edge.status == RegionStatus.ACCESSIBLE
        prober.check.assert_awaited_once_with(
            "https://example.com", timeout_ms=5000, max_retries=1, request_id="req-9"
        )

    @pytest.mark.asyncio
    async def test_summary_counts_every_row(self, checker):
        result = await checker.check_multi_region("https://example.com")
        assert result.summary == {"accessible": 3, "blocked": 1, "error": 2, "unknown": 0}
        assert sum(result.summary.values()) == len(result.regions)

    @pytest.mark.asyncio
    async def test_protocol_and_host_from_url(self, checker, remote, dns):
        await checker.check_multi_region("http://example.com:8080/path")
        remote.create_measurement.assert_awaited_once_with(
            "example.com", protocol="HTTP", countries=["US", "DE", "SG", "CN"]
        )
        dns.check.assert_awaited_once_with("example.com")

    @pytest.mark.asyncio
    async def test_edge_status_collapse(self, checker, prober):
        prober.check.return_value = _edge(CheckStatus.BLOCKED, 451)
        assert (await checker.check_multi_region("https://example.com")).edge.status == RegionStatus.BLOCKED

        prober.check.return_value = _edge(CheckStatus.TIMEOUT, None)
        assert (await checker.check_multi_region("https://example.com")).edge.status == RegionStatus.ERROR

    @pytest.mark.asyncio
    async def test_polls_until_finished(self, checker, remote, sleep):
        remote.get_measurement.side_effect = [{"status": "in-progress"}, {"status": "in-progress"}, FINISHED]
        result = await checker.check_multi_region("https://example.com")
        assert remote.get_measurement.await_count == 3
        assert sleep.calls == [0.5, 0.5]
        assert result.regions[1].status == RegionStatus.ACCESSIBLE

    @pytest.mark.asyncio
    async def test_poll_gives_up_after_four_reads(self, checker, remote):
        remote.get_measurement.return_value = {
            "status": "in-progress",
            "results": [_probe("US", "in-progress")],
        }
        result = await checker.check_multi_region("https://example.com")
        assert remote.get_measurement.await_count == 4
        assert result.regions[1].details == "Probe still running"

    @pytest.mark.asyncio
    async def test_create_retries_retryable_errors(self, checker, remote):
        remote.create_measurement.side_effect = [RemoteProbeError(upstream_status=503), "m-2"]
        result = await checker.check_multi_region("https://example.com")
        assert remote.create_measurement.await_count == 2
        assert len(result.regions) == 6

    @pytest.mark.asyncio
    async def test_remote_failure_omits_remote_rows(self, checker, remote, remote_breaker, caplog):
        remote.create_measurement.side_effect = RemoteProbeError(upstream_status=400)
        with caplog.at_level(logging.WARNING):
            result = await checker.check_multi_region("https://example.com")

        assert [r.region for r in result.regions] == ["edge", "school"]
        assert remote.create_measurement.await_count == 1
        assert remote_breaker.get_stats().failure_count == 1
        assert any("Remote probe measurement failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_open_breaker_skips_remote_calls(self, checker, remote, remote_breaker, caplog):
        for _ in range(3):
            remote_breaker.record_failure()
        assert remote_breaker.state == CircuitState.OPEN

        with caplog.at_level(logging.WARNING):
            result = await checker.check_multi_region("https://example.com")

        remote.create_measurement.assert_not_awaited()
        assert [r.region for r in result.regions] == ["edge", "school"]
        record = next(r for r in caplog.records if "circuit breaker is open" in r.getMessage())
        assert record.breaker == "remote-probe"
        assert record.breaker_stats["state"] == "open"

    @pytest.mark.asyncio
    async def test_dns_queue_timeout_yields_error_row(self, prober, remote, remote_breaker, sleep):
        slow_dns = MagicMock()

        async def hang(hostname: str):
            await asyncio.sleep(1)

        slow_dns.check = hang
        checker = MultiRegionChecker(
            prober=prober,
            remote_client=remote,
            dns_client=slow_dns,
            breaker=remote_breaker,
            queue=RequestQueue(concurrency=4, timeout_seconds=0.01),
            sleep=sleep,
        )

        result = await checker.check_multi_region("https://example.com")
        dns_result = result.regions[-1]
        assert dns_result.region == "school"
        assert dns_result.status == RegionStatus.ERROR

    @pytest.mark.asyncio
    async def test_unexpected_dns_failure_yields_error_row(self, checker, dns):
        dns.check.side_effect = TypeError("'int' object is not iterable")

        result = await checker.check_multi_region("https://example.com")

        dns_result = result.regions[-1]
        assert dns_result.region == "school"
        assert dns_result.status == RegionStatus.ERROR
        assert dns_result.details == "DNS resolution failed"
        assert [r.region for r in result.regions][:5] == ["edge", "us", "eu", "asia", "cn"]
