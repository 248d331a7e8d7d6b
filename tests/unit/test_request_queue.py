"""Unit tests for the bounded-concurrency request queue."""

from __future__ import annotations

import asyncio

import pytest

from src.middleware.error_handler import QueueClearedError, QueueTimeoutError
from src.services.request_queue import RequestQueue


class TestRequestQueue:
    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        queue = RequestQueue(concurrency=2)

        async def work() -> int:
            return 42

        assert await queue.run(work) == 42

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self):
        queue = RequestQueue(concurrency=2, timeout_seconds=5)
        active = 0
        peak = 0

        async def work() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(*(queue.add(work) for _ in range(7)))
        assert peak == 2
        assert queue.get_status() == {"pending": 0, "running": 0, "capacity": 2}

    @pytest.mark.asyncio
    async def test_freed_slot_is_refilled_in_fifo_order(self):
        queue = RequestQueue(concurrency=1)
        order: list[int] = []

        def make(i: int):
            async def work() -> int:
                order.append(i)
                return i

            return work

        results = await asyncio.gather(*(queue.add(make(i)) for i in range(5)))
        assert results == [0, 1, 2, 3, 4]
        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_status_reports_pending_and_running(self):
        queue = RequestQueue(concurrency=1)
        release = asyncio.Event()

        async def blocked() -> None:
            await release.wait()

        first = queue.add(blocked)
        second = queue.add(blocked)
        await asyncio.sleep(0)
        assert queue.get_status() == {"pending": 1, "running": 1, "capacity": 0}

        release.set()
        await asyncio.gather(first, second)

    @pytest.mark.asyncio
    async def test_timeout_rejects_with_queue_timeout(self):
        queue = RequestQueue(concurrency=1, timeout_seconds=0.01)

        async def slow() -> None:
            await asyncio.sleep(1)

        with pytest.raises(QueueTimeoutError):
            await queue.run(slow)
        assert queue.get_status()["running"] == 0

    @pytest.mark.asyncio
    async def test_task_errors_propagate(self):
        queue = RequestQueue()

        async def broken() -> None:
            raise RuntimeError("bad")

        with pytest.raises(RuntimeError, match="bad"):
            await queue.run(broken)

    @pytest.mark.asyncio
    async def test_clear_rejects_only_pending(self):
        queue = RequestQueue(concurrency=1)
        release = asyncio.Event()

        async def blocked() -> str:
            await release.wait()
            return "done"

        running = queue.add(blocked)
        pending = [queue.add(blocked) for _ in range(3)]
        await asyncio.sleep(0)

        assert queue.clear() == 3
        for future in pending:
            with pytest.raises(QueueClearedError):
                await future

        release.set()
        assert await running == "done"

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            RequestQueue(concurrency=0)
