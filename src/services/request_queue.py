"""Bounded-concurrency FIFO queue for outbound requests.

Tasks are zero-argument coroutine factories. ``add()`` appends the task to
the pending list and immediately runs a dispatch pass; the returned future
settles with the task's outcome. At most ``concurrency`` tasks run at once,
and a freed slot is refilled the moment a task settles (sliding window, not
batches). Each running task is bounded by ``timeout_seconds``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from src.middleware.error_handler import QueueClearedError, QueueTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _QueuedTask:
    __slots__ = ("fn", "future")

    def __init__(self, fn: Callable[[], Awaitable[Any]], future: asyncio.Future) -> None:
        self.fn = fn
        self.future = future


class RequestQueue:
    """Sliding-window concurrency limiter.

    Parameters
    ----------
    concurrency:
        Maximum number of tasks running at the same time.
    timeout_seconds:
        Per-task execution timeout. Expiry cancels the task and rejects its
        future with ``QueueTimeoutError``.
    """

    def __init__(self, *, concurrency: int = 5, timeout_seconds: float = 30.0) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._timeout = timeout_seconds
        self._pending: deque[_QueuedTask] = deque()
        self._running = 0
        # Strong references so running tasks are not garbage collected
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add(self, fn: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """Enqueue ``fn`` and return a future for its result.

        Must be called from within a running event loop.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._pending.append(_QueuedTask(fn, future))
        self._dispatch()
        return future

    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Enqueue ``fn`` and wait for its result."""
        return await self.add(fn)

    def get_status(self) -> dict[str, int]:
        return {
            "pending": len(self._pending),
            "running": self._running,
            "capacity": self._concurrency - self._running,
        }

    def clear(self) -> int:
        """Reject every task that has not started yet. Returns how many."""
        cleared = 0
        while self._pending:
            task = self._pending.popleft()
            if not task.future.done():
                task.future.set_exception(QueueClearedError())
            cleared += 1
        if cleared:
            logger.info("Cleared %d pending queue tasks", cleared)
        return cleared

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def _dispatch(self) -> None:
        while self._pending and self._running < self._concurrency:
            task = self._pending.popleft()
            if task.future.cancelled():
                continue
            self._running += 1
            runner = asyncio.ensure_future(self._run_task(task))
            self._tasks.add(runner)
            runner.add_done_callback(self._tasks.discard)

    async def _run_task(self, task: _QueuedTask) -> None:
        try:
            result = await asyncio.wait_for(task.fn(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Queued task timed out after %.1fs", self._timeout)
            if not task.future.done():
                task.future.set_exception(
                    QueueTimeoutError(f"Request queue timeout after {self._timeout}s")
                )
        except Exception as exc:
            if not task.future.done():
                task.future.set_exception(exc)
        else:
            if not task.future.done():
                task.future.set_result(result)
        finally:
            self._running -= 1
            self._dispatch()
