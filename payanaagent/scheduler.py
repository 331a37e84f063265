"""Timers for delayed directives and typing timeouts.

AsyncioScheduler runs callbacks on the event loop clock. ManualScheduler
only runs them when advance() is called, so delay-dependent ordering can be
tested without sleeping.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class TimerHandle:
    def __init__(self):
        self.cancelled = False
        self._timer: asyncio.TimerHandle | None = None

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()


class SchedulerProtocol(Protocol):
    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...


class AsyncioScheduler:
    """Schedules coroutine callbacks with loop.call_later."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()
        loop = asyncio.get_running_loop()
        handle._timer = loop.call_later(max(delay, 0.0), self._spawn, handle, callback)
        return handle

    def _spawn(self, handle: TimerHandle, callback: Callback) -> None:
        if handle.cancelled:
            return
        task = asyncio.ensure_future(self._run(callback))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, callback: Callback) -> None:
        try:
            await callback()
        except Exception:
            logger.exception("Scheduled callback failed")


class ManualScheduler:
    """Deterministic scheduler driven by advance()."""

    def __init__(self):
        self.now = 0.0
        self._queue: list = []
        self._counter = itertools.count()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()
        heapq.heappush(self._queue, (self.now + max(delay, 0.0), next(self._counter), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle, _ in self._queue if not handle.cancelled)

    async def advance(self, seconds: float) -> None:
        """Move the clock forward, running due callbacks in due-time order."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            self.now = max(self.now, due)
            if handle.cancelled:
                continue
            await callback()
        self.now = target

    async def run_all(self) -> None:
        """Run every pending callback, including ones scheduled meanwhile."""
        while self._queue:
            await self.advance(self._queue[0][0] - self.now)
