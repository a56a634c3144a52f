"""Injectable time source and timer scheduling.

Retry, reconnect and expiry timers all go through a clock so their timing
can be driven deterministically: production code uses :class:`SystemClock`
on the running event loop, tests use :class:`ManualClock` and advance it.
Timer callbacks may be plain functions or coroutine functions.
"""

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class SystemClock:
    """Wall-clock time and ``loop.call_later`` timers."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0.0), self._run, callback)

    def _run(self, callback: Callable[[], Any]) -> None:
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Timer callback failed", exc_info=task.exception())


class ManualTimer:
    """A timer registered on a :class:`ManualClock`."""

    def __init__(self, when: float, callback: Callable[[], Any]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """A clock that only moves when :meth:`advance` is awaited."""

    def __init__(self, start: float = 0.0):
        self._now = start
        self._timers: list[tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ManualTimer:
        timer = ManualTimer(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._timers, (timer.when, next(self._seq), timer))
        return timer

    def pending(self) -> list[ManualTimer]:
        """Active timers, soonest first."""
        return [t for _, _, t in sorted(self._timers) if not t.cancelled]

    def next_due(self) -> Optional[float]:
        timers = self.pending()
        return timers[0].when if timers else None

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing due timers in order (awaiting coroutines)."""
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target:
            _, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            self._now = timer.when
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        self._now = target
