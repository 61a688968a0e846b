"""
Injectable timer/clock abstraction.

Retries and poll cycles never sleep inline; they ask a Scheduler to run a
coroutine function after a delay. ``AsyncioScheduler`` is backed by the
running event loop, ``VirtualScheduler`` by a manually advanced clock so
that tests can step through backoff sequences without waiting.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

CoroutineFn = Callable[[], Awaitable[None]]

logger = logging.getLogger(__name__)


class ScheduledCall(ABC):
    """Handle for one pending (or running) scheduled coroutine."""

    def __init__(self, callback: CoroutineFn, name: Optional[str] = None):
        self._callback = callback
        self._name = name
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def name(self) -> Optional[str]:
        return self._name

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def task(self) -> Optional[asyncio.Task]:
        """Task running the callback, once the timer has fired."""
        return self._task

    def cancel(self) -> None:
        """Cancel the timer, and the running task unless it is the caller's own."""
        self._cancelled = True
        self._cancel_timer()
        task = self._task
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    @abstractmethod
    def _cancel_timer(self) -> None:
        """Cancel the underlying timer if it has not fired yet."""

    def _fire(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._cancelled:
            return
        self._task = loop.create_task(self._callback(), name=self._name)
        self._task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduled call %s failed: %s", self._name, exc, exc_info=exc)


class Scheduler(ABC):
    """Delay-queue interface used by the adapter for every timed action."""

    @abstractmethod
    def now_ms(self) -> float:
        """Monotonic time in milliseconds."""

    @abstractmethod
    def clock(self) -> datetime:
        """Wall-clock timestamp used to stamp data points and status."""

    @abstractmethod
    def call_later(self, delay_ms: float, callback: CoroutineFn, *, name: Optional[str] = None) -> ScheduledCall:
        """Run ``callback()`` in its own task after ``delay_ms``."""


# --------------------------------------------------------------------------- #
#  Event-loop backed implementation
# --------------------------------------------------------------------------- #
class _LoopCall(ScheduledCall):
    def __init__(self, loop: asyncio.AbstractEventLoop, delay_ms: float, callback: CoroutineFn,
                 name: Optional[str]):
        super().__init__(callback, name)
        self._handle: Optional[asyncio.TimerHandle] = loop.call_later(
            max(delay_ms, 0.0) / 1000.0, self._on_timer, loop
        )

    def _on_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        self._handle = None
        self._fire(loop)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def now_ms(self) -> float:
        return asyncio.get_running_loop().time() * 1000.0

    def clock(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay_ms: float, callback: CoroutineFn, *, name: Optional[str] = None) -> ScheduledCall:
        return _LoopCall(asyncio.get_running_loop(), delay_ms, callback, name)


# --------------------------------------------------------------------------- #
#  Virtual-time implementation
# --------------------------------------------------------------------------- #
class _VirtualCall(ScheduledCall):
    def __init__(self, due_ms: float, callback: CoroutineFn, name: Optional[str]):
        super().__init__(callback, name)
        self.due_ms = due_ms

    def _cancel_timer(self) -> None:
        # removal from the heap is lazy; cancelled entries are skipped on pop
        pass


class VirtualScheduler(Scheduler):
    """
    Manually advanced clock.

    ``advance(ms)`` fires every call due within the window in due order
    (ties in scheduling order), giving each spawned task a bounded number of
    event-loop turns to settle before the next call fires. A task that never
    finishes (a hung plugin) simply stays pending and blocks nothing else.
    """

    def __init__(self, start: Optional[datetime] = None, settle_rounds: int = 50):
        self._now = 0.0
        self._epoch = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._settle_rounds = settle_rounds
        self._seq = itertools.count()
        self._queue: List[Tuple[float, int, _VirtualCall]] = []
        self._spawned: List[_VirtualCall] = []

    def now_ms(self) -> float:
        return self._now

    def clock(self) -> datetime:
        return self._epoch + timedelta(milliseconds=self._now)

    def call_later(self, delay_ms: float, callback: CoroutineFn, *, name: Optional[str] = None) -> ScheduledCall:
        call = _VirtualCall(self._now + max(delay_ms, 0.0), callback, name)
        heapq.heappush(self._queue, (call.due_ms, next(self._seq), call))
        return call

    def pending(self) -> List[_VirtualCall]:
        return [call for _, _, call in sorted(self._queue) if not call.cancelled]

    def pending_delays(self) -> List[float]:
        """Remaining delay (ms) of every live timer, in due order."""
        return [call.due_ms - self._now for call in self.pending()]

    async def advance(self, ms: float = 0.0) -> None:
        target = self._now + ms
        loop = asyncio.get_running_loop()
        while self._queue and self._queue[0][0] <= target:
            _, _, call = heapq.heappop(self._queue)
            if call.cancelled:
                continue
            self._now = max(self._now, call.due_ms)
            call._fire(loop)
            self._spawned.append(call)
            await self.settle()
        self._now = target
        await self.settle()

    async def settle(self) -> None:
        """Yield to the loop until spawned tasks finish or the round limit is reached."""
        for _ in range(self._settle_rounds):
            await asyncio.sleep(0)
            self._spawned = [c for c in self._spawned if c.task is not None and not c.task.done()]
            if not self._spawned:
                break


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
