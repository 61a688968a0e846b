"""
Observer Pattern Implementation for Adapter Events

This module implements the typed publish/subscribe channel an adapter owns.
Device flows emit lifecycle and data events without waiting; a single
dispatcher task delivers them to subscribers in emission order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Sequence, Tuple, Union

from fieldlink.models.device_models import DataPoint


class AdapterEventType(str, Enum):
    """Types of events an adapter publishes."""
    STARTED = "started"
    STOPPED = "stopped"
    DATA = "data"
    DEVICE_CONNECTED = "device-connected"
    DEVICE_DISCONNECTED = "device-disconnected"
    DEVICE_ERROR = "device-error"
    DATA_RECEIVED = "data-received"


@dataclass(frozen=True)
class AdapterEvent:
    """Event record delivered to subscribers."""
    event_type: AdapterEventType
    device_name: Optional[str] = None
    data_points: Tuple[DataPoint, ...] = ()
    error: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def started(cls) -> "AdapterEvent":
        return cls(AdapterEventType.STARTED)

    @classmethod
    def stopped(cls) -> "AdapterEvent":
        return cls(AdapterEventType.STOPPED)

    @classmethod
    def data(cls, points: Sequence[DataPoint]) -> "AdapterEvent":
        device = points[0].device_name if points else None
        return cls(AdapterEventType.DATA, device, tuple(points))

    @classmethod
    def device_connected(cls, device_name: str) -> "AdapterEvent":
        return cls(AdapterEventType.DEVICE_CONNECTED, device_name)

    @classmethod
    def device_disconnected(cls, device_name: str) -> "AdapterEvent":
        return cls(AdapterEventType.DEVICE_DISCONNECTED, device_name)

    @classmethod
    def device_error(cls, device_name: str, error: BaseException) -> "AdapterEvent":
        return cls(AdapterEventType.DEVICE_ERROR, device_name, error=error)

    @classmethod
    def data_received(cls, device_name: str, points: Sequence[DataPoint]) -> "AdapterEvent":
        return cls(AdapterEventType.DATA_RECEIVED, device_name, tuple(points))


EventHandler = Callable[[AdapterEvent], Union[None, Awaitable[None]]]


_LIFECYCLE_EVENTS = (AdapterEventType.STARTED, AdapterEventType.STOPPED)


class _AsyncSubscriber:
    """Serial worker awaiting one async handler's coroutines in emission order."""

    def __init__(self, handler: EventHandler, max_backlog: int, logger: logging.Logger):
        self.handler = handler
        self.max_backlog = max_backlog
        self.queue: asyncio.Queue = asyncio.Queue()
        self.busy = False
        self._logger = logger
        self.task = asyncio.get_running_loop().create_task(self._run(), name=f"subscriber:{handler!r}")

    def offer(self, event: AdapterEvent, pending: Coroutine) -> bool:
        if self.queue.qsize() >= self.max_backlog:
            pending.close()
            self._logger.error(f"Subscriber backlog full, dropping {event.event_type.value} for {self.handler!r}")
            return False
        self.queue.put_nowait((event, pending))
        return True

    async def _run(self) -> None:
        while True:
            event, pending = await self.queue.get()
            self.busy = True
            try:
                await pending
            except Exception as e:
                self._logger.error(f"Subscriber failed on {event.event_type.value}: {e}", exc_info=True)
            finally:
                self.busy = False
                self.queue.task_done()

    async def cancel(self) -> None:
        self.task.cancel()
        await asyncio.gather(self.task, return_exceptions=True)
        while not self.queue.empty():
            _, pending = self.queue.get_nowait()
            pending.close()
            self.queue.task_done()


class EventSurface:
    """
    Bounded, non-blocking event bus.

    ``emit`` only enqueues. A single dispatcher task hands events to the
    subscribers in emission order. Plain handlers run inline; coroutine
    handlers are awaited by a worker of their own, so a slow or hung
    subscriber only delays itself. Failing handlers are logged.
    """

    def __init__(self, max_queue_size: int = 1000, drain_timeout: float = 5.0):
        self._handlers: Dict[Optional[AdapterEventType], List[EventHandler]] = {}
        self._max_queue_size = max_queue_size
        self._drain_timeout = drain_timeout
        self._event_queue: Optional[asyncio.Queue] = None
        self._processing_task: Optional[asyncio.Task] = None
        self._subscribers: Dict[EventHandler, _AsyncSubscriber] = {}
        self._closed = False
        self._dropped = 0
        self._logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------ #
    #  Subscription
    # ------------------------------------------------------------------ #
    def subscribe(self, event_type: Optional[Union[AdapterEventType, str]],
                  handler: EventHandler) -> Callable[[], None]:
        """Attach a handler for one event type (``None`` for all). Returns an unsubscribe callable."""
        key = AdapterEventType(event_type) if event_type is not None else None
        handlers = self._handlers.setdefault(key, [])
        if handler not in handlers:
            handlers.append(handler)
        return lambda: self.unsubscribe(key, handler)

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        return self.subscribe(None, handler)

    def unsubscribe(self, event_type: Optional[Union[AdapterEventType, str]], handler: EventHandler) -> None:
        key = AdapterEventType(event_type) if event_type is not None else None
        handlers = self._handlers.get(key, [])
        if handler in handlers:
            handlers.remove(handler)
        else:
            self._logger.warning(f"Handler not found for unsubscription: {key}")

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #
    def open(self) -> None:
        """(Re)open the surface; emits are accepted again."""
        self._closed = False

    async def drain(self) -> bool:
        """
        Wait until every event queued so far has been delivered, for at most
        ``drain_timeout`` seconds. Returns False when subscribers were still busy.
        """
        try:
            await asyncio.wait_for(self._join(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            busy = [repr(s.handler) for s in self._subscribers.values() if s.busy or not s.queue.empty()]
            self._logger.warning(f"Event drain timed out after {self._drain_timeout:g}s, busy subscribers: {busy}")
            return False
        return True

    async def _join(self) -> None:
        while True:
            if self._event_queue is not None and self._processing_task is not None:
                await self._event_queue.join()
            for subscriber in list(self._subscribers.values()):
                await subscriber.queue.join()
            # async handlers may have emitted while we waited
            if self._event_queue is None or self._event_queue.empty():
                return

    async def close(self) -> None:
        """Deliver what is queued, stop the dispatcher and workers, reject later emits."""
        await self.drain()
        self._closed = True
        if self._processing_task:
            self._processing_task.cancel()
            try:
                await self._processing_task
            except asyncio.CancelledError:
                pass
            self._processing_task = None
        for subscriber in self._subscribers.values():
            await subscriber.cancel()
        self._subscribers.clear()
        self._event_queue = None

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------ #
    #  Publishing
    # ------------------------------------------------------------------ #
    def emit(self, event: AdapterEvent) -> bool:
        """
        Queue an event without blocking. Returns False when it was dropped.
        Lifecycle events are never dropped for lack of room.
        """
        if self._closed:
            self._logger.debug(f"Surface closed, dropping event: {event.event_type.value}")
            return False
        self._ensure_dispatcher()
        if event.event_type not in _LIFECYCLE_EVENTS and self._event_queue.qsize() >= self._max_queue_size:
            self._dropped += 1
            self._logger.error(f"Event queue full, dropping event: {event.event_type.value} "
                               f"for {event.device_name}")
            return False
        self._event_queue.put_nowait(event)
        return True

    def _ensure_dispatcher(self) -> None:
        if self._event_queue is None:
            self._event_queue = asyncio.Queue()
        if self._processing_task is None or self._processing_task.done():
            self._processing_task = asyncio.get_running_loop().create_task(
                self._process_events(), name="event-surface")

    async def _process_events(self) -> None:
        queue = self._event_queue
        while True:
            event = await queue.get()
            try:
                self._deliver(event)
            except Exception as e:
                self._logger.error(f"Error delivering event: {e}", exc_info=True)
            finally:
                queue.task_done()

    def _deliver(self, event: AdapterEvent) -> None:
        handlers = list(self._handlers.get(event.event_type, [])) + list(self._handlers.get(None, []))
        for handler in handlers:
            self._safe_notify(handler, event)

    def _safe_notify(self, handler: EventHandler, event: AdapterEvent) -> None:
        """Call a single handler, catching and logging any exception."""
        try:
            result = handler(event)
        except Exception as e:
            self._logger.error(f"Subscriber failed on {event.event_type.value}: {e}", exc_info=True)
            return
        if asyncio.iscoroutine(result):
            if not self._subscriber_for(handler).offer(event, result):
                self._dropped += 1

    def _subscriber_for(self, handler: EventHandler) -> _AsyncSubscriber:
        subscriber = self._subscribers.get(handler)
        if subscriber is None or subscriber.task.done():
            subscriber = _AsyncSubscriber(handler, self._max_queue_size, self._logger)
            self._subscribers[handler] = subscriber
        return subscriber

    # ------------------------------------------------------------------ #
    #  Introspection
    # ------------------------------------------------------------------ #
    def get_queue_size(self) -> int:
        return self._event_queue.qsize() if self._event_queue is not None else 0

    def get_observer_count(self) -> int:
        return sum(len(h) for h in self._handlers.values())

    @property
    def dropped_events(self) -> int:
        return self._dropped

    def describe(self) -> Dict[str, Any]:
        return {
            "observers": self.get_observer_count(),
            "queued": self.get_queue_size(),
            "dropped": self._dropped,
            "closed": self._closed,
        }
