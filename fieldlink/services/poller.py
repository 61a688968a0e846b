"""Timer-driven read cycle for connected devices."""
from __future__ import annotations
import asyncio
import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Type, TypeVar

from fieldlink.core.exceptions import ProtocolError, ReadError
from fieldlink.core.patterns.observer import AdapterEvent, EventSurface
from fieldlink.core.patterns.scheduler import Scheduler
from fieldlink.protocols.base_protocol_plugin import ProtocolPlugin
from fieldlink.services.quality_tagger import QualityTagger

if TYPE_CHECKING:
    from fieldlink.orchestration.device_connection import DeviceConnection

T = TypeVar("T")

ReadFailureHandler = Callable[["DeviceConnection", BaseException], None]


async def with_timeout(awaitable: Awaitable[T], timeout_ms: Optional[float],
                       error_cls: Type[ProtocolError], what: str) -> T:
    """Await ``awaitable``, turning expiry of ``timeout_ms`` into ``error_cls``."""
    if timeout_ms is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:
        raise error_cls(f"{what} timeout after {timeout_ms:g} ms") from exc


class Poller:
    """
    Read-then-reschedule loop for one adapter's devices.

    A cycle reads every configured point through the plugin. Success emits
    ``data`` plus ``data-received`` and schedules the next cycle
    ``poll_interval_ms`` after completion. Failure emits ``device-error`` and
    a ``data`` event of BAD placeholders, then hands the device to
    ``on_read_failure``; no further cycle is scheduled until the device
    reconnects and ``start`` is called again.
    """

    def __init__(self, plugin: ProtocolPlugin, scheduler: Scheduler, events: EventSurface,
                 tagger: QualityTagger, on_read_failure: ReadFailureHandler,
                 timeout_ms: Optional[float] = None):
        self.plugin           = plugin
        self.scheduler        = scheduler
        self.events           = events
        self.tagger           = tagger
        self._on_read_failure = on_read_failure
        self.timeout_ms       = timeout_ms
        self.log              = logging.getLogger(self.__class__.__name__)

    async def start(self, conn: DeviceConnection) -> None:
        """Run the first cycle immediately; later cycles follow on the scheduler."""
        await self.poll_once(conn)

    async def poll_once(self, conn: DeviceConnection) -> None:
        if conn.is_stopped:
            return
        desc = conn.descriptor

        if not conn.is_connected:
            placeholders = self.tagger.offline(desc)
            if placeholders:
                self.events.emit(AdapterEvent.data(placeholders))
            return

        started = self.scheduler.now_ms()
        try:
            points = await with_timeout(self.plugin.read_device_data(desc.name, desc),
                                        self.timeout_ms, ReadError, "read")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if conn.is_stopped:
                return
            self._handle_failure(conn, exc)
            return

        if not conn.is_connected:
            return
        conn.record_poll_success(self.scheduler.now_ms() - started)
        points = list(points or [])
        if points:
            self.events.emit(AdapterEvent.data(points))
            self.events.emit(AdapterEvent.data_received(desc.name, points))
        self.log.debug("%s: polled %d point(s)", desc.name, len(points))
        self._schedule_next(conn)

    # ------------------------------------------------------------------ #
    def _handle_failure(self, conn: DeviceConnection, error: BaseException) -> None:
        desc = conn.descriptor
        self.log.warning("%s: read failed: %s", desc.name, str(error) or error.__class__.__name__)
        conn.record_poll_failure(error)
        self.events.emit(AdapterEvent.device_error(desc.name, error))
        placeholders = self.tagger.for_error(desc, error)
        if placeholders:
            self.events.emit(AdapterEvent.data(placeholders))
        self._on_read_failure(conn, error)

    def _schedule_next(self, conn: DeviceConnection) -> None:
        handle = self.scheduler.call_later(
            conn.descriptor.poll_interval_ms,
            lambda: self.poll_once(conn),
            name=f"poll:{conn.name}",
        )
        conn.attach_poll(handle)
