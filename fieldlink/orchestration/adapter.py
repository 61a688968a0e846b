"""Composition root: drives every device of one protocol plugin through its lifecycle."""
from __future__ import annotations
import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Union

from fieldlink.config.app_config import AdapterSettings
from fieldlink.core.exceptions import AdapterError, ConfigError, ConnectError, DisconnectError
from fieldlink.core.patterns.observer import AdapterEvent, AdapterEventType, EventHandler, EventSurface
from fieldlink.core.patterns.scheduler import AsyncioScheduler, Scheduler
from fieldlink.models.device_models import ConnectionState, DeviceDescriptor, DeviceStatus
from fieldlink.orchestration.device_connection import DeviceConnection, default_status
from fieldlink.protocols.base_protocol_plugin import ProtocolPlugin, normalize_protocol
from fieldlink.services.poller import Poller, with_timeout
from fieldlink.services.quality_tagger import QualityTagger
from fieldlink.services.registry import DeviceRegistry


class ProtocolAdapter:
    """
    Manages many field devices over one protocol plugin.

    Each enabled device gets its own ``DeviceConnection``; connects, retries
    and polls run as scheduler tasks so a slow or failing device never holds
    up another. Consumers observe everything through ``events``.
    """

    def __init__(self,
                 plugin: ProtocolPlugin,
                 devices: Union[DeviceRegistry, Iterable[DeviceDescriptor]],
                 settings: Optional[AdapterSettings] = None,
                 scheduler: Optional[Scheduler] = None,
                 events: Optional[EventSurface] = None,
                 tagger: Optional[QualityTagger] = None):
        if not isinstance(plugin, ProtocolPlugin):
            raise AdapterError(f"{plugin!r} is not a ProtocolPlugin")
        self.plugin    = plugin
        self.registry  = devices if isinstance(devices, DeviceRegistry) else DeviceRegistry(devices)
        self.settings  = settings or AdapterSettings()
        self.scheduler = scheduler or AsyncioScheduler()
        self.events    = events or EventSurface(self.settings.event_queue_size)
        self.tagger    = tagger or QualityTagger(self.scheduler.clock)
        self.poller    = Poller(plugin, self.scheduler, self.events, self.tagger,
                                on_read_failure=self._on_read_failure,
                                timeout_ms=self.settings.operation_timeout_ms)
        self.log       = logging.getLogger(self.__class__.__name__)
        self._connections: Dict[str, DeviceConnection] = {}
        self._running = False

    # --------------------------------------------------------------------- #
    #  Public API
    # --------------------------------------------------------------------- #
    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def protocol_name(self) -> str:
        return self.plugin.protocol_name()

    def subscribe(self, event_type: Optional[Union[AdapterEventType, str]],
                  handler: EventHandler):
        """Shortcut for ``events.subscribe``; returns the unsubscribe callable."""
        return self.events.subscribe(event_type, handler)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.events.open()
        try:
            descriptors = self.registry.enabled()
            for desc in descriptors:
                conn = DeviceConnection(desc, self.settings.backoff, self.scheduler.clock)
                self._connections[desc.name] = conn
                try:
                    self._validate(desc)
                except Exception as exc:
                    self._reject(conn, exc)
                    continue
                self._schedule_connect(conn, 0)
        except Exception as exc:
            self.log.error("adapter start failed: %s", exc)
            await self.stop()
            raise

        self.events.emit(AdapterEvent.started())
        self.log.info("%s adapter started (%d of %d device(s) enabled)",
                      self.protocol_name, len(self._connections), len(self.registry))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        conns = list(self._connections.values())

        pending: List[asyncio.Task] = []
        for conn in conns:
            pending.extend(conn.stop())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        initialized = [c for c in conns if c.initialized]
        if initialized:
            await asyncio.gather(*(self._disconnect(c) for c in initialized))

        self._connections.clear()
        self.events.emit(AdapterEvent.stopped())
        await self.events.close()
        self.log.info("%s adapter stopped", self.protocol_name)

    def get_device_statuses(self) -> List[DeviceStatus]:
        return [self._status_for(desc) for desc in self.registry.all()]

    def get_device_status(self, name: str) -> Optional[DeviceStatus]:
        desc = self.registry.get(name)
        return self._status_for(desc) if desc is not None else None

    def connection_state(self, name: str) -> Optional[ConnectionState]:
        conn = self._connections.get(name)
        return conn.connection_state() if conn is not None else None

    # --------------------------------------------------------------------- #
    #  Device flow
    # --------------------------------------------------------------------- #
    def _validate(self, desc: DeviceDescriptor) -> None:
        if normalize_protocol(desc.protocol) != normalize_protocol(self.protocol_name):
            raise ConfigError(f"{desc.name}: protocol {desc.protocol!r} is not served by "
                              f"the {self.protocol_name!r} plugin")
        self.plugin.validate_device_config(desc)

    def _reject(self, conn: DeviceConnection, error: BaseException) -> None:
        conn.mark_rejected(error)
        self.log.error("%s: configuration rejected: %s", conn.name, error)
        self.events.emit(AdapterEvent.device_error(conn.name, error))

    def _schedule_connect(self, conn: DeviceConnection, delay_ms: float) -> None:
        handle = self.scheduler.call_later(delay_ms, lambda: self._connect(conn),
                                           name=f"connect:{conn.name}")
        conn.attach_retry(handle)

    async def _connect(self, conn: DeviceConnection) -> None:
        if conn.is_stopped:
            return
        desc = conn.descriptor
        conn.begin_connect()
        self.log.debug("%s: connecting (attempt after %d failure(s))",
                       desc.name, conn.state.consecutive_error_count)
        try:
            await with_timeout(self.plugin.connect_device(desc),
                               self.settings.operation_timeout_ms, ConnectError, "connect")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if conn.is_stopped:
                return
            self.events.emit(AdapterEvent.device_error(desc.name, exc))
            self._schedule_retry(conn, exc)
            return

        if conn.is_stopped:
            return
        conn.mark_connected()
        self.log.info("%s: connected", desc.name)
        self.events.emit(AdapterEvent.device_connected(desc.name))
        await self.poller.start(conn)

    def _on_read_failure(self, conn: DeviceConnection, error: BaseException) -> None:
        self._schedule_retry(conn, error)

    def _schedule_retry(self, conn: DeviceConnection, error: BaseException) -> None:
        delay = conn.schedule_failure(error)
        self.events.emit(AdapterEvent.device_disconnected(conn.name))
        self.log.warning("%s: %s; retry #%d in %.0f ms", conn.name, conn.last_error,
                         conn.state.consecutive_error_count, delay)
        self._schedule_connect(conn, delay)

    async def _disconnect(self, conn: DeviceConnection) -> None:
        try:
            await with_timeout(self.plugin.disconnect_device(conn.name),
                               self.settings.operation_timeout_ms, DisconnectError, "disconnect")
        except Exception as exc:
            self.log.error("%s: disconnect failed: %s", conn.name, exc)

    def _status_for(self, desc: DeviceDescriptor) -> DeviceStatus:
        conn = self._connections.get(desc.name)
        return conn.status() if conn is not None else default_status(desc)

    def __repr__(self) -> str:
        state = "running" if self._running else "stopped"
        return f"ProtocolAdapter({self.protocol_name!r}, {len(self.registry)} device(s), {state})"
