"""Shared fakes for the adapter test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import pytest

from fieldlink.core.exceptions import ConfigError, DisconnectError
from fieldlink.core.patterns.observer import AdapterEvent
from fieldlink.core.patterns.scheduler import VirtualScheduler
from fieldlink.models.device_models import DataPoint, DataPointDescriptor, DeviceDescriptor
from fieldlink.orchestration.adapter import ProtocolAdapter
from fieldlink.protocols.base_protocol_plugin import ProtocolPlugin


def make_device(name: str = "plc-1", *, protocol: str = "modbus", interval: int = 1000,
                points: Sequence[str] = ("temperature", "pressure"), enabled: bool = True,
                **connection) -> DeviceDescriptor:
    return DeviceDescriptor(
        name=name,
        protocol=protocol,
        enabled=enabled,
        poll_interval_ms=interval,
        connection_params=connection or {"host": "127.0.0.1"},
        data_points=[DataPointDescriptor(p, unit="u") for p in points],
    )


class FakePlugin(ProtocolPlugin):
    """
    Scriptable plugin. ``connect_outcomes`` / ``read_outcomes`` hold, per
    device, a queue of exceptions (raised) or ``None`` (success); once a
    queue is empty every call succeeds.
    """

    def __init__(self, protocol: str = "modbus"):
        super().__init__()
        self._protocol = protocol
        self.connect_outcomes: Dict[str, List[Optional[BaseException]]] = {}
        self.read_outcomes: Dict[str, List[Optional[BaseException]]] = {}
        self.hang_connect: set = set()
        self.hang_read: set = set()
        self.invalid: Dict[str, str] = {}
        self.failing_disconnect: set = set()
        self.connect_calls: List[str] = []
        self.read_calls: List[str] = []
        self.disconnect_calls: List[str] = []
        self.value = 42

    def protocol_name(self) -> str:
        return self._protocol

    def validate_device_config(self, descriptor: DeviceDescriptor) -> None:
        if descriptor.name in self.invalid:
            raise ConfigError(self.invalid[descriptor.name])

    async def connect_device(self, descriptor: DeviceDescriptor) -> None:
        self.connect_calls.append(descriptor.name)
        if descriptor.name in self.hang_connect:
            await asyncio.Event().wait()
        self._next(self.connect_outcomes, descriptor.name)

    async def disconnect_device(self, device_name: str) -> None:
        self.disconnect_calls.append(device_name)
        if device_name in self.failing_disconnect:
            raise DisconnectError(f"{device_name}: socket already closed")

    async def read_device_data(self, device_name: str, descriptor: DeviceDescriptor) -> List[DataPoint]:
        self.read_calls.append(device_name)
        if device_name in self.hang_read:
            await asyncio.Event().wait()
        self._next(self.read_outcomes, device_name)
        now = datetime.now(timezone.utc)
        return [DataPoint.good(device_name, dp.name, self.value, now, unit=dp.unit or "")
                for dp in descriptor.data_points]

    @staticmethod
    def _next(outcomes: Dict[str, List[Optional[BaseException]]], name: str) -> None:
        queue = outcomes.get(name)
        if queue:
            outcome = queue.pop(0)
            if outcome is not None:
                raise outcome


class Recorder:
    """Collects every event an adapter delivers."""

    def __init__(self, adapter: ProtocolAdapter):
        self.events: List[AdapterEvent] = []
        adapter.subscribe(None, self.events.append)

    def kinds(self, device: Optional[str] = None):
        return [(e.event_type.value, e.device_name) for e in self.events
                if device is None or e.device_name in (device, None)]

    def of_type(self, kind: str) -> List[AdapterEvent]:
        return [e for e in self.events if e.event_type.value == kind]

    def clear(self) -> None:
        self.events.clear()


async def settle(adapter: ProtocolAdapter, ms: float = 0) -> None:
    """Advance virtual time and wait until every queued event has been delivered."""
    await adapter.scheduler.advance(ms)
    await adapter.events.drain()


@pytest.fixture
def plugin() -> FakePlugin:
    return FakePlugin()


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()
