"""Adapter composition root and per-device connection ownership."""

from .device_connection import DeviceConnection
from .adapter import ProtocolAdapter

__all__ = [
    'DeviceConnection',
    'ProtocolAdapter',
]
