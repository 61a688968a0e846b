"""Protocol plugin implementations."""

from .base_protocol_plugin import (
    ProtocolPlugin,
    normalize_protocol,
)

from .modbus_plugin import ModbusPlugin
from .opcua_plugin import OpcUaPlugin
from .protocol_factory import ProtocolFactory

__all__ = [
    # Base classes
    'ProtocolPlugin',
    'normalize_protocol',

    # Implementations
    'ModbusPlugin',
    'OpcUaPlugin',

    # Factory
    'ProtocolFactory'
]
