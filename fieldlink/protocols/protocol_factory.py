from typing import Any, Dict, List, Type
import logging

from fieldlink.core.exceptions import ConfigError
from fieldlink.protocols.base_protocol_plugin import ProtocolPlugin, normalize_protocol
from fieldlink.protocols.modbus_plugin import ModbusPlugin
from fieldlink.protocols.opcua_plugin import OpcUaPlugin

log = logging.getLogger("ProtocolFactory")


class ProtocolFactory:

    _registry: Dict[str, Type[ProtocolPlugin]] = {
        "modbus": ModbusPlugin,
        "opcua":  OpcUaPlugin,
        # CAN and others are added through register()
    }

    @classmethod
    def register(cls, protocol: str, plugin_cls: Type[ProtocolPlugin]) -> None:
        """Make ``plugin_cls`` available under ``protocol`` (case, ``-`` and ``_`` ignored)."""
        if not issubclass(plugin_cls, ProtocolPlugin):
            raise TypeError(f"{plugin_cls!r} is not a ProtocolPlugin")
        cls._registry[normalize_protocol(protocol)] = plugin_cls
        log.debug("registered %s for protocol %s", plugin_cls.__name__, protocol)

    @classmethod
    def supported(cls) -> List[str]:
        return sorted(cls._registry)

    @classmethod
    def create(cls, protocol: str, options: Dict[str, Any] = None) -> ProtocolPlugin:
        """
        Create a protocol plugin.

        Args:
            protocol (str): 'modbus', 'OPC-UA', etc.
            options (dict): Plugin-wide options (can be empty)

        Returns:
            ProtocolPlugin: Plugin instance serving every device of that protocol
        """
        handler = cls._registry.get(normalize_protocol(protocol))
        if not handler:
            raise ConfigError(f"No plugin registered for protocol: {protocol}")
        return handler(options or {})
