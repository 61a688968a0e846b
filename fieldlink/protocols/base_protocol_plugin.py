"""
Industrial Protocol Plugin Contract
Abstract capability every protocol implementation provides to the adapter
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List
import logging

from fieldlink.core.exceptions import ConfigError
from fieldlink.models.device_models import DataPoint, DeviceDescriptor


class ProtocolPlugin(ABC):
    """
    Abstract base class for protocol plugins.

    The adapter only ever talks to this interface; wire encoding, sessions
    and library quirks stay inside the concrete plugin. Implementations
    should translate library exceptions into ``ConnectError``, ``ReadError``
    and ``DisconnectError`` (any other exception raised from connect or read
    is still treated as the corresponding failure).
    """

    def __init__(self, options: Dict[str, Any] = None):
        self.options = options or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    # Abstract methods that subclasses must implement (Strategy pattern)
    @abstractmethod
    def protocol_name(self) -> str:
        """Protocol tag served by this plugin, e.g. ``"modbus"``."""

    @abstractmethod
    async def connect_device(self, descriptor: DeviceDescriptor) -> None:
        """Open the device session. Raises ``ConnectError``."""

    @abstractmethod
    async def disconnect_device(self, device_name: str) -> None:
        """Release the device session. Raises ``DisconnectError``."""

    @abstractmethod
    async def read_device_data(self, device_name: str, descriptor: DeviceDescriptor) -> List[DataPoint]:
        """Read every configured point once. Raises ``ReadError``."""

    def validate_device_config(self, descriptor: DeviceDescriptor) -> None:
        """Check protocol-specific parameters before the first connect. Raises ``ConfigError``."""
        if not descriptor.data_points:
            self.logger.warning(f"No data points configured for device {descriptor.name}")

    # Common helpers
    @staticmethod
    def require(descriptor: DeviceDescriptor, *keys: str) -> None:
        missing = [k for k in keys if descriptor.connection_params.get(k) in (None, "")]
        if missing:
            raise ConfigError(f"{descriptor.name}: missing connection parameter(s): {', '.join(missing)}")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(protocol={self.protocol_name()!r})"


def normalize_protocol(tag: str) -> str:
    """Case-, dash- and underscore-insensitive protocol key (``"OPC-UA"`` -> ``"opcua"``)."""
    return str(tag or "").strip().lower().replace("-", "").replace("_", "")
