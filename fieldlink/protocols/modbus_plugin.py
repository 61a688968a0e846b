"""
Modbus TCP Protocol Plugin
One AsyncModbusTcpClient session per device, registers read on every poll
"""

from datetime import datetime, timezone
from struct import pack, unpack
from typing import Any, Callable, Dict, List, Optional

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException

from fieldlink.core.exceptions import ConfigError, ConnectError, DisconnectError, ReadError
from fieldlink.models.device_models import DataPoint, DataPointDescriptor, DeviceDescriptor
from fieldlink.protocols.base_protocol_plugin import ProtocolPlugin

# function code -> (client method, value kind)
FUNCTION_CODES = {
    1: ("read_coils",              "bits"),
    2: ("read_discrete_inputs",    "bits"),
    3: ("read_holding_registers",  "registers"),
    4: ("read_input_registers",    "registers"),
}

# data type -> register count
DATA_TYPES = {
    "bool":    1,
    "uint16":  1,
    "int16":   1,
    "uint32":  2,
    "int32":   2,
    "float32": 2,
}


class ModbusPlugin(ProtocolPlugin):
    """
    Modbus TCP plugin.

    Connection params: ``host`` (required), ``port`` (502), ``unit_id`` (1),
    ``timeout`` in seconds (3). Data point params: ``address`` (required,
    40001-style addresses are normalised), ``function_code`` (3),
    ``data_type`` (uint16).
    """

    def __init__(self, options: Dict[str, Any] = None,
                 client_factory: Optional[Callable[..., Any]] = None):
        super().__init__(options)
        self._client_factory = client_factory or AsyncModbusTcpClient
        self._clients: Dict[str, Any] = {}
        self._units: Dict[str, int] = {}

    def protocol_name(self) -> str:
        return "modbus"

    # ------------------------------------------------------------------ #
    #  Validation
    # ------------------------------------------------------------------ #
    def validate_device_config(self, descriptor: DeviceDescriptor) -> None:
        super().validate_device_config(descriptor)
        self.require(descriptor, "host")
        params = descriptor.connection_params

        port = params.get("port", 502)
        if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
            raise ConfigError(f"{descriptor.name}: Modbus port must be a valid port number, got {port!r}")

        unit_id = params.get("unit_id", 1)
        if not isinstance(unit_id, int) or isinstance(unit_id, bool) or not 0 <= unit_id <= 247:
            raise ConfigError(f"{descriptor.name}: Modbus unit_id must be within 0..247, got {unit_id!r}")

        for dp in descriptor.data_points:
            address = dp.params.get("address")
            if not isinstance(address, int) or isinstance(address, bool) or address < 0:
                raise ConfigError(f"{descriptor.name}/{dp.name}: register address must be a non-negative integer")
            fc = dp.params.get("function_code", 3)
            if fc not in FUNCTION_CODES:
                raise ConfigError(f"{descriptor.name}/{dp.name}: unsupported function code {fc!r}")
            data_type = dp.params.get("data_type", "uint16")
            if data_type not in DATA_TYPES:
                raise ConfigError(f"{descriptor.name}/{dp.name}: unsupported data type {data_type!r}")

    # ------------------------------------------------------------------ #
    #  Session
    # ------------------------------------------------------------------ #
    async def connect_device(self, descriptor: DeviceDescriptor) -> None:
        params = descriptor.connection_params
        host = params["host"]
        port = int(params.get("port", 502))

        # a stale session from a failed poll is replaced
        stale = self._clients.pop(descriptor.name, None)
        if stale is not None:
            stale.close()

        try:
            client = self._client_factory(host=host, port=port, timeout=float(params.get("timeout", 3)))
            connected = await client.connect()
        except Exception as exc:
            raise ConnectError(f"Modbus connection to {host}:{port} failed: {exc}") from exc

        if not connected:
            client.close()
            raise ConnectError(f"Modbus connection refused by {host}:{port}")

        self._clients[descriptor.name] = client
        self._units[descriptor.name] = int(params.get("unit_id", 1))
        self.logger.info(f"Connected to Modbus device {descriptor.name} at {host}:{port}")

    async def disconnect_device(self, device_name: str) -> None:
        client = self._clients.pop(device_name, None)
        self._units.pop(device_name, None)
        if client is None:
            return
        try:
            client.close()
        except Exception as exc:
            raise DisconnectError(f"Modbus disconnect of {device_name} failed: {exc}") from exc
        self.logger.info(f"Disconnected from Modbus device {device_name}")

    # ------------------------------------------------------------------ #
    #  Polling
    # ------------------------------------------------------------------ #
    async def read_device_data(self, device_name: str, descriptor: DeviceDescriptor) -> List[DataPoint]:
        client = self._clients.get(device_name)
        if client is None or not client.connected:
            raise ReadError(f"{device_name}: Modbus port not open")

        unit_id = self._units.get(device_name, 1)
        now = datetime.now(timezone.utc)
        points = []
        for dp in descriptor.data_points:
            raw = await self._read_point(client, unit_id, device_name, dp)
            points.append(DataPoint.good(device_name, dp.name, dp.apply_scaling(raw), now, unit=dp.unit or ""))
        return points

    async def _read_point(self, client: Any, unit_id: int, device_name: str, dp: DataPointDescriptor) -> Any:
        address   = self._normalize_address(int(dp.params["address"]))
        fc        = dp.params.get("function_code", 3)
        data_type = dp.params.get("data_type", "uint16")
        method, kind = FUNCTION_CODES[fc]

        try:
            response = await getattr(client, method)(address, count=DATA_TYPES[data_type], device_id=unit_id)
        except ConnectionException as exc:
            raise ReadError(f"{device_name}: Modbus connection lost reading {address}: {exc}") from exc
        except ModbusException as exc:
            raise ReadError(f"{device_name}: Modbus read at {address} failed: {exc}") from exc

        if response.isError():
            raise ReadError(f"{device_name}: Modbus read error at {address}: {response}")

        if kind == "bits":
            return bool(response.bits[0])
        return self.decode(response.registers, data_type)

    # ------------------------------------------------------------------ #
    #  Decoding
    # ------------------------------------------------------------------ #
    @staticmethod
    def _normalize_address(address: int) -> int:
        """Normalize Modbus address to zero-based register offset."""
        if address >= 40001:
            return address - 40001
        if address >= 30001:
            return address - 30001
        return address

    @staticmethod
    def decode(registers: List[int], data_type: str) -> Any:
        """Decode big-endian 16-bit registers into a Python value."""
        if data_type == "bool":
            return bool(registers[0])
        if data_type == "uint16":
            return registers[0]
        if data_type == "int16":
            return unpack(">h", pack(">H", registers[0]))[0]
        packed = pack(">HH", registers[0], registers[1])
        if data_type == "uint32":
            return unpack(">I", packed)[0]
        if data_type == "int32":
            return unpack(">i", packed)[0]
        if data_type == "float32":
            return unpack(">f", packed)[0]
        raise ValueError(f"unsupported data type: {data_type}")
