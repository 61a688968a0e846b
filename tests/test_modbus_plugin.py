import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymodbus.exceptions import ConnectionException, ModbusException

from fieldlink.core.exceptions import ConfigError, ConnectError, ReadError
from fieldlink.models.device_models import DataPointDescriptor, DeviceDescriptor, Quality, QualityCode
from fieldlink.protocols.modbus_plugin import ModbusPlugin
from fieldlink.services.quality_tagger import classify_error


def _device(points=None, **connection):
    return DeviceDescriptor(
        name="pump",
        protocol="modbus",
        connection_params=connection or {"host": "10.0.0.2", "port": 5020, "unit_id": 3},
        data_points=points if points is not None else [
            DataPointDescriptor("flow", unit="m3/h", params={"address": 40001, "data_type": "float32"}),
            DataPointDescriptor("speed", scale=0.1, params={"address": 10, "function_code": 4}),
            DataPointDescriptor("running", params={"address": 0, "function_code": 1}),
        ],
    )


def _response(registers=None, bits=None, error=False):
    response = MagicMock()
    response.isError.return_value = error
    response.registers = registers or []
    response.bits = bits or []
    return response


def _client(connected=True):
    client = MagicMock()
    client.connect = AsyncMock(return_value=connected)
    client.connected = connected
    client.read_holding_registers = AsyncMock(return_value=_response([0x3FC0, 0x0000]))
    client.read_input_registers = AsyncMock(return_value=_response([1234]))
    client.read_coils = AsyncMock(return_value=_response(bits=[True, False]))
    return client


def test_validation_accepts_good_config():
    ModbusPlugin().validate_device_config(_device())


@pytest.mark.parametrize("device", [
    _device(port=502),
    _device(host="h", port=70000),
    _device(host="h", unit_id=300),
    _device([DataPointDescriptor("x", params={})], host="h"),
    _device([DataPointDescriptor("x", params={"address": 1, "function_code": 6})], host="h"),
    _device([DataPointDescriptor("x", params={"address": 1, "data_type": "float64"})], host="h"),
])
def test_validation_rejects_bad_config(device):
    with pytest.raises(ConfigError):
        ModbusPlugin().validate_device_config(device)


def test_connect_read_disconnect():
    async def _run():
        client = _client()
        factory = MagicMock(return_value=client)
        plugin = ModbusPlugin(client_factory=factory)
        device = _device()

        await plugin.connect_device(device)
        factory.assert_called_once_with(host="10.0.0.2", port=5020, timeout=3.0)

        points = await plugin.read_device_data("pump", device)
        assert [(p.point_name, p.value) for p in points] == [
            ("flow", 1.5), ("speed", pytest.approx(123.4)), ("running", True)]
        assert all(p.quality is Quality.GOOD for p in points)
        assert points[0].unit == "m3/h"
        client.read_holding_registers.assert_awaited_once_with(0, count=2, device_id=3)
        client.read_input_registers.assert_awaited_once_with(10, count=1, device_id=3)

        await plugin.disconnect_device("pump")
        client.close.assert_called_once()
        await plugin.disconnect_device("pump")

    asyncio.run(_run())


def test_refused_connection_raises_connect_error():
    async def _run():
        client = _client(connected=False)
        plugin = ModbusPlugin(client_factory=MagicMock(return_value=client))
        with pytest.raises(ConnectError, match="refused"):
            await plugin.connect_device(_device())
        client.close.assert_called_once()

    asyncio.run(_run())


def test_read_without_session_is_offline():
    async def _run():
        with pytest.raises(ReadError, match="not open"):
            await ModbusPlugin().read_device_data("pump", _device())

    asyncio.run(_run())


def test_protocol_errors_become_read_errors():
    async def _run():
        client = _client()
        plugin = ModbusPlugin(client_factory=MagicMock(return_value=client))
        await plugin.connect_device(_device())

        client.read_holding_registers.return_value = _response(error=True)
        with pytest.raises(ReadError, match="read error"):
            await plugin.read_device_data("pump", _device())

        client.read_holding_registers.side_effect = ModbusException("Request timeout")
        with pytest.raises(ReadError, match="timeout"):
            await plugin.read_device_data("pump", _device())

        client.read_holding_registers.side_effect = ConnectionException("socket closed")
        with pytest.raises(ReadError, match="connection lost") as info:
            await plugin.read_device_data("pump", _device())
        assert classify_error(info.value) is QualityCode.CONNECTION_ERROR

    asyncio.run(_run())


@pytest.mark.parametrize("registers, data_type, expected", [
    ([0xFFFF], "int16", -1),
    ([0xFFFF], "uint16", 65535),
    ([0x0001, 0x0000], "uint32", 65536),
    ([0xFFFF, 0xFFFE], "int32", -2),
    ([0x4048, 0xF5C3], "float32", pytest.approx(3.14, rel=1e-6)),
    ([1], "bool", True),
])
def test_decode(registers, data_type, expected):
    assert ModbusPlugin.decode(registers, data_type) == expected
