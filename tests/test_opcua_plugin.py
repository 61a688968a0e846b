import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from fieldlink.core.exceptions import ConfigError, ConnectError, ReadError
from fieldlink.models.device_models import DataPointDescriptor, DeviceDescriptor
from fieldlink.protocols.opcua_plugin import OpcUaPlugin


def _device(url="opc.tcp://10.0.0.5:4840", **extra):
    return DeviceDescriptor(
        name="boiler",
        protocol="opcua",
        connection_params={"endpoint_url": url, **extra},
        data_points=[
            DataPointDescriptor("temp", unit="C", params={"node_id": "ns=2;s=Boiler.Temp"}),
            DataPointDescriptor("mode", params={"node_id": "ns=2;s=Boiler.Mode"}),
        ],
    )


def _client(values):
    client = MagicMock()
    client.connect = AsyncMock()
    client.disconnect = AsyncMock()
    nodes = {}
    for node_id, value in values.items():
        node = MagicMock()
        node.read_value = AsyncMock(return_value=value)
        nodes[node_id] = node
    client.get_node.side_effect = lambda node_id: nodes[node_id]
    return client


@pytest.mark.parametrize("device", [
    _device(url=None),
    _device(url="http://10.0.0.5"),
    DeviceDescriptor("b", "opcua", connection_params={"url": "opc.tcp://h:4840"},
                     data_points=[DataPointDescriptor("x")]),
])
def test_validation_rejects_bad_config(device):
    with pytest.raises(ConfigError):
        OpcUaPlugin().validate_device_config(device)


def test_validation_accepts_url_alias():
    device = DeviceDescriptor("b", "opcua", connection_params={"url": "opc.tcp://h:4840"})
    OpcUaPlugin().validate_device_config(device)


def test_connect_with_credentials_and_read():
    async def _run():
        client = _client({"ns=2;s=Boiler.Temp": 81.5, "ns=2;s=Boiler.Mode": "AUTO"})
        factory = MagicMock(return_value=client)
        plugin = OpcUaPlugin(client_factory=factory)
        device = _device(username="op", password="secret", timeout=2)

        await plugin.connect_device(device)
        factory.assert_called_once_with(url="opc.tcp://10.0.0.5:4840", timeout=2.0)
        client.set_user.assert_called_once_with("op")
        client.set_password.assert_called_once_with("secret")

        points = await plugin.read_device_data("boiler", device)
        assert [(p.point_name, p.value, p.unit) for p in points] == [("temp", 81.5, "C"), ("mode", "AUTO", "")]

        await plugin.disconnect_device("boiler")
        client.disconnect.assert_awaited_once()

    asyncio.run(_run())


def test_connect_failure_is_wrapped():
    async def _run():
        client = _client({})
        client.connect.side_effect = OSError("Connection refused")
        plugin = OpcUaPlugin(client_factory=MagicMock(return_value=client))
        with pytest.raises(ConnectError, match="Connection refused"):
            await plugin.connect_device(_device())

    asyncio.run(_run())


def test_read_errors():
    async def _run():
        plugin = OpcUaPlugin()
        with pytest.raises(ReadError, match="not open"):
            await plugin.read_device_data("boiler", _device())

        client = _client({"ns=2;s=Boiler.Temp": 1.0, "ns=2;s=Boiler.Mode": 2})
        client.get_node.side_effect = None
        client.get_node.return_value.read_value = AsyncMock(side_effect=asyncio.TimeoutError())
        plugin = OpcUaPlugin(client_factory=MagicMock(return_value=client))
        await plugin.connect_device(_device())
        with pytest.raises(ReadError, match="timeout"):
            await plugin.read_device_data("boiler", _device())

    asyncio.run(_run())
