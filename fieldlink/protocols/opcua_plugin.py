"""
OPC UA Protocol Plugin
One asyncua client session per device, configured nodes read on every poll
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from asyncua import Client, ua

from fieldlink.core.exceptions import ConfigError, ConnectError, DisconnectError, ReadError
from fieldlink.models.device_models import DataPoint, DeviceDescriptor
from fieldlink.protocols.base_protocol_plugin import ProtocolPlugin

_SCALARS = (bool, int, float, str)


class OpcUaPlugin(ProtocolPlugin):
    """
    OPC UA plugin.

    Connection params: ``endpoint_url`` (or ``url``, must start with
    ``opc.tcp://``), ``timeout`` in seconds (10), ``session_timeout`` in ms
    (60000), optional ``username``/``password`` and
    ``security_policy``/``security_mode`` with certificate paths. Each data
    point needs a ``node_id`` param such as ``"ns=2;s=Boiler.Temperature"``.
    """

    def __init__(self, options: Dict[str, Any] = None,
                 client_factory: Optional[Callable[..., Any]] = None):
        super().__init__(options)
        self._client_factory = client_factory or Client
        self._clients: Dict[str, Any] = {}

    def protocol_name(self) -> str:
        return "opcua"

    @staticmethod
    def _endpoint(descriptor: DeviceDescriptor) -> Optional[str]:
        params = descriptor.connection_params
        return params.get("endpoint_url", params.get("url"))

    def validate_device_config(self, descriptor: DeviceDescriptor) -> None:
        """Validate OPC UA-specific configuration."""
        super().validate_device_config(descriptor)
        endpoint = self._endpoint(descriptor)
        if not endpoint:
            raise ConfigError(f"{descriptor.name}: OPC UA endpoint URL is required")

        if not str(endpoint).startswith("opc.tcp://"):
            raise ConfigError(f"{descriptor.name}: OPC UA endpoint URL must start with 'opc.tcp://'")

        for dp in descriptor.data_points:
            if not dp.params.get("node_id"):
                raise ConfigError(f"{descriptor.name}/{dp.name}: OPC UA node_id is required")

    async def connect_device(self, descriptor: DeviceDescriptor) -> None:
        """Establish a session with the device's OPC UA server."""
        params   = descriptor.connection_params
        endpoint = self._endpoint(descriptor)
        timeout  = float(params.get("timeout", 10))

        try:
            client = self._client_factory(url=endpoint, timeout=timeout)
            client.session_timeout = params.get("session_timeout", 60000)

            # Configure security if specified
            if params.get("security_policy") and params.get("security_mode"):
                await client.set_security_string(
                    f"{params['security_policy']},{params['security_mode']},"
                    f"{params.get('certificate_path', '')},{params.get('private_key_path', '')}"
                )

            # Set authentication if provided
            if params.get("username") and params.get("password"):
                client.set_user(params["username"])
                client.set_password(params["password"])

            self.logger.info(f"Connecting to OPC UA server at {endpoint}")
            await asyncio.wait_for(client.connect(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ConnectError(f"OPC UA connection timeout after {timeout:g}s ({endpoint})") from exc
        except Exception as exc:
            raise ConnectError(f"OPC UA connection to {endpoint} failed: {exc}") from exc

        self._clients[descriptor.name] = client
        self.logger.info(f"Successfully connected to OPC UA server for {descriptor.name}")

    async def disconnect_device(self, device_name: str) -> None:
        client = self._clients.pop(device_name, None)
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception as exc:
            raise DisconnectError(f"Error during OPC UA disconnection of {device_name}: {exc}") from exc
        self.logger.info(f"Disconnected from OPC UA server for {device_name}")

    async def read_device_data(self, device_name: str, descriptor: DeviceDescriptor) -> List[DataPoint]:
        client = self._clients.get(device_name)
        if client is None:
            raise ReadError(f"{device_name}: OPC UA session not open")

        now = datetime.now(timezone.utc)
        points = []
        for dp in descriptor.data_points:
            node_id = dp.params["node_id"]
            try:
                value = await client.get_node(node_id).read_value()
            except asyncio.TimeoutError as exc:
                raise ReadError(f"{device_name}: OPC UA read timeout on {node_id}") from exc
            except ua.UaStatusCodeError as exc:
                raise ReadError(f"{device_name}: OPC UA read of {node_id} failed: {exc}") from exc
            except (ConnectionError, OSError) as exc:
                raise ReadError(f"{device_name}: OPC UA connection lost: {exc}") from exc

            if value is not None and not isinstance(value, _SCALARS):
                value = str(value)
            if value is None:
                raise ReadError(f"{device_name}: OPC UA node {node_id} returned no value")
            points.append(DataPoint.good(device_name, dp.name, dp.apply_scaling(value), now, unit=dp.unit or ""))
        return points
