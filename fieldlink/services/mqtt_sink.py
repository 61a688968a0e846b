"""
MQTT Data Sink
Forwards data points and device status from adapter events to an MQTT broker
"""

import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from fieldlink.core.patterns.observer import AdapterEvent, AdapterEventType

_STATUS_EVENTS = (
    AdapterEventType.DEVICE_CONNECTED,
    AdapterEventType.DEVICE_DISCONNECTED,
    AdapterEventType.DEVICE_ERROR,
)


class MqttDataSink:
    """
    Event Surface subscriber publishing to MQTT.

    Topics:
    - ``{prefix}/{device}/{point}``: one JSON message per data point
    - ``{prefix}/{device}/status``: retained device status on lifecycle events

    The paho network loop runs in its own thread; ``publish`` only queues,
    so handlers never block the adapter's dispatcher.
    """

    def __init__(self,
                 host: str = "localhost",
                 port: int = 1883,
                 topic_prefix: str = "fieldlink",
                 client_id: Optional[str] = None,
                 qos: int = 0,
                 keepalive: int = 60,
                 client_factory: Optional[Callable[[], Any]] = None):
        self.host         = host
        self.port         = port
        self.topic_prefix = topic_prefix.rstrip("/")
        self.client_id    = client_id or f"fieldlink_{int(datetime.now().timestamp())}"
        self.qos          = qos
        self.keepalive    = keepalive
        self._client_factory = client_factory or self._default_client
        self.client: Optional[Any] = None
        self._unsubscribers: List[Callable[[], None]] = []
        self.published = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    def _default_client(self) -> mqtt.Client:
        return mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=self.client_id)

    # ------------------------------------------------------------------ #
    #  Lifecycle
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """Connect in the background; paho reconnects on its own afterwards."""
        if self.client is not None:
            return
        self.client = self._client_factory()
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.logger.info(f"Connecting to MQTT broker at {self.host}:{self.port}")
        self.client.connect_async(self.host, self.port, keepalive=self.keepalive)
        self.client.loop_start()

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self.client is None:
            return
        try:
            self.client.disconnect()
            self.client.loop_stop()
        except Exception as e:
            self.logger.error(f"Error during MQTT disconnection: {e}")
        self.client = None
        self.logger.info("Disconnected from MQTT broker")

    def attach(self, adapter) -> None:
        """Subscribe to an adapter's data and lifecycle events."""
        self._unsubscribers.append(adapter.subscribe(AdapterEventType.DATA, self.on_data))
        for event_type in _STATUS_EVENTS:
            self._unsubscribers.append(
                adapter.subscribe(event_type, lambda event, a=adapter: self.on_status(a, event))
            )

    # ------------------------------------------------------------------ #
    #  Handlers
    # ------------------------------------------------------------------ #
    def on_data(self, event: AdapterEvent) -> None:
        for point in event.data_points:
            self._publish(self.point_topic(point.device_name, point.point_name), point.to_dict())

    def on_status(self, adapter, event: AdapterEvent) -> None:
        status = adapter.get_device_status(event.device_name)
        if status is None:
            return
        payload = status.to_dict()
        payload["event"] = event.event_type.value
        self._publish(self.status_topic(event.device_name), payload, retain=True)

    # ------------------------------------------------------------------ #
    #  Topics & publishing
    # ------------------------------------------------------------------ #
    def point_topic(self, device_name: str, point_name: str) -> str:
        return f"{self.topic_prefix}/{_segment(device_name)}/{_segment(point_name)}"

    def status_topic(self, device_name: str) -> str:
        return f"{self.topic_prefix}/{_segment(device_name)}/status"

    def _publish(self, topic: str, payload: Dict[str, Any], retain: bool = False) -> None:
        if self.client is None:
            self.logger.debug(f"MQTT sink not started, dropping message for {topic}")
            return
        info = self.client.publish(topic, json.dumps(payload), qos=self.qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self.logger.warning(f"MQTT publish to {topic} failed with code: {info.rc}")
            return
        self.published += 1

    # ------------------------------------------------------------------ #
    #  paho callbacks (network thread)
    # ------------------------------------------------------------------ #
    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self.logger.error(f"MQTT connection failed: {reason_code}")
        else:
            self.logger.info("Successfully connected to MQTT broker")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code != 0:
            self.logger.warning(f"Unexpected MQTT disconnection: {reason_code}")


def _segment(value: str) -> str:
    """Topic level with MQTT wildcards and separators removed."""
    return str(value).replace("/", "_").replace("+", "_").replace("#", "_").strip() or "_"
