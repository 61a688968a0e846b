#!/usr/bin/env python3
import asyncio, logging, signal, sys
from typing import List

from fieldlink.config.app_config import AdapterSettings, settings
from fieldlink.config.device_loader import DeviceConfigLoader
from fieldlink.config.logging_config import configure
from fieldlink.core.exceptions import ConfigError
from fieldlink.core.patterns.observer import AdapterEvent, AdapterEventType
from fieldlink.orchestration.adapter import ProtocolAdapter
from fieldlink.protocols.protocol_factory import ProtocolFactory
from fieldlink.services.mqtt_sink import MqttDataSink

log = logging.getLogger("fieldlink")


def log_event(event: AdapterEvent):
    if event.event_type is AdapterEventType.DEVICE_ERROR:
        log.warning("%s: %s", event.device_name, event.error)
    elif event.event_type is AdapterEventType.DATA:
        log.debug("%s: %s", event.device_name,
                  ", ".join(f"{p.point_name}={p.value} [{p.quality.value}]" for p in event.data_points))
    elif event.event_type is not AdapterEventType.DATA_RECEIVED:
        log.info("%s %s", event.event_type.value, event.device_name or "")


def build_adapters(loader: DeviceConfigLoader) -> List[ProtocolAdapter]:
    adapter_settings = AdapterSettings.from_env()
    adapters = []
    for protocol, devices in loader.group_by_protocol().items():
        try:
            plugin = ProtocolFactory.create(protocol)
        except ConfigError as e:
            log.error("%s; skipping %d device(s)", e, len(devices))
            continue
        adapter = ProtocolAdapter(plugin, devices, adapter_settings)
        adapter.subscribe(None, log_event)
        adapters.append(adapter)
    return adapters


async def async_main():
    configure()
    adapters = build_adapters(DeviceConfigLoader(settings.DEVICES_FILE))
    if not adapters:
        log.error("no adapters to run (check %s)", settings.DEVICES_FILE)
        return

    sink = None
    if settings.MQTT_ENABLED:
        sink = MqttDataSink(settings.MQTT_HOST, settings.MQTT_PORT, settings.MQTT_TOPIC_PREFIX)
        sink.start()
        for adapter in adapters:
            sink.attach(adapter)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:            # Windows: KeyboardInterrupt still ends the run
            pass

    try:
        for adapter in adapters:
            await adapter.start()
        log.info("fieldlink ready (%d adapter(s))", len(adapters))
        # keep process alive
        await stop.wait()
    finally:
        await asyncio.gather(*(a.stop() for a in adapters), return_exceptions=True)
        if sink is not None:
            sink.stop()


def run():
    try:
        asyncio.run(async_main())
    except ConfigError as e:
        sys.exit(f"configuration error: {e}")
    except KeyboardInterrupt:
        sys.exit("graceful shutdown")


if __name__ == "__main__":
    run()
