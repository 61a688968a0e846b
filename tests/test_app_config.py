import json
import logging
from types import SimpleNamespace

import pytest

from fieldlink.config.app_config import AdapterSettings, settings
from fieldlink.config.device_loader import DeviceConfigLoader
from fieldlink.config.logging_config import configure
from fieldlink.main import build_adapters


def test_defaults():
    assert settings.BACKOFF_BASE_MS == 1000.0
    assert settings.BACKOFF_MULTIPLIER == 2.0
    assert settings.BACKOFF_MAX_MS == 60000.0
    assert settings.EVENT_QUEUE_SIZE == 1000
    default = AdapterSettings()
    assert default.backoff.sequence(3) == [1000.0, 2000.0, 4000.0]
    assert default.operation_timeout_ms is None


def test_from_env_source():
    source = SimpleNamespace(BACKOFF_BASE_MS=200, BACKOFF_MULTIPLIER=3, BACKOFF_MAX_MS=1000,
                             BACKOFF_JITTER=0.1, OPERATION_TIMEOUT_MS=1500.0, EVENT_QUEUE_SIZE="50")
    adapter_settings = AdapterSettings.from_env(source)
    assert adapter_settings.backoff.nominal_delay(2) == 600.0
    assert adapter_settings.backoff.jitter_fraction == 0.1
    assert adapter_settings.operation_timeout_ms == 1500.0
    assert adapter_settings.event_queue_size == 50


@pytest.mark.parametrize("kwargs", [{"operation_timeout_ms": 0}, {"event_queue_size": 0}])
def test_invalid_adapter_settings(kwargs):
    with pytest.raises(ValueError):
        AdapterSettings(**kwargs)


def test_logging_preset_sets_level():
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    try:
        configure("debug")
        assert root.level == logging.DEBUG
        assert logging.getLogger("pymodbus").level == logging.WARNING
        configure("WARNING")
        assert root.level == logging.WARNING
    finally:
        root.handlers[:] = handlers
        root.setLevel(level)


def test_build_adapters_skips_unknown_protocols(tmp_path, caplog):
    path = tmp_path / "devices.json"
    path.write_text(json.dumps([
        {"name": "pump", "protocol": "modbus", "connection": {"host": "10.0.0.2"}},
        {"name": "boiler", "protocol": "opc-ua", "connection": {"endpoint_url": "opc.tcp://h:4840"}},
        {"name": "axle", "protocol": "can", "connection": {"channel": "can0"}},
    ]), encoding="utf-8")

    adapters = build_adapters(DeviceConfigLoader(path))
    assert sorted(a.protocol_name for a in adapters) == ["modbus", "opcua"]
    assert "No plugin registered for protocol: can" in caplog.text
