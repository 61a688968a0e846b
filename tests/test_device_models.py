import json
from datetime import datetime, timezone

import pytest

from fieldlink.core.exceptions import ConfigError
from fieldlink.models.device_models import (
    DataPoint,
    DataPointDescriptor,
    DeviceDescriptor,
    DeviceStatus,
    Quality,
    QualityCode,
)

NOW = datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc)


def test_value_is_none_exactly_when_quality_is_bad():
    DataPoint("d", "p", 0, "", NOW)
    DataPoint("d", "p", None, "", NOW, Quality.BAD, QualityCode.TIMEOUT)
    with pytest.raises(ValueError):
        DataPoint("d", "p", None, "", NOW)
    with pytest.raises(ValueError):
        DataPoint("d", "p", 1.0, "", NOW, Quality.BAD, QualityCode.TIMEOUT)


def test_good_and_bad_constructors():
    good = DataPoint.good("d", "p", False, NOW, unit="bar")
    assert good.quality is Quality.GOOD and good.quality_code is QualityCode.NONE
    assert good.value is False
    bad = DataPoint.bad("d", "p", QualityCode.DEVICE_OFFLINE, NOW)
    assert bad.to_dict() == {
        "deviceName": "d", "pointName": "p", "value": None, "unit": "",
        "timestamp": "2024-03-01T08:30:00+00:00", "quality": "BAD", "qualityCode": "DEVICE_OFFLINE",
    }


@pytest.mark.parametrize("interval", [0, -5, 1.5, "1000", True])
def test_invalid_poll_interval(interval):
    with pytest.raises(ConfigError):
        DeviceDescriptor("d", "modbus", poll_interval_ms=interval)


def test_empty_name_is_invalid():
    with pytest.raises(ConfigError):
        DeviceDescriptor("", "modbus")


def test_data_points_become_a_tuple():
    desc = DeviceDescriptor("d", "modbus", data_points=[DataPointDescriptor("a")])
    assert desc.data_points == (DataPointDescriptor("a"),)
    assert desc.point_names == ("a",)


def test_from_row_accepts_camel_case_and_json_columns():
    row = {
        "name": "boiler",
        "protocol": "OPC-UA",
        "enabled": "yes",
        "pollIntervalMs": "2500",
        "connection": json.dumps({"endpoint_url": "opc.tcp://10.0.0.5:4840"}),
        "dataPoints": json.dumps([
            {"signal": "temp", "unit": "C", "scale": "0.1", "node_id": "ns=2;s=T"},
            {"tag": "level"},
            {},
        ]),
        "metadata": '{"site": "north"}',
    }
    desc = DeviceDescriptor.from_row(row)
    assert desc.enabled is True
    assert desc.poll_interval_ms == 2500
    assert desc.connection_params == {"endpoint_url": "opc.tcp://10.0.0.5:4840"}
    assert desc.point_names == ("temp", "level", "unknown")
    assert desc.data_points[0].scale == 0.1
    assert desc.data_points[0].params == {"node_id": "ns=2;s=T"}
    assert desc.metadata == {"site": "north"}


def test_from_row_defaults_and_errors():
    desc = DeviceDescriptor.from_row({"name": "x", "protocol": "modbus"})
    assert desc.poll_interval_ms == 1000
    assert desc.enabled is True
    assert desc.data_points == ()
    with pytest.raises(ConfigError, match="protocol"):
        DeviceDescriptor.from_row({"name": "x"})
    with pytest.raises(ConfigError, match="invalid JSON"):
        DeviceDescriptor.from_row({"name": "x", "protocol": "modbus", "connection": "{oops"})


def test_apply_scaling():
    dp = DataPointDescriptor("t", scale=0.1, offset=-40)
    assert dp.apply_scaling(500) == pytest.approx(10.0)
    assert dp.apply_scaling("n/a") == "n/a"
    assert dp.apply_scaling(True) is True
    assert DataPointDescriptor("raw").apply_scaling(7) == 7


def test_status_to_dict():
    status = DeviceStatus("plc", connected=True, last_poll_at=NOW, communication_quality="good")
    data = status.to_dict()
    assert data["deviceName"] == "plc"
    assert data["lastPollAt"] == NOW.isoformat()
    assert data["lastSeenAt"] is None
    assert data["pollSuccessRate"] == 1.0
