import pytest
from conftest import make_device

from fieldlink.core.exceptions import ConfigError
from fieldlink.services.registry import DeviceRegistry


def test_lookup_and_order():
    devices = [make_device("b"), make_device("a"), make_device("c", enabled=False)]
    registry = DeviceRegistry(devices)

    assert registry.all() == tuple(devices)
    assert registry.names() == ["b", "a", "c"]
    assert registry.get("a") is devices[1]
    assert registry.get("missing") is None
    assert [d.name for d in registry.enabled()] == ["b", "a"]
    assert len(registry) == 3
    assert "c" in registry and "z" not in registry
    assert [d.name for d in registry] == ["b", "a", "c"]


def test_duplicate_names_raise():
    with pytest.raises(ConfigError, match="duplicate device name"):
        DeviceRegistry([make_device("x"), make_device("x", protocol="opcua")])


def test_empty_registry():
    registry = DeviceRegistry()
    assert registry.all() == ()
    assert registry.enabled() == []
