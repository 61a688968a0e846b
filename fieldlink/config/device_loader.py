"""Device descriptor loading from a local JSON file."""
from __future__ import annotations
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Union
import json
import logging

from fieldlink.core.exceptions import ConfigError
from fieldlink.models.device_models import DeviceDescriptor
from fieldlink.protocols.base_protocol_plugin import normalize_protocol


class DeviceConfigLoader:
    """
    Repository for the materialised device list.

    Accepts ``{"devices": [...]}`` or a bare list of device rows; each row
    goes through ``DeviceDescriptor.from_row`` so camelCase keys and JSON
    text columns exported from a database are understood.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self.log = logging.getLogger(self.__class__.__name__)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[DeviceDescriptor]:
        """Load and validate every device row."""
        if not self._path.exists():
            raise ConfigError(f"Device file not found: {self._path}")

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in device file: {exc}") from exc

        rows = self._rows(raw)
        devices = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                raise ConfigError(f"Device entry #{index} must be an object, got {type(row).__name__}")
            devices.append(DeviceDescriptor.from_row(row))

        self.log.info("loaded %d device(s) from %s", len(devices), self._path)
        return devices

    def group_by_protocol(self) -> Dict[str, List[DeviceDescriptor]]:
        """Load and bucket descriptors by normalised protocol tag, keeping file order."""
        groups: Dict[str, List[DeviceDescriptor]] = defaultdict(list)
        for desc in self.load():
            groups[normalize_protocol(desc.protocol)].append(desc)
        return dict(groups)

    @staticmethod
    def _rows(raw: Any) -> List[Any]:
        if isinstance(raw, list):
            return raw
        if isinstance(raw, dict) and isinstance(raw.get("devices"), list):
            return raw["devices"]
        raise ConfigError("Device file must be a list or an object with a 'devices' list")
