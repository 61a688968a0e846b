"""Immutable-per-run set of device descriptors."""
from __future__ import annotations
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from fieldlink.core.exceptions import ConfigError
from fieldlink.models.device_models import DeviceDescriptor


class DeviceRegistry:
    """Ordered, name-keyed view over the descriptors an adapter manages."""

    def __init__(self, descriptors: Iterable[DeviceDescriptor] = ()):
        self._ordered: Tuple[DeviceDescriptor, ...] = tuple(descriptors)
        self._by_name: Dict[str, DeviceDescriptor] = {}
        for desc in self._ordered:
            if desc.name in self._by_name:
                raise ConfigError(f"duplicate device name: {desc.name!r}")
            self._by_name[desc.name] = desc

    def get(self, name: str) -> Optional[DeviceDescriptor]:
        return self._by_name.get(name)

    def all(self) -> Tuple[DeviceDescriptor, ...]:
        return self._ordered

    def names(self) -> List[str]:
        return [d.name for d in self._ordered]

    def enabled(self) -> List[DeviceDescriptor]:
        return [d for d in self._ordered if d.enabled]

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self) -> Iterator[DeviceDescriptor]:
        return iter(self._ordered)

    def __repr__(self) -> str:
        return f"DeviceRegistry({self.names()!r})"
