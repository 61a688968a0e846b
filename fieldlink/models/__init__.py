"""Data models and domain objects."""

from .device_models import (
    ConnectionState,
    DataPoint,
    DataPointDescriptor,
    DeviceDescriptor,
    DeviceStatus,
    Quality,
    QualityCode,
)

__all__ = [
    # Configuration
    'DeviceDescriptor',
    'DataPointDescriptor',

    # Runtime state
    'ConnectionState',
    'DeviceStatus',

    # Produced data
    'DataPoint',
    'Quality',
    'QualityCode',
]
