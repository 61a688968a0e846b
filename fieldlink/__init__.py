"""fieldlink: resilient polling of industrial field devices behind pluggable protocols."""

from .core.exceptions import ConfigError, FieldLinkError
from .models.device_models import DataPoint, DataPointDescriptor, DeviceDescriptor, DeviceStatus, Quality, QualityCode
from .core.patterns import AdapterEvent, AdapterEventType, BackoffPolicy, EventSurface, VirtualScheduler
from .orchestration.adapter import ProtocolAdapter
from .protocols.base_protocol_plugin import ProtocolPlugin

__all__ = [
    "ProtocolAdapter",
    "ProtocolPlugin",
    "DeviceDescriptor",
    "DataPointDescriptor",
    "DataPoint",
    "DeviceStatus",
    "Quality",
    "QualityCode",
    "AdapterEvent",
    "AdapterEventType",
    "EventSurface",
    "BackoffPolicy",
    "VirtualScheduler",
    "FieldLinkError",
    "ConfigError",
]

# Package metadata
__version__ = '1.0.0'
