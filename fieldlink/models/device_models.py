from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
import json

from fieldlink.core.exceptions import ConfigError

Value = Union[int, float, str, bool, None]


###############################################################################
# 1. QUALITY ------------------------------------------------------------------
###############################################################################

class Quality(Enum):
    GOOD = "GOOD"
    BAD  = "BAD"


class QualityCode(Enum):
    """Coarse reason why a data point carries no live value."""
    NONE              = "NONE"
    TIMEOUT           = "TIMEOUT"
    CONNECTION_ERROR  = "CONNECTION_ERROR"
    DEVICE_OFFLINE    = "DEVICE_OFFLINE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNKNOWN_ERROR     = "UNKNOWN_ERROR"


###############################################################################
# 2. DESCRIPTORS --------------------------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class DataPointDescriptor:
    """One configured measurement of a device (register, node, signal …)."""
    name: str
    unit: Optional[str] = None
    scale: Optional[float] = None
    offset: Optional[float] = None
    params: Dict[str, Any] = field(default_factory=dict)   # protocol-specific (address, node_id …)

    def apply_scaling(self, raw: Value) -> Value:
        """``raw * scale + offset`` for numeric values; everything else passes through."""
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            return raw
        if self.scale is None and self.offset is None:
            return raw
        return raw * (1 if self.scale is None else self.scale) + (self.offset or 0)

    # ---------- factory --------------------------------------------------- #
    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DataPointDescriptor":
        known = {"name", "signal", "tag", "unit", "scale", "offset"}
        return cls(
            name   = row.get("name") or row.get("signal") or row.get("tag") or "unknown",
            unit   = row.get("unit"),
            scale  = _parse_float(row.get("scale")),
            offset = _parse_float(row.get("offset")),
            params = {k: v for k, v in row.items() if k not in known},
        )


@dataclass(frozen=True, slots=True)
class DeviceDescriptor:
    """Immutable configuration of one manageable field device."""
    name: str
    protocol: str
    enabled: bool = True
    poll_interval_ms: int = 1000
    connection_params: Dict[str, Any] = field(default_factory=dict)
    data_points: Tuple[DataPointDescriptor, ...] = ()
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.name:
            raise ConfigError("device name must not be empty")
        if (isinstance(self.poll_interval_ms, bool) or not isinstance(self.poll_interval_ms, int)
                or self.poll_interval_ms <= 0):
            raise ConfigError(f"{self.name}: poll_interval_ms must be a positive integer, "
                              f"got {self.poll_interval_ms!r}")
        # lists passed by callers are frozen into a tuple
        object.__setattr__(self, "data_points", tuple(self.data_points))

    # ---------- factory --------------------------------------------------- #
    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DeviceDescriptor":
        """Build from a stored row (snake_case or camelCase, JSON text columns allowed)."""
        try:
            name     = row["name"]
            protocol = row["protocol"]
        except KeyError as exc:
            raise ConfigError(f"device row is missing {exc.args[0]!r}: {row!r}") from exc

        interval = _first(row, "poll_interval_ms", "pollIntervalMs", "poll_interval", "pollInterval")
        points   = _parse_json(_first(row, "data_points", "dataPoints"), name) or []
        return cls(
            name              = name,
            protocol          = protocol,
            enabled           = _parse_bool(row.get("enabled", True)),
            poll_interval_ms  = _parse_interval(1000 if interval is None else interval, name),
            connection_params = _parse_json(_first(row, "connection_params", "connectionParams",
                                                   "connection"), name) or {},
            data_points       = tuple(DataPointDescriptor.from_row(p) for p in points),
            metadata          = _parse_json(row.get("metadata"), name),
        )

    @property
    def point_names(self) -> Tuple[str, ...]:
        return tuple(p.name for p in self.data_points)


###############################################################################
# 3. CONNECTION STATE & STATUS ------------------------------------------------
###############################################################################

@dataclass(slots=True)
class ConnectionState:
    """Per-device connection bookkeeping. Only DeviceConnection mutates it."""
    connected: bool = False
    last_attempt_at: Optional[datetime] = None
    consecutive_error_count: int = 0
    current_backoff_delay_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    """Read-only status projection handed to consumers."""
    device_name: str
    connected: bool = False
    last_poll_at: Optional[datetime] = None
    error_count: int = 0
    last_error: Optional[str] = None
    state: str = "UNINITIALIZED"
    last_seen_at: Optional[datetime] = None
    response_time_ms: Optional[float] = None
    poll_success_rate: float = 1.0
    communication_quality: str = "offline"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceName":           self.device_name,
            "connected":            self.connected,
            "lastPollAt":           _iso(self.last_poll_at),
            "errorCount":           self.error_count,
            "lastError":            self.last_error,
            "state":                self.state,
            "lastSeenAt":           _iso(self.last_seen_at),
            "responseTimeMs":       self.response_time_ms,
            "pollSuccessRate":      self.poll_success_rate,
            "communicationQuality": self.communication_quality,
        }


###############################################################################
# 4. DATA POINT ---------------------------------------------------------------
###############################################################################

@dataclass(frozen=True, slots=True)
class DataPoint:
    """One measurement, live (GOOD) or synthesized placeholder (BAD)."""
    device_name: str
    point_name: str
    value: Value
    unit: str
    timestamp: datetime
    quality: Quality = Quality.GOOD
    quality_code: QualityCode = QualityCode.NONE

    def __post_init__(self):
        if (self.value is None) != (self.quality is Quality.BAD):
            raise ValueError(f"{self.device_name}/{self.point_name}: value must be None "
                             f"exactly when quality is BAD")

    @classmethod
    def good(cls, device_name: str, point_name: str, value: Value, timestamp: datetime,
             unit: str = "") -> "DataPoint":
        return cls(device_name, point_name, value, unit, timestamp)

    @classmethod
    def bad(cls, device_name: str, point_name: str, quality_code: QualityCode,
            timestamp: datetime, unit: str = "") -> "DataPoint":
        return cls(device_name, point_name, None, unit, timestamp, Quality.BAD, quality_code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceName":  self.device_name,
            "pointName":   self.point_name,
            "value":       self.value,
            "unit":        self.unit,
            "timestamp":   _iso(self.timestamp),
            "quality":     self.quality.value,
            "qualityCode": self.quality_code.value,
        }


###############################################################################
# 5. HELPER PARSERS -----------------------------------------------------------
###############################################################################

def _first(row: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None

def _parse_json(value: Any, device: str) -> Any:
    """Decode JSON text columns; mappings and lists pass through unchanged."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{device}: invalid JSON column: {exc}") from exc

def _parse_interval(value: Any, device: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{device}: poll interval must be a number")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value

def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)

def _parse_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None
