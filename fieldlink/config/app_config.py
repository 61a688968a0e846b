"""Centralised application settings (dotenv + env overrides)."""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import find_dotenv, load_dotenv

from fieldlink.core.patterns.backoff import BackoffPolicy

load_dotenv(find_dotenv(usecwd=True), override=False)


def _optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class settings:                            # pylint: disable=too-few-public-methods
    LOG_LEVEL            = os.getenv("LOG_LEVEL", "INFO").upper()
    DEVICES_FILE         = os.getenv("DEVICES_FILE", "devices.json")
    BACKOFF_BASE_MS      = float(os.getenv("BACKOFF_BASE_MS", 1000))
    BACKOFF_MULTIPLIER   = float(os.getenv("BACKOFF_MULTIPLIER", 2.0))
    BACKOFF_MAX_MS       = float(os.getenv("BACKOFF_MAX_MS", 60000))
    BACKOFF_JITTER       = float(os.getenv("BACKOFF_JITTER", 0.0))
    OPERATION_TIMEOUT_MS = _optional_float("OPERATION_TIMEOUT_MS")
    EVENT_QUEUE_SIZE     = int(os.getenv("EVENT_QUEUE_SIZE", 1000))
    MQTT_ENABLED         = _flag("MQTT_ENABLED")
    MQTT_HOST            = os.getenv("MQTT_HOST", "localhost")
    MQTT_PORT            = int(os.getenv("MQTT_PORT", 1883))
    MQTT_TOPIC_PREFIX    = os.getenv("MQTT_TOPIC_PREFIX", "fieldlink")


@dataclass(frozen=True)
class AdapterSettings:
    """Per-adapter tunables: retry backoff, plugin call timeout and event queue bound."""
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    operation_timeout_ms: Optional[float] = None
    event_queue_size: int = 1000

    def __post_init__(self):
        if self.operation_timeout_ms is not None and self.operation_timeout_ms <= 0:
            raise ValueError("operation_timeout_ms must be positive")
        if self.event_queue_size <= 0:
            raise ValueError("event_queue_size must be positive")

    @classmethod
    def from_env(cls, source=settings) -> "AdapterSettings":
        return cls(
            backoff              = BackoffPolicy.from_settings(source),
            operation_timeout_ms = source.OPERATION_TIMEOUT_MS,
            event_queue_size     = int(source.EVENT_QUEUE_SIZE),
        )
