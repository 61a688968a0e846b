"""Degraded-quality output for devices that cannot deliver live values."""
from __future__ import annotations
from datetime import datetime
from typing import Callable, List, Optional, Tuple
import logging

from fieldlink.models.device_models import DataPoint, DeviceDescriptor, QualityCode

# checked in order, first match wins
_MESSAGE_RULES: Tuple[Tuple[str, QualityCode], ...] = (
    ("timeout",    QualityCode.TIMEOUT),
    ("connection", QualityCode.CONNECTION_ERROR),
    ("not open",   QualityCode.DEVICE_OFFLINE),
    ("permission", QualityCode.PERMISSION_DENIED),
)


def classify_error(error: Optional[BaseException | str]) -> QualityCode:
    """Map an error message to a quality code. Only the message text is consulted, case-sensitively."""
    message = str(error) if error is not None else ""
    for needle, code in _MESSAGE_RULES:
        if needle in message:
            return code
    return QualityCode.UNKNOWN_ERROR


class QualityTagger:
    """Builds BAD placeholder points, one per configured data point."""

    def __init__(self, clock: Callable[[], datetime]):
        self._clock = clock
        self.log = logging.getLogger(self.__class__.__name__)

    def placeholders(self, descriptor: DeviceDescriptor, quality_code: QualityCode) -> List[DataPoint]:
        now = self._clock()
        points = [
            DataPoint.bad(descriptor.name, dp.name, quality_code, now, unit=dp.unit or "")
            for dp in descriptor.data_points
        ]
        self.log.debug("%s: %d placeholder(s) tagged %s", descriptor.name, len(points), quality_code.value)
        return points

    def offline(self, descriptor: DeviceDescriptor) -> List[DataPoint]:
        return self.placeholders(descriptor, QualityCode.DEVICE_OFFLINE)

    def for_error(self, descriptor: DeviceDescriptor, error: BaseException) -> List[DataPoint]:
        return self.placeholders(descriptor, classify_error(error))
