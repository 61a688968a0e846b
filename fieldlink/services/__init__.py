"""Device-level services: registry, quality tagging, polling and data sinks."""

from .registry import DeviceRegistry
from .quality_tagger import QualityTagger, classify_error

__all__ = [
    'DeviceRegistry',
    'QualityTagger',
    'classify_error',
]
