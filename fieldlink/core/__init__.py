# fieldlink/core/__init__.py
"""Core infrastructure components for the field-device adapter framework."""

# Import order: most fundamental to most specific

from .exceptions import (
    FieldLinkError,
    ConfigError,
    AdapterError,
    IllegalTransitionError,
    ProtocolError,
    ConnectError,
    ReadError,
    DisconnectError,
)

__all__ = [
    "FieldLinkError",            # make available at package root
    "ConfigError",
    "AdapterError",
    "IllegalTransitionError",
    "ProtocolError",
    "ConnectError",
    "ReadError",
    "DisconnectError",
]
