"""
Centralised exception definitions for the field-device adapter framework.
All custom exceptions should inherit from FieldLinkError.
"""

class FieldLinkError(Exception):
    """Base class for every custom exception thrown by this project."""

class ConfigError(FieldLinkError):
    """Raised when a device descriptor or adapter setting is invalid."""

class AdapterError(FieldLinkError):
    """Adapter-level failure (e.g. the device registry cannot be enumerated)."""

class IllegalTransitionError(FieldLinkError):
    """Raised when a device connection is driven through a forbidden transition."""

class ProtocolError(FieldLinkError):
    """Generic failure inside a protocol plugin (Modbus, OPC-UA, …)."""

class ConnectError(ProtocolError):
    """A plugin could not establish a device connection."""

class ReadError(ProtocolError):
    """A plugin failed to read data points from a connected device."""

class DisconnectError(ProtocolError):
    """A plugin failed to release a device connection. Logged, never propagated."""
