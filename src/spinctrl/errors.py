"""
Exception hierarchy for equipment control.

Validation and control-ownership problems are raised before any bytes hit
the wire. Transport and cancellation errors abort the current operation and
are never retried here.
"""

from typing import Optional


class EquipmentError(Exception):
    """Base class for all equipment errors."""


class ValidationError(EquipmentError, ValueError):
    """A target value is outside [1, max_level] or cannot be encoded."""

    def __init__(self, message: str, value: Optional[int] = None) -> None:
        super().__init__(message)
        self.value = value


class CancellationError(EquipmentError):
    """The shutdown signal was observed while discovering."""


class TransportError(EquipmentError):
    """Scan, connect, write or subscribe failed in the transport."""


class ProtocolDecodeError(EquipmentError):
    """The device sent a payload that cannot be decoded."""


class ControlNotGrantedError(EquipmentError):
    """A control command was attempted before control was granted."""


class CommandRejectedError(EquipmentError):
    """The device acknowledged a command with a non-success result."""

    def __init__(self, message: str, result: int) -> None:
        super().__init__(message)
        self.result = result
