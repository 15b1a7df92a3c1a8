"""
SpinCtrl - FTMS Smart Bike Control Library

A Python library for discovering, connecting to and driving FTMS smart
bikes over Bluetooth Low Energy, plus a simulated stand-in device.
"""

from .core import __description__, __version__
from .devices import DebugBike, FtmsBike, Iconsole0028Bike, SimulatedDevice
from .equipment import Equipment, EquipmentConfig
from .errors import (
    CancellationError,
    CommandRejectedError,
    ControlNotGrantedError,
    EquipmentError,
    ProtocolDecodeError,
    TransportError,
    ValidationError,
)
from .factory import EquipmentKind, create_equipment
from .telemetry import TelemetryRecord

__all__ = [
    "__description__",
    "__version__",
    "CancellationError",
    "CommandRejectedError",
    "ControlNotGrantedError",
    "DebugBike",
    "Equipment",
    "EquipmentConfig",
    "EquipmentError",
    "EquipmentKind",
    "FtmsBike",
    "Iconsole0028Bike",
    "ProtocolDecodeError",
    "SimulatedDevice",
    "TelemetryRecord",
    "TransportError",
    "ValidationError",
    "create_equipment",
]
