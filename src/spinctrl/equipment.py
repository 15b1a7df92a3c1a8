"""
Equipment capability interface shared by every device variant.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .connection import ShutdownSignal
from .errors import ValidationError
from .telemetry import TelemetryRecord
from .transport import Transport


@dataclass(frozen=True)
class EquipmentConfig:
    """Identity and limits of a piece of equipment."""

    max_level: int
    name: str


class Equipment(ABC):
    """A bike (or stand-in) that can be connected, driven and read."""

    def __init__(self, config: EquipmentConfig) -> None:
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def max_level(self) -> int:
        return self.config.max_level

    @classmethod
    @abstractmethod
    async def create(
        cls,
        max_level: int,
        shutdown: ShutdownSignal,
        transport: Optional[Transport] = None,
    ) -> "Equipment":
        """Construct the equipment.

        Transport-backed variants also discover and connect to the device,
        aborting with ``CancellationError`` once ``shutdown`` is set.
        """

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    async def connect(self) -> bool:
        """Finish connecting; returns True if control was acquired."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the device. Safe to call when never connected."""

    @abstractmethod
    async def set_target_cadence(self, rpm: int) -> None: ...

    @abstractmethod
    async def set_target_power(self, watts: int) -> None: ...

    @abstractmethod
    async def read(self) -> Optional[TelemetryRecord]:
        """Most recent telemetry, or None if nothing arrived yet."""

    def validate_level(self, value: int, label: str) -> int:
        """Check ``1 <= value <= max_level``.

        Raises:
            ValidationError: value out of range or not an integer
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"{label} must be an integer, got {value!r}", value)
        if not 1 <= value <= self.max_level:
            raise ValidationError(
                f"{label} must be between 1 and {self.max_level}, got {value}", value
            )
        return value
