"""Normalized telemetry snapshot."""

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class TelemetryRecord:
    """Snapshot of bike state. Every field defaults to zero."""

    speed: float = 0.0
    cadence: float = 0.0
    distance: float = 0.0
    resistance: float = 0.0
    power: int = 0
    calories: float = 0.0
    heart_rate: float = 0.0
    time: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
