"""
Maps an equipment kind to a constructed ``Equipment``.
"""

import logging
from enum import Enum
from typing import Optional, Union

from .connection import ShutdownSignal
from .devices import DebugBike, Iconsole0028Bike, SimulatedDevice
from .equipment import Equipment
from .errors import EquipmentError
from .transport import Transport

logger = logging.getLogger(__name__)


class EquipmentKind(Enum):
    ICONSOLE_0028 = "28"
    DEBUG = "debug"
    SIMULATED = "device"

    @classmethod
    def parse(cls, value: str) -> Optional["EquipmentKind"]:
        """Look a kind up by value or name, ignoring case."""
        text = value.strip().lower()
        for kind in cls:
            if text in (kind.value, kind.name.lower()):
                return kind
        return None


EQUIPMENT_CLASSES: dict[EquipmentKind, type[Equipment]] = {
    EquipmentKind.ICONSOLE_0028: Iconsole0028Bike,
    EquipmentKind.DEBUG: DebugBike,
    EquipmentKind.SIMULATED: SimulatedDevice,
}


async def create_equipment(
    kind: Union[EquipmentKind, str],
    max_level: int,
    shutdown: ShutdownSignal,
    transport: Optional[Transport] = None,
) -> Optional[Equipment]:
    """Construct equipment of the requested kind.

    Args:
        kind: ``EquipmentKind`` or free-form selector ("28", "debug", "device")
        max_level: Upper bound for target cadence and power
        shutdown: Signal that aborts discovery once set
        transport: GATT transport for BLE variants (bleak when None)

    Returns:
        The equipment, or None for an unknown kind or a failed construction
    """
    if isinstance(kind, str):
        resolved = EquipmentKind.parse(kind)
        if resolved is None:
            logger.error(f"Unknown bike type: {kind}")
            return None
        kind = resolved

    equipment_cls = EQUIPMENT_CLASSES[kind]
    try:
        return await equipment_cls.create(max_level, shutdown, transport)
    except EquipmentError as e:
        logger.error(f"Could not create {kind.name.lower()} equipment: {e}")
        return None
