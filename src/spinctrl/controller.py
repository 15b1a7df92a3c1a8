"""
Session controller on top of the Equipment interface.

Owns one piece of equipment and its shutdown signal, converts equipment
errors into result codes for the REPL, and streams telemetry by polling.
"""

import asyncio
import logging
import threading
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, Union

from .core import DEFAULT_MAX_LEVEL
from .devices import FtmsBike
from .equipment import Equipment
from .errors import (
    CommandRejectedError,
    ControlNotGrantedError,
    EquipmentError,
    TransportError,
    ValidationError,
)
from .factory import EquipmentKind, create_equipment
from .protocol import ResultCode, StopCode
from .transport import Transport

logger = logging.getLogger(__name__)


class BikeController:
    """Manages connection and control of one bike."""

    UPDATE_INTERVAL = 0.5

    def __init__(
        self,
        kind: Union[EquipmentKind, str] = EquipmentKind.ICONSOLE_0028,
        max_level: int = DEFAULT_MAX_LEVEL,
        transport: Optional[Transport] = None,
    ) -> None:
        """Initialize controller with no device connection."""
        self.kind = kind
        self.max_level = max_level
        self.shutdown = threading.Event()
        self._transport = transport
        self._equipment: Optional[Equipment] = None
        self._control_granted = False

    @property
    def equipment(self) -> Optional[Equipment]:
        return self._equipment

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to device."""
        return self._equipment is not None and self._equipment.is_connected

    @property
    def control_granted(self) -> bool:
        return self.is_connected and self._control_granted

    @property
    def device_name(self) -> Optional[str]:
        if self._equipment is None:
            return None
        return self._equipment.name

    def cancel(self) -> None:
        """Abort a running discovery."""
        self.shutdown.set()

    async def connect(self) -> bool:
        """Create the equipment if needed and connect to it.

        Returns:
            True if connected, False otherwise
        """
        if self.is_connected:
            logger.warning("Already connected")
            return True

        self.shutdown.clear()
        if self._equipment is None:
            self._equipment = await create_equipment(
                self.kind, self.max_level, self.shutdown, self._transport
            )
            if self._equipment is None:
                return False

        try:
            self._control_granted = await self._equipment.connect()
        except EquipmentError as e:
            logger.error(f"Connection failed: {e}")
            return False

        if not self._control_granted:
            logger.warning("Connected without control; targets cannot be set")
        return True

    async def disconnect(self) -> None:
        """Disconnect from device."""
        if self._equipment is None:
            return

        try:
            await self._equipment.disconnect()
        except EquipmentError as e:
            logger.error(f"Disconnect failed: {e}")
        finally:
            self._control_granted = False

    async def set_cadence(self, rpm: int) -> ResultCode:
        """Set target cadence in rpm."""
        return await self._command(
            f"Set cadence to {rpm} rpm",
            lambda equipment: equipment.set_target_cadence(rpm),
        )

    async def set_power(self, watts: int) -> ResultCode:
        """Set target power in watts."""
        return await self._command(
            f"Set power to {watts} W",
            lambda equipment: equipment.set_target_power(watts),
        )

    async def start(self) -> ResultCode:
        """Start or resume the workout (FTMS bikes only)."""
        return await self._ftms_command("Start", lambda bike: bike.start())

    async def stop(self, stop_code: StopCode = StopCode.STOP) -> ResultCode:
        """Stop or pause the workout (FTMS bikes only)."""
        return await self._ftms_command(
            stop_code.name.capitalize(), lambda bike: bike.stop(stop_code)
        )

    async def _ftms_command(
        self, label: str, action: Callable[[FtmsBike], Awaitable[None]]
    ) -> ResultCode:
        if self._equipment is not None and not isinstance(self._equipment, FtmsBike):
            logger.error(f"{label} is not supported by {self._equipment.name}")
            return ResultCode.NOT_SUPPORTED
        return await self._command(label, action)  # type: ignore[arg-type]

    async def _command(
        self, label: str, action: Callable[[Equipment], Awaitable[None]]
    ) -> ResultCode:
        if not self.is_connected or self._equipment is None:
            logger.error("Not connected")
            return ResultCode.FAILED

        try:
            await action(self._equipment)
        except ValidationError as e:
            logger.error(f"{label}: {e}")
            return ResultCode.INVALID_PARAMETER
        except ControlNotGrantedError as e:
            logger.error(f"{label}: {e}")
            return ResultCode.NOT_PERMITTED
        except CommandRejectedError as e:
            logger.error(f"{label}: {e}")
            return e.result if isinstance(e.result, ResultCode) else ResultCode.FAILED
        except TransportError as e:
            logger.error(f"{label} failed: {e}")
            return ResultCode.FAILED

        logger.info(f"{label}: SUCCESS")
        return ResultCode.SUCCESS

    async def get_status(self) -> dict[str, Any]:
        """Get current telemetry values.

        Returns:
            Dictionary with status plus every telemetry field
        """
        record = None
        if self.is_connected and self._equipment is not None:
            record = await self._equipment.read()

        status = "DISCONNECTED"
        if self.is_connected:
            status = "WAITING" if record is None else "CONNECTED"

        data: dict[str, Any] = {"status": status}
        if record is not None:
            data.update(record.as_dict())
        return data

    async def get_updates(self) -> AsyncGenerator[dict[str, Any], None]:
        """Async generator that yields the latest telemetry while connected.

        Yields:
            Status dicts; unchanged snapshots are skipped
        """
        last: Optional[dict[str, Any]] = None
        while self.is_connected:
            data = await self.get_status()
            if data != last:
                last = data
                yield data
            await asyncio.sleep(self.UPDATE_INTERVAL)
