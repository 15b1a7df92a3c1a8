"""
Device variants: FTMS bikes over BLE and a transport-free simulation.
"""

import logging
import time
from abc import abstractmethod
from dataclasses import dataclass
from typing import Optional

from .connection import ConnectionState, FtmsSession, ShutdownSignal
from .core import DEBUG_NAME_MARKER, ICONSOLE_0028_NAME, SIMULATED_DEVICE_NAME
from .equipment import Equipment, EquipmentConfig
from .protocol import ControlCommand, StopCode
from .telemetry import TelemetryRecord
from .transport import BleakTransport, Peripheral, Transport

logger = logging.getLogger(__name__)


class FtmsBike(Equipment):
    """Smart bike driven over the FTMS control point.

    Subclasses choose which advertised peripheral to bind to by
    overriding ``matches``.
    """

    DEVICE_NAME = "FTMS bike"

    def __init__(
        self,
        max_level: int,
        shutdown: ShutdownSignal,
        transport: Transport,
        **session_options: float,
    ) -> None:
        super().__init__(EquipmentConfig(max_level=max_level, name=self.DEVICE_NAME))
        self._shutdown = shutdown
        self.session = FtmsSession(transport, self.matches, **session_options)

    @classmethod
    @abstractmethod
    def matches(cls, peripheral: Peripheral) -> bool:
        """True if ``peripheral`` is the bike this class drives."""

    @classmethod
    async def create(
        cls,
        max_level: int,
        shutdown: ShutdownSignal,
        transport: Optional[Transport] = None,
        **session_options: float,
    ) -> "FtmsBike":
        bike = cls(max_level, shutdown, transport or BleakTransport(), **session_options)
        await bike._attach()
        return bike

    async def _attach(self) -> None:
        peripheral = await self.session.discover(self._shutdown)
        await self.session.open()
        self.config = EquipmentConfig(max_level=self.max_level, name=peripheral.name)

    @property
    def is_connected(self) -> bool:
        return self.session.is_connected

    async def connect(self) -> bool:
        if self.session.state == ConnectionState.DISCONNECTED:
            logger.info(f"Rediscovering {self.name}")
            await self._attach()
        elif self.session.state == ConnectionState.FOUND:
            await self.session.open()

        if self.session.state == ConnectionState.SUBSCRIBED:
            return self.session.control_granted

        granted = await self.session.request_control()
        await self.session.subscribe()
        logger.info(f"{self.name} ready (control {'granted' if granted else 'refused'})")
        return granted

    async def disconnect(self) -> None:
        await self.session.close()

    async def set_target_cadence(self, rpm: int) -> None:
        self.validate_level(rpm, "Target cadence")
        await self.session.send(ControlCommand.target_cadence(rpm))
        logger.info(f"Target cadence set to {rpm} rpm")

    async def set_target_power(self, watts: int) -> None:
        self.validate_level(watts, "Target power")
        await self.session.send(ControlCommand.target_power(watts))
        logger.info(f"Target power set to {watts} W")

    async def start(self) -> None:
        """Start or resume the workout."""
        await self.session.send(ControlCommand.start())

    async def stop(self, stop_code: StopCode = StopCode.STOP) -> None:
        """Stop or pause the workout."""
        await self.session.send(ControlCommand.stop(stop_code))

    async def read(self) -> Optional[TelemetryRecord]:
        return self.session.read()


class Iconsole0028Bike(FtmsBike):
    """The iConsole 0028 bike, matched by its exact advertised name."""

    DEVICE_NAME = ICONSOLE_0028_NAME

    @classmethod
    def matches(cls, peripheral: Peripheral) -> bool:
        return peripheral.name == ICONSOLE_0028_NAME


class DebugBike(FtmsBike):
    """Binds to any peripheral with a console-style name."""

    DEVICE_NAME = "debug bike"

    @classmethod
    def matches(cls, peripheral: Peripheral) -> bool:
        return DEBUG_NAME_MARKER in (peripheral.name or "").lower()


@dataclass(frozen=True)
class TargetRequest:
    """A target accepted by the simulated device."""

    kind: str
    value: int
    elapsed: float


class SimulatedDevice(Equipment):
    """Stand-in device with no transport.

    Setters only validate and record; ``read()`` reports zeroed metrics
    with the real elapsed time.
    """

    def __init__(self, max_level: int) -> None:
        super().__init__(EquipmentConfig(max_level=max_level, name=SIMULATED_DEVICE_NAME))
        self._start_time = time.monotonic()
        self._connected = False
        self.connect_count = 0
        self.disconnect_count = 0
        self.history: list[TargetRequest] = []

    @classmethod
    async def create(
        cls,
        max_level: int,
        shutdown: ShutdownSignal,
        transport: Optional[Transport] = None,
    ) -> "SimulatedDevice":
        return cls(max_level)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def elapsed(self) -> float:
        return time.monotonic() - self._start_time

    async def connect(self) -> bool:
        logger.info(f"Connecting to: {self.name}")
        self._connected = True
        self.connect_count += 1
        return True

    async def disconnect(self) -> None:
        logger.info(f"Disconnecting from: {self.name}")
        self._connected = False
        self.disconnect_count += 1

    async def set_target_cadence(self, rpm: int) -> None:
        self.validate_level(rpm, "Target cadence")
        self._record("cadence", rpm)

    async def set_target_power(self, watts: int) -> None:
        self.validate_level(watts, "Target power")
        self._record("power", watts)

    def _record(self, kind: str, value: int) -> None:
        request = TargetRequest(kind=kind, value=value, elapsed=self.elapsed())
        self.history.append(request)
        logger.info(
            f"Setting target {kind} on: {self.name} to {value} at {request.elapsed:.2f}s"
        )

    async def read(self) -> Optional[TelemetryRecord]:
        return TelemetryRecord(time=int(self.elapsed()))
