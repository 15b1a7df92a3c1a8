"""
Discovery and connection state machine for FTMS bikes.

One ``FtmsSession`` drives one peripheral through::

    DISCONNECTED -> DISCOVERING -> FOUND -> CONTROL_PENDING
                 -> CONTROL_GRANTED -> SUBSCRIBED -> DISCONNECTED

Discovery is the only step that can run for an unbounded time; it checks
the shutdown signal before every scan. Nothing here retries.
"""

import asyncio
import logging
import time
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from .core import (
    DISCOVERY_POLL_INTERVAL,
    FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID,
    INDOOR_BIKE_DATA_CHAR_UUID,
    RESPONSE_TIMEOUT,
)
from .errors import (
    CancellationError,
    CommandRejectedError,
    ControlNotGrantedError,
    EquipmentError,
    ProtocolDecodeError,
    TransportError,
)
from .protocol import (
    ControlCommand,
    ControlResponse,
    StopCode,
    decode_indoor_bike_data,
    decode_response,
)
from .telemetry import TelemetryRecord
from .transport import Peripheral, Transport

logger = logging.getLogger(__name__)

PeripheralPredicate = Callable[[Peripheral], bool]


class ShutdownSignal(Protocol):
    """Anything with ``is_set()``: ``threading.Event``, ``asyncio.Event``."""

    def is_set(self) -> bool: ...


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    DISCOVERING = "discovering"
    FOUND = "found"
    CONTROL_PENDING = "control_pending"
    CONTROL_GRANTED = "control_granted"
    SUBSCRIBED = "subscribed"


CONNECTED_STATES = frozenset(
    {
        ConnectionState.CONTROL_PENDING,
        ConnectionState.CONTROL_GRANTED,
        ConnectionState.SUBSCRIBED,
    }
)


class FtmsSession:
    """Connection, control ownership and telemetry for one peripheral."""

    def __init__(
        self,
        transport: Transport,
        predicate: PeripheralPredicate,
        poll_interval: float = DISCOVERY_POLL_INTERVAL,
        response_timeout: float = RESPONSE_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._predicate = predicate
        self._poll_interval = poll_interval
        self._response_timeout = response_timeout

        self.state = ConnectionState.DISCONNECTED
        self.peripheral: Optional[Peripheral] = None
        self._handle: Any = None
        self._started_at: Optional[float] = None
        self._control_granted = False
        self._subscriptions: list[str] = []
        self._latest: Optional[TelemetryRecord] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._abort = False

    @property
    def is_connected(self) -> bool:
        return self.state in CONNECTED_STATES and self._handle is not None

    @property
    def control_granted(self) -> bool:
        return self._control_granted

    def elapsed_seconds(self) -> int:
        """Whole seconds since the transport connect, 0 without a session."""
        if self._started_at is None:
            return 0
        return int(time.monotonic() - self._started_at)

    def _set_state(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(f"{self.state.value} -> {state.value}")
            self.state = state

    async def discover(self, shutdown: ShutdownSignal) -> Peripheral:
        """Scan until the predicate matches a peripheral.

        Raises:
            CancellationError: shutdown signalled or ``close()`` called
            TransportError: the scan itself failed
        """
        self._abort = False
        self._set_state(ConnectionState.DISCOVERING)
        while True:
            self._check_cancelled(shutdown)

            try:
                peripherals = await self._transport.scan()
            except TransportError:
                self._set_state(ConnectionState.DISCONNECTED)
                raise

            # close() may have run while the scan was in flight
            self._check_cancelled(shutdown)

            for peripheral in peripherals:
                if self._predicate(peripheral):
                    logger.info(f"Found {peripheral.name} ({peripheral.identity})")
                    self.peripheral = peripheral
                    self._set_state(ConnectionState.FOUND)
                    return peripheral

            await asyncio.sleep(self._poll_interval)

    def _check_cancelled(self, shutdown: ShutdownSignal) -> None:
        if shutdown.is_set() or self._abort:
            self._reset()
            raise CancellationError("Discovery cancelled")

    async def open(self) -> None:
        """Connect to the discovered peripheral.

        On failure the machine stays in FOUND so the caller may retry.

        Raises:
            CancellationError: ``close()`` was called before the link came up
            TransportError: not in FOUND, or the transport connect failed
        """
        if self._abort:
            raise CancellationError("Session closed before connecting")
        peripheral = self.peripheral
        if self.state != ConnectionState.FOUND or peripheral is None:
            raise TransportError(f"Cannot connect from state {self.state.value}")

        try:
            handle = await self._transport.connect(
                peripheral, on_disconnect=self._on_transport_lost
            )
        except TransportError as e:
            logger.error(f"Connection to {peripheral.name} failed: {e}")
            raise

        if self._abort:
            logger.info(f"Session closed while connecting to {peripheral.name}")
            try:
                await self._transport.disconnect(handle)
            finally:
                self._reset()
            raise CancellationError("Session closed while connecting")

        self._handle = handle
        self._started_at = time.monotonic()
        self._control_granted = False
        self._set_state(ConnectionState.CONTROL_PENDING)
        logger.info(f"Connected to {peripheral.name}")

    async def request_control(self) -> bool:
        """Ask the bike for control point ownership.

        Returns:
            True if granted, False if the bike answered with an error result
        """
        if not self.is_connected:
            raise TransportError("Not connected")
        if self._control_granted:
            return True

        characteristics = await self._transport.discover_characteristics(self._handle)
        missing = {
            FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID,
            INDOOR_BIKE_DATA_CHAR_UUID,
        } - {c.lower() for c in characteristics}
        if missing:
            raise TransportError(f"Missing FTMS characteristics: {sorted(missing)}")

        try:
            await self._subscribe(
                FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID, self._handle_control_point
            )
        except TransportError as e:
            # Writes are still acknowledged at the GATT level
            logger.warning(f"Control point indications unavailable: {e}")

        response = await self._exchange(ControlCommand.request_control())
        if response is not None and not response.ok:
            logger.warning(f"Control request refused: {_result_name(response.result)}")
            return False

        self._control_granted = True
        self._set_state(ConnectionState.CONTROL_GRANTED)
        return True

    async def subscribe(self) -> None:
        """Start receiving Indoor Bike Data notifications."""
        if not self.is_connected:
            raise TransportError("Not connected")
        await self._subscribe(INDOOR_BIKE_DATA_CHAR_UUID, self._handle_bike_data)
        self._set_state(ConnectionState.SUBSCRIBED)

    async def send(self, command: ControlCommand) -> Optional[ControlResponse]:
        """Encode, write and await acknowledgment of a command.

        Raises:
            ControlNotGrantedError: command needs control we do not hold
            CommandRejectedError: the bike answered with an error result
        """
        if command.requires_control and not self._control_granted:
            raise ControlNotGrantedError(
                f"{command.op_code.name} requires control of the bike"
            )
        if not self.is_connected:
            raise TransportError("Not connected")

        response = await self._exchange(command)
        if response is not None and not response.ok:
            raise CommandRejectedError(
                f"{command.op_code.name} rejected: {_result_name(response.result)}",
                response.result,
            )
        return response

    def read(self) -> Optional[TelemetryRecord]:
        """Latest telemetry, stamped with the session clock."""
        latest = self._latest
        if latest is None:
            return None
        return replace(latest, time=self.elapsed_seconds())

    async def close(self) -> None:
        """Tear down from any state.

        Stop and unsubscribe failures are logged; a failing transport
        disconnect is raised after the state has been reset.
        """
        if self.state in (ConnectionState.DISCOVERING, ConnectionState.FOUND):
            self._abort = True

        handle = self._handle
        if handle is None:
            self._reset()
            return

        if self._control_granted:
            try:
                await self.send(ControlCommand.stop(StopCode.STOP))
            except EquipmentError as e:
                logger.warning(f"Stop command during teardown failed: {e}")

        for characteristic in reversed(self._subscriptions):
            try:
                await self._transport.unsubscribe(handle, characteristic)
            except TransportError as e:
                logger.warning(f"Unsubscribe from {characteristic} failed: {e}")

        # Cleared first so the transport's disconnect callback sees a closed session
        self._handle = None
        try:
            await self._transport.disconnect(handle)
        finally:
            self._reset()
            logger.info("Disconnected")

    async def _subscribe(self, characteristic: str, callback: Callable[[bytes], None]) -> None:
        if characteristic in self._subscriptions:
            return
        await self._transport.subscribe(self._handle, characteristic, callback)
        self._subscriptions.append(characteristic)

    async def _exchange(self, command: ControlCommand) -> Optional[ControlResponse]:
        """Write a command; return its indication or None if none came."""
        data = command.encode()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[command.op_code] = future
        try:
            logger.debug(f"-> {command.op_code.name} {data.hex(' ')}")
            await self._transport.write(
                self._handle, FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID, data
            )
            if future.done():
                # Answered or link lost during the write
                return future.result()
            if FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID not in self._subscriptions:
                return None
            try:
                return await asyncio.wait_for(future, self._response_timeout)
            except asyncio.TimeoutError:
                logger.debug(f"No response to {command.op_code.name}, assuming acknowledged")
                return None
        finally:
            self._pending.pop(command.op_code, None)
            if future.done() and not future.cancelled():
                # Consume a link-loss error when the write itself raised
                future.exception()

    def _handle_control_point(self, data: bytes) -> None:
        try:
            response = decode_response(data)
        except ProtocolDecodeError as e:
            logger.warning(f"Ignoring control point indication: {e}")
            return

        logger.debug(
            f"<- response req=0x{response.request_op_code:02X} "
            f"result={_result_name(response.result)}"
        )
        future = self._pending.get(response.request_op_code)
        if future is not None and not future.done():
            future.set_result(response)

    def _handle_bike_data(self, data: bytes) -> None:
        try:
            self._latest = decode_indoor_bike_data(data, self._latest)
        except ProtocolDecodeError as e:
            logger.warning(f"Dropped malformed notification: {e}")

    def _on_transport_lost(self) -> None:
        if self._handle is None:
            return
        logger.warning("Device disconnected")
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError("Connection lost"))
        self._pending.clear()
        self._reset()

    def _reset(self) -> None:
        self._handle = None
        self.peripheral = None
        self._started_at = None
        self._control_granted = False
        self._subscriptions = []
        self._latest = None
        self._set_state(ConnectionState.DISCONNECTED)


def _result_name(result: int) -> str:
    return getattr(result, "name", f"0x{result:02X}")
