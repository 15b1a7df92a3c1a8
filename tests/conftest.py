"""Shared fixtures: a scripted GATT transport standing in for the radio."""

import asyncio
import threading
from typing import Any, Callable, Optional

import pytest

from spinctrl.core import (
    FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID,
    ICONSOLE_0028_NAME,
    INDOOR_BIKE_DATA_CHAR_UUID,
)
from spinctrl.errors import TransportError
from spinctrl.protocol import ControlCommand, ResultCode, decode_command
from spinctrl.transport import Peripheral


class FakeTransport:
    """In-memory transport that answers control point writes like a bike."""

    def __init__(self, peripherals: Optional[list[Peripheral]] = None) -> None:
        self.peripherals = list(peripherals or [])
        self.characteristics = {
            FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID,
            INDOOR_BIKE_DATA_CHAR_UUID,
        }
        # Scans returning nothing before the peripherals show up
        self.empty_scans = 0
        self.scan_calls = 0
        self.scan_delay = 0.0
        # Op code -> result code sent back in the indication
        self.results: dict[int, int] = {}
        self.indicate = True
        self.fail_connect = False
        self.fail_ops: set[int] = set()
        self.fail_disconnect = False
        self.drop_on_write = False

        self.connected = False
        self.on_disconnect: Optional[Callable[[], None]] = None
        self.callbacks: dict[str, Callable[[bytes], None]] = {}
        self.writes: list[tuple[str, bytes]] = []
        self.unsubscribed: list[str] = []

    async def scan(self) -> list[Peripheral]:
        self.scan_calls += 1
        if self.scan_delay:
            await asyncio.sleep(self.scan_delay)
        if self.scan_calls <= self.empty_scans:
            return []
        return list(self.peripherals)

    async def connect(self, peripheral: Peripheral, on_disconnect=None) -> Any:
        if self.fail_connect:
            raise TransportError("connection refused")
        self.connected = True
        self.on_disconnect = on_disconnect
        return f"handle:{peripheral.identity}"

    async def discover_characteristics(self, handle: Any) -> set[str]:
        return set(self.characteristics)

    async def write(self, handle: Any, characteristic: str, data: bytes) -> None:
        if data[0] in self.fail_ops:
            raise TransportError("write failed")
        self.writes.append((characteristic, bytes(data)))
        if self.drop_on_write:
            self.drop_link()
            return
        callback = self.callbacks.get(FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID)
        if callback is not None and self.indicate:
            result = self.results.get(data[0], ResultCode.SUCCESS)
            callback(bytes([0x80, data[0], result]))

    async def subscribe(self, handle: Any, characteristic: str, callback) -> None:
        self.callbacks[characteristic] = callback

    async def unsubscribe(self, handle: Any, characteristic: str) -> None:
        self.unsubscribed.append(characteristic)
        self.callbacks.pop(characteristic, None)

    async def disconnect(self, handle: Any) -> None:
        if self.fail_disconnect:
            raise TransportError("disconnect failed")
        self.connected = False

    def notify(self, payload: bytes) -> None:
        """Push an Indoor Bike Data notification."""
        self.callbacks[INDOOR_BIKE_DATA_CHAR_UUID](payload)

    def drop_link(self) -> None:
        self.connected = False
        if self.on_disconnect is not None:
            self.on_disconnect()

    def commands(self) -> list[ControlCommand]:
        """Control point writes decoded back into commands."""
        return [
            decode_command(data)
            for characteristic, data in self.writes
            if characteristic == FITNESS_MACHINE_CONTROL_POINT_CHAR_UUID
        ]


@pytest.fixture
def iconsole_peripheral() -> Peripheral:
    return Peripheral(name=ICONSOLE_0028_NAME, identity="AA:BB:CC:DD:EE:28")


@pytest.fixture
def transport(iconsole_peripheral: Peripheral) -> FakeTransport:
    return FakeTransport(
        [Peripheral(name="Heart Strap", identity="11:22:33:44:55:66"), iconsole_peripheral]
    )


@pytest.fixture
def shutdown() -> threading.Event:
    return threading.Event()
