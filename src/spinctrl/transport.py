"""
BLE transport contract and its bleak implementation.

The connection state machine only talks to a ``Transport``; tests plug in a
scripted fake, the CLI uses ``BleakTransport``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from .core import CONNECT_TIMEOUT, SCAN_TIMEOUT
from .errors import TransportError

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[bytes], None]
DisconnectCallback = Callable[[], None]


@dataclass(frozen=True)
class Peripheral:
    """A device seen while scanning."""

    name: str
    identity: str
    device: Any = field(default=None, compare=False, repr=False)


class Transport(Protocol):
    """Interface for GATT access (bleak, scripted fakes, ...)."""

    async def scan(self) -> list[Peripheral]:
        """Return the peripherals currently advertising nearby."""
        ...

    async def connect(
        self,
        peripheral: Peripheral,
        on_disconnect: Optional[DisconnectCallback] = None,
    ) -> Any:
        """Connect and return an opaque handle."""
        ...

    async def discover_characteristics(self, handle: Any) -> set[str]:
        """Return the lower-case UUIDs of all characteristics."""
        ...

    async def write(self, handle: Any, characteristic: str, data: bytes) -> None:
        """Write with response; returning means the write was acknowledged."""
        ...

    async def subscribe(
        self, handle: Any, characteristic: str, callback: NotificationCallback
    ) -> None:
        """Deliver every notification/indication payload to ``callback``."""
        ...

    async def unsubscribe(self, handle: Any, characteristic: str) -> None:
        ...

    async def disconnect(self, handle: Any) -> None:
        ...


_TRANSPORT_ERRORS = (BleakError, OSError, asyncio.TimeoutError)


class BleakTransport:
    """``Transport`` backed by bleak."""

    def __init__(
        self, scan_timeout: float = SCAN_TIMEOUT, connect_timeout: float = CONNECT_TIMEOUT
    ) -> None:
        self.scan_timeout = scan_timeout
        self.connect_timeout = connect_timeout

    async def scan(self) -> list[Peripheral]:
        try:
            discovered = await BleakScanner.discover(
                timeout=self.scan_timeout, return_adv=True
            )
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Scan failed: {e}") from e

        peripherals = []
        for device, adv_data in discovered.values():
            name = adv_data.local_name or device.name or ""
            peripherals.append(Peripheral(name=name, identity=device.address, device=device))
        logger.debug(f"Scan found {len(peripherals)} peripheral(s)")
        return peripherals

    async def connect(
        self,
        peripheral: Peripheral,
        on_disconnect: Optional[DisconnectCallback] = None,
    ) -> BleakClient:
        def _disconnected(_client: BleakClient) -> None:
            if on_disconnect is not None:
                on_disconnect()

        client = BleakClient(
            peripheral.device or peripheral.identity,
            disconnected_callback=_disconnected,
            timeout=self.connect_timeout,
        )
        try:
            await client.connect()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Connect to {peripheral.name} failed: {e}") from e
        return client

    async def discover_characteristics(self, handle: BleakClient) -> set[str]:
        try:
            services = handle.services
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Service discovery failed: {e}") from e
        return {
            char.uuid.lower() for service in services for char in service.characteristics
        }

    async def write(self, handle: BleakClient, characteristic: str, data: bytes) -> None:
        try:
            await handle.write_gatt_char(characteristic, data, response=True)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Write to {characteristic} failed: {e}") from e

    async def subscribe(
        self, handle: BleakClient, characteristic: str, callback: NotificationCallback
    ) -> None:
        def _notify(_sender: object, data: bytearray) -> None:
            callback(bytes(data))

        try:
            await handle.start_notify(characteristic, _notify)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Subscribe to {characteristic} failed: {e}") from e

    async def unsubscribe(self, handle: BleakClient, characteristic: str) -> None:
        try:
            await handle.stop_notify(characteristic)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Unsubscribe from {characteristic} failed: {e}") from e

    async def disconnect(self, handle: BleakClient) -> None:
        try:
            await handle.disconnect()
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"Disconnect failed: {e}") from e
