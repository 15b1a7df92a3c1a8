import struct

import pytest
from conftest import FakeTransport

from spinctrl.controller import BikeController
from spinctrl.factory import EquipmentKind
from spinctrl.protocol import ControlCommand, ControlOpCode, ResultCode, StopCode


@pytest.mark.asyncio
async def test_disconnected_controller() -> None:
    controller = BikeController(EquipmentKind.SIMULATED, max_level=10)

    assert not controller.is_connected
    assert controller.device_name is None
    assert await controller.get_status() == {"status": "DISCONNECTED"}
    assert await controller.set_power(5) == ResultCode.FAILED
    await controller.disconnect()


@pytest.mark.asyncio
async def test_simulated_session() -> None:
    controller = BikeController("device", max_level=10)

    assert await controller.connect()
    assert controller.control_granted
    assert await controller.set_cadence(32) == ResultCode.INVALID_PARAMETER
    assert await controller.set_cadence(5) == ResultCode.SUCCESS
    assert await controller.set_power(10) == ResultCode.SUCCESS
    assert await controller.start() == ResultCode.NOT_SUPPORTED

    status = await controller.get_status()
    assert status["status"] == "CONNECTED"
    assert status["power"] == 0
    assert status["time"] >= 0

    await controller.disconnect()
    assert not controller.is_connected


@pytest.mark.asyncio
async def test_unknown_kind_fails_to_connect() -> None:
    controller = BikeController("rower", max_level=10)
    assert not await controller.connect()
    assert controller.equipment is None


@pytest.mark.asyncio
async def test_cancelled_discovery_fails_to_connect(transport: FakeTransport) -> None:
    controller = BikeController("28", max_level=10, transport=transport)
    transport.empty_scans = 1000
    real_scan = transport.scan

    # connect() clears the signal, so cancel from inside the first scan
    async def scan_then_cancel():
        controller.cancel()
        return await real_scan()

    transport.scan = scan_then_cancel  # type: ignore[method-assign]

    assert not await controller.connect()
    assert controller.equipment is None
    assert transport.scan_calls == 1


@pytest.mark.asyncio
async def test_ble_session_result_codes(transport: FakeTransport) -> None:
    controller = BikeController("28", max_level=20, transport=transport)
    assert await controller.connect()
    assert controller.device_name == "iConsole+0028"

    assert await controller.set_power(15) == ResultCode.SUCCESS
    assert await controller.set_power(25) == ResultCode.INVALID_PARAMETER
    assert await controller.start() == ResultCode.SUCCESS
    assert await controller.stop(StopCode.PAUSE) == ResultCode.SUCCESS

    transport.results[ControlOpCode.SET_TARGET_CADENCE] = ResultCode.NOT_SUPPORTED
    assert await controller.set_cadence(10) == ResultCode.NOT_SUPPORTED

    transport.fail_ops.add(ControlOpCode.SET_TARGET_POWER)
    assert await controller.set_power(10) == ResultCode.FAILED

    await controller.disconnect()
    assert transport.commands()[-1] == ControlCommand.stop(StopCode.STOP)


@pytest.mark.asyncio
async def test_ble_session_without_control(transport: FakeTransport) -> None:
    transport.results[ControlOpCode.REQUEST_CONTROL] = ResultCode.NOT_PERMITTED
    controller = BikeController("28", max_level=20, transport=transport)

    assert await controller.connect()
    assert not controller.control_granted
    assert await controller.set_cadence(10) == ResultCode.NOT_PERMITTED


@pytest.mark.asyncio
async def test_get_updates_yields_changes(transport: FakeTransport) -> None:
    controller = BikeController("28", max_level=20, transport=transport)
    controller.UPDATE_INTERVAL = 0
    await controller.connect()

    updates = controller.get_updates()
    first = await updates.__anext__()
    assert first["status"] == "WAITING"

    transport.notify(struct.pack("<HHh", 0x0040, 2000, 120))
    second = await updates.__anext__()
    assert second["status"] == "CONNECTED"
    assert second["power"] == 120

    await controller.disconnect()
    with pytest.raises(StopAsyncIteration):
        await updates.__anext__()
