import asyncio
import struct

import pytest
from conftest import FakeTransport

from spinctrl.connection import ConnectionState
from spinctrl.core import ICONSOLE_0028_NAME, SIMULATED_DEVICE_NAME
from spinctrl.devices import DebugBike, FtmsBike, Iconsole0028Bike, SimulatedDevice
from spinctrl.errors import (
    CancellationError,
    ControlNotGrantedError,
    ValidationError,
)
from spinctrl.protocol import ControlCommand, ControlOpCode, ResultCode, StopCode
from spinctrl.telemetry import TelemetryRecord
from spinctrl.transport import Peripheral

# ---------- Simulated device ----------


@pytest.mark.asyncio
async def test_simulated_scenario(shutdown) -> None:
    device = await SimulatedDevice.create(10, shutdown)

    assert await device.connect() is True
    with pytest.raises(ValidationError):
        await device.set_target_cadence(32)
    await device.set_target_cadence(5)

    record = await device.read()
    assert record is not None
    assert record.time >= 0


@pytest.mark.asyncio
async def test_simulated_fresh_read_is_zeroed(shutdown) -> None:
    device = await SimulatedDevice.create(10, shutdown)

    record = await device.read()

    assert record is not None
    assert record.speed == 0.0
    assert record.cadence == 0.0
    assert record.distance == 0.0
    assert record.resistance == 0.0
    assert record.power == 0
    assert record.calories == 0.0
    assert record.heart_rate == 0.0
    assert record.time >= 0


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [-5, 0, 11, 32, 1000])
async def test_simulated_rejects_out_of_range(shutdown, value: int) -> None:
    device = await SimulatedDevice.create(10, shutdown)

    with pytest.raises(ValidationError):
        await device.set_target_cadence(value)
    with pytest.raises(ValidationError):
        await device.set_target_power(value)
    assert device.history == []


@pytest.mark.asyncio
async def test_simulated_rejects_non_integer(shutdown) -> None:
    device = await SimulatedDevice.create(10, shutdown)
    with pytest.raises(ValidationError):
        await device.set_target_power(2.5)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_simulated_records_targets_with_monotonic_time(shutdown) -> None:
    device = await SimulatedDevice.create(10, shutdown)

    for value in range(1, 11):
        await device.set_target_cadence(value)
        await device.set_target_power(value)

    assert [r.kind for r in device.history[:2]] == ["cadence", "power"]
    assert [r.value for r in device.history[::2]] == list(range(1, 11))
    stamps = [r.elapsed for r in device.history]
    assert all(stamp >= 0 for stamp in stamps)
    assert stamps == sorted(stamps)


@pytest.mark.asyncio
async def test_simulated_connect_disconnect_are_recorded(shutdown) -> None:
    device = await SimulatedDevice.create(10, shutdown)
    assert device.name == SIMULATED_DEVICE_NAME

    await device.disconnect()
    assert device.disconnect_count == 1
    assert not device.is_connected

    await device.connect()
    assert device.is_connected
    await device.disconnect()
    assert device.connect_count == 1
    assert device.disconnect_count == 2


@pytest.mark.asyncio
async def test_simulated_ignores_shutdown(shutdown) -> None:
    shutdown.set()
    device = await SimulatedDevice.create(10, shutdown)
    assert await device.connect() is True


# ---------- FTMS bikes ----------


def test_iconsole_matches_exact_name() -> None:
    assert Iconsole0028Bike.matches(Peripheral(ICONSOLE_0028_NAME, "a"))
    assert not Iconsole0028Bike.matches(Peripheral(ICONSOLE_0028_NAME + "1", "a"))
    assert not Iconsole0028Bike.matches(Peripheral("iconsole+0028", "a"))


def test_debug_matches_console_substring() -> None:
    assert DebugBike.matches(Peripheral("iConsole+0028", "a"))
    assert DebugBike.matches(Peripheral("FITNESS CONSOLE 7", "a"))
    assert not DebugBike.matches(Peripheral("Heart Strap", "a"))
    assert not DebugBike.matches(Peripheral("", "a"))


@pytest.mark.asyncio
async def test_create_discovers_and_connects(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)

    assert bike.session.state == ConnectionState.CONTROL_PENDING
    assert bike.name == ICONSOLE_0028_NAME
    assert bike.is_connected
    assert transport.writes == []


@pytest.mark.asyncio
async def test_create_cancelled_before_discovery(transport, shutdown) -> None:
    shutdown.set()
    with pytest.raises(CancellationError):
        await Iconsole0028Bike.create(20, shutdown, transport)
    with pytest.raises(CancellationError):
        await DebugBike.create(20, shutdown, transport)
    assert transport.scan_calls == 0
    assert not transport.connected


@pytest.mark.asyncio
async def test_debug_bike_binds_to_console_device(shutdown) -> None:
    transport = FakeTransport(
        [
            Peripheral("Heart Strap", "11"),
            Peripheral("Generic Console X", "22"),
        ]
    )
    bike = await DebugBike.create(20, shutdown, transport)
    assert bike.session.peripheral is not None
    assert bike.session.peripheral.identity == "22"
    assert bike.name == "Generic Console X"


@pytest.mark.asyncio
async def test_connect_acquires_control_and_subscribes(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)

    assert await bike.connect() is True
    assert bike.session.state == ConnectionState.SUBSCRIBED
    # Connecting again is a no-op
    assert await bike.connect() is True
    assert transport.commands() == [ControlCommand.request_control()]


@pytest.mark.asyncio
async def test_connect_returns_false_when_control_refused(transport, shutdown) -> None:
    transport.results[ControlOpCode.REQUEST_CONTROL] = ResultCode.NOT_PERMITTED
    bike = await Iconsole0028Bike.create(20, shutdown, transport)

    assert await bike.connect() is False
    with pytest.raises(ControlNotGrantedError):
        await bike.set_target_power(10)


@pytest.mark.asyncio
async def test_targets_are_sent_after_validation(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.connect()

    await bike.set_target_cadence(18)
    await bike.set_target_power(20)

    assert transport.commands()[1:] == [
        ControlCommand.target_cadence(18),
        ControlCommand.target_power(20),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [0, -1, 21, 150])
async def test_out_of_range_targets_send_nothing(transport, shutdown, value: int) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.connect()
    writes_before = len(transport.writes)

    with pytest.raises(ValidationError):
        await bike.set_target_cadence(value)
    with pytest.raises(ValidationError):
        await bike.set_target_power(value)
    assert len(transport.writes) == writes_before


@pytest.mark.asyncio
async def test_validation_checked_before_control(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    # Control not yet requested
    with pytest.raises(ValidationError):
        await bike.set_target_power(99)
    with pytest.raises(ControlNotGrantedError):
        await bike.set_target_power(9)


@pytest.mark.asyncio
async def test_start_and_stop(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.connect()

    await bike.start()
    await bike.stop(StopCode.PAUSE)

    assert transport.commands()[-2:] == [
        ControlCommand.start(),
        ControlCommand.stop(StopCode.PAUSE),
    ]


@pytest.mark.asyncio
async def test_read_before_and_after_telemetry(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.connect()
    assert await bike.read() is None

    transport.notify(struct.pack("<HHHh", 0x0044, 1800, 160, 140))

    record = await bike.read()
    assert isinstance(record, TelemetryRecord)
    assert record.speed == 18.0
    assert record.cadence == 80.0
    assert record.power == 140


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.connect()

    await bike.disconnect()
    await bike.disconnect()

    assert not bike.is_connected
    assert transport.commands()[-1] == ControlCommand.stop(StopCode.STOP)


@pytest.mark.asyncio
async def test_reconnect_after_disconnect_rediscovers(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.connect()
    await bike.disconnect()
    scans = transport.scan_calls

    assert await bike.connect() is True
    assert transport.scan_calls == scans + 1
    assert bike.session.state == ConnectionState.SUBSCRIBED


@pytest.mark.asyncio
async def test_reconnect_honours_shutdown(transport, shutdown) -> None:
    bike = await Iconsole0028Bike.create(20, shutdown, transport)
    await bike.disconnect()
    shutdown.set()

    with pytest.raises(CancellationError):
        await bike.connect()
    assert bike.session.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_disconnect_while_discovering_leaves_bike_disconnected(
    transport, shutdown
) -> None:
    transport.scan_delay = 0.05
    bike = Iconsole0028Bike(20, shutdown, transport, poll_interval=0)
    task = asyncio.create_task(bike.connect())
    await asyncio.sleep(0.01)

    await bike.disconnect()

    with pytest.raises(CancellationError):
        await task
    assert not bike.is_connected
    assert not transport.connected
    assert transport.writes == []
    assert bike.session.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_ftms_bike_base_cannot_be_created(transport, shutdown) -> None:
    with pytest.raises(TypeError):
        await FtmsBike.create(20, shutdown, transport, poll_interval=0)
    assert transport.scan_calls == 0
