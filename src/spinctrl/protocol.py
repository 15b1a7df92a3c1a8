"""
FTMS control point codec and Indoor Bike Data parser.

Commands are encoded as a single op code byte optionally followed by a
little-endian parameter. Acknowledgments arrive as control point
indications of the form ``0x80, request_op, result``.
"""

import struct
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Optional

from .errors import ProtocolDecodeError, ValidationError
from .telemetry import TelemetryRecord

INT16_MIN = -0x8000
INT16_MAX = 0x7FFF


class ControlOpCode(IntEnum):
    """Fitness Machine Control Point op codes."""

    REQUEST_CONTROL = 0x00
    RESET = 0x01
    SET_TARGET_POWER = 0x05
    START_RESUME = 0x07
    STOP_PAUSE = 0x08
    SPIN_DOWN_CONTROL = 0x13
    SET_TARGET_CADENCE = 0x14
    # Response tag, never sent
    RESPONSE_CODE = 0x80


class StopCode(IntEnum):
    STOP = 0x01
    PAUSE = 0x02


class ResultCode(IntEnum):
    """Result codes carried by control point responses."""

    SUCCESS = 0x01
    NOT_SUPPORTED = 0x02
    INVALID_PARAMETER = 0x03
    FAILED = 0x04
    NOT_PERMITTED = 0x05


# Op codes whose parameter is a signed 16-bit value
_INT16_PARAMETER_OPS = frozenset(
    {ControlOpCode.SET_TARGET_POWER, ControlOpCode.SET_TARGET_CADENCE}
)

# Op codes that require control point ownership
CONTROLLED_OPS = frozenset(
    {
        ControlOpCode.SET_TARGET_POWER,
        ControlOpCode.SET_TARGET_CADENCE,
        ControlOpCode.START_RESUME,
        ControlOpCode.STOP_PAUSE,
    }
)


@dataclass(frozen=True)
class ControlCommand:
    """A control point command: op code plus optional parameter."""

    op_code: ControlOpCode
    parameter: Optional[int] = None

    @classmethod
    def request_control(cls) -> "ControlCommand":
        return cls(ControlOpCode.REQUEST_CONTROL)

    @classmethod
    def target_power(cls, watts: int) -> "ControlCommand":
        return cls(ControlOpCode.SET_TARGET_POWER, watts)

    @classmethod
    def start(cls) -> "ControlCommand":
        return cls(ControlOpCode.START_RESUME)

    @classmethod
    def stop(cls, stop_code: StopCode = StopCode.STOP) -> "ControlCommand":
        return cls(ControlOpCode.STOP_PAUSE, int(stop_code))

    @classmethod
    def spin_down_control(cls) -> "ControlCommand":
        return cls(ControlOpCode.SPIN_DOWN_CONTROL)

    @classmethod
    def target_cadence(cls, rpm: int) -> "ControlCommand":
        return cls(ControlOpCode.SET_TARGET_CADENCE, rpm)

    @property
    def requires_control(self) -> bool:
        return self.op_code in CONTROLLED_OPS

    def encode(self) -> bytes:
        """Encode the command for a control point write.

        Raises:
            ValidationError: parameter missing or not representable
        """
        if self.op_code == ControlOpCode.RESPONSE_CODE:
            raise ValidationError("Response code cannot be sent as a command")

        payload = bytes([self.op_code])
        if self.op_code in _INT16_PARAMETER_OPS:
            if self.parameter is None:
                raise ValidationError(f"{self.op_code.name} requires a parameter")
            if not INT16_MIN <= self.parameter <= INT16_MAX:
                raise ValidationError(
                    f"{self.op_code.name} parameter {self.parameter} does not fit int16",
                    self.parameter,
                )
            return payload + struct.pack("<h", self.parameter)

        if self.op_code == ControlOpCode.STOP_PAUSE:
            try:
                stop_code = StopCode(
                    self.parameter if self.parameter is not None else StopCode.STOP
                )
            except ValueError:
                raise ValidationError(
                    f"Unknown stop code {self.parameter}", self.parameter
                ) from None
            return payload + bytes([stop_code])

        return payload


def decode_command(data: bytes) -> ControlCommand:
    """Decode a control point write back into a command.

    Raises:
        ProtocolDecodeError: unknown op code or wrong length
    """
    if not data:
        raise ProtocolDecodeError("Empty control point payload")

    try:
        op_code = ControlOpCode(data[0])
    except ValueError:
        raise ProtocolDecodeError(f"Unknown op code 0x{data[0]:02X}") from None

    if op_code == ControlOpCode.RESPONSE_CODE:
        raise ProtocolDecodeError("Response code is not a command")

    if op_code in _INT16_PARAMETER_OPS:
        if len(data) != 3:
            raise ProtocolDecodeError(
                f"{op_code.name} expects 3 bytes, got {len(data)}"
            )
        return ControlCommand(op_code, struct.unpack_from("<h", data, 1)[0])

    if op_code == ControlOpCode.STOP_PAUSE:
        if len(data) != 2:
            raise ProtocolDecodeError(f"STOP_PAUSE expects 2 bytes, got {len(data)}")
        try:
            return ControlCommand(op_code, int(StopCode(data[1])))
        except ValueError:
            raise ProtocolDecodeError(f"Unknown stop code 0x{data[1]:02X}") from None

    if len(data) != 1:
        raise ProtocolDecodeError(f"{op_code.name} takes no parameter")
    return ControlCommand(op_code)


@dataclass(frozen=True)
class ControlResponse:
    """Acknowledgment of a control point command."""

    request_op_code: int
    result: int

    @property
    def ok(self) -> bool:
        return self.result == ResultCode.SUCCESS


def decode_response(data: bytes) -> ControlResponse:
    """Parse a control point indication.

    Raises:
        ProtocolDecodeError: not a response or too short
    """
    if len(data) < 3:
        raise ProtocolDecodeError(f"Control point response too short: {data.hex(' ')}")
    if data[0] != ControlOpCode.RESPONSE_CODE:
        raise ProtocolDecodeError(f"Not a control point response: {data.hex(' ')}")

    result: int = data[2]
    try:
        result = ResultCode(result)
    except ValueError:
        pass
    return ControlResponse(request_op_code=data[1], result=result)


# Indoor Bike Data flags
FLAG_MORE_DATA = 1 << 0
FLAG_AVERAGE_SPEED_PRESENT = 1 << 1
FLAG_INSTANTANEOUS_CADENCE_PRESENT = 1 << 2
FLAG_AVERAGE_CADENCE_PRESENT = 1 << 3
FLAG_TOTAL_DISTANCE_PRESENT = 1 << 4
FLAG_RESISTANCE_LEVEL_PRESENT = 1 << 5
FLAG_INSTANTANEOUS_POWER_PRESENT = 1 << 6
FLAG_AVERAGE_POWER_PRESENT = 1 << 7
FLAG_EXPENDED_ENERGY_PRESENT = 1 << 8
FLAG_HEART_RATE_PRESENT = 1 << 9
FLAG_METABOLIC_EQUIVALENT_PRESENT = 1 << 10
FLAG_ELAPSED_TIME_PRESENT = 1 << 11
FLAG_REMAINING_TIME_PRESENT = 1 << 12


@dataclass(frozen=True)
class IndoorBikeDataFlags:
    more_data: bool
    average_speed_present: bool
    instantaneous_cadence_present: bool
    average_cadence_present: bool
    total_distance_present: bool
    resistance_level_present: bool
    instantaneous_power_present: bool
    average_power_present: bool
    expended_energy_present: bool
    heart_rate_present: bool
    metabolic_equivalent_present: bool
    elapsed_time_present: bool
    remaining_time_present: bool

    @property
    def instantaneous_speed_present(self) -> bool:
        return not self.more_data


def parse_indoor_bike_flags(raw_flags: int) -> IndoorBikeDataFlags:
    """Decode FTMS Indoor Bike Data flags into a typed structure.

    Reserved bits are ignored.
    """
    return IndoorBikeDataFlags(
        more_data=bool(raw_flags & FLAG_MORE_DATA),
        average_speed_present=bool(raw_flags & FLAG_AVERAGE_SPEED_PRESENT),
        instantaneous_cadence_present=bool(raw_flags & FLAG_INSTANTANEOUS_CADENCE_PRESENT),
        average_cadence_present=bool(raw_flags & FLAG_AVERAGE_CADENCE_PRESENT),
        total_distance_present=bool(raw_flags & FLAG_TOTAL_DISTANCE_PRESENT),
        resistance_level_present=bool(raw_flags & FLAG_RESISTANCE_LEVEL_PRESENT),
        instantaneous_power_present=bool(raw_flags & FLAG_INSTANTANEOUS_POWER_PRESENT),
        average_power_present=bool(raw_flags & FLAG_AVERAGE_POWER_PRESENT),
        expended_energy_present=bool(raw_flags & FLAG_EXPENDED_ENERGY_PRESENT),
        heart_rate_present=bool(raw_flags & FLAG_HEART_RATE_PRESENT),
        metabolic_equivalent_present=bool(raw_flags & FLAG_METABOLIC_EQUIVALENT_PRESENT),
        elapsed_time_present=bool(raw_flags & FLAG_ELAPSED_TIME_PRESENT),
        remaining_time_present=bool(raw_flags & FLAG_REMAINING_TIME_PRESENT),
    )


class _Reader:
    """Cursor over a notification payload."""

    def __init__(self, payload: bytes) -> None:
        self._payload = payload
        self.cursor = 0

    def take(self, size: int) -> bytes:
        if self.cursor + size > len(self._payload):
            raise ProtocolDecodeError(
                f"Invalid Indoor Bike Data payload: expected {size} bytes "
                f"at offset {self.cursor}, have {len(self._payload) - self.cursor}"
            )
        chunk = self._payload[self.cursor : self.cursor + size]
        self.cursor += size
        return chunk

    def skip(self, size: int) -> None:
        self.take(size)

    def uint8(self) -> int:
        return self.take(1)[0]

    def uint16(self) -> int:
        return struct.unpack("<H", self.take(2))[0]

    def sint16(self) -> int:
        return struct.unpack("<h", self.take(2))[0]

    def uint24(self) -> int:
        return int.from_bytes(self.take(3), "little")


def decode_indoor_bike_data(
    payload: bytes, previous: Optional[TelemetryRecord] = None
) -> TelemetryRecord:
    """Parse an Indoor Bike Data notification (0x2AD2).

    Fields missing from the payload keep their value from ``previous``
    (or zero when there is none).

    Raises:
        ProtocolDecodeError: payload shorter than its flags announce
    """
    payload = bytes(payload)
    if len(payload) < 2:
        raise ProtocolDecodeError("Indoor Bike Data payload too short")

    reader = _Reader(payload)
    flags = parse_indoor_bike_flags(reader.uint16())
    fields: dict = {}

    if flags.instantaneous_speed_present:
        fields["speed"] = reader.uint16() / 100.0
    if flags.average_speed_present:
        reader.skip(2)
    if flags.instantaneous_cadence_present:
        fields["cadence"] = reader.uint16() / 2.0
    if flags.average_cadence_present:
        reader.skip(2)
    if flags.total_distance_present:
        fields["distance"] = float(reader.uint24())
    if flags.resistance_level_present:
        fields["resistance"] = float(reader.sint16())
    if flags.instantaneous_power_present:
        # Negative power (braking) is reported as zero; no upper cap
        fields["power"] = max(reader.sint16(), 0)
    if flags.average_power_present:
        reader.skip(2)
    if flags.expended_energy_present:
        fields["calories"] = float(reader.uint16())
        reader.skip(3)  # energy per hour + per minute
    if flags.heart_rate_present:
        fields["heart_rate"] = float(reader.uint8())
    if flags.metabolic_equivalent_present:
        reader.skip(1)
    if flags.elapsed_time_present:
        fields["time"] = reader.uint16()
    if flags.remaining_time_present:
        reader.skip(2)

    return replace(previous or TelemetryRecord(), **fields)
