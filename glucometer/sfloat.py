"""Field-level decoders for the Bluetooth Glucose Profile.

Provides:
- decode_twos_complement / encode_twos_complement for nibble and 12-bit fields
- decode_sfloat for IEEE-11073 16-bit SFLOAT values
- decode_date for the split base-time field
- read_uint16 for little-endian integers inside a payload
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Union

from .errors import MalformedField, TruncatedPayload


class SpecialValue(str, Enum):
    """Reserved SFLOAT encodings that do not carry a number."""

    NAN = "NaN"
    NRES = "NRes"
    POSITIVE_INFINITY = "+INFINITY"
    NEGATIVE_INFINITY = "-INFINITY"
    RESERVED = "Reserved"


# Only meaningful with a zero exponent
_SPECIAL_MANTISSAS = {
    0x07FF: SpecialValue.NAN,
    0x0800: SpecialValue.NRES,
    0x07FE: SpecialValue.POSITIVE_INFINITY,
    0x0802: SpecialValue.NEGATIVE_INFINITY,
    0x0801: SpecialValue.RESERVED,
}


def decode_twos_complement(value: int, bit_width: int) -> int:
    """Interpret the low ``bit_width`` bits of ``value`` as a signed integer."""
    if bit_width <= 0:
        raise MalformedField(f"Invalid bit width {bit_width}")
    limit = 1 << bit_width
    if value < 0 or value >= limit:
        raise MalformedField(f"Value {value} does not fit in {bit_width} bits")
    if value & (1 << (bit_width - 1)):
        return value - limit
    return value


def encode_twos_complement(value: int, bit_width: int) -> int:
    """Inverse of decode_twos_complement."""
    if bit_width <= 0:
        raise MalformedField(f"Invalid bit width {bit_width}")
    half = 1 << (bit_width - 1)
    if value < -half or value >= half:
        raise MalformedField(f"Value {value} is out of range for {bit_width} bits")
    return value & ((1 << bit_width) - 1)


def decode_sfloat(raw: int) -> Union[float, SpecialValue]:
    """Convert an IEEE-11073 16-bit SFLOAT to a Python float.

    Bits 0-11 hold a signed mantissa and bits 12-15 a signed base-10 exponent,
    so value = mantissa * 10**exponent. The reserved NaN, NRes, +/-INFINITY and
    Reserved encodings come back as a SpecialValue instead of a number.
    """
    if raw < 0 or raw > 0xFFFF:
        raise MalformedField(f"SFLOAT value {raw} does not fit in 16 bits")
    raw_mantissa = raw & 0x0FFF
    raw_exponent = (raw >> 12) & 0x0F
    if raw_exponent == 0 and raw_mantissa in _SPECIAL_MANTISSAS:
        return _SPECIAL_MANTISSAS[raw_mantissa]

    mantissa = decode_twos_complement(raw_mantissa, 12)
    exponent = decode_twos_complement(raw_exponent, 4)
    if exponent < 0:
        # divide so 126 * 10**-5 rounds to the nearest float of 0.00126
        return mantissa / (10 ** -exponent)
    return float(mantissa * (10 ** exponent))


def decode_date(year: int, month: int, day: int, hour: int, minute: int, second: int) -> datetime:
    """Build a UTC timestamp from the seven-byte base time field."""
    raw = (year & 0xFFFF).to_bytes(2, "little") + bytes(
        v & 0xFF for v in (month, day, hour, minute, second)
    )
    if not 1 <= month <= 12 or not 1 <= day <= 31:
        raise MalformedField(f"Invalid calendar date {year}-{month:02d}-{day:02d}", raw)
    if hour >= 24 or minute >= 60 or second >= 60:
        raise MalformedField(f"Invalid time of day {hour:02d}:{minute:02d}:{second:02d}", raw)
    try:
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)
    except ValueError as e:
        raise MalformedField(f"Invalid calendar date {year}-{month:02d}-{day:02d}: {e}", raw) from e


def read_uint16(data: bytes, offset: int) -> int:
    if len(data) < offset + 2:
        raise TruncatedPayload(
            f"Need 2 bytes at offset {offset}, payload has {len(data)}", bytes(data)
        )
    return int.from_bytes(data[offset:offset + 2], byteorder="little")
