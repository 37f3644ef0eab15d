"""Decoding of Glucose Measurement (0x2A18) and Measurement Context (0x2A34) payloads.

Measurement layout handled here:

    [0]      flags
    [1:3]    sequence number (uint16 LE)
    [3:10]   base time: year (uint16 LE), month, day, hour, minute, second
    [10:12]  time offset, 12-bit two's complement minutes
    [12:14]  glucose concentration, SFLOAT
    [14]     type (low nibble) and sample location (high nibble), optional
    [15:17]  sensor status annunciation (uint16 LE), optional, flag bit 3

Context layout: [0] flags, [1:3] sequence number, [3] meal code when flag bit 1
is set.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple, Union

from .errors import DecodeWarning, TruncatedPayload, WarningKind
from .sfloat import SpecialValue, decode_date, decode_sfloat, decode_twos_complement, read_uint16

logger = logging.getLogger(__name__)

MIN_MEASUREMENT_LENGTH = 14
MIN_CONTEXT_LENGTH = 3
TYPE_LOCATION_OFFSET = 14
STATUS_ANNUNCIATION_OFFSET = 15
MEAL_OFFSET = 3

# Measurement flag bits
FLAG_UNITS_MOLAR = 0x04
FLAG_STATUS_ANNUNCIATION_PRESENT = 0x08
FLAG_CONTEXT_FOLLOWS = 0x10

# Context flag bits
CONTEXT_FLAG_MEAL_PRESENT = 0x02


class ConcentrationUnits(str, Enum):
    MASS_PER_VOLUME = "kg/L"
    MOLAR_PER_VOLUME = "mol/L"


class SampleType(str, Enum):
    CAPILLARY_WHOLE_BLOOD = "capillary_whole_blood"
    CAPILLARY_PLASMA = "capillary_plasma"
    VENOUS_WHOLE_BLOOD = "venous_whole_blood"
    VENOUS_PLASMA = "venous_plasma"
    ARTERIAL_WHOLE_BLOOD = "arterial_whole_blood"
    ARTERIAL_PLASMA = "arterial_plasma"
    UNDETERMINED_WHOLE_BLOOD = "undetermined_whole_blood"
    UNDETERMINED_PLASMA = "undetermined_plasma"
    INTERSTITIAL_FLUID = "interstitial_fluid"
    CONTROL_SOLUTION = "control_solution"
    UNKNOWN = "unknown"


class SampleLocation(str, Enum):
    FINGER = "finger"
    ALTERNATE_SITE = "alternate_site"
    EARLOBE = "earlobe"
    CONTROL_SOLUTION = "control_solution"
    NOT_AVAILABLE = "not_available"
    RESERVED = "reserved"
    OTHER = "other"


class MealContext(str, Enum):
    PREPRANDIAL = "preprandial"
    POSTPRANDIAL = "postprandial"
    FASTING = "fasting"
    CASUAL = "casual"
    BEDTIME = "bedtime"
    NO_MEAL_DEFINED = "no_meal_defined"
    UNDEFINED = "undefined"


SAMPLE_TYPES = {
    1: SampleType.CAPILLARY_WHOLE_BLOOD,
    2: SampleType.CAPILLARY_PLASMA,
    3: SampleType.VENOUS_WHOLE_BLOOD,
    4: SampleType.VENOUS_PLASMA,
    5: SampleType.ARTERIAL_WHOLE_BLOOD,
    6: SampleType.ARTERIAL_PLASMA,
    7: SampleType.UNDETERMINED_WHOLE_BLOOD,
    8: SampleType.UNDETERMINED_PLASMA,
    9: SampleType.INTERSTITIAL_FLUID,
    10: SampleType.CONTROL_SOLUTION,
}

SAMPLE_LOCATIONS = {
    0: SampleLocation.RESERVED,
    1: SampleLocation.FINGER,
    2: SampleLocation.ALTERNATE_SITE,
    3: SampleLocation.EARLOBE,
    4: SampleLocation.CONTROL_SOLUTION,
    15: SampleLocation.NOT_AVAILABLE,
}

MEAL_CONTEXTS = {
    1: MealContext.PREPRANDIAL,
    2: MealContext.POSTPRANDIAL,
    3: MealContext.FASTING,
    4: MealContext.CASUAL,
    5: MealContext.BEDTIME,
}


@dataclass(frozen=True)
class Flags:
    """Sensor status annunciation bits."""

    device_battery_low: bool = False
    sensor_malfunction: bool = False
    sample_size_insufficient: bool = False
    strip_insertion_error: bool = False
    incorrect_strip: bool = False
    result_too_high: bool = False
    result_too_low: bool = False
    temperature_too_high: bool = False
    temperature_too_low: bool = False
    read_interrupted: bool = False
    general_device_fault: bool = False
    time_fault: bool = False
    reserved: bool = False

    @classmethod
    def from_annunciation(cls, word: int) -> "Flags":
        return cls(
            device_battery_low=bool(word & 0x0001),
            sensor_malfunction=bool(word & 0x0002),
            sample_size_insufficient=bool(word & 0x0004),
            strip_insertion_error=bool(word & 0x0008),
            incorrect_strip=bool(word & 0x0010),
            result_too_high=bool(word & 0x0020),
            result_too_low=bool(word & 0x0040),
            temperature_too_high=bool(word & 0x0080),
            temperature_too_low=bool(word & 0x0100),
            read_interrupted=bool(word & 0x0200),
            general_device_fault=bool(word & 0x0400),
            time_fault=bool(word & 0x0800),
            reserved=bool(word & 0xF000),
        )

    def any(self) -> bool:
        return any(vars(self).values())


@dataclass(frozen=True)
class GlucoseRecord:
    device_id: str
    sequence_number: int
    timestamp: datetime
    time_offset_seconds: int
    concentration: Union[float, SpecialValue]
    concentration_units: ConcentrationUnits
    sample_type: Optional[SampleType]
    sample_location: Optional[SampleLocation]
    sensor_flags: Flags
    meal_context: MealContext

    @property
    def is_special_value(self) -> bool:
        return isinstance(self.concentration, SpecialValue)

    @property
    def local_timestamp(self) -> datetime:
        """Base time expressed in the meter's local time zone."""
        return self.timestamp.astimezone(timezone(timedelta(seconds=self.time_offset_seconds)))


@dataclass(frozen=True)
class PendingPair:
    """A decoded measurement waiting for its context notification."""

    record: GlucoseRecord
    raw: bytes = b""
    warnings: Tuple[DecodeWarning, ...] = field(default_factory=tuple)

    @property
    def device_id(self) -> str:
        return self.record.device_id

    @property
    def sequence_number(self) -> int:
        return self.record.sequence_number


def context_follows(measurement: bytes) -> bool:
    return bool(measurement and measurement[0] & FLAG_CONTEXT_FOLLOWS)


def decode_type_location(value: int) -> Tuple[SampleType, SampleLocation]:
    """Split the type/location byte. Reserved codes are never an error."""
    sample_type = SAMPLE_TYPES.get(value & 0x0F, SampleType.UNKNOWN)
    sample_location = SAMPLE_LOCATIONS.get((value >> 4) & 0x0F, SampleLocation.OTHER)
    return sample_type, sample_location


def _decode_fields(data: bytes, device_id: str) -> Tuple[GlucoseRecord, List[DecodeWarning]]:
    if len(data) < MIN_MEASUREMENT_LENGTH:
        raise TruncatedPayload(
            f"Glucose measurement needs {MIN_MEASUREMENT_LENGTH} bytes, got {len(data)}", data
        )

    flags = data[0]
    sequence_number = read_uint16(data, 1)
    timestamp = decode_date(read_uint16(data, 3), data[5], data[6], data[7], data[8], data[9])

    offset_minutes = decode_twos_complement(read_uint16(data, 10) & 0x0FFF, 12)

    concentration = decode_sfloat(read_uint16(data, 12))
    units = (
        ConcentrationUnits.MOLAR_PER_VOLUME if flags & FLAG_UNITS_MOLAR
        else ConcentrationUnits.MASS_PER_VOLUME
    )

    sample_type = sample_location = None
    if len(data) > TYPE_LOCATION_OFFSET:
        sample_type, sample_location = decode_type_location(data[TYPE_LOCATION_OFFSET])

    warnings = []
    sensor_flags = Flags()
    if flags & FLAG_STATUS_ANNUNCIATION_PRESENT:
        if len(data) >= STATUS_ANNUNCIATION_OFFSET + 2:
            sensor_flags = Flags.from_annunciation(read_uint16(data, STATUS_ANNUNCIATION_OFFSET))
        else:
            warnings.append(DecodeWarning(
                kind=WarningKind.MISSING_STATUS_ANNUNCIATION,
                message="Status annunciation flagged but not present",
                sequence_number=sequence_number,
                raw=data,
            ))

    record = GlucoseRecord(
        device_id=device_id,
        sequence_number=sequence_number,
        timestamp=timestamp,
        time_offset_seconds=offset_minutes * 60,
        concentration=concentration,
        concentration_units=units,
        sample_type=sample_type,
        sample_location=sample_location,
        sensor_flags=sensor_flags,
        meal_context=MealContext.NO_MEAL_DEFINED,
    )
    return record, warnings


def decode_measurement(measurement: bytes, device_id: str) -> Union[GlucoseRecord, PendingPair]:
    """Decode a Glucose Measurement payload.

    Returns a finished GlucoseRecord when no context follows, otherwise a
    PendingPair that has to go through merge_context. Raises TruncatedPayload
    or MalformedField when the payload cannot be decoded.
    """
    data = bytes(measurement)
    record, warnings = _decode_fields(data, device_id)
    for warning in warnings:
        logger.warning("Record %d: %s", record.sequence_number, warning.message)

    if context_follows(data):
        return PendingPair(record=record, raw=data, warnings=tuple(warnings))
    return record


def merge_context(pending: PendingPair, context: bytes) -> Tuple[GlucoseRecord, List[DecodeWarning]]:
    """Combine a pending measurement with its Measurement Context payload."""
    data = bytes(context)
    if len(data) < MIN_CONTEXT_LENGTH:
        raise TruncatedPayload(
            f"Measurement context needs {MIN_CONTEXT_LENGTH} bytes, got {len(data)}", data
        )

    warnings = list(pending.warnings)
    context_sequence = read_uint16(data, 1)
    if context_sequence != pending.sequence_number:
        warnings.append(DecodeWarning(
            kind=WarningKind.CONTEXT_SEQUENCE_MISMATCH,
            message=f"Context for record {context_sequence} merged into record {pending.sequence_number}",
            sequence_number=pending.sequence_number,
            raw=data,
        ))

    meal_context = MealContext.UNDEFINED
    if data[0] & CONTEXT_FLAG_MEAL_PRESENT:
        if len(data) <= MEAL_OFFSET:
            raise TruncatedPayload("Meal flag set but meal byte missing", data)
        code = data[MEAL_OFFSET]
        if code in MEAL_CONTEXTS:
            meal_context = MEAL_CONTEXTS[code]
        else:
            warnings.append(DecodeWarning(
                kind=WarningKind.UNDEFINED_MEAL_CONTEXT,
                message=f"Unknown meal code {code}",
                sequence_number=pending.sequence_number,
                raw=data,
            ))

    for warning in warnings[len(pending.warnings):]:
        logger.warning("Record %d: %s", pending.sequence_number, warning.message)

    return replace(pending.record, meal_context=meal_context), warnings


def decode_record(measurement: bytes, context: Optional[bytes], device_id: str) -> GlucoseRecord:
    """Decode a measurement and its optional context in one go."""
    decoded = decode_measurement(measurement, device_id)
    if isinstance(decoded, GlucoseRecord):
        return decoded
    if not context:
        raise TruncatedPayload("Measurement expects a context payload", decoded.raw)
    record, _ = merge_context(decoded, context)
    return record
