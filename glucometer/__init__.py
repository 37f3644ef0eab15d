from .errors import DecodeFailure, DecodeWarning, GlucoseDecodeError, MalformedField, TruncatedPayload, WarningKind
from .racp import RacpResponse, build_fetch_command, decode_response, next_resume_sequence, resume_point
from .records import (
    ConcentrationUnits,
    Flags,
    GlucoseRecord,
    MealContext,
    PendingPair,
    SampleLocation,
    SampleType,
    decode_measurement,
    decode_record,
    merge_context,
)
from .session import BatchResult, CharacteristicKind, RawNotification, SessionState, SyncSession
from .sfloat import SpecialValue, decode_date, decode_sfloat, decode_twos_complement

__all__ = [
    "BatchResult",
    "CharacteristicKind",
    "ConcentrationUnits",
    "DecodeFailure",
    "DecodeWarning",
    "Flags",
    "GlucoseDecodeError",
    "GlucoseRecord",
    "MalformedField",
    "MealContext",
    "PendingPair",
    "RacpResponse",
    "RawNotification",
    "SampleLocation",
    "SampleType",
    "SessionState",
    "SpecialValue",
    "SyncSession",
    "TruncatedPayload",
    "WarningKind",
    "build_fetch_command",
    "decode_date",
    "decode_measurement",
    "decode_record",
    "decode_response",
    "decode_sfloat",
    "decode_twos_complement",
    "merge_context",
    "next_resume_sequence",
    "resume_point",
]
