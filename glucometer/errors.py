"""Errors and non-fatal reports raised while decoding glucose meter data."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class GlucoseDecodeError(Exception):
    """Base class for failures that make a single record undecodable."""

    def __init__(self, message: str, raw: bytes = b""):
        super().__init__(message)
        self.raw = bytes(raw)

    def __str__(self):
        message = super().__str__()
        if self.raw:
            return f"{message} (raw: {self.raw.hex()})"
        return message


class TruncatedPayload(GlucoseDecodeError):
    """Payload is shorter than the fields it has to carry."""


class MalformedField(GlucoseDecodeError):
    """A field is present but its value cannot be decoded."""


class WarningKind(str, Enum):
    ORPHANED_CONTEXT = "orphaned_context"
    UNPAIRED_MEASUREMENT = "unpaired_measurement"
    UNDEFINED_MEAL_CONTEXT = "undefined_meal_context"
    CONTEXT_SEQUENCE_MISMATCH = "context_sequence_mismatch"
    MISSING_STATUS_ANNUNCIATION = "missing_status_annunciation"


@dataclass(frozen=True)
class DecodeWarning:
    """Inconsistency that was reported and then skipped over."""

    kind: WarningKind
    message: str
    sequence_number: Optional[int] = None
    raw: bytes = b""


@dataclass(frozen=True)
class DecodeFailure:
    """A record dropped from the batch because it failed to decode."""

    error: GlucoseDecodeError
    measurement: bytes = b""
    context: bytes = b""

    @property
    def reason(self) -> str:
        return str(self.error)
