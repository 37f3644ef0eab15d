"""Reassembly of glucose notifications into a batch of records.

A meter answering a RACP request sends, per stored record, one Glucose
Measurement notification optionally followed by one Measurement Context
notification, and finally a RACP indication. SyncSession pairs the two
halves, decodes them, and hands back the batch once the RACP indication
arrives.

States: IDLE -> AWAITING_MEASUREMENT <-> AWAITING_CONTEXT -> BATCH_COMPLETE.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .errors import DecodeFailure, DecodeWarning, GlucoseDecodeError, WarningKind
from .racp import RacpResponse, build_fetch_command, decode_response, next_resume_sequence, resume_point
from .records import GlucoseRecord, PendingPair, context_follows, decode_measurement, merge_context

logger = logging.getLogger(__name__)


class CharacteristicKind(str, Enum):
    MEASUREMENT_VALUE = "glucose_measurement"
    MEASUREMENT_CONTEXT = "glucose_measurement_context"
    RECORD_ACCESS_CONTROL_POINT = "record_access_control_point"


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_MEASUREMENT = "awaiting_measurement"
    AWAITING_CONTEXT = "awaiting_context"
    BATCH_COMPLETE = "batch_complete"


@dataclass(frozen=True)
class RawNotification:
    kind: CharacteristicKind
    data: bytes = b""


@dataclass(frozen=True)
class BatchResult:
    """Records collected between a RACP request and its response."""

    device_id: str
    records: Tuple[GlucoseRecord, ...] = field(default_factory=tuple)
    warnings: Tuple[DecodeWarning, ...] = field(default_factory=tuple)
    errors: Tuple[DecodeFailure, ...] = field(default_factory=tuple)
    response: Optional[RacpResponse] = None
    complete: bool = False
    resume_sequence: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return (self.complete and self.response is not None
                and self.response.completes_batch and self.response.succeeded)

    @property
    def skipped(self) -> int:
        return len(self.errors)


class SyncSession:
    def __init__(self, device_id: str, last_known_sequence_number: Optional[int] = None):
        self.device_id = device_id
        self.last_known_sequence_number = last_known_sequence_number
        self.state = SessionState.IDLE
        self.accumulated_records: List[GlucoseRecord] = []
        self.warnings: List[DecodeWarning] = []
        self.errors: List[DecodeFailure] = []
        self.response: Optional[RacpResponse] = None
        self._pending: Optional[PendingPair] = None
        self._lock = threading.Lock()

    def begin(self) -> bytes:
        """Open a new batch and return the RACP command that requests it."""
        with self._lock:
            if self.state in (SessionState.AWAITING_MEASUREMENT, SessionState.AWAITING_CONTEXT):
                raise RuntimeError(f"Batch already in progress for {self.device_id}")
            self._clear()
            self.state = SessionState.AWAITING_MEASUREMENT
            from_sequence = next_resume_sequence(self.last_known_sequence_number)
            logger.info("Requesting records from sequence %d on %s", from_sequence, self.device_id)
            return build_fetch_command(from_sequence)

    def handle(self, notification: RawNotification) -> Optional[BatchResult]:
        """Process one notification. Returns the batch when it completes."""
        if not isinstance(notification, RawNotification) or not isinstance(notification.kind, CharacteristicKind):
            raise TypeError(f"Expected a RawNotification with a CharacteristicKind, got {notification!r}")

        with self._lock:
            data = bytes(notification.data)
            if notification.kind is CharacteristicKind.MEASUREMENT_VALUE:
                self._on_measurement(data)
            elif notification.kind is CharacteristicKind.MEASUREMENT_CONTEXT:
                self._on_context(data)
            else:
                return self._on_racp(data)
            return None

    def cancel(self) -> BatchResult:
        """Abandon the batch, keeping whatever was already decoded."""
        with self._lock:
            self._drop_pending("Batch cancelled before context arrived")
            result = self._result(complete=False)
            logger.info("Batch on %s cancelled with %d record(s)", self.device_id, len(result.records))
            self._clear()
            self.state = SessionState.IDLE
            return result

    def reset(self) -> None:
        with self._lock:
            self._clear()
            self.state = SessionState.IDLE

    def _clear(self) -> None:
        self.accumulated_records = []
        self.warnings = []
        self.errors = []
        self.response = None
        self._pending = None

    def _on_measurement(self, data: bytes) -> None:
        if self.state is SessionState.BATCH_COMPLETE:
            self._clear()
        elif self.state is SessionState.AWAITING_CONTEXT:
            self._drop_pending("Measurement arrived before the expected context")
        self.state = SessionState.AWAITING_MEASUREMENT

        try:
            decoded = decode_measurement(data, self.device_id)
        except GlucoseDecodeError as e:
            logger.warning("Skipping undecodable measurement: %s", e)
            self.errors.append(DecodeFailure(error=e, measurement=data))
            if context_follows(data):
                # the context that follows belongs to the skipped record
                self.state = SessionState.AWAITING_CONTEXT
            return

        if isinstance(decoded, PendingPair):
            self._pending = decoded
            self.state = SessionState.AWAITING_CONTEXT
            return
        self._emit(decoded)

    def _on_context(self, data: bytes) -> None:
        if self.state is not SessionState.AWAITING_CONTEXT:
            warning = DecodeWarning(
                kind=WarningKind.ORPHANED_CONTEXT,
                message="Context received without a preceding measurement",
                raw=data,
            )
            logger.warning(warning.message)
            self.warnings.append(warning)
            return

        pending, self._pending = self._pending, None
        self.state = SessionState.AWAITING_MEASUREMENT
        if pending is None:
            logger.debug("Discarding context of a skipped measurement")
            return

        try:
            record, warnings = merge_context(pending, data)
        except GlucoseDecodeError as e:
            logger.warning("Skipping record %d, context undecodable: %s", pending.sequence_number, e)
            self.errors.append(DecodeFailure(error=e, measurement=pending.raw, context=data))
            return
        self.warnings.extend(warnings)
        self._emit(record)

    def _on_racp(self, data: bytes) -> BatchResult:
        self._drop_pending("RACP response arrived before the expected context")

        try:
            self.response = decode_response(data)
        except GlucoseDecodeError as e:
            logger.warning("Undecodable RACP response: %s", e)
            self.errors.append(DecodeFailure(error=e))
            self.response = None

        result = self._result(complete=True)
        # records are handed out once, a repeated indication yields an empty batch
        self._clear()
        self.state = SessionState.BATCH_COMPLETE
        if result.resume_sequence is not None:
            self.last_known_sequence_number = result.resume_sequence

        if result.response is not None and result.response.completes_batch:
            logger.info("Batch on %s complete: %s, %d record(s), %d skipped",
                        self.device_id, result.response.response_text or "record count",
                        len(result.records), result.skipped)
        return result

    def _emit(self, record: GlucoseRecord) -> None:
        logger.debug("Record %d decoded: %s %s", record.sequence_number,
                     record.concentration, record.concentration_units.value)
        self.accumulated_records.append(record)

    def _drop_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, None
        if pending is None:
            return
        warning = DecodeWarning(
            kind=WarningKind.UNPAIRED_MEASUREMENT,
            message=f"{reason}; record {pending.sequence_number} dropped",
            sequence_number=pending.sequence_number,
            raw=pending.raw,
        )
        logger.warning(warning.message)
        self.warnings.append(warning)

    def _result(self, complete: bool) -> BatchResult:
        return BatchResult(
            device_id=self.device_id,
            records=tuple(self.accumulated_records),
            warnings=tuple(self.warnings),
            errors=tuple(self.errors),
            response=self.response,
            complete=complete,
            resume_sequence=resume_point(self.accumulated_records, self.last_known_sequence_number),
        )
