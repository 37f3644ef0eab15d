"""Record Access Control Point (0x2A52) commands and responses.

RACP COMMANDS:
==============
Written to 0x2a52 to request data:
- 0x01 0x01:                Report ALL stored records
- 0x01 0x03 0x01 lo hi:     Report records with sequence number >= lo|hi<<8
- 0x01 0x05 / 0x01 0x06:    Report FIRST (oldest) / LAST (newest) record
- 0x04 0x01:                Report NUMBER of stored records
- 0x03 0x00:                Abort operation

The meter answers with a response code (0x06) once all requested records
have been notified, or with a record count (0x05) for 0x04 requests.
"""
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional, Sequence

from .errors import MalformedField, TruncatedPayload


class Opcode(IntEnum):
    REPORT_STORED_RECORDS = 0x01
    DELETE_STORED_RECORDS = 0x02
    ABORT_OPERATION = 0x03
    REPORT_NUM_RECORDS = 0x04
    NUM_RECORDS_RESPONSE = 0x05
    RESPONSE_CODE = 0x06


class Operator(IntEnum):
    NULL = 0x00
    ALL_RECORDS = 0x01
    LESS_THAN_OR_EQUAL = 0x02
    GREATER_THAN_OR_EQUAL = 0x03
    WITHIN_RANGE = 0x04
    FIRST_RECORD = 0x05
    LAST_RECORD = 0x06


class FilterType(IntEnum):
    SEQUENCE_NUMBER = 0x01
    USER_FACING_TIME = 0x02


class ResponseCode(IntEnum):
    SUCCESS = 0x01
    OPCODE_NOT_SUPPORTED = 0x02
    INVALID_OPERATOR = 0x03
    OPERATOR_NOT_SUPPORTED = 0x04
    INVALID_OPERAND = 0x05
    NO_RECORDS_FOUND = 0x06
    ABORT_UNSUCCESSFUL = 0x07
    PROCEDURE_NOT_COMPLETED = 0x08
    OPERAND_NOT_SUPPORTED = 0x09


RESPONSE_TEXT = {
    ResponseCode.SUCCESS: "Success",
    ResponseCode.OPCODE_NOT_SUPPORTED: "Op Code Not Supported",
    ResponseCode.INVALID_OPERATOR: "Invalid Operator",
    ResponseCode.OPERATOR_NOT_SUPPORTED: "Operator Not Supported",
    ResponseCode.INVALID_OPERAND: "Invalid Operand",
    ResponseCode.NO_RECORDS_FOUND: "No Records Found",
    ResponseCode.ABORT_UNSUCCESSFUL: "Abort Unsuccessful",
    ResponseCode.PROCEDURE_NOT_COMPLETED: "Procedure Not Completed",
    ResponseCode.OPERAND_NOT_SUPPORTED: "Operand Not Supported",
}

MAX_SEQUENCE = 0xFFFF


@dataclass(frozen=True)
class RacpResponse:
    opcode: int
    operator: int
    request_opcode: Optional[int] = None
    response_code: Optional[int] = None
    num_records: Optional[int] = None
    raw: bytes = b""

    @property
    def response_text(self) -> str:
        if self.response_code is None:
            return ""
        try:
            return RESPONSE_TEXT[ResponseCode(self.response_code)]
        except ValueError:
            return f"Unknown ({self.response_code})"

    @property
    def completes_batch(self) -> bool:
        return self.opcode in (Opcode.RESPONSE_CODE, Opcode.NUM_RECORDS_RESPONSE)

    @property
    def succeeded(self) -> bool:
        if self.opcode == Opcode.NUM_RECORDS_RESPONSE:
            return True
        return self.response_code in (ResponseCode.SUCCESS, ResponseCode.NO_RECORDS_FOUND)


def _check_sequence(value: int) -> int:
    if not 0 <= value <= MAX_SEQUENCE:
        raise ValueError(f"Sequence number {value} is outside 0..{MAX_SEQUENCE}")
    return value


def build_command(opcode: int, operator: int, filter_type: Optional[int] = None,
                  operand: Iterable[int] = ()) -> bytes:
    """Assemble a RACP command: opcode, operator, [filter type, operand...]."""
    command = bytearray([opcode, operator])
    if filter_type is not None:
        command.append(filter_type)
    command.extend(operand)
    return bytes(command)


def build_fetch_command(from_sequence: int) -> bytes:
    """Report stored records with sequence number >= from_sequence."""
    _check_sequence(from_sequence)
    return build_command(
        Opcode.REPORT_STORED_RECORDS,
        Operator.GREATER_THAN_OR_EQUAL,
        FilterType.SEQUENCE_NUMBER,
        from_sequence.to_bytes(2, byteorder="little"),
    )


def build_fetch_all_command() -> bytes:
    return build_command(Opcode.REPORT_STORED_RECORDS, Operator.ALL_RECORDS)


def build_first_record_command() -> bytes:
    return build_command(Opcode.REPORT_STORED_RECORDS, Operator.FIRST_RECORD)


def build_last_record_command() -> bytes:
    return build_command(Opcode.REPORT_STORED_RECORDS, Operator.LAST_RECORD)


def build_count_command() -> bytes:
    return build_command(Opcode.REPORT_NUM_RECORDS, Operator.ALL_RECORDS)


def build_abort_command() -> bytes:
    return build_command(Opcode.ABORT_OPERATION, Operator.NULL)


def decode_response(data: bytes) -> RacpResponse:
    """Decode a RACP indication sent by the meter."""
    data = bytes(data)
    if len(data) < 2:
        raise TruncatedPayload("RACP response needs at least 2 bytes", data)

    opcode = data[0]
    operator = data[1]

    if opcode == Opcode.RESPONSE_CODE:
        if len(data) < 4:
            raise TruncatedPayload("RACP response code needs 4 bytes", data)
        return RacpResponse(opcode=opcode, operator=operator,
                            request_opcode=data[2], response_code=data[3], raw=data)

    if opcode == Opcode.NUM_RECORDS_RESPONSE:
        if len(data) < 4:
            raise TruncatedPayload("RACP record count needs 4 bytes", data)
        return RacpResponse(opcode=opcode, operator=operator,
                            num_records=int.from_bytes(data[2:4], byteorder="little"), raw=data)

    raise MalformedField(f"Unexpected RACP opcode 0x{opcode:02x}", data)


def next_resume_sequence(last_persisted_sequence: Optional[int]) -> int:
    """First sequence number to request given the last one already stored.

    Wraps to 0 past 0xFFFF.
    """
    if last_persisted_sequence is None:
        return 0
    _check_sequence(last_persisted_sequence)
    return (last_persisted_sequence + 1) & MAX_SEQUENCE


def resume_point(records: Sequence, prior: Optional[int]) -> Optional[int]:
    """Highest sequence number in a batch, or ``prior`` for an empty batch."""
    if not records:
        return prior
    return max(record.sequence_number for record in records)
