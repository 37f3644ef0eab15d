import pytest

from glucometer.sfloat import encode_twos_complement

DEVICE_ID = "A2C0B9C9-5A19-7EB1-2803-13765719E15E"


@pytest.fixture
def device_id():
    return DEVICE_ID


@pytest.fixture
def make_measurement():
    def _make(sequence=1, flags=0x03, year=2018, month=10, day=6, hour=15, minute=47, second=50,
              offset_minutes=0, sfloat=0xB07E, type_location=0xF1, annunciation=None):
        data = bytearray([flags])
        data += sequence.to_bytes(2, "little")
        data += year.to_bytes(2, "little")
        data += bytes([month, day, hour, minute, second])
        data += encode_twos_complement(offset_minutes, 12).to_bytes(2, "little")
        data += sfloat.to_bytes(2, "little")
        if type_location is not None:
            data.append(type_location)
        if annunciation is not None:
            data += annunciation.to_bytes(2, "little")
        return bytes(data)

    return _make


@pytest.fixture
def make_context():
    def _make(sequence=1, meal=1, flags=0x02):
        return bytes([flags]) + sequence.to_bytes(2, "little") + bytes([meal])

    return _make
