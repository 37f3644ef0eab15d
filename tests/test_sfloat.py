from datetime import datetime, timezone

import pytest

from glucometer.errors import MalformedField, TruncatedPayload
from glucometer.sfloat import (
    SpecialValue,
    decode_date,
    decode_sfloat,
    decode_twos_complement,
    encode_twos_complement,
    read_uint16,
)


class TestTwosComplement:
    def test_all_12_bit_values_stay_in_range_and_round_trip(self):
        for value in range(4096):
            decoded = decode_twos_complement(value, 12)
            assert -2048 <= decoded <= 2047
            assert encode_twos_complement(decoded, 12) == value

    @pytest.mark.parametrize("value, expected", [(0x0, 0), (0x7, 7), (0x8, -8), (0xB, -5), (0xF, -1)])
    def test_nibble(self, value, expected):
        assert decode_twos_complement(value, 4) == expected

    def test_time_offset_from_pacific_daylight_payload(self):
        raw = int.from_bytes(bytes([92, 254]), "little") & 0x0FFF
        assert raw == 0xE5C
        assert decode_twos_complement(raw, 12) == -420

    @pytest.mark.parametrize("value, width", [(4096, 12), (16, 4), (-1, 12), (1, 0)])
    def test_out_of_range_is_malformed(self, value, width):
        with pytest.raises(MalformedField):
            decode_twos_complement(value, width)

    def test_encode_rejects_values_that_do_not_fit(self):
        with pytest.raises(MalformedField):
            encode_twos_complement(2048, 12)


class TestSfloat:
    def test_glucose_concentration_in_kg_per_litre(self):
        assert decode_sfloat(int.from_bytes(bytes([126, 176]), "little")) == pytest.approx(0.00126)

    @pytest.mark.parametrize("raw, expected", [
        (0x0078, 120.0),
        (0x0FFF, -1.0),
        (0xF001, 0.1),
        (0x2005, 500.0),
        (0x8001, 1e-8),
        (0x17FF, 20470.0),
    ])
    def test_known_values(self, raw, expected):
        assert decode_sfloat(raw) == pytest.approx(expected)

    def test_matches_reference_computation(self):
        for exponent in range(-8, 8):
            for mantissa in (-2046, -100, -1, 0, 1, 42, 999, 2045):
                raw = (encode_twos_complement(exponent, 4) << 12) | encode_twos_complement(mantissa, 12)
                if exponent == 0 and raw in (0x07FE, 0x07FF, 0x0800, 0x0801, 0x0802):
                    continue
                assert decode_sfloat(raw) == pytest.approx(mantissa * 10.0 ** exponent)

    @pytest.mark.parametrize("raw, expected", [
        (0x07FF, SpecialValue.NAN),
        (0x0800, SpecialValue.NRES),
        (0x07FE, SpecialValue.POSITIVE_INFINITY),
        (0x0802, SpecialValue.NEGATIVE_INFINITY),
        (0x0801, SpecialValue.RESERVED),
    ])
    def test_reserved_encodings_are_special_values(self, raw, expected):
        assert decode_sfloat(raw) is expected

    def test_deterministic(self):
        assert decode_sfloat(0xB07E) == decode_sfloat(0xB07E)

    def test_rejects_more_than_16_bits(self):
        with pytest.raises(MalformedField):
            decode_sfloat(0x10000)


class TestDecodeDate:
    def test_valid_date_is_utc(self):
        assert decode_date(2018, 10, 6, 15, 47, 50) == datetime(2018, 10, 6, 15, 47, 50, tzinfo=timezone.utc)

    @pytest.mark.parametrize("fields", [
        (2018, 0, 6, 15, 47, 50),
        (2018, 13, 6, 15, 47, 50),
        (2018, 10, 0, 15, 47, 50),
        (2018, 10, 32, 15, 47, 50),
        (2018, 2, 30, 15, 47, 50),
        (2018, 10, 6, 24, 0, 0),
        (2018, 10, 6, 12, 60, 0),
        (2018, 10, 6, 12, 0, 60),
        (0, 10, 6, 12, 0, 0),
    ])
    def test_impossible_values_are_malformed(self, fields):
        with pytest.raises(MalformedField) as excinfo:
            decode_date(*fields)
        assert len(excinfo.value.raw) == 7


def test_read_uint16_little_endian():
    assert read_uint16(bytes([0, 226, 7]), 1) == 2018


def test_read_uint16_short_payload():
    with pytest.raises(TruncatedPayload):
        read_uint16(bytes([1, 2]), 1)
