"""Tests for mmdb_encoder: MaxMind DB data section encoding."""
from __future__ import annotations

import pytest

from mmdb_encoder import DataSectionWriter, encode_control, encode_value
from mmdb_types import (
    TYPE_ARRAY, TYPE_MAP, TYPE_UINT32, TYPE_UTF8, Double, Int32, Uint16, Uint32, Uint64,
)


class TestControlByte:
    def test_small_size_fits_in_control_byte(self) -> None:
        assert encode_control(TYPE_UTF8, 2) == bytes([0x42])

    def test_extended_type_uses_second_byte(self) -> None:
        assert encode_control(TYPE_ARRAY, 3) == bytes([0x03, TYPE_ARRAY - 7])

    @pytest.mark.parametrize("size,expected", [
        (29, bytes([0x5D, 0x00])),
        (284, bytes([0x5D, 0xFF])),
        (285, bytes([0x5E, 0x00, 0x00])),
        (65821, bytes([0x5F, 0x00, 0x00, 0x00])),
    ])
    def test_size_spills_into_extra_bytes(self, size: int, expected: bytes) -> None:
        assert encode_control(TYPE_UTF8, size) == expected

    def test_negative_size_rejected(self) -> None:
        with pytest.raises(ValueError):
            encode_control(TYPE_UTF8, -1)


class TestEncodeValue:
    def test_string(self) -> None:
        assert encode_value("us") == b"\x42us"

    def test_utf8_length_counts_bytes(self) -> None:
        assert encode_value("é") == b"\x42\xc3\xa9"

    def test_map(self) -> None:
        assert encode_value({"a": "b"}) == bytes([TYPE_MAP << 5 | 1]) + b"\x41a\x41b"

    def test_uint_is_minimal_big_endian(self) -> None:
        assert encode_value(Uint32(0x0102)) == bytes([TYPE_UINT32 << 5 | 2, 0x01, 0x02])
        assert encode_value(Uint16(0)) == bytes([0xA0])

    def test_uint64_is_extended(self) -> None:
        assert encode_value(Uint64(1)) == bytes([0x01, 0x02, 0x01])

    def test_int32_always_four_bytes(self) -> None:
        assert encode_value(Int32(-1)) == bytes([0x04, 0x01, 0xFF, 0xFF, 0xFF, 0xFF])

    def test_booleans(self) -> None:
        assert encode_value(True) == bytes([0x01, 0x07])
        assert encode_value(False) == bytes([0x00, 0x07])

    def test_double(self) -> None:
        assert encode_value(1.5) == encode_value(Double(1.5))
        assert len(encode_value(1.5)) == 9

    def test_plain_int_rejected(self) -> None:
        with pytest.raises(TypeError):
            encode_value(5)

    def test_non_string_map_key_rejected(self) -> None:
        with pytest.raises(TypeError):
            encode_value({1: "x"})

    def test_uint_range_checked(self) -> None:
        with pytest.raises(ValueError):
            Uint16(1 << 16)


class TestDataSectionWriter:
    def test_identical_values_share_an_offset(self) -> None:
        writer = DataSectionWriter()
        first = writer.add("us")
        second = writer.add("de")
        assert writer.add("us") == first
        assert second == len(encode_value("us"))
        assert writer.getvalue() == encode_value("us") + encode_value("de")
