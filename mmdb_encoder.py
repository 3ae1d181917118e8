#!/usr/bin/env python3
# filename: mmdb_encoder.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Encoder for the MaxMind DB data section.

Every field starts with a control byte: the top three bits carry the type
(0 means "extended", the real type minus 7 follows in the next byte) and
the low five bits carry the payload size. Sizes of 29, 30 and 31 spill
into 1, 2 or 3 additional bytes.
"""

import struct
from typing import Any, Dict

from mmdb_types import (
    TYPE_UTF8, TYPE_DOUBLE, TYPE_BYTES, TYPE_MAP, TYPE_ARRAY,
    TYPE_BOOLEAN, TYPE_FLOAT, TYPE_INT32, MMDBNumber, Double, Float, Int32,
)

_SIZE_ONE_BYTE = 29
_SIZE_TWO_BYTES = 29 + 256
_SIZE_THREE_BYTES = 29 + 256 + 65536
_MAX_SIZE = _SIZE_THREE_BYTES + (1 << 24) - 1


def encode_control(type_id: int, size: int) -> bytes:
    if size < 0 or size > _MAX_SIZE:
        raise ValueError(f"Payload size {size} cannot be encoded")

    if type_id <= 7:
        head = bytearray([type_id << 5])
    else:
        head = bytearray([0, type_id - 7])

    if size < _SIZE_ONE_BYTE:
        head[0] |= size
        return bytes(head)
    if size < _SIZE_TWO_BYTES:
        head[0] |= 29
        return bytes(head) + bytes([size - _SIZE_ONE_BYTE])
    if size < _SIZE_THREE_BYTES:
        head[0] |= 30
        return bytes(head) + (size - _SIZE_TWO_BYTES).to_bytes(2, 'big')
    head[0] |= 31
    return bytes(head) + (size - _SIZE_THREE_BYTES).to_bytes(3, 'big')


def encode_value(value: Any) -> bytes:
    """Encode a single value (recursively for maps and arrays)."""
    # bool first: it is a subclass of int
    if isinstance(value, bool):
        return encode_control(TYPE_BOOLEAN, int(value))

    if isinstance(value, str):
        raw = value.encode('utf-8')
        return encode_control(TYPE_UTF8, len(raw)) + raw

    if isinstance(value, (bytes, bytearray)):
        return encode_control(TYPE_BYTES, len(value)) + bytes(value)

    if isinstance(value, dict):
        out = bytearray(encode_control(TYPE_MAP, len(value)))
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Map keys must be strings, got {type(key).__name__}")
            out += encode_value(key)
            out += encode_value(item)
        return bytes(out)

    if isinstance(value, (list, tuple)):
        out = bytearray(encode_control(TYPE_ARRAY, len(value)))
        for item in value:
            out += encode_value(item)
        return bytes(out)

    if isinstance(value, float):
        value = Double(value)

    if isinstance(value, Double):
        return encode_control(TYPE_DOUBLE, 8) + struct.pack('!d', value.value)

    if isinstance(value, Float):
        return encode_control(TYPE_FLOAT, 4) + struct.pack('!f', value.value)

    if isinstance(value, Int32):
        return encode_control(TYPE_INT32, 4) + struct.pack('!i', value.value)

    if isinstance(value, MMDBNumber):
        raw = value.value.to_bytes((value.value.bit_length() + 7) // 8, 'big')
        return encode_control(value.type_id, len(raw)) + raw

    if isinstance(value, int):
        raise TypeError("Plain int has no MMDB width; wrap it in Uint16/Uint32/Uint64/Uint128/Int32")

    raise TypeError(f"Cannot encode {type(value).__name__} into the data section")


class DataSectionWriter:
    """
    Accumulates encoded values and hands out their offsets.

    Identical values are stored once; later requests reuse the first offset.
    """

    def __init__(self):
        self.buffer = bytearray()
        self._offsets: Dict[bytes, int] = {}

    def add(self, value: Any) -> int:
        encoded = encode_value(value)
        offset = self._offsets.get(encoded)
        if offset is not None:
            return offset
        offset = len(self.buffer)
        self._offsets[encoded] = offset
        self.buffer.extend(encoded)
        return offset

    def __len__(self):
        return len(self.buffer)

    def getvalue(self) -> bytes:
        return bytes(self.buffer)
