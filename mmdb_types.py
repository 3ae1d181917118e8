#!/usr/bin/env python3
# filename: mmdb_types.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
MaxMind DB data section type ids and typed number wrappers.

Plain Python values map onto MMDB types directly (str -> utf8_string,
dict -> map, list -> array, bool -> boolean, float -> double, bytes -> bytes).
Integers carry no width of their own, so they must be wrapped in one of the
number classes below.
"""

METADATA_MAGIC = b'\xab\xcd\xefMaxMind.com'
DATA_SECTION_SEPARATOR = b'\x00' * 16

TYPE_EXTENDED = 0
TYPE_POINTER = 1
TYPE_UTF8 = 2
TYPE_DOUBLE = 3
TYPE_BYTES = 4
TYPE_UINT16 = 5
TYPE_UINT32 = 6
TYPE_MAP = 7
TYPE_INT32 = 8
TYPE_UINT64 = 9
TYPE_UINT128 = 10
TYPE_ARRAY = 11
TYPE_DATA_CACHE_CONTAINER = 12
TYPE_END_MARKER = 13
TYPE_BOOLEAN = 14
TYPE_FLOAT = 15

SUPPORTED_RECORD_SIZES = (24, 28, 32)
SUPPORTED_IP_VERSIONS = (4, 6)


class MMDBNumber(object):
    class_name = 'MMDBNumber'
    type_id = None
    bits = 0

    def __init__(self, value):
        if self.bits and not 0 <= value < (1 << self.bits):
            raise ValueError(f"{self.class_name} out of range: {value}")
        self.value = value

    def __repr__(self):
        return "{}({})".format(self.class_name, self.value)

    def __eq__(self, other):
        return type(self) is type(other) and self.value == other.value

    def __hash__(self):
        return hash((self.class_name, self.value))


class Uint16(MMDBNumber):
    class_name = 'Uint16'
    type_id = TYPE_UINT16
    bits = 16


class Uint32(MMDBNumber):
    class_name = 'Uint32'
    type_id = TYPE_UINT32
    bits = 32


class Uint64(MMDBNumber):
    class_name = 'Uint64'
    type_id = TYPE_UINT64
    bits = 64


class Uint128(MMDBNumber):
    class_name = 'Uint128'
    type_id = TYPE_UINT128
    bits = 128


class Int32(MMDBNumber):
    class_name = 'Int32'
    type_id = TYPE_INT32

    def __init__(self, value):
        if not -(1 << 31) <= value < (1 << 31):
            raise ValueError(f"Int32 out of range: {value}")
        self.value = value


class Float(MMDBNumber):
    class_name = 'Float'
    type_id = TYPE_FLOAT


class Double(MMDBNumber):
    class_name = 'Double'
    type_id = TYPE_DOUBLE
