#!/usr/bin/env python3
# filename: mmdb_decoder.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Decoder for upstream MaxMind DB images.

Produces the source metadata and a lazy, alias-free enumeration of
(network, AttributeRecord) pairs. The maxminddb reader parses the header
and resolves nodes and data records; the walk over the search tree is
done here. It skips every subtree that points back at the IPv4 start
node, so IPv4 ranges re-exposed under ::ffff:0:0/96, 2001::/32 or
2002::/16 are reported once, as IPv4 networks. Only leaves at least 96
bits deep inside ::/96 count as IPv4; everything else stays IPv6.
"""

import io
import ipaddress
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Tuple, Union

import maxminddb

from errors import MalformedDatabase
from mmdb_types import SUPPORTED_IP_VERSIONS, SUPPORTED_RECORD_SIZES
from utils import get_logger

logger = get_logger("MMDBDecoder")

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

SUPPORTED_FORMAT_MAJOR_VERSION = 2
IPV4_ADDRESS_SPACE = 2 ** 32

# Errors the reader raises on corrupt images (bad pointers, short buffers,
# unknown types, non-map metadata).
_READER_ERRORS = (
    maxminddb.InvalidDatabaseError, ValueError, TypeError,
    KeyError, IndexError, struct.error,
)


@dataclass(frozen=True)
class SourceMetadata:
    ip_version: int
    record_size: int
    node_count: int
    binary_format_major_version: int
    binary_format_minor_version: int
    build_epoch: int
    database_type: str
    description: Dict[str, str] = field(default_factory=dict)
    languages: List[str] = field(default_factory=list)

    @classmethod
    def from_reader(cls, metadata) -> 'SourceMetadata':
        return cls(
            ip_version=metadata.ip_version,
            record_size=metadata.record_size,
            node_count=metadata.node_count,
            binary_format_major_version=metadata.binary_format_major_version,
            binary_format_minor_version=metadata.binary_format_minor_version,
            build_epoch=metadata.build_epoch,
            database_type=metadata.database_type,
            description=dict(metadata.description or {}),
            languages=list(metadata.languages or []),
        )


@dataclass(frozen=True)
class AttributeRecord:
    """The geographic fields of one GeoIP2 country/enterprise record."""
    country: str = ""
    registered_country: str = ""
    represented_country: str = ""
    continent: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AttributeRecord':
        if not isinstance(data, dict):
            raise MalformedDatabase(f"Expected a map record, got {type(data).__name__}")
        return cls(
            country=_field(data, 'country', 'iso_code'),
            registered_country=_field(data, 'registered_country', 'iso_code'),
            represented_country=_field(data, 'represented_country', 'iso_code'),
            continent=_field(data, 'continent', 'code'),
        )


def _field(data: Dict[str, Any], section: str, key: str) -> str:
    value = data.get(section)
    if not isinstance(value, dict):
        return ""
    code = value.get(key)
    return code if isinstance(code, str) else ""


def open_reader(data: bytes) -> maxminddb.Reader:
    """Open an in-memory MaxMind DB image with the pure Python reader."""
    buffer = io.BytesIO(data)
    buffer.name = "<memory>"
    try:
        return maxminddb.open_database(buffer, maxminddb.MODE_FD)
    except _READER_ERRORS as e:
        raise MalformedDatabase(f"Not a valid MaxMind DB image: {e}") from e


def _check_metadata(metadata: SourceMetadata):
    if metadata.binary_format_major_version != SUPPORTED_FORMAT_MAJOR_VERSION:
        raise MalformedDatabase(
            f"Unsupported binary format version "
            f"{metadata.binary_format_major_version}.{metadata.binary_format_minor_version}")
    if metadata.ip_version not in SUPPORTED_IP_VERSIONS:
        raise MalformedDatabase(f"Unsupported IP version: {metadata.ip_version}")
    if metadata.record_size not in SUPPORTED_RECORD_SIZES:
        raise MalformedDatabase(f"Unsupported record size: {metadata.record_size}")


def _leaf_network(bits: int, depth: int, bit_count: int) -> Network:
    address = bits << (bit_count - depth)
    if bit_count == 32:
        return ipaddress.IPv4Network((address, depth))
    # IPv4 data lives under ::/96 and is reported as IPv4
    if depth >= 96 and address < IPV4_ADDRESS_SPACE:
        return ipaddress.IPv4Network((address, depth - 96))
    return ipaddress.IPv6Network((address, depth))


def _walk_tree(reader: maxminddb.Reader) -> Iterator[Tuple[Network, Any]]:
    """
    Depth-first, left-first walk over the search tree yielding every leaf
    that carries data.

    Records pointing back at the IPv4 start node from anywhere but ::/96
    are aliases and are skipped.
    """
    metadata = reader.metadata()
    node_count = metadata.node_count
    bit_count = 128 if metadata.ip_version == 6 else 32
    ipv4_start = reader._ipv4_start

    stack = [(0, 0, 0)]
    while stack:
        node, depth, bits = stack.pop()
        if node == node_count:
            continue
        if node > node_count:
            yield _leaf_network(bits, depth, bit_count), reader._resolve_data_pointer(node)
            continue
        if bits != 0 and node == ipv4_start:
            continue
        if depth >= bit_count:
            raise MalformedDatabase(f"Search tree is deeper than {bit_count} bits at node {node}")
        stack.append((reader._read_node(node, 1), depth + 1, (bits << 1) | 1))
        stack.append((reader._read_node(node, 0), depth + 1, bits << 1))


def _iter_networks(reader: maxminddb.Reader) -> Iterator[Tuple[Network, AttributeRecord]]:
    count = 0
    try:
        for network, data in _walk_tree(reader):
            count += 1
            if count % 100000 == 0:
                logger.info(f"     Decoded {count:,} networks...")
            yield network, AttributeRecord.from_dict(data)
    except _READER_ERRORS as e:
        raise MalformedDatabase(f"Corrupt search tree or data section after {count} networks: {e}") from e
    finally:
        reader.close()
    logger.info(f"     Decoded {count:,} networks")


def decode_database(data: bytes) -> Tuple[SourceMetadata, Iterator[Tuple[Network, AttributeRecord]]]:
    """
    Decode a MaxMind DB image.

    Returns:
        (metadata, iterator of (network, AttributeRecord))

    Raises:
        MalformedDatabase: the header is unreadable or unsupported, or (while
            iterating) the tree or data section turns out to be corrupt.
    """
    reader = open_reader(data)
    try:
        metadata = SourceMetadata.from_reader(reader.metadata())
        _check_metadata(metadata)
    except _READER_ERRORS as e:
        reader.close()
        raise MalformedDatabase(f"Unreadable metadata: {e}") from e
    except MalformedDatabase:
        reader.close()
        raise

    logger.info(f"  🔍 Source: {metadata.database_type} (IPv{metadata.ip_version}, "
                f"{metadata.record_size}-bit records, {metadata.node_count:,} nodes)")
    return metadata, _iter_networks(reader)
