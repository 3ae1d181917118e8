#!/usr/bin/env python3
# filename: search_tree.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
In-memory binary trie over the IP address space, serialized as a
MaxMind DB image.

Nodes are either leaves (carrying a value, or None for "no data") or
inner nodes with two children. Inserting a prefix walks the bits of the
network address from the most significant one, splitting leaves on the
way down, and then hands every leaf below the target node to an inserter
function which decides the new value from the existing one.

IPv4 networks in an IPv6 tree live under ::/96.
"""

import ipaddress
import time
from typing import Any, Callable, Dict, List, Optional, Union

from errors import ConfigurationError, InsertionError
from mmdb_encoder import DataSectionWriter, encode_value
from mmdb_types import (
    DATA_SECTION_SEPARATOR, METADATA_MAGIC, SUPPORTED_IP_VERSIONS,
    SUPPORTED_RECORD_SIZES, Uint16, Uint32, Uint64,
)
from utils import get_logger

logger = get_logger("SearchTree")

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
InserterFunc = Callable[[Any], Any]

# Networks aliased to the IPv4 subtree (::/96) when aliasing is enabled.
IPV4_ALIASES = (
    ipaddress.ip_network('::ffff:0:0/96'),
    ipaddress.ip_network('2001::/32'),
    ipaddress.ip_network('2002::/16'),
)

RESERVED_NETWORKS_IPV4 = tuple(ipaddress.ip_network(n) for n in (
    '0.0.0.0/8', '10.0.0.0/8', '100.64.0.0/10', '127.0.0.0/8',
    '169.254.0.0/16', '172.16.0.0/12', '192.0.0.0/29', '192.0.2.0/24',
    '192.88.99.0/24', '192.168.0.0/16', '198.18.0.0/15', '198.51.100.0/24',
    '203.0.113.0/24', '224.0.0.0/4', '240.0.0.0/4', '255.255.255.255/32',
))

RESERVED_NETWORKS_IPV6 = tuple(ipaddress.ip_network(n) for n in (
    '100::/64', '2001::/23', '2001:db8::/32', 'fc00::/7', 'fe80::/10', 'ff00::/8',
))


# =============================================================================
# INSERTERS
# =============================================================================

def replace_with(value: Any) -> InserterFunc:
    """The inserted value overwrites whatever the prefix held before."""
    return lambda existing: value


def keep_existing(value: Any) -> InserterFunc:
    """The inserted value only fills space that holds no data yet."""
    return lambda existing: value if existing is None else existing


def top_level_merge_with(value: Any) -> InserterFunc:
    """Shallow-merge map values; keys of the inserted map win."""
    if not isinstance(value, dict):
        raise InsertionError(f"Cannot merge non-map value {value!r}")

    def merge(existing):
        if existing is None:
            return value
        if not isinstance(existing, dict):
            raise InsertionError(f"Cannot merge into non-map value {existing!r}")
        merged = dict(existing)
        merged.update(value)
        return merged

    return merge


# =============================================================================
# TRIE
# =============================================================================

class _Node:
    __slots__ = ('left', 'right', 'value', 'reserved')

    def __init__(self, value: Any = None, reserved: bool = False):
        self.left: Optional['_Node'] = None
        self.right: Optional['_Node'] = None
        self.value = value
        self.reserved = reserved

    @property
    def is_leaf(self) -> bool:
        return self.left is None

    def split(self):
        self.left = _Node(self.value)
        self.right = _Node(self.value)
        self.value = None


class SearchTree:
    """
    A writable MaxMind DB search tree.

    Args:
        ip_version: 4 or 6.
        record_size: 24, 28 or 32 bits per record.
        database_type: written to the ``database_type`` metadata field.
        languages: written to the ``languages`` metadata field.
        description: language -> text map for the metadata.
        inserter: factory turning an inserted value into an inserter function.
        disable_ipv4_aliasing: when False (IPv6 only), ::ffff:0:0/96, 2001::/32
            and 2002::/16 point at the ::/96 IPv4 subtree.
        include_reserved_networks: when False, reserved and special-use
            networks never receive data.
    """

    def __init__(self, ip_version: int = 6, record_size: int = 28,
                 database_type: str = "", languages: Optional[List[str]] = None,
                 description: Optional[Dict[str, str]] = None,
                 inserter: Callable[[Any], InserterFunc] = replace_with,
                 disable_ipv4_aliasing: bool = True,
                 include_reserved_networks: bool = True,
                 build_epoch: Optional[int] = None):
        if ip_version not in SUPPORTED_IP_VERSIONS:
            raise ConfigurationError(f"Unsupported IP version: {ip_version}")
        if record_size not in SUPPORTED_RECORD_SIZES:
            raise ConfigurationError(f"Unsupported record size: {record_size}")

        self.ip_version = ip_version
        self.record_size = record_size
        self.database_type = database_type
        self.languages = list(languages or [])
        self.description = dict(description or {})
        self.inserter = inserter
        self.build_epoch = build_epoch
        self.disable_ipv4_aliasing = disable_ipv4_aliasing or ip_version == 4
        self.include_reserved_networks = include_reserved_networks
        self.depth = 32 if ip_version == 4 else 128
        self.insert_count = 0

        self._root = _Node()
        self._aliases = () if self.disable_ipv4_aliasing else IPV4_ALIASES

        if not include_reserved_networks:
            self._mark_reserved()
        if self._aliases:
            self._link_aliases()

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------
    def _mark_reserved(self):
        reserved = list(RESERVED_NETWORKS_IPV4)
        if self.ip_version == 6:
            reserved.extend(RESERVED_NETWORKS_IPV6)
        for network in reserved:
            bits, prefixlen = self._network_bits(network)
            node = self._walk(bits, prefixlen, stop_at_reserved=False)
            node.left = node.right = None
            node.value = None
            node.reserved = True

    def _link_aliases(self):
        ipv4_root = self._walk(0, 96, stop_at_reserved=False)
        for alias in self._aliases:
            bits, prefixlen = self._network_bits(alias)
            parent = self._walk(bits, prefixlen - 1, stop_at_reserved=False)
            if parent.is_leaf:
                parent.split()
            if (bits >> (self.depth - prefixlen)) & 1:
                parent.right = ipv4_root
            else:
                parent.left = ipv4_root

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------
    def _network_bits(self, network: Network):
        if network.version == 4:
            if self.ip_version == 4:
                return int(network.network_address), network.prefixlen
            return int(network.network_address), network.prefixlen + 96
        if self.ip_version == 4:
            raise InsertionError(f"Cannot insert IPv6 network {network} into an IPv4 tree")
        return int(network.network_address), network.prefixlen

    def _walk(self, bits: int, prefixlen: int, stop_at_reserved: bool = True) -> Optional[_Node]:
        node = self._root
        for i in range(prefixlen):
            if node.reserved and stop_at_reserved:
                return None
            if node.is_leaf:
                node.split()
            if (bits >> (self.depth - 1 - i)) & 1:
                node = node.right
            else:
                node = node.left
        if node.reserved and stop_at_reserved:
            return None
        return node

    def _apply(self, node: _Node, func: InserterFunc):
        if node.reserved:
            return
        if node.is_leaf:
            node.value = func(node.value)
            return
        self._apply(node.left, func)
        self._apply(node.right, func)
        self._collapse(node)

    @staticmethod
    def _collapse(node: _Node):
        left, right = node.left, node.right
        if (left.is_leaf and right.is_leaf and not left.reserved and not right.reserved
                and left is not right and left.value == right.value):
            node.value = left.value
            node.left = node.right = None

    def _compact(self, node: _Node):
        if node.is_leaf:
            return
        self._compact(node.left)
        self._compact(node.right)
        self._collapse(node)

    def insert(self, network: Union[str, Network], value: Any):
        """Insert ``value`` for ``network`` using the tree's inserter."""
        self.insert_func(network, self.inserter(value))

    def insert_func(self, network: Union[str, Network], func: InserterFunc):
        if isinstance(network, str):
            try:
                network = ipaddress.ip_network(network)
            except ValueError as e:
                raise InsertionError(f"Invalid network '{network}': {e}") from e
        if not isinstance(network, (ipaddress.IPv4Network, ipaddress.IPv6Network)):
            raise InsertionError(f"Not a network: {network!r}")

        for alias in self._aliases:
            if network.version == alias.version and network.subnet_of(alias):
                raise InsertionError(f"Cannot insert {network} into aliased network {alias}")

        bits, prefixlen = self._network_bits(network)
        node = self._walk(bits, prefixlen)
        if node is None:
            logger.debug(f"Skipping {network}: reserved network")
            return
        self._apply(node, func)
        self.insert_count += 1

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------
    def get(self, address: Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]) -> Any:
        """Return the value covering ``address`` (None when unassigned)."""
        address = ipaddress.ip_address(address)
        if address.version == 6 and self.ip_version == 4:
            raise ValueError(f"Cannot look up IPv6 address {address} in an IPv4 tree")
        bits = int(address)
        node = self._root
        for i in range(self.depth):
            if node.is_leaf:
                break
            if (bits >> (self.depth - 1 - i)) & 1:
                node = node.right
            else:
                node = node.left
        return node.value

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------
    def _number_nodes(self) -> List[_Node]:
        self._compact(self._root)
        if self._root.is_leaf:
            self._root.split()
        order: List[_Node] = []
        seen = set()
        stack = [self._root]
        while stack:
            node = stack.pop()
            if id(node) in seen:
                continue
            seen.add(id(node))
            order.append(node)
            # right first so the left subtree is numbered first
            for child in (node.right, node.left):
                if not child.is_leaf:
                    stack.append(child)
        return order

    def _pack(self, left: int, right: int) -> bytes:
        if self.record_size == 24:
            return left.to_bytes(3, 'big') + right.to_bytes(3, 'big')
        if self.record_size == 28:
            middle = ((left >> 24) << 4) | (right >> 24)
            return ((left & 0xFFFFFF).to_bytes(3, 'big') + bytes([middle])
                    + (right & 0xFFFFFF).to_bytes(3, 'big'))
        return left.to_bytes(4, 'big') + right.to_bytes(4, 'big')

    def metadata(self, node_count: int) -> dict:
        build_epoch = self.build_epoch if self.build_epoch is not None else int(time.time())
        return {
            'binary_format_major_version': Uint16(2),
            'binary_format_minor_version': Uint16(0),
            'build_epoch': Uint64(build_epoch),
            'database_type': self.database_type,
            'description': self.description,
            'ip_version': Uint16(self.ip_version),
            'languages': self.languages,
            'node_count': Uint32(node_count),
            'record_size': Uint16(self.record_size),
        }

    def to_bytes(self) -> bytes:
        """Serialize the tree into a complete MaxMind DB image."""
        nodes = self._number_nodes()
        node_count = len(nodes)
        index = {id(node): i for i, node in enumerate(nodes)}
        data = DataSectionWriter()
        max_record = (1 << self.record_size) - 1

        def record(child: _Node) -> int:
            if not child.is_leaf:
                return index[id(child)]
            if child.value is None:
                return node_count
            return node_count + len(DATA_SECTION_SEPARATOR) + data.add(child.value)

        tree = bytearray()
        for node in nodes:
            left, right = record(node.left), record(node.right)
            if left > max_record or right > max_record:
                raise ConfigurationError(
                    f"Record size of {self.record_size} bits is too small for "
                    f"{node_count} nodes and {len(data)} bytes of data")
            tree += self._pack(left, right)

        logger.debug(f"Serialized {node_count} nodes, {len(data)} bytes of data")

        return b''.join((
            bytes(tree),
            DATA_SECTION_SEPARATOR,
            data.getvalue(),
            METADATA_MAGIC,
            encode_value(self.metadata(node_count)),
        ))

    def write_to(self, fileobj) -> int:
        """Write the serialized tree to a binary file object."""
        image = self.to_bytes()
        fileobj.write(image)
        return len(image)
