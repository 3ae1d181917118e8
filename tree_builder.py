#!/usr/bin/env python3
# filename: tree_builder.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Builds the sing-geoip search tree from a code map and writes it out.

Codes are inserted in ascending order and, within a code, in decode
order. Inserts replace what was there before, so where two codes'
networks overlap the code that sorts last owns the overlapping range.
"""

import os
from typing import Dict, Iterable, List, Optional, Union

from geo_classifier import CodeMap
from mmdb_decoder import SourceMetadata
from search_tree import SearchTree, replace_with
from utils import get_logger

logger = get_logger("TreeBuilder")

DATABASE_TYPE = "sing-geoip"


def new_writer(metadata: SourceMetadata, codes: Iterable[str],
               database_type: str = DATABASE_TYPE,
               description: Optional[Dict[str, str]] = None) -> SearchTree:
    """
    Create an empty tree with the source's IP version and record size.

    Raises:
        ConfigurationError: unsupported IP version or record size.
    """
    return SearchTree(
        ip_version=metadata.ip_version,
        record_size=metadata.record_size,
        database_type=database_type,
        languages=sorted(codes),
        description=description,
        inserter=replace_with,
        disable_ipv4_aliasing=True,
        include_reserved_networks=True,
    )


def derive_allow_list(code_map: CodeMap, allow_list: Optional[Iterable[str]] = None) -> List[str]:
    """Sorted, de-duplicated allow-list; an empty or missing list means every code in the map."""
    codes = set(allow_list or [])
    if not codes:
        codes = set(code_map)
    return sorted(codes)


def populate(tree: SearchTree, code_map: CodeMap, allow_list: Optional[Iterable[str]] = None) -> int:
    """
    Insert every allowed code's networks, tagged with the code.

    Returns:
        Number of networks inserted.

    Raises:
        InsertionError: a network does not fit the tree; nothing should be
            written in that case.
    """
    inserted = 0
    codes = derive_allow_list(code_map, allow_list)
    for code in codes:
        networks = code_map.get(code)
        if not networks:
            continue
        for network in networks:
            tree.insert(network, code)
        inserted += len(networks)

    skipped = set(code_map) - set(codes)
    if skipped:
        logger.info(f"     Excluded {len(skipped)} codes not in the allow-list")
    logger.info(f"  🌳 Inserted {inserted:,} networks for {len(set(codes) & set(code_map))} codes")
    return inserted


def write_tree(tree: SearchTree, output: Union[str, os.PathLike]) -> int:
    """
    Serialize ``tree`` to ``output``.

    The file is only created once the image is fully encoded. Write
    failures propagate as OSError.
    """
    image = tree.to_bytes()
    with open(output, 'wb') as f:
        f.write(image)
    size_mb = len(image) / (1024 * 1024)
    logger.info(f"  ✓ Wrote {output} ({size_mb:.2f} MB)")
    return len(image)
