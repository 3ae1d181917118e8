#!/usr/bin/env python3
# filename: geo_classifier.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Reduces decoded records to a single lowercase code and groups networks
by code.

Resolution order (first non-empty field wins):
    country -> registered_country -> represented_country -> continent
Records with all four fields empty are dropped.
"""

from typing import Dict, Iterable, List, Optional, Tuple

from mmdb_decoder import AttributeRecord, Network
from utils import get_logger

logger = get_logger("GeoClassifier")

CodeMap = Dict[str, List[Network]]


def resolve_code(record: AttributeRecord) -> Optional[str]:
    if record.country:
        return record.country.lower()
    if record.registered_country:
        return record.registered_country.lower()
    if record.represented_country:
        return record.represented_country.lower()
    if record.continent:
        return record.continent.lower()
    return None


def build_code_map(entries: Iterable[Tuple[Network, AttributeRecord]]) -> CodeMap:
    """
    Group networks by resolved code.

    Codes appear in order of first sight, and every code's networks keep
    the order in which the decoder emitted them.
    """
    code_map: CodeMap = {}
    seen = 0
    dropped = 0

    for network, record in entries:
        seen += 1
        code = resolve_code(record)
        if code is None:
            dropped += 1
            continue
        code_map.setdefault(code, []).append(network)

    logger.info(f"  📋 Classified {seen - dropped:,}/{seen:,} networks into {len(code_map)} codes"
                f" ({dropped:,} without any code)")
    return code_map
