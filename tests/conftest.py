"""Shared fixtures: small MaxMind DB images built in memory."""
from __future__ import annotations

import ipaddress
from typing import Any, Iterable

import pytest

from search_tree import SearchTree


def geo_record(country: str = "", registered: str = "", represented: str = "",
               continent: str = "") -> dict[str, Any]:
    """A GeoIP2-shaped record with only the non-empty sections present."""
    record: dict[str, Any] = {}
    if country:
        record["country"] = {"iso_code": country, "names": {"en": country}}
    if registered:
        record["registered_country"] = {"iso_code": registered}
    if represented:
        record["represented_country"] = {"iso_code": represented, "type": "military"}
    if continent:
        record["continent"] = {"code": continent}
    return record


def build_image(entries: Iterable[tuple[str, Any]], ip_version: int = 6,
                record_size: int = 28, **kwargs: Any) -> bytes:
    """Serialize (network, value) pairs into an MMDB image."""
    kwargs.setdefault("database_type", "GeoLite2-Country")
    kwargs.setdefault("languages", ["en"])
    tree = SearchTree(ip_version=ip_version, record_size=record_size, **kwargs)
    for network, value in entries:
        tree.insert(ipaddress.ip_network(network), value)
    return tree.to_bytes()


@pytest.fixture()
def scenario_image() -> bytes:
    """The two-network source used throughout the pipeline tests."""
    return build_image([
        ("1.2.3.0/24", geo_record(country="US", registered="US", continent="NA")),
        ("5.6.7.0/24", geo_record(continent="EU")),
    ])
