"""Tests for tree_builder: allow-lists, insertion order and output files."""
from __future__ import annotations

import ipaddress
from dataclasses import replace
from pathlib import Path

import maxminddb
import pytest

from errors import ConfigurationError, InsertionError
from mmdb_decoder import SourceMetadata
from tree_builder import DATABASE_TYPE, derive_allow_list, new_writer, populate, write_tree


def _net(text: str):
    return ipaddress.ip_network(text)


@pytest.fixture()
def metadata() -> SourceMetadata:
    return SourceMetadata(
        ip_version=6, record_size=28, node_count=100,
        binary_format_major_version=2, binary_format_minor_version=0,
        build_epoch=1700000000, database_type="GeoLite2-Country",
        description={"en": "source"}, languages=["en"],
    )


def _build(tmp_path: Path, metadata: SourceMetadata, code_map, allow_list=None) -> maxminddb.Reader:
    tree = new_writer(metadata, code_map.keys())
    populate(tree, code_map, allow_list)
    path = tmp_path / "geoip.db"
    write_tree(tree, path)
    return maxminddb.open_database(str(path), maxminddb.MODE_MEMORY)


class TestNewWriter:
    def test_tree_configuration(self, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, ["za", "ab"])
        assert tree.ip_version == 6
        assert tree.record_size == 28
        assert tree.database_type == DATABASE_TYPE
        assert tree.languages == ["ab", "za"]
        assert tree.disable_ipv4_aliasing
        assert tree.include_reserved_networks

    def test_unsupported_ip_version(self, metadata: SourceMetadata) -> None:
        with pytest.raises(ConfigurationError):
            new_writer(replace(metadata, ip_version=5), [])

    def test_unsupported_record_size(self, metadata: SourceMetadata) -> None:
        with pytest.raises(ConfigurationError):
            new_writer(replace(metadata, record_size=20), [])


class TestDeriveAllowList:
    def test_empty_means_all_sorted(self) -> None:
        code_map = {"za": [], "ab": [], "mm": []}
        assert derive_allow_list(code_map, []) == ["ab", "mm", "za"]
        assert derive_allow_list(code_map, None) == ["ab", "mm", "za"]

    def test_given_list_sorted(self) -> None:
        assert derive_allow_list({"us": []}, ["us", "de"]) == ["de", "us"]

    def test_repeated_codes_collapse(self) -> None:
        assert derive_allow_list({"us": []}, ["us", "de", "us"]) == ["de", "us"]


class TestPopulate:
    def test_allow_list_filters(self, tmp_path: Path, metadata: SourceMetadata) -> None:
        code_map = {"us": [_net("1.2.3.0/24")], "de": [_net("5.6.7.0/24")]}
        with _build(tmp_path, metadata, code_map, ["us"]) as reader:
            assert reader.get("1.2.3.1") == "us"
            assert reader.get("5.6.7.1") is None

    def test_allowed_code_missing_from_map_is_ignored(self, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, ["us"])
        assert populate(tree, {"us": [_net("1.2.3.0/24")]}, ["us", "xx"]) == 1

    def test_nested_replace(self, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, ["a"])
        populate(tree, {"a": [_net("10.0.0.0/8"), _net("10.1.0.0/16")]})
        assert tree.get("10.1.0.1") == "a"

    def test_later_code_wins_on_overlap(self, metadata: SourceMetadata) -> None:
        # "b" sorts after "a", so its /16 replaces part of the /8
        tree = new_writer(metadata, ["b", "a"])
        populate(tree, {"b": [_net("10.1.0.0/16")], "a": [_net("10.0.0.0/8")]})
        assert tree.get("10.1.2.3") == "b"
        assert tree.get("10.2.0.1") == "a"

    def test_later_code_replaces_nested_earlier_code(self, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, ["a", "b"])
        populate(tree, {"a": [_net("10.1.0.0/16")], "b": [_net("10.0.0.0/8")]})
        assert tree.get("10.1.2.3") == "b"

    def test_ipv6_network_into_ipv4_tree_aborts(self, metadata: SourceMetadata) -> None:
        tree = new_writer(replace(metadata, ip_version=4, record_size=24), ["us"])
        with pytest.raises(InsertionError):
            populate(tree, {"us": [_net("2001:db8::/32")]})

    def test_returns_inserted_count(self, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, ["us", "de"])
        code_map = {"us": [_net("1.0.0.0/8"), _net("2.0.0.0/8")], "de": [_net("3.0.0.0/8")]}
        assert populate(tree, code_map) == 3

    def test_repeated_allowed_code_inserted_once(self, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, ["us"])
        code_map = {"us": [_net("1.0.0.0/8"), _net("2.0.0.0/8")]}
        assert populate(tree, code_map, ["us", "us"]) == 2
        assert tree.insert_count == 2


class TestWriteTree:
    def test_metadata_of_output(self, tmp_path: Path, metadata: SourceMetadata) -> None:
        code_map = {"us": [_net("1.2.3.0/24")], "de": [_net("2a00::/12")]}
        with _build(tmp_path, metadata, code_map) as reader:
            meta = reader.metadata()
            assert meta.database_type == "sing-geoip"
            assert meta.languages == ["de", "us"]
            assert meta.ip_version == 6
            assert meta.record_size == 28

    def test_output_enumerable_without_prior_knowledge(self, tmp_path: Path, metadata: SourceMetadata) -> None:
        code_map = {"us": [_net("1.2.3.0/24")], "de": [_net("2a00::/12")]}
        with _build(tmp_path, metadata, code_map) as reader:
            assert {str(n): v for n, v in reader} == {"1.2.3.0/24": "us", "2a00::/12": "de"}

    def test_no_file_when_encoding_fails(self, tmp_path: Path, metadata: SourceMetadata,
                                         monkeypatch: pytest.MonkeyPatch) -> None:
        tree = new_writer(metadata, [])

        def boom():
            raise ConfigurationError("record size too small")

        monkeypatch.setattr(tree, "to_bytes", boom)
        path = tmp_path / "geoip.db"
        with pytest.raises(ConfigurationError):
            write_tree(tree, path)
        assert not path.exists()

    def test_write_failure_is_os_error(self, tmp_path: Path, metadata: SourceMetadata) -> None:
        tree = new_writer(metadata, [])
        with pytest.raises(OSError):
            write_tree(tree, tmp_path / "missing" / "geoip.db")
