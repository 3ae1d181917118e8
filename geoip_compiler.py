#!/usr/bin/env python3
# filename: geoip_compiler.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Regenerates sing-geoip databases from upstream MaxMind DB release assets.

Each variant (full and lite) runs independently:
fetch -> decode -> classify -> build -> write.
"""

import argparse
import sys
import time
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

from config_validator import VARIANTS, load_config
from errors import GeoIPError
from geo_classifier import CodeMap, build_code_map
from mmdb_decoder import SourceMetadata, decode_database
from release_fetcher import ReleaseClient
from tree_builder import new_writer, populate, write_tree
from utils import get_logger, setup_logging

logger = get_logger("GeoIPCompiler")


def parse(binary: bytes) -> Tuple[SourceMetadata, CodeMap]:
    """Decode an MMDB image and group its networks by code."""
    metadata, networks = decode_database(binary)
    code_map = build_code_map(networks)
    return metadata, code_map


def build(metadata: SourceMetadata, code_map: CodeMap, output,
          allow_list: Optional[Iterable[str]] = None) -> int:
    """Build a fresh tree for ``code_map`` and write it to ``output``."""
    writer = new_writer(metadata, code_map.keys())
    populate(writer, code_map, allow_list)
    return write_tree(writer, output)


class GeoIPCompiler:
    """
    Runs the pipeline for one or more variants.

    ``client`` supplies asset bytes; it is passed in rather than created
    globally so separate runs never share state.
    """

    def __init__(self, client: ReleaseClient):
        self.client = client

    def compile_bytes(self, binary: bytes, output, allow_list: Optional[Iterable[str]] = None) -> int:
        metadata, code_map = parse(binary)
        return build(metadata, code_map, output, allow_list)

    def release(self, source: str, asset: str, output,
                allow_list: Optional[Iterable[str]] = None, input_path: Optional[str] = None) -> int:
        """Fetch ``asset`` from the latest release of ``source`` (or read ``input_path``) and compile it."""
        if input_path:
            logger.info(f"  📂 Reading {input_path}")
            binary = Path(input_path).read_bytes()
        else:
            binary = self.client.fetch_asset(source, asset)
        return self.compile_bytes(binary, output, allow_list)

    def run(self, config: Dict, variants: Iterable[str] = VARIANTS,
            inputs: Optional[Dict[str, str]] = None) -> Dict[str, int]:
        """Run the variants in order, stopping at the first failure."""
        inputs = inputs or {}
        sizes = {}
        for variant in variants:
            cfg = config[variant]
            start = time.time()
            logger.info(f"🌍 Building {variant} database: {cfg['source']} {cfg['asset']} -> {cfg['output']}")
            sizes[variant] = self.release(
                cfg['source'], cfg['asset'], cfg['output'],
                allow_list=cfg.get('allow_list'), input_path=inputs.get(variant),
            )
            logger.info(f"✓ {variant} done in {time.time() - start:.1f}s")
        return sizes


def _overrides(args) -> Dict:
    overrides: Dict = {}
    if args.log_level:
        overrides['logging'] = {'level': args.log_level}
    for variant, source, output, allow in (
            ('full', args.source, args.output, args.allow),
            ('lite', args.lite_source, args.lite_output, args.lite_allow)):
        section = {}
        if source:
            section['source'] = source
        if output:
            section['output'] = output
        if allow is not None:
            section['allow_list'] = [code.lower() for code in allow]
        if section:
            overrides[variant] = section
    return overrides


def main(argv=None):
    parser = argparse.ArgumentParser(description="sing-geoip database builder")
    parser.add_argument("--config", help="Path to JSON configuration file")
    parser.add_argument("--source", help="Upstream repository (owner/name) for the full database")
    parser.add_argument("--lite-source", help="Upstream repository (owner/name) for the lite database")
    parser.add_argument("--output", help="Output path for the full database")
    parser.add_argument("--lite-output", help="Output path for the lite database")
    parser.add_argument("--allow", nargs='*', help="Only include these codes in the full database")
    parser.add_argument("--lite-allow", nargs='*', help="Only include these codes in the lite database")
    parser.add_argument("--mmdb", help="Use a local .mmdb file instead of downloading the full asset")
    parser.add_argument("--lite-mmdb", help="Use a local .mmdb file instead of downloading the lite asset")
    parser.add_argument("--only", choices=VARIANTS, help="Build a single variant")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    args = parser.parse_args(argv)

    setup_logging(args.log_level or 'INFO')

    try:
        config = load_config(args.config, _overrides(args))
        setup_logging(config['logging'].get('level', 'INFO'))
        client = ReleaseClient(token=config.get('access_token'), timeout=config.get('timeout'))
        variants = (args.only,) if args.only else VARIANTS
        GeoIPCompiler(client).run(config, variants, inputs={'full': args.mmdb, 'lite': args.lite_mmdb})
    except (GeoIPError, OSError) as e:
        logger.error(f"❌ {type(e).__name__}: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
