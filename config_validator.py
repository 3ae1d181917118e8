#!/usr/bin/env python3
# filename: config_validator.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Configuration loading and validation.

Configuration is a plain dictionary:

    {
        "logging": {"level": "INFO"},
        "access_token": null,
        "timeout": null,
        "full": {"source": "owner/repo", "asset": "Country.mmdb",
                 "output": "geoip.db", "allow_list": []},
        "lite": {"source": "owner/repo", "asset": "Country-lite.mmdb",
                 "output": "geoip-lite.db", "allow_list": []}
    }

Values come from the defaults below, an optional JSON file, the
ACCESS_TOKEN environment variable and command line overrides, in that
order.
"""

import copy
import os
import re
from typing import Any, Dict, List, Optional, Tuple

import orjson as json

from errors import ConfigurationError
from utils import get_logger

logger = get_logger("ConfigValidator")

DEFAULT_SOURCE = "Chocolate4U/Iran-v2ray-rules"

DEFAULT_CONFIG: Dict[str, Any] = {
    'logging': {'level': 'INFO'},
    'access_token': None,
    'timeout': None,
    'full': {
        'source': DEFAULT_SOURCE,
        'asset': 'Country.mmdb',
        'output': 'geoip.db',
        'allow_list': [],
    },
    'lite': {
        'source': DEFAULT_SOURCE,
        'asset': 'Country-lite.mmdb',
        'output': 'geoip-lite.db',
        'allow_list': [],
    },
}

VARIANTS = ('full', 'lite')

_REPOSITORY_RE = re.compile(r'^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$')
_CODE_RE = re.compile(r'^[a-z0-9]+$')


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails"""
    pass


class ConfigValidator:
    """Validates builder configuration for common errors and inconsistencies"""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate(self, config: Dict[str, Any]) -> Tuple[bool, List[str], List[str]]:
        """
        Validate entire configuration.

        Returns:
            (is_valid, errors, warnings)
        """
        self.errors = []
        self.warnings = []

        if not isinstance(config, dict):
            self.errors.append("Configuration must be a dictionary")
            return False, self.errors, self.warnings

        self._validate_logging(config.get('logging', {}))
        self._validate_access(config)
        for variant in VARIANTS:
            self._validate_variant(variant, config.get(variant))
        self._validate_outputs(config)

        unknown = set(config) - set(DEFAULT_CONFIG)
        for key in sorted(unknown):
            self.warnings.append(f"{key}: Unknown option (ignored)")

        is_valid = len(self.errors) == 0

        for err in self.errors:
            logger.error(f"  ❌ {err}")
        for warn in self.warnings:
            logger.warning(f"  ⚠️  {warn}")

        if not is_valid:
            logger.error(f"Configuration validation FAILED with {len(self.errors)} error(s)")

        return is_valid, self.errors, self.warnings

    # =========================================================================
    # LOGGING SECTION
    # =========================================================================
    def _validate_logging(self, log_cfg: Dict[str, Any]):
        if not isinstance(log_cfg, dict):
            if log_cfg is not None:
                self.errors.append("logging: Must be a dictionary")
            return

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        level = log_cfg.get('level', 'INFO')
        if isinstance(level, str):
            if level.upper() not in valid_levels:
                self.errors.append(f"logging.level: Invalid level '{level}', must be one of {valid_levels}")
        else:
            self.errors.append(f"logging.level: Must be a string, got {type(level).__name__}")

    # =========================================================================
    # ACCESS SECTION
    # =========================================================================
    def _validate_access(self, config: Dict[str, Any]):
        token = config.get('access_token')
        if token is not None and not isinstance(token, str):
            self.errors.append("access_token: Must be a string")
        elif isinstance(token, str) and not token.strip():
            self.warnings.append("access_token: Empty token, requests will be unauthenticated")

        timeout = config.get('timeout')
        if timeout is not None:
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
                self.errors.append(f"timeout: Must be a positive number, got {timeout!r}")

    # =========================================================================
    # VARIANT SECTIONS
    # =========================================================================
    def _validate_variant(self, name: str, cfg: Any):
        if not isinstance(cfg, dict):
            self.errors.append(f"{name}: Must be a dictionary")
            return

        source = cfg.get('source')
        if not isinstance(source, str) or not _REPOSITORY_RE.match(source):
            self.errors.append(f"{name}.source: Must be 'owner/name', got {source!r}")

        asset = cfg.get('asset')
        if not isinstance(asset, str) or not asset:
            self.errors.append(f"{name}.asset: Must be a non-empty string")

        output = cfg.get('output')
        if not isinstance(output, str) or not output:
            self.errors.append(f"{name}.output: Must be a non-empty string")
        else:
            parent_dir = os.path.dirname(output) or '.'
            if not os.path.isdir(parent_dir):
                self.errors.append(f"{name}.output: Directory '{parent_dir}' does not exist")

        allow_list = cfg.get('allow_list', [])
        if allow_list is None:
            return
        if not isinstance(allow_list, list):
            self.errors.append(f"{name}.allow_list: Must be a list")
            return
        for code in allow_list:
            if not isinstance(code, str) or not code:
                self.errors.append(f"{name}.allow_list: Invalid code {code!r}")
            elif not _CODE_RE.match(code):
                self.warnings.append(f"{name}.allow_list: Code '{code}' is not lowercase "
                                     f"alphanumeric and will never match")

    def _validate_outputs(self, config: Dict[str, Any]):
        outputs = [config.get(v, {}).get('output') for v in VARIANTS if isinstance(config.get(v), dict)]
        outputs = [os.path.abspath(o) for o in outputs if isinstance(o, str) and o]
        if len(outputs) != len(set(outputs)):
            self.errors.append("full.output and lite.output must be different files")


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None,
                environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Build and validate the effective configuration.

    Raises:
        ConfigValidationError: the file is unreadable or validation failed.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if path:
        try:
            with open(path, 'rb') as f:
                file_cfg = json.loads(f.read())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigValidationError(f"Cannot load configuration file '{path}': {e}") from e
        if not isinstance(file_cfg, dict):
            raise ConfigValidationError(f"Configuration file '{path}' must contain an object")
        config = _merge(config, file_cfg)

    environ = os.environ if environ is None else environ
    token = environ.get('ACCESS_TOKEN')
    if token is not None:
        config['access_token'] = token

    if overrides:
        config = _merge(config, overrides)

    is_valid, errors, _ = ConfigValidator().validate(config)
    if not is_valid:
        raise ConfigValidationError("; ".join(errors))
    return config
