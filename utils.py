#!/usr/bin/env python3
# filename: utils.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Shared logging helpers.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = '[%(asctime)s] %(message)s'
LOG_DATEFMT = '%H:%M:%S'


def setup_logging(level: str = 'INFO', stream=None):
    """Configure the root logger once for command line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[logging.StreamHandler(stream or sys.stdout)],
        force=True,
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)
