#!/usr/bin/env python3
# filename: errors.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Error hierarchy shared by the decode, classify and build stages.

Network and write failures are not wrapped: they surface as the OSError
raised by urllib or the filesystem. A release response that arrives but
cannot be used raises InvalidRelease.
"""


class GeoIPError(Exception):
    """Base error for the database builder."""


class NotFound(GeoIPError):
    """Raised when the expected asset is missing from the latest release."""


class MalformedDatabase(GeoIPError):
    """Raised when the source image does not parse as a MaxMind DB."""


class ConfigurationError(GeoIPError):
    """Raised for unsupported tree parameters or invalid configuration."""


class InsertionError(GeoIPError):
    """Raised when a network cannot be inserted into the search tree."""


class InvalidRelease(GeoIPError):
    """Raised when the release API answers with something that is not a usable release."""
