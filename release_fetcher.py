#!/usr/bin/env python3
# filename: release_fetcher.py
# -----------------------------------------------------------------------------
# Project: sing-geoip Database Builder
# Version: 1.0.0
# -----------------------------------------------------------------------------
"""
Fetches release assets from GitHub.

No retries and no caching: network and HTTP failures propagate as the
urllib error (an OSError). A response that is not a release, or an asset
without a download URL, raises InvalidRelease.
"""

import urllib.request
from typing import Any, Dict, Optional

import orjson as json

from errors import ConfigurationError, InvalidRelease, NotFound
from utils import get_logger

logger = get_logger("ReleaseFetcher")

GITHUB_API_URL = "https://api.github.com"
USER_AGENT = "sing-geoip-builder/1.0"


def split_repository(repository: str):
    """'owner/name' -> ('owner', 'name')"""
    parts = repository.split('/', 1)
    if len(parts) != 2 or not parts[0] or not parts[1] or '/' in parts[1]:
        raise ConfigurationError(f"Repository must be 'owner/name', got '{repository}'")
    return parts[0], parts[1]


class ReleaseClient:
    """GitHub releases client; the optional token is sent with every request."""

    def __init__(self, token: Optional[str] = None, api_url: str = GITHUB_API_URL,
                 timeout: Optional[float] = None):
        self.token = token
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout

    def _request(self, url: str, accept: str) -> bytes:
        headers = {'Accept': accept, 'User-Agent': USER_AGENT}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        request = urllib.request.Request(url, headers=headers)
        with urllib.request.urlopen(request, timeout=self.timeout) as response:
            return response.read()

    def latest_release(self, repository: str) -> Dict[str, Any]:
        owner, name = split_repository(repository)
        url = f"{self.api_url}/repos/{owner}/{name}/releases/latest"
        try:
            release = json.loads(self._request(url, 'application/vnd.github+json'))
        except json.JSONDecodeError as e:
            raise InvalidRelease(f"Latest release of {repository} is not valid JSON: {e}") from e
        if not isinstance(release, dict):
            raise InvalidRelease(f"Latest release of {repository} is not a JSON object")
        logger.info(f"  📦 Latest release of {repository}: {release.get('name') or release.get('tag_name')}")
        return release

    @staticmethod
    def find_asset(release: Dict[str, Any], asset_name: str) -> Dict[str, Any]:
        for asset in release.get('assets') or []:
            if isinstance(asset, dict) and asset.get('name') == asset_name:
                return asset
        raise NotFound(f"{asset_name} not found in upstream release "
                       f"{release.get('name') or release.get('tag_name')}")

    def download(self, url: str) -> bytes:
        logger.info(f"  ⬇ Downloading {url}")
        data = self._request(url, 'application/octet-stream')
        logger.info(f"     Downloaded {len(data) / (1024 * 1024):.2f} MB")
        return data

    def fetch_asset(self, repository: str, asset_name: str) -> bytes:
        """Download ``asset_name`` from the latest release of ``repository``."""
        release = self.latest_release(repository)
        asset = self.find_asset(release, asset_name)
        url = asset.get('browser_download_url')
        if not url or not isinstance(url, str):
            raise InvalidRelease(f"{asset_name} in the latest release of {repository} has no download URL")
        return self.download(url)
