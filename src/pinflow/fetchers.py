"""Functions that download metadata from PyPI-style JSON indexes."""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from .constants import DEFAULT_TIMEOUT, USER_AGENT
from .exceptions import FetchError

logger = logging.getLogger(__name__)


def _request_json(url: str, session: Optional[requests.Session] = None) -> Optional[Dict]:
    """GET *url* as JSON; ``None`` when the index answers 404."""

    sess = session or requests.Session()
    headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
    logger.debug("GET %s", url)
    try:
        response = sess.get(url, headers=headers, timeout=DEFAULT_TIMEOUT)
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch {url}: {exc}") from exc
    if response.status_code == 404:
        return None
    if response.status_code >= 400:
        raise FetchError(f"Failed to fetch {url}: HTTP {response.status_code}")
    try:
        return response.json()
    except ValueError as exc:
        raise FetchError(f"Invalid JSON from {url}") from exc


def fetch_project(name: str, index_url: str, session: Optional[requests.Session] = None) -> Optional[Dict]:
    return _request_json(f"{index_url.rstrip('/')}/{name}/json", session=session)


def fetch_release(name: str, version: str, index_url: str, session: Optional[requests.Session] = None) -> Optional[Dict]:
    return _request_json(f"{index_url.rstrip('/')}/{name}/{version}/json", session=session)
