"""Client for the upstream registry the guard sits in front of."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

log = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """The upstream registry failed or answered with garbage."""


def metadata_path(package_name: str) -> str:
    # scoped names are requested as @scope%2fname
    if package_name.startswith("@"):
        return "/" + quote(package_name, safe="@")
    return "/" + quote(package_name, safe="")


@dataclass
class UpstreamClient:
    base_url: str
    timeout: float = 30.0
    session: requests.Session = field(default_factory=requests.Session)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def fetch_metadata(self, package_name: str) -> Optional[Dict[str, Any]]:
        """Return the package document, or ``None`` when upstream has no such package."""
        url = self.url_for(metadata_path(package_name))
        try:
            resp = self.session.get(url, headers={"Accept": "application/json"}, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"upstream request failed: {e}") from e
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise UpstreamError(f"upstream returned {resp.status_code} for {package_name}")
        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"upstream returned invalid JSON for {package_name}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"upstream returned unexpected payload for {package_name}")
        log.debug("fetched metadata for %s (%d versions)", package_name, len(data.get("versions") or {}))
        return data
