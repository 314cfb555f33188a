"""Vulnerability lookup contract and an OSV.dev adapter."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Protocol

import requests

from .errors import VulnerabilityLookupError

__all__ = [
    "OsvLookup",
    "Vulnerability",
    "VulnerabilityLookup",
    "VulnerabilityReport",
    "parse_osv_response",
]

logger = logging.getLogger(__name__)

OSV_QUERY_URL = "https://api.osv.dev/v1/query"


@dataclass(frozen=True)
class Vulnerability:
    id: str
    severity: str
    summary: str = ""
    affected_versions: tuple[str, ...] = ()
    fixed_version: str | None = None
    published_date: str | None = None
    source: str = "osv"


@dataclass(frozen=True)
class VulnerabilityReport:
    is_vulnerable: bool
    vulnerabilities: tuple[Vulnerability, ...] = ()


class VulnerabilityLookup(Protocol):
    """Anything that can answer "is package@version vulnerable?".

    Implementations raise on transport failure; an exception is never read as
    "not vulnerable".
    """

    async def query(self, package_name: str, version: str) -> VulnerabilityReport:
        ...


class _LruCache:
    def __init__(self, max_size: int = 1000) -> None:
        self.max_size = max(1, max_size)
        self._data: OrderedDict[str, VulnerabilityReport] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> VulnerabilityReport | None:
        with self._lock:
            value = self._data.get(key)
            if value is not None:
                self._data.move_to_end(key)
            return value

    def set(self, key: str, value: VulnerabilityReport) -> None:
        with self._lock:
            if key in self._data:
                self._data.move_to_end(key)
            elif len(self._data) >= self.max_size:
                self._data.popitem(last=False)
            self._data[key] = value

    def __len__(self) -> int:
        return len(self._data)


def _severity_of(entry: Mapping[str, Any]) -> str:
    specific = entry.get("database_specific")
    if isinstance(specific, Mapping):
        value = specific.get("severity")
        if isinstance(value, str) and value.strip():
            return value.strip().lower()
    return "unknown"


def _affected_details(entry: Mapping[str, Any]) -> tuple[tuple[str, ...], str | None]:
    versions: list[str] = []
    fixed: str | None = None
    for affected in entry.get("affected") or ():
        if not isinstance(affected, Mapping):
            continue
        versions.extend(str(v) for v in affected.get("versions") or ())
        for range_ in affected.get("ranges") or ():
            for event in (range_ or {}).get("events") or ():
                if fixed is None and isinstance(event, Mapping) and event.get("fixed"):
                    fixed = str(event["fixed"])
    return tuple(versions), fixed


def parse_osv_response(payload: Mapping[str, Any]) -> VulnerabilityReport:
    vulns: list[Vulnerability] = []
    for entry in payload.get("vulns") or ():
        if not isinstance(entry, Mapping) or not entry.get("id"):
            continue
        affected, fixed = _affected_details(entry)
        vulns.append(
            Vulnerability(
                id=str(entry["id"]),
                severity=_severity_of(entry),
                summary=str(entry.get("summary") or ""),
                affected_versions=affected,
                fixed_version=fixed,
                published_date=entry.get("published"),
                source="osv",
            )
        )
    return VulnerabilityReport(is_vulnerable=bool(vulns), vulnerabilities=tuple(vulns))


class OsvLookup:
    """Query OSV.dev for npm advisories, caching answers in memory."""

    def __init__(
        self,
        api_url: str = OSV_QUERY_URL,
        *,
        timeout_seconds: float = 10.0,
        cache_size: int = 1000,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ) -> None:
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds
        self._cache = _LruCache(cache_size)
        self._session_factory = session_factory
        # lookups run on worker threads; each thread gets its own session
        self._local = threading.local()

    async def query(self, package_name: str, version: str) -> VulnerabilityReport:
        key = f"{package_name}@{version}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        report = await asyncio.to_thread(self._query_sync, package_name, version)
        self._cache.set(key, report)
        return report

    def _session(self) -> requests.Session:
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._session_factory()
            self._local.session = session
        return session

    def _query_sync(self, package_name: str, version: str) -> VulnerabilityReport:
        body = {"package": {"name": package_name, "ecosystem": "npm"}, "version": version}
        logger.debug("OSV query %s@%s", package_name, version)
        try:
            response = self._session().post(self.api_url, json=body, timeout=self.timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise VulnerabilityLookupError(f"OSV query failed for {package_name}@{version}: {exc}") from exc
        except ValueError as exc:
            raise VulnerabilityLookupError(f"OSV returned invalid JSON for {package_name}@{version}") from exc
        if not isinstance(payload, Mapping):
            raise VulnerabilityLookupError(f"unexpected OSV payload for {package_name}@{version}")
        return parse_osv_response(payload)
