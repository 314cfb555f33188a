"""Tests for the FastAPI registry guard app."""

from __future__ import annotations

from fastapi.testclient import TestClient

from guard_core import SecurityFilter, config_from_mapping
from guard_registry.api import make_app
from guard_registry.settings import GuardSettings
from guard_registry.upstream import UpstreamError, metadata_path


class _FakeUpstream:
    base_url = "https://registry.example"

    def __init__(self, documents=None, fail: bool = False) -> None:
        self.documents = documents or {}
        self.fail = fail
        self.fetched: list[str] = []

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def fetch_metadata(self, package_name: str):
        self.fetched.append(package_name)
        if self.fail:
            raise UpstreamError("connection refused")
        return self.documents.get(package_name)


def _client(raw: dict, upstream: _FakeUpstream | None = None) -> tuple[TestClient, _FakeUpstream]:
    upstream = upstream or _FakeUpstream()
    security_filter = SecurityFilter(config_from_mapping(raw))
    app = make_app(GuardSettings(), security_filter=security_filter, upstream=upstream)
    return TestClient(app), upstream


def _lodash() -> dict:
    return {
        "name": "lodash",
        "dist-tags": {"latest": "4.17.20"},
        "versions": {
            "4.17.20": {"name": "lodash", "version": "4.17.20"},
            "4.17.21": {"name": "lodash", "version": "4.17.21"},
        },
    }


def test_health() -> None:
    client, _ = _client({})
    assert client.get("/health").json() == {"ok": True}


def test_metadata_is_filtered() -> None:
    upstream = _FakeUpstream({"lodash": _lodash()})
    client, _ = _client({"blockedVersions": ["lodash@4.17.20"]}, upstream)

    resp = client.get("/lodash")

    assert resp.status_code == 200
    body = resp.json()
    assert list(body["versions"]) == ["4.17.21"]
    assert body["dist-tags"] == {"latest": "4.17.21"}
    assert body["_security"]["removedVersions"] == ["4.17.20"]
    assert upstream.fetched == ["lodash"]


def test_blocked_package_never_reaches_upstream() -> None:
    client, upstream = _client({"blockedScopes": ["@malicious"]})

    resp = client.get("/@malicious/pkg")

    assert resp.status_code == 200
    assert resp.json()["security"]["rules"] == ["scope"]
    assert upstream.fetched == []


def test_blocked_tarball_is_forbidden() -> None:
    client, _ = _client({"blockedVersions": ["lodash@4.17.20"]})

    resp = client.get("/lodash/-/lodash-4.17.20.tgz")

    assert resp.status_code == 403
    assert resp.json()["error"] == "Package blocked by security filter"


def test_allowed_tarball_redirects_upstream() -> None:
    client, _ = _client({})
    resp = client.get("/lodash/-/lodash-4.17.21.tgz", follow_redirects=False)
    assert resp.status_code == 307
    assert resp.headers["location"] == "https://registry.example/lodash/-/lodash-4.17.21.tgz"


def test_unknown_package_and_upstream_failure() -> None:
    client, _ = _client({})
    assert client.get("/missing").status_code == 404
    assert client.get("/-/whoami").status_code == 404

    failing, _ = _client({}, _FakeUpstream(fail=True))
    assert failing.get("/lodash").status_code == 502


def test_validate_publish_endpoint() -> None:
    client, _ = _client({"blockedVersions": ["lodash@4.17.20"]})

    ok = client.post("/-/security/validate-publish", json={"name": "lodash", "version": "4.17.21"})
    assert ok.status_code == 200
    assert ok.json()["ok"] is True

    rejected = client.post("/-/security/validate-publish", json={"name": "lodash", "version": "4.17.20"})
    assert rejected.status_code == 403
    assert rejected.json()["reason"] == "Version lodash@4.17.20 is blocked due to security concerns"


def test_runtime_whitelist_management() -> None:
    upstream = _FakeUpstream({"lodash": _lodash()})
    client, _ = _client({"mode": "whitelist"}, upstream)

    assert client.get("/lodash").json()["security"]["rules"] == ["whitelist"]

    resp = client.post("/-/security/whitelist/packages", json={"name": "lodash", "version_range": "^4.17.21"})
    assert resp.status_code == 200
    body = client.get("/lodash").json()
    assert list(body["versions"]) == ["4.17.21"]

    client.delete("/-/security/whitelist/packages/lodash")
    assert client.get("/lodash").json()["security"]["rules"] == ["whitelist"]

    client.post("/-/security/whitelist/patterns", json={"pattern": "^lod"})
    assert "security" not in client.get("/lodash").json()
    assert client.get("/-/security/summary").json()["whitelist"]["totalPatterns"] == 1


def test_metadata_path_quotes_scoped_names() -> None:
    assert metadata_path("@acme/widgets") == "/@acme%2Fwidgets"
    assert metadata_path("lodash") == "/lodash"
