"""Tests for full metadata filtering through the SecurityFilter facade."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from guard_core import EventBus, SecurityFilter, config_from_mapping
from guard_core.checks.license import LicenseChecker
from guard_core.deep import FILTERED_BY, DeepEvaluator
from guard_core.errors import VulnerabilityLookupError
from guard_core.vulndb import Vulnerability, VulnerabilityReport

NOW = datetime(2024, 6, 15, tzinfo=timezone.utc)


class _Lookup:
    def __init__(self, table=None, failing=()) -> None:
        self.table = table or {}
        self.failing = set(failing)

    async def query(self, package_name: str, version: str) -> VulnerabilityReport:
        if version in self.failing:
            raise VulnerabilityLookupError("osv unreachable")
        vulns = tuple(self.table.get(version, ()))
        return VulnerabilityReport(bool(vulns), vulns)


def _document(name: str, ids, *, latest=None, license="MIT", **extra) -> dict:
    versions = {
        v: {"name": name, "version": v, "license": license, "dist": {"tarball": f"https://r/{name}-{v}.tgz"}}
        for v in ids
    }
    document = {
        "name": name,
        "versions": versions,
        "dist-tags": {"latest": latest or list(ids)[-1]},
        "time": {"created": "2015-01-01T00:00:00Z", **{v: "2020-01-01T00:00:00Z" for v in ids}},
    }
    document.update(extra)
    return document


def _filter(raw: dict, **kwargs) -> tuple[SecurityFilter, list]:
    bus = EventBus()
    events: list = []
    bus.on("*", events.append)
    return SecurityFilter(config_from_mapping(raw), bus=bus, clock=lambda: NOW, **kwargs), events


def _run(security_filter: SecurityFilter, document: dict) -> dict:
    return asyncio.run(security_filter.filter_metadata(document))


def test_lodash_fallback_rewrites_vulnerable_versions() -> None:
    security_filter, events = _filter(
        {
            "versionRangeRules": [
                {
                    "package": "lodash",
                    "range": ">=4.17.0 <4.17.21",
                    "strategy": "fallback",
                    "fallbackVersion": "4.17.21",
                    "reason": "Prototype pollution",
                }
            ]
        }
    )
    document = _document("lodash", ["4.16.6", "4.17.15", "4.17.20", "4.17.21"], latest="4.17.20")

    result = _run(security_filter, document)

    assert list(result["versions"]) == ["4.16.6", "4.17.15", "4.17.20", "4.17.21"]
    swapped = result["versions"]["4.17.20"]
    assert swapped["_isFallback"] is True
    assert swapped["_fallbackSourceVersion"] == "4.17.21"
    assert swapped["dist"]["tarball"] == "https://r/lodash-4.17.21.tgz"
    assert "_isFallback" not in result["versions"]["4.16.6"]
    assert result["dist-tags"] == {"latest": "4.17.20"}

    security = result["_security"]
    assert security["filteredBy"] == FILTERED_BY
    assert security["fallbackVersions"] == [">=4.17.0 <4.17.21 -> 4.17.21"]
    assert {"original": "4.17.15", "fallback": "4.17.21"} in security["fallbacksApplied"]
    assert [e.kind for e in events] == ["fallback", "fallback"]
    assert events[0].metadata == {"toVersion": "4.17.21"}


def test_filtering_is_idempotent() -> None:
    security_filter, _ = _filter(
        {
            "blockedVersions": ["lodash@4.17.19"],
            "versionRangeRules": [
                {"package": "lodash", "range": "<4.17.21", "strategy": "fallback", "fallbackVersion": "4.17.21"}
            ],
        }
    )
    once = _run(security_filter, _document("lodash", ["4.17.19", "4.17.20", "4.17.21"]))
    twice = _run(security_filter, once)

    assert twice["versions"] == once["versions"]
    assert twice["dist-tags"] == once["dist-tags"]


def test_blocked_and_range_versions_are_removed() -> None:
    security_filter, events = _filter(
        {
            "blockedVersions": ["axios@0.21.0"],
            "versionRangeRules": [
                {"package": "axios", "range": ">=0.21.0 <=0.21.1", "strategy": "block", "reason": "SSRF"}
            ],
        }
    )
    result = _run(security_filter, _document("axios", ["0.20.0", "0.21.0", "0.21.1"]))

    assert list(result["versions"]) == ["0.20.0"]
    assert result["dist-tags"] == {"latest": "0.20.0"}
    assert result["_security"]["removedVersions"] == ["0.21.0", "0.21.1"]
    assert result["_security"]["blockedVersions"] == [">=0.21.0 <=0.21.1"]
    assert [(e.kind, e.version, e.reason) for e in events] == [
        ("block", "0.21.0", "Exact version match in blocklist"),
        ("block", "0.21.1", "SSRF"),
    ]


def test_every_version_removed_drops_dist_tags() -> None:
    security_filter, _ = _filter(
        {"versionRangeRules": [{"package": "debug", "range": ">=0.0.0", "strategy": "block"}]}
    )
    result = _run(security_filter, _document("debug", ["1.0.0", "2.0.0"]))
    assert result["versions"] == {}
    assert result["dist-tags"] == {}


def test_fallback_to_missing_version_blocks_instead() -> None:
    security_filter, _ = _filter(
        {"versionRangeRules": [{"package": "pkg", "range": "<2.0.0", "strategy": "fallback", "fallbackVersion": "2.0.0"}]}
    )
    result = _run(security_filter, _document("pkg", ["1.0.0", "1.5.0"]))
    assert result["versions"] == {}
    assert result["_security"]["removedVersions"] == ["1.0.0", "1.5.0"]


def test_package_level_block_serves_blocked_document() -> None:
    security_filter, events = _filter({"blockedScopes": ["@malicious"]})
    result = _run(security_filter, _document("@malicious/pkg", ["1.0.0"]))

    assert result["versions"] == {}
    assert result["security"] == {"blocked": True, "reason": "Package scope not allowed", "rules": ["scope"]}
    assert events[0].kind == "block"


def test_whitelist_mode_filters_versions_by_constraint() -> None:
    security_filter, _ = _filter(
        {"mode": "whitelist", "whitelist": {"packages": ["lodash"], "versions": {"lodash": "^4.0.0"}}}
    )
    result = _run(security_filter, _document("lodash", ["3.10.1", "4.17.21"]))
    assert list(result["versions"]) == ["4.17.21"]

    blocked = _run(security_filter, _document("hawk", ["7.0.0"]))
    assert blocked["security"]["rules"] == ["whitelist"]


def test_license_violation_blocks_package() -> None:
    security_filter, events = _filter({"license": {"blocked": ["GPL-3.0"]}})
    result = _run(security_filter, _document("copyleft", ["1.0.0"], license="GPL-3.0"))

    assert result["security"]["rules"] == ["license"]
    assert result["security"]["reason"] == "License 'GPL-3.0' is in blocked list"
    assert [e.kind for e in events] == ["license_blocked", "block"]
    assert events[0].metadata == {"license": "GPL-3.0"}


def test_license_falls_back_to_document_level() -> None:
    security_filter, _ = _filter({"license": {"allowed": ["MIT"]}})
    document = _document("pkg", ["1.0.0"], license=None)
    document["license"] = "MIT"
    result = _run(security_filter, document)
    assert "security" not in result


def test_package_age_blocks_new_package() -> None:
    security_filter, events = _filter({"packageAge": {"enabled": True, "minPackageAgeDays": 7}})
    document = _document("fresh", ["1.0.0"])
    document["time"] = {"created": "2024-06-13T00:00:00Z", "1.0.0": "2024-06-13T00:00:00Z"}

    result = _run(security_filter, document)

    assert result["security"]["rules"] == ["age"]
    assert events[0].kind == "package_too_new"


def test_version_age_prunes_new_versions() -> None:
    security_filter, _ = _filter({"packageAge": {"enabled": True, "minVersionAgeDays": 3}})
    document = _document("pkg", ["1.0.0", "1.1.0"])
    document["time"]["1.1.0"] = "2024-06-14T00:00:00Z"

    result = _run(security_filter, document)

    assert list(result["versions"]) == ["1.0.0"]
    assert result["dist-tags"] == {"latest": "1.0.0"}


def test_author_from_blocked_region() -> None:
    security_filter, events = _filter({"authorFilter": {"enabled": True, "blockedRegions": ["ru"]}})
    document = _document("pkg", ["1.0.0"], maintainers=[{"name": "ivan", "email": "ivan@mail.ru"}])

    result = _run(security_filter, document)

    assert result["security"]["rules"] == ["author"]
    assert events[0].kind == "author_blocked"


def test_cve_advisory_annotates_without_blocking() -> None:
    lookup = _Lookup({"1.0.0": [Vulnerability("GHSA-1", "high")]})
    security_filter, events = _filter({"cveCheck": {"enabled": True}}, lookup=lookup)

    result = _run(security_filter, _document("pkg", ["1.0.0", "1.1.0"]))

    assert list(result["versions"]) == ["1.0.0", "1.1.0"]
    assert result["_security"]["vulnerabilities"] == {"1.0.0": ["GHSA-1"]}
    assert "1 vulnerable version(s) found" in result["_security"]["warnings"]
    assert events[0].kind == "cve_detected"


def test_cve_auto_block() -> None:
    lookup = _Lookup({"1.0.0": [Vulnerability("GHSA-1", "critical")]})
    security_filter, _ = _filter({"cveCheck": {"enabled": True, "autoBlock": True}}, lookup=lookup)
    result = _run(security_filter, _document("pkg", ["1.0.0"]))
    assert result["security"]["rules"] == ["cve"]


def test_cve_errors_follow_error_policy() -> None:
    lookup = _Lookup(failing={"1.0.0"})
    open_filter, _ = _filter({"cveCheck": {"enabled": True}}, lookup=lookup)
    result = _run(open_filter, _document("pkg", ["1.0.0"]))
    assert list(result["versions"]) == ["1.0.0"]
    assert "CVE check failed for 1 version(s)" in result["_security"]["warnings"]

    closed_filter, _ = _filter(
        {"cveCheck": {"enabled": True}, "errorHandling": {"onCveCheckError": "fail-closed"}},
        lookup=lookup,
    )
    result = _run(closed_filter, _document("pkg", ["1.0.0"]))
    assert result["security"]["rules"] == ["cve"]


def test_filter_error_fails_open_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    security_filter, _ = _filter({})

    async def boom(self, document, name):
        raise RuntimeError("boom")

    monkeypatch.setattr(DeepEvaluator, "_evaluate", boom)
    document = _document("pkg", ["1.0.0"])

    assert _run(security_filter, document) is document


def test_filter_error_fails_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    security_filter, events = _filter({"errorHandling": {"onFilterError": "fail-closed"}})

    async def boom(self, document, name):
        raise RuntimeError("boom")

    monkeypatch.setattr(DeepEvaluator, "_evaluate", boom)
    result = _run(security_filter, _document("pkg", ["1.0.0"]))

    assert result["security"] == {"blocked": True, "reason": "Security filter error: boom", "rules": ["error"]}
    assert events[0].metadata == {"blockedBy": "error"}


def test_malformed_versions_goes_through_error_policy() -> None:
    security_filter, _ = _filter({"errorHandling": {"onFilterError": "fail-closed"}})
    result = _run(security_filter, {"name": "pkg", "versions": ["1.0.0"]})
    assert result["security"]["rules"] == ["error"]


def test_summary_and_features() -> None:
    security_filter, _ = _filter(
        {
            "license": {"blocked": ["GPL-3.0"]},
            "versionRangeRules": [{"package": "a", "range": "<1.0.0", "strategy": "block"}],
        }
    )
    summary = security_filter.summary()
    assert summary["mode"] == "blacklist"
    assert summary["versionRangeRules"] == 1
    assert "license" in summary["features"]
    assert "range-rules=1" in summary["features"]


def _license_db_down(self, record):
    raise RuntimeError("license db down")


def test_license_check_error_fails_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    security_filter, _ = _filter(
        {"license": {"allowed": ["MIT"]}, "errorHandling": {"onLicenseCheckError": "fail-closed"}}
    )
    monkeypatch.setattr(LicenseChecker, "check", _license_db_down)

    result = _run(security_filter, _document("pkg", ["1.0.0"]))

    assert result["versions"] == {}
    assert result["security"]["rules"] == ["license"]
    assert "license db down" in result["security"]["reason"]


def test_license_check_error_fails_open_with_warning(monkeypatch: pytest.MonkeyPatch) -> None:
    security_filter, _ = _filter({"license": {"allowed": ["MIT"]}})
    monkeypatch.setattr(LicenseChecker, "check", _license_db_down)

    result = _run(security_filter, _document("pkg", ["1.0.0", "1.1.0"]))

    assert list(result["versions"]) == ["1.0.0", "1.1.0"]
    assert "License check failed: license db down" in result["_security"]["warnings"]


def test_summary_reports_checksum_setting() -> None:
    security_filter, _ = _filter({"enforceChecksum": False})
    assert security_filter.summary()["enforceChecksum"] is False
