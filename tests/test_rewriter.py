"""Unit tests for version map and dist-tag rewriting."""

from __future__ import annotations

from guard_core.rewriter import apply_outcome, blocked_document, rewrite_dist_tags, rewrite_versions
from guard_core.types import FALLBACK_FLAG, FALLBACK_REASON, FALLBACK_SOURCE


def _versions(*ids: str) -> dict:
    return {v: {"name": "lodash", "version": v, "dist": {"tarball": f"https://r/lodash-{v}.tgz"}} for v in ids}


def test_fallback_keeps_requested_id_with_source_payload() -> None:
    versions = _versions("4.17.20", "4.17.21")

    outcome = rewrite_versions(versions, substitutions={"4.17.20": "4.17.21"}, reasons={"4.17.20": "Prototype pollution"})

    entry = outcome.versions["4.17.20"]
    assert entry["version"] == "4.17.20"
    assert entry["dist"]["tarball"] == "https://r/lodash-4.17.21.tgz"
    assert entry[FALLBACK_FLAG] is True
    assert entry[FALLBACK_SOURCE] == "4.17.21"
    assert entry[FALLBACK_REASON] == "Prototype pollution"
    assert outcome.versions["4.17.21"] is versions["4.17.21"]
    assert [(a.original, a.fallback) for a in outcome.fallbacks_applied] == [("4.17.20", "4.17.21")]
    assert outcome.changed
    # the input map is never mutated
    assert FALLBACK_FLAG not in versions["4.17.20"]


def test_missing_fallback_source_blocks_version() -> None:
    outcome = rewrite_versions(_versions("1.0.0"), substitutions={"1.0.0": "9.9.9"})
    assert outcome.versions == {}
    assert outcome.blocked_version_ids == ["1.0.0"]


def test_removal_wins_over_substitution() -> None:
    outcome = rewrite_versions(
        _versions("1.0.0", "1.0.1"),
        removed={"1.0.0"},
        substitutions={"1.0.0": "1.0.1"},
    )
    assert list(outcome.versions) == ["1.0.1"]
    assert outcome.blocked_version_ids == ["1.0.0"]
    assert not outcome.fallbacks_applied


def test_unchanged_outcome() -> None:
    outcome = rewrite_versions(_versions("1.0.0"))
    assert not outcome.changed


def test_dist_tags_point_at_served_versions() -> None:
    served = _versions("1.0.0", "1.2.0", "1.10.0")
    tags = rewrite_dist_tags({"latest": "2.0.0", "next": "1.2.0", "beta": "3.0.0-beta"}, served)
    assert tags == {"latest": "1.10.0", "next": "1.2.0", "beta": "1.10.0"}

    assert rewrite_dist_tags({"latest": "2.0.0"}, {}) == {}


def test_apply_outcome_rewrites_copy() -> None:
    document = {"name": "lodash", "versions": _versions("4.17.20", "4.17.21"), "dist-tags": {"latest": "4.17.21"}}
    outcome = rewrite_versions(document["versions"], removed={"4.17.21"})

    result = apply_outcome(document, outcome)

    assert list(result["versions"]) == ["4.17.20"]
    assert result["dist-tags"] == {"latest": "4.17.20"}
    assert list(document["versions"]) == ["4.17.20", "4.17.21"]


def test_blocked_document_shape() -> None:
    document = blocked_document("@evil/pkg", "Package scope not allowed", ["scope"])
    assert document["name"] == "@evil/pkg"
    assert document["_id"] == "@evil/pkg"
    assert document["versions"] == {}
    assert document["dist-tags"] == {}
    assert document["security"] == {"blocked": True, "reason": "Package scope not allowed", "rules": ["scope"]}
