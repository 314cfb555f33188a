"""Apply block and fallback decisions to version and dist-tag maps."""

from __future__ import annotations

import logging
from typing import Any, Collection, Mapping

from .ranges import highest_version
from .types import (
    FALLBACK_FLAG,
    FALLBACK_REASON,
    FALLBACK_SOURCE,
    FallbackApplied,
    FilterOutcome,
    VersionRecord,
)

__all__ = [
    "DEFAULT_FALLBACK_REASON",
    "apply_outcome",
    "blocked_document",
    "rewrite_dist_tags",
    "rewrite_versions",
]

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_REASON = "Version blocked by security rule"


def rewrite_versions(
    versions: Mapping[str, VersionRecord],
    removed: Collection[str] = (),
    substitutions: Mapping[str, str] | None = None,
    reasons: Mapping[str, str] | None = None,
) -> FilterOutcome:
    """Build the served version map.

    Substituted ids keep their own ``version`` but carry the payload of the
    source version from the original map. A substitution whose source is
    missing removes the version instead.
    """
    substitutions = substitutions or {}
    reasons = reasons or {}
    outcome = FilterOutcome()
    for version_id, record in versions.items():
        if version_id in removed:
            outcome.blocked_version_ids.append(version_id)
            continue
        source = substitutions.get(version_id)
        if source is None:
            outcome.versions[version_id] = record
            continue
        payload = versions.get(source)
        if payload is None:
            logger.warning("fallback version %s not found for %s, blocking instead", source, version_id)
            outcome.blocked_version_ids.append(version_id)
            continue
        entry = dict(payload)
        entry["version"] = version_id
        entry[FALLBACK_FLAG] = True
        entry[FALLBACK_SOURCE] = source
        entry[FALLBACK_REASON] = reasons.get(version_id) or DEFAULT_FALLBACK_REASON
        outcome.versions[version_id] = entry
        outcome.fallbacks_applied.append(FallbackApplied(original=version_id, fallback=source))
    return outcome


def rewrite_dist_tags(
    dist_tags: Mapping[str, str],
    versions: Mapping[str, VersionRecord],
) -> dict[str, str]:
    """Point every tag at a served version, or drop it when nothing is left."""
    updated: dict[str, str] = {}
    replacement: str | None = None
    resolved = False
    for tag, target in dist_tags.items():
        if target in versions:
            updated[tag] = target
            continue
        if not resolved:
            replacement = highest_version(versions)
            resolved = True
        if replacement is None:
            logger.info("dropped dist-tag %r (no version left for %s)", tag, target)
            continue
        logger.info("updated dist-tag %r from %s to %s", tag, target, replacement)
        updated[tag] = replacement
    return updated


def blocked_document(package_name: str, reason: str, rules: Collection[str] = ()) -> dict[str, Any]:
    """Well-formed package document serving nothing, with the block annotation."""
    return {
        "name": package_name,
        "_id": package_name,
        "versions": {},
        "dist-tags": {},
        "time": {},
        "readme": "",
        "_attachments": {},
        "security": {
            "blocked": True,
            "reason": reason,
            "rules": list(rules),
        },
    }


def apply_outcome(document: Mapping[str, Any], outcome: FilterOutcome) -> dict[str, Any]:
    """Return a copy of ``document`` serving the outcome's versions."""
    result = dict(document)
    result["versions"] = dict(outcome.versions)
    tags = document.get("dist-tags")
    if isinstance(tags, Mapping):
        result["dist-tags"] = rewrite_dist_tags(tags, outcome.versions)
    return result
