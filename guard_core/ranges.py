"""npm-style semver helpers and the version range rule matcher."""

from __future__ import annotations

import functools
import logging
from typing import Iterable, Sequence

import nodesemver

from .types import RangeStrategy, VersionRangeRule

__all__ = [
    "VersionRangeMatcher",
    "highest_version",
    "is_valid_range",
    "is_valid_version",
    "satisfies",
]

logger = logging.getLogger(__name__)


def is_valid_range(range_: str) -> bool:
    if not isinstance(range_, str) or not range_.strip():
        return False
    try:
        return nodesemver.valid_range(range_, loose=False) is not None
    except (ValueError, TypeError, AttributeError):
        return False


def is_valid_version(version: str) -> bool:
    if not isinstance(version, str) or not version:
        return False
    try:
        return nodesemver.valid(version, loose=False) is not None
    except (ValueError, TypeError, AttributeError):
        return False


def satisfies(version: str, range_: str) -> bool:
    """Standard npm semver satisfaction.

    Pre-release versions only satisfy ranges that name a pre-release on the
    same major.minor.patch. Raises ``ValueError`` for a malformed version.
    """
    if not is_valid_version(version):
        raise ValueError(f"invalid semver version: {version!r}")
    return bool(nodesemver.satisfies(version, range_, loose=False))


def _compare(a: str, b: str) -> int:
    return nodesemver.compare(a, b, loose=False)


def highest_version(versions: Iterable[str]) -> str | None:
    """Return the highest semver-valid id, ignoring ids that do not parse."""
    valid = [v for v in versions if is_valid_version(v)]
    if not valid:
        return None
    return max(valid, key=functools.cmp_to_key(_compare))


class VersionRangeMatcher:
    """Resolve the single range rule applying to ``package@version``.

    Rules are consulted in configuration order and the first satisfied rule
    wins; there is no specificity ranking.
    """

    def __init__(self, rules: Sequence[VersionRangeRule]) -> None:
        self._rules = tuple(rules)
        by_package: dict[str, list[VersionRangeRule]] = {}
        for rule in self._rules:
            by_package.setdefault(rule.package, []).append(rule)
        self._by_package = {name: tuple(items) for name, items in by_package.items()}

    @property
    def rules(self) -> tuple[VersionRangeRule, ...]:
        return self._rules

    def rules_for(self, package_name: str) -> tuple[VersionRangeRule, ...]:
        return self._by_package.get(package_name, ())

    def match(self, package_name: str, version: str) -> VersionRangeRule | None:
        for rule in self.rules_for(package_name):
            try:
                if satisfies(version, rule.range):
                    return rule
            except ValueError as exc:
                logger.warning(
                    "cannot check %s@%s against range %r: %s",
                    package_name,
                    version,
                    rule.range,
                    exc,
                )
                return None
        return None

    def match_block(self, package_name: str, version: str) -> VersionRangeRule | None:
        rule = self.match(package_name, version)
        if rule is not None and rule.strategy is RangeStrategy.BLOCK:
            return rule
        return None
