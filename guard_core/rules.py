"""Rule store: validated, normalized policy rules built once at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from .patterns import CompiledPattern, compile_patterns
from .ranges import VersionRangeMatcher, is_valid_range
from .types import RangeStrategy, SecurityConfig, VersionRangeRule

__all__ = ["RuleStore", "load_version_range_rules", "normalize_scope"]

logger = logging.getLogger(__name__)


def _text(entry: Mapping[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = entry.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def _parse_rule(index: int, entry: Any) -> VersionRangeRule | None:
    if not isinstance(entry, Mapping):
        logger.warning("invalid version range rule at index %d, skipping", index)
        return None
    package = _text(entry, "package")
    range_ = _text(entry, "range")
    strategy_raw = _text(entry, "strategy")
    if not package or not range_ or not strategy_raw:
        logger.warning("invalid version range rule at index %d, skipping", index)
        return None
    try:
        strategy = RangeStrategy(strategy_raw.lower())
    except ValueError:
        logger.warning("unknown strategy %r for %s at index %d, skipping", strategy_raw, package, index)
        return None
    fallback = _text(entry, "fallbackVersion", "fallback_version")
    if strategy is RangeStrategy.FALLBACK and not fallback:
        logger.warning("fallback strategy requires fallbackVersion for %s, skipping", package)
        return None
    if not is_valid_range(range_):
        logger.warning("invalid semver range %r for %s, skipping", range_, package)
        return None
    return VersionRangeRule(
        package=package,
        range=range_,
        strategy=strategy,
        fallback_version=fallback if strategy is RangeStrategy.FALLBACK else None,
        reason=_text(entry, "reason"),
    )


def load_version_range_rules(raw: Iterable[Any]) -> tuple[VersionRangeRule, ...]:
    """Validate raw rule entries, keeping configuration order.

    Invalid entries are dropped with a warning; this never raises.
    """
    rules: list[VersionRangeRule] = []
    for index, entry in enumerate(raw or ()):
        rule = _parse_rule(index, entry)
        if rule is not None:
            rules.append(rule)
    return tuple(rules)


def normalize_scope(scope: str) -> str:
    value = scope.strip()
    if value and not value.startswith("@"):
        value = f"@{value}"
    return value.rstrip("/")


@dataclass(frozen=True)
class RuleStore:
    """Read-only rule set shared by all evaluations."""

    blocked_versions: frozenset[str]
    blocked_patterns: tuple[CompiledPattern, ...]
    allowed_scopes: frozenset[str]
    blocked_scopes: frozenset[str]
    range_rules: tuple[VersionRangeRule, ...]
    matcher: VersionRangeMatcher
    min_package_size: int = 0
    max_package_size: int = 0

    @classmethod
    def from_config(cls, config: SecurityConfig) -> "RuleStore":
        rules = load_version_range_rules(config.version_range_rules)
        store = cls(
            blocked_versions=frozenset(config.blocked_versions),
            blocked_patterns=compile_patterns(config.blocked_patterns),
            allowed_scopes=frozenset(normalize_scope(s) for s in config.allowed_scopes if s.strip()),
            blocked_scopes=frozenset(normalize_scope(s) for s in config.blocked_scopes if s.strip()),
            range_rules=rules,
            matcher=VersionRangeMatcher(rules),
            min_package_size=config.min_package_size,
            max_package_size=config.max_package_size,
        )
        store.log_rules()
        return store

    def is_version_blocked(self, package_name: str, version: str) -> bool:
        return f"{package_name}@{version}" in self.blocked_versions

    def blocked_ranges_for(self, package_name: str) -> list[str]:
        return [
            rule.range
            for rule in self.matcher.rules_for(package_name)
            if rule.strategy is RangeStrategy.BLOCK
        ]

    def fallback_descriptions_for(self, package_name: str) -> list[str]:
        return [
            rule.describe()
            for rule in self.matcher.rules_for(package_name)
            if rule.strategy is RangeStrategy.FALLBACK
        ]

    def log_rules(self) -> None:
        if not self.range_rules:
            return
        logger.info("version range rules:")
        for rule in self.range_rules:
            suffix = f" -> {rule.fallback_version}" if rule.strategy is RangeStrategy.FALLBACK else ""
            logger.info("  - %s %s [%s%s]", rule.package, rule.range, rule.strategy.value, suffix)
