"""Cheap synchronous checks usable before package metadata is available."""

from __future__ import annotations

from .patterns import first_match
from .rules import RuleStore
from .types import BlockedBy, PolicyDecision
from .whitelist import WhitelistChecker

__all__ = [
    "FastPathEvaluator",
    "REASON_EXACT_VERSION",
    "REASON_PATTERN",
    "REASON_SCOPE",
    "scope_of",
]

REASON_PATTERN = "Package name matches blocked pattern"
REASON_SCOPE = "Package scope not allowed"
REASON_EXACT_VERSION = "Exact version match in blocklist"


def scope_of(package_name: str) -> str | None:
    if not package_name.startswith("@") or "/" not in package_name:
        return None
    return package_name.split("/", 1)[0]


class FastPathEvaluator:
    """Whitelist, pattern, scope, exact-version and range-block checks.

    The order is fixed and the first blocking check wins. No I/O.
    """

    def __init__(
        self,
        store: RuleStore,
        whitelist: WhitelistChecker | None = None,
        *,
        whitelist_mode: bool = False,
    ) -> None:
        self.store = store
        self.whitelist = whitelist
        self.whitelist_mode = whitelist_mode

    def evaluate(self, package_name: str, version: str | None = None) -> PolicyDecision:
        if self.whitelist_mode and self.whitelist is not None:
            decision = self.whitelist.check(package_name, version)
            if decision.blocked:
                return decision

        decision = self.check_pattern(package_name)
        if decision.blocked:
            return decision

        decision = self.check_scope(package_name)
        if decision.blocked:
            return decision

        if version:
            decision = self.check_exact_version(package_name, version)
            if decision.blocked:
                return decision
            return self.check_range_block(package_name, version)

        return PolicyDecision.allow()

    def check_pattern(self, package_name: str) -> PolicyDecision:
        if first_match(self.store.blocked_patterns, package_name) is not None:
            return PolicyDecision.block(REASON_PATTERN, BlockedBy.PATTERN)
        return PolicyDecision.allow()

    def check_scope(self, package_name: str) -> PolicyDecision:
        scope = scope_of(package_name)
        if scope is None:
            # an allow-list means scoped packages only
            if self.store.allowed_scopes:
                return PolicyDecision.block(REASON_SCOPE, BlockedBy.SCOPE)
            return PolicyDecision.allow()
        if scope in self.store.blocked_scopes:
            return PolicyDecision.block(REASON_SCOPE, BlockedBy.SCOPE)
        if self.store.allowed_scopes and scope not in self.store.allowed_scopes:
            return PolicyDecision.block(REASON_SCOPE, BlockedBy.SCOPE)
        return PolicyDecision.allow()

    def check_exact_version(self, package_name: str, version: str) -> PolicyDecision:
        if self.store.is_version_blocked(package_name, version):
            return PolicyDecision.block(REASON_EXACT_VERSION, BlockedBy.VERSION)
        return PolicyDecision.allow()

    def check_range_block(self, package_name: str, version: str) -> PolicyDecision:
        rule = self.store.matcher.match_block(package_name, version)
        if rule is None:
            return PolicyDecision.allow()
        reason = rule.reason or f"Version falls within blocked range: {rule.range}"
        return PolicyDecision.block(reason, BlockedBy.RANGE)
