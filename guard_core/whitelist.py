"""Whitelist membership with runtime add/remove support."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Protocol

from .patterns import CompiledPattern
from .ranges import satisfies
from .types import AutoApproveConfig, BlockedBy, PolicyDecision, WhitelistConfig

__all__ = [
    "AutoApproveResult",
    "AutoApproveService",
    "WhitelistChecker",
    "is_scope_wildcard",
    "scope_wildcard_matches",
]

logger = logging.getLogger(__name__)

NOT_WHITELISTED = "Package is not in whitelist"


def is_scope_wildcard(pattern: str) -> bool:
    return pattern.startswith("@") and pattern.endswith("/*")


def scope_wildcard_matches(pattern: str, package_name: str) -> bool:
    """``@scope/*`` style entries match every package of that scope."""
    if is_scope_wildcard(pattern):
        return package_name.startswith(pattern[:-1])
    return False


@dataclass(frozen=True)
class _WhitelistState:
    packages: frozenset[str] = frozenset()
    patterns: tuple[CompiledPattern, ...] = ()
    versions: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class AutoApproveResult:
    approved: bool
    reason: str | None = None


class AutoApproveService(Protocol):
    """External collaborator deciding whether a package earns whitelisting."""

    def evaluate(self, package_name: str, criteria: AutoApproveConfig) -> AutoApproveResult:
        ...


class WhitelistChecker:
    """Copy-on-write whitelist.

    Readers take a reference to the current immutable state; writers build a
    new state under a single lock and swap it in.
    """

    def __init__(
        self,
        config: WhitelistConfig | None = None,
        auto_approve_service: AutoApproveService | None = None,
    ) -> None:
        config = config or WhitelistConfig()
        self._auto_approve = config.auto_approve
        self._service = auto_approve_service
        self._lock = threading.Lock()
        self._state = _WhitelistState(
            packages=frozenset(config.packages),
            patterns=tuple(CompiledPattern(p) for p in dict.fromkeys(config.patterns)),
            versions=MappingProxyType(dict(config.versions)),
        )

    def check(self, package_name: str, version: str | None = None) -> PolicyDecision:
        state = self._state
        if package_name in state.packages:
            constraint = state.versions.get(package_name)
            if version and constraint:
                try:
                    ok = satisfies(version, constraint)
                except ValueError:
                    ok = False
                if not ok:
                    return PolicyDecision.block(
                        f"Version {version} does not satisfy whitelist constraint {constraint}",
                        BlockedBy.WHITELIST,
                    )
            return PolicyDecision.allow()
        for pattern in state.patterns:
            # scope wildcards are never read as regexes
            if is_scope_wildcard(pattern.source):
                if scope_wildcard_matches(pattern.source, package_name):
                    return PolicyDecision.allow()
            elif pattern.search(package_name):
                return PolicyDecision.allow()
        return PolicyDecision.block(NOT_WHITELISTED, BlockedBy.WHITELIST)

    def is_whitelisted(self, package_name: str, version: str | None = None) -> bool:
        return not self.check(package_name, version).blocked

    def add_package(self, package_name: str, version_range: str | None = None) -> None:
        with self._lock:
            state = self._state
            versions = dict(state.versions)
            if version_range:
                versions[package_name] = version_range
            self._state = _WhitelistState(
                packages=state.packages | {package_name},
                patterns=state.patterns,
                versions=MappingProxyType(versions),
            )
        logger.info("whitelisted %s%s", package_name, f" ({version_range})" if version_range else "")

    def remove_package(self, package_name: str) -> None:
        with self._lock:
            state = self._state
            versions = dict(state.versions)
            versions.pop(package_name, None)
            self._state = _WhitelistState(
                packages=state.packages - {package_name},
                patterns=state.patterns,
                versions=MappingProxyType(versions),
            )
        logger.info("removed %s from whitelist", package_name)

    def add_pattern(self, pattern: str) -> None:
        with self._lock:
            state = self._state
            if any(p.source == pattern for p in state.patterns):
                return
            self._state = _WhitelistState(
                packages=state.packages,
                patterns=state.patterns + (CompiledPattern(pattern),),
                versions=state.versions,
            )

    def meets_auto_approve_criteria(self, package_name: str) -> AutoApproveResult:
        if self._auto_approve is None:
            return AutoApproveResult(False, "Auto-approve not configured")
        if self._service is None:
            return AutoApproveResult(False, "Auto-approve service not available")
        result = self._service.evaluate(package_name, self._auto_approve)
        if result.approved:
            self.add_package(package_name)
        return result

    def summary(self) -> dict[str, object]:
        state = self._state
        return {
            "totalPackages": len(state.packages),
            "totalPatterns": len(state.patterns),
            "hasAutoApprove": self._auto_approve is not None,
        }
