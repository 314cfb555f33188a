"""Policy datatypes and configuration shared by the evaluators."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping

__all__ = [
    "AuthorFilterConfig",
    "AutoApproveConfig",
    "BlockedBy",
    "CveCheckConfig",
    "DEFAULT_MAX_PACKAGE_SIZE",
    "FALLBACK_FLAG",
    "FALLBACK_REASON",
    "FALLBACK_SOURCE",
    "ErrorHandlingPolicy",
    "FailMode",
    "FallbackApplied",
    "FilterOutcome",
    "LicenseConfig",
    "LoggerConfig",
    "MetricsConfig",
    "PackageAgeConfig",
    "PolicyDecision",
    "RangeStrategy",
    "SecurityConfig",
    "VersionRangeRule",
    "VersionRecord",
    "WhitelistConfig",
]

DEFAULT_MAX_PACKAGE_SIZE = 100 * 1024 * 1024

# A single entry of a package document's ``versions`` map, as served upstream.
VersionRecord = Dict[str, Any]

FALLBACK_FLAG = "_isFallback"
FALLBACK_SOURCE = "_fallbackSourceVersion"
FALLBACK_REASON = "_fallbackReason"


class RangeStrategy(str, Enum):
    BLOCK = "block"
    FALLBACK = "fallback"


class FailMode(str, Enum):
    OPEN = "fail-open"
    CLOSED = "fail-closed"


class BlockedBy(str, Enum):
    PATTERN = "pattern"
    SCOPE = "scope"
    VERSION = "version"
    RANGE = "range"
    WHITELIST = "whitelist"
    CVE = "cve"
    LICENSE = "license"
    AGE = "age"
    AUTHOR = "author"
    ERROR = "error"


@dataclass(frozen=True)
class VersionRangeRule:
    package: str
    range: str
    strategy: RangeStrategy
    fallback_version: str | None = None
    reason: str | None = None

    def describe(self) -> str:
        if self.strategy is RangeStrategy.FALLBACK:
            return f"{self.range} -> {self.fallback_version}"
        return self.range


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a single check.

    A non-blocking decision may still carry a ``reason``; it is advisory only.
    """

    blocked: bool
    reason: str | None = None
    blocked_by: BlockedBy | None = None

    @classmethod
    def allow(cls, reason: str | None = None) -> "PolicyDecision":
        return cls(blocked=False, reason=reason)

    @classmethod
    def block(cls, reason: str, blocked_by: BlockedBy) -> "PolicyDecision":
        return cls(blocked=True, reason=reason, blocked_by=blocked_by)


@dataclass(frozen=True)
class FallbackApplied:
    original: str
    fallback: str


@dataclass
class FilterOutcome:
    versions: dict[str, VersionRecord] = field(default_factory=dict)
    blocked_version_ids: list[str] = field(default_factory=list)
    fallbacks_applied: list[FallbackApplied] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.blocked_version_ids or self.fallbacks_applied)


@dataclass(frozen=True)
class ErrorHandlingPolicy:
    on_filter_error: FailMode = FailMode.OPEN
    on_cve_check_error: FailMode = FailMode.OPEN
    on_license_check_error: FailMode = FailMode.OPEN


@dataclass(frozen=True)
class AutoApproveConfig:
    min_downloads: int | None = None
    min_stars: int | None = None
    require_verified_publisher: bool = False


@dataclass(frozen=True)
class WhitelistConfig:
    packages: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    versions: Mapping[str, str] = field(default_factory=dict)
    auto_approve: AutoApproveConfig | None = None


@dataclass(frozen=True)
class LicenseConfig:
    allowed: tuple[str, ...] = ()
    blocked: tuple[str, ...] = ()
    require_license: bool = True


@dataclass(frozen=True)
class PackageAgeConfig:
    enabled: bool = False
    min_package_age_days: int = 0
    min_version_age_days: int | None = None
    warn_only: bool = False


@dataclass(frozen=True)
class AuthorFilterConfig:
    enabled: bool = False
    blocked_authors: tuple[str, ...] = ()
    blocked_author_patterns: tuple[str, ...] = ()
    blocked_emails: tuple[str, ...] = ()
    blocked_email_patterns: tuple[str, ...] = ()
    blocked_email_domains: tuple[str, ...] = ()
    blocked_regions: tuple[str, ...] = ()
    require_verified_email: bool = False


@dataclass(frozen=True)
class CveCheckConfig:
    enabled: bool = False
    severity: str = "low"
    auto_block: bool = False
    concurrency: int = 10
    cache_size: int = 1000
    api_url: str = "https://api.osv.dev/v1/query"
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class MetricsConfig:
    enabled: bool = False
    output: str = "stdout"
    file_path: str = "./security-metrics.json"


@dataclass(frozen=True)
class LoggerConfig:
    level: str = "info"
    enabled: bool = True


@dataclass(frozen=True)
class SecurityConfig:
    mode: str = "blacklist"
    blocked_versions: tuple[str, ...] = ()
    blocked_patterns: tuple[str, ...] = ()
    min_package_size: int = 0
    max_package_size: int = DEFAULT_MAX_PACKAGE_SIZE
    allowed_scopes: tuple[str, ...] = ()
    blocked_scopes: tuple[str, ...] = ()
    # informational only; registries verify tarball integrity themselves
    enforce_checksum: bool = True
    # raw entries; the rule store validates them
    version_range_rules: tuple[Mapping[str, Any], ...] = ()
    whitelist: WhitelistConfig = field(default_factory=WhitelistConfig)
    license: LicenseConfig | None = None
    package_age: PackageAgeConfig = field(default_factory=PackageAgeConfig)
    author_filter: AuthorFilterConfig = field(default_factory=AuthorFilterConfig)
    cve_check: CveCheckConfig = field(default_factory=CveCheckConfig)
    error_handling: ErrorHandlingPolicy = field(default_factory=ErrorHandlingPolicy)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logger: LoggerConfig = field(default_factory=LoggerConfig)

    @property
    def whitelist_mode(self) -> bool:
        return self.mode == "whitelist"
