"""Load the security policy from YAML into frozen config objects."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from .errors import ConfigError
from .types import (
    DEFAULT_MAX_PACKAGE_SIZE,
    AuthorFilterConfig,
    AutoApproveConfig,
    CveCheckConfig,
    ErrorHandlingPolicy,
    FailMode,
    LicenseConfig,
    LoggerConfig,
    MetricsConfig,
    PackageAgeConfig,
    SecurityConfig,
    WhitelistConfig,
)

__all__ = ["apply_logger_config", "config_from_mapping", "load_config"]

logger = logging.getLogger(__name__)

_VALID_MODES = ("blacklist", "whitelist")


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return data


def _pick(raw: Mapping[str, Any], camel: str, default: Any = None) -> Any:
    """Read ``camel`` or its snake_case spelling from ``raw``."""
    if camel in raw:
        return raw[camel]
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in camel)
    return raw.get(snake, default)


def _section(raw: Mapping[str, Any], camel: str) -> Mapping[str, Any] | None:
    value = _pick(raw, camel)
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{camel}' must be a mapping")
    return value


def _strings(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"expected a list of strings, got {type(value).__name__}")
    return tuple(str(item).strip() for item in value if str(item).strip())


def _int(value: Any, default: int | None) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"expected an integer, got {value!r}") from exc


def _bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "y", "on"):
        return True
    if text in ("0", "false", "no", "n", "off"):
        return False
    return default


def _fail_mode(value: Any) -> FailMode:
    if value is None:
        return FailMode.OPEN
    text = str(value).strip().lower().replace("_", "-")
    try:
        return FailMode(text)
    except ValueError:
        logger.warning("unknown error handling mode %r, using fail-open", value)
        return FailMode.OPEN


def _whitelist(raw: Mapping[str, Any] | None) -> WhitelistConfig:
    if raw is None:
        return WhitelistConfig()
    versions_raw = raw.get("versions") or {}
    if not isinstance(versions_raw, Mapping):
        raise ConfigError("'whitelist.versions' must be a mapping of package -> range")
    auto = _section(raw, "autoApprove")
    auto_approve = None
    if auto is not None:
        auto_approve = AutoApproveConfig(
            min_downloads=_int(_pick(auto, "minDownloads"), None),
            min_stars=_int(_pick(auto, "minStars"), None),
            require_verified_publisher=_bool(_pick(auto, "requireVerifiedPublisher"), False),
        )
    return WhitelistConfig(
        packages=_strings(raw.get("packages")),
        patterns=_strings(raw.get("patterns")),
        versions={str(k): str(v) for k, v in versions_raw.items()},
        auto_approve=auto_approve,
    )


def _license(raw: Mapping[str, Any] | None) -> LicenseConfig | None:
    if raw is None:
        return None
    return LicenseConfig(
        allowed=_strings(raw.get("allowed")),
        blocked=_strings(raw.get("blocked")),
        require_license=_bool(_pick(raw, "requireLicense"), True),
    )


def _package_age(raw: Mapping[str, Any] | None) -> PackageAgeConfig:
    if raw is None:
        return PackageAgeConfig()
    return PackageAgeConfig(
        enabled=_bool(raw.get("enabled"), False),
        min_package_age_days=_int(_pick(raw, "minPackageAgeDays"), 0) or 0,
        min_version_age_days=_int(_pick(raw, "minVersionAgeDays"), None),
        warn_only=_bool(_pick(raw, "warnOnly"), False),
    )


def _author_filter(raw: Mapping[str, Any] | None) -> AuthorFilterConfig:
    if raw is None:
        return AuthorFilterConfig()
    return AuthorFilterConfig(
        enabled=_bool(raw.get("enabled"), False),
        blocked_authors=_strings(_pick(raw, "blockedAuthors")),
        blocked_author_patterns=_strings(_pick(raw, "blockedAuthorPatterns")),
        blocked_emails=_strings(_pick(raw, "blockedEmails")),
        blocked_email_patterns=_strings(_pick(raw, "blockedEmailPatterns")),
        blocked_email_domains=_strings(_pick(raw, "blockedEmailDomains")),
        blocked_regions=_strings(_pick(raw, "blockedRegions")),
        require_verified_email=_bool(_pick(raw, "requireVerifiedEmail"), False),
    )


def _cve_check(raw: Mapping[str, Any] | None) -> CveCheckConfig:
    if raw is None:
        return CveCheckConfig()
    defaults = CveCheckConfig()
    concurrency = _int(raw.get("concurrency"), defaults.concurrency) or defaults.concurrency
    return CveCheckConfig(
        enabled=_bool(raw.get("enabled"), False),
        severity=str(raw.get("severity") or defaults.severity).strip().lower(),
        auto_block=_bool(_pick(raw, "autoBlock"), False),
        concurrency=max(1, concurrency),
        cache_size=_int(_pick(raw, "cacheSize"), defaults.cache_size) or defaults.cache_size,
        api_url=str(_pick(raw, "apiUrl") or defaults.api_url),
        timeout_seconds=float(_pick(raw, "timeoutSeconds") or defaults.timeout_seconds),
    )


def _error_handling(raw: Mapping[str, Any] | None) -> ErrorHandlingPolicy:
    if raw is None:
        return ErrorHandlingPolicy()
    return ErrorHandlingPolicy(
        on_filter_error=_fail_mode(_pick(raw, "onFilterError")),
        on_cve_check_error=_fail_mode(_pick(raw, "onCveCheckError")),
        on_license_check_error=_fail_mode(_pick(raw, "onLicenseCheckError")),
    )


def _metrics(raw: Mapping[str, Any] | None) -> MetricsConfig:
    if raw is None:
        return MetricsConfig()
    defaults = MetricsConfig()
    return MetricsConfig(
        enabled=_bool(raw.get("enabled"), False),
        output=str(raw.get("output") or defaults.output).strip().lower(),
        file_path=str(_pick(raw, "filePath") or defaults.file_path),
    )


def _logger(raw: Mapping[str, Any] | None) -> LoggerConfig:
    if raw is None:
        return LoggerConfig()
    return LoggerConfig(
        level=str(raw.get("level") or "info").strip().lower(),
        enabled=_bool(raw.get("enabled"), True),
    )


def _range_rules(value: Any) -> tuple[Mapping[str, Any], ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise ConfigError("'versionRangeRules' must be a list")
    # non-mapping entries are left for the rule store to reject with a warning
    return tuple(item if isinstance(item, Mapping) else {"_invalid": item} for item in value)


def config_from_mapping(raw: Mapping[str, Any]) -> SecurityConfig:
    """Build a :class:`SecurityConfig` from already-parsed configuration data."""
    if not isinstance(raw, Mapping):
        raise ConfigError("security configuration must be a mapping")

    mode = str(raw.get("mode") or "blacklist").strip().lower()
    if mode not in _VALID_MODES:
        logger.warning("unknown mode %r, using blacklist", mode)
        mode = "blacklist"

    return SecurityConfig(
        mode=mode,
        blocked_versions=_strings(_pick(raw, "blockedVersions")),
        blocked_patterns=_strings(_pick(raw, "blockedPatterns")),
        min_package_size=_int(_pick(raw, "minPackageSize"), 0) or 0,
        max_package_size=_int(_pick(raw, "maxPackageSize"), DEFAULT_MAX_PACKAGE_SIZE) or DEFAULT_MAX_PACKAGE_SIZE,
        allowed_scopes=_strings(_pick(raw, "allowedScopes")),
        blocked_scopes=_strings(_pick(raw, "blockedScopes")),
        enforce_checksum=_bool(_pick(raw, "enforceChecksum"), True),
        version_range_rules=_range_rules(_pick(raw, "versionRangeRules")),
        whitelist=_whitelist(_section(raw, "whitelist")),
        license=_license(_section(raw, "license")),
        package_age=_package_age(_section(raw, "packageAge")),
        author_filter=_author_filter(_section(raw, "authorFilter")),
        cve_check=_cve_check(_section(raw, "cveCheck")),
        error_handling=_error_handling(_section(raw, "errorHandling")),
        metrics=_metrics(_section(raw, "metrics")),
        logger=_logger(_section(raw, "logger")),
    )


def load_config(path: Path | str) -> SecurityConfig:
    """Read a YAML policy file; a missing file yields the default policy."""
    config_path = Path(path)
    try:
        raw = _read_yaml(config_path)
    except yaml.YAMLError as exc:
        raise ConfigError(f"{config_path}: invalid YAML: {exc}") from exc
    # plugin-style files nest the policy under a "security" key
    nested = raw.get("security")
    if isinstance(nested, Mapping):
        raw = nested
    return config_from_mapping(raw)


def apply_logger_config(config: LoggerConfig) -> None:
    root = logging.getLogger("guard_core")
    if not config.enabled:
        root.disabled = True
        return
    root.disabled = False
    level = logging.WARNING if config.level == "warn" else getattr(logging, config.level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    root.setLevel(level)
