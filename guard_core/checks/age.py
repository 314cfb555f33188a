"""Package and version age checks against freshly published artifacts."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from ..types import BlockedBy, PackageAgeConfig, PolicyDecision

__all__ = ["PackageAgeChecker", "age_in_days", "parse_timestamp"]

_RESERVED_TIME_KEYS = ("created", "modified")
_DAY = timedelta(days=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def age_in_days(then: datetime, now: datetime) -> int:
    """Whole elapsed days, floored."""
    return (now - then) // _DAY


class PackageAgeChecker:
    """Missing timestamps mean "cannot determine" and are allowed."""

    def __init__(
        self,
        config: PackageAgeConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or PackageAgeConfig()
        self._clock = clock or _utcnow

    @property
    def checks_versions(self) -> bool:
        return self.config.enabled and bool(self.config.min_version_age_days)

    def creation_date(self, document: Mapping[str, Any]) -> datetime | None:
        times = document.get("time")
        if not isinstance(times, Mapping):
            return None
        created = parse_timestamp(times.get("created"))
        if created is not None:
            return created
        dates = [
            parse_timestamp(value)
            for key, value in times.items()
            if key not in _RESERVED_TIME_KEYS
        ]
        dates = [d for d in dates if d is not None]
        return min(dates) if dates else None

    def publish_date(self, document: Mapping[str, Any], version: str) -> datetime | None:
        times = document.get("time")
        if not isinstance(times, Mapping):
            return None
        return parse_timestamp(times.get(version))

    def check_package(self, document: Mapping[str, Any]) -> PolicyDecision:
        if not self.config.enabled:
            return PolicyDecision.allow()
        created = self.creation_date(document)
        if created is None:
            return PolicyDecision.allow("Cannot determine package creation date")
        days = age_in_days(created, self._clock())
        minimum = self.config.min_package_age_days
        if days < minimum:
            return self._fail(f"Package is only {days} days old (minimum: {minimum} days)")
        return PolicyDecision.allow()

    def check_version(self, document: Mapping[str, Any], version: str) -> PolicyDecision:
        if not self.checks_versions:
            return PolicyDecision.allow()
        published = self.publish_date(document, version)
        if published is None:
            return PolicyDecision.allow(f"Cannot determine version {version} publish date")
        days = age_in_days(published, self._clock())
        minimum = self.config.min_version_age_days or 0
        if days < minimum:
            return self._fail(f"Version {version} is only {days} days old (minimum: {minimum} days)")
        return PolicyDecision.allow()

    def _fail(self, reason: str) -> PolicyDecision:
        if self.config.warn_only:
            return PolicyDecision.allow(reason)
        return PolicyDecision.block(reason, BlockedBy.AGE)

    def summary(self) -> dict[str, object]:
        return {
            "enabled": self.config.enabled,
            "minPackageAgeDays": self.config.min_package_age_days,
            "minVersionAgeDays": self.config.min_version_age_days,
            "warnOnly": self.config.warn_only,
        }
