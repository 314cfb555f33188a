"""Security filter facade used by the registry server and the CLI."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping

from .checks.age import PackageAgeChecker
from .checks.author import REGION_DOMAINS, AuthorChecker
from .checks.cve import CveChecker
from .checks.license import LicenseChecker
from .config import apply_logger_config
from .deep import DeepEvaluator
from .events import EventBus
from .fast_path import FastPathEvaluator
from .ingress import IngressDecision, decide_request
from .metrics import MetricsCollector
from .publish import PublishValidator
from .rules import RuleStore
from .types import PolicyDecision, SecurityConfig
from .vulndb import OsvLookup, VulnerabilityLookup
from .whitelist import AutoApproveResult, AutoApproveService, WhitelistChecker

__all__ = ["SecurityFilter"]

logger = logging.getLogger(__name__)


class SecurityFilter:
    """Wire configuration, rule store, evaluators and the decision recorder."""

    def __init__(
        self,
        config: SecurityConfig | None = None,
        *,
        lookup: VulnerabilityLookup | None = None,
        bus: EventBus | None = None,
        auto_approve_service: AutoApproveService | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or SecurityConfig()
        apply_logger_config(self.config.logger)

        self.bus = bus or EventBus()
        self.metrics = MetricsCollector(self.config.metrics)
        if self.metrics.enabled:
            self.metrics.attach(self.bus)

        self.store = RuleStore.from_config(self.config)
        self.whitelist = WhitelistChecker(self.config.whitelist, auto_approve_service)
        self.fast_path = FastPathEvaluator(
            self.store,
            self.whitelist,
            whitelist_mode=self.config.whitelist_mode,
        )

        cve_config = self.config.cve_check
        if lookup is None and cve_config.enabled:
            lookup = OsvLookup(
                cve_config.api_url,
                timeout_seconds=cve_config.timeout_seconds,
                cache_size=cve_config.cache_size,
            )

        self.deep = DeepEvaluator(
            self.store,
            self.fast_path,
            bus=self.bus,
            error_policy=self.config.error_handling,
            license_checker=LicenseChecker(self.config.license) if self.config.license is not None else None,
            age_checker=PackageAgeChecker(self.config.package_age, clock),
            author_checker=AuthorChecker(self.config.author_filter, REGION_DOMAINS),
            cve_checker=CveChecker(cve_config, lookup),
        )
        self.publish = PublishValidator(self.store, self.bus)
        logger.info("security filter initialized with features: %s", ", ".join(self.features()))

    def features(self) -> list[str]:
        enabled = [f"mode={self.config.mode}"]
        if self.store.range_rules:
            enabled.append(f"range-rules={len(self.store.range_rules)}")
        if self.config.license is not None:
            enabled.append("license")
        if self.config.package_age.enabled:
            enabled.append("package-age")
        if self.config.author_filter.enabled:
            enabled.append("author-filter")
        if self.deep.cve_checker is not None and self.deep.cve_checker.enabled:
            enabled.append("cve")
        if self.metrics.enabled:
            enabled.append("metrics")
        return enabled

    def check(self, package_name: str, version: str | None = None) -> PolicyDecision:
        """Fast-path decision for ``package_name`` (and ``version`` when known)."""
        return self.fast_path.evaluate(package_name, version)

    def handle_request(self, raw_path: str) -> IngressDecision:
        return decide_request(raw_path, self.fast_path, self.bus)

    async def filter_metadata(self, document: Mapping[str, Any]) -> Mapping[str, Any]:
        return await self.deep.filter_metadata(document)

    def validate_publish(self, package_name: str, version: str, tarball_size: int | None = None) -> bool:
        return self.publish.validate(package_name, version, tarball_size)

    def auto_approve(self, package_name: str) -> AutoApproveResult:
        return self.whitelist.meets_auto_approve_criteria(package_name)

    def summary(self) -> dict[str, Any]:
        summary: dict[str, Any] = {
            "mode": self.config.mode,
            "features": self.features(),
            "whitelist": self.whitelist.summary(),
            "versionRangeRules": len(self.store.range_rules),
            "enforceChecksum": self.config.enforce_checksum,
        }
        if self.deep.age_checker is not None:
            summary["packageAge"] = self.deep.age_checker.summary()
        if self.deep.author_checker is not None:
            summary["authorFilter"] = self.deep.author_checker.summary()
        if self.metrics.enabled:
            summary["metrics"] = self.metrics.summary()
        return summary

    def close(self) -> None:
        self.metrics.close()
