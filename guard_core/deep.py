"""Deep evaluation of full package metadata.

The evaluator runs once per package document:

1. package-level fast path (whitelist, pattern, scope),
2. per-version rules (whitelist constraint, exact blocks, range block/fallback),
3. CVE, license, age and author checks, in that order,
4. the rewrite of ``versions`` and ``dist-tags`` plus a ``_security`` annotation.

Any check may block the whole package, in which case a well-formed blocked
document is served instead. Internal errors go through ``onFilterError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from .checks.age import PackageAgeChecker
from .checks.author import AuthorChecker
from .checks.cve import CveChecker
from .checks.license import LicenseChecker, extract_license
from .events import EventBus
from .fast_path import FastPathEvaluator
from .ranges import highest_version
from .rewriter import DEFAULT_FALLBACK_REASON, apply_outcome, blocked_document, rewrite_versions
from .rules import RuleStore
from .types import BlockedBy, ErrorHandlingPolicy, FailMode, PolicyDecision, RangeStrategy

__all__ = ["DeepEvaluator", "FILTERED_BY"]

logger = logging.getLogger(__name__)

FILTERED_BY = "registry-guard"

_IDENTITY_FIELDS = ("author", "maintainers", "contributors")


class _Blocked(Exception):
    """Internal short-circuit carrying a package-level block."""

    def __init__(self, decision: PolicyDecision) -> None:
        super().__init__(decision.reason)
        self.decision = decision


@dataclass
class _Plan:
    removed: dict[str, str] = field(default_factory=dict)
    substitutions: dict[str, str] = field(default_factory=dict)
    reasons: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    vulnerabilities: dict[str, list[str]] = field(default_factory=dict)

    def remove(self, version: str, reason: str) -> None:
        self.removed.setdefault(version, reason)
        self.substitutions.pop(version, None)

    def served_ids(self, versions: Mapping[str, Any]) -> list[str]:
        return [v for v in versions if v not in self.removed]


class DeepEvaluator:
    def __init__(
        self,
        store: RuleStore,
        fast_path: FastPathEvaluator,
        *,
        bus: EventBus,
        error_policy: ErrorHandlingPolicy | None = None,
        license_checker: LicenseChecker | None = None,
        age_checker: PackageAgeChecker | None = None,
        author_checker: AuthorChecker | None = None,
        cve_checker: CveChecker | None = None,
    ) -> None:
        self.store = store
        self.fast_path = fast_path
        self.bus = bus
        self.error_policy = error_policy or ErrorHandlingPolicy()
        self.license_checker = license_checker
        self.age_checker = age_checker
        self.author_checker = author_checker
        self.cve_checker = cve_checker

    async def filter_metadata(self, document: Mapping[str, Any]) -> dict[str, Any] | Mapping[str, Any]:
        """Return the document to serve; never raises for evaluation errors."""
        name = str(document.get("name") or "")
        try:
            return await self._evaluate(document, name)
        except _Blocked as blocked:
            decision = blocked.decision
            reason = decision.reason or "Blocked by security policy"
            logger.warning("package %s blocked: %s", name, reason)
            self.bus.record("block", name, reason, metadata={"blockedBy": _rule_name(decision)})
            return blocked_document(name, reason, [_rule_name(decision)])
        except Exception as exc:
            logger.error("error filtering package %s: %s", name, exc)
            if self.error_policy.on_filter_error is FailMode.CLOSED:
                reason = f"Security filter error: {exc}"
                self.bus.record("block", name, reason, metadata={"blockedBy": BlockedBy.ERROR.value})
                return blocked_document(name, reason, [BlockedBy.ERROR.value])
            return document

    async def _evaluate(self, document: Mapping[str, Any], name: str) -> dict[str, Any]:
        decision = self.fast_path.evaluate(name)
        if decision.blocked:
            raise _Blocked(decision)

        versions = document.get("versions") or {}
        if not isinstance(versions, Mapping):
            raise TypeError(f"'versions' of {name} is {type(versions).__name__}, expected a mapping")

        plan = self._plan_version_rules(name, versions)
        await self._check_cve(name, versions, plan)
        subject = self._primary_record(document, versions)
        self._check_license(name, subject, plan)
        self._check_age(name, document, versions, plan)
        self._check_author(name, subject, document)

        outcome = rewrite_versions(versions, plan.removed, plan.substitutions, plan.reasons)
        for version_id in outcome.blocked_version_ids:
            reason = plan.removed.get(version_id, "Fallback version not found")
            self.bus.record("block", name, reason, version=version_id)
        for applied in outcome.fallbacks_applied:
            reason = plan.reasons.get(applied.original, DEFAULT_FALLBACK_REASON)
            logger.info("fallback applied: %s@%s -> %s", name, applied.original, applied.fallback)
            self.bus.record("fallback", name, reason, version=applied.original, metadata={"toVersion": applied.fallback})

        result = apply_outcome(document, outcome)
        annotation: dict[str, Any] = {
            "scanned": True,
            "scanDate": datetime.now(timezone.utc).isoformat(),
            "filteredBy": FILTERED_BY,
            "blockedVersions": self.store.blocked_ranges_for(name),
            "fallbackVersions": self.store.fallback_descriptions_for(name),
            "removedVersions": list(outcome.blocked_version_ids),
            "fallbacksApplied": [
                {"original": a.original, "fallback": a.fallback} for a in outcome.fallbacks_applied
            ],
            "warnings": plan.warnings,
        }
        if plan.vulnerabilities:
            annotation["vulnerabilities"] = plan.vulnerabilities
        result["_security"] = annotation
        return result

    # ------------------------- version rules -------------------------

    def _plan_version_rules(self, name: str, versions: Mapping[str, Any]) -> _Plan:
        plan = _Plan()
        whitelist = self.fast_path.whitelist if self.fast_path.whitelist_mode else None
        for version_id in versions:
            if whitelist is not None:
                decision = whitelist.check(name, version_id)
                if decision.blocked:
                    plan.remove(version_id, decision.reason or "Not whitelisted")
                    continue
            decision = self.fast_path.check_exact_version(name, version_id)
            if decision.blocked:
                logger.warning("filtering out blocked version %s@%s", name, version_id)
                plan.remove(version_id, decision.reason or "Blocked version")
                continue
            rule = self.store.matcher.match(name, version_id)
            if rule is None:
                continue
            if rule.strategy is RangeStrategy.BLOCK:
                logger.warning("blocking %s@%s (range: %s)", name, version_id, rule.range)
                plan.remove(version_id, rule.reason or f"Version falls within blocked range: {rule.range}")
                continue
            fallback = rule.fallback_version or ""
            if fallback == version_id:
                continue
            if fallback not in versions:
                logger.warning("fallback version %s not found for %s, blocking %s instead", fallback, name, version_id)
                plan.remove(version_id, f"Fallback version {fallback} not found")
                continue
            plan.substitutions[version_id] = fallback
            plan.reasons[version_id] = rule.reason or DEFAULT_FALLBACK_REASON
        return plan

    # ------------------------- checks -------------------------

    async def _check_cve(self, name: str, versions: Mapping[str, Any], plan: _Plan) -> None:
        checker = self.cve_checker
        if checker is None or not checker.enabled:
            return
        targets = [v for v in plan.served_ids(versions) if v not in plan.substitutions]
        result = await checker.scan(name, targets)
        if result.has_errors:
            message = f"CVE check failed for {len(result.errors)} version(s)"
            if self.error_policy.on_cve_check_error is FailMode.CLOSED:
                raise _Blocked(PolicyDecision.block(message, BlockedBy.CVE))
            plan.warnings.append(message)
        for version_id, vulns in result.vulnerable.items():
            plan.vulnerabilities[version_id] = [v.id for v in vulns]
            for vuln in vulns:
                logger.warning("CVE detected: %s [%s] in %s@%s", vuln.id, vuln.severity, name, version_id)
                self.bus.record(
                    "cve_detected",
                    name,
                    f"CVE {vuln.id} ({vuln.severity})",
                    version=version_id,
                    metadata={"cveId": vuln.id, "severity": vuln.severity},
                )
        decision = checker.decide(result)
        if decision.blocked:
            raise _Blocked(decision)
        if decision.reason:
            plan.warnings.append(decision.reason)

    def _check_license(self, name: str, subject: Mapping[str, Any], plan: _Plan) -> None:
        if self.license_checker is None:
            return
        try:
            decision = self.license_checker.check(subject)
        except Exception as exc:
            message = f"License check failed: {exc}"
            logger.error("%s (%s)", message, name)
            if self.error_policy.on_license_check_error is FailMode.CLOSED:
                raise _Blocked(PolicyDecision.block(message, BlockedBy.LICENSE)) from exc
            plan.warnings.append(message)
            return
        if decision.blocked:
            license_id = extract_license(subject) or "none"
            logger.warning("license violation: %s has %s - %s", name, license_id, decision.reason)
            self.bus.record(
                "license_blocked",
                name,
                decision.reason or "License not allowed",
                version=subject.get("version"),
                metadata={"license": license_id},
            )
            raise _Blocked(decision)

    def _check_age(self, name: str, document: Mapping[str, Any], versions: Mapping[str, Any], plan: _Plan) -> None:
        checker = self.age_checker
        if checker is None or not checker.config.enabled:
            return
        decision = checker.check_package(document)
        if decision.blocked:
            self.bus.record("package_too_new", name, decision.reason or "Package too new")
            raise _Blocked(decision)
        if decision.reason:
            plan.warnings.append(decision.reason)
        if not checker.checks_versions:
            return
        for version_id in plan.served_ids(versions):
            decision = checker.check_version(document, plan.substitutions.get(version_id, version_id))
            if decision.blocked:
                self.bus.record("package_too_new", name, decision.reason or "Version too new", version=version_id)
                plan.remove(version_id, decision.reason or "Version too new")
            elif decision.reason:
                plan.warnings.append(decision.reason)

    def _check_author(self, name: str, subject: Mapping[str, Any], document: Mapping[str, Any]) -> None:
        checker = self.author_checker
        if checker is None or not checker.enabled:
            return
        package_level = {key: document[key] for key in _IDENTITY_FIELDS if key in document}
        decision = checker.check(subject, package_level)
        if decision.blocked:
            self.bus.record("author_blocked", name, decision.reason or "Author blocked", version=subject.get("version"))
            raise _Blocked(decision)

    # ------------------------- helpers -------------------------

    @staticmethod
    def _primary_record(document: Mapping[str, Any], versions: Mapping[str, Any]) -> Mapping[str, Any]:
        """The version record the package-level checks judge: ``latest``, else the highest."""
        tags = document.get("dist-tags")
        target = tags.get("latest") if isinstance(tags, Mapping) else None
        if target not in versions:
            target = highest_version(versions)
        record = versions.get(target) if target is not None else None
        subject: dict[str, Any] = dict(record) if isinstance(record, Mapping) else {}
        if not subject.get("license") and document.get("license"):
            subject["license"] = document["license"]
        return subject


def _rule_name(decision: PolicyDecision) -> str:
    return decision.blocked_by.value if decision.blocked_by is not None else BlockedBy.ERROR.value
