"""Batched vulnerability scan of a package's versions."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from ..types import BlockedBy, CveCheckConfig, PolicyDecision
from ..vulndb import Vulnerability, VulnerabilityLookup, VulnerabilityReport

__all__ = ["CveChecker", "CveScanResult", "SEVERITY_RANK", "severity_rank"]

logger = logging.getLogger(__name__)

SEVERITY_RANK = {
    "unknown": 0,
    "low": 1,
    "medium": 2,
    "moderate": 2,
    "high": 3,
    "critical": 4,
}


def severity_rank(severity: str | None) -> int:
    return SEVERITY_RANK.get((severity or "unknown").strip().lower(), 0)


@dataclass
class CveScanResult:
    vulnerable: dict[str, list[Vulnerability]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    scanned: int = 0

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class CveChecker:
    """Look versions up in bounded batches with all-settled semantics.

    Batches run one after the other; lookups inside a batch run concurrently
    and one failing lookup never cancels its siblings.
    """

    def __init__(self, config: CveCheckConfig, lookup: VulnerabilityLookup | None = None) -> None:
        self.config = config
        self.lookup = lookup
        self.batch_size = max(1, config.concurrency)
        self._min_rank = severity_rank(config.severity)

    @property
    def enabled(self) -> bool:
        return self.config.enabled and self.lookup is not None

    def relevant(self, vulnerability: Vulnerability) -> bool:
        rank = severity_rank(vulnerability.severity)
        # advisories without a usable severity only count at the lowest threshold
        if rank == 0:
            return self._min_rank <= SEVERITY_RANK["low"]
        return rank >= self._min_rank

    async def scan(self, package_name: str, versions: Sequence[str]) -> CveScanResult:
        result = CveScanResult()
        if self.lookup is None:
            return result
        for start in range(0, len(versions), self.batch_size):
            batch = list(versions[start:start + self.batch_size])
            outcomes = await asyncio.gather(
                *(self.lookup.query(package_name, version) for version in batch),
                return_exceptions=True,
            )
            for version, outcome in zip(batch, outcomes):
                result.scanned += 1
                if isinstance(outcome, BaseException):
                    message = str(outcome) or type(outcome).__name__
                    logger.warning("CVE lookup failed for %s@%s: %s", package_name, version, message)
                    result.errors[version] = message
                    continue
                if not isinstance(outcome, VulnerabilityReport):
                    result.errors[version] = f"unexpected lookup result {type(outcome).__name__}"
                    continue
                matching = [v for v in outcome.vulnerabilities if self.relevant(v)]
                if matching:
                    result.vulnerable[version] = matching
        return result

    def decide(self, result: CveScanResult) -> PolicyDecision:
        count = len(result.vulnerable)
        if count == 0:
            return PolicyDecision.allow()
        reason = f"{count} vulnerable version(s) found"
        if self.config.auto_block:
            return PolicyDecision.block(reason, BlockedBy.CVE)
        return PolicyDecision.allow(reason)
