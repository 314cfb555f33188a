"""License compliance check over SPDX-style expressions."""

from __future__ import annotations

import re
from typing import Any, Mapping

from ..types import BlockedBy, LicenseConfig, PolicyDecision

__all__ = [
    "COMMON_OPEN_SOURCE_LICENSES",
    "COPYLEFT_LICENSES",
    "LicenseChecker",
    "extract_license",
    "split_spdx_expression",
]

COMMON_OPEN_SOURCE_LICENSES = (
    "MIT",
    "Apache-2.0",
    "BSD-2-Clause",
    "BSD-3-Clause",
    "ISC",
    "0BSD",
    "CC0-1.0",
    "Unlicense",
)

COPYLEFT_LICENSES = (
    "GPL-2.0",
    "GPL-3.0",
    "AGPL-3.0",
    "LGPL-2.1",
    "LGPL-3.0",
    "MPL-2.0",
    "EPL-2.0",
)

_SPDX_JOIN = re.compile(r"\s+(?:OR|AND)\s+", re.IGNORECASE)
_NO_LICENSE = ("", "UNLICENSED")


def extract_license(record: Mapping[str, Any]) -> str | None:
    value = record.get("license")
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, Mapping):
        kind = value.get("type")
        if isinstance(kind, str):
            return kind.strip() or None
    return None


def split_spdx_expression(expression: str) -> list[str]:
    tokens = []
    for token in _SPDX_JOIN.split(expression.strip()):
        token = token.strip().strip("()").strip()
        if token:
            tokens.append(token)
    return tokens


class LicenseChecker:
    def __init__(self, config: LicenseConfig | None = None) -> None:
        self.config = config or LicenseConfig()
        self._allowed = frozenset(self.config.allowed)
        self._blocked = frozenset(self.config.blocked)

    def check(self, record: Mapping[str, Any]) -> PolicyDecision:
        license_id = extract_license(record)
        if license_id is None or license_id in _NO_LICENSE:
            if self.config.require_license:
                return PolicyDecision.block("Package does not specify a license", BlockedBy.LICENSE)
            return PolicyDecision.allow()

        tokens = split_spdx_expression(license_id)
        if license_id in self._blocked or any(token in self._blocked for token in tokens):
            return PolicyDecision.block(f"License '{license_id}' is in blocked list", BlockedBy.LICENSE)

        if self._allowed and license_id not in self._allowed and not any(t in self._allowed for t in tokens):
            return PolicyDecision.block(f"License '{license_id}' is not in allowed list", BlockedBy.LICENSE)

        return PolicyDecision.allow()
