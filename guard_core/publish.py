"""Validation of packages being published through the registry."""

from __future__ import annotations

import logging
import re

from .errors import PublishRejectedError
from .events import EventBus
from .rules import RuleStore
from .types import BlockedBy

__all__ = ["PublishValidator", "is_valid_package_name"]

logger = logging.getLogger(__name__)

_DANGEROUS_CHARS = re.compile(r'[<>:"\\|?*\x00-\x1f\x7f]')


def is_valid_package_name(name: str) -> bool:
    """Reject empty names, control characters and path-hostile characters.

    A single ``/`` is only allowed as the separator of ``@scope/name``.
    """
    if not name or not name.strip() or name != name.strip():
        return False
    if _DANGEROUS_CHARS.search(name):
        return False
    if name.startswith("@"):
        scope, sep, rest = name[1:].partition("/")
        if not sep or not scope or not rest or "/" in rest:
            return False
        parts = (scope, rest)
    else:
        if "/" in name:
            return False
        parts = (name,)
    return all(part not in (".", "..") for part in parts)


class PublishValidator:
    def __init__(self, store: RuleStore, bus: EventBus | None = None) -> None:
        self.store = store
        self.bus = bus

    def validate(self, package_name: str, version: str, tarball_size: int | None = None) -> bool:
        """Return ``True`` or raise :class:`PublishRejectedError` with the reason."""
        logger.info("validating publish: %s@%s", package_name, version)
        key = f"{package_name}@{version}"

        if tarball_size:
            if tarball_size < self.store.min_package_size:
                self._reject(
                    package_name,
                    version,
                    f"Package size {tarball_size} bytes is below minimum {self.store.min_package_size} bytes",
                )
            if tarball_size > self.store.max_package_size:
                self._reject(
                    package_name,
                    version,
                    f"Package size {tarball_size} bytes exceeds maximum {self.store.max_package_size} bytes",
                )

        if self.store.is_version_blocked(package_name, version):
            self._reject(
                package_name,
                version,
                f"Version {key} is blocked due to security concerns",
                BlockedBy.VERSION,
            )

        rule = self.store.matcher.match_block(package_name, version)
        if rule is not None:
            message = (
                f"Version {version} is blocked by range rule: {rule.reason}"
                if rule.reason
                else f"Version {version} falls within blocked range: {rule.range}"
            )
            self._reject(package_name, version, message, BlockedBy.RANGE)

        if not is_valid_package_name(package_name):
            self._reject(package_name, version, f"Package metadata validation failed for {key}")

        return True

    def _reject(
        self,
        package_name: str,
        version: str,
        message: str,
        blocked_by: BlockedBy | None = None,
    ) -> None:
        logger.warning("publish rejected: %s@%s - %s", package_name, version, message)
        if self.bus is not None:
            self.bus.record("publish_rejected", package_name, message, version=version)
        raise PublishRejectedError(
            message,
            package=package_name,
            version=version,
            blocked_by=blocked_by.value if blocked_by is not None else None,
        )
