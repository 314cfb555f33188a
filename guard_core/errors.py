"""Typed errors raised by the registry guard core."""

from __future__ import annotations


class GuardError(RuntimeError):
    """Base registry guard error."""


class ConfigError(GuardError):
    """Configuration has the wrong overall shape and cannot be loaded."""


class VulnerabilityLookupError(GuardError):
    """The vulnerability service failed, timed out or returned garbage."""


class PublishRejectedError(GuardError):
    """A publish was refused by policy."""

    def __init__(
        self,
        message: str,
        *,
        package: str,
        version: str,
        blocked_by: str | None = None,
    ) -> None:
        super().__init__(message)
        self.package = package
        self.version = version
        self.blocked_by = blocked_by
