"""Policy evaluation core for the registry guard."""

from .config import config_from_mapping, load_config
from .errors import ConfigError, GuardError, PublishRejectedError, VulnerabilityLookupError
from .events import DecisionEvent, EventBus
from .filter import SecurityFilter
from .types import (
    BlockedBy,
    ErrorHandlingPolicy,
    FailMode,
    FilterOutcome,
    PolicyDecision,
    RangeStrategy,
    SecurityConfig,
    VersionRangeRule,
)

__all__ = [
    "BlockedBy",
    "ConfigError",
    "DecisionEvent",
    "ErrorHandlingPolicy",
    "EventBus",
    "FailMode",
    "FilterOutcome",
    "GuardError",
    "PolicyDecision",
    "PublishRejectedError",
    "RangeStrategy",
    "SecurityConfig",
    "SecurityFilter",
    "VersionRangeRule",
    "VulnerabilityLookupError",
    "config_from_mapping",
    "load_config",
]
