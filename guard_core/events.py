"""Decision events and the synchronous bus that delivers them."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, DefaultDict

__all__ = [
    "ALL_EVENTS",
    "DECISION_EVENTS",
    "DecisionEvent",
    "EventBus",
    "EventHandler",
]

logger = logging.getLogger(__name__)

DECISION_EVENTS = (
    "block",
    "fallback",
    "publish_rejected",
    "cve_detected",
    "license_blocked",
    "package_too_new",
    "author_blocked",
)

# subscribe with this name to receive every event kind
ALL_EVENTS = "*"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class DecisionEvent:
    """One recorded policy decision."""

    kind: str
    package_name: str
    reason: str
    version: str | None = None
    metadata: dict[str, Any] | None = None
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "event": self.kind,
            "packageName": self.package_name,
            "reason": self.reason,
        }
        if self.version is not None:
            data["version"] = self.version
        if self.metadata:
            data["metadata"] = self.metadata
        return data


EventHandler = Callable[[DecisionEvent], None]


@dataclass(frozen=True)
class _EventSubscription:
    priority: int
    order: int
    handler: EventHandler


class EventBus:
    """Synchronous event bus with deterministic delivery.

    Delivery is fire-and-forget: a failing handler is logged and skipped.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, list[_EventSubscription]] = defaultdict(list)
        self._sequence = 0

    def on(self, kind: str, handler: EventHandler, priority: int = 0) -> None:
        """Register a handler for ``kind`` (or ``"*"``) with optional priority."""
        self._sequence += 1
        self._handlers[kind].append(
            _EventSubscription(priority=priority, order=self._sequence, handler=handler)
        )

    def emit(self, event: DecisionEvent) -> None:
        subscriptions = sorted(
            self._handlers[event.kind] + self._handlers[ALL_EVENTS],
            key=lambda item: (-item.priority, item.order),
        )
        for subscription in subscriptions:
            try:
                subscription.handler(event)
            except Exception:
                logger.exception("decision handler failed for %s event", event.kind)

    def record(
        self,
        kind: str,
        package_name: str,
        reason: str,
        *,
        version: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.emit(
            DecisionEvent(
                kind=kind,
                package_name=package_name,
                reason=reason,
                version=version,
                metadata=metadata,
            )
        )
