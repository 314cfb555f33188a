"""Request-ingress interception: path grammar and the admit/block decision."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import unquote, urlsplit

from .events import EventBus
from .fast_path import FastPathEvaluator
from .rewriter import blocked_document
from .types import PolicyDecision

__all__ = [
    "BLOCKED_ERROR",
    "IngressAction",
    "IngressDecision",
    "PackageRequest",
    "decide_request",
    "parse_request_path",
]

logger = logging.getLogger(__name__)

BLOCKED_ERROR = "Package blocked by security filter"


@dataclass(frozen=True)
class PackageRequest:
    package_name: str
    scope: str | None = None
    tarball_filename: str | None = None
    version: str | None = None

    @property
    def is_tarball(self) -> bool:
        return self.tarball_filename is not None


def parse_request_path(raw_path: str) -> PackageRequest | None:
    """Parse ``/[@scope/]name`` or ``/[@scope/]name/-/name-version.tgz``.

    Anything else (registry endpoints, version documents) returns ``None``.
    """
    path = unquote(urlsplit(raw_path or "").path)
    parts = [part for part in path.split("/") if part]
    if not parts or parts[0].startswith("-"):
        return None

    if parts[0].startswith("@"):
        if len(parts) < 2 or len(parts[0]) < 2:
            return None
        scope, name, rest = parts[0], parts[1], parts[2:]
        package_name = f"{scope}/{name}"
    else:
        scope, name, rest = None, parts[0], parts[1:]
        package_name = name

    if not rest:
        return PackageRequest(package_name=package_name, scope=scope)

    if len(rest) == 2 and rest[0] == "-" and rest[1].endswith(".tgz"):
        filename = rest[1]
        prefix = f"{name}-"
        version = None
        if filename.startswith(prefix) and len(filename) > len(prefix) + len(".tgz"):
            version = filename[len(prefix):-len(".tgz")]
        return PackageRequest(
            package_name=package_name,
            scope=scope,
            tarball_filename=filename,
            version=version,
        )
    return None


class IngressAction(str, Enum):
    ADMIT = "admit"
    BLOCK = "block"
    BLOCKED_DOCUMENT = "blocked_document"


@dataclass(frozen=True)
class IngressDecision:
    action: IngressAction
    request: PackageRequest | None
    decision: PolicyDecision
    body: dict[str, Any] | None = None

    @property
    def status_code(self) -> int:
        return 403 if self.action is IngressAction.BLOCK else 200


def decide_request(raw_path: str, fast_path: FastPathEvaluator, bus: EventBus | None = None) -> IngressDecision:
    """Decide a request before any response is built.

    Blocked tarballs get a 403 body; blocked metadata requests get a
    synthesized blocked package document so clients can show the reason.
    """
    request = parse_request_path(raw_path)
    if request is None:
        return IngressDecision(IngressAction.ADMIT, None, PolicyDecision.allow())

    decision = fast_path.evaluate(request.package_name, request.version)
    if not decision.blocked:
        return IngressDecision(IngressAction.ADMIT, request, decision)

    reason = decision.reason or "Blocked by security policy"
    rule = decision.blocked_by.value if decision.blocked_by is not None else "unknown"
    logger.warning("blocked request %s: %s", raw_path, reason)
    if bus is not None:
        bus.record("block", request.package_name, reason, version=request.version, metadata={"blockedBy": rule})

    if request.is_tarball:
        body = {
            "error": BLOCKED_ERROR,
            "package": request.package_name,
            "version": request.version,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return IngressDecision(IngressAction.BLOCK, request, decision, body)

    return IngressDecision(
        IngressAction.BLOCKED_DOCUMENT,
        request,
        decision,
        blocked_document(request.package_name, reason, [rule]),
    )
