"""Buffered metrics sink for decision events."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from .events import DECISION_EVENTS, DecisionEvent, EventBus
from .types import MetricsConfig

__all__ = ["MetricsCollector"]

logger = logging.getLogger(__name__)


class MetricsCollector:
    buffer_size = 100
    max_buffer_size = 500

    def __init__(self, config: MetricsConfig | None = None) -> None:
        self.config = config or MetricsConfig()
        self._buffer: list[DecisionEvent] = []
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def attach(self, bus: EventBus) -> None:
        bus.on("*", self.record)

    def record(self, event: DecisionEvent) -> None:
        if not self.config.enabled:
            return
        with self._lock:
            if len(self._buffer) >= self.max_buffer_size:
                self._flush_locked()
            self._buffer.append(event)
            if len(self._buffer) >= self.buffer_size:
                self._flush_locked()

    def record_block(self, package_name: str, version: str | None, reason: str, metadata: dict[str, Any] | None = None) -> None:
        self.record(DecisionEvent("block", package_name, reason, version=version, metadata=metadata))

    def record_fallback(self, package_name: str, from_version: str, to_version: str, reason: str) -> None:
        self.record(DecisionEvent("fallback", package_name, reason, version=from_version, metadata={"toVersion": to_version}))

    def record_publish_rejected(self, package_name: str, version: str, reason: str) -> None:
        self.record(DecisionEvent("publish_rejected", package_name, reason, version=version))

    def record_cve(self, package_name: str, version: str, cve_id: str, severity: str) -> None:
        self.record(
            DecisionEvent(
                "cve_detected",
                package_name,
                f"CVE {cve_id} ({severity})",
                version=version,
                metadata={"cveId": cve_id, "severity": severity},
            )
        )

    def record_license_block(self, package_name: str, version: str | None, license_id: str, reason: str) -> None:
        self.record(DecisionEvent("license_blocked", package_name, reason, version=version, metadata={"license": license_id}))

    def record_package_too_new(self, package_name: str, version: str | None, reason: str, metadata: dict[str, Any] | None = None) -> None:
        self.record(DecisionEvent("package_too_new", package_name, reason, version=version, metadata=metadata))

    def record_author_block(self, package_name: str, version: str | None, reason: str) -> None:
        self.record(DecisionEvent("author_blocked", package_name, reason, version=version))

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        if not self._buffer:
            return
        lines = [json.dumps(event.to_dict()) for event in self._buffer]
        self._buffer = []
        if self.config.output == "stdout":
            for line in lines:
                print(line)
        elif self.config.output == "file":
            self._write_file(lines)

    def _write_file(self, lines: list[str]) -> None:
        path = Path(self.config.file_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write("\n".join(lines) + "\n")
        except OSError as exc:
            logger.error("failed to write metrics to %s: %s", path, exc)

    def summary(self) -> dict[str, int]:
        counts = {kind: 0 for kind in DECISION_EVENTS}
        with self._lock:
            for event in self._buffer:
                counts[event.kind] = counts.get(event.kind, 0) + 1
        return counts

    def close(self) -> None:
        self.flush()
