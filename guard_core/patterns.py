"""Compiled regex matchers that never raise during evaluation."""

from __future__ import annotations

import logging
import re
from typing import Iterable

__all__ = ["CompiledPattern", "compile_patterns", "first_match"]

logger = logging.getLogger(__name__)


class CompiledPattern:
    """A configured pattern; an invalid expression never matches."""

    def __init__(self, source: str, flags: int = 0) -> None:
        self.source = source
        try:
            self._regex: re.Pattern[str] | None = re.compile(source, flags)
        except re.error as exc:
            logger.warning("invalid pattern %r ignored: %s", source, exc)
            self._regex = None

    @property
    def valid(self) -> bool:
        return self._regex is not None

    def search(self, value: str) -> bool:
        if self._regex is None or value is None:
            return False
        return self._regex.search(value) is not None

    def __repr__(self) -> str:
        return f"CompiledPattern({self.source!r})"


def compile_patterns(sources: Iterable[str], flags: int = 0) -> tuple[CompiledPattern, ...]:
    return tuple(CompiledPattern(source, flags) for source in sources)


def first_match(patterns: Iterable[CompiledPattern], value: str) -> CompiledPattern | None:
    for pattern in patterns:
        if pattern.search(value):
            return pattern
    return None
