"""Circuit breaker for context sources.

A context source that keeps timing out or raising is skipped for a cooldown
period instead of stalling every scan. Counting is per source name; the
first success closes the circuit again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_SECONDS = 300.0


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class _SourceHealth:
    consecutive_failures: int = 0
    reopen_at: float = 0.0
    failures: int = 0
    successes: int = 0
    skipped: int = 0
    last_error: str | None = None


class ContextCircuitBreaker:
    """Tracks failures per context source and opens after `failure_threshold` in a row."""

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")
        self._threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._sources: dict[str, _SourceHealth] = {}

    def _health(self, source: str) -> _SourceHealth:
        return self._sources.setdefault(source, _SourceHealth())

    def state(self, source: str) -> CircuitState:
        health = self._health(source)
        if health.consecutive_failures < self._threshold:
            return CircuitState.CLOSED
        if self._clock() >= health.reopen_at:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def allow(self, source: str) -> bool:
        """True when a call to `source` should be attempted. Counts skips."""
        if self.state(source) == CircuitState.OPEN:
            self._health(source).skipped += 1
            return False
        return True

    def record_success(self, source: str) -> None:
        health = self._health(source)
        if health.consecutive_failures >= self._threshold:
            logger.info("Context source %s recovered after %d failures", source, health.consecutive_failures)
        health.consecutive_failures = 0
        health.reopen_at = 0.0
        health.successes += 1

    def record_failure(self, source: str, error: BaseException | str | None = None) -> None:
        health = self._health(source)
        health.consecutive_failures += 1
        health.failures += 1
        if error is not None:
            health.last_error = str(error) or type(error).__name__
        if health.consecutive_failures >= self._threshold:
            health.reopen_at = self._clock() + self._cooldown
            logger.warning(
                "Context source %s disabled for %.0fs after %d consecutive failures (%s)",
                source, self._cooldown, health.consecutive_failures, health.last_error,
            )

    def reset(self) -> None:
        self._sources.clear()

    def get_stats(self) -> dict[str, dict]:
        return {
            source: {
                "state": self.state(source).value,
                "consecutive_failures": h.consecutive_failures,
                "failures": h.failures,
                "successes": h.successes,
                "skipped": h.skipped,
                "last_error": h.last_error,
            }
            for source, h in self._sources.items()
        }
