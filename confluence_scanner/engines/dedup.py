"""Signal deduplication — idempotent keys, cooldowns, and per-symbol rate limits.

All time checks are relative to the candidate's own `created_at`, never the
wall clock, so replaying historical snapshots gives the same answers as
running live. History is appended only when a candidate is accepted.

Accepted bar-time keys live in their own ledger that ages out on the rolling
age window only; count caps trim the cooldown history, never the ledger, so
an evicted snapshot still reads as a duplicate when it is retried.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from confluence_scanner.config import SignalThresholds
from confluence_scanner.contracts import CompositeSignal

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class _HistoryEntry:
    bar_time_key: str
    opportunity_type: str
    timestamp: datetime


@dataclass
class DedupDecision:
    accepted: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        return {"accepted": self.accepted, "reason": self.reason}


class DedupStore(Protocol):
    """Injectable history with an atomic check-and-insert per symbol."""

    def check(self, candidate: CompositeSignal, thresholds: SignalThresholds) -> DedupDecision: ...

    def check_and_insert(self, candidate: CompositeSignal, thresholds: SignalThresholds) -> DedupDecision: ...

    def stats(self) -> dict: ...

    def clear(self) -> None: ...


class InMemoryDedupStore:
    """Process-local history, pruned by age and capped per symbol and in total."""

    def __init__(
        self,
        max_history_per_symbol: int = 100,
        max_total: int = 1000,
        max_age_hours: float = 24.0,
    ):
        if max_history_per_symbol < 1 or max_total < 1:
            raise ValueError("dedup history caps must be >= 1")
        self._max_per_symbol = max_history_per_symbol
        self._max_total = max_total
        self._max_age = timedelta(hours=max_age_hours)
        self._history: dict[str, deque[_HistoryEntry]] = {}
        self._keys: dict[str, datetime] = {}
        self._newest: datetime | None = None
        self._lock = threading.Lock()
        self._accepted = 0
        self._rejected: dict[str, int] = {"duplicate": 0, "cooldown": 0, "rate_limit": 0}

    @classmethod
    def from_config(cls, config) -> InMemoryDedupStore:
        return cls(
            max_history_per_symbol=config.dedup_max_history_per_symbol,
            max_total=config.dedup_max_total,
            max_age_hours=config.dedup_max_age_hours,
        )

    def _evaluate(
        self, candidate: CompositeSignal, thresholds: SignalThresholds,
    ) -> tuple[DedupDecision, str | None]:
        """Decision plus the rejection counter it belongs to."""
        if candidate.bar_time_key in self._keys:
            return DedupDecision(False, "Duplicate bar time key"), "duplicate"

        now = candidate.created_at
        entries = self._history.get(candidate.symbol, ())
        cooldown = timedelta(minutes=thresholds.cooldown_minutes)
        for entry in entries:
            if entry.opportunity_type == candidate.opportunity_type and abs(now - entry.timestamp) < cooldown:
                return DedupDecision(False, f"In cooldown ({thresholds.cooldown_minutes} minutes)"), "cooldown"

        # inclusive: a signal exactly one hour old still counts
        recent = sum(1 for e in entries if timedelta(0) <= now - e.timestamp <= RATE_LIMIT_WINDOW)
        if recent >= thresholds.max_signals_per_symbol_per_hour:
            return DedupDecision(
                False, f"Max signals per hour exceeded ({thresholds.max_signals_per_symbol_per_hour})",
            ), "rate_limit"
        return DedupDecision(True), None

    def check(self, candidate: CompositeSignal, thresholds: SignalThresholds) -> DedupDecision:
        """Read-only query; leaves history and stats untouched."""
        with self._lock:
            decision, _ = self._evaluate(candidate, thresholds)
        return decision

    def check_and_insert(self, candidate: CompositeSignal, thresholds: SignalThresholds) -> DedupDecision:
        with self._lock:
            decision, counter = self._evaluate(candidate, thresholds)
            if decision.accepted:
                self._insert(candidate)
            else:
                self._rejected[counter] += 1
        if not decision.accepted:
            logger.debug("%s %s rejected: %s", candidate.symbol, candidate.opportunity_type, decision.reason)
        return decision

    def _insert(self, candidate: CompositeSignal) -> None:
        entry = _HistoryEntry(candidate.bar_time_key, candidate.opportunity_type, candidate.created_at)
        history = self._history.setdefault(candidate.symbol, deque())
        history.append(entry)
        self._keys[entry.bar_time_key] = entry.timestamp
        self._accepted += 1
        if self._newest is None or entry.timestamp > self._newest:
            self._newest = entry.timestamp
        self._prune_keys()
        self._prune_symbol(history)
        self._enforce_total_cap()

    def _prune_keys(self) -> None:
        expired = [k for k, ts in self._keys.items() if self._newest - ts > self._max_age]
        for key in expired:
            del self._keys[key]

    def _prune_symbol(self, history: deque[_HistoryEntry]) -> None:
        newest = max(e.timestamp for e in history)
        for entry in [e for e in history if newest - e.timestamp > self._max_age]:
            history.remove(entry)
        while len(history) > self._max_per_symbol:
            oldest = min(history, key=lambda e: e.timestamp)
            history.remove(oldest)

    def _enforce_total_cap(self) -> None:
        total = sum(len(h) for h in self._history.values())
        while total > self._max_total:
            symbol, oldest = min(
                ((s, min(h, key=lambda e: e.timestamp)) for s, h in self._history.items() if h),
                key=lambda pair: pair[1].timestamp,
            )
            self._history[symbol].remove(oldest)
            total -= 1
        for symbol in [s for s, h in self._history.items() if not h]:
            del self._history[symbol]

    def stats(self) -> dict:
        with self._lock:
            return {
                "symbols": len(self._history),
                "total_entries": sum(len(h) for h in self._history.values()),
                "tracked_keys": len(self._keys),
                "accepted": self._accepted,
                "rejected": dict(self._rejected),
            }

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
            self._keys.clear()
            self._newest = None
            self._accepted = 0
            self._rejected = {k: 0 for k in self._rejected}
