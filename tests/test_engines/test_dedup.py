"""Tests for idempotent keys, cooldowns and rate limits."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from confluence_scanner.config import ScannerConfig, SignalThresholds
from confluence_scanner.contracts import (
    AssetClass,
    CompositeSignal,
    Direction,
    SignalTargets,
    TradingStyle,
    generate_bar_time_key,
)
from confluence_scanner.engines.dedup import InMemoryDedupStore

T0 = datetime(2026, 3, 10, 13, 40, tzinfo=timezone.utc)
THRESHOLDS = SignalThresholds(cooldown_minutes=15, max_signals_per_symbol_per_hour=2)


def _signal(at: datetime = T0, opportunity_type: str = "breakout_bullish", symbol: str = "ACME") -> CompositeSignal:
    return CompositeSignal(
        symbol=symbol,
        opportunity_type=opportunity_type,
        direction=Direction.LONG,
        asset_class=AssetClass.STOCK,
        base_score=80,
        scalp_score=90,
        day_trade_score=85,
        swing_score=70,
        recommended_style=TradingStyle.SCALP,
        recommended_style_score=90,
        entry_price=100.0,
        stop_price=99.5,
        targets=SignalTargets(t1=100.5, t2=101.0, t3=101.5),
        risk_reward=2.0,
        created_at=at,
        expires_at=at + timedelta(minutes=5),
        bar_time_key=generate_bar_time_key(symbol, at, opportunity_type),
    )


@pytest.fixture
def store():
    return InMemoryDedupStore()


class TestDecisions:
    def test_first_signal_accepted(self, store):
        decision = store.check_and_insert(_signal(), THRESHOLDS)
        assert decision.accepted
        assert decision.reason is None

    def test_duplicate_key(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        decision = store.check_and_insert(_signal(), THRESHOLDS)
        assert not decision.accepted
        assert decision.reason == "Duplicate bar time key"

    def test_cooldown_same_type(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        decision = store.check_and_insert(_signal(T0 + timedelta(seconds=1)), THRESHOLDS)
        assert decision.reason == "In cooldown (15 minutes)"

    def test_cooldown_applies_to_out_of_order_replay(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        decision = store.check_and_insert(_signal(T0 - timedelta(minutes=5)), THRESHOLDS)
        assert decision.reason == "In cooldown (15 minutes)"

    def test_other_type_not_in_cooldown(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        assert store.check_and_insert(_signal(T0 + timedelta(minutes=1), "mean_reversion_long"), THRESHOLDS).accepted

    def test_rate_limit(self, store):
        assert store.check_and_insert(_signal(), THRESHOLDS).accepted
        assert store.check_and_insert(_signal(T0 + timedelta(minutes=16)), THRESHOLDS).accepted
        decision = store.check_and_insert(_signal(T0 + timedelta(minutes=32)), THRESHOLDS)
        assert decision.reason == "Max signals per hour exceeded (2)"
        # the first signal is exactly an hour old and still counts
        decision = store.check_and_insert(_signal(T0 + timedelta(minutes=60)), THRESHOLDS)
        assert decision.reason == "Max signals per hour exceeded (2)"
        # window slides
        assert store.check_and_insert(_signal(T0 + timedelta(minutes=61)), THRESHOLDS).accepted

    def test_symbols_are_independent(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        assert store.check_and_insert(_signal(symbol="BETA"), THRESHOLDS).accepted

    def test_check_does_not_insert(self, store):
        assert store.check(_signal(), THRESHOLDS).accepted
        assert store.check(_signal(), THRESHOLDS).accepted
        assert store.stats()["total_entries"] == 0

    def test_check_leaves_stats_alone(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        assert store.check(_signal(), THRESHOLDS).reason == "Duplicate bar time key"
        assert store.check(_signal(T0 + timedelta(seconds=1)), THRESHOLDS).reason == "In cooldown (15 minutes)"
        assert store.stats()["rejected"] == {"duplicate": 0, "cooldown": 0, "rate_limit": 0}

    def test_rejection_does_not_insert(self, store):
        store.check_and_insert(_signal(), THRESHOLDS)
        store.check_and_insert(_signal(T0 + timedelta(seconds=1)), THRESHOLDS)
        stats = store.stats()
        assert stats["total_entries"] == 1
        assert stats["accepted"] == 1
        assert stats["rejected"] == {"duplicate": 0, "cooldown": 1, "rate_limit": 0}


class TestPruning:
    def test_age_pruning(self):
        store = InMemoryDedupStore(max_age_hours=1)
        store.check_and_insert(_signal(), THRESHOLDS)
        store.check_and_insert(_signal(T0 + timedelta(hours=2)), THRESHOLDS)
        stats = store.stats()
        assert stats["total_entries"] == 1
        assert stats["tracked_keys"] == 1

    def test_per_symbol_cap(self):
        store = InMemoryDedupStore(max_history_per_symbol=2)
        loose = SignalThresholds(cooldown_minutes=0, max_signals_per_symbol_per_hour=10)
        for minute in range(3):
            store.check_and_insert(_signal(T0 + timedelta(minutes=minute)), loose)
        assert store.stats()["total_entries"] == 2
        evicted = store.check_and_insert(_signal(T0), loose)
        assert evicted.reason == "Duplicate bar time key"

    def test_total_cap_drops_oldest(self):
        store = InMemoryDedupStore(max_total=2)
        for i, symbol in enumerate(("AAA", "BBB", "CCC")):
            store.check_and_insert(_signal(T0 + timedelta(minutes=i), symbol=symbol), THRESHOLDS)
        stats = store.stats()
        assert stats["total_entries"] == 2
        assert stats["symbols"] == 2
        assert stats["tracked_keys"] == 3
        # AAA left the history but its key is still inside the age window
        decision = store.check_and_insert(_signal(symbol="AAA"), THRESHOLDS)
        assert decision.reason == "Duplicate bar time key"

    def test_invalid_caps(self):
        with pytest.raises(ValueError):
            InMemoryDedupStore(max_total=0)


def test_concurrent_inserts_accept_once(store):
    signal = _signal()
    with ThreadPoolExecutor(max_workers=8) as pool:
        decisions = list(pool.map(lambda _: store.check_and_insert(signal, THRESHOLDS), range(32)))
    assert sum(d.accepted for d in decisions) == 1


def test_from_config_and_clear():
    store = InMemoryDedupStore.from_config(ScannerConfig(dedup_max_total=5))
    store.check_and_insert(_signal(), THRESHOLDS)
    store.clear()
    assert store.stats() == {
        "symbols": 0,
        "total_entries": 0,
        "tracked_keys": 0,
        "accepted": 0,
        "rejected": {"duplicate": 0, "cooldown": 0, "rate_limit": 0},
    }
