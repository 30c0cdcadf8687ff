"""Shared test fixtures."""

from __future__ import annotations

import copy
from datetime import datetime, timezone

import pytest

from confluence_scanner.config import ScannerConfig
from confluence_scanner.contracts import Direction, FeatureSnapshot
from confluence_scanner.signals.detectors import ALL_ASSET_CLASSES, Detector, DetectorRegistry, ScoreFactor

# Tuesday 2026-03-10 09:40 ET (EDT, UTC-4): ten minutes into the session
OPENING_DRIVE_TS = datetime(2026, 3, 10, 13, 40, tzinfo=timezone.utc)


def _stacked_bundle(close: float, atr: float) -> dict:
    return {"close": close, "atr": atr, "rsi": 62.0, "ema": {"9": close * 0.999, "20": close * 0.998, "50": close * 0.99}}


BASE_SNAPSHOT: dict = {
    "symbol": "ACME",
    "timestamp": OPENING_DRIVE_TS,
    "price": {
        "current": 100.0, "open": 99.0, "high": 100.2, "low": 98.8,
        "prev": 99.8, "prev_close": 98.5, "change_pct": 1.52, "spread_pct": 0.02,
    },
    "volume": {"current": 2_000_000, "avg": 1_000_000, "relative_to_avg": 2.0},
    "vwap": {"value": 99.6, "distance_pct": 0.4},
    "rsi": {"14": 62.0},
    "ema": {"9": 99.8, "21": 99.4, "50": 98.6},
    "mtf": {
        "1m": _stacked_bundle(100.0, 0.15),
        "5m": _stacked_bundle(100.0, 0.6),
        "15m": _stacked_bundle(100.0, 0.8),
        "60m": _stacked_bundle(100.0, 1.4),
        "240m": _stacked_bundle(100.0, 2.2),
    },
    "flow": {
        "sweep_count": 4, "block_count": 1, "unusual_activity": False,
        "flow_score": 30.0, "flow_bias": "bullish", "put_call_ratio": 0.7,
    },
    "pattern": {
        "orb_high": 99.5, "orb_low": 98.9, "swing_high": 103.0, "swing_low": 97.0,
        "prior_day_high": 99.9, "prior_day_low": 97.8, "patience_candle": False,
    },
    "session": {"minutes_since_open": 10, "minutes_to_close": 380, "is_regular_hours": True},
    "market_regime": "trending",
    "vix_level": "medium",
    "vix": 18.0,
}


def _merge(base: dict, overrides: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and value and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


@pytest.fixture
def make_snapshot():
    """Build a fully-populated opening-drive snapshot; nested dicts merge into the base, {} clears."""

    def _make(**overrides) -> FeatureSnapshot:
        return FeatureSnapshot.model_validate(_merge(BASE_SNAPSHOT, overrides))

    return _make


@pytest.fixture
def snapshot(make_snapshot) -> FeatureSnapshot:
    return make_snapshot()


@pytest.fixture
def make_detector():
    """Detector that always fires with a fixed base score."""

    def _make(
        opportunity_type: str = "test_breakout_long",
        base_score: float = 82.0,
        direction: Direction = Direction.LONG,
        fires: bool = True,
    ) -> Detector:
        return Detector(
            type=opportunity_type,
            direction=direction,
            asset_classes=ALL_ASSET_CLASSES,
            detect_fn=lambda s, c=None: fires,
            score_factors=(ScoreFactor("fixed", 1.0, lambda s, c=None: base_score),),
        )

    return _make


@pytest.fixture
def stub_registry(make_detector) -> DetectorRegistry:
    return DetectorRegistry([make_detector()])


@pytest.fixture
def scanner_config() -> ScannerConfig:
    return ScannerConfig(include_diagnostics=True)
