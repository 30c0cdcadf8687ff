"""Tests for style modifiers and style score selection."""

from datetime import datetime, timezone

import pytest

from confluence_scanner.contracts import TradingStyle
from confluence_scanner.features.session import TimeWindow
from confluence_scanner.signals.style import (
    MAX_MODIFIER,
    NON_REGULAR_CAP,
    apply_style_modifiers,
    build_style_scores,
    calculate_mtf_alignment,
    calculate_style_modifiers,
    extract_style_factors,
    pick_recommended,
)


class TestFactors:
    def test_opening_drive_context(self, snapshot):
        factors = extract_style_factors(snapshot)
        assert factors.time_of_day == TimeWindow.OPENING_DRIVE
        assert factors.atr_pct == pytest.approx(0.6)
        assert factors.volume_spike
        assert not factors.near_key_level
        assert not factors.rsi_extreme
        assert factors.mtf_alignment == 100.0

    def test_near_key_level(self, make_snapshot):
        factors = extract_style_factors(make_snapshot(vwap={"value": 99.9}))
        assert factors.near_key_level
        assert factors.key_level == "vwap"

    def test_mtf_neutral_without_bundles(self, make_snapshot):
        assert calculate_mtf_alignment(make_snapshot(mtf={})) == 50.0


class TestModifiers:
    def test_opening_drive_trend_favors_short_styles(self, snapshot):
        mods = calculate_style_modifiers(snapshot)
        # scalp and day_trade both clamp at the ceiling
        assert mods.scalp == MAX_MODIFIER
        assert mods.day_trade == MAX_MODIFIER
        assert mods.swing == pytest.approx(1.10)
        assert any("opening drive" in r for r in mods.reasons["scalp"])
        assert any("volume spike" in r for r in mods.reasons["scalp"])

    def test_choppy_lunch_penalizes_everything(self, make_snapshot):
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 16, 30, tzinfo=timezone.utc),
            session={"minutes_since_open": 180, "minutes_to_close": 210},
            market_regime="choppy",
            volume={"relative_to_avg": 0.4},
        )
        mods = calculate_style_modifiers(snap)
        assert mods.factors.time_of_day == TimeWindow.LUNCH_CHOP
        assert mods.scalp == 0.5
        assert "Choppy regime, all styles penalized" in mods.warnings
        assert "Very low relative volume" in mods.warnings

    def test_after_hours_capped(self, make_snapshot):
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc),
            session={"is_regular_hours": False, "minutes_to_close": None},
        )
        mods = calculate_style_modifiers(snap)
        assert mods.factors.time_of_day == TimeWindow.AFTER_HOURS
        assert max(mods.scalp, mods.day_trade, mods.swing) <= NON_REGULAR_CAP

    def test_weekend_caps_short_styles_only(self, make_snapshot):
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc),
            session={"is_regular_hours": False},
        )
        mods = calculate_style_modifiers(snap)
        assert mods.factors.time_of_day == TimeWindow.WEEKEND
        assert (mods.scalp, mods.day_trade) == (NON_REGULAR_CAP, NON_REGULAR_CAP)
        # weekend +0.20, low ATR -0.20, strong MTF +0.30, trending +0.25
        assert mods.swing == MAX_MODIFIER
        assert "weekend: scalp and day trade modifiers capped at 0.6" in mods.warnings

    def test_final_thirty_minutes(self, make_snapshot):
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 19, 40, tzinfo=timezone.utc),
            session={"minutes_since_open": 370, "minutes_to_close": 20},
        )
        mods = calculate_style_modifiers(snap)
        assert "Less than 30 minutes to close" in mods.warnings
        assert "final 30 minutes (-40%)" in mods.reasons["day_trade"]


class TestScores:
    def test_tie_prefers_scalp(self):
        scores = {TradingStyle.SCALP: 90.0, TradingStyle.DAY_TRADE: 90.0, TradingStyle.SWING: 90.0}
        assert pick_recommended(scores) == (TradingStyle.SCALP, 90.0)

    def test_day_trade_beats_scalp_on_strict_greater(self):
        scores = {TradingStyle.SCALP: 80.0, TradingStyle.DAY_TRADE: 80.5, TradingStyle.SWING: 80.5}
        assert pick_recommended(scores)[0] == TradingStyle.DAY_TRADE

    def test_scores_clamped(self):
        scores = build_style_scores(130.0, -5.0, 50.0)
        assert scores.scalp_score == 100.0
        assert scores.day_trade_score == 0.0
        assert scores.recommended_style == TradingStyle.SCALP

    def test_apply_modifiers(self, snapshot):
        scores = apply_style_modifiers(82.0, snapshot)
        assert scores.scalp_score == 100.0
        assert scores.day_trade_score == 100.0
        assert scores.swing_score == pytest.approx(90.2)
        assert scores.recommended_style == TradingStyle.SCALP
        assert scores.modifiers is not None
