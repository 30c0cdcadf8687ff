"""Intraday breakout detectors.

Identifies price clearing the opening range (or the prior day's extreme
when no range is available) on above-average volume, on the VWAP side of
the move.

Multi-factor model:
  1. Volume confirmation (25%): RVOL
  2. Level break (25%): how decisively the level was cleared, in ATRs
  3. Trend alignment (20%): EMA stack and price vs EMA21
  4. VWAP context (15%): price on the right side of VWAP
  5. Options flow (15%): flow bias agreeing with the direction
"""

from __future__ import annotations

from confluence_scanner.contracts import Direction, FeatureSnapshot
from confluence_scanner.signals.detectors import (
    ALL_ASSET_CLASSES,
    Detector,
    ScoreFactor,
    _valid,
    atr,
    current_price,
    ema,
    flow_alignment_score,
    relative_volume,
    volume_confirmation_score,
)

MIN_BREAK_PCT = 0.001  # price must clear the level by 0.1%
MIN_RVOL = 1.2


def _breakout_level(snapshot: FeatureSnapshot, direction: Direction) -> float | None:
    pattern = snapshot.pattern
    if direction == Direction.LONG:
        level = pattern.orb_high if _valid(pattern.orb_high) else pattern.prior_day_high
    else:
        level = pattern.orb_low if _valid(pattern.orb_low) else pattern.prior_day_low
    return float(level) if _valid(level) and level > 0 else None


def _detect(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        price = current_price(snapshot)
        level = _breakout_level(snapshot, direction)
        rvol = relative_volume(snapshot)
        if price is None or level is None or not _valid(rvol) or rvol < MIN_RVOL:
            return False
        vwap = snapshot.vwap.value
        if direction == Direction.LONG:
            if price <= level * (1 + MIN_BREAK_PCT):
                return False
            return not _valid(vwap) or price > vwap
        if price >= level * (1 - MIN_BREAK_PCT):
            return False
        return not _valid(vwap) or price < vwap
    return detect


def _level_break(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        level = _breakout_level(snapshot, direction)
        a = atr(snapshot)
        if price is None or level is None or not a:
            return 0.0
        clearance = (price - level) / a
        if direction == Direction.SHORT:
            clearance = -clearance
        # Clean break of 0.25-1.0 ATR is ideal; further is chasing
        if clearance <= 0:
            return 0.0
        if clearance < 0.25:
            return 60.0
        if clearance <= 1.0:
            return 90.0
        if clearance <= 1.5:
            return 70.0
        return 40.0
    return evaluate


def _trend_alignment(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        e9, e21, e50 = ema(snapshot, 9), ema(snapshot, 21), ema(snapshot, 50)
        if price is None:
            return 0.0
        sign = 1 if direction == Direction.LONG else -1
        score = 0.0
        if e21 is not None and sign * (price - e21) > 0:
            score += 40
        if e9 is not None and e21 is not None and sign * (e9 - e21) > 0:
            score += 35
        if e21 is not None and e50 is not None and sign * (e21 - e50) > 0:
            score += 25
        return score
    return evaluate


def _vwap_context(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        vwap = snapshot.vwap.value
        if price is None or not _valid(vwap) or vwap <= 0:
            return 50.0  # neutral default
        distance = (price - vwap) / vwap * 100
        if direction == Direction.SHORT:
            distance = -distance
        if distance <= 0:
            return 10.0
        if distance <= 0.5:
            return 90.0
        if distance <= 1.0:
            return 75.0
        return 50.0  # extended from VWAP
    return evaluate


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect(direction),
        score_factors=(
            ScoreFactor("volume", 0.25, lambda s, c=None: volume_confirmation_score(relative_volume(s))),
            ScoreFactor("level_break", 0.25, _level_break(direction)),
            ScoreFactor("trend", 0.20, _trend_alignment(direction)),
            ScoreFactor("vwap", 0.15, _vwap_context(direction)),
            ScoreFactor("flow", 0.15, lambda s, c=None: flow_alignment_score(s, direction)),
        ),
        ideal_timeframe="5m",
    )


def build_breakout_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "breakout_bullish"),
        _build(Direction.SHORT, "breakout_bearish"),
    ]
