"""Trend-continuation detectors.

Fires on a pullback to EMA21 (or VWAP) inside an established EMA stack
with RSI still in its trend zone, i.e. the trend is resting, not ending.
"""

from __future__ import annotations

from confluence_scanner.contracts import Direction, FeatureSnapshot
from confluence_scanner.signals.detectors import (
    ALL_ASSET_CLASSES,
    Detector,
    ScoreFactor,
    _valid,
    current_price,
    ema,
    pct_distance,
    relative_volume,
    rsi14,
)

PULLBACK_MAX_PCT = 0.6  # within 0.6% of EMA21 or VWAP
_HTF_WEIGHTS = {"15m": 0.3, "60m": 0.4, "240m": 0.3}


def _stacked(snapshot: FeatureSnapshot, direction: Direction) -> bool:
    e9, e21, e50 = ema(snapshot, 9), ema(snapshot, 21), ema(snapshot, 50)
    if e9 is None or e21 is None or e50 is None:
        return False
    if direction == Direction.LONG:
        return e9 > e21 > e50
    return e9 < e21 < e50


def _pullback_distance(snapshot: FeatureSnapshot) -> float | None:
    price = current_price(snapshot)
    if price is None:
        return None
    distances = [
        abs(d) for d in (pct_distance(price, ema(snapshot, 21)), pct_distance(price, snapshot.vwap.value))
        if d is not None
    ]
    return min(distances) if distances else None


def _detect(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        price = current_price(snapshot)
        rsi = rsi14(snapshot)
        e21 = ema(snapshot, 21)
        pullback = _pullback_distance(snapshot)
        if price is None or rsi is None or e21 is None or pullback is None:
            return False
        if not _stacked(snapshot, direction) or pullback > PULLBACK_MAX_PCT:
            return False
        if direction == Direction.LONG:
            return price >= e21 * 0.998 and 40 <= rsi <= 65
        return price <= e21 * 1.002 and 35 <= rsi <= 60
    return detect


def _htf_alignment(direction: Direction):
    """Share of higher timeframes whose close/EMA20/EMA50 stack agrees."""
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        score = 0.0
        seen = 0.0
        for tf, weight in _HTF_WEIGHTS.items():
            bundle = snapshot.mtf.get(tf)
            if bundle is None:
                continue
            close, e20, e50 = bundle.close, bundle.ema.get("20"), bundle.ema.get("50")
            if not (_valid(close) and _valid(e20) and _valid(e50)):
                continue
            seen += weight
            if direction == Direction.LONG and close > e20 > e50:
                score += weight * 100
            elif direction == Direction.SHORT and close < e20 < e50:
                score += weight * 100
            elif (direction == Direction.LONG and close > e20) or (
                direction == Direction.SHORT and close < e20
            ):
                score += weight * 50
        return score / seen if seen else 40.0
    return evaluate


def _ema_stack(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        if not _stacked(snapshot, direction):
            return 20.0
        e9, e50 = ema(snapshot, 9), ema(snapshot, 50)
        spread = abs(e9 - e50) / e50 * 100 if e50 else 0.0
        # Wider separation = more established trend
        if spread >= 1.0:
            return 100.0
        if spread >= 0.5:
            return 80.0
        return 60.0
    return evaluate


def _pullback_quality(snapshot: FeatureSnapshot, chain=None) -> float:
    pullback = _pullback_distance(snapshot)
    if pullback is None:
        return 0.0
    if pullback <= 0.15:
        return 95.0
    if pullback <= 0.3:
        return 80.0
    if pullback <= PULLBACK_MAX_PCT:
        return 60.0
    return 20.0


def _quiet_pullback(snapshot: FeatureSnapshot, chain=None) -> float:
    # Healthy pullbacks come on lighter volume
    rvol = relative_volume(snapshot)
    if not _valid(rvol):
        return 50.0
    if 0.6 <= rvol <= 1.2:
        return 80.0
    if rvol < 0.6:
        return 50.0
    return 60.0


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect(direction),
        score_factors=(
            ScoreFactor("mtf_alignment", 0.30, _htf_alignment(direction)),
            ScoreFactor("trend", 0.25, _ema_stack(direction)),
            ScoreFactor("pullback", 0.25, _pullback_quality),
            ScoreFactor("volume", 0.20, _quiet_pullback),
        ),
        ideal_timeframe="15m",
    )


def build_trend_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "trend_continuation_long"),
        _build(Direction.SHORT, "trend_continuation_short"),
    ]
