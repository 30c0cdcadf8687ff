"""RSI-extreme mean-reversion detectors.

Looks for price stretched away from VWAP with RSI(14) at an extreme,
fading back toward VWAP. Long side fires on oversold stretches below
VWAP, short side on overbought stretches above it.
"""

from __future__ import annotations

from confluence_scanner.contracts import Direction, FeatureSnapshot
from confluence_scanner.signals.detectors import (
    ALL_ASSET_CLASSES,
    Detector,
    ScoreFactor,
    _valid,
    current_price,
    flow_alignment_score,
    pct_distance,
    relative_volume,
    rsi14,
)

OVERSOLD = 30.0
OVERBOUGHT = 70.0
MIN_VWAP_STRETCH_PCT = 0.5


def _vwap_stretch(snapshot: FeatureSnapshot, direction: Direction) -> float | None:
    """Stretch from VWAP in the fade direction (positive = stretched)."""
    price = current_price(snapshot)
    if price is None:
        return None
    distance = snapshot.vwap.distance_pct
    if not _valid(distance):
        distance = pct_distance(price, snapshot.vwap.value)
    if distance is None:
        return None
    return -distance if direction == Direction.LONG else distance


def _detect(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        rsi = rsi14(snapshot)
        stretch = _vwap_stretch(snapshot, direction)
        if rsi is None or stretch is None or stretch < MIN_VWAP_STRETCH_PCT:
            return False
        return rsi < OVERSOLD if direction == Direction.LONG else rsi > OVERBOUGHT
    return detect


def _rsi_extreme(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        rsi = rsi14(snapshot)
        if rsi is None:
            return 0.0
        depth = (OVERSOLD - rsi) if direction == Direction.LONG else (rsi - OVERBOUGHT)
        if depth <= 0:
            return 30.0
        if depth >= 15:
            return 100.0
        if depth >= 10:
            return 85.0
        if depth >= 5:
            return 70.0
        return 55.0
    return evaluate


def _stretch_score(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        stretch = _vwap_stretch(snapshot, direction)
        if stretch is None or stretch <= 0:
            return 0.0
        if stretch >= 2.0:
            return 95.0
        if stretch >= 1.5:
            return 85.0
        if stretch >= 1.0:
            return 70.0
        return 50.0
    return evaluate


def _level_support(direction: Direction):
    """Reward fades into a swing or prior-day level."""
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        if price is None:
            return 0.0
        pattern = snapshot.pattern
        if direction == Direction.LONG:
            levels = (pattern.swing_low, pattern.prior_day_low)
        else:
            levels = (pattern.swing_high, pattern.prior_day_high)
        best = 20.0
        for level in levels:
            d = pct_distance(price, level)
            if d is None:
                continue
            d = abs(d)
            if d <= 0.25:
                best = max(best, 90.0)
            elif d <= 0.5:
                best = max(best, 70.0)
            elif d <= 1.0:
                best = max(best, 50.0)
        return best
    return evaluate


def _volume_climax(snapshot: FeatureSnapshot, chain=None) -> float:
    # Capitulation volume helps a fade; dead volume does not
    rvol = relative_volume(snapshot)
    if not _valid(rvol):
        return 40.0
    if rvol >= 2.5:
        return 90.0
    if rvol >= 1.5:
        return 70.0
    if rvol >= 0.8:
        return 50.0
    return 25.0


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect(direction),
        score_factors=(
            ScoreFactor("rsi_extreme", 0.30, _rsi_extreme(direction)),
            ScoreFactor("vwap_stretch", 0.25, _stretch_score(direction)),
            ScoreFactor("support_resistance", 0.20, _level_support(direction)),
            ScoreFactor("volume", 0.15, _volume_climax),
            ScoreFactor("flow", 0.10, lambda s, c=None: flow_alignment_score(s, direction)),
        ),
        ideal_timeframe="5m",
    )


def build_mean_reversion_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "mean_reversion_long"),
        _build(Direction.SHORT, "mean_reversion_short"),
    ]
