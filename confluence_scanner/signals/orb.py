"""Opening-range breakout detectors.

Waits for the opening range to form (15 minutes), then requires a clean
break of the range on at least average volume, with the range itself
neither too tight (noise) nor too wide (move already spent).
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
    pct_distance,
    relative_volume,
    volume_confirmation_score,
)

ORB_MINUTES = 15
BREAK_BUFFER = 0.001
MIN_RANGE_ATR = 0.5
MAX_RANGE_ATR = 2.5
MIN_RVOL = 0.8


def _orb(snapshot: FeatureSnapshot) -> tuple[float, float] | None:
    high, low = snapshot.pattern.orb_high, snapshot.pattern.orb_low
    if not (_valid(high) and _valid(low)) or high <= low:
        return None
    return float(high), float(low)


def _detect(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        session = snapshot.session
        if session.is_regular_hours is not True:
            return False
        if (session.minutes_since_open or 0) < ORB_MINUTES:
            return False
        price = current_price(snapshot)
        levels = _orb(snapshot)
        a = atr(snapshot)
        rvol = relative_volume(snapshot)
        if price is None or levels is None or not a or not _valid(rvol) or rvol < MIN_RVOL:
            return False
        high, low = levels
        range_atr = (high - low) / a
        if not MIN_RANGE_ATR <= range_atr <= MAX_RANGE_ATR:
            return False
        if direction == Direction.LONG:
            return price > high * (1 + BREAK_BUFFER)
        return price < low * (1 - BREAK_BUFFER)
    return detect


def _level_confluence(direction: Direction):
    """Extra levels stacked near the broken range edge."""
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        levels = _orb(snapshot)
        if price is None or levels is None:
            return 0.0
        edge = levels[0] if direction == Direction.LONG else levels[1]
        pattern = snapshot.pattern
        nearby = (
            pattern.prior_day_high if direction == Direction.LONG else pattern.prior_day_low,
            pattern.swing_high if direction == Direction.LONG else pattern.swing_low,
            snapshot.vwap.value,
        )
        score = 40.0
        for level in nearby:
            d = pct_distance(edge, level)
            if d is not None and abs(d) <= 0.3:
                score += 20
        return min(100.0, score)
    return evaluate


def _trend_strength(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        e8, e21 = ema(snapshot, 8) or ema(snapshot, 9), ema(snapshot, 21)
        vwap = snapshot.vwap.value
        if price is None:
            return 0.0
        sign = 1 if direction == Direction.LONG else -1
        score = 0.0
        if _valid(vwap) and sign * (price - vwap) > 0:
            score += 40
        if e8 is not None and e21 is not None and sign * (e8 - e21) > 0:
            score += 35
        if e21 is not None and sign * (price - e21) > 0:
            score += 25
        return score
    return evaluate


def _patience_candle(snapshot: FeatureSnapshot, chain=None) -> float:
    flag = snapshot.pattern.patience_candle
    if flag is True:
        return 90.0
    if flag is False:
        return 30.0
    return 50.0


def _session_timing(snapshot: FeatureSnapshot, chain=None) -> float:
    minutes = snapshot.session.minutes_since_open or 0
    # Early breaks follow through best
    if minutes <= 60:
        return 90.0
    if minutes <= 120:
        return 70.0
    if minutes <= 240:
        return 40.0
    return 55.0


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect(direction),
        score_factors=(
            ScoreFactor("level_confluence", 0.25, _level_confluence(direction)),
            ScoreFactor("trend_strength", 0.25, _trend_strength(direction)),
            ScoreFactor("patience_candle", 0.20, _patience_candle),
            ScoreFactor("volume_confirmation", 0.20, lambda s, c=None: volume_confirmation_score(relative_volume(s))),
            ScoreFactor("session_timing", 0.10, _session_timing),
        ),
        ideal_timeframe="5m",
    )


def build_orb_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "orb_breakout_long"),
        _build(Direction.SHORT, "orb_breakout_short"),
    ]
