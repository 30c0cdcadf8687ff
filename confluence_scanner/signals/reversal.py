"""Power-hour reversal detectors (index and index ETFs).

Late-session exhaustion fades: after an extended one-directional day, an
RSI extreme in the last hour with price pressing the day's extreme tends
to snap back into the close.
"""

from __future__ import annotations

from confluence_scanner.contracts import AssetClass, Direction, FeatureSnapshot
from confluence_scanner.signals.detectors import (
    Detector,
    ScoreFactor,
    _valid,
    current_price,
    flow_alignment_score,
    pct_distance,
    rsi14,
)

POWER_HOUR_START = 330  # minutes since open
MIN_DAY_MOVE_PCT = 0.5


def _day_move(snapshot: FeatureSnapshot) -> float | None:
    price = current_price(snapshot)
    if _valid(snapshot.price.change_pct):
        return float(snapshot.price.change_pct)
    prev = snapshot.price.prev_close
    if price is None or not _valid(prev) or prev <= 0:
        return None
    return (price - prev) / prev * 100


def _detect(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        session = snapshot.session
        if session.is_regular_hours is not True:
            return False
        if (session.minutes_since_open or 0) < POWER_HOUR_START:
            return False
        rsi = rsi14(snapshot)
        move = _day_move(snapshot)
        if rsi is None or move is None:
            return False
        # Bullish reversal fades a down day, bearish fades an up day
        if direction == Direction.LONG:
            return move <= -MIN_DAY_MOVE_PCT and rsi < 35
        return move >= MIN_DAY_MOVE_PCT and rsi > 65
    return detect


def _exhaustion(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        rsi = rsi14(snapshot)
        if rsi is None:
            return 0.0
        depth = (35 - rsi) if direction == Direction.LONG else (rsi - 65)
        return max(0.0, min(100.0, 50 + depth * 4))
    return evaluate


def _day_extension(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        move = _day_move(snapshot)
        if move is None:
            return 0.0
        extension = -move if direction == Direction.LONG else move
        if extension >= 2.0:
            return 95.0
        if extension >= 1.25:
            return 80.0
        if extension >= MIN_DAY_MOVE_PCT:
            return 60.0
        return 20.0
    return evaluate


def _day_extreme(direction: Direction):
    """Price pressing the day's low (long) or high (short)."""
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        if price is None:
            return 0.0
        level = snapshot.price.low if direction == Direction.LONG else snapshot.price.high
        d = pct_distance(price, level)
        if d is None:
            return 40.0
        d = abs(d)
        if d <= 0.15:
            return 90.0
        if d <= 0.4:
            return 70.0
        return 35.0
    return evaluate


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=frozenset({AssetClass.INDEX, AssetClass.EQUITY_ETF}),
        detect_fn=_detect(direction),
        score_factors=(
            ScoreFactor("exhaustion", 0.30, _exhaustion(direction)),
            ScoreFactor("day_extension", 0.25, _day_extension(direction)),
            ScoreFactor("day_extreme", 0.20, _day_extreme(direction)),
            ScoreFactor("flow", 0.15, lambda s, c=None: flow_alignment_score(s, direction)),
            ScoreFactor("session_timing", 0.10, lambda s, c=None: 90.0 if (s.session.minutes_to_close or 0) >= 15 else 50.0),
        ),
        ideal_timeframe="5m",
    )


def build_reversal_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "power_hour_reversal_bullish"),
        _build(Direction.SHORT, "power_hour_reversal_bearish"),
    ]
