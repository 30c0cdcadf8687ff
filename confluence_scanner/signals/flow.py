"""Institutional flow alert detectors — flow only, no technical confirmation.

Fires on strong institutional options flow alone. Every gate must hold:
  - signed flow score of at least 80 in the trade direction
  - at least 5 sweeps
  - directional pressure of 70%+ (buy pressure for longs, sell for shorts)
  - large trades at 40%+ of flow
  - aggressive or very aggressive execution, with a matching flow bias

Higher risk than the technical families; expect 1-3 alerts a day.
"""

from __future__ import annotations

from confluence_scanner.contracts import Direction, FeatureSnapshot
from confluence_scanner.signals.detectors import ALL_ASSET_CLASSES, Detector, ScoreFactor, _valid

MIN_FLOW_SCORE = 80.0
MIN_SWEEPS = 5
MIN_PRESSURE = 70.0
MIN_LARGE_TRADE_PCT = 40.0
AGGRESSIVE = frozenset({"aggressive", "very_aggressive"})


def _norm(value: str | None) -> str:
    return (value or "").strip().lower().replace("-", "_").replace(" ", "_")


def _directional_score(snapshot: FeatureSnapshot, direction: Direction) -> float | None:
    flow = snapshot.flow
    if flow is None or not _valid(flow.flow_score):
        return None
    score = float(flow.flow_score)
    return score if direction == Direction.LONG else -score


def _pressure(snapshot: FeatureSnapshot, direction: Direction) -> float | None:
    """Buy pressure for longs, sell pressure (100 - buy) for shorts."""
    flow = snapshot.flow
    if flow is None or not _valid(flow.buy_pressure):
        return None
    buy = float(flow.buy_pressure)
    return buy if direction == Direction.LONG else 100.0 - buy


def _detect(direction: Direction):
    want = "bullish" if direction == Direction.LONG else "bearish"

    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        flow = snapshot.flow
        if flow is None or snapshot.session.is_regular_hours is False:
            return False
        score = _directional_score(snapshot, direction)
        if score is None or score < MIN_FLOW_SCORE:
            return False
        if (flow.sweep_count or 0) < MIN_SWEEPS:
            return False
        pressure = _pressure(snapshot, direction)
        if pressure is None or pressure < MIN_PRESSURE:
            return False
        if not _valid(flow.large_trade_pct) or flow.large_trade_pct < MIN_LARGE_TRADE_PCT:
            return False
        if _norm(flow.aggressiveness) not in AGGRESSIVE:
            return False
        return _norm(flow.flow_bias) == want
    return detect


def _institutional_score(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        score = _directional_score(snapshot, direction)
        if score is None:
            return 0.0
        if score >= 95:
            return 100.0
        if score >= 90:
            return 95.0
        if score >= 85:
            return 90.0
        if score >= MIN_FLOW_SCORE:
            return 85.0
        return max(0.0, score)
    return evaluate


def _sweep_intensity(snapshot: FeatureSnapshot, chain=None) -> float:
    sweeps = snapshot.flow.sweep_count if snapshot.flow else None
    if not sweeps:
        return 0.0
    if sweeps >= 10:
        return 100.0
    if sweeps >= 8:
        return 95.0
    if sweeps >= 6:
        return 90.0
    if sweeps >= MIN_SWEEPS:
        return 85.0
    return 0.0


def _pressure_score(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        pressure = _pressure(snapshot, direction)
        if pressure is None:
            return 0.0
        if pressure >= 85:
            return 100.0
        if pressure >= 80:
            return 95.0
        if pressure >= 75:
            return 90.0
        if pressure >= MIN_PRESSURE:
            return 85.0
        return 0.0
    return evaluate


def _large_trades(snapshot: FeatureSnapshot, chain=None) -> float:
    pct = snapshot.flow.large_trade_pct if snapshot.flow else None
    if not _valid(pct):
        return 0.0
    if pct >= 60:
        return 100.0
    if pct >= 50:
        return 90.0
    if pct >= MIN_LARGE_TRADE_PCT:
        return 80.0
    return 0.0


def _aggressiveness(snapshot: FeatureSnapshot, chain=None) -> float:
    level = _norm(snapshot.flow.aggressiveness if snapshot.flow else None)
    if level == "very_aggressive":
        return 100.0
    if level == "aggressive":
        return 90.0
    return 50.0


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect(direction),
        score_factors=(
            ScoreFactor("institutional_score", 0.35, _institutional_score(direction)),
            ScoreFactor("sweep_intensity", 0.25, _sweep_intensity),
            ScoreFactor("pressure", 0.20, _pressure_score(direction)),
            ScoreFactor("large_trades", 0.15, _large_trades),
            ScoreFactor("aggressiveness", 0.05, _aggressiveness),
        ),
        ideal_timeframe="1m",
    )


def build_flow_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "institutional_flow_bullish"),
        _build(Direction.SHORT, "institutional_flow_bearish"),
    ]
