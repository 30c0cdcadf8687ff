"""Level-trend-patience (LTP) detectors: EMA bounce and VWAP standard.

Both families wait for price to come back to a level inside an established
trend and score the level stack (L), trend strength (T) and patience
candle (P), plus volume and session timing.

The trend read works from the snapshot alone: fast EMA over EMA21, ORB and
premarket breaks, and how many intraday timeframes have RSI on the same
side of 50 +/- 10. No trend, no trade.
"""

from __future__ import annotations

from dataclasses import dataclass

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

MIN_TREND_STRENGTH = 60.0
EMA_ZONE_PCT = 0.5
VWAP_LONG_ZONE_PCT = 0.7
VWAP_SHORT_ZONE_PCT = 0.5
VWAP_MIN_MINUTES = 30  # VWAP plays start at 10:00 ET
_TREND_TIMEFRAMES = ("1m", "5m", "15m", "60m")


@dataclass
class LtpTrend:
    direction: Direction | None  # None = chop
    strength: float
    orb_break: Direction | None
    premarket_break: Direction | None
    votes_up: int
    votes_down: int

    def tradeable(self, direction: Direction) -> bool:
        return self.direction == direction and self.strength >= MIN_TREND_STRENGTH


def fast_ema(snapshot: FeatureSnapshot) -> float | None:
    """EMA8, falling back to EMA9."""
    value = ema(snapshot, 8)
    return value if value is not None else ema(snapshot, 9)


def _level_break(price: float, high: float | None, low: float | None) -> Direction | None:
    if _valid(high) and price > high:
        return Direction.LONG
    if _valid(low) and price < low:
        return Direction.SHORT
    return None


def ltp_trend(snapshot: FeatureSnapshot) -> LtpTrend:
    price = current_price(snapshot)
    fast, e21, e50 = fast_ema(snapshot), ema(snapshot, 21), ema(snapshot, 50)
    if price is None or fast is None or e21 is None:
        return LtpTrend(None, 0.0, None, None, 0, 0)

    pattern = snapshot.pattern
    orb = _level_break(price, pattern.orb_high, pattern.orb_low)
    premarket = _level_break(price, pattern.premarket_high, pattern.premarket_low)

    up = down = 0
    for tf in _TREND_TIMEFRAMES:
        bundle = snapshot.mtf.get(tf)
        if bundle is None or not _valid(bundle.rsi):
            continue
        if bundle.rsi > 60:
            up += 1
        elif bundle.rsi < 40:
            down += 1

    direction = None
    if fast > e21 and (Direction.LONG in (orb, premarket) or up >= 2):
        direction = Direction.LONG
    elif fast < e21 and (Direction.SHORT in (orb, premarket) or down >= 2):
        direction = Direction.SHORT
    if direction is None:
        return LtpTrend(None, 0.0, orb, premarket, up, down)

    votes, against = (up, down) if direction == Direction.LONG else (down, up)
    strength = 50.0
    if e50 is not None and ((e21 > e50) if direction == Direction.LONG else (e21 < e50)):
        strength += 15
    if orb == direction:
        strength += 10
    if premarket == direction:
        strength += 5
    strength += min(20, votes * 5) - against * 5
    return LtpTrend(direction, max(0.0, min(100.0, strength)), orb, premarket, up, down)


def _near(price: float, level: float | None, pct: float) -> bool:
    distance = pct_distance(price, level)
    return distance is not None and abs(distance) <= pct


def _trend_strength(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        trend = ltp_trend(snapshot)
        return trend.strength if trend.tradeable(direction) else 0.0
    return evaluate


def _patience(snapshot: FeatureSnapshot, chain=None) -> float:
    return 80.0 if snapshot.pattern.patience_candle else 0.0


# ---------------------------------------------------------------------------
# EMA bounce
# ---------------------------------------------------------------------------

def _pulled_back_to_ema(snapshot: FeatureSnapshot, direction: Direction) -> bool:
    price, fast = current_price(snapshot), fast_ema(snapshot)
    high, low = snapshot.price.high, snapshot.price.low
    if direction == Direction.LONG:
        return _valid(high) and high > fast and price <= fast * 1.003
    return _valid(low) and low < fast and price >= fast * 0.997


def _detect_ema_bounce(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        price, fast = current_price(snapshot), fast_ema(snapshot)
        if price is None or fast is None or snapshot.session.is_regular_hours is False:
            return False
        if not ltp_trend(snapshot).tradeable(direction):
            return False
        if not _near(price, fast, EMA_ZONE_PCT):
            return False
        return _pulled_back_to_ema(snapshot, direction) or snapshot.pattern.patience_candle is True
    return detect


def _ema_level_confluence(snapshot: FeatureSnapshot, chain=None) -> float:
    price = current_price(snapshot)
    fast, e21 = fast_ema(snapshot), ema(snapshot, 21)
    if price is None:
        return 0.0
    score = 0.0
    if _near(price, fast, 0.5):
        score += 40
    # fast and slow EMAs bunched together = strong trend zone
    if fast is not None and e21 is not None and abs(fast - e21) / price * 100 < 0.5:
        score += 20
    if _near(price, snapshot.vwap.value, 0.5):
        score += 30
    if _near(price, snapshot.pattern.orb_high, 0.3) or _near(price, snapshot.pattern.orb_low, 0.3):
        score += 15
    return min(100.0, score)


def _bounce_volume(snapshot: FeatureSnapshot, chain=None) -> float:
    rvol = relative_volume(snapshot)
    rvol = 1.0 if rvol is None else rvol
    if 0.8 <= rvol <= 1.5:
        return 80.0
    if 1.5 < rvol < 2.5:
        return 90.0
    if rvol >= 2.5:
        return 70.0  # climactic
    return 50.0


def _bounce_timing(snapshot: FeatureSnapshot, chain=None) -> float:
    minutes = snapshot.session.minutes_since_open or 0
    if minutes < 30:
        return 50.0
    if minutes <= 90:
        return 100.0
    if minutes <= 210:
        return 80.0
    if minutes <= 330:
        return 70.0
    return 30.0


def _ema_stack(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain=None) -> float:
        price = current_price(snapshot)
        fast, e21, e50 = fast_ema(snapshot), ema(snapshot, 21), ema(snapshot, 50)
        if price is None or fast is None or e21 is None:
            return 50.0
        score = 50.0
        if direction == Direction.LONG and price > fast > e21:
            score += 25
            if e50 is not None and e21 > e50:
                score += 15
        elif direction == Direction.SHORT and price < fast < e21:
            score += 25
            if e50 is not None and e21 < e50:
                score += 15
        rsi = rsi14(snapshot)
        rsi = 50.0 if rsi is None else rsi
        low, high = (40, 70) if direction == Direction.LONG else (30, 60)
        if low < rsi < high:
            score += 10
        return min(100.0, score)
    return evaluate


def _build_ema_bounce(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect_ema_bounce(direction),
        score_factors=(
            ScoreFactor("level_confluence", 0.25, _ema_level_confluence),
            ScoreFactor("trend_strength", 0.25, _trend_strength(direction)),
            ScoreFactor("patience_candle", 0.25, _patience),
            ScoreFactor("volume", 0.10, _bounce_volume),
            ScoreFactor("session_timing", 0.05, _bounce_timing),
            ScoreFactor("mtf_alignment", 0.10, _ema_stack(direction)),
        ),
        ideal_timeframe="5m",
    )


# ---------------------------------------------------------------------------
# VWAP standard
# ---------------------------------------------------------------------------

def _approaching_vwap(snapshot: FeatureSnapshot, direction: Direction) -> bool:
    price, vwap = current_price(snapshot), snapshot.vwap.value
    high, low = snapshot.price.high, snapshot.price.low
    if direction == Direction.LONG:
        return _valid(low) and low < vwap and price >= vwap * 0.997
    return _valid(high) and high > vwap and price <= vwap * 1.003


def _detect_vwap(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain=None) -> bool:
        price, vwap = current_price(snapshot), snapshot.vwap.value
        if price is None or not _valid(vwap) or vwap <= 0:
            return False
        if snapshot.session.is_regular_hours is False:
            return False
        if (snapshot.session.minutes_since_open or 0) < VWAP_MIN_MINUTES:
            return False
        trend = ltp_trend(snapshot)
        patience = snapshot.pattern.patience_candle is True
        if direction == Direction.LONG:
            # chop is fine for longs; only a downtrend rules them out
            if trend.direction == Direction.SHORT or not _near(price, vwap, VWAP_LONG_ZONE_PCT):
                return False
            return _approaching_vwap(snapshot, direction) or patience or price >= vwap * 0.998
        if not trend.tradeable(Direction.SHORT) or not _near(price, vwap, VWAP_SHORT_ZONE_PCT):
            return False
        return _approaching_vwap(snapshot, direction) or patience
    return detect


def _vwap_level_confluence(snapshot: FeatureSnapshot, chain=None) -> float:
    price = current_price(snapshot)
    if price is None:
        return 0.0
    vwap = snapshot.vwap.value
    score = 0.0
    if _near(price, vwap, 0.2):
        score += 60
    elif _near(price, vwap, 0.5):
        score += 45
    elif _near(price, vwap, 0.7):
        score += 30
    if _near(price, fast_ema(snapshot), 0.5):
        score += 20
    if _near(price, ema(snapshot, 21), 0.5):
        score += 15
    if _near(price, snapshot.pattern.orb_high, 0.3):
        score += 15
    if _near(price, snapshot.pattern.orb_low, 0.3):
        score += 15
    return min(100.0, score)


def _vwap_volume(snapshot: FeatureSnapshot, chain=None) -> float:
    rvol = relative_volume(snapshot)
    rvol = 1.0 if rvol is None else rvol
    if 0.8 <= rvol <= 2.0:
        return 85.0
    if rvol > 2.0:
        return 70.0
    return 50.0


def _vwap_timing(snapshot: FeatureSnapshot, chain=None) -> float:
    minutes = snapshot.session.minutes_since_open or 0
    if minutes < VWAP_MIN_MINUTES:
        return 20.0
    if minutes <= 180:
        return 100.0
    if minutes <= 300:
        return 80.0
    return 40.0


def _build_vwap(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=ALL_ASSET_CLASSES,
        detect_fn=_detect_vwap(direction),
        score_factors=(
            ScoreFactor("level_confluence", 0.30, _vwap_level_confluence),
            ScoreFactor("trend_strength", 0.25, _trend_strength(direction)),
            ScoreFactor("patience_candle", 0.25, _patience),
            ScoreFactor("volume", 0.10, _vwap_volume),
            ScoreFactor("session_timing", 0.10, _vwap_timing),
        ),
        ideal_timeframe="5m",
    )


def build_kcu_detectors() -> list[Detector]:
    return [
        _build_ema_bounce(Direction.LONG, "kcu_ema_bounce_long"),
        _build_ema_bounce(Direction.SHORT, "kcu_ema_bounce_short"),
        _build_vwap(Direction.LONG, "kcu_vwap_standard_long"),
        _build_vwap(Direction.SHORT, "kcu_vwap_standard_short"),
    ]
