"""Style score modifiers — scalp / day-trade / swing fit of the current context.

Each style multiplier starts at 1.0. Every contributing context factor adds
its table delta (table value minus 1.0) to the style's multiplier; the sum
is clamped to [0.5, 1.5]. After hours every multiplier is capped near the
floor; on weekends only scalp and day trade are, so swing setups survive.
Each contribution is recorded as a reason string so the recommended style
can be explained after the fact.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from confluence_scanner.contracts import STYLE_ORDER, FeatureSnapshot, TradingStyle
from confluence_scanner.features.regime import MarketRegime, parse_market_regime
from confluence_scanner.features.session import TimeWindow, get_time_of_day_window
from confluence_scanner.signals.detectors import _valid, clamp, current_price, pct_distance, relative_volume, rsi14

MIN_MODIFIER = 0.5
MAX_MODIFIER = 1.5
NON_REGULAR_CAP = 0.6
KEY_LEVEL_PCT = 0.25
WEEKEND_CAPPED_STYLES = (TradingStyle.SCALP, TradingStyle.DAY_TRADE)

# (scalp, day_trade, swing) factors per table row
Factors = tuple[float, float, float]

TIME_OF_DAY_FACTORS: dict[TimeWindow, Factors] = {
    TimeWindow.PRE_MARKET: (0.60, 0.70, 0.90),
    TimeWindow.OPENING_DRIVE: (1.35, 1.15, 0.75),
    TimeWindow.MID_MORNING: (1.10, 1.15, 1.00),
    TimeWindow.LATE_MORNING: (1.00, 1.10, 1.05),
    TimeWindow.LUNCH_CHOP: (0.55, 0.75, 1.00),
    TimeWindow.EARLY_AFTERNOON: (0.85, 1.00, 1.05),
    TimeWindow.AFTERNOON: (0.95, 1.10, 1.00),
    TimeWindow.POWER_HOUR: (1.25, 1.20, 0.85),
    TimeWindow.AFTER_HOURS: (0.50, 0.60, 0.90),
    TimeWindow.WEEKEND: (0.40, 0.50, 1.20),
}

# ATR as percent of price
ATR_PCT_FACTORS: dict[str, Factors] = {
    "very_high": (0.70, 1.05, 1.25),  # > 2.5%
    "high": (0.90, 1.10, 1.15),       # > 1.5%
    "very_low": (1.15, 0.85, 0.65),   # < 0.5%
    "low": (1.10, 0.95, 0.80),        # < 1.0%
}

VOLUME_FACTORS: dict[str, Factors] = {
    "spike": (1.30, 1.15, 1.00),     # rvol >= 1.5
    "very_low": (0.60, 0.75, 0.95),  # rvol < 0.5
    "low": (0.80, 0.90, 0.98),       # rvol < 0.75
}

KEY_LEVEL_FACTORS: Factors = (1.25, 1.15, 1.10)
RSI_EXTREME_FACTORS: Factors = (0.85, 1.10, 1.25)

MTF_FACTORS: dict[str, Factors] = {
    "strong": (1.05, 1.15, 1.30),  # > 80
    "good": (1.00, 1.05, 1.10),    # > 60
    "weak": (1.00, 0.80, 0.60),    # < 40
}

REGIME_FACTORS: dict[MarketRegime, Factors] = {
    MarketRegime.TRENDING: (1.00, 1.15, 1.25),
    MarketRegime.RANGING: (1.10, 1.00, 0.85),
    MarketRegime.CHOPPY: (0.65, 0.75, 0.55),
    MarketRegime.VOLATILE: (0.85, 1.10, 1.20),
}

CLOSE_FACTORS: dict[str, Factors] = {
    "final_30": (1.10, 0.60, 1.00),
    "final_60": (1.00, 0.85, 1.00),
}

MTF_WEIGHTS = {"5m": 0.2, "15m": 0.3, "60m": 0.3, "240m": 0.2}


@dataclass
class StyleFactors:
    """Context extracted from the snapshot that drives the modifiers."""
    time_of_day: TimeWindow
    atr_pct: float | None
    rvol: float | None
    volume_spike: bool
    near_key_level: bool
    key_level: str | None
    rsi_extreme: bool
    mtf_alignment: float
    market_regime: MarketRegime | None
    minutes_to_close: float | None

    def to_dict(self) -> dict:
        return {
            "time_of_day": self.time_of_day.value,
            "atr_pct": round(self.atr_pct, 3) if self.atr_pct is not None else None,
            "rvol": round(self.rvol, 2) if self.rvol is not None else None,
            "volume_spike": self.volume_spike,
            "near_key_level": self.near_key_level,
            "key_level": self.key_level,
            "rsi_extreme": self.rsi_extreme,
            "mtf_alignment": round(self.mtf_alignment, 1),
            "market_regime": self.market_regime.value if self.market_regime else None,
            "minutes_to_close": self.minutes_to_close,
        }


@dataclass
class StyleModifiers:
    scalp: float
    day_trade: float
    swing: float
    factors: StyleFactors
    reasons: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    def for_style(self, style: TradingStyle) -> float:
        return {
            TradingStyle.SCALP: self.scalp,
            TradingStyle.DAY_TRADE: self.day_trade,
            TradingStyle.SWING: self.swing,
        }[style]

    def to_dict(self) -> dict:
        return {
            "scalp": self.scalp,
            "day_trade": self.day_trade,
            "swing": self.swing,
            "factors": self.factors.to_dict(),
            "reasons": self.reasons,
            "warnings": self.warnings,
        }


@dataclass
class StyleScores:
    scalp_score: float
    day_trade_score: float
    swing_score: float
    recommended_style: TradingStyle
    recommended_style_score: float
    modifiers: StyleModifiers | None = None

    def as_dict(self) -> dict[TradingStyle, float]:
        return {
            TradingStyle.SCALP: self.scalp_score,
            TradingStyle.DAY_TRADE: self.day_trade_score,
            TradingStyle.SWING: self.swing_score,
        }


def pick_recommended(scores: dict[TradingStyle, float]) -> tuple[TradingStyle, float]:
    """Argmax over styles; ties resolve scalp, then day_trade, then swing."""
    best = STYLE_ORDER[0]
    for style in STYLE_ORDER[1:]:
        if scores[style] > scores[best]:
            best = style
    return best, scores[best]


def build_style_scores(
    scalp: float,
    day_trade: float,
    swing: float,
    modifiers: StyleModifiers | None = None,
) -> StyleScores:
    scores = {
        TradingStyle.SCALP: clamp(scalp),
        TradingStyle.DAY_TRADE: clamp(day_trade),
        TradingStyle.SWING: clamp(swing),
    }
    style, best = pick_recommended(scores)
    return StyleScores(
        scalp_score=scores[TradingStyle.SCALP],
        day_trade_score=scores[TradingStyle.DAY_TRADE],
        swing_score=scores[TradingStyle.SWING],
        recommended_style=style,
        recommended_style_score=best,
        modifiers=modifiers,
    )


def calculate_mtf_alignment(snapshot: FeatureSnapshot) -> float:
    """Direction-agnostic 0-100 agreement of EMA stacks across timeframes."""
    if not snapshot.mtf:
        return 50.0
    score = 0.0
    seen = False
    for tf, weight in MTF_WEIGHTS.items():
        bundle = snapshot.mtf.get(tf)
        if bundle is None:
            continue
        close, e20, e50 = bundle.close, bundle.ema.get("20"), bundle.ema.get("50")
        if not (_valid(close) and _valid(e20) and _valid(e50)):
            continue
        seen = True
        stacked = close > e20 > e50 or close < e20 < e50
        score += weight * (100 if stacked else 50)
        rsi = bundle.rsi
        if _valid(rsi) and (55 <= rsi <= 70 or 30 <= rsi <= 45):
            score += weight * 20
    if not seen:
        return 50.0
    return min(100.0, score)


def _atr_pct(snapshot: FeatureSnapshot) -> float | None:
    price = current_price(snapshot)
    bundle = snapshot.mtf.get("5m")
    if price is None or bundle is None or not _valid(bundle.atr):
        return None
    return bundle.atr / price * 100


def _nearest_key_level(snapshot: FeatureSnapshot) -> str | None:
    price = current_price(snapshot)
    if price is None:
        return None
    pattern = snapshot.pattern
    candidates = (
        ("vwap", snapshot.vwap.value),
        ("orb_high", pattern.orb_high),
        ("orb_low", pattern.orb_low),
        ("swing_high", pattern.swing_high),
        ("swing_low", pattern.swing_low),
    )
    for name, level in candidates:
        d = pct_distance(price, level)
        if d is not None and abs(d) <= KEY_LEVEL_PCT:
            return name
    return None


def extract_style_factors(snapshot: FeatureSnapshot) -> StyleFactors:
    rvol = relative_volume(snapshot)
    rsi = rsi14(snapshot)
    key_level = _nearest_key_level(snapshot)
    return StyleFactors(
        time_of_day=get_time_of_day_window(snapshot),
        atr_pct=_atr_pct(snapshot),
        rvol=rvol,
        volume_spike=_valid(rvol) and rvol >= 1.5,
        near_key_level=key_level is not None,
        key_level=key_level,
        rsi_extreme=rsi is not None and (rsi < 30 or rsi > 70),
        mtf_alignment=calculate_mtf_alignment(snapshot),
        market_regime=parse_market_regime(snapshot.market_regime),
        minutes_to_close=snapshot.session.minutes_to_close,
    )


class _Accumulator:
    def __init__(self) -> None:
        self.values = {style: 1.0 for style in STYLE_ORDER}
        self.reasons: dict[str, list[str]] = {style.value: [] for style in STYLE_ORDER}

    def add(self, factors: Factors, label: str) -> None:
        for style, factor in zip(STYLE_ORDER, factors):
            delta = factor - 1.0
            if delta == 0:
                continue
            self.values[style] += delta
            sign = "+" if delta > 0 else ""
            self.reasons[style.value].append(f"{label} ({sign}{delta * 100:.0f}%)")


def calculate_style_modifiers(snapshot: FeatureSnapshot) -> StyleModifiers:
    factors = extract_style_factors(snapshot)
    acc = _Accumulator()
    warnings: list[str] = []

    acc.add(TIME_OF_DAY_FACTORS[factors.time_of_day], factors.time_of_day.value.replace("_", " "))

    atr_pct = factors.atr_pct
    if atr_pct is not None:
        if atr_pct > 2.5:
            acc.add(ATR_PCT_FACTORS["very_high"], f"very high ATR {atr_pct:.1f}%")
        elif atr_pct > 1.5:
            acc.add(ATR_PCT_FACTORS["high"], f"high ATR {atr_pct:.1f}%")
        elif atr_pct < 0.5:
            acc.add(ATR_PCT_FACTORS["very_low"], f"very low ATR {atr_pct:.2f}%")
        elif atr_pct < 1.0:
            acc.add(ATR_PCT_FACTORS["low"], f"low ATR {atr_pct:.2f}%")

    rvol = factors.rvol
    if factors.volume_spike:
        acc.add(VOLUME_FACTORS["spike"], f"volume spike {rvol:.1f}x")
    elif _valid(rvol) and rvol < 0.5:
        acc.add(VOLUME_FACTORS["very_low"], f"very low volume {rvol:.2f}x")
        warnings.append("Very low relative volume")
    elif _valid(rvol) and rvol < 0.75:
        acc.add(VOLUME_FACTORS["low"], f"low volume {rvol:.2f}x")

    if factors.near_key_level:
        acc.add(KEY_LEVEL_FACTORS, f"near {factors.key_level}")

    if factors.rsi_extreme:
        acc.add(RSI_EXTREME_FACTORS, "RSI extreme")

    mtf = factors.mtf_alignment
    if mtf > 80:
        acc.add(MTF_FACTORS["strong"], f"strong MTF alignment {mtf:.0f}")
    elif mtf > 60:
        acc.add(MTF_FACTORS["good"], f"good MTF alignment {mtf:.0f}")
    elif mtf < 40:
        acc.add(MTF_FACTORS["weak"], f"weak MTF alignment {mtf:.0f}")

    if factors.market_regime is not None:
        acc.add(REGIME_FACTORS[factors.market_regime], f"{factors.market_regime.value} regime")
        if factors.market_regime == MarketRegime.CHOPPY:
            warnings.append("Choppy regime, all styles penalized")

    minutes_to_close = factors.minutes_to_close
    if factors.time_of_day not in (TimeWindow.WEEKEND, TimeWindow.AFTER_HOURS, TimeWindow.PRE_MARKET) \
            and _valid(minutes_to_close):
        if minutes_to_close < 30:
            acc.add(CLOSE_FACTORS["final_30"], "final 30 minutes")
            warnings.append("Less than 30 minutes to close")
        elif minutes_to_close < 60:
            acc.add(CLOSE_FACTORS["final_60"], "final hour")

    values = {style: clamp(v, MIN_MODIFIER, MAX_MODIFIER) for style, v in acc.values.items()}

    if factors.time_of_day == TimeWindow.AFTER_HOURS:
        values = {style: min(v, NON_REGULAR_CAP) for style, v in values.items()}
        warnings.append(f"after hours: modifiers capped at {NON_REGULAR_CAP}")
    elif factors.time_of_day == TimeWindow.WEEKEND:
        # swing keeps its table factor so weekend swing setups can be planned
        for style in WEEKEND_CAPPED_STYLES:
            values[style] = min(values[style], NON_REGULAR_CAP)
        warnings.append(f"weekend: scalp and day trade modifiers capped at {NON_REGULAR_CAP}")

    return StyleModifiers(
        scalp=round(values[TradingStyle.SCALP], 4),
        day_trade=round(values[TradingStyle.DAY_TRADE], 4),
        swing=round(values[TradingStyle.SWING], 4),
        factors=factors,
        reasons=acc.reasons,
        warnings=warnings,
    )


def apply_style_modifiers(
    base_score: float,
    snapshot: FeatureSnapshot,
    modifiers: StyleModifiers | None = None,
) -> StyleScores:
    """Style scores are base * multiplier, each capped to 0-100."""
    mods = modifiers or calculate_style_modifiers(snapshot)
    return build_style_scores(
        base_score * mods.scalp,
        base_score * mods.day_trade,
        base_score * mods.swing,
        modifiers=mods,
    )
