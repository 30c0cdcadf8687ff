"""Risk/reward levels from ATR and the trading-style risk profile."""

from __future__ import annotations

from dataclasses import dataclass

from confluence_scanner.contracts import Direction, FeatureSnapshot, TradingStyle
from confluence_scanner.signals.detectors import _valid


@dataclass(frozen=True)
class StyleProfile:
    name: TradingStyle
    primary_timeframe: str
    stop_atr_multiplier: float
    target_atr_multipliers: tuple[float, float, float]
    min_risk_reward: float
    atr_floor_pct: float = 0.0005  # ATR never below 0.05% of price

    def __post_init__(self) -> None:
        if self.stop_atr_multiplier <= 0:
            raise ValueError(f"{self.name}: stop_atr_multiplier must be positive")
        if len(self.target_atr_multipliers) != 3:
            raise ValueError(f"{self.name}: exactly three target multipliers required")
        t1, t2, t3 = self.target_atr_multipliers
        if not 0 < t1 <= t2 <= t3:
            raise ValueError(f"{self.name}: target multipliers must be positive and ascending")
        if self.atr_floor_pct <= 0:
            raise ValueError(f"{self.name}: atr_floor_pct must be positive")


STYLE_PROFILES: dict[TradingStyle, StyleProfile] = {
    TradingStyle.SCALP: StyleProfile(TradingStyle.SCALP, "5m", 0.75, (1.0, 1.5, 2.0), 1.5),
    TradingStyle.DAY_TRADE: StyleProfile(TradingStyle.DAY_TRADE, "15m", 1.0, (1.5, 2.5, 3.5), 1.8),
    TradingStyle.SWING: StyleProfile(TradingStyle.SWING, "60m", 1.5, (2.0, 3.0, 4.0), 2.0),
}


@dataclass
class RiskReward:
    entry: float
    stop: float
    t1: float
    t2: float
    t3: float
    atr: float
    risk_amount: float
    reward_potential: float
    ratio: float

    def to_dict(self) -> dict:
        return {
            "entry": round(self.entry, 4),
            "stop": round(self.stop, 4),
            "targets": [round(self.t1, 4), round(self.t2, 4), round(self.t3, 4)],
            "atr": round(self.atr, 4),
            "risk_reward": round(self.ratio, 2),
        }


def get_profile(style: TradingStyle | str) -> StyleProfile:
    return STYLE_PROFILES[TradingStyle(style)]


def resolve_atr(snapshot: FeatureSnapshot, profile: StyleProfile) -> float:
    """Primary-timeframe ATR, else 5m ATR, else 1% of price; floored per profile."""
    price = float(snapshot.price.current or 0.0)
    atr = None
    for tf in (profile.primary_timeframe, "5m"):
        bundle = snapshot.mtf.get(tf)
        if bundle is not None and _valid(bundle.atr) and bundle.atr > 0:
            atr = float(bundle.atr)
            break
    if atr is None:
        atr = price * 0.01
    return max(atr, price * profile.atr_floor_pct)


def calculate_risk_reward(
    direction: Direction,
    entry: float,
    atr: float,
    profile: StyleProfile,
) -> RiskReward:
    """Stop at entry -/+ ATR*stop_mult, targets at entry +/- ATR*target_mult.

    Risk/reward is measured against the second target.
    """
    if entry <= 0:
        raise ValueError(f"entry must be positive, got {entry}")
    atr = max(atr, entry * profile.atr_floor_pct)
    sign = 1.0 if Direction(direction) == Direction.LONG else -1.0
    stop = entry - sign * atr * profile.stop_atr_multiplier
    t1, t2, t3 = (entry + sign * atr * m for m in profile.target_atr_multipliers)
    risk_amount = abs(entry - stop)
    reward_potential = abs(t2 - entry)
    return RiskReward(
        entry=entry,
        stop=stop,
        t1=t1,
        t2=t2,
        t3=t3,
        atr=atr,
        risk_amount=risk_amount,
        reward_potential=reward_potential,
        ratio=reward_potential / risk_amount,
    )


def risk_reward_for_snapshot(
    direction: Direction,
    snapshot: FeatureSnapshot,
    style: TradingStyle,
) -> RiskReward:
    profile = get_profile(style)
    entry = float(snapshot.price.current or 0.0)
    return calculate_risk_reward(direction, entry, resolve_atr(snapshot, profile), profile)
