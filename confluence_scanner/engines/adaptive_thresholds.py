"""Deterministic adaptive thresholds by time of day, VIX level, and regime.

Three layers:
1. Time-of-day window sets baseline minimums and a position-size multiplier.
2. VIX level shifts the minimums additively and scales size.
3. Regime x strategy-category table raises floors and can disable a
   category outright (e.g. breakouts in a choppy tape).

Weekend evaluation short-circuits to a fixed conservative profile with a
zero size multiplier: weekend output is informational only. Pre-market and
after-hours keep their window minimums but are never sized either.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from confluence_scanner.contracts import FeatureSnapshot
from confluence_scanner.features.regime import MarketRegime, VixLevel, resolve_market_regime, resolve_vix_level
from confluence_scanner.features.session import NON_REGULAR_WINDOWS, TimeWindow, get_time_of_day_window

logger = logging.getLogger(__name__)

DISABLED_CATEGORY_PENALTY = 10
HIGH_BAR_WARNING = 85
LOW_SIZE_WARNING = 0.5


class StrategyCategory(str, Enum):
    BREAKOUT = "breakout"
    MEAN_REVERSION = "mean_reversion"
    TREND_CONTINUATION = "trend_continuation"
    GAMMA = "gamma"
    REVERSAL = "reversal"


@dataclass(frozen=True)
class WindowThresholds:
    min_base: float
    min_style: float
    min_rr: float
    size: float


@dataclass(frozen=True)
class VixAdjustment:
    base: float
    style: float
    rr: float
    size: float


@dataclass(frozen=True)
class RegimeRule:
    min_base: float
    min_rr: float
    enabled: bool
    notes: str = ""


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

TIME_WINDOW_THRESHOLDS: dict[TimeWindow, WindowThresholds] = {
    TimeWindow.PRE_MARKET: WindowThresholds(80, 82, 2.0, 0.5),
    TimeWindow.OPENING_DRIVE: WindowThresholds(65, 70, 1.2, 1.0),
    TimeWindow.MID_MORNING: WindowThresholds(72, 75, 1.5, 1.0),
    TimeWindow.LATE_MORNING: WindowThresholds(75, 78, 1.6, 0.9),
    TimeWindow.LUNCH_CHOP: WindowThresholds(85, 88, 2.2, 0.6),
    TimeWindow.EARLY_AFTERNOON: WindowThresholds(72, 75, 1.5, 0.9),
    TimeWindow.AFTERNOON: WindowThresholds(70, 73, 1.4, 1.0),
    TimeWindow.POWER_HOUR: WindowThresholds(68, 72, 1.3, 1.1),
    TimeWindow.AFTER_HOURS: WindowThresholds(85, 88, 2.5, 0.3),
}

WEEKEND_THRESHOLDS = WindowThresholds(60, 65, 1.3, 0.0)

VIX_ADJUSTMENTS: dict[VixLevel, VixAdjustment] = {
    VixLevel.LOW: VixAdjustment(-5, -3, -0.2, 1.2),
    VixLevel.MEDIUM: VixAdjustment(0, 0, 0.0, 1.0),
    VixLevel.HIGH: VixAdjustment(5, 5, 0.3, 0.7),
    VixLevel.EXTREME: VixAdjustment(15, 12, 0.7, 0.4),
}

_B, _MR, _TC, _G, _R = (
    StrategyCategory.BREAKOUT,
    StrategyCategory.MEAN_REVERSION,
    StrategyCategory.TREND_CONTINUATION,
    StrategyCategory.GAMMA,
    StrategyCategory.REVERSAL,
)

REGIME_CATEGORY_RULES: dict[MarketRegime, dict[StrategyCategory, RegimeRule]] = {
    MarketRegime.TRENDING: {
        _B: RegimeRule(65, 1.3, True, "Breakouts follow through in trends"),
        _MR: RegimeRule(85, 2.0, False, "Fading a trend is low probability"),
        _TC: RegimeRule(60, 1.2, True, "Pullbacks in trend are the core setup"),
        _G: RegimeRule(70, 1.5, True),
        _R: RegimeRule(88, 2.2, False, "Reversals against trend rarely hold"),
    },
    MarketRegime.RANGING: {
        _B: RegimeRule(85, 2.0, False, "Range edges reject breakouts"),
        _MR: RegimeRule(65, 1.3, True, "Fades work inside a range"),
        _TC: RegimeRule(80, 1.8, False, "No trend to continue"),
        _G: RegimeRule(72, 1.5, True),
        _R: RegimeRule(70, 1.4, True),
    },
    MarketRegime.CHOPPY: {
        _B: RegimeRule(92, 2.5, False, "Breakouts fail in chop"),
        _MR: RegimeRule(78, 1.5, True),
        _TC: RegimeRule(88, 2.2, False, "Trend signals whipsaw in chop"),
        _G: RegimeRule(82, 1.8, True),
        _R: RegimeRule(75, 1.5, True),
    },
    MarketRegime.VOLATILE: {
        _B: RegimeRule(85, 2.0, True),
        _MR: RegimeRule(80, 1.8, True),
        _TC: RegimeRule(82, 2.0, True),
        _G: RegimeRule(78, 1.6, True),
        _R: RegimeRule(72, 1.4, True),
    },
}


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------

@dataclass
class AdaptiveThresholds:
    min_base_score: int
    min_style_score: int
    min_risk_reward: float
    size_multiplier: float
    strategy_enabled: bool
    category: StrategyCategory
    time_window: TimeWindow
    vix_level: VixLevel
    market_regime: MarketRegime
    breakdown: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "min_base_score": self.min_base_score,
            "min_style_score": self.min_style_score,
            "min_risk_reward": self.min_risk_reward,
            "size_multiplier": self.size_multiplier,
            "strategy_enabled": self.strategy_enabled,
            "category": self.category.value,
            "time_window": self.time_window.value,
            "vix_level": self.vix_level.value,
            "market_regime": self.market_regime.value,
            "breakdown": self.breakdown,
            "warnings": self.warnings,
            "reason": self.reason,
        }


def _norm_type(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def categorize_opportunity(opportunity_type: str) -> StrategyCategory:
    key = _norm_type(opportunity_type)
    if "breakout" in key or "institutional_flow" in key:
        return StrategyCategory.BREAKOUT
    if "mean_reversion" in key or "reversion" in key:
        return StrategyCategory.MEAN_REVERSION
    if "continuation" in key or "ema_bounce" in key or "vwap_standard" in key:
        return StrategyCategory.TREND_CONTINUATION
    if "gamma" in key:
        return StrategyCategory.GAMMA
    if "reversal" in key or "power_hour" in key:
        return StrategyCategory.REVERSAL
    return StrategyCategory.BREAKOUT


def calculate_adaptive_thresholds(
    time_window: TimeWindow,
    vix_level: VixLevel,
    market_regime: MarketRegime,
    opportunity_type: str,
) -> AdaptiveThresholds:
    """Combine the three layers into one set of minimums plus a breakdown."""
    category = categorize_opportunity(opportunity_type)
    rule = REGIME_CATEGORY_RULES[market_regime][category]
    vix = VIX_ADJUSTMENTS[vix_level]

    if time_window == TimeWindow.WEEKEND:
        window = WEEKEND_THRESHOLDS
        vix_applied = VixAdjustment(0, 0, 0.0, 1.0)
    else:
        window = TIME_WINDOW_THRESHOLDS[time_window]
        vix_applied = vix

    time_vix_base = window.min_base + vix_applied.base
    time_vix_style = window.min_style + vix_applied.style
    time_vix_rr = window.min_rr + vix_applied.rr
    regime_base = rule.min_base + (0 if rule.enabled else DISABLED_CATEGORY_PENALTY)

    min_base = max(time_vix_base, regime_base)
    min_style = time_vix_style
    min_rr = max(time_vix_rr, rule.min_rr)
    size = window.size * vix_applied.size
    if time_window in NON_REGULAR_WINDOWS:
        size = 0.0

    warnings: list[str] = []
    reason = None
    if not rule.enabled:
        reason = f"Strategy disabled in {market_regime.value} regime: {rule.notes or category.value}"
        warnings.append(reason)
    if min_base > HIGH_BAR_WARNING:
        warnings.append(f"High score bar ({min_base:.0f}), few setups will qualify")
    if size < LOW_SIZE_WARNING:
        warnings.append(f"Reduced position size ({size:.2f}x)")

    breakdown = {
        "time_of_day": {
            "window": time_window.value,
            "min_base": window.min_base,
            "min_style": window.min_style,
            "min_rr": window.min_rr,
            "size": window.size,
        },
        "vix": {
            "level": vix_level.value,
            "base_adj": vix_applied.base,
            "style_adj": vix_applied.style,
            "rr_adj": vix_applied.rr,
            "size_mult": vix_applied.size,
        },
        "regime": {
            "regime": market_regime.value,
            "category": category.value,
            "min_base": rule.min_base,
            "min_rr": rule.min_rr,
            "enabled": rule.enabled,
            "notes": rule.notes,
        },
    }

    return AdaptiveThresholds(
        min_base_score=int(round(min_base)),
        min_style_score=int(round(min_style)),
        min_risk_reward=round(min_rr, 1),
        size_multiplier=round(size, 2),
        strategy_enabled=rule.enabled,
        category=category,
        time_window=time_window,
        vix_level=vix_level,
        market_regime=market_regime,
        breakdown=breakdown,
        warnings=warnings,
        reason=reason,
    )


def get_adaptive_thresholds(snapshot: FeatureSnapshot, opportunity_type: str) -> AdaptiveThresholds:
    result = calculate_adaptive_thresholds(
        get_time_of_day_window(snapshot),
        resolve_vix_level(snapshot),
        resolve_market_regime(snapshot),
        opportunity_type,
    )
    if not result.strategy_enabled:
        logger.debug("%s: %s", snapshot.symbol, result.reason)
    return result
