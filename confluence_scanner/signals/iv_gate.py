"""Implied-volatility gate for premium-buying vs premium-selling strategies.

Directional setups (breakout, momentum, trend, continuation, reversal,
gamma) are expressed as debit trades and suffer when IV is rich; the rest
are treated as credit trades and suffer when IV is cheap.

Two independent outputs:
  - a multiplicative score modifier in [0.5, 1.2], always applied
  - a boolean gate for specific IV regime x strategy class combinations

Missing IV percentile degrades to INSUFFICIENT_DATA: modifier 1.0, no gate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from confluence_scanner.config import IVGateConfig
from confluence_scanner.contracts import FeatureSnapshot
from confluence_scanner.signals.detectors import _valid

DEBIT_KEYWORDS = (
    "breakout", "momentum", "trend", "continuation", "reversal", "gamma", "bounce", "vwap_standard", "flow",
)
MIN_MODIFIER = 0.5
MAX_MODIFIER = 1.2


class StrategyClass(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class IVRecommendation(str, Enum):
    BUY_OPTIMAL = "BUY_OPTIMAL"
    BUY_OK = "BUY_OK"
    SELL_PREMIUM = "SELL_PREMIUM"
    WARN_EARNINGS = "WARN_EARNINGS"
    WARN_CRUSH = "WARN_CRUSH"
    WARN_SPIKE = "WARN_SPIKE"
    AVOID = "AVOID"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


@dataclass
class IVAnalysis:
    iv_percentile: float | None
    recommendation: IVRecommendation
    is_cheap: bool = False
    is_elevated: bool = False
    is_optimal: bool = False
    crush_detected: bool = False
    spike_detected: bool = False
    near_earnings: bool = False
    reasons: list[str] = field(default_factory=list)

    @property
    def insufficient_data(self) -> bool:
        return self.recommendation == IVRecommendation.INSUFFICIENT_DATA

    def to_dict(self) -> dict:
        return {
            "iv_percentile": self.iv_percentile,
            "recommendation": self.recommendation.value,
            "is_cheap": self.is_cheap,
            "is_elevated": self.is_elevated,
            "is_optimal": self.is_optimal,
            "crush_detected": self.crush_detected,
            "spike_detected": self.spike_detected,
            "near_earnings": self.near_earnings,
            "reasons": self.reasons,
        }


@dataclass
class IVGateDecision:
    strategy_class: StrategyClass
    analysis: IVAnalysis
    modifier: float
    gated: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "strategy_class": self.strategy_class.value,
            "analysis": self.analysis.to_dict(),
            "modifier": round(self.modifier, 4),
            "gated": self.gated,
            "reason": self.reason,
        }


def classify_strategy(opportunity_type: str) -> StrategyClass:
    key = opportunity_type.lower()
    if any(word in key for word in DEBIT_KEYWORDS):
        return StrategyClass.DEBIT
    return StrategyClass.CREDIT


def analyze_iv(snapshot: FeatureSnapshot, config: IVGateConfig | None = None) -> IVAnalysis:
    cfg = config or IVGateConfig()
    pct = snapshot.iv_percentile
    if not _valid(pct):
        return IVAnalysis(
            iv_percentile=None,
            recommendation=IVRecommendation.INSUFFICIENT_DATA,
            reasons=["No IV percentile available"],
        )

    pct = float(pct)
    change = snapshot.iv_change_pct if _valid(snapshot.iv_change_pct) else 0.0
    dte_earnings = snapshot.days_to_earnings
    analysis = IVAnalysis(
        iv_percentile=pct,
        recommendation=IVRecommendation.BUY_OK,
        is_cheap=pct < cfg.min_iv_percentile_for_selling,
        is_elevated=pct > cfg.max_iv_percentile_for_buying,
        is_optimal=cfg.optimal_low <= pct <= cfg.optimal_high,
        crush_detected=change <= -cfg.crush_threshold,
        spike_detected=change >= cfg.spike_threshold,
        near_earnings=dte_earnings is not None and 0 <= dte_earnings <= cfg.earnings_warning_days,
    )

    if analysis.near_earnings:
        analysis.recommendation = IVRecommendation.WARN_EARNINGS
        analysis.reasons.append(f"Earnings in {dte_earnings} days")
    elif analysis.is_elevated and analysis.spike_detected:
        analysis.recommendation = IVRecommendation.AVOID
        analysis.reasons.append(f"IV percentile {pct:.0f} elevated and spiking +{change:.1f}%")
    elif analysis.crush_detected:
        analysis.recommendation = IVRecommendation.WARN_CRUSH
        analysis.reasons.append(f"IV crush {change:.1f}%")
    elif analysis.spike_detected:
        analysis.recommendation = IVRecommendation.WARN_SPIKE
        analysis.reasons.append(f"IV spike +{change:.1f}%")
    elif analysis.is_elevated:
        analysis.recommendation = IVRecommendation.SELL_PREMIUM
        analysis.reasons.append(f"IV percentile {pct:.0f} elevated")
    elif analysis.is_cheap:
        analysis.recommendation = IVRecommendation.BUY_OK
        analysis.reasons.append(f"IV percentile {pct:.0f} cheap")
    elif analysis.is_optimal:
        analysis.recommendation = IVRecommendation.BUY_OPTIMAL
        analysis.reasons.append(f"IV percentile {pct:.0f} in optimal range")
    return analysis


def should_gate(analysis: IVAnalysis, strategy_class: StrategyClass) -> tuple[bool, str | None]:
    if analysis.insufficient_data:
        return False, None
    if strategy_class == StrategyClass.DEBIT:
        if analysis.recommendation == IVRecommendation.AVOID:
            return True, "IV conditions unfavorable"
        if analysis.recommendation == IVRecommendation.SELL_PREMIUM and analysis.is_elevated:
            return True, f"IV percentile {analysis.iv_percentile:.0f} too high for buying premium"
        if analysis.recommendation == IVRecommendation.WARN_EARNINGS and analysis.near_earnings:
            return True, "Earnings imminent, IV crush risk"
        return False, None
    if analysis.is_cheap:
        return True, f"IV percentile {analysis.iv_percentile:.0f} too low for selling premium"
    return False, None


def iv_score_modifier(analysis: IVAnalysis) -> float:
    if analysis.insufficient_data:
        return 1.0
    modifier = 1.0
    if analysis.is_optimal:
        modifier *= 1.1
    if analysis.is_cheap:
        modifier *= 1.05
    if analysis.is_elevated:
        modifier *= 0.85
    if analysis.near_earnings:
        modifier *= 0.7
    if analysis.crush_detected:
        modifier *= 1.1
    if analysis.spike_detected:
        modifier *= 0.9
    return max(MIN_MODIFIER, min(MAX_MODIFIER, modifier))


def evaluate_iv_gate(
    opportunity_type: str,
    snapshot: FeatureSnapshot,
    config: IVGateConfig | None = None,
) -> IVGateDecision:
    strategy_class = classify_strategy(opportunity_type)
    analysis = analyze_iv(snapshot, config)
    gated, reason = should_gate(analysis, strategy_class)
    return IVGateDecision(
        strategy_class=strategy_class,
        analysis=analysis,
        modifier=iv_score_modifier(analysis),
        gated=gated,
        reason=reason,
    )
