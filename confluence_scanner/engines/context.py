"""Context boosts — best-effort external lookups that nudge per-style scores.

Five independent sources (IV percentile, gamma exposure, multi-timeframe
alignment, order-flow sentiment, market regime) are queried concurrently.
Each lookup is bounded by a deadline and isolated: a timeout, an exception,
or an open circuit all mean "no reading from that source" and never fail
the scan.

Separately, an offline optimizer can ship an `OptimizedParams` bundle whose
flat boosts are keyed off explicit snapshot fields (`iv_percentile`,
`gamma_exposure`, `flow_alignment`).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

import yaml
from pydantic import BaseModel, ConfigDict, Field

from confluence_scanner.contracts import Direction, FeatureSnapshot, FrozenModel, TradingStyle
from confluence_scanner.engines.circuit_breaker import ContextCircuitBreaker
from confluence_scanner.signals.detectors import _valid, clamp
from confluence_scanner.signals.style import StyleScores, build_style_scores

logger = logging.getLogger(__name__)

LOW_IV_PERCENTILE = 20
HIGH_IV_PERCENTILE = 80
SHORT_GAMMA_LEVEL = -1.0
LONG_GAMMA_LEVEL = 1.0


class ContextSource(str, Enum):
    IV = "iv"
    GAMMA = "gamma"
    MTF = "mtf"
    FLOW = "flow"
    REGIME = "regime"


# Subtracted from the boost multiplier when a reading is flagged stale
STALE_PENALTIES: dict[ContextSource, float] = {
    ContextSource.IV: 0.5,
    ContextSource.GAMMA: 0.5,
    ContextSource.MTF: 0.3,
    ContextSource.FLOW: 0.3,
    ContextSource.REGIME: 0.2,
}


class ContextReading(FrozenModel):
    """One source's view: direction boosts, optional per-style boosts, confidence."""

    source: ContextSource
    long_boost: float = Field(default=1.0, ge=0)
    short_boost: float = Field(default=1.0, ge=0)
    style_boosts: dict[TradingStyle, float] = Field(default_factory=dict)
    confidence: float = Field(default=100.0, ge=0, le=100)
    is_stale: bool = False
    detail: dict = Field(default_factory=dict)

    def boost_for(self, direction: Direction, style: TradingStyle) -> float:
        dir_boost = self.long_boost if direction == Direction.LONG else self.short_boost
        return dir_boost * self.style_boosts.get(style, 1.0)


class ContextBoostAdapter(Protocol):
    """Five async lookups keyed by symbol; any may return None."""

    async def iv_context(self, symbol: str) -> ContextReading | None: ...

    async def gamma_context(self, symbol: str) -> ContextReading | None: ...

    async def mtf_context(self, symbol: str) -> ContextReading | None: ...

    async def flow_context(self, symbol: str) -> ContextReading | None: ...

    async def regime_context(self, symbol: str) -> ContextReading | None: ...


@dataclass
class ContextBundle:
    readings: dict[ContextSource, ContextReading | None] = field(
        default_factory=lambda: {s: None for s in ContextSource}
    )
    errors: dict[ContextSource, str] = field(default_factory=dict)
    skipped: list[ContextSource] = field(default_factory=list)

    @property
    def available(self) -> list[ContextSource]:
        return [s for s, r in self.readings.items() if r is not None]

    def to_dict(self) -> dict:
        return {
            "available": [s.value for s in self.available],
            "errors": {s.value: msg for s, msg in self.errors.items()},
            "skipped": [s.value for s in self.skipped],
            "readings": {
                s.value: r.model_dump(mode="json") for s, r in self.readings.items() if r is not None
            },
        }


async def _lookup(adapter: ContextBoostAdapter, source: ContextSource, symbol: str, timeout: float):
    fn = getattr(adapter, f"{source.value}_context")
    result = await asyncio.wait_for(fn(symbol), timeout=timeout)
    if result is None or isinstance(result, ContextReading):
        return result
    return ContextReading.model_validate(result)


async def gather_context(
    adapter: ContextBoostAdapter | None,
    symbol: str,
    timeout: float = 2.0,
    breaker: ContextCircuitBreaker | None = None,
) -> ContextBundle:
    """Fan out all five lookups concurrently; failures become absent readings."""
    bundle = ContextBundle()
    if adapter is None:
        return bundle

    sources: list[ContextSource] = []
    for source in ContextSource:
        if breaker is not None and not breaker.allow(source.value):
            bundle.skipped.append(source)
            continue
        sources.append(source)

    results = await asyncio.gather(
        *(_lookup(adapter, s, symbol, timeout) for s in sources),
        return_exceptions=True,
    )

    for source, result in zip(sources, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.TimeoutError):
                message = f"timed out after {timeout:.1f}s"
            else:
                message = str(result) or type(result).__name__
            bundle.errors[source] = message
            logger.warning("Context lookup %s failed for %s: %s", source.value, symbol, message)
            if breaker is not None:
                breaker.record_failure(source.value, message)
            continue
        bundle.readings[source] = result
        if breaker is not None:
            breaker.record_success(source.value)

    return bundle


def apply_context_boost(score: float, reading: ContextReading | None, direction: Direction, style: TradingStyle) -> float:
    """score * (1 + (boost - 1) * confidence/100 - stale_penalty), clamped to 0-100."""
    if reading is None:
        return score
    stale_penalty = STALE_PENALTIES[reading.source] if reading.is_stale else 0.0
    weight = reading.confidence / 100
    final_boost = 1.0 + (reading.boost_for(direction, style) - 1.0) * weight - stale_penalty
    return clamp(score * final_boost)


def apply_context_boosts(scores: StyleScores, direction: Direction, bundle: ContextBundle) -> StyleScores:
    """Apply every available reading to each style score and re-pick the recommendation."""
    if not bundle.available:
        return scores
    adjusted = scores.as_dict()
    for reading in bundle.readings.values():
        if reading is None:
            continue
        for style in adjusted:
            adjusted[style] = apply_context_boost(adjusted[style], reading, direction, style)
    return build_style_scores(
        adjusted[TradingStyle.SCALP],
        adjusted[TradingStyle.DAY_TRADE],
        adjusted[TradingStyle.SWING],
        modifiers=scores.modifiers,
    )


# ---------------------------------------------------------------------------
# Optimized parameters
# ---------------------------------------------------------------------------

class _OptimizerModel(BaseModel):
    # Optimizer output carries extra sections (mtfWeights, riskReward, ...)
    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class MinScores(_OptimizerModel):
    scalp: float = Field(default=80, ge=0, le=100)
    day: float = Field(default=80, ge=0, le=100)
    swing: float = Field(default=80, ge=0, le=100)


class IVBoosts(_OptimizerModel):
    low_iv: float = Field(default=0.15, alias="lowIV")
    high_iv: float = Field(default=-0.2, alias="highIV")


class GammaBoosts(_OptimizerModel):
    short_gamma: float = Field(default=0.15, alias="shortGamma")
    long_gamma: float = Field(default=-0.1, alias="longGamma")


class FlowBoosts(_OptimizerModel):
    aligned: float = 0.2
    opposed: float = -0.15


class OptimizedParams(_OptimizerModel):
    min_scores: MinScores = Field(default_factory=MinScores, alias="minScores")
    iv_boosts: IVBoosts = Field(default_factory=IVBoosts, alias="ivBoosts")
    gamma_boosts: GammaBoosts = Field(default_factory=GammaBoosts, alias="gammaBoosts")
    flow_boosts: FlowBoosts = Field(default_factory=FlowBoosts, alias="flowBoosts")

    def min_score_for(self, style: TradingStyle) -> float:
        if style == TradingStyle.SCALP:
            return self.min_scores.scalp
        if style == TradingStyle.DAY_TRADE:
            return self.min_scores.day
        return self.min_scores.swing


def load_optimized_params(path: str | Path) -> OptimizedParams:
    """Load optimizer output (YAML or JSON); a top-level `parameters` key is unwrapped."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: optimized params must be a mapping")
    if isinstance(raw.get("parameters"), dict):
        raw = raw["parameters"]
    params = OptimizedParams.model_validate(raw)
    logger.info("Loaded optimized params from %s", path)
    return params


def optimized_multiplier(snapshot: FeatureSnapshot, params: OptimizedParams) -> tuple[float, list[str]]:
    """Combined multiplier from the IV, gamma and flow boosts plus what triggered them."""
    multiplier = 1.0
    applied: list[str] = []

    iv = snapshot.iv_percentile
    if _valid(iv):
        if iv < LOW_IV_PERCENTILE:
            multiplier *= 1 + params.iv_boosts.low_iv
            applied.append(f"low IV ({iv:.0f})")
        elif iv > HIGH_IV_PERCENTILE:
            multiplier *= 1 + params.iv_boosts.high_iv
            applied.append(f"high IV ({iv:.0f})")

    gamma = snapshot.gamma_exposure
    if _valid(gamma):
        if gamma < SHORT_GAMMA_LEVEL:
            multiplier *= 1 + params.gamma_boosts.short_gamma
            applied.append("short gamma")
        elif gamma > LONG_GAMMA_LEVEL:
            multiplier *= 1 + params.gamma_boosts.long_gamma
            applied.append("long gamma")

    alignment = (snapshot.flow_alignment or "neutral").strip().lower()
    if alignment == "aligned":
        multiplier *= 1 + params.flow_boosts.aligned
        applied.append("flow aligned")
    elif alignment == "opposed":
        multiplier *= 1 + params.flow_boosts.opposed
        applied.append("flow opposed")

    return max(0.0, multiplier), applied


def apply_optimized_boosts(
    scores: StyleScores,
    snapshot: FeatureSnapshot,
    params: OptimizedParams | None,
) -> StyleScores:
    if params is None:
        return scores
    multiplier, applied = optimized_multiplier(snapshot, params)
    if not applied:
        return scores
    return build_style_scores(
        scores.scalp_score * multiplier,
        scores.day_trade_score * multiplier,
        scores.swing_score * multiplier,
        modifiers=scores.modifiers,
    )
