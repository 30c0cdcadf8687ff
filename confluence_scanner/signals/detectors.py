"""Opportunity detector registry.

A detector is a stateless value: an opportunity type, a direction, the
asset classes it applies to, whether it needs an options chain, a detection
predicate, and a list of weighted score factors. The base score is the
weighted mean of the clamped factor scores.

Registration order matters: when two opportunities tie on their
recommended-style score, the one registered first wins.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Iterator

import numpy as np

from confluence_scanner.contracts import (
    AssetClass,
    Direction,
    FeatureSnapshot,
    OptionsChainSnapshot,
)

logger = logging.getLogger(__name__)

ALL_ASSET_CLASSES = frozenset(AssetClass)

_INDEX_SYMBOLS = {"SPX", "NDX", "$SPX", "$NDX"}
_ETF_SYMBOLS = {"SPY", "QQQ", "IWM", "DIA", "XLF", "XLE", "XLK", "XLV", "XLI", "XLP"}

DetectFn = Callable[[FeatureSnapshot, "OptionsChainSnapshot | None"], bool]
EvaluateFn = Callable[[FeatureSnapshot, "OptionsChainSnapshot | None"], float]


def _valid(x) -> bool:
    """Check if a value is a valid, finite number (catches None, NaN, inf)."""
    if x is None:
        return False
    try:
        return math.isfinite(float(x))
    except (TypeError, ValueError):
        return False


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def get_asset_class(symbol: str) -> AssetClass:
    upper = symbol.strip().upper()
    if upper in _INDEX_SYMBOLS:
        return AssetClass.INDEX
    if upper in _ETF_SYMBOLS:
        return AssetClass.EQUITY_ETF
    return AssetClass.STOCK


# ---------------------------------------------------------------------------
# Shared feature accessors for detector families
# ---------------------------------------------------------------------------

def current_price(snapshot: FeatureSnapshot) -> float | None:
    price = snapshot.price.current
    return price if _valid(price) and price > 0 else None


def relative_volume(snapshot: FeatureSnapshot) -> float | None:
    vol = snapshot.volume
    if _valid(vol.relative_to_avg):
        return float(vol.relative_to_avg)
    if _valid(vol.current) and _valid(vol.avg) and vol.avg > 0:
        return float(vol.current) / float(vol.avg)
    return None


def rsi14(snapshot: FeatureSnapshot) -> float | None:
    value = snapshot.rsi.get("14")
    return float(value) if _valid(value) else None


def ema(snapshot: FeatureSnapshot, period: int) -> float | None:
    value = snapshot.ema.get(str(period))
    return float(value) if _valid(value) else None


def atr(snapshot: FeatureSnapshot, timeframe: str = "5m") -> float | None:
    """ATR for a timeframe, falling back to 1.5% of price."""
    bundle = snapshot.mtf.get(timeframe)
    if bundle is not None and _valid(bundle.atr) and bundle.atr > 0:
        return float(bundle.atr)
    price = current_price(snapshot)
    return price * 0.015 if price else None


def pct_distance(price: float, level: float | None) -> float | None:
    """Signed distance of price from level as a percent of price."""
    if not _valid(level) or not level or price <= 0:
        return None
    return (price - level) / price * 100


def flow_alignment_score(snapshot: FeatureSnapshot, direction: Direction) -> float:
    """0-100 agreement between the options flow bias and the trade direction."""
    flow = snapshot.flow
    if flow is None:
        return 50.0
    want = "bullish" if direction == Direction.LONG else "bearish"
    bias = (flow.flow_bias or "neutral").lower()
    score = 50.0
    if bias == want:
        score = 75.0
    elif bias in ("bullish", "bearish"):
        score = 20.0
    if _valid(flow.flow_score):
        # flow_score is signed: positive = bullish pressure
        signed = float(flow.flow_score) if direction == Direction.LONG else -float(flow.flow_score)
        score += max(-20.0, min(20.0, signed / 5))
    if flow.unusual_activity and bias == want:
        score += 10
    return clamp(score)


def volume_confirmation_score(rvol: float | None) -> float:
    if not _valid(rvol):
        return 30.0
    if rvol >= 3.0:
        return 100.0
    if rvol >= 2.0:
        return 85.0
    if rvol >= 1.5:
        return 70.0
    if rvol >= 1.2:
        return 55.0
    if rvol >= 1.0:
        return 40.0
    return 20.0  # below-average volume = weak confirmation


# ---------------------------------------------------------------------------
# Detector values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoreFactor:
    name: str
    weight: float  # 0-1, factors of one detector should sum to 1.0
    evaluate: EvaluateFn


@dataclass
class DetectionResult:
    detected: bool
    base_score: float  # 0-100 composite score
    factor_scores: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "base_score": round(self.base_score, 2),
            "factor_scores": {k: round(v, 2) for k, v in self.factor_scores.items()},
        }


def calculate_composite_score(
    factors: list[ScoreFactor],
    snapshot: FeatureSnapshot,
    chain: OptionsChainSnapshot | None = None,
) -> tuple[float, dict[str, float]]:
    """Weighted mean of clamped factor scores, clamped to 0-100."""
    factor_scores: dict[str, float] = {}
    scores: list[float] = []
    for factor in factors:
        raw = factor.evaluate(snapshot, chain)
        score = clamp(float(raw)) if _valid(raw) else 0.0
        factor_scores[factor.name] = score
        scores.append(score)
    weights = np.array([f.weight for f in factors], dtype=float)
    if weights.sum() <= 0:
        return 0.0, factor_scores
    base = float(np.average(np.array(scores), weights=weights))
    return clamp(base), factor_scores


@dataclass(frozen=True)
class Detector:
    type: str
    direction: Direction
    asset_classes: frozenset[AssetClass]
    detect_fn: DetectFn
    score_factors: tuple[ScoreFactor, ...]
    requires_options_data: bool = False
    ideal_timeframe: str = "5m"

    def __post_init__(self) -> None:
        if not self.score_factors:
            raise ValueError(f"Detector {self.type} has no score factors")
        if any(f.weight < 0 for f in self.score_factors):
            raise ValueError(f"Detector {self.type} has a negative factor weight")

    def applies_to(self, asset_class: AssetClass, has_chain: bool) -> bool:
        if asset_class not in self.asset_classes:
            return False
        return has_chain or not self.requires_options_data

    def detect(self, snapshot: FeatureSnapshot, chain: OptionsChainSnapshot | None = None) -> bool:
        return bool(self.detect_fn(snapshot, chain))

    def detect_with_score(
        self,
        snapshot: FeatureSnapshot,
        chain: OptionsChainSnapshot | None = None,
    ) -> DetectionResult:
        if not self.detect(snapshot, chain):
            return DetectionResult(detected=False, base_score=0.0)
        score, factor_scores = calculate_composite_score(list(self.score_factors), snapshot, chain)
        return DetectionResult(detected=True, base_score=score, factor_scores=factor_scores)


class DetectorRegistry:
    """Ordered set of detectors keyed by opportunity type."""

    def __init__(self, detectors: list[Detector] | None = None):
        self._detectors: dict[str, Detector] = {}
        for detector in detectors or []:
            self.register(detector)

    def register(self, detector: Detector) -> None:
        if detector.type in self._detectors:
            raise ValueError(f"Detector {detector.type} already registered")
        self._detectors[detector.type] = detector

    def get(self, opportunity_type: str) -> Detector | None:
        return self._detectors.get(opportunity_type)

    def applicable(self, asset_class: AssetClass, has_chain: bool) -> list[Detector]:
        return [d for d in self._detectors.values() if d.applies_to(asset_class, has_chain)]

    def detect_all(
        self,
        snapshot: FeatureSnapshot,
        chain: OptionsChainSnapshot | None = None,
    ) -> list[tuple[Detector, DetectionResult]]:
        """Run and score every applicable detector, in registration order.

        A detector that raises while detecting or scoring counts as no match.
        """
        asset_class = get_asset_class(snapshot.symbol)
        matched: list[tuple[Detector, DetectionResult]] = []
        for detector in self.applicable(asset_class, chain is not None):
            try:
                result = detector.detect_with_score(snapshot, chain)
            except Exception as e:
                logger.warning(
                    "Detector %s raised for %s: %s", detector.type, snapshot.symbol, e,
                )
                continue
            if result.detected:
                matched.append((detector, result))
        return matched

    def __iter__(self) -> Iterator[Detector]:
        return iter(self._detectors.values())

    def __len__(self) -> int:
        return len(self._detectors)


def default_registry() -> DetectorRegistry:
    """Registry holding every built-in detector family."""
    from confluence_scanner.signals.breakout import build_breakout_detectors
    from confluence_scanner.signals.flow import build_flow_detectors
    from confluence_scanner.signals.gamma import build_gamma_detectors
    from confluence_scanner.signals.kcu import build_kcu_detectors
    from confluence_scanner.signals.mean_reversion import build_mean_reversion_detectors
    from confluence_scanner.signals.orb import build_orb_detectors
    from confluence_scanner.signals.reversal import build_reversal_detectors
    from confluence_scanner.signals.trend import build_trend_detectors

    return DetectorRegistry([
        *build_breakout_detectors(),
        *build_orb_detectors(),
        *build_trend_detectors(),
        *build_mean_reversion_detectors(),
        *build_reversal_detectors(),
        *build_gamma_detectors(),
        *build_kcu_detectors(),
        *build_flow_detectors(),
    ])
