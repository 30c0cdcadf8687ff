"""Confidence scoring — how complete is the feature snapshot?

Each expected data point carries a weight and a criticality flag.
Completeness is the available share of total weight; each missing critical
point caps base confidence by 15 points; low or high completeness adds a
penalty or a small bonus. The resulting 0-1 multiplier dampens every score,
and confidence below the configured minimum rejects the evaluation before
any detector output is trusted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from confluence_scanner.contracts import FeatureSnapshot
from confluence_scanner.signals.detectors import _valid

CRITICAL_PENALTY = 15
DEFAULT_MIN_CONFIDENCE = 40.0


@dataclass(frozen=True)
class DataWeight:
    weight: float
    critical: bool
    category: str


DEFAULT_DATA_WEIGHTS: dict[str, DataWeight] = {
    # Price
    "price": DataWeight(20, True, "price"),
    "price_change": DataWeight(5, False, "price"),
    # Volume
    "volume": DataWeight(12, True, "volume"),
    "volume_avg": DataWeight(5, False, "volume"),
    "relative_volume": DataWeight(8, False, "volume"),
    # Technical
    "vwap": DataWeight(10, False, "technical"),
    "vwap_distance": DataWeight(5, False, "technical"),
    "rsi": DataWeight(8, False, "technical"),
    "ema": DataWeight(6, False, "technical"),
    "atr": DataWeight(10, True, "technical"),  # needed for stops
    # Multi-timeframe
    "mtf_1m": DataWeight(2, False, "mtf"),
    "mtf_5m": DataWeight(4, False, "mtf"),
    "mtf_15m": DataWeight(3, False, "mtf"),
    "mtf_60m": DataWeight(2, False, "mtf"),
    # Flow
    "flow": DataWeight(5, False, "flow"),
    "flow_score": DataWeight(4, False, "flow"),
    "flow_bias": DataWeight(3, False, "flow"),
    # Pattern
    "orb": DataWeight(3, False, "pattern"),
    "prior_day_levels": DataWeight(4, False, "pattern"),
    "swing_levels": DataWeight(2, False, "pattern"),
    # Context
    "vix_level": DataWeight(5, False, "context"),
    "market_regime": DataWeight(5, False, "context"),
    "session": DataWeight(3, False, "context"),
}

# Weekend: volume and flow are stale by nature, levels matter more
WEEKEND_DATA_WEIGHTS: dict[str, DataWeight] = {
    **DEFAULT_DATA_WEIGHTS,
    "volume": DataWeight(5, False, "volume"),
    "relative_volume": DataWeight(2, False, "volume"),
    "vwap": DataWeight(3, False, "technical"),
    "vwap_distance": DataWeight(2, False, "technical"),
    "flow": DataWeight(2, False, "flow"),
    "flow_score": DataWeight(1, False, "flow"),
    "flow_bias": DataWeight(1, False, "flow"),
    "prior_day_levels": DataWeight(10, False, "pattern"),
    "swing_levels": DataWeight(8, False, "pattern"),
}


def _positive(x) -> bool:
    return _valid(x) and float(x) > 0


def _mtf_present(tf: str) -> Callable[[FeatureSnapshot], bool]:
    def check(s: FeatureSnapshot) -> bool:
        bundle = s.mtf.get(tf)
        return bundle is not None and _valid(bundle.close)
    return check


_AVAILABILITY_CHECKS: dict[str, Callable[[FeatureSnapshot], bool]] = {
    "price": lambda s: _positive(s.price.current),
    "price_change": lambda s: _valid(s.price.prev) or _valid(s.price.change_pct),
    "volume": lambda s: _positive(s.volume.current),
    "volume_avg": lambda s: _positive(s.volume.avg),
    "relative_volume": lambda s: _valid(s.volume.relative_to_avg),
    "vwap": lambda s: _positive(s.vwap.value),
    "vwap_distance": lambda s: _valid(s.vwap.distance_pct),
    "rsi": lambda s: _valid(s.rsi.get("14")),
    "ema": lambda s: _valid(s.ema.get("21")),
    "atr": lambda s: s.mtf.get("5m") is not None and _positive(s.mtf["5m"].atr),
    "mtf_1m": _mtf_present("1m"),
    "mtf_5m": _mtf_present("5m"),
    "mtf_15m": _mtf_present("15m"),
    "mtf_60m": _mtf_present("60m"),
    "flow": lambda s: s.flow is not None,
    "flow_score": lambda s: s.flow is not None and _valid(s.flow.flow_score),
    "flow_bias": lambda s: s.flow is not None and s.flow.flow_bias is not None,
    "orb": lambda s: _valid(s.pattern.orb_high) and _valid(s.pattern.orb_low),
    "prior_day_levels": lambda s: _valid(s.price.prev_close),
    "swing_levels": lambda s: _valid(s.pattern.swing_high) and _valid(s.pattern.swing_low),
    "vix_level": lambda s: s.vix_level is not None or _valid(s.vix),
    "market_regime": lambda s: s.market_regime is not None,
    "session": lambda s: s.session.is_regular_hours is not None,
}


@dataclass
class ConfidenceResult:
    data_completeness: int  # 0-100, weighted share of data present
    base_confidence: float
    adjusted_confidence: float
    multiplier: float  # 0-1
    total_weight: float
    available_weight: float
    missing_critical: list[str] = field(default_factory=list)
    missing_important: list[str] = field(default_factory=list)
    missing_minor: list[str] = field(default_factory=list)
    category_scores: dict[str, int] = field(default_factory=dict)
    completeness_adjustment: float = 0.0
    warnings: list[str] = field(default_factory=list)

    @property
    def level(self) -> str:
        return get_confidence_level(self.adjusted_confidence)

    @property
    def summary(self) -> str:
        text = f"Data: {self.data_completeness}% complete"
        if self.missing_critical:
            text += f" ({len(self.missing_critical)} critical missing)"
        return text + f" → {self.adjusted_confidence:.0f}% confidence"

    def to_dict(self) -> dict:
        return {
            "data_completeness": self.data_completeness,
            "base_confidence": self.base_confidence,
            "adjusted_confidence": round(self.adjusted_confidence, 2),
            "multiplier": round(self.multiplier, 4),
            "level": self.level,
            "missing_critical": self.missing_critical,
            "missing_important": self.missing_important,
            "missing_minor": self.missing_minor,
            "category_scores": self.category_scores,
            "warnings": self.warnings,
        }


def extract_data_availability(snapshot: FeatureSnapshot) -> dict[str, bool]:
    return {key: bool(check(snapshot)) for key, check in _AVAILABILITY_CHECKS.items()}


def calculate_confidence(
    availability: dict[str, bool],
    weights: dict[str, DataWeight] | None = None,
) -> ConfidenceResult:
    weights = weights or DEFAULT_DATA_WEIGHTS
    total = 0.0
    available = 0.0
    missing_critical: list[str] = []
    missing_important: list[str] = []
    missing_minor: list[str] = []
    categories: dict[str, list[float]] = {}
    warnings: list[str] = []

    for key, cfg in weights.items():
        total += cfg.weight
        bucket = categories.setdefault(cfg.category, [0.0, 0.0])
        bucket[1] += cfg.weight
        if availability.get(key, False):
            available += cfg.weight
            bucket[0] += cfg.weight
        elif cfg.critical:
            missing_critical.append(key)
        elif cfg.weight >= 5:
            missing_important.append(key)
        else:
            missing_minor.append(key)

    if total <= 0:
        raise ValueError("confidence weight table must have a positive total weight")

    completeness = round(available / total * 100)
    base = 100.0
    if missing_critical:
        base = 100.0 - CRITICAL_PENALTY * len(missing_critical)
        warnings.append(f"Missing critical data: {', '.join(missing_critical)}")

    adjustment = 0.0
    if completeness < 50:
        adjustment = -20.0
        warnings.append("Data completeness below 50% - signal reliability significantly reduced")
    elif completeness < 70:
        adjustment = -10.0
        warnings.append("Data completeness below 70% - signal may be unreliable")
    elif completeness >= 90:
        adjustment = 5.0

    adjusted = max(0.0, min(100.0, base * completeness / 100 + adjustment))

    return ConfidenceResult(
        data_completeness=completeness,
        base_confidence=base,
        adjusted_confidence=adjusted,
        multiplier=adjusted / 100,
        total_weight=total,
        available_weight=available,
        missing_critical=missing_critical,
        missing_important=missing_important,
        missing_minor=missing_minor,
        category_scores={
            cat: round(avail / tot * 100) if tot else 0 for cat, (avail, tot) in categories.items()
        },
        completeness_adjustment=adjustment,
        warnings=warnings,
    )


def score_confidence(snapshot: FeatureSnapshot, weekend: bool = False) -> ConfidenceResult:
    weights = WEEKEND_DATA_WEIGHTS if weekend else DEFAULT_DATA_WEIGHTS
    return calculate_confidence(extract_data_availability(snapshot), weights)


def apply_confidence(score: float, result: ConfidenceResult) -> float:
    """Dampen a score by the confidence multiplier (monotonic, identity at 100%)."""
    return max(0.0, min(100.0, score * result.multiplier))


def should_filter_low_confidence(
    result: ConfidenceResult,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> str | None:
    """Return a rejection reason if confidence is too low, else None."""
    if result.adjusted_confidence < min_confidence:
        return (
            f"Confidence too low: {result.adjusted_confidence:.0f}% < "
            f"{min_confidence:.0f}% minimum. {result.summary}"
        )
    return None


def get_confidence_level(confidence: float) -> str:
    if confidence >= 80:
        return "high"
    if confidence >= 60:
        return "medium"
    if confidence >= 40:
        return "low"
    return "very_low"


def format_confidence(result: ConfidenceResult) -> str:
    lines = [
        f"Data Completeness: {result.data_completeness}%",
        f"Confidence: {result.adjusted_confidence:.0f}% ({result.level})",
        "",
        "Category Breakdown:",
    ]
    for category, pct in result.category_scores.items():
        lines.append(f"  {category}: {pct}%")
    if result.missing_critical:
        lines.append("")
        lines.append("Missing Critical:")
        lines.extend(f"  - {k}" for k in result.missing_critical)
    if result.warnings:
        lines.append("")
        lines.append("Warnings:")
        lines.extend(f"  - {w}" for w in result.warnings)
    return "\n".join(lines)
