"""Market regime and volatility tags carried on the feature snapshot.

Regime types:
  - TRENDING: directional moves follow through
  - RANGING: price oscillates between levels, fades work
  - CHOPPY: no follow-through in either direction
  - VOLATILE: wide ranges, both breakouts and reversals can work

The tags are computed upstream; this module only normalizes them.
"""

from __future__ import annotations

from enum import Enum

from confluence_scanner.contracts import FeatureSnapshot


class MarketRegime(str, Enum):
    TRENDING = "trending"
    RANGING = "ranging"
    CHOPPY = "choppy"
    VOLATILE = "volatile"


class VixLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


_REGIME_ALIASES = {
    "trend": MarketRegime.TRENDING,
    "trending_up": MarketRegime.TRENDING,
    "trending_down": MarketRegime.TRENDING,
    "range": MarketRegime.RANGING,
    "range_bound": MarketRegime.RANGING,
    "chop": MarketRegime.CHOPPY,
}


def _norm(value: str) -> str:
    return value.strip().lower().replace("-", "_").replace(" ", "_")


def classify_vix(vix: float) -> VixLevel:
    if vix < 15:
        return VixLevel.LOW
    if vix < 25:
        return VixLevel.MEDIUM
    if vix < 35:
        return VixLevel.HIGH
    return VixLevel.EXTREME


def parse_market_regime(value: str | None) -> MarketRegime | None:
    if not value:
        return None
    key = _norm(value)
    try:
        return MarketRegime(key)
    except ValueError:
        return _REGIME_ALIASES.get(key)


def parse_vix_level(value: str | None) -> VixLevel | None:
    if not value:
        return None
    key = _norm(value)
    if key == "normal":
        return VixLevel.MEDIUM
    try:
        return VixLevel(key)
    except ValueError:
        return None


def resolve_market_regime(snapshot: FeatureSnapshot) -> MarketRegime:
    """Snapshot regime tag, defaulting to ranging when absent or unknown."""
    return parse_market_regime(snapshot.market_regime) or MarketRegime.RANGING


def resolve_vix_level(snapshot: FeatureSnapshot) -> VixLevel:
    """Snapshot VIX tag, else classify the numeric VIX, else medium."""
    tagged = parse_vix_level(snapshot.vix_level)
    if tagged is not None:
        return tagged
    if snapshot.vix is not None:
        return classify_vix(snapshot.vix)
    return VixLevel.MEDIUM
