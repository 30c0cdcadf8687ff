"""Gamma-squeeze detectors for cash indices (options chain required).

When dealers are net short gamma they hedge in the direction of the move,
amplifying it. A squeeze fires when price is through the gamma flip level
in the trade direction with dealers short gamma and volume participating.
"""

from __future__ import annotations

from confluence_scanner.contracts import AssetClass, Direction, FeatureSnapshot, OptionsChainSnapshot
from confluence_scanner.signals.detectors import (
    Detector,
    ScoreFactor,
    _valid,
    current_price,
    pct_distance,
    relative_volume,
    volume_confirmation_score,
)


def _detect(direction: Direction):
    def detect(snapshot: FeatureSnapshot, chain: OptionsChainSnapshot | None = None) -> bool:
        if chain is None:
            return False
        price = current_price(snapshot)
        flip = chain.gamma_flip_level
        if price is None or not _valid(chain.dealer_gamma) or not _valid(flip):
            return False
        if chain.dealer_gamma >= 0:
            return False
        rvol = relative_volume(snapshot)
        if _valid(rvol) and rvol < 1.0:
            return False
        if direction == Direction.LONG:
            return price > flip
        return price < flip
    return detect


def _dealer_gamma(snapshot: FeatureSnapshot, chain: OptionsChainSnapshot | None = None) -> float:
    if chain is None or not _valid(chain.dealer_gamma):
        return 0.0
    g = -float(chain.dealer_gamma)  # more negative = stronger squeeze fuel
    if g >= 2.0:
        return 100.0
    if g >= 1.0:
        return 80.0
    if g > 0:
        return 60.0
    return 0.0


def _flip_distance(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain: OptionsChainSnapshot | None = None) -> float:
        price = current_price(snapshot)
        if chain is None or price is None:
            return 0.0
        d = pct_distance(price, chain.gamma_flip_level)
        if d is None:
            return 0.0
        d = d if direction == Direction.LONG else -d
        # Just through the flip is the sweet spot
        if d <= 0:
            return 0.0
        if d <= 0.3:
            return 90.0
        if d <= 0.75:
            return 70.0
        return 45.0
    return evaluate


def _call_put(direction: Direction):
    def evaluate(snapshot: FeatureSnapshot, chain: OptionsChainSnapshot | None = None) -> float:
        if chain is None:
            return 50.0
        ratio = chain.call_put_ratio
        if not _valid(ratio) and _valid(chain.call_volume) and _valid(chain.put_volume) and chain.put_volume:
            ratio = chain.call_volume / chain.put_volume
        if not _valid(ratio) or ratio <= 0:
            return 50.0
        skew = ratio if direction == Direction.LONG else 1 / ratio
        if skew >= 1.5:
            return 90.0
        if skew >= 1.1:
            return 70.0
        if skew >= 0.9:
            return 50.0
        return 25.0
    return evaluate


def _expiry(snapshot: FeatureSnapshot, chain: OptionsChainSnapshot | None = None) -> float:
    if chain is None:
        return 50.0
    if chain.is_0dte:
        return 90.0
    minutes = chain.minutes_to_expiry
    if _valid(minutes) and minutes <= 60 * 24 * 2:
        return 70.0
    return 40.0


def _build(direction: Direction, opportunity_type: str) -> Detector:
    return Detector(
        type=opportunity_type,
        direction=direction,
        asset_classes=frozenset({AssetClass.INDEX}),
        detect_fn=_detect(direction),
        requires_options_data=True,
        score_factors=(
            ScoreFactor("dealer_gamma", 0.30, _dealer_gamma),
            ScoreFactor("flip_distance", 0.25, _flip_distance(direction)),
            ScoreFactor("call_put_skew", 0.20, _call_put(direction)),
            ScoreFactor("volume", 0.15, lambda s, c=None: volume_confirmation_score(relative_volume(s))),
            ScoreFactor("expiry", 0.10, _expiry),
        ),
        ideal_timeframe="1m",
    )


def build_gamma_detectors() -> list[Detector]:
    return [
        _build(Direction.LONG, "gamma_squeeze_bullish"),
        _build(Direction.SHORT, "gamma_squeeze_bearish"),
    ]
