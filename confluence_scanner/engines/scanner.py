"""Composite scanner — one feature snapshot in, zero or one signal out.

Stages, each able to short-circuit with a filtered result and a specific
reason string:
  1. Universal pre-filters (blacklist, price sanity, hours, rvol, spread)
  2. Confidence scoring (fail fast before any expensive lookups)
  3. Options chain fetch (INDEX only)
  4. Detection across applicable detectors
  5. Scoring: confidence-dampened base score, then per-style modifiers
  6. Context and optimized boosts
  7. Selection of the single best opportunity (stable, registration order)
  8. Adaptive thresholds (category may be disabled for the regime)
  9. IV score modifier and gate
  10. Risk/reward
  11. Threshold validation on unrounded scores, then the candidate signal
  12. Deduplication, then accept
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol

from confluence_scanner.config import ScannerConfig, SignalThresholds
from confluence_scanner.contracts import (
    AssetClass,
    CompositeSignal,
    FeatureSnapshot,
    OptionsChainSnapshot,
    SignalTargets,
    generate_bar_time_key,
)
from confluence_scanner.engines.adaptive_thresholds import AdaptiveThresholds, get_adaptive_thresholds
from confluence_scanner.engines.circuit_breaker import ContextCircuitBreaker
from confluence_scanner.engines.context import (
    ContextBoostAdapter,
    ContextBundle,
    OptimizedParams,
    apply_context_boosts,
    apply_optimized_boosts,
    gather_context,
    load_optimized_params,
)
from confluence_scanner.engines.dedup import DedupStore, InMemoryDedupStore
from confluence_scanner.features.session import NON_REGULAR_WINDOWS, get_time_of_day_window, is_weekend
from confluence_scanner.signals.confidence import (
    ConfidenceResult,
    apply_confidence,
    score_confidence,
    should_filter_low_confidence,
)
from confluence_scanner.signals.detectors import (
    DetectionResult,
    Detector,
    DetectorRegistry,
    _valid,
    clamp,
    default_registry,
    get_asset_class,
    relative_volume,
)
from confluence_scanner.signals.iv_gate import evaluate_iv_gate
from confluence_scanner.signals.risk_reward import RiskReward, risk_reward_for_snapshot
from confluence_scanner.signals.style import (
    StyleModifiers,
    StyleScores,
    apply_style_modifiers,
    build_style_scores,
    calculate_style_modifiers,
)

logger = logging.getLogger(__name__)


class OptionsChainProvider(Protocol):
    async def get_options_chain(self, symbol: str) -> OptionsChainSnapshot | None: ...


@dataclass
class DetectedOpportunity:
    detector: Detector
    detection: DetectionResult
    base_score: float  # after confidence dampening
    style_scores: StyleScores

    @property
    def score(self) -> float:
        return self.style_scores.recommended_style_score


@dataclass
class ScanResult:
    signal: CompositeSignal | None = None
    filtered: bool = False
    filter_reason: str | None = None
    detection_count: int = 0
    scan_time_ms: float = 0.0
    diagnostics: dict | None = None

    def to_dict(self) -> dict:
        return {
            "signal": self.signal.model_dump(mode="json") if self.signal else None,
            "filtered": self.filtered,
            "filter_reason": self.filter_reason,
            "detection_count": self.detection_count,
            "scan_time_ms": round(self.scan_time_ms, 3),
            "diagnostics": self.diagnostics,
        }


def check_universal_filters(snapshot: FeatureSnapshot, config: ScannerConfig) -> str | None:
    """Return why the snapshot fails the symbol/feature sanity checks, or None."""
    filters = config.filters
    if snapshot.symbol in filters.blacklist:
        return f"{snapshot.symbol} is blacklisted"
    price = snapshot.price.current
    if not _valid(price) or price <= 0:
        return "invalid price"
    if price < filters.min_price:
        return f"price {price:.2f} below minimum {filters.min_price:.2f}"
    if filters.market_hours_only and snapshot.session.is_regular_hours is not True:
        return "outside regular market hours"
    rvol = relative_volume(snapshot)
    if filters.min_rvol > 0 and rvol is not None and rvol < filters.min_rvol:
        return f"relative volume {rvol:.2f} below minimum {filters.min_rvol:.2f}"
    spread = snapshot.price.spread_pct
    if _valid(spread) and spread > filters.max_spread_pct:
        return f"spread {spread:.2f}% above maximum {filters.max_spread_pct:.2f}%"
    return None


def select_best(opportunities: list[DetectedOpportunity]) -> DetectedOpportunity:
    """Highest recommended-style score; ties keep the earlier registration."""
    best = opportunities[0]
    for opp in opportunities[1:]:
        if opp.score > best.score:
            best = opp
    return best


def _scale_scores(scores: StyleScores, multiplier: float) -> StyleScores:
    return build_style_scores(
        scores.scalp_score * multiplier,
        scores.day_trade_score * multiplier,
        scores.swing_score * multiplier,
        modifiers=scores.modifiers,
    )


class CompositeScanner:
    """Sequences detection, scoring, gating and dedup for one snapshot at a time."""

    def __init__(
        self,
        config: ScannerConfig | None = None,
        registry: DetectorRegistry | None = None,
        dedup_store: DedupStore | None = None,
        context_adapter: ContextBoostAdapter | None = None,
        options_provider: OptionsChainProvider | None = None,
        optimized_params: OptimizedParams | None = None,
        settings: Any | None = None,
    ):
        self.config = config or ScannerConfig.from_settings(settings)
        self.registry = registry or default_registry()
        self.dedup_store = dedup_store or InMemoryDedupStore.from_config(self.config)
        self.context_adapter = context_adapter
        self.options_provider = options_provider
        if optimized_params is None and settings is not None:
            path = getattr(settings, "optimized_params_path", "")
            if path:
                optimized_params = load_optimized_params(path)
        self.optimized_params = optimized_params
        self.breaker = ContextCircuitBreaker(
            failure_threshold=self.config.context_failure_threshold,
            cooldown_seconds=self.config.context_cooldown_seconds,
        )

    async def scan_many(self, snapshots: list[FeatureSnapshot]) -> list[ScanResult]:
        return list(await asyncio.gather(*(self.scan_symbol(s) for s in snapshots)))

    async def scan_symbol(self, snapshot: FeatureSnapshot) -> ScanResult:
        start = time.perf_counter()
        diagnostics: dict[str, Any] = {}
        result = await self._scan(snapshot, diagnostics)
        result.scan_time_ms = (time.perf_counter() - start) * 1000
        if self.config.include_diagnostics:
            result.diagnostics = diagnostics
        if result.signal is not None:
            s = result.signal
            logger.info(
                "Signal %s %s %s: %s score %.1f, R:R %.2f, size %.2fx",
                s.symbol, s.opportunity_type, s.direction.value, s.recommended_style.value,
                s.recommended_style_score, s.risk_reward, s.size_multiplier,
            )
        else:
            logger.debug("%s filtered: %s", snapshot.symbol, result.filter_reason)
        return result

    async def _scan(self, snapshot: FeatureSnapshot, diagnostics: dict[str, Any]) -> ScanResult:
        config = self.config
        symbol = snapshot.symbol
        asset_class = get_asset_class(symbol)

        # 1. Universal filters
        why = check_universal_filters(snapshot, config)
        if why:
            return ScanResult(filtered=True, filter_reason=f"Failed universal filters: {why}")

        # 2. Confidence
        weekend = is_weekend(snapshot)
        confidence = score_confidence(snapshot, weekend=weekend)
        diagnostics["confidence"] = confidence.to_dict()
        low = should_filter_low_confidence(confidence, config.min_confidence)
        if low:
            return ScanResult(filtered=True, filter_reason=low)

        # 3. Options chain
        chain = await self._fetch_chain(symbol, asset_class)

        # 4. Detection
        matches = self.registry.detect_all(snapshot, chain)
        diagnostics["detections"] = {d.type: r.to_dict() for d, r in matches}
        if not matches:
            return ScanResult(filtered=True, filter_reason="No opportunities detected")
        detection_count = len(matches)

        # 5. Scoring
        modifiers = calculate_style_modifiers(snapshot)
        diagnostics["style"] = modifiers.to_dict()
        opportunities = self._score(matches, snapshot, confidence, modifiers)

        # 6. Context and optimized boosts
        bundle = await self._context(symbol)
        diagnostics["context"] = bundle.to_dict()
        for opp in opportunities:
            boosted = apply_context_boosts(opp.style_scores, opp.detector.direction, bundle)
            opp.style_scores = apply_optimized_boosts(boosted, snapshot, self.optimized_params)

        # 7. Selection
        best = select_best(opportunities)
        detector = best.detector
        opportunity_type = detector.type
        static = config.thresholds_for(asset_class.value, opportunity_type)

        # 8. Adaptive thresholds
        adaptive: AdaptiveThresholds | None = None
        if config.use_adaptive_thresholds:
            adaptive = get_adaptive_thresholds(snapshot, opportunity_type)
            diagnostics["adaptive_thresholds"] = adaptive.to_dict()
            if not adaptive.strategy_enabled:
                return ScanResult(filtered=True, filter_reason=adaptive.reason, detection_count=detection_count)

        # 9. IV modifier and gate
        iv = evaluate_iv_gate(opportunity_type, snapshot, config.iv_gate)
        diagnostics["iv"] = iv.to_dict()
        base_score = clamp(best.base_score * iv.modifier)
        style_scores = _scale_scores(best.style_scores, iv.modifier)
        if iv.gated:
            return ScanResult(filtered=True, filter_reason=f"IV gate: {iv.reason}", detection_count=detection_count)

        # 10. Risk/reward
        rr = risk_reward_for_snapshot(detector.direction, snapshot, style_scores.recommended_style)

        # 11. Validation on the unrounded scores, then the candidate
        shortfall = self._validate(base_score, style_scores, rr.ratio, static, adaptive, weekend)
        if shortfall:
            return ScanResult(filtered=True, filter_reason=shortfall, detection_count=detection_count)
        signal = self._build_signal(snapshot, best, asset_class, base_score, style_scores, rr, adaptive)

        # 12. Dedup, then accept
        decision = self.dedup_store.check_and_insert(signal, static)
        if not decision.accepted:
            return ScanResult(filtered=True, filter_reason=decision.reason, detection_count=detection_count)
        return ScanResult(signal=signal, detection_count=detection_count)

    # ── Stage helpers ───────────────────────────────────────────────────

    async def _fetch_chain(self, symbol: str, asset_class: AssetClass) -> OptionsChainSnapshot | None:
        if asset_class != AssetClass.INDEX or not self.config.enable_options_data_fetch:
            return None
        if self.options_provider is None:
            return None
        try:
            return await self.options_provider.get_options_chain(symbol)
        except Exception as e:
            logger.warning("Options chain fetch failed for %s: %s", symbol, e)
            return None

    async def _context(self, symbol: str) -> ContextBundle:
        return await gather_context(
            self.context_adapter,
            symbol,
            timeout=self.config.context_timeout_seconds,
            breaker=self.breaker,
        )

    @staticmethod
    def _score(
        matches: list[tuple[Detector, DetectionResult]],
        snapshot: FeatureSnapshot,
        confidence: ConfidenceResult,
        modifiers: StyleModifiers,
    ) -> list[DetectedOpportunity]:
        opportunities = []
        for detector, detection in matches:
            base = apply_confidence(detection.base_score, confidence)
            opportunities.append(DetectedOpportunity(
                detector=detector,
                detection=detection,
                base_score=base,
                style_scores=apply_style_modifiers(base, snapshot, modifiers),
            ))
        return opportunities

    def _build_signal(
        self,
        snapshot: FeatureSnapshot,
        best: DetectedOpportunity,
        asset_class: AssetClass,
        base_score: float,
        style_scores: StyleScores,
        rr: RiskReward,
        adaptive: AdaptiveThresholds | None,
    ) -> CompositeSignal:
        detector = best.detector
        style = style_scores.recommended_style

        if adaptive is not None:
            size = adaptive.size_multiplier
        else:
            size = 0.0 if get_time_of_day_window(snapshot) in NON_REGULAR_WINDOWS else 1.0

        created_at = snapshot.timestamp
        return CompositeSignal(
            symbol=snapshot.symbol,
            opportunity_type=detector.type,
            direction=detector.direction,
            asset_class=asset_class,
            base_score=round(base_score, 2),
            scalp_score=round(style_scores.scalp_score, 2),
            day_trade_score=round(style_scores.day_trade_score, 2),
            swing_score=round(style_scores.swing_score, 2),
            recommended_style=style,
            recommended_style_score=round(style_scores.recommended_style_score, 2),
            confluence={k: round(v, 2) for k, v in best.detection.factor_scores.items()},
            entry_price=rr.entry,
            stop_price=round(rr.stop, 4),
            targets=SignalTargets(t1=round(rr.t1, 4), t2=round(rr.t2, 4), t3=round(rr.t3, 4)),
            risk_reward=round(rr.ratio, 2),
            size_multiplier=size,
            created_at=created_at,
            expires_at=created_at + timedelta(minutes=self.config.signal_expiry_minutes),
            bar_time_key=generate_bar_time_key(snapshot.symbol, created_at, detector.type),
            detector_version=self.config.detector_version,
        )

    def _validate(
        self,
        base_score: float,
        style_scores: StyleScores,
        risk_reward: float,
        static: SignalThresholds,
        adaptive: AdaptiveThresholds | None,
        weekend: bool,
    ) -> str | None:
        """Name the first threshold the candidate falls short of, or None."""
        suffix = " (weekend)" if weekend else ""
        if adaptive is not None:
            min_base = adaptive.min_base_score
            min_style = adaptive.min_style_score
            min_rr = adaptive.min_risk_reward
        else:
            min_base = static.min_base_score
            min_style = static.min_style_score
            min_rr = static.min_risk_reward
            if weekend:
                if static.weekend_min_base_score is not None:
                    min_base = static.weekend_min_base_score
                if static.weekend_min_style_score is not None:
                    min_style = static.weekend_min_style_score

        style_suffix = suffix
        if self.optimized_params is not None:
            min_style = self.optimized_params.min_score_for(style_scores.recommended_style)
            style_suffix = " (optimized)"

        style_score = style_scores.recommended_style_score
        if base_score < min_base:
            return f"Base score {base_score:.1f} < {min_base:.0f}{suffix}"
        if style_score < min_style:
            return f"Style score {style_score:.1f} < {min_style:.0f}{style_suffix}"
        if risk_reward < min_rr:
            return f"Risk/reward {risk_reward:.2f} < {min_rr:.1f}"
        return None
