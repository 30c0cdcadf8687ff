"""End-to-end tests for the composite scanner pipeline."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from confluence_scanner.config import ScannerConfig, SignalThresholds, UniversalFilters
from confluence_scanner.contracts import Direction, FeatureSnapshot, TradingStyle
from confluence_scanner.engines.context import OptimizedParams
from confluence_scanner.engines.scanner import CompositeScanner, check_universal_filters
from confluence_scanner.signals.detectors import DetectorRegistry

T0 = datetime(2026, 3, 10, 13, 40, tzinfo=timezone.utc)
SATURDAY = datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc)


class SleepyAdapter:
    async def _slow(self, symbol):
        await asyncio.sleep(1.0)

    iv_context = gamma_context = mtf_context = flow_context = regime_context = _slow


class RecordingChainProvider:
    def __init__(self, error: Exception | None = None):
        self.calls: list[str] = []
        self.error = error

    async def get_options_chain(self, symbol):
        self.calls.append(symbol)
        if self.error:
            raise self.error
        return None


@pytest.fixture
def scanner(scanner_config, stub_registry):
    return CompositeScanner(config=scanner_config, registry=stub_registry)


class TestAccepted:
    @pytest.mark.asyncio
    async def test_opening_drive_breakout(self, scanner, snapshot):
        result = await scanner.scan_symbol(snapshot)
        assert not result.filtered, result.filter_reason
        signal = result.signal
        assert signal.opportunity_type == "test_breakout_long"
        assert signal.direction == Direction.LONG
        assert signal.base_score == 82.0
        assert (signal.scalp_score, signal.day_trade_score) == (100.0, 100.0)
        assert signal.swing_score == pytest.approx(90.2)
        assert signal.recommended_style == TradingStyle.SCALP
        assert signal.stop_price == pytest.approx(99.55)
        assert signal.targets.t2 == pytest.approx(100.9)
        assert signal.risk_reward == 2.0
        assert signal.size_multiplier == 1.0
        assert signal.created_at == snapshot.timestamp
        assert signal.expires_at - signal.created_at == timedelta(minutes=5)
        assert signal.bar_time_key == "2026-03-10T13:40:00Z_ACME_test_breakout_long"
        assert result.detection_count == 1

    @pytest.mark.asyncio
    async def test_diagnostics(self, scanner, snapshot):
        result = await scanner.scan_symbol(snapshot)
        assert set(result.diagnostics) == {
            "confidence", "detections", "style", "context", "adaptive_thresholds", "iv",
        }
        assert result.diagnostics["adaptive_thresholds"]["min_base_score"] == 65
        payload = json.loads(json.dumps(result.to_dict(), default=str))
        assert payload["signal"]["symbol"] == "ACME"

    @pytest.mark.asyncio
    async def test_no_diagnostics_by_default(self, stub_registry, snapshot):
        scanner = CompositeScanner(config=ScannerConfig(), registry=stub_registry)
        result = await scanner.scan_symbol(snapshot)
        assert result.diagnostics is None

    @pytest.mark.asyncio
    async def test_builtin_detectors(self, snapshot):
        scanner = CompositeScanner(config=ScannerConfig())
        result = await scanner.scan_symbol(snapshot)
        assert result.signal is not None
        assert result.signal.opportunity_type == "breakout_bullish"
        assert result.detection_count == 3

    @pytest.mark.asyncio
    async def test_scan_many(self, scanner, make_snapshot):
        results = await scanner.scan_many([make_snapshot(), make_snapshot(symbol="BETA")])
        assert [r.signal.symbol for r in results] == ["ACME", "BETA"]


class TestFiltered:
    @pytest.mark.asyncio
    async def test_blacklisted(self, stub_registry, snapshot):
        config = ScannerConfig(filters=UniversalFilters(blacklist=frozenset({"ACME"})))
        result = await CompositeScanner(config=config, registry=stub_registry).scan_symbol(snapshot)
        assert result.filtered
        assert result.filter_reason == "Failed universal filters: ACME is blacklisted"

    @pytest.mark.asyncio
    async def test_low_confidence(self, scanner):
        sparse = FeatureSnapshot(symbol="ACME", timestamp=T0, price={"current": 100.0})
        result = await scanner.scan_symbol(sparse)
        assert result.filter_reason.startswith("Confidence too low")

    @pytest.mark.asyncio
    async def test_nothing_detected(self, scanner_config, make_detector, snapshot):
        registry = DetectorRegistry([make_detector(fires=False)])
        result = await CompositeScanner(config=scanner_config, registry=registry).scan_symbol(snapshot)
        assert result.filter_reason == "No opportunities detected"
        assert result.detection_count == 0

    @pytest.mark.asyncio
    async def test_disabled_in_choppy_regime(self, scanner, make_snapshot):
        result = await scanner.scan_symbol(make_snapshot(market_regime="choppy"))
        assert result.filter_reason.startswith("Strategy disabled in choppy regime")

    @pytest.mark.asyncio
    async def test_iv_gate(self, scanner, make_snapshot):
        result = await scanner.scan_symbol(make_snapshot(iv_percentile=90))
        assert result.filter_reason == "IV gate: IV percentile 90 too high for buying premium"

    @pytest.mark.asyncio
    async def test_base_score_below_minimum(self, scanner_config, make_detector, snapshot):
        registry = DetectorRegistry([make_detector(base_score=50.0)])
        result = await CompositeScanner(config=scanner_config, registry=registry).scan_symbol(snapshot)
        assert result.filter_reason == "Base score 50.0 < 65"

    @pytest.mark.asyncio
    async def test_minimums_compare_unrounded_scores(self, scanner_config, make_detector, snapshot):
        registry = DetectorRegistry([make_detector(base_score=64.996)])
        result = await CompositeScanner(config=scanner_config, registry=registry).scan_symbol(snapshot)
        assert result.filtered
        assert result.filter_reason.startswith("Base score ")
        assert result.filter_reason.endswith(" < 65")

    @pytest.mark.asyncio
    async def test_optimized_style_minimum(self, make_detector, snapshot):
        config = ScannerConfig(
            use_adaptive_thresholds=False,
            default_thresholds=SignalThresholds(min_base_score=50, min_style_score=50),
        )
        params = OptimizedParams.model_validate({"minScores": {"scalp": 95, "day": 95, "swing": 95}})
        scanner = CompositeScanner(
            config=config,
            registry=DetectorRegistry([make_detector(base_score=60.0)]),
            optimized_params=params,
        )
        result = await scanner.scan_symbol(snapshot)
        assert result.filter_reason == "Style score 90.0 < 95 (optimized)"


class TestDedupThroughScanner:
    @pytest.mark.asyncio
    async def test_resubmitted_snapshot_is_duplicate(self, scanner, snapshot):
        assert (await scanner.scan_symbol(snapshot)).signal is not None
        result = await scanner.scan_symbol(snapshot)
        assert result.filter_reason == "Duplicate bar time key"

    @pytest.mark.asyncio
    async def test_cooldown_then_rate_limit(self, scanner, make_snapshot):
        assert (await scanner.scan_symbol(make_snapshot())).signal is not None
        cooled = await scanner.scan_symbol(make_snapshot(timestamp=T0 + timedelta(seconds=1)))
        assert cooled.filter_reason == "In cooldown (15 minutes)"
        assert (await scanner.scan_symbol(make_snapshot(timestamp=T0 + timedelta(minutes=16)))).signal is not None
        limited = await scanner.scan_symbol(make_snapshot(timestamp=T0 + timedelta(minutes=32)))
        assert limited.filter_reason == "Max signals per hour exceeded (2)"


class TestSizing:
    @pytest.mark.asyncio
    async def test_after_hours_signal_is_unsized(self, stub_registry, make_snapshot):
        config = ScannerConfig(
            use_adaptive_thresholds=False,
            default_thresholds=SignalThresholds(min_base_score=40, min_style_score=40),
        )
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc),
            session={"is_regular_hours": False},
        )
        result = await CompositeScanner(config=config, registry=stub_registry).scan_symbol(snap)
        assert result.signal is not None, result.filter_reason
        assert result.signal.size_multiplier == 0.0
        assert result.signal.recommended_style_score == pytest.approx(49.2)


    @pytest.mark.asyncio
    @pytest.mark.parametrize("adaptive", [True, False])
    async def test_weekend_swing_signal_is_informational(self, stub_registry, make_snapshot, adaptive):
        snap = make_snapshot(timestamp=SATURDAY, session={"is_regular_hours": False})
        config = ScannerConfig(use_adaptive_thresholds=adaptive)
        result = await CompositeScanner(config=config, registry=stub_registry).scan_symbol(snap)
        assert result.signal is not None, result.filter_reason
        assert result.signal.recommended_style == TradingStyle.SWING
        assert result.signal.swing_score == 100.0
        assert result.signal.scalp_score == pytest.approx(49.2)
        assert result.signal.size_multiplier == 0.0


class TestSelection:
    @pytest.mark.asyncio
    async def test_highest_style_score_wins(self, scanner_config, make_detector, snapshot):
        registry = DetectorRegistry([
            make_detector("weak_breakout_long", base_score=60.0),
            make_detector("strong_breakout_long", base_score=70.0),
        ])
        result = await CompositeScanner(config=scanner_config, registry=registry).scan_symbol(snapshot)
        assert result.signal.opportunity_type == "strong_breakout_long"
        assert result.detection_count == 2

    @pytest.mark.asyncio
    async def test_tie_keeps_registration_order(self, scanner_config, make_detector, snapshot):
        registry = DetectorRegistry([
            make_detector("first_breakout_long"),
            make_detector("second_breakout_long"),
        ])
        result = await CompositeScanner(config=scanner_config, registry=registry).scan_symbol(snapshot)
        assert result.signal.opportunity_type == "first_breakout_long"


class TestExternalLookups:
    @pytest.mark.asyncio
    async def test_slow_context_does_not_block(self, stub_registry, snapshot):
        config = ScannerConfig(include_diagnostics=True, context_timeout_seconds=0.05)
        scanner = CompositeScanner(config=config, registry=stub_registry, context_adapter=SleepyAdapter())
        result = await scanner.scan_symbol(snapshot)
        assert result.signal is not None
        assert "iv" in result.diagnostics["context"]["errors"]

    @pytest.mark.asyncio
    async def test_chain_only_fetched_for_index(self, scanner_config, stub_registry, make_snapshot):
        provider = RecordingChainProvider()
        scanner = CompositeScanner(config=scanner_config, registry=stub_registry, options_provider=provider)
        await scanner.scan_symbol(make_snapshot())
        await scanner.scan_symbol(make_snapshot(symbol="SPX"))
        assert provider.calls == ["SPX"]

    @pytest.mark.asyncio
    async def test_chain_failure_is_tolerated(self, scanner_config, stub_registry, make_snapshot):
        provider = RecordingChainProvider(error=RuntimeError("chain feed down"))
        scanner = CompositeScanner(config=scanner_config, registry=stub_registry, options_provider=provider)
        result = await scanner.scan_symbol(make_snapshot(symbol="SPX"))
        assert result.signal is not None


def test_optimized_params_loaded_from_settings(tmp_path, stub_registry):
    path = tmp_path / "params.yaml"
    path.write_text("minScores:\n  scalp: 90\n")
    settings = SimpleNamespace(optimized_params_path=str(path))
    scanner = CompositeScanner(registry=stub_registry, settings=settings)
    assert scanner.optimized_params.min_scores.scalp == 90


@pytest.mark.parametrize("overrides,reason", [
    ({"price": {"current": 0.0}}, "invalid price"),
    ({"price": {"spread_pct": 0.8}}, "spread 0.80% above maximum 0.50%"),
])
def test_universal_filter_reasons(make_snapshot, overrides, reason):
    assert check_universal_filters(make_snapshot(**overrides), ScannerConfig()) == reason
