"""Tests for the detector registry and composite scoring."""

import logging

import pytest

from confluence_scanner.contracts import AssetClass, Direction, OptionsChainSnapshot
from confluence_scanner.signals.detectors import (
    ALL_ASSET_CLASSES,
    Detector,
    DetectorRegistry,
    ScoreFactor,
    calculate_composite_score,
    default_registry,
    get_asset_class,
)


def _boom(snapshot, chain=None):
    raise RuntimeError("bad feature")


class TestAssetClass:
    def test_index(self):
        assert get_asset_class("spx") == AssetClass.INDEX
        assert get_asset_class("$NDX") == AssetClass.INDEX

    def test_etf(self):
        assert get_asset_class("SPY") == AssetClass.EQUITY_ETF

    def test_stock_default(self):
        assert get_asset_class("ACME") == AssetClass.STOCK


class TestCompositeScore:
    def test_weighted_mean(self, snapshot):
        factors = [
            ScoreFactor("a", 0.75, lambda s, c=None: 80),
            ScoreFactor("b", 0.25, lambda s, c=None: 40),
        ]
        score, breakdown = calculate_composite_score(factors, snapshot)
        assert score == pytest.approx(70.0)
        assert breakdown == {"a": 80.0, "b": 40.0}

    def test_factor_scores_clamped_and_nan_zeroed(self, snapshot):
        factors = [
            ScoreFactor("high", 0.5, lambda s, c=None: 150),
            ScoreFactor("nan", 0.5, lambda s, c=None: float("nan")),
        ]
        score, breakdown = calculate_composite_score(factors, snapshot)
        assert breakdown == {"high": 100.0, "nan": 0.0}
        assert score == pytest.approx(50.0)

    def test_zero_total_weight(self, snapshot):
        score, _ = calculate_composite_score([ScoreFactor("a", 0.0, lambda s, c=None: 90)], snapshot)
        assert score == 0.0


class TestDetector:
    def test_requires_factors(self):
        with pytest.raises(ValueError, match="no score factors"):
            Detector("x", Direction.LONG, ALL_ASSET_CLASSES, lambda s, c=None: True, ())

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            Detector(
                "x", Direction.LONG, ALL_ASSET_CLASSES, lambda s, c=None: True,
                (ScoreFactor("a", -0.1, lambda s, c=None: 50),),
            )

    def test_detect_with_score_abstains(self, snapshot, make_detector):
        result = make_detector(fires=False).detect_with_score(snapshot)
        assert not result.detected
        assert result.base_score == 0.0

    def test_applies_to_asset_class_and_chain(self):
        det = Detector(
            "idx", Direction.LONG, frozenset({AssetClass.INDEX}), lambda s, c=None: True,
            (ScoreFactor("a", 1.0, lambda s, c=None: 50),), requires_options_data=True,
        )
        assert not det.applies_to(AssetClass.STOCK, has_chain=True)
        assert not det.applies_to(AssetClass.INDEX, has_chain=False)
        assert det.applies_to(AssetClass.INDEX, has_chain=True)


class TestRegistry:
    def test_duplicate_registration(self, make_detector):
        reg = DetectorRegistry([make_detector("a")])
        with pytest.raises(ValueError, match="already registered"):
            reg.register(make_detector("a"))

    def test_detect_all_keeps_registration_order(self, snapshot, make_detector):
        reg = DetectorRegistry([
            make_detector("first", 60), make_detector("skip", fires=False), make_detector("second", 90),
        ])
        matches = reg.detect_all(snapshot)
        assert [d.type for d, _ in matches] == ["first", "second"]
        assert matches[1][1].base_score == pytest.approx(90.0)

    def test_faulting_detector_is_non_matching(self, snapshot, make_detector, caplog):
        faulty = Detector("faulty", Direction.LONG, ALL_ASSET_CLASSES, _boom,
                          (ScoreFactor("a", 1.0, lambda s, c=None: 50),))
        reg = DetectorRegistry([faulty, make_detector("ok")])
        with caplog.at_level(logging.WARNING):
            matches = reg.detect_all(snapshot)
        assert [d.type for d, _ in matches] == ["ok"]
        assert "faulty" in caplog.text

    def test_faulting_score_factor_is_non_matching(self, snapshot):
        det = Detector("bad_factor", Direction.LONG, ALL_ASSET_CLASSES, lambda s, c=None: True,
                       (ScoreFactor("a", 1.0, _boom),))
        assert DetectorRegistry([det]).detect_all(snapshot) == []

    def test_options_detectors_skipped_without_chain(self):
        reg = default_registry()
        types = {d.type for d in reg.applicable(AssetClass.INDEX, has_chain=False)}
        assert "gamma_squeeze_bullish" not in types
        types = {d.type for d in reg.applicable(AssetClass.INDEX, has_chain=True)}
        assert "gamma_squeeze_bullish" in types


class TestDefaultRegistry:
    def test_contains_every_family_in_pairs(self):
        reg = default_registry()
        types = [d.type for d in reg]
        assert len(reg) == 18
        assert types[:2] == ["breakout_bullish", "breakout_bearish"]
        for d in reg:
            assert d.direction in (Direction.LONG, Direction.SHORT)
            assert abs(sum(f.weight for f in d.score_factors) - 1.0) < 1e-9

    def test_breakout_fires_on_fixture(self, snapshot):
        matches = default_registry().detect_all(snapshot)
        assert "breakout_bullish" in [d.type for d, _ in matches]

    def test_gamma_squeeze_with_chain(self, make_snapshot):
        spx = make_snapshot(symbol="SPX", price={"current": 5000.0}, vwap={"value": 4990.0})
        chain = OptionsChainSnapshot(dealer_gamma=-1.5, gamma_flip_level=4990.0, call_put_ratio=1.4)
        matches = default_registry().detect_all(spx, chain)
        assert "gamma_squeeze_bullish" in [d.type for d, _ in matches]
        assert "gamma_squeeze_bearish" not in [d.type for d, _ in matches]
