"""Tests for trend-continuation detectors."""

from confluence_scanner.signals.trend import build_trend_detectors


def test_pullback_in_stacked_uptrend_fires(snapshot):
    long_, short = build_trend_detectors()
    result = long_.detect_with_score(snapshot)
    assert result.detected
    assert not short.detect(snapshot)
    assert result.factor_scores["mtf_alignment"] == 100.0


def test_unstacked_emas_do_not_fire(make_snapshot):
    long_, _ = build_trend_detectors()
    snap = make_snapshot(ema={"9": 99.2, "21": 99.4, "50": 98.6})
    assert not long_.detect(snap)


def test_extended_price_is_not_a_pullback(make_snapshot):
    long_, _ = build_trend_detectors()
    snap = make_snapshot(price={"current": 101.5}, vwap={"value": 100.5})
    assert not long_.detect(snap)


def test_overheated_rsi_does_not_fire(make_snapshot):
    long_, _ = build_trend_detectors()
    assert not long_.detect(make_snapshot(rsi={"14": 72.0}))
