"""Tests for market regime and VIX tag normalization."""

import pytest

from confluence_scanner.features.regime import (
    MarketRegime,
    VixLevel,
    classify_vix,
    parse_market_regime,
    parse_vix_level,
    resolve_market_regime,
    resolve_vix_level,
)


@pytest.mark.parametrize("vix,expected", [
    (12.0, VixLevel.LOW),
    (15.0, VixLevel.MEDIUM),
    (24.9, VixLevel.MEDIUM),
    (25.0, VixLevel.HIGH),
    (34.9, VixLevel.HIGH),
    (35.0, VixLevel.EXTREME),
])
def test_classify_vix(vix, expected):
    assert classify_vix(vix) == expected


def test_parse_regime_aliases():
    assert parse_market_regime("Trending") == MarketRegime.TRENDING
    assert parse_market_regime("range-bound") == MarketRegime.RANGING
    assert parse_market_regime("chop") == MarketRegime.CHOPPY
    assert parse_market_regime("sideways-ish") is None
    assert parse_market_regime(None) is None


def test_parse_vix_level_normal_is_medium():
    assert parse_vix_level("normal") == VixLevel.MEDIUM
    assert parse_vix_level("EXTREME") == VixLevel.EXTREME
    assert parse_vix_level("huge") is None


def test_resolve_regime_defaults_to_ranging(make_snapshot):
    assert resolve_market_regime(make_snapshot(market_regime=None)) == MarketRegime.RANGING
    assert resolve_market_regime(make_snapshot(market_regime="volatile")) == MarketRegime.VOLATILE


def test_resolve_vix_prefers_tag_then_number(make_snapshot):
    assert resolve_vix_level(make_snapshot(vix_level="high", vix=12.0)) == VixLevel.HIGH
    assert resolve_vix_level(make_snapshot(vix_level=None, vix=40.0)) == VixLevel.EXTREME
    assert resolve_vix_level(make_snapshot(vix_level=None, vix=None)) == VixLevel.MEDIUM
