"""Session and regime classification helpers."""

from confluence_scanner.features.regime import MarketRegime, VixLevel, classify_vix
from confluence_scanner.features.session import TimeWindow, get_time_of_day_window, is_trading_day

__all__ = [
    "MarketRegime",
    "VixLevel",
    "classify_vix",
    "TimeWindow",
    "get_time_of_day_window",
    "is_trading_day",
]
