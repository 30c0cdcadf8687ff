"""Session helpers — trading-day calendar and time-of-day windows.

Windows are chosen from the snapshot's own session fields (minutes since
open) and its timestamp's US/Eastern calendar date, never wall-clock now,
so historical replays classify identically.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum

import pandas as pd

from confluence_scanner.contracts import FeatureSnapshot

MARKET_TZ = "America/New_York"
REGULAR_OPEN_MINUTES = 9 * 60 + 30  # 09:30 ET

# NYSE observed holidays for 2024-2027 (static set, extend as needed)
_NYSE_HOLIDAYS: set[date] = {
    # 2024
    date(2024, 1, 1), date(2024, 1, 15), date(2024, 2, 19),
    date(2024, 3, 29), date(2024, 5, 27), date(2024, 6, 19),
    date(2024, 7, 4), date(2024, 9, 2), date(2024, 11, 28),
    date(2024, 12, 25),
    # 2025
    date(2025, 1, 1), date(2025, 1, 20), date(2025, 2, 17),
    date(2025, 4, 18), date(2025, 5, 26), date(2025, 6, 19),
    date(2025, 7, 4), date(2025, 9, 1), date(2025, 11, 27),
    date(2025, 12, 25),
    # 2026
    date(2026, 1, 1), date(2026, 1, 19), date(2026, 2, 16),
    date(2026, 4, 3), date(2026, 5, 25), date(2026, 6, 19),
    date(2026, 7, 3), date(2026, 9, 7), date(2026, 11, 26),
    date(2026, 12, 25),
    # 2027
    date(2027, 1, 1), date(2027, 1, 18), date(2027, 2, 15),
    date(2027, 3, 26), date(2027, 5, 31), date(2027, 6, 18),
    date(2027, 7, 5), date(2027, 9, 6), date(2027, 11, 25),
    date(2027, 12, 24),
}


class TimeWindow(str, Enum):
    PRE_MARKET = "pre_market"
    OPENING_DRIVE = "opening_drive"
    MID_MORNING = "mid_morning"
    LATE_MORNING = "late_morning"
    LUNCH_CHOP = "lunch_chop"
    EARLY_AFTERNOON = "early_afternoon"
    AFTERNOON = "afternoon"
    POWER_HOUR = "power_hour"
    AFTER_HOURS = "after_hours"
    WEEKEND = "weekend"


NON_REGULAR_WINDOWS = frozenset({TimeWindow.PRE_MARKET, TimeWindow.AFTER_HOURS, TimeWindow.WEEKEND})

# (upper bound in minutes since open, window) for regular hours
_REGULAR_WINDOW_BOUNDS: tuple[tuple[float, TimeWindow], ...] = (
    (30, TimeWindow.OPENING_DRIVE),
    (90, TimeWindow.MID_MORNING),
    (120, TimeWindow.LATE_MORNING),
    (240, TimeWindow.LUNCH_CHOP),
    (300, TimeWindow.EARLY_AFTERNOON),
    (330, TimeWindow.AFTERNOON),
)


def is_trading_day(d: date) -> bool:
    return d.weekday() < 5 and d not in _NYSE_HOLIDAYS


def next_trading_day(d: date) -> date:
    nxt = d + timedelta(days=1)
    while not is_trading_day(nxt):
        nxt += timedelta(days=1)
    return nxt


def to_market_time(ts: datetime) -> pd.Timestamp:
    """Convert a timestamp to US/Eastern (naive timestamps are treated as UTC)."""
    stamp = pd.Timestamp(ts)
    if stamp.tzinfo is None:
        stamp = stamp.tz_localize("UTC")
    return stamp.tz_convert(MARKET_TZ)


def is_weekend(snapshot: FeatureSnapshot) -> bool:
    """True on Saturdays, Sundays and exchange holidays (US/Eastern date)."""
    return not is_trading_day(to_market_time(snapshot.timestamp).date())


def regular_window(minutes_since_open: float) -> TimeWindow:
    for upper, window in _REGULAR_WINDOW_BOUNDS:
        if minutes_since_open < upper:
            return window
    return TimeWindow.POWER_HOUR


def get_time_of_day_window(snapshot: FeatureSnapshot) -> TimeWindow:
    """Classify a snapshot into a time-of-day window; weekend takes precedence."""
    if is_weekend(snapshot):
        return TimeWindow.WEEKEND

    session = snapshot.session
    if session.is_regular_hours is not True:
        local = to_market_time(snapshot.timestamp)
        if local.hour * 60 + local.minute < REGULAR_OPEN_MINUTES:
            return TimeWindow.PRE_MARKET
        return TimeWindow.AFTER_HOURS

    return regular_window(max(0.0, session.minutes_since_open or 0.0))
