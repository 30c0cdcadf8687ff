"""Tests for session calendar and time-of-day windows."""

from datetime import date, datetime, timezone

import pytest

from confluence_scanner.features.session import (
    TimeWindow,
    get_time_of_day_window,
    is_trading_day,
    is_weekend,
    next_trading_day,
    regular_window,
)


class TestCalendar:
    def test_weekday_is_trading_day(self):
        assert is_trading_day(date(2026, 3, 10))

    def test_weekend_is_not_trading_day(self):
        assert not is_trading_day(date(2026, 3, 14))
        assert not is_trading_day(date(2026, 3, 15))

    def test_holiday_is_not_trading_day(self):
        assert not is_trading_day(date(2026, 7, 3))

    def test_next_trading_day_skips_weekend_and_holiday(self):
        # Thu 2026-07-02 -> Fri 07-03 holiday -> Mon 07-06
        assert next_trading_day(date(2026, 7, 2)) == date(2026, 7, 6)


class TestRegularWindow:
    @pytest.mark.parametrize("minutes,expected", [
        (0, TimeWindow.OPENING_DRIVE),
        (29, TimeWindow.OPENING_DRIVE),
        (30, TimeWindow.MID_MORNING),
        (89, TimeWindow.MID_MORNING),
        (90, TimeWindow.LATE_MORNING),
        (120, TimeWindow.LUNCH_CHOP),
        (239, TimeWindow.LUNCH_CHOP),
        (240, TimeWindow.EARLY_AFTERNOON),
        (300, TimeWindow.AFTERNOON),
        (330, TimeWindow.POWER_HOUR),
        (389, TimeWindow.POWER_HOUR),
    ])
    def test_buckets(self, minutes, expected):
        assert regular_window(minutes) == expected


class TestTimeOfDayWindow:
    def test_regular_session(self, snapshot):
        assert get_time_of_day_window(snapshot) == TimeWindow.OPENING_DRIVE

    def test_uses_minutes_since_open(self, make_snapshot):
        snap = make_snapshot(session={"minutes_since_open": 200})
        assert get_time_of_day_window(snap) == TimeWindow.LUNCH_CHOP

    def test_weekend_takes_precedence(self, make_snapshot):
        # Saturday, even with a regular-hours flag set upstream
        snap = make_snapshot(timestamp=datetime(2026, 3, 14, 15, 0, tzinfo=timezone.utc))
        assert is_weekend(snap)
        assert get_time_of_day_window(snap) == TimeWindow.WEEKEND

    def test_holiday_counts_as_weekend(self, make_snapshot):
        snap = make_snapshot(timestamp=datetime(2026, 11, 26, 15, 0, tzinfo=timezone.utc))
        assert get_time_of_day_window(snap) == TimeWindow.WEEKEND

    def test_pre_market(self, make_snapshot):
        # 08:00 ET
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc),
            session={"minutes_since_open": None, "is_regular_hours": False},
        )
        assert get_time_of_day_window(snap) == TimeWindow.PRE_MARKET

    def test_after_hours(self, make_snapshot):
        # 17:00 ET
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc),
            session={"is_regular_hours": False},
        )
        assert get_time_of_day_window(snap) == TimeWindow.AFTER_HOURS

    def test_unknown_session_flag_is_not_regular(self, make_snapshot):
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 10, 21, 0, tzinfo=timezone.utc),
            session={"is_regular_hours": None},
        )
        assert get_time_of_day_window(snap) == TimeWindow.AFTER_HOURS

    def test_utc_evening_is_still_eastern_weekday(self, make_snapshot):
        # Sat 00:30 UTC is Fri 20:30 ET
        snap = make_snapshot(
            timestamp=datetime(2026, 3, 14, 0, 30, tzinfo=timezone.utc),
            session={"is_regular_hours": False},
        )
        assert not is_weekend(snap)
        assert get_time_of_day_window(snap) == TimeWindow.AFTER_HOURS
