"""
Session calendar tests.

Daylight-saving boundaries, UTC/local round trips, session bounds and
the daily roll-over.
"""

import pytest
from datetime import datetime, date, time, timedelta, timezone

from session_trader.config import SessionConfig
from session_trader.market_data import Bar
from session_trader.session_engine import (
    SessionEngine,
    nth_weekday_of_month,
    is_us_daylight_saving,
    utc_offset_at,
    to_local,
    to_utc,
    local_date_of,
    session_bounds_for,
    STANDARD_OFFSET,
    DAYLIGHT_OFFSET,
    SUNDAY,
)


def u(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_bar(ts: datetime, high: float = 1.1060, low: float = 1.1040) -> Bar:
    return Bar(timestamp=ts, open=1.1050, high=high, low=low, close=1.1050)


# ============================================================================
# Nth weekday
# ============================================================================

class TestNthWeekday:

    def test_second_sunday_of_march(self):
        assert nth_weekday_of_month(2024, 3, SUNDAY, 2) == date(2024, 3, 10)
        assert nth_weekday_of_month(2025, 3, SUNDAY, 2) == date(2025, 3, 9)

    def test_first_sunday_of_november(self):
        assert nth_weekday_of_month(2024, 11, SUNDAY, 1) == date(2024, 11, 3)
        assert nth_weekday_of_month(2025, 11, SUNDAY, 1) == date(2025, 11, 2)

    def test_month_starting_on_the_weekday(self):
        # 2026-03-01 is a Sunday
        assert nth_weekday_of_month(2026, 3, SUNDAY, 1) == date(2026, 3, 1)
        assert nth_weekday_of_month(2026, 3, SUNDAY, 2) == date(2026, 3, 8)

    def test_out_of_range_occurrence_raises(self):
        """February 2023 has only four Sundays - never wraps into March."""
        with pytest.raises(ValueError):
            nth_weekday_of_month(2023, 2, SUNDAY, 5)

    def test_non_positive_occurrence_raises(self):
        with pytest.raises(ValueError):
            nth_weekday_of_month(2024, 3, SUNDAY, 0)


# ============================================================================
# Daylight saving
# ============================================================================

class TestDaylightSaving:

    def test_local_window_edges(self):
        assert not is_us_daylight_saving(datetime(2024, 3, 10, 1, 59))
        assert is_us_daylight_saving(datetime(2024, 3, 10, 2, 0))
        assert is_us_daylight_saving(datetime(2024, 11, 3, 1, 59))
        assert not is_us_daylight_saving(datetime(2024, 11, 3, 2, 0))

    def test_offset_switches_at_0700_utc_in_march(self):
        assert utc_offset_at(u(2024, 3, 10, 6, 59)) == STANDARD_OFFSET
        assert utc_offset_at(u(2024, 3, 10, 7, 0)) == DAYLIGHT_OFFSET

    def test_offset_switches_at_0600_utc_in_november(self):
        assert utc_offset_at(u(2024, 11, 3, 5, 59)) == DAYLIGHT_OFFSET
        assert utc_offset_at(u(2024, 11, 3, 6, 0)) == STANDARD_OFFSET

    def test_spring_forward_skips_the_two_oclock_hour(self):
        assert to_local(u(2024, 3, 10, 6, 59)) == datetime(2024, 3, 10, 1, 59)
        assert to_local(u(2024, 3, 10, 7, 0)) == datetime(2024, 3, 10, 3, 0)

    def test_fall_back_repeats_the_one_oclock_hour(self):
        assert to_local(u(2024, 11, 3, 5, 30)) == datetime(2024, 11, 3, 1, 30)
        assert to_local(u(2024, 11, 3, 6, 30)) == datetime(2024, 11, 3, 1, 30)

    def test_repeated_hour_resolves_to_daylight_time(self):
        assert to_utc(datetime(2024, 11, 3, 1, 30)) == u(2024, 11, 3, 5, 30)

    def test_to_utc_returns_aware_datetime(self):
        result = to_utc(datetime(2024, 7, 1, 9, 30))
        assert result.tzinfo is not None
        assert result == u(2024, 7, 1, 13, 30)

    def test_naive_utc_input_is_treated_as_utc(self):
        assert to_local(datetime(2024, 1, 15, 14, 30)) == datetime(2024, 1, 15, 9, 30)


class TestRoundTrips:

    def test_utc_round_trip_through_march_transition_week(self):
        start = u(2024, 3, 7)
        for step in range(7 * 24 * 4):
            instant = start + timedelta(minutes=15 * step)
            assert to_utc(to_local(instant)) == instant

    def test_utc_round_trip_through_november_transition_week(self):
        start = u(2024, 10, 31)
        repeat_start, repeat_end = u(2024, 11, 3, 6), u(2024, 11, 3, 7)
        for step in range(7 * 24 * 4):
            instant = start + timedelta(minutes=15 * step)
            if repeat_start <= instant < repeat_end:
                continue
            assert to_utc(to_local(instant)) == instant

    def test_local_round_trip_outside_the_gap(self):
        start = datetime(2024, 3, 7)
        gap_start, gap_end = datetime(2024, 3, 10, 2), datetime(2024, 3, 10, 3)
        for step in range(7 * 24 * 4):
            local = start + timedelta(minutes=15 * step)
            if gap_start <= local < gap_end:
                continue
            assert to_local(to_utc(local)) == local

    def test_local_date_changes_at_local_midnight(self):
        # 03:59 UTC is 23:59 EDT the previous day
        assert local_date_of(u(2024, 7, 2, 3, 59)) == date(2024, 7, 1)
        assert local_date_of(u(2024, 7, 2, 4, 0)) == date(2024, 7, 2)


# ============================================================================
# Session bounds
# ============================================================================

class TestSessionBounds:

    def test_summer_bounds(self):
        bounds = session_bounds_for(date(2024, 7, 1), SessionConfig())

        assert bounds.session_open == u(2024, 7, 1, 13, 30)
        assert bounds.signal_window_end == u(2024, 7, 1, 13, 45)
        assert bounds.no_entry_after == u(2024, 7, 1, 15, 0)
        assert bounds.flatten_deadline == u(2024, 7, 1, 19, 59)
        assert bounds.session_close == u(2024, 7, 1, 20, 0)

    def test_winter_bounds(self):
        bounds = session_bounds_for(date(2024, 1, 15), SessionConfig())

        assert bounds.session_open == u(2024, 1, 15, 14, 30)
        assert bounds.session_close == u(2024, 1, 15, 21, 0)

    def test_bounds_on_spring_forward_day(self):
        bounds = session_bounds_for(date(2024, 3, 10), SessionConfig())
        assert bounds.session_open == u(2024, 3, 10, 13, 30)

    def test_invariants(self):
        for day in (date(2024, 1, 15), date(2024, 3, 10), date(2024, 11, 3), date(2024, 7, 1)):
            bounds = session_bounds_for(day, SessionConfig(cutoff_time="16:00"))
            assert bounds.session_open < bounds.no_entry_after <= bounds.session_close
            assert bounds.flatten_deadline <= bounds.session_close

    def test_custom_cutoff(self):
        bounds = session_bounds_for(date(2024, 7, 1), SessionConfig(cutoff_time="10:30"))
        assert bounds.no_entry_after == u(2024, 7, 1, 14, 30)

    def test_unparseable_cutoff_uses_fallback(self):
        bounds = session_bounds_for(
            date(2024, 7, 1), SessionConfig(cutoff_time="half past ten"), cutoff_fallback="10:30"
        )
        assert bounds.no_entry_after == u(2024, 7, 1, 14, 30)

    def test_cutoff_before_open_uses_fallback(self):
        bounds = session_bounds_for(date(2024, 7, 1), SessionConfig(cutoff_time="08:00"))
        assert bounds.no_entry_after == u(2024, 7, 1, 15, 0)

    def test_close_buffer_is_clamped(self):
        short = session_bounds_for(date(2024, 7, 1), SessionConfig(close_buffer_seconds=1))
        long = session_bounds_for(date(2024, 7, 1), SessionConfig(close_buffer_seconds=10_000))

        assert short.flatten_deadline == u(2024, 7, 1, 19, 59, 55)
        assert long.flatten_deadline == u(2024, 7, 1, 19, 45)

    def test_entry_window(self):
        bounds = session_bounds_for(date(2024, 7, 1), SessionConfig())

        assert not bounds.in_entry_window(u(2024, 7, 1, 13, 29))
        assert bounds.in_entry_window(u(2024, 7, 1, 13, 30))
        assert not bounds.in_entry_window(u(2024, 7, 1, 19, 59))
        assert not bounds.in_entry_window(u(2024, 7, 1, 13, 40), bounds.signal_window_end)


# ============================================================================
# Session engine
# ============================================================================

class TestSessionEngine:

    def test_bounds_before_update_raise(self):
        engine = SessionEngine(SessionConfig())
        with pytest.raises(RuntimeError):
            _ = engine.bounds

    def test_rollover_happens_once_per_local_date(self):
        engine = SessionEngine(SessionConfig())

        assert engine.update(u(2024, 7, 1, 13, 0)) is True
        assert engine.update(u(2024, 7, 1, 18, 0)) is False
        # Still July 1st in New York
        assert engine.update(u(2024, 7, 2, 3, 0)) is False
        assert engine.update(u(2024, 7, 2, 13, 0)) is True
        assert engine.current_date == date(2024, 7, 2)

    def test_daily_counter_resets_on_new_day(self):
        engine = SessionEngine(SessionConfig())
        engine.update(u(2024, 7, 1, 14, 0))
        engine.record_trade_opened()
        engine.record_trade_opened()
        assert engine.trades_today == 2

        engine.update(u(2024, 7, 1, 19, 0))
        assert engine.trades_today == 2

        engine.update(u(2024, 7, 2, 14, 0))
        assert engine.trades_today == 0

    def test_is_past_flatten(self):
        engine = SessionEngine(SessionConfig())
        assert not engine.is_past_flatten(u(2024, 7, 1, 20, 0))

        engine.update(u(2024, 7, 1, 14, 0))
        assert not engine.is_past_flatten(u(2024, 7, 1, 19, 58, 59))
        assert engine.is_past_flatten(u(2024, 7, 1, 19, 59))


class TestOpeningRange:

    def test_range_from_window_bars_only(self):
        engine = SessionEngine(SessionConfig())
        engine.update(u(2024, 7, 1, 13, 50))

        bars = [
            make_bar(u(2024, 7, 1, 13, 25), high=1.2000, low=1.0000),
            make_bar(u(2024, 7, 1, 13, 30), high=1.1060, low=1.1040),
            make_bar(u(2024, 7, 1, 13, 35), high=1.1080, low=1.1045),
            make_bar(u(2024, 7, 1, 13, 40), high=1.1070, low=1.1020),
            make_bar(u(2024, 7, 1, 13, 45), high=1.1200, low=1.0900),
        ]
        opening_range = engine.define_opening_range(bars)

        assert opening_range.high == 1.1080
        assert opening_range.low == 1.1020
        assert opening_range.bar_count == 3
        assert opening_range.midpoint == pytest.approx(1.1050)

    def test_range_undefined_without_window_bars(self):
        engine = SessionEngine(SessionConfig())
        engine.update(u(2024, 7, 1, 13, 50))

        assert engine.define_opening_range([make_bar(u(2024, 7, 1, 12, 0))]) is None
        assert engine.opening_range is None

    def test_range_resets_on_new_day(self):
        engine = SessionEngine(SessionConfig())
        engine.update(u(2024, 7, 1, 13, 50))
        engine.define_opening_range([make_bar(u(2024, 7, 1, 13, 30))])
        assert engine.opening_range is not None

        engine.update(u(2024, 7, 2, 13, 0))
        assert engine.opening_range is None
