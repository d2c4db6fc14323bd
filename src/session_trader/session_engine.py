"""
Session Engine - New York Cash Session Calendar

Converts between UTC and the New York trading calendar and derives the
day's session boundaries.

LOCAL CALENDAR:
- Fixed offsets, no tz database: UTC-4 during daylight saving, else UTC-5
- Daylight saving: 2nd Sunday of March 02:00 local
  through 1st Sunday of November 02:00 local

SESSION (local wall clock):
- Open: 09:30
- Signal window end: open + opening-range minutes (default 09:45)
- No first entry at/after the configured cutoff (default 11:00)
- Flatten deadline: close - close buffer (default 15:59:00)
- Close: 16:00

Bounds are recomputed once per local-date change; the daily trade
counter and the opening range reset with them. Open positions are
never touched by the rollover.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, Sequence, Tuple

from .config import SessionConfig, parse_time_of_day, clamp_close_buffer
from .market_data import Bar, utc


SESSION_OPEN = time(9, 30)
SESSION_CLOSE = time(16, 0)

STANDARD_OFFSET = timedelta(hours=-5)
DAYLIGHT_OFFSET = timedelta(hours=-4)
DST_SWITCH_TIME = time(2, 0)

SUNDAY = 6


def nth_weekday_of_month(year: int, month: int, weekday: int, nth: int) -> date:
    """
    Date of the ``nth`` occurrence (1-indexed) of ``weekday`` in a month.

    Weekdays follow ``date.weekday()`` (Monday=0 ... Sunday=6).
    Raises ValueError when the month has no such occurrence.
    """
    if nth < 1:
        raise ValueError(f"Occurrence must be >= 1, got {nth}")

    day = date(year, month, 1)
    count = 0
    while day.month == month:
        if day.weekday() == weekday:
            count += 1
            if count == nth:
                return day
        day += timedelta(days=1)

    raise ValueError(f"No occurrence {nth} of weekday {weekday} in {year}-{month:02d}")


def daylight_saving_window(year: int) -> Tuple[datetime, datetime]:
    """(start, end) of daylight saving as naive local wall-clock datetimes."""
    start = datetime.combine(nth_weekday_of_month(year, 3, SUNDAY, 2), DST_SWITCH_TIME)
    end = datetime.combine(nth_weekday_of_month(year, 11, SUNDAY, 1), DST_SWITCH_TIME)
    return start, end


def is_us_daylight_saving(local_dt: datetime) -> bool:
    """True if a naive local wall-clock datetime falls inside daylight saving."""
    start, end = daylight_saving_window(local_dt.year)
    return start <= local_dt.replace(tzinfo=None) < end


def utc_offset_at(utc_dt: datetime) -> timedelta:
    """Local offset in force at a UTC instant."""
    instant = utc(utc_dt).replace(tzinfo=None)
    start, end = daylight_saving_window(instant.year)
    # Switch instants: 02:00 EST -> 07:00 UTC, 02:00 EDT -> 06:00 UTC
    start_utc = start - STANDARD_OFFSET
    end_utc = end - DAYLIGHT_OFFSET
    return DAYLIGHT_OFFSET if start_utc <= instant < end_utc else STANDARD_OFFSET


def to_local(utc_dt: datetime) -> datetime:
    """UTC instant -> naive New York wall-clock datetime."""
    instant = utc(utc_dt)
    return (instant + utc_offset_at(instant)).replace(tzinfo=None)


def to_utc(local_dt: datetime) -> datetime:
    """
    Naive New York wall-clock datetime -> aware UTC instant.

    The repeated hour in November resolves to daylight time; the skipped
    hour in March is read as daylight time as well.
    """
    local = local_dt.replace(tzinfo=None)
    offset = DAYLIGHT_OFFSET if is_us_daylight_saving(local) else STANDARD_OFFSET
    return (local - offset).replace(tzinfo=timezone.utc)


def local_date_of(utc_dt: datetime) -> date:
    """Trading-calendar date of a UTC instant."""
    return to_local(utc_dt).date()


@dataclass(frozen=True)
class SessionBounds:
    """One day's session boundaries, all as aware UTC datetimes."""
    date: date
    session_open: datetime
    signal_window_end: datetime
    no_entry_after: datetime
    flatten_deadline: datetime
    session_close: datetime

    def in_entry_window(self, ts: datetime, window_start: Optional[datetime] = None) -> bool:
        """True if ``ts`` lies in [window_start or open, flatten_deadline)."""
        start = window_start or self.session_open
        return start <= utc(ts) < self.flatten_deadline

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "session_open": self.session_open.isoformat(),
            "signal_window_end": self.signal_window_end.isoformat(),
            "no_entry_after": self.no_entry_after.isoformat(),
            "flatten_deadline": self.flatten_deadline.isoformat(),
            "session_close": self.session_close.isoformat(),
        }


def session_bounds_for(
    local_date: date,
    config: SessionConfig,
    cutoff_fallback: str = "11:00",
    logger: Optional[logging.Logger] = None,
) -> SessionBounds:
    """Session boundaries for a local calendar date."""
    logger = logger or logging.getLogger(__name__)

    open_local = datetime.combine(local_date, SESSION_OPEN)
    close_local = datetime.combine(local_date, SESSION_CLOSE)

    cutoff_local = datetime.combine(
        local_date, parse_time_of_day(config.cutoff_time, cutoff_fallback)
    )
    if not open_local < cutoff_local <= close_local:
        logger.warning(
            f"Cutoff {cutoff_local.time()} outside session, using fallback {cutoff_fallback}"
        )
        cutoff_local = datetime.combine(
            local_date, parse_time_of_day(cutoff_fallback, "11:00")
        )

    buffer = timedelta(seconds=clamp_close_buffer(config.close_buffer_seconds))
    window_end_local = open_local + timedelta(minutes=config.opening_range_minutes)

    return SessionBounds(
        date=local_date,
        session_open=to_utc(open_local),
        signal_window_end=to_utc(min(window_end_local, close_local)),
        no_entry_after=to_utc(cutoff_local),
        flatten_deadline=to_utc(close_local - buffer),
        session_close=to_utc(close_local),
    )


@dataclass(frozen=True)
class OpeningRange:
    """High/low of the bars opening inside the signal window."""
    date: date
    high: float
    low: float
    bar_count: int

    @property
    def midpoint(self) -> float:
        return (self.high + self.low) / 2


class SessionEngine:
    """
    Tracks the current trading day.

    Owns the cached session bounds, the daily trade counter and the
    opening range. ``update()`` must be called with each event's
    timestamp before the bounds are read.
    """

    def __init__(
        self,
        config: SessionConfig,
        cutoff_fallback: str = "11:00",
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.cutoff_fallback = cutoff_fallback
        self.logger = logger or logging.getLogger(__name__)

        self._current_date: Optional[date] = None
        self._bounds: Optional[SessionBounds] = None
        self._trades_today = 0
        self._opening_range: Optional[OpeningRange] = None

    @property
    def current_date(self) -> Optional[date]:
        return self._current_date

    @property
    def bounds(self) -> SessionBounds:
        if self._bounds is None:
            raise RuntimeError("Session bounds requested before the first update()")
        return self._bounds

    @property
    def trades_today(self) -> int:
        return self._trades_today

    @property
    def opening_range(self) -> Optional[OpeningRange]:
        return self._opening_range

    def update(self, now_utc: datetime) -> bool:
        """
        Roll the session forward if the local date changed.

        Returns True when a new day started.
        """
        today = local_date_of(now_utc)
        if today == self._current_date:
            return False

        self._current_date = today
        self._bounds = session_bounds_for(today, self.config, self.cutoff_fallback, self.logger)
        self._trades_today = 0
        self._opening_range = None

        local_open = to_local(self._bounds.session_open)
        self.logger.info(
            f"New session {today.isoformat()} | DST: {is_us_daylight_saving(local_open)} | "
            f"Open {self._bounds.session_open:%H:%M} UTC | "
            f"Cutoff {self._bounds.no_entry_after:%H:%M} UTC | "
            f"Flatten {self._bounds.flatten_deadline:%H:%M:%S} UTC"
        )
        return True

    def record_trade_opened(self) -> None:
        self._trades_today += 1

    def is_past_flatten(self, now_utc: datetime) -> bool:
        return self._bounds is not None and utc(now_utc) >= self._bounds.flatten_deadline

    def define_opening_range(self, bars: Sequence[Bar]) -> Optional[OpeningRange]:
        """
        Define today's opening range from bars opening in [open, signal window end).

        Leaves the range undefined when no bar falls in the window.
        """
        if self._opening_range is not None:
            return self._opening_range

        bounds = self.bounds
        window = [
            b for b in bars
            if bounds.session_open <= utc(b.timestamp) < bounds.signal_window_end
        ]
        if not window:
            self.logger.debug("No bars inside the opening range window yet")
            return None

        self._opening_range = OpeningRange(
            date=bounds.date,
            high=max(b.high for b in window),
            low=min(b.low for b in window),
            bar_count=len(window),
        )
        self.logger.info(
            f"Opening range high {self._opening_range.high}, low {self._opening_range.low}, "
            f"mid {self._opening_range.midpoint}"
        )
        return self._opening_range
