"""
Market Data - Bars, Quotes and Feed Interfaces

The engine never fetches data on its own: a host supplies a
MarketDataFeed (closed OHLC bars per timeframe, live bid/ask, symbol
metadata) and an AccountState (balance, equity).

DataFrameFeed serves historical bars from a pandas DataFrame for
replay and tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, List, Dict, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import SymbolConfig


class Side(Enum):
    """Trade direction."""
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1


class Timeframe(Enum):
    """Supported bar timeframes."""
    M1 = "M1"
    M5 = "M5"
    M15 = "M15"
    M30 = "M30"
    H1 = "H1"
    H4 = "H4"
    D1 = "D1"

    def to_minutes(self) -> int:
        """Convert timeframe to minutes."""
        mapping = {
            'M1': 1, 'M5': 5, 'M15': 15, 'M30': 30,
            'H1': 60, 'H4': 240, 'D1': 1440
        }
        return mapping[self.value]

    def to_timedelta(self) -> timedelta:
        return timedelta(minutes=self.to_minutes())

    def to_pandas_rule(self) -> str:
        """Resample rule string."""
        return f"{self.to_minutes()}min"


@dataclass(frozen=True)
class Bar:
    """Immutable OHLC bar. ``timestamp`` is the bar open time (UTC)."""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


@dataclass(frozen=True)
class Quote:
    """Live bid/ask."""
    bid: float
    ask: float
    timestamp: Optional[datetime] = None

    @property
    def spread(self) -> float:
        return self.ask - self.bid

    def entry_price(self, side: Side) -> float:
        """Price a market order fills at."""
        return self.ask if side is Side.LONG else self.bid

    def exit_price(self, side: Side) -> float:
        """Price an open position closes at."""
        return self.bid if side is Side.LONG else self.ask


BarSeries = Union[Sequence[Bar], pd.DataFrame]


def bars_to_arrays(bars: BarSeries) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Return (open, high, low, close) float arrays from bars or a DataFrame."""
    if isinstance(bars, pd.DataFrame):
        return (
            bars['open'].to_numpy(dtype=float),
            bars['high'].to_numpy(dtype=float),
            bars['low'].to_numpy(dtype=float),
            bars['close'].to_numpy(dtype=float),
        )
    return (
        np.array([b.open for b in bars], dtype=float),
        np.array([b.high for b in bars], dtype=float),
        np.array([b.low for b in bars], dtype=float),
        np.array([b.close for b in bars], dtype=float),
    )


def frame_to_bars(df: pd.DataFrame) -> List[Bar]:
    """Convert a DataFrame indexed by bar open time into Bar objects."""
    return [
        Bar(
            timestamp=ts.to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(getattr(row, 'volume', 0.0) or 0.0),
        )
        for ts, row in zip(df.index, df.itertuples(index=False))
    ]


def normalize_frame(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize an OHLC frame: UTC DatetimeIndex, lowercase columns, sorted.

    Accepts either a DatetimeIndex or a ``timestamp`` column.
    """
    frame = df.copy()
    frame.columns = [str(c).lower() for c in frame.columns]
    if 'timestamp' in frame.columns:
        frame = frame.set_index(pd.to_datetime(frame.pop('timestamp'), utc=True))
    else:
        index = pd.DatetimeIndex(frame.index)
        frame.index = index.tz_localize('UTC') if index.tz is None else index.tz_convert('UTC')

    missing = {'open', 'high', 'low', 'close'} - set(frame.columns)
    if missing:
        raise ValueError(f"Bar frame missing columns: {sorted(missing)}")
    return frame.sort_index()


class MarketDataFeed(ABC):
    """Closed bars, live quote and symbol metadata."""

    @property
    @abstractmethod
    def symbol(self) -> SymbolConfig:
        ...

    @abstractmethod
    def closed_bars(self, timeframe: str, count: int) -> List[Bar]:
        """Return up to ``count`` most recent fully closed bars, oldest first."""
        ...

    @abstractmethod
    def quote(self) -> Quote:
        ...


class AccountState(ABC):
    """Balance/equity provider, polled on each event."""

    @property
    @abstractmethod
    def balance(self) -> float:
        ...

    @property
    @abstractmethod
    def equity(self) -> float:
        ...


class DataFrameFeed(MarketDataFeed):
    """
    Historical feed over a primary-timeframe OHLC DataFrame.

    Higher timeframes are resampled from the primary bars. A bar is
    served only once its close time is at or before the feed clock.
    """

    def __init__(
        self,
        df: pd.DataFrame,
        symbol: SymbolConfig,
        primary_timeframe: str = "M5",
        spread_pips: float = 0.0,
    ):
        self._symbol = symbol
        self._primary = Timeframe(primary_timeframe)
        self._spread = spread_pips * symbol.pip_size
        self._frames: Dict[Timeframe, pd.DataFrame] = {
            self._primary: normalize_frame(df),
        }
        self._now: Optional[pd.Timestamp] = None
        self._quote: Optional[Quote] = None

    @property
    def symbol(self) -> SymbolConfig:
        return self._symbol

    @property
    def primary_frame(self) -> pd.DataFrame:
        return self._frames[self._primary]

    @property
    def primary_timeframe(self) -> Timeframe:
        return self._primary

    def set_clock(self, now: datetime) -> None:
        """Advance the feed clock; the quote follows the last closed primary bar."""
        ts = pd.Timestamp(now)
        self._now = ts.tz_localize('UTC') if ts.tzinfo is None else ts.tz_convert('UTC')
        last = self.closed_bars(self._primary.value, 1)
        if last:
            close = last[-1].close
            self._quote = Quote(
                bid=close - self._spread / 2,
                ask=close + self._spread / 2,
                timestamp=self._now.to_pydatetime(),
            )

    def set_quote(self, quote: Quote) -> None:
        self._quote = quote

    def quote(self) -> Quote:
        if self._quote is None:
            raise RuntimeError("No quote available before the first closed bar")
        return self._quote

    def _frame(self, timeframe: Timeframe) -> pd.DataFrame:
        if timeframe not in self._frames:
            primary = self._frames[self._primary]
            resampled = primary.resample(
                timeframe.to_pandas_rule(), label='left', closed='left'
            ).agg({'open': 'first', 'high': 'max', 'low': 'min', 'close': 'last'})
            self._frames[timeframe] = resampled.dropna()
        return self._frames[timeframe]

    def closed_bars(self, timeframe: str, count: int) -> List[Bar]:
        tf = Timeframe(timeframe)
        frame = self._frame(tf)
        if self._now is not None:
            close_times = frame.index + tf.to_timedelta()
            frame = frame[close_times <= self._now]
        if count <= 0:
            return []
        return frame_to_bars(frame.iloc[-count:])


def utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
