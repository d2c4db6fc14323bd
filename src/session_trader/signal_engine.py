"""
Signal Engine - External Entry Signal Adapters

The engine does not generate price signals. A SignalSource reports,
for each closed primary bar, two booleans: buy and sell. They are
mutually exclusive by convention only; when both are set, buy wins.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

import pandas as pd

from .market_data import Bar, Side, utc


@dataclass(frozen=True)
class EntrySignal:
    """Raw buy/sell flags for one closed bar."""
    buy: bool = False
    sell: bool = False

    @property
    def direction(self) -> Optional[Side]:
        if self.buy:
            return Side.LONG
        if self.sell:
            return Side.SHORT
        return None

    @property
    def is_empty(self) -> bool:
        return not (self.buy or self.sell)


NO_SIGNAL = EntrySignal()


class SignalSource(ABC):
    """Provider of per-bar entry signals."""

    @abstractmethod
    def signal_for(self, bar: Bar) -> EntrySignal:
        ...


class CallableSignalSource(SignalSource):
    """Wraps a ``bar -> (buy, sell)`` callable."""

    def __init__(self, func: Callable[[Bar], tuple]):
        self._func = func

    def signal_for(self, bar: Bar) -> EntrySignal:
        buy, sell = self._func(bar)
        return EntrySignal(buy=bool(buy), sell=bool(sell))


class FrameSignalSource(SignalSource):
    """
    Precomputed signals keyed by bar open time.

    Built from a DataFrame with boolean ``buy``/``sell`` columns indexed
    by (or carrying a ``timestamp`` column of) bar open times.
    """

    def __init__(self, signals: Dict[datetime, EntrySignal]):
        self._signals = {utc(ts): sig for ts, sig in signals.items()}

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> 'FrameSignalSource':
        frame = df.copy()
        frame.columns = [str(c).lower() for c in frame.columns]
        if 'timestamp' in frame.columns:
            index = pd.to_datetime(frame['timestamp'], utc=True)
        else:
            index = pd.DatetimeIndex(frame.index)
            index = index.tz_localize('UTC') if index.tz is None else index.tz_convert('UTC')

        buys = frame['buy'].fillna(False).astype(bool) if 'buy' in frame.columns else None
        sells = frame['sell'].fillna(False).astype(bool) if 'sell' in frame.columns else None

        signals = {}
        for i, ts in enumerate(index):
            buy = bool(buys.iloc[i]) if buys is not None else False
            sell = bool(sells.iloc[i]) if sells is not None else False
            if buy or sell:
                signals[ts.to_pydatetime()] = EntrySignal(buy=buy, sell=sell)
        return cls(signals)

    def __len__(self) -> int:
        return len(self._signals)

    def signal_for(self, bar: Bar) -> EntrySignal:
        return self._signals.get(utc(bar.timestamp), NO_SIGNAL)
