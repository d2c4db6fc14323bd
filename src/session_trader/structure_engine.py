"""
Structure Engine - Swing Pivot Trend Classifier

Detects the two most recent confirmed swing pivots on a secondary
timeframe and classifies the prevailing trend.

PIVOTS:
- Pivot high at i: high[i] is the maximum of high[i-L .. i+L]
- Pivot low at i:  low[i] is the minimum of low[i-L .. i+L]
- The newest L bars cannot be confirmed yet and are skipped

TREND:
- UP:   higher high AND higher low
- DOWN: lower high AND lower low
- INDETERMINATE otherwise
- INSUFFICIENT_DATA when fewer than two pivots of either kind exist
  inside the lookback (callers must reject the entry)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Tuple

import numpy as np

from .config import StructureFilterConfig
from .market_data import BarSeries, Side, bars_to_arrays


class TrendDirection(Enum):
    """Swing-structure trend classification."""
    UP = "UP"
    DOWN = "DOWN"
    INDETERMINATE = "INDETERMINATE"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


@dataclass(frozen=True)
class Pivot:
    """Confirmed swing point."""
    index: int
    price: float


@dataclass(frozen=True)
class StructureDecision:
    """
    Immutable trend classification.

    Pivots are stored newest first.
    """
    trend: TrendDirection
    pivot_highs: Tuple[Pivot, ...] = ()
    pivot_lows: Tuple[Pivot, ...] = ()

    def agrees_with(self, side: Side) -> bool:
        """Buy needs an uptrend, sell needs a downtrend."""
        if side == Side.LONG:
            return self.trend == TrendDirection.UP
        return self.trend == TrendDirection.DOWN

    def to_dict(self) -> dict:
        return {
            "trend": self.trend.value,
            "pivot_highs": [(p.index, p.price) for p in self.pivot_highs],
            "pivot_lows": [(p.index, p.price) for p in self.pivot_lows],
        }


def is_pivot_high(highs: np.ndarray, i: int, strength: int) -> bool:
    if i - strength < 0 or i + strength >= len(highs):
        return False
    return highs[i] >= highs[i - strength:i + strength + 1].max()


def is_pivot_low(lows: np.ndarray, i: int, strength: int) -> bool:
    if i - strength < 0 or i + strength >= len(lows):
        return False
    return lows[i] <= lows[i - strength:i + strength + 1].min()


def find_recent_pivots(
    highs: np.ndarray,
    lows: np.ndarray,
    strength: int,
    lookback: int,
    count: int = 2,
) -> Tuple[List[Pivot], List[Pivot]]:
    """
    Scan backward for the ``count`` most recent pivot highs and lows.

    Starts ``strength`` bars before the last closed bar and stops
    ``lookback`` bars back from it.
    """
    last = len(highs) - 1
    start = last - strength
    stop = max(strength, last - lookback)

    pivot_highs: List[Pivot] = []
    pivot_lows: List[Pivot] = []

    for i in range(start, stop - 1, -1):
        if len(pivot_highs) < count and is_pivot_high(highs, i, strength):
            pivot_highs.append(Pivot(index=i, price=float(highs[i])))
        if len(pivot_lows) < count and is_pivot_low(lows, i, strength):
            pivot_lows.append(Pivot(index=i, price=float(lows[i])))
        if len(pivot_highs) >= count and len(pivot_lows) >= count:
            break

    return pivot_highs, pivot_lows


def classify_trend(pivot_highs: List[Pivot], pivot_lows: List[Pivot]) -> TrendDirection:
    """Classify from pivots ordered newest first."""
    if len(pivot_highs) < 2 or len(pivot_lows) < 2:
        return TrendDirection.INSUFFICIENT_DATA

    newer_high, older_high = pivot_highs[0].price, pivot_highs[1].price
    newer_low, older_low = pivot_lows[0].price, pivot_lows[1].price

    if newer_high > older_high and newer_low > older_low:
        return TrendDirection.UP
    if newer_high < older_high and newer_low < older_low:
        return TrendDirection.DOWN
    return TrendDirection.INDETERMINATE


class StructureEngine:
    """Stateless swing-structure classifier over secondary-timeframe bars."""

    def __init__(self, config: StructureFilterConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    @property
    def bars_required(self) -> int:
        """Bars to request from the feed for one classification."""
        return self.config.lookback_bars + 1

    def classify(self, bars: Optional[BarSeries]) -> StructureDecision:
        """Classify the trend of the given closed bars (oldest first)."""
        if bars is None or len(bars) == 0:
            return StructureDecision(trend=TrendDirection.INSUFFICIENT_DATA)

        _, highs, lows, _ = bars_to_arrays(bars)
        pivot_highs, pivot_lows = find_recent_pivots(
            highs, lows, self.config.pivot_strength, self.config.lookback_bars
        )
        trend = classify_trend(pivot_highs, pivot_lows)

        self.logger.debug(
            f"Structure: {trend.value} highs={[p.price for p in pivot_highs]} "
            f"lows={[p.price for p in pivot_lows]}"
        )
        return StructureDecision(
            trend=trend,
            pivot_highs=tuple(pivot_highs),
            pivot_lows=tuple(pivot_lows),
        )
