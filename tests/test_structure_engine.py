"""
Swing structure classifier tests.
"""

from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd
import pytest

from session_trader.config import StructureFilterConfig
from session_trader.market_data import Bar, Side
from session_trader.structure_engine import (
    StructureEngine,
    TrendDirection,
    find_recent_pivots,
    is_pivot_high,
    is_pivot_low,
)


# Pivot highs at 7 (14) and 12 (15); pivot lows at 4 (9) and 9 (11)
UP_HIGHS = [10, 11, 12, 11, 10, 11, 13, 14, 13, 12, 13, 14, 15, 14, 13]
UP_LOWS = [9, 10, 11, 10, 9, 10, 12, 13, 12, 11, 12, 13, 14, 13, 12]


def make_bars(highs, lows):
    start = datetime(2024, 7, 1, tzinfo=timezone.utc)
    return [
        Bar(
            timestamp=start + timedelta(hours=i),
            open=(h + l) / 2,
            high=float(h),
            low=float(l),
            close=(h + l) / 2,
        )
        for i, (h, l) in enumerate(zip(highs, lows))
    ]


def make_engine(**overrides) -> StructureEngine:
    return StructureEngine(StructureFilterConfig(**overrides))


class TestPivots:

    def test_pivot_high_allows_ties(self):
        highs = np.array([1.0, 2.0, 2.0, 1.0, 0.0])
        assert is_pivot_high(highs, 1, 1)
        assert is_pivot_high(highs, 2, 1)

    def test_pivot_needs_full_window(self):
        highs = np.array([1.0, 3.0, 2.0])
        assert not is_pivot_high(highs, 1, 2)

    def test_pivot_low(self):
        lows = np.array([3.0, 2.0, 1.0, 2.0, 3.0])
        assert is_pivot_low(lows, 2, 2)
        assert not is_pivot_low(lows, 1, 1)

    def test_recent_pivots_newest_first(self):
        highs, lows = np.array(UP_HIGHS, dtype=float), np.array(UP_LOWS, dtype=float)
        pivot_highs, pivot_lows = find_recent_pivots(highs, lows, strength=2, lookback=100)

        assert [p.index for p in pivot_highs] == [12, 7]
        assert [p.price for p in pivot_highs] == [15.0, 14.0]
        assert [p.index for p in pivot_lows] == [9, 4]
        assert [p.price for p in pivot_lows] == [11.0, 9.0]

    def test_newest_bars_are_not_confirmable(self):
        """A spike in the last L bars is never a pivot."""
        highs = np.array(UP_HIGHS[:-1] + [99], dtype=float)
        lows = np.array(UP_LOWS, dtype=float)
        pivot_highs, _ = find_recent_pivots(highs, lows, strength=2, lookback=100)
        assert all(p.index <= len(highs) - 1 - 2 for p in pivot_highs)


class TestTrendClassification:

    def test_uptrend(self):
        decision = make_engine().classify(make_bars(UP_HIGHS, UP_LOWS))

        assert decision.trend == TrendDirection.UP
        assert decision.agrees_with(Side.LONG)
        assert not decision.agrees_with(Side.SHORT)

    def test_downtrend(self):
        highs = [30 - l for l in UP_LOWS]
        lows = [30 - h for h in UP_HIGHS]
        decision = make_engine().classify(make_bars(highs, lows))

        assert decision.trend == TrendDirection.DOWN
        assert decision.agrees_with(Side.SHORT)
        assert not decision.agrees_with(Side.LONG)

    def test_higher_high_with_lower_low_is_indeterminate(self):
        lows = list(UP_LOWS)
        lows[9] = 8
        decision = make_engine().classify(make_bars(UP_HIGHS, lows))

        assert decision.trend == TrendDirection.INDETERMINATE
        assert not decision.agrees_with(Side.LONG)
        assert not decision.agrees_with(Side.SHORT)

    def test_too_few_bars_is_insufficient(self):
        decision = make_engine().classify(make_bars(UP_HIGHS[:4], UP_LOWS[:4]))
        assert decision.trend == TrendDirection.INSUFFICIENT_DATA

    def test_no_bars_is_insufficient(self):
        assert make_engine().classify([]).trend == TrendDirection.INSUFFICIENT_DATA
        assert make_engine().classify(None).trend == TrendDirection.INSUFFICIENT_DATA

    def test_lookback_bounds_the_scan(self):
        decision = make_engine(lookback_bars=5).classify(make_bars(UP_HIGHS, UP_LOWS))
        assert decision.trend == TrendDirection.INSUFFICIENT_DATA

    def test_accepts_dataframe(self):
        df = pd.DataFrame({
            'open': UP_HIGHS,
            'high': UP_HIGHS,
            'low': UP_LOWS,
            'close': UP_LOWS,
        })
        assert make_engine().classify(df).trend == TrendDirection.UP

    def test_bars_required(self):
        assert make_engine(lookback_bars=100).bars_required == 101

    def test_decision_to_dict(self):
        decision = make_engine().classify(make_bars(UP_HIGHS, UP_LOWS))
        data = decision.to_dict()
        assert data["trend"] == "UP"
        assert data["pivot_highs"][0] == (12, 15.0)
