"""
Volatility Regime Filter

Decides, per day, whether the market is in a low/compressed volatility
regime in which the swing-structure filter should be trusted.

DAILY ATR%:
- True range = max(H - L, |H - prev C|, |L - prev C|)
- ATR% = mean(TR over N days) / mean(close over the same days) x 100

MODES:
- DISABLED: filter never active
- FIXED:    active iff ATR% <= fixed threshold
- AUTO:     active iff ATR% / SMA(ATR%) <= ratio multiplier

Insufficient data in FIXED/AUTO keeps the filter active (fail closed).
High volatility bypasses the structure check.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .config import StructureFilterConfig, StructureFilterMode
from .market_data import BarSeries, bars_to_arrays


@dataclass(frozen=True)
class VolatilityDecision:
    """
    Immutable volatility regime decision.

    Contains decision and observables for audit.
    """
    filter_active: bool
    mode: StructureFilterMode
    atr_pct: Optional[float] = None
    ratio: Optional[float] = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "filter_active": self.filter_active,
            "mode": self.mode.value,
            "atr_pct": self.atr_pct,
            "ratio": self.ratio,
            "reason": self.reason,
        }


def _atr_percent(highs: np.ndarray, lows: np.ndarray, closes: np.ndarray, days: int) -> Optional[float]:
    """ATR% over the last ``days`` bars of the arrays (needs days + 1 bars)."""
    if days < 1 or len(closes) < days + 1:
        return None

    h = highs[-days:]
    l = lows[-days:]
    c = closes[-days:]
    prev_c = closes[-days - 1:-1]

    tr = np.maximum.reduce([h - l, np.abs(h - prev_c), np.abs(l - prev_c)])
    mean_close = c.mean()
    if mean_close <= 0:
        return None

    return float(tr.mean() / mean_close * 100)


def atr_percent(daily_bars: BarSeries, days: int) -> Optional[float]:
    """ATR% of the last ``days`` closed daily bars; None if not enough bars."""
    _, highs, lows, closes = bars_to_arrays(daily_bars)
    return _atr_percent(highs, lows, closes, days)


def atr_percent_series(daily_bars: BarSeries, days: int, count: int) -> Optional[np.ndarray]:
    """
    ATR% for each of the last ``count`` days, oldest first.

    Each value uses its own trailing ``days`` window.
    """
    _, highs, lows, closes = bars_to_arrays(daily_bars)
    n = len(closes)
    if count < 1 or n < days + count:
        return None

    values = []
    for end in range(n - count + 1, n + 1):
        value = _atr_percent(highs[:end], lows[:end], closes[:end], days)
        if value is None:
            return None
        values.append(value)
    return np.array(values)


class VolatilityRegimeFilter:
    """
    Classifies the day's volatility regime.

    Recomputed from daily bars on every request; keeps no state.
    """

    def __init__(self, config: StructureFilterConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)

    @property
    def mode(self) -> StructureFilterMode:
        return self.config.mode

    @property
    def bars_required(self) -> int:
        """Daily bars needed for a full evaluation in the configured mode."""
        if self.mode == StructureFilterMode.AUTO:
            return self.config.atr_days + self.config.auto_sma_days
        return self.config.atr_days + 1

    def evaluate(self, daily_bars: Optional[BarSeries]) -> VolatilityDecision:
        """Return whether the structure filter applies today."""
        handlers = {
            StructureFilterMode.DISABLED: self._evaluate_disabled,
            StructureFilterMode.FIXED: self._evaluate_fixed,
            StructureFilterMode.AUTO: self._evaluate_auto,
        }
        return handlers[self.mode](daily_bars)

    def _evaluate_disabled(self, daily_bars: Optional[BarSeries]) -> VolatilityDecision:
        return VolatilityDecision(
            filter_active=False,
            mode=StructureFilterMode.DISABLED,
            reason="DISABLED",
        )

    def _evaluate_fixed(self, daily_bars: Optional[BarSeries]) -> VolatilityDecision:
        value = atr_percent(daily_bars, self.config.atr_days) if daily_bars is not None else None
        if value is None:
            return VolatilityDecision(
                filter_active=True,
                mode=StructureFilterMode.FIXED,
                reason="INSUFFICIENT_DATA",
            )

        active = value <= self.config.fixed_threshold_pct
        self.logger.debug(
            f"FIXED regime: ATR%={value:.3f} threshold={self.config.fixed_threshold_pct} "
            f"active={active}"
        )
        return VolatilityDecision(
            filter_active=active,
            mode=StructureFilterMode.FIXED,
            atr_pct=value,
            reason="LOW_VOLATILITY" if active else "HIGH_VOLATILITY",
        )

    def _evaluate_auto(self, daily_bars: Optional[BarSeries]) -> VolatilityDecision:
        series = None
        if daily_bars is not None:
            series = atr_percent_series(daily_bars, self.config.atr_days, self.config.auto_sma_days)

        if series is None or series.mean() <= 0:
            return VolatilityDecision(
                filter_active=True,
                mode=StructureFilterMode.AUTO,
                reason="INSUFFICIENT_DATA",
            )

        today = float(series[-1])
        ratio = today / float(series.mean())
        active = ratio <= self.config.auto_ratio_multiplier
        self.logger.debug(
            f"AUTO regime: ATR%={today:.3f} ratio={ratio:.3f} "
            f"multiplier={self.config.auto_ratio_multiplier} active={active}"
        )
        return VolatilityDecision(
            filter_active=active,
            mode=StructureFilterMode.AUTO,
            atr_pct=today,
            ratio=ratio,
            reason="COMPRESSED" if active else "EXPANDED",
        )
