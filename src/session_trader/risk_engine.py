"""
Risk Engine - Fixed-Fractional Position Sizing

Converts a stop distance and an account balance into an order volume.

RULES:
- Risk money = balance x risk% / 100
- Stop distance in pips is rounded UP so realized risk never
  exceeds the budget because of pip rounding
- Volume is quantized to the broker's volume step
  (nearest for signal-bar entries, down for range breakouts)
- Volume below the symbol minimum -> no trade
- Volume above the symbol maximum -> clamped

This module never increases risk beyond what the caller asked for.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import SymbolConfig
from .market_data import Side


# Absorbs float noise such as 30.000000000004 pips before ceiling
PIP_EPSILON = 1e-9


class RoundingMode(Enum):
    """Volume quantization direction."""
    NEAREST = "NEAREST"
    DOWN = "DOWN"


@dataclass(frozen=True)
class SizingResult:
    """Outcome of a successful sizing calculation."""
    volume: float
    stop_pips: int
    risk_money: float           # Budget: balance x risk%
    realized_risk: float        # volume x pips x pip value
    clamped: bool = False

    def to_dict(self) -> dict:
        return {
            "volume": self.volume,
            "stop_pips": self.stop_pips,
            "risk_money": self.risk_money,
            "realized_risk": self.realized_risk,
            "clamped": self.clamped,
        }


def stop_distance(entry_price: float, stop_price: float, side: Side) -> Optional[float]:
    """
    Distance from entry to a protective stop on the losing side.

    Returns None when the stop is on the wrong side of (or at) the entry.
    """
    distance = (entry_price - stop_price) * side.sign
    if not math.isfinite(distance) or distance <= 0:
        return None
    return distance


def distance_to_pips(distance: float, pip_size: float) -> int:
    """Price distance -> whole pips, rounded up."""
    return int(math.ceil(distance / pip_size - PIP_EPSILON))


def quantize_volume(volume: float, step: float, rounding: RoundingMode = RoundingMode.NEAREST) -> float:
    """Round a volume to a multiple of the broker's volume step."""
    units = volume / step
    if rounding == RoundingMode.DOWN:
        steps = math.floor(units + PIP_EPSILON)
    else:
        steps = math.floor(units + 0.5)
    return round(steps * step, 8)


def volume_for_risk(
    risk_percent: float,
    distance: float,
    balance: float,
    symbol: SymbolConfig,
    rounding: RoundingMode = RoundingMode.NEAREST,
) -> Optional[SizingResult]:
    """
    Volume that risks ``risk_percent`` of ``balance`` over ``distance``.

    Returns None when the inputs cannot produce a tradeable volume.
    """
    if distance <= 0 or balance <= 0 or risk_percent <= 0:
        return None

    risk_money = balance * risk_percent / 100
    pips = distance_to_pips(distance, symbol.pip_size)
    if pips <= 0:
        return None

    raw_volume = risk_money / (pips * symbol.pip_value)
    volume = quantize_volume(raw_volume, symbol.volume_step, rounding)

    if volume < symbol.min_volume:
        return None

    clamped = False
    if volume > symbol.max_volume:
        volume = quantize_volume(symbol.max_volume, symbol.volume_step, RoundingMode.DOWN)
        clamped = True

    return SizingResult(
        volume=volume,
        stop_pips=pips,
        risk_money=risk_money,
        realized_risk=volume * pips * symbol.pip_value,
        clamped=clamped,
    )


class RiskEngine:
    """
    Position sizer bound to one symbol.

    Failures are reported as None and logged at DEBUG: a failed sizing
    simply skips the entry opportunity.
    """

    def __init__(self, symbol: SymbolConfig, logger: Optional[logging.Logger] = None):
        self.symbol = symbol
        self.logger = logger or logging.getLogger(__name__)

    def size_position(
        self,
        entry_price: float,
        stop_price: float,
        side: Side,
        risk_percent: float,
        balance: float,
        rounding: RoundingMode = RoundingMode.NEAREST,
    ) -> Optional[SizingResult]:
        """Size an entry; None means do not trade."""
        distance = stop_distance(entry_price, stop_price, side)
        if distance is None:
            self.logger.debug(
                f"Invalid stop distance: {side.value} entry={entry_price} stop={stop_price}"
            )
            return None

        result = volume_for_risk(risk_percent, distance, balance, self.symbol, rounding)
        if result is None:
            self.logger.debug(
                f"Volume below minimum {self.symbol.min_volume:g}: "
                f"risk={risk_percent}% balance={balance:.2f} distance={distance:.5f}"
            )
            return None

        if result.clamped:
            self.logger.info(f"Volume clamped to maximum {result.volume:g}")

        return result
