"""
Entry Gate - Bar-Close Entry Decision

Decides whether a closed primary bar produces a new entry, and at
what stop, target and volume.

GATE ORDER (first failure wins, every failure is a silent skip):
1. No open position, daily limit not reached
2. Bar close inside [window start, flatten deadline)
   - window start: session open (SIGNAL_BAR) or signal window end (RANGE_BREAKOUT)
3. First trade of the day only before the cutoff
4. External buy/sell signal present
5. Structure filter (only when the volatility regime says it applies)
6. Stop from the signal bar (or the opening-range midpoint)
7. Fixed-fractional sizing at the current risk percent
8. Price sanity: finite stop/target at least one pip from entry
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .config import SystemConfig, EntryVariant, StructureFilterMode
from .market_data import Bar, MarketDataFeed, Quote, Side, Timeframe, utc
from .risk_engine import RiskEngine, RoundingMode, SizingResult
from .session_engine import SessionBounds, OpeningRange
from .signal_engine import EntrySignal
from .structure_engine import StructureEngine, StructureDecision
from .volatility_filter import VolatilityRegimeFilter, VolatilityDecision


class BlockReason(Enum):
    """Reason an entry opportunity was skipped."""
    POSITION_OPEN = "POSITION_OPEN"
    DAILY_LIMIT = "DAILY_LIMIT"
    OUTSIDE_WINDOW = "OUTSIDE_WINDOW"
    PAST_CUTOFF = "PAST_CUTOFF"
    NO_SIGNAL = "NO_SIGNAL"
    NO_RANGE = "NO_RANGE"
    STRUCTURE_REJECTED = "STRUCTURE_REJECTED"
    INVALID_STOP = "INVALID_STOP"
    SIZING_FAILED = "SIZING_FAILED"
    INVALID_PRICES = "INVALID_PRICES"


@dataclass(frozen=True)
class EntryPlan:
    """Everything needed to submit and register an entry."""
    side: Side
    entry_price: float
    stop_price: float
    target_price: Optional[float]
    volume: float
    risk_percent: float
    stop_pips: int
    sizing: SizingResult
    signal_time: datetime

    @property
    def initial_risk(self) -> float:
        return abs(self.entry_price - self.stop_price)

    def to_dict(self) -> dict:
        return {
            "side": self.side.value,
            "entry_price": self.entry_price,
            "stop_price": self.stop_price,
            "target_price": self.target_price,
            "volume": self.volume,
            "risk_percent": self.risk_percent,
            "stop_pips": self.stop_pips,
            "signal_time": self.signal_time.isoformat(),
        }


@dataclass(frozen=True)
class GateDecision:
    """
    Immutable gate decision.

    Contains decision and the filter observables for audit.
    """
    allowed: bool
    timestamp: datetime
    reason: Optional[BlockReason] = None
    plan: Optional[EntryPlan] = None
    side: Optional[Side] = None
    volatility: Optional[VolatilityDecision] = None
    structure: Optional[StructureDecision] = None

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason.value if self.reason else None,
            "side": self.side.value if self.side else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "volatility": self.volatility.to_dict() if self.volatility else None,
            "structure": self.structure.to_dict() if self.structure else None,
        }


@dataclass
class EntryContext:
    """Inputs for one bar-close evaluation."""
    bar_close: datetime
    signal_bar: Bar
    signal: EntrySignal
    bounds: SessionBounds
    trades_today: int
    has_open_position: bool
    quote: Quote
    balance: float
    risk_percent: float
    feed: Optional[MarketDataFeed] = None
    opening_range: Optional[OpeningRange] = None


class EntryGate:
    """Bar-close entry evaluator."""

    def __init__(
        self,
        config: SystemConfig,
        risk_engine: RiskEngine,
        volatility_filter: VolatilityRegimeFilter,
        structure_engine: StructureEngine,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.risk_engine = risk_engine
        self.volatility_filter = volatility_filter
        self.structure_engine = structure_engine
        self.logger = logger or logging.getLogger(__name__)

    @property
    def variant(self) -> EntryVariant:
        return self.config.entry.variant

    def _block(self, ctx: EntryContext, reason: BlockReason, **observables) -> GateDecision:
        self.logger.debug(f"Entry skipped at {ctx.bar_close:%Y-%m-%d %H:%M}: {reason.value}")
        return GateDecision(allowed=False, timestamp=ctx.bar_close, reason=reason, **observables)

    def check_window(self, ctx: EntryContext) -> Optional[BlockReason]:
        """Pre-conditions that do not look at the signal."""
        if ctx.has_open_position:
            return BlockReason.POSITION_OPEN
        if ctx.trades_today >= self.config.risk.max_trades_per_day:
            return BlockReason.DAILY_LIMIT

        bounds = ctx.bounds
        window_start = bounds.session_open
        if self.variant == EntryVariant.RANGE_BREAKOUT:
            window_start = bounds.signal_window_end
        if not bounds.in_entry_window(ctx.bar_close, window_start):
            return BlockReason.OUTSIDE_WINDOW

        if ctx.trades_today == 0 and utc(ctx.bar_close) >= bounds.no_entry_after:
            return BlockReason.PAST_CUTOFF
        return None

    def evaluate(self, ctx: EntryContext) -> GateDecision:
        """Run the full gate for one closed bar."""
        reason = self.check_window(ctx)
        if reason is not None:
            return self._block(ctx, reason)

        side = ctx.signal.direction
        if side is None:
            return self._block(ctx, BlockReason.NO_SIGNAL)

        if self.variant == EntryVariant.RANGE_BREAKOUT and ctx.opening_range is None:
            return self._block(ctx, BlockReason.NO_RANGE, side=side)

        volatility, structure = self._check_structure(ctx, side)
        if structure is not None and not structure.agrees_with(side):
            self.logger.info(
                f"Signal {side.value} rejected by structure filter: {structure.trend.value}"
            )
            return self._block(ctx, BlockReason.STRUCTURE_REJECTED, side=side,
                               volatility=volatility, structure=structure)

        observables = dict(side=side, volatility=volatility, structure=structure)

        entry_price = ctx.quote.entry_price(side)
        stop_price = self._stop_price(ctx, side)
        rounding = RoundingMode.DOWN if self.variant == EntryVariant.RANGE_BREAKOUT else RoundingMode.NEAREST

        sizing = self.risk_engine.size_position(
            entry_price, stop_price, side, ctx.risk_percent, ctx.balance, rounding
        )
        if sizing is None:
            if (entry_price - stop_price) * side.sign <= 0:
                return self._block(ctx, BlockReason.INVALID_STOP, **observables)
            return self._block(ctx, BlockReason.SIZING_FAILED, **observables)

        target_price = self._target_price(entry_price, stop_price, side)
        if not self._prices_sane(entry_price, stop_price, target_price):
            self.logger.error(
                f"Stop/target invalid or within one pip of entry: entry={entry_price} "
                f"stop={stop_price} target={target_price}"
            )
            return self._block(ctx, BlockReason.INVALID_PRICES, **observables)

        plan = EntryPlan(
            side=side,
            entry_price=entry_price,
            stop_price=stop_price,
            target_price=target_price,
            volume=sizing.volume,
            risk_percent=ctx.risk_percent,
            stop_pips=sizing.stop_pips,
            sizing=sizing,
            signal_time=ctx.signal_bar.timestamp,
        )
        self.logger.info(
            f"Entry approved: {side.value} {plan.volume:g} @ {entry_price} SL {stop_price} "
            f"TP {target_price} risk {ctx.risk_percent}%"
        )
        return GateDecision(allowed=True, timestamp=ctx.bar_close, plan=plan, **observables)

    def _check_structure(self, ctx: EntryContext, side: Side):
        """Volatility regime first; structure only when the regime says the filter applies."""
        structure_config = self.config.structure
        if structure_config.mode == StructureFilterMode.DISABLED:
            return None, None

        daily_bars = None
        if ctx.feed is not None:
            daily_bars = ctx.feed.closed_bars(Timeframe.D1.value, self.volatility_filter.bars_required)
        volatility = self.volatility_filter.evaluate(daily_bars)
        if not volatility.filter_active:
            self.logger.debug(f"Structure filter bypassed: {volatility.reason}")
            return volatility, None

        structure_bars = None
        if ctx.feed is not None:
            structure_bars = ctx.feed.closed_bars(
                structure_config.timeframe, self.structure_engine.bars_required
            )
        return volatility, self.structure_engine.classify(structure_bars)

    def _stop_price(self, ctx: EntryContext, side: Side) -> float:
        if self.variant == EntryVariant.RANGE_BREAKOUT:
            return ctx.opening_range.midpoint

        bar = ctx.signal_bar
        offset = self.config.entry.stop_offset_pips * self.config.symbol.pip_size
        if side == Side.LONG:
            return min(bar.low, bar.open) - offset
        return max(bar.high, bar.open) + offset

    def _target_price(self, entry_price: float, stop_price: float, side: Side) -> Optional[float]:
        target_r = self.config.entry.target_r
        if target_r <= 0:
            return None
        return entry_price + side.sign * abs(entry_price - stop_price) * target_r

    def _prices_sane(self, entry_price: float, stop_price: float, target_price: Optional[float]) -> bool:
        pip = self.config.symbol.pip_size
        if not math.isfinite(stop_price) or abs(stop_price - entry_price) < pip:
            return False
        if target_price is not None:
            if not math.isfinite(target_price) or abs(target_price - entry_price) < pip:
                return False
        return True
