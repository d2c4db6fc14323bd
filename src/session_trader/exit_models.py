"""
Exit Models - Position Lifecycle State Machine

Owns all per-position management state, keyed by position id:
initial risk, highest trailing tier applied, partial-exit status.

LIFECYCLE:
OPEN -> TRAILING (tier k applied) -> ... -> PARTIALLY_CLOSED -> closed (purged)

ON EVERY TICK/TIMER:
1. Flatten everything once the session flatten deadline is reached
2. Trailing tiers: highest newly qualified tier moves the stop to
   entry +/- target_r x initial risk (strict improvements only)
3. Partial exit: close a fraction at the configured R, then move
   the stop to break-even keeping the target

R is always measured against the INITIAL risk distance, never the
live stop distance. Tier progress is monotonic.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Tuple

from .config import SystemConfig
from .execution_engine import ExecutionGateway
from .market_data import Quote, Side
from .risk_engine import RoundingMode, quantize_volume


NO_TIER = -1

# R comparisons tolerate float noise from price subtraction
R_EPSILON = 1e-9


class ExitAction(Enum):
    """Actions taken on an open position."""
    TRAIL = "TRAIL"
    PARTIAL_EXIT = "PARTIAL_EXIT"
    BREAKEVEN = "BREAKEVEN"
    FLATTEN = "FLATTEN"


class LifecycleStage(Enum):
    OPEN = "OPEN"
    TRAILING = "TRAILING"
    PARTIALLY_CLOSED = "PARTIALLY_CLOSED"


class ProtectionResult(Enum):
    """Outcome of placing stop/target after a fill."""
    ATTACHED = "ATTACHED"               # Placed atomically with the order
    PLACED = "PLACED"
    PLACED_ON_RETRY = "PLACED_ON_RETRY"
    NAKED_CLOSED = "NAKED_CLOSED"       # Both attempts failed, closed at market
    NAKED_OPEN = "NAKED_OPEN"           # Both attempts and the emergency close failed


@dataclass(frozen=True)
class TrailingTier:
    """Move the stop to ``target_r`` once price reaches ``trigger_r``."""
    trigger_r: float
    target_r: float

    def __post_init__(self):
        if self.trigger_r < 0 or self.target_r < 0:
            raise ValueError(f"Tier values must be >= 0: {self.trigger_r}, {self.target_r}")


def parse_trailing_tiers(text: Optional[str], logger: Optional[logging.Logger] = None) -> Tuple[TrailingTier, ...]:
    """
    Parse ``"trigger,target,trigger,target,..."`` into tiers sorted by trigger.

    A malformed string logs a warning and yields no tiers.
    """
    logger = logger or logging.getLogger(__name__)
    if text is None or not str(text).strip():
        return ()

    try:
        values = [float(v) for v in str(text).split(",")]
        if len(values) % 2 != 0:
            raise ValueError("odd number of values")
        tiers = [TrailingTier(values[i], values[i + 1]) for i in range(0, len(values), 2)]
    except ValueError as e:
        logger.warning(f"Invalid trailing tiers {text!r} ({e}), trailing disabled")
        return ()

    return tuple(sorted(tiers, key=lambda t: t.trigger_r))


@dataclass
class PositionState:
    """Management state for one open position."""
    position_id: str
    side: Side
    entry_price: float
    stop_price: Optional[float]
    target_price: Optional[float]
    volume: float
    initial_risk: float
    tier_index: int = NO_TIER
    partial_done: bool = False
    opened_at: Optional[datetime] = None

    @property
    def stage(self) -> LifecycleStage:
        if self.partial_done:
            return LifecycleStage.PARTIALLY_CLOSED
        if self.tier_index > NO_TIER:
            return LifecycleStage.TRAILING
        return LifecycleStage.OPEN

    def current_r(self, price: float) -> float:
        """Favorable excursion from entry in units of initial risk."""
        if self.initial_risk <= 0:
            return 0.0
        return (price - self.entry_price) * self.side.sign / self.initial_risk

    def reaches(self, current_r: float, trigger_r: float) -> bool:
        """True if ``current_r`` is at or beyond ``trigger_r``."""
        return current_r + R_EPSILON >= trigger_r

    def r_to_price(self, r: float) -> float:
        return self.entry_price + self.side.sign * r * self.initial_risk

    def improves_stop(self, new_stop: float) -> bool:
        """True if ``new_stop`` is strictly more favorable than the current stop."""
        if self.stop_price is None:
            return True
        return (new_stop - self.stop_price) * self.side.sign > 0

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "side": self.side.value,
            "entry_price": self.entry_price,
            "stop_price": self.stop_price,
            "target_price": self.target_price,
            "volume": self.volume,
            "initial_risk": self.initial_risk,
            "tier_index": self.tier_index,
            "partial_done": self.partial_done,
            "stage": self.stage.value,
        }


@dataclass(frozen=True)
class ExitEvent:
    """Record of an action taken on a position."""
    position_id: str
    action: ExitAction
    success: bool
    price: Optional[float] = None
    volume: Optional[float] = None
    tier_index: Optional[int] = None
    r_multiple: Optional[float] = None


class ExitManager:
    """
    Position lifecycle state machine.

    Positions registered during an event become active at the next
    ``begin_event()``, so a new position is never trailed or partially
    closed in the event that opened it.
    """

    PROTECTION_ATTEMPTS = 2

    def __init__(
        self,
        config: SystemConfig,
        gateway: ExecutionGateway,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.gateway = gateway
        self.logger = logger or logging.getLogger(__name__)

        self.label = config.execution.label
        self.tiers = parse_trailing_tiers(config.exits.trailing_tiers, self.logger)

        self._positions: Dict[str, PositionState] = {}
        self._pending: Dict[str, PositionState] = {}

    # Table access

    def __len__(self) -> int:
        return len(self._positions) + len(self._pending)

    def __contains__(self, position_id: str) -> bool:
        return position_id in self._positions or position_id in self._pending

    def get(self, position_id: str) -> Optional[PositionState]:
        return self._positions.get(position_id) or self._pending.get(position_id)

    @property
    def positions(self) -> List[PositionState]:
        return list(self._positions.values())

    def begin_event(self) -> None:
        """Activate positions registered during the previous event."""
        if self._pending:
            self._positions.update(self._pending)
            self._pending.clear()

    # Lifecycle

    def register(
        self,
        position_id: str,
        side: Side,
        entry_price: float,
        stop_price: float,
        target_price: Optional[float],
        volume: float,
        opened_at: Optional[datetime] = None,
    ) -> PositionState:
        """Track a freshly filled position. Initial risk is fixed here."""
        state = PositionState(
            position_id=position_id,
            side=side,
            entry_price=entry_price,
            stop_price=stop_price,
            target_price=target_price,
            volume=volume,
            initial_risk=abs(entry_price - stop_price),
            opened_at=opened_at,
        )
        self._pending[position_id] = state
        self.logger.info(
            f"Position registered: {position_id} {side.value} {volume:g} @ {entry_price} "
            f"SL {stop_price} TP {target_price} R={state.initial_risk:.5f}"
        )
        return state

    def protect(self, position_id: str) -> ProtectionResult:
        """
        Place stop/target on a just-opened position.

        One retry; if both attempts fail the position is closed at market.
        """
        state = self.get(position_id)
        if state is None:
            raise KeyError(position_id)

        if self.gateway.attaches_protection:
            return ProtectionResult.ATTACHED

        for attempt in range(self.PROTECTION_ATTEMPTS):
            if self.gateway.modify_position(position_id, state.stop_price, state.target_price):
                if attempt == 0:
                    self.logger.info(
                        f"Protection set for {position_id}: SL {state.stop_price} TP {state.target_price}"
                    )
                    return ProtectionResult.PLACED
                self.logger.info(f"Protection set for {position_id} on second attempt")
                return ProtectionResult.PLACED_ON_RETRY
            if attempt == 0:
                self.logger.warning(f"First SL/TP placement failed for {position_id}, retrying")

        self.logger.critical(
            f"SL/TP placement failed twice for {position_id} - emergency close of naked position"
        )
        if self.gateway.close_position(position_id):
            return ProtectionResult.NAKED_CLOSED

        self.logger.critical(f"Emergency close FAILED for {position_id} - position is unprotected")
        return ProtectionResult.NAKED_OPEN

    def evaluate(
        self,
        quote: Quote,
        now: datetime,
        flatten_deadline: Optional[datetime] = None,
    ) -> List[ExitEvent]:
        """Run flatten, trailing and partial-exit rules for every active position."""
        if flatten_deadline is not None and now >= flatten_deadline:
            return self.flatten()

        events: List[ExitEvent] = []
        for state in list(self._positions.values()):
            price = quote.exit_price(state.side)
            current_r = state.current_r(price)

            event = self._apply_trailing(state, current_r)
            if event is not None:
                events.append(event)

            events.extend(self._apply_partial_exit(state, current_r))

        return events

    def flatten(self) -> List[ExitEvent]:
        """Close every open position carrying this label."""
        events = []
        for position_id in sorted(p.position_id for p in self.gateway.open_positions(self.label)):
            success = self.gateway.close_position(position_id)
            if success:
                self.logger.info(f"Session flatten: closed {position_id}")
            else:
                self.logger.error(f"Session flatten: close failed for {position_id}")
            events.append(ExitEvent(position_id=position_id, action=ExitAction.FLATTEN, success=success))
        return events

    def on_position_closed(self, position_id: str) -> bool:
        """Purge all state for a closed position."""
        removed = self._positions.pop(position_id, None) or self._pending.pop(position_id, None)
        if removed is not None:
            self.logger.info(f"Position closed: {position_id} state purged ({removed.stage.value})")
        return removed is not None

    # Rules

    def _apply_trailing(self, state: PositionState, current_r: float) -> Optional[ExitEvent]:
        qualified = NO_TIER
        for index in range(state.tier_index + 1, len(self.tiers)):
            if state.reaches(current_r, self.tiers[index].trigger_r):
                qualified = index
        if qualified == NO_TIER:
            return None

        tier = self.tiers[qualified]
        new_stop = state.r_to_price(tier.target_r)
        if not state.improves_stop(new_stop):
            return None

        success = self.gateway.modify_position(state.position_id, new_stop, state.target_price)
        # Recorded even on rejection so a doomed modification is not retried every tick
        state.tier_index = qualified
        if success:
            state.stop_price = new_stop
            self.logger.info(
                f"Trailing tier {qualified} ({tier.trigger_r}R -> {tier.target_r}R) "
                f"{state.position_id}: SL {new_stop:.5f} at {current_r:.2f}R"
            )
        else:
            self.logger.warning(f"Trailing modification rejected for {state.position_id} (tier {qualified})")

        return ExitEvent(
            position_id=state.position_id,
            action=ExitAction.TRAIL,
            success=success,
            price=new_stop,
            tier_index=qualified,
            r_multiple=current_r,
        )

    def _apply_partial_exit(self, state: PositionState, current_r: float) -> List[ExitEvent]:
        trigger = self.config.exits.partial_exit_r
        if trigger <= 0 or state.partial_done or not state.reaches(current_r, trigger):
            return []

        symbol = self.config.symbol
        close_volume = quantize_volume(
            state.volume * self.config.exits.partial_exit_fraction,
            symbol.volume_step,
            RoundingMode.DOWN,
        )
        if close_volume < symbol.min_volume:
            state.partial_done = True
            self.logger.info(
                f"Partial exit skipped for {state.position_id}: {close_volume:g} below minimum"
            )
            return []

        if not self.gateway.close_position(state.position_id, close_volume):
            self.logger.error(f"Partial close failed for {state.position_id}")
            return [ExitEvent(
                position_id=state.position_id,
                action=ExitAction.PARTIAL_EXIT,
                success=False,
                volume=close_volume,
                r_multiple=current_r,
            )]

        state.volume = round(state.volume - close_volume, 8)
        state.partial_done = True
        self.logger.info(
            f"Partial exit {state.position_id}: closed {close_volume:g} at {current_r:.2f}R, "
            f"{state.volume:g} remaining"
        )
        events = [ExitEvent(
            position_id=state.position_id,
            action=ExitAction.PARTIAL_EXIT,
            success=True,
            volume=close_volume,
            r_multiple=current_r,
        )]

        breakeven = state.entry_price
        if state.improves_stop(breakeven):
            success = self.gateway.modify_position(state.position_id, breakeven, state.target_price)
            if success:
                state.stop_price = breakeven
            else:
                self.logger.warning(f"Break-even modification rejected for {state.position_id}")
            events.append(ExitEvent(
                position_id=state.position_id,
                action=ExitAction.BREAKEVEN,
                success=success,
                price=breakeven,
                r_multiple=current_r,
            ))
        return events
