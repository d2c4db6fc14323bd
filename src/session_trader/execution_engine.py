"""
Execution Engine - Order Gateway Interface and Paper Broker

ExecutionGateway is the boundary to the broker: market orders with
optional stop/target distances in pips, stop/target modification,
full or partial closes, and position-closed notifications.

PaperExecutionEngine is an in-memory broker used for replay and tests:
- Fills market orders at the current quote
- Triggers stops before targets when a bar touches both
- Queues position-closed notifications for the host to deliver
- Supports failure injection for orders, modifications and closes
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict

from .config import SymbolConfig
from .market_data import AccountState, Bar, Quote, Side


class OrderResult(Enum):
    """Order execution result."""
    SUCCESS = "SUCCESS"
    FAILED_INVALID_PARAMS = "FAILED_INVALID_PARAMS"
    FAILED_REJECTED = "FAILED_REJECTED"
    FAILED_NO_QUOTE = "FAILED_NO_QUOTE"


@dataclass
class OrderExecution:
    """Order execution result details."""
    result: OrderResult
    position_id: Optional[str] = None
    label: str = ""
    side: Optional[Side] = None
    volume: float = 0.0
    price: float = 0.0
    stop_price: Optional[float] = None
    target_price: Optional[float] = None
    timestamp: datetime = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    @property
    def is_success(self) -> bool:
        return self.result == OrderResult.SUCCESS

    def to_dict(self) -> dict:
        return {
            "result": self.result.value,
            "position_id": self.position_id,
            "label": self.label,
            "side": self.side.value if self.side else None,
            "volume": self.volume,
            "price": self.price,
            "stop_price": self.stop_price,
            "target_price": self.target_price,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "error": self.error_message,
        }


@dataclass
class BrokerPosition:
    """Open position as reported by the broker."""
    position_id: str
    label: str
    side: Side
    volume: float
    entry_price: float
    stop_price: Optional[float] = None
    target_price: Optional[float] = None
    open_time: Optional[datetime] = None


@dataclass
class ClosedTrade:
    """Realized (full or partial) close."""
    position_id: str
    side: Side
    volume: float
    entry_price: float
    exit_price: float
    pnl: float
    reason: str
    close_time: Optional[datetime] = None


class ExecutionGateway(ABC):
    """Broker boundary used by the engine."""

    @property
    def attaches_protection(self) -> bool:
        """True if stop/target sent with a market order are placed atomically."""
        return False

    @abstractmethod
    def submit_market_order(
        self,
        side: Side,
        volume: float,
        label: str,
        stop_pips: Optional[float] = None,
        target_pips: Optional[float] = None,
    ) -> OrderExecution:
        ...

    @abstractmethod
    def modify_position(
        self,
        position_id: str,
        stop_price: Optional[float],
        target_price: Optional[float],
    ) -> bool:
        ...

    @abstractmethod
    def close_position(self, position_id: str, volume: Optional[float] = None) -> bool:
        ...

    @abstractmethod
    def open_positions(self, label: Optional[str] = None) -> List[BrokerPosition]:
        ...


class PaperExecutionEngine(ExecutionGateway, AccountState):
    """
    In-memory broker and account.

    Failure injection counters (``fail_next_orders``,
    ``fail_next_modifications``, ``fail_next_closes``) make the next N
    calls of that kind fail.
    """

    def __init__(
        self,
        symbol: SymbolConfig,
        initial_balance: float = 100000.0,
        attach_protection: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.symbol = symbol
        self.logger = logger or logging.getLogger(__name__)
        self._attach_protection = attach_protection

        self._balance = initial_balance
        self._quote: Optional[Quote] = None
        self._now: Optional[datetime] = None
        self._positions: Dict[str, BrokerPosition] = {}
        self._ticket_counter = 10000
        self._pending_closed: List[str] = []

        self.closed_trades: List[ClosedTrade] = []
        self.orders: List[OrderExecution] = []
        self.modifications: List[tuple] = []

        self.fail_next_orders = 0
        self.fail_next_modifications = 0
        self.fail_next_closes = 0

    # Account state

    @property
    def balance(self) -> float:
        return self._balance

    @property
    def equity(self) -> float:
        return self._balance + sum(self._unrealized(p) for p in self._positions.values())

    @property
    def attaches_protection(self) -> bool:
        return self._attach_protection

    # Market

    def set_quote(self, quote: Quote, now: Optional[datetime] = None) -> None:
        self._quote = quote
        self._now = now or quote.timestamp

    def process_bar(self, bar: Bar, close_time: Optional[datetime] = None) -> None:
        """Trigger stops/targets touched within ``bar``; stop first when both are touched."""
        for position in list(self._positions.values()):
            if position.side == Side.LONG:
                stop_hit = position.stop_price is not None and bar.low <= position.stop_price
                target_hit = position.target_price is not None and bar.high >= position.target_price
            else:
                stop_hit = position.stop_price is not None and bar.high >= position.stop_price
                target_hit = position.target_price is not None and bar.low <= position.target_price

            if stop_hit:
                self._realize(position, position.volume, position.stop_price, "STOP", close_time)
            elif target_hit:
                self._realize(position, position.volume, position.target_price, "TARGET", close_time)

    def drain_closed_notifications(self) -> List[str]:
        """Position ids closed since the last call."""
        closed, self._pending_closed = self._pending_closed, []
        return closed

    # Gateway

    def submit_market_order(
        self,
        side: Side,
        volume: float,
        label: str,
        stop_pips: Optional[float] = None,
        target_pips: Optional[float] = None,
    ) -> OrderExecution:
        if self._quote is None:
            execution = OrderExecution(result=OrderResult.FAILED_NO_QUOTE, label=label, side=side,
                                       volume=volume, error_message="No quote")
            self.orders.append(execution)
            return execution

        if volume < self.symbol.min_volume or volume > self.symbol.max_volume:
            execution = OrderExecution(result=OrderResult.FAILED_INVALID_PARAMS, label=label,
                                       side=side, volume=volume,
                                       error_message=f"Volume {volume} out of range")
            self.orders.append(execution)
            return execution

        if self.fail_next_orders > 0:
            self.fail_next_orders -= 1
            execution = OrderExecution(result=OrderResult.FAILED_REJECTED, label=label, side=side,
                                       volume=volume, error_message="Rejected by broker")
            self.orders.append(execution)
            return execution

        price = self._quote.entry_price(side)
        stop_price = target_price = None
        if self._attach_protection:
            if stop_pips:
                stop_price = price - side.sign * stop_pips * self.symbol.pip_size
            if target_pips:
                target_price = price + side.sign * target_pips * self.symbol.pip_size

        self._ticket_counter += 1
        position_id = str(self._ticket_counter)
        self._positions[position_id] = BrokerPosition(
            position_id=position_id,
            label=label,
            side=side,
            volume=volume,
            entry_price=price,
            stop_price=stop_price,
            target_price=target_price,
            open_time=self._now,
        )

        execution = OrderExecution(
            result=OrderResult.SUCCESS,
            position_id=position_id,
            label=label,
            side=side,
            volume=volume,
            price=price,
            stop_price=stop_price,
            target_price=target_price,
            timestamp=self._now,
        )
        self.orders.append(execution)
        return execution

    def modify_position(
        self,
        position_id: str,
        stop_price: Optional[float],
        target_price: Optional[float],
    ) -> bool:
        self.modifications.append((position_id, stop_price, target_price))
        position = self._positions.get(position_id)
        if position is None:
            return False
        if self.fail_next_modifications > 0:
            self.fail_next_modifications -= 1
            return False

        position.stop_price = stop_price
        position.target_price = target_price
        return True

    def close_position(self, position_id: str, volume: Optional[float] = None) -> bool:
        position = self._positions.get(position_id)
        if position is None or self._quote is None:
            return False
        if self.fail_next_closes > 0:
            self.fail_next_closes -= 1
            return False

        close_volume = position.volume if volume is None else min(volume, position.volume)
        price = self._quote.exit_price(position.side)
        self._realize(position, close_volume, price, "MARKET", self._now)
        return True

    def open_positions(self, label: Optional[str] = None) -> List[BrokerPosition]:
        return [
            p for p in self._positions.values()
            if label is None or p.label == label
        ]

    def get_position(self, position_id: str) -> Optional[BrokerPosition]:
        return self._positions.get(position_id)

    # Internals

    def _unrealized(self, position: BrokerPosition) -> float:
        if self._quote is None:
            return 0.0
        return self._pnl(position, position.volume, self._quote.exit_price(position.side))

    def _pnl(self, position: BrokerPosition, volume: float, exit_price: float) -> float:
        pips = (exit_price - position.entry_price) * position.side.sign / self.symbol.pip_size
        return pips * self.symbol.pip_value * volume

    def _realize(
        self,
        position: BrokerPosition,
        volume: float,
        price: float,
        reason: str,
        close_time: Optional[datetime],
    ) -> None:
        pnl = self._pnl(position, volume, price)
        self._balance += pnl
        self.closed_trades.append(ClosedTrade(
            position_id=position.position_id,
            side=position.side,
            volume=volume,
            entry_price=position.entry_price,
            exit_price=price,
            pnl=pnl,
            reason=reason,
            close_time=close_time,
        ))

        position.volume = round(position.volume - volume, 8)
        if position.volume <= 0:
            del self._positions[position.position_id]
            self._pending_closed.append(position.position_id)

        self.logger.debug(
            f"Paper close {position.position_id} {volume:g} @ {price:.5f} ({reason}) PnL {pnl:.2f}"
        )
