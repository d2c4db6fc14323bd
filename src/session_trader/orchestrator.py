"""
Session Trading Engine Orchestrator

Host-facing entry points wiring every component together.

BAR CLOSE:
1. Activate positions registered in the previous event
2. Drawdown governor update from account equity
3. Session roll-over (daily counter / opening range reset)
4. Flatten check at the session deadline
5. Opening range definition (range breakout variant)
6. Entry gate (window, signal, volatility/structure, sizing)
7. Order submission -> position registration -> protective placement

TICK / TIMER:
1. Activate pending positions
2. Drawdown governor update
3. Session roll-over
4. Lifecycle state machine only (flatten, trailing, partial exit)

Ticks and timers never open positions. No exception escapes an
entry point: failures are logged and the engine returns to idle.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional, List

from .config import SystemConfig, EntryVariant, DEFAULT_CONFIG
from .drawdown_governor import DrawdownGovernor, RiskMode
from .entry_gate import EntryGate, EntryContext, EntryPlan, GateDecision
from .execution_engine import ExecutionGateway, OrderExecution
from .exit_models import ExitManager, ExitEvent, ProtectionResult
from .logging_module import TradeLogger, DecisionLogger, RiskLogger
from .market_data import AccountState, MarketDataFeed, utc
from .risk_engine import RiskEngine
from .session_engine import SessionEngine
from .signal_engine import SignalSource
from .structure_engine import StructureEngine
from .volatility_filter import VolatilityRegimeFilter


class SessionTradingEngine:
    """
    Single-symbol session trading engine.

    Coordinates:
    - Session calendar and daily counters
    - Drawdown defensive mode
    - Entry gate (volatility regime + swing structure + sizing)
    - Execution gateway
    - Position lifecycle state machine
    """

    def __init__(
        self,
        config: Optional[SystemConfig],
        feed: MarketDataFeed,
        account: AccountState,
        gateway: ExecutionGateway,
        signals: SignalSource,
        logger: Optional[logging.Logger] = None,
    ):
        config = config or DEFAULT_CONFIG
        # Symbol metadata always comes from the feed
        self.config = replace(config, symbol=feed.symbol)
        self.logger = logger or logging.getLogger(__name__)

        self.feed = feed
        self.account = account
        self.gateway = gateway
        self.signals = signals

        # Components
        self.session = SessionEngine(self.config.session, self.config.cutoff_fallback, self.logger)
        self.drawdown = DrawdownGovernor(self.config.risk, self.logger)
        self.risk_engine = RiskEngine(self.config.symbol, self.logger)
        self.volatility_filter = VolatilityRegimeFilter(self.config.structure, self.logger)
        self.structure_engine = StructureEngine(self.config.structure, self.logger)
        self.gate = EntryGate(
            self.config,
            self.risk_engine,
            self.volatility_filter,
            self.structure_engine,
            self.logger,
        )
        self.exits = ExitManager(self.config, gateway, self.logger)

        # CSV audit trail
        self.trade_logger: Optional[TradeLogger] = None
        self.decision_logger: Optional[DecisionLogger] = None
        self.risk_logger: Optional[RiskLogger] = None
        if self.config.audit_logs:
            paths = self.config.paths
            self.trade_logger = TradeLogger(paths.trade_log, self.config.symbol.name)
            self.decision_logger = DecisionLogger(paths.decision_log)
            self.risk_logger = RiskLogger(paths.risk_log)

        # Statistics
        self._bars_processed = 0
        self._entries = 0
        self._order_failures = 0
        self._blocks = 0
        self._last_decision: Optional[GateDecision] = None

    @property
    def label(self) -> str:
        return self.config.execution.label

    @property
    def last_decision(self) -> Optional[GateDecision]:
        return self._last_decision

    # Host entry points

    def on_bar_closed(self, bar_close_utc: datetime) -> Optional[GateDecision]:
        """Primary-timeframe bar closed at ``bar_close_utc``."""
        try:
            return self._handle_bar_closed(utc(bar_close_utc))
        except Exception as e:
            self.logger.exception(f"Error handling bar close {bar_close_utc}: {e}")
            return None

    def on_session_tick(self, now_utc: datetime) -> List[ExitEvent]:
        """Price update."""
        try:
            return self._handle_tick(utc(now_utc))
        except Exception as e:
            self.logger.exception(f"Error handling tick {now_utc}: {e}")
            return []

    def on_timer(self, now_utc: datetime) -> List[ExitEvent]:
        """Periodic timer; same duties as a tick."""
        try:
            return self._handle_tick(utc(now_utc))
        except Exception as e:
            self.logger.exception(f"Error handling timer {now_utc}: {e}")
            return []

    def on_position_closed(self, position_id: str) -> bool:
        """Position-closed notification from the gateway."""
        try:
            return self.exits.on_position_closed(position_id)
        except Exception as e:
            self.logger.exception(f"Error handling close of {position_id}: {e}")
            return False

    # Event handling

    def _begin_event(self, now: datetime) -> None:
        self.exits.begin_event()
        self._update_drawdown(now)
        self.session.update(now)

    def _handle_bar_closed(self, now: datetime) -> Optional[GateDecision]:
        self._begin_event(now)
        self._bars_processed += 1

        if self.session.is_past_flatten(now):
            self.exits.flatten()
            return None

        primary = self.config.execution.primary_timeframe
        bars = self.feed.closed_bars(primary, 1)
        if not bars:
            self.logger.debug(f"No closed {primary} bar at {now}")
            return None
        signal_bar = bars[-1]

        bounds = self.session.bounds
        if (
            self.config.entry.variant == EntryVariant.RANGE_BREAKOUT
            and self.session.opening_range is None
            and now >= bounds.signal_window_end
        ):
            self.session.define_opening_range(
                self.feed.closed_bars(primary, self.config.execution.opening_range_bars)
            )

        ctx = EntryContext(
            bar_close=now,
            signal_bar=signal_bar,
            signal=self.signals.signal_for(signal_bar),
            bounds=bounds,
            trades_today=self.session.trades_today,
            has_open_position=self._has_open_position(),
            quote=self.feed.quote(),
            balance=self.account.balance,
            risk_percent=self.drawdown.risk_percent,
            feed=self.feed,
            opening_range=self.session.opening_range,
        )
        decision = self.gate.evaluate(ctx)
        self._last_decision = decision

        if decision.side is not None and self.decision_logger:
            self.decision_logger.log_decision(decision)

        if decision.allowed:
            self._open_position(decision.plan, now)
        else:
            self._blocks += 1

        return decision

    def _handle_tick(self, now: datetime) -> List[ExitEvent]:
        self._begin_event(now)

        if self.session.is_past_flatten(now):
            return self.exits.flatten()
        if not self.exits.positions:
            return []
        return self.exits.evaluate(self.feed.quote(), now)

    def _has_open_position(self) -> bool:
        return len(self.exits) > 0 or bool(self.gateway.open_positions(self.label))

    def _update_drawdown(self, now: datetime) -> None:
        previous = self.drawdown.state.mode
        state = self.drawdown.update(self.account.equity)
        if state.mode != previous and self.risk_logger:
            self.risk_logger.log_state(
                state,
                self.drawdown.risk_percent,
                trades_today=self.session.trades_today,
                open_positions=len(self.exits),
                timestamp=now,
            )

    def _open_position(self, plan: EntryPlan, now: datetime) -> Optional[OrderExecution]:
        """Submit the order, register the position and protect it."""
        pip = self.config.symbol.pip_size
        stop_pips = plan.initial_risk / pip
        target_pips = abs(plan.target_price - plan.entry_price) / pip if plan.target_price is not None else None

        execution = self.gateway.submit_market_order(
            plan.side, plan.volume, self.label, stop_pips, target_pips
        )
        if self.trade_logger:
            self.trade_logger.log_execution(execution)

        if not execution.is_success:
            self._order_failures += 1
            self.logger.error(
                f"Order failed: {execution.result.value} {execution.error_message or ''}".rstrip()
            )
            return None

        if execution.position_id is None:
            self.logger.critical("Order reported success without a position handle")
            return None

        self.session.record_trade_opened()
        self._entries += 1

        fill_price = execution.price or plan.entry_price
        stop_price = execution.stop_price if execution.stop_price is not None else plan.stop_price
        target_price = execution.target_price if execution.target_price is not None else plan.target_price

        self.exits.register(
            execution.position_id,
            plan.side,
            fill_price,
            stop_price,
            target_price,
            execution.volume,
            opened_at=now,
        )

        result = self.exits.protect(execution.position_id)
        if self.trade_logger:
            self.trade_logger.log_protection(execution.position_id, result.value, now)
        if result == ProtectionResult.NAKED_OPEN:
            self.logger.critical(f"Position {execution.position_id} left without protection")

        return execution

    def get_status(self) -> dict:
        """Get current engine status."""
        state = self.drawdown.state
        return {
            "session_date": self.session.current_date.isoformat() if self.session.current_date else None,
            "trades_today": self.session.trades_today,
            "bars_processed": self._bars_processed,
            "entries": self._entries,
            "order_failures": self._order_failures,
            "blocks": self._blocks,
            "open_positions": [p.to_dict() for p in self.exits.positions],
            "risk_mode": state.mode.value,
            "defensive": state.mode == RiskMode.DEFENSIVE,
            "drawdown_pct": state.drawdown_pct,
            "risk_percent": self.drawdown.risk_percent,
        }
