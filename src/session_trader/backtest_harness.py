"""
Replay Backtest Harness

Drives a primary-timeframe OHLC DataFrame through the production
engine with the paper gateway:

PER BAR (at the bar's close time):
1. Advance the feed clock; quote = bar close +/- half spread
2. Paper broker triggers stops/targets touched inside the bar
3. Position-closed notifications delivered to the engine
4. on_session_tick (trailing, partial exit, flatten)
5. on_bar_closed (entry gate, order, protection)
6. Equity recorded

Identical components and rules as a live host; only the feed and the
gateway are simulated.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union, Dict

import numpy as np
import pandas as pd

from .config import SystemConfig, DEFAULT_CONFIG
from .entry_gate import GateDecision
from .execution_engine import PaperExecutionEngine
from .market_data import DataFrameFeed, frame_to_bars, normalize_frame
from .orchestrator import SessionTradingEngine
from .signal_engine import SignalSource, FrameSignalSource


@dataclass
class ReplayResult:
    """Complete replay results."""
    trades: pd.DataFrame
    fills: pd.DataFrame
    equity_curve: pd.Series
    decisions: List[GateDecision] = field(default_factory=list)

    initial_balance: float = 0.0
    final_balance: float = 0.0
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    total_pnl: float = 0.0
    max_drawdown_pct: float = 0.0
    sessions: int = 0
    block_reasons: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> dict:
        return {
            "initial_balance": self.initial_balance,
            "final_balance": self.final_balance,
            "total_trades": self.total_trades,
            "wins": self.wins,
            "losses": self.losses,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "total_pnl": self.total_pnl,
            "max_drawdown_pct": self.max_drawdown_pct,
            "sessions": self.sessions,
            "block_reasons": dict(self.block_reasons),
        }


TRADE_COLUMNS = ["position_id", "side", "volume", "entry_price", "exit_price", "pnl", "reason", "close_time"]


class ReplayBacktest:
    """Bar-by-bar replay of the session trading engine."""

    def __init__(
        self,
        config: Optional[SystemConfig] = None,
        initial_balance: float = 100000.0,
        spread_pips: float = 0.0,
        attach_protection: bool = False,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.initial_balance = initial_balance
        self.spread_pips = spread_pips
        self.attach_protection = attach_protection
        self.logger = logger or logging.getLogger(__name__)

        self.engine: Optional[SessionTradingEngine] = None
        self.gateway: Optional[PaperExecutionEngine] = None

    def run(
        self,
        df: pd.DataFrame,
        signals: Optional[Union[SignalSource, pd.DataFrame]] = None,
    ) -> ReplayResult:
        """
        Replay ``df`` (open/high/low/close indexed by bar open time).

        ``signals`` is a SignalSource or a frame with ``buy``/``sell``
        columns; by default the columns of ``df`` itself are used.
        """
        frame = normalize_frame(df)
        if signals is None:
            signals = frame
        if isinstance(signals, pd.DataFrame):
            signals = FrameSignalSource.from_frame(signals)

        feed = DataFrameFeed(
            frame,
            self.config.symbol,
            self.config.execution.primary_timeframe,
            self.spread_pips,
        )
        gateway = PaperExecutionEngine(
            self.config.symbol,
            self.initial_balance,
            self.attach_protection,
            self.logger,
        )
        engine = SessionTradingEngine(self.config, feed, gateway, gateway, signals, self.logger)
        self.engine, self.gateway = engine, gateway

        step = feed.primary_timeframe.to_timedelta()
        decisions: List[GateDecision] = []
        times = []
        equity = []
        sessions = set()

        for bar in frame_to_bars(feed.primary_frame):
            close_time = bar.timestamp + step
            feed.set_clock(close_time)
            gateway.set_quote(feed.quote(), close_time)

            gateway.process_bar(bar, close_time)
            self._deliver_closed(engine, gateway)

            engine.on_session_tick(close_time)
            self._deliver_closed(engine, gateway)

            decision = engine.on_bar_closed(close_time)
            self._deliver_closed(engine, gateway)

            if decision is not None and decision.side is not None:
                decisions.append(decision)
            if engine.session.current_date is not None:
                sessions.add(engine.session.current_date)

            times.append(close_time)
            equity.append(gateway.equity)

        # Force close anything still open at the end of the data
        for position in gateway.open_positions():
            gateway.close_position(position.position_id)
        self._deliver_closed(engine, gateway)

        if engine.trade_logger:
            for trade in gateway.closed_trades:
                engine.trade_logger.log_close(trade)

        equity_curve =pd.Series(equity, index=pd.DatetimeIndex(times), name="equity", dtype=float)
        return self._compute_results(gateway, equity_curve, decisions, len(sessions))

    @staticmethod
    def _deliver_closed(engine: SessionTradingEngine, gateway: PaperExecutionEngine) -> None:
        for position_id in gateway.drain_closed_notifications():
            engine.on_position_closed(position_id)

    def _compute_results(
        self,
        gateway: PaperExecutionEngine,
        equity_curve: pd.Series,
        decisions: List[GateDecision],
        sessions: int,
    ) -> ReplayResult:
        """Compute replay statistics."""
        fills = pd.DataFrame(
            [
                {
                    "position_id": t.position_id,
                    "side": t.side.value,
                    "volume": t.volume,
                    "entry_price": t.entry_price,
                    "exit_price": t.exit_price,
                    "pnl": t.pnl,
                    "reason": t.reason,
                    "close_time": t.close_time,
                }
                for t in gateway.closed_trades
            ],
            columns=TRADE_COLUMNS,
        )

        # Partial closes are rolled up into one row per position
        if fills.empty:
            trades = pd.DataFrame(columns=TRADE_COLUMNS)
        else:
            trades = fills.groupby("position_id", sort=False).agg(
                side=("side", "first"),
                volume=("volume", "sum"),
                entry_price=("entry_price", "first"),
                exit_price=("exit_price", "last"),
                pnl=("pnl", "sum"),
                reason=("reason", "last"),
                close_time=("close_time", "last"),
            ).reset_index()

        block_reasons: Dict[str, int] = {}
        for decision in decisions:
            if decision.reason is not None:
                block_reasons[decision.reason.value] = block_reasons.get(decision.reason.value, 0) + 1

        result = ReplayResult(
            trades=trades,
            fills=fills,
            equity_curve=equity_curve,
            decisions=decisions,
            initial_balance=self.initial_balance,
            final_balance=gateway.balance,
            sessions=sessions,
            block_reasons=block_reasons,
        )
        if trades.empty:
            return result

        pnl = trades["pnl"].to_numpy(dtype=float)
        gross_profit = pnl[pnl > 0].sum()
        gross_loss = abs(pnl[pnl <= 0].sum())

        result.total_trades = len(pnl)
        result.wins = int((pnl > 0).sum())
        result.losses = result.total_trades - result.wins
        result.win_rate = result.wins / result.total_trades
        result.profit_factor = float(gross_profit / gross_loss) if gross_loss > 0 else float("inf")
        result.total_pnl = float(pnl.sum())

        if len(equity_curve) > 0:
            equity_array = equity_curve.to_numpy(dtype=float)
            running_max = np.maximum.accumulate(np.maximum(equity_array, self.initial_balance))
            drawdown = (running_max - equity_array) / running_max
            result.max_drawdown_pct = float(np.max(drawdown) * 100)

        return result


def print_summary(result: ReplayResult) -> None:
    """Print replay statistics."""
    print()
    print("=" * 60)
    print("REPLAY SUMMARY")
    print("=" * 60)
    print(f"Sessions:        {result.sessions}")
    print(f"Trades:          {result.total_trades}")
    print(f"Wins / Losses:   {result.wins} / {result.losses}")
    print(f"Win Rate:        {result.win_rate:.2%}")
    print(f"Profit Factor:   {result.profit_factor:.2f}")
    print(f"Total PnL:       ${result.total_pnl:,.2f}")
    print(f"Final Balance:   ${result.final_balance:,.2f}")
    print(f"Max Drawdown:    {result.max_drawdown_pct:.2f}%")
    if result.block_reasons:
        print()
        print("Skipped signals:")
        for reason, count in sorted(result.block_reasons.items()):
            print(f"  {reason:<24} {count:>5}")
    print("=" * 60)
