"""
Logging & Audit Module

- System log (console + file)
- Trade log (CSV): submissions, protective placement, closes
- Decision log (CSV): every entry-gate evaluation with a signal
- Risk log (CSV): drawdown / defensive-mode snapshots

CSV files are append-only and never read back by the engine.
"""

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict

from .config import PathConfig
from .drawdown_governor import DrawdownState
from .entry_gate import GateDecision
from .execution_engine import OrderExecution, ClosedTrade


LOGGER_NAME = "SessionTrader"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(paths: PathConfig, verbose: bool = True) -> logging.Logger:
    """
    Configure system logging.

    Returns configured logger. Calling it again replaces the handlers.
    """
    paths.logs_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    file_handler = logging.FileHandler(paths.system_log)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt=DATE_FORMAT,
    ))

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger


class CsvAuditLog:
    """Append-only CSV file with a fixed header written on first use."""

    HEADERS: list = []

    def __init__(self, log_path: Path):
        self.log_path = Path(log_path)
        self._ensure_headers()

    def _ensure_headers(self) -> None:
        if not self.log_path.exists():
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, 'w', newline='') as f:
                csv.writer(f).writerow(self.HEADERS)

    def _write_row(self, row: Dict) -> None:
        with open(self.log_path, 'a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.HEADERS)
            writer.writerow(row)


def _iso(ts: Optional[datetime]) -> str:
    return (ts or datetime.now(timezone.utc)).isoformat()


class TradeLogger(CsvAuditLog):
    """
    CSV trade logger for audit trail.

    Logs order submissions, protection outcomes and closes.
    """

    HEADERS = [
        "timestamp",
        "action",  # EXECUTE, PROTECT, CLOSE
        "position_id",
        "symbol",
        "side",
        "volume",
        "entry_price",
        "exit_price",
        "stop_price",
        "target_price",
        "pnl",
        "result",
        "error",
    ]

    def __init__(self, log_path: Path, symbol: str = ""):
        self.symbol = symbol
        super().__init__(log_path)

    def log_execution(self, execution: OrderExecution) -> None:
        """Log an order submission result."""
        self._write_row({
            "timestamp": _iso(execution.timestamp),
            "action": "EXECUTE",
            "position_id": execution.position_id or "",
            "symbol": self.symbol,
            "side": execution.side.value if execution.side else "",
            "volume": execution.volume,
            "entry_price": execution.price,
            "exit_price": "",
            "stop_price": execution.stop_price if execution.stop_price is not None else "",
            "target_price": execution.target_price if execution.target_price is not None else "",
            "pnl": "",
            "result": execution.result.value,
            "error": execution.error_message or "",
        })

    def log_protection(self, position_id: str, result: str, timestamp: Optional[datetime] = None) -> None:
        """Log the outcome of stop/target placement."""
        self._write_row({
            "timestamp": _iso(timestamp),
            "action": "PROTECT",
            "position_id": position_id,
            "symbol": self.symbol,
            "side": "",
            "volume": "",
            "entry_price": "",
            "exit_price": "",
            "stop_price": "",
            "target_price": "",
            "pnl": "",
            "result": result,
            "error": "",
        })

    def log_close(self, trade: ClosedTrade) -> None:
        """Log a full or partial close."""
        self._write_row({
            "timestamp": _iso(trade.close_time),
            "action": "CLOSE",
            "position_id": trade.position_id,
            "symbol": self.symbol,
            "side": trade.side.value,
            "volume": trade.volume,
            "entry_price": trade.entry_price,
            "exit_price": trade.exit_price,
            "stop_price": "",
            "target_price": "",
            "pnl": f"{trade.pnl:.2f}",
            "result": trade.reason,
            "error": "",
        })


class DecisionLogger(CsvAuditLog):
    """CSV logger for entry-gate decisions."""

    HEADERS = [
        "timestamp",
        "side",
        "allowed",
        "reason",
        "volume",
        "stop_price",
        "target_price",
        "risk_percent",
        "filter_active",
        "atr_pct",
        "trend",
    ]

    def log_decision(self, decision: GateDecision) -> None:
        plan = decision.plan
        volatility = decision.volatility
        self._write_row({
            "timestamp": decision.timestamp.isoformat(),
            "side": decision.side.value if decision.side else "",
            "allowed": decision.allowed,
            "reason": decision.reason.value if decision.reason else "",
            "volume": plan.volume if plan else "",
            "stop_price": plan.stop_price if plan else "",
            "target_price": plan.target_price if plan and plan.target_price is not None else "",
            "risk_percent": plan.risk_percent if plan else "",
            "filter_active": volatility.filter_active if volatility else "",
            "atr_pct": f"{volatility.atr_pct:.4f}" if volatility and volatility.atr_pct is not None else "",
            "trend": decision.structure.trend.value if decision.structure else "",
        })


class RiskLogger(CsvAuditLog):
    """CSV logger for drawdown state snapshots."""

    HEADERS = [
        "timestamp",
        "equity",
        "high_water_mark",
        "drawdown_pct",
        "mode",
        "risk_percent",
        "trades_today",
        "open_positions",
    ]

    def log_state(
        self,
        state: DrawdownState,
        risk_percent: float,
        trades_today: int = 0,
        open_positions: int = 0,
        timestamp: Optional[datetime] = None,
    ) -> None:
        self._write_row({
            "timestamp": _iso(timestamp),
            "equity": f"{state.current_equity:.2f}",
            "high_water_mark": f"{state.max_equity_seen:.2f}",
            "drawdown_pct": f"{state.drawdown_pct:.4f}",
            "mode": state.mode.value,
            "risk_percent": f"{risk_percent:.4f}",
            "trades_today": trades_today,
            "open_positions": open_positions,
        })
