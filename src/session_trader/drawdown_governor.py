"""
Drawdown Governor - Defensive Risk Mode

Tracks the equity high-water mark and switches new entries to a
lower risk percentage while floating drawdown is deep.

HYSTERESIS:
- Enter DEFENSIVE when drawdown >= threshold
- Return to NORMAL only when drawdown < threshold x 0.5
- threshold <= 0 disables the governor (always NORMAL)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .config import RiskConfig


EXIT_FRACTION = 0.5


class RiskMode(Enum):
    """Risk mode applied to new entries."""
    NORMAL = "NORMAL"
    DEFENSIVE = "DEFENSIVE"


@dataclass
class DrawdownState:
    """High-water mark and current drawdown."""
    max_equity_seen: float = 0.0
    current_equity: float = 0.0
    drawdown_pct: float = 0.0
    mode: RiskMode = RiskMode.NORMAL

    @property
    def defensive_active(self) -> bool:
        return self.mode == RiskMode.DEFENSIVE

    def to_dict(self) -> dict:
        return {
            "max_equity_seen": self.max_equity_seen,
            "current_equity": self.current_equity,
            "drawdown_pct": self.drawdown_pct,
            "mode": self.mode.value,
        }


class DrawdownGovernor:
    """Defensive-mode switch driven by equity drawdown from the high-water mark."""

    def __init__(self, config: RiskConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.state = DrawdownState()

    @property
    def enabled(self) -> bool:
        return self.config.drawdown_threshold_pct > 0

    @property
    def is_defensive(self) -> bool:
        return self.state.defensive_active

    @property
    def risk_percent(self) -> float:
        """Risk percentage for the next entry."""
        if self.state.defensive_active:
            return self.config.defensive_risk_percent
        return self.config.risk_percent

    def update(self, equity: float) -> DrawdownState:
        """Update high-water mark, drawdown and mode from current equity."""
        state = self.state
        state.current_equity = equity

        # High-water mark only goes up
        if equity > state.max_equity_seen:
            state.max_equity_seen = equity

        hwm = state.max_equity_seen
        state.drawdown_pct = (hwm - equity) / hwm * 100 if hwm > 0 else 0.0

        if not self.enabled:
            return state

        threshold = self.config.drawdown_threshold_pct
        if state.mode == RiskMode.NORMAL and state.drawdown_pct >= threshold:
            state.mode = RiskMode.DEFENSIVE
            self.logger.warning(
                f"Defensive mode ON: drawdown {state.drawdown_pct:.2f}% >= {threshold:.2f}% "
                f"(risk {self.config.defensive_risk_percent}%)"
            )
        elif state.mode == RiskMode.DEFENSIVE and state.drawdown_pct < threshold * EXIT_FRACTION:
            state.mode = RiskMode.NORMAL
            self.logger.info(
                f"Defensive mode OFF: drawdown {state.drawdown_pct:.2f}% < "
                f"{threshold * EXIT_FRACTION:.2f}% (risk {self.config.risk_percent}%)"
            )

        return state
