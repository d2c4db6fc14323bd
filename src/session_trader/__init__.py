"""
Session Trader - Intraday Session Trading Engine

New York cash session, one symbol, externally supplied entry signals.

COMPONENTS:
1. Session Engine - DST-aware session calendar, daily counters, opening range
2. Volatility Regime Filter - decides when the structure filter applies
3. Structure Engine - swing pivot trend classifier
4. Risk Engine - fixed-fractional sizing
5. Drawdown Governor - defensive risk mode with hysteresis
6. Entry Gate - bar-close entry decision
7. Exit Manager - trailing tiers, partial exit, flatten, emergency close
8. Orchestrator - host entry points wiring the above
"""

from .config import (
    SystemConfig,
    SymbolConfig,
    RiskConfig,
    SessionConfig,
    EntryConfig,
    ExitConfig,
    StructureFilterConfig,
    ExecutionConfig,
    PathConfig,
    StructureFilterMode,
    EntryVariant,
    DEFAULT_CONFIG,
)

# Market data
from .market_data import (
    Bar,
    Quote,
    Side,
    Timeframe,
    MarketDataFeed,
    AccountState,
    DataFrameFeed,
)

# Session calendar
from .session_engine import (
    SessionEngine,
    SessionBounds,
    OpeningRange,
    session_bounds_for,
    nth_weekday_of_month,
    is_us_daylight_saving,
    to_local,
    to_utc,
    local_date_of,
)

# Filters
from .volatility_filter import (
    VolatilityRegimeFilter,
    VolatilityDecision,
    atr_percent,
)
from .structure_engine import (
    StructureEngine,
    StructureDecision,
    TrendDirection,
    Pivot,
)

# Risk
from .risk_engine import (
    RiskEngine,
    SizingResult,
    RoundingMode,
    stop_distance,
    volume_for_risk,
)
from .drawdown_governor import (
    DrawdownGovernor,
    DrawdownState,
    RiskMode,
)

# Entry / exit
from .signal_engine import (
    SignalSource,
    EntrySignal,
    CallableSignalSource,
    FrameSignalSource,
)
from .entry_gate import (
    EntryGate,
    EntryContext,
    EntryPlan,
    GateDecision,
    BlockReason,
)
from .exit_models import (
    ExitManager,
    PositionState,
    TrailingTier,
    ExitEvent,
    ExitAction,
    ProtectionResult,
    parse_trailing_tiers,
)

# Execution
from .execution_engine import (
    ExecutionGateway,
    PaperExecutionEngine,
    OrderExecution,
    OrderResult,
    BrokerPosition,
    ClosedTrade,
)

# Engine
from .orchestrator import SessionTradingEngine
from .backtest_harness import ReplayBacktest, ReplayResult


__all__ = [
    # Config
    'SystemConfig',
    'SymbolConfig',
    'RiskConfig',
    'SessionConfig',
    'EntryConfig',
    'ExitConfig',
    'StructureFilterConfig',
    'ExecutionConfig',
    'PathConfig',
    'StructureFilterMode',
    'EntryVariant',
    'DEFAULT_CONFIG',

    # Market data
    'Bar',
    'Quote',
    'Side',
    'Timeframe',
    'MarketDataFeed',
    'AccountState',
    'DataFrameFeed',

    # Session
    'SessionEngine',
    'SessionBounds',
    'OpeningRange',
    'session_bounds_for',
    'nth_weekday_of_month',
    'is_us_daylight_saving',
    'to_local',
    'to_utc',
    'local_date_of',

    # Filters
    'VolatilityRegimeFilter',
    'VolatilityDecision',
    'atr_percent',
    'StructureEngine',
    'StructureDecision',
    'TrendDirection',
    'Pivot',

    # Risk
    'RiskEngine',
    'SizingResult',
    'RoundingMode',
    'stop_distance',
    'volume_for_risk',
    'DrawdownGovernor',
    'DrawdownState',
    'RiskMode',

    # Entry / exit
    'SignalSource',
    'EntrySignal',
    'CallableSignalSource',
    'FrameSignalSource',
    'EntryGate',
    'EntryContext',
    'EntryPlan',
    'GateDecision',
    'BlockReason',
    'ExitManager',
    'PositionState',
    'TrailingTier',
    'ExitEvent',
    'ExitAction',
    'ProtectionResult',
    'parse_trailing_tiers',

    # Execution
    'ExecutionGateway',
    'PaperExecutionEngine',
    'OrderExecution',
    'OrderResult',
    'BrokerPosition',
    'ClosedTrade',

    # Engine
    'SessionTradingEngine',
    'ReplayBacktest',
    'ReplayResult',
]
