"""
Session Trader Configuration

Single source of truth for all engine parameters.
Every option is a named field on a frozen dataclass; SystemConfig
aggregates them and round-trips through YAML.

Malformed option strings (cutoff time, trailing tiers) never abort
start-up: they fall back to a safe default and log a warning.
"""

import logging
from dataclasses import dataclass, field, asdict
from datetime import time
from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Any

import yaml


logger = logging.getLogger(__name__)


class StructureFilterMode(Enum):
    """How the volatility regime decides whether the structure filter applies."""
    DISABLED = "DISABLED"   # Never consult the structure classifier
    FIXED = "FIXED"         # Active while ATR% <= fixed threshold
    AUTO = "AUTO"           # Active while ATR% is compressed vs its own SMA


class EntryVariant(Enum):
    """Where the protective stop comes from and how volume is rounded."""
    SIGNAL_BAR = "SIGNAL_BAR"           # Stop beyond signal bar extreme, nearest rounding
    RANGE_BREAKOUT = "RANGE_BREAKOUT"   # Stop at opening-range midpoint, round down


# Cutoff fallbacks when the configured string does not parse
DEFAULT_CUTOFF_SIGNAL_BAR = "11:00"
DEFAULT_CUTOFF_RANGE_BREAKOUT = "10:30"

# Close-buffer bounds (seconds before the session close)
MIN_CLOSE_BUFFER_SECONDS = 5
MAX_CLOSE_BUFFER_SECONDS = 900


def parse_time_of_day(value: Optional[str], fallback: str) -> time:
    """
    Parse an ``HH:MM`` string.

    Falls back to ``fallback`` (which must itself be valid) and logs a
    warning when ``value`` is empty or malformed.
    """
    try:
        hours, minutes = str(value).strip().split(":")
        return time(int(hours), int(minutes))
    except (ValueError, TypeError, AttributeError):
        logger.warning(f"Invalid time of day {value!r}, using fallback {fallback}")
        hours, minutes = fallback.split(":")
        return time(int(hours), int(minutes))


def clamp_close_buffer(seconds: float) -> int:
    """Clamp the flatten buffer into the supported 5-900 second range."""
    clamped = int(min(max(seconds, MIN_CLOSE_BUFFER_SECONDS), MAX_CLOSE_BUFFER_SECONDS))
    if clamped != seconds:
        logger.warning(f"Close buffer {seconds}s out of range, using {clamped}s")
    return clamped


@dataclass(frozen=True)
class SymbolConfig:
    """Symbol metadata. Volumes are in units, pip value is per unit."""
    name: str = "EURUSD"
    pip_size: float = 0.0001
    pip_value: float = 0.0001     # Account currency per pip per unit
    min_volume: float = 1000.0
    max_volume: float = 10_000_000.0
    volume_step: float = 1000.0

    def __post_init__(self):
        if self.pip_size <= 0 or self.pip_value <= 0:
            raise ValueError("pip_size and pip_value must be positive")
        if self.volume_step <= 0:
            raise ValueError("volume_step must be positive")
        if self.min_volume > self.max_volume:
            raise ValueError("min_volume must not exceed max_volume")


@dataclass(frozen=True)
class RiskConfig:
    """Fixed-fractional risk and drawdown throttling."""
    risk_percent: float = 1.0               # % of balance per trade
    defensive_risk_percent: float = 0.5     # % of balance while in defensive mode
    drawdown_threshold_pct: float = 0.0     # 0 disables defensive mode
    max_trades_per_day: int = 1


@dataclass(frozen=True)
class SessionConfig:
    """Session window options (New York cash session, local wall clock)."""
    cutoff_time: str = DEFAULT_CUTOFF_SIGNAL_BAR   # No first entry at/after this time
    cutoff_fallback: Optional[str] = None          # None = variant default
    close_buffer_seconds: int = 60                 # Flatten this long before the close
    opening_range_minutes: int = 15                # Signal window after the open


@dataclass(frozen=True)
class EntryConfig:
    """Entry pricing."""
    variant: EntryVariant = EntryVariant.SIGNAL_BAR
    stop_offset_pips: float = 1.0
    target_r: float = 1.5                   # Target distance in R; <= 0 means no target


@dataclass(frozen=True)
class ExitConfig:
    """Open-position management."""
    trailing_tiers: str = ""                # "trigger,target,trigger,target,..."
    partial_exit_r: float = 0.0             # 0 disables the partial exit
    partial_exit_fraction: float = 0.5


@dataclass(frozen=True)
class StructureFilterConfig:
    """Volatility regime + swing structure filter."""
    mode: StructureFilterMode = StructureFilterMode.DISABLED
    timeframe: str = "H1"                   # Secondary timeframe for pivots
    pivot_strength: int = 2                 # Bars each side of a pivot
    lookback_bars: int = 100
    atr_days: int = 14
    fixed_threshold_pct: float = 1.5
    auto_sma_days: int = 20
    auto_ratio_multiplier: float = 1.0


@dataclass(frozen=True)
class ExecutionConfig:
    """Order labelling and bar timeframe."""
    label: str = "ORB"
    primary_timeframe: str = "M5"
    opening_range_bars: int = 100           # Primary bars scanned for the opening range


@dataclass(frozen=True)
class PathConfig:
    """File paths for audit logs."""
    base_dir: Path = Path("session_trader_data")

    @property
    def logs_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def trade_log(self) -> Path:
        return self.logs_dir / "trades.csv"

    @property
    def decision_log(self) -> Path:
        return self.logs_dir / "decisions.csv"

    @property
    def risk_log(self) -> Path:
        return self.logs_dir / "risk_state.csv"

    @property
    def system_log(self) -> Path:
        return self.logs_dir / "system.log"


def _enum(enum_cls):
    """Converter accepting enum values in any case."""
    return lambda value: enum_cls(str(value).strip().upper())


def _section(cls, data: Optional[Dict[str, Any]], **converters):
    """Build a config section from a YAML mapping, converting enum fields."""
    values = dict(data or {})
    for key, convert in converters.items():
        if key in values:
            values[key] = convert(values[key])
    return cls(**values)


@dataclass
class SystemConfig:
    """Master configuration - aggregates all configs."""
    symbol: SymbolConfig = field(default_factory=SymbolConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    entry: EntryConfig = field(default_factory=EntryConfig)
    exits: ExitConfig = field(default_factory=ExitConfig)
    structure: StructureFilterConfig = field(default_factory=StructureFilterConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    paths: PathConfig = field(default_factory=PathConfig)

    # System behavior
    audit_logs: bool = False                # Write CSV audit trail under paths.logs_dir
    verbose: bool = True

    @property
    def cutoff_fallback(self) -> str:
        """Cutoff used when session.cutoff_time does not parse."""
        if self.session.cutoff_fallback:
            return self.session.cutoff_fallback
        if self.entry.variant == EntryVariant.RANGE_BREAKOUT:
            return DEFAULT_CUTOFF_RANGE_BREAKOUT
        return DEFAULT_CUTOFF_SIGNAL_BAR

    def ensure_directories(self) -> None:
        """Create required directories."""
        self.paths.logs_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'SystemConfig':
        """Build a configuration from a nested mapping (as loaded from YAML)."""
        paths = config.get('paths') or {}
        return cls(
            symbol=_section(SymbolConfig, config.get('symbol')),
            risk=_section(RiskConfig, config.get('risk')),
            session=_section(SessionConfig, config.get('session')),
            entry=_section(EntryConfig, config.get('entry'), variant=_enum(EntryVariant)),
            exits=_section(ExitConfig, config.get('exits')),
            structure=_section(StructureFilterConfig, config.get('structure'),
                               mode=_enum(StructureFilterMode)),
            execution=_section(ExecutionConfig, config.get('execution')),
            paths=PathConfig(base_dir=Path(paths.get('base_dir', 'session_trader_data'))),
            audit_logs=bool(config.get('audit_logs', False)),
            verbose=bool(config.get('verbose', True)),
        )

    @classmethod
    def from_yaml(cls, path: str) -> 'SystemConfig':
        """Load configuration from a YAML file."""
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
        return cls.from_dict(config)

    def to_dict(self) -> Dict[str, Any]:
        """Plain mapping suitable for YAML."""
        entry = asdict(self.entry)
        entry['variant'] = self.entry.variant.value
        structure = asdict(self.structure)
        structure['mode'] = self.structure.mode.value
        return {
            'symbol': asdict(self.symbol),
            'risk': asdict(self.risk),
            'session': asdict(self.session),
            'entry': entry,
            'exits': asdict(self.exits),
            'structure': structure,
            'execution': asdict(self.execution),
            'paths': {'base_dir': str(self.paths.base_dir)},
            'audit_logs': self.audit_logs,
            'verbose': self.verbose,
        }

    def to_yaml(self, path: str) -> None:
        """Save configuration to a YAML file."""
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    def validate(self) -> Tuple[bool, List[str]]:
        """Validate configuration values."""
        errors = []

        if not 0 < self.risk.risk_percent <= 10:
            errors.append("risk_percent must be in (0, 10]")
        if not 0 < self.risk.defensive_risk_percent <= self.risk.risk_percent:
            errors.append("defensive_risk_percent must be in (0, risk_percent]")
        if self.risk.drawdown_threshold_pct < 0:
            errors.append("drawdown_threshold_pct must be >= 0")
        if self.risk.max_trades_per_day < 1:
            errors.append("max_trades_per_day must be at least 1")

        if not MIN_CLOSE_BUFFER_SECONDS <= self.session.close_buffer_seconds <= MAX_CLOSE_BUFFER_SECONDS:
            errors.append("close_buffer_seconds must be between 5 and 900")
        if self.session.opening_range_minutes <= 0:
            errors.append("opening_range_minutes must be positive")

        if self.entry.stop_offset_pips < 0:
            errors.append("stop_offset_pips must be >= 0")
        if self.exits.partial_exit_r < 0:
            errors.append("partial_exit_r must be >= 0")
        if not 0 < self.exits.partial_exit_fraction < 1:
            errors.append("partial_exit_fraction must be in (0, 1)")

        if self.structure.pivot_strength < 1:
            errors.append("pivot_strength must be at least 1")
        if self.structure.atr_days < 1 or self.structure.auto_sma_days < 1:
            errors.append("atr_days and auto_sma_days must be at least 1")

        return len(errors) == 0, errors

    def get_summary(self) -> str:
        """Get configuration summary string."""
        return f"""
Session Trader Configuration
============================
Symbol: {self.symbol.name} (pip {self.symbol.pip_size}, step {self.symbol.volume_step:g})
Variant: {self.entry.variant.value}
Label: {self.execution.label}

Risk:
  Risk/Trade: {self.risk.risk_percent:.2f}%
  Defensive Risk/Trade: {self.risk.defensive_risk_percent:.2f}%
  Drawdown Threshold: {self.risk.drawdown_threshold_pct:.2f}%
  Max Trades/Day: {self.risk.max_trades_per_day}

Session:
  Entry Cutoff: {self.session.cutoff_time} (fallback {self.cutoff_fallback})
  Close Buffer: {self.session.close_buffer_seconds}s
  Opening Range: {self.session.opening_range_minutes} min

Exits:
  Target: {self.entry.target_r}R
  Trailing Tiers: {self.exits.trailing_tiers or 'none'}
  Partial Exit: {self.exits.partial_exit_r or 'off'}

Structure Filter: {self.structure.mode.value}
"""


# Default configuration instance
DEFAULT_CONFIG = SystemConfig()
