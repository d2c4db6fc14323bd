"""
Session Trader - Main Entry Point

Intraday session trading engine: replay, calendar inspection and
configuration display.

Usage:
    python main.py replay --bars data/eurusd_m5.csv --config config/session_trader.yaml
    python main.py sessions --date 2024-03-11
    python main.py show-config --config config/session_trader.yaml
"""

import argparse
import sys
from datetime import date
from typing import Optional

import pandas as pd

from session_trader.backtest_harness import ReplayBacktest, print_summary
from session_trader.config import SystemConfig
from session_trader.logging_module import setup_logging
from session_trader.session_engine import (
    session_bounds_for,
    to_local,
    is_us_daylight_saving,
)


def load_config(path: Optional[str]) -> SystemConfig:
    """Load and validate configuration; exits on invalid values."""
    config = SystemConfig.from_yaml(path) if path else SystemConfig()
    ok, errors = config.validate()
    if not ok:
        for error in errors:
            print(f"Config error: {error}", file=sys.stderr)
        sys.exit(2)
    return config


def run_replay(args) -> None:
    config = load_config(args.config)
    config.ensure_directories()
    logger = setup_logging(config.paths, config.verbose)

    logger.info(f"Loading bars from {args.bars}")
    df = pd.read_csv(args.bars)

    backtest = ReplayBacktest(
        config,
        initial_balance=args.balance,
        spread_pips=args.spread,
        logger=logger,
    )
    result = backtest.run(df)
    print_summary(result)

    if args.trades_out:
        result.trades.to_csv(args.trades_out, index=False)
        logger.info(f"Trades written to {args.trades_out}")


def show_sessions(args) -> None:
    config = load_config(args.config)
    local_date = date.fromisoformat(args.date)
    bounds = session_bounds_for(local_date, config.session, config.cutoff_fallback)

    print("\n" + "=" * 60)
    print(f"SESSION {local_date.isoformat()}")
    print("=" * 60)
    print(f"Daylight saving: {is_us_daylight_saving(to_local(bounds.session_open))}")
    rows = [
        ("Open", bounds.session_open),
        ("Signal window end", bounds.signal_window_end),
        ("No entry after", bounds.no_entry_after),
        ("Flatten deadline", bounds.flatten_deadline),
        ("Close", bounds.session_close),
    ]
    for name, ts in rows:
        print(f"{name:<20} {to_local(ts):%H:%M:%S} local | {ts:%Y-%m-%d %H:%M:%S} UTC")


def show_config(args) -> None:
    config = load_config(args.config)
    print(config.get_summary())


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Intraday session trading engine'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Replay command
    replay_parser = subparsers.add_parser('replay', help='Replay a bar CSV through the engine')
    replay_parser.add_argument('--bars', type=str, required=True,
                               help='CSV with timestamp,open,high,low,close[,buy,sell]')
    replay_parser.add_argument('--config', type=str, default=None, help='YAML configuration')
    replay_parser.add_argument('--balance', type=float, default=100000.0, help='Initial balance')
    replay_parser.add_argument('--spread', type=float, default=0.0, help='Spread in pips')
    replay_parser.add_argument('--trades-out', type=str, default=None, help='Write trades CSV here')

    # Sessions command
    sessions_parser = subparsers.add_parser('sessions', help='Show session boundaries for a date')
    sessions_parser.add_argument('--date', type=str, required=True, help='Local date YYYY-MM-DD')
    sessions_parser.add_argument('--config', type=str, default=None, help='YAML configuration')

    # Config command
    config_parser = subparsers.add_parser('show-config', help='Print the effective configuration')
    config_parser.add_argument('--config', type=str, default=None, help='YAML configuration')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    commands = {
        'replay': run_replay,
        'sessions': show_sessions,
        'show-config': show_config,
    }

    try:
        commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.")


if __name__ == '__main__':
    main()
