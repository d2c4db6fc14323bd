"""
Replay harness tests.

Two EDT sessions of M5 bars 13:00-20:30 UTC with a buy signal on the
13:55 bar each day. Day 1 trades up through the 1.5R target from
14:30; day 2 stays flat and is flattened at the 20:00 bar close.
"""

import math
from dataclasses import replace

import pandas as pd
import pytest

from session_trader.backtest_harness import ReplayBacktest, print_summary
from session_trader.config import SystemConfig, PathConfig
from session_trader.signal_engine import CallableSignalSource


def make_day(day: str, rally_from: str = None) -> pd.DataFrame:
    index = pd.date_range(f"{day} 13:00", f"{day} 20:30", freq="5min", tz="UTC")
    frame = pd.DataFrame(
        {"open": 1.1040, "high": 1.1055, "low": 1.1021, "close": 1.1050, "buy": False, "sell": False},
        index=index,
    )
    frame.loc[pd.Timestamp(f"{day} 13:55", tz="UTC"), "buy"] = True
    if rally_from is not None:
        frame.loc[frame.index >= pd.Timestamp(f"{day} {rally_from}", tz="UTC"), "high"] = 1.1100
    return frame


@pytest.fixture
def two_days() -> pd.DataFrame:
    return pd.concat([make_day("2024-07-01", rally_from="14:30"), make_day("2024-07-02")])


class TestReplay:

    def test_target_then_flatten(self, two_days):
        result = ReplayBacktest().run(two_days)

        assert result.sessions == 2
        assert result.total_trades == 2
        assert list(result.trades["reason"]) == ["TARGET", "MARKET"]

        target, flattened = result.trades.itertuples(index=False)
        assert target.pnl == pytest.approx(45 * 0.0001 * 333000)
        assert target.exit_price == pytest.approx(1.1095)
        assert flattened.pnl == pytest.approx(0.0)
        assert flattened.close_time == pd.Timestamp("2024-07-02 20:00", tz="UTC")

    def test_statistics(self, two_days):
        result = ReplayBacktest().run(two_days)

        assert result.wins == 1
        assert result.losses == 1
        assert result.win_rate == pytest.approx(0.5)
        assert math.isinf(result.profit_factor)
        assert result.final_balance == pytest.approx(100000.0 + result.total_pnl)
        assert result.max_drawdown_pct >= 0.0

    def test_equity_curve_has_one_point_per_bar(self, two_days):
        result = ReplayBacktest().run(two_days)

        assert len(result.equity_curve) == len(two_days)
        assert result.equity_curve.iloc[-1] == pytest.approx(result.final_balance)

    def test_one_trade_per_session(self, two_days):
        two_days["buy"] = True
        result = ReplayBacktest().run(two_days)

        assert result.total_trades == 2
        assert result.block_reasons.get("DAILY_LIMIT", 0) > 0

    def test_explicit_signal_source(self, two_days):
        never = CallableSignalSource(lambda bar: (False, False))
        result = ReplayBacktest().run(two_days, signals=never)

        assert result.total_trades == 0
        assert result.trades.empty
        assert result.decisions == []
        assert result.final_balance == 100000.0

    def test_open_position_closed_at_end_of_data(self):
        frame = make_day("2024-07-01")
        frame = frame[frame.index < pd.Timestamp("2024-07-01 16:00", tz="UTC")]

        backtest = ReplayBacktest()
        result = backtest.run(frame)

        assert result.total_trades == 1
        assert list(result.trades["reason"]) == ["MARKET"]
        assert backtest.gateway.open_positions() == []

    def test_spread_reduces_result(self, two_days):
        plain = ReplayBacktest().run(two_days)
        spread = ReplayBacktest(spread_pips=1.0).run(two_days)
        assert spread.total_pnl < plain.total_pnl

    def test_summary(self, two_days, capsys):
        result = ReplayBacktest().run(two_days)
        summary = result.summary()

        assert summary["total_trades"] == 2
        assert summary["sessions"] == 2

        print_summary(result)
        assert "REPLAY SUMMARY" in capsys.readouterr().out

    def test_closes_written_to_trade_log(self, two_days, tmp_path):
        config = replace(SystemConfig(), audit_logs=True, paths=PathConfig(base_dir=tmp_path))
        ReplayBacktest(config).run(two_days)

        text = config.paths.trade_log.read_text()
        assert text.count(",CLOSE,") == 2
        assert text.count(",EXECUTE,") == 2
