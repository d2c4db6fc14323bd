"""
Drawdown defensive-mode tests.

Hysteresis: enter at drawdown >= T, leave only at drawdown < T x 0.5.
"""

import pytest

from session_trader.config import RiskConfig
from session_trader.drawdown_governor import DrawdownGovernor, RiskMode


def make_governor(threshold: float = 6.0) -> DrawdownGovernor:
    return DrawdownGovernor(RiskConfig(
        risk_percent=1.0,
        defensive_risk_percent=0.5,
        drawdown_threshold_pct=threshold,
    ))


class TestDrawdownScenarios:

    def test_drop_activates_and_recovery_deactivates(self):
        """100 -> 93 (7%) enters; 95 (5%) holds; 97.5 (2.5%) leaves."""
        governor = make_governor(6.0)

        governor.update(100.0)
        assert not governor.is_defensive

        state = governor.update(93.0)
        assert state.drawdown_pct == pytest.approx(7.0)
        assert governor.is_defensive
        assert governor.risk_percent == 0.5

        governor.update(95.0)
        assert governor.is_defensive

        governor.update(97.5)
        assert not governor.is_defensive
        assert governor.risk_percent == 1.0

    def test_recovery_to_exactly_half_threshold_stays_defensive(self):
        """100 -> 93 -> 97: 3% drawdown equals T x 0.5, so the mode holds."""
        governor = make_governor(6.0)
        governor.update(100.0)
        governor.update(93.0)

        state = governor.update(97.0)

        assert state.drawdown_pct == pytest.approx(3.0)
        assert governor.is_defensive
        assert governor.risk_percent == 0.5

    def test_exit_boundary_is_strict(self):
        """Drawdown exactly at T x 0.5 keeps defensive mode on."""
        governor = make_governor(12.5)
        governor.update(128.0)

        governor.update(112.0)          # 12.5%
        assert governor.is_defensive

        governor.update(120.0)          # 6.25% == 12.5 x 0.5
        assert governor.is_defensive

        governor.update(121.0)          # 5.46875%
        assert not governor.is_defensive

    def test_entry_boundary_is_inclusive(self):
        governor = make_governor(12.5)
        governor.update(128.0)
        governor.update(112.0)
        assert governor.state.mode == RiskMode.DEFENSIVE

    def test_holds_across_hysteresis_band(self):
        governor = make_governor(6.0)
        governor.update(100.0)
        governor.update(92.0)

        for equity in (94.0, 94.5, 95.0, 96.0, 96.5, 96.9):
            governor.update(equity)
            assert governor.is_defensive

    def test_no_chatter_inside_band_before_entry(self):
        governor = make_governor(6.0)
        governor.update(100.0)
        for equity in (96.0, 95.0, 94.5, 95.5):
            governor.update(equity)
            assert not governor.is_defensive


class TestHighWaterMark:

    def test_high_water_mark_is_monotonic(self):
        governor = make_governor()
        seen = []
        for equity in (100.0, 105.0, 98.0, 103.0, 110.0, 90.0):
            seen.append(governor.update(equity).max_equity_seen)

        assert seen == [100.0, 105.0, 105.0, 105.0, 110.0, 110.0]

    def test_new_high_resets_drawdown(self):
        governor = make_governor()
        governor.update(100.0)
        governor.update(90.0)
        assert governor.update(101.0).drawdown_pct == 0.0

    def test_non_positive_high_water_mark(self):
        governor = make_governor()
        assert governor.update(0.0).drawdown_pct == 0.0
        assert governor.update(-5.0).drawdown_pct == 0.0


class TestDisabled:

    def test_zero_threshold_never_defensive(self):
        governor = make_governor(0.0)
        governor.update(100.0)
        state = governor.update(50.0)

        assert not governor.enabled
        assert state.drawdown_pct == pytest.approx(50.0)
        assert not governor.is_defensive
        assert governor.risk_percent == 1.0
