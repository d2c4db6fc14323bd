"""
Configuration tests.
"""

from dataclasses import replace
from datetime import time
from pathlib import Path

import pytest

from session_trader.config import (
    SystemConfig,
    RiskConfig,
    SessionConfig,
    EntryConfig,
    StructureFilterConfig,
    SymbolConfig,
    EntryVariant,
    StructureFilterMode,
    parse_time_of_day,
    clamp_close_buffer,
)


EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "session_trader.yaml"


class TestDefaults:

    def test_defaults_validate(self):
        is_valid, errors = SystemConfig().validate()
        assert is_valid
        assert errors == []

    def test_summary_mentions_key_settings(self):
        summary = SystemConfig().get_summary()
        assert "EURUSD" in summary
        assert "SIGNAL_BAR" in summary
        assert "Structure Filter: DISABLED" in summary

    def test_cutoff_fallback_follows_variant(self):
        assert SystemConfig().cutoff_fallback == "11:00"

        range_config = replace(SystemConfig(), entry=EntryConfig(variant=EntryVariant.RANGE_BREAKOUT))
        assert range_config.cutoff_fallback == "10:30"

        explicit = replace(SystemConfig(), session=SessionConfig(cutoff_fallback="09:45"))
        assert explicit.cutoff_fallback == "09:45"


class TestValidation:

    @pytest.mark.parametrize("overrides, message", [
        ({"risk": RiskConfig(risk_percent=0.0)}, "risk_percent must be in (0, 10]"),
        ({"risk": RiskConfig(defensive_risk_percent=2.0)}, "defensive_risk_percent"),
        ({"risk": RiskConfig(drawdown_threshold_pct=-1.0)}, "drawdown_threshold_pct"),
        ({"risk": RiskConfig(max_trades_per_day=0)}, "max_trades_per_day"),
        ({"session": SessionConfig(close_buffer_seconds=1)}, "close_buffer_seconds"),
        ({"structure": StructureFilterConfig(pivot_strength=0)}, "pivot_strength"),
    ])
    def test_invalid_values_reported(self, overrides, message):
        is_valid, errors = replace(SystemConfig(), **overrides).validate()

        assert not is_valid
        assert any(message in e for e in errors)

    def test_symbol_rejects_bad_metadata(self):
        with pytest.raises(ValueError):
            SymbolConfig(pip_size=0.0)
        with pytest.raises(ValueError):
            SymbolConfig(min_volume=10.0, max_volume=1.0)


class TestSerialization:

    def test_yaml_round_trip(self, tmp_path):
        config = replace(
            SystemConfig(),
            entry=EntryConfig(variant=EntryVariant.RANGE_BREAKOUT, target_r=2.0),
            structure=StructureFilterConfig(mode=StructureFilterMode.AUTO, atr_days=10),
            audit_logs=True,
        )
        path = tmp_path / "config.yaml"
        config.to_yaml(str(path))

        assert SystemConfig.from_yaml(str(path)) == config

    def test_partial_mapping_keeps_defaults(self):
        config = SystemConfig.from_dict({"risk": {"risk_percent": 0.5, "defensive_risk_percent": 0.25}})

        assert config.risk.risk_percent == 0.5
        assert config.risk.max_trades_per_day == 1
        assert config.session == SessionConfig()

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert SystemConfig.from_yaml(str(path)) == SystemConfig()

    def test_enum_values_are_case_insensitive(self, tmp_path):
        path = tmp_path / "lower.yaml"
        path.write_text("entry:\n  variant: range_breakout\nstructure:\n  mode: fixed\n")

        config = SystemConfig.from_yaml(str(path))

        assert config.entry.variant == EntryVariant.RANGE_BREAKOUT
        assert config.structure.mode == StructureFilterMode.FIXED
        assert SystemConfig.from_dict({"structure": {"mode": " Auto "}}).structure.mode == StructureFilterMode.AUTO

    def test_unknown_enum_value(self):
        with pytest.raises(ValueError):
            SystemConfig.from_dict({"structure": {"mode": "SOMETIMES"}})

    def test_example_config_loads(self):
        config = SystemConfig.from_yaml(str(EXAMPLE_CONFIG))

        assert config.structure.mode == StructureFilterMode.FIXED
        assert config.risk.drawdown_threshold_pct == 6.0
        assert config.validate()[0]


class TestParsing:

    def test_time_of_day(self):
        assert parse_time_of_day("10:30", "11:00") == time(10, 30)
        assert parse_time_of_day(" 9:45 ", "11:00") == time(9, 45)

    @pytest.mark.parametrize("value", [None, "", "1030", "25:00", "ab:cd"])
    def test_time_of_day_fallback(self, value):
        assert parse_time_of_day(value, "11:00") == time(11, 0)

    def test_close_buffer_clamped(self):
        assert clamp_close_buffer(60) == 60
        assert clamp_close_buffer(1) == 5
        assert clamp_close_buffer(3600) == 900
