"""
Tick Engine - Configuration Tests.

Covers:
1. Default configuration validity
2. Validation errors
3. YAML loading (partial files keep defaults)
4. Market tables: asset classes and group lookup
"""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.config import (
    EngineConfig,
    RiskConfig,
    ModeConfig,
    RouterConfig,
    MarketTableConfig,
    ConfigError,
    load_config,
    save_config,
)


REPO_ROOT = Path(__file__).parent.parent


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidation:
    """validate() returns (ok, errors) and never raises."""

    def test_default_config_is_valid(self):
        ok, errors = EngineConfig().validate()
        assert ok, f"Default config invalid: {errors}"

    def test_unknown_mode_selection(self):
        config = EngineConfig(modes=ModeConfig(selection="yolo"))
        ok, errors = config.validate()
        assert not ok
        assert any("yolo" in e for e in errors), f"Missing selection error: {errors}"

    def test_router_weights_must_sum_to_one(self):
        config = EngineConfig(router=RouterConfig(edge_weight=0.5))
        ok, errors = config.validate()
        assert not ok
        assert any("router weights" in e for e in errors)

    def test_non_positive_loss_limit(self):
        config = EngineConfig(risk=RiskConfig(max_daily_loss_percent=0))
        ok, errors = config.validate()
        assert not ok
        assert any("max_daily_loss_percent" in e for e in errors)

    def test_empty_universe(self):
        ok, errors = EngineConfig(symbols=[]).validate()
        assert not ok
        assert "symbols must not be empty" in errors


# ============================================================================
# YAML
# ============================================================================

class TestYaml:
    """load_config / save_config."""

    def test_partial_file_keeps_defaults(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("risk:\n  max_daily_loss_percent: 3.0\nburst_requested: true\n")

        config = load_config(path)

        assert config.risk.max_daily_loss_percent == 3.0
        assert config.risk.max_open_trades == 20, "Unspecified field lost its default"
        assert config.burst_requested is True
        assert config.burst.size == 20

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("modes:\n  selection: yolo\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_unknown_key_raises(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("risk:\n  max_leverage: 100\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_thermostat_step_is_not_configurable(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("thermostat:\n  max_level_change: 2\n")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_saved_config_loads_back(self, tmp_path):
        path = tmp_path / "engine.yaml"
        original = EngineConfig(symbols=["BTCUSD", "XAUUSD"], owner="desk-1")

        save_config(original, path)
        loaded = load_config(path)

        assert loaded == original

    def test_shipped_example_is_valid(self):
        config = load_config(REPO_ROOT / "config" / "engine.yaml")

        assert "XAUUSD" in config.symbols
        assert len(config.sessions.events) == 2
        assert config.sessions.events[0].currencies == ("USD", "EUR", "GBP")


# ============================================================================
# MARKET TABLES
# ============================================================================

class TestMarketTables:
    """Asset classification and correlation groups."""

    def test_asset_classes(self):
        markets = MarketTableConfig()

        assert markets.asset_class("BTCUSDT") == "crypto"
        assert markets.asset_class("AAPL") == "stock"
        assert markets.asset_class("XAUUSD") == "gold", "Gold must win over the USD fx token"
        assert markets.asset_class("EURUSD") == "forex"
        assert markets.asset_class("FOOBAR") == "other"

    def test_group_lookup_by_stem(self):
        markets = MarketTableConfig()

        assert markets.group_of("BTCUSDT", markets.sizing_groups) == "crypto"
        assert markets.group_of("XAUUSD", markets.sizing_groups) == "gold"
        assert markets.group_of("FOOBAR", markets.sizing_groups) is None
