"""
Tick Engine - Thermostat Tests.

Covers:
1. Level selection from score
2. One-level-per-cycle hysteresis
3. Trading veto
"""

import pytest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.environment import EnvironmentClassifier
from src.tick_engine.models import ClosedTrade, Side, Personality, CloseReason, VolState
from src.tick_engine.thermostat import Thermostat, AggressionLevel, initial_state
from src.tick_engine.config import ThermostatConfig


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)


def make_trade(pnl, minutes_ago=10):
    closed_at = NOW - timedelta(minutes=minutes_ago)
    return ClosedTrade(
        id=f"t{minutes_ago}",
        symbol="EURUSD",
        mode=Personality.SCALPER,
        side=Side.LONG,
        size=1000,
        entry_price=1.1,
        exit_price=1.1,
        sl=1.09,
        tp=1.12,
        opened_at=closed_at - timedelta(minutes=5),
        closed_at=closed_at,
        realized_pnl=pnl,
        reason=CloseReason.TP_HIT if pnl > 0 else CloseReason.SL_HIT,
        session_date=closed_at.date(),
    )


def good_environments():
    env = EnvironmentClassifier().classify_from_metrics("EURUSD", 0.8, 0.3, 1.0)   # confidence 0.8
    return {"EURUSD": env}


# ============================================================================
# LEVELS
# ============================================================================

class TestLevels:

    def test_no_history_is_medium(self):
        state = Thermostat().update([], {}, NOW)

        assert state.aggression_level is AggressionLevel.MEDIUM
        assert state.allows_trading()
        assert state.last_updated == NOW

    def test_hot_streak_goes_high(self):
        trades = [make_trade(10, minutes_ago=i + 1) for i in range(10)]

        state = Thermostat().update(trades, good_environments(), NOW)

        assert state.aggression_level is AggressionLevel.HIGH, state.reason
        assert state.streak.type == "win"
        assert state.streak.length == 10
        assert state.multipliers.size == 1.3

    def test_losses_go_low(self):
        trades = [make_trade(-10, minutes_ago=i + 1) for i in range(4)]

        state = Thermostat().update(trades, {}, NOW)

        assert state.aggression_level is AggressionLevel.LOW
        assert state.allows_trading(), "Low aggression still trades"

    def test_trades_outside_window_ignored(self):
        trades = [make_trade(-10, minutes_ago=90 + i) for i in range(10)]
        state = Thermostat().update(trades, {}, NOW)
        assert state.aggression_level is AggressionLevel.MEDIUM


# ============================================================================
# HYSTERESIS
# ============================================================================

class TestHysteresis:

    def test_one_step_per_cycle(self):
        previous = replace(initial_state(), aggression_level=AggressionLevel.LOW)
        trades = [make_trade(10, minutes_ago=i + 1) for i in range(10)]

        state = Thermostat().update(trades, good_environments(), NOW, previous)

        assert state.aggression_level is AggressionLevel.MEDIUM, "LOW must not jump straight to HIGH"

        state = Thermostat().update(trades, good_environments(), NOW, state)
        assert state.aggression_level is AggressionLevel.HIGH

    def test_one_step_down(self):
        previous = replace(initial_state(), aggression_level=AggressionLevel.HIGH)
        trades = [make_trade(-10, minutes_ago=i + 1) for i in range(4)]

        state = Thermostat().update(trades, {}, NOW, previous)

        assert state.aggression_level is AggressionLevel.MEDIUM

    def test_step_holds_under_custom_config(self):
        config = ThermostatConfig(window_minutes=120, min_trades_for_adjustment=3)
        previous = replace(initial_state(), aggression_level=AggressionLevel.LOW)
        trades = [make_trade(10, minutes_ago=i + 1) for i in range(6)]

        state = Thermostat(config).update(trades, good_environments(), NOW, previous)

        assert state.aggression_level is AggressionLevel.MEDIUM
        assert Thermostat.MAX_STEP == 1


# ============================================================================
# VETO
# ============================================================================

class TestVeto:

    def test_long_loss_streak_stops_trading(self):
        trades = [make_trade(-10, minutes_ago=i + 1) for i in range(7)]
        state = Thermostat().update(trades, {}, NOW)
        assert not state.allows_trading()

    def test_dead_environments_stop_trading(self):
        env = EnvironmentClassifier().classify_from_metrics(
            "EURUSD", 0.5, 0.5, 0.1, vol_state=VolState.SPIKE,
        )
        state = Thermostat().update([], {"EURUSD": env}, NOW)

        assert state.avg_environment_quality < 0.2
        assert not state.allows_trading()
