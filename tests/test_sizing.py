"""
Tick Engine - Position Sizing Tests.

Covers:
1. Risk profile construction
2. Stops, targets and exposure caps
3. Burst batch planning
"""

import pytest
from datetime import datetime, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.config import BurstConfig
from src.tick_engine.edge import EdgeSignal
from src.tick_engine.environment import EnvironmentClassifier
from src.tick_engine.models import PriceTick, Position, Side, Personality
from src.tick_engine.sizing import PositionSizer, create_risk_profile, plan_burst_batch
from src.tick_engine.thermostat import AggressionLevel


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)
EQUITY = 10000.0


def make_tick(symbol="EURUSD", mid=1.1000, spread=0.0002):
    return PriceTick.from_quote(symbol, mid - spread / 2, mid + spread / 2, NOW)


def make_edge(confidence=0.8):
    return EdgeSignal(
        symbol="EURUSD", score=70, direction=Side.LONG, confidence=confidence,
        reasons=("Test",), structure_edge=0, volatility_edge=0, session_edge=0, correlation_edge=0,
    )


def trend_env(symbol="EURUSD"):
    return EnvironmentClassifier().classify_from_metrics(symbol, 0.8, 0.3, 1.0, atr=0.001)


def make_position(pid, symbol, size, entry):
    return Position(
        id=pid, symbol=symbol, mode=Personality.SCALPER, side=Side.LONG, size=size,
        entry_price=entry, sl=entry * 0.99, tp=entry * 1.02, opened_at=NOW,
    )


def exposure(size, price):
    return size * price / EQUITY * 100


# ============================================================================
# RISK PROFILE
# ============================================================================

class TestRiskProfile:

    def test_profile_limits(self):
        profile = create_risk_profile(1.0, 5.0)

        assert profile.max_risk_percent == 2.0
        assert profile.max_position_risk == 1.5
        assert profile.max_symbol_exposure == 20.0
        assert profile.max_correlated_exposure == 40.0
        assert profile.max_total_exposure == 80.0

    def test_small_total_caps_symbol_and_group(self):
        profile = create_risk_profile(1.0, 5.0, max_total_exposure=10.0)
        assert profile.max_symbol_exposure == 10.0
        assert profile.max_correlated_exposure == 10.0


# ============================================================================
# SIZING
# ============================================================================

class TestSizing:

    @pytest.fixture
    def sizer(self):
        return PositionSizer(create_risk_profile(1.0, 5.0, max_total_exposure=10.0))

    def test_long_stops_and_exposure_cap(self, sizer):
        tick = make_tick()

        result = sizer.calculate(
            tick, Side.LONG, make_edge(), trend_env(), AggressionLevel.MEDIUM,
            Personality.SCALPER, EQUITY, [],
        )

        assert result.size > 0
        assert result.sl == pytest.approx(tick.bid - 0.00075)
        assert result.tp == pytest.approx(tick.ask + 0.0015)
        assert exposure(result.size, tick.ask) == pytest.approx(10.0), "Size must be cut to headroom"
        assert result.risk_percent == pytest.approx(0.9 * 1.3 * 1.2)

    def test_short_stops(self, sizer):
        tick = make_tick()

        result = sizer.calculate(
            tick, Side.SHORT, make_edge(), trend_env(), AggressionLevel.MEDIUM,
            Personality.SCALPER, EQUITY, [],
        )

        assert result.sl > tick.ask
        assert result.tp < tick.bid

    def test_no_headroom_gives_zero(self, sizer):
        positions = [make_position("p1", "EURUSD", 1000, 1.1)]   # 11% exposure

        result = sizer.calculate(
            make_tick(), Side.LONG, make_edge(), trend_env(), AggressionLevel.MEDIUM,
            Personality.SCALPER, EQUITY, positions,
        )

        assert result.is_zero
        assert result.reasons == ("No exposure headroom",)

    def test_group_headroom(self):
        sizer = PositionSizer(create_risk_profile(1.0, 5.0))
        positions = [
            make_position("p1", "GBPUSD", 3000, 1.1),
            make_position("p2", "AUDUSD", 3000, 1.1),
        ]

        assert sizer.headroom("EURUSD", positions, EQUITY) < 0, "usd_pairs group is over 40%"
        assert sizer.headroom("XAUUSD", positions, EQUITY) == pytest.approx(80 - 66)

    def test_trend_scale_in_levels(self, sizer):
        tick = make_tick()
        result = sizer.calculate(
            tick, Side.LONG, make_edge(), trend_env(), AggressionLevel.MEDIUM,
            Personality.TREND, EQUITY, [],
        )

        assert len(result.scale_in) == 2
        assert all(level.trigger_price > tick.mid for level in result.scale_in)

    def test_confidence_bands(self, sizer):
        assert sizer.confidence_multiplier(0.95) == 1.5
        assert sizer.confidence_multiplier(0.55) == 0.8
        assert sizer.confidence_multiplier(0.2) == 0.5


# ============================================================================
# BURST BATCH
# ============================================================================

class TestBurstBatch:

    def test_batch_shape(self):
        tick = make_tick()

        orders = plan_burst_batch(tick, Side.LONG, EQUITY, BurstConfig(), "burst_1")

        assert len(orders) == 20
        assert {o.batch_id for o in orders} == {"burst_1"}
        assert all(o.mode is Personality.BURST for o in orders)
        assert all(o.entry_price == tick.ask for o in orders)
        assert all(o.sl < o.entry_price < o.tp for o in orders)

        total = sum(o.exposure_percent(EQUITY) for o in orders)
        assert total == pytest.approx(2.0, rel=1e-3), f"Batch exposure {total:.4f}%"

    def test_short_batch(self):
        tick = make_tick()
        orders = plan_burst_batch(tick, Side.SHORT, EQUITY, BurstConfig(size=5), "burst_2")

        assert len(orders) == 5
        assert all(o.tp < o.entry_price < o.sl for o in orders)
        assert orders[0].sl - orders[0].entry_price == pytest.approx(tick.mid * 0.005)

    def test_no_equity_no_batch(self):
        assert plan_burst_batch(make_tick(), Side.LONG, 0.0, BurstConfig(), "burst_3") == []
