"""
Tick Engine - Environment Classifier Tests.

Covers:
1. Rolling-history classification (trend, short history, broken spread)
2. Decision table via classify_from_metrics
3. Tradeability and sizing multiplier
"""

import pytest
from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.environment import EnvironmentClassifier
from src.tick_engine.models import PriceTick, MarketState, VolState, LiquidityState


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)   # Wednesday, London/NY overlap


def make_series(symbol="EURUSD", start=1.1000, step=0.001, n=40, spread=0.0002, end=NOW):
    """n ticks moving `step` per tick, 15 seconds apart, ending at `end`."""
    ticks = []
    for i in range(n):
        mid = start + step * i
        ts = end - timedelta(seconds=15 * (n - 1 - i))
        ticks.append(PriceTick.from_quote(symbol, mid - spread / 2, mid + spread / 2, ts))
    return ticks


@pytest.fixture
def classifier():
    return EnvironmentClassifier()


# ============================================================================
# HISTORY CLASSIFICATION
# ============================================================================

class TestClassifyHistory:
    """classify() over a rolling tick history."""

    def test_empty_history_rejected(self, classifier):
        with pytest.raises(ValueError):
            classifier.classify("EURUSD", [])

    def test_steady_uptrend_is_trend_clean(self, classifier):
        env = classifier.classify("EURUSD", make_series())

        assert env.market_state is MarketState.TREND_CLEAN, f"Got {env.market_state}"
        assert env.liquidity_state is LiquidityState.NORMAL
        assert env.trend_strength == pytest.approx(1.0)
        assert env.overlap_ratio == pytest.approx(0.0)
        assert env.net_move > 0
        assert env.is_tradeable

    def test_uptrend_confidence(self, classifier):
        env = classifier.classify("EURUSD", make_series())

        # 0.5 base + 0.25 trend_clean + 0.05 compression
        assert env.vol_state is VolState.COMPRESSION
        assert env.confidence == pytest.approx(0.8)

    def test_short_history_defaults(self, classifier):
        env = classifier.classify("EURUSD", make_series(n=5))

        assert env.atr == 0.0
        assert env.volatility_ratio == 1.0
        assert env.market_state is MarketState.RANGE_TRADEABLE
        assert env.vol_state is VolState.COMPRESSION

    def test_single_tick(self, classifier):
        env = classifier.classify("EURUSD", make_series(n=1))
        assert env.market_state is MarketState.RANGE_TRADEABLE
        assert 0.0 <= env.confidence <= 1.0

    def test_blown_out_spread_breaks_liquidity(self, classifier):
        history = make_series(step=0.0, n=39)
        history.append(PriceTick.from_quote("EURUSD", 1.0990, 1.1010, NOW))

        env = classifier.classify("EURUSD", history)

        assert env.liquidity_state is LiquidityState.BROKEN
        assert not env.is_tradeable

    def test_classification_is_deterministic(self, classifier):
        history = make_series()
        assert classifier.classify("EURUSD", history) == classifier.classify("EURUSD", history)


# ============================================================================
# DECISION TABLE
# ============================================================================

class TestDecisionTable:
    """classify_from_metrics: first matching rule wins."""

    def test_dead_market(self, classifier):
        env = classifier.classify_from_metrics("EURUSD", trend_strength=0.9, overlap=0.1, volatility_ratio=0.2)
        assert env.market_state is MarketState.DEAD
        assert not env.is_tradeable

    def test_chaos(self, classifier):
        env = classifier.classify_from_metrics("EURUSD", trend_strength=0.9, overlap=0.8, volatility_ratio=2.5)
        assert env.market_state is MarketState.CHAOS

    def test_trend_messy_with_overlap(self, classifier):
        env = classifier.classify_from_metrics("EURUSD", trend_strength=0.8, overlap=0.6, volatility_ratio=1.0)
        assert env.market_state is MarketState.TREND_MESSY

    def test_range_trap_needs_equal_levels(self, classifier):
        trap = classifier.classify_from_metrics(
            "EURUSD", trend_strength=0.1, overlap=0.7, volatility_ratio=1.0, swing_highs=3,
        )
        clean = classifier.classify_from_metrics(
            "EURUSD", trend_strength=0.1, overlap=0.7, volatility_ratio=1.0, swing_highs=1,
        )
        assert trap.market_state is MarketState.RANGE_TRAP
        assert clean.market_state is MarketState.RANGE_TRADEABLE

    def test_middle_band(self, classifier):
        overlapping = classifier.classify_from_metrics("EURUSD", trend_strength=0.45, overlap=0.7, volatility_ratio=1.0)
        directional = classifier.classify_from_metrics("EURUSD", trend_strength=0.45, overlap=0.3, volatility_ratio=1.0)
        assert overlapping.market_state is MarketState.RANGE_TRAP
        assert directional.market_state is MarketState.TREND_MESSY

    def test_confidence_clamped(self, classifier):
        env = classifier.classify_from_metrics(
            "EURUSD", trend_strength=0.0, overlap=0.9, volatility_ratio=0.1,
            vol_state=VolState.SPIKE, liquidity_state=LiquidityState.BROKEN,
        )
        assert env.confidence == 0.0


# ============================================================================
# MULTIPLIER
# ============================================================================

class TestMultiplier:

    def test_multiplier_by_state(self, classifier):
        expected = {
            (0.8, 0.3): 1.2,    # trend_clean
            (0.1, 0.2): 1.0,    # range_tradeable
            (0.8, 0.6): 0.8,    # trend_messy
        }
        for (trend, overlap), mult in expected.items():
            env = classifier.classify_from_metrics("EURUSD", trend, overlap, 1.0)
            assert env.multiplier == mult, f"{env.market_state}: {env.multiplier} != {mult}"

    def test_untradeable_states_get_floor(self, classifier):
        env = classifier.classify_from_metrics("EURUSD", 0.5, 0.5, 0.1)
        assert env.multiplier == 0.3
