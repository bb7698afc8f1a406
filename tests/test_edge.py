"""
Tick Engine - Edge Engine Tests.

The edge engine must always commit to a direction and keep its score
inside [30, 100].
"""

import pytest
from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.config import SessionTableConfig, MarketTableConfig
from src.tick_engine.edge import EdgeEngine
from src.tick_engine.environment import EnvironmentClassifier, EnvironmentSummary
from src.tick_engine.models import PriceTick, Side, MarketState, VolState, LiquidityState


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)   # Wednesday, overlap


def make_series(symbol="EURUSD", start=1.1000, step=0.001, n=40, spread=0.0002, end=NOW):
    ticks = []
    for i in range(n):
        mid = start + step * i
        ts = end - timedelta(seconds=15 * (n - 1 - i))
        ticks.append(PriceTick.from_quote(symbol, mid - spread / 2, mid + spread / 2, ts))
    return ticks


def make_env(symbol="EURUSD", vol_state=VolState.COMPRESSION, trend_strength=0.2, net_move=0.0,
             volatility_ratio=1.0, confidence=0.7):
    return EnvironmentSummary(
        symbol=symbol,
        market_state=MarketState.TREND_MESSY,
        vol_state=vol_state,
        liquidity_state=LiquidityState.NORMAL,
        confidence=confidence,
        atr=0.001,
        avg_atr=0.001,
        trend_strength=trend_strength,
        volatility_ratio=volatility_ratio,
        overlap_ratio=0.4,
        net_move=net_move,
    )


@pytest.fixture
def engine():
    return EdgeEngine(SessionTableConfig(), MarketTableConfig())


# ============================================================================
# SCORING
# ============================================================================

class TestEdgeScore:
    """Score bounds, direction and reasons."""

    def test_uptrend_scores_long(self, engine):
        history = make_series()
        env = EnvironmentClassifier().classify("EURUSD", history)

        edge = engine.calculate("EURUSD", history, env, NOW)

        assert edge.direction is Side.LONG, f"Uptrend scored {edge.direction}"
        assert 30 <= edge.score <= 100
        assert edge.score >= 60, f"Momentum + overlap session should score well, got {edge.score}"
        assert any("momentum" in r for r in edge.reasons), edge.reasons

    def test_score_and_confidence_bounds_on_flat_market(self, engine):
        history = make_series(step=0.0, n=3)
        weekend = datetime(2024, 1, 13, 3, 0, tzinfo=timezone.utc)

        edge = engine.calculate("EURUSD", history, make_env(confidence=0.2), weekend)

        assert isinstance(edge.score, int)
        assert 30 <= edge.score <= 100
        assert 0.4 <= edge.confidence <= 1.0
        assert edge.direction in (Side.LONG, Side.SHORT), "Edge must always pick a direction"
        assert len(edge.reasons) >= 1

    def test_expansion_overrides_direction_with_net_move(self, engine):
        history = make_series()      # upward momentum
        env = make_env(vol_state=VolState.EXPANSION, trend_strength=0.8, net_move=-0.01, volatility_ratio=1.4)

        edge = engine.calculate("EURUSD", history, env, NOW)

        assert edge.direction is Side.SHORT

    def test_deterministic(self, engine):
        history = make_series()
        env = EnvironmentClassifier().classify("EURUSD", history)
        assert engine.calculate("EURUSD", history, env, NOW) == engine.calculate("EURUSD", history, env, NOW)


# ============================================================================
# CONTEXT COMPONENTS
# ============================================================================

class TestContextComponents:
    """Volatility, session and correlation scores."""

    def test_volatility_edge(self, engine):
        assert engine.volatility_edge(make_env(vol_state=VolState.COMPRESSION)) == (15, None)
        assert engine.volatility_edge(make_env(vol_state=VolState.SPIKE))[0] == 0.0
        score, _ = engine.volatility_edge(make_env(vol_state=VolState.EXPANSION, volatility_ratio=1.5))
        assert score == 25

    def test_session_edge_overlap_bonus(self, engine):
        score, quality = engine.session_edge("EURUSD", NOW)
        assert quality == 1.0
        assert score == pytest.approx(30.0)

    def test_crypto_session_floor(self, engine):
        night = datetime(2024, 1, 10, 3, 0, tzinfo=timezone.utc)
        score, _ = engine.session_edge("BTCUSD", night)
        assert score == pytest.approx(15.0)

    def test_correlated_peers_agree(self, engine):
        btc = make_series("BTCUSD", start=42000, step=10, spread=2)
        eth = make_series("ETHUSD", start=2500, step=1, spread=0.5)

        score, agree = engine.correlation_edge("BTCUSD", btc, {"ETHUSD": eth})

        assert agree
        assert score == pytest.approx(15.0)

    def test_correlated_peers_disagree(self, engine):
        btc = make_series("BTCUSD", start=42000, step=10, spread=2)
        eth = make_series("ETHUSD", start=2500, step=-1, spread=0.5)

        score, agree = engine.correlation_edge("BTCUSD", btc, {"ETHUSD": eth})

        assert not agree
        assert score == -10.0

    def test_ungrouped_symbol_is_neutral(self, engine):
        assert engine.correlation_edge("FOOBAR", make_series("FOOBAR"), {}) == (0.0, True)
