"""
Tick Engine - Market Router Tests.

Ranking, tradeability and candidate fallback.
"""

import pytest
from datetime import datetime, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.edge import EdgeSignal
from src.tick_engine.environment import EnvironmentClassifier
from src.tick_engine.models import PriceTick, Side, LiquidityState
from src.tick_engine.router import MarketRouter


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)


def make_tick(symbol, mid, spread):
    return PriceTick.from_quote(symbol, mid - spread / 2, mid + spread / 2, NOW)


def make_edge(symbol, score=70, direction=Side.LONG, confidence=0.8):
    return EdgeSignal(
        symbol=symbol,
        score=score,
        direction=direction,
        confidence=confidence,
        reasons=("Test edge",),
        structure_edge=0.0,
        volatility_edge=0.0,
        session_edge=0.0,
        correlation_edge=0.0,
    )


def make_env(symbol, trend=0.8, overlap=0.3, liquidity=LiquidityState.NORMAL):
    return EnvironmentClassifier().classify_from_metrics(
        symbol, trend, overlap, 1.0, liquidity_state=liquidity,
    )


def universe(spreads):
    """symbol → spread; all mids near 1.1."""
    ticks = {s: make_tick(s, 1.1, spread) for s, spread in spreads.items()}
    envs = {s: make_env(s) for s in spreads}
    edges = {s: make_edge(s) for s in spreads}
    return ticks, envs, edges


# ============================================================================
# RANKING
# ============================================================================

class TestRanking:

    def test_ranks_are_contiguous_and_sorted(self):
        ticks, envs, edges = universe({"EURUSD": 0.0001, "GBPUSD": 0.0003, "AUDUSD": 0.0005})
        edges["GBPUSD"] = make_edge("GBPUSD", score=40)

        result = MarketRouter().route(list(ticks), ticks, envs, edges, NOW)

        assert [s.rank for s in result.rankings] == [1, 2, 3]
        scores = [s.score for s in result.rankings]
        assert scores == sorted(scores, reverse=True)
        assert result.rankings[0].symbol == "EURUSD"
        assert len(result.primary_candidates) >= 1

    def test_broken_spread_is_suppressed(self):
        ticks, envs, edges = universe({"EURUSD": 0.0001, "GBPUSD": 0.002})

        result = MarketRouter().route(list(ticks), ticks, envs, edges, NOW)

        assert result.is_candidate("EURUSD")
        assert not result.is_candidate("GBPUSD")
        assert result.suppressed["GBPUSD"] == "Spread completely broken"

    def test_broken_liquidity_is_suppressed(self):
        ticks, envs, edges = universe({"EURUSD": 0.0001, "GBPUSD": 0.0001})
        envs["GBPUSD"] = make_env("GBPUSD", liquidity=LiquidityState.BROKEN)

        result = MarketRouter().route(list(ticks), ticks, envs, edges, NOW)

        assert result.primary_candidates == ["EURUSD"]
        assert result.suppressed == {"GBPUSD": "Liquidity broken"}

    def test_fallback_to_top_three(self):
        spreads = {"EURUSD": 0.002, "GBPUSD": 0.003, "AUDUSD": 0.004, "USDCHF": 0.005}
        ticks, envs, edges = universe(spreads)

        result = MarketRouter().route(list(ticks), ticks, envs, edges, NOW)

        assert all(not s.is_tradeable for s in result.rankings)
        assert result.primary_candidates == [s.symbol for s in result.rankings[:3]]

    def test_symbols_without_data_are_skipped(self):
        ticks, envs, edges = universe({"EURUSD": 0.0001})

        result = MarketRouter().route(["EURUSD", "USDJPY"], ticks, envs, edges, NOW)

        assert [s.symbol for s in result.rankings] == ["EURUSD"]

    def test_score_floor(self):
        tick = make_tick("EURUSD", 1.1, 0.01)
        env = EnvironmentClassifier().classify_from_metrics("EURUSD", 0.1, 0.9, 0.1)
        night = datetime(2024, 1, 10, 23, 0, tzinfo=timezone.utc)

        score = MarketRouter().score(tick, env, make_edge("EURUSD", score=30), night)

        assert score.score == 35


# ============================================================================
# COMPONENTS
# ============================================================================

class TestComponents:

    def test_spread_bands(self):
        router = MarketRouter()
        assert router.spread_score(make_tick("EURUSD", 1.1, 0.0001)) == 100
        assert router.spread_score(make_tick("EURUSD", 1.1, 0.0003)) == 80
        assert router.spread_score(make_tick("EURUSD", 1.1, 0.002)) == 0

    def test_session_quality_by_asset_class(self):
        router = MarketRouter()

        assert router.session_quality("XAUUSD", 14) == 1.0
        assert router.session_quality("AAPL", 15) == 1.0
        assert router.session_quality("AAPL", 10) == 0.5
        assert router.session_quality("BTCUSD", 3) == 0.85
        assert router.session_quality("USDJPY", 3) == 0.8
        assert router.session_quality("EURUSD", 3) == 0.6
        assert router.session_quality("EURUSD", 23) == 0.4
        assert router.session_quality("FOOBAR", 12) == 0.7
