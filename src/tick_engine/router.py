"""
Market Router - Symbol Tradeability Ranking

Ranks the symbol universe each cycle and picks the primary candidates
for new entries.

COMPOSITE SCORE (floor 35, rounded):
- Environment 25%
- Edge        35%
- Spread      15%
- Session     25%

TRADEABILITY:
- Untradeable only on broken liquidity or a spread > 5x the asset-class norm
- Primary candidates: tradeable top N; if none, the top 3 by rank
- Symbols without a tick, environment or edge this cycle are skipped
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .config import MarketTableConfig, RouterConfig
from .models import PriceTick, MarketState, VolState, LiquidityState
from .environment import EnvironmentSummary
from .edge import EdgeSignal


@dataclass(frozen=True)
class TradeabilityScore:
    symbol: str
    score: int
    rank: int
    environment_score: int
    edge_score: int
    spread_score: int
    session_score: int
    is_tradeable: bool
    reason: str

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "score": self.score,
            "rank": self.rank,
            "components": {
                "environment": self.environment_score,
                "edge": self.edge_score,
                "spread": self.spread_score,
                "session": self.session_score,
            },
            "is_tradeable": self.is_tradeable,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RouterResult:
    rankings: List[TradeabilityScore]
    primary_candidates: List[str]
    suppressed: Dict[str, str] = field(default_factory=dict)   # symbol → reason

    def is_candidate(self, symbol: str) -> bool:
        return symbol in self.primary_candidates


class MarketRouter:
    """Ranks symbols by a weighted tradeability score."""

    MARKET_BONUS = {
        MarketState.TREND_CLEAN: 30,
        MarketState.RANGE_TRADEABLE: 20,
        MarketState.TREND_MESSY: 10,
        MarketState.RANGE_TRAP: -10,
        MarketState.CHAOS: -30,
        MarketState.DEAD: -40,
    }
    VOL_BONUS = {
        VolState.EXPANSION: 10,
        VolState.COMPRESSION: 5,
        VolState.EXHAUSTION: -5,
        VolState.SPIKE: -20,
    }
    LIQUIDITY_BONUS = {
        LiquidityState.NORMAL: 10,
        LiquidityState.THIN: -10,
        LiquidityState.BROKEN: -50,
    }

    # (max spread ratio to expected, score)
    SPREAD_BANDS: Tuple[Tuple[float, int], ...] = (
        (1.0, 100), (1.5, 80), (2.0, 60), (3.0, 40), (5.0, 20),
    )

    def __init__(
        self,
        config: Optional[RouterConfig] = None,
        markets: Optional[MarketTableConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RouterConfig()
        self.markets = markets or MarketTableConfig()
        self.logger = logger or logging.getLogger(__name__)

    # ========================================================================
    # COMPONENT SCORES
    # ========================================================================

    def environment_score(self, env: EnvironmentSummary) -> float:
        score = env.confidence * 50
        score += self.MARKET_BONUS[env.market_state]
        score += self.VOL_BONUS[env.vol_state]
        score += self.LIQUIDITY_BONUS[env.liquidity_state]
        return max(0.0, min(100.0, score))

    def spread_score(self, tick: PriceTick) -> int:
        asset_class = self.markets.asset_class(tick.symbol)
        expected = self.markets.expected_spread_percent.get(
            asset_class, self.markets.expected_spread_percent["forex"]
        )
        spread_pct = tick.spread / tick.mid * 100
        ratio = spread_pct / expected
        for limit, score in self.SPREAD_BANDS:
            if ratio <= limit:
                return score
        return 0

    def session_quality(self, symbol: str, hour: int) -> float:
        """Per-asset-class session quality for a UTC hour."""
        asset_class = self.markets.asset_class(symbol)

        if asset_class == "crypto":
            return 1.0 if 14 <= hour <= 22 else 0.85

        if asset_class == "stock":
            # NYSE 14:30 - 21:00 UTC
            return 1.0 if 14 <= hour <= 21 else 0.5

        if asset_class == "gold":
            if 13 <= hour <= 16:
                return 1.0
            if 7 <= hour <= 22:
                return 0.85
            return 0.6

        if asset_class == "forex":
            if 13 <= hour <= 16:
                return 1.0
            if 7 <= hour <= 16:
                return 0.9
            if 13 <= hour <= 22:
                return 0.85
            if hour <= 8:
                return 0.8 if "JPY" in symbol.upper() else 0.6
            return 0.4

        return 0.7

    # ========================================================================
    # RANKING
    # ========================================================================

    def score(
        self,
        tick: PriceTick,
        env: EnvironmentSummary,
        edge: EdgeSignal,
        now: datetime,
    ) -> TradeabilityScore:
        cfg = self.config
        environment_score = self.environment_score(env)
        spread_score = self.spread_score(tick)
        session_score = self.session_quality(tick.symbol, now.hour) * 100

        raw = (
            environment_score * cfg.environment_weight
            + edge.score * cfg.edge_weight
            + spread_score * cfg.spread_weight
            + session_score * cfg.session_weight
        )

        is_tradeable = True
        reason = "Tradeable"
        if spread_score == 0:
            is_tradeable = False
            reason = "Spread completely broken"
        elif env.liquidity_state is LiquidityState.BROKEN:
            is_tradeable = False
            reason = "Liquidity broken"

        return TradeabilityScore(
            symbol=tick.symbol,
            score=int(round(max(cfg.min_score, raw))),
            rank=0,
            environment_score=int(round(environment_score)),
            edge_score=edge.score,
            spread_score=spread_score,
            session_score=int(round(session_score)),
            is_tradeable=is_tradeable,
            reason=reason,
        )

    def route(
        self,
        symbols: Sequence[str],
        ticks: Dict[str, PriceTick],
        environments: Dict[str, EnvironmentSummary],
        edges: Dict[str, EdgeSignal],
        now: datetime,
    ) -> RouterResult:
        scores: List[TradeabilityScore] = []

        for symbol in symbols:
            tick = ticks.get(symbol)
            env = environments.get(symbol)
            edge = edges.get(symbol)
            if tick is None or env is None or edge is None:
                self.logger.debug(f"Router: skipping {symbol} (no tick/environment/edge this cycle)")
                continue
            scores.append(self.score(tick, env, edge, now))

        # Stable sort keeps configured symbol order on ties
        scores.sort(key=lambda s: s.score, reverse=True)
        rankings = [
            TradeabilityScore(**{**s.__dict__, "rank": i + 1})
            for i, s in enumerate(scores)
        ]

        primary = [s.symbol for s in rankings if s.is_tradeable][: self.config.max_candidates]
        if not primary and rankings:
            primary = [s.symbol for s in rankings[: self.config.fallback_candidates]]
            self.logger.info(f"Router: no tradeable symbols, falling back to top {len(primary)}")

        suppressed = {s.symbol: s.reason for s in rankings if not s.is_tradeable}

        return RouterResult(rankings=rankings, primary_candidates=primary, suppressed=suppressed)
