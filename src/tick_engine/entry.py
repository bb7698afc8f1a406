"""
Entry Engine - Gated Entry Decision

Decides whether a (symbol, personality) pair may open a new position.

GATES (ordered, first failure wins):
1.  Environment quality (chaos / dead / range_trap with confidence < 0.5)
2.  Market state allowed for personality
3.  Vol state allowed for personality
4.  Liquidity not broken
5.  Edge score >= threshold
6.  Edge confidence >= threshold
7.  Environment confidence >= threshold
8.  Direction present
9.  Personality position cap
10. Total position cap
11. Per-symbol cap (2)
12. No opposite-side position on the symbol

THRESHOLDS:
- Edge score and edge confidence scale with thermostat aggression
  (high 0.9, low 1.15) and the session entry-threshold multiplier.

The decision is a pure function of its inputs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, Optional, Sequence, Tuple

from .models import (
    PriceTick, Position, ClosedTrade, Side, Personality,
    MarketState, VolState, LiquidityState,
)
from .environment import EnvironmentSummary
from .edge import EdgeSignal
from .thermostat import AggressionLevel


@dataclass(frozen=True)
class ModeThresholds:
    min_edge_score: float
    min_confidence: float
    min_env_confidence: float
    allowed_market_states: FrozenSet[MarketState]
    allowed_vol_states: FrozenSet[VolState]
    max_concurrent: int


_TRADEABLE_STATES = frozenset({
    MarketState.TREND_CLEAN, MarketState.TREND_MESSY, MarketState.RANGE_TRADEABLE,
})

MODE_CONFIGS = {
    Personality.BURST: ModeThresholds(
        min_edge_score=25,
        min_confidence=0.30,
        min_env_confidence=0.25,
        allowed_market_states=_TRADEABLE_STATES,
        allowed_vol_states=frozenset(VolState),
        max_concurrent=10,
    ),
    Personality.SCALPER: ModeThresholds(
        min_edge_score=35,
        min_confidence=0.35,
        min_env_confidence=0.30,
        allowed_market_states=_TRADEABLE_STATES,
        allowed_vol_states=frozenset({VolState.COMPRESSION, VolState.EXPANSION, VolState.EXHAUSTION}),
        max_concurrent=8,
    ),
    Personality.TREND: ModeThresholds(
        min_edge_score=45,
        min_confidence=0.40,
        min_env_confidence=0.35,
        allowed_market_states=_TRADEABLE_STATES,
        allowed_vol_states=frozenset({VolState.EXPANSION, VolState.COMPRESSION}),
        max_concurrent=5,
    ),
}

THERMOSTAT_THRESHOLD = {
    AggressionLevel.HIGH: 0.9,
    AggressionLevel.MEDIUM: 1.0,
    AggressionLevel.LOW: 1.15,
}


@dataclass(frozen=True)
class EntryDecision:
    """Immutable entry decision."""
    should_enter: bool
    direction: Optional[Side]
    personality: Personality
    reason: str
    confidence: float = 0.0
    entry_zone: Optional[Tuple[float, float]] = None   # (lower, upper)

    @property
    def is_blocked(self) -> bool:
        return not self.should_enter

    def to_dict(self) -> dict:
        return {
            "should_enter": self.should_enter,
            "direction": self.direction.value if self.direction else None,
            "personality": self.personality.value,
            "reason": self.reason,
            "confidence": self.confidence,
            "entry_zone": list(self.entry_zone) if self.entry_zone else None,
        }


class EntryEngine:
    """Twelve-gate entry evaluator."""

    PERFORMANCE_WINDOW_MINUTES = 60
    MAX_PER_SYMBOL = 2

    def evaluate(
        self,
        tick: PriceTick,
        edge: EdgeSignal,
        env: EnvironmentSummary,
        personality: Personality,
        aggression: AggressionLevel,
        positions: Sequence[Position],
        recent_trades: Sequence[ClosedTrade],
        now: datetime,
        max_total_positions: int = 10,
        session_entry_multiplier: float = 1.0,
    ) -> EntryDecision:
        symbol = tick.symbol
        config = MODE_CONFIGS[personality]

        scale = THERMOSTAT_THRESHOLD[aggression] * session_entry_multiplier
        min_edge = config.min_edge_score * scale
        min_confidence = config.min_confidence * scale

        def block(reason: str) -> EntryDecision:
            return EntryDecision(False, None, personality, reason)

        # 1
        if env.market_state in (MarketState.CHAOS, MarketState.DEAD, MarketState.RANGE_TRAP):
            if env.confidence < 0.5:
                return block(f"Poor environment: {env.market_state.value}")
        # 2
        if env.market_state not in config.allowed_market_states:
            return block(f"Market state {env.market_state.value} not suitable for {personality.value}")
        # 3
        if env.vol_state not in config.allowed_vol_states:
            return block(f"Vol state {env.vol_state.value} not suitable for {personality.value}")
        # 4
        if env.liquidity_state is LiquidityState.BROKEN:
            return block("Liquidity broken - spread too wide")
        # 5
        if edge.score < min_edge:
            return block(f"Edge score {edge.score} below threshold {round(min_edge)}")
        # 6
        if edge.confidence < min_confidence:
            return block(f"Edge confidence {edge.confidence * 100:.0f}% below threshold")
        # 7
        if env.confidence < config.min_env_confidence:
            return block(f"Environment confidence {env.confidence * 100:.0f}% below threshold")
        # 8
        direction = edge.direction
        if direction is None:
            return block("No clear direction signal")
        # 9
        if sum(1 for p in positions if p.mode is personality) >= config.max_concurrent:
            return block(f"Max positions for {personality.value} mode reached")
        # 10
        if len(positions) >= max_total_positions:
            return block("Max total positions reached")
        # 11
        symbol_positions = [p for p in positions if p.symbol == symbol]
        if len(symbol_positions) >= self.MAX_PER_SYMBOL:
            return block(f"Max positions for {symbol} reached")
        # 12
        if any(p.side is not direction for p in symbol_positions):
            return block(f"Conflicting {direction.opposite.value} position exists")

        hit_rate, sample = self.directional_hit_rate(recent_trades, direction, now)
        confidence = edge.confidence * env.confidence
        if hit_rate > 60:
            confidence *= 1.1
        if hit_rate < 40 and sample > 5:
            confidence *= 0.8

        return EntryDecision(
            should_enter=True,
            direction=direction,
            personality=personality,
            reason=", ".join(edge.reasons) or "Edge conditions met",
            confidence=min(1.0, confidence),
            entry_zone=self.entry_zone(tick, direction, env),
        )

    def directional_hit_rate(
        self,
        trades: Sequence[ClosedTrade],
        direction: Side,
        now: datetime,
    ) -> Tuple[float, int]:
        """Win rate (0-100) of recent closed trades on one side; 50 with no sample."""
        cutoff = now - timedelta(minutes=self.PERFORMANCE_WINDOW_MINUTES)
        recent = [t for t in trades if t.closed_at > cutoff and t.side is direction]
        if not recent:
            return 50.0, 0
        wins = sum(1 for t in recent if t.is_win)
        return wins / len(recent) * 100, len(recent)

    @staticmethod
    def entry_zone(tick: PriceTick, direction: Side, env: EnvironmentSummary) -> Tuple[float, float]:
        atr = env.atr if env.atr > 0 else tick.mid * 0.001
        zone = max(tick.spread * 2, atr * 0.3)
        if direction is Side.LONG:
            return (tick.ask - zone, tick.ask + zone * 0.5)
        return (tick.bid - zone * 0.5, tick.bid + zone)
