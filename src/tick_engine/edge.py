"""
Edge Engine

Scores the "reason to trade" for a symbol and always commits to a direction.

COMPONENTS:
- Structure: break of structure (0.1% beyond a recent swing), liquidity
  sweep (equal highs/lows taken then rejected), fair value gap fill
- Volatility: rewards compression and controlled expansion, penalizes spikes
- Session: time-of-day quality from the configured hour table
- Correlation: agreement with the symbol's correlation group

SCORING:
- Score = 30 + components, clamped to [30, 100]
- With no structural direction: short-horizon momentum, then spread bias
- Confidence rises with reason count, environment confidence and
  correlation agreement; floor 0.4
"""

import numpy as np
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Sequence, Tuple

from .config import SessionTableConfig, MarketTableConfig
from .environment import EnvironmentSummary
from .models import PriceTick, Side, VolState


@dataclass(frozen=True)
class SwingLevel:
    price: float
    is_high: bool
    strength: float


@dataclass(frozen=True)
class StructureSignal:
    """Directional structure detection (direction None = nothing found)."""
    direction: Optional[Side]
    strength: float
    price: float = 0.0


NO_SIGNAL = StructureSignal(direction=None, strength=0.0)


@dataclass(frozen=True)
class EdgeSignal:
    """Immutable edge score for one symbol."""
    symbol: str
    score: int
    direction: Side
    confidence: float
    reasons: Tuple[str, ...]
    structure_edge: float
    volatility_edge: float
    session_edge: float
    correlation_edge: float
    correlations_agree: bool = True

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "score": self.score,
            "direction": self.direction.value,
            "confidence": self.confidence,
            "reasons": list(self.reasons),
            "structure_edge": self.structure_edge,
            "volatility_edge": self.volatility_edge,
            "session_edge": self.session_edge,
            "correlation_edge": self.correlation_edge,
        }


class EdgeEngine:
    """
    Directional edge scoring.

    PARAMETERS:
    - Swing window: 3 ticks each side, last 10 levels kept
    - BOS threshold: 0.1% beyond swing
    - Equal-level tolerance: 0.2%, sweep rejection 0.2%
    - Momentum fallback: > 0.05% over last 5 mids
    """

    BASE_SCORE = 30
    MIN_SCORE = 30
    MAX_SCORE = 100
    MIN_CONFIDENCE = 0.4

    SWING_WINDOW = 3
    SWING_MIN_HISTORY = 15
    MAX_LEVELS = 10
    BOS_MARGIN = 0.001
    SWEEP_MIN_HISTORY = 20
    EQUAL_LEVEL_TOLERANCE = 0.002
    SWEEP_REJECTION = 0.002
    FVG_WINDOW = 10
    MOMENTUM_WINDOW = 5
    MOMENTUM_THRESHOLD = 0.0005
    CORRELATION_WINDOW = 5

    BOS_WEIGHT = 30
    SWEEP_WEIGHT = 25
    FVG_WEIGHT = 20
    CONFLICT_PENALTY = 5
    MOMENTUM_POINTS = 15
    SPREAD_POINTS = 10

    def __init__(self, sessions: SessionTableConfig, markets: MarketTableConfig):
        self.sessions = sessions
        self.markets = markets

    def calculate(
        self,
        symbol: str,
        history: Sequence[PriceTick],
        env: EnvironmentSummary,
        now: datetime,
        peer_histories: Optional[Dict[str, Sequence[PriceTick]]] = None,
    ) -> EdgeSignal:
        """
        Score a symbol.

        history ends with the current tick. peer_histories holds the
        histories of other symbols that ticked this cycle.
        """
        tick = history[-1]
        reasons: List[str] = []

        levels = self.find_swing_levels(history)
        bos = self.detect_break_of_structure(levels, tick)
        sweep = self.detect_liquidity_sweep(history, levels, tick)
        fvg = self.detect_fair_value_gap(history)

        structure_score = 0.0
        direction: Optional[Side] = None

        if bos.direction is not None:
            structure_score += bos.strength * self.BOS_WEIGHT
            direction = bos.direction
            reasons.append(f"Break of structure {bos.direction.value}")

        if sweep.direction is not None:
            structure_score += sweep.strength * self.SWEEP_WEIGHT
            if direction is None:
                direction = sweep.direction
            elif direction is not sweep.direction:
                structure_score -= self.CONFLICT_PENALTY
            else:
                reasons.append(f"Liquidity sweep {sweep.direction.value}")

        if fvg.direction is not None:
            structure_score += fvg.strength * self.FVG_WEIGHT
            if direction is None:
                direction = fvg.direction
            reasons.append(f"FVG fill {fvg.direction.value}")

        if direction is None and len(history) >= 3:
            recent = history[-self.MOMENTUM_WINDOW:]
            first, last = recent[0].mid, recent[-1].mid
            change = (last - first) / first
            if abs(change) > self.MOMENTUM_THRESHOLD:
                direction = Side.LONG if change > 0 else Side.SHORT
                structure_score += self.MOMENTUM_POINTS
                reasons.append(f"Price momentum {direction.value}")

        if direction is None:
            # Ask further from mid than bid reads as selling pressure
            direction = Side.SHORT if tick.ask - tick.mid > tick.mid - tick.bid else Side.LONG
            structure_score += self.SPREAD_POINTS
            reasons.append("Default direction from spread")

        vol_score, vol_direction = self.volatility_edge(env)
        if vol_score > 10:
            reasons.append(f"Vol state: {env.vol_state.value}")

        session_score, session_quality = self.session_edge(symbol, now)
        if session_quality > 0.8:
            reasons.append("Good session timing")

        corr_score, agreement = self.correlation_edge(symbol, history, peer_histories or {})
        if agreement and corr_score > 5:
            reasons.append("Correlated assets agree")

        raw = self.BASE_SCORE + structure_score + vol_score + session_score + corr_score
        score = int(round(min(self.MAX_SCORE, max(self.MIN_SCORE, raw))))

        confidence = 0.5
        if len(reasons) >= 2:
            confidence += 0.15
        if len(reasons) >= 3:
            confidence += 0.15
        if len(reasons) >= 4:
            confidence += 0.1
        if env.confidence > 0.5:
            confidence += 0.1
        if agreement:
            confidence += 0.05
        confidence = min(1.0, max(self.MIN_CONFIDENCE, confidence))

        if vol_direction is not None:
            direction = vol_direction

        return EdgeSignal(
            symbol=symbol,
            score=score,
            direction=direction,
            confidence=confidence,
            reasons=tuple(reasons) if reasons else ("Base trading conditions",),
            structure_edge=structure_score,
            volatility_edge=vol_score,
            session_edge=session_score,
            correlation_edge=corr_score,
            correlations_agree=agreement,
        )

    # Structure

    def find_swing_levels(self, history: Sequence[PriceTick]) -> List[SwingLevel]:
        n = len(history)
        if n < self.SWING_MIN_HISTORY:
            return []

        asks = np.array([t.ask for t in history], dtype=float)
        bids = np.array([t.bid for t in history], dtype=float)
        w = self.SWING_WINDOW
        levels: List[SwingLevel] = []

        for i in range(w, n - w):
            neighbours = np.r_[i - w:i, i + 1:i + w + 1]

            h = asks[i]
            if np.all(asks[neighbours] < h):
                levels.append(SwingLevel(float(h), True, float(np.sum(h - asks[neighbours]))))

            low = bids[i]
            if np.all(bids[neighbours] > low):
                levels.append(SwingLevel(float(low), False, float(np.sum(bids[neighbours] - low))))

        return levels[-self.MAX_LEVELS:]

    def detect_break_of_structure(self, levels: List[SwingLevel], tick: PriceTick) -> StructureSignal:
        if len(levels) < 2:
            return NO_SIGNAL

        highs = [lv for lv in levels if lv.is_high][-3:]
        lows = [lv for lv in levels if not lv.is_high][-3:]

        for level in highs:
            if tick.bid > level.price * (1 + self.BOS_MARGIN):
                return StructureSignal(Side.LONG, min(1.0, level.strength * 10), level.price)

        for level in lows:
            if tick.ask < level.price * (1 - self.BOS_MARGIN):
                return StructureSignal(Side.SHORT, min(1.0, level.strength * 10), level.price)

        return NO_SIGNAL

    def detect_liquidity_sweep(
        self,
        history: Sequence[PriceTick],
        levels: List[SwingLevel],
        tick: PriceTick,
    ) -> StructureSignal:
        if len(history) < self.SWEEP_MIN_HISTORY:
            return NO_SIGNAL

        recent = history[-10:]
        max_recent = max(t.ask for t in recent)
        min_recent = min(t.bid for t in recent)

        for eq_high in self._equal_levels([lv.price for lv in levels if lv.is_high]):
            if max_recent > eq_high and tick.bid < eq_high * (1 - self.SWEEP_REJECTION):
                return StructureSignal(Side.SHORT, 0.7, eq_high)

        for eq_low in self._equal_levels([lv.price for lv in levels if not lv.is_high]):
            if min_recent < eq_low and tick.ask > eq_low * (1 + self.SWEEP_REJECTION):
                return StructureSignal(Side.LONG, 0.7, eq_low)

        return NO_SIGNAL

    def _equal_levels(self, prices: List[float]) -> List[float]:
        pools = []
        for i in range(len(prices) - 1):
            for j in range(i + 1, len(prices)):
                if abs(prices[i] - prices[j]) < prices[i] * self.EQUAL_LEVEL_TOLERANCE:
                    pools.append((prices[i] + prices[j]) / 2)
        return pools

    def detect_fair_value_gap(self, history: Sequence[PriceTick]) -> StructureSignal:
        if len(history) < self.FVG_WINDOW:
            return NO_SIGNAL

        recent = history[-self.FVG_WINDOW:]
        current = history[-1]

        for i in range(2, len(recent)):
            c1, c2, c3 = recent[i - 2], recent[i - 1], recent[i]
            imbalance = c2.spread > c3.spread * 0.5

            # Gap up: first tick's ask below third tick's bid
            if c1.ask < c3.bid and imbalance:
                gap_mid = (c1.ask + c3.bid) / 2
                if current.bid <= gap_mid and current.ask >= c1.ask:
                    return StructureSignal(Side.LONG, 0.6, gap_mid)

            # Gap down
            if c1.bid > c3.ask and imbalance:
                gap_mid = (c1.bid + c3.ask) / 2
                if current.ask >= gap_mid and current.bid <= c1.bid:
                    return StructureSignal(Side.SHORT, 0.6, gap_mid)

        return NO_SIGNAL

    # Context

    def volatility_edge(self, env: EnvironmentSummary) -> Tuple[float, Optional[Side]]:
        score = 0.0
        if env.vol_state is VolState.COMPRESSION:
            score += 15
        if env.vol_state is VolState.EXPANSION and env.volatility_ratio < 2:
            score += 25
        if env.vol_state is VolState.SPIKE:
            score -= 20
        if env.vol_state is VolState.EXHAUSTION:
            score += 10

        direction = None
        if env.trend_strength > 0.5 and env.vol_state is VolState.EXPANSION and env.net_move != 0:
            direction = Side.LONG if env.net_move > 0 else Side.SHORT

        return max(0.0, score), direction

    def session_quality(self, now: datetime) -> Tuple[str, float]:
        hour = now.hour
        for window in self.sessions.edge_windows:
            if window.start_hour <= hour < window.end_hour:
                return window.name, window.quality
        return "off", self.sessions.edge_off_quality

    def session_edge(self, symbol: str, now: datetime) -> Tuple[float, float]:
        name, quality = self.session_quality(now)
        score = quality * 20

        s = symbol.upper()
        if "USD" in s and ("BTC" in s or "ETH" in s):
            score = max(score, 15.0)

        if name == "overlap":
            score += 10

        return score, quality

    def correlation_edge(
        self,
        symbol: str,
        history: Sequence[PriceTick],
        peer_histories: Dict[str, Sequence[PriceTick]],
    ) -> Tuple[float, bool]:
        group = self.markets.group_of(symbol, self.markets.edge_groups)
        if group is None:
            return 0.0, True

        if len(history) < self.CORRELATION_WINDOW:
            return 0.0, True

        my_up = self._is_up(history)
        checked = 0
        agreed = 0

        for peer in self.markets.edge_groups[group]:
            if peer == symbol:
                continue
            peer_history = peer_histories.get(peer)
            if not peer_history or len(peer_history) < self.CORRELATION_WINDOW:
                continue
            checked += 1
            if self._is_up(peer_history) == my_up:
                agreed += 1

        if checked == 0:
            return 0.0, True

        ratio = agreed / checked
        agreement = ratio > 0.5
        return (ratio * 15 if agreement else -10.0), agreement

    def _is_up(self, history: Sequence[PriceTick]) -> bool:
        recent = history[-self.CORRELATION_WINDOW:]
        return recent[-1].mid > recent[0].mid
