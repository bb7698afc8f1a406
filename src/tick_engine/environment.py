"""
Environment Classifier

Per-symbol rolling tick history → market / volatility / liquidity state.

METRICS:
- ATR(14): true-range proxy from bid/ask against previous mid
- Trend strength: |ups - downs| / moves over the last 20 mids
- Overlap: share of adjacent bid/ask ranges that overlap (last 10 ticks)
- Swing points: 5-tick local highs (ask) and lows (bid)

CLASSIFICATION (first match wins):
1. volatility ratio < 0.3                      → DEAD
2. volatility ratio > 2.0 AND overlap > 0.7    → CHAOS
3. trend strength > 0.6                        → TREND_CLEAN (overlap < 0.5) / TREND_MESSY
4. trend strength < 0.3                        → RANGE_TRAP (>2 swing highs or lows, overlap > 0.6)
                                                 / RANGE_TRADEABLE
5. otherwise                                   → RANGE_TRAP (overlap > 0.6) / TREND_MESSY

The classifier holds no state. History is owned by the engine session.
"""

import numpy as np
from dataclasses import dataclass
from typing import Sequence, List, Tuple

from .models import PriceTick, MarketState, VolState, LiquidityState


@dataclass(frozen=True)
class EnvironmentSummary:
    """Immutable environment classification for one symbol at one tick."""
    symbol: str
    market_state: MarketState
    vol_state: VolState
    liquidity_state: LiquidityState
    confidence: float
    atr: float
    avg_atr: float
    trend_strength: float
    volatility_ratio: float
    overlap_ratio: float
    net_move: float = 0.0   # Signed mid change over the trend window

    @property
    def is_tradeable(self) -> bool:
        if self.market_state in (MarketState.CHAOS, MarketState.DEAD):
            return False
        if self.liquidity_state is LiquidityState.BROKEN:
            return False
        return self.confidence >= 0.3

    @property
    def multiplier(self) -> float:
        """Environment quality multiplier for sizing."""
        return {
            MarketState.TREND_CLEAN: 1.2,
            MarketState.RANGE_TRADEABLE: 1.0,
            MarketState.TREND_MESSY: 0.8,
            MarketState.RANGE_TRAP: 0.5,
        }.get(self.market_state, 0.3)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "market_state": self.market_state.value,
            "vol_state": self.vol_state.value,
            "liquidity_state": self.liquidity_state.value,
            "confidence": self.confidence,
            "atr": self.atr,
            "trend_strength": self.trend_strength,
            "volatility_ratio": self.volatility_ratio,
            "overlap_ratio": self.overlap_ratio,
        }


class EnvironmentClassifier:
    """
    Stateless market environment classifier.

    PARAMETERS:
    - ATR period: 14
    - Trend window: 20 ticks
    - Overlap window: 10 ticks
    - Average ATR excludes the most recent 10 ticks (needs > 30 ticks)
    """

    ATR_PERIOD = 14
    TREND_WINDOW = 20
    OVERLAP_WINDOW = 10
    SWING_MIN_HISTORY = 10
    AVG_ATR_MIN_HISTORY = 30
    AVG_ATR_EXCLUDE = 10

    # Market state thresholds
    DEAD_RATIO = 0.3
    CHAOS_RATIO = 2.0
    CHAOS_OVERLAP = 0.7
    TREND_THRESHOLD = 0.6
    RANGE_THRESHOLD = 0.3
    CLEAN_OVERLAP = 0.5
    TRAP_OVERLAP = 0.6

    # Vol state thresholds (multiples of average ATR)
    SPIKE_MULT = 2.5
    EXPANSION_MULT = 1.3
    COMPRESSION_MULT = 0.7
    PRIOR_SPIKE_MULT = 1.8
    EXHAUSTION_MULT = 1.2

    # Liquidity thresholds (multiples of average spread)
    BROKEN_SPREAD = 3.0
    THIN_SPREAD = 1.5

    MARKET_CONFIDENCE = {
        MarketState.TREND_CLEAN: 0.25,
        MarketState.RANGE_TRADEABLE: 0.15,
        MarketState.TREND_MESSY: 0.05,
        MarketState.CHAOS: -0.3,
        MarketState.DEAD: -0.3,
        MarketState.RANGE_TRAP: -0.2,
    }
    VOL_CONFIDENCE = {
        VolState.EXPANSION: 0.1,
        VolState.COMPRESSION: 0.05,
        VolState.SPIKE: -0.15,
        VolState.EXHAUSTION: -0.05,
    }
    LIQUIDITY_CONFIDENCE = {
        LiquidityState.NORMAL: 0.0,
        LiquidityState.THIN: -0.15,
        LiquidityState.BROKEN: -0.4,
    }

    def classify(self, symbol: str, history: Sequence[PriceTick]) -> EnvironmentSummary:
        """
        Classify the environment from a rolling history.

        The last element of history is the current tick.
        """
        if not history:
            raise ValueError(f"{symbol}: cannot classify an empty history")

        bids = np.array([t.bid for t in history], dtype=float)
        asks = np.array([t.ask for t in history], dtype=float)
        mids = np.array([t.mid for t in history], dtype=float)

        atr = self._calc_atr(bids, asks, mids, self.ATR_PERIOD)
        trend_strength = self._calc_trend_strength(mids)
        overlap = self._calc_overlap(bids, asks)
        swing_highs, swing_lows = self._find_swings(bids, asks)

        if len(history) > self.AVG_ATR_MIN_HISTORY:
            cut = len(history) - self.AVG_ATR_EXCLUDE
            avg_atr = self._calc_atr(bids[:cut], asks[:cut], mids[:cut], self.ATR_PERIOD)
        else:
            avg_atr = atr

        volatility_ratio = atr / avg_atr if avg_atr > 0 else 1.0

        spreads = asks - bids
        avg_spread = float(np.mean(spreads))

        market_state = self.classify_market_state(
            trend_strength, overlap, volatility_ratio, len(swing_highs), len(swing_lows)
        )
        vol_state = self._classify_vol_state(bids, asks, mids, atr, avg_atr)
        liquidity_state = self.classify_liquidity(float(spreads[-1]), avg_spread)

        window = mids[-self.TREND_WINDOW:]
        net_move = float(window[-1] - window[0]) if len(window) > 1 else 0.0

        return EnvironmentSummary(
            symbol=symbol,
            market_state=market_state,
            vol_state=vol_state,
            liquidity_state=liquidity_state,
            confidence=self.score_confidence(market_state, vol_state, liquidity_state),
            atr=atr,
            avg_atr=avg_atr,
            trend_strength=trend_strength,
            volatility_ratio=volatility_ratio,
            overlap_ratio=overlap,
            net_move=net_move,
        )

    def classify_from_metrics(
        self,
        symbol: str,
        trend_strength: float,
        overlap: float,
        volatility_ratio: float,
        swing_highs: int = 0,
        swing_lows: int = 0,
        vol_state: VolState = VolState.COMPRESSION,
        liquidity_state: LiquidityState = LiquidityState.NORMAL,
        atr: float = 0.0,
    ) -> EnvironmentSummary:
        """Apply the decision table to precomputed metrics."""
        market_state = self.classify_market_state(
            trend_strength, overlap, volatility_ratio, swing_highs, swing_lows
        )
        return EnvironmentSummary(
            symbol=symbol,
            market_state=market_state,
            vol_state=vol_state,
            liquidity_state=liquidity_state,
            confidence=self.score_confidence(market_state, vol_state, liquidity_state),
            atr=atr,
            avg_atr=atr,
            trend_strength=trend_strength,
            volatility_ratio=volatility_ratio,
            overlap_ratio=overlap,
        )

    def classify_market_state(
        self,
        trend_strength: float,
        overlap: float,
        volatility_ratio: float,
        swing_highs: int,
        swing_lows: int,
    ) -> MarketState:
        if volatility_ratio < self.DEAD_RATIO:
            return MarketState.DEAD

        if volatility_ratio > self.CHAOS_RATIO and overlap > self.CHAOS_OVERLAP:
            return MarketState.CHAOS

        if trend_strength > self.TREND_THRESHOLD:
            if overlap < self.CLEAN_OVERLAP:
                return MarketState.TREND_CLEAN
            return MarketState.TREND_MESSY

        if trend_strength < self.RANGE_THRESHOLD:
            has_equal_levels = (swing_highs > 2 or swing_lows > 2) and overlap > self.TRAP_OVERLAP
            return MarketState.RANGE_TRAP if has_equal_levels else MarketState.RANGE_TRADEABLE

        return MarketState.RANGE_TRAP if overlap > self.TRAP_OVERLAP else MarketState.TREND_MESSY

    def classify_liquidity(self, spread: float, avg_spread: float) -> LiquidityState:
        if spread > avg_spread * self.BROKEN_SPREAD:
            return LiquidityState.BROKEN
        if spread > avg_spread * self.THIN_SPREAD:
            return LiquidityState.THIN
        return LiquidityState.NORMAL

    def score_confidence(
        self,
        market_state: MarketState,
        vol_state: VolState,
        liquidity_state: LiquidityState,
    ) -> float:
        confidence = 0.5
        confidence += self.MARKET_CONFIDENCE[market_state]
        confidence += self.VOL_CONFIDENCE[vol_state]
        confidence += self.LIQUIDITY_CONFIDENCE[liquidity_state]
        return float(min(1.0, max(0.0, confidence)))

    def _classify_vol_state(
        self,
        bids: np.ndarray,
        asks: np.ndarray,
        mids: np.ndarray,
        current_atr: float,
        avg_atr: float,
    ) -> VolState:
        n = len(mids)
        if n < self.TREND_WINDOW:
            return VolState.COMPRESSION

        # Rolling ATR over each (period + 1)-tick window ending before i
        window = self.ATR_PERIOD + 1
        rolling: List[float] = [
            self._calc_atr(bids[i - window:i], asks[i - window:i], mids[i - window:i], self.ATR_PERIOD)
            for i in range(window, n + 1)
        ]

        if current_atr > avg_atr * self.SPIKE_MULT:
            return VolState.SPIKE

        atr_trend = rolling[-5:]
        is_expanding = all(
            atr_trend[i] >= atr_trend[i - 1] * 0.95 for i in range(1, len(atr_trend))
        )
        if is_expanding and current_atr > avg_atr * self.EXPANSION_MULT:
            return VolState.EXPANSION

        if current_atr < avg_atr * self.COMPRESSION_MULT:
            return VolState.COMPRESSION

        prior = rolling[-10:-5]
        was_high_vol = any(a > avg_atr * self.PRIOR_SPIKE_MULT for a in prior)
        if was_high_vol and current_atr < avg_atr * self.EXHAUSTION_MULT:
            return VolState.EXHAUSTION

        return VolState.COMPRESSION

    def _calc_atr(
        self,
        bids: np.ndarray,
        asks: np.ndarray,
        mids: np.ndarray,
        period: int,
    ) -> float:
        """Mean true range of the last `period` ticks (0 when too short)."""
        if len(mids) < period + 1:
            return 0.0

        prev_mid = mids[:-1]
        tr = np.maximum.reduce([
            asks[1:] - bids[1:],
            np.abs(asks[1:] - prev_mid),
            np.abs(bids[1:] - prev_mid),
        ])
        return float(np.mean(tr[-period:]))

    def _calc_trend_strength(self, mids: np.ndarray) -> float:
        if len(mids) < self.TREND_WINDOW:
            return 0.0

        moves = np.diff(mids[-self.TREND_WINDOW:])
        ups = int(np.sum(moves > 0))
        downs = int(np.sum(moves < 0))
        total = ups + downs
        if total == 0:
            return 0.0
        return abs(ups - downs) / total

    def _calc_overlap(self, bids: np.ndarray, asks: np.ndarray) -> float:
        if len(bids) < self.OVERLAP_WINDOW:
            return 0.5

        b = bids[-self.OVERLAP_WINDOW:]
        a = asks[-self.OVERLAP_WINDOW:]
        overlapping = (b[1:] < a[:-1]) & (a[1:] > b[:-1])
        return float(np.sum(overlapping)) / (self.OVERLAP_WINDOW - 1)

    def _find_swings(self, bids: np.ndarray, asks: np.ndarray) -> Tuple[List[float], List[float]]:
        n = len(bids)
        if n < self.SWING_MIN_HISTORY:
            return [], []

        highs: List[float] = []
        lows: List[float] = []
        for i in range(2, n - 2):
            h = asks[i]
            if h > asks[i - 1] and h > asks[i - 2] and h > asks[i + 1] and h > asks[i + 2]:
                highs.append(float(h))
            low = bids[i]
            if low < bids[i - 1] and low < bids[i - 2] and low < bids[i + 1] and low < bids[i + 2]:
                lows.append(float(low))
        return highs, lows
