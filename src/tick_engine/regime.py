"""
Multi-Timeframe Regime & Directional Bias Filter

REGIME:
- Short buffer samples every tick (max 50), medium every 5th short sample
  (max 30), long every 20th (max 20)
- SMA/EMA alignment vote across timeframes → BULLISH / BEARISH / MIXED
- Trend bias = directional-move ratio + % change + alignment bonus;
  BULL/BEAR only when strength > 30

BIAS FILTER (applied to a proposed entry direction):
1. Direction with < 20% win rate over >= 5 trades (120 min) → HARD BLOCK
2. Against a bias with confidence > 0.6                     → SOFT BLOCK
3. Against a weaker bias                                    → allow with warning
"""

import logging
import numpy as np
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, List, Sequence, Tuple
from enum import Enum

from .context import RegimeBuffers
from .models import PriceTick, ClosedTrade, Side, Personality


class TrendBias(Enum):
    BULL = "bull"
    BEAR = "bear"
    NEUTRAL = "neutral"


class MarketStructure(Enum):
    TREND = "trend"
    RANGE = "range"


class VolatilityLevel(Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class Alignment(Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    MIXED = "mixed"


@dataclass(frozen=True)
class RegimeSnapshot:
    """Immutable multi-timeframe regime for one symbol."""
    symbol: str
    trend_bias: TrendBias
    structure: MarketStructure
    volatility: VolatilityLevel
    trend_strength: float      # 0-100
    volatility_ratio: float
    confidence: float          # 0.2-1
    sma_alignment: Alignment
    timestamp: datetime

    @property
    def summary(self) -> str:
        return (
            f"{self.trend_bias.value}/{self.structure.value}/{self.volatility.value} "
            f"(str={self.trend_strength:.0f}, conf={self.confidence * 100:.0f}%)"
        )


class RegimeTracker:
    """
    Multi-timeframe regime classification.

    Buffers live in the engine session; the tracker only reads and
    appends to them.
    """

    MEDIUM_EVERY = 5
    LONG_EVERY = 20
    ATR_WINDOW = 14
    TREND_WINDOW = 20
    STRUCTURE_WINDOW = 15
    BIAS_MIN_STRENGTH = 30
    SUITABLE_SCORE = 35

    def update(self, buffers: RegimeBuffers, tick: PriceTick) -> RegimeSnapshot:
        """Record the tick in the buffers and classify."""
        buffers.short.append(tick.mid)
        buffers.samples += 1

        # Sample on the total tick count, not the capped buffer length
        if buffers.samples % self.MEDIUM_EVERY == 0:
            buffers.medium.append(tick.mid)
        if buffers.samples % self.LONG_EVERY == 0:
            buffers.long.append(tick.mid)

        short = np.array(buffers.short, dtype=float)
        current_atr = self._calc_atr(short[-self.ATR_WINDOW:])
        historical = list(buffers.atr_history)
        buffers.atr_history.append(current_atr)

        alignment = self._alignment(short, np.array(buffers.medium, dtype=float))
        bias, strength = self._trend_bias(short, alignment)
        volatility, ratio = self._volatility(short, current_atr, historical)
        structure = self._structure(short, strength, ratio)

        confidence = 0.5
        if len(buffers.short) >= 30:
            confidence += 0.2
        if len(buffers.medium) >= 10:
            confidence += 0.15
        if len(buffers.long) >= 5:
            confidence += 0.15
        if alignment is Alignment.MIXED:
            confidence -= 0.1
        if bias is TrendBias.NEUTRAL and structure is MarketStructure.TREND:
            confidence -= 0.1
        confidence = max(0.2, min(1.0, confidence))

        return RegimeSnapshot(
            symbol=tick.symbol,
            trend_bias=bias,
            structure=structure,
            volatility=volatility,
            trend_strength=strength,
            volatility_ratio=ratio,
            confidence=confidence,
            sma_alignment=alignment,
            timestamp=tick.timestamp,
        )

    def is_suitable_for_mode(
        self,
        regime: RegimeSnapshot,
        mode: Personality,
    ) -> Tuple[bool, str, float]:
        """Return (suitable, reason, score); suitable when score >= 35."""
        score = 50.0
        reasons: List[str] = []

        if mode is Personality.BURST:
            if regime.volatility is VolatilityLevel.HIGH:
                score += 20
                reasons.append("High vol")
            elif regime.volatility is VolatilityLevel.LOW:
                score -= 10
                reasons.append("Low vol")
            if regime.structure is MarketStructure.TREND:
                score += 15
                reasons.append("Trending")

        elif mode is Personality.SCALPER:
            if regime.volatility is VolatilityLevel.NORMAL:
                score += 20
                reasons.append("Normal vol")
            elif regime.volatility is VolatilityLevel.HIGH:
                score += 10
                reasons.append("High vol (caution)")
            if regime.structure is MarketStructure.RANGE:
                score += 15
                reasons.append("Ranging")

        elif mode is Personality.TREND:
            if regime.structure is not MarketStructure.TREND:
                score -= 30
                reasons.append("Not trending")
            else:
                score += 25
                reasons.append("Trend structure")
            if regime.trend_strength > 60:
                score += 15
                reasons.append("Strong trend")
            if regime.sma_alignment is not Alignment.MIXED:
                score += 10
                reasons.append(f"SMA {regime.sma_alignment.value}")

        if regime.confidence > 0.7:
            score += 10
            reasons.append("High confidence")
        elif regime.confidence < 0.4:
            score -= 15
            reasons.append("Low confidence")

        score = max(0.0, min(100.0, score))
        reason = ", ".join(reasons) if reasons else "Neutral conditions"
        return score >= self.SUITABLE_SCORE, reason, score

    # Indicators

    def _calc_sma(self, prices: np.ndarray, period: int) -> float:
        if len(prices) < period:
            return float(prices[-1]) if len(prices) > 0 else 0.0
        return float(np.mean(prices[-period:]))

    def _calc_ema(self, prices: np.ndarray, period: int) -> float:
        if len(prices) == 0:
            return 0.0
        if len(prices) < period:
            return float(np.mean(prices))

        k = 2.0 / (period + 1)
        ema = prices[0]
        for price in prices[1:]:
            ema = price * k + ema * (1 - k)
        return float(ema)

    def _calc_atr(self, prices: np.ndarray) -> float:
        """Mean absolute mid change."""
        if len(prices) < 2:
            return 0.0
        return float(np.mean(np.abs(np.diff(prices))))

    def _alignment(self, short: np.ndarray, medium: np.ndarray) -> Alignment:
        if len(short) < 5 or len(medium) < 3:
            return Alignment.MIXED

        price = short[-1]
        sma5 = self._calc_sma(short, 5)
        sma20 = self._calc_sma(short, 20)
        ema10 = self._calc_ema(short, 10)

        votes = [price > sma5, sma5 > sma20, price > ema10]
        if len(medium) >= 5:
            votes.append(medium[-1] > self._calc_sma(medium, 5))

        bullish = sum(1 for v in votes if v)
        bearish = len(votes) - bullish

        if bullish >= 3:
            return Alignment.BULLISH
        if bearish >= 3:
            return Alignment.BEARISH
        return Alignment.MIXED

    def _trend_bias(self, prices: np.ndarray, alignment: Alignment) -> Tuple[TrendBias, float]:
        if len(prices) < 10:
            return TrendBias.NEUTRAL, 0.0

        recent = prices[-self.TREND_WINDOW:]
        moves = np.diff(recent)
        ups = int(np.sum(moves > 0))
        downs = int(np.sum(moves < 0))
        total = ups + downs
        if total == 0:
            return TrendBias.NEUTRAL, 0.0

        strength = abs(ups - downs) / total * 50
        change_pct = (recent[-1] - recent[0]) / recent[0] * 100

        if abs(change_pct) > 0.5:
            strength += 20
        if abs(change_pct) > 1.0:
            strength += 15
        if alignment is Alignment.BULLISH and ups > downs:
            strength += 15
        if alignment is Alignment.BEARISH and downs > ups:
            strength += 15

        strength = min(100.0, strength)

        if ups > downs and strength > self.BIAS_MIN_STRENGTH:
            return TrendBias.BULL, strength
        if downs > ups and strength > self.BIAS_MIN_STRENGTH:
            return TrendBias.BEAR, strength
        return TrendBias.NEUTRAL, strength

    def _structure(self, prices: np.ndarray, strength: float, vol_ratio: float) -> MarketStructure:
        if len(prices) < self.STRUCTURE_WINDOW:
            return MarketStructure.RANGE
        if strength > 50:
            return MarketStructure.TREND

        recent = prices[-self.STRUCTURE_WINDOW:]
        high, low = float(np.max(recent)), float(np.min(recent))
        range_pct = (high - low) / ((high + low) / 2) * 100

        if range_pct < 1.5 and strength < 40:
            return MarketStructure.RANGE
        if vol_ratio > 1.2 and strength > 35:
            return MarketStructure.TREND
        return MarketStructure.TREND if strength > 35 else MarketStructure.RANGE

    def _volatility(
        self,
        prices: np.ndarray,
        current_atr: float,
        historical: List[float],
    ) -> Tuple[VolatilityLevel, float]:
        if len(prices) < 5:
            return VolatilityLevel.NORMAL, 1.0

        avg_atr = float(np.mean(historical)) if historical else current_atr
        ratio = current_atr / avg_atr if avg_atr > 0 else 1.0

        if ratio > 1.5:
            return VolatilityLevel.HIGH, ratio
        if ratio < 0.6:
            return VolatilityLevel.LOW, ratio
        return VolatilityLevel.NORMAL, ratio


# ============================================================================
# DIRECTIONAL BIAS FILTER
# ============================================================================

@dataclass(frozen=True)
class DirectionalPerformance:
    long_win_rate: float
    short_win_rate: float
    long_count: int
    short_count: int
    long_pnl: float
    short_pnl: float


@dataclass(frozen=True)
class BiasFilterResult:
    """Immutable bias filter decision."""
    allowed: bool
    reason: str
    bias_direction: Optional[Side]    # None = neutral
    confidence: float
    hard_block: bool = False

    @property
    def is_blocked(self) -> bool:
        return not self.allowed

    @property
    def is_warning(self) -> bool:
        return self.allowed and self.reason.startswith("Warning")


class BiasFilter:
    """
    Blocks entries against catastrophic directional performance or a
    strong regime bias.
    """

    CATASTROPHIC_WIN_RATE = 20.0
    MIN_TRADES_FOR_BIAS = 5
    REGIME_OVERRIDE_STRENGTH = 50.0
    SOFT_BLOCK_CONFIDENCE = 0.6
    PNL_BIAS_THRESHOLD = 100.0
    WINDOW_MINUTES = 120

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def directional_performance(
        self,
        trades: Sequence[ClosedTrade],
        now: datetime,
    ) -> DirectionalPerformance:
        cutoff = now - timedelta(minutes=self.WINDOW_MINUTES)
        recent = [t for t in trades if t.closed_at > cutoff]

        longs = [t for t in recent if t.side is Side.LONG]
        shorts = [t for t in recent if t.side is Side.SHORT]

        def win_rate(group: List[ClosedTrade]) -> float:
            if not group:
                return 50.0
            return sum(1 for t in group if t.is_win) / len(group) * 100

        return DirectionalPerformance(
            long_win_rate=win_rate(longs),
            short_win_rate=win_rate(shorts),
            long_count=len(longs),
            short_count=len(shorts),
            long_pnl=sum(t.realized_pnl for t in longs),
            short_pnl=sum(t.realized_pnl for t in shorts),
        )

    def _is_catastrophic(self, side: Side, perf: DirectionalPerformance) -> bool:
        if side is Side.LONG:
            return perf.long_count >= self.MIN_TRADES_FOR_BIAS and perf.long_win_rate < self.CATASTROPHIC_WIN_RATE
        return perf.short_count >= self.MIN_TRADES_FOR_BIAS and perf.short_win_rate < self.CATASTROPHIC_WIN_RATE

    def determine_bias(
        self,
        regime: Optional[RegimeSnapshot],
        perf: DirectionalPerformance,
    ) -> Tuple[Optional[Side], float, str]:
        """Return (direction or None, confidence, source)."""
        if self._is_catastrophic(Side.SHORT, perf):
            return Side.LONG, 0.9, f"SHORT win rate catastrophic ({perf.short_win_rate:.0f}%)"
        if self._is_catastrophic(Side.LONG, perf):
            return Side.SHORT, 0.9, f"LONG win rate catastrophic ({perf.long_win_rate:.0f}%)"

        if regime is not None and regime.trend_strength > self.REGIME_OVERRIDE_STRENGTH:
            if regime.trend_bias is TrendBias.BULL:
                return Side.LONG, regime.confidence * 0.7, f"Regime bullish (strength: {regime.trend_strength:.0f})"
            if regime.trend_bias is TrendBias.BEAR:
                return Side.SHORT, regime.confidence * 0.7, f"Regime bearish (strength: {regime.trend_strength:.0f})"

        if perf.long_count + perf.short_count >= self.MIN_TRADES_FOR_BIAS:
            pnl_diff = perf.long_pnl - perf.short_pnl
            if pnl_diff > self.PNL_BIAS_THRESHOLD:
                return Side.LONG, 0.5, f"LONG P&L significantly better (+${pnl_diff:.0f})"
            if pnl_diff < -self.PNL_BIAS_THRESHOLD:
                return Side.SHORT, 0.5, f"SHORT P&L significantly better (+${abs(pnl_diff):.0f})"

        return None, 0.0, "none"

    def apply(
        self,
        direction: Side,
        regime: Optional[RegimeSnapshot],
        trades: Sequence[ClosedTrade],
        now: datetime,
    ) -> BiasFilterResult:
        perf = self.directional_performance(trades, now)
        bias, confidence, source = self.determine_bias(regime, perf)

        if bias is None:
            return BiasFilterResult(True, "No directional bias detected", None, 0.0)

        if direction is bias:
            return BiasFilterResult(True, f"Direction aligns with bias: {source}", bias, confidence)

        label = direction.value.upper()

        if self._is_catastrophic(direction, perf):
            rate = perf.long_win_rate if direction is Side.LONG else perf.short_win_rate
            self.logger.info(f"BLOCKED: {label} hard block, win rate {rate:.0f}%")
            return BiasFilterResult(
                False, f"BLOCKED: {label} has catastrophic win rate ({rate:.0f}%)",
                bias, confidence, hard_block=True,
            )

        if confidence > self.SOFT_BLOCK_CONFIDENCE:
            return BiasFilterResult(
                False, f"BLOCKED: {label} against strong bias: {source}", bias, confidence,
            )

        return BiasFilterResult(
            True, f"Warning: {label} against weak bias: {source}", bias, confidence,
        )

    def summary(
        self,
        trades: Sequence[ClosedTrade],
        regime: Optional[RegimeSnapshot],
        now: datetime,
    ) -> str:
        perf = self.directional_performance(trades, now)
        bias, _, source = self.determine_bias(regime, perf)
        label = bias.value.upper() if bias else "NEUTRAL"
        return (
            f"Bias: {label} | LONG: {perf.long_win_rate:.0f}% ({perf.long_count} trades, ${perf.long_pnl:.0f}) "
            f"| SHORT: {perf.short_win_rate:.0f}% ({perf.short_count} trades, ${perf.short_pnl:.0f}) "
            f"| Source: {source}"
        )
