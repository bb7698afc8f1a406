"""
Position Sizing Engine

Turns an approved entry into a concrete size, stop and target.

STOPS / TARGETS:
- Stop distance = ATR (fallback mid * 1%) x personality multiplier
  (burst 0.5, scalper 0.75, trend 1.5)
- Target distance = stop distance x R:R (burst 1.5, scalper 2.0, trend 3.0)

RISK:
- Risk % = base x personality (0.7 / 0.9 / 1.2) x edge confidence band
  x environment x thermostat x session size, capped at max per position
- Size = equity * risk % / stop distance

EXPOSURE (notional, % of equity):
- Size is cut to the tightest of total / symbol / correlation-group headroom
- No headroom → size 0

BURST BATCH:
- N orders sharing one batch id, batch exposure budget split evenly,
  SL at mid * 0.5%, TP at mid * 1%
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .config import MarketTableConfig, BurstConfig
from .models import (
    PriceTick, Position, ProposedOrder, Side, Personality,
    MarketState, VolState, LiquidityState,
)
from .environment import EnvironmentSummary
from .edge import EdgeSignal
from .thermostat import AggressionLevel


MIN_SIZE = 0.0001


@dataclass(frozen=True)
class RiskProfile:
    """Per-position and portfolio exposure limits (% of equity)."""
    base_risk_percent: float
    max_risk_percent: float
    max_position_risk: float
    max_symbol_exposure: float
    max_correlated_exposure: float
    max_total_exposure: float


def create_risk_profile(
    base_risk_percent: float,
    max_daily_loss_percent: float,
    max_total_exposure: float = 80.0,
) -> RiskProfile:
    """Build a risk profile from user-level settings."""
    return RiskProfile(
        base_risk_percent=base_risk_percent,
        max_risk_percent=min(base_risk_percent * 2, max_daily_loss_percent / 2),
        max_position_risk=base_risk_percent * 1.5,
        max_symbol_exposure=min(20.0, max_total_exposure),
        max_correlated_exposure=min(40.0, max_total_exposure),
        max_total_exposure=max_total_exposure,
    )


@dataclass(frozen=True)
class ScaleInLevel:
    trigger_price: float
    size: float
    reason: str = ""


@dataclass(frozen=True)
class SizingResult:
    size: float
    risk_percent: float
    risk_amount: float
    sl: float
    tp: float
    sl_distance: float
    tp_distance: float
    reasons: Tuple[str, ...] = ()
    scale_in: Tuple[ScaleInLevel, ...] = ()

    @property
    def is_zero(self) -> bool:
        return self.size <= 0


class PositionSizer:
    """Risk-based position sizing with exposure headroom."""

    SL_ATR_MULT = {
        Personality.BURST: 0.5,
        Personality.SCALPER: 0.75,
        Personality.TREND: 1.5,
    }
    TARGET_RR = {
        Personality.BURST: 1.5,
        Personality.SCALPER: 2.0,
        Personality.TREND: 3.0,
    }
    RISK_MULT = {
        Personality.BURST: 0.7,
        Personality.SCALPER: 0.9,
        Personality.TREND: 1.2,
    }
    THERMOSTAT_MULT = {
        AggressionLevel.HIGH: 1.3,
        AggressionLevel.MEDIUM: 1.0,
        AggressionLevel.LOW: 0.7,
    }
    # (min edge confidence, multiplier), highest first
    CONFIDENCE_BANDS = ((0.9, 1.5), (0.8, 1.3), (0.7, 1.1), (0.6, 1.0), (0.5, 0.8))

    def __init__(self, profile: RiskProfile, markets: Optional[MarketTableConfig] = None):
        self.profile = profile
        self.markets = markets or MarketTableConfig()

    # ========================================================================
    # MULTIPLIERS
    # ========================================================================

    def confidence_multiplier(self, confidence: float) -> float:
        for floor, mult in self.CONFIDENCE_BANDS:
            if confidence >= floor:
                return mult
        return 0.5

    @staticmethod
    def environment_multiplier(env: EnvironmentSummary) -> float:
        if env.market_state is MarketState.TREND_CLEAN:
            mult = 1.2
        elif env.market_state is MarketState.RANGE_TRADEABLE:
            mult = 1.0
        elif env.market_state is MarketState.TREND_MESSY:
            mult = 0.8
        else:
            mult = 0.5

        if env.vol_state is VolState.EXPANSION and env.volatility_ratio < 1.5:
            mult *= 1.1
        if env.vol_state is VolState.SPIKE:
            mult *= 0.6

        if env.liquidity_state is LiquidityState.THIN:
            mult *= 0.7
        elif env.liquidity_state is LiquidityState.BROKEN:
            mult *= 0.3
        return mult

    # ========================================================================
    # EXPOSURE
    # ========================================================================

    def exposure(self, positions: Sequence[Position], equity: float) -> Dict[str, float]:
        """Notional exposure % by correlation group, plus 'total'."""
        result: Dict[str, float] = {"total": 0.0}
        for pos in positions:
            pct = pos.exposure_percent(equity)
            result["total"] += pct
            group = self.markets.group_of(pos.symbol, self.markets.sizing_groups)
            if group:
                result[group] = result.get(group, 0.0) + pct
        return result

    def headroom(self, symbol: str, positions: Sequence[Position], equity: float) -> float:
        """Remaining exposure % for a new position on symbol."""
        current = self.exposure(positions, equity)
        symbol_exposure = sum(p.exposure_percent(equity) for p in positions if p.symbol == symbol)
        group = self.markets.group_of(symbol, self.markets.sizing_groups)

        remaining_total = self.profile.max_total_exposure - current["total"]
        remaining_symbol = self.profile.max_symbol_exposure - symbol_exposure
        remaining_group = (
            self.profile.max_correlated_exposure - current.get(group, 0.0) if group else math.inf
        )
        return min(remaining_total, remaining_symbol, remaining_group)

    # ========================================================================
    # SIZING
    # ========================================================================

    def calculate(
        self,
        tick: PriceTick,
        direction: Side,
        edge: EdgeSignal,
        env: EnvironmentSummary,
        aggression: AggressionLevel,
        personality: Personality,
        equity: float,
        positions: Sequence[Position],
        session_size_multiplier: float = 1.0,
    ) -> SizingResult:
        atr = env.atr if env.atr > 0 else tick.mid * 0.01
        sl_distance = atr * self.SL_ATR_MULT[personality]
        tp_distance = sl_distance * self.TARGET_RR[personality]

        if direction is Side.LONG:
            sl = tick.bid - sl_distance
            tp = tick.ask + tp_distance
        else:
            sl = tick.ask + sl_distance
            tp = tick.bid - tp_distance

        risk_pct = (
            self.profile.base_risk_percent
            * self.RISK_MULT[personality]
            * self.confidence_multiplier(edge.confidence)
            * self.environment_multiplier(env)
            * self.THERMOSTAT_MULT[aggression]
            * session_size_multiplier
        )
        risk_pct = min(risk_pct, self.profile.max_position_risk)
        reasons: List[str] = [f"risk {risk_pct:.2f}%"]

        allowed = self.headroom(tick.symbol, positions, equity)
        if allowed <= 0 or equity <= 0:
            return SizingResult(
                size=0.0, risk_percent=0.0, risk_amount=0.0,
                sl=sl, tp=tp, sl_distance=sl_distance, tp_distance=tp_distance,
                reasons=("No exposure headroom",),
            )

        size = equity * risk_pct / 100 / sl_distance if sl_distance > 0 else 0.0

        fill = tick.ask if direction is Side.LONG else tick.bid
        exposure = size * fill / equity * 100
        if exposure > allowed:
            size = equity * allowed / 100 / fill
            reasons.append(f"capped to {allowed:.2f}% exposure")

        if size < MIN_SIZE:
            size = 0.0

        scale_in: Tuple[ScaleInLevel, ...] = ()
        if personality is Personality.TREND and env.market_state is MarketState.TREND_CLEAN and size > 0:
            step = atr if direction is Side.LONG else -atr
            scale_in = (
                ScaleInLevel(tick.mid + step * 0.5, size * 0.5, "Trend continuation confirmed"),
                ScaleInLevel(tick.mid + step * 1.0, size * 0.3, "Strong momentum"),
            )

        return SizingResult(
            size=size,
            risk_percent=risk_pct,
            risk_amount=size * sl_distance,
            sl=sl,
            tp=tp,
            sl_distance=sl_distance,
            tp_distance=tp_distance,
            reasons=tuple(reasons),
            scale_in=scale_in,
        )


def plan_burst_batch(
    tick: PriceTick,
    direction: Side,
    equity: float,
    burst: BurstConfig,
    batch_id: str,
    reason: str = "Burst batch",
) -> List[ProposedOrder]:
    """Expand one burst entry into `burst.size` orders sharing a batch id."""
    if equity <= 0 or burst.size < 1:
        return []

    per_order_pct = burst.risk_per_burst_percent / burst.size
    size = equity * per_order_pct / 100 / tick.mid
    if size < MIN_SIZE:
        return []

    entry = tick.ask if direction is Side.LONG else tick.bid
    sl_distance = tick.mid * burst.sl_percent / 100
    tp_distance = tick.mid * burst.tp_percent / 100
    if direction is Side.LONG:
        sl, tp = entry - sl_distance, entry + tp_distance
    else:
        sl, tp = entry + sl_distance, entry - tp_distance

    return [
        ProposedOrder(
            symbol=tick.symbol,
            side=direction,
            size=size,
            entry_price=entry,
            sl=sl,
            tp=tp,
            mode=Personality.BURST,
            reason=f"{reason} ({i + 1}/{burst.size})",
            batch_id=batch_id,
        )
        for i in range(burst.size)
    ]
