"""
Trade Management Engine

Per-position decisions for open trades: cut losers early, bank or trail
winners, free up stagnant slots.

LOSING (P&L% < 0), first match:
- 10  Liquidity broken
- 9   Edge flipped against the position with confidence > 0.6
- 8   Environment chaos / range_trap and P&L% < -0.3
- 7   Momentum against and P&L% < -0.5
- 0   Hold, SL manages

WINNING (P&L% > 0.1), personality templates:
- BURST:   close at 0.6% (or 0.3% without momentum), trail 0.3 ATR
- SCALPER: partial at 0.5% without momentum, close at 1.0%, trail 0.5 ATR
- TREND:   act only on a strong reversal (edge >= 60), trail 1.0 ATR

STAGNANT (otherwise):
- Older than 15 / 30 / 120 minutes with |P&L%| < 0.2:
  close if edge < 40 (5) or environment confidence < 0.4 (4)

Trailing stops only ever tighten.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from enum import Enum

from .models import (
    PriceTick, Position, ClosedTrade, Side, Personality,
    MarketState, LiquidityState, CloseReason, price_diff,
)
from .environment import EnvironmentSummary
from .edge import EdgeSignal
from .logging_module import EngineLogBook


class ManagementAction(Enum):
    HOLD = "hold"
    CLOSE = "close"
    PARTIAL_CLOSE = "partial_close"
    TRAIL_STOP = "trail_stop"


class Momentum(Enum):
    WITH = "with"
    AGAINST = "against"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class ManagementDecision:
    """Immutable management decision for one position."""
    position_id: str
    action: ManagementAction
    reason: str
    priority: int = 0
    new_sl: Optional[float] = None
    close_percent: Optional[float] = None
    pnl_percent: float = 0.0
    minutes_in_trade: float = 0.0
    momentum: Momentum = Momentum.NEUTRAL

    @property
    def is_hold(self) -> bool:
        return self.action is ManagementAction.HOLD

    def to_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "action": self.action.value,
            "reason": self.reason,
            "priority": self.priority,
            "new_sl": self.new_sl,
            "close_percent": self.close_percent,
            "pnl_percent": self.pnl_percent,
        }


@dataclass(frozen=True)
class ManagementResult:
    positions: List[Position]        # Surviving positions (stops / sizes updated)
    closed: List[ClosedTrade]        # Full and partial closes
    decisions: List[ManagementDecision]


@dataclass(frozen=True)
class ProfitThresholds:
    quick: float
    target: float
    runner: float


def pnl_percent(position: Position, tick: PriceTick) -> float:
    exit_price = tick.exit_price(position.side)
    return price_diff(position.side, position.entry_price, exit_price) / position.entry_price * 100


def is_tighter(position: Position, new_sl: float) -> bool:
    """True if new_sl reduces risk on the position."""
    if position.side is Side.LONG:
        return new_sl > position.sl
    return new_sl < position.sl


class TradeManager:
    """Open-position manager."""

    PROFIT_THRESHOLDS = {
        Personality.BURST: ProfitThresholds(quick=0.3, target=0.6, runner=1.0),
        Personality.SCALPER: ProfitThresholds(quick=0.5, target=1.0, runner=1.5),
        Personality.TREND: ProfitThresholds(quick=1.0, target=2.0, runner=4.0),
    }
    TRAIL_ATR = {
        Personality.BURST: 0.3,
        Personality.SCALPER: 0.5,
        Personality.TREND: 1.0,
    }
    STAGNANT_MINUTES = {
        Personality.BURST: 15,
        Personality.SCALPER: 30,
        Personality.TREND: 120,
    }

    WINNING_PNL = 0.1
    STAGNANT_PNL = 0.2
    MOMENTUM_EDGE = 50

    ROTATION_MINUTES = 30
    ROTATION_PNL = 0.3
    ROTATION_EDGE = 45

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    # ========================================================================
    # ANALYSIS
    # ========================================================================

    def momentum(self, position: Position, edge: EdgeSignal) -> Momentum:
        if edge.direction is None or edge.score < self.MOMENTUM_EDGE:
            return Momentum.NEUTRAL
        return Momentum.WITH if edge.direction is position.side else Momentum.AGAINST

    def analyze(
        self,
        position: Position,
        tick: PriceTick,
        env: EnvironmentSummary,
        edge: EdgeSignal,
        now: datetime,
    ) -> ManagementDecision:
        pnl = pnl_percent(position, tick)
        minutes = position.age_minutes(now)
        momentum = self.momentum(position, edge)

        if pnl < 0:
            action, reason, priority, new_sl, pct = self._losing(position, env, edge, pnl, momentum)
        elif pnl > self.WINNING_PNL:
            action, reason, priority, new_sl, pct = self._winning(position, tick, env, edge, pnl, momentum)
        else:
            action, reason, priority, new_sl, pct = self._stagnant(position, env, edge, pnl, minutes)

        return ManagementDecision(
            position_id=position.id,
            action=action,
            reason=reason,
            priority=priority,
            new_sl=new_sl,
            close_percent=pct,
            pnl_percent=pnl,
            minutes_in_trade=minutes,
            momentum=momentum,
        )

    def _losing(self, position, env, edge, pnl, momentum):
        if env.liquidity_state is LiquidityState.BROKEN:
            return ManagementAction.CLOSE, "Liquidity broken - emergency exit", 10, None, None

        if edge.direction is not None and edge.direction is not position.side and edge.confidence > 0.6:
            return ManagementAction.CLOSE, "Structure broken against position, edge collapsed", 9, None, None

        if env.market_state in (MarketState.CHAOS, MarketState.RANGE_TRAP) and pnl < -0.3:
            return (ManagementAction.CLOSE, f"Environment degraded to {env.market_state.value}",
                    8, None, None)

        if momentum is Momentum.AGAINST and pnl < -0.5:
            return ManagementAction.CLOSE, "Strong momentum against position", 7, None, None

        return ManagementAction.HOLD, "Within acceptable loss range, SL will manage", 0, None, None

    def _trail(self, position: Position, tick: PriceTick, env: EnvironmentSummary) -> Optional[float]:
        atr = env.atr if env.atr > 0 else position.entry_price * 0.01
        distance = atr * self.TRAIL_ATR[position.mode]
        if position.side is Side.LONG:
            new_sl = tick.bid - distance
        else:
            new_sl = tick.ask + distance
        return new_sl if is_tighter(position, new_sl) else None

    def _winning(self, position, tick, env, edge, pnl, momentum):
        mode = position.mode
        thresholds = self.PROFIT_THRESHOLDS[mode]

        if mode is Personality.BURST:
            if pnl >= thresholds.target or (momentum is not Momentum.WITH and pnl >= thresholds.quick):
                return ManagementAction.CLOSE, "Burst target reached or momentum slowing", 6, None, None
            if pnl >= thresholds.quick:
                new_sl = self._trail(position, tick, env)
                if new_sl is not None:
                    return ManagementAction.TRAIL_STOP, "Trailing stop for burst profit", 4, new_sl, None

        elif mode is Personality.SCALPER:
            if momentum is not Momentum.WITH and pnl >= thresholds.quick:
                if pnl >= thresholds.target:
                    return ManagementAction.CLOSE, "Target reached, momentum neutral", 5, None, None
                return ManagementAction.PARTIAL_CLOSE, "Partial profit - momentum slowing", 4, None, 50.0
            if pnl >= thresholds.quick:
                new_sl = self._trail(position, tick, env)
                if new_sl is not None:
                    return ManagementAction.TRAIL_STOP, "Trailing stop for scalp", 3, new_sl, None

        elif mode is Personality.TREND:
            if momentum is Momentum.AGAINST and edge.score >= 60:
                if pnl >= thresholds.target:
                    return ManagementAction.CLOSE, "Trend reversal signal, banking profits", 5, None, None
                return (ManagementAction.PARTIAL_CLOSE, "Reversal signal - protect partial profit",
                        4, None, 50.0)
            if pnl >= thresholds.quick:
                new_sl = self._trail(position, tick, env)
                if new_sl is not None:
                    return ManagementAction.TRAIL_STOP, "Wide trailing stop for trend", 2, new_sl, None

        return ManagementAction.HOLD, "Position performing well, maintaining", 0, None, None

    def _stagnant(self, position, env, edge, pnl, minutes):
        if minutes <= self.STAGNANT_MINUTES[position.mode] or abs(pnl) >= self.STAGNANT_PNL:
            return ManagementAction.HOLD, "Trade not stagnant", 0, None, None
        if edge.score < 40:
            return ManagementAction.CLOSE, "Stagnant trade with degraded edge", 5, None, None
        if env.confidence < 0.4:
            return ManagementAction.CLOSE, "Stagnant trade, poor environment", 4, None, None
        return ManagementAction.HOLD, "Stagnant but edge intact", 0, None, None

    # ========================================================================
    # PORTFOLIO
    # ========================================================================

    def manage_positions(
        self,
        positions: Sequence[Position],
        ticks: Dict[str, PriceTick],
        environments: Dict[str, EnvironmentSummary],
        edges: Dict[str, EdgeSignal],
        now: datetime,
    ) -> List[ManagementDecision]:
        """Decisions for every position with full data, highest priority first."""
        decisions = []
        for position in positions:
            tick = ticks.get(position.symbol)
            env = environments.get(position.symbol)
            edge = edges.get(position.symbol)
            if tick is None or env is None or edge is None:
                continue
            decisions.append(self.analyze(position, tick, env, edge, now))

        decisions.sort(key=lambda d: d.priority, reverse=True)
        return decisions

    def apply(
        self,
        positions: Sequence[Position],
        decisions: Sequence[ManagementDecision],
        ticks: Dict[str, PriceTick],
        now: datetime,
        log: Optional[EngineLogBook] = None,
    ) -> ManagementResult:
        """Apply decisions in priority order. Inputs are left untouched."""
        by_id = {p.id: p for p in positions}
        closed: List[ClosedTrade] = []

        for decision in decisions:
            position = by_id.get(decision.position_id)
            if position is None or decision.is_hold:
                continue
            tick = ticks[position.symbol]
            exit_price = tick.exit_price(position.side)

            if decision.action is ManagementAction.CLOSE:
                closed.append(ClosedTrade.from_position(
                    position, exit_price, now, CloseReason.MANAGEMENT_CLOSE,
                ))
                del by_id[position.id]
                if log:
                    log.info(
                        "management",
                        f"Closing {position.symbol} {position.side.value}: {decision.reason}",
                        {"position_id": position.id, "pnl_percent": round(decision.pnl_percent, 4)},
                    )

            elif decision.action is ManagementAction.PARTIAL_CLOSE:
                closed_size = position.size * (decision.close_percent or 0) / 100
                if closed_size <= 0 or closed_size >= position.size:
                    continue
                closed.append(ClosedTrade.from_position(
                    position, exit_price, now, CloseReason.PARTIAL_CLOSE, size=closed_size,
                ))
                by_id[position.id] = replace(position, size=position.size - closed_size).with_mark(tick)
                if log:
                    log.info(
                        "management",
                        f"Partial close {decision.close_percent:.0f}% of {position.symbol}: {decision.reason}",
                        {"position_id": position.id},
                    )

            elif decision.action is ManagementAction.TRAIL_STOP:
                if decision.new_sl is None or not is_tighter(position, decision.new_sl):
                    continue
                by_id[position.id] = replace(position, sl=decision.new_sl)
                if log:
                    log.info(
                        "management",
                        f"Trailing stop on {position.symbol}: {decision.reason}",
                        {"position_id": position.id, "new_sl": decision.new_sl},
                    )

        # Keep the input ordering
        surviving = [by_id[p.id] for p in positions if p.id in by_id]
        return ManagementResult(positions=surviving, closed=closed, decisions=list(decisions))

    def rotation_candidates(
        self,
        positions: Sequence[Position],
        ticks: Dict[str, PriceTick],
        edges: Dict[str, EdgeSignal],
        now: datetime,
    ) -> List[Position]:
        """Stagnant, low-edge positions whose slot could be reused."""
        candidates = []
        for position in positions:
            tick = ticks.get(position.symbol)
            edge = edges.get(position.symbol)
            if tick is None or edge is None:
                continue
            stagnant = (
                position.age_minutes(now) > self.ROTATION_MINUTES
                and abs(pnl_percent(position, tick)) < self.ROTATION_PNL
            )
            if stagnant and edge.score < self.ROTATION_EDGE:
                candidates.append(position)
        return candidates
