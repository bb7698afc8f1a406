"""
Adaptive Mode Controller

Weights the three personalities each cycle and picks the one to trade.

WEIGHT (per personality):
    (environment fit * 0.35 + session fit * 0.25 + performance fit * 0.40)
    x thermostat factor, clamped [0.1, 1], then normalized to sum 1

- Environment fit: averaged across the symbol universe
- Session fit: 0.3 when the session does not recommend the personality
- Performance fit: 120-minute window, neutral below 3 trades
- Thermostat: LOW → burst 0.7, trend 1.1; HIGH → burst 1.2

A pinned selection bypasses the choice but still reports weights.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .models import ClosedTrade, Personality, MarketState, VolState, LiquidityState
from .environment import EnvironmentSummary
from .session_brain import SessionInfo
from .thermostat import AggressionLevel


@dataclass(frozen=True)
class ModeWeight:
    personality: Personality
    weight: float
    reason: str


@dataclass(frozen=True)
class ModePerformance:
    personality: Personality
    trades: int
    win_rate: float
    avg_pnl: float


@dataclass(frozen=True)
class AdaptiveDecision:
    selected: Personality
    weights: List[ModeWeight]
    is_adaptive: bool
    reason: str
    switched_from: Optional[Personality] = None

    def weight_of(self, personality: Personality) -> float:
        for w in self.weights:
            if w.personality is personality:
                return w.weight
        return 0.0

    def to_dict(self) -> dict:
        return {
            "selected": self.selected.value,
            "weights": {w.personality.value: round(w.weight, 4) for w in self.weights},
            "is_adaptive": self.is_adaptive,
            "reason": self.reason,
        }


class AdaptiveModeController:
    """Personality selection from environment, session, performance and thermostat."""

    PERFORMANCE_WINDOW_MINUTES = 120
    MIN_TRADES = 3

    ENV_WEIGHT = 0.35
    SESSION_WEIGHT = 0.25
    PERFORMANCE_WEIGHT = 0.40

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    # ========================================================================
    # FITS
    # ========================================================================

    @staticmethod
    def environment_fit(env: EnvironmentSummary, personality: Personality) -> float:
        fit = 0.5
        market, vol = env.market_state, env.vol_state

        if personality is Personality.BURST:
            if vol is VolState.EXPANSION:
                fit += 0.2
            if market is MarketState.TREND_CLEAN:
                fit += 0.15
            if market is MarketState.TREND_MESSY:
                fit += 0.05
            if vol is VolState.SPIKE:
                fit -= 0.2
            if market is MarketState.DEAD:
                fit -= 0.3

        elif personality is Personality.SCALPER:
            if vol is VolState.COMPRESSION:
                fit += 0.2
            if market is MarketState.RANGE_TRADEABLE:
                fit += 0.15
            if market is MarketState.TREND_MESSY:
                fit += 0.1
            if vol is VolState.SPIKE:
                fit -= 0.15
            if market is MarketState.CHAOS:
                fit -= 0.25

        elif personality is Personality.TREND:
            if market is MarketState.TREND_CLEAN:
                fit += 0.3
            if market is MarketState.TREND_MESSY:
                fit += 0.1
            if vol is VolState.EXPANSION:
                fit += 0.1
            if market is MarketState.RANGE_TRADEABLE:
                fit -= 0.1
            if market is MarketState.RANGE_TRAP:
                fit -= 0.2
            if market is MarketState.CHAOS:
                fit -= 0.3

        if env.liquidity_state is LiquidityState.BROKEN:
            fit -= 0.4
        elif env.liquidity_state is LiquidityState.THIN:
            fit -= 0.15

        return max(0.0, min(1.0, fit))

    @staticmethod
    def session_fit(session: SessionInfo, personality: Personality) -> float:
        if not session.recommends(personality):
            return 0.3

        fit = 0.5
        if personality is Personality.BURST:
            if session.quality >= 0.9:
                fit += 0.3
            elif session.quality >= 0.7:
                fit += 0.15
            elif session.quality < 0.5:
                fit -= 0.2
            if session.volatility_expected == "high":
                fit += 0.1
        elif personality is Personality.SCALPER:
            if session.quality >= 0.6:
                fit += 0.2
            if session.spread_expected == "tight":
                fit += 0.1
        elif personality is Personality.TREND:
            if session.quality >= 0.8:
                fit += 0.2
            if session.volatility_expected == "normal":
                fit += 0.1

        return max(0.0, min(1.0, fit))

    def performance(
        self,
        trades: Sequence[ClosedTrade],
        now: datetime,
    ) -> Dict[Personality, ModePerformance]:
        cutoff = now - timedelta(minutes=self.PERFORMANCE_WINDOW_MINUTES)
        recent = [t for t in trades if t.closed_at > cutoff]

        result = {p: ModePerformance(p, 0, 50.0, 0.0) for p in Personality}
        if not recent:
            return result

        df = pd.DataFrame({
            "mode": [t.mode.value for t in recent],
            "pnl": [t.realized_pnl for t in recent],
        })
        df["win"] = df["pnl"] > 0
        grouped = df.groupby("mode").agg(
            trades=("pnl", "size"),
            win_rate=("win", "mean"),
            avg_pnl=("pnl", "mean"),
        )

        for mode, row in grouped.iterrows():
            personality = Personality(mode)
            result[personality] = ModePerformance(
                personality=personality,
                trades=int(row["trades"]),
                win_rate=float(row["win_rate"]) * 100,
                avg_pnl=float(row["avg_pnl"]),
            )
        return result

    def performance_fit(self, perf: ModePerformance) -> float:
        if perf.trades < self.MIN_TRADES:
            return 0.5

        fit = 0.5
        if perf.win_rate >= 65:
            fit += 0.25
        elif perf.win_rate >= 55:
            fit += 0.1
        elif perf.win_rate <= 40:
            fit -= 0.2
        elif perf.win_rate <= 50:
            fit -= 0.1

        if perf.avg_pnl > 0:
            fit += 0.15
        elif perf.avg_pnl < 0:
            fit -= 0.15

        return max(0.0, min(1.0, fit))

    @staticmethod
    def thermostat_factor(aggression: AggressionLevel, personality: Personality) -> float:
        if aggression is AggressionLevel.LOW:
            if personality is Personality.BURST:
                return 0.7
            if personality is Personality.TREND:
                return 1.1
        elif aggression is AggressionLevel.HIGH and personality is Personality.BURST:
            return 1.2
        return 1.0

    # ========================================================================
    # SELECTION
    # ========================================================================

    def weights(
        self,
        environments: Dict[str, EnvironmentSummary],
        session: SessionInfo,
        aggression: AggressionLevel,
        trades: Sequence[ClosedTrade],
        now: datetime,
    ) -> List[ModeWeight]:
        """Normalized weights, highest first."""
        performance = self.performance(trades, now)
        envs = list(environments.values())

        raw: List[ModeWeight] = []
        for personality in Personality:
            if envs:
                env_fit = sum(self.environment_fit(e, personality) for e in envs) / len(envs)
            else:
                env_fit = 0.5
            session_fit = self.session_fit(session, personality)
            perf_fit = self.performance_fit(performance[personality])

            base = (
                env_fit * self.ENV_WEIGHT
                + session_fit * self.SESSION_WEIGHT
                + perf_fit * self.PERFORMANCE_WEIGHT
            ) * self.thermostat_factor(aggression, personality)

            reasons = [
                name for name, value in (("env", env_fit), ("session", session_fit), ("perf", perf_fit))
                if value > 0.6
            ]
            raw.append(ModeWeight(
                personality=personality,
                weight=max(0.1, min(1.0, base)),
                reason=f"Fits {', '.join(reasons)}" if reasons else "Base allocation",
            ))

        total = sum(w.weight for w in raw)
        normalized = [ModeWeight(w.personality, w.weight / total, w.reason) for w in raw]
        return sorted(normalized, key=lambda w: w.weight, reverse=True)

    def select(
        self,
        selection: str,
        environments: Dict[str, EnvironmentSummary],
        session: SessionInfo,
        aggression: AggressionLevel,
        trades: Sequence[ClosedTrade],
        now: datetime,
        previous: Optional[Personality] = None,
    ) -> AdaptiveDecision:
        weights = self.weights(environments, session, aggression, trades, now)

        if selection != "adaptive":
            pinned = Personality(selection)
            return AdaptiveDecision(
                selected=pinned,
                weights=weights,
                is_adaptive=False,
                reason=f"User selected {pinned.value} mode",
            )

        best = weights[0]
        reason = f"{best.personality.value} selected"
        if best.weight > 0.5:
            reason += " (strong fit)"
        elif best.weight < 0.35:
            reason += " (marginal conditions)"
        if len(weights) >= 2 and best.weight - weights[1].weight < 0.1:
            reason += f" (close to {weights[1].personality.value})"

        switched = previous if previous is not None and previous is not best.personality else None
        if switched is not None:
            self.logger.info(f"Adaptive mode switch: {switched.value} -> {best.personality.value}")

        return AdaptiveDecision(
            selected=best.personality,
            weights=weights,
            is_adaptive=True,
            reason=reason,
            switched_from=switched,
        )

    def mode_for_trade(
        self,
        env: EnvironmentSummary,
        session: SessionInfo,
        decision: AdaptiveDecision,
    ) -> Personality:
        """Per-symbol personality: global weights blended with the symbol's own fit."""
        if not decision.is_adaptive:
            return decision.selected

        best = decision.selected
        best_score = 0.0
        for personality in Personality:
            score = (
                self.environment_fit(env, personality) * 0.4
                + self.session_fit(session, personality) * 0.2
                + decision.weight_of(personality) * 0.4
            )
            if score > best_score:
                best_score = score
                best = personality
        return best
