"""
Thermostat - Aggression Controller

Three-level hysteretic controller (LOW / MEDIUM / HIGH) driven by recent
closed-trade performance and the quality of the current environments.

SCORING (start 50):
- Win rate  >= 65 → +20      <= 40 → -25
- Avg R:R   >= 2  → +15      <  1  → -20
- Env conf  >= .7 → +15      < .4  → -20
- Win streak >= 5 → +10      loss streak >= 3 → -25

LEVEL:
- score >= 70 → HIGH, score <= 35 → LOW, else MEDIUM
- Never moves more than one level per cycle

VETO:
- Loss streak >= 7 or mean environment confidence < 0.2
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence
from enum import Enum

from .config import ThermostatConfig
from .models import ClosedTrade
from .environment import EnvironmentSummary


class AggressionLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


LEVEL_ORDER = [AggressionLevel.LOW, AggressionLevel.MEDIUM, AggressionLevel.HIGH]


@dataclass(frozen=True)
class Streak:
    type: str       # win / loss / mixed
    length: int


@dataclass(frozen=True)
class ThermostatMultipliers:
    size: float
    entry_threshold: float
    frequency: float


@dataclass(frozen=True)
class ThermostatState:
    """Thermostat output. Persists across cycles in the engine session."""
    aggression_level: AggressionLevel
    confidence: float
    recent_win_rate: float
    recent_rr: float
    avg_environment_quality: float
    streak: Streak
    reason: str
    last_updated: Optional[datetime] = None

    @property
    def multipliers(self) -> ThermostatMultipliers:
        if self.aggression_level is AggressionLevel.HIGH:
            return ThermostatMultipliers(size=1.3, entry_threshold=0.9, frequency=1.2)
        if self.aggression_level is AggressionLevel.LOW:
            return ThermostatMultipliers(size=0.7, entry_threshold=1.2, frequency=0.7)
        return ThermostatMultipliers(size=1.0, entry_threshold=1.0, frequency=1.0)

    def allows_trading(self) -> bool:
        """Only extreme conditions stop trading; low aggression still trades."""
        if self.streak.type == "loss" and self.streak.length >= 7:
            return False
        if self.avg_environment_quality < 0.2:
            return False
        return True

    def to_dict(self) -> dict:
        data = asdict(self)
        data["aggression_level"] = self.aggression_level.value
        data["last_updated"] = self.last_updated.isoformat() if self.last_updated else None
        return data


def initial_state() -> ThermostatState:
    return ThermostatState(
        aggression_level=AggressionLevel.MEDIUM,
        confidence=0.5,
        recent_win_rate=50.0,
        recent_rr=1.5,
        avg_environment_quality=0.5,
        streak=Streak("mixed", 0),
        reason="Initial state",
    )


class Thermostat:
    """
    Aggression controller.

    Stateless itself: the previous output is passed in by the caller
    (held by EngineSession.thermostat_state).
    """

    HIGH_SCORE = 70
    LOW_SCORE = 35
    MAX_STEP = 1                # Levels per cycle

    def __init__(
        self,
        config: Optional[ThermostatConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ThermostatConfig()
        self.logger = logger or logging.getLogger(__name__)

    def update(
        self,
        trades: Sequence[ClosedTrade],
        environments: Dict[str, EnvironmentSummary],
        now: datetime,
        previous: Optional[ThermostatState] = None,
    ) -> ThermostatState:
        window = self._recent(trades, now)
        win_rate = self._win_rate(window)
        rr = self._avg_rr(window)
        env_quality = self._avg_environment_quality(environments)
        streak = self._streak(window)

        score, reasons = self._score(win_rate, rr, env_quality, streak)
        if score >= self.HIGH_SCORE:
            target = AggressionLevel.HIGH
        elif score <= self.LOW_SCORE:
            target = AggressionLevel.LOW
        else:
            target = AggressionLevel.MEDIUM

        level = self._clamp(target, previous)
        if previous is not None and level is not previous.aggression_level:
            self.logger.info(
                f"Thermostat {previous.aggression_level.value} -> {level.value} "
                f"(score {score}, {', '.join(reasons) or 'normal conditions'})"
            )

        min_trades = self.config.min_trades_for_adjustment
        confidence = 0.5
        if len(window) >= min_trades * 2:
            confidence += 0.3
        elif len(window) >= min_trades:
            confidence += 0.1
        if env_quality > 0.6:
            confidence += 0.1
        if abs(win_rate - 50) > 15:
            confidence += 0.1

        return ThermostatState(
            aggression_level=level,
            confidence=min(1.0, confidence),
            recent_win_rate=win_rate,
            recent_rr=rr,
            avg_environment_quality=env_quality,
            streak=streak,
            reason=", ".join(reasons) if reasons else "Normal conditions",
            last_updated=now,
        )

    def _clamp(self, target: AggressionLevel, previous: Optional[ThermostatState]) -> AggressionLevel:
        if previous is None:
            return target
        prev_index = LEVEL_ORDER.index(previous.aggression_level)
        new_index = LEVEL_ORDER.index(target)
        if abs(new_index - prev_index) > self.MAX_STEP:
            new_index = prev_index + (self.MAX_STEP if new_index > prev_index else -self.MAX_STEP)
        return LEVEL_ORDER[new_index]

    def _score(self, win_rate: float, rr: float, env_quality: float, streak: Streak):
        score = 50
        reasons: List[str] = []

        if win_rate >= self.config.win_rate_high:
            score += 20
            reasons.append("High win rate")
        elif win_rate <= self.config.win_rate_low:
            score -= 25
            reasons.append("Low win rate")

        if rr >= 2.0:
            score += 15
            reasons.append("Good R:R")
        elif rr < 1.0:
            score -= 20
            reasons.append("Poor R:R")

        if env_quality >= 0.7:
            score += 15
            reasons.append("Quality environments")
        elif env_quality < 0.4:
            score -= 20
            reasons.append("Poor environments")

        if streak.type == "win" and streak.length >= 5:
            score += 10
            reasons.append(f"Win streak ({streak.length})")
        elif streak.type == "loss" and streak.length >= 3:
            score -= 25
            reasons.append(f"Loss streak ({streak.length})")

        return score, reasons

    def _recent(self, trades: Sequence[ClosedTrade], now: datetime) -> List[ClosedTrade]:
        cutoff = now - timedelta(minutes=self.config.window_minutes)
        return [t for t in trades if t.closed_at > cutoff]

    @staticmethod
    def _win_rate(trades: List[ClosedTrade]) -> float:
        if not trades:
            return 50.0
        return sum(1 for t in trades if t.is_win) / len(trades) * 100

    @staticmethod
    def _avg_rr(trades: List[ClosedTrade]) -> float:
        wins = [t.realized_pnl for t in trades if t.realized_pnl > 0]
        losses = [t.realized_pnl for t in trades if t.realized_pnl < 0]
        if not wins or not losses:
            return 1.5
        avg_loss = abs(sum(losses) / len(losses))
        return (sum(wins) / len(wins)) / avg_loss

    @staticmethod
    def _avg_environment_quality(environments: Dict[str, EnvironmentSummary]) -> float:
        if not environments:
            return 0.5
        return sum(e.confidence for e in environments.values()) / len(environments)

    @staticmethod
    def _streak(trades: List[ClosedTrade]) -> Streak:
        if not trades:
            return Streak("mixed", 0)
        ordered = sorted(trades, key=lambda t: t.closed_at, reverse=True)
        first_win = ordered[0].is_win
        length = 1
        for trade in ordered[1:]:
            if trade.is_win != first_win:
                break
            length += 1
        return Streak("win" if first_win else "loss", length)
