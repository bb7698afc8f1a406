"""
Session-Timing Brain

Wall-clock → session phase, trading adjustments and event proximity.

SESSION DEFINITIONS (UTC, weekdays):
- Early Asia:       00:00 - 03:00  quality 0.50  scalper
- Late Asia:        03:00 - 07:00  quality 0.55  scalper, trend
- London Open:      07:00 - 08:30  quality 0.80  burst, trend
- London Session:   08:30 - 13:00  quality 0.90  all
- London/NY Overlap 13:00 - 16:00  quality 1.00  all
- NY Session:       16:00 - 20:00  quality 0.85  all
- Late NY:          20:00 - 22:00  quality 0.60  scalper, trend
- Off Hours:        22:00 - 00:00  quality 0.30  scalper
- Weekend:          all day        quality 0.10  none

ADJUSTMENTS (from quality q):
- Entry threshold: q < 0.5 → 1.3, < 0.7 → 1.1, < 0.9 → 1.0, else 0.95
- Size:            q < 0.5 → 0.6, < 0.7 → 0.8, < 0.9 → 1.0, else 1.1
- TP:              high expected volatility 1.3, low 0.7

EVENTS:
- Fixed calendar windows (NFP, FOMC, ECB); reduce exposure when a
  high-impact release is <= 30 minutes away

The clock is always passed in. Nothing here reads wall time.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from enum import Enum

from .config import SessionTableConfig, MarketEvent
from .models import Personality


class Aggressiveness(Enum):
    CONSERVATIVE = "conservative"
    NORMAL = "normal"
    AGGRESSIVE = "aggressive"


@dataclass(frozen=True)
class SessionInfo:
    """Immutable session classification."""
    phase: str
    name: str
    quality: float
    volatility_expected: str
    spread_expected: str
    recommended_modes: Tuple[Personality, ...]

    def recommends(self, mode: Personality) -> bool:
        return mode in self.recommended_modes

    def to_dict(self) -> dict:
        return {
            "phase": self.phase,
            "name": self.name,
            "quality": self.quality,
            "volatility_expected": self.volatility_expected,
            "spread_expected": self.spread_expected,
            "recommended_modes": [m.value for m in self.recommended_modes],
        }


@dataclass(frozen=True)
class SessionAdjustments:
    entry_threshold_multiplier: float
    size_multiplier: float
    tp_multiplier: float
    aggressiveness: Aggressiveness


@dataclass(frozen=True)
class EventProximity:
    near_event: bool
    event: Optional[MarketEvent] = None
    minutes_until: Optional[float] = None   # None once the release has passed

    @property
    def event_name(self) -> Optional[str]:
        return self.event.name if self.event else None

    @property
    def impact(self) -> Optional[str]:
        return self.event.impact if self.event else None


@dataclass(frozen=True)
class SessionAnalysis:
    session: SessionInfo
    adjustments: SessionAdjustments
    event_check: EventProximity
    should_reduce_exposure: bool


class SessionBrain:
    """
    Session timing classifier.

    All tables come from SessionTableConfig.
    """

    def __init__(self, tables: Optional[SessionTableConfig] = None):
        self.tables = tables or SessionTableConfig()

    def current_session(self, now: datetime) -> SessionInfo:
        # Saturday / Sunday
        if now.weekday() >= 5:
            return SessionInfo(
                phase="off_hours",
                name="Weekend",
                quality=self.tables.weekend_quality,
                volatility_expected="low",
                spread_expected="wide",
                recommended_modes=(),
            )

        minute_of_day = now.hour * 60 + now.minute
        for spec in self.tables.phases:
            if spec.start_minute <= minute_of_day < spec.end_minute:
                return SessionInfo(
                    phase=spec.phase,
                    name=spec.name or spec.phase,
                    quality=spec.quality,
                    volatility_expected=spec.volatility,
                    spread_expected=spec.spread,
                    recommended_modes=tuple(Personality(m) for m in spec.modes),
                )

        return SessionInfo(
            phase="off_hours",
            name="Off Hours",
            quality=self.tables.off_hours_quality,
            volatility_expected="low",
            spread_expected="wide",
            recommended_modes=(Personality.SCALPER,),
        )

    def adjustments(self, session: SessionInfo) -> SessionAdjustments:
        q = session.quality

        if q < 0.5:
            entry, size = 1.3, 0.6
        elif q < 0.7:
            entry, size = 1.1, 0.8
        elif q < 0.9:
            entry, size = 1.0, 1.0
        else:
            entry, size = 0.95, 1.1

        tp = 1.0
        if session.volatility_expected == "high":
            tp = 1.3
        elif session.volatility_expected == "low":
            tp = 0.7

        aggressiveness = Aggressiveness.NORMAL
        if q >= 0.9 and session.volatility_expected != "low":
            aggressiveness = Aggressiveness.AGGRESSIVE
        elif q < 0.6 or session.spread_expected == "wide":
            aggressiveness = Aggressiveness.CONSERVATIVE

        return SessionAdjustments(entry, size, tp, aggressiveness)

    def check_event_proximity(self, now: datetime) -> EventProximity:
        minute_of_day = now.hour * 60 + now.minute + now.second / 60

        for event in self.tables.events:
            if now.weekday() != event.weekday:
                continue
            if event.first_week_only and now.day > 7:
                continue

            release = event.hour * 60 + event.minute
            delta = release - minute_of_day
            if -event.tail_minutes <= delta <= event.lead_minutes:
                return EventProximity(
                    near_event=True,
                    event=event,
                    minutes_until=delta if delta >= 0 else None,
                )

        return EventProximity(near_event=False)

    def analyze(self, now: datetime) -> SessionAnalysis:
        session = self.current_session(now)
        event_check = self.check_event_proximity(now)

        reduce = (
            event_check.near_event
            and event_check.event is not None
            and event_check.event.impact == "high"
            and event_check.minutes_until is not None
            and event_check.minutes_until <= self.tables.reduce_exposure_minutes
        )

        return SessionAnalysis(
            session=session,
            adjustments=self.adjustments(session),
            event_check=event_check,
            should_reduce_exposure=reduce,
        )
