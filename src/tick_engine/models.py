"""
Core Records

Ticks, positions, closed trades, proposed orders, audit logs and the
per-cycle engine state.

All records are immutable. A position that changes (new stop, new mark)
is replaced with a new instance; entry price never changes.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, date
from typing import Optional, List, Dict, Any
from enum import Enum


class Side(Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def opposite(self) -> 'Side':
        return Side.SHORT if self is Side.LONG else Side.LONG


class Personality(Enum):
    """Trading personality (closed set)."""
    BURST = "burst"
    SCALPER = "scalper"
    TREND = "trend"


class MarketState(Enum):
    TREND_CLEAN = "trend_clean"
    TREND_MESSY = "trend_messy"
    RANGE_TRADEABLE = "range_tradeable"
    RANGE_TRAP = "range_trap"
    CHAOS = "chaos"
    DEAD = "dead"


class VolState(Enum):
    EXPANSION = "expansion"
    COMPRESSION = "compression"
    EXHAUSTION = "exhaustion"
    SPIKE = "spike"


class LiquidityState(Enum):
    NORMAL = "normal"
    THIN = "thin"
    BROKEN = "broken"


class LogLevel(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class CloseReason(Enum):
    SL_HIT = "sl_hit"
    TP_HIT = "tp_hit"
    MANAGEMENT_CLOSE = "management_close"
    PARTIAL_CLOSE = "partial_close"
    RISK_HALT = "risk_halt"
    GLOBAL_CLOSE = "global_close"
    TAKE_BURST_PROFIT = "take_burst_profit"


class BurstStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    LOCKED = "locked"


@dataclass(frozen=True)
class PriceTick:
    """One price update for a symbol."""
    symbol: str
    bid: float
    ask: float
    mid: float
    timestamp: datetime
    volatility: Optional[float] = None   # Feed-supplied hint
    regime: Optional[str] = None         # Feed-supplied hint

    def __post_init__(self):
        if self.bid <= 0 or self.ask <= 0:
            raise ValueError(f"{self.symbol}: prices must be positive (bid={self.bid}, ask={self.ask})")
        if self.ask < self.bid:
            raise ValueError(f"{self.symbol}: ask {self.ask} below bid {self.bid}")

    @classmethod
    def from_quote(cls, symbol: str, bid: float, ask: float, timestamp: datetime) -> 'PriceTick':
        return cls(symbol=symbol, bid=bid, ask=ask, mid=(bid + ask) / 2, timestamp=timestamp)

    @property
    def spread(self) -> float:
        return self.ask - self.bid

    def exit_price(self, side: Side) -> float:
        """Price a position on this side would be closed at."""
        return self.bid if side is Side.LONG else self.ask


def price_diff(side: Side, entry_price: float, exit_price: float) -> float:
    """Signed per-unit move in favour of the position."""
    if side is Side.LONG:
        return exit_price - entry_price
    return entry_price - exit_price


@dataclass(frozen=True)
class Position:
    """Open position."""
    id: str
    symbol: str
    mode: Personality
    side: Side
    size: float
    entry_price: float
    sl: float
    tp: float
    opened_at: datetime
    owner: str = "paper"
    unrealized_pnl: float = 0.0
    batch_id: Optional[str] = None

    def __post_init__(self):
        if self.size <= 0:
            raise ValueError(f"position {self.id}: size must be > 0 (got {self.size})")

    @property
    def notional(self) -> float:
        return self.size * self.entry_price

    def exposure_percent(self, equity: float) -> float:
        """Position value as % of equity."""
        if equity <= 0:
            return 100.0
        return self.notional / equity * 100

    def age_minutes(self, now: datetime) -> float:
        return (now - self.opened_at).total_seconds() / 60

    def with_mark(self, tick: PriceTick) -> 'Position':
        pnl = price_diff(self.side, self.entry_price, tick.exit_price(self.side)) * self.size
        return replace(self, unrealized_pnl=pnl)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "symbol": self.symbol,
            "mode": self.mode.value,
            "side": self.side.value,
            "size": self.size,
            "entry_price": self.entry_price,
            "sl": self.sl,
            "tp": self.tp,
            "opened_at": self.opened_at.isoformat(),
            "unrealized_pnl": self.unrealized_pnl,
            "batch_id": self.batch_id,
        }


@dataclass(frozen=True)
class ClosedTrade:
    """Realized trade."""
    id: str
    symbol: str
    mode: Personality
    side: Side
    size: float
    entry_price: float
    exit_price: float
    sl: float
    tp: float
    opened_at: datetime
    closed_at: datetime
    realized_pnl: float
    reason: CloseReason
    session_date: date
    owner: str = "paper"
    batch_id: Optional[str] = None

    @classmethod
    def from_position(
        cls,
        position: Position,
        exit_price: float,
        closed_at: datetime,
        reason: CloseReason,
        size: Optional[float] = None,
    ) -> 'ClosedTrade':
        """Close all (or `size` units) of a position at exit_price."""
        closed_size = position.size if size is None else size
        pnl = price_diff(position.side, position.entry_price, exit_price) * closed_size
        return cls(
            id=position.id,
            symbol=position.symbol,
            mode=position.mode,
            side=position.side,
            size=closed_size,
            entry_price=position.entry_price,
            exit_price=exit_price,
            sl=position.sl,
            tp=position.tp,
            opened_at=position.opened_at,
            closed_at=closed_at,
            realized_pnl=pnl,
            reason=reason,
            session_date=closed_at.date(),
            owner=position.owner,
            batch_id=position.batch_id,
        )

    @property
    def is_win(self) -> bool:
        return self.realized_pnl > 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner": self.owner,
            "symbol": self.symbol,
            "mode": self.mode.value,
            "side": self.side.value,
            "size": self.size,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "sl": self.sl,
            "tp": self.tp,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "realized_pnl": self.realized_pnl,
            "reason": self.reason.value,
            "session_date": self.session_date.isoformat(),
            "batch_id": self.batch_id,
        }


@dataclass(frozen=True)
class ProposedOrder:
    """Order awaiting risk admission."""
    symbol: str
    side: Side
    size: float
    entry_price: float
    sl: float
    tp: float
    mode: Personality
    reason: str
    confidence: float = 0.0
    batch_id: Optional[str] = None

    def exposure_percent(self, equity: float) -> float:
        if equity <= 0:
            return 100.0
        return self.size * self.entry_price / equity * 100


@dataclass(frozen=True)
class SystemLog:
    """Structured audit record handed to the persistence layer."""
    level: LogLevel
    source: str
    message: str
    created_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "source": self.source,
            "message": self.message,
            "meta": dict(self.meta),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class SessionStats:
    """Aggregate stats for the trading day."""
    equity: float
    today_pnl: float
    today_pnl_percent: float
    win_rate: float
    avg_rr: float
    trades_today: int
    max_drawdown: float
    open_positions_count: int
    burst_pnl_today: float
    bursts_today: int
    burst_status: BurstStatus

    def to_dict(self) -> dict:
        return {
            "equity": self.equity,
            "today_pnl": self.today_pnl,
            "today_pnl_percent": self.today_pnl_percent,
            "win_rate": self.win_rate,
            "avg_rr": self.avg_rr,
            "trades_today": self.trades_today,
            "max_drawdown": self.max_drawdown,
            "open_positions_count": self.open_positions_count,
            "burst_pnl_today": self.burst_pnl_today,
            "bursts_today": self.bursts_today,
            "burst_status": self.burst_status.value,
        }


@dataclass(frozen=True)
class EngineState:
    """Output of one evaluation cycle."""
    positions: List[Position]
    trades: List[ClosedTrade]
    stats: SessionStats
    logs: List[SystemLog]
    halted: bool = False

    def to_dict(self) -> dict:
        return {
            "positions": [p.to_dict() for p in self.positions],
            "trades": [t.to_dict() for t in self.trades],
            "stats": self.stats.to_dict(),
            "logs": [entry.to_dict() for entry in self.logs],
            "halted": self.halted,
        }
