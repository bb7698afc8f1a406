"""
P&L - Marking, Exits and Session Stats

- mark_to_market: unrealized P&L from the exit side of the book (idempotent)
- check_exits: static SL/TP, stop checked before target
- close_positions: forced close at bid/ask (entry price when no tick)
- calculate_stats: day aggregates and burst status
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from .models import (
    PriceTick, Position, ClosedTrade, Side, Personality,
    CloseReason, BurstStatus, SessionStats,
)
from .logging_module import EngineLogBook


def mark_to_market(positions: Sequence[Position], ticks: Dict[str, PriceTick]) -> List[Position]:
    """Recompute unrealized P&L. Positions without a tick are returned unchanged."""
    marked = []
    for position in positions:
        tick = ticks.get(position.symbol)
        marked.append(position.with_mark(tick) if tick else position)
    return marked


def _exit_hit(position: Position, tick: PriceTick) -> Tuple[Optional[CloseReason], float]:
    if position.side is Side.LONG:
        if tick.bid <= position.sl:
            return CloseReason.SL_HIT, position.sl
        if tick.bid >= position.tp:
            return CloseReason.TP_HIT, position.tp
    else:
        if tick.ask >= position.sl:
            return CloseReason.SL_HIT, position.sl
        if tick.ask <= position.tp:
            return CloseReason.TP_HIT, position.tp
    return None, 0.0


def check_exits(
    positions: Sequence[Position],
    ticks: Dict[str, PriceTick],
    now: datetime,
    log: Optional[EngineLogBook] = None,
) -> Tuple[List[Position], List[ClosedTrade]]:
    """Close positions whose stop or target was touched, filled at that level."""
    remaining: List[Position] = []
    closed: List[ClosedTrade] = []

    for position in positions:
        tick = ticks.get(position.symbol)
        if tick is None:
            remaining.append(position)
            continue

        reason, exit_price = _exit_hit(position, tick)
        if reason is None:
            remaining.append(position)
            continue

        trade = ClosedTrade.from_position(position, exit_price, now, reason)
        closed.append(trade)
        if log:
            sign = "+" if trade.realized_pnl >= 0 else ""
            log_fn = log.info if trade.realized_pnl >= 0 else log.warning
            log_fn(
                f"mode:{position.mode.value}",
                f"{position.symbol} {position.side.value} closed: {reason.value} | "
                f"P&L: {sign}{trade.realized_pnl:.2f}",
                {"trade_id": position.id, "pnl": trade.realized_pnl},
            )

    return remaining, closed


def close_positions(
    positions: Sequence[Position],
    ticks: Dict[str, PriceTick],
    reason: CloseReason,
    now: datetime,
    log: Optional[EngineLogBook] = None,
) -> List[ClosedTrade]:
    """Unconditionally close every given position."""
    closed = []
    for position in positions:
        tick = ticks.get(position.symbol)
        exit_price = tick.exit_price(position.side) if tick else position.entry_price
        closed.append(ClosedTrade.from_position(position, exit_price, now, reason))

    if log:
        total = sum(t.realized_pnl for t in closed)
        sign = "+" if total >= 0 else ""
        log.info(
            "execution",
            f"{reason.value}: Closed {len(closed)} positions | Total P&L: {sign}{total:.2f}",
            {"count": len(closed), "total_pnl": total},
        )
    return closed


def _max_drawdown(trades: Sequence[ClosedTrade]) -> float:
    """Largest peak-to-trough drop of cumulative realized P&L (peak starts at 0)."""
    if not trades:
        return 0.0
    pnl = pd.Series(
        [t.realized_pnl for t in trades],
        index=pd.Index([t.closed_at for t in trades]),
    ).sort_index(kind="mergesort")
    running = pnl.cumsum()
    peak = running.cummax().clip(lower=0.0)
    return float((peak - running).max())


def calculate_stats(
    positions: Sequence[Position],
    today_trades: Sequence[ClosedTrade],
    starting_equity: float,
    burst_target_percent: float = 8.0,
) -> SessionStats:
    realized = sum(t.realized_pnl for t in today_trades)
    unrealized = sum(p.unrealized_pnl for p in positions)
    today_pnl = realized + unrealized
    today_pnl_pct = today_pnl / starting_equity * 100 if starting_equity > 0 else 0.0

    count = len(today_trades)
    wins = [t.realized_pnl for t in today_trades if t.realized_pnl > 0]
    losses = [t.realized_pnl for t in today_trades if t.realized_pnl < 0]
    win_rate = len(wins) / count * 100 if count else 0.0

    avg_win = sum(wins) / max(len(wins), 1)
    avg_loss = abs(sum(losses)) / max(len(losses), 1)
    avg_rr = avg_win / avg_loss if avg_loss > 0 else 1.5

    drawdown = _max_drawdown(today_trades)

    burst_trades = [t for t in today_trades if t.mode is Personality.BURST]
    burst_pnl = sum(t.realized_pnl for t in burst_trades)
    burst_pnl_pct = burst_pnl / starting_equity * 100 if starting_equity > 0 else 0.0
    bursts = len({t.batch_id for t in burst_trades if t.batch_id})

    if burst_pnl_pct >= burst_target_percent:
        status = BurstStatus.LOCKED
    elif any(p.mode is Personality.BURST for p in positions):
        status = BurstStatus.RUNNING
    else:
        status = BurstStatus.IDLE

    return SessionStats(
        equity=starting_equity + today_pnl,
        today_pnl=today_pnl,
        today_pnl_percent=today_pnl_pct,
        win_rate=win_rate,
        avg_rr=round(avg_rr, 1),
        trades_today=count,
        max_drawdown=drawdown / starting_equity * 100 if starting_equity > 0 else 0.0,
        open_positions_count=len(positions),
        burst_pnl_today=burst_pnl_pct,
        bursts_today=bursts,
        burst_status=status,
    )
