"""
Tick Orchestrator

One evaluation cycle: (positions, trades, ticks, config) → EngineState.

CYCLE ORDER:
1.  Ingest ticks for the configured symbols into history and regime buffers
2.  Environment + Regime + Edge per symbol
3.  Thermostat
4.  Session brain
5.  Market router
6.  Mark to market
7.  Trade management (closes, partial closes, trailing stops)
8.  Static SL / TP exits
9.  Daily loss halt → force close, halted
10. Thermostat veto → no new entries
11. Personality selection (pinned or adaptive)
12. Burst lock check
13. Per candidate: Entry → Bias filter → Sizing
14. Burst batch expansion (when requested)
15. Risk guardrail admission
16. New positions, stats, EngineState

Single-threaded and synchronous. Inputs are never mutated; cross-cycle
state lives in the EngineSession passed in by the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .config import EngineConfig, DEFAULT_CONFIG
from .models import (
    PriceTick, Position, ClosedTrade, ProposedOrder, EngineState,
    Side, Personality, CloseReason,
)
from .context import EngineSession
from .logging_module import EngineLogBook
from .environment import EnvironmentClassifier, EnvironmentSummary
from .edge import EdgeEngine, EdgeSignal
from .regime import RegimeTracker, RegimeSnapshot, BiasFilter
from .session_brain import SessionBrain
from .thermostat import Thermostat, ThermostatState
from .router import MarketRouter
from .entry import EntryEngine
from .sizing import PositionSizer, create_risk_profile, plan_burst_batch
from .management import TradeManager
from .risk_guardrails import RiskGuardrails
from .adaptive import AdaptiveModeController
from .pnl import mark_to_market, check_exits, close_positions, calculate_stats


@dataclass(frozen=True)
class TickInput:
    """Everything one cycle needs from the outside world."""
    ticks: Dict[str, PriceTick]
    positions: Sequence[Position] = ()
    trades: Sequence[ClosedTrade] = ()       # Today's closed trades (older ones are ignored)
    config: EngineConfig = field(default_factory=lambda: DEFAULT_CONFIG)
    starting_equity: float = 10000.0
    now: Optional[datetime] = None

    def clock(self) -> datetime:
        return resolve_clock(self.ticks, self.now)


def resolve_clock(ticks: Dict[str, PriceTick], now: Optional[datetime]) -> datetime:
    """Injected time, else the latest tick timestamp."""
    if now is not None:
        return now
    if not ticks:
        raise ValueError("no clock: pass `now` or at least one tick")
    return max(t.timestamp for t in ticks.values())


class TickOrchestrator:
    """
    Brain-integrated engine.

    Components are built once from the config; all cycle state comes from
    the TickInput and the EngineSession.
    """

    def __init__(self, config: Optional[EngineConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or DEFAULT_CONFIG
        self.logger = logger or logging.getLogger(__name__)
        cfg = self.config

        self.classifier = EnvironmentClassifier()
        self.edge_engine = EdgeEngine(cfg.sessions, cfg.markets)
        self.regime_tracker = RegimeTracker()
        self.bias_filter = BiasFilter(self.logger)
        self.session_brain = SessionBrain(cfg.sessions)
        self.thermostat = Thermostat(cfg.thermostat, self.logger)
        self.router = MarketRouter(cfg.router, cfg.markets, self.logger)
        self.entry_engine = EntryEngine()
        self.sizer = PositionSizer(
            create_risk_profile(
                base_risk_percent=cfg.risk.max_concurrent_risk_percent / 10,
                max_daily_loss_percent=cfg.risk.max_daily_loss_percent,
                max_total_exposure=cfg.risk.max_concurrent_risk_percent,
            ),
            cfg.markets,
        )
        self.manager = TradeManager(self.logger)
        self.guardrails = RiskGuardrails(cfg.risk, self.logger)
        self.adaptive = AdaptiveModeController(self.logger)

    # ========================================================================
    # CYCLE
    # ========================================================================

    def run(self, tick_input: TickInput, session: EngineSession) -> EngineState:
        cfg = self.config
        now = tick_input.clock()
        log = EngineLogBook(now, self.logger)
        session.cycles += 1

        ticks = dict(tick_input.ticks)
        equity0 = tick_input.starting_equity
        prior_trades = list(tick_input.trades)
        today = now.date()
        today_trades = [t for t in prior_trades if t.session_date == today]
        closed: List[ClosedTrade] = []

        if cfg.halted:
            log.warning("risk", "Session is halted; closing open positions, no new entries")
            closed = close_positions(tick_input.positions, ticks, CloseReason.RISK_HALT, now, log) \
                if tick_input.positions else []
            return self._state([], prior_trades, closed, today_trades, equity0, log, halted=True)

        # 1-2. Per-symbol analysis, configured universe only
        universe = {s: t for s, t in ticks.items() if s in cfg.symbols}
        environments, regimes, edges = self._analyze(universe, session, now, log)

        # 3. Thermostat
        thermostat = self.thermostat.update(
            prior_trades, environments, now, session.thermostat_state,
        )
        session.thermostat_state = thermostat

        # 4. Session
        session_view = self.session_brain.analyze(now)
        if session_view.should_reduce_exposure:
            log.warning(
                "session",
                f"High-impact event {session_view.event_check.event_name} in "
                f"{session_view.event_check.minutes_until:.0f} min, reducing exposure",
            )

        # 5. Router
        routing = self.router.route(cfg.symbols, ticks, environments, edges, now)

        # 6-8. Existing positions
        positions = mark_to_market(tick_input.positions, ticks)
        decisions = self.manager.manage_positions(positions, ticks, environments, edges, now)
        managed = self.manager.apply(positions, decisions, ticks, now, log)
        positions = managed.positions
        closed.extend(managed.closed)

        positions, exits = check_exits(positions, ticks, now, log)
        closed.extend(exits)

        if len(positions) >= cfg.risk.max_open_trades:
            rotation = self.manager.rotation_candidates(positions, ticks, edges, now)
            if rotation:
                log.info(
                    "management",
                    f"{len(rotation)} stagnant positions eligible for rotation",
                    {"position_ids": [p.id for p in rotation]},
                )

        # 9. Daily loss halt
        stats = calculate_stats(
            positions, today_trades + closed, equity0, cfg.burst.daily_profit_target_percent,
        )
        if self.guardrails.should_halt(stats.today_pnl_percent):
            log.warning(
                "risk",
                f"Daily loss limit hit ({stats.today_pnl_percent:.2f}% <= "
                f"-{cfg.risk.max_daily_loss_percent}%), halting",
            )
            closed.extend(close_positions(positions, ticks, CloseReason.RISK_HALT, now, log))
            return self._state([], prior_trades, closed, today_trades, equity0, log, halted=True)

        # 10. Thermostat veto
        if not thermostat.allows_trading():
            log.warning("thermostat", f"Trading paused: {thermostat.reason}")
            return self._state(positions, prior_trades, closed, today_trades, equity0, log)

        # 11. Personality
        all_trades = prior_trades + closed
        decision = self.adaptive.select(
            cfg.modes.selection, environments, session_view.session,
            thermostat.aggression_level, all_trades, now, session.last_adaptive_mode,
        )
        if decision.switched_from is not None:
            log.info(
                "adaptive",
                f"Mode switch {decision.switched_from.value} -> {decision.selected.value}: {decision.reason}",
                decision.to_dict(),
            )
        session.last_adaptive_mode = decision.selected

        # 12. Burst lock
        burst_locked = self.guardrails.should_lock_burst(
            stats.burst_pnl_today, cfg.burst.daily_profit_target_percent,
        )
        if burst_locked and cfg.burst_requested:
            log.info("burst", f"Burst locked: daily target {cfg.burst.daily_profit_target_percent}% reached")

        # 13. Candidates
        equity = stats.equity
        orders: List[ProposedOrder] = []
        for symbol in routing.primary_candidates:
            try:
                order = self._evaluate_candidate(
                    symbol, ticks[symbol], environments[symbol], edges[symbol], regimes.get(symbol),
                    decision, session_view, thermostat, positions, all_trades,
                    equity, burst_locked, now, log,
                )
            except Exception as exc:
                self.logger.exception(f"Candidate {symbol} failed: {exc}")
                log.error("engine", f"Evaluation failed for {symbol}: {exc}", {"symbol": symbol})
                continue
            if order is not None:
                orders.append(order)

        # 14. Burst batch
        if cfg.burst_requested and not burst_locked:
            orders = self._expand_burst(orders, ticks, positions, equity, session, now, log)

        # 15. Admission
        admission = self.guardrails.apply(orders, positions, stats.today_pnl_percent, equity, log)

        # 16. Materialize
        opened = self._open_positions(admission.admitted, ticks, session, now, log)
        return self._state(positions + opened, prior_trades, closed, today_trades, equity0, log)

    # ========================================================================
    # STEPS
    # ========================================================================

    def _analyze(self, ticks: Dict[str, PriceTick], session: EngineSession, now: datetime, log: EngineLogBook):
        environments: Dict[str, EnvironmentSummary] = {}
        regimes: Dict[str, RegimeSnapshot] = {}
        edges: Dict[str, EdgeSignal] = {}
        histories: Dict[str, List[PriceTick]] = {}

        for symbol, tick in ticks.items():
            try:
                history = session.record_tick(tick)
                histories[symbol] = history
                environments[symbol] = self.classifier.classify(symbol, history)
                regimes[symbol] = self.regime_tracker.update(session.regime_buffers(symbol), tick)
            except Exception as exc:
                self.logger.exception(f"Analysis failed for {symbol}: {exc}")
                log.error("engine", f"Analysis failed for {symbol}: {exc}", {"symbol": symbol})

        for symbol, history in histories.items():
            env = environments.get(symbol)
            if env is None:
                continue
            try:
                edges[symbol] = self.edge_engine.calculate(symbol, history, env, now, histories)
            except Exception as exc:
                self.logger.exception(f"Edge failed for {symbol}: {exc}")
                log.error("engine", f"Edge failed for {symbol}: {exc}", {"symbol": symbol})

        return environments, regimes, edges

    def _evaluate_candidate(
        self,
        symbol, tick, env, edge, regime, decision, session_view, thermostat: ThermostatState,
        positions, trades, equity, burst_locked, now, log,
    ) -> Optional[ProposedOrder]:
        personality = self.adaptive.mode_for_trade(env, session_view.session, decision)
        if personality is Personality.BURST and burst_locked:
            self.logger.debug(f"{symbol}: burst locked, skipping")
            return None

        adjustments = session_view.adjustments
        entry = self.entry_engine.evaluate(
            tick, edge, env, personality, thermostat.aggression_level, positions, trades, now,
            max_total_positions=self.config.modes.max_entries_total,
            session_entry_multiplier=adjustments.entry_threshold_multiplier,
        )
        if entry.is_blocked:
            self.logger.debug(f"{symbol} [{personality.value}] entry blocked: {entry.reason}")
            return None

        bias = self.bias_filter.apply(entry.direction, regime, trades, now)
        if bias.is_blocked:
            log.info(
                "bias",
                f"{symbol} {entry.direction.value} dropped: {bias.reason}",
                {"symbol": symbol, "hard_block": bias.hard_block},
            )
            return None
        if bias.is_warning:
            log.info("bias", f"{symbol}: {bias.reason}")

        size_mult = adjustments.size_multiplier
        if session_view.should_reduce_exposure:
            size_mult *= 0.5
        sizing = self.sizer.calculate(
            tick, entry.direction, edge, env, thermostat.aggression_level,
            personality, equity, positions, size_mult,
        )
        if sizing.is_zero:
            self.logger.debug(f"{symbol}: sizing returned zero ({', '.join(sizing.reasons)})")
            return None

        regime_note = ""
        if regime is not None:
            suitable, fit_reason, _ = self.regime_tracker.is_suitable_for_mode(regime, personality)
            if not suitable:
                regime_note = f" [regime: {fit_reason}]"

        return ProposedOrder(
            symbol=symbol,
            side=entry.direction,
            size=sizing.size,
            entry_price=tick.ask if entry.direction is Side.LONG else tick.bid,
            sl=sizing.sl,
            tp=sizing.tp,
            mode=personality,
            reason=entry.reason + regime_note,
            confidence=entry.confidence,
        )

    def _expand_burst(
        self,
        orders: List[ProposedOrder],
        ticks: Dict[str, PriceTick],
        positions: Sequence[Position],
        equity: float,
        session: EngineSession,
        now: datetime,
        log: EngineLogBook,
    ) -> List[ProposedOrder]:
        if any(p.batch_id for p in positions):
            self.logger.debug("Burst batch already running")
            return orders
        if not orders:
            log.info("burst", "Burst requested but no candidate passed entry")
            return orders

        top = orders[0]
        batch_id = session.next_id("burst", now)
        batch = plan_burst_batch(
            ticks[top.symbol], top.side, equity, self.config.burst, batch_id,
            reason=f"Burst on {top.symbol}",
        )
        if not batch:
            log.info("burst", f"Burst batch on {top.symbol} sized to zero")
            return orders

        log.info(
            "burst",
            f"Burst batch {batch_id}: {len(batch)} x {top.symbol} {top.side.value}",
            {"batch_id": batch_id, "orders": len(batch)},
        )
        return batch + orders[1:]

    def _open_positions(
        self,
        orders: Sequence[ProposedOrder],
        ticks: Dict[str, PriceTick],
        session: EngineSession,
        now: datetime,
        log: EngineLogBook,
    ) -> List[Position]:
        opened = []
        for order in orders:
            position = Position(
                id=session.next_id("pos", now),
                symbol=order.symbol,
                mode=order.mode,
                side=order.side,
                size=order.size,
                entry_price=order.entry_price,
                sl=order.sl,
                tp=order.tp,
                opened_at=now,
                owner=self.config.owner,
                batch_id=order.batch_id,
            )
            opened.append(position.with_mark(ticks[order.symbol]))
            if order.batch_id is None:
                log.info(
                    f"mode:{order.mode.value}",
                    f"Opened {order.symbol} {order.side.value} {order.size:.6g} @ {order.entry_price:.5f}: {order.reason}",
                    {"position_id": position.id, "confidence": round(order.confidence, 4)},
                )
        return opened

    def _state(
        self,
        positions: List[Position],
        prior_trades: List[ClosedTrade],
        closed: List[ClosedTrade],
        today_trades: List[ClosedTrade],
        starting_equity: float,
        log: EngineLogBook,
        halted: bool = False,
    ) -> EngineState:
        stats = calculate_stats(
            positions, today_trades + closed, starting_equity,
            self.config.burst.daily_profit_target_percent,
        )
        return EngineState(
            positions=positions,
            trades=prior_trades + closed,
            stats=stats,
            logs=log.records,
            halted=halted,
        )


# ============================================================================
# PUBLIC ENTRY POINTS
# ============================================================================

def run_tick(
    tick_input: TickInput,
    session: Optional[EngineSession] = None,
    logger: Optional[logging.Logger] = None,
) -> EngineState:
    """
    Run one cycle.

    Pass the same session on every call; without one a fresh session is
    used and nothing carries over between calls.
    """
    if session is None:
        session = EngineSession(history_cap=tick_input.config.history_cap)
    return TickOrchestrator(tick_input.config, logger).run(tick_input, session)


def _forced_close(
    reason: CloseReason,
    to_close: Sequence[Position],
    to_keep: Sequence[Position],
    ticks: Dict[str, PriceTick],
    trades: Sequence[ClosedTrade],
    starting_equity: float,
    now: Optional[datetime],
    config: Optional[EngineConfig],
    logger: Optional[logging.Logger],
) -> EngineState:
    config = config or DEFAULT_CONFIG
    now = resolve_clock(ticks, now)
    log = EngineLogBook(now, logger or logging.getLogger(__name__))

    closed = close_positions(to_close, ticks, reason, now, log)
    remaining = mark_to_market(to_keep, ticks)
    today_trades = [t for t in trades if t.session_date == now.date()] + closed
    stats = calculate_stats(remaining, today_trades, starting_equity, config.burst.daily_profit_target_percent)
    return EngineState(
        positions=remaining,
        trades=list(trades) + closed,
        stats=stats,
        logs=log.records,
        halted=config.halted,
    )


def global_close(
    positions: Sequence[Position],
    ticks: Dict[str, PriceTick],
    trades: Sequence[ClosedTrade],
    starting_equity: float,
    now: Optional[datetime] = None,
    config: Optional[EngineConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> EngineState:
    """Close every open position."""
    return _forced_close(
        CloseReason.GLOBAL_CLOSE, positions, [], ticks, trades,
        starting_equity, now, config, logger,
    )


def take_burst_profit(
    positions: Sequence[Position],
    ticks: Dict[str, PriceTick],
    trades: Sequence[ClosedTrade],
    starting_equity: float,
    now: Optional[datetime] = None,
    config: Optional[EngineConfig] = None,
    logger: Optional[logging.Logger] = None,
) -> EngineState:
    """Close only burst positions that belong to a batch."""
    batch = [p for p in positions if p.mode is Personality.BURST and p.batch_id]
    others = [p for p in positions if not (p.mode is Personality.BURST and p.batch_id)]
    return _forced_close(
        CloseReason.TAKE_BURST_PROFIT, batch, others, ticks, trades,
        starting_equity, now, config, logger,
    )
