"""
Tick Engine - Risk Guardrail Tests.

INVARIANTS:
1. Admission never exceeds the concurrent risk cap
2. Daily loss limit halts all admission
3. A burst batch is admitted or rejected as a whole and uses one slot
"""

import pytest
from datetime import datetime, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.config import RiskConfig, BurstConfig
from src.tick_engine.models import PriceTick, Position, ProposedOrder, Side, Personality
from src.tick_engine.risk_guardrails import RiskGuardrails
from src.tick_engine.sizing import plan_burst_batch


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)
EQUITY = 10000.0


def make_order(symbol="EURUSD", exposure_pct=4.0, price=1.1, batch_id=None):
    size = EQUITY * exposure_pct / 100 / price
    return ProposedOrder(
        symbol=symbol, side=Side.LONG, size=size, entry_price=price,
        sl=price * 0.99, tp=price * 1.02, mode=Personality.SCALPER,
        reason="test", batch_id=batch_id,
    )


def make_position(pid, symbol="EURUSD", exposure_pct=4.0, price=1.1, batch_id=None):
    return Position(
        id=pid, symbol=symbol, mode=Personality.SCALPER, side=Side.LONG,
        size=EQUITY * exposure_pct / 100 / price, entry_price=price,
        sl=price * 0.99, tp=price * 1.02, opened_at=NOW, batch_id=batch_id,
    )


def make_batch(batch_id="burst_1"):
    tick = PriceTick.from_quote("BTCUSD", 41999, 42001, NOW)
    return plan_burst_batch(tick, Side.LONG, EQUITY, BurstConfig(), batch_id)


# ============================================================================
# HALT
# ============================================================================

class TestDailyHalt:

    def test_halt_at_six_percent_loss(self):
        guardrails = RiskGuardrails()
        today_pnl_percent = -600 / EQUITY * 100

        assert guardrails.should_halt(today_pnl_percent)

        result = guardrails.apply([make_order()], [], today_pnl_percent, EQUITY)

        assert result.halted
        assert result.admitted == []
        assert result.rejected_count == 1

    def test_no_halt_above_limit(self):
        assert not RiskGuardrails().should_halt(-4.9)


# ============================================================================
# RISK CAP
# ============================================================================

class TestRiskCap:

    def test_greedy_first_fit(self):
        orders = [
            make_order("EURUSD", 4.0),
            make_order("GBPUSD", 4.0),
            make_order("AUDUSD", 4.0),
            make_order("USDCHF", 1.5),
        ]

        result = RiskGuardrails().apply(orders, [], 0.0, EQUITY)

        assert [o.symbol for o in result.admitted] == ["EURUSD", "GBPUSD", "USDCHF"]
        assert result.rejected[0][0].symbol == "AUDUSD"
        assert result.rejected[0][1] == "would exceed risk capacity"

    def test_admitted_risk_never_exceeds_cap(self):
        guardrails = RiskGuardrails()
        positions = [make_position("p1", "EURUSD", 6.0)]
        orders = [make_order(f"SYM{i}", 1.5) for i in range(10)]

        result = guardrails.apply(orders, positions, 0.0, EQUITY)

        total = guardrails.current_risk(positions, EQUITY) + sum(o.exposure_percent(EQUITY) for o in result.admitted)
        assert total <= 10.0 + 1e-9, f"Risk cap breached: {total:.4f}%"
        assert len(result.admitted) == 2

    def test_full_book_blocks_everything(self):
        positions = [make_position("p1", "EURUSD", 10.0)]
        result = RiskGuardrails().apply([make_order("GBPUSD", 0.5)], positions, 0.0, EQUITY)
        assert result.admitted == []

    def test_order_filling_cap_exactly_is_admitted(self):
        result = RiskGuardrails().apply([make_order("EURUSD", 10.0)], [], 0.0, EQUITY)
        assert len(result.admitted) == 1

    def test_no_equity_means_full_risk(self):
        assert RiskGuardrails.current_risk([make_position("p1")], 0.0) == 100.0


# ============================================================================
# COUNTS
# ============================================================================

class TestCounts:

    def test_max_open_trades(self):
        guardrails = RiskGuardrails(RiskConfig(max_concurrent_risk_percent=100, max_open_trades=2))
        positions = [make_position("p1", "EURUSD", 1.0)]
        orders = [make_order("GBPUSD", 1.0), make_order("AUDUSD", 1.0)]

        result = guardrails.apply(orders, positions, 0.0, EQUITY)

        assert [o.symbol for o in result.admitted] == ["GBPUSD"]
        assert result.rejected[0][1] == "max open trades"

    def test_per_symbol_limit(self):
        guardrails = RiskGuardrails(RiskConfig(max_concurrent_risk_percent=100, max_per_symbol_exposure=10))
        assert guardrails.max_per_symbol == 2

        positions = [make_position("p1", "EURUSD", 1.0), make_position("p2", "EURUSD", 1.0)]
        result = guardrails.apply([make_order("EURUSD", 1.0)], positions, 0.0, EQUITY)

        assert result.admitted == []
        assert result.rejected[0][1] == "symbol exposure limit"


# ============================================================================
# BURST BATCHES
# ============================================================================

class TestBurstBatch:

    def test_batch_admitted_as_one_slot(self):
        guardrails = RiskGuardrails(RiskConfig(max_open_trades=2))
        positions = [make_position("p1", "EURUSD", 1.0)]
        orders = make_batch() + [make_order("GBPUSD", 1.0)]

        result = guardrails.apply(orders, positions, 0.0, EQUITY)

        assert len(result.admitted) == 20
        assert all(o.batch_id == "burst_1" for o in result.admitted)
        assert [o.symbol for o, _ in result.rejected] == ["GBPUSD"]

    def test_batch_rejected_whole(self):
        positions = [make_position("p1", "EURUSD", 9.0)]

        result = RiskGuardrails().apply(make_batch(), positions, 0.0, EQUITY)

        assert result.admitted == []
        assert result.rejected_count == 20

    def test_open_batch_counts_once(self):
        guardrails = RiskGuardrails(RiskConfig(max_concurrent_risk_percent=100, max_open_trades=2))
        positions = [make_position(f"b{i}", "BTCUSD", 0.1, price=42000, batch_id="burst_0") for i in range(20)]

        result = guardrails.apply([make_order("EURUSD", 1.0)], positions, 0.0, EQUITY)

        assert len(result.admitted) == 1

    def test_burst_lock(self):
        assert RiskGuardrails.should_lock_burst(8.0, 8.0)
        assert not RiskGuardrails.should_lock_burst(7.9, 8.0)
