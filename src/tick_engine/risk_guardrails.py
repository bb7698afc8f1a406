"""
Risk Guardrail Engine

Last gate before proposed orders become positions. Can only remove
orders, never add or enlarge them.

GATES:
1. Daily loss halt: today's P&L% <= -max_daily_loss_percent → admit nothing
2. Concurrent risk: greedy first-fit in received order against
   max_concurrent_risk_percent - current risk (notional % of equity)
3. Hard counts: max open trades, per-symbol count ceil(max_per_symbol_exposure / 5)

A burst batch (orders sharing a batch id) is admitted or rejected as a
whole and occupies one slot.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .config import RiskConfig
from .models import Position, ProposedOrder
from .logging_module import EngineLogBook


@dataclass(frozen=True)
class AdmissionResult:
    admitted: List[ProposedOrder]
    rejected: List[Tuple[ProposedOrder, str]] = field(default_factory=list)
    halted: bool = False

    @property
    def rejected_count(self) -> int:
        return len(self.rejected)


def _slot_count(items: Sequence) -> int:
    """Unbatched items count one each; each batch id counts once."""
    batches = {item.batch_id for item in items if item.batch_id}
    return sum(1 for item in items if not item.batch_id) + len(batches)


def _group_orders(orders: Sequence[ProposedOrder]) -> List[List[ProposedOrder]]:
    """Group orders into admission units, keeping first-seen order."""
    units: List[List[ProposedOrder]] = []
    by_batch: Dict[str, List[ProposedOrder]] = {}
    for order in orders:
        if order.batch_id:
            unit = by_batch.get(order.batch_id)
            if unit is None:
                unit = []
                by_batch[order.batch_id] = unit
                units.append(unit)
            unit.append(order)
        else:
            units.append([order])
    return units


class RiskGuardrails:
    """Portfolio-level admission control."""

    SYMBOL_EXPOSURE_PER_SLOT = 5.0
    TOLERANCE = 1e-9

    def __init__(self, config: Optional[RiskConfig] = None, logger: Optional[logging.Logger] = None):
        self.config = config or RiskConfig()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def max_per_symbol(self) -> int:
        return math.ceil(self.config.max_per_symbol_exposure / self.SYMBOL_EXPOSURE_PER_SLOT)

    def should_halt(self, today_pnl_percent: float) -> bool:
        return today_pnl_percent <= -self.config.max_daily_loss_percent

    @staticmethod
    def current_risk(positions: Sequence[Position], equity: float) -> float:
        """Total notional exposure as % of equity (100 when equity is gone)."""
        if equity <= 0:
            return 100.0
        return sum(p.exposure_percent(equity) for p in positions)

    @staticmethod
    def should_lock_burst(burst_pnl_percent: float, daily_target_percent: float) -> bool:
        return burst_pnl_percent >= daily_target_percent

    def apply(
        self,
        orders: Sequence[ProposedOrder],
        positions: Sequence[Position],
        today_pnl_percent: float,
        equity: float,
        log: Optional[EngineLogBook] = None,
    ) -> AdmissionResult:
        def note(message: str) -> None:
            if log:
                log.info("risk", message)
            else:
                self.logger.info(message)

        if self.should_halt(today_pnl_percent):
            if log:
                log.warning(
                    "risk",
                    f"Trading halted: daily loss limit of {self.config.max_daily_loss_percent}% reached",
                )
            return AdmissionResult(
                admitted=[],
                rejected=[(o, "daily loss halt") for o in orders],
                halted=True,
            )

        current = self.current_risk(positions, equity)
        remaining = self.config.max_concurrent_risk_percent - current
        if remaining <= self.TOLERANCE:
            note(f"Max concurrent risk reached ({current:.1f}%), blocking new orders")
            return AdmissionResult([], [(o, "max concurrent risk") for o in orders])

        slots = self.config.max_open_trades - _slot_count(positions)
        if slots <= 0:
            note(f"Max open trades ({self.config.max_open_trades}) reached")
            return AdmissionResult([], [(o, "max open trades") for o in orders])

        admitted: List[ProposedOrder] = []
        rejected: List[Tuple[ProposedOrder, str]] = []
        used_risk = 0.0
        used_slots = 0
        symbol_slots: Dict[str, int] = {}
        for position in positions:
            symbol_slots.setdefault(position.symbol, 0)
        for symbol in symbol_slots:
            symbol_slots[symbol] = _slot_count([p for p in positions if p.symbol == symbol])

        for unit in _group_orders(orders):
            head = unit[0]
            label = f"batch {head.batch_id}" if head.batch_id else f"order for {head.symbol}"
            unit_risk = sum(o.exposure_percent(equity) for o in unit)

            if used_slots >= slots:
                reason = "max open trades"
            elif used_risk + unit_risk > remaining + self.TOLERANCE:
                reason = "would exceed risk capacity"
            elif symbol_slots.get(head.symbol, 0) >= self.max_per_symbol:
                reason = "symbol exposure limit"
            else:
                reason = ""

            if reason:
                note(f"{label[0].upper()}{label[1:]} blocked: {reason}")
                rejected.extend((o, reason) for o in unit)
                continue

            admitted.extend(unit)
            used_risk += unit_risk
            used_slots += 1
            symbol_slots[head.symbol] = symbol_slots.get(head.symbol, 0) + 1

        if rejected:
            note(f"{len(rejected)} orders blocked by risk limits")

        return AdmissionResult(admitted=admitted, rejected=rejected)
