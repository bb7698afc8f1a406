"""
Engine Session Context

Owns every piece of state that survives between evaluation cycles:
- per-symbol tick history (bounded FIFO)
- per-symbol multi-timeframe regime buffers
- the thermostat's previous output
- the adaptive controller's last selection
- id sequence for new positions and burst batches

One EngineSession per trading session. Sessions never share state.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

from .models import PriceTick, Personality


@dataclass
class RegimeBuffers:
    """Multi-timeframe mid-price buffers for one symbol."""
    short: Deque[float] = field(default_factory=lambda: deque(maxlen=50))
    medium: Deque[float] = field(default_factory=lambda: deque(maxlen=30))
    long: Deque[float] = field(default_factory=lambda: deque(maxlen=20))
    atr_history: Deque[float] = field(default_factory=lambda: deque(maxlen=50))
    samples: int = 0


class EngineSession:
    """
    Per-session mutable state.

    Pass the same instance to every cycle of a session.
    """

    def __init__(self, session_id: str = "default", history_cap: int = 100):
        self.session_id = session_id
        self.history_cap = history_cap
        self._history: Dict[str, Deque[PriceTick]] = {}
        self._regime: Dict[str, RegimeBuffers] = {}
        self.thermostat_state = None        # ThermostatState, set by the thermostat
        self.last_adaptive_mode: Optional[Personality] = None
        self.cycles = 0
        self._sequence = 0

    # Tick history

    def record_tick(self, tick: PriceTick) -> List[PriceTick]:
        """Append a tick and return the symbol's history (oldest first)."""
        history = self._history.get(tick.symbol)
        if history is None:
            history = deque(maxlen=self.history_cap)
            self._history[tick.symbol] = history
        history.append(tick)
        return list(history)

    def history(self, symbol: str) -> List[PriceTick]:
        return list(self._history.get(symbol, ()))

    @property
    def symbols(self) -> List[str]:
        return list(self._history.keys())

    # Regime buffers

    def regime_buffers(self, symbol: str) -> RegimeBuffers:
        buffers = self._regime.get(symbol)
        if buffers is None:
            buffers = RegimeBuffers()
            self._regime[symbol] = buffers
        return buffers

    # Identifiers

    def next_id(self, prefix: str, now: datetime) -> str:
        """Deterministic id: prefix, cycle clock, per-session sequence."""
        self._sequence += 1
        return f"{prefix}_{now.strftime('%Y%m%d%H%M%S')}_{self.session_id}_{self._sequence:05d}"

    def reset(self) -> None:
        """
        Return the session to a clean state (clears a halted session).

        The id sequence keeps running so ids minted after a reset never
        repeat earlier ones.
        """
        self._history.clear()
        self._regime.clear()
        self.thermostat_state = None
        self.last_adaptive_mode = None
        self.cycles = 0
