"""
Tick Engine - Session Context Tests.
"""

from datetime import datetime, timedelta, timezone

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.tick_engine.context import EngineSession
from src.tick_engine.models import PriceTick, Personality


NOW = datetime(2024, 1, 10, 14, 0, tzinfo=timezone.utc)


def make_tick(i, symbol="EURUSD"):
    return PriceTick.from_quote(symbol, 1.1 + i * 0.0001, 1.1002 + i * 0.0001, NOW + timedelta(seconds=i))


class TestEngineSession:

    def test_history_capped(self):
        session = EngineSession(history_cap=5)
        for i in range(8):
            history = session.record_tick(make_tick(i))

        assert len(history) == 5
        assert history[0].timestamp == NOW + timedelta(seconds=3)
        assert session.symbols == ["EURUSD"]

    def test_sessions_are_isolated(self):
        a, b = EngineSession("a"), EngineSession("b")
        a.record_tick(make_tick(0))
        assert b.history("EURUSD") == []

    def test_ids_deterministic_and_unique(self):
        session = EngineSession("s1")
        first = session.next_id("pos", NOW)
        second = session.next_id("pos", NOW)

        assert first == "pos_20240110140000_s1_00001"
        assert first != second
        assert EngineSession("s1").next_id("pos", NOW) == first

    def test_reset(self):
        session = EngineSession()
        session.record_tick(make_tick(0))
        session.regime_buffers("EURUSD").samples = 3
        session.last_adaptive_mode = Personality.BURST
        session.next_id("pos", NOW)
        session.cycles = 4

        session.reset()

        assert session.history("EURUSD") == []
        assert session.regime_buffers("EURUSD").samples == 0
        assert session.last_adaptive_mode is None
        assert session.cycles == 0

    def test_ids_stay_unique_across_reset(self):
        session = EngineSession("s1")
        before = session.next_id("pos", NOW)
        session.reset()

        assert session.next_id("pos", NOW) != before
