"""
tests/test_event_bus.py — Cross-Process Event Bus
==================================================

NOTIFY itself needs PostgreSQL; here the payload encoding, the SQLite
no-op path and the listener's dispatch onto the asyncio loop are covered.
"""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from conftest import run_async
from precinct.services import event_bus
from precinct.services.event_bus import EventListener, event


class TestPublishing:
    def test_event_builder(self):
        assert event("member_kick", user_id="5", reason="bye") == {
            "type": "member_kick", "user_id": "5", "reason": "bye",
        }

    def test_payload_without_type_rejected(self, db_engine):
        with pytest.raises(ValueError):
            event_bus.publish(db_engine, {"user_id": 1})

    def test_oversized_payload_rejected(self, db_engine):
        with pytest.raises(ValueError, match="exceeds"):
            event_bus.publish(db_engine, event("announcement_publish", content="x" * 8000))

    def test_sqlite_publish_is_noop(self, db_engine):
        assert event_bus.publish(db_engine, event("roster_sync_requested", requested_by="1")) is False
        with Session(db_engine) as s:
            assert event_bus.publish_on_commit(s, event("calendar_remind", event_id=1)) is False

    def test_user_text_is_bound_not_inlined(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        payload = event("member_kick", user_id="7", reason="Agenda :topics below, O'Brien's call :tada:")

        assert event_bus.publish_on_commit(session, payload) is True
        (statement,), _ = session.execute.call_args
        compiled = statement.compile(dialect=postgresql.dialect())
        assert "pg_notify" in str(compiled)
        assert ":topics" not in str(compiled)
        channel, raw = compiled.params.values()
        assert channel == event_bus.EVENT_CHANNEL
        assert json.loads(raw) == payload

    def test_postgres_publish_commits(self):
        engine = MagicMock()
        engine.dialect.name = "postgresql"
        conn = engine.connect.return_value.__enter__.return_value

        assert event_bus.publish(engine, event("rank_changed", user_id="7")) is True
        (statement,), _ = conn.execute.call_args
        assert "pg_notify" in str(statement)
        conn.commit.assert_called_once()


class TestListenerDispatch:
    def test_callback_runs_on_loop(self, db_engine):
        received: list[dict] = []

        async def on_kick(data: dict) -> None:
            received.append(data)

        async def scenario():
            listener = EventListener(db_engine)
            listener.register("member_kick", on_kick)
            listener.start(asyncio.get_running_loop())
            listener.dispatch('{"type": "member_kick", "user_id": "9"}')
            listener.dispatch('{"type": "unknown_event"}')
            listener.dispatch("not json")
            listener.dispatch('{"user_id": "9"}')
            for _ in range(3):
                await asyncio.sleep(0)

        run_async(scenario())
        assert received == [{"type": "member_kick", "user_id": "9"}]

    def test_sqlite_listener_never_starts_thread(self, db_engine):
        async def scenario():
            listener = EventListener(db_engine)
            listener.start(asyncio.get_running_loop())
            return listener

        listener = run_async(scenario())
        assert listener._thread is None
        assert listener.healthy is False
        listener.stop()

    def test_dispatch_without_loop_is_dropped(self, db_engine):
        callback = MagicMock()
        listener = EventListener(db_engine)
        listener.register("member_kick", callback)
        listener.dispatch('{"type": "member_kick"}')
        callback.assert_not_called()

    def test_failing_callback_is_logged(self, db_engine, caplog):
        async def broken(data: dict) -> None:
            raise KeyError("event_id")

        async def scenario():
            listener = EventListener(db_engine)
            listener.register("calendar_remind", broken)
            listener.start(asyncio.get_running_loop())
            listener.dispatch('{"type": "calendar_remind"}')
            for _ in range(5):
                await asyncio.sleep(0)

        with caplog.at_level(logging.ERROR, logger="precinct.services.event_bus"):
            run_async(scenario())
        assert "Event callback for 'calendar_remind' failed" in caplog.text
