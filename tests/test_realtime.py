"""
tests/test_realtime.py — WebSocket Fan-out
===========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session
from starlette.websockets import WebSocketDisconnect

from conftest import make_user, run_async
from precinct.api.deps import create_token
from precinct.services import realtime
from precinct.api.realtime import handle_client_message
from precinct.services.realtime import DISPATCH_ROOM, Connection, RealtimeHub


class FakeSocket:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.fail = fail

    async def send_json(self, data) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)


class TestHub:
    def test_presence_events(self):
        hub = RealtimeHub()
        watcher, first, second = FakeSocket(), FakeSocket(), FakeSocket()

        async def scenario():
            await hub.connect(watcher)
            a = await hub.connect(first, user_id=7)
            b = await hub.connect(second, user_id=7)
            assert hub.online_user_ids() == [7]
            await hub.disconnect(a)
            assert hub.online_user_ids() == [7]
            await hub.disconnect(b)

        run_async(scenario())
        assert [m["event"] for m in watcher.sent] == ["user:online", "user:offline"]
        assert watcher.sent[0]["data"] == {"userId": "7"}
        assert hub.online_user_ids() == []

    def test_user_and_room_targeting(self):
        hub = RealtimeHub()
        mine, other, dispatch = FakeSocket(), FakeSocket(), FakeSocket()

        async def scenario():
            await hub.connect(mine, user_id=1)
            await hub.connect(other, user_id=2)
            conn = await hub.connect(dispatch)
            hub.join(conn, DISPATCH_ROOM)
            assert await hub.send_user(1, "notification", {"id": 5}) == 1
            assert await hub.send_room(DISPATCH_ROOM, "employee:hired", {"id": 3}) == 1
            hub.leave(conn, DISPATCH_ROOM)
            assert hub.room_size(DISPATCH_ROOM) == 0
            assert await hub.send_room(DISPATCH_ROOM, "employee:hired", {"id": 4}) == 0

        run_async(scenario())
        assert {"event": "notification", "data": {"id": 5}} in mine.sent
        assert all(m["event"] != "notification" for m in other.sent)
        assert dispatch.sent[-1] == {"event": "employee:hired", "data": {"id": 3}}

    def test_failed_socket_is_dropped(self):
        hub = RealtimeHub()

        async def scenario():
            await hub.connect(FakeSocket(fail=True), user_id=9)
            return await hub.broadcast("entity:created", {})

        assert run_async(scenario()) == 0
        assert hub.online_user_ids() == []

    def test_failed_send_announces_offline(self):
        hub = RealtimeHub()
        watcher, broken = FakeSocket(), FakeSocket()

        async def scenario():
            await hub.connect(watcher)
            await hub.connect(broken, user_id=4)
            broken.fail = True
            return await hub.broadcast("entity:updated", {"entity": "note"})

        assert run_async(scenario()) == 1
        assert [m["event"] for m in watcher.sent] == ["user:online", "entity:updated", "user:offline"]
        assert watcher.sent[-1]["data"] == {"userId": "4"}
        assert hub.online_user_ids() == []

    def test_new_user_socket_gets_online_list(self):
        hub = RealtimeHub()
        early, late, anonymous = FakeSocket(), FakeSocket(), FakeSocket()

        async def scenario():
            await hub.connect(early, user_id=1)
            await hub.connect(anonymous)
            await hub.connect(late, user_id=2)

        run_async(scenario())
        assert early.sent[:2] == [
            {"event": "user:online", "data": {"userId": "1"}},
            {"event": "users:online", "data": ["1"]},
        ]
        assert late.sent[-1]["event"] == "users:online"
        assert sorted(late.sent[-1]["data"]) == ["1", "2"]
        assert all(m["event"] != "users:online" for m in anonymous.sent)

    def test_emits_dropped_without_loop(self):
        assert realtime.hub.running is False
        assert realtime.broadcast_create("note", {"id": 1}) is False
        assert realtime.send_notification(1, {"id": 1}) is False

    def test_schedule_on_bound_loop(self):
        hub = RealtimeHub()
        socket = FakeSocket()

        async def scenario():
            import asyncio

            hub.bind_loop(asyncio.get_running_loop())
            await hub.connect(socket, user_id=3)
            assert hub.schedule(hub.send_user(3, "notification", {"id": 1})) is True
            for _ in range(3):
                await asyncio.sleep(0)
            hub.bind_loop(None)

        run_async(scenario())
        assert socket.sent[-1] == {"event": "notification", "data": {"id": 1}}


class TestWebSocketEndpoint:
    def test_authenticated_user_sees_own_presence(self, api, db_engine):
        with Session(db_engine) as s:
            make_user(s, 11)
            s.commit()
        with api.websocket_connect(f"/ws?token={create_token(11, 'u')}") as ws:
            assert ws.receive_json() == {"event": "user:online", "data": {"userId": "11"}}
            assert ws.receive_json() == {"event": "users:online", "data": ["11"]}

    def test_missing_token_rejected(self, api):
        with pytest.raises(WebSocketDisconnect) as exc:
            with api.websocket_connect("/ws"):
                pass
        assert exc.value.code == 4401

    def test_unknown_dispatch_key_rejected(self, api):
        with pytest.raises(WebSocketDisconnect):
            with api.websocket_connect("/ws?api_key=nope"):
                pass


class TestClientMessages:
    def _conn(self, user_id):
        return Connection(id=-1, socket=FakeSocket(), user_id=user_id)

    def test_user_joins_and_leaves_rooms(self):
        conn = self._conn(5)
        handle_client_message(conn, {"event": "join:room", "data": "trainings"})
        assert conn.rooms == {"trainings"}
        assert realtime.hub.room_size("trainings") == 1
        handle_client_message(conn, {"event": "leave:room", "data": "trainings"})
        assert conn.rooms == set()
        assert realtime.hub.room_size("trainings") == 0

    def test_dispatch_client_is_pinned_to_its_room(self):
        conn = self._conn(None)
        realtime.hub.join(conn, DISPATCH_ROOM)
        try:
            handle_client_message(conn, {"event": "join:room", "data": "trainings"})
            handle_client_message(conn, {"event": "leave:room", "data": DISPATCH_ROOM})
            assert conn.rooms == {DISPATCH_ROOM}
            assert realtime.hub.room_size("trainings") == 0
        finally:
            realtime.hub.leave(conn, DISPATCH_ROOM)

    @pytest.mark.parametrize("message", [["join:room"], {"event": "join:room"}, {"event": "join:room", "data": 3}])
    def test_malformed_messages_ignored(self, message):
        conn = self._conn(5)
        handle_client_message(conn, message)
        assert conn.rooms == set()
