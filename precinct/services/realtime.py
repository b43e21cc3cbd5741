"""
precinct.services.realtime — WebSocket Fan-out Hub
===================================================

Tracks open dashboard sockets by user and by room and pushes
``{"event": ..., "data": ...}`` messages to them.

Route handlers are synchronous and run on a worker thread, so the emit
helpers (:func:`emit_to_all`, :func:`broadcast_create`, ...) never await:
they schedule the send on the event loop bound at API startup via
:func:`asyncio.run_coroutine_threadsafe`.  Before :meth:`RealtimeHub.bind_loop`
is called (tests, scripts) emits are dropped with a debug log.

Event names:

* ``entity:created`` / ``entity:updated`` → ``{"entity": ..., "data": {...}}``
* ``entity:deleted`` → ``{"entity": ..., "id": ...}``
* ``notification`` → the notification dict (user-targeted)
* ``user:online`` / ``user:offline`` → ``{"userId": ...}``; a socket that fails a
  send is disconnected, so its user goes offline like on a clean close
* ``users:online`` → list of online user ids, sent once to each new user socket
* ``employee:hired|terminated|promoted|demoted|unit_changed`` → dispatch room
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DISPATCH_ROOM = "dispatch-external"


class SocketLike(Protocol):
    async def send_json(self, data: Any) -> None: ...


@dataclass(eq=False)
class Connection:
    """One open socket."""
    id: int
    socket: SocketLike
    user_id: int | None = None
    rooms: set[str] = field(default_factory=set)


class RealtimeHub:
    """Registry of open connections plus the send primitives."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._connections: dict[int, Connection] = {}
        self._by_user: dict[int, set[int]] = {}
        self._rooms: dict[str, set[int]] = {}
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None

    # -- lifecycle -------------------------------------------------------
    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        self._loop = loop

    @property
    def running(self) -> bool:
        return self._loop is not None and not self._loop.is_closed()

    # -- registry --------------------------------------------------------
    async def connect(self, socket: SocketLike, user_id: int | None = None) -> Connection:
        with self._lock:
            conn = Connection(id=next(self._ids), socket=socket, user_id=user_id)
            self._connections[conn.id] = conn
            first = False
            if user_id is not None:
                conns = self._by_user.setdefault(user_id, set())
                first = not conns
                conns.add(conn.id)
        if first:
            await self.broadcast("user:online", {"userId": str(user_id)})
        if user_id is not None:
            await self._send([conn.id], "users:online", [str(uid) for uid in self.online_user_ids()])
        logger.debug("Socket %d connected (user=%s)", conn.id, user_id)
        return conn

    async def disconnect(self, conn: Connection) -> None:
        last = self._forget(conn)
        if last:
            await self.broadcast("user:offline", {"userId": str(conn.user_id)})
        logger.debug("Socket %d disconnected (user=%s)", conn.id, conn.user_id)

    def _forget(self, conn: Connection) -> bool:
        """Drop *conn* everywhere; ``True`` if it was the user's last socket."""
        with self._lock:
            if self._connections.pop(conn.id, None) is None:
                return False
            for room in conn.rooms:
                members = self._rooms.get(room)
                if members is not None:
                    members.discard(conn.id)
                    if not members:
                        del self._rooms[room]
            if conn.user_id is None:
                return False
            conns = self._by_user.get(conn.user_id, set())
            conns.discard(conn.id)
            if conns:
                return False
            self._by_user.pop(conn.user_id, None)
            return True

    def join(self, conn: Connection, room: str) -> None:
        with self._lock:
            conn.rooms.add(room)
            self._rooms.setdefault(room, set()).add(conn.id)

    def leave(self, conn: Connection, room: str) -> None:
        with self._lock:
            conn.rooms.discard(room)
            members = self._rooms.get(room)
            if members is not None:
                members.discard(conn.id)
                if not members:
                    del self._rooms[room]

    def online_user_ids(self) -> list[int]:
        with self._lock:
            return list(self._by_user)

    def room_size(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    # -- async sends -----------------------------------------------------
    async def _send(self, conn_ids: list[int], event: str, data: Any) -> int:
        message = {"event": event, "data": data}
        sent = 0
        dead: list[Connection] = []
        for conn_id in conn_ids:
            conn = self._connections.get(conn_id)
            if conn is None:
                continue
            try:
                await conn.socket.send_json(message)
                sent += 1
            except Exception:
                logger.debug("Dropping socket %d after failed send", conn_id, exc_info=True)
                dead.append(conn)
        for conn in dead:
            await self.disconnect(conn)
        return sent

    async def broadcast(self, event: str, data: Any) -> int:
        with self._lock:
            ids = list(self._connections)
        return await self._send(ids, event, data)

    async def send_room(self, room: str, event: str, data: Any) -> int:
        with self._lock:
            ids = list(self._rooms.get(room, ()))
        return await self._send(ids, event, data)

    async def send_user(self, user_id: int, event: str, data: Any) -> int:
        with self._lock:
            ids = list(self._by_user.get(user_id, ()))
        return await self._send(ids, event, data)

    # -- thread-safe scheduling -----------------------------------------
    def schedule(self, coro) -> bool:
        loop = self._loop
        if loop is None or loop.is_closed():
            coro.close()
            logger.debug("Realtime hub not running; event dropped")
            return False
        asyncio.run_coroutine_threadsafe(coro, loop)
        return True


hub = RealtimeHub()


# ---------------------------------------------------------------------------
# Emit helpers (safe to call from sync route handlers)
# ---------------------------------------------------------------------------

def emit_to_all(event: str, data: Any) -> bool:
    return hub.schedule(hub.broadcast(event, data))


def emit_to_room(room: str, event: str, data: Any) -> bool:
    return hub.schedule(hub.send_room(room, event, data))


def emit_to_user(user_id: int, event: str, data: Any) -> bool:
    return hub.schedule(hub.send_user(user_id, event, data))


def broadcast_create(entity: str, data: dict) -> bool:
    return emit_to_all("entity:created", {"entity": entity, "data": data})


def broadcast_update(entity: str, data: dict) -> bool:
    return emit_to_all("entity:updated", {"entity": entity, "data": data})


def broadcast_delete(entity: str, entity_id: Any) -> bool:
    return emit_to_all("entity:deleted", {"entity": entity, "id": entity_id})


def send_notification(user_id: int, notification: dict) -> bool:
    return emit_to_user(user_id, "notification", notification)


def emit_employee_event(kind: str, data: dict) -> bool:
    """Employee lifecycle event (``hired``, ``promoted``, ...) for the dispatch room."""
    return emit_to_room(DISPATCH_ROOM, f"employee:{kind}", data)
