"""
precinct.api.realtime — WebSocket endpoint
===========================================

``/ws?token=<jwt>`` (or the ``token`` cookie) attaches a dashboard user to
the :data:`~precinct.services.realtime.hub`.  The external dispatch client
connects with ``/ws?api_key=<key>`` instead and is placed in the dispatch
room and cannot leave it or join others.  Client messages from dashboard users::

    {"event": "join:room", "data": "trainings"}
    {"event": "leave:room", "data": "trainings"}
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from jwt.exceptions import InvalidTokenError

from precinct.api.deps import TOKEN_COOKIE, decode_token, get_engine
from precinct.constants import utcnow
from precinct.database.engine import get_session, run_db
from precinct.database.models import User
from precinct.services.realtime import DISPATCH_ROOM, Connection, hub
from precinct.services.settings_service import get_setting_value

logger = logging.getLogger(__name__)
router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401
DISPATCH_KEY_SETTING = "dispatch.external_api_key"


def _touch_user(engine, user_id: int) -> bool:
    """Update ``last_login``; ``False`` for unknown or inactive users."""
    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            return False
        user.last_login = utcnow()
        return True


def _dispatch_key_matches(engine, api_key: str) -> bool:
    with get_session(engine) as session:
        expected = get_setting_value(session, DISPATCH_KEY_SETTING, "")
    return bool(expected) and hmac.compare_digest(str(expected), api_key)


def handle_client_message(conn: Connection, message) -> None:
    """Apply a room join/leave request; the dispatch client (no user) is pinned to its room."""
    if conn.user_id is None or not isinstance(message, dict):
        return
    room = message.get("data")
    if not isinstance(room, str) or not room:
        return
    if message.get("event") == "join:room":
        hub.join(conn, room)
    elif message.get("event") == "leave:room":
        hub.leave(conn, room)


async def _authenticate(websocket: WebSocket, engine) -> tuple[bool, int | None]:
    """Return ``(accepted, user_id)``; the dispatch client has no user id."""
    api_key = websocket.query_params.get("api_key")
    if api_key:
        return await run_db(_dispatch_key_matches, engine, api_key), None

    token = websocket.query_params.get("token") or websocket.cookies.get(TOKEN_COOKIE)
    if not token:
        return False, None
    try:
        user_id = decode_token(token)
    except InvalidTokenError:
        return False, None
    return await run_db(_touch_user, engine, user_id), user_id


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, engine=Depends(get_engine)):
    accepted, user_id = await _authenticate(websocket, engine)
    if not accepted:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
        return

    await websocket.accept()
    conn = await hub.connect(websocket, user_id)
    if user_id is None:
        hub.join(conn, DISPATCH_ROOM)
        logger.info("External dispatch client connected")

    try:
        while True:
            handle_client_message(conn, await websocket.receive_json())
    except WebSocketDisconnect:
        pass
    except ValueError:
        logger.debug("Closing socket %d after malformed message", conn.id)
    finally:
        await hub.disconnect(conn)
