"""
precinct.services.event_bus — Cross-Process Events over PG LISTEN/NOTIFY
=========================================================================

The API and the bot are separate processes sharing one PostgreSQL
database.  They talk through a single NOTIFY channel carrying JSON
payloads with a ``type`` key:

* API → bot: ``rank_changed``, ``nickname_update``, ``member_kick``,
  ``announcement_publish``, ``roster_sync_requested``, ``calendar_remind``
* bot → API: ``notification_created`` (forwarded to WebSocket clients)

Publishing is transactional when a session is passed (the NOTIFY fires on
commit).  On non-PostgreSQL engines (tests, local SQLite) publishing is a
logged no-op.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import select as _select
import threading
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EVENT_CHANNEL = "precinct_events"

# PostgreSQL rejects NOTIFY payloads of 8000 bytes or more.
MAX_PAYLOAD_BYTES = 7999

EventCallback = Callable[[dict], Awaitable[None]]


def _supports_notify(bind) -> bool:
    return bind.dialect.name == "postgresql"


def _encode(payload: dict) -> str:
    if "type" not in payload:
        raise ValueError("Event payload must include a 'type' key")
    raw = json.dumps(payload, default=str)
    if len(raw.encode("utf-8")) > MAX_PAYLOAD_BYTES:
        raise ValueError(
            f"Event '{payload['type']}' payload exceeds {MAX_PAYLOAD_BYTES} bytes; send ids instead"
        )
    return raw


def notify_statement(raw: str):
    """``SELECT pg_notify(channel, payload)`` with the payload as a bound parameter."""
    return select(func.pg_notify(EVENT_CHANNEL, raw))


def publish(engine: Engine, payload: dict) -> bool:
    """Send *payload* on the event channel over a separate connection.

    Returns ``True`` if a NOTIFY was issued.
    """
    raw = _encode(payload)
    if not _supports_notify(engine):
        logger.debug("Event '%s' not published (dialect %s)", payload["type"], engine.dialect.name)
        return False
    with engine.connect() as conn:
        conn.execute(notify_statement(raw))
        conn.commit()
    return True


def publish_on_commit(session: Session, payload: dict) -> bool:
    """Queue *payload* inside the session's transaction (fires on commit)."""
    raw = _encode(payload)
    if not _supports_notify(session.get_bind()):
        logger.debug("Event '%s' not queued (non-PostgreSQL session)", payload["type"])
        return False
    session.execute(notify_statement(raw))
    return True


def _log_callback_error(event_type: str, future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(
            "Event callback for '%s' failed", event_type,
            exc_info=(type(exc), exc, exc.__traceback__),
        )


class EventListener:
    """Background thread that LISTENs on :data:`EVENT_CHANNEL`.

    Callbacks are coroutine functions keyed by event ``type``; they are
    scheduled on the asyncio loop passed to :meth:`start`.

    Usage::

        listener = EventListener(engine)
        listener.register("rank_changed", on_rank_changed)
        listener.start(asyncio.get_running_loop())
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._callbacks: dict[str, EventCallback] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._shutdown = threading.Event()
        self._healthy = False
        self._failed = False

    @property
    def healthy(self) -> bool:
        return self._healthy and not self._failed

    def register(self, event_type: str, callback: EventCallback) -> None:
        self._callbacks[event_type] = callback
        logger.info("Registered event callback for '%s'", event_type)

    def dispatch(self, raw_payload: str) -> None:
        """Parse a JSON payload and schedule the matching callback."""
        try:
            data = json.loads(raw_payload)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Invalid event payload (not JSON): %s", raw_payload)
            return

        event_type = data.get("type") if isinstance(data, dict) else None
        if not event_type:
            logger.warning("Event payload missing 'type' key: %s", raw_payload)
            return

        callback = self._callbacks.get(event_type)
        if callback is None:
            logger.debug("No callback registered for event type '%s'", event_type)
            return

        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Cannot dispatch event '%s': no event loop available", event_type)
            return

        future = asyncio.run_coroutine_threadsafe(callback(data), loop)
        future.add_done_callback(lambda f: _log_callback_error(event_type, f))

    def stop(self) -> None:
        self._shutdown.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=5)
            logger.info("Event listener thread stopped")

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        """Start the LISTEN thread.

        Reconnects with exponential backoff plus jitter and gives up after
        ten consecutive failures.  Does nothing on non-PostgreSQL engines.
        """
        self._loop = loop
        if not _supports_notify(self._engine):
            logger.info("Event listener disabled (dialect %s)", self._engine.dialect.name)
            return

        import psycopg2

        max_backoff = 60.0
        base_backoff = 1.0
        max_attempts = 10

        def _listen_thread() -> None:
            # psycopg2 needs the real password, str(url) masks it.
            raw_url = self._engine.url.render_as_string(hide_password=False)
            dsn = raw_url.replace("postgresql+psycopg2://", "postgresql://")
            attempt = 0

            while not self._shutdown.is_set():
                conn = None
                try:
                    conn = psycopg2.connect(dsn)
                    conn.set_isolation_level(0)  # autocommit
                    cur = conn.cursor()
                    cur.execute(f"LISTEN {EVENT_CHANNEL};")
                    logger.info("PG LISTEN started on channel '%s'", EVENT_CHANNEL)

                    attempt = 0
                    self._healthy = True

                    while not self._shutdown.is_set():
                        if _select.select([conn], [], [], 5.0) == ([], [], []):
                            continue
                        conn.poll()
                        while conn.notifies:
                            notify = conn.notifies.pop(0)
                            try:
                                self.dispatch(notify.payload or "")
                            except Exception:
                                logger.exception("Error dispatching event: %s", notify.payload)

                except Exception:
                    self._healthy = False
                    attempt += 1
                    if attempt >= max_attempts:
                        logger.critical(
                            "PG LISTEN exhausted %d retries. Cross-process events disabled.",
                            max_attempts,
                        )
                        self._failed = True
                        break

                    backoff = min(base_backoff * (2 ** (attempt - 1)), max_backoff)
                    wait = backoff + random.uniform(0, backoff * 0.5)
                    logger.exception(
                        "PG LISTEN connection lost (attempt %d/%d). Reconnecting in %.1fs…",
                        attempt, max_attempts, wait,
                    )
                    if self._shutdown.wait(timeout=wait):
                        break
                finally:
                    if conn is not None:
                        try:
                            conn.close()
                        except Exception:
                            logger.debug("Error closing LISTEN connection", exc_info=True)

        thread = threading.Thread(target=_listen_thread, daemon=True, name="pg-event-listener")
        self._thread = thread
        thread.start()
        logger.info("Event listener thread started")


def event(event_type: str, **data: Any) -> dict:
    """Build an event payload dict."""
    return {"type": event_type, **data}
