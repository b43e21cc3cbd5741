"""
precinct.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn precinct.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from precinct.api.audit import audit_middleware  # noqa: E402
from precinct.api.auth import router as auth_router  # noqa: E402
from precinct.api.deps import get_engine  # noqa: E402
from precinct.api.rate_limit import rate_limited_user  # noqa: E402
from precinct.api.realtime import router as realtime_router  # noqa: E402
from precinct.api.routes import (  # noqa: E402
    absences,
    academy,
    admin,
    announcements,
    applications,
    blacklist,
    bonus,
    calendar,
    cases,
    dashboard,
    employees,
    evidence,
    investigations,
    notes,
    notifications,
    robbery,
    sanctions,
    settings,
    tasks,
    trainings,
    treasury,
    tuning,
    unit_reviews,
    uprank_locks,
    uprank_requests,
    users,
)
from precinct.database.engine import init_db  # noqa: E402
from precinct.services.event_bus import EventListener  # noqa: E402
from precinct.services.log_buffer import install_handler  # noqa: E402
from precinct.services.realtime import hub  # noqa: E402
from precinct.services.settings_service import get_bot_heartbeat  # noqa: E402

logger = logging.getLogger(__name__)

DOMAIN_ROUTERS = (
    users, admin, employees, absences, sanctions, investigations, evidence,
    treasury, trainings, academy, announcements, calendar, notifications, bonus,
    applications, blacklist, uprank_requests, uprank_locks, unit_reviews, cases,
    robbery, tuning, notes, tasks, dashboard,
)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


async def _forward_notification(payload: dict) -> None:
    """Push a notification created in the bot process to the user's sockets."""
    user_id = payload.get("user_id")
    notification = payload.get("notification")
    if user_id is None or notification is None:
        return
    await hub.send_user(int(user_id), "notification", notification)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — schema, log capture, realtime, events."""
    # Uvicorn reconfigures logging on start, so attach the buffer handler here.
    install_handler()

    engine = get_engine()
    init_db(engine)

    loop = asyncio.get_running_loop()
    hub.bind_loop(loop)

    listener = EventListener(engine)
    listener.register("notification_created", _forward_notification)
    listener.start(loop)

    logger.info("Precinct API started — engine ready (%s)", engine.url.database)
    yield
    listener.stop()
    hub.bind_loop(None)
    logger.info("Precinct API shutting down")


app = FastAPI(
    title="Precinct Personnel API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report body and query validation failures as 400 with a readable message."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"detail": message, "errors": jsonable_encoder(errors)})


app.middleware("http")(audit_middleware)

# CORS — allow the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(auth_router, prefix="/api")
app.include_router(settings.router, prefix="/api")
for module in DOMAIN_ROUTERS:
    app.include_router(module.router, prefix="/api", dependencies=[Depends(rate_limited_user)])
app.include_router(realtime_router)


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/health/bot")
def bot_health(engine=Depends(get_engine)):
    """Return the bot's heartbeat status."""
    return get_bot_heartbeat(engine)
