"""
precinct.api.audit — HTTP Audit Middleware
===========================================

Records every successful, authenticated mutation (POST/PUT/PATCH/DELETE
answered with a status below 400) in ``audit_logs``.  The caller and the
engine are read from ``request.state``, where
:func:`~precinct.api.deps.get_current_user` left them.
"""

from __future__ import annotations

import json
import logging

from fastapi import Request
from starlette.responses import Response

from precinct.database.engine import get_session, run_db
from precinct.services import audit_service

logger = logging.getLogger(__name__)

AUDITED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
EXCLUDED_PATHS = frozenset({"/api/health", "/api/auth/me", "/api/dashboard/stats"})


def _json_or_none(raw: bytes):
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, ValueError):
        return None


def _write_audit(engine, **fields) -> None:
    with get_session(engine) as session:
        audit_service.record(session, **fields)


async def audit_middleware(request: Request, call_next):
    if request.method not in AUDITED_METHODS or request.url.path in EXCLUDED_PATHS:
        return await call_next(request)

    body = _json_or_none(await request.body())
    response = await call_next(request)

    user_id = getattr(request.state, "user_id", None)
    engine = getattr(request.state, "engine", None)
    if response.status_code >= 400 or user_id is None or engine is None:
        return response

    response_id = None
    if "application/json" in response.headers.get("content-type", ""):
        raw = b"".join([chunk async for chunk in response.body_iterator])
        payload = _json_or_none(raw)
        if isinstance(payload, dict):
            response_id = payload.get("id")
        response = Response(
            content=raw,
            status_code=response.status_code,
            headers=dict(response.headers),
            media_type=response.media_type,
        )

    try:
        await run_db(
            _write_audit, engine,
            user_id=user_id,
            method=request.method,
            path=request.url.path,
            body=body,
            response_id=response_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except Exception:
        logger.exception("Failed to write audit log for %s %s", request.method, request.url.path)
    return response
