"""
precinct.services.audit_service — Request Audit Trail
======================================================

Helpers behind the HTTP audit middleware: path → entity parsing, recursive
redaction of sensitive body fields, and the ``audit_logs`` insert.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from precinct.database.models import AuditLog

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = ("password", "token", "secret", "authorization")
REDACTED = "[REDACTED]"


def redact(value: Any) -> Any:
    """Replace values of keys containing a sensitive word, at any depth."""
    if isinstance(value, dict):
        return {
            k: REDACTED if any(s in str(k).lower() for s in SENSITIVE_KEYS) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact(v) for v in value]
    return value


def parse_entity(path: str) -> tuple[str, str | None]:
    """``/api/employees/12/uprank`` → ``("employees", "12")``."""
    parts = [p for p in path.split("/") if p]
    if parts and parts[0] == "api":
        parts = parts[1:]
    entity = parts[0] if parts else "unknown"
    entity_id = parts[1] if len(parts) > 1 else None
    return entity, entity_id


def record(
    session: Session,
    *,
    user_id: int | None,
    method: str,
    path: str,
    body: Any = None,
    response_id: Any = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog:
    entity, entity_id = parse_entity(path)
    if entity_id is None and response_id is not None:
        entity_id = str(response_id)
    row = AuditLog(
        user_id=user_id,
        action=f"{method} {path}",
        entity=entity,
        entity_id=entity_id,
        details=redact(body) if body is not None else None,
        ip_address=ip_address,
        user_agent=user_agent[:255] if user_agent else None,
    )
    session.add(row)
    return row


def audit_to_dict(row: AuditLog) -> dict:
    return {
        "id": row.id,
        "user_id": str(row.user_id) if row.user_id is not None else None,
        "action": row.action,
        "entity": row.entity,
        "entity_id": row.entity_id,
        "details": row.details,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def list_audit_logs(
    session: Session,
    *,
    page: int = 1,
    limit: int = 50,
    entity: str | None = None,
    user_id: int | None = None,
) -> tuple[list[dict], int]:
    stmt = select(AuditLog)
    if entity:
        stmt = stmt.where(AuditLog.entity == entity)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
    rows = session.scalars(
        stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .offset((page - 1) * limit).limit(limit)
    ).all()
    return [audit_to_dict(r) for r in rows], total
