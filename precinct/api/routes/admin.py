"""
precinct.api.routes.admin — Administration
===========================================

Roles and their permissions, runtime settings, the audit trails, live
logs and guild/roster controls.  Role and setting edits go through the
audited services so ``admin_log`` keeps before/after snapshots.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from precinct.api.deps import get_config, get_engine, get_session, require_permission
from precinct.api.pagination import page_response
from precinct.config import PrecinctConfig
from precinct.constants import ADMIN_PERMISSION, utcnow
from precinct.database.models import AuditLog, Employee, EmployeeStatus, Role, User
from precinct.database.seed import seed_default_roles, seed_permissions
from precinct.services import admin_service, audit_service, event_bus, permission_cache, settings_service
from precinct.services.admin_service import AdminError
from precinct.services.log_buffer import VALID_LEVELS, get_current_level, get_logs, set_capture_level
from precinct.services.realtime import hub

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])

require_admin = require_permission(ADMIN_PERMISSION)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RoleCreate(BaseModel):
    name: str | None = None
    display_name: str | None = None
    level: int = 0
    color: str = "#6b7280"
    discord_role_id: str | None = None
    permissions: list[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = None
    display_name: str | None = None
    level: int | None = None
    color: str | None = None
    discord_role_id: str | None = None
    permissions: list[str] | None = None


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


class LogLevel(BaseModel):
    level: str = ""


# ---------------------------------------------------------------------------
# Roles & permissions
# ---------------------------------------------------------------------------
@router.get("/roles", dependencies=[Depends(require_admin)])
def list_roles(engine=Depends(get_engine)):
    return admin_service.list_roles(engine)


@router.post("/roles", status_code=201)
def create_role(body: RoleCreate, admin=Depends(require_admin), engine=Depends(get_engine)):
    if not (body.name or "").strip() or not (body.display_name or "").strip():
        raise HTTPException(400, "Name and display name are required")
    try:
        return admin_service.create_role(
            engine,
            name=body.name.strip(),
            display_name=body.display_name.strip(),
            level=body.level,
            color=body.color,
            discord_role_id=body.discord_role_id,
            permissions=body.permissions,
            actor_id=admin.id,
        )
    except AdminError as exc:
        raise HTTPException(400, str(exc))


@router.put("/roles/{role_id}")
def update_role(role_id: int, body: RoleUpdate, admin=Depends(require_admin), engine=Depends(get_engine)):
    try:
        role = admin_service.update_role(engine, role_id, actor_id=admin.id, **body.model_dump(exclude_unset=True))
    except AdminError as exc:
        raise HTTPException(400, str(exc))
    if role is None:
        raise HTTPException(404, "Role not found")
    permission_cache.invalidate()
    return role


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(role_id: int, admin=Depends(require_admin), engine=Depends(get_engine)):
    try:
        deleted = admin_service.delete_role(engine, role_id, actor_id=admin.id)
    except AdminError as exc:
        raise HTTPException(400, str(exc))
    if not deleted:
        raise HTTPException(404, "Role not found")
    permission_cache.invalidate()


@router.get("/permissions", dependencies=[Depends(require_admin)])
def list_permissions(engine=Depends(get_engine)):
    return admin_service.list_permissions(engine)


@router.post("/permissions/seed", dependencies=[Depends(require_admin)])
def seed_catalogue(session: Session = Depends(get_session)):
    """Insert catalogue permissions and default roles that are missing."""
    permissions = seed_permissions(session)
    roles = seed_default_roles(session)
    session.commit()
    permission_cache.invalidate()
    logger.info("Permission catalogue seeded: %d permission(s), %d role(s)", permissions, roles)
    return {"permissions": permissions, "roles": roles}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings", dependencies=[Depends(require_permission("admin.settings"))])
def get_all_settings(engine=Depends(get_engine)):
    return {"settings": settings_service.get_all_settings(engine)}


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    admin=Depends(require_permission("admin.settings")),
    engine=Depends(get_engine),
):
    items = [
        {
            "key": s.key,
            "value": s.value,
            **({"category": s.category} if s.category else {}),
            **({"description": s.description} if s.description else {}),
        }
        for s in body
    ]
    count = settings_service.bulk_upsert(engine, items, actor_id=admin.id)
    return {"updated": count}


# ---------------------------------------------------------------------------
# Audit trails
# ---------------------------------------------------------------------------
@router.get("/audit-logs", dependencies=[Depends(require_permission("audit.view"))])
def audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    entity: str | None = None,
    user_id: int | None = None,
    session: Session = Depends(get_session),
):
    """Paginated request audit log, newest first."""
    rows, total = audit_service.list_audit_logs(session, page=page, limit=limit, entity=entity, user_id=user_id)
    return page_response(rows, total, page, limit)


@router.get("/admin-log", dependencies=[Depends(require_admin)])
def admin_log(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    target_table: str | None = None,
    engine=Depends(get_engine),
):
    rows, total = admin_service.get_admin_log(engine, page=page, limit=limit, target_table=target_table)
    return page_response(rows, total, page, limit)


# ---------------------------------------------------------------------------
# Live Logs
# ---------------------------------------------------------------------------
@router.get("/logs", dependencies=[Depends(require_admin)])
def get_live_logs(
    tail: int = Query(200, ge=1, le=5000),
    level: str | None = Query(None),
    logger_filter: str | None = Query(None, alias="logger"),
):
    """Return recent log entries from the in-memory ring buffer."""
    entries = get_logs(tail=tail, level=level, logger_filter=logger_filter)
    return {
        "entries": entries,
        "total": len(entries),
        "capture_level": get_current_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/logs/level", dependencies=[Depends(require_admin)])
def change_log_level(body: LogLevel):
    """Change the capture level of the ring-buffer handler on-the-fly."""
    try:
        return {"level": set_capture_level(body.level)}
    except ValueError:
        raise HTTPException(400, f"Invalid level. Must be one of: {', '.join(VALID_LEVELS)}")


# ---------------------------------------------------------------------------
# Guild & roster
# ---------------------------------------------------------------------------
@router.get("/guild", dependencies=[Depends(require_admin)])
def guild_info(
    cfg: PrecinctConfig = Depends(get_config),
    session: Session = Depends(get_session),
    engine=Depends(get_engine),
):
    """Guild identity, the rank roles the bot last saw and the bot's health."""
    catalogue = settings_service.load_rank_catalogue(session)
    return {
        "guild_id": str(cfg.guild_id),
        "department_name": cfg.department_name,
        "ranks": [
            {"level": r.level, "name": r.name, "role_id": str(r.role_id)}
            for r in sorted(catalogue.ranks.values(), key=lambda r: r.level)
        ],
        "ranks_captured_at": catalogue.captured_at or None,
        "bot": settings_service.get_bot_heartbeat(engine),
    }


@router.post("/roster/sync")
def request_roster_sync(admin=Depends(require_admin), engine=Depends(get_engine)):
    """Ask the bot to run a roster sync now instead of waiting for the loop."""
    queued = event_bus.publish(engine, event_bus.event("roster_sync_requested", requested_by=str(admin.id)))
    logger.info("Roster sync requested by %s (queued=%s)", admin.id, queued)
    return {"success": True, "queued": queued}


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------
@router.get("/stats", dependencies=[Depends(require_admin)])
def admin_stats(session: Session = Depends(get_session)):
    day_start = utcnow().replace(hour=0, minute=0, second=0, microsecond=0)
    return {
        "users": session.scalar(select(func.count()).select_from(User)) or 0,
        "activeUsers": session.scalar(
            select(func.count()).select_from(User).where(User.is_active.is_(True))
        ) or 0,
        "employees": session.scalar(
            select(func.count()).select_from(Employee).where(Employee.status == EmployeeStatus.ACTIVE)
        ) or 0,
        "roles": session.scalar(select(func.count()).select_from(Role)) or 0,
        "auditEntriesToday": session.scalar(
            select(func.count()).select_from(AuditLog).where(AuditLog.created_at >= day_start)
        ) or 0,
        "onlineUsers": len(hub.online_user_ids()),
    }
