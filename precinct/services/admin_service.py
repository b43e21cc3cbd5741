"""
precinct.services.admin_service — Audited Admin Mutations
==========================================================

Role, permission-assignment and bonus-config edits go through this module.
Every write follows the pattern:

  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. Commit

Callers must invalidate the permission cache after role changes.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.database.models import (
    AdminActionType,
    AdminLog,
    BonusConfig,
    Permission,
    Role,
    User,
)

logger = logging.getLogger(__name__)


class AdminError(Exception):
    """Raised when an admin mutation is not allowed (e.g. deleting a system role)."""


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------

def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime):
            val = val.isoformat()
        result[col.name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    ip_address: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        ip_address=ip_address,
    ))


def _audited_update(
    engine,
    model_cls: type,
    pk: int,
    *,
    table_name: str,
    actor_id: int,
    frozen_keys: tuple[str, ...] = ("id",),
    ip_address: str | None = None,
    **kwargs: Any,
) -> Any | None:
    """Generic audited UPDATE: get -> before -> apply kwargs -> log -> commit.

    Returns the updated (expunged) object, or ``None`` if not found.
    """
    with Session(engine, expire_on_commit=False) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return None
        before = _row_to_dict(obj)
        for key, value in kwargs.items():
            if hasattr(obj, key) and key not in frozen_keys:
                setattr(obj, key, value)
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table=table_name,
            target_id=str(obj.id),
            before=before,
            after=_row_to_dict(obj),
            ip_address=ip_address,
        )
        session.commit()
        session.refresh(obj)
        session.expunge(obj)
        return obj


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------

def role_to_dict(role: Role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "display_name": role.display_name,
        "color": role.color,
        "level": role.level,
        "discord_role_id": role.discord_role_id,
        "is_system": role.is_system,
        "permissions": sorted(p.name for p in role.permissions),
    }


def list_roles(engine) -> list[dict]:
    with Session(engine) as session:
        roles = session.scalars(
            select(Role).options(selectinload(Role.permissions)).order_by(Role.level.desc())
        ).all()
        return [role_to_dict(r) for r in roles]


def list_permissions(engine) -> list[dict]:
    with Session(engine) as session:
        perms = session.scalars(select(Permission).order_by(Permission.category, Permission.name)).all()
        return [
            {"id": p.id, "name": p.name, "description": p.description, "category": p.category}
            for p in perms
        ]


def _resolve_permissions(session: Session, names: list[str]) -> list[Permission]:
    perms = session.scalars(select(Permission).where(Permission.name.in_(names))).all()
    missing = set(names) - {p.name for p in perms}
    if missing:
        raise AdminError(f"Unknown permission(s): {', '.join(sorted(missing))}")
    return list(perms)


def create_role(
    engine,
    *,
    name: str,
    display_name: str,
    level: int = 0,
    color: str = "#6b7280",
    discord_role_id: str | None = None,
    permissions: list[str] | None = None,
    actor_id: int,
) -> dict:
    with Session(engine) as session:
        if session.scalar(select(Role).where(Role.name == name)) is not None:
            raise AdminError(f"Role '{name}' already exists")
        role = Role(
            name=name,
            display_name=display_name,
            level=level,
            color=color,
            discord_role_id=discord_role_id,
            permissions=_resolve_permissions(session, permissions or []),
        )
        session.add(role)
        session.flush()
        after = role_to_dict(role)
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.CREATE,
            target_table="roles",
            target_id=str(role.id),
            before=None,
            after=after,
        )
        session.commit()
    logger.info("Role '%s' created by %s", name, actor_id)
    return after


def update_role(engine, role_id: int, *, actor_id: int, **fields: Any) -> dict | None:
    """Update a role's attributes and (optionally) its permission list.

    ``name`` is frozen for system roles.
    """
    with Session(engine) as session:
        role = session.get(Role, role_id)
        if role is None:
            return None
        before = role_to_dict(role)
        perm_names = fields.pop("permissions", None)
        for key, value in fields.items():
            if value is None or key == "id":
                continue
            if key == "name" and role.is_system and value != role.name:
                raise AdminError("System roles cannot be renamed")
            if hasattr(role, key):
                setattr(role, key, value)
        if perm_names is not None:
            role.permissions = _resolve_permissions(session, perm_names)
        session.flush()
        after = role_to_dict(role)
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table="roles",
            target_id=str(role.id),
            before=before,
            after=after,
        )
        session.commit()
        return after


def delete_role(engine, role_id: int, *, actor_id: int) -> bool:
    with Session(engine) as session:
        role = session.get(Role, role_id)
        if role is None:
            return False
        if role.is_system:
            raise AdminError("System roles cannot be deleted")
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.DELETE,
            target_table="roles",
            target_id=str(role.id),
            before=role_to_dict(role),
            after=None,
        )
        session.delete(role)
        session.commit()
        return True


def set_user_roles(engine, user_id: int, role_ids: list[int], *, actor_id: int) -> list[str] | None:
    """Replace a user's dashboard roles.  Returns the new role names."""
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            return None
        before = {"roles": sorted(r.name for r in user.roles)}
        roles = session.scalars(select(Role).where(Role.id.in_(role_ids))).all()
        if len(roles) != len(set(role_ids)):
            raise AdminError("One or more roles do not exist")
        user.roles = list(roles)
        after = {"roles": sorted(r.name for r in roles)}
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.UPDATE,
            target_table="user_roles",
            target_id=str(user_id),
            before=before,
            after=after,
        )
        session.commit()
        return after["roles"]


# ---------------------------------------------------------------------------
# Bonus configs
# ---------------------------------------------------------------------------

def update_bonus_config(engine, config_id: int, *, actor_id: int, **fields: Any) -> BonusConfig | None:
    """Edit a bonus activity's amount / active flag / labels."""
    return _audited_update(
        engine, BonusConfig, config_id,
        table_name="bonus_configs", actor_id=actor_id,
        frozen_keys=("id", "activity_type"),
        **{k: v for k, v in fields.items() if v is not None},
    )


# ---------------------------------------------------------------------------
# Admin log
# ---------------------------------------------------------------------------

def get_admin_log(engine, *, page: int = 1, limit: int = 50, target_table: str | None = None) -> tuple[list[dict], int]:
    with Session(engine) as session:
        stmt = select(AdminLog)
        count_stmt = select(func.count()).select_from(AdminLog)
        if target_table:
            stmt = stmt.where(AdminLog.target_table == target_table)
            count_stmt = count_stmt.where(AdminLog.target_table == target_table)
        total = session.scalar(count_stmt) or 0
        rows = session.scalars(
            stmt.order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
            .offset((page - 1) * limit).limit(limit)
        ).all()
        return [_row_to_dict(r) for r in rows], total
