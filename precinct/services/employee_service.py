"""
precinct.services.employee_service — Rank, Unit & Termination Workflows
========================================================================

Employee mutations that touch the guild.  The database change happens here
inside the caller's session; the matching guild action (role swap,
nickname, kick) is queued on the same transaction as an event for the bot,
so it only fires once the change is committed.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from precinct.constants import (
    MAX_RANK_LEVEL,
    MIN_RANK_LEVEL,
    UNIT_ROLES,
    as_utc,
    format_nickname,
    strip_badge_prefix,
    team_for_level,
)
from precinct.database.models import Employee, EmployeeStatus, User
from precinct.services import event_bus, notification_service, permission_cache
from precinct.services.settings_service import load_rank_catalogue

logger = logging.getLogger(__name__)

KNOWN_DEPARTMENTS = tuple(dict.fromkeys(UNIT_ROLES.values()))


def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def employee_to_dict(e: Employee) -> dict:
    user: User | None = e.user
    return {
        "id": e.id,
        "user_id": str(e.user_id),
        "badge_number": e.badge_number,
        "rank": e.rank,
        "rank_level": e.rank_level,
        "team": team_for_level(e.rank_level),
        "department": e.department,
        "departments": [d for d in e.department.split(", ") if d] if e.department else [],
        "status": e.status,
        "hire_date": _iso(e.hire_date),
        "notes": e.notes,
        "user": {
            "id": str(user.id),
            "username": user.username,
            "display_name": user.display_name,
            "avatar": user.avatar,
            "is_active": user.is_active,
        } if user is not None else None,
    }


# ---------------------------------------------------------------------------
# Nickname
# ---------------------------------------------------------------------------

def nickname_for(employee: Employee, display_name: str | None = None) -> str:
    """``[BADGE] name`` with any old badge prefix stripped from the name."""
    user = employee.user
    name = (
        strip_badge_prefix(display_name)
        or strip_badge_prefix(user.display_name)
        or user.username
    )
    return format_nickname(employee.badge_number, name)


def apply_nickname(session: Session, employee: Employee, display_name: str | None = None) -> str:
    """Store the nickname on the user and ask the bot to set it in the guild."""
    nickname = nickname_for(employee, display_name)
    employee.user.display_name = nickname
    event_bus.publish_on_commit(
        session, event_bus.event("nickname_update", user_id=str(employee.user_id), nickname=nickname),
    )
    return nickname


# ---------------------------------------------------------------------------
# Ranks
# ---------------------------------------------------------------------------

def set_rank_level(session: Session, employee: Employee, new_level: int) -> dict:
    """Move *employee* to *new_level* and queue the guild role swap.

    Raises ``ValueError`` when the level is out of range or no rank role
    is known for it.
    """
    if not MIN_RANK_LEVEL <= new_level <= MAX_RANK_LEVEL:
        raise ValueError(f"Rank level must be between {MIN_RANK_LEVEL} and {MAX_RANK_LEVEL}")
    if new_level == employee.rank_level:
        raise ValueError("Employee already holds this rank")

    catalogue = load_rank_catalogue(session)
    new_rank = catalogue.name_for(new_level)
    if new_rank is None:
        raise ValueError(f"No rank role known for level {new_level}; run a roster sync first")

    old_level, old_rank = employee.rank_level, employee.rank
    employee.rank_level = new_level
    employee.rank = new_rank
    promoted = new_level > old_level

    old_role = catalogue.ranks.get(old_level)
    new_role = catalogue.ranks[new_level]
    event_bus.publish_on_commit(session, event_bus.event(
        "rank_changed",
        user_id=str(employee.user_id),
        add_role_id=str(new_role.role_id),
        remove_role_id=str(old_role.role_id) if old_role else None,
    ))

    if promoted:
        notification_service.notify_promotion(session, employee.user_id, old_rank=old_rank, new_rank=new_rank)
    else:
        notification_service.notify_demotion(session, employee.user_id, old_rank=old_rank, new_rank=new_rank)

    logger.info(
        "Employee %d %s: %s (%d) → %s (%d)",
        employee.id, "promoted" if promoted else "demoted", old_rank, old_level, new_rank, new_level,
    )
    return {
        "old_rank": old_rank,
        "new_rank": new_rank,
        "old_level": old_level,
        "new_level": new_level,
        "promoted": promoted,
        "team_changed": team_for_level(old_level) != team_for_level(new_level),
    }


def step_rank(session: Session, employee: Employee, step: int) -> dict:
    """Uprank (``+1``) or downrank (``-1``)."""
    new_level = employee.rank_level + step
    if new_level > MAX_RANK_LEVEL:
        raise ValueError("Employee already holds the highest rank")
    if new_level < MIN_RANK_LEVEL:
        raise ValueError("Employee already holds the lowest rank")
    return set_rank_level(session, employee, new_level)


# ---------------------------------------------------------------------------
# Units / departments
# ---------------------------------------------------------------------------

def set_departments(session: Session, employee: Employee, departments: list[str]) -> str:
    unknown = [d for d in departments if d not in KNOWN_DEPARTMENTS and d != "Patrol"]
    if unknown:
        raise ValueError(f"Unknown department(s): {', '.join(unknown)}")
    wanted = [d for d in dict.fromkeys(departments) if d != "Patrol"]
    value = ", ".join(wanted) or "Patrol"
    if value == employee.department:
        return value
    employee.department = value
    event_bus.publish_on_commit(session, event_bus.event(
        "units_changed", user_id=str(employee.user_id), departments=wanted,
    ))
    notification_service.notify_unit_change(session, employee.user_id, departments=value)
    return value


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------

def terminate(session: Session, employee: Employee, reason: str | None = None) -> None:
    """Mark terminated, deactivate the user and queue the guild kick."""
    employee.status = EmployeeStatus.TERMINATED
    employee.user.is_active = False
    event_bus.publish_on_commit(session, event_bus.event(
        "member_kick", user_id=str(employee.user_id), reason=reason or "Terminated",
    ))
    permission_cache.invalidate(employee.user_id)
    logger.info("Employee %d terminated (%s)", employee.id, reason or "no reason given")
