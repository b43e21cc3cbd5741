"""Serialisation, lookup and numbering helpers shared by the routers."""

from __future__ import annotations

from datetime import datetime

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from precinct.constants import as_utc
from precinct.database.models import Employee, User


def iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def user_brief(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": str(user.id),
        "username": user.username,
        "display_name": user.display_name,
        "avatar": user.avatar,
    }


def employee_brief(employee: Employee | None) -> dict | None:
    if employee is None:
        return None
    return {
        "id": employee.id,
        "badge_number": employee.badge_number,
        "rank": employee.rank,
        "rank_level": employee.rank_level,
        "user": user_brief(employee.user),
    }


def get_or_404(session: Session, model: type, pk, label: str):
    obj = session.get(model, pk)
    if obj is None:
        raise HTTPException(404, f"{label} not found")
    return obj


def next_case_number(session: Session, column, prefix: str, year: int) -> str:
    """Next ``{prefix}-{year}-{NNN}`` after the highest one issued this year."""
    stem = f"{prefix}-{year}-"
    last = session.scalar(
        select(column).where(column.startswith(stem)).order_by(column.desc()).limit(1)
    )
    number = int(last.rsplit("-", 1)[1]) + 1 if last else 1
    return f"{stem}{number:03d}"
