"""
precinct.api.routes.absences — Leave of absence & day off
==========================================================

A DAY_OFF may be taken once per bonus week (Monday 00:00 → Sunday 23:59).
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_current_user, get_session, require_permission
from precinct.api.pagination import PageParams, paginate
from precinct.constants import as_utc, utcnow
from precinct.database.models import Absence, AbsenceType, Employee
from precinct.services import realtime
from precinct.services.bonus_service import get_week_bounds
from precinct.services.employee_service import employee_to_dict
from precinct.services.permission_cache import CurrentUser
from precinct.services.settings_service import get_setting_value

router = APIRouter(prefix="/absences", tags=["absences"])


class AbsenceCreate(BaseModel):
    type: AbsenceType = AbsenceType.ABSENCE
    reason: str | None = None
    start_date: date
    end_date: date


def absence_to_dict(a: Absence) -> dict:
    return {
        "id": a.id,
        "employee_id": a.employee_id,
        "type": a.type,
        "reason": a.reason,
        "start_date": as_utc(a.start_date).isoformat(),
        "end_date": as_utc(a.end_date).isoformat(),
        "created_at": as_utc(a.created_at).isoformat() if a.created_at else None,
        "employee": employee_to_dict(a.employee) if a.employee else None,
    }


def _absence_query():
    return select(Absence).options(selectinload(Absence.employee).selectinload(Employee.user))


def day_off_used_this_week(session: Session, employee_id: int, now: datetime | None = None) -> bool:
    week_start, _ = get_week_bounds(now)
    return session.scalar(
        select(Absence.id).where(
            Absence.employee_id == employee_id,
            Absence.type == AbsenceType.DAY_OFF,
            Absence.created_at >= week_start,
        ).limit(1)
    ) is not None


@router.get("/active", dependencies=[Depends(require_permission("employees.view"))])
def active_absences(session: Session = Depends(get_session)):
    now = utcnow()
    rows = session.scalars(
        _absence_query()
        .where(Absence.start_date <= now, Absence.end_date >= now)
        .order_by(Absence.end_date.asc())
    ).all()
    return [absence_to_dict(a) for a in rows]


@router.get("", dependencies=[Depends(require_permission("employees.view"))])
def list_absences(
    type: AbsenceType | None = None,
    employee_id: int | None = None,
    active: bool = False,
    params: PageParams = Depends(),
    session: Session = Depends(get_session),
):
    stmt = _absence_query().order_by(Absence.start_date.desc(), Absence.id.desc())
    if type:
        stmt = stmt.where(Absence.type == type)
    if employee_id is not None:
        stmt = stmt.where(Absence.employee_id == employee_id)
    if active:
        now = utcnow()
        stmt = stmt.where(Absence.start_date <= now, Absence.end_date >= now)
    return paginate(session, stmt, params, absence_to_dict)


@router.get("/employee/{employee_id}", dependencies=[Depends(require_permission("employees.view"))])
def employee_absences(
    employee_id: int,
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
):
    rows = session.scalars(
        _absence_query()
        .where(Absence.employee_id == employee_id)
        .order_by(Absence.start_date.desc())
        .limit(limit)
    ).all()
    return {
        "absences": [absence_to_dict(a) for a in rows],
        "dayOffUsedThisWeek": day_off_used_this_week(session, employee_id),
    }


@router.post("", status_code=201)
def create_absence(
    body: AbsenceCreate,
    user: CurrentUser = Depends(require_permission("employees.view")),
    session: Session = Depends(get_session),
):
    """File an absence for the caller's own employee record."""
    if user.employee_id is None:
        raise HTTPException(400, "You are not an employee")
    if body.end_date < body.start_date:
        raise HTTPException(400, "End date must not be before start date")

    max_days = int(get_setting_value(session, "absences.max_days", 14) or 0)
    if max_days and (body.end_date - body.start_date).days + 1 > max_days:
        raise HTTPException(400, f"Absences may last at most {max_days} days")

    if body.type == AbsenceType.DAY_OFF and day_off_used_this_week(session, user.employee_id):
        raise HTTPException(400, "Day off already used this week; a new one is possible from Monday")

    absence = Absence(
        employee_id=user.employee_id,
        type=body.type,
        reason=body.reason,
        start_date=datetime.combine(body.start_date, time.min, tzinfo=UTC),
        end_date=datetime.combine(body.end_date, time.min, tzinfo=UTC)
        + timedelta(days=1) - timedelta(milliseconds=1),
        created_at=utcnow(),
    )
    session.add(absence)
    session.commit()
    data = absence_to_dict(session.scalar(_absence_query().where(Absence.id == absence.id)))
    realtime.broadcast_create("absence", data)
    return data


@router.delete("/{absence_id}", status_code=204)
def delete_absence(
    absence_id: int,
    user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    """Own absences can always be removed; others need ``employees.edit``."""
    absence = session.get(Absence, absence_id)
    if not absence:
        raise HTTPException(404, "Absence not found")
    if absence.employee_id != user.employee_id and not user.has_permission("employees.edit"):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not allowed to delete this absence")
    session.delete(absence)
    session.commit()
    realtime.broadcast_delete("absence", absence_id)
