"""
precinct.api.routes.uprank_locks — Promotion holds
===================================================

Holds are created automatically when a promotion changes team (see
:mod:`precinct.services.uprank_lock_service`), through ``/auto`` when a team
change happened outside the dashboard, or manually with a reason and an
end date.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_current_user, get_session, require_permission
from precinct.api.serializers import employee_brief, get_or_404, iso, user_brief
from precinct.constants import MANUAL_LOCK_TEAM, UPRANK_LOCK_WEEKS, as_utc, utcnow
from precinct.database.models import Employee, UprankLock
from precinct.services import realtime, uprank_lock_service
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/uprank-locks", tags=["uprank-locks"])

_VIEW = ("teamlead.view", "management.view", "management.uprank")


class AutoLockCreate(BaseModel):
    employee_id: int
    team: str


class LockCreate(BaseModel):
    employee_id: int | None = None
    reason: str | None = None
    locked_until: datetime | None = None


def lock_to_dict(lock: UprankLock) -> dict:
    return {
        "id": lock.id,
        "employee": employee_brief(lock.employee),
        "reason": lock.reason,
        "team": lock.team,
        "locked_until": iso(lock.locked_until),
        "is_active": lock.is_active,
        "created_by": user_brief(lock.created_by),
        "created_at": iso(lock.created_at),
    }


def _query():
    return select(UprankLock).options(
        selectinload(UprankLock.employee).selectinload(Employee.user),
        selectinload(UprankLock.created_by),
    )


def _load(session: Session, lock_id: int) -> UprankLock:
    lock = session.scalar(_query().where(UprankLock.id == lock_id))
    if lock is None:
        raise HTTPException(404, "Uprank lock not found")
    return lock


@router.get("", dependencies=[Depends(require_permission(*_VIEW))])
def list_locks(session: Session = Depends(get_session)):
    """Active holds, soonest to expire first."""
    rows = session.scalars(
        _query()
        .where(UprankLock.is_active.is_(True), UprankLock.locked_until > utcnow())
        .order_by(UprankLock.locked_until)
    ).all()
    return [lock_to_dict(lock) for lock in rows]


@router.get("/stats", dependencies=[Depends(require_permission(*_VIEW))])
def lock_stats(session: Session = Depends(get_session)):
    now = utcnow()
    total = session.scalar(select(func.count()).select_from(UprankLock)) or 0
    active = session.scalar(
        select(func.count()).select_from(UprankLock)
        .where(UprankLock.is_active.is_(True), UprankLock.locked_until > now)
    ) or 0
    expired = session.scalar(
        select(func.count()).select_from(UprankLock)
        .where(or_(UprankLock.is_active.is_(False), UprankLock.locked_until <= now))
    ) or 0
    return {"total": total, "active": active, "expired": expired}


@router.get("/employee/{employee_id}", dependencies=[Depends(get_current_user)])
def employee_lock(employee_id: int, session: Session = Depends(get_session)):
    lock = uprank_lock_service.active_lock(session, employee_id)
    if lock is None:
        return {"locked": False}
    return {"locked": True, "lock": lock_to_dict(_load(session, lock.id))}


@router.post("/auto", status_code=201)
def create_auto_lock(
    body: AutoLockCreate,
    response: Response,
    user: CurrentUser = Depends(require_permission("management.uprank")),
    session: Session = Depends(get_session),
):
    """Hold promotions after a team change; teams without a hold create nothing."""
    team = body.team.strip().upper().removeprefix("TEAM ")
    if team not in UPRANK_LOCK_WEEKS:
        response.status_code = 200
        return {"created": False, "message": f"Team {body.team} does not hold promotions"}
    employee = get_or_404(session, Employee, body.employee_id, "Employee")
    lock = uprank_lock_service.lock_for_team(session, employee, team, user.id)
    session.commit()
    data = lock_to_dict(_load(session, lock.id))
    realtime.broadcast_create("uprankLock", data)
    return {"created": True, "lock": data}


@router.post("", status_code=201)
def create_lock(
    body: LockCreate,
    user: CurrentUser = Depends(require_permission("management.uprank")),
    session: Session = Depends(get_session),
):
    if body.employee_id is None or not (body.reason or "").strip() or body.locked_until is None:
        raise HTTPException(400, "Employee, reason and end date are required")
    if as_utc(body.locked_until) <= utcnow():
        raise HTTPException(400, "End date must be in the future")
    employee = get_or_404(session, Employee, body.employee_id, "Employee")
    lock = uprank_lock_service.place_lock(
        session, employee,
        reason=body.reason.strip(),
        team=MANUAL_LOCK_TEAM,
        locked_until=as_utc(body.locked_until),
        created_by_id=user.id,
    )
    session.commit()
    data = lock_to_dict(_load(session, lock.id))
    realtime.broadcast_create("uprankLock", data)
    return data


@router.put("/{lock_id}/revoke", dependencies=[Depends(require_permission("management.uprank"))])
def revoke_lock(lock_id: int, session: Session = Depends(get_session)):
    lock = _load(session, lock_id)
    lock.is_active = False
    session.commit()
    data = lock_to_dict(lock)
    realtime.broadcast_update("uprankLock", data)
    return data


@router.delete("/{lock_id}", status_code=204, dependencies=[Depends(require_permission("management.uprank"))])
def delete_lock(lock_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, UprankLock, lock_id, "Uprank lock"))
    session.commit()
    realtime.broadcast_delete("uprankLock", lock_id)
