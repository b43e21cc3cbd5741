"""
precinct.api.routes.employees — Personnel records
==================================================

Static routes (``/stats``) are declared before ``/{employee_id}`` so they
are not swallowed by the path parameter.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.pagination import PageParams, paginate
from precinct.constants import DEFAULT_DEPARTMENT, DEFAULT_RANK, TEAMS, team_for_level
from precinct.database.models import Absence, Employee, EmployeeStatus, User
from precinct.services import employee_service, realtime, uprank_lock_service
from precinct.services.employee_service import KNOWN_DEPARTMENTS, employee_to_dict
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/employees", tags=["employees"])


class EmployeeCreate(BaseModel):
    user_id: int
    badge_number: str | None = None
    rank: str | None = None
    rank_level: int = 1
    department: str | None = None
    status: EmployeeStatus = EmployeeStatus.ACTIVE


class EmployeeUpdate(BaseModel):
    badge_number: str | None = None
    display_name: str | None = None
    status: EmployeeStatus | None = None
    notes: str | None = None


class DepartmentsUpdate(BaseModel):
    departments: list[str] = Field(default_factory=list)


class TerminateRequest(BaseModel):
    reason: str | None = None


def _employee_query():
    return select(Employee).options(selectinload(Employee.user))


def _get_employee(session: Session, employee_id: int) -> Employee:
    employee = session.scalar(_employee_query().where(Employee.id == employee_id))
    if not employee:
        raise HTTPException(404, "Employee not found")
    return employee


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------
@router.get("/stats", dependencies=[Depends(require_permission("employees.view"))])
def employee_stats(session: Session = Depends(get_session)):
    total = session.scalar(select(func.count()).select_from(Employee)) or 0
    by_status = dict(session.execute(
        select(Employee.status, func.count()).group_by(Employee.status)
    ).all())
    departments: dict[str, int] = {}
    active = session.scalars(
        select(Employee.department).where(Employee.status == EmployeeStatus.ACTIVE)
    ).all()
    for value in active:
        for dept in (value or DEFAULT_DEPARTMENT).split(", "):
            departments[dept] = departments.get(dept, 0) + 1
    return {"total": total, "byStatus": by_status, "byDepartment": departments}


@router.get("", dependencies=[Depends(require_permission("employees.view"))])
def list_employees(
    search: str | None = None,
    department: str | None = None,
    rank: str | None = None,
    team: str | None = None,
    status: str | None = None,
    params: PageParams = Depends(),
    session: Session = Depends(get_session),
):
    stmt = (
        _employee_query()
        .join(Employee.user)
        .order_by(Employee.rank_level.desc(), Employee.id)
    )
    if department:
        stmt = stmt.where(Employee.department.contains(department))
    if rank:
        stmt = stmt.where(Employee.rank == rank)
    if team and team.upper() in TEAMS:
        low, high = TEAMS[team.upper()]
        stmt = stmt.where(Employee.rank_level.between(low, high))
    if status:
        stmt = stmt.where(Employee.status == status)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            User.username.ilike(pattern),
            User.display_name.ilike(pattern),
            Employee.badge_number.ilike(pattern),
        ))
    return paginate(session, stmt, params, employee_to_dict)


@router.post("", status_code=201)
def create_employee(
    body: EmployeeCreate,
    user: CurrentUser = Depends(require_permission("employees.edit")),
    session: Session = Depends(get_session),
):
    target = session.get(User, body.user_id)
    if not target:
        raise HTTPException(404, "User not found")
    if session.scalar(select(Employee.id).where(Employee.user_id == body.user_id)) is not None:
        raise HTTPException(400, "User is already an employee")
    if body.badge_number and session.scalar(
        select(Employee.id).where(Employee.badge_number == body.badge_number)
    ) is not None:
        raise HTTPException(400, f"Badge number {body.badge_number} is already taken")

    employee = Employee(
        user_id=body.user_id,
        badge_number=body.badge_number,
        rank=body.rank or DEFAULT_RANK,
        rank_level=body.rank_level,
        department=body.department or DEFAULT_DEPARTMENT,
        status=body.status,
    )
    session.add(employee)
    session.commit()
    data = employee_to_dict(_get_employee(session, employee.id))
    realtime.broadcast_create("employee", data)
    realtime.emit_employee_event("hired", data)
    logger.info("Employee %d created for user %s by %s", employee.id, body.user_id, user.id)
    return data


# ---------------------------------------------------------------------------
# Departments, ranks, termination
# ---------------------------------------------------------------------------
@router.get("/departments", dependencies=[Depends(require_permission("employees.view"))])
def known_departments():
    return {"departments": [DEFAULT_DEPARTMENT, *KNOWN_DEPARTMENTS]}


@router.get("/{employee_id}/departments", dependencies=[Depends(require_permission("employees.view"))])
def get_departments(employee_id: int, session: Session = Depends(get_session)):
    employee = _get_employee(session, employee_id)
    current = employee_to_dict(employee)["departments"]
    return {
        "departments": current,
        "available": [{"name": d, "active": d in current} for d in KNOWN_DEPARTMENTS],
    }


@router.put("/{employee_id}/departments", dependencies=[Depends(require_permission("employees.edit"))])
def set_departments(
    employee_id: int,
    body: DepartmentsUpdate,
    session: Session = Depends(get_session),
):
    employee = _get_employee(session, employee_id)
    try:
        employee_service.set_departments(session, employee, body.departments)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    session.commit()
    data = employee_to_dict(employee)
    realtime.broadcast_update("employee", data)
    realtime.emit_employee_event("unit_changed", data)
    return {"success": True, "employee": data}


def _change_rank(session: Session, employee_id: int, step: int, actor_id: int) -> dict:
    employee = _get_employee(session, employee_id)
    try:
        if step > 0:
            uprank_lock_service.ensure_not_locked(session, employee.id)
        result = employee_service.step_rank(session, employee, step)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    if result["promoted"] and result["team_changed"]:
        uprank_lock_service.lock_for_team(session, employee, team_for_level(result["new_level"]), actor_id)
    session.commit()
    data = employee_to_dict(employee)
    realtime.broadcast_update("employee", data)
    realtime.emit_employee_event("promoted" if result["promoted"] else "demoted", data)
    return {
        "success": True,
        "employee": data,
        "newRank": result["new_rank"],
        "newLevel": result["new_level"],
        "teamChanged": result["team_changed"],
    }


@router.post("/{employee_id}/uprank")
def uprank(
    employee_id: int,
    user: CurrentUser = Depends(require_permission("employees.rank")),
    session: Session = Depends(get_session),
):
    return _change_rank(session, employee_id, +1, user.id)


@router.post("/{employee_id}/downrank")
def downrank(
    employee_id: int,
    user: CurrentUser = Depends(require_permission("employees.rank")),
    session: Session = Depends(get_session),
):
    return _change_rank(session, employee_id, -1, user.id)


@router.post("/{employee_id}/terminate")
def terminate_employee(
    employee_id: int,
    body: TerminateRequest,
    user: CurrentUser = Depends(require_permission("employees.delete")),
    session: Session = Depends(get_session),
):
    employee = _get_employee(session, employee_id)
    if employee.user_id == user.id:
        raise HTTPException(400, "You cannot terminate yourself")
    employee_service.terminate(session, employee, body.reason)
    session.commit()
    data = employee_to_dict(employee)
    realtime.broadcast_update("employee", data)
    realtime.emit_employee_event("terminated", data)
    return {"success": True, "employee": data}


# ---------------------------------------------------------------------------
# Single record
# ---------------------------------------------------------------------------
@router.get("/{employee_id}", dependencies=[Depends(require_permission("employees.view"))])
def get_employee(employee_id: int, session: Session = Depends(get_session)):
    employee = _get_employee(session, employee_id)
    absences = session.scalars(
        select(Absence)
        .where(Absence.employee_id == employee_id)
        .order_by(Absence.start_date.desc())
        .limit(10)
    ).all()
    data = employee_to_dict(employee)
    data["absences"] = [
        {
            "id": a.id,
            "type": a.type,
            "reason": a.reason,
            "start_date": a.start_date.isoformat(),
            "end_date": a.end_date.isoformat(),
        }
        for a in absences
    ]
    return data


@router.put("/{employee_id}", dependencies=[Depends(require_permission("employees.edit"))])
def update_employee(
    employee_id: int,
    body: EmployeeUpdate,
    session: Session = Depends(get_session),
):
    employee = _get_employee(session, employee_id)
    fields = body.model_fields_set

    if "badge_number" in fields:
        badge = (body.badge_number or "").strip() or None
        if badge and session.scalar(
            select(Employee.id).where(Employee.badge_number == badge, Employee.id != employee_id)
        ) is not None:
            raise HTTPException(400, f"Badge number {badge} is already taken")
        employee.badge_number = badge
    if body.status is not None:
        employee.status = body.status
    if "notes" in fields:
        employee.notes = body.notes

    if "badge_number" in fields or body.display_name:
        employee_service.apply_nickname(session, employee, body.display_name)

    session.commit()
    data = employee_to_dict(employee)
    realtime.broadcast_update("employee", data)
    return data


@router.delete("/{employee_id}", status_code=204, dependencies=[Depends(require_permission("employees.delete"))])
def delete_employee(employee_id: int, session: Session = Depends(get_session)):
    """Soft delete: the record stays, marked TERMINATED."""
    employee = _get_employee(session, employee_id)
    employee.status = EmployeeStatus.TERMINATED
    session.commit()
    realtime.broadcast_delete("employee", employee_id)
