"""
precinct.api.routes.uprank_requests — Promotion requests
=========================================================

Team leads file a request for an employee; management approves or rejects
it.  Approval promotes through :func:`employee_service.set_rank_level`,
which swaps the guild rank role and sends the PROMOTION notification.
Employees on a promotion hold can neither be requested nor approved, and
an approval that moves the employee into a new team starts a fresh hold.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import employee_brief, iso, user_brief
from precinct.constants import team_for_level, utcnow
from precinct.database.models import Employee, EmployeeStatus, RequestStatus, UprankRequest
from precinct.services import employee_service, realtime, uprank_lock_service
from precinct.services.permission_cache import CurrentUser
from precinct.services.settings_service import load_rank_catalogue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/uprank-requests", tags=["uprank-requests"])


class RequestCreate(BaseModel):
    employee_id: int | None = None
    target_rank: str | None = None
    reason: str | None = None
    achievements: str | None = None


class ProcessRequest(BaseModel):
    status: RequestStatus | None = None
    rejection_reason: str | None = None


def request_to_dict(r: UprankRequest) -> dict:
    return {
        "id": r.id,
        "employee": employee_brief(r.employee),
        "current_rank": r.current_rank,
        "target_rank": r.target_rank,
        "reason": r.reason,
        "achievements": r.achievements,
        "status": r.status,
        "rejection_reason": r.rejection_reason,
        "requested_by": user_brief(r.requested_by),
        "processed_by": user_brief(r.processed_by),
        "processed_at": iso(r.processed_at),
        "created_at": iso(r.created_at),
    }


def _query():
    return select(UprankRequest).options(
        selectinload(UprankRequest.employee).selectinload(Employee.user),
        selectinload(UprankRequest.requested_by),
        selectinload(UprankRequest.processed_by),
    )


def _load(session: Session, request_id: int) -> UprankRequest:
    row = session.scalar(_query().where(UprankRequest.id == request_id))
    if not row:
        raise HTTPException(404, "Request not found")
    return row


@router.get("/stats", dependencies=[Depends(require_permission("teamlead.view"))])
def request_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(
        select(UprankRequest.status, func.count()).group_by(UprankRequest.status)
    ).all())
    return {
        "total": sum(counts.values()),
        "pending": counts.get(RequestStatus.PENDING, 0),
        "approved": counts.get(RequestStatus.APPROVED, 0),
        "rejected": counts.get(RequestStatus.REJECTED, 0),
    }


@router.get("/employees", dependencies=[Depends(require_permission("teamlead.view"))])
def selectable_employees(session: Session = Depends(get_session)):
    rows = session.scalars(
        select(Employee)
        .where(Employee.status == EmployeeStatus.ACTIVE)
        .options(selectinload(Employee.user))
        .order_by(Employee.rank_level.desc())
    ).all()
    return [employee_brief(e) for e in rows]


@router.get("/my/requests")
def my_requests(
    user: CurrentUser = Depends(require_permission("teamlead.view")),
    session: Session = Depends(get_session),
):
    rows = session.scalars(
        _query().where(UprankRequest.requested_by_id == user.id).order_by(UprankRequest.created_at.desc())
    ).all()
    return [request_to_dict(r) for r in rows]


@router.get("", dependencies=[Depends(require_permission("teamlead.view"))])
def list_requests(status: RequestStatus | None = None, session: Session = Depends(get_session)):
    stmt = _query().order_by(UprankRequest.created_at.desc(), UprankRequest.id.desc())
    if status:
        stmt = stmt.where(UprankRequest.status == status)
    return [request_to_dict(r) for r in session.scalars(stmt).all()]


@router.get("/{request_id}", dependencies=[Depends(require_permission("teamlead.view"))])
def get_request(request_id: int, session: Session = Depends(get_session)):
    return request_to_dict(_load(session, request_id))


@router.post("", status_code=201)
def create_request(
    body: RequestCreate,
    user: CurrentUser = Depends(require_permission("teamlead.manage")),
    session: Session = Depends(get_session),
):
    if body.employee_id is None or not (body.target_rank or "").strip() or not (body.reason or "").strip():
        raise HTTPException(400, "Employee, target rank and reason are required")
    employee = session.get(Employee, body.employee_id)
    if employee is None:
        raise HTTPException(404, "Employee not found")
    if session.scalar(select(UprankRequest.id).where(
        UprankRequest.employee_id == employee.id, UprankRequest.status == RequestStatus.PENDING,
    )):
        raise HTTPException(400, "There is already an open request for this employee")
    try:
        uprank_lock_service.ensure_not_locked(session, employee.id)
    except uprank_lock_service.PromotionLocked as exc:
        raise HTTPException(400, str(exc))

    row = UprankRequest(
        employee_id=employee.id,
        current_rank=employee.rank,
        target_rank=body.target_rank.strip(),
        reason=body.reason.strip(),
        achievements=body.achievements,
        requested_by_id=user.id,
    )
    session.add(row)
    session.commit()
    data = request_to_dict(_load(session, row.id))
    realtime.broadcast_create("uprankRequest", data)
    return data


@router.put("/{request_id}/process")
def process_request(
    request_id: int,
    body: ProcessRequest,
    user: CurrentUser = Depends(require_permission("management.uprank")),
    session: Session = Depends(get_session),
):
    if body.status not in (RequestStatus.APPROVED, RequestStatus.REJECTED):
        raise HTTPException(400, "Valid status (APPROVED/REJECTED) is required")
    if body.status == RequestStatus.REJECTED and not (body.rejection_reason or "").strip():
        raise HTTPException(400, "Rejection reason is required")
    row = _load(session, request_id)
    if row.status != RequestStatus.PENDING:
        raise HTTPException(400, "Request has already been processed")

    rank_change = None
    if body.status == RequestStatus.APPROVED:
        employee = row.employee
        target_level = load_rank_catalogue(session).level_for(row.target_rank) or employee.rank_level + 1
        try:
            uprank_lock_service.ensure_not_locked(session, employee.id)
            rank_change = employee_service.set_rank_level(session, employee, target_level)
        except ValueError as exc:
            raise HTTPException(400, str(exc))
        if rank_change["promoted"] and rank_change["team_changed"]:
            uprank_lock_service.lock_for_team(session, employee, team_for_level(target_level), user.id)

    row.status = body.status
    row.rejection_reason = body.rejection_reason.strip() if body.status == RequestStatus.REJECTED else None
    row.processed_by_id = user.id
    row.processed_at = utcnow()
    session.commit()

    data = request_to_dict(_load(session, request_id))
    realtime.broadcast_update("uprankRequest", data)
    if rank_change is not None:
        realtime.emit_employee_event("promoted", {"employee": data["employee"], **rank_change})
        logger.info("Uprank request %d approved by %s", request_id, user.id)
    return data


@router.delete("/{request_id}", status_code=204)
def delete_request(
    request_id: int,
    user: CurrentUser = Depends(require_permission("teamlead.manage")),
    session: Session = Depends(get_session),
):
    row = _load(session, request_id)
    if row.status != RequestStatus.PENDING:
        raise HTTPException(400, "Only pending requests can be deleted")
    if row.requested_by_id != user.id and not user.is_admin:
        raise HTTPException(403, "Only the creator or an admin can delete this request")
    session.delete(row)
    session.commit()
    realtime.broadcast_delete("uprankRequest", request_id)
