"""
precinct.api.routes.cases — Detective case files
=================================================

Numbers run per year (``DC-2026-001``).  Opening a case accrues the
creator's CASE_OPENED bonus; closing it accrues CASE_CLOSED to the
assigned detective, or the creator when nobody is assigned.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import employee_brief, get_or_404, iso, next_case_number, user_brief
from precinct.constants import utcnow
from precinct.database.models import CaseStatus, DetectiveCase, Employee, Priority
from precinct.services import bonus_service, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/cases", tags=["cases"])


class CaseCreate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: Priority = Priority.NORMAL
    suspects: str | None = None
    assigned_to_id: int | None = None


class CaseUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    status: CaseStatus | None = None
    priority: Priority | None = None
    suspects: str | None = None
    assigned_to_id: int | None = None


def case_to_dict(c: DetectiveCase) -> dict:
    return {
        "id": c.id,
        "case_number": c.case_number,
        "title": c.title,
        "description": c.description,
        "status": c.status,
        "priority": c.priority,
        "suspects": c.suspects,
        "assigned_to": employee_brief(c.assigned_to),
        "created_by": user_brief(c.created_by),
        "closed_at": iso(c.closed_at),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }


def _query():
    return select(DetectiveCase).options(
        selectinload(DetectiveCase.assigned_to).selectinload(Employee.user),
        selectinload(DetectiveCase.created_by),
    )


def _load(session: Session, case_id: int) -> DetectiveCase:
    row = session.scalar(_query().where(DetectiveCase.id == case_id))
    if not row:
        raise HTTPException(404, "Case not found")
    return row


@router.get("/stats", dependencies=[Depends(require_permission("detectives.view"))])
def case_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(
        select(DetectiveCase.status, func.count()).group_by(DetectiveCase.status)
    ).all())
    return {
        "total": sum(counts.values()),
        "open": counts.get(CaseStatus.OPEN, 0),
        "inProgress": counts.get(CaseStatus.IN_PROGRESS, 0),
        "closed": counts.get(CaseStatus.CLOSED, 0),
    }


@router.get("", dependencies=[Depends(require_permission("detectives.view"))])
def list_cases(
    status: CaseStatus | None = None,
    priority: Priority | None = None,
    search: str | None = None,
    session: Session = Depends(get_session),
):
    stmt = _query().order_by(DetectiveCase.created_at.desc(), DetectiveCase.id.desc())
    if status:
        stmt = stmt.where(DetectiveCase.status == status)
    if priority:
        stmt = stmt.where(DetectiveCase.priority == priority)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            DetectiveCase.title.ilike(pattern),
            DetectiveCase.case_number.ilike(pattern),
            DetectiveCase.suspects.ilike(pattern),
        ))
    return [case_to_dict(c) for c in session.scalars(stmt).all()]


@router.get("/{case_id}", dependencies=[Depends(require_permission("detectives.view"))])
def get_case(case_id: int, session: Session = Depends(get_session)):
    return case_to_dict(_load(session, case_id))


@router.post("", status_code=201)
def create_case(
    body: CaseCreate,
    user: CurrentUser = Depends(require_permission("detectives.manage")),
    session: Session = Depends(get_session),
):
    if not (body.title or "").strip():
        raise HTTPException(400, "Title is required")
    if body.assigned_to_id is not None:
        get_or_404(session, Employee, body.assigned_to_id, "Employee")

    row = DetectiveCase(
        case_number=next_case_number(session, DetectiveCase.case_number, "DC", utcnow().year),
        title=body.title.strip(),
        description=body.description,
        priority=body.priority,
        suspects=body.suspects,
        assigned_to_id=body.assigned_to_id,
        created_by_id=user.id,
    )
    session.add(row)
    session.flush()
    bonus_service.trigger(
        session, "CASE_OPENED", user.employee_id, subject=row.case_number, reference_id=row.id,
    )
    session.commit()
    data = case_to_dict(_load(session, row.id))
    realtime.broadcast_create("case", data)
    return data


@router.put("/{case_id}", dependencies=[Depends(require_permission("detectives.manage"))])
def update_case(case_id: int, body: CaseUpdate, session: Session = Depends(get_session)):
    row = _load(session, case_id)
    previous_status = row.status
    fields = body.model_dump(exclude_unset=True)
    if fields.get("assigned_to_id") is not None:
        get_or_404(session, Employee, fields["assigned_to_id"], "Employee")
    for key, value in fields.items():
        if value is None and key in ("title", "status", "priority"):
            continue
        setattr(row, key, value)

    if row.status == CaseStatus.CLOSED and previous_status != CaseStatus.CLOSED:
        row.closed_at = utcnow()
        closer = row.assigned_to_id or bonus_service.employee_id_for_user(session, row.created_by_id)
        bonus_service.trigger(session, "CASE_CLOSED", closer, subject=row.case_number, reference_id=row.id)
    elif row.status != CaseStatus.CLOSED:
        row.closed_at = None

    session.commit()
    data = case_to_dict(_load(session, case_id))
    realtime.broadcast_update("case", data)
    return data


@router.delete("/{case_id}", status_code=204, dependencies=[Depends(require_permission("detectives.manage"))])
def delete_case(case_id: int, session: Session = Depends(get_session)):
    session.delete(_load(session, case_id))
    session.commit()
    realtime.broadcast_delete("case", case_id)
