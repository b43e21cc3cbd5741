"""
precinct.api.routes.sanctions — Disciplinary sanctions
=======================================================

A sanction combines up to three measures: a warning, a fine (``amount``)
and a disciplinary measure (``measure`` text).  At least one is required.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.pagination import PageParams, paginate
from precinct.api.serializers import employee_brief, get_or_404, iso, user_brief
from precinct.database.models import Employee, Sanction, SanctionStatus
from precinct.services import bonus_service, notification_service, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/sanctions", tags=["sanctions"])


class SanctionCreate(BaseModel):
    employee_id: int | None = None
    has_warning: bool = False
    has_fine: bool = False
    has_measure: bool = False
    reason: str | None = None
    amount: int | None = None
    measure: str | None = None
    expires_at: datetime | None = None


class SanctionUpdate(BaseModel):
    reason: str | None = None
    amount: int | None = None
    measure: str | None = None
    status: SanctionStatus | None = None
    expires_at: datetime | None = None


def sanction_to_dict(s: Sanction) -> dict:
    return {
        "id": s.id,
        "employee_id": s.employee_id,
        "has_warning": s.has_warning,
        "has_fine": s.has_fine,
        "has_measure": s.has_measure,
        "reason": s.reason,
        "amount": s.amount,
        "measure": s.measure,
        "status": s.status,
        "expires_at": iso(s.expires_at),
        "created_at": iso(s.created_at),
        "employee": employee_brief(s.employee),
        "issued_by": user_brief(s.issued_by),
    }


def _sanction_query():
    return select(Sanction).options(
        selectinload(Sanction.employee).selectinload(Employee.user),
        selectinload(Sanction.issued_by),
    )


def _load(session: Session, sanction_id: int) -> Sanction:
    sanction = session.scalar(_sanction_query().where(Sanction.id == sanction_id))
    if not sanction:
        raise HTTPException(404, "Sanction not found")
    return sanction


@router.get("", dependencies=[Depends(require_permission("sanctions.view"))])
def list_sanctions(
    status: SanctionStatus | None = None,
    employee_id: int | None = None,
    params: PageParams = Depends(),
    session: Session = Depends(get_session),
):
    stmt = _sanction_query().order_by(Sanction.created_at.desc(), Sanction.id.desc())
    if status:
        stmt = stmt.where(Sanction.status == status)
    if employee_id is not None:
        stmt = stmt.where(Sanction.employee_id == employee_id)
    return paginate(session, stmt, params, sanction_to_dict)


@router.get("/employee/{employee_id}", dependencies=[Depends(require_permission("sanctions.view"))])
def employee_sanctions(employee_id: int, session: Session = Depends(get_session)):
    rows = session.scalars(
        _sanction_query()
        .where(Sanction.employee_id == employee_id)
        .order_by(Sanction.created_at.desc(), Sanction.id.desc())
    ).all()
    return [sanction_to_dict(s) for s in rows]


@router.post("", status_code=201)
def create_sanction(
    body: SanctionCreate,
    user: CurrentUser = Depends(require_permission("sanctions.manage")),
    session: Session = Depends(get_session),
):
    if body.employee_id is None or not (body.reason or "").strip():
        raise HTTPException(400, "Employee and reason are required")
    if not (body.has_warning or body.has_fine or body.has_measure):
        raise HTTPException(400, "Select at least one of warning, fine or measure")
    if body.has_fine and (body.amount is None or body.amount <= 0):
        raise HTTPException(400, "A fine needs a positive amount")

    employee = session.scalar(
        select(Employee).where(Employee.id == body.employee_id).options(selectinload(Employee.user))
    )
    if not employee:
        raise HTTPException(404, "Employee not found")

    sanction = Sanction(
        employee_id=employee.id,
        has_warning=body.has_warning,
        has_fine=body.has_fine,
        has_measure=body.has_measure,
        reason=body.reason.strip(),
        amount=body.amount if body.has_fine else None,
        measure=body.measure if body.has_measure else None,
        expires_at=body.expires_at,
        issued_by_id=user.id,
    )
    session.add(sanction)
    session.flush()

    bonus_service.trigger(
        session, "SANCTION_ISSUED", user.employee_id,
        subject=employee.user.name, reference_id=sanction.id,
    )
    notification_service.notify_sanction(
        session, employee.user_id, sanction_id=sanction.id, reason=sanction.reason,
    )
    session.commit()

    data = sanction_to_dict(_load(session, sanction.id))
    realtime.broadcast_create("sanction", data)
    return data


@router.put("/{sanction_id}/revoke", dependencies=[Depends(require_permission("sanctions.manage"))])
def revoke_sanction(sanction_id: int, session: Session = Depends(get_session)):
    sanction = _load(session, sanction_id)
    sanction.status = SanctionStatus.REVOKED
    session.commit()
    data = sanction_to_dict(sanction)
    realtime.broadcast_update("sanction", data)
    return data


@router.put("/{sanction_id}", dependencies=[Depends(require_permission("sanctions.manage"))])
def update_sanction(
    sanction_id: int,
    body: SanctionUpdate,
    session: Session = Depends(get_session),
):
    sanction = _load(session, sanction_id)
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(sanction, key, value)
    session.commit()
    data = sanction_to_dict(sanction)
    realtime.broadcast_update("sanction", data)
    return data


@router.delete("/{sanction_id}", status_code=204, dependencies=[Depends(require_permission("sanctions.manage"))])
def delete_sanction(sanction_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, Sanction, sanction_id, "Sanction"))
    session.commit()
    realtime.broadcast_delete("sanction", sanction_id)
