"""
precinct.api.routes.robbery — Robbery response reports
=======================================================

Filing a report accrues ROBBERY_LEADER to the incident leader and
ROBBERY_NEGOTIATOR to the negotiator (when there was one).  Deleting a
report cancels whatever of those bonuses is still pending.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import employee_brief, iso
from precinct.constants import as_utc, utcnow
from precinct.database.models import (
    BonusPayment,
    BonusPaymentStatus,
    Employee,
    EmployeeStatus,
    RobberyReport,
)
from precinct.services import bonus_service, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/robbery", tags=["robbery"])

REFERENCE_TYPE = "Robbery"


class ReportCreate(BaseModel):
    location: str | None = None
    occurred_at: datetime | None = None
    leader_id: int | None = None
    negotiator_id: int | None = None
    outcome: str | None = None
    notes: str | None = None


def report_to_dict(r: RobberyReport) -> dict:
    return {
        "id": r.id,
        "location": r.location,
        "occurred_at": iso(r.occurred_at),
        "leader": employee_brief(r.leader),
        "negotiator": employee_brief(r.negotiator),
        "outcome": r.outcome,
        "notes": r.notes,
        "created_by_id": str(r.created_by_id),
        "created_at": iso(r.created_at),
    }


def _query():
    return select(RobberyReport).options(
        selectinload(RobberyReport.leader).selectinload(Employee.user),
        selectinload(RobberyReport.negotiator).selectinload(Employee.user),
    )


def cancel_pending_bonuses(session: Session, report_ids: list[int]) -> int:
    if not report_ids:
        return 0
    result = session.execute(
        update(BonusPayment)
        .where(
            BonusPayment.reference_type == REFERENCE_TYPE,
            BonusPayment.reference_id.in_([str(i) for i in report_ids]),
            BonusPayment.status == BonusPaymentStatus.PENDING,
        )
        .values(status=BonusPaymentStatus.CANCELLED)
    )
    return result.rowcount


@router.get("", dependencies=[Depends(require_permission("robbery.view"))])
def list_reports(session: Session = Depends(get_session)):
    rows = session.scalars(_query().order_by(RobberyReport.occurred_at.desc(), RobberyReport.id.desc())).all()
    return [report_to_dict(r) for r in rows]


@router.get("/stats", dependencies=[Depends(require_permission("robbery.view"))])
def robbery_stats(session: Session = Depends(get_session)):
    """Reports filed during the current bonus week."""
    week_start, week_end = bonus_service.get_week_bounds()
    count = session.scalar(
        select(func.count()).select_from(RobberyReport).where(
            RobberyReport.created_at >= week_start, RobberyReport.created_at <= week_end,
        )
    )
    return {
        "weekTotal": count or 0,
        "weekStart": week_start.isoformat(),
        "weekEnd": week_end.isoformat(),
    }


@router.get("/employees", dependencies=[Depends(require_permission("robbery.view"))])
def selectable_employees(session: Session = Depends(get_session)):
    rows = session.scalars(
        select(Employee)
        .where(Employee.status == EmployeeStatus.ACTIVE)
        .options(selectinload(Employee.user))
        .order_by(Employee.rank_level.desc())
    ).all()
    return [employee_brief(e) for e in rows]


@router.post("", status_code=201)
def create_report(
    body: ReportCreate,
    user: CurrentUser = Depends(require_permission("robbery.create")),
    session: Session = Depends(get_session),
):
    if body.leader_id is None or not (body.location or "").strip():
        raise HTTPException(400, "Location and incident leader are required")
    if session.get(Employee, body.leader_id) is None:
        raise HTTPException(400, "Incident leader not found")
    if body.negotiator_id is not None and session.get(Employee, body.negotiator_id) is None:
        raise HTTPException(400, "Negotiator not found")

    report = RobberyReport(
        location=body.location.strip(),
        occurred_at=as_utc(body.occurred_at) if body.occurred_at else utcnow(),
        leader_id=body.leader_id,
        negotiator_id=body.negotiator_id,
        outcome=body.outcome,
        notes=body.notes,
        created_by_id=user.id,
    )
    session.add(report)
    session.flush()
    bonus_service.trigger(session, "ROBBERY_LEADER", report.leader_id, subject=report.location, reference_id=report.id)
    if report.negotiator_id is not None:
        bonus_service.trigger(
            session, "ROBBERY_NEGOTIATOR", report.negotiator_id, subject=report.location, reference_id=report.id,
        )
    session.commit()
    data = report_to_dict(session.scalar(_query().where(RobberyReport.id == report.id)))
    realtime.broadcast_create("robbery", data)
    return data


@router.delete("/{report_id}", status_code=204, dependencies=[Depends(require_permission("robbery.manage"))])
def delete_report(report_id: int, session: Session = Depends(get_session)):
    report = session.get(RobberyReport, report_id)
    if report is None:
        raise HTTPException(404, "Robbery report not found")
    cancel_pending_bonuses(session, [report_id])
    session.delete(report)
    session.commit()
    realtime.broadcast_delete("robbery", report_id)
