"""Tuning-violation reports.  Completing one notifies the officer who filed it."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import utcnow
from precinct.database.models import TuningReport, TuningStatus
from precinct.services import realtime
from precinct.services.notification_service import notify_tuning
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/tuning", tags=["tuning"])


class ReportCreate(BaseModel):
    vehicle: str | None = None
    plate: str | None = None
    owner_name: str | None = None
    violation: str | None = None


def report_to_dict(r: TuningReport) -> dict:
    return {
        "id": r.id,
        "vehicle": r.vehicle,
        "plate": r.plate,
        "owner_name": r.owner_name,
        "violation": r.violation,
        "status": r.status,
        "reported_by": user_brief(r.reported_by),
        "completed_by": user_brief(r.completed_by),
        "completed_at": iso(r.completed_at),
        "created_at": iso(r.created_at),
    }


def _query():
    return select(TuningReport).options(
        selectinload(TuningReport.reported_by), selectinload(TuningReport.completed_by),
    )


@router.get("", dependencies=[Depends(require_permission("tuning.view"))])
def list_reports(status: TuningStatus | None = TuningStatus.OPEN, session: Session = Depends(get_session)):
    stmt = _query().order_by(TuningReport.created_at.desc(), TuningReport.id.desc())
    if status:
        stmt = stmt.where(TuningReport.status == status)
    return [report_to_dict(r) for r in session.scalars(stmt).all()]


@router.get("/stats", dependencies=[Depends(require_permission("tuning.view"))])
def tuning_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(
        select(TuningReport.status, func.count()).group_by(TuningReport.status)
    ).all())
    return {
        "total": sum(counts.values()),
        "open": counts.get(TuningStatus.OPEN, 0),
        "completed": counts.get(TuningStatus.COMPLETED, 0),
    }


@router.post("", status_code=201)
def create_report(
    body: ReportCreate,
    user: CurrentUser = Depends(require_permission("tuning.view")),
    session: Session = Depends(get_session),
):
    if not (body.vehicle or "").strip() or not (body.violation or "").strip():
        raise HTTPException(400, "Vehicle and violation are required")
    report = TuningReport(
        vehicle=body.vehicle.strip(),
        plate=(body.plate or "").strip().upper() or None,
        owner_name=body.owner_name,
        violation=body.violation.strip(),
        reported_by_id=user.id,
    )
    session.add(report)
    session.commit()
    data = report_to_dict(session.scalar(_query().where(TuningReport.id == report.id)))
    realtime.broadcast_create("tuning", data)
    return data


@router.put("/{report_id}/complete")
def complete_report(
    report_id: int,
    user: CurrentUser = Depends(require_permission("tuning.manage")),
    session: Session = Depends(get_session),
):
    report = get_or_404(session, TuningReport, report_id, "Tuning report")
    if report.status == TuningStatus.COMPLETED:
        raise HTTPException(400, "Tuning report is already completed")
    report.status = TuningStatus.COMPLETED
    report.completed_by_id = user.id
    report.completed_at = utcnow()
    notify_tuning(session, report.reported_by_id, report_id=report.id, vehicle=report.vehicle)
    session.commit()
    data = report_to_dict(session.scalar(_query().where(TuningReport.id == report_id)))
    realtime.broadcast_update("tuning", data)
    return data


@router.delete("/{report_id}", status_code=204)
def delete_report(
    report_id: int,
    user: CurrentUser = Depends(require_permission("tuning.view")),
    session: Session = Depends(get_session),
):
    """Reporters may delete their own reports; managers any report."""
    report = get_or_404(session, TuningReport, report_id, "Tuning report")
    if report.reported_by_id != user.id and not user.has_permission("tuning.manage"):
        raise HTTPException(403, "Insufficient permissions")
    session.delete(report)
    session.commit()
    realtime.broadcast_delete("tuning", report_id)
