"""
precinct.api.routes.applications — Recruitment
===============================================

An application moves PENDING → INTERVIEW → ACCEPTED | REJECTED.  The
blacklist is checked on creation and again on acceptance.  Accepting
creates the user (keyed by the Discord snowflake) if it never logged in,
hires them as a Cadet in Patrol and accrues the processor's
APPLICATION_COMPLETED bonus (plus APPLICATION_ONBOARDING when the processor
also ran the onboarding); rejecting accrues APPLICATION_REJECTED.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.routes.blacklist import active_entry, entry_to_dict
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import DEFAULT_DEPARTMENT, DEFAULT_RANK, MIN_RANK_LEVEL, as_utc, utcnow
from precinct.database.models import (
    Application,
    ApplicationStatus,
    BlacklistEntry,
    Employee,
    EmployeeStatus,
    User,
)
from precinct.services import bonus_service, realtime
from precinct.services.employee_service import employee_to_dict
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/applications", tags=["applications"])

_OPEN_STATES = (ApplicationStatus.PENDING, ApplicationStatus.INTERVIEW)


class ApplicationCreate(BaseModel):
    discord_id: str | None = None
    discord_username: str | None = None
    notes: str | None = None


class ApplicationUpdate(BaseModel):
    discord_username: str | None = None
    notes: str | None = None
    interview_notes: str | None = None


class InterviewRequest(BaseModel):
    interview_date: datetime | None = None


class AcceptRequest(BaseModel):
    interview_notes: str | None = None
    # The processor also walked the new cadet through onboarding.
    onboarding_conducted: bool = False


class RejectRequest(BaseModel):
    rejection_reason: str | None = None
    add_to_blacklist: bool = False
    blacklist_reason: str | None = None
    blacklist_expires: datetime | None = None


def application_to_dict(a: Application) -> dict:
    return {
        "id": a.id,
        "discord_id": a.discord_id,
        "discord_username": a.discord_username,
        "status": a.status,
        "notes": a.notes,
        "interview_date": iso(a.interview_date),
        "interview_notes": a.interview_notes,
        "rejection_reason": a.rejection_reason,
        "created_by": user_brief(a.created_by),
        "processed_by": user_brief(a.processed_by),
        "processed_at": iso(a.processed_at),
        "created_at": iso(a.created_at),
    }


def _query():
    return select(Application).options(
        selectinload(Application.created_by), selectinload(Application.processed_by),
    )


def _load(session: Session, application_id: int) -> Application:
    row = session.scalar(_query().where(Application.id == application_id))
    if not row:
        raise HTTPException(404, "Application not found")
    return row


def _blacklisted(entry: BlacklistEntry) -> JSONResponse:
    return JSONResponse(status_code=400, content={
        "detail": "BLACKLISTED",
        "message": f"Applicant is blacklisted: {entry.reason}",
        "entry": entry_to_dict(entry),
    })


@router.get("", dependencies=[Depends(require_permission("hr.view"))])
def list_applications(status: str | None = None, session: Session = Depends(get_session)):
    stmt = _query().order_by(Application.created_at.desc(), Application.id.desc())
    if status and status != "ALL":
        stmt = stmt.where(Application.status == status)
    return [application_to_dict(a) for a in session.scalars(stmt).all()]


@router.get("/stats", dependencies=[Depends(require_permission("hr.view"))])
def application_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(
        select(Application.status, func.count()).group_by(Application.status)
    ).all())
    return {
        "total": sum(counts.values()),
        **{s.value.lower(): counts.get(s, 0) for s in ApplicationStatus},
    }


@router.get("/check-blacklist/{discord_id}", dependencies=[Depends(require_permission("hr.view"))])
def check_blacklist(discord_id: str, session: Session = Depends(get_session)):
    entry = active_entry(session, discord_id)
    if entry is None:
        return {"blacklisted": False}
    return {"blacklisted": True, "entry": entry_to_dict(entry)}


@router.get("/{application_id}", dependencies=[Depends(require_permission("hr.view"))])
def get_application(application_id: int, session: Session = Depends(get_session)):
    return application_to_dict(_load(session, application_id))


@router.post("", status_code=201)
def create_application(
    body: ApplicationCreate,
    user: CurrentUser = Depends(require_permission("hr.manage")),
    session: Session = Depends(get_session),
):
    discord_id = (body.discord_id or "").strip()
    username = (body.discord_username or "").strip()
    if not discord_id or not username:
        raise HTTPException(400, "Discord ID and username are required")
    if not discord_id.isdigit():
        raise HTTPException(400, "Discord ID must be numeric")

    entry = active_entry(session, discord_id)
    if entry is not None:
        return _blacklisted(entry)
    if session.scalar(
        select(Application.id).where(Application.discord_id == discord_id, Application.status.in_(_OPEN_STATES))
    ):
        raise HTTPException(400, "An open application already exists for this Discord ID")

    row = Application(
        discord_id=discord_id,
        discord_username=username,
        notes=body.notes,
        created_by_id=user.id,
    )
    session.add(row)
    session.commit()
    data = application_to_dict(_load(session, row.id))
    realtime.broadcast_create("application", data)
    return data


@router.put("/{application_id}", dependencies=[Depends(require_permission("hr.manage"))])
def update_application(application_id: int, body: ApplicationUpdate, session: Session = Depends(get_session)):
    row = _load(session, application_id)
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key == "discord_username":
            continue
        setattr(row, key, value)
    session.commit()
    data = application_to_dict(row)
    realtime.broadcast_update("application", data)
    return data


@router.put("/{application_id}/schedule-interview", dependencies=[Depends(require_permission("hr.manage"))])
def schedule_interview(application_id: int, body: InterviewRequest, session: Session = Depends(get_session)):
    if body.interview_date is None:
        raise HTTPException(400, "Interview date is required")
    row = _load(session, application_id)
    if row.status not in _OPEN_STATES:
        raise HTTPException(400, "Application has already been processed")
    row.status = ApplicationStatus.INTERVIEW
    row.interview_date = as_utc(body.interview_date)
    session.commit()
    data = application_to_dict(row)
    realtime.broadcast_update("application", data)
    return data


@router.put("/{application_id}/accept")
def accept_application(
    application_id: int,
    body: AcceptRequest | None = None,
    user: CurrentUser = Depends(require_permission("hr.manage")),
    session: Session = Depends(get_session),
):
    row = _load(session, application_id)
    if row.status not in _OPEN_STATES:
        raise HTTPException(400, "Application has already been processed")
    entry = active_entry(session, row.discord_id)
    if entry is not None:
        return _blacklisted(entry)

    applicant = session.get(User, int(row.discord_id))
    if applicant is None:
        applicant = User(id=int(row.discord_id), username=row.discord_username, display_name=row.discord_username)
        session.add(applicant)
        session.flush()
    elif session.scalar(select(Employee.id).where(Employee.user_id == applicant.id)) is not None:
        raise HTTPException(400, "This person is already registered as an employee")

    applicant.is_active = True
    employee = Employee(
        user_id=applicant.id,
        rank=DEFAULT_RANK,
        rank_level=MIN_RANK_LEVEL,
        department=DEFAULT_DEPARTMENT,
        status=EmployeeStatus.ACTIVE,
    )
    session.add(employee)

    row.status = ApplicationStatus.ACCEPTED
    if body and body.interview_notes is not None:
        row.interview_notes = body.interview_notes
    row.processed_by_id = user.id
    row.processed_at = utcnow()
    session.flush()

    bonus_service.trigger(
        session, "APPLICATION_COMPLETED", user.employee_id,
        subject=row.discord_username, reference_id=row.id,
    )
    if body and body.onboarding_conducted:
        bonus_service.trigger(
            session, "APPLICATION_ONBOARDING", user.employee_id,
            subject=row.discord_username, reference_id=row.id,
        )
    session.commit()
    session.refresh(employee)

    employee_data = employee_to_dict(employee)
    data = application_to_dict(_load(session, application_id))
    realtime.broadcast_update("application", data)
    realtime.broadcast_create("employee", employee_data)
    realtime.emit_employee_event("hired", employee_data)
    logger.info("Application %d accepted by %s; employee %d hired", row.id, user.id, employee.id)
    return {
        "application": data,
        "employee": employee_data,
        "message": f"{row.discord_username} has been hired as {DEFAULT_RANK}",
    }


@router.put("/{application_id}/reject")
def reject_application(
    application_id: int,
    body: RejectRequest,
    user: CurrentUser = Depends(require_permission("hr.manage")),
    session: Session = Depends(get_session),
):
    if not (body.rejection_reason or "").strip():
        raise HTTPException(400, "Rejection reason is required")
    row = _load(session, application_id)
    if row.status not in _OPEN_STATES:
        raise HTTPException(400, "Application has already been processed")

    if body.add_to_blacklist and session.scalar(
        select(BlacklistEntry.id).where(BlacklistEntry.discord_id == row.discord_id)
    ) is None:
        session.add(BlacklistEntry(
            discord_id=row.discord_id,
            username=row.discord_username,
            reason=(body.blacklist_reason or "").strip() or body.rejection_reason.strip(),
            expires_at=as_utc(body.blacklist_expires) if body.blacklist_expires else None,
            added_by_id=user.id,
        ))

    row.status = ApplicationStatus.REJECTED
    row.rejection_reason = body.rejection_reason.strip()
    row.processed_by_id = user.id
    row.processed_at = utcnow()
    bonus_service.trigger(
        session, "APPLICATION_REJECTED", user.employee_id,
        subject=row.discord_username, reference_id=row.id,
    )
    session.commit()
    data = application_to_dict(_load(session, application_id))
    realtime.broadcast_update("application", data)
    return data


@router.delete("/{application_id}", status_code=204, dependencies=[Depends(require_permission("hr.manage"))])
def delete_application(application_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, Application, application_id, "Application"))
    session.commit()
    realtime.broadcast_delete("application", application_id)
