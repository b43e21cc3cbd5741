"""
precinct.api.routes.trainings — Academy
========================================

Training types, scheduled trainings and their participants.  Completing a
training accrues the instructor's TRAINING_CONDUCTED bonus; marking a
participant ATTENDED accrues theirs.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_current_user, get_session, require_permission
from precinct.api.serializers import employee_brief, get_or_404, iso, user_brief
from precinct.constants import as_utc, utcnow
from precinct.database.models import (
    Employee,
    EmployeeStatus,
    ParticipantStatus,
    Training,
    TrainingParticipant,
    TrainingStatus,
    TrainingType,
)
from precinct.services import bonus_service, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/trainings", tags=["trainings"])

_FINISHED_PARTICIPATION = (ParticipantStatus.ATTENDED, ParticipantStatus.NO_SHOW, ParticipantStatus.EXCUSED)


class TypeCreate(BaseModel):
    name: str | None = None
    description: str | None = None
    duration: int = Field(60, ge=1)


class TypeUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    duration: int | None = Field(None, ge=1)
    is_active: bool | None = None


class TrainingCreate(BaseModel):
    type_id: int | None = None
    title: str | None = None
    description: str | None = None
    scheduled_at: datetime | None = None
    location: str | None = None
    max_participants: int | None = Field(None, ge=1)


class TrainingUpdate(BaseModel):
    type_id: int | None = None
    title: str | None = None
    description: str | None = None
    scheduled_at: datetime | None = None
    location: str | None = None
    max_participants: int | None = Field(None, ge=1)
    status: TrainingStatus | None = None


class ParticipantAdd(BaseModel):
    employee_id: int


class ParticipantUpdate(BaseModel):
    status: ParticipantStatus | None = None
    grade: str | None = None
    feedback: str | None = None


def type_to_dict(t: TrainingType) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "duration": t.duration,
        "is_active": t.is_active,
    }


def participant_to_dict(p: TrainingParticipant) -> dict:
    return {
        "id": p.id,
        "training_id": p.training_id,
        "employee": employee_brief(p.employee),
        "status": p.status,
        "grade": p.grade,
        "feedback": p.feedback,
        "attended_at": iso(p.attended_at),
    }


def training_to_dict(t: Training, *, detail: bool = False) -> dict:
    data = {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "scheduled_at": iso(t.scheduled_at),
        "location": t.location,
        "max_participants": t.max_participants,
        "status": t.status,
        "type": type_to_dict(t.type) if t.type else None,
        "instructor": user_brief(t.instructor),
        "completed_at": iso(t.completed_at),
        "created_at": iso(t.created_at),
        "participant_count": len(t.participants),
    }
    if detail:
        data["participants"] = [participant_to_dict(p) for p in t.participants]
    return data


def _query():
    return select(Training).options(
        selectinload(Training.type),
        selectinload(Training.instructor),
        selectinload(Training.participants)
        .selectinload(TrainingParticipant.employee).selectinload(Employee.user),
    )


def _load(session: Session, training_id: int) -> Training:
    training = session.scalar(_query().where(Training.id == training_id))
    if not training:
        raise HTTPException(404, "Training not found")
    return training


def _month_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = (start + timedelta(days=32)).replace(day=1)
    return start, end


# ---------------------------------------------------------------------------
# Training types
# ---------------------------------------------------------------------------
@router.get("/types", dependencies=[Depends(require_permission("academy.view"))])
def list_types(session: Session = Depends(get_session)):
    rows = session.scalars(select(TrainingType).order_by(TrainingType.name)).all()
    return [type_to_dict(t) for t in rows]


@router.post("/types", status_code=201, dependencies=[Depends(require_permission("academy.manage"))])
def create_type(body: TypeCreate, session: Session = Depends(get_session)):
    name = (body.name or "").strip()
    if not name:
        raise HTTPException(400, "Name is required")
    if session.scalar(select(TrainingType.id).where(TrainingType.name == name)):
        raise HTTPException(400, "A training type with this name already exists")
    row = TrainingType(name=name, description=body.description, duration=body.duration)
    session.add(row)
    session.commit()
    return type_to_dict(row)


@router.put("/types/{type_id}", dependencies=[Depends(require_permission("academy.manage"))])
def update_type(type_id: int, body: TypeUpdate, session: Session = Depends(get_session)):
    row = get_or_404(session, TrainingType, type_id, "Training type")
    fields = body.model_dump(exclude_unset=True)
    if fields.get("name"):
        name = fields["name"].strip()
        clash = session.scalar(
            select(TrainingType.id).where(TrainingType.name == name, TrainingType.id != type_id)
        )
        if clash:
            raise HTTPException(400, "A training type with this name already exists")
        fields["name"] = name
    for key, value in fields.items():
        if value is None and key in ("name", "duration", "is_active"):
            continue
        setattr(row, key, value)
    session.commit()
    return type_to_dict(row)


@router.delete("/types/{type_id}", status_code=204, dependencies=[Depends(require_permission("academy.manage"))])
def delete_type(type_id: int, session: Session = Depends(get_session)):
    row = get_or_404(session, TrainingType, type_id, "Training type")
    in_use = session.scalar(select(func.count()).select_from(Training).where(Training.type_id == type_id))
    if in_use:
        raise HTTPException(400, f"Training type is used by {in_use} training(s)")
    session.delete(row)
    session.commit()


# ---------------------------------------------------------------------------
# My trainings (any authenticated employee)
# ---------------------------------------------------------------------------
def _my_participations(session: Session, user: CurrentUser, *filters, newest_first: bool):
    if user.employee_id is None:
        return []
    order = Training.scheduled_at.desc() if newest_first else Training.scheduled_at.asc()
    rows = session.scalars(
        select(TrainingParticipant)
        .join(Training)
        .where(TrainingParticipant.employee_id == user.employee_id, *filters)
        .options(
            selectinload(TrainingParticipant.training).selectinload(Training.type),
            selectinload(TrainingParticipant.training).selectinload(Training.instructor),
            selectinload(TrainingParticipant.training).selectinload(Training.participants),
        )
        .order_by(order)
    ).all()
    return [{**participant_to_dict(p), "training": training_to_dict(p.training)} for p in rows]


@router.get("/my/upcoming")
def my_upcoming(user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    return _my_participations(
        session, user,
        Training.scheduled_at >= utcnow(),
        Training.status.in_((TrainingStatus.SCHEDULED, TrainingStatus.IN_PROGRESS)),
        newest_first=False,
    )


@router.get("/my/history")
def my_history(user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    return _my_participations(
        session, user,
        TrainingParticipant.status.in_(_FINISHED_PARTICIPATION),
        newest_first=True,
    )


# ---------------------------------------------------------------------------
# Trainings
# ---------------------------------------------------------------------------
@router.get("/stats", dependencies=[Depends(require_permission("academy.view"))])
def training_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(select(Training.status, func.count()).group_by(Training.status)).all())
    month_start, month_end = _month_bounds(utcnow())
    this_month = session.scalar(
        select(func.count()).select_from(Training).where(
            Training.scheduled_at >= month_start, Training.scheduled_at < month_end,
        )
    )
    return {
        "total": sum(counts.values()),
        "scheduled": counts.get(TrainingStatus.SCHEDULED, 0),
        "completed": counts.get(TrainingStatus.COMPLETED, 0),
        "thisMonth": this_month or 0,
    }


@router.get("/employees", dependencies=[Depends(require_permission("academy.view"))])
def selectable_employees(session: Session = Depends(get_session)):
    rows = session.scalars(
        select(Employee)
        .where(Employee.status == EmployeeStatus.ACTIVE)
        .options(selectinload(Employee.user))
        .order_by(Employee.rank_level.desc())
    ).all()
    return [employee_brief(e) for e in rows]


@router.get("", dependencies=[Depends(require_permission("academy.view"))])
def list_trainings(
    status: TrainingStatus | None = None,
    type_id: int | None = None,
    upcoming: bool = False,
    session: Session = Depends(get_session),
):
    stmt = _query()
    if status:
        stmt = stmt.where(Training.status == status)
    if type_id is not None:
        stmt = stmt.where(Training.type_id == type_id)
    if upcoming:
        stmt = stmt.where(Training.scheduled_at >= utcnow()).order_by(Training.scheduled_at.asc())
    else:
        stmt = stmt.order_by(Training.scheduled_at.desc())
    return [training_to_dict(t) for t in session.scalars(stmt).all()]


@router.get("/{training_id}", dependencies=[Depends(require_permission("academy.view"))])
def get_training(training_id: int, session: Session = Depends(get_session)):
    return training_to_dict(_load(session, training_id), detail=True)


@router.post("", status_code=201)
def create_training(
    body: TrainingCreate,
    user: CurrentUser = Depends(require_permission("academy.manage")),
    session: Session = Depends(get_session),
):
    if body.type_id is None or not (body.title or "").strip() or body.scheduled_at is None:
        raise HTTPException(400, "Type, title and scheduled date are required")
    get_or_404(session, TrainingType, body.type_id, "Training type")
    training = Training(
        type_id=body.type_id,
        title=body.title.strip(),
        description=body.description,
        scheduled_at=as_utc(body.scheduled_at),
        location=body.location,
        max_participants=body.max_participants,
        instructor_id=user.id,
    )
    session.add(training)
    session.commit()
    data = training_to_dict(_load(session, training.id), detail=True)
    realtime.broadcast_create("training", data)
    return data


@router.put("/{training_id}", dependencies=[Depends(require_permission("academy.manage"))])
def update_training(training_id: int, body: TrainingUpdate, session: Session = Depends(get_session)):
    training = _load(session, training_id)
    previous_status = training.status
    fields = body.model_dump(exclude_unset=True)

    if fields.get("type_id") is not None:
        get_or_404(session, TrainingType, fields["type_id"], "Training type")
    if fields.get("scheduled_at") is not None:
        fields["scheduled_at"] = as_utc(fields["scheduled_at"])
    for key, value in fields.items():
        if value is None and key in ("type_id", "title", "scheduled_at", "status"):
            continue
        setattr(training, key, value)

    if training.status == TrainingStatus.COMPLETED and previous_status != TrainingStatus.COMPLETED:
        training.completed_at = utcnow()
        bonus_service.trigger(
            session, "TRAINING_CONDUCTED",
            bonus_service.employee_id_for_user(session, training.instructor_id),
            subject=training.title, reference_id=training.id,
        )

    session.commit()
    data = training_to_dict(_load(session, training_id), detail=True)
    realtime.broadcast_update("training", data)
    return data


@router.delete("/{training_id}", status_code=204, dependencies=[Depends(require_permission("academy.manage"))])
def delete_training(training_id: int, session: Session = Depends(get_session)):
    session.delete(_load(session, training_id))
    session.commit()
    realtime.broadcast_delete("training", training_id)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------
@router.post("/{training_id}/participants", status_code=201,
             dependencies=[Depends(require_permission("academy.manage"))])
def add_participant(training_id: int, body: ParticipantAdd, session: Session = Depends(get_session)):
    training = _load(session, training_id)
    get_or_404(session, Employee, body.employee_id, "Employee")
    if training.max_participants and len(training.participants) >= training.max_participants:
        raise HTTPException(400, "Maximum number of participants reached")
    if any(p.employee_id == body.employee_id for p in training.participants):
        raise HTTPException(400, "Employee is already registered for this training")

    participant = TrainingParticipant(training_id=training_id, employee_id=body.employee_id)
    session.add(participant)
    session.commit()
    session.refresh(participant)
    return participant_to_dict(participant)


@router.put("/{training_id}/participants/{participant_id}",
            dependencies=[Depends(require_permission("academy.manage", "academy.teach"))])
def update_participant(
    training_id: int,
    participant_id: int,
    body: ParticipantUpdate,
    session: Session = Depends(get_session),
):
    participant = get_or_404(session, TrainingParticipant, participant_id, "Participant")
    if participant.training_id != training_id:
        raise HTTPException(404, "Participant not found")
    fields = body.model_dump(exclude_unset=True)

    new_status = fields.pop("status", None)
    if new_status and new_status != participant.status:
        participant.status = new_status
        if new_status == ParticipantStatus.ATTENDED:
            participant.attended_at = utcnow()
            bonus_service.trigger(
                session, "TRAINING_PARTICIPATED", participant.employee_id,
                subject=participant.training.title, reference_id=training_id,
            )
    for key, value in fields.items():
        setattr(participant, key, value)

    session.commit()
    return participant_to_dict(participant)


@router.delete("/{training_id}/participants/{participant_id}", status_code=204,
               dependencies=[Depends(require_permission("academy.manage"))])
def remove_participant(training_id: int, participant_id: int, session: Session = Depends(get_session)):
    participant = get_or_404(session, TrainingParticipant, participant_id, "Participant")
    if participant.training_id != training_id:
        raise HTTPException(404, "Participant not found")
    session.delete(participant)
    session.commit()
