"""
precinct.api.routes.academy — Academy curriculum
=================================================

Training sessions live in :mod:`~precinct.api.routes.trainings`; this
router covers what the academy records about individual officers:

* modules of the JUNIOR_OFFICER and OFFICER curricula and which of them an
  employee has completed (sign-off accrues ACADEMY_MODULE_COMPLETED to the
  instructor)
* exams (EXAM_CONDUCTED for the examiner)
* retrainings ordered for an employee (RETRAINING_COMPLETED for whoever
  completes them)

Instructors need ``academy.teach``; curriculum and retraining orders need
``academy.manage``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import employee_brief, get_or_404, iso, user_brief
from precinct.constants import utcnow
from precinct.database.models import (
    AcademyExam,
    AcademyModule,
    AcademyProgress,
    AcademyRetraining,
    Employee,
    ModuleCategory,
    RetrainingStatus,
)
from precinct.services import bonus_service, realtime
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/academy", tags=["academy"])

TEACH = ("academy.manage", "academy.teach")


class ModuleCreate(BaseModel):
    name: str
    description: str | None = None
    category: ModuleCategory = ModuleCategory.JUNIOR_OFFICER
    sort_order: int = 0


class ModuleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: ModuleCategory | None = None
    sort_order: int | None = None
    is_active: bool | None = None


class ModuleSignOff(BaseModel):
    employee_id: int
    module_id: int
    notes: str | None = None


class ExamCreate(BaseModel):
    candidate_id: int
    score: int = Field(ge=0)
    max_score: int = Field(gt=0)
    passed: bool
    notes: str | None = None


class RetrainingCreate(BaseModel):
    employee_id: int
    reason: str


class RetrainingComplete(BaseModel):
    notes: str | None = None


def module_to_dict(m: AcademyModule) -> dict:
    return {
        "id": m.id,
        "name": m.name,
        "description": m.description,
        "category": m.category,
        "sort_order": m.sort_order,
        "is_active": m.is_active,
    }


def exam_to_dict(e: AcademyExam) -> dict:
    return {
        "id": e.id,
        "candidate": employee_brief(e.candidate),
        "examiner": user_brief(e.examiner),
        "score": e.score,
        "max_score": e.max_score,
        "passed": e.passed,
        "notes": e.notes,
        "conducted_at": iso(e.conducted_at),
    }


def retraining_to_dict(r: AcademyRetraining) -> dict:
    return {
        "id": r.id,
        "employee": employee_brief(r.employee),
        "reason": r.reason,
        "status": r.status,
        "notes": r.notes,
        "created_by": user_brief(r.created_by),
        "completed_by": user_brief(r.completed_by),
        "completed_at": iso(r.completed_at),
        "created_at": iso(r.created_at),
    }


def _employee_name(employee: Employee) -> str:
    user = employee.user
    return (user.display_name or user.username) if user else f"employee {employee.id}"


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------
@router.get("/modules", dependencies=[Depends(require_permission("academy.view"))])
def list_modules(include_inactive: bool = False, session: Session = Depends(get_session)):
    stmt = select(AcademyModule).order_by(AcademyModule.category, AcademyModule.sort_order, AcademyModule.id)
    if not include_inactive:
        stmt = stmt.where(AcademyModule.is_active.is_(True))
    return [module_to_dict(m) for m in session.scalars(stmt).all()]


@router.post("/modules", status_code=201, dependencies=[Depends(require_permission("academy.manage"))])
def create_module(body: ModuleCreate, session: Session = Depends(get_session)):
    name = body.name.strip()
    if not name:
        raise HTTPException(400, "Module name is required")
    if session.scalar(select(AcademyModule.id).where(AcademyModule.name == name)):
        raise HTTPException(400, "A module with this name already exists")
    module = AcademyModule(
        name=name, description=body.description, category=body.category, sort_order=body.sort_order,
    )
    session.add(module)
    session.commit()
    return module_to_dict(module)


@router.put("/modules/{module_id}", dependencies=[Depends(require_permission("academy.manage"))])
def update_module(module_id: int, body: ModuleUpdate, session: Session = Depends(get_session)):
    module = get_or_404(session, AcademyModule, module_id, "Module")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(module, key, value.strip() if key == "name" else value)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise HTTPException(400, "A module with this name already exists")
    return module_to_dict(module)


@router.delete("/modules/{module_id}", status_code=204, dependencies=[Depends(require_permission("academy.manage"))])
def delete_module(module_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, AcademyModule, module_id, "Module"))
    session.commit()


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------
@router.get("/progress/{employee_id}", dependencies=[Depends(require_permission("academy.view"))])
def employee_progress(employee_id: int, session: Session = Depends(get_session)):
    """Every active module with the employee's sign-off (or ``None``)."""
    get_or_404(session, Employee, employee_id, "Employee")
    done = {
        p.module_id: p
        for p in session.scalars(
            select(AcademyProgress)
            .where(AcademyProgress.employee_id == employee_id)
            .options(selectinload(AcademyProgress.completed_by))
        )
    }
    modules = session.scalars(
        select(AcademyModule)
        .where(AcademyModule.is_active.is_(True))
        .order_by(AcademyModule.category, AcademyModule.sort_order, AcademyModule.id)
    ).all()
    rows = []
    for module in modules:
        progress = done.get(module.id)
        rows.append({
            "module": module_to_dict(module),
            "completed": progress is not None,
            "completed_at": iso(progress.completed_at) if progress else None,
            "completed_by": user_brief(progress.completed_by) if progress else None,
        })
    return {
        "employee_id": employee_id,
        "completed": sum(1 for r in rows if r["completed"]),
        "total": len(rows),
        "modules": rows,
    }


@router.post("/progress", status_code=201)
def sign_off_module(
    body: ModuleSignOff,
    user: CurrentUser = Depends(require_permission(*TEACH)),
    session: Session = Depends(get_session),
):
    employee = get_or_404(session, Employee, body.employee_id, "Employee")
    module = get_or_404(session, AcademyModule, body.module_id, "Module")
    if not module.is_active:
        raise HTTPException(400, "Module is no longer part of the curriculum")
    if session.scalar(select(AcademyProgress.id).where(
        AcademyProgress.employee_id == employee.id, AcademyProgress.module_id == module.id,
    )):
        raise HTTPException(400, "Module already completed by this employee")

    progress = AcademyProgress(
        employee_id=employee.id, module_id=module.id, completed_by_id=user.id, notes=body.notes,
    )
    session.add(progress)
    session.flush()
    bonus_service.trigger(
        session, "ACADEMY_MODULE_COMPLETED", bonus_service.employee_id_for_user(session, user.id),
        subject=module.name, reference_id=progress.id,
    )
    session.commit()
    logger.info("Module %r signed off for employee %d by %s", module.name, employee.id, user.id)
    return {"id": progress.id, "employee_id": employee.id, "module": module_to_dict(module),
            "completed_at": iso(progress.completed_at)}


@router.delete("/progress/{progress_id}", status_code=204, dependencies=[Depends(require_permission("academy.manage"))])
def revoke_sign_off(progress_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, AcademyProgress, progress_id, "Progress entry"))
    session.commit()


# ---------------------------------------------------------------------------
# Exams
# ---------------------------------------------------------------------------
def _exam_query():
    return select(AcademyExam).options(
        selectinload(AcademyExam.candidate).selectinload(Employee.user),
        selectinload(AcademyExam.examiner),
    )


@router.get("/exams", dependencies=[Depends(require_permission("academy.view"))])
def list_exams(candidate_id: int | None = None, session: Session = Depends(get_session)):
    stmt = _exam_query().order_by(AcademyExam.conducted_at.desc(), AcademyExam.id.desc())
    if candidate_id is not None:
        stmt = stmt.where(AcademyExam.candidate_id == candidate_id)
    return [exam_to_dict(e) for e in session.scalars(stmt).all()]


@router.post("/exams", status_code=201)
def record_exam(
    body: ExamCreate,
    user: CurrentUser = Depends(require_permission(*TEACH)),
    session: Session = Depends(get_session),
):
    if body.score > body.max_score:
        raise HTTPException(400, "Score cannot exceed the maximum score")
    candidate = get_or_404(session, Employee, body.candidate_id, "Employee")
    if candidate.user_id == user.id:
        raise HTTPException(400, "You cannot examine yourself")

    exam = AcademyExam(
        candidate_id=candidate.id,
        examiner_id=user.id,
        score=body.score,
        max_score=body.max_score,
        passed=body.passed,
        notes=body.notes,
    )
    session.add(exam)
    session.flush()
    bonus_service.trigger(
        session, "EXAM_CONDUCTED", bonus_service.employee_id_for_user(session, user.id),
        subject=_employee_name(candidate), reference_id=exam.id,
    )
    session.commit()
    data = exam_to_dict(session.scalar(_exam_query().where(AcademyExam.id == exam.id)))
    realtime.broadcast_create("academyExam", data)
    return data


# ---------------------------------------------------------------------------
# Retrainings
# ---------------------------------------------------------------------------
def _retraining_query():
    return select(AcademyRetraining).options(
        selectinload(AcademyRetraining.employee).selectinload(Employee.user),
        selectinload(AcademyRetraining.created_by),
        selectinload(AcademyRetraining.completed_by),
    )


def _load_retraining(session: Session, retraining_id: int) -> AcademyRetraining:
    row = session.scalar(_retraining_query().where(AcademyRetraining.id == retraining_id))
    if row is None:
        raise HTTPException(404, "Retraining not found")
    return row


@router.get("/retrainings", dependencies=[Depends(require_permission("academy.view"))])
def list_retrainings(status: RetrainingStatus | None = None, session: Session = Depends(get_session)):
    stmt = _retraining_query().order_by(AcademyRetraining.created_at.desc(), AcademyRetraining.id.desc())
    if status:
        stmt = stmt.where(AcademyRetraining.status == status)
    return [retraining_to_dict(r) for r in session.scalars(stmt).all()]


@router.post("/retrainings", status_code=201)
def order_retraining(
    body: RetrainingCreate,
    user: CurrentUser = Depends(require_permission("academy.manage")),
    session: Session = Depends(get_session),
):
    if not body.reason.strip():
        raise HTTPException(400, "Reason is required")
    employee = get_or_404(session, Employee, body.employee_id, "Employee")
    row = AcademyRetraining(employee_id=employee.id, reason=body.reason.strip(), created_by_id=user.id)
    session.add(row)
    session.commit()
    data = retraining_to_dict(_load_retraining(session, row.id))
    realtime.broadcast_create("academyRetraining", data)
    return data


@router.post("/retrainings/{retraining_id}/complete")
def complete_retraining(
    retraining_id: int,
    body: RetrainingComplete,
    user: CurrentUser = Depends(require_permission(*TEACH)),
    session: Session = Depends(get_session),
):
    row = _load_retraining(session, retraining_id)
    if row.status == RetrainingStatus.COMPLETED:
        raise HTTPException(400, "Retraining has already been completed")
    row.status = RetrainingStatus.COMPLETED
    row.completed_by_id = user.id
    row.completed_at = utcnow()
    if body.notes is not None:
        row.notes = body.notes
    bonus_service.trigger(
        session, "RETRAINING_COMPLETED", bonus_service.employee_id_for_user(session, user.id),
        subject=_employee_name(row.employee), reference_id=row.id,
    )
    session.commit()
    data = retraining_to_dict(_load_retraining(session, retraining_id))
    realtime.broadcast_update("academyRetraining", data)
    return data


@router.delete("/retrainings/{retraining_id}", status_code=204,
               dependencies=[Depends(require_permission("academy.manage"))])
def delete_retraining(retraining_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, AcademyRetraining, retraining_id, "Retraining"))
    session.commit()
    realtime.broadcast_delete("academyRetraining", retraining_id)
