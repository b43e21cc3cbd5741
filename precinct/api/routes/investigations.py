"""
precinct.api.routes.investigations — Internal Affairs
======================================================

Case numbers run per year: ``IA-2026-001``, ``IA-2026-002``, ...  Closing
(or archiving) a case stamps ``closed_at`` and accrues the lead
investigator's INVESTIGATION_CLOSED bonus once.  Investigators holding only
``ia.investigate`` may add notes and witnesses but not edit the case.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import employee_brief, get_or_404, iso, next_case_number, user_brief
from precinct.constants import utcnow
from precinct.database.models import (
    Employee,
    EmployeeStatus,
    Investigation,
    InvestigationCategory,
    InvestigationNote,
    InvestigationStatus,
    InvestigationWitness,
    Priority,
)
from precinct.services import bonus_service, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/investigations", tags=["investigations"])

_FINAL_STATES = (InvestigationStatus.CLOSED, InvestigationStatus.ARCHIVED)


class InvestigationCreate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: Priority = Priority.NORMAL
    category: InvestigationCategory = InvestigationCategory.COMPLAINT
    accused_id: int | None = None
    complainant: str | None = None


class InvestigationUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    status: InvestigationStatus | None = None
    priority: Priority | None = None
    category: InvestigationCategory | None = None
    accused_id: int | None = None
    complainant: str | None = None
    findings: str | None = None
    conclusion: str | None = None


class NoteCreate(BaseModel):
    content: str
    is_confidential: bool = False


class WitnessCreate(BaseModel):
    employee_id: int | None = None
    external_name: str | None = None
    statement: str | None = None
    interviewed_at: datetime | None = None


class WitnessUpdate(BaseModel):
    statement: str | None = None
    interviewed_at: datetime | None = None


def note_to_dict(n: InvestigationNote) -> dict:
    return {
        "id": n.id,
        "content": n.content,
        "is_confidential": n.is_confidential,
        "author": user_brief(n.author),
        "created_at": iso(n.created_at),
    }


def witness_to_dict(w: InvestigationWitness) -> dict:
    return {
        "id": w.id,
        "employee": employee_brief(w.employee),
        "external_name": w.external_name,
        "statement": w.statement,
        "interviewed_at": iso(w.interviewed_at),
        "created_at": iso(w.created_at),
    }


def investigation_to_dict(inv: Investigation, *, detail: bool = False) -> dict:
    data = {
        "id": inv.id,
        "case_number": inv.case_number,
        "title": inv.title,
        "description": inv.description,
        "status": inv.status,
        "priority": inv.priority,
        "category": inv.category,
        "complainant": inv.complainant,
        "findings": inv.findings,
        "conclusion": inv.conclusion,
        "accused": employee_brief(inv.accused),
        "lead_investigator": user_brief(inv.lead_investigator),
        "closed_at": iso(inv.closed_at),
        "created_at": iso(inv.created_at),
        "updated_at": iso(inv.updated_at),
        "counts": {"notes": len(inv.notes), "witnesses": len(inv.witnesses)},
    }
    if detail:
        data["notes"] = [note_to_dict(n) for n in sorted(inv.notes, key=lambda n: n.id, reverse=True)]
        data["witnesses"] = [witness_to_dict(w) for w in inv.witnesses]
    return data


def _query():
    return select(Investigation).options(
        selectinload(Investigation.accused).selectinload(Employee.user),
        selectinload(Investigation.lead_investigator),
        selectinload(Investigation.notes).selectinload(InvestigationNote.author),
        selectinload(Investigation.witnesses)
        .selectinload(InvestigationWitness.employee).selectinload(Employee.user),
    )


def _load(session: Session, investigation_id: int) -> Investigation:
    inv = session.scalar(_query().where(Investigation.id == investigation_id))
    if not inv:
        raise HTTPException(404, "Investigation not found")
    return inv


@router.get("/stats", dependencies=[Depends(require_permission("ia.view"))])
def investigation_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(
        select(Investigation.status, func.count()).group_by(Investigation.status)
    ).all())
    return {
        "total": sum(counts.values()),
        "open": counts.get(InvestigationStatus.OPEN, 0),
        "inProgress": counts.get(InvestigationStatus.IN_PROGRESS, 0),
        "closed": counts.get(InvestigationStatus.CLOSED, 0),
        "archived": counts.get(InvestigationStatus.ARCHIVED, 0),
    }


@router.get("/employees", dependencies=[Depends(require_permission("ia.view"))])
def selectable_employees(session: Session = Depends(get_session)):
    """Active employees for the accused / witness pickers."""
    rows = session.scalars(
        select(Employee)
        .where(Employee.status == EmployeeStatus.ACTIVE)
        .options(selectinload(Employee.user))
        .order_by(Employee.rank_level.desc())
    ).all()
    return [employee_brief(e) for e in rows]


@router.get("", dependencies=[Depends(require_permission("ia.view"))])
def list_investigations(
    status: InvestigationStatus | None = None,
    category: InvestigationCategory | None = None,
    priority: Priority | None = None,
    session: Session = Depends(get_session),
):
    stmt = _query().order_by(Investigation.created_at.desc(), Investigation.id.desc())
    if status:
        stmt = stmt.where(Investigation.status == status)
    if category:
        stmt = stmt.where(Investigation.category == category)
    if priority:
        stmt = stmt.where(Investigation.priority == priority)
    return [investigation_to_dict(i) for i in session.scalars(stmt).all()]


@router.get("/{investigation_id}", dependencies=[Depends(require_permission("ia.view"))])
def get_investigation(investigation_id: int, session: Session = Depends(get_session)):
    return investigation_to_dict(_load(session, investigation_id), detail=True)


@router.post("", status_code=201)
def create_investigation(
    body: InvestigationCreate,
    user: CurrentUser = Depends(require_permission("ia.manage")),
    session: Session = Depends(get_session),
):
    if not (body.title or "").strip():
        raise HTTPException(400, "Title is required")
    if body.accused_id is not None:
        get_or_404(session, Employee, body.accused_id, "Employee")

    now = utcnow()
    inv = Investigation(
        case_number=next_case_number(session, Investigation.case_number, "IA", now.year),
        title=body.title.strip(),
        description=body.description,
        priority=body.priority,
        category=body.category,
        accused_id=body.accused_id,
        complainant=body.complainant,
        lead_investigator_id=user.id,
    )
    session.add(inv)
    session.flush()
    bonus_service.trigger(
        session, "INVESTIGATION_OPENED", user.employee_id,
        subject=inv.case_number, reference_id=inv.id,
    )
    session.commit()
    data = investigation_to_dict(_load(session, inv.id))
    realtime.broadcast_create("investigation", data)
    return data


@router.put("/{investigation_id}", dependencies=[Depends(require_permission("ia.manage"))])
def update_investigation(
    investigation_id: int,
    body: InvestigationUpdate,
    session: Session = Depends(get_session),
):
    inv = _load(session, investigation_id)
    previous_status = inv.status
    fields = body.model_dump(exclude_unset=True)

    if "accused_id" in fields and fields["accused_id"] is not None:
        get_or_404(session, Employee, fields["accused_id"], "Employee")
    for key, value in fields.items():
        if value is None and key in ("title", "status", "priority", "category"):
            continue
        setattr(inv, key, value)

    if inv.status in _FINAL_STATES and previous_status not in _FINAL_STATES:
        inv.closed_at = utcnow()
        bonus_service.trigger(
            session, "INVESTIGATION_CLOSED",
            bonus_service.employee_id_for_user(session, inv.lead_investigator_id),
            subject=inv.case_number, reference_id=inv.id,
        )
    elif inv.status not in _FINAL_STATES:
        inv.closed_at = None

    session.commit()
    data = investigation_to_dict(_load(session, investigation_id))
    realtime.broadcast_update("investigation", data)
    return data


@router.delete("/{investigation_id}", status_code=204, dependencies=[Depends(require_permission("ia.manage"))])
def delete_investigation(investigation_id: int, session: Session = Depends(get_session)):
    session.delete(_load(session, investigation_id))
    session.commit()
    realtime.broadcast_delete("investigation", investigation_id)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------
@router.post("/{investigation_id}/notes", status_code=201)
def add_note(
    investigation_id: int,
    body: NoteCreate,
    user: CurrentUser = Depends(require_permission("ia.manage", "ia.investigate")),
    session: Session = Depends(get_session),
):
    get_or_404(session, Investigation, investigation_id, "Investigation")
    if not body.content.strip():
        raise HTTPException(400, "Note content is required")
    note = InvestigationNote(
        investigation_id=investigation_id,
        content=body.content.strip(),
        is_confidential=body.is_confidential,
        author_id=user.id,
    )
    session.add(note)
    session.commit()
    return note_to_dict(note)


@router.delete("/notes/{note_id}", status_code=204, dependencies=[Depends(require_permission("ia.manage"))])
def delete_note(note_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, InvestigationNote, note_id, "Note"))
    session.commit()


# ---------------------------------------------------------------------------
# Witnesses
# ---------------------------------------------------------------------------
@router.post("/{investigation_id}/witnesses", status_code=201,
             dependencies=[Depends(require_permission("ia.manage", "ia.investigate"))])
def add_witness(
    investigation_id: int,
    body: WitnessCreate,
    session: Session = Depends(get_session),
):
    get_or_404(session, Investigation, investigation_id, "Investigation")
    if body.employee_id is None and not (body.external_name or "").strip():
        raise HTTPException(400, "A witness needs an employee or an external name")
    if body.employee_id is not None:
        get_or_404(session, Employee, body.employee_id, "Employee")
    witness = InvestigationWitness(
        investigation_id=investigation_id,
        employee_id=body.employee_id,
        external_name=(body.external_name or "").strip() or None,
        statement=body.statement,
        interviewed_at=body.interviewed_at,
    )
    session.add(witness)
    session.commit()
    return witness_to_dict(witness)


@router.put("/witnesses/{witness_id}", dependencies=[Depends(require_permission("ia.manage", "ia.investigate"))])
def update_witness(witness_id: int, body: WitnessUpdate, session: Session = Depends(get_session)):
    witness = get_or_404(session, InvestigationWitness, witness_id, "Witness")
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(witness, key, value)
    session.commit()
    return witness_to_dict(witness)


@router.delete("/witnesses/{witness_id}", status_code=204, dependencies=[Depends(require_permission("ia.manage"))])
def delete_witness(witness_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, InvestigationWitness, witness_id, "Witness"))
    session.commit()
