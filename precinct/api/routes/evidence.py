"""
precinct.api.routes.evidence — Evidence locker
===============================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.pagination import PageParams, paginate
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import utcnow
from precinct.database.models import Evidence, EvidenceCategory, EvidenceStatus
from precinct.services import bonus_service, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/evidence", tags=["evidence"])

_OUTBOUND = (EvidenceStatus.CHECKED_OUT, EvidenceStatus.RELEASED, EvidenceStatus.DESTROYED)


class EvidenceCreate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: EvidenceCategory = EvidenceCategory.OTHER
    quantity: int = Field(1, ge=1)
    location: str | None = None
    case_number: str | None = None


class EvidenceUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    category: EvidenceCategory | None = None
    quantity: int | None = Field(None, ge=1)
    location: str | None = None
    case_number: str | None = None


class ReleaseRequest(BaseModel):
    status: EvidenceStatus


class BulkDestroy(BaseModel):
    ids: list[int] = Field(default_factory=list)


def evidence_to_dict(e: Evidence) -> dict:
    return {
        "id": e.id,
        "name": e.name,
        "description": e.description,
        "category": e.category,
        "quantity": e.quantity,
        "location": e.location,
        "case_number": e.case_number,
        "status": e.status,
        "stored_by": user_brief(e.stored_by),
        "released_by": user_brief(e.released_by),
        "released_at": iso(e.released_at),
        "created_at": iso(e.created_at),
    }


def _query():
    return select(Evidence).options(selectinload(Evidence.stored_by), selectinload(Evidence.released_by))


@router.get("", dependencies=[Depends(require_permission("evidence.view"))])
def list_evidence(
    status: EvidenceStatus | None = None,
    category: EvidenceCategory | None = None,
    search: str | None = None,
    params: PageParams = Depends(),
    session: Session = Depends(get_session),
):
    stmt = _query().order_by(Evidence.created_at.desc(), Evidence.id.desc())
    if status:
        stmt = stmt.where(Evidence.status == status)
    if category:
        stmt = stmt.where(Evidence.category == category)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            Evidence.name.ilike(pattern),
            Evidence.description.ilike(pattern),
            Evidence.case_number.ilike(pattern),
        ))
    return paginate(session, stmt, params, evidence_to_dict)


@router.get("/stats", dependencies=[Depends(require_permission("evidence.view"))])
def evidence_stats(session: Session = Depends(get_session)):
    """Item quantities (not row counts) per status."""
    by_status = dict(session.execute(
        select(Evidence.status, func.coalesce(func.sum(Evidence.quantity), 0)).group_by(Evidence.status)
    ).all())
    return {
        "total": int(sum(by_status.values())),
        **{s.value.lower(): int(by_status.get(s, 0)) for s in EvidenceStatus},
    }


@router.post("", status_code=201)
def store_evidence(
    body: EvidenceCreate,
    user: CurrentUser = Depends(require_permission("evidence.manage")),
    session: Session = Depends(get_session),
):
    if not (body.name or "").strip():
        raise HTTPException(400, "Name is required")
    item = Evidence(
        name=body.name.strip(),
        description=body.description,
        category=body.category,
        quantity=body.quantity,
        location=body.location,
        case_number=body.case_number,
        stored_by_id=user.id,
    )
    session.add(item)
    session.flush()
    bonus_service.trigger(
        session, "EVIDENCE_STORED", user.employee_id, subject=item.name, reference_id=item.id,
    )
    session.commit()
    data = evidence_to_dict(item)
    realtime.broadcast_create("evidence", data)
    return data


@router.put("/destroy-bulk")
def destroy_bulk(
    body: BulkDestroy,
    user: CurrentUser = Depends(require_permission("evidence.manage")),
    session: Session = Depends(get_session),
):
    """Destroy every listed item that is still in storage."""
    if not body.ids:
        raise HTTPException(400, "No evidence selected")
    items = session.scalars(
        select(Evidence).where(Evidence.id.in_(body.ids), Evidence.status == EvidenceStatus.STORED)
    ).all()
    if not items:
        raise HTTPException(400, "No stored evidence among the selection")
    now = utcnow()
    for item in items:
        item.status = EvidenceStatus.DESTROYED
        item.released_by_id = user.id
        item.released_at = now
    session.commit()
    for item in items:
        realtime.broadcast_update("evidence", {"id": item.id, "status": item.status})
    return {"success": True, "count": len(items)}


@router.put("/{evidence_id}", dependencies=[Depends(require_permission("evidence.manage"))])
def update_evidence(evidence_id: int, body: EvidenceUpdate, session: Session = Depends(get_session)):
    item = get_or_404(session, Evidence, evidence_id, "Evidence")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("name", "category", "quantity"):
            continue
        setattr(item, key, value)
    session.commit()
    data = evidence_to_dict(item)
    realtime.broadcast_update("evidence", data)
    return data


@router.put("/{evidence_id}/release")
def release_evidence(
    evidence_id: int,
    body: ReleaseRequest,
    user: CurrentUser = Depends(require_permission("evidence.manage")),
    session: Session = Depends(get_session),
):
    """Check out, release or destroy an item."""
    if body.status not in _OUTBOUND:
        raise HTTPException(400, "Invalid status")
    item = get_or_404(session, Evidence, evidence_id, "Evidence")
    if item.status == EvidenceStatus.DESTROYED:
        raise HTTPException(400, "Evidence has already been destroyed")
    item.status = body.status
    item.released_by_id = user.id
    item.released_at = utcnow()
    session.commit()
    data = evidence_to_dict(item)
    realtime.broadcast_update("evidence", data)
    return data


@router.put("/{evidence_id}/restore", dependencies=[Depends(require_permission("evidence.manage"))])
def restore_evidence(evidence_id: int, session: Session = Depends(get_session)):
    item = get_or_404(session, Evidence, evidence_id, "Evidence")
    if item.status == EvidenceStatus.DESTROYED:
        raise HTTPException(400, "Destroyed evidence cannot be restored")
    item.status = EvidenceStatus.STORED
    item.released_by_id = None
    item.released_at = None
    session.commit()
    data = evidence_to_dict(item)
    realtime.broadcast_update("evidence", data)
    return data


@router.delete("/{evidence_id}", status_code=204, dependencies=[Depends(require_permission("evidence.manage"))])
def delete_evidence(evidence_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, Evidence, evidence_id, "Evidence"))
    session.commit()
    realtime.broadcast_delete("evidence", evidence_id)
