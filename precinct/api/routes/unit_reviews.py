"""
precinct.api.routes.unit_reviews — Quality Assurance unit reviews
==================================================================

QA reviewers rate a unit (1–5) with findings and recommendations.  A
review moves DRAFT → SUBMITTED → REVIEWED; the first time it reaches
REVIEWED the reviewer accrues the UNIT_REVIEW_COMPLETED bonus.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import TEAMS
from precinct.database.models import ReviewStatus, UnitReview
from precinct.services import bonus_service, realtime
from precinct.services.employee_service import KNOWN_DEPARTMENTS
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/unit-reviews", tags=["unit-reviews"])

REVIEW_UNITS = (*(f"Team {team.title()}" for team in TEAMS), *KNOWN_DEPARTMENTS)


class ReviewCreate(BaseModel):
    unit: str | None = None
    review_date: datetime | None = None
    rating: int = Field(default=3, ge=1, le=5)
    findings: str | None = None
    recommendations: str | None = None


class ReviewUpdate(BaseModel):
    unit: str | None = None
    review_date: datetime | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    findings: str | None = None
    recommendations: str | None = None
    status: ReviewStatus | None = None


def review_to_dict(r: UnitReview) -> dict:
    return {
        "id": r.id,
        "unit": r.unit,
        "review_date": iso(r.review_date),
        "rating": r.rating,
        "findings": r.findings,
        "recommendations": r.recommendations,
        "status": r.status,
        "reviewer": user_brief(r.reviewer),
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }


def _query():
    return select(UnitReview).options(selectinload(UnitReview.reviewer))


def _load(session: Session, review_id: int) -> UnitReview:
    row = session.scalar(_query().where(UnitReview.id == review_id))
    if row is None:
        raise HTTPException(404, "Review not found")
    return row


@router.get("/units", dependencies=[Depends(require_permission("qa.view"))])
def review_units():
    return list(REVIEW_UNITS)


@router.get("/stats", dependencies=[Depends(require_permission("qa.view"))])
def review_stats(session: Session = Depends(get_session)):
    counts = dict(session.execute(
        select(UnitReview.status, func.count()).group_by(UnitReview.status)
    ).all())
    average = session.scalar(
        select(func.avg(UnitReview.rating))
        .where(UnitReview.status.in_((ReviewStatus.SUBMITTED, ReviewStatus.REVIEWED)))
    )
    return {
        "total": sum(counts.values()),
        "draft": counts.get(ReviewStatus.DRAFT, 0),
        "submitted": counts.get(ReviewStatus.SUBMITTED, 0),
        "reviewed": counts.get(ReviewStatus.REVIEWED, 0),
        "average_rating": round(float(average), 2) if average is not None else 0,
    }


@router.get("", dependencies=[Depends(require_permission("qa.view"))])
def list_reviews(
    unit: str | None = None,
    status: ReviewStatus | None = None,
    session: Session = Depends(get_session),
):
    stmt = _query().order_by(UnitReview.review_date.desc(), UnitReview.id.desc())
    if unit:
        stmt = stmt.where(UnitReview.unit == unit)
    if status:
        stmt = stmt.where(UnitReview.status == status)
    return [review_to_dict(r) for r in session.scalars(stmt).all()]


@router.get("/by-unit/{unit}", dependencies=[Depends(require_permission("qa.view"))])
def unit_history(unit: str, session: Session = Depends(get_session)):
    """Submitted and reviewed reviews of *unit*; drafts stay with QA."""
    rows = session.scalars(
        _query()
        .where(
            UnitReview.unit == unit,
            UnitReview.status.in_((ReviewStatus.SUBMITTED, ReviewStatus.REVIEWED)),
        )
        .order_by(UnitReview.review_date.desc())
    ).all()
    return [review_to_dict(r) for r in rows]


@router.get("/{review_id}", dependencies=[Depends(require_permission("qa.view"))])
def get_review(review_id: int, session: Session = Depends(get_session)):
    return review_to_dict(_load(session, review_id))


@router.post("", status_code=201)
def create_review(
    body: ReviewCreate,
    user: CurrentUser = Depends(require_permission("qa.manage")),
    session: Session = Depends(get_session),
):
    if not (body.unit or "").strip() or body.review_date is None:
        raise HTTPException(400, "Unit and review date are required")
    row = UnitReview(
        unit=body.unit.strip(),
        review_date=body.review_date,
        rating=body.rating,
        findings=body.findings,
        recommendations=body.recommendations,
        reviewer_id=user.id,
    )
    session.add(row)
    session.commit()
    data = review_to_dict(_load(session, row.id))
    realtime.broadcast_create("unitReview", data)
    return data


@router.put("/{review_id}", dependencies=[Depends(require_permission("qa.manage"))])
def update_review(review_id: int, body: ReviewUpdate, session: Session = Depends(get_session)):
    row = _load(session, review_id)
    was_reviewed = row.status == ReviewStatus.REVIEWED
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None:
            continue
        setattr(row, key, value.strip() if key == "unit" else value)

    if row.status == ReviewStatus.REVIEWED and not was_reviewed:
        bonus_service.trigger(
            session, "UNIT_REVIEW_COMPLETED", bonus_service.employee_id_for_user(session, row.reviewer_id),
            subject=row.unit, reference_id=row.id,
        )
        logger.info("Unit review %d of %s completed", row.id, row.unit)
    session.commit()
    data = review_to_dict(_load(session, review_id))
    realtime.broadcast_update("unitReview", data)
    return data


@router.delete("/{review_id}", status_code=204, dependencies=[Depends(require_permission("qa.manage"))])
def delete_review(review_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, UnitReview, review_id, "Review"))
    session.commit()
    realtime.broadcast_delete("unitReview", review_id)
