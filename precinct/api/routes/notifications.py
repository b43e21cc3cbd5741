"""Per-user notification inbox.  Every route is scoped to the caller."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from precinct.api.deps import get_current_user, get_session
from precinct.database.models import Notification
from precinct.services.notification_service import notification_to_dict
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/notifications", tags=["notifications"])

INBOX_LIMIT = 50


def _own(session: Session, notification_id: int, user_id: int) -> Notification:
    row = session.get(Notification, notification_id)
    if row is None or row.user_id != user_id:
        raise HTTPException(404, "Notification not found")
    return row


@router.get("")
def list_notifications(
    unread_only: bool = False,
    user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    stmt = (
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(INBOX_LIMIT)
    )
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return [notification_to_dict(n) for n in session.scalars(stmt).all()]


@router.get("/unread-count")
def unread_count(user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    count = session.scalar(
        select(func.count()).select_from(Notification).where(
            Notification.user_id == user.id, Notification.is_read.is_(False),
        )
    )
    return {"count": count or 0}


@router.put("/read-all")
def mark_all_read(user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    session.commit()
    return {"success": True, "updated": result.rowcount}


@router.put("/{notification_id}/read")
def mark_read(
    notification_id: int,
    user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    row = _own(session, notification_id, user.id)
    row.is_read = True
    session.commit()
    return notification_to_dict(row)


@router.delete("/{notification_id}", status_code=204)
def delete_notification(
    notification_id: int,
    user: CurrentUser = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    session.delete(_own(session, notification_id, user.id))
    session.commit()
