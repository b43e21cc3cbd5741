"""
precinct.api.routes.announcements — Department announcements
=============================================================

Announcements are drafted in the dashboard and published to Discord by the
bot: publishing flips the row to PUBLISHED and queues an
``announcement_publish`` event that fires when the transaction commits.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import utcnow
from precinct.database.models import Announcement, AnnouncementStatus, Priority
from precinct.services import event_bus, realtime
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/announcements", tags=["announcements"])


class AnnouncementCreate(BaseModel):
    title: str | None = None
    content: str | None = None
    priority: Priority = Priority.NORMAL
    channel_id: str | None = None


class AnnouncementUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    priority: Priority | None = None
    channel_id: str | None = None


def announcement_to_dict(a: Announcement) -> dict:
    return {
        "id": a.id,
        "title": a.title,
        "content": a.content,
        "priority": a.priority,
        "status": a.status,
        "channel_id": a.channel_id,
        "author": user_brief(a.author),
        "published_at": iso(a.published_at),
        "created_at": iso(a.created_at),
    }


def _load(session: Session, announcement_id: int) -> Announcement:
    row = session.scalar(
        select(Announcement)
        .where(Announcement.id == announcement_id)
        .options(selectinload(Announcement.author))
    )
    if not row:
        raise HTTPException(404, "Announcement not found")
    return row


@router.get("", dependencies=[Depends(require_permission("announcements.view"))])
def list_announcements(status: AnnouncementStatus | None = None, session: Session = Depends(get_session)):
    stmt = (
        select(Announcement)
        .options(selectinload(Announcement.author))
        .order_by(Announcement.created_at.desc(), Announcement.id.desc())
    )
    if status:
        stmt = stmt.where(Announcement.status == status)
    return [announcement_to_dict(a) for a in session.scalars(stmt).all()]


@router.get("/{announcement_id}", dependencies=[Depends(require_permission("announcements.view"))])
def get_announcement(announcement_id: int, session: Session = Depends(get_session)):
    return announcement_to_dict(_load(session, announcement_id))


@router.post("", status_code=201)
def create_announcement(
    body: AnnouncementCreate,
    user: CurrentUser = Depends(require_permission("announcements.create")),
    session: Session = Depends(get_session),
):
    if not (body.title or "").strip() or not (body.content or "").strip():
        raise HTTPException(400, "Title and content are required")
    row = Announcement(
        title=body.title.strip(),
        content=body.content.strip(),
        priority=body.priority,
        channel_id=body.channel_id or None,
        author_id=user.id,
    )
    session.add(row)
    session.commit()
    data = announcement_to_dict(_load(session, row.id))
    realtime.broadcast_create("announcement", data)
    return data


@router.put("/{announcement_id}", dependencies=[Depends(require_permission("announcements.create"))])
def update_announcement(announcement_id: int, body: AnnouncementUpdate, session: Session = Depends(get_session)):
    row = _load(session, announcement_id)
    if row.status == AnnouncementStatus.PUBLISHED:
        raise HTTPException(400, "Published announcements cannot be edited")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("title", "content", "priority"):
            continue
        setattr(row, key, value)
    session.commit()
    data = announcement_to_dict(row)
    realtime.broadcast_update("announcement", data)
    return data


@router.post("/{announcement_id}/publish")
def publish_announcement(
    announcement_id: int,
    user: CurrentUser = Depends(require_permission("announcements.publish")),
    session: Session = Depends(get_session),
):
    """Mark the draft published and hand it to the bot for posting."""
    row = _load(session, announcement_id)
    if row.status == AnnouncementStatus.PUBLISHED:
        raise HTTPException(400, "Announcement has already been published")
    row.status = AnnouncementStatus.PUBLISHED
    row.published_at = utcnow()
    event_bus.publish_on_commit(session, event_bus.event("announcement_publish", announcement_id=row.id))
    session.commit()
    logger.info("Announcement %d published by %s", row.id, user.id)
    data = announcement_to_dict(row)
    realtime.broadcast_update("announcement", data)
    return data


@router.delete("/{announcement_id}", status_code=204,
               dependencies=[Depends(require_permission("announcements.create"))])
def delete_announcement(announcement_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, Announcement, announcement_id, "Announcement"))
    session.commit()
    realtime.broadcast_delete("announcement", announcement_id)
