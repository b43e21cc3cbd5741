"""
precinct.services.announcement_service — Announcements for the bot
====================================================================

The publish event only carries the announcement id; the bot reads the
row back through :func:`get_announcement_post` so arbitrarily long content
never travels over NOTIFY.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from precinct.database.models import Announcement, AnnouncementStatus


@dataclass(frozen=True)
class AnnouncementPost:
    id: int
    title: str
    content: str
    priority: str
    channel_id: str | None


def get_announcement_post(engine, announcement_id: int) -> AnnouncementPost | None:
    """Published announcement *announcement_id*, or ``None`` (missing or still a draft)."""
    with Session(engine) as session:
        row = session.get(Announcement, announcement_id)
        if row is None or row.status != AnnouncementStatus.PUBLISHED:
            return None
        return AnnouncementPost(
            id=row.id,
            title=row.title,
            content=row.content,
            priority=str(row.priority),
            channel_id=row.channel_id,
        )
