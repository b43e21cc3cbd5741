"""
precinct.api.routes.calendar — Department calendar
===================================================

Events can carry a reminder: ``reminder_minutes`` before the start the bot
posts it to the reminder channel, pinging the listed Discord roles and
notifying the listed employees.  Editing an event re-arms its reminder.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import as_utc, utcnow
from precinct.database.models import CalendarCategory, CalendarEvent
from precinct.services import event_bus, realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/calendar", tags=["calendar"])

DEFAULT_COLOR = "#3b82f6"
UPCOMING_LIMIT = 5


class EventCreate(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    all_day: bool = False
    color: str = DEFAULT_COLOR
    category: CalendarCategory = CalendarCategory.GENERAL
    discord_role_ids: list[str] = Field(default_factory=list)
    notify_employee_ids: list[int] = Field(default_factory=list)
    reminder_minutes: int | None = Field(None, ge=0)


class EventUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    all_day: bool | None = None
    color: str | None = None
    category: CalendarCategory | None = None
    discord_role_ids: list[str] | None = None
    notify_employee_ids: list[int] | None = None
    reminder_minutes: int | None = Field(None, ge=0)


def event_to_dict(ev: CalendarEvent) -> dict:
    return {
        "id": ev.id,
        "title": ev.title,
        "description": ev.description,
        "location": ev.location,
        "start_date": iso(ev.start_date),
        "end_date": iso(ev.end_date),
        "all_day": ev.all_day,
        "color": ev.color,
        "category": ev.category,
        "discord_role_ids": ev.discord_role_ids or [],
        "notify_employee_ids": ev.notify_employee_ids or [],
        "reminder_minutes": ev.reminder_minutes,
        "reminder_sent": ev.reminder_sent,
        "created_by": user_brief(ev.created_by),
        "created_at": iso(ev.created_at),
    }


def _query():
    return select(CalendarEvent).options(selectinload(CalendarEvent.created_by))


@router.get("", dependencies=[Depends(require_permission("calendar.view"))])
def list_events(
    start: datetime | None = None,
    end: datetime | None = None,
    category: str | None = None,
    session: Session = Depends(get_session),
):
    stmt = _query().order_by(CalendarEvent.start_date.asc())
    if start is not None:
        stmt = stmt.where(CalendarEvent.start_date >= as_utc(start))
    if end is not None:
        stmt = stmt.where(CalendarEvent.start_date <= as_utc(end))
    if category and category != "ALL":
        stmt = stmt.where(CalendarEvent.category == category)
    return [event_to_dict(ev) for ev in session.scalars(stmt).all()]


@router.get("/upcoming", dependencies=[Depends(require_permission("calendar.view"))])
def upcoming_events(session: Session = Depends(get_session)):
    rows = session.scalars(
        _query()
        .where(CalendarEvent.start_date >= utcnow())
        .order_by(CalendarEvent.start_date.asc())
        .limit(UPCOMING_LIMIT)
    ).all()
    return [event_to_dict(ev) for ev in rows]


@router.get("/{event_id}", dependencies=[Depends(require_permission("calendar.view"))])
def get_event(event_id: int, session: Session = Depends(get_session)):
    ev = session.scalar(_query().where(CalendarEvent.id == event_id))
    if not ev:
        raise HTTPException(404, "Event not found")
    return event_to_dict(ev)


@router.post("", status_code=201)
def create_event(
    body: EventCreate,
    user: CurrentUser = Depends(require_permission("calendar.manage")),
    session: Session = Depends(get_session),
):
    if not (body.title or "").strip() or body.start_date is None:
        raise HTTPException(400, "Title and start date are required")
    if body.end_date is not None and body.end_date < body.start_date:
        raise HTTPException(400, "End date must not be before the start date")
    ev = CalendarEvent(
        title=body.title.strip(),
        description=body.description,
        location=body.location,
        start_date=as_utc(body.start_date),
        end_date=as_utc(body.end_date) if body.end_date else None,
        all_day=body.all_day,
        color=body.color or DEFAULT_COLOR,
        category=body.category,
        discord_role_ids=body.discord_role_ids,
        notify_employee_ids=body.notify_employee_ids,
        reminder_minutes=body.reminder_minutes,
        reminder_sent=False,
        created_by_id=user.id,
    )
    session.add(ev)
    session.commit()
    session.refresh(ev)
    data = event_to_dict(ev)
    realtime.broadcast_create("calendar", data)
    return data


@router.put("/{event_id}", dependencies=[Depends(require_permission("calendar.manage"))])
def update_event(event_id: int, body: EventUpdate, session: Session = Depends(get_session)):
    ev = get_or_404(session, CalendarEvent, event_id, "Event")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("title", "start_date", "all_day", "color", "category"):
            continue
        if key in ("start_date", "end_date") and value is not None:
            value = as_utc(value)
        setattr(ev, key, value)
    if ev.end_date is not None and as_utc(ev.end_date) < as_utc(ev.start_date):
        raise HTTPException(400, "End date must not be before the start date")
    ev.reminder_sent = False
    session.commit()
    data = event_to_dict(ev)
    realtime.broadcast_update("calendar", data)
    return data


@router.delete("/{event_id}", status_code=204, dependencies=[Depends(require_permission("calendar.manage"))])
def delete_event(event_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, CalendarEvent, event_id, "Event"))
    session.commit()
    realtime.broadcast_delete("calendar", event_id)


@router.post("/{event_id}/remind", dependencies=[Depends(require_permission("calendar.manage"))])
def send_reminder(event_id: int, session: Session = Depends(get_session)):
    """Ask the bot to post the reminder now, regardless of its schedule."""
    get_or_404(session, CalendarEvent, event_id, "Event")
    queued = event_bus.publish_on_commit(session, event_bus.event("calendar_remind", event_id=event_id))
    session.commit()
    return {"success": True, "queued": queued}
