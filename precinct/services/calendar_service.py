"""
precinct.services.calendar_service — Calendar Reminders
========================================================

The bot polls :func:`due_reminders` every minute.  An event is due when it
has ``reminder_minutes`` set, no reminder was sent yet, and
``start_date - reminder_minutes <= now < start_date``.  After posting,
:func:`complete_reminder` notifies the listed employees and flags the
event so it is never reminded twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from precinct.constants import as_utc, utcnow
from precinct.database.models import CalendarEvent, Employee
from precinct.services.notification_service import notify_calendar

logger = logging.getLogger(__name__)


@dataclass
class Reminder:
    """Detached view of a calendar event, safe to pass to the bot thread."""
    id: int
    title: str
    description: str | None
    location: str | None
    start_date: datetime
    end_date: datetime | None
    all_day: bool
    color: str
    category: str
    reminder_minutes: int
    role_ids: list[str] = field(default_factory=list)
    notify_employee_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_event(cls, ev: CalendarEvent) -> Reminder:
        return cls(
            id=ev.id,
            title=ev.title,
            description=ev.description,
            location=ev.location,
            start_date=as_utc(ev.start_date),
            end_date=as_utc(ev.end_date),
            all_day=ev.all_day,
            color=ev.color,
            category=ev.category,
            reminder_minutes=ev.reminder_minutes or 0,
            role_ids=[str(r) for r in (ev.discord_role_ids or [])],
            notify_employee_ids=[int(e) for e in (ev.notify_employee_ids or [])],
        )


def is_due(ev: CalendarEvent, now: datetime) -> bool:
    if ev.reminder_minutes is None or ev.reminder_sent:
        return False
    start = as_utc(ev.start_date)
    return start - timedelta(minutes=ev.reminder_minutes) <= now < start


def due_reminders(engine, now: datetime | None = None) -> list[Reminder]:
    now = as_utc(now) if now is not None else utcnow()
    with Session(engine) as session:
        candidates = session.scalars(
            select(CalendarEvent).where(
                CalendarEvent.reminder_sent.is_(False),
                CalendarEvent.reminder_minutes.is_not(None),
                CalendarEvent.start_date > now,
            )
        ).all()
        return [Reminder.from_event(ev) for ev in candidates if is_due(ev, now)]


def get_reminder(engine, event_id: int) -> Reminder | None:
    with Session(engine) as session:
        ev = session.get(CalendarEvent, event_id)
        return Reminder.from_event(ev) if ev is not None else None


def complete_reminder(engine, reminder: Reminder, now: datetime | None = None) -> int:
    """Notify the listed employees and mark the event reminded.

    Returns the number of notifications created.
    """
    now = as_utc(now) if now is not None else utcnow()
    starts_in = max(0, int((reminder.start_date - now).total_seconds() // 60))
    created = 0
    with Session(engine) as session:
        ev = session.get(CalendarEvent, reminder.id)
        if ev is None:
            return 0
        if reminder.notify_employee_ids:
            user_ids = session.scalars(
                select(Employee.user_id).where(Employee.id.in_(reminder.notify_employee_ids))
            ).all()
            for user_id in user_ids:
                notify_calendar(session, user_id, event_id=ev.id, title=ev.title, starts_in=starts_in)
                created += 1
        ev.reminder_sent = True
        session.commit()
    logger.info("Calendar reminder for '%s' sent (%d notification(s))", reminder.title, created)
    return created
