"""
tests/test_notifications_calendar.py — Inbox & Calendar Reminders
==================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import auth, make_employee, make_user
from precinct.database.models import CalendarEvent, Notification, NotificationType
from precinct.services import calendar_service
from precinct.services.notification_service import create_notification, notify_promotion

NOW = datetime(2026, 10, 19, 18, 0, tzinfo=UTC)


def _event(session: Session, *, starts_in: timedelta, reminder_minutes: int | None = 30, **kw) -> CalendarEvent:
    ev = CalendarEvent(
        title=kw.pop("title", "Briefing"),
        start_date=NOW + starts_in,
        reminder_minutes=reminder_minutes,
        created_by_id=kw.pop("created_by_id", 1),
        **kw,
    )
    session.add(ev)
    session.flush()
    return ev


class TestReminderWindow:
    @pytest.mark.parametrize("starts_in, due", [
        (timedelta(minutes=45), False),
        (timedelta(minutes=30), True),
        (timedelta(minutes=1), True),
        (timedelta(0), False),
        (timedelta(minutes=-5), False),
    ])
    def test_is_due(self, starts_in, due):
        ev = CalendarEvent(title="x", start_date=NOW + starts_in, reminder_minutes=30, reminder_sent=False)
        assert calendar_service.is_due(ev, NOW) is due

    def test_sent_or_unset_never_due(self):
        sent = CalendarEvent(title="x", start_date=NOW + timedelta(minutes=5), reminder_minutes=30, reminder_sent=True)
        unset = CalendarEvent(title="x", start_date=NOW + timedelta(minutes=5), reminder_minutes=None)
        assert not calendar_service.is_due(sent, NOW)
        assert not calendar_service.is_due(unset, NOW)


class TestReminderFlow:
    def test_due_then_completed_once(self, db_engine):
        with Session(db_engine) as s:
            make_user(s, 1)
            employee = make_employee(s, 2)
            due = _event(s, starts_in=timedelta(minutes=10), notify_employee_ids=[employee.id])
            _event(s, starts_in=timedelta(hours=3), title="Later")
            _event(s, starts_in=timedelta(minutes=10), reminder_minutes=None, title="Silent")
            s.commit()
            due_id = due.id

        (reminder,) = calendar_service.due_reminders(db_engine, NOW)
        assert reminder.id == due_id
        assert reminder.start_date.tzinfo is not None

        assert calendar_service.complete_reminder(db_engine, reminder, NOW) == 1
        assert calendar_service.due_reminders(db_engine, NOW) == []

        with Session(db_engine) as s:
            note = s.scalar(select(Notification).where(Notification.user_id == 2))
            assert note.type == NotificationType.CALENDAR
            assert note.data["eventId"] == due_id

    def test_get_reminder_missing(self, db_engine):
        assert calendar_service.get_reminder(db_engine, 404) is None


class TestCalendarRoutes:
    @pytest.fixture
    def manager(self, db_engine):
        with Session(db_engine) as s:
            make_user(s, 1, "calendar.view", "calendar.manage")
            s.commit()
        return auth(1)

    def test_create_validates_dates(self, api, manager):
        start = (NOW + timedelta(days=1)).isoformat()
        assert api.post("/api/calendar", json={"title": "x"}, headers=manager).status_code == 400
        bad = {"title": "x", "start_date": start, "end_date": NOW.isoformat()}
        assert api.post("/api/calendar", json=bad, headers=manager).status_code == 400

        resp = api.post("/api/calendar", json={"title": "Academy", "start_date": start}, headers=manager)
        assert resp.status_code == 201
        assert resp.json()["category"] == "GENERAL"

    def test_update_rearms_reminder(self, api, db_engine, manager):
        with Session(db_engine) as s:
            ev = _event(s, starts_in=timedelta(days=1), reminder_sent=True)
            s.commit()
            event_id = ev.id
        resp = api.put(f"/api/calendar/{event_id}", json={"location": "HQ"}, headers=manager)
        assert resp.status_code == 200
        assert resp.json()["reminder_sent"] is False
        assert resp.json()["location"] == "HQ"

    def test_remind_now_not_queued_without_postgres(self, api, db_engine, manager):
        with Session(db_engine) as s:
            event_id = _event(s, starts_in=timedelta(days=1)).id
            s.commit()
        assert api.post(f"/api/calendar/{event_id}/remind", headers=manager).json() == {
            "success": True, "queued": False,
        }
        assert api.post("/api/calendar/999/remind", headers=manager).status_code == 404


class TestNotificationRoutes:
    @pytest.fixture
    def inbox(self, db_engine):
        with Session(db_engine) as s:
            make_user(s, 1)
            make_user(s, 2)
            ids = [
                notify_promotion(s, 1, old_rank="Officer", new_rank="Senior Officer").id,
                create_notification(s, 1, NotificationType.GENERAL, "Hello", "World").id,
                create_notification(s, 2, NotificationType.GENERAL, "Other", "User").id,
            ]
            s.commit()
        return ids

    def test_inbox_scoped_to_caller(self, api, inbox):
        rows = api.get("/api/notifications", headers=auth(1)).json()
        assert {r["id"] for r in rows} == set(inbox[:2])
        assert api.get("/api/notifications/unread-count", headers=auth(1)).json() == {"count": 2}

    def test_mark_read(self, api, inbox):
        resp = api.put(f"/api/notifications/{inbox[0]}/read", headers=auth(1))
        assert resp.json()["is_read"] is True
        assert api.get("/api/notifications/unread-count", headers=auth(1)).json() == {"count": 1}
        assert api.put("/api/notifications/read-all", headers=auth(1)).json()["updated"] == 1

    def test_cannot_touch_someone_elses(self, api, inbox):
        assert api.put(f"/api/notifications/{inbox[2]}/read", headers=auth(1)).status_code == 404
        assert api.delete(f"/api/notifications/{inbox[2]}", headers=auth(1)).status_code == 404
        assert api.delete(f"/api/notifications/{inbox[2]}", headers=auth(2)).status_code == 204
