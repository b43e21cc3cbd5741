"""
tests/test_announcements.py — Announcements & Reminder Embeds
==============================================================

Embed builders for announcements and calendar reminders, and the
draft → publish flow of the announcement routes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from conftest import auth, make_user
from precinct.constants import PRIORITY_COLORS
from precinct.services.calendar_service import Reminder
from precinct.services.embeds import announcement_embed, reminder_embed


def _reminder(**overrides) -> Reminder:
    fields = dict(
        id=1,
        title="Shooting range",
        description="Bring your own ammo",
        location="Range 2",
        start_date=datetime(2026, 10, 23, 19, 30, tzinfo=UTC),
        end_date=datetime(2026, 10, 23, 21, 0, tzinfo=UTC),
        all_day=False,
        color="#10b981",
        category="TRAINING",
        reminder_minutes=30,
        role_ids=["111", "222"],
    )
    fields.update(overrides)
    return Reminder(**fields)


class TestAnnouncementEmbed:
    @pytest.mark.parametrize("priority", ["LOW", "NORMAL", "HIGH"])
    def test_regular_priorities_do_not_ping(self, priority):
        content, embed = announcement_embed("Shift change", "Body", priority)
        assert content is None
        assert embed.color.value == PRIORITY_COLORS[priority]
        assert embed.title == "Shift change"
        assert embed.description == "Body"

    def test_urgent_pings_everyone(self):
        content, embed = announcement_embed("Lockdown", "All units to HQ", "URGENT")
        assert content == "@everyone"
        assert embed.color.value == PRIORITY_COLORS["URGENT"]
        assert "URGENT" in embed.author.name

    def test_unknown_priority_falls_back_to_normal_color(self):
        _, embed = announcement_embed("x", "y", "WHATEVER")
        assert embed.color.value == PRIORITY_COLORS["NORMAL"]


class TestReminderEmbed:
    def test_fields_and_role_mentions(self):
        content, embed = reminder_embed(_reminder())
        assert content == "**Event reminder!** <@&111> <@&222>"
        assert embed.color.value == 0x10B981
        names = [f.name for f in embed.fields]
        assert names == ["📆 Date", "🏷️ Category", "📍 Location", "⏰ Ends"]
        assert embed.fields[0].value == "Friday, 23.10.2026 19:30 UTC"
        assert embed.fields[1].value == "Training"

    def test_all_day_without_extras(self):
        content, embed = reminder_embed(_reminder(
            all_day=True, location=None, role_ids=[], color="not-a-color", category="OTHER",
        ))
        assert content == "**Event reminder!**"
        assert embed.fields[0].value == "Friday, 23.10.2026"
        assert embed.fields[1].value == "OTHER"
        assert embed.color.value == PRIORITY_COLORS["NORMAL"]
        assert len(embed.fields) == 2


class TestAnnouncementRoutes:
    @pytest.fixture
    def editor(self, db_engine):
        with Session(db_engine) as s:
            make_user(s, 8, "announcements.view", "announcements.create", "announcements.publish")
            s.commit()
        return auth(8)

    def _draft(self, api, headers, **body) -> dict:
        payload = {"title": "Briefing", "content": "Tonight at 8", **body}
        resp = api.post("/api/announcements", json=payload, headers=headers)
        assert resp.status_code == 201
        return resp.json()

    def test_create_requires_title_and_content(self, api, editor):
        assert api.post("/api/announcements", json={"title": " "}, headers=editor).status_code == 400

    def test_publish_queues_event_once(self, api, editor):
        draft = self._draft(api, editor, priority="URGENT", channel_id="555")
        assert draft["status"] == "DRAFT"
        assert draft["author"]["id"] == "8"

        with patch("precinct.services.event_bus.publish_on_commit", return_value=True) as queued:
            resp = api.post(f"/api/announcements/{draft['id']}/publish", headers=editor)
        assert resp.status_code == 200
        assert resp.json()["status"] == "PUBLISHED"
        assert resp.json()["published_at"] is not None

        (_, payload), _ = queued.call_args
        assert payload == {"type": "announcement_publish", "announcement_id": draft["id"]}

        assert api.post(f"/api/announcements/{draft['id']}/publish", headers=editor).status_code == 400
        assert api.put(
            f"/api/announcements/{draft['id']}", json={"title": "Edited"}, headers=editor,
        ).status_code == 400

    def test_edit_and_delete_draft(self, api, editor):
        draft = self._draft(api, editor)
        resp = api.put(f"/api/announcements/{draft['id']}", json={"priority": "HIGH"}, headers=editor)
        assert resp.json()["priority"] == "HIGH"
        assert api.delete(f"/api/announcements/{draft['id']}", headers=editor).status_code == 204
        assert api.get(f"/api/announcements/{draft['id']}", headers=editor).status_code == 404

    def test_publish_needs_permission(self, api, db_engine, editor):
        draft = self._draft(api, editor)
        with Session(db_engine) as s:
            make_user(s, 9, "announcements.view", "announcements.create")
            s.commit()
        assert api.post(f"/api/announcements/{draft['id']}/publish", headers=auth(9)).status_code == 403
