"""
tests/test_bot.py — Bot Cogs & Helpers
=======================================

The cogs are exercised against a mocked bot/guild and the real SQLite
engine; nothing here connects to Discord.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import make_employee, make_user, run_async
from precinct.bot.cogs.actions import Actions
from precinct.bot.cogs.roster import Roster, snapshot
from precinct.bot.cogs.tasks import PeriodicTasks
from precinct.bot.core import PrecinctBot
from precinct.config import PrecinctConfig
from precinct.constants import utcnow
from precinct.database.models import (
    Announcement,
    AnnouncementStatus,
    CalendarEvent,
    Employee,
    Notification,
    User,
)
from precinct.services import settings_service
from precinct.services.calendar_service import get_reminder
from precinct.services.settings_service import load_rank_catalogue

GUILD_ID = 1234
SUNDAY_CLOSE = datetime(2026, 10, 25, 23, 59, tzinfo=UTC)
MONDAY = datetime(2026, 10, 26, 23, 59, tzinfo=UTC)


def _cfg(**overrides) -> PrecinctConfig:
    return PrecinctConfig(department_name="Test PD", bot_prefix="!", guild_id=GUILD_ID, **overrides)


def _role(role_id: int, name: str) -> SimpleNamespace:
    return SimpleNamespace(id=role_id, name=name)


def _member(member_id: int, *roles: SimpleNamespace, nick: str | None = None, bot: bool = False):
    member = MagicMock()
    member.id = member_id
    member.name = f"member{member_id}"
    member.display_name = nick or member.name
    member.display_avatar = SimpleNamespace(url=f"https://cdn.example/{member_id}.png")
    member.roles = list(roles)
    member.bot = bot
    member.guild = SimpleNamespace(id=GUILD_ID)
    member.add_roles = AsyncMock()
    member.remove_roles = AsyncMock()
    member.edit = AsyncMock()
    member.kick = AsyncMock()
    return member


def _fake_bot(engine, guild=None, **cfg) -> MagicMock:
    bot = MagicMock()
    bot.engine = engine
    bot.cfg = _cfg(**cfg)
    bot.guild = guild
    bot.resolve_member = AsyncMock(return_value=None)
    bot.send_calendar_reminder = AsyncMock(return_value=True)
    return bot


def _announcement(engine, *, status=AnnouncementStatus.PUBLISHED, priority="NORMAL",
                  content="HQ", channel_id=None) -> int:
    with Session(engine) as s:
        if s.get(User, 1) is None:
            make_user(s, 1)
        row = Announcement(
            title="Lockdown", content=content, priority=priority,
            status=status, channel_id=channel_id, author_id=1,
        )
        s.add(row)
        s.commit()
        return row.id


def _http_error(cls=discord.HTTPException, status: int = 500):
    return cls(MagicMock(status=status, reason="error"), "error")


def _calendar_event(engine, *, starts_in: timedelta, employee_ids=(), reminder_minutes=30) -> int:
    with Session(engine) as s:
        if s.get(User, 1) is None:
            make_user(s, 1)
        ev = CalendarEvent(
            title="Briefing",
            start_date=utcnow() + starts_in,
            reminder_minutes=reminder_minutes,
            notify_employee_ids=list(employee_ids),
            created_by_id=1,
        )
        s.add(ev)
        s.commit()
        return ev.id


# ---------------------------------------------------------------------------
# PrecinctBot helpers
# ---------------------------------------------------------------------------
class TestPrecinctBot:
    def test_send_calendar_reminder_posts_and_completes(self, db_engine):
        with Session(db_engine) as s:
            employee_id = make_employee(s, 2).id
            s.commit()
        event_id = _calendar_event(db_engine, starts_in=timedelta(minutes=10), employee_ids=[employee_id])
        reminder = get_reminder(db_engine, event_id)

        bot = PrecinctBot(_cfg(calendar_reminder_channel_id=77), db_engine)
        channel = MagicMock(send=AsyncMock())
        with patch.object(bot, "get_channel", return_value=channel):
            assert run_async(bot.send_calendar_reminder(reminder)) is True

        kwargs = channel.send.call_args.kwargs
        assert kwargs["content"].startswith("**Event reminder!**")
        assert kwargs["allowed_mentions"].roles is True
        with Session(db_engine) as s:
            assert s.get(CalendarEvent, event_id).reminder_sent is True
            assert s.scalar(select(Notification).where(Notification.user_id == 2)) is not None

    def test_reminder_without_channel_still_completes(self, db_engine):
        event_id = _calendar_event(db_engine, starts_in=timedelta(minutes=10))
        bot = PrecinctBot(_cfg(), db_engine)
        assert run_async(bot.send_calendar_reminder(get_reminder(db_engine, event_id))) is False
        with Session(db_engine) as s:
            assert s.get(CalendarEvent, event_id).reminder_sent is True

    def test_resolve_member_cache_then_fetch(self, db_engine):
        bot = PrecinctBot(_cfg(), db_engine)
        cached, fetched = _member(1), _member(2)
        guild = MagicMock(id=GUILD_ID)
        guild.get_member.side_effect = lambda uid: cached if uid == 1 else None
        guild.fetch_member = AsyncMock(return_value=fetched)

        with patch.object(bot, "get_guild", return_value=guild):
            assert run_async(bot.resolve_member("1")) is cached
            assert run_async(bot.resolve_member(2)) is fetched
            guild.fetch_member.side_effect = _http_error(discord.NotFound, 404)
            assert run_async(bot.resolve_member(3)) is None

    def test_resolve_member_without_guild(self, db_engine):
        bot = PrecinctBot(_cfg(), db_engine)
        with patch.object(bot, "get_guild", return_value=None):
            assert run_async(bot.resolve_member(1)) is None


# ---------------------------------------------------------------------------
# Actions cog
# ---------------------------------------------------------------------------
class TestActions:
    def test_handlers_registered(self, db_engine):
        bot = _fake_bot(db_engine)
        run_async(Actions(bot).cog_load())
        registered = {c.args[0] for c in bot.events.register.call_args_list}
        assert registered == {
            "rank_changed", "nickname_update", "member_kick",
            "units_changed", "announcement_publish", "calendar_remind",
        }

    def test_rank_change_swaps_roles(self, db_engine):
        old, new = _role(10, "» 3 | Officer"), _role(11, "» 4 | Senior Officer")
        guild = MagicMock()
        guild.get_role.side_effect = {10: old, 11: new}.get
        member = _member(5, old)
        bot = _fake_bot(db_engine, guild)
        bot.resolve_member.return_value = member

        run_async(Actions(bot).on_rank_changed({"user_id": "5", "add_role_id": "11", "remove_role_id": "10"}))
        member.remove_roles.assert_awaited_once_with(old, reason="Rank change")
        member.add_roles.assert_awaited_once_with(new, reason="Rank change")

    def test_rank_change_for_unknown_member_is_noop(self, db_engine):
        bot = _fake_bot(db_engine, MagicMock())
        run_async(Actions(bot).on_rank_changed({"user_id": "5", "add_role_id": "11"}))
        bot.guild.get_role.assert_not_called()

    def test_units_changed(self, db_engine):
        swat, det, rank = _role(20, "» S.W.A.T. Officer"), _role(21, "» Detectives"), _role(22, "» 5 | Sergeant")
        guild = MagicMock(roles=[swat, det, rank])
        member = _member(5, swat, rank)
        bot = _fake_bot(db_engine, guild)
        bot.resolve_member.return_value = member

        run_async(Actions(bot).on_units_changed({"user_id": "5", "departments": ["Detectives"]}))
        member.remove_roles.assert_awaited_once_with(swat, reason="Unit change")
        member.add_roles.assert_awaited_once_with(det, reason="Unit change")

    def test_nickname_and_kick(self, db_engine):
        member = _member(5)
        bot = _fake_bot(db_engine, MagicMock())
        bot.resolve_member.return_value = member
        cog = Actions(bot)

        run_async(cog.on_nickname_update({"user_id": "5", "nickname": "[PD-5] Jane"}))
        member.edit.assert_awaited_once_with(nick="[PD-5] Jane", reason="Badge / name update")

        member.kick.side_effect = _http_error(discord.Forbidden, 403)
        run_async(cog.on_member_kick({"user_id": "5", "reason": "Terminated: AWOL"}))
        member.kick.assert_awaited_once_with(reason="Terminated: AWOL")

    @pytest.mark.parametrize("priority, content, everyone", [
        ("URGENT", "@everyone", True),
        ("NORMAL", None, False),
    ])
    def test_announcement_posted(self, db_engine, priority, content, everyone):
        announcement_id = _announcement(db_engine, priority=priority, content="Agenda :topics below " + "x" * 9000)
        channel = MagicMock(send=AsyncMock())
        bot = _fake_bot(db_engine, announce_channel_id=900)
        bot.get_channel.side_effect = {900: channel}.get

        run_async(Actions(bot).on_announcement_publish({"announcement_id": announcement_id}))
        kwargs = channel.send.call_args.kwargs
        assert kwargs["content"] == content
        assert kwargs["embed"].title == "Lockdown"
        assert kwargs["embed"].description.startswith("Agenda :topics below")
        assert len(kwargs["embed"].description) == 4096
        assert kwargs["allowed_mentions"].everyone is everyone

    def test_announcement_prefers_explicit_channel(self, db_engine):
        announcement_id = _announcement(db_engine, channel_id="901")
        default, explicit = MagicMock(send=AsyncMock()), MagicMock(send=AsyncMock())
        bot = _fake_bot(db_engine, announce_channel_id=900)
        bot.get_channel.side_effect = {900: default, 901: explicit}.get

        run_async(Actions(bot).on_announcement_publish({"announcement_id": announcement_id}))
        explicit.send.assert_awaited_once()
        default.send.assert_not_called()

    def test_draft_or_missing_announcement_not_posted(self, db_engine):
        draft_id = _announcement(db_engine, status=AnnouncementStatus.DRAFT)
        bot = _fake_bot(db_engine, announce_channel_id=900)
        cog = Actions(bot)
        run_async(cog.on_announcement_publish({"announcement_id": draft_id}))
        run_async(cog.on_announcement_publish({"announcement_id": 999}))
        bot.get_channel.assert_not_called()

    def test_calendar_remind(self, db_engine):
        event_id = _calendar_event(db_engine, starts_in=timedelta(days=2))
        bot = _fake_bot(db_engine)
        cog = Actions(bot)

        run_async(cog.on_calendar_remind({"event_id": event_id}))
        (reminder,), _ = bot.send_calendar_reminder.call_args
        assert reminder.id == event_id

        bot.send_calendar_reminder.reset_mock()
        run_async(cog.on_calendar_remind({"event_id": 999}))
        bot.send_calendar_reminder.assert_not_called()


# ---------------------------------------------------------------------------
# Periodic tasks
# ---------------------------------------------------------------------------
class TestPeriodicTasks:
    def test_week_close_only_on_sunday(self, db_engine):
        cog = PeriodicTasks(_fake_bot(db_engine))
        with patch("precinct.bot.cogs.tasks.utcnow", return_value=MONDAY):
            assert run_async(cog.close_bonus_week()) is None
        with patch("precinct.bot.cogs.tasks.utcnow", return_value=SUNDAY_CLOSE):
            week = run_async(cog.close_bonus_week())
        assert week["status"] == "CLOSED"
        assert week["week_start"].startswith("2026-10-19")

    def test_week_close_respects_setting(self, db_engine):
        settings_service.upsert_setting(db_engine, key="bonus.auto_close_enabled", value=False, category="bonus")
        cog = PeriodicTasks(_fake_bot(db_engine))
        with patch("precinct.bot.cogs.tasks.utcnow", return_value=SUNDAY_CLOSE):
            assert run_async(cog.close_bonus_week()) is None

    def test_due_reminders_sent(self, db_engine):
        _calendar_event(db_engine, starts_in=timedelta(minutes=10))
        _calendar_event(db_engine, starts_in=timedelta(hours=5))
        bot = _fake_bot(db_engine)
        assert run_async(PeriodicTasks(bot).send_due_reminders()) == 1
        bot.send_calendar_reminder.assert_awaited_once()

    def test_reminders_disabled(self, db_engine):
        _calendar_event(db_engine, starts_in=timedelta(minutes=10))
        settings_service.upsert_setting(db_engine, key="calendar.reminders_enabled", value=False, category="calendar")
        bot = _fake_bot(db_engine)
        assert run_async(PeriodicTasks(bot).send_due_reminders()) == 0
        bot.send_calendar_reminder.assert_not_called()


# ---------------------------------------------------------------------------
# Roster cog
# ---------------------------------------------------------------------------
class TestRosterCog:
    def test_snapshot(self):
        member = _member(5, _role(1, "@everyone"), _role(2, "» 5 | Sergeant"), nick="[PD-5] Sarge")
        snap = snapshot(member)
        assert snap.id == 5
        assert snap.username == "member5"
        assert snap.display_name == "[PD-5] Sarge"
        assert snap.avatar == "https://cdn.example/5.png"
        assert snap.role_names == ["@everyone", "» 5 | Sergeant"]

    def test_run_sync_without_guild(self, db_engine):
        assert run_async(Roster(_fake_bot(db_engine)).run_sync()) is None

    def test_run_sync_mirrors_guild(self, db_engine):
        sergeant, cadet, detectives = _role(2, "» 5 | Sergeant"), _role(3, "» 1 | Cadet"), _role(4, "» Detectives")
        guild = MagicMock(chunked=True, roles=[sergeant, cadet, detectives])
        guild.members = [
            _member(10, sergeant, detectives, nick="[PD-10] Sarge"),
            _member(11, cadet),
            _member(12, sergeant, bot=True),
        ]
        bot = _fake_bot(db_engine, guild)

        result = run_async(Roster(bot).run_sync())
        assert (result.created, result.total) == (2, 2)
        with Session(db_engine) as s:
            assert s.scalar(select(Employee).where(Employee.user_id == 10)).department == "Detectives"
            catalogue = load_rank_catalogue(s)
        assert {level: r.name for level, r in catalogue.ranks.items()} == {5: "Sergeant", 1: "Cadet"}

    def test_member_remove_marks_inactive(self, db_engine):
        with Session(db_engine) as s:
            make_user(s, 10)
            s.commit()
        cog = Roster(_fake_bot(db_engine))
        run_async(cog.on_member_remove(_member(10)))
        with Session(db_engine) as s:
            assert s.get(User, 10).is_active is False

    def test_member_update_resyncs_changed_member(self, db_engine):
        before = _member(10, _role(2, "» 3 | Officer"))
        after = _member(10, _role(3, "» 4 | Senior Officer"))
        run_async(Roster(_fake_bot(db_engine)).on_member_update(before, after))
        with Session(db_engine) as s:
            assert s.scalar(select(Employee).where(Employee.user_id == 10)).rank_level == 4
