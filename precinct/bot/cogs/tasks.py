"""
precinct.bot.cogs.tasks — Periodic Background Tasks
====================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Heartbeat** — every 30 s, so the dashboard can tell the bot is alive.
- **Weekly bonus close** — daily at 23:59 UTC, acting only on Sundays and
  only while ``bonus.auto_close_enabled`` is on.
- **Calendar reminders** — every minute while
  ``calendar.reminders_enabled`` is on.

DB work goes through ``run_db()`` so the event loop never blocks.
"""

from __future__ import annotations

import logging
from datetime import UTC, time
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from precinct.constants import utcnow
from precinct.database.engine import run_db
from precinct.services import bonus_service, calendar_service, settings_service

if TYPE_CHECKING:
    from precinct.bot.core import PrecinctBot

logger = logging.getLogger(__name__)

WEEK_CLOSE_TIME = time(hour=23, minute=59, tzinfo=UTC)
SUNDAY = 6


class PeriodicTasks(commands.Cog):
    """Cog for scheduled background jobs."""

    def __init__(self, bot: PrecinctBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Start task loops when the cog is loaded."""
        self.heartbeat_loop.start()
        self.week_close_loop.start()
        self.reminder_loop.start()

    async def cog_unload(self) -> None:
        """Cancel task loops on unload."""
        self.heartbeat_loop.cancel()
        self.week_close_loop.cancel()
        self.reminder_loop.cancel()

    async def _enabled(self, key: str) -> bool:
        return bool(await run_db(settings_service.get_value, self.bot.engine, key, True))

    # -------------------------------------------------------------------
    # Bot heartbeat — writes a timestamp every 30 seconds
    # -------------------------------------------------------------------
    @tasks.loop(seconds=30)
    async def heartbeat_loop(self):
        """Write a heartbeat timestamp so the dashboard can confirm bot is alive."""
        try:
            await run_db(settings_service.save_bot_heartbeat, self.bot.engine)
        except Exception:
            logger.exception("Heartbeat write failed", extra={"task": "heartbeat"})

    @heartbeat_loop.before_loop
    async def _wait_heartbeat(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Weekly bonus close — Sunday 23:59 UTC
    # -------------------------------------------------------------------
    async def close_bonus_week(self) -> dict | None:
        """Close the current bonus week if today is Sunday and auto-close is on."""
        now = utcnow()
        if now.weekday() != SUNDAY:
            return None
        if not await self._enabled("bonus.auto_close_enabled"):
            logger.info("Automatic bonus week close is disabled; skipping")
            return None
        return await run_db(bonus_service.close_week, self.bot.engine, now)

    @tasks.loop(time=WEEK_CLOSE_TIME)
    async def week_close_loop(self):
        try:
            await self.close_bonus_week()
        except Exception:
            logger.exception("Weekly bonus close failed", extra={"task": "bonus_week_close"})

    @week_close_loop.before_loop
    async def _wait_week_close(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Calendar reminders — every minute
    # -------------------------------------------------------------------
    async def send_due_reminders(self) -> int:
        """Post every reminder that is due now.  Returns how many were handled."""
        if not await self._enabled("calendar.reminders_enabled"):
            return 0
        reminders = await run_db(calendar_service.due_reminders, self.bot.engine)
        for reminder in reminders:
            try:
                await self.bot.send_calendar_reminder(reminder)
            except Exception:
                logger.exception(
                    "Reminder for event %d failed", reminder.id,
                    extra={"task": "calendar_reminders", "event_id": reminder.id},
                )
        return len(reminders)

    @tasks.loop(minutes=1)
    async def reminder_loop(self):
        try:
            await self.send_due_reminders()
        except Exception:
            logger.exception("Calendar reminder task failed", extra={"task": "calendar_reminders"})

    @reminder_loop.before_loop
    async def _wait_reminders(self):
        await self.bot.wait_until_ready()


async def setup(bot: PrecinctBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
