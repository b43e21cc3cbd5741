"""
precinct.bot.core — Bot Instance & Cog Loader
==============================================

:class:`PrecinctBot` is a ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``) and DB engine (``bot.engine``)
   so every Cog can reach them via ``self.bot.cfg`` / ``self.bot.engine``.
2. Loads every Cog listed in :data:`EXTENSIONS`.
3. Owns the ``precinct_events`` LISTEN thread.  Cogs register handlers for
   the API's requests (rank changes, kicks, announcements...) in
   ``cog_load``; the listener starts once all extensions are loaded.
4. Resolves guild members and posts calendar reminders for the cogs.
"""

from __future__ import annotations

import asyncio
import logging

import discord
from discord.ext import commands
from sqlalchemy import Engine

from precinct.config import PrecinctConfig
from precinct.database.engine import run_db
from precinct.services.calendar_service import Reminder, complete_reminder
from precinct.services.embeds import reminder_embed
from precinct.services.event_bus import EventListener

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "precinct.bot.cogs.roster",
    "precinct.bot.cogs.actions",
    "precinct.bot.cogs.tasks",
]


class PrecinctBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`PrecinctConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` connected to PostgreSQL.
    """

    def __init__(self, cfg: PrecinctConfig, engine: Engine) -> None:
        # GUILD_MEMBERS is privileged and must be enabled in the Developer
        # Portal; the roster sync and leave handling depend on it.
        intents = discord.Intents.default()
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.department_name} personnel bot",
        )

        self.cfg = cfg
        self.engine = engine
        self.events = EventListener(engine)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load the Cog extensions, then start listening for API events.

        A failing extension is logged and skipped; one broken Cog shouldn't
        take down the whole bot.
        """
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

        self.events.start(asyncio.get_running_loop())

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)
        if self.guild is None:
            logger.warning("Primary guild %d not found; is the bot invited?", self.cfg.guild_id)

    async def close(self) -> None:
        """Graceful shutdown — stop the listener thread, then disconnect."""
        logger.info("Bot shutting down…")
        self.events.stop()
        await super().close()

    # -----------------------------------------------------------------------
    # Helpers shared by the cogs
    # -----------------------------------------------------------------------
    @property
    def guild(self) -> discord.Guild | None:
        return self.get_guild(self.cfg.guild_id)

    async def resolve_member(self, user_id: int | str) -> discord.Member | None:
        """Member from the cache, falling back to an API fetch."""
        guild = self.guild
        if guild is None:
            return None
        member = guild.get_member(int(user_id))
        if member is not None:
            return member
        try:
            return await guild.fetch_member(int(user_id))
        except discord.NotFound:
            logger.info("User %s is not a member of guild %d", user_id, guild.id)
        except discord.HTTPException as exc:
            logger.warning("Could not fetch member %s: %s", user_id, exc)
        return None

    async def send_calendar_reminder(self, reminder: Reminder) -> bool:
        """Post *reminder* to the reminder channel and mark it sent.

        The in-app notifications are created even when no channel is
        configured or the post fails.  Returns ``True`` if the embed was
        posted.
        """
        posted = False
        channel_id = self.cfg.calendar_reminder_channel_id
        channel = self.get_channel(channel_id) if channel_id else None
        if channel is None:
            logger.warning("No calendar reminder channel available; skipping post for '%s'", reminder.title)
        else:
            content, embed = reminder_embed(reminder)
            try:
                await channel.send(
                    content=content,
                    embed=embed,
                    allowed_mentions=discord.AllowedMentions(roles=True),
                )
                posted = True
            except discord.HTTPException as exc:
                logger.warning("Failed to post reminder for '%s': %s", reminder.title, exc)

        await run_db(complete_reminder, self.engine, reminder)
        return posted
