"""
precinct.bot.cogs.roster — Guild Roster Synchronisation
========================================================

Mirrors ranked guild members into ``users`` / ``employees``:

- on ready and every ``sync_interval_minutes`` (default 5),
- when the API publishes ``roster_sync_requested``,
- for a single member whenever their roles or nickname change.

Departed members are marked inactive.  After each full sync the guild's
rank roles are saved as the rank catalogue.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from precinct.database.engine import run_db
from precinct.services.roster_service import (
    MemberSnapshot,
    SyncResult,
    build_rank_catalogue,
    mark_user_inactive,
    sync_roster,
)
from precinct.services.settings_service import save_rank_catalogue

if TYPE_CHECKING:
    from precinct.bot.core import PrecinctBot

logger = logging.getLogger(__name__)


def snapshot(member: discord.Member) -> MemberSnapshot:
    """Flatten a discord member into the plain data the synchronizer takes."""
    return MemberSnapshot(
        id=member.id,
        username=member.name,
        display_name=member.display_name,
        avatar=member.display_avatar.url if member.display_avatar else None,
        role_names=[r.name for r in member.roles],
        bot=member.bot,
    )


class Roster(commands.Cog, name="Roster"):
    """Keeps the employee roster in step with the guild."""

    def __init__(self, bot: PrecinctBot) -> None:
        self.bot = bot
        self._lock = asyncio.Lock()

    async def cog_load(self) -> None:
        self.bot.events.register("roster_sync_requested", self._on_sync_requested)
        self.sync_loop.change_interval(minutes=self.bot.cfg.sync_interval_minutes)
        self.sync_loop.start()

    async def cog_unload(self) -> None:
        self.sync_loop.cancel()

    # -------------------------------------------------------------------
    # Full sync
    # -------------------------------------------------------------------
    async def run_sync(self) -> SyncResult | None:
        """Sync every guild member and refresh the rank catalogue.

        Overlapping calls wait for the running one.  Returns ``None`` when
        the guild is unavailable.
        """
        guild = self.bot.guild
        if guild is None:
            logger.warning("Roster sync skipped: guild %d not found", self.bot.cfg.guild_id)
            return None

        async with self._lock:
            if not guild.chunked:
                try:
                    await guild.chunk()
                except discord.HTTPException:
                    logger.warning("Member chunking failed; syncing from the cached member list")

            members = [snapshot(m) for m in guild.members]
            result = await run_db(sync_roster, self.bot.engine, members)

            catalogue = build_rank_catalogue((r.id, r.name) for r in guild.roles)
            await run_db(save_rank_catalogue, self.bot.engine, catalogue)
        return result

    @tasks.loop(minutes=5)
    async def sync_loop(self):
        try:
            await self.run_sync()
        except Exception:
            logger.exception("Roster sync failed", extra={"task": "roster_sync"})

    @sync_loop.before_loop
    async def _wait_sync(self):
        await self.bot.wait_until_ready()

    async def _on_sync_requested(self, data: dict) -> None:
        logger.info("Roster sync requested via API by %s", data.get("requested_by", "unknown"))
        try:
            await self.run_sync()
        except Exception:
            logger.exception("Requested roster sync failed", extra={"event_type": "roster_sync_requested"})

    # -------------------------------------------------------------------
    # Gateway events
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_member_update(self, before: discord.Member, after: discord.Member) -> None:
        """Re-sync one member when their roles or nickname change."""
        if after.bot or after.guild.id != self.bot.cfg.guild_id:
            return
        if before.roles == after.roles and before.display_name == after.display_name:
            return
        try:
            await run_db(sync_roster, self.bot.engine, [snapshot(after)])
        except Exception:
            logger.exception(
                "Error syncing member %s after update", after.id,
                extra={"event_type": "member_update", "user_id": after.id},
            )

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        """Mark the departed member's user inactive."""
        if member.bot or member.guild.id != self.bot.cfg.guild_id:
            return
        try:
            await run_db(mark_user_inactive, self.bot.engine, member.id)
        except Exception:
            logger.exception(
                "Error processing member_leave for %s", member.id,
                extra={"event_type": "member_leave", "user_id": member.id},
            )


async def setup(bot: PrecinctBot) -> None:
    await bot.add_cog(Roster(bot))
