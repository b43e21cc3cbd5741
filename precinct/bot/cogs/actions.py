"""
precinct.bot.cogs.actions — Discord Side Effects Requested by the API
======================================================================

The API never talks to Discord itself.  It publishes events on the
``precinct_events`` channel and this cog carries them out:

==========================  ==============================================
``rank_changed``            swap the member's rank role
``nickname_update``         set the member's nickname
``member_kick``             kick the member from the guild
``units_changed``           add/remove unit roles to match departments
``announcement_publish``    post the announcement embed
``calendar_remind``         post a calendar reminder right now
==========================  ==============================================

Failures are logged; the API has already committed its side of the change.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands

from precinct.database.engine import run_db
from precinct.services.announcement_service import get_announcement_post
from precinct.services.calendar_service import get_reminder
from precinct.services.embeds import announcement_embed
from precinct.services.roster_service import unit_role_changes

if TYPE_CHECKING:
    from precinct.bot.core import PrecinctBot

logger = logging.getLogger(__name__)


class Actions(commands.Cog, name="Actions"):
    """Executes guild changes queued by the dashboard API."""

    def __init__(self, bot: PrecinctBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        handlers = {
            "rank_changed": self.on_rank_changed,
            "nickname_update": self.on_nickname_update,
            "member_kick": self.on_member_kick,
            "units_changed": self.on_units_changed,
            "announcement_publish": self.on_announcement_publish,
            "calendar_remind": self.on_calendar_remind,
        }
        for event_type, handler in handlers.items():
            self.bot.events.register(event_type, handler)

    def _role(self, role_id) -> discord.Role | None:
        guild = self.bot.guild
        if guild is None or not role_id:
            return None
        return guild.get_role(int(role_id))

    # -------------------------------------------------------------------
    # Member changes
    # -------------------------------------------------------------------
    async def on_rank_changed(self, data: dict) -> None:
        member = await self.bot.resolve_member(data["user_id"])
        if member is None:
            return
        add = self._role(data.get("add_role_id"))
        remove = self._role(data.get("remove_role_id"))
        try:
            if remove is not None and remove in member.roles:
                await member.remove_roles(remove, reason="Rank change")
            if add is not None and add not in member.roles:
                await member.add_roles(add, reason="Rank change")
            logger.info("Rank roles updated for %s", member.id)
        except discord.HTTPException as exc:
            logger.warning("Rank role change failed for %s: %s", member.id, exc)

    async def on_nickname_update(self, data: dict) -> None:
        member = await self.bot.resolve_member(data["user_id"])
        if member is None:
            return
        try:
            await member.edit(nick=data.get("nickname"), reason="Badge / name update")
        except discord.HTTPException as exc:
            logger.warning("Nickname update failed for %s: %s", member.id, exc)

    async def on_member_kick(self, data: dict) -> None:
        member = await self.bot.resolve_member(data["user_id"])
        if member is None:
            return
        reason = data.get("reason") or "Terminated"
        try:
            await member.kick(reason=reason)
            logger.info("Kicked %s from guild (%s)", member.id, reason)
        except discord.HTTPException as exc:
            logger.warning("Kick failed for %s: %s", member.id, exc)

    async def on_units_changed(self, data: dict) -> None:
        member = await self.bot.resolve_member(data["user_id"])
        guild = self.bot.guild
        if member is None or guild is None:
            return
        add_names, remove_names = unit_role_changes(
            (r.name for r in member.roles), data.get("departments") or [],
        )
        by_name = {r.name: r for r in guild.roles}
        add = [by_name[n] for n in add_names if n in by_name]
        remove = [by_name[n] for n in remove_names if n in by_name]
        try:
            if remove:
                await member.remove_roles(*remove, reason="Unit change")
            if add:
                await member.add_roles(*add, reason="Unit change")
        except discord.HTTPException as exc:
            logger.warning("Unit role change failed for %s: %s", member.id, exc)

    # -------------------------------------------------------------------
    # Posts
    # -------------------------------------------------------------------
    async def on_announcement_publish(self, data: dict) -> None:
        post = await run_db(get_announcement_post, self.bot.engine, int(data["announcement_id"]))
        if post is None:
            logger.info("Announcement %s is gone or unpublished; not posted", data["announcement_id"])
            return
        channel_id = post.channel_id or self.bot.cfg.announce_channel_id
        channel = self.bot.get_channel(int(channel_id)) if channel_id else None
        if channel is None:
            logger.warning("Announcement %s not posted: no announcement channel available", post.id)
            return
        content, embed = announcement_embed(post.title, post.content, post.priority)
        try:
            await channel.send(
                content=content,
                embed=embed,
                allowed_mentions=discord.AllowedMentions(everyone=content is not None),
            )
            logger.info("Announcement %s posted to #%s", post.id, channel)
        except discord.HTTPException as exc:
            logger.warning("Posting announcement %s failed: %s", post.id, exc)

    async def on_calendar_remind(self, data: dict) -> None:
        reminder = await run_db(get_reminder, self.bot.engine, int(data["event_id"]))
        if reminder is None:
            logger.info("Calendar event %s no longer exists; reminder dropped", data["event_id"])
            return
        await self.bot.send_calendar_reminder(reminder)


async def setup(bot: PrecinctBot) -> None:
    await bot.add_cog(Actions(bot))
