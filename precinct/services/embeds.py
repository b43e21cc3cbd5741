"""
precinct.services.embeds — Discord Embed Builders
==================================================

Pure functions turning announcements and calendar reminders into
:class:`discord.Embed` objects plus message content.
"""

from __future__ import annotations

from datetime import datetime

import discord

from precinct.constants import PRIORITY_COLORS
from precinct.services.calendar_service import Reminder

FOOTER = "Precinct personnel system"

CATEGORY_LABELS = {
    "GENERAL": "General",
    "TRAINING": "Training",
    "MEETING": "Meeting",
    "EVENT": "Event",
    "DEADLINE": "Deadline",
}


# Discord rejects embed descriptions above this length.
EMBED_DESCRIPTION_LIMIT = 4096


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 1] + "…"


def announcement_embed(title: str, content: str, priority: str = "NORMAL") -> tuple[str | None, discord.Embed]:
    """Return ``(message content, embed)``.  URGENT announcements ping @everyone."""
    embed = discord.Embed(
        title=title,
        description=_truncate(content, EMBED_DESCRIPTION_LIMIT),
        color=PRIORITY_COLORS.get(priority, PRIORITY_COLORS["NORMAL"]),
        timestamp=discord.utils.utcnow(),
    )
    embed.set_footer(text=FOOTER)
    if priority == "URGENT":
        embed.set_author(name="🚨 URGENT 🚨")
        return "@everyone", embed
    return None, embed


def _format_when(value: datetime, all_day: bool) -> str:
    if all_day:
        return value.strftime("%A, %d.%m.%Y")
    return value.strftime("%A, %d.%m.%Y %H:%M UTC")


def _hex_color(value: str) -> int:
    try:
        return int(value.lstrip("#"), 16)
    except ValueError:
        return PRIORITY_COLORS["NORMAL"]


def reminder_embed(reminder: Reminder) -> tuple[str, discord.Embed]:
    """Return ``(content with role mentions, embed)`` for a calendar reminder."""
    embed = discord.Embed(
        title=f"📅 {reminder.title}",
        description=reminder.description or None,
        color=_hex_color(reminder.color),
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="📆 Date", value=_format_when(reminder.start_date, reminder.all_day), inline=True)
    embed.add_field(
        name="🏷️ Category",
        value=CATEGORY_LABELS.get(reminder.category, reminder.category),
        inline=True,
    )
    if reminder.location:
        embed.add_field(name="📍 Location", value=reminder.location, inline=True)
    if reminder.end_date and not reminder.all_day:
        embed.add_field(name="⏰ Ends", value=_format_when(reminder.end_date, False), inline=True)

    mentions = " ".join(f"<@&{role_id}>" for role_id in reminder.role_ids)
    content = f"**Event reminder!** {mentions}".rstrip()
    return content, embed
