"""
precinct.config — YAML Configuration Loader
============================================

Reads ``config.yaml`` for **infrastructure-only** settings (Discord guild,
channels, dashboard port, sync cadence).  Secrets (bot token, OAuth client
secret, JWT secret, database URL) come from the environment / ``.env``;
runtime-editable values live in the ``settings`` table.

Usage::

    from precinct.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.department_name)   # "Los Santos Police Department"
    print(cfg.guild_id)          # 1468816181854081229
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object — infrastructure/identity only.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class PrecinctConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    department_name: str

    # Discord
    bot_prefix: str
    guild_id: int  # The department's guild snowflake

    # Dashboard
    dashboard_port: int = 8000

    # Roster sync cadence (minutes)
    sync_interval_minutes: int = 5

    # Optional channels
    announce_channel_id: int | None = None  # Default target for announcements
    calendar_reminder_channel_id: int | None = None


def _optional_int(raw: dict, key: str) -> int | None:
    value = raw.get(key)
    return int(value) if value else None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> PrecinctConfig:
    """Read *path* and return a :class:`PrecinctConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return PrecinctConfig(
        department_name=raw["department_name"],
        bot_prefix=raw.get("bot_prefix", "!"),
        guild_id=int(raw["guild_id"]),
        dashboard_port=int(raw.get("dashboard_port", 8000)),
        sync_interval_minutes=int(raw.get("sync_interval_minutes", 5)),
        announce_channel_id=_optional_int(raw, "announce_channel_id"),
        calendar_reminder_channel_id=_optional_int(raw, "calendar_reminder_channel_id"),
    )
