"""
precinct.services.settings_service — Settings CRUD, Rank Catalogue & Heartbeat
===============================================================================

Typed read/write access to the ``settings`` table.  Besides admin-editable
runtime values it stores two documents written by the bot and read by the
API:

* ``guild.rank_catalogue`` — the guild's numbered rank roles
  (level → role name / role id), refreshed after every roster sync so the
  API can resolve rank names without a gateway connection.
* ``bot.heartbeat`` — last-alive timestamp for the health endpoint.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from precinct.database.models import AdminLog, AdminActionType, Setting

logger = logging.getLogger(__name__)

RANK_CATALOGUE_KEY = "guild.rank_catalogue"
BOT_HEARTBEAT_KEY = "bot.heartbeat"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_setting_value(session: Session, key: str, default=None):
    """Read a single setting's parsed value from an existing session.

    Returns the JSON-decoded value, or *default* when the key is missing.
    Values that are not valid JSON are returned raw.
    """
    row = session.get(Setting, key)
    if row is None:
        return default
    try:
        return json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        return row.value_json


def get_value(engine, key: str, default=None):
    """Engine-level :func:`get_setting_value` for callers without a session."""
    with Session(engine) as session:
        return get_setting_value(session, key, default)


def setting_to_dict(row: Setting) -> dict:
    try:
        value = json.loads(row.value_json)
    except (json.JSONDecodeError, TypeError):
        value = row.value_json
    return {
        "key": row.key,
        "value": value,
        "category": row.category,
        "description": row.description,
        "is_public": row.is_public,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def get_all_settings(engine, *, public_only: bool = False) -> list[dict]:
    """Every setting, ordered by category then key."""
    with Session(engine) as session:
        stmt = select(Setting).order_by(Setting.category, Setting.key)
        if public_only:
            stmt = stmt.where(Setting.is_public.is_(True))
        return [setting_to_dict(r) for r in session.scalars(stmt).all()]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def _upsert_row(
    session: Session,
    key: str,
    value_json: str,
    *,
    category: str | None = None,
    description: str | None = None,
) -> Setting:
    existing = session.get(Setting, key)
    if existing is not None:
        existing.value_json = value_json
        if category:
            existing.category = category
        if description is not None:
            existing.description = description
        existing.updated_at = datetime.now(UTC)
        return existing
    row = Setting(
        key=key,
        value_json=value_json,
        category=category or "general",
        description=description,
    )
    session.add(row)
    return row


def upsert_setting(
    engine,
    *,
    key: str,
    value: Any,
    category: str = "general",
    description: str | None = None,
) -> dict:
    """Insert or update a single setting."""
    with Session(engine) as session:
        row = _upsert_row(session, key, json.dumps(value),
                          category=category, description=description)
        session.commit()
        return setting_to_dict(row)


def bulk_upsert(engine, settings: list[dict], *, actor_id: int | None = None) -> int:
    """Upsert many settings at once.

    Each dict needs ``key`` and ``value``; ``category`` and ``description``
    are optional.  With *actor_id*, every real change is recorded in
    ``admin_log`` with before/after snapshots.

    Returns the number of rows touched.
    """
    count = 0
    with Session(engine) as session:
        for item in settings:
            key = item["key"]
            existing = session.get(Setting, key)

            before_snapshot: dict | None = None
            if existing is not None and actor_id is not None:
                before_snapshot = {
                    "key": existing.key,
                    "value": json.loads(existing.value_json) if existing.value_json else None,
                    "category": existing.category,
                    "description": existing.description,
                }

            row = _upsert_row(
                session, key, json.dumps(item["value"]),
                category=item.get("category"),
                description=item.get("description"),
            )

            if actor_id is not None:
                after_snapshot = {
                    "key": key,
                    "value": item["value"],
                    "category": row.category,
                    "description": row.description,
                }
                # Only log if something actually changed
                if before_snapshot != after_snapshot:
                    session.add(AdminLog(
                        actor_id=actor_id,
                        action_type=(
                            AdminActionType.UPDATE if before_snapshot else AdminActionType.CREATE
                        ),
                        target_table="settings",
                        target_id=key,
                        before_snapshot=before_snapshot,
                        after_snapshot=after_snapshot,
                    ))
            count += 1
        session.commit()
    logger.info("Upserted %d setting(s)", count)
    return count


# ---------------------------------------------------------------------------
# Rank catalogue (written by the bot, read by the API)
# ---------------------------------------------------------------------------
@dataclass
class RankRole:
    level: int
    name: str
    role_id: int


@dataclass
class RankCatalogue:
    """Numbered rank roles found in the guild, keyed by level."""
    ranks: dict[int, RankRole] = field(default_factory=dict)
    captured_at: str = ""

    def name_for(self, level: int) -> str | None:
        rank = self.ranks.get(level)
        return rank.name if rank else None

    def level_for(self, name: str) -> int | None:
        wanted = name.strip().lower()
        for rank in self.ranks.values():
            if rank.name.lower() == wanted:
                return rank.level
        return None

    def to_json(self) -> str:
        return json.dumps({
            "ranks": [
                {"level": r.level, "name": r.name, "role_id": str(r.role_id)}
                for r in sorted(self.ranks.values(), key=lambda r: r.level)
            ],
            "captured_at": self.captured_at or datetime.now(UTC).isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> RankCatalogue:
        data = json.loads(raw)
        ranks = {
            int(r["level"]): RankRole(level=int(r["level"]), name=r["name"], role_id=int(r["role_id"]))
            for r in data.get("ranks", [])
        }
        return cls(ranks=ranks, captured_at=data.get("captured_at", ""))


def save_rank_catalogue(engine, catalogue: RankCatalogue) -> None:
    with Session(engine) as session:
        _upsert_row(session, RANK_CATALOGUE_KEY, catalogue.to_json(),
                    category="guild", description="Rank roles discovered by the bot")
        session.commit()
    logger.info("Rank catalogue saved: %d rank role(s)", len(catalogue.ranks))


def load_rank_catalogue(session: Session) -> RankCatalogue:
    """Return the stored catalogue, or an empty one if the bot never wrote it."""
    row = session.get(Setting, RANK_CATALOGUE_KEY)
    if row is None:
        return RankCatalogue()
    try:
        return RankCatalogue.from_json(row.value_json)
    except (json.JSONDecodeError, KeyError, ValueError):
        logger.warning("Stored rank catalogue is malformed; ignoring it")
        return RankCatalogue()


# ---------------------------------------------------------------------------
# Bot heartbeat
# ---------------------------------------------------------------------------

def save_bot_heartbeat(engine) -> None:
    """Write the current UTC timestamp as a heartbeat (called every ~30s by the bot)."""
    ts = datetime.now(UTC).isoformat()
    with Session(engine) as session:
        _upsert_row(session, BOT_HEARTBEAT_KEY, json.dumps(ts),
                    category="bot", description="Bot last-alive heartbeat")
        session.commit()


def get_bot_heartbeat(engine) -> dict:
    """Return the bot heartbeat status for the health endpoint."""
    with Session(engine) as session:
        ts_str = get_setting_value(session, BOT_HEARTBEAT_KEY)
    if not ts_str:
        return {"status": "offline", "last_heartbeat": None}
    try:
        last_dt = datetime.fromisoformat(ts_str)
    except (TypeError, ValueError):
        return {"status": "offline", "last_heartbeat": None}
    if last_dt.tzinfo is None:
        last_dt = last_dt.replace(tzinfo=UTC)
    age_seconds = (datetime.now(UTC) - last_dt).total_seconds()
    return {
        "status": "online" if age_seconds < 90 else "offline",
        "last_heartbeat": ts_str,
        "age_seconds": round(age_seconds, 1),
    }
