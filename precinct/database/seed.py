"""
precinct.database.seed — Catalogue Seeder
==========================================

Baseline rows written on first startup so the dashboard is immediately
usable: the permission catalogue, default roles, bonus activity configs
and runtime settings.

Idempotent — only inserts rows that don't already exist.  Rows edited
later by admins are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from precinct.constants import DEFAULT_ROLES, PERMISSIONS
from precinct.database.models import BonusConfig, Permission, Role, Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str, bool]] = {
    "display.department_title": (
        "Police Department", "display", "Title shown in the dashboard header", True,
    ),
    "display.primary_color": (
        "#1e3a8a", "display", "Primary brand colour hex code", True,
    ),
    "absences.max_days": (14, "absences", "Longest allowed absence in days", False),
    "bonus.auto_close_enabled": (
        True, "bonus", "Close the bonus week automatically on Sunday 23:59", False,
    ),
    "calendar.reminders_enabled": (
        True, "calendar", "Post calendar reminders to Discord", False,
    ),
    "dispatch.external_api_key": (
        "", "dispatch", "Key that lets the external dispatch client join its socket room", False,
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description, is_public)``."""

# Bonus activity types: activity_type → (display name, category)
DEFAULT_BONUS_CONFIGS: dict[str, tuple[str, str]] = {
    "APPLICATION_COMPLETED": ("Application processed", "HR"),
    "APPLICATION_ONBOARDING": ("Onboarding conducted", "HR"),
    "APPLICATION_REJECTED": ("Application rejected", "HR"),
    "TRAINING_CONDUCTED": ("Training conducted", "ACADEMY"),
    "TRAINING_PARTICIPATED": ("Training attended", "ACADEMY"),
    "EXAM_CONDUCTED": ("Exam conducted", "ACADEMY"),
    "RETRAINING_COMPLETED": ("Retraining conducted", "ACADEMY"),
    "ACADEMY_MODULE_COMPLETED": ("Academy module completed", "ACADEMY"),
    "INVESTIGATION_OPENED": ("IA investigation opened", "IA"),
    "INVESTIGATION_CLOSED": ("IA investigation closed", "IA"),
    "UNIT_REVIEW_COMPLETED": ("Unit review completed", "IA"),
    "CASE_OPENED": ("Case file opened", "DETECTIVE"),
    "CASE_CLOSED": ("Case file closed", "DETECTIVE"),
    "ROBBERY_LEADER": ("Robbery incident command", "GENERAL"),
    "ROBBERY_NEGOTIATOR": ("Robbery negotiation", "GENERAL"),
    "EVIDENCE_STORED": ("Evidence stored", "GENERAL"),
    "SANCTION_ISSUED": ("Sanction issued", "GENERAL"),
}


# ---------------------------------------------------------------------------
# Seeders
# ---------------------------------------------------------------------------
def seed_default_settings(session: Session) -> int:
    inserted = 0
    for key, (value, category, desc, is_public) in DEFAULT_SETTINGS.items():
        if session.get(Setting, key) is None:
            session.add(Setting(
                key=key,
                value_json=json.dumps(value),
                category=category,
                description=desc,
                is_public=is_public,
            ))
            inserted += 1
    return inserted


def seed_permissions(session: Session) -> int:
    """Insert every catalogue permission that is missing."""
    existing = set(session.scalars(select(Permission.name)).all())
    inserted = 0
    for name, (description, category) in PERMISSIONS.items():
        if name not in existing:
            session.add(Permission(name=name, description=description, category=category))
            inserted += 1
    session.flush()
    return inserted


def seed_default_roles(session: Session) -> int:
    """Create the default roles (with their permissions) if absent."""
    by_name = {p.name: p for p in session.scalars(select(Permission)).all()}
    inserted = 0
    for name, (display_name, level, color, perm_names) in DEFAULT_ROLES.items():
        if session.scalar(select(Role).where(Role.name == name)) is not None:
            continue
        session.add(Role(
            name=name,
            display_name=display_name,
            level=level,
            color=color,
            is_system=True,
            permissions=[by_name[p] for p in perm_names if p in by_name],
        ))
        inserted += 1
    return inserted


def seed_bonus_configs(session: Session) -> int:
    """Create missing bonus configs.  New configs start at amount 0."""
    existing = set(session.scalars(select(BonusConfig.activity_type)).all())
    inserted = 0
    for activity_type, (display_name, category) in DEFAULT_BONUS_CONFIGS.items():
        if activity_type not in existing:
            session.add(BonusConfig(
                activity_type=activity_type,
                display_name=display_name,
                category=category,
                amount=0,
            ))
            inserted += 1
    return inserted


def seed_all(engine: Engine) -> None:
    """Run every seeder in one transaction."""
    session = Session(engine)
    try:
        counts = {
            "settings": seed_default_settings(session),
            "permissions": seed_permissions(session),
            "roles": seed_default_roles(session),
            "bonus_configs": seed_bonus_configs(session),
        }
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    seeded = {k: v for k, v in counts.items() if v}
    if seeded:
        logger.info("Seeded defaults: %s", seeded)
