"""
precinct.constants — Shared Constants & Helpers
================================================

Single source of truth for the rank/department vocabulary, the permission
catalogue and presentation constants.  Import from here instead of
duplicating in cogs, services, and routes.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime

# ---------------------------------------------------------------------------
# Ranks — guild role names look like "» 5 | Senior Officer"
# ---------------------------------------------------------------------------
RANK_ROLE_PATTERN = re.compile(r"^»\s*(\d{1,2})\s*\|\s*(.+)$")
BADGE_PATTERN = re.compile(r"\[([A-Z]+-\d+)\]")
BADGE_PREFIX_PATTERN = re.compile(r"^\[[A-Z]+-\d+\]\s*")

MIN_RANK_LEVEL = 1
MAX_RANK_LEVEL = 17

DEFAULT_RANK = "Cadet"
DEFAULT_DEPARTMENT = "Patrol"

# Unit / department roles carry no number, only "» Name".
UNIT_ROLES: dict[str, str] = {
    "» Special Weapons and Tactics": "S.W.A.T.",
    "» S.W.A.T. Officer": "S.W.A.T.",
    "» S.W.A.T. Sergeant": "S.W.A.T.",
    "» S.W.A.T. Commander": "S.W.A.T.",
    "» S.W.A.T. Rookie": "S.W.A.T.",
    "» Detectives": "Detectives",
    "» Detective Member": "Detectives",
    "» Detective Trainee": "Detectives",
    "» Detective Instructor": "Detectives",
    "» State Highway Patrol": "Highway Patrol",
    "» S.H.P. Rookie": "Highway Patrol",
    "» S.H.P. Trooper": "Highway Patrol",
    "» S.H.P. Senior Trooper": "Highway Patrol",
    "» S.H.P. Head Trooper": "Highway Patrol",
    "» Air Support Division": "Air Support",
    "» A.S.D. Flight Student": "Air Support",
    "» A.S.D. Flight Officer": "Air Support",
    "» A.S.D. Flight Instructor": "Air Support",
    "» Internal Affairs": "Internal Affairs",
    "» Human Resources": "Human Resources",
    "» Police Academy": "Police Academy",
    "» BIKERS": "BIKERS",
    "» Member of BIKERS": "BIKERS",
    "» Quality Assurance": "Quality Assurance",
    "» Management": "Management",
    "» Leadership": "Leadership",
}

# Teams group rank levels (inclusive ranges).
TEAMS: dict[str, tuple[int, int]] = {
    "GREEN": (1, 5),
    "SILVER": (6, 9),
    "GOLD": (10, 12),
    "RED": (13, 15),
    "WHITE": (16, 17),
}


# Weeks a promotion is held after joining a team (team change via uprank).
UPRANK_LOCK_WEEKS: dict[str, int] = {
    "GREEN": 1,
    "SILVER": 2,
    "GOLD": 4,
}
MANUAL_LOCK_TEAM = "MANUAL"


def team_for_level(level: int) -> str | None:
    """Return the team name whose range contains *level*."""
    for team, (low, high) in TEAMS.items():
        if low <= level <= high:
            return team
    return None


def strip_badge_prefix(name: str | None) -> str | None:
    """Remove a leading ``[ABC-12]`` badge tag from a display name."""
    if not name:
        return None
    return BADGE_PREFIX_PATTERN.sub("", name).strip() or None


def format_nickname(badge_number: str | None, name: str) -> str:
    """Build the guild nickname ``[BADGE] name`` (or just *name*)."""
    return f"[{badge_number}] {name}" if badge_number else name


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Announcement presentation
# ---------------------------------------------------------------------------
PRIORITY_COLORS: dict[str, int] = {
    "LOW": 0x808080,
    "NORMAL": 0x3498DB,
    "HIGH": 0xF39C12,
    "URGENT": 0xE74C3C,
}


# ---------------------------------------------------------------------------
# Permission catalogue — name → (description, category)
# ---------------------------------------------------------------------------
ADMIN_PERMISSION = "admin.full"

PERMISSIONS: dict[str, tuple[str, str]] = {
    "admin.full": ("Full administrator access, bypasses every check", "admin"),
    "admin.settings": ("Edit runtime settings", "admin"),
    "audit.view": ("View the audit log", "admin"),
    "users.view": ("View users", "users"),
    "users.edit": ("Edit users and their roles", "users"),
    "users.delete": ("Delete users", "users"),
    "employees.view": ("View employees", "employees"),
    "employees.edit": ("Edit employees", "employees"),
    "employees.rank": ("Promote and demote employees", "employees"),
    "employees.delete": ("Terminate employees", "employees"),
    "leadership.view": ("View the leadership board", "leadership"),
    "leadership.manage": ("Manage leadership notes and announcements", "leadership"),
    "leadership.tasks": ("Manage leadership tasks", "leadership"),
    "treasury.view": ("View the treasury", "treasury"),
    "treasury.manage": ("Deposit and withdraw treasury funds", "treasury"),
    "sanctions.view": ("View sanctions", "sanctions"),
    "sanctions.manage": ("Issue and revoke sanctions", "sanctions"),
    "evidence.view": ("View the evidence locker", "evidence"),
    "evidence.manage": ("Store and release evidence", "evidence"),
    "tuning.view": ("View tuning reports", "tuning"),
    "tuning.manage": ("Manage tuning reports", "tuning"),
    "robbery.view": ("View robbery reports", "robbery"),
    "robbery.create": ("File robbery reports", "robbery"),
    "robbery.manage": ("Manage robbery reports", "robbery"),
    "calendar.view": ("View the calendar", "calendar"),
    "calendar.manage": ("Manage calendar events", "calendar"),
    "blacklist.view": ("View the blacklist", "blacklist"),
    "blacklist.manage": ("Manage the blacklist", "blacklist"),
    "hr.view": ("View applications", "hr"),
    "hr.manage": ("Process applications", "hr"),
    "detectives.view": ("View detective case files", "detectives"),
    "detectives.manage": ("Manage detective case files", "detectives"),
    "academy.view": ("View trainings", "academy"),
    "academy.manage": ("Manage trainings", "academy"),
    "academy.teach": ("Record attendance, exams and module sign-offs", "academy"),
    "ia.view": ("View Internal Affairs investigations", "ia"),
    "ia.manage": ("Manage Internal Affairs investigations", "ia"),
    "ia.investigate": ("Keep investigation notes and witness statements", "ia"),
    "qa.view": ("View unit reviews", "qa"),
    "qa.manage": ("Write and grade unit reviews", "qa"),
    "teamlead.view": ("View uprank requests", "teamlead"),
    "teamlead.manage": ("File uprank requests", "teamlead"),
    "management.view": ("View promotion holds", "management"),
    "management.uprank": ("Approve uprank requests and set promotion holds", "management"),
    "bonus.view": ("View bonus payments", "bonus"),
    "bonus.manage": ("Manage bonus payments", "bonus"),
    "bonus.pay": ("Pay out bonuses", "bonus"),
    "announcements.view": ("View announcements", "announcements"),
    "announcements.create": ("Draft announcements", "announcements"),
    "announcements.publish": ("Publish announcements to Discord", "announcements"),
}

# Roles created on first start: name → (display name, level, colour, permissions)
DEFAULT_ROLES: dict[str, tuple[str, int, str, list[str]]] = {
    "admin": ("Administrator", 100, "#dc2626", [ADMIN_PERMISSION]),
    "leadership": ("Leadership", 16, "#f59e0b", [
        "employees.view", "employees.edit", "employees.rank", "employees.delete",
        "leadership.view", "leadership.manage", "leadership.tasks",
        "treasury.view", "treasury.manage", "sanctions.view", "sanctions.manage",
        "management.view", "management.uprank", "bonus.view", "bonus.manage", "bonus.pay",
        "announcements.view", "announcements.create", "announcements.publish",
        "calendar.view", "calendar.manage", "audit.view",
    ]),
    "officer": ("Officer", 1, "#3b82f6", [
        "employees.view", "calendar.view", "announcements.view",
        "evidence.view", "robbery.view", "robbery.create", "tuning.view",
    ]),
}
