"""
precinct.services.roster_service — Guild Roster → Employees
============================================================

The guild is the source of truth for who works at the department and at
which rank.  Rank roles are named ``» <level> | <rank name>`` (levels
1–17); unit roles are plain ``» <name>`` and map to departments through
:data:`~precinct.constants.UNIT_ROLES`.  Badge numbers live in the member's
display name as ``[PD-104]``.

The bot flattens each ``discord.Member`` into a :class:`MemberSnapshot`
and hands the list to :func:`sync_roster`, which runs on a worker thread.
Keeping discord objects out of this module lets it be tested with plain
data.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from precinct.constants import (
    BADGE_PATTERN,
    DEFAULT_DEPARTMENT,
    MAX_RANK_LEVEL,
    MIN_RANK_LEVEL,
    RANK_ROLE_PATTERN,
    UNIT_ROLES,
)
from precinct.database.models import Employee, EmployeeStatus, User
from precinct.services.settings_service import RankCatalogue, RankRole

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_rank(role_name: str) -> tuple[int, str] | None:
    """``"» 5 | Sergeant"`` → ``(5, "Sergeant")``; ``None`` if not a rank role."""
    match = RANK_ROLE_PATTERN.match(role_name)
    if not match:
        return None
    level = int(match.group(1))
    if not MIN_RANK_LEVEL <= level <= MAX_RANK_LEVEL:
        return None
    return level, match.group(2).strip()


def highest_rank(role_names: Iterable[str]) -> tuple[int, str] | None:
    ranks = [r for r in (parse_rank(n) for n in role_names) if r is not None]
    if not ranks:
        return None
    return max(ranks, key=lambda r: r[0])


def departments_for(role_names: Iterable[str]) -> list[str]:
    """Unit departments in first-seen order, or ``["Patrol"]``."""
    departments: list[str] = []
    for name in role_names:
        dept = UNIT_ROLES.get(name)
        if dept and dept not in departments:
            departments.append(dept)
    return departments or [DEFAULT_DEPARTMENT]


def unit_role_changes(current_roles: Iterable[str], departments: Iterable[str]) -> tuple[list[str], list[str]]:
    """Role names to add and remove so a member carries exactly *departments*.

    Each department is granted through its first listed unit role; every
    held unit role belonging to another department is removed.
    """
    wanted = set(departments)
    current = list(current_roles)
    primary: dict[str, str] = {}
    for role_name, dept in UNIT_ROLES.items():
        primary.setdefault(dept, role_name)

    held = {UNIT_ROLES[name] for name in current if name in UNIT_ROLES}
    add = [primary[d] for d in primary if d in wanted and d not in held]
    remove = [name for name in current if name in UNIT_ROLES and UNIT_ROLES[name] not in wanted]
    return add, remove


def parse_badge(display_name: str | None) -> str | None:
    if not display_name:
        return None
    match = BADGE_PATTERN.search(display_name)
    return match.group(1) if match else None


def build_rank_catalogue(roles: Iterable[tuple[int, str]]) -> RankCatalogue:
    """Collect ``(role_id, role_name)`` pairs that are rank roles."""
    catalogue = RankCatalogue()
    for role_id, name in roles:
        parsed = parse_rank(name)
        if parsed is None:
            continue
        level, rank_name = parsed
        catalogue.ranks.setdefault(level, RankRole(level=level, name=rank_name, role_id=role_id))
    return catalogue


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------
@dataclass
class MemberSnapshot:
    """What the synchronizer needs to know about one guild member."""
    id: int
    username: str
    display_name: str | None
    avatar: str | None
    role_names: list[str] = field(default_factory=list)
    bot: bool = False


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    total: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "total": self.total,
            "errors": list(self.errors),
        }


def _sync_member(session: Session, member: MemberSnapshot, level: int, rank: str) -> str | None:
    """Upsert one ranked member.  Returns ``"created"``, ``"updated"`` or ``None``."""
    department = ", ".join(departments_for(member.role_names))
    badge = parse_badge(member.display_name)

    user = session.get(User, member.id)
    if user is None:
        user = User(id=member.id, username=member.username)
        session.add(user)
    user.username = member.username
    user.display_name = member.display_name
    user.avatar = member.avatar
    user.is_active = True
    session.flush()

    employee = session.scalar(select(Employee).where(Employee.user_id == member.id))
    if employee is None:
        session.add(Employee(
            user_id=member.id,
            rank=rank,
            rank_level=level,
            department=department,
            badge_number=badge,
            status=EmployeeStatus.ACTIVE,
        ))
        session.flush()
        return "created"

    if (employee.rank, employee.rank_level, employee.department, employee.badge_number) != (
        rank, level, department, badge,
    ):
        employee.rank = rank
        employee.rank_level = level
        employee.department = department
        employee.badge_number = badge
        session.flush()
        return "updated"
    return None


def sync_roster(engine, members: Iterable[MemberSnapshot]) -> SyncResult:
    """Mirror ranked guild members into ``users`` / ``employees``.

    Bots and members without a rank role are skipped.  Each member runs in
    its own savepoint so a failure (e.g. a duplicate badge) is recorded in
    ``errors`` without aborting the rest.
    """
    result = SyncResult()
    with Session(engine) as session:
        for member in members:
            if member.bot:
                continue
            ranked = highest_rank(member.role_names)
            if ranked is None:
                continue
            result.total += 1
            level, rank = ranked
            try:
                with session.begin_nested():
                    outcome = _sync_member(session, member, level, rank)
            except Exception as exc:
                logger.warning("Roster sync failed for %s (%s): %s", member.username, member.id, exc)
                result.errors.append(f"{member.username}: {exc}")
                continue
            if outcome == "created":
                result.created += 1
            elif outcome == "updated":
                result.updated += 1
        session.commit()

    if result.created or result.updated or result.errors:
        logger.info(
            "Roster sync: %d created, %d updated, %d total, %d error(s)",
            result.created, result.updated, result.total, len(result.errors),
        )
    return result


def mark_user_inactive(engine, user_id: int) -> bool:
    """Deactivate the user for a departed guild member.  ``True`` if a row changed."""
    with Session(engine) as session:
        changed = session.execute(
            update(User).where(User.id == user_id).values(is_active=False)
        ).rowcount
        session.commit()
    if changed:
        logger.info("User %s left the guild; marked inactive", user_id)
    return bool(changed)
