"""
precinct.services.uprank_lock_service — Promotion holds
========================================================

A promotion that moves an employee into a new team holds further
promotions for a while (:data:`~precinct.constants.UPRANK_LOCK_WEEKS`);
management can also place manual holds.  An employee has at most one
active hold: placing a new one deactivates the previous.

Upranks and uprank requests call :func:`ensure_not_locked` first.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from precinct.constants import UPRANK_LOCK_WEEKS, as_utc, utcnow
from precinct.database.models import Employee, UprankLock

logger = logging.getLogger(__name__)


class PromotionLocked(ValueError):
    """The employee is on an active promotion hold."""


def active_lock(session: Session, employee_id: int, now: datetime | None = None) -> UprankLock | None:
    """The hold currently in force for *employee_id*, if any."""
    return session.scalar(
        select(UprankLock)
        .where(
            UprankLock.employee_id == employee_id,
            UprankLock.is_active.is_(True),
            UprankLock.locked_until > (now or utcnow()),
        )
        .order_by(UprankLock.locked_until.desc())
        .limit(1)
    )


def ensure_not_locked(session: Session, employee_id: int) -> None:
    lock = active_lock(session, employee_id)
    if lock is not None:
        raise PromotionLocked(
            f"Employee is held from promotion until {as_utc(lock.locked_until):%Y-%m-%d} ({lock.reason})"
        )


def place_lock(
    session: Session,
    employee: Employee,
    *,
    reason: str,
    team: str,
    locked_until: datetime,
    created_by_id: int,
) -> UprankLock:
    for previous in session.scalars(
        select(UprankLock).where(UprankLock.employee_id == employee.id, UprankLock.is_active.is_(True))
    ):
        previous.is_active = False
    lock = UprankLock(
        employee_id=employee.id,
        reason=reason,
        team=team,
        locked_until=locked_until,
        created_by_id=created_by_id,
    )
    session.add(lock)
    session.flush()
    logger.info("Promotion hold on employee %d until %s (%s)", employee.id, locked_until, reason)
    return lock


def lock_for_team(
    session: Session,
    employee: Employee,
    team: str | None,
    created_by_id: int,
    now: datetime | None = None,
) -> UprankLock | None:
    """Hold promotions after *employee* joined *team*; ``None`` for teams without a hold."""
    weeks = UPRANK_LOCK_WEEKS.get(team or "")
    if not weeks:
        return None
    return place_lock(
        session, employee,
        reason=f"Joined team {team} ({weeks} week{'s' if weeks > 1 else ''} hold)",
        team=team,
        locked_until=(now or utcnow()) + timedelta(weeks=weeks),
        created_by_id=created_by_id,
    )
