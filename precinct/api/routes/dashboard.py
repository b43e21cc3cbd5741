"""Dashboard read-models: department stats, recent activity, who is online."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from precinct.api.deps import get_current_user, get_session
from precinct.api.serializers import iso, user_brief
from precinct.constants import team_for_level, utcnow
from precinct.database.models import (
    Absence,
    Application,
    ApplicationStatus,
    AuditLog,
    BonusPayment,
    BonusPaymentStatus,
    Employee,
    EmployeeStatus,
    Notification,
    RequestStatus,
    Sanction,
    SanctionStatus,
    UprankRequest,
    User,
)
from precinct.services import bonus_service
from precinct.services.audit_service import audit_to_dict
from precinct.services.permission_cache import CurrentUser
from precinct.services.realtime import hub

router = APIRouter(prefix="/dashboard", tags=["dashboard"], dependencies=[Depends(get_current_user)])


def _count(session: Session, model, *conditions) -> int:
    return session.scalar(select(func.count()).select_from(model).where(*conditions)) or 0


@router.get("/stats")
def dashboard_stats(session: Session = Depends(get_session)):
    now = utcnow()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

    by_status = dict(session.execute(
        select(Employee.status, func.count()).group_by(Employee.status)
    ).all())
    teams: dict[str, int] = {}
    for level, count in session.execute(
        select(Employee.rank_level, func.count())
        .where(Employee.status == EmployeeStatus.ACTIVE)
        .group_by(Employee.rank_level)
    ).all():
        team = team_for_level(level)
        if team:
            teams[team] = teams.get(team, 0) + count
    rank_distribution = session.execute(
        select(Employee.rank, Employee.rank_level, func.count())
        .where(Employee.status == EmployeeStatus.ACTIVE)
        .group_by(Employee.rank, Employee.rank_level)
        .order_by(Employee.rank_level.desc())
    ).all()

    return {
        "employees": {
            "total": sum(by_status.values()),
            "active": by_status.get(EmployeeStatus.ACTIVE, 0),
            "inactive": by_status.get(EmployeeStatus.INACTIVE, 0),
            "suspended": by_status.get(EmployeeStatus.SUSPENDED, 0),
            "terminated": by_status.get(EmployeeStatus.TERMINATED, 0),
            "hiredThisMonth": _count(session, Employee, Employee.hire_date >= month_start),
        },
        "absentNow": _count(session, Absence, Absence.start_date <= now, Absence.end_date >= now),
        "pending": {
            "applications": _count(session, Application, Application.status == ApplicationStatus.PENDING),
            "uprankRequests": _count(session, UprankRequest, UprankRequest.status == RequestStatus.PENDING),
        },
        "activeSanctions": _count(session, Sanction, Sanction.status == SanctionStatus.ACTIVE),
        "teams": [{"team": team, "count": count} for team, count in teams.items()],
        "ranks": [{"rank": rank, "level": level, "count": count} for rank, level, count in rank_distribution],
    }


@router.get("/activity")
def recent_activity(limit: int = Query(20, ge=1, le=100), session: Session = Depends(get_session)):
    rows = session.scalars(
        select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    ).all()
    return [audit_to_dict(r) for r in rows]


@router.get("/online-users")
def online_users(session: Session = Depends(get_session)):
    ids = hub.online_user_ids()
    if not ids:
        return []
    users = session.scalars(select(User).where(User.id.in_(ids)).order_by(User.username)).all()
    return [user_brief(u) for u in users]


@router.get("/my-overview")
def my_overview(user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    """The caller's own employee card, this week's bonus and inbox count."""
    unread = _count(session, Notification, Notification.user_id == user.id, Notification.is_read.is_(False))
    employee = session.scalar(select(Employee).where(Employee.user_id == user.id))
    if employee is None:
        return {"employee": None, "unreadNotifications": unread}

    now = utcnow()
    week_start, week_end = bonus_service.get_week_bounds(now)
    bonus_amount, bonus_count = session.execute(
        select(func.coalesce(func.sum(BonusPayment.amount), 0), func.count())
        .where(
            BonusPayment.employee_id == employee.id,
            BonusPayment.week_start == week_start,
            BonusPayment.status != BonusPaymentStatus.CANCELLED,
        )
    ).one()
    current_absence = session.scalar(
        select(Absence)
        .where(Absence.employee_id == employee.id, Absence.start_date <= now, Absence.end_date >= now)
        .order_by(Absence.start_date)
        .limit(1)
    )
    return {
        "employee": {
            "id": employee.id,
            "badge_number": employee.badge_number,
            "rank": employee.rank,
            "rank_level": employee.rank_level,
            "team": team_for_level(employee.rank_level),
            "department": employee.department,
            "status": employee.status,
            "hire_date": iso(employee.hire_date),
        },
        "activeSanctions": _count(
            session, Sanction, Sanction.employee_id == employee.id, Sanction.status == SanctionStatus.ACTIVE,
        ),
        "currentAbsence": None if current_absence is None else {
            "id": current_absence.id,
            "type": current_absence.type,
            "end_date": iso(current_absence.end_date),
        },
        "bonusThisWeek": {
            "amount": int(bonus_amount),
            "count": bonus_count,
            "week_start": iso(week_start),
            "week_end": iso(week_end),
        },
        "unreadNotifications": unread,
    }
