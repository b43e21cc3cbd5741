"""
precinct.services.bonus_service — Weekly Bonus Accrual
=======================================================

Work done in the dashboard (processing an application, leading a robbery
response, storing evidence, ...) earns the acting employee a bonus.  Each
activity has a :class:`BonusConfig`; a trigger creates a PENDING
:class:`BonusPayment` tagged with the current bonus week.

A bonus week runs Monday 00:00:00.000 → Sunday 23:59:59.999 UTC.  The bot
closes it every Sunday at 23:59 (:func:`close_week`), recording the total of
the week's pending payments in a :class:`BonusWeek` row for management.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from precinct.constants import as_utc, utcnow
from precinct.database.models import (
    BonusConfig,
    BonusPayment,
    BonusPaymentStatus,
    BonusWeek,
    BonusWeekStatus,
    Employee,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Week bounds
# ---------------------------------------------------------------------------

def get_week_bounds(moment: datetime | None = None) -> tuple[datetime, datetime]:
    """Return ``(monday 00:00:00.000, sunday 23:59:59.999)`` around *moment* (UTC)."""
    moment = as_utc(moment) if moment is not None else utcnow()
    monday = moment - timedelta(days=moment.weekday())
    week_start = monday.replace(hour=0, minute=0, second=0, microsecond=0)
    week_end = week_start + timedelta(days=7) - timedelta(milliseconds=1)
    return week_start, week_end


# ---------------------------------------------------------------------------
# Payment creation
# ---------------------------------------------------------------------------

def create_bonus_payment(
    session: Session,
    activity_type: str,
    employee_id: int,
    reason: str,
    reference_id: str | int | None = None,
    reference_type: str | None = None,
    *,
    now: datetime | None = None,
) -> BonusPayment | None:
    """Create a PENDING payment for *activity_type*.

    Nothing is created (and ``None`` returned) unless the activity's config
    exists, is active and pays more than zero.
    """
    config = session.scalar(select(BonusConfig).where(BonusConfig.activity_type == activity_type))
    if config is None or not config.is_active or config.amount <= 0:
        logger.debug("No active bonus configured for %s", activity_type)
        return None

    week_start, week_end = get_week_bounds(now)
    payment = BonusPayment(
        config_id=config.id,
        employee_id=employee_id,
        amount=config.amount,
        reason=reason,
        reference_id=str(reference_id) if reference_id is not None else None,
        reference_type=reference_type,
        status=BonusPaymentStatus.PENDING,
        week_start=week_start,
        week_end=week_end,
    )
    session.add(payment)
    session.flush()
    logger.info(
        "Bonus %s: $%d for employee %d (%s)",
        activity_type, config.amount, employee_id, reason,
    )
    return payment


# Activity type → (reason template, reference type).  ``{subject}`` is the
# applicant / training / case / item the activity concerned.
TRIGGERS: dict[str, tuple[str, str]] = {
    "APPLICATION_COMPLETED": ("Application from {subject} processed", "Application"),
    "APPLICATION_ONBOARDING": ("Onboarding for {subject} conducted", "Application"),
    "APPLICATION_REJECTED": ("Application from {subject} processed (rejected)", "Application"),
    "TRAINING_CONDUCTED": ('Training "{subject}" conducted', "Training"),
    "TRAINING_PARTICIPATED": ('Attended training "{subject}"', "Training"),
    "EXAM_CONDUCTED": ("Exam for {subject} conducted", "AcademyExam"),
    "RETRAINING_COMPLETED": ("Retraining for {subject} conducted", "AcademyRetraining"),
    "ACADEMY_MODULE_COMPLETED": ('Module "{subject}" completed', "AcademyProgress"),
    "INVESTIGATION_OPENED": ("IA investigation {subject} opened", "Investigation"),
    "INVESTIGATION_CLOSED": ("IA investigation {subject} closed", "Investigation"),
    "UNIT_REVIEW_COMPLETED": ("Review of {subject} completed", "UnitReview"),
    "CASE_OPENED": ("Case file {subject} opened", "Case"),
    "CASE_CLOSED": ("Case file {subject} closed", "Case"),
    "ROBBERY_LEADER": ("Incident command at robbery ({subject})", "Robbery"),
    "ROBBERY_NEGOTIATOR": ("Negotiation at robbery ({subject})", "Robbery"),
    "EVIDENCE_STORED": ('Evidence "{subject}" stored', "Evidence"),
    "SANCTION_ISSUED": ("Sanction issued to {subject}", "Sanction"),
}


def trigger(
    session: Session,
    activity_type: str,
    employee_id: int | None,
    *,
    subject: str,
    reference_id: str | int | None = None,
) -> BonusPayment | None:
    """Accrue the bonus for *activity_type* to *employee_id*.

    A missing employee (the actor has no employee record) accrues nothing.
    """
    if activity_type not in TRIGGERS:
        raise ValueError(f"Unknown bonus activity: {activity_type}")
    if employee_id is None:
        return None
    template, reference_type = TRIGGERS[activity_type]
    return create_bonus_payment(
        session, activity_type, employee_id,
        template.format(subject=subject),
        reference_id, reference_type,
    )


def employee_id_for_user(session: Session, user_id: int) -> int | None:
    return session.scalar(select(Employee.id).where(Employee.user_id == user_id))


# ---------------------------------------------------------------------------
# Week close (scheduled)
# ---------------------------------------------------------------------------

def close_week(engine, now: datetime | None = None) -> dict:
    """Close the bonus week containing *now* and submit it to management.

    Re-running for the same week updates the existing row.
    """
    now = as_utc(now) if now is not None else utcnow()
    week_start, week_end = get_week_bounds(now)
    with Session(engine) as session:
        total = session.scalar(
            select(func.coalesce(func.sum(BonusPayment.amount), 0)).where(
                BonusPayment.week_start == week_start,
                BonusPayment.week_end == week_end,
                BonusPayment.status == BonusPaymentStatus.PENDING,
            )
        ) or 0

        week = session.scalar(
            select(BonusWeek).where(
                BonusWeek.week_start == week_start,
                BonusWeek.week_end == week_end,
            )
        )
        if week is None:
            week = BonusWeek(week_start=week_start, week_end=week_end)
            session.add(week)
        week.status = BonusWeekStatus.CLOSED
        week.total_amount = int(total)
        week.closed_at = now
        week.submitted_to_management = True
        week.submitted_at = now
        session.commit()
        result = week_to_dict(week)

    logger.info(
        "Bonus week closed: %s – %s, total $%d",
        week_start.date(), week_end.date(), result["total_amount"],
    )
    return result


# ---------------------------------------------------------------------------
# Serialisation & queries used by the bonus routes
# ---------------------------------------------------------------------------

def _iso(value: datetime | None) -> str | None:
    return as_utc(value).isoformat() if value is not None else None


def config_to_dict(c: BonusConfig) -> dict:
    return {
        "id": c.id,
        "activity_type": c.activity_type,
        "display_name": c.display_name,
        "description": c.description,
        "category": c.category,
        "amount": c.amount,
        "is_active": c.is_active,
    }


def payment_to_dict(p: BonusPayment) -> dict:
    employee = p.employee
    return {
        "id": p.id,
        "config_id": p.config_id,
        "activity_type": p.config.activity_type if p.config else None,
        "display_name": p.config.display_name if p.config else None,
        "employee_id": p.employee_id,
        "employee_name": employee.user.name if employee and employee.user else None,
        "amount": p.amount,
        "reason": p.reason,
        "reference_id": p.reference_id,
        "reference_type": p.reference_type,
        "status": p.status,
        "week_start": _iso(p.week_start),
        "week_end": _iso(p.week_end),
        "paid_at": _iso(p.paid_at),
        "paid_by_id": str(p.paid_by_id) if p.paid_by_id else None,
        "created_at": _iso(p.created_at),
    }


def week_to_dict(w: BonusWeek) -> dict:
    return {
        "id": w.id,
        "week_start": _iso(w.week_start),
        "week_end": _iso(w.week_end),
        "status": w.status,
        "total_amount": w.total_amount,
        "closed_at": _iso(w.closed_at),
        "submitted_to_management": w.submitted_to_management,
        "submitted_at": _iso(w.submitted_at),
    }


def _payment_query():
    return select(BonusPayment).options(
        selectinload(BonusPayment.config),
        selectinload(BonusPayment.employee).selectinload(Employee.user),
    )


def list_payments(
    session: Session,
    *,
    week: datetime | None = None,
    status: str | None = None,
    employee_id: int | None = None,
) -> list[BonusPayment]:
    stmt = _payment_query()
    if week is not None:
        week_start, week_end = get_week_bounds(week)
        stmt = stmt.where(BonusPayment.week_start == week_start, BonusPayment.week_end == week_end)
    if status:
        stmt = stmt.where(BonusPayment.status == status)
    if employee_id is not None:
        stmt = stmt.where(BonusPayment.employee_id == employee_id)
    return list(session.scalars(stmt.order_by(BonusPayment.created_at.desc(), BonusPayment.id.desc())).all())


def week_summary(session: Session, week: datetime | None = None) -> dict:
    """Payments of one week grouped by employee, with pending/paid totals."""
    week_start, week_end = get_week_bounds(week)
    payments = list_payments(session, week=week_start)
    by_employee: dict[int, dict] = {}
    for p in payments:
        if p.status == BonusPaymentStatus.CANCELLED:
            continue
        entry = by_employee.setdefault(p.employee_id, {
            "employee_id": p.employee_id,
            "employee_name": p.employee.user.name if p.employee and p.employee.user else None,
            "badge_number": p.employee.badge_number if p.employee else None,
            "pending_amount": 0,
            "paid_amount": 0,
            "payment_count": 0,
        })
        entry["payment_count"] += 1
        if p.status == BonusPaymentStatus.PAID:
            entry["paid_amount"] += p.amount
        else:
            entry["pending_amount"] += p.amount
    employees = sorted(by_employee.values(), key=lambda e: -(e["pending_amount"] + e["paid_amount"]))
    return {
        "week_start": week_start.isoformat(),
        "week_end": week_end.isoformat(),
        "employees": employees,
        "total_pending": sum(e["pending_amount"] for e in employees),
        "total_paid": sum(e["paid_amount"] for e in employees),
    }


def mark_paid(payments: list[BonusPayment], paid_by_id: int, now: datetime | None = None) -> int:
    """Flip PENDING payments to PAID; returns the amount paid."""
    now = now or utcnow()
    total = 0
    for p in payments:
        if p.status != BonusPaymentStatus.PENDING:
            continue
        p.status = BonusPaymentStatus.PAID
        p.paid_at = now
        p.paid_by_id = paid_by_id
        total += p.amount
    return total
