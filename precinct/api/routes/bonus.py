"""
precinct.api.routes.bonus — Bonus payments
===========================================

Payments accrue automatically (see :mod:`precinct.services.bonus_service`);
these routes let management review a week, add manual payments, pay out
and cancel, and submit the week.  A ``week`` parameter is any moment inside
the wanted Monday–Sunday week and defaults to the current one.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from precinct.api.deps import get_current_user, get_engine, get_session, require_permission
from precinct.api.serializers import get_or_404
from precinct.constants import ADMIN_PERMISSION
from precinct.database.models import (
    BonusConfig,
    BonusPayment,
    BonusPaymentStatus,
    BonusWeek,
    Employee,
)
from precinct.database.seed import seed_bonus_configs
from precinct.services import admin_service, bonus_service, realtime
from precinct.services.notification_service import notify_bonus
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bonus", tags=["bonus"])

WEEK_HISTORY = 12


class ConfigUpdate(BaseModel):
    display_name: str | None = None
    description: str | None = None
    category: str | None = None
    amount: int | None = Field(None, ge=0)
    is_active: bool | None = None


class ManualPayment(BaseModel):
    employee_id: int | None = None
    config_id: int | None = None
    reason: str | None = None
    reference_id: str | None = None
    reference_type: str | None = None


class WeekSelector(BaseModel):
    week: datetime | None = None


# ---------------------------------------------------------------------------
# Configs
# ---------------------------------------------------------------------------
@router.get("/config", dependencies=[Depends(require_permission("bonus.view"))])
def list_configs(session: Session = Depends(get_session)):
    rows = session.scalars(select(BonusConfig).order_by(BonusConfig.category, BonusConfig.display_name)).all()
    return [bonus_service.config_to_dict(c) for c in rows]


@router.post("/config/init", dependencies=[Depends(require_permission(ADMIN_PERMISSION))])
def init_configs(session: Session = Depends(get_session)):
    """Create any missing activity configs (amount 0, so inactive in effect)."""
    created = seed_bonus_configs(session)
    session.commit()
    return {"success": True, "created": created}


@router.put("/config/{config_id}")
def update_config(
    config_id: int,
    body: ConfigUpdate,
    user: CurrentUser = Depends(require_permission(ADMIN_PERMISSION)),
    engine=Depends(get_engine),
):
    config = admin_service.update_bonus_config(
        engine, config_id, actor_id=user.id, **body.model_dump(exclude_unset=True),
    )
    if config is None:
        raise HTTPException(404, "Bonus config not found")
    return bonus_service.config_to_dict(config)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
@router.get("/payments", dependencies=[Depends(require_permission("bonus.view"))])
def list_payments(
    week: datetime | None = None,
    status: BonusPaymentStatus | None = None,
    employee_id: int | None = None,
    session: Session = Depends(get_session),
):
    payments = bonus_service.list_payments(
        session, week=week or bonus_service.get_week_bounds()[0], status=status, employee_id=employee_id,
    )
    return [bonus_service.payment_to_dict(p) for p in payments]


@router.get("/summary", dependencies=[Depends(require_permission("bonus.view"))])
def week_summary(week: datetime | None = None, session: Session = Depends(get_session)):
    return bonus_service.week_summary(session, week)


@router.get("/my")
def my_payments(user: CurrentUser = Depends(get_current_user), session: Session = Depends(get_session)):
    week_start, week_end = bonus_service.get_week_bounds()
    payments = []
    if user.employee_id is not None:
        payments = bonus_service.list_payments(session, week=week_start, employee_id=user.employee_id)
    live = [p for p in payments if p.status != BonusPaymentStatus.CANCELLED]
    return {
        "payments": [bonus_service.payment_to_dict(p) for p in payments],
        "summary": {
            "total": sum(p.amount for p in live),
            "pending": sum(p.amount for p in live if p.status == BonusPaymentStatus.PENDING),
            "paid": sum(p.amount for p in live if p.status == BonusPaymentStatus.PAID),
            "count": len(live),
        },
        "week_start": week_start.isoformat(),
        "week_end": week_end.isoformat(),
    }


@router.post("/payments", status_code=201, dependencies=[Depends(require_permission("bonus.manage"))])
def create_manual_payment(body: ManualPayment, session: Session = Depends(get_session)):
    if body.employee_id is None or body.config_id is None:
        raise HTTPException(400, "Employee and bonus type are required")
    config = get_or_404(session, BonusConfig, body.config_id, "Bonus config")
    if not config.is_active:
        raise HTTPException(400, "This bonus type is disabled")
    get_or_404(session, Employee, body.employee_id, "Employee")

    week_start, week_end = bonus_service.get_week_bounds()
    payment = BonusPayment(
        config_id=config.id,
        employee_id=body.employee_id,
        amount=config.amount,
        reason=body.reason or None,
        reference_id=body.reference_id or None,
        reference_type=body.reference_type or None,
        status=BonusPaymentStatus.PENDING,
        week_start=week_start,
        week_end=week_end,
    )
    session.add(payment)
    session.commit()
    session.refresh(payment)
    data = bonus_service.payment_to_dict(payment)
    realtime.broadcast_create("bonus", data)
    return data


@router.put("/payments/pay-all")
def pay_all(
    body: WeekSelector | None = None,
    user: CurrentUser = Depends(require_permission("bonus.pay")),
    session: Session = Depends(get_session),
):
    """Pay every pending payment of the week."""
    week = body.week if body else None
    pending = bonus_service.list_payments(
        session, week=week or bonus_service.get_week_bounds()[0], status=BonusPaymentStatus.PENDING,
    )
    bonus_service.mark_paid(pending, user.id)
    session.commit()
    if pending:
        realtime.broadcast_update("bonus", {"type": "pay-all", "status": "PAID", "count": len(pending)})
    return {"success": True, "updated": len(pending)}


@router.put("/payments/pay-employee/{employee_id}")
def pay_employee(
    employee_id: int,
    body: WeekSelector | None = None,
    user: CurrentUser = Depends(require_permission("bonus.pay")),
    session: Session = Depends(get_session),
):
    """Pay one employee's pending payments of the week and notify them once."""
    employee = get_or_404(session, Employee, employee_id, "Employee")
    week = body.week if body else None
    pending = bonus_service.list_payments(
        session,
        week=week or bonus_service.get_week_bounds()[0],
        status=BonusPaymentStatus.PENDING,
        employee_id=employee_id,
    )
    total = bonus_service.mark_paid(pending, user.id)
    if pending:
        notify_bonus(session, employee.user_id, amount=total, count=len(pending))
    session.commit()
    if pending:
        realtime.broadcast_update("bonus", {"employee_id": employee_id, "status": "PAID", "count": len(pending)})
    return {"success": True, "updated": len(pending), "amount": total}


@router.put("/payments/{payment_id}/pay")
def pay_one(
    payment_id: int,
    user: CurrentUser = Depends(require_permission("bonus.pay")),
    session: Session = Depends(get_session),
):
    payment = get_or_404(session, BonusPayment, payment_id, "Bonus payment")
    if payment.status != BonusPaymentStatus.PENDING:
        raise HTTPException(400, "Only pending payments can be paid")
    bonus_service.mark_paid([payment], user.id)
    notify_bonus(session, payment.employee.user_id, amount=payment.amount)
    session.commit()
    data = bonus_service.payment_to_dict(payment)
    realtime.broadcast_update("bonus", data)
    return data


@router.delete("/payments/{payment_id}", dependencies=[Depends(require_permission("bonus.manage"))])
def cancel_payment(payment_id: int, session: Session = Depends(get_session)):
    """Cancel a payment.  The row is kept with status CANCELLED."""
    payment = get_or_404(session, BonusPayment, payment_id, "Bonus payment")
    if payment.status == BonusPaymentStatus.PAID:
        raise HTTPException(400, "Paid bonus payments cannot be cancelled")
    payment.status = BonusPaymentStatus.CANCELLED
    session.commit()
    realtime.broadcast_delete("bonus", payment_id)
    return {"success": True}


# ---------------------------------------------------------------------------
# Weeks
# ---------------------------------------------------------------------------
@router.get("/weeks", dependencies=[Depends(require_permission("bonus.view"))])
def list_weeks(session: Session = Depends(get_session)):
    rows = session.scalars(select(BonusWeek).order_by(BonusWeek.week_start.desc()).limit(WEEK_HISTORY)).all()
    return [bonus_service.week_to_dict(w) for w in rows]


@router.post("/weeks/submit")
def submit_week(
    body: WeekSelector | None = None,
    user: CurrentUser = Depends(require_permission("bonus.manage")),
    engine=Depends(get_engine),
):
    """Close the week and hand it to management ahead of the Sunday job."""
    week = bonus_service.close_week(engine, body.week if body else None)
    logger.info("Bonus week %s submitted by %s", week["week_start"], user.id)
    return week
