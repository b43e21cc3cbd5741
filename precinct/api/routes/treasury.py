"""
precinct.api.routes.treasury — Department cash
===============================================

One treasury row holds two balances (regular cash and black money); every
deposit or withdrawal writes a transaction and adjusts the matching
balance in the same commit.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.pagination import PageParams, paginate
from precinct.api.serializers import iso, user_brief
from precinct.database.models import MoneyType, TransactionType, Treasury, TreasuryTransaction
from precinct.services import realtime
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/treasury", tags=["treasury"])


class MoneyMovement(BaseModel):
    money_type: MoneyType | None = None
    amount: int | None = None
    reason: str | None = None


def treasury_to_dict(t: Treasury) -> dict:
    return {
        "id": t.id,
        "regular_cash": t.regular_cash,
        "black_money": t.black_money,
        "updated_at": iso(t.updated_at),
    }


def transaction_to_dict(tx: TreasuryTransaction) -> dict:
    return {
        "id": tx.id,
        "type": tx.type,
        "money_type": tx.money_type,
        "amount": tx.amount,
        "reason": tx.reason,
        "created_by": user_brief(tx.created_by),
        "created_at": iso(tx.created_at),
    }


def get_or_create_treasury(session: Session) -> Treasury:
    treasury = session.scalar(select(Treasury).order_by(Treasury.id).limit(1))
    if treasury is None:
        treasury = Treasury(regular_cash=0, black_money=0)
        session.add(treasury)
        session.flush()
    return treasury


def _balance_attr(money_type: MoneyType) -> str:
    return "regular_cash" if money_type == MoneyType.REGULAR else "black_money"


def _move(session: Session, body: MoneyMovement, kind: TransactionType, user_id: int) -> dict:
    if body.money_type is None or not body.amount or not (body.reason or "").strip():
        raise HTTPException(400, "Money type, amount and reason are required")
    if body.amount <= 0:
        raise HTTPException(400, "Amount must be positive")

    treasury = get_or_create_treasury(session)
    attr = _balance_attr(body.money_type)
    balance = getattr(treasury, attr)
    if kind == TransactionType.WITHDRAWAL:
        if balance < body.amount:
            raise HTTPException(400, "Insufficient funds in the treasury")
        setattr(treasury, attr, balance - body.amount)
    else:
        setattr(treasury, attr, balance + body.amount)

    tx = TreasuryTransaction(
        type=kind,
        money_type=body.money_type,
        amount=body.amount,
        reason=body.reason.strip(),
        created_by_id=user_id,
    )
    session.add(tx)
    session.commit()
    logger.info("Treasury %s of $%d (%s) by %s", kind.lower(), body.amount, body.money_type, user_id)

    result = {"transaction": transaction_to_dict(tx), "treasury": treasury_to_dict(treasury)}
    realtime.broadcast_update("treasury", result["treasury"])
    return result


@router.get("", dependencies=[Depends(require_permission("treasury.view"))])
def get_treasury(session: Session = Depends(get_session)):
    treasury = get_or_create_treasury(session)
    session.commit()
    return treasury_to_dict(treasury)


@router.get("/transactions", dependencies=[Depends(require_permission("treasury.view"))])
def list_transactions(
    money_type: MoneyType | None = None,
    params: PageParams = Depends(),
    session: Session = Depends(get_session),
):
    stmt = (
        select(TreasuryTransaction)
        .options(selectinload(TreasuryTransaction.created_by))
        .order_by(TreasuryTransaction.created_at.desc(), TreasuryTransaction.id.desc())
    )
    if money_type:
        stmt = stmt.where(TreasuryTransaction.money_type == money_type)
    return paginate(session, stmt, params, transaction_to_dict)


@router.post("/deposit", status_code=201)
def deposit(
    body: MoneyMovement,
    user: CurrentUser = Depends(require_permission("treasury.manage")),
    session: Session = Depends(get_session),
):
    return _move(session, body, TransactionType.DEPOSIT, user.id)


@router.post("/withdraw", status_code=201)
def withdraw(
    body: MoneyMovement,
    user: CurrentUser = Depends(require_permission("treasury.manage")),
    session: Session = Depends(get_session),
):
    return _move(session, body, TransactionType.WITHDRAWAL, user.id)
