"""Blacklisted Discord accounts.  An entry past its ``expires_at`` no longer blocks."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_current_user, get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import as_utc, utcnow
from precinct.database.models import BlacklistEntry
from precinct.services import realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/blacklist", tags=["blacklist"])


class EntryCreate(BaseModel):
    discord_id: str | None = None
    username: str | None = None
    reason: str | None = None
    expires_at: datetime | None = None


class EntryUpdate(BaseModel):
    username: str | None = None
    reason: str | None = None
    expires_at: datetime | None = None


def is_active(entry: BlacklistEntry, now: datetime | None = None) -> bool:
    now = now or utcnow()
    return entry.expires_at is None or as_utc(entry.expires_at) > now


def active_entry(session: Session, discord_id: str) -> BlacklistEntry | None:
    """The blocking entry for *discord_id*, or ``None`` if absent or expired."""
    entry = session.scalar(select(BlacklistEntry).where(BlacklistEntry.discord_id == str(discord_id)))
    if entry is None or not is_active(entry):
        return None
    return entry


def entry_to_dict(e: BlacklistEntry) -> dict:
    return {
        "id": e.id,
        "discord_id": e.discord_id,
        "username": e.username,
        "reason": e.reason,
        "expires_at": iso(e.expires_at),
        "is_active": is_active(e),
        "added_by": user_brief(e.added_by),
        "created_at": iso(e.created_at),
    }


@router.get("", dependencies=[Depends(require_permission("blacklist.view"))])
def list_entries(
    search: str | None = None,
    active: bool | None = None,
    session: Session = Depends(get_session),
):
    stmt = (
        select(BlacklistEntry)
        .options(selectinload(BlacklistEntry.added_by))
        .order_by(BlacklistEntry.created_at.desc(), BlacklistEntry.id.desc())
    )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(
            BlacklistEntry.username.ilike(pattern),
            BlacklistEntry.discord_id.ilike(pattern),
            BlacklistEntry.reason.ilike(pattern),
        ))
    rows = session.scalars(stmt).all()
    if active is not None:
        rows = [e for e in rows if is_active(e) == active]
    return [entry_to_dict(e) for e in rows]


@router.get("/check/{discord_id}", dependencies=[Depends(get_current_user)])
def check(discord_id: str, session: Session = Depends(get_session)):
    entry = active_entry(session, discord_id)
    if entry is None:
        return {"blacklisted": False}
    return {"blacklisted": True, "entry": entry_to_dict(entry)}


@router.get("/stats", dependencies=[Depends(require_permission("blacklist.view"))])
def stats(session: Session = Depends(get_session)):
    now = utcnow()
    total = session.scalar(select(func.count()).select_from(BlacklistEntry)) or 0
    permanent = session.scalar(
        select(func.count()).select_from(BlacklistEntry).where(BlacklistEntry.expires_at.is_(None))
    ) or 0
    temporary_active = session.scalar(
        select(func.count()).select_from(BlacklistEntry).where(BlacklistEntry.expires_at > now)
    ) or 0
    return {
        "total": total,
        "permanent": permanent,
        "temporary": temporary_active,
        "expired": total - permanent - temporary_active,
    }


@router.post("", status_code=201)
def create_entry(
    body: EntryCreate,
    user: CurrentUser = Depends(require_permission("blacklist.manage")),
    session: Session = Depends(get_session),
):
    discord_id = (body.discord_id or "").strip()
    if not discord_id or not (body.username or "").strip() or not (body.reason or "").strip():
        raise HTTPException(400, "Discord ID, username and reason are required")
    if session.scalar(select(BlacklistEntry.id).where(BlacklistEntry.discord_id == discord_id)):
        raise HTTPException(400, "This Discord ID is already blacklisted")
    entry = BlacklistEntry(
        discord_id=discord_id,
        username=body.username.strip(),
        reason=body.reason.strip(),
        expires_at=as_utc(body.expires_at) if body.expires_at else None,
        added_by_id=user.id,
    )
    session.add(entry)
    session.commit()
    data = entry_to_dict(entry)
    realtime.broadcast_create("blacklist", data)
    return data


@router.put("/{entry_id}", dependencies=[Depends(require_permission("blacklist.manage"))])
def update_entry(entry_id: int, body: EntryUpdate, session: Session = Depends(get_session)):
    entry = get_or_404(session, BlacklistEntry, entry_id, "Blacklist entry")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is None and key in ("username", "reason"):
            continue
        if key == "expires_at" and value is not None:
            value = as_utc(value)
        setattr(entry, key, value)
    session.commit()
    data = entry_to_dict(entry)
    realtime.broadcast_update("blacklist", data)
    return data


@router.delete("/{entry_id}", status_code=204, dependencies=[Depends(require_permission("blacklist.manage"))])
def delete_entry(entry_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, BlacklistEntry, entry_id, "Blacklist entry"))
    session.commit()
    realtime.broadcast_delete("blacklist", entry_id)
