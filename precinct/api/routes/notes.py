"""Leadership notes.  Pinned notes are listed first."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.database.models import LeadershipNote
from precinct.services import realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/notes", tags=["notes"])


class NoteCreate(BaseModel):
    title: str | None = None
    content: str | None = None
    is_pinned: bool = False


class NoteUpdate(BaseModel):
    title: str | None = None
    content: str | None = None


def note_to_dict(n: LeadershipNote) -> dict:
    return {
        "id": n.id,
        "title": n.title,
        "content": n.content,
        "is_pinned": n.is_pinned,
        "author": user_brief(n.author),
        "created_at": iso(n.created_at),
        "updated_at": iso(n.updated_at),
    }


@router.get("", dependencies=[Depends(require_permission("leadership.view"))])
def list_notes(search: str | None = None, session: Session = Depends(get_session)):
    stmt = (
        select(LeadershipNote)
        .options(selectinload(LeadershipNote.author))
        .order_by(LeadershipNote.is_pinned.desc(), LeadershipNote.updated_at.desc(), LeadershipNote.id.desc())
    )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(LeadershipNote.title.ilike(pattern), LeadershipNote.content.ilike(pattern)))
    return [note_to_dict(n) for n in session.scalars(stmt).all()]


@router.post("", status_code=201)
def create_note(
    body: NoteCreate,
    user: CurrentUser = Depends(require_permission("leadership.manage")),
    session: Session = Depends(get_session),
):
    if not (body.title or "").strip() or not (body.content or "").strip():
        raise HTTPException(400, "Title and content are required")
    note = LeadershipNote(
        title=body.title.strip(), content=body.content.strip(), is_pinned=body.is_pinned, author_id=user.id,
    )
    session.add(note)
    session.commit()
    data = note_to_dict(note)
    realtime.broadcast_create("note", data)
    return data


@router.put("/{note_id}/pin", dependencies=[Depends(require_permission("leadership.manage"))])
def toggle_pin(note_id: int, session: Session = Depends(get_session)):
    note = get_or_404(session, LeadershipNote, note_id, "Note")
    note.is_pinned = not note.is_pinned
    session.commit()
    data = note_to_dict(note)
    realtime.broadcast_update("note", data)
    return data


@router.put("/{note_id}", dependencies=[Depends(require_permission("leadership.manage"))])
def update_note(note_id: int, body: NoteUpdate, session: Session = Depends(get_session)):
    note = get_or_404(session, LeadershipNote, note_id, "Note")
    for key, value in body.model_dump(exclude_unset=True).items():
        if value is not None and value.strip():
            setattr(note, key, value.strip())
    session.commit()
    data = note_to_dict(note)
    realtime.broadcast_update("note", data)
    return data


@router.delete("/{note_id}", status_code=204, dependencies=[Depends(require_permission("leadership.manage"))])
def delete_note(note_id: int, session: Session = Depends(get_session)):
    session.delete(get_or_404(session, LeadershipNote, note_id, "Note"))
    session.commit()
    realtime.broadcast_delete("note", note_id)
