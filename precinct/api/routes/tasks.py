"""Leadership task board.  Moving a task to DONE stamps ``completed_at``."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_session, require_permission
from precinct.api.serializers import get_or_404, iso, user_brief
from precinct.constants import as_utc, utcnow
from precinct.database.models import LeadershipTask, Priority, TaskStatus, User
from precinct.services import realtime
from precinct.services.permission_cache import CurrentUser

router = APIRouter(
    prefix="/tasks", tags=["tasks"], dependencies=[Depends(require_permission("leadership.tasks"))],
)


class TaskCreate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: Priority = Priority.NORMAL
    due_date: datetime | None = None
    assignee_id: int | None = None


class TaskUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    priority: Priority | None = None
    due_date: datetime | None = None
    assignee_id: int | None = None


class StatusChange(BaseModel):
    status: str | None = None


def task_to_dict(t: LeadershipTask) -> dict:
    return {
        "id": t.id,
        "title": t.title,
        "description": t.description,
        "status": t.status,
        "priority": t.priority,
        "due_date": iso(t.due_date),
        "assignee": user_brief(t.assignee),
        "created_by": user_brief(t.created_by),
        "completed_at": iso(t.completed_at),
        "created_at": iso(t.created_at),
    }


def _query():
    return select(LeadershipTask).options(
        selectinload(LeadershipTask.assignee), selectinload(LeadershipTask.created_by),
    )


def _load(session: Session, task_id: int) -> LeadershipTask:
    task = session.scalar(_query().where(LeadershipTask.id == task_id))
    if not task:
        raise HTTPException(404, "Task not found")
    return task


def _set_status(task: LeadershipTask, status: TaskStatus) -> None:
    task.status = status
    task.completed_at = utcnow() if status == TaskStatus.DONE else None


@router.get("")
def list_tasks(
    status: TaskStatus | None = None,
    assignee_id: int | None = None,
    session: Session = Depends(get_session),
):
    stmt = _query().order_by(LeadershipTask.created_at.desc(), LeadershipTask.id.desc())
    if status:
        stmt = stmt.where(LeadershipTask.status == status)
    if assignee_id is not None:
        stmt = stmt.where(LeadershipTask.assignee_id == assignee_id)
    return [task_to_dict(t) for t in session.scalars(stmt).all()]


@router.post("", status_code=201)
def create_task(
    body: TaskCreate,
    user: CurrentUser = Depends(require_permission("leadership.tasks")),
    session: Session = Depends(get_session),
):
    if not (body.title or "").strip():
        raise HTTPException(400, "Title is required")
    if body.assignee_id is not None:
        get_or_404(session, User, body.assignee_id, "User")
    task = LeadershipTask(
        title=body.title.strip(),
        description=body.description,
        priority=body.priority,
        due_date=as_utc(body.due_date) if body.due_date else None,
        assignee_id=body.assignee_id,
        created_by_id=user.id,
    )
    session.add(task)
    session.commit()
    data = task_to_dict(_load(session, task.id))
    realtime.broadcast_create("task", data)
    return data


@router.put("/{task_id}/status")
def change_status(task_id: int, body: StatusChange, session: Session = Depends(get_session)):
    if body.status not in TaskStatus.__members__:
        raise HTTPException(400, "Invalid status")
    task = _load(session, task_id)
    _set_status(task, TaskStatus(body.status))
    session.commit()
    data = task_to_dict(task)
    realtime.broadcast_update("task", data)
    return data


@router.put("/{task_id}")
def update_task(task_id: int, body: TaskUpdate, session: Session = Depends(get_session)):
    task = _load(session, task_id)
    fields = body.model_dump(exclude_unset=True)
    if fields.get("assignee_id") is not None:
        get_or_404(session, User, fields["assignee_id"], "User")
    for key, value in fields.items():
        if value is None and key in ("title", "priority"):
            continue
        if key == "due_date" and value is not None:
            value = as_utc(value)
        setattr(task, key, value)
    session.commit()
    data = task_to_dict(_load(session, task_id))
    realtime.broadcast_update("task", data)
    return data


@router.delete("/{task_id}", status_code=204)
def delete_task(task_id: int, session: Session = Depends(get_session)):
    session.delete(_load(session, task_id))
    session.commit()
    realtime.broadcast_delete("task", task_id)
