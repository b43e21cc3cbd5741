"""
precinct.api.routes.users — Dashboard accounts
===============================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import get_current_user, get_engine, get_session, require_permission
from precinct.api.pagination import PageParams, paginate
from precinct.database.models import Role, User, user_roles
from precinct.services import admin_service, permission_cache
from precinct.services.admin_service import AdminError
from precinct.services.permission_cache import CurrentUser

router = APIRouter(prefix="/users", tags=["users"])


class UserUpdate(BaseModel):
    display_name: str | None = None
    is_active: bool | None = None
    role_ids: list[int] | None = None


def user_to_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "username": u.username,
        "display_name": u.display_name,
        "avatar": u.avatar,
        "is_active": u.is_active,
        "last_login": u.last_login.isoformat() if u.last_login else None,
        "created_at": u.created_at.isoformat() if u.created_at else None,
        "roles": [
            {"id": r.id, "name": r.name, "display_name": r.display_name,
             "color": r.color, "level": r.level}
            for r in sorted(u.roles, key=lambda r: -r.level)
        ],
        "employee_id": u.employee.id if u.employee else None,
    }


def _user_query():
    return select(User).options(selectinload(User.roles), selectinload(User.employee))


@router.get("", dependencies=[Depends(require_permission("users.view"))])
def list_users(
    search: str | None = None,
    is_active: bool | None = None,
    role_id: int | None = None,
    params: PageParams = Depends(),
    session: Session = Depends(get_session),
):
    stmt = _user_query().order_by(User.created_at.desc(), User.id.desc())
    if is_active is not None:
        stmt = stmt.where(User.is_active == is_active)
    if role_id is not None:
        stmt = stmt.where(User.id.in_(
            select(user_roles.c.user_id).where(user_roles.c.role_id == role_id)
        ))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(User.username.ilike(pattern), User.display_name.ilike(pattern)))
    return paginate(session, stmt, params, user_to_dict)


@router.get("/search", dependencies=[Depends(require_permission("users.view"))])
def search_users(
    q: str = Query("", min_length=0),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(get_session),
):
    """Lightweight lookup for pickers."""
    stmt = select(User).where(User.is_active.is_(True)).order_by(User.username).limit(limit)
    if q:
        stmt = stmt.where(or_(User.username.ilike(f"%{q}%"), User.display_name.ilike(f"%{q}%")))
    return [
        {"id": str(u.id), "username": u.username, "display_name": u.display_name, "avatar": u.avatar}
        for u in session.scalars(stmt).all()
    ]


@router.get("/{user_id}", dependencies=[Depends(require_permission("users.view"))])
def get_user(user_id: int, session: Session = Depends(get_session)):
    user = session.scalar(
        _user_query().where(User.id == user_id).options(
            selectinload(User.roles).selectinload(Role.permissions)
        )
    )
    if not user:
        raise HTTPException(404, "User not found")
    data = user_to_dict(user)
    data["permissions"] = sorted({p.name for r in user.roles for p in r.permissions})
    return data


@router.put("/{user_id}")
def update_user(
    user_id: int,
    body: UserUpdate,
    user: CurrentUser = Depends(require_permission("users.edit")),
    session: Session = Depends(get_session),
    engine=Depends(get_engine),
):
    target = session.get(User, user_id)
    if not target:
        raise HTTPException(404, "User not found")
    if body.display_name is not None:
        target.display_name = body.display_name.strip() or None
    if body.is_active is not None:
        target.is_active = body.is_active
    session.commit()

    if body.role_ids is not None:
        try:
            admin_service.set_user_roles(engine, user_id, body.role_ids, actor_id=user.id)
        except AdminError as exc:
            raise HTTPException(400, str(exc))

    permission_cache.invalidate(user_id)
    session.expire_all()
    return user_to_dict(session.scalar(_user_query().where(User.id == user_id)))


@router.delete("/{user_id}", status_code=204)
def delete_user(
    user_id: int,
    user: CurrentUser = Depends(require_permission("users.delete")),
    session: Session = Depends(get_session),
):
    """Deactivate the account; history stays attached to it."""
    target = session.get(User, user_id)
    if not target:
        raise HTTPException(404, "User not found")
    if target.id == user.id:
        raise HTTPException(400, "You cannot delete your own account")
    target.is_active = False
    session.commit()
    permission_cache.invalidate(user_id)


@router.get("/me/permissions")
def my_permissions(user: CurrentUser = Depends(get_current_user)):
    return user.to_dict()
