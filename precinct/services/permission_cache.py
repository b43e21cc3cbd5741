"""
precinct.services.permission_cache — Principal Cache
=====================================================

Resolving a user's roles and permissions costs three joins, and every
authenticated request needs it.  Resolved principals are held in memory
for :data:`TTL_SECONDS` per user id; role or user edits call
:func:`invalidate` so changes apply on the next request.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from precinct.constants import ADMIN_PERMISSION
from precinct.database.models import Employee, Role, User

TTL_SECONDS = 30.0


@dataclass(frozen=True)
class CurrentUser:
    """The authenticated caller as seen by route handlers."""
    id: int
    username: str
    display_name: str | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)
    max_level: int = 0
    employee_id: int | None = None

    @property
    def is_admin(self) -> bool:
        return ADMIN_PERMISSION in self.permissions

    def has_permission(self, *names: str) -> bool:
        return self.is_admin or any(n in self.permissions for n in names)

    def has_role(self, *names: str) -> bool:
        return self.is_admin or any(n in self.roles for n in names)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "username": self.username,
            "display_name": self.display_name,
            "roles": sorted(self.roles),
            "permissions": sorted(self.permissions),
            "max_level": self.max_level,
            "employee_id": self.employee_id,
        }


class PermissionCache:
    """Thread-safe TTL map of user id → :class:`CurrentUser`."""

    def __init__(self, ttl: float = TTL_SECONDS) -> None:
        self._ttl = ttl
        self._entries: dict[int, tuple[float, CurrentUser]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: int) -> CurrentUser | None:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            stored_at, principal = entry
            if time.monotonic() - stored_at > self._ttl:
                del self._entries[user_id]
                return None
            return principal

    def put(self, principal: CurrentUser) -> None:
        with self._lock:
            self._entries[principal.id] = (time.monotonic(), principal)

    def invalidate(self, user_id: int | None = None) -> None:
        """Drop one user, or everyone when *user_id* is ``None``."""
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def load_principal(session: Session, user_id: int) -> CurrentUser | None:
    """Build a :class:`CurrentUser` from the DB; ``None`` if missing or inactive."""
    user = session.scalar(
        select(User)
        .where(User.id == user_id)
        .options(selectinload(User.roles).selectinload(Role.permissions))
    )
    if user is None or not user.is_active:
        return None
    permissions = {p.name for r in user.roles for p in r.permissions}
    employee_id = session.scalar(select(Employee.id).where(Employee.user_id == user.id))
    return CurrentUser(
        id=user.id,
        username=user.username,
        display_name=user.display_name,
        roles=frozenset(r.name for r in user.roles),
        permissions=frozenset(permissions),
        max_level=max((r.level for r in user.roles), default=0),
        employee_id=employee_id,
    )


# Process-wide cache
cache = PermissionCache()


def get_principal(session: Session, user_id: int) -> CurrentUser | None:
    principal = cache.get(user_id)
    if principal is not None:
        return principal
    principal = load_principal(session, user_id)
    if principal is not None:
        cache.put(principal)
    return principal


def invalidate(user_id: int | None = None) -> None:
    cache.invalidate(user_id)
