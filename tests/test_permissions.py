"""
tests/test_permissions.py — Principal Resolution & Permission Gates
=====================================================================

Covers the 30-second principal cache, ``admin.full`` bypass and the
401/403 behaviour of the route gates.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi import Depends, FastAPI, HTTPException
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from conftest import auth, make_employee, make_user
from precinct.api.deps import get_engine, require_min_level, require_role
from precinct.database.models import User
from precinct.services import permission_cache
from precinct.services.permission_cache import CurrentUser, PermissionCache, get_principal, load_principal


class TestCurrentUser:
    def test_admin_bypasses_every_permission(self):
        user = CurrentUser(id=1, username="a", permissions=frozenset({"admin.full"}))
        assert user.is_admin
        assert user.has_permission("anything.at.all")
        assert user.has_role("whatever")

    def test_any_of_names_is_enough(self):
        user = CurrentUser(id=1, username="a", permissions=frozenset({"sanctions.view"}))
        assert user.has_permission("sanctions.manage", "sanctions.view")
        assert not user.has_permission("sanctions.manage")
        assert not user.is_admin

    def test_to_dict_stringifies_snowflake(self):
        user = CurrentUser(id=123456789012345678, username="a", permissions=frozenset({"b", "a"}))
        data = user.to_dict()
        assert data["id"] == "123456789012345678"
        assert data["permissions"] == ["a", "b"]


class TestRoleAndLevelGates:
    def _user(self, *, roles=(), level=0, admin=False):
        return CurrentUser(
            id=1, username="a", roles=frozenset(roles), max_level=level,
            permissions=frozenset({"admin.full"} if admin else ()),
        )

    def test_role_gate_accepts_any_listed_role(self):
        gate = require_role("leadership", "hr-lead")
        user = self._user(roles={"officer", "hr-lead"})
        assert gate(user=user) is user

    def test_role_gate_denies_other_roles(self):
        with pytest.raises(HTTPException) as exc:
            require_role("leadership")(user=self._user(roles={"officer"}))
        assert exc.value.status_code == 403
        assert exc.value.detail == "Insufficient role"

    def test_level_gate_boundary(self):
        gate = require_min_level(12)
        assert gate(user=self._user(level=12)).max_level == 12
        with pytest.raises(HTTPException) as exc:
            gate(user=self._user(level=11))
        assert exc.value.status_code == 403
        assert exc.value.detail == "Insufficient rank level"

    def test_admin_bypasses_role_and_level(self):
        admin = self._user(admin=True)
        assert require_role("leadership")(user=admin) is admin
        assert require_min_level(100)(user=admin) is admin

    def test_level_from_roles_over_http(self, db_engine):
        app = FastAPI()
        app.dependency_overrides[get_engine] = lambda: db_engine

        @app.get("/command-staff", dependencies=[Depends(require_min_level(16))])
        def command_staff():
            return {"ok": True}

        @app.get("/leadership", dependencies=[Depends(require_role("role-31"))])
        def leadership():
            return {"ok": True}

        with Session(db_engine) as s:
            make_user(s, 30, "calendar.view", level=16)
            make_user(s, 31, "calendar.view", level=15)
            s.commit()
        client = TestClient(app)
        assert client.get("/command-staff", headers=auth(30)).status_code == 200
        assert client.get("/command-staff", headers=auth(31)).status_code == 403
        assert client.get("/leadership", headers=auth(31)).status_code == 200
        assert client.get("/leadership", headers=auth(30)).status_code == 403
        assert client.get("/command-staff").status_code == 401


class TestPermissionCache:
    def test_entries_expire_after_ttl(self):
        cache = PermissionCache(ttl=30)
        principal = CurrentUser(id=7, username="x")
        with patch("precinct.services.permission_cache.time.monotonic", return_value=100.0):
            cache.put(principal)
        with patch("precinct.services.permission_cache.time.monotonic", return_value=129.0):
            assert cache.get(7) is principal
        with patch("precinct.services.permission_cache.time.monotonic", return_value=131.0):
            assert cache.get(7) is None
        assert len(cache) == 0

    def test_invalidate_one_or_all(self):
        cache = PermissionCache()
        cache.put(CurrentUser(id=1, username="a"))
        cache.put(CurrentUser(id=2, username="b"))
        cache.invalidate(1)
        assert cache.get(1) is None
        assert cache.get(2) is not None
        cache.invalidate()
        assert len(cache) == 0


class TestLoadPrincipal:
    def test_collects_roles_permissions_and_employee(self, db_session: Session):
        employee = make_employee(db_session, 10, "employees.view", "sanctions.view")
        principal = load_principal(db_session, 10)
        assert principal is not None
        assert principal.permissions == {"employees.view", "sanctions.view"}
        assert principal.roles == {"role-10"}
        assert principal.employee_id == employee.id

    def test_inactive_or_missing_user_is_none(self, db_session: Session):
        make_user(db_session, 11, "employees.view", active=False)
        assert load_principal(db_session, 11) is None
        assert load_principal(db_session, 999) is None

    def test_get_principal_serves_from_cache_until_invalidated(self, db_session: Session):
        make_user(db_session, 12, "employees.view")
        first = get_principal(db_session, 12)

        db_session.get(User, 12).is_active = False
        db_session.flush()
        assert get_principal(db_session, 12) is first

        permission_cache.invalidate(12)
        assert get_principal(db_session, 12) is None


class TestRouteGates:
    def test_missing_token_is_401(self, api):
        assert api.get("/api/employees").status_code == 401

    def test_garbage_token_is_401(self, api):
        resp = api.get("/api/employees", headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    def test_unknown_user_is_401(self, api):
        assert api.get("/api/employees", headers=auth(424242)).status_code == 401

    def test_token_cookie_is_accepted(self, api, db_engine):
        from precinct.api.deps import create_token

        with Session(db_engine) as s:
            make_user(s, 20, "employees.view")
            s.commit()
        api.cookies.set("token", create_token(20, "cookie"))
        assert api.get("/api/employees").status_code == 200

    @pytest.mark.parametrize("endpoint", [
        "/api/employees",
        "/api/sanctions",
        "/api/treasury",
        "/api/admin/roles",
        "/api/admin/audit-logs",
        "/api/bonus/payments",
    ])
    def test_user_without_permissions_is_403(self, api, db_engine, endpoint):
        with Session(db_engine) as s:
            make_user(s, 21)
            s.commit()
        assert api.get(endpoint, headers=auth(21)).status_code == 403

    def test_admin_passes_every_gate(self, api, admin):
        for endpoint in ("/api/employees", "/api/sanctions", "/api/admin/roles", "/api/bonus/payments"):
            assert api.get(endpoint, headers=admin).status_code == 200, endpoint

    def test_me_permissions(self, api, db_engine):
        with Session(db_engine) as s:
            make_user(s, 22, "calendar.view")
            s.commit()
        resp = api.get("/api/users/me/permissions", headers=auth(22))
        assert resp.status_code == 200
        assert "calendar.view" in str(resp.json())
