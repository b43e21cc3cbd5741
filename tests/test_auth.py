"""
tests/test_auth.py — OAuth Login Flow
======================================

Discord HTTP calls are never made here: the callback is only exercised up
to the state check, and the user upsert is tested directly.
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.orm import Session

from conftest import auth, make_employee
from precinct.api.auth import _consume_oauth_state, avatar_url, upsert_login_user
from precinct.database.models import Role, User


@pytest.fixture
def oauth_env(monkeypatch):
    monkeypatch.setenv("DISCORD_CLIENT_ID", "client-1")
    monkeypatch.setenv("DISCORD_CLIENT_SECRET", "shh")
    monkeypatch.setenv("DISCORD_REDIRECT_URI", "http://localhost:8000/api/auth/callback")
    monkeypatch.setenv("FRONTEND_URL", "http://localhost:5173/")


class TestAuthorizeUrl:
    def test_missing_env_is_500(self, api, monkeypatch):
        for name in ("DISCORD_CLIENT_ID", "DISCORD_CLIENT_SECRET", "DISCORD_REDIRECT_URI", "FRONTEND_URL"):
            monkeypatch.delenv(name, raising=False)
        resp = api.get("/api/auth/url")
        assert resp.status_code == 500
        assert "DISCORD_CLIENT_ID" in resp.json()["detail"]

    def test_state_is_single_use(self, api, db_engine, oauth_env):
        url = api.get("/api/auth/url").json()["url"]
        query = parse_qs(urlparse(url).query)
        assert query["client_id"] == ["client-1"]
        assert query["scope"] == ["identify guilds.members.read"]

        state = query["state"][0]
        assert _consume_oauth_state(db_engine, state) is True
        assert _consume_oauth_state(db_engine, state) is False

    def test_login_redirects(self, api, oauth_env):
        resp = api.get("/api/auth/login", follow_redirects=False)
        assert resp.status_code == 307
        assert resp.headers["location"].startswith("https://discord.com/oauth2/authorize?")

    def test_callback_rejects_unknown_state(self, api, oauth_env):
        resp = api.get("/api/auth/callback", params={"code": "abc", "state": "forged"})
        assert resp.status_code == 400


class TestUpsertLoginUser:
    def test_first_login_inherits_mapped_roles(self, db_engine):
        with Session(db_engine) as s:
            s.add(Role(name="patrol", display_name="Patrol", level=3, discord_role_id="900"))
            s.commit()

        user_info = {"id": "4242", "username": "jdoe", "global_name": "John", "avatar": "abc"}
        member = {"nick": "[PD-12] John Doe", "roles": ["900", "901"]}
        assert upsert_login_user(db_engine, user_info, member) == (4242, "jdoe")

        with Session(db_engine) as s:
            user = s.get(User, 4242)
            assert user.display_name == "[PD-12] John Doe"
            assert user.avatar == "https://cdn.discordapp.com/avatars/4242/abc.png"
            assert [r.name for r in user.roles] == ["patrol"]
            assert user.last_login is not None

    def test_existing_roles_are_kept(self, db_engine):
        with Session(db_engine) as s:
            s.add(Role(name="patrol", display_name="Patrol", level=3, discord_role_id="900"))
            make_employee(s, 77, "employees.view")
            s.commit()

        upsert_login_user(db_engine, {"id": "77", "username": "renamed"}, {"roles": ["900"]})
        with Session(db_engine) as s:
            user = s.get(User, 77)
            assert user.username == "renamed"
            assert [r.name for r in user.roles] == ["role-77"]

    def test_avatar_url_without_hash(self):
        assert avatar_url("1", None) is None


class TestSession:
    def test_me_includes_employee_and_permissions(self, api, admin):
        body = api.get("/api/auth/me", headers=admin).json()
        assert body["id"] == "1"
        assert body["permissions"] == ["admin.full"]
        assert body["employee"]["badge_number"] == "PD-1"

    def test_me_requires_token(self, api):
        assert api.get("/api/auth/me").status_code == 401

    def test_logout_clears_cookie(self, api, admin):
        resp = api.post("/api/auth/logout", headers=admin)
        assert resp.json() == {"success": True}
        assert "token=" in resp.headers["set-cookie"]

    def test_cookie_token_accepted(self, api, admin):
        token = admin["Authorization"].split()[1]
        api.cookies.set("token", token)
        assert api.get("/api/auth/me").status_code == 200
        api.cookies.clear()
        assert api.get("/api/auth/me", headers=auth(999)).status_code == 401
