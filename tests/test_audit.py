"""
tests/test_audit.py — HTTP Audit Trail
=======================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import auth, make_user
from precinct.database.models import AuditLog
from precinct.services.audit_service import REDACTED, parse_entity, redact


class TestRedact:
    def test_nested_sensitive_keys(self):
        body = {
            "name": "Jane",
            "Password": "hunter2",
            "profile": {"api_token": "abc", "bio": "hi"},
            "items": [{"client_secret": "s"}, {"value": 1}],
        }
        assert redact(body) == {
            "name": "Jane",
            "Password": REDACTED,
            "profile": {"api_token": REDACTED, "bio": "hi"},
            "items": [{"client_secret": REDACTED}, {"value": 1}],
        }

    def test_scalars_pass_through(self):
        assert redact("token") == "token"
        assert redact(None) is None


@pytest.mark.parametrize("path, expected", [
    ("/api/employees/12/uprank", ("employees", "12")),
    ("/api/notes", ("notes", None)),
    ("/api/", ("unknown", None)),
    ("/other/5", ("other", "5")),
])
def test_parse_entity(path, expected):
    assert parse_entity(path) == expected


class TestAuditMiddleware:
    @pytest.fixture
    def writer(self, db_engine):
        with Session(db_engine) as s:
            make_user(s, 3, "leadership.view", "leadership.manage")
            s.commit()
        return auth(3)

    def _logs(self, db_engine) -> list[AuditLog]:
        with Session(db_engine) as s:
            return list(s.scalars(select(AuditLog).order_by(AuditLog.id)).all())

    def test_successful_mutation_is_recorded(self, api, db_engine, writer):
        resp = api.post(
            "/api/notes",
            json={"title": "Roster", "content": "Check it", "password": "nope"},
            headers=writer,
        )
        assert resp.status_code == 201
        note_id = resp.json()["id"]

        (row,) = self._logs(db_engine)
        assert row.user_id == 3
        assert row.action == "POST /api/notes"
        assert row.entity == "notes"
        assert row.entity_id == str(note_id)
        assert row.details["password"] == REDACTED
        assert row.details["title"] == "Roster"

    def test_failed_mutation_is_not_recorded(self, api, db_engine, writer):
        assert api.post("/api/notes", json={"title": ""}, headers=writer).status_code == 400
        assert self._logs(db_engine) == []

    def test_reads_and_anonymous_calls_are_not_recorded(self, api, db_engine, writer):
        api.get("/api/notes", headers=writer)
        api.post("/api/notes", json={"title": "x", "content": "y"})
        assert self._logs(db_engine) == []

    def test_audit_log_endpoint(self, api, db_engine, writer):
        api.post("/api/notes", json={"title": "a", "content": "b"}, headers=writer)
        with Session(db_engine) as s:
            make_user(s, 4, "audit.view")
            s.commit()
        body = api.get("/api/admin/audit-logs", params={"entity": "notes"}, headers=auth(4)).json()
        assert body["total"] == 1
        assert body["data"][0]["action"] == "POST /api/notes"
