"""
tests/test_uprank_locks.py — Promotion Holds
=============================================

Holds created by team changes, manual holds, and the places that honour
them (direct upranks and uprank requests).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import auth, make_employee, make_user
from precinct.constants import as_utc
from precinct.database.models import UprankLock
from precinct.services import uprank_lock_service
from precinct.services.roster_service import build_rank_catalogue
from precinct.services.settings_service import save_rank_catalogue


@pytest.fixture
def ranks(db_engine):
    save_rank_catalogue(db_engine, build_rank_catalogue([
        (104, "» 4 | Senior Officer"),
        (105, "» 5 | Sergeant"),
        (106, "» 6 | Staff Sergeant"),
        (107, "» 7 | Lieutenant"),
    ]))


@pytest.fixture
def sergeant(db_engine) -> int:
    """Level-5 employee (top of team GREEN)."""
    with Session(db_engine) as s:
        employee = make_employee(s, 50, rank="Sergeant", rank_level=5, badge_number="PD-50")
        s.commit()
        return employee.id


def _in_future(days: int) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).isoformat()


class TestTeamChangeHold:
    def test_promotion_into_silver_holds_two_weeks(self, api, db_engine, admin, ranks, sergeant):
        resp = api.post(f"/api/employees/{sergeant}/uprank", headers=admin)
        assert resp.status_code == 200
        assert resp.json()["teamChanged"] is True

        status = api.get(f"/api/uprank-locks/employee/{sergeant}", headers=admin).json()
        assert status["locked"] is True
        assert status["lock"]["team"] == "SILVER"
        with Session(db_engine) as s:
            lock = s.scalar(select(UprankLock).where(UprankLock.employee_id == sergeant))
            held_for = as_utc(lock.locked_until) - datetime.now(UTC)
        assert timedelta(days=13) < held_for <= timedelta(days=14)

        blocked = api.post(f"/api/employees/{sergeant}/uprank", headers=admin)
        assert blocked.status_code == 400
        assert "held from promotion" in blocked.json()["detail"]
        assert api.post(f"/api/employees/{sergeant}/downrank", headers=admin).status_code == 200

    def test_promotion_within_team_sets_no_hold(self, api, db_engine, admin, ranks):
        with Session(db_engine) as s:
            employee_id = make_employee(s, 51, rank="Senior Officer", rank_level=4).id
            s.commit()
        assert api.post(f"/api/employees/{employee_id}/uprank", headers=admin).status_code == 200
        assert api.get(f"/api/uprank-locks/employee/{employee_id}", headers=admin).json() == {"locked": False}

    def test_hold_blocks_requests_until_revoked(self, api, admin, ranks, sergeant):
        api.post(f"/api/employees/{sergeant}/uprank", headers=admin)
        request = {"employee_id": sergeant, "target_rank": "Lieutenant", "reason": "Great work"}
        refused = api.post("/api/uprank-requests", json=request, headers=admin)
        assert refused.status_code == 400
        assert "held from promotion" in refused.json()["detail"]

        lock_id = api.get("/api/uprank-locks", headers=admin).json()[0]["id"]
        revoked = api.put(f"/api/uprank-locks/{lock_id}/revoke", headers=admin)
        assert revoked.json()["is_active"] is False
        assert api.post("/api/uprank-requests", json=request, headers=admin).status_code == 201

    def test_approval_rechecks_hold(self, api, admin, ranks, sergeant):
        request_id = api.post("/api/uprank-requests", json={
            "employee_id": sergeant, "target_rank": "Lieutenant", "reason": "Great work",
        }, headers=admin).json()["id"]
        api.post("/api/uprank-locks", json={
            "employee_id": sergeant, "reason": "Pending IA case", "locked_until": _in_future(3),
        }, headers=admin)
        resp = api.put(f"/api/uprank-requests/{request_id}/process", json={"status": "APPROVED"}, headers=admin)
        assert resp.status_code == 400
        assert "Pending IA case" in resp.json()["detail"]


class TestLockRoutes:
    def test_auto_lock_by_team(self, api, admin, sergeant):
        created = api.post("/api/uprank-locks/auto", json={"employee_id": sergeant, "team": "Team Gold"}, headers=admin)
        assert created.status_code == 201
        assert created.json()["lock"]["reason"] == "Joined team GOLD (4 weeks hold)"

        skipped = api.post("/api/uprank-locks/auto", json={"employee_id": sergeant, "team": "RED"}, headers=admin)
        assert skipped.status_code == 200
        assert skipped.json()["created"] is False

    def test_manual_lock_validation(self, api, admin, sergeant):
        assert api.post("/api/uprank-locks", json={"employee_id": sergeant}, headers=admin).status_code == 400
        past = api.post("/api/uprank-locks", json={
            "employee_id": sergeant, "reason": "x", "locked_until": "2020-01-01T00:00:00Z",
        }, headers=admin)
        assert past.status_code == 400
        missing = api.post("/api/uprank-locks", json={
            "employee_id": 9999, "reason": "x", "locked_until": _in_future(1),
        }, headers=admin)
        assert missing.status_code == 404

    def test_new_lock_replaces_previous(self, api, admin, sergeant):
        api.post("/api/uprank-locks/auto", json={"employee_id": sergeant, "team": "GREEN"}, headers=admin)
        manual = api.post("/api/uprank-locks", json={
            "employee_id": sergeant, "reason": "Probation", "locked_until": _in_future(30),
        }, headers=admin).json()
        assert manual["team"] == "MANUAL"

        active = api.get("/api/uprank-locks", headers=admin).json()
        assert [lock["id"] for lock in active] == [manual["id"]]
        assert api.get("/api/uprank-locks/stats", headers=admin).json() == {"total": 2, "active": 1, "expired": 1}

    def test_permissions(self, api, db_engine, admin, sergeant):
        with Session(db_engine) as s:
            make_user(s, 60, "management.view")
            make_user(s, 61, "calendar.view")
            s.commit()
        assert api.get("/api/uprank-locks", headers=auth(60)).status_code == 200
        assert api.post("/api/uprank-locks/auto", json={"employee_id": sergeant, "team": "GOLD"},
                        headers=auth(60)).status_code == 403
        assert api.get("/api/uprank-locks", headers=auth(61)).status_code == 403
        # Anyone signed in may check a single employee.
        assert api.get(f"/api/uprank-locks/employee/{sergeant}", headers=auth(61)).status_code == 200


class TestLockService:
    def test_expired_hold_does_not_block(self, db_session):
        employee = make_employee(db_session, 70)
        make_user(db_session, 71)
        uprank_lock_service.place_lock(
            db_session, employee, reason="Old", team="MANUAL",
            locked_until=datetime.now(UTC) - timedelta(hours=1), created_by_id=71,
        )
        assert uprank_lock_service.active_lock(db_session, employee.id) is None
        uprank_lock_service.ensure_not_locked(db_session, employee.id)

    def test_teams_without_hold(self, db_session):
        employee = make_employee(db_session, 72)
        assert uprank_lock_service.lock_for_team(db_session, employee, "RED", 72) is None
        assert uprank_lock_service.lock_for_team(db_session, employee, None, 72) is None

    def test_single_week_wording(self, db_session):
        employee = make_employee(db_session, 73)
        now = datetime(2026, 10, 19, 12, tzinfo=UTC)
        lock = uprank_lock_service.lock_for_team(db_session, employee, "GREEN", 73, now=now)
        assert lock.reason == "Joined team GREEN (1 week hold)"
        assert as_utc(lock.locked_until) == now + timedelta(weeks=1)
