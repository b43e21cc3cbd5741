"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Domain routers exercised end to end through the TestClient against the
seeded SQLite database:

- Health and the public settings endpoint
- Rank, unit and termination workflows on employees
- Absence rules (length cap, one day off per week)
- Applications, blacklist and uprank requests
- Tuning reports, leadership tasks
- Admin and dashboard read-models
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import auth, make_employee, make_user
from precinct.database.models import (
    AdminLog,
    BlacklistEntry,
    BonusConfig,
    BonusPayment,
    Employee,
    EmployeeStatus,
    Notification,
    NotificationType,
    User,
)
from precinct.services.roster_service import build_rank_catalogue
from precinct.services.settings_service import save_rank_catalogue


@pytest.fixture
def ranks(db_engine):
    """Rank catalogue as the bot would have captured it."""
    save_rank_catalogue(db_engine, build_rank_catalogue([
        (101, "» 1 | Cadet"),
        (103, "» 3 | Officer"),
        (104, "» 4 | Senior Officer"),
        (117, "» 17 | Chief of Police"),
    ]))


@pytest.fixture
def officer(db_engine) -> int:
    """Employee id of a level-3 officer (user 20) with the default officer rights."""
    with Session(db_engine) as s:
        employee = make_employee(s, 20, "employees.view", "tuning.view", badge_number="PD-20")
        s.commit()
        return employee.id


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------
class TestPublic:
    def test_health(self, api):
        resp = api.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_bot_offline_without_heartbeat(self, api):
        assert api.get("/api/health/bot").json()["status"] == "offline"

    def test_public_settings_only(self, api):
        body = api.get("/api/settings").json()
        assert body["display.department_title"] == "Police Department"
        assert "absences.max_days" not in body
        assert "dispatch.external_api_key" not in body


# ---------------------------------------------------------------------------
# Employees
# ---------------------------------------------------------------------------
class TestEmployees:
    def test_list_and_filter_by_team(self, api, admin, officer):
        body = api.get("/api/employees", params={"team": "GREEN"}, headers=admin).json()
        assert [e["id"] for e in body["data"]] == [officer]
        assert body["data"][0]["team"] == "GREEN"

    def test_uprank_uses_catalogue(self, api, db_engine, admin, officer, ranks):
        resp = api.post(f"/api/employees/{officer}/uprank", headers=admin)
        assert resp.status_code == 200
        body = resp.json()
        assert (body["newRank"], body["newLevel"], body["teamChanged"]) == ("Senior Officer", 4, False)
        with Session(db_engine) as s:
            note = s.scalar(select(Notification).where(Notification.user_id == 20))
            assert note.type == NotificationType.PROMOTION

    def test_uprank_without_known_role_fails(self, api, admin, officer, ranks):
        assert api.post(f"/api/employees/{officer}/uprank", headers=admin).status_code == 200
        resp = api.post(f"/api/employees/{officer}/uprank", headers=admin)
        assert resp.status_code == 400
        assert "level 5" in resp.json()["detail"]

    def test_downrank_at_lowest_rank(self, api, db_engine, admin):
        with Session(db_engine) as s:
            cadet = make_employee(s, 21, rank="Cadet", rank_level=1).id
            s.commit()
        assert api.post(f"/api/employees/{cadet}/downrank", headers=admin).status_code == 400

    def test_rank_change_needs_permission(self, api, officer):
        assert api.post(f"/api/employees/{officer}/uprank", headers=auth(20)).status_code == 403

    def test_set_departments(self, api, db_engine, admin, officer):
        bad = api.put(f"/api/employees/{officer}/departments", json={"departments": ["Navy"]}, headers=admin)
        assert bad.status_code == 400

        resp = api.put(
            f"/api/employees/{officer}/departments",
            json={"departments": ["Detectives", "S.W.A.T.", "Detectives"]},
            headers=admin,
        )
        assert resp.json()["employee"]["departments"] == ["Detectives", "S.W.A.T."]
        with Session(db_engine) as s:
            assert s.scalar(
                select(Notification).where(Notification.type == NotificationType.UNIT_CHANGE)
            ) is not None

    def test_terminate(self, api, db_engine, admin, officer):
        me = api.get("/api/employees", headers=admin).json()["data"]
        own_id = next(e["id"] for e in me if e["user_id"] == "1")
        assert api.post(f"/api/employees/{own_id}/terminate", json={}, headers=admin).status_code == 400

        resp = api.post(f"/api/employees/{officer}/terminate", json={"reason": "AWOL"}, headers=admin)
        assert resp.json()["employee"]["status"] == EmployeeStatus.TERMINATED
        with Session(db_engine) as s:
            assert s.get(User, 20).is_active is False
        assert api.get("/api/employees", headers=auth(20)).status_code == 401

    def test_duplicate_badge_rejected(self, api, admin, officer):
        resp = api.put(f"/api/employees/{officer}", json={"badge_number": "PD-1"}, headers=admin)
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Absences
# ---------------------------------------------------------------------------
class TestAbsences:
    def _file(self, api, headers, kind="ABSENCE", days=1):
        start = date.today()
        return api.post("/api/absences", json={
            "type": kind,
            "reason": "Family",
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=days - 1)).isoformat(),
        }, headers=headers)

    def test_one_day_off_per_week(self, api, officer):
        assert self._file(api, auth(20), "DAY_OFF").status_code == 201
        second = self._file(api, auth(20), "DAY_OFF")
        assert second.status_code == 400
        assert "Monday" in second.json()["detail"]
        assert self._file(api, auth(20), "ABSENCE").status_code == 201

    def test_length_capped_by_setting(self, api, officer):
        assert self._file(api, auth(20), days=14).status_code == 201
        assert self._file(api, auth(20), days=15).status_code == 400

    def test_end_before_start(self, api, officer):
        resp = api.post("/api/absences", json={
            "start_date": "2026-10-20", "end_date": "2026-10-19",
        }, headers=auth(20))
        assert resp.status_code == 400

    def test_non_employee_cannot_file(self, api, db_engine):
        with Session(db_engine) as s:
            make_user(s, 30, "employees.view")
            s.commit()
        assert self._file(api, auth(30)).status_code == 400

    def test_only_owner_or_manager_deletes(self, api, db_engine, officer):
        absence_id = self._file(api, auth(20)).json()["id"]
        with Session(db_engine) as s:
            make_employee(s, 31, "employees.view")
            s.commit()
        assert api.delete(f"/api/absences/{absence_id}", headers=auth(31)).status_code == 403
        assert api.delete(f"/api/absences/{absence_id}", headers=auth(20)).status_code == 204


# ---------------------------------------------------------------------------
# Applications & blacklist
# ---------------------------------------------------------------------------
class TestApplications:
    def _apply(self, api, headers, discord_id="555000111", username="newbie"):
        return api.post("/api/applications", json={
            "discord_id": discord_id, "discord_username": username,
        }, headers=headers)

    def test_validation(self, api, admin):
        assert api.post("/api/applications", json={"discord_id": "1"}, headers=admin).status_code == 400
        assert self._apply(api, admin, discord_id="abc").status_code == 400
        assert self._apply(api, admin).status_code == 201
        assert self._apply(api, admin).status_code == 400

    def test_accept_hires_cadet(self, api, db_engine, admin):
        app_id = self._apply(api, admin).json()["id"]
        resp = api.put(f"/api/applications/{app_id}/accept", json={"interview_notes": "Good"}, headers=admin)
        assert resp.status_code == 200
        body = resp.json()
        assert body["application"]["status"] == "ACCEPTED"
        assert (body["employee"]["rank"], body["employee"]["rank_level"]) == ("Cadet", 1)
        assert body["employee"]["user_id"] == "555000111"
        assert api.put(f"/api/applications/{app_id}/accept", headers=admin).status_code == 400

    def test_onboarding_accrues_second_bonus(self, api, db_engine, admin):
        with Session(db_engine) as s:
            for activity in ("APPLICATION_COMPLETED", "APPLICATION_ONBOARDING"):
                s.scalar(select(BonusConfig).where(BonusConfig.activity_type == activity)).amount = 50
            s.commit()
        first = self._apply(api, admin).json()["id"]
        second = self._apply(api, admin, discord_id="555000222", username="other").json()["id"]
        api.put(f"/api/applications/{first}/accept", json={"onboarding_conducted": True}, headers=admin)
        api.put(f"/api/applications/{second}/accept", json={}, headers=admin)

        with Session(db_engine) as s:
            activities = s.scalars(
                select(BonusConfig.activity_type).join(BonusPayment).order_by(BonusPayment.id)
            ).all()
        assert activities == ["APPLICATION_COMPLETED", "APPLICATION_ONBOARDING", "APPLICATION_COMPLETED"]

    def test_reject_with_blacklist(self, api, db_engine, admin):
        app_id = self._apply(api, admin).json()["id"]
        assert api.put(f"/api/applications/{app_id}/reject", json={}, headers=admin).status_code == 400

        resp = api.put(f"/api/applications/{app_id}/reject", json={
            "rejection_reason": "Failed interview", "add_to_blacklist": True,
        }, headers=admin)
        assert resp.json()["status"] == "REJECTED"
        with Session(db_engine) as s:
            entry = s.scalar(select(BlacklistEntry).where(BlacklistEntry.discord_id == "555000111"))
            assert entry.reason == "Failed interview"

        check = api.get("/api/blacklist/check/555000111", headers=admin).json()
        assert check["blacklisted"] is True

        blocked = self._apply(api, admin)
        assert blocked.status_code == 400
        assert blocked.json()["detail"] == "BLACKLISTED"

    def test_expired_blacklist_entry_does_not_block(self, api, admin):
        resp = api.post("/api/blacklist", json={
            "discord_id": "555000111", "username": "newbie", "reason": "Old", "expires_at": "2020-01-01T00:00:00Z",
        }, headers=admin)
        assert resp.status_code == 201
        assert api.get("/api/blacklist/check/555000111", headers=admin).json() == {"blacklisted": False}
        assert self._apply(api, admin).status_code == 201
        assert api.get("/api/blacklist/stats", headers=admin).json()["expired"] == 1


# ---------------------------------------------------------------------------
# Uprank requests
# ---------------------------------------------------------------------------
class TestUprankRequests:
    def _request(self, api, headers, employee_id, target="Senior Officer"):
        return api.post("/api/uprank-requests", json={
            "employee_id": employee_id, "target_rank": target, "reason": "Solid month",
        }, headers=headers)

    def test_approve_promotes_to_target(self, api, db_engine, admin, officer, ranks):
        request_id = self._request(api, admin, officer).json()["id"]
        assert self._request(api, admin, officer).status_code == 400

        resp = api.put(f"/api/uprank-requests/{request_id}/process", json={"status": "APPROVED"}, headers=admin)
        assert resp.status_code == 200
        assert resp.json()["status"] == "APPROVED"
        with Session(db_engine) as s:
            employee = s.get(Employee, officer)
            assert (employee.rank, employee.rank_level) == ("Senior Officer", 4)

    def test_reject_requires_reason(self, api, admin, officer):
        request_id = self._request(api, admin, officer).json()["id"]
        url = f"/api/uprank-requests/{request_id}/process"
        assert api.put(url, json={"status": "REJECTED"}, headers=admin).status_code == 400
        assert api.put(url, json={"status": "MAYBE"}, headers=admin).status_code == 400
        resp = api.put(url, json={"status": "REJECTED", "rejection_reason": "Not yet"}, headers=admin)
        assert resp.json()["rejection_reason"] == "Not yet"
        assert api.delete(f"/api/uprank-requests/{request_id}", headers=admin).status_code == 400

    def test_only_creator_deletes(self, api, db_engine, admin, officer):
        with Session(db_engine) as s:
            make_user(s, 40, "teamlead.view", "teamlead.manage")
            make_user(s, 41, "teamlead.view", "teamlead.manage")
            s.commit()
        request_id = self._request(api, auth(40), officer).json()["id"]
        assert api.delete(f"/api/uprank-requests/{request_id}", headers=auth(41)).status_code == 403
        assert api.delete(f"/api/uprank-requests/{request_id}", headers=auth(40)).status_code == 204


# ---------------------------------------------------------------------------
# Tuning & tasks
# ---------------------------------------------------------------------------
class TestTuning:
    def test_report_lifecycle(self, api, db_engine, admin, officer):
        assert api.post("/api/tuning", json={"vehicle": "Sultan"}, headers=auth(20)).status_code == 400
        resp = api.post("/api/tuning", json={
            "vehicle": "Sultan RS", "plate": "ab 123", "violation": "Illegal neon",
        }, headers=auth(20))
        assert resp.status_code == 201
        report = resp.json()
        assert report["plate"] == "AB 123"

        assert api.put(f"/api/tuning/{report['id']}/complete", headers=auth(20)).status_code == 403
        done = api.put(f"/api/tuning/{report['id']}/complete", headers=admin)
        assert done.json()["status"] == "COMPLETED"
        assert api.put(f"/api/tuning/{report['id']}/complete", headers=admin).status_code == 400
        with Session(db_engine) as s:
            note = s.scalar(select(Notification).where(Notification.user_id == 20))
            assert note.type == NotificationType.TUNING

    def test_reporter_deletes_own_only(self, api, db_engine, officer):
        with Session(db_engine) as s:
            make_user(s, 50, "tuning.view")
            s.commit()
        report_id = api.post("/api/tuning", json={"vehicle": "x", "violation": "y"}, headers=auth(20)).json()["id"]
        assert api.delete(f"/api/tuning/{report_id}", headers=auth(50)).status_code == 403
        assert api.delete(f"/api/tuning/{report_id}", headers=auth(20)).status_code == 204


class TestTasks:
    def test_status_transitions(self, api, admin):
        assert api.post("/api/tasks", json={}, headers=admin).status_code == 400
        task = api.post("/api/tasks", json={"title": "Plan patrol", "assignee_id": 1}, headers=admin).json()
        assert task["status"] == "OPEN"
        assert task["assignee"]["id"] == "1"

        url = f"/api/tasks/{task['id']}/status"
        assert api.put(url, json={"status": "WHENEVER"}, headers=admin).status_code == 400
        done = api.put(url, json={"status": "DONE"}, headers=admin).json()
        assert done["completed_at"] is not None
        reopened = api.put(url, json={"status": "IN_PROGRESS"}, headers=admin).json()
        assert reopened["completed_at"] is None

    def test_unknown_assignee(self, api, admin):
        assert api.post("/api/tasks", json={"title": "x", "assignee_id": 999}, headers=admin).status_code == 404


# ---------------------------------------------------------------------------
# Admin & dashboard
# ---------------------------------------------------------------------------
class TestAdmin:
    def test_stats(self, api, admin, officer):
        body = api.get("/api/admin/stats", headers=admin).json()
        assert body["users"] == 2
        assert body["employees"] == 2
        assert body["onlineUsers"] == 0

    def test_guild_info(self, api, admin, ranks):
        body = api.get("/api/admin/guild", headers=admin).json()
        assert body["guild_id"] == "1234"
        assert body["department_name"] == "Test PD"
        assert [r["level"] for r in body["ranks"]] == [1, 3, 4, 17]
        assert body["bot"]["status"] == "offline"

    def test_roster_sync_not_queued_without_postgres(self, api, admin):
        assert api.post("/api/admin/roster/sync", headers=admin).json() == {"success": True, "queued": False}

    def test_settings_update_logged(self, api, db_engine, admin):
        resp = api.put("/api/admin/settings", json=[{"key": "absences.max_days", "value": 7}], headers=admin)
        assert resp.json() == {"updated": 1}
        settings = {s["key"]: s["value"] for s in api.get("/api/admin/settings", headers=admin).json()["settings"]}
        assert settings["absences.max_days"] == 7
        with Session(db_engine) as s:
            assert s.scalar(select(AdminLog).where(AdminLog.target_id == "absences.max_days")) is not None

    def test_log_level(self, api, admin):
        assert api.put("/api/admin/logs/level", json={"level": "LOUD"}, headers=admin).status_code == 400
        assert api.put("/api/admin/logs/level", json={"level": "debug"}, headers=admin).json() == {"level": "DEBUG"}
        body = api.get("/api/admin/logs", params={"tail": 5}, headers=admin).json()
        assert body["capture_level"] == "DEBUG"
        assert len(body["entries"]) <= 5
        api.put("/api/admin/logs/level", json={"level": "INFO"}, headers=admin)

    def test_roles_crud(self, api, admin):
        assert api.post("/api/admin/roles", json={"name": "hr"}, headers=admin).status_code == 400
        role = api.post("/api/admin/roles", json={
            "name": "hr", "display_name": "Human Resources", "permissions": ["hr.view", "hr.manage"],
        }, headers=admin).json()
        assert set(role["permissions"]) == {"hr.view", "hr.manage"}
        assert api.delete(f"/api/admin/roles/{role['id']}", headers=admin).status_code == 204
        assert api.delete(f"/api/admin/roles/{role['id']}", headers=admin).status_code == 404

    def test_non_admin_forbidden(self, api, officer):
        assert api.get("/api/admin/stats", headers=auth(20)).status_code == 403


class TestDashboard:
    def test_stats(self, api, admin, officer):
        body = api.get("/api/dashboard/stats", headers=auth(20)).json()
        assert body["employees"]["active"] == 2
        assert {t["team"]: t["count"] for t in body["teams"]} == {"GREEN": 1, "WHITE": 1}
        assert body["ranks"][0] == {"rank": "Chief", "level": 17, "count": 1}

    def test_my_overview(self, api, db_engine, officer):
        body = api.get("/api/dashboard/my-overview", headers=auth(20)).json()
        assert body["employee"]["badge_number"] == "PD-20"
        assert body["bonusThisWeek"]["amount"] == 0
        assert body["unreadNotifications"] == 0

        with Session(db_engine) as s:
            make_user(s, 60)
            s.commit()
        assert api.get("/api/dashboard/my-overview", headers=auth(60)).json() == {
            "employee": None, "unreadNotifications": 0,
        }

    def test_online_users_empty(self, api, officer):
        assert api.get("/api/dashboard/online-users", headers=auth(20)).json() == []
