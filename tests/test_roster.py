"""
tests/test_roster.py — Guild Roster Synchronisation
=====================================================

Parsing of rank / unit roles and badge tags, and the upsert rules of
:func:`sync_roster` against a SQLite database.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from precinct.database.models import Employee, EmployeeStatus, User
from precinct.services.roster_service import (
    MemberSnapshot,
    build_rank_catalogue,
    departments_for,
    highest_rank,
    mark_user_inactive,
    parse_badge,
    parse_rank,
    sync_roster,
    unit_role_changes,
)


def _member(member_id: int, *roles: str, name: str | None = None, bot: bool = False) -> MemberSnapshot:
    return MemberSnapshot(
        id=member_id,
        username=f"member{member_id}",
        display_name=name,
        avatar=None,
        role_names=list(roles),
        bot=bot,
    )


class TestParsing:
    @pytest.mark.parametrize("role, expected", [
        ("» 5 | Sergeant", (5, "Sergeant")),
        ("»17|Chief of Police", (17, "Chief of Police")),
        ("» 1 |  Cadet ", (1, "Cadet")),
    ])
    def test_parse_rank(self, role, expected):
        assert parse_rank(role) == expected

    @pytest.mark.parametrize("role", ["» 0 | Nobody", "» 18 | Too High", "Sergeant", "» Detectives", "5 | Sergeant"])
    def test_parse_rank_rejects(self, role):
        assert parse_rank(role) is None

    def test_highest_rank_wins(self):
        roles = ["@everyone", "» 3 | Officer", "» 12 | Captain", "» Detectives"]
        assert highest_rank(roles) == (12, "Captain")
        assert highest_rank(["@everyone"]) is None

    def test_departments_union_in_first_seen_order(self):
        roles = ["» Detective Member", "» S.W.A.T. Officer", "» Detectives", "» Special Weapons and Tactics"]
        assert departments_for(roles) == ["Detectives", "S.W.A.T."]

    def test_departments_default_to_patrol(self):
        assert departments_for(["» 3 | Officer"]) == ["Patrol"]

    @pytest.mark.parametrize("display_name, badge", [
        ("[PD-104] John Doe", "PD-104"),
        ("John [SWAT-7]", "SWAT-7"),
        ("John Doe", None),
        ("[pd-104] lower", None),
        (None, None),
    ])
    def test_parse_badge(self, display_name, badge):
        assert parse_badge(display_name) == badge

    def test_build_rank_catalogue_keeps_first_role_per_level(self):
        catalogue = build_rank_catalogue([
            (101, "» 1 | Cadet"),
            (102, "» 2 | Officer"),
            (103, "» Detectives"),
            (104, "» 2 | Officer (old)"),
        ])
        assert set(catalogue.ranks) == {1, 2}
        assert catalogue.ranks[2].role_id == 102
        assert catalogue.name_for(1) == "Cadet"
        assert catalogue.level_for("officer") == 2


class TestUnitRoleChanges:
    def test_adds_primary_role_for_new_department(self):
        add, remove = unit_role_changes(["» 3 | Officer"], ["Detectives"])
        assert add == ["» Detectives"]
        assert remove == []

    def test_removes_roles_of_dropped_departments(self):
        current = ["» S.W.A.T. Officer", "» Detective Member"]
        add, remove = unit_role_changes(current, ["Detectives"])
        assert add == []
        assert remove == ["» S.W.A.T. Officer"]

    def test_empty_departments_clear_all_units(self):
        add, remove = unit_role_changes(["» Internal Affairs", "» 4 | Officer"], [])
        assert add == []
        assert remove == ["» Internal Affairs"]


class TestSyncRoster:
    def test_creates_users_and_employees(self, db_engine):
        result = sync_roster(db_engine, [
            _member(1, "» 5 | Sergeant", "» Detectives", name="[PD-5] Sarge"),
            _member(2, "» 1 | Cadet"),
        ])
        assert (result.created, result.updated, result.total) == (2, 0, 2)
        assert result.errors == []

        with Session(db_engine) as s:
            sarge = s.scalar(select(Employee).where(Employee.user_id == 1))
            assert sarge.rank == "Sergeant"
            assert sarge.rank_level == 5
            assert sarge.department == "Detectives"
            assert sarge.badge_number == "PD-5"
            assert sarge.status == EmployeeStatus.ACTIVE
            assert s.get(User, 1).display_name == "[PD-5] Sarge"

    def test_skips_bots_and_unranked_members(self, db_engine):
        result = sync_roster(db_engine, [
            _member(1, "» 5 | Sergeant", bot=True),
            _member(2, "@everyone", "» Detectives"),
        ])
        assert result.to_dict() == {"created": 0, "updated": 0, "total": 0, "errors": []}
        with Session(db_engine) as s:
            assert s.scalar(select(Employee)) is None

    def test_updates_only_when_something_changed(self, db_engine):
        sync_roster(db_engine, [_member(1, "» 3 | Officer")])

        unchanged = sync_roster(db_engine, [_member(1, "» 3 | Officer")])
        assert (unchanged.created, unchanged.updated, unchanged.total) == (0, 0, 1)

        promoted = sync_roster(db_engine, [_member(1, "» 4 | Senior Officer", "» Internal Affairs")])
        assert promoted.updated == 1
        with Session(db_engine) as s:
            employee = s.scalar(select(Employee).where(Employee.user_id == 1))
            assert (employee.rank, employee.rank_level, employee.department) == (
                "Senior Officer", 4, "Internal Affairs",
            )

    def test_reactivates_returning_user(self, db_engine):
        sync_roster(db_engine, [_member(1, "» 3 | Officer")])
        mark_user_inactive(db_engine, 1)
        sync_roster(db_engine, [_member(1, "» 3 | Officer")])
        with Session(db_engine) as s:
            assert s.get(User, 1).is_active

    def test_member_error_does_not_abort_run(self, db_engine):
        result = sync_roster(db_engine, [
            _member(1, "» 3 | Officer", name="[PD-1] One"),
            _member(2, "» 3 | Officer", name="[PD-1] Duplicate"),
            _member(3, "» 2 | Officer"),
        ])
        assert result.total == 3
        assert result.created == 2
        assert len(result.errors) == 1
        assert "member2" in result.errors[0]

    def test_mark_user_inactive(self, db_engine):
        sync_roster(db_engine, [_member(1, "» 3 | Officer")])
        assert mark_user_inactive(db_engine, 1) is True
        assert mark_user_inactive(db_engine, 999) is False
        with Session(db_engine) as s:
            assert not s.get(User, 1).is_active
