"""
tests/test_migrations.py — Alembic Baseline
============================================

Runs the migration environment against a throwaway SQLite file.  The
config is built in code so ``alembic.ini``'s logging setup does not
replace the test run's handlers.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def migration(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'precinct.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    config = Config()
    config.set_main_option("script_location", str(ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", "postgresql+psycopg2://unused/unused")
    return config, url


def _tables(url: str) -> set[str]:
    engine = create_engine(url)
    try:
        return set(inspect(engine).get_table_names())
    finally:
        engine.dispose()


class TestBaseline:
    def test_upgrade_builds_schema_from_database_url(self, migration):
        config, url = migration
        command.upgrade(config, "head")
        tables = _tables(url)
        assert {"users", "employees", "uprank_locks", "academy_modules", "unit_reviews"} <= tables
        assert "alembic_version" in tables

    def test_downgrade_drops_everything(self, migration):
        config, url = migration
        command.upgrade(config, "head")
        command.downgrade(config, "base")
        assert _tables(url) <= {"alembic_version"}
