"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of precinct.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, select  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from precinct.database.models import Base, Employee, Permission, Role, User  # noqa: E402
from precinct.database.seed import seed_all  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


def run_async(coro):
    """Run *coro* to completion on a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def _fresh_permission_cache():
    """Principals cached by one test must not leak into the next."""
    from precinct.services import permission_cache

    permission_cache.invalidate()
    yield
    permission_cache.invalidate()


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with every Precinct table and the seeded catalogues.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in the rate limiter and the
    audit middleware).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    seed_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
def make_user(
    session: Session,
    user_id: int,
    *permissions: str,
    username: str | None = None,
    level: int = 0,
    active: bool = True,
) -> User:
    """Create a user holding a private role with *permissions*."""
    user = User(id=user_id, username=username or f"user{user_id}", is_active=active)
    if permissions:
        perms = session.scalars(select(Permission).where(Permission.name.in_(permissions))).all()
        user.roles.append(Role(
            name=f"role-{user_id}", display_name=f"Role {user_id}", level=level, permissions=list(perms),
        ))
    session.add(user)
    session.flush()
    return user


def make_employee(
    session: Session,
    user_id: int,
    *permissions: str,
    rank: str = "Officer",
    rank_level: int = 3,
    badge_number: str | None = None,
    department: str = "Patrol",
) -> Employee:
    """Create a user (see :func:`make_user`) plus their employee record."""
    user = session.get(User, user_id) or make_user(session, user_id, *permissions)
    employee = Employee(
        user_id=user.id, rank=rank, rank_level=rank_level,
        badge_number=badge_number, department=department,
    )
    session.add(employee)
    session.flush()
    return employee


def auth(user_id: int, username: str = "tester") -> dict:
    """Bearer header for *user_id*."""
    from precinct.api.deps import create_token

    return {"Authorization": f"Bearer {create_token(user_id, username)}"}


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
@pytest.fixture
def api(db_engine: Engine):
    """TestClient wired to the SQLite engine.

    The lifespan (which would build a PostgreSQL engine) is not entered,
    so the realtime hub stays unbound and emits are dropped.
    """
    from fastapi.testclient import TestClient

    from precinct.api.deps import get_config, get_engine
    from precinct.api.main import app
    from precinct.config import PrecinctConfig

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: PrecinctConfig(
        department_name="Test PD", bot_prefix="!", guild_id=1234,
    )
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def admin(db_engine: Engine) -> dict:
    """Headers for an ``admin.full`` user who is also an employee."""
    with Session(db_engine) as session:
        make_employee(session, 1, "admin.full", rank="Chief", rank_level=17, badge_number="PD-1")
        session.commit()
    return auth(1, "chief")
