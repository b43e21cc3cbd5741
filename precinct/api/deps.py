"""
precinct.api.deps — FastAPI dependency injection
=================================================

Engine / config singletons, the DB session, the authenticated principal and
the permission gates::

    @router.post("", dependencies=[Depends(require_permission("sanctions.manage"))])
    @router.get("/me")  def me(user: CurrentUser = Depends(get_current_user))

The principal comes from ``Authorization: Bearer <jwt>`` or, failing that,
the ``token`` cookie set at login.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from precinct.config import PrecinctConfig, load_config
from precinct.database.engine import create_db_engine
from precinct.services.permission_cache import CurrentUser, get_principal

MIN_SECRET_LENGTH = 32

# Values that ship in docs and sample .env files.
_PLACEHOLDER_SECRETS = frozenset({
    "precinct-dev-secret-change-me",
    "change-me",
    "changeme",
    "secret",
    "jwt-secret",
})

JWT_ALGORITHM = "HS256"
JWT_EXPIRY = timedelta(days=7)
TOKEN_COOKIE = "token"


def check_jwt_secret(secret: str | None) -> str:
    """Return *secret* if it is fit to sign session tokens.

    The API refuses to start otherwise: a missing, placeholder, short or
    highly repetitive secret raises ``RuntimeError`` naming the problem.
    """
    secret = (secret or "").strip()
    if not secret:
        raise RuntimeError("JWT_SECRET is not set; put at least 32 random characters in .env")
    if secret.lower() in _PLACEHOLDER_SECRETS:
        raise RuntimeError("JWT_SECRET still holds a placeholder value; generate a real secret")
    if len(secret) < MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET has {len(secret)} characters; at least {MIN_SECRET_LENGTH} are required"
        )
    if len(set(secret)) < 8:
        raise RuntimeError("JWT_SECRET is too repetitive; use secrets.token_urlsafe(48)")
    return secret


JWT_SECRET: str = check_jwt_secret(os.getenv("JWT_SECRET"))


def create_token(user_id: int, username: str) -> str:
    payload = {
        "sub": str(user_id),
        "username": username,
        "exp": datetime.now(UTC) + JWT_EXPIRY,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> int:
    """Return the user id in *token*; raises ``InvalidTokenError``."""
    payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidTokenError("Token has no usable subject")


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> PrecinctConfig:
    return load_config()


def get_session(engine: Annotated[Engine, Depends(get_engine)]):
    with Session(engine) as session:
        yield session


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

def extract_token(authorization: str | None, cookie: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return cookie or None


def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> CurrentUser:
    """Resolve the caller.  401 when the token is missing, invalid or stale."""
    token = extract_token(authorization, request.cookies.get(TOKEN_COOKIE))
    if not token:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    try:
        user_id = decode_token(token)
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")

    with Session(engine) as session:
        principal = get_principal(session, user_id)
    if principal is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User not found or inactive")

    # Read back by the audit middleware.
    request.state.user_id = principal.id
    request.state.engine = engine
    return principal


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------

def require_permission(*names: str):
    """Pass with ``admin.full`` or any of *names*."""
    def _gate(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.has_permission(*names):
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Insufficient permissions")
        return user
    return _gate


def require_role(*names: str):
    """Pass with ``admin.full`` or any of the role *names*."""
    def _gate(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not user.has_role(*names):
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Insufficient role")
        return user
    return _gate


def require_min_level(level: int):
    """Pass with ``admin.full`` or a highest role level of at least *level*."""
    def _gate(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not (user.is_admin or user.max_level >= level):
            raise HTTPException(status.HTTP_403_FORBIDDEN, "Insufficient rank level")
        return user
    return _gate
