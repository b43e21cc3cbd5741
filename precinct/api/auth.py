"""
precinct.api.auth — Discord OAuth2 + JWT issuance
==================================================
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import timedelta
from urllib.parse import urlencode

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from precinct.api.deps import (
    JWT_EXPIRY,
    TOKEN_COOKIE,
    create_token,
    get_config,
    get_current_user,
    get_engine,
)
from precinct.config import PrecinctConfig
from precinct.constants import utcnow
from precinct.database.engine import get_session, run_db
from precinct.database.models import Employee, OAuthState, Role, User
from precinct.services import permission_cache
from precinct.services.employee_service import employee_to_dict
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

DISCORD_API = "https://discord.com/api/v10"
DISCORD_CDN = "https://cdn.discordapp.com"
OAUTH_SCOPE = "identify guilds.members.read"


def _oauth_env() -> tuple[str, str, str, str]:
    """Return required OAuth env vars or raise a clear 500."""
    client_id = os.getenv("DISCORD_CLIENT_ID", "").strip()
    client_secret = os.getenv("DISCORD_CLIENT_SECRET", "").strip()
    redirect_uri = os.getenv("DISCORD_REDIRECT_URI", "").strip()
    frontend_url = os.getenv("FRONTEND_URL", "").strip().rstrip("/")

    missing = [
        name for name, value in (
            ("DISCORD_CLIENT_ID", client_id),
            ("DISCORD_CLIENT_SECRET", client_secret),
            ("DISCORD_REDIRECT_URI", redirect_uri),
            ("FRONTEND_URL", frontend_url),
        ) if not value
    ]
    if missing:
        raise HTTPException(
            status_code=500,
            detail="Discord OAuth is not configured: missing " + ", ".join(missing),
        )
    return client_id, client_secret, redirect_uri, frontend_url


OAUTH_STATE_TTL_SECONDS = 600


def _store_oauth_state(engine, state: str) -> None:
    """Persist an OAuth state token and prune stale entries."""
    cutoff = utcnow() - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        session.add(OAuthState(state=state, created_at=utcnow()))


def _consume_oauth_state(engine, state: str) -> bool:
    """Consume a one-time OAuth state token if valid and unexpired."""
    cutoff = utcnow() - timedelta(seconds=OAUTH_STATE_TTL_SECONDS)
    with get_session(engine) as session:
        session.execute(delete(OAuthState).where(OAuthState.created_at < cutoff))
        row = session.get(OAuthState, state)
        if row is None:
            return False
        session.delete(row)
        return True


async def _authorize_url(engine) -> str:
    client_id, _, redirect_uri, _ = _oauth_env()
    state = secrets.token_urlsafe(32)
    await run_db(_store_oauth_state, engine, state)
    query = urlencode({
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": OAUTH_SCOPE,
        "state": state,
    })
    return f"https://discord.com/oauth2/authorize?{query}"


def avatar_url(user_id: str, avatar_hash: str | None) -> str | None:
    if not avatar_hash:
        return None
    return f"{DISCORD_CDN}/avatars/{user_id}/{avatar_hash}.png"


def upsert_login_user(engine, user_info: dict, member: dict) -> tuple[int, str]:
    """Create or refresh the :class:`User` behind a successful login.

    Users without dashboard roles get every role mapped to one of their
    guild roles.  Returns ``(user_id, username)``.
    """
    user_id = int(user_info["id"])
    username = user_info.get("username") or "unknown"
    guild_nick = member.get("nick")
    guild_role_ids = {str(r) for r in member.get("roles", [])}

    with get_session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            user = User(id=user_id, username=username)
            session.add(user)
        user.display_name = (
            user.display_name or guild_nick or user_info.get("global_name") or username
        )
        user.username = username
        user.avatar = avatar_url(user_info["id"], user_info.get("avatar"))
        user.email = user_info.get("email") or user.email
        user.last_login = utcnow()
        user.is_active = True

        if not user.roles and guild_role_ids:
            mapped = session.scalars(
                select(Role).where(Role.discord_role_id.in_(guild_role_ids))
            ).all()
            user.roles = list(mapped)
            if mapped:
                logger.info("Assigned roles %s to %s on first login",
                            [r.name for r in mapped], username)

    permission_cache.invalidate(user_id)
    return user_id, username


@router.get("/login")
async def login(engine=Depends(get_engine)):
    """Redirect to Discord OAuth2 consent screen."""
    return RedirectResponse(await _authorize_url(engine))


@router.get("/url")
async def login_url(engine=Depends(get_engine)):
    return {"url": await _authorize_url(engine)}


@router.get("/callback")
async def callback(
    code: str,
    state: str,
    cfg: PrecinctConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    """Exchange the OAuth code, upsert the user and hand the frontend a JWT."""
    client_id, client_secret, redirect_uri, frontend_url = _oauth_env()

    if not await run_db(_consume_oauth_state, engine, state):
        raise HTTPException(400, "Invalid or expired OAuth state")

    transport = httpx.AsyncHTTPTransport(retries=1)
    async with httpx.AsyncClient(timeout=10, transport=transport) as client:
        token_resp = await client.post(
            f"{DISCORD_API}/oauth2/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": client_id,
                "client_secret": client_secret,
                "scope": OAUTH_SCOPE,
            },
        )
        if token_resp.status_code != 200:
            logger.warning("OAuth token exchange failed: HTTP %d", token_resp.status_code)
            raise HTTPException(400, "OAuth token exchange failed")

        access_token = token_resp.json().get("access_token")
        if not access_token:
            raise HTTPException(400, "No access token returned")

        headers = {"Authorization": f"Bearer {access_token}"}
        user_resp = await client.get(f"{DISCORD_API}/users/@me", headers=headers)
        member_resp = await client.get(
            f"{DISCORD_API}/users/@me/guilds/{cfg.guild_id}/member",
            headers=headers,
        )

    if user_resp.status_code != 200:
        raise HTTPException(400, "Failed to fetch Discord user")
    user_info = user_resp.json()

    if member_resp.status_code != 200:
        logger.info("Login refused for %s: not a guild member", user_info.get("username"))
        return RedirectResponse(f"{frontend_url}?auth_error=not_member")

    user_id, username = await run_db(upsert_login_user, engine, user_info, member_resp.json())
    token = create_token(user_id, username)
    logger.info("User %s (%s) logged in", username, user_id)

    response = RedirectResponse(f"{frontend_url}/auth/callback?token={token}")
    response.set_cookie(
        TOKEN_COOKIE, token,
        httponly=True,
        samesite="lax",
        secure=frontend_url.startswith("https://"),
        max_age=int(JWT_EXPIRY.total_seconds()),
    )
    return response


def _me(engine, principal: CurrentUser) -> dict:
    with Session(engine) as session:
        user = session.scalar(
            select(User).where(User.id == principal.id).options(selectinload(User.roles))
        )
        employee = session.scalar(
            select(Employee).where(Employee.user_id == principal.id).options(selectinload(Employee.user))
        )
        return {
            "id": str(user.id),
            "username": user.username,
            "display_name": user.display_name,
            "avatar": user.avatar,
            "email": user.email,
            "last_login": user.last_login.isoformat() if user.last_login else None,
            "roles": [
                {"id": r.id, "name": r.name, "display_name": r.display_name,
                 "color": r.color, "level": r.level}
                for r in sorted(user.roles, key=lambda r: -r.level)
            ],
            "permissions": sorted(principal.permissions),
            "max_level": principal.max_level,
            "employee": employee_to_dict(employee) if employee else None,
        }


@router.get("/me")
async def me(user: CurrentUser = Depends(get_current_user), engine=Depends(get_engine)):
    """Current user with roles, employee record and aggregated permissions."""
    return await run_db(_me, engine, user)


@router.post("/logout")
def logout(user: CurrentUser = Depends(get_current_user)):
    permission_cache.invalidate(user.id)
    response = JSONResponse({"success": True})
    response.delete_cookie(TOKEN_COOKIE)
    return response
