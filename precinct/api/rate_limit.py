"""
precinct.api.rate_limit — Per-User Mutation Rate Limiting
==========================================================

Sliding-window throttle on write requests: 60 mutations per 60 s per
authenticated user, stored in ``rate_limit_events`` so the window survives
restarts and is shared by every API worker.  Exceeding it returns HTTP 429
with a ``Retry-After`` header.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from precinct.api.deps import get_current_user, get_engine
from precinct.constants import as_utc, utcnow
from precinct.database.models import RateLimitEvent
from precinct.services.permission_cache import CurrentUser

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 60
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class MutationRateLimiter:
    """Sliding-window limiter keyed by user id, backed by the database."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def check(self, engine: Engine, user_key: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; info has ``remaining``, ``reset`` and ``limit``."""
        now = utcnow()
        cutoff = now - timedelta(seconds=self.window_seconds)

        with Session(engine) as session:
            session.execute(
                delete(RateLimitEvent).where(
                    RateLimitEvent.user_key == user_key,
                    RateLimitEvent.timestamp < cutoff,
                )
            )
            timestamps = session.scalars(
                select(RateLimitEvent.timestamp)
                .where(RateLimitEvent.user_key == user_key)
                .order_by(RateLimitEvent.timestamp.asc())
            ).all()
            session.commit()

        count = len(timestamps)
        if count >= self.max_requests:
            oldest = as_utc(timestamps[0])
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {
                "remaining": 0,
                "reset": max(1, int(reset) + 1),
                "limit": self.max_requests,
            }
        return True, {
            "remaining": self.max_requests - count,
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, engine: Engine, user_key: str) -> int:
        """Record one mutation; returns the count in the current window."""
        with Session(engine) as session:
            session.add(RateLimitEvent(user_key=user_key, timestamp=utcnow()))
            session.flush()
            count = session.scalar(
                select(func.count()).select_from(RateLimitEvent).where(RateLimitEvent.user_key == user_key)
            ) or 0
            session.commit()
        return count

    def reset(self, engine: Engine, user_key: str | None = None) -> None:
        """Clear limiter state for one user, or everyone."""
        with Session(engine) as session:
            stmt = delete(RateLimitEvent)
            if user_key is not None:
                stmt = stmt.where(RateLimitEvent.user_key == user_key)
            session.execute(stmt)
            session.commit()


_limiter = MutationRateLimiter()


def get_rate_limiter() -> MutationRateLimiter:
    return _limiter


def configure_rate_limiter(*, max_requests: int = DEFAULT_RATE_LIMIT,
                           window_seconds: int = DEFAULT_WINDOW_SECONDS) -> MutationRateLimiter:
    global _limiter
    _limiter = MutationRateLimiter(max_requests=max_requests, window_seconds=window_seconds)
    return _limiter


async def rate_limited_user(
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    engine: Engine = Depends(get_engine),
) -> CurrentUser:
    """Authenticate *and* count mutations against the per-user window.

    Read requests pass through unchecked.
    """
    if request.method not in _MUTATION_METHODS:
        return user

    limiter = get_rate_limiter()
    user_key = str(user.id)
    allowed, info = await asyncio.to_thread(limiter.check, engine, user_key)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for user %s: %d mutations in %ds",
            user_key, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Rate limit exceeded: {limiter.max_requests} mutations per minute.",
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )

    await asyncio.to_thread(limiter.record, engine, user_key)
    return user
