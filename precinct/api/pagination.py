"""Shared pagination helpers for list endpoints."""

from __future__ import annotations

import math

from fastapi import Query
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


class PageParams:
    def __init__(
        self,
        page: int = Query(1, ge=1),
        limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    ) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_response(data: list, total: int, page: int, limit: int) -> dict:
    return {
        "data": data,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


def paginate(session: Session, stmt: Select, params: PageParams, serialize) -> dict:
    """Count *stmt*, fetch one page of it and serialize each row."""
    total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = session.scalars(stmt.offset(params.offset).limit(params.limit)).all()
    return page_response([serialize(r) for r in rows], total, params.page, params.limit)
