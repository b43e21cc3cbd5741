"""Public settings the frontend reads before login."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from precinct.api.deps import get_engine
from precinct.services import settings_service

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
def public_settings(engine=Depends(get_engine)):
    return {s["key"]: s["value"] for s in settings_service.get_all_settings(engine, public_only=True)}
