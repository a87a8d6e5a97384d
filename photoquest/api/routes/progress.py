"""
photoquest.api.routes.progress — Player progression, achievements & tags
=========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from photoquest.api.deps import get_cache, get_current_user, get_engine
from photoquest.services import progression_service, tag_service

router = APIRouter(prefix="/me", tags=["progress"])


@router.get("/progress")
def my_progress(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    return progression_service.get_progress_summary(engine, cache, str(user["sub"]))


@router.get("/tags/history")
def my_tag_history(
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    return {"history": tag_service.get_unlock_history(engine, str(user["sub"]))}


@router.get("/tags/{tag_id}")
def my_tag_progress(
    tag_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
):
    """How close the caller is to unlocking *tag_id*."""
    return tag_service.get_tag_progress(engine, str(user["sub"]), tag_id)
