"""
photoquest.api.routes.moderation — Review queue, manual grants & settings (admin)
==================================================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from photoquest.api.deps import get_cache, get_current_admin, get_engine, get_reviewer
from photoquest.services import achievement_service, settings_service, tag_service
from photoquest.services.review_service import ModerationReviewer

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class RejectBody(BaseModel):
    reason: str


class ManualGrant(BaseModel):
    reason: str | None = None


class SettingUpdate(BaseModel):
    key: str
    value: Any
    category: str | None = None
    description: str | None = None


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------
@router.get("/moderation/queue")
async def moderation_queue(
    limit: int = Query(50, ge=1, le=200),
    admin: dict = Depends(get_current_admin),
    reviewer: ModerationReviewer = Depends(get_reviewer),
):
    return {"items": await reviewer.pending(limit)}


@router.post("/moderation/{submission_id}/approve")
async def approve_submission(
    submission_id: str,
    admin: dict = Depends(get_current_admin),
    reviewer: ModerationReviewer = Depends(get_reviewer),
):
    settlement = await reviewer.approve(submission_id, str(admin["sub"]))
    return {
        "submission_id": submission_id,
        "status": "approved",
        "rewards": settlement.to_dict() if settlement else None,
        "settlement_deferred": settlement is None,
    }


@router.post("/moderation/{submission_id}/reject")
async def reject_submission(
    submission_id: str,
    body: RejectBody,
    admin: dict = Depends(get_current_admin),
    reviewer: ModerationReviewer = Depends(get_reviewer),
):
    try:
        await reviewer.reject(submission_id, str(admin["sub"]), body.reason)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {"submission_id": submission_id, "status": "rejected"}


# ---------------------------------------------------------------------------
# Manual grants
# ---------------------------------------------------------------------------
@router.post("/users/{user_id}/achievements/{achievement_id}")
def grant_achievement(
    user_id: str,
    achievement_id: str,
    body: ManualGrant | None = None,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    success, message, tags = achievement_service.grant_achievement(
        engine, user_id, achievement_id,
        actor_id=str(admin["sub"]), reason=body.reason if body else None,
    )
    if not success:
        raise HTTPException(409, message)
    return {"message": message, "tags_unlocked": tags}


@router.post("/users/{user_id}/tags/{tag_id}")
def unlock_tag(
    user_id: str,
    tag_id: str,
    body: ManualGrant | None = None,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    success, message = tag_service.admin_unlock_tag(
        engine, user_id, tag_id,
        actor_id=str(admin["sub"]), reason=body.reason if body else None,
    )
    if not success:
        raise HTTPException(409, message)
    return {"message": message}


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings")
def get_all_settings(
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return {"settings": settings_service.get_all_settings(engine)}


@router.put("/settings")
def update_settings(
    body: list[SettingUpdate],
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    items = [s.model_dump(exclude_none=True) | {"value": s.value} for s in body]
    count = settings_service.update_settings(
        engine, items, actor_id=str(admin["sub"]), cache=cache,
    )
    return {"updated": count}
