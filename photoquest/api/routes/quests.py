"""
photoquest.api.routes.quests — Quests, attempts, submissions & votes
=====================================================================
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel, Field

from photoquest.api.deps import (
    get_cache,
    get_current_admin,
    get_current_user,
    get_engine,
    get_state_machine,
)
from photoquest.database.engine import run_db
from photoquest.engine.geo import Coordinate
from photoquest.services import progression_service, quest_service, vote_service
from photoquest.services.attempt_service import QuestAttemptStateMachine

router = APIRouter(tags=["quests"])
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class MinResolution(BaseModel):
    width: int = 0
    height: int = 0


class PhotoRequirements(BaseModel):
    subjects: list[str] = Field(default_factory=list)
    time_of_day: str | None = None
    min_resolution: MinResolution | None = None


class QuestCreate(BaseModel):
    id: str | None = None
    title: str
    description: str = ""
    category: str = "general"
    difficulty: str = "beginner"
    latitude: float
    longitude: float
    radius_m: float
    min_level: int = 1
    max_attempts: int | None = None
    available_start: str | None = None
    available_end: str | None = None
    base_xp: int = 100
    first_time_bonus: int = 0
    speed_bonus: int = 0
    quality_bonus: int = 0
    photo_requirements: PhotoRequirements = Field(default_factory=PhotoRequirements)


class LocationSample(BaseModel):
    latitude: float
    longitude: float
    accuracy: float | None = None


class StartAttempt(BaseModel):
    location: LocationSample | None = None
    display_name: str | None = None


def _coordinate(latitude: float, longitude: float, accuracy: float | None = None) -> Coordinate:
    try:
        return Coordinate(latitude, longitude, accuracy)
    except ValueError as exc:
        raise HTTPException(400, str(exc))


# ---------------------------------------------------------------------------
# Quest catalogue
# ---------------------------------------------------------------------------
@router.get("/quests")
def list_quests(category: str | None = None, engine=Depends(get_engine)):
    return {"quests": quest_service.list_active_quests(engine, category)}


@router.get("/quests/{quest_id}")
def get_quest(quest_id: str, engine=Depends(get_engine)):
    return quest_service.get_quest(engine, quest_id)


@router.post("/quests", status_code=201)
def create_quest(
    body: QuestCreate,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    data: dict[str, Any] = body.model_dump(exclude_none=True)
    try:
        quest_id = quest_service.create_quest(engine, data, actor_id=str(admin["sub"]))
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return {"id": quest_id}


@router.delete("/quests/{quest_id}")
def archive_quest(
    quest_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    quest_service.archive_quest(engine, quest_id, actor_id=str(admin["sub"]))
    return {"archived": quest_id}


@router.get("/quests/{quest_id}/analytics")
def quest_analytics(
    quest_id: str,
    admin: dict = Depends(get_current_admin),
    engine=Depends(get_engine),
):
    return quest_service.get_quest_analytics(engine, quest_id)


# ---------------------------------------------------------------------------
# Attempts
# ---------------------------------------------------------------------------
@router.get("/quests/{quest_id}/eligibility")
async def check_eligibility(
    quest_id: str,
    user: dict = Depends(get_current_user),
    machine: QuestAttemptStateMachine = Depends(get_state_machine),
):
    verdict = await machine.check(str(user["sub"]), quest_id)
    return verdict.to_dict()


@router.post("/quests/{quest_id}/attempts", status_code=201)
async def start_attempt(
    quest_id: str,
    body: StartAttempt | None = None,
    user: dict = Depends(get_current_user),
    machine: QuestAttemptStateMachine = Depends(get_state_machine),
):
    body = body or StartAttempt()
    user_id = str(user["sub"])
    coord = (
        _coordinate(body.location.latitude, body.location.longitude, body.location.accuracy)
        if body.location else None
    )
    await run_db(
        progression_service.ensure_user, machine.engine, user_id,
        body.display_name or user.get("username"),
    )
    attempt_id = await machine.start(user_id, quest_id, coord)
    return {"attempt_id": attempt_id, "status": "in-progress"}


@router.post("/attempts/{attempt_id}/cancel")
async def cancel_attempt(
    attempt_id: str,
    user: dict = Depends(get_current_user),
    machine: QuestAttemptStateMachine = Depends(get_state_machine),
):
    await machine.cancel(attempt_id, str(user["sub"]))
    return {"attempt_id": attempt_id, "status": "cancelled"}


@router.post("/attempts/{attempt_id}/submission")
async def submit_photo(
    attempt_id: str,
    file: UploadFile = File(...),
    latitude: float = Form(...),
    longitude: float = Form(...),
    accuracy: float | None = Form(None),
    user: dict = Depends(get_current_user),
    machine: QuestAttemptStateMachine = Depends(get_state_machine),
):
    """Submit a photo from the caller's current location."""
    coord = _coordinate(latitude, longitude, accuracy)
    content = await file.read()
    try:
        outcome = await machine.submit(
            attempt_id, str(user["sub"]), coord, content,
            file.filename or "photo.jpg", file.content_type,
        )
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return outcome.to_dict()


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
@router.post("/submissions/{submission_id}/vote")
async def vote(
    submission_id: str,
    user: dict = Depends(get_current_user),
    engine=Depends(get_engine),
    cache=Depends(get_cache),
):
    voter_id = str(user["sub"])
    await run_db(progression_service.ensure_user, engine, voter_id, user.get("username"))
    try:
        result = await vote_service.record_vote(engine, cache, submission_id, voter_id)
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    return result.to_dict()
