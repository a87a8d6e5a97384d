"""
photoquest.services.quest_service — Quest Catalogue
====================================================

Authorised actors create and archive quests; players list and read them.
Quest definitions are validated here (``ValueError`` on bad input) so the
eligibility and moderation engines can trust what they read.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoquest.constants import Difficulty, as_utc
from photoquest.database.models import (
    AdminActionType,
    AdminLog,
    Quest,
    QuestAnalytics,
    QuestStatus,
)
from photoquest.engine.eligibility import parse_hours
from photoquest.engine.geo import Coordinate
from photoquest.errors import NotFoundError, PersistenceConflictError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

ALLOWED_QUEST_FIELDS: set[str] = {
    "id", "title", "description", "category", "difficulty",
    "latitude", "longitude", "radius_m", "min_level", "max_attempts",
    "available_start", "available_end",
    "base_xp", "first_time_bonus", "speed_bonus", "quality_bonus",
    "photo_requirements",
}


def _validate_photo_requirements(reqs: dict | None) -> dict:
    reqs = dict(reqs or {})
    subjects = reqs.get("subjects", [])
    if not isinstance(subjects, list) or not all(isinstance(s, str) for s in subjects):
        raise ValueError("photo_requirements.subjects must be a list of strings")
    min_res = reqs.get("min_resolution")
    if min_res is not None:
        if not isinstance(min_res, dict):
            raise ValueError("photo_requirements.min_resolution must be {width, height}")
        for side in ("width", "height"):
            if int(min_res.get(side, 0)) < 0:
                raise ValueError(f"photo_requirements.min_resolution.{side} must be >= 0")
    return reqs


def validate_quest(data: dict[str, Any]) -> dict[str, Any]:
    """Return a cleaned copy of *data* or raise ``ValueError``."""
    unknown = set(data) - ALLOWED_QUEST_FIELDS
    if unknown:
        raise ValueError(f"Unknown quest field(s): {', '.join(sorted(unknown))}")
    if not (data.get("title") or "").strip():
        raise ValueError("Quest title is required")

    clean = dict(data)
    Coordinate(clean.get("latitude"), clean.get("longitude"))
    if float(clean.get("radius_m") or 0) <= 0:
        raise ValueError("radius_m must be positive")

    clean["difficulty"] = Difficulty(clean.get("difficulty", Difficulty.BEGINNER)).value
    if int(clean.get("min_level", 1)) < 1:
        raise ValueError("min_level must be >= 1")
    if clean.get("max_attempts") is not None and int(clean["max_attempts"]) < 1:
        raise ValueError("max_attempts must be >= 1 when set")

    start, end = clean.get("available_start"), clean.get("available_end")
    if (start is None) != (end is None):
        raise ValueError("available_start and available_end must be set together")
    if start is not None:
        parse_hours(start)
        parse_hours(end)

    for key in ("base_xp", "first_time_bonus", "speed_bonus", "quality_bonus"):
        if int(clean.get(key, 0)) < 0:
            raise ValueError(f"{key} must be >= 0")

    clean["photo_requirements"] = _validate_photo_requirements(clean.get("photo_requirements"))
    return clean


def create_quest(engine: Engine, data: dict[str, Any], actor_id: str) -> str:
    """Validate and insert a quest plus its analytics row.  Returns the id."""
    clean = validate_quest(data)
    quest_id = clean.pop("id", None) or uuid.uuid4().hex
    with Session(engine) as session:
        session.add(Quest(id=quest_id, created_by=actor_id, status=QuestStatus.ACTIVE.value, **clean))
        session.add(QuestAnalytics(
            quest_id=quest_id, total_attempts=0, total_completions=0,
            average_completion_minutes=0.0, popularity_score=0.0,
        ))
        session.add(AdminLog(
            actor_id=actor_id,
            action_type=AdminActionType.CREATE.value,
            target_table="quests",
            target_id=quest_id,
            after_snapshot={"title": clean["title"], "radius_m": clean["radius_m"]},
        ))
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise PersistenceConflictError(f"Quest {quest_id} already exists", quest_id=quest_id) from exc
    logger.info("Quest %s created by %s", quest_id, actor_id)
    return quest_id


def archive_quest(engine: Engine, quest_id: str, actor_id: str) -> None:
    with Session(engine) as session:
        quest = session.get(Quest, quest_id)
        if quest is None:
            raise NotFoundError(f"Quest {quest_id} not found", quest_id=quest_id)
        quest.status = QuestStatus.ARCHIVED.value
        session.add(AdminLog(
            actor_id=actor_id,
            action_type=AdminActionType.ARCHIVE.value,
            target_table="quests",
            target_id=quest_id,
        ))
        session.commit()


def quest_to_dict(quest: Quest) -> dict:
    return {
        "id": quest.id,
        "title": quest.title,
        "description": quest.description,
        "category": quest.category,
        "difficulty": quest.difficulty,
        "latitude": quest.latitude,
        "longitude": quest.longitude,
        "radius_m": quest.radius_m,
        "min_level": quest.min_level,
        "max_attempts": quest.max_attempts,
        "available_hours": (
            {"start": quest.available_start, "end": quest.available_end}
            if quest.available_start else None
        ),
        "rewards": {
            "base_xp": quest.base_xp,
            "bonus_xp": {
                "first_time": quest.first_time_bonus,
                "speed_bonus": quest.speed_bonus,
                "quality_bonus": quest.quality_bonus,
            },
        },
        "photo_requirements": quest.photo_requirements or {},
        "status": quest.status,
    }


def get_quest(engine: Engine, quest_id: str) -> dict:
    with Session(engine) as session:
        quest = session.get(Quest, quest_id)
        if quest is None:
            raise NotFoundError(f"Quest {quest_id} not found", quest_id=quest_id)
        return quest_to_dict(quest)


def list_active_quests(engine: Engine, category: str | None = None) -> list[dict]:
    with Session(engine) as session:
        stmt = select(Quest).where(Quest.status == QuestStatus.ACTIVE.value)
        if category:
            stmt = stmt.where(Quest.category == category)
        rows = session.scalars(stmt.order_by(Quest.title)).all()
        return [quest_to_dict(q) for q in rows]


def get_quest_analytics(engine: Engine, quest_id: str) -> dict:
    with Session(engine) as session:
        row = session.get(QuestAnalytics, quest_id)
        if row is None:
            raise NotFoundError(f"No analytics for quest {quest_id}", quest_id=quest_id)
        return {
            "quest_id": row.quest_id,
            "total_attempts": row.total_attempts,
            "total_completions": row.total_completions,
            "average_completion_minutes": round(row.average_completion_minutes or 0.0, 1),
            "popularity_score": round(row.popularity_score or 0.0, 3),
            "last_updated": as_utc(row.last_updated).isoformat() if row.last_updated else None,
        }
