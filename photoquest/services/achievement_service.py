"""
photoquest.services.achievement_service — Achievement Awards
=============================================================

Re-evaluates achievements after a progression-relevant event (quest
completed, streak updated, vote received), awards new ones idempotently,
and cascades each award into the tag engine, scoped to tags that list
the achievement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoquest.constants import as_utc, utcnow
from photoquest.database.models import (
    Achievement,
    AdminActionType,
    AdminLog,
    User,
    UserAchievement,
)
from photoquest.engine.achievements import AchievementContext, check_achievements
from photoquest.errors import NotFoundError
from photoquest.services.progression_service import count_completed_quests, count_votes_received
from photoquest.services.tag_service import unlock_tags_for_achievement

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AchievementCheckResult:
    awarded: list[str] = field(default_factory=list)
    tags_unlocked: list[str] = field(default_factory=list)


def build_achievement_context(session: Session, user: User) -> AchievementContext:
    return AchievementContext(
        completed_quests=count_completed_quests(session, user.id),
        votes_received=count_votes_received(session, user.id),
        streak_count=user.streak_count or 0,
    )


def get_earned_achievement_ids(session: Session, user_id: str) -> set[str]:
    return set(session.scalars(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user_id)
    ).all())


def _award(
    session: Session,
    user_id: str,
    achievement_id: str,
    now: datetime,
    granted_by: str | None = None,
) -> bool:
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(UserAchievement(
                user_id=user_id,
                achievement_id=achievement_id,
                earned_at=now,
                granted_by=granted_by,
            ))
            session.flush()
    except IntegrityError:
        return False
    return True


def _cascade(engine: Engine, user_id: str, awarded: list[str], now: datetime) -> list[str]:
    unlocked: list[str] = []
    for achievement_id in awarded:
        unlocked.extend(unlock_tags_for_achievement(engine, user_id, achievement_id, now))
    return unlocked


def recheck_achievements(
    engine: Engine,
    user_id: str,
    types: set[str] | None = None,
    now: datetime | None = None,
) -> AchievementCheckResult:
    """Award every newly satisfied achievement of *types* (all if None)."""
    now = as_utc(now or utcnow())
    result = AchievementCheckResult()

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)

        catalogue = session.scalars(
            select(Achievement).where(Achievement.is_active.is_(True)).order_by(Achievement.id)
        ).all()
        ctx = build_achievement_context(session, user)
        earned = get_earned_achievement_ids(session, user_id)

        for achievement_id in check_achievements(catalogue, ctx, earned, types):
            if _award(session, user_id, achievement_id, now):
                result.awarded.append(achievement_id)
                logger.info("Achievement awarded: %s → %s", achievement_id, user_id)
        session.commit()

    result.tags_unlocked = _cascade(engine, user_id, result.awarded, now)
    return result


def grant_achievement(
    engine: Engine,
    user_id: str,
    achievement_id: str,
    actor_id: str,
    reason: str | None = None,
) -> tuple[bool, str, list[str]]:
    """Manually grant an achievement.

    Returns (success, message, tags unlocked by the cascade).
    """
    now = utcnow()
    with Session(engine) as session:
        if session.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        if session.get(Achievement, achievement_id) is None:
            raise NotFoundError(f"Achievement {achievement_id} not found", achievement_id=achievement_id)
        if not _award(session, user_id, achievement_id, now, granted_by=actor_id):
            return False, "User already has this achievement", []
        session.add(AdminLog(
            actor_id=actor_id,
            action_type=AdminActionType.MANUAL_GRANT.value,
            target_table="user_achievements",
            target_id=f"{user_id}:{achievement_id}",
            after_snapshot={"user_id": user_id, "achievement_id": achievement_id},
            reason=reason,
        ))
        session.commit()

    tags = _cascade(engine, user_id, [achievement_id], now)
    return True, "Achievement granted", tags
