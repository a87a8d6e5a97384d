"""
photoquest.services.progression_service — Reward Settlement
============================================================

Applies a completed quest's award to the user's progression record:

1. calculate the award (:func:`~photoquest.engine.progression.calculate_award`),
2. insert the ``completed_quests`` row — unique per attempt, so a retried
   settlement hits the constraint and becomes a no-op,
3. ``UPDATE users SET xp = xp + n, total_xp = total_xp + n`` (atomic; two
   concurrent completions never lose an update),
4. recompute ``level`` from the persisted ``total_xp`` and advance the
   streak, all in the same transaction,
5. bump the quest's completion analytics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoquest.constants import as_utc, calculate_level, utcnow, xp_for_level
from photoquest.database.models import (
    AttemptStatus,
    CompletedQuest,
    ModerationStatus,
    Quest,
    QuestAnalytics,
    QuestAttempt,
    Submission,
    User,
    UserAchievement,
    UserTag,
)
from photoquest.engine.progression import (
    AwardBreakdown,
    QuestRewards,
    calculate_award,
    next_streak,
    running_average,
)
from photoquest.errors import NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from photoquest.engine.cache import ConfigCache

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProgressionResult:
    user_id: str
    quest_id: str
    attempt_id: str
    xp_awarded: int = 0
    breakdown: AwardBreakdown | None = None
    old_level: int = 1
    new_level: int = 1
    total_xp: int = 0
    streak_count: int = 0
    already_applied: bool = False

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    def to_dict(self) -> dict:
        return {
            "xp_awarded": self.xp_awarded,
            "breakdown": self.breakdown.to_dict() if self.breakdown else None,
            "old_level": self.old_level,
            "new_level": self.new_level,
            "leveled_up": self.leveled_up,
            "total_xp": self.total_xp,
            "streak_count": self.streak_count,
            "already_applied": self.already_applied,
        }


@dataclass(slots=True)
class XPDelta:
    old_level: int
    new_level: int
    total_xp: int


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
def get_or_create_user(session: Session, user_id: str, display_name: str | None = None) -> User:
    """Fetch or insert a User row."""
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, display_name=display_name or "")
        session.add(user)
        session.flush()
    elif display_name:
        user.display_name = display_name
    return user


def ensure_user(engine: Engine, user_id: str, display_name: str | None = None) -> None:
    with Session(engine) as session:
        try:
            get_or_create_user(session, user_id, display_name)
            session.commit()
        except IntegrityError:
            # Created concurrently by another request
            session.rollback()


# ---------------------------------------------------------------------------
# Counters shared by achievements and tags
# ---------------------------------------------------------------------------
def count_completed_quests(session: Session, user_id: str) -> int:
    """Distinct quests the user has completed."""
    return session.scalar(
        select(func.count(func.distinct(CompletedQuest.quest_id)))
        .where(CompletedQuest.user_id == user_id)
    ) or 0


def count_votes_received(session: Session, user_id: str) -> int:
    return session.scalar(
        select(func.coalesce(func.sum(Submission.votes), 0))
        .where(Submission.user_id == user_id)
    ) or 0


def _local_today(now: datetime, cache: ConfigCache | None):
    tz_name = cache.get_str("quests.timezone", "UTC") if cache is not None else "UTC"
    return as_utc(now).astimezone(ZoneInfo(tz_name)).date()


# ---------------------------------------------------------------------------
# XP application
# ---------------------------------------------------------------------------
def apply_xp_delta(
    session: Session,
    user_id: str,
    amount: int,
    cache: ConfigCache | None = None,
) -> XPDelta:
    """Atomically add *amount* to xp and total_xp, then recompute level.

    Runs inside the caller's transaction; the caller commits.
    """
    old_level = session.scalar(select(User.level).where(User.id == user_id))
    if old_level is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)

    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(xp=User.xp + amount, total_xp=User.total_xp + amount)
    )
    total_xp = session.scalar(select(User.total_xp).where(User.id == user_id)) or 0
    new_level = calculate_level(total_xp, cache)
    session.execute(update(User).where(User.id == user_id).values(level=new_level))

    if new_level > old_level:
        logger.info("User %s leveled up %d → %d", user_id, old_level, new_level)
    return XPDelta(old_level=old_level, new_level=new_level, total_xp=total_xp)


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------
def apply_quest_completion(
    engine: Engine,
    cache: ConfigCache | None,
    user_id: str,
    quest_id: str,
    attempt_id: str,
    now: datetime | None = None,
) -> ProgressionResult:
    """Settle the award for one completed attempt.  Idempotent per attempt."""
    now = as_utc(now or utcnow())
    result = ProgressionResult(user_id=user_id, quest_id=quest_id, attempt_id=attempt_id)

    with Session(engine) as session:
        quest = session.get(Quest, quest_id)
        attempt = session.get(QuestAttempt, attempt_id)
        user = session.get(User, user_id)
        if quest is None or attempt is None or user is None:
            raise NotFoundError(
                "Cannot settle: quest, attempt or user missing",
                quest_id=quest_id, attempt_id=attempt_id, user_id=user_id,
            )

        if session.scalar(select(exists().where(CompletedQuest.attempt_id == attempt_id))):
            result.already_applied = True
            result.old_level = result.new_level = user.level
            result.total_xp = user.total_xp
            result.streak_count = user.streak_count
            return result

        first_time = not session.scalar(
            select(exists().where(
                CompletedQuest.user_id == user_id,
                CompletedQuest.quest_id == quest_id,
            ))
        )

        multiplier = cache.get_float("progression.xp_multiplier", 1.0) if cache else 1.0
        speed_hours = cache.get_float("progression.speed_bonus_hours", 2.0) if cache else 2.0
        completed_at = as_utc(attempt.completed_at) if attempt.completed_at else now
        breakdown = calculate_award(
            QuestRewards(
                base_xp=quest.base_xp,
                first_time_bonus=quest.first_time_bonus,
                speed_bonus=quest.speed_bonus,
                quality_bonus=quest.quality_bonus,
            ),
            as_utc(attempt.started_at),
            completed_at,
            first_time=first_time,
            multiplier=multiplier,
            speed_window=timedelta(hours=speed_hours),
        )

        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(CompletedQuest(
                    user_id=user_id,
                    quest_id=quest_id,
                    attempt_id=attempt_id,
                    xp_earned=breakdown.total,
                    completed_at=completed_at,
                ))
                session.flush()
        except IntegrityError:
            # A concurrent settlement of the same attempt won the race.
            session.rollback()
            logger.info("Attempt %s already settled concurrently", attempt_id)
            result.already_applied = True
            return result

        delta = apply_xp_delta(session, user_id, breakdown.total, cache)

        today = _local_today(completed_at, cache)
        streak = next_streak(user.streak_count, user.last_completed_on, today)
        session.execute(
            update(User)
            .where(User.id == user_id)
            .values(streak_count=streak, last_completed_on=today)
        )

        _record_completion_analytics(session, quest_id, as_utc(attempt.started_at), completed_at)
        session.commit()

    result.xp_awarded = breakdown.total
    result.breakdown = breakdown
    result.old_level = delta.old_level
    result.new_level = delta.new_level
    result.total_xp = delta.total_xp
    result.streak_count = streak
    logger.info(
        "Settled attempt %s: +%d XP for %s (level %d, streak %d)",
        attempt_id, breakdown.total, user_id, delta.new_level, streak,
    )
    return result


def _record_completion_analytics(
    session: Session,
    quest_id: str,
    started_at: datetime,
    completed_at: datetime,
) -> None:
    analytics = session.get(QuestAnalytics, quest_id)
    if analytics is None:
        analytics = QuestAnalytics(
            quest_id=quest_id, total_attempts=0, total_completions=0,
            average_completion_minutes=0.0, popularity_score=0.0,
        )
        session.add(analytics)
        session.flush()
    minutes = max(0.0, (completed_at - started_at).total_seconds() / 60)
    analytics.average_completion_minutes = running_average(
        analytics.average_completion_minutes or 0.0, analytics.total_completions or 0, minutes,
    )
    analytics.total_completions = (analytics.total_completions or 0) + 1
    attempts = max(analytics.total_attempts or 0, analytics.total_completions)
    analytics.popularity_score = analytics.total_completions / attempts


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def find_unsettled_attempts(engine: Engine, limit: int = 100) -> list[tuple[str, str, str]]:
    """(user_id, quest_id, attempt_id) of completed attempts whose approved
    submission has no ``completed_quests`` row yet."""
    with Session(engine) as session:
        rows = session.execute(
            select(QuestAttempt.user_id, QuestAttempt.quest_id, QuestAttempt.id)
            .join(Submission, Submission.id == QuestAttempt.submission_id)
            .where(
                QuestAttempt.status == AttemptStatus.COMPLETED.value,
                Submission.moderation_status == ModerationStatus.APPROVED.value,
                ~exists().where(CompletedQuest.attempt_id == QuestAttempt.id),
            )
            .order_by(QuestAttempt.completed_at)
            .limit(limit)
        ).all()
        return [(r[0], r[1], r[2]) for r in rows]


def get_progress_summary(engine: Engine, cache: ConfigCache | None, user_id: str) -> dict:
    """Profile view: XP, level progress, streak, achievements and tags."""
    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        achievements = session.scalars(
            select(UserAchievement.achievement_id)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.earned_at)
        ).all()
        tags = session.scalars(
            select(UserTag.tag_id).where(UserTag.user_id == user_id).order_by(UserTag.unlocked_at)
        ).all()
        completed = count_completed_quests(session, user_id)

        current_floor = xp_for_level(user.level, cache)
        next_threshold = xp_for_level(user.level + 1, cache)
        return {
            "user_id": user.id,
            "display_name": user.display_name,
            "xp": user.xp,
            "total_xp": user.total_xp,
            "level": user.level,
            "xp_into_level": user.total_xp - current_floor,
            "xp_for_next_level": next_threshold - current_floor,
            "streak_count": user.streak_count,
            "quests_completed": completed,
            "achievements": list(achievements),
            "tags": list(tags),
        }
