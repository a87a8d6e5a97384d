"""
photoquest.services.eligibility_service — Eligibility Reads & Attempt Start
============================================================================

Loads the counts the eligibility rules need and evaluates them with
:func:`~photoquest.engine.eligibility.evaluate_eligibility`.

:func:`check_eligibility` is advisory.  :func:`start_attempt` evaluates
again inside the write transaction (the user row is locked ``FOR UPDATE``
on PostgreSQL), so two clients racing to start cannot both slip past the
daily quota.  Counts always come from a query, never from cached state.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from photoquest.constants import as_utc, utcnow
from photoquest.database.models import (
    AttemptStatus,
    Quest,
    QuestAnalytics,
    QuestAttempt,
    QuestStatus,
    User,
)
from photoquest.engine.eligibility import (
    EligibilityContext,
    EligibilityResult,
    IneligibleReason,
    evaluate_eligibility,
)
from photoquest.errors import IneligibleError, NotFoundError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from photoquest.engine.cache import ConfigCache
    from photoquest.engine.geo import Coordinate

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAILY_QUESTS = 3


def _timezone(cache: ConfigCache | None) -> ZoneInfo:
    name = cache.get_str("quests.timezone", "UTC") if cache is not None else "UTC"
    return ZoneInfo(name)


def local_day_bounds(now: datetime, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC bounds of the local calendar day containing *now*: ``[00:00, next 00:00)``."""
    local = as_utc(now).astimezone(tz)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return as_utc(start), as_utc(end)


def build_context(
    session: Session,
    cache: ConfigCache | None,
    user: User | None,
    quest: Quest | None,
    now: datetime,
) -> EligibilityContext:
    if user is None or quest is None or quest.status != QuestStatus.ACTIVE.value:
        return EligibilityContext(
            user_exists=user is not None,
            quest_exists=quest is not None and quest.status == QuestStatus.ACTIVE.value,
        )

    tz = _timezone(cache)
    day_start, day_end = local_day_bounds(now, tz)

    prior = session.scalar(
        select(func.count()).select_from(QuestAttempt).where(
            QuestAttempt.user_id == user.id,
            QuestAttempt.quest_id == quest.id,
        )
    ) or 0
    today = session.scalar(
        select(func.count()).select_from(QuestAttempt).where(
            QuestAttempt.user_id == user.id,
            QuestAttempt.started_at >= day_start,
            QuestAttempt.started_at < day_end,
        )
    ) or 0
    quota = (
        cache.get_int("quests.max_daily_quests", DEFAULT_MAX_DAILY_QUESTS)
        if cache is not None else DEFAULT_MAX_DAILY_QUESTS
    )

    return EligibilityContext(
        user_exists=True,
        quest_exists=True,
        user_level=user.level,
        min_level=quest.min_level or 1,
        prior_attempts=prior,
        max_attempts=quest.max_attempts,
        available_start=quest.available_start,
        available_end=quest.available_end,
        local_time=as_utc(now).astimezone(tz).time(),
        attempts_today=today,
        max_daily_quests=quota,
    )


def check_eligibility(
    engine: Engine,
    cache: ConfigCache | None,
    user_id: str,
    quest_id: str,
    now: datetime | None = None,
) -> EligibilityResult:
    """Advisory eligibility check (pure read)."""
    now = now or utcnow()
    with Session(engine) as session:
        user = session.get(User, user_id)
        quest = session.get(Quest, quest_id)
        return evaluate_eligibility(build_context(session, cache, user, quest, now))


def start_attempt(
    engine: Engine,
    cache: ConfigCache | None,
    user_id: str,
    quest_id: str,
    coordinate: Coordinate | None = None,
    now: datetime | None = None,
) -> str:
    """Re-validate eligibility and create an ``in-progress`` attempt.

    Raises
    ------
    NotFoundError
        User or quest missing (or quest archived).
    IneligibleError
        Any other rule failed; ``exc.reason`` names it.
    """
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        user = session.scalar(select(User).where(User.id == user_id).with_for_update())
        quest = session.get(Quest, quest_id)
        verdict = evaluate_eligibility(build_context(session, cache, user, quest, now))

        if not verdict.can_attempt:
            session.rollback()
            if verdict.reason == IneligibleReason.NOT_FOUND:
                raise NotFoundError(verdict.message or "Not found", user_id=user_id, quest_id=quest_id)
            raise IneligibleError(verdict.reason, verdict.message or str(verdict.reason))

        attempt_id = uuid.uuid4().hex
        session.add(QuestAttempt(
            id=attempt_id,
            quest_id=quest_id,
            user_id=user_id,
            status=AttemptStatus.IN_PROGRESS.value,
            started_at=now,
            start_latitude=coordinate.latitude if coordinate else None,
            start_longitude=coordinate.longitude if coordinate else None,
        ))

        analytics = session.get(QuestAnalytics, quest_id)
        if analytics is None:
            session.add(QuestAnalytics(
                quest_id=quest_id, total_attempts=1, total_completions=0,
                average_completion_minutes=0.0, popularity_score=0.0,
            ))
        else:
            analytics.total_attempts = (analytics.total_attempts or 0) + 1
            analytics.popularity_score = (analytics.total_completions or 0) / analytics.total_attempts
        session.commit()

    logger.info("Attempt %s started: user=%s quest=%s", attempt_id, user_id, quest_id)
    return attempt_id
