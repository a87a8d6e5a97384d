"""
photoquest.services.tag_service — Tag Unlocks
==============================================

Persistence side of :mod:`photoquest.engine.tags`.

Entry points:

* :func:`recheck_tags` — full re-scan of every active tag for a user.
* :func:`unlock_tags_for_achievement` — scoped re-check of tags that list
  a just-earned achievement (the achievement cascade).
* :func:`admin_unlock_tag` — manual unlock, trigger ``admin_unlock``.
* :func:`get_tag_progress` — current / required per dimension.

Unlocks are append-only and idempotent: ``user_tags`` has a composite
primary key, inserts go through a SAVEPOINT, and every successful unlock
writes exactly one ``tag_unlock_history`` row.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoquest.constants import as_utc, utcnow
from photoquest.database.models import (
    AdminActionType,
    AdminLog,
    Tag,
    TagUnlockHistory,
    User,
    UserAchievement,
    UserTag,
)
from photoquest.engine.tags import (
    TagContext,
    eligible_tags,
    references_achievement,
    tag_progress,
    unmet_requirements,
)
from photoquest.errors import NotFoundError
from photoquest.services.progression_service import count_completed_quests, count_votes_received

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

TRIGGER_RESCAN = "progression"
TRIGGER_ADMIN = "admin_unlock"


# ---------------------------------------------------------------------------
# Helpers (run inside a caller's session)
# ---------------------------------------------------------------------------
def build_tag_context(session: Session, user: User) -> TagContext:
    earned = session.scalars(
        select(UserAchievement.achievement_id).where(UserAchievement.user_id == user.id)
    ).all()
    return TagContext(
        quests_completed=count_completed_quests(session, user.id),
        total_xp=user.total_xp or 0,
        votes=count_votes_received(session, user.id),
        streak_days=user.streak_count or 0,
        achievements=frozenset(earned),
    )


def get_unlocked_tag_ids(session: Session, user_id: str) -> set[str]:
    return set(session.scalars(select(UserTag.tag_id).where(UserTag.user_id == user_id)).all())


def _active_tags(session: Session) -> list[Tag]:
    return list(session.scalars(select(Tag).where(Tag.is_active.is_(True)).order_by(Tag.id)).all())


def _unlock(session: Session, user_id: str, tag_id: str, trigger: str, now: datetime) -> bool:
    """Insert the unlock + history row.  False if already unlocked."""
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(UserTag(user_id=user_id, tag_id=tag_id, unlocked_at=now))
            session.flush()
    except IntegrityError:
        return False
    session.add(TagUnlockHistory(user_id=user_id, tag_id=tag_id, trigger=trigger, unlocked_at=now))
    logger.info("Tag unlocked: %s for %s (trigger=%s)", tag_id, user_id, trigger)
    return True


def _load_user(session: Session, user_id: str) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found", user_id=user_id)
    return user


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------
def recheck_tags(
    engine: Engine,
    user_id: str,
    now: datetime | None = None,
    trigger: str = TRIGGER_RESCAN,
) -> list[str]:
    """Full re-scan of active tags; returns ids unlocked by this call."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        user = _load_user(session, user_id)
        ctx = build_tag_context(session, user)
        already = get_unlocked_tag_ids(session, user_id)

        unlocked = [
            tag_id
            for tag_id in eligible_tags(_active_tags(session), ctx, already)
            if _unlock(session, user_id, tag_id, trigger, now)
        ]
        session.commit()
    return unlocked


def unlock_tags_for_achievement(
    engine: Engine,
    user_id: str,
    achievement_id: str,
    now: datetime | None = None,
) -> list[str]:
    """Re-check only tags whose requirements list *achievement_id*."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        user = _load_user(session, user_id)
        candidates = [
            t for t in _active_tags(session) if references_achievement(t.requirements, achievement_id)
        ]
        if not candidates:
            return []
        ctx = build_tag_context(session, user)
        already = get_unlocked_tag_ids(session, user_id)

        unlocked = [
            tag_id
            for tag_id in eligible_tags(candidates, ctx, already)
            if _unlock(session, user_id, tag_id, achievement_id, now)
        ]
        session.commit()
    return unlocked


def admin_unlock_tag(
    engine: Engine,
    user_id: str,
    tag_id: str,
    actor_id: str,
    reason: str | None = None,
) -> tuple[bool, str]:
    """Manually unlock *tag_id* regardless of requirements.

    Returns (success, message).
    """
    now = utcnow()
    with Session(engine) as session:
        _load_user(session, user_id)
        if session.get(Tag, tag_id) is None:
            raise NotFoundError(f"Tag {tag_id} not found", tag_id=tag_id)
        if not _unlock(session, user_id, tag_id, TRIGGER_ADMIN, now):
            return False, "Tag already unlocked"
        session.add(AdminLog(
            actor_id=actor_id,
            action_type=AdminActionType.MANUAL_UNLOCK.value,
            target_table="user_tags",
            target_id=f"{user_id}:{tag_id}",
            after_snapshot={"user_id": user_id, "tag_id": tag_id},
            reason=reason,
        ))
        session.commit()
    return True, "Tag unlocked"


def get_tag_progress(engine: Engine, user_id: str, tag_id: str) -> dict:
    with Session(engine) as session:
        user = _load_user(session, user_id)
        tag = session.get(Tag, tag_id)
        if tag is None:
            raise NotFoundError(f"Tag {tag_id} not found", tag_id=tag_id)
        ctx = build_tag_context(session, user)
        unlocked = tag_id in get_unlocked_tag_ids(session, user_id)
        return {
            "tag_id": tag.id,
            "name": tag.name,
            "rarity": tag.rarity,
            "unlocked": unlocked,
            "unmet": [] if unlocked else unmet_requirements(tag.requirements, ctx),
            "progress": tag_progress(tag.requirements, ctx),
        }


def get_unlock_history(engine: Engine, user_id: str) -> list[dict]:
    with Session(engine) as session:
        rows = session.scalars(
            select(TagUnlockHistory)
            .where(TagUnlockHistory.user_id == user_id)
            .order_by(TagUnlockHistory.unlocked_at, TagUnlockHistory.id)
        ).all()
        return [
            {"tag_id": r.tag_id, "trigger": r.trigger, "unlocked_at": as_utc(r.unlocked_at).isoformat()}
            for r in rows
        ]
