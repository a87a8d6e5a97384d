"""
photoquest.services.vote_service — Photo Votes
===============================================

Players vote on approved submissions, one vote per (submission, voter).
The counter is incremented atomically.  When a submission first reaches
``votes.quality_bonus_threshold`` votes its owner earns the quest's
quality bonus (once, guarded by a conditional UPDATE on
``quality_bonus_awarded``).  Afterwards the owner's vote achievements and
tags are re-checked.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoquest.database.engine import run_db, run_db_retrying
from photoquest.database.models import ModerationStatus, Quest, Submission, Vote
from photoquest.engine.achievements import AchievementType
from photoquest.errors import NotFoundError
from photoquest.services.achievement_service import recheck_achievements
from photoquest.services.progression_service import apply_xp_delta
from photoquest.services.tag_service import recheck_tags

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from photoquest.engine.cache import ConfigCache

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_BONUS_VOTES = 10


@dataclass(slots=True)
class VoteResult:
    submission_id: str
    owner_id: str
    recorded: bool
    votes: int
    quality_bonus_xp: int = 0
    achievements: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "submission_id": self.submission_id,
            "recorded": self.recorded,
            "votes": self.votes,
            "quality_bonus_xp": self.quality_bonus_xp,
            "achievements_unlocked": self.achievements,
            "tags_unlocked": self.tags,
        }


def cast_vote(
    engine: Engine,
    cache: ConfigCache | None,
    submission_id: str,
    voter_id: str,
) -> VoteResult:
    """Record one vote.  A repeat vote returns ``recorded=False``.

    Raises
    ------
    NotFoundError
        Unknown submission, or one that is not approved.
    ValueError
        The voter owns the submission.
    """
    with Session(engine) as session:
        submission = session.get(Submission, submission_id)
        if submission is None or submission.moderation_status != ModerationStatus.APPROVED.value:
            raise NotFoundError(f"Submission {submission_id} not found", submission_id=submission_id)
        if submission.user_id == voter_id:
            raise ValueError("You cannot vote for your own photo")

        owner_id = submission.user_id
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(Vote(submission_id=submission_id, voter_id=voter_id))
                session.flush()
        except IntegrityError:
            session.rollback()
            return VoteResult(submission_id, owner_id, recorded=False, votes=submission.votes)

        session.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .values(votes=Submission.votes + 1)
        )
        votes = session.scalar(select(Submission.votes).where(Submission.id == submission_id)) or 0
        bonus = _maybe_award_quality_bonus(session, cache, submission_id, owner_id, votes)
        session.commit()

    return VoteResult(submission_id, owner_id, recorded=True, votes=votes, quality_bonus_xp=bonus)


def _maybe_award_quality_bonus(
    session: Session,
    cache: ConfigCache | None,
    submission_id: str,
    owner_id: str,
    votes: int,
) -> int:
    threshold = (
        cache.get_int("votes.quality_bonus_threshold", DEFAULT_QUALITY_BONUS_VOTES)
        if cache is not None else DEFAULT_QUALITY_BONUS_VOTES
    )
    if votes < threshold:
        return 0

    res = session.execute(
        update(Submission)
        .where(Submission.id == submission_id, Submission.quality_bonus_awarded.is_(False))
        .values(quality_bonus_awarded=True)
    )
    if res.rowcount == 0:
        return 0

    quest_bonus = session.scalar(
        select(Quest.quality_bonus)
        .join(Submission, Submission.quest_id == Quest.id)
        .where(Submission.id == submission_id)
    ) or 0
    multiplier = cache.get_float("progression.xp_multiplier", 1.0) if cache is not None else 1.0
    amount = math.floor(quest_bonus * multiplier)
    if amount > 0:
        apply_xp_delta(session, owner_id, amount, cache)
        logger.info("Quality bonus +%d XP to %s for %s", amount, owner_id, submission_id)
    return amount


async def record_vote(
    engine: Engine,
    cache: ConfigCache | None,
    submission_id: str,
    voter_id: str,
    db_timeout: float = 10.0,
) -> VoteResult:
    """Cast a vote, then re-check the owner's vote achievements and tags."""
    # Not retried: a timed-out first try may have committed.
    result = await run_db(cast_vote, engine, cache, submission_id, voter_id)
    if not result.recorded:
        return result

    awarded = await run_db_retrying(
        recheck_achievements, engine, result.owner_id, {AchievementType.VOTE},
        timeout=db_timeout,
    )
    rescanned = await run_db_retrying(recheck_tags, engine, result.owner_id, timeout=db_timeout)
    result.achievements = awarded.awarded
    result.tags = list(dict.fromkeys([*awarded.tags_unlocked, *rescanned]))
    return result
