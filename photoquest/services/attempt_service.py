"""
photoquest.services.attempt_service — Quest Attempt State Machine
==================================================================

Owns one attempt's lifecycle::

    start ──▶ in-progress ──cancel──▶ cancelled
                   │
                   └──submit──▶ completed   (approved or pending_review)

Terminal states are absorbing: ``cancel`` or ``submit`` on a completed or
cancelled attempt raises :class:`~photoquest.errors.AlreadySettledError`.

``submit`` in order:

1. owner + state check, then the geofence check (nothing is uploaded
   when the user is out of range),
2. write-once upload of the photo,
3. :class:`~photoquest.services.moderation_service.ModerationPipeline`,
4. ``rejected`` → rejected submission recorded, attempt stays
   in-progress, :class:`~photoquest.errors.ContentRejectedError`;
   otherwise one transaction flips the attempt to ``completed`` with a
   conditional UPDATE (the guard that serialises concurrent submits),
   records the submission, and queues ``pending_review`` for a reviewer,
5. ``approved`` → reward settlement (progression → achievements → tags).

Rewards for ``pending_review`` are settled only when a reviewer approves.
A settlement failure never rolls back the completed attempt; it is logged
and retried in the background, and :meth:`retry_unsettled` sweeps any
that still slipped through.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from photoquest.constants import as_utc, utcnow
from photoquest.database.engine import run_db, run_db_retrying
from photoquest.database.models import (
    AttemptStatus,
    ModerationQueueItem,
    ModerationStatus,
    Quest,
    QuestAttempt,
    Submission,
)
from photoquest.engine.achievements import AchievementType
from photoquest.engine.geo import Coordinate, proximity
from photoquest.errors import (
    AlreadySettledError,
    ContentRejectedError,
    NotFoundError,
    OutOfRangeError,
    PersistenceConflictError,
    StorageFailureError,
)
from photoquest.services import achievement_service, eligibility_service, progression_service, tag_service
from photoquest.services.storage_service import StoredArtifact, submission_path, validate_photo

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy import Engine

    from photoquest.engine.cache import ConfigCache
    from photoquest.engine.eligibility import EligibilityResult
    from photoquest.services.moderation_service import ModerationPipeline
    from photoquest.services.storage_service import LocalObjectStore

logger = logging.getLogger(__name__)

SETTLEMENT_MAX_RETRIES = 3


@dataclass(slots=True)
class SettlementResult:
    progression: progression_service.ProgressionResult
    achievements: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            **self.progression.to_dict(),
            "achievements_unlocked": self.achievements,
            "tags_unlocked": self.tags,
        }


@dataclass(slots=True)
class SubmissionOutcome:
    attempt_id: str
    submission_id: str
    status: ModerationStatus
    message: str
    reasons: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    settlement: SettlementResult | None = None
    settlement_deferred: bool = False

    def to_dict(self) -> dict:
        return {
            "attempt_id": self.attempt_id,
            "submission_id": self.submission_id,
            "status": self.status.value,
            "message": self.message,
            "reasons": self.reasons,
            "suggestions": self.suggestions,
            "rewards": self.settlement.to_dict() if self.settlement else None,
            "settlement_deferred": self.settlement_deferred,
        }


@dataclass(frozen=True, slots=True)
class _AttemptSnapshot:
    attempt_id: str
    user_id: str
    quest_id: str
    status: str
    target: Coordinate
    radius_m: float
    photo_requirements: dict


# ---------------------------------------------------------------------------
# Sync DB steps (run via run_db)
# ---------------------------------------------------------------------------
def load_attempt(engine: Engine, attempt_id: str, user_id: str) -> _AttemptSnapshot:
    with Session(engine) as session:
        attempt = session.get(QuestAttempt, attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise NotFoundError(f"Attempt {attempt_id} not found", attempt_id=attempt_id)
        quest = session.get(Quest, attempt.quest_id)
        if quest is None:
            raise NotFoundError(f"Quest {attempt.quest_id} not found", quest_id=attempt.quest_id)
        return _AttemptSnapshot(
            attempt_id=attempt.id,
            user_id=attempt.user_id,
            quest_id=quest.id,
            status=attempt.status,
            target=Coordinate(quest.latitude, quest.longitude),
            radius_m=quest.radius_m,
            photo_requirements=dict(quest.photo_requirements or {}),
        )


def cancel_attempt(engine: Engine, attempt_id: str, user_id: str, now: datetime | None = None) -> None:
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        attempt = session.get(QuestAttempt, attempt_id)
        if attempt is None or attempt.user_id != user_id:
            raise NotFoundError(f"Attempt {attempt_id} not found", attempt_id=attempt_id)
        res = session.execute(
            update(QuestAttempt)
            .where(
                QuestAttempt.id == attempt_id,
                QuestAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .values(status=AttemptStatus.CANCELLED.value, cancelled_at=now)
        )
        if res.rowcount == 0:
            session.rollback()
            raise AlreadySettledError(
                f"Attempt {attempt_id} is already {attempt.status}",
                attempt_id=attempt_id, status=attempt.status,
            )
        session.commit()
    logger.info("Attempt %s cancelled", attempt_id)


def record_rejected_submission(
    engine: Engine,
    snapshot: _AttemptSnapshot,
    submission_id: str,
    artifact: StoredArtifact,
    result: dict,
    now: datetime,
) -> None:
    with Session(engine) as session:
        session.add(Submission(
            id=submission_id,
            attempt_id=snapshot.attempt_id,
            user_id=snapshot.user_id,
            quest_id=snapshot.quest_id,
            artifact_path=artifact.path,
            artifact_url=None,
            artifact_deleted=True,
            moderation_status=ModerationStatus.REJECTED.value,
            moderation_result=result,
            timestamp=now,
        ))
        session.commit()


def complete_attempt(
    engine: Engine,
    snapshot: _AttemptSnapshot,
    submission_id: str,
    artifact: StoredArtifact,
    status: ModerationStatus,
    result: dict,
    now: datetime,
) -> None:
    """Flip in-progress → completed and record the submission atomically.

    Raises :class:`AlreadySettledError` if another submit got there first.
    """
    with Session(engine) as session:
        res = session.execute(
            update(QuestAttempt)
            .where(
                QuestAttempt.id == snapshot.attempt_id,
                QuestAttempt.status == AttemptStatus.IN_PROGRESS.value,
            )
            .values(
                status=AttemptStatus.COMPLETED.value,
                completed_at=now,
                submission_id=submission_id,
            )
        )
        if res.rowcount == 0:
            session.rollback()
            raise AlreadySettledError(
                f"Attempt {snapshot.attempt_id} was settled concurrently",
                attempt_id=snapshot.attempt_id,
            )

        session.add(Submission(
            id=submission_id,
            attempt_id=snapshot.attempt_id,
            user_id=snapshot.user_id,
            quest_id=snapshot.quest_id,
            artifact_path=artifact.path,
            artifact_url=artifact.url,
            moderation_status=status.value,
            moderation_result=result,
            timestamp=now,
        ))
        if status == ModerationStatus.PENDING_REVIEW:
            session.add(ModerationQueueItem(
                submission_id=submission_id,
                user_id=snapshot.user_id,
                quest_id=snapshot.quest_id,
                artifact_path=artifact.path,
                artifact_url=artifact.url,
                moderation_result=result,
                review_status="pending",
                timestamp=now,
            ))
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise PersistenceConflictError(
                f"Submission {submission_id} already recorded", submission_id=submission_id,
            ) from exc


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------
class QuestAttemptStateMachine:
    """Async orchestrator for attempts.  Stateless apart from the set of
    background settlement retries it is tracking.

    Usage::

        machine = QuestAttemptStateMachine(engine, cache, store, pipeline)
        attempt_id = await machine.start(user_id, quest_id)
        outcome = await machine.submit(attempt_id, user_id, coord, data, "IMG_1.jpg")
    """

    def __init__(
        self,
        engine: Engine,
        cache: ConfigCache | None,
        store: LocalObjectStore,
        pipeline: ModerationPipeline,
        *,
        clock: Callable[[], datetime] = utcnow,
        db_timeout: float = 10.0,
        settlement_retry_delay: float = 5.0,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.store = store
        self.pipeline = pipeline
        self.clock = clock
        self.db_timeout = db_timeout
        self.settlement_retry_delay = settlement_retry_delay
        self._retry_tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------
    # Eligibility / start / cancel
    # -------------------------------------------------------------------
    async def check(self, user_id: str, quest_id: str) -> EligibilityResult:
        return await run_db_retrying(
            eligibility_service.check_eligibility,
            self.engine, self.cache, user_id, quest_id, self.clock(),
            timeout=self.db_timeout,
        )

    async def start(self, user_id: str, quest_id: str, coordinate: Coordinate | None = None) -> str:
        # Not retried: a lost response after commit would start a second attempt.
        return await run_db(
            eligibility_service.start_attempt,
            self.engine, self.cache, user_id, quest_id, coordinate, self.clock(),
        )

    async def cancel(self, attempt_id: str, user_id: str) -> None:
        await run_db_retrying(
            cancel_attempt, self.engine, attempt_id, user_id, self.clock(),
            timeout=self.db_timeout,
        )

    # -------------------------------------------------------------------
    # Submit
    # -------------------------------------------------------------------
    async def submit(
        self,
        attempt_id: str,
        user_id: str,
        coordinate: Coordinate,
        data: bytes,
        filename: str,
        content_type: str | None = None,
    ) -> SubmissionOutcome:
        snapshot = await run_db_retrying(
            load_attempt, self.engine, attempt_id, user_id, timeout=self.db_timeout,
        )
        if snapshot.status != AttemptStatus.IN_PROGRESS.value:
            raise AlreadySettledError(
                f"Attempt {attempt_id} is already {snapshot.status}",
                attempt_id=attempt_id, status=snapshot.status,
            )

        where = proximity(coordinate, snapshot.target, snapshot.radius_m)
        if not where.inside:
            logger.info(
                "Submit for %s out of range: %.0f m > %.0f m",
                attempt_id, where.distance_m, snapshot.radius_m,
            )
            raise OutOfRangeError(where.distance_m, snapshot.radius_m)

        ext = validate_photo(filename, data, content_type)
        now = as_utc(self.clock())
        epoch_ms = int(now.timestamp() * 1000)
        submission_id = f"{attempt_id}_{epoch_ms}"
        artifact = await self.store.upload(
            submission_path(user_id, snapshot.quest_id, epoch_ms, ext), data,
        )

        try:
            verdict = await self.pipeline.evaluate(
                artifact,
                data=data,
                filename=PurePath(filename).name,
                submission_id=submission_id,
                user_id=user_id,
                quest_id=snapshot.quest_id,
                photo_requirements=snapshot.photo_requirements,
            )
        except StorageFailureError:
            raise
        except Exception:
            # Moderation never finished; don't leave an orphaned artifact.
            await self._compensate(artifact)
            raise

        result = verdict.to_dict()
        if verdict.status == ModerationStatus.REJECTED:
            await run_db_retrying(
                record_rejected_submission,
                self.engine, snapshot, submission_id, artifact, result, now,
                timeout=self.db_timeout,
            )
            raise ContentRejectedError(
                submission_id,
                "; ".join(verdict.reasons) or verdict.message,
            )

        try:
            await run_db(
                complete_attempt,
                self.engine, snapshot, submission_id, artifact, verdict.status, result, now,
            )
        except Exception:
            await self._compensate(artifact)
            raise

        outcome = SubmissionOutcome(
            attempt_id=attempt_id,
            submission_id=submission_id,
            status=verdict.status,
            message=verdict.message,
            reasons=list(verdict.reasons),
            suggestions=list(verdict.relevance.suggestions),
        )
        if verdict.status == ModerationStatus.APPROVED:
            outcome.settlement = await self.settle_or_defer(user_id, snapshot.quest_id, attempt_id)
            outcome.settlement_deferred = outcome.settlement is None
        return outcome

    async def _compensate(self, artifact: StoredArtifact) -> None:
        try:
            await self.store.delete(artifact.path)
        except StorageFailureError:
            logger.exception("Compensating delete of %s failed", artifact.path)

    # -------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------
    async def settle_rewards(self, user_id: str, quest_id: str, attempt_id: str) -> SettlementResult:
        """Progression → achievements → tags for one attempt.  Idempotent."""
        now = self.clock()
        progression = await run_db_retrying(
            progression_service.apply_quest_completion,
            self.engine, self.cache, user_id, quest_id, attempt_id, now,
            timeout=self.db_timeout,
        )
        awarded = await run_db_retrying(
            achievement_service.recheck_achievements,
            self.engine, user_id, {AchievementType.QUEST, AchievementType.STREAK}, now,
            timeout=self.db_timeout,
        )
        rescanned = await run_db_retrying(
            tag_service.recheck_tags, self.engine, user_id, now,
            timeout=self.db_timeout,
        )
        tags = list(dict.fromkeys([*awarded.tags_unlocked, *rescanned]))
        return SettlementResult(progression=progression, achievements=awarded.awarded, tags=tags)

    async def settle_or_defer(self, user_id: str, quest_id: str, attempt_id: str) -> SettlementResult | None:
        try:
            return await self.settle_rewards(user_id, quest_id, attempt_id)
        except Exception:
            logger.exception("Settlement of attempt %s failed; retrying in background", attempt_id)
            self._schedule_retry(user_id, quest_id, attempt_id)
            return None

    def _schedule_retry(self, user_id: str, quest_id: str, attempt_id: str) -> None:
        task = asyncio.create_task(self._retry_settlement(user_id, quest_id, attempt_id))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _retry_settlement(self, user_id: str, quest_id: str, attempt_id: str) -> None:
        for attempt in range(1, SETTLEMENT_MAX_RETRIES + 1):
            await asyncio.sleep(self.settlement_retry_delay * attempt)
            try:
                await self.settle_rewards(user_id, quest_id, attempt_id)
            except Exception:
                logger.exception(
                    "Settlement retry %d/%d for attempt %s failed",
                    attempt, SETTLEMENT_MAX_RETRIES, attempt_id,
                )
            else:
                logger.info("Settlement of attempt %s succeeded on retry %d", attempt_id, attempt)
                return
        logger.error(
            "Giving up on settlement of attempt %s; the settle-pending sweep will pick it up",
            attempt_id,
        )

    async def retry_unsettled(self, limit: int = 100) -> int:
        """Settle completed+approved attempts that have no reward row yet."""
        pending = await run_db(progression_service.find_unsettled_attempts, self.engine, limit)
        settled = 0
        for user_id, quest_id, attempt_id in pending:
            try:
                await self.settle_rewards(user_id, quest_id, attempt_id)
            except Exception:
                logger.exception("Sweep could not settle attempt %s", attempt_id)
                continue
            settled += 1
        if pending:
            logger.info("Settlement sweep: %d/%d attempts settled", settled, len(pending))
        return settled

    async def aclose(self) -> None:
        """Cancel outstanding background retries (the sweep covers them)."""
        for task in list(self._retry_tasks):
            task.cancel()
        if self._retry_tasks:
            await asyncio.gather(*self._retry_tasks, return_exceptions=True)
