"""
photoquest.services.review_service — Manual Moderation Review
==============================================================

Reviewers resolve ``pending_review`` submissions from the moderation
queue:

* **approve** — submission and queue item move to approved, then the
  attempt's rewards are settled through the state machine.
* **reject** — submission and queue item move to rejected, then the
  artifact is deleted and ``artifact_deleted`` is set.  The attempt stays
  completed and earns nothing.  If the delete fails the rejection stands
  and :meth:`ModerationReviewer.purge_rejected_artifacts` picks the
  artifact up later.

Both transitions are conditional UPDATEs on ``moderation_status =
'pending_review'``, so a second decision raises
:class:`~photoquest.errors.AlreadySettledError`.  Every decision is
appended to ``moderation_logs`` with the reviewer as actor.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from photoquest.constants import as_utc, utcnow
from photoquest.database.engine import run_db, run_db_retrying
from photoquest.database.models import (
    AdminActionType,
    AdminLog,
    ModerationLog,
    ModerationQueueItem,
    ModerationStatus,
    Submission,
)
from photoquest.errors import AlreadySettledError, NotFoundError, StorageFailureError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from photoquest.services.attempt_service import QuestAttemptStateMachine, SettlementResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReviewDecision:
    submission_id: str
    attempt_id: str
    user_id: str
    quest_id: str
    artifact_path: str
    status: ModerationStatus


# ---------------------------------------------------------------------------
# Sync DB steps
# ---------------------------------------------------------------------------
def list_pending(engine: Engine, limit: int = 50) -> list[dict]:
    """Queue items awaiting review, oldest first."""
    with Session(engine) as session:
        rows = session.scalars(
            select(ModerationQueueItem)
            .where(ModerationQueueItem.review_status == "pending")
            .order_by(ModerationQueueItem.timestamp, ModerationQueueItem.id)
            .limit(limit)
        ).all()
        return [
            {
                "submission_id": r.submission_id,
                "user_id": r.user_id,
                "quest_id": r.quest_id,
                "artifact_url": r.artifact_url,
                "moderation_result": r.moderation_result,
                "submitted_at": as_utc(r.timestamp).isoformat(),
            }
            for r in rows
        ]


def record_review(
    engine: Engine,
    submission_id: str,
    reviewer_id: str,
    status: ModerationStatus,
    reason: str | None = None,
    now: datetime | None = None,
) -> ReviewDecision:
    """Transition a pending submission to *status* and log the decision."""
    now = as_utc(now or utcnow())
    with Session(engine) as session:
        submission = session.get(Submission, submission_id)
        if submission is None:
            raise NotFoundError(f"Submission {submission_id} not found", submission_id=submission_id)

        res = session.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.moderation_status == ModerationStatus.PENDING_REVIEW.value,
            )
            .values(
                moderation_status=status.value,
                reviewed_by=reviewer_id,
                reviewed_at=now,
                review_reason=reason,
            )
        )
        if res.rowcount == 0:
            session.rollback()
            raise AlreadySettledError(
                f"Submission {submission_id} was already reviewed",
                submission_id=submission_id,
            )

        session.execute(
            update(ModerationQueueItem)
            .where(ModerationQueueItem.submission_id == submission_id)
            .values(
                review_status=status.value,
                reviewer_id=reviewer_id,
                reviewed_at=now,
                reason=reason,
            )
        )
        session.add(ModerationLog(
            submission_id=submission_id,
            user_id=submission.user_id,
            quest_id=submission.quest_id,
            artifact_path=submission.artifact_path,
            verdict=status.value,
            source="reviewer",
            actor_id=reviewer_id,
            result=submission.moderation_result,
            reason=reason,
            timestamp=now,
        ))
        session.add(AdminLog(
            actor_id=reviewer_id,
            action_type=(
                AdminActionType.APPROVE.value
                if status == ModerationStatus.APPROVED else AdminActionType.REJECT.value
            ),
            target_table="submissions",
            target_id=submission_id,
            reason=reason,
        ))
        decision = ReviewDecision(
            submission_id=submission_id,
            attempt_id=submission.attempt_id,
            user_id=submission.user_id,
            quest_id=submission.quest_id,
            artifact_path=submission.artifact_path,
            status=status,
        )
        session.commit()

    logger.info("Submission %s %s by %s", submission_id, status.value, reviewer_id)
    return decision


def mark_artifact_deleted(engine: Engine, submission_id: str) -> None:
    with Session(engine) as session:
        session.execute(
            update(Submission)
            .where(Submission.id == submission_id)
            .values(artifact_deleted=True)
        )
        session.commit()


def find_orphaned_artifacts(engine: Engine, limit: int = 100) -> list[tuple[str, str]]:
    """(submission_id, artifact_path) of rejected submissions whose artifact is still stored."""
    with Session(engine) as session:
        rows = session.execute(
            select(Submission.id, Submission.artifact_path)
            .where(
                Submission.moderation_status == ModerationStatus.REJECTED.value,
                Submission.artifact_deleted.is_(False),
            )
            .order_by(Submission.timestamp)
            .limit(limit)
        ).all()
        return [(r.id, r.artifact_path) for r in rows]


# ---------------------------------------------------------------------------
# Reviewer
# ---------------------------------------------------------------------------
class ModerationReviewer:
    """Applies reviewer decisions; rewards go through the state machine."""

    def __init__(self, machine: QuestAttemptStateMachine) -> None:
        self.machine = machine
        self.engine = machine.engine
        self.store = machine.store

    async def pending(self, limit: int = 50) -> list[dict]:
        return await run_db_retrying(list_pending, self.engine, limit, timeout=self.machine.db_timeout)

    async def approve(self, submission_id: str, reviewer_id: str) -> SettlementResult | None:
        """Approve and settle.  None means settlement was deferred to a retry."""
        decision = await run_db(
            record_review, self.engine, submission_id, reviewer_id,
            ModerationStatus.APPROVED, None, self.machine.clock(),
        )
        return await self.machine.settle_or_defer(
            decision.user_id, decision.quest_id, decision.attempt_id,
        )

    async def reject(self, submission_id: str, reviewer_id: str, reason: str) -> ReviewDecision:
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")
        decision = await run_db(
            record_review, self.engine, submission_id, reviewer_id,
            ModerationStatus.REJECTED, reason.strip(), self.machine.clock(),
        )
        try:
            await self.store.delete(decision.artifact_path)
        except StorageFailureError:
            logger.error(
                "Submission %s rejected but artifact %s is still stored",
                submission_id, decision.artifact_path,
            )
            raise
        await run_db_retrying(
            mark_artifact_deleted, self.engine, submission_id, timeout=self.machine.db_timeout,
        )
        return decision

    async def purge_rejected_artifacts(self, limit: int = 100) -> int:
        """Delete artifacts left behind by rejections whose delete failed."""
        orphans = await run_db(find_orphaned_artifacts, self.engine, limit)
        purged = 0
        for submission_id, path in orphans:
            try:
                await self.store.delete(path)
            except StorageFailureError:
                logger.warning("Sweep could not delete artifact %s", path)
                continue
            await run_db(mark_artifact_deleted, self.engine, submission_id)
            purged += 1
        if orphans:
            logger.info("Artifact sweep: %d/%d rejected artifacts deleted", purged, len(orphans))
        return purged
