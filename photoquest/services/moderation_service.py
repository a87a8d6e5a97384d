"""
photoquest.services.moderation_service — Moderation Pipeline
=============================================================

Runs an uploaded photo through classification, policy, quest relevance
and quality, then:

* appends the decision to ``moderation_logs`` (every verdict),
* deletes the artifact from the object store when the verdict is
  ``rejected``.

Queueing a ``pending_review`` submission for a human is done by the
attempt state machine in the same transaction that records the
submission.

Fail-closed: if the classifier is unavailable the local heuristics in
:func:`~photoquest.engine.moderation.local_heuristic_result` stand in, and
they never approve.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from photoquest.constants import utcnow
from photoquest.database.engine import run_db_retrying
from photoquest.database.models import ModerationLog, ModerationStatus
from photoquest.engine.moderation import (
    DEFAULT_RELEVANCE_THRESHOLD,
    DEFAULT_REVIEW_CONFIDENCE,
    STATUS_MESSAGES,
    ClassifierResult,
    ModerationVerdict,
    check_relevance,
    combine_verdict,
    evaluate_policy,
    local_heuristic_result,
)
from photoquest.engine.quality import DEFAULT_QUALITY_THRESHOLD, measure_image, score_quality
from photoquest.errors import ModerationUnavailableError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from photoquest.engine.cache import ConfigCache
    from photoquest.services.classifier_client import ClassifierClient
    from photoquest.services.storage_service import LocalObjectStore, StoredArtifact

logger = logging.getLogger(__name__)


def append_moderation_log(
    engine: Engine,
    *,
    submission_id: str,
    user_id: str,
    quest_id: str,
    artifact_path: str,
    verdict: str,
    source: str,
    result: dict | None,
    reason: str | None = None,
    actor_id: str | None = None,
    timestamp: datetime | None = None,
) -> None:
    """Append one row to the moderation audit log."""
    with Session(engine) as session:
        session.add(ModerationLog(
            submission_id=submission_id,
            user_id=user_id,
            quest_id=quest_id,
            artifact_path=artifact_path,
            verdict=verdict,
            source=source,
            actor_id=actor_id,
            result=result,
            reason=reason,
            timestamp=timestamp or utcnow(),
        ))
        session.commit()


class ModerationPipeline:
    """Evaluate an uploaded artifact against a quest's photo requirements.

    Collaborators are injected so tests can pass fakes::

        pipeline = ModerationPipeline(engine, store, classifier, cache)
        verdict = await pipeline.evaluate(
            artifact, data=photo_bytes, filename="IMG_1.jpg",
            submission_id=sid, user_id=uid, quest_id=qid,
            photo_requirements=quest.photo_requirements,
        )
    """

    def __init__(
        self,
        engine: Engine,
        store: LocalObjectStore,
        classifier: ClassifierClient | None = None,
        cache: ConfigCache | None = None,
        db_timeout: float = 10.0,
    ) -> None:
        self.engine = engine
        self.store = store
        self.classifier = classifier
        self.cache = cache
        self.db_timeout = db_timeout

    # -------------------------------------------------------------------
    # Thresholds (settings table, with defaults)
    # -------------------------------------------------------------------
    def _threshold(self, key: str, default: float) -> float:
        if self.cache is None:
            return default
        return self.cache.get_float(key, default)

    # -------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------
    async def classify(self, artifact_url: str, filename: str, size_bytes: int,
                       width: int, height: int) -> ClassifierResult:
        if self.classifier is not None:
            try:
                return await self.classifier.moderate(artifact_url)
            except ModerationUnavailableError as exc:
                logger.warning("Classifier unavailable (%s); using local heuristics", exc)
        else:
            logger.info("No classifier configured; using local heuristics")
        return local_heuristic_result(filename, size_bytes, width, height)

    async def evaluate(
        self,
        artifact: StoredArtifact,
        *,
        data: bytes,
        filename: str,
        submission_id: str,
        user_id: str,
        quest_id: str,
        photo_requirements: Mapping[str, Any] | None,
    ) -> ModerationVerdict:
        requirements = photo_requirements or {}
        metrics = await asyncio.to_thread(measure_image, data)

        classifier_result = await self.classify(
            artifact.url, filename, metrics.size_bytes, metrics.width, metrics.height,
        )

        policy = evaluate_policy(
            classifier_result,
            self._threshold("moderation.manual_review_confidence", DEFAULT_REVIEW_CONFIDENCE),
        )
        relevance = check_relevance(
            classifier_result.labels,
            requirements.get("subjects") or [],
            self._threshold("moderation.relevance_threshold", DEFAULT_RELEVANCE_THRESHOLD),
        )
        quality = score_quality(
            metrics,
            requirements.get("min_resolution"),
            self._threshold("moderation.quality_threshold", DEFAULT_QUALITY_THRESHOLD),
        )
        status, reasons = combine_verdict(policy, relevance, quality)

        verdict = ModerationVerdict(
            status=status,
            classifier=classifier_result,
            policy=policy,
            relevance=relevance,
            quality=quality,
            message=STATUS_MESSAGES[status],
            reasons=reasons,
        )

        if status == ModerationStatus.REJECTED:
            # Artifact must be gone before the verdict is reported.
            # StorageFailureError propagates after the decision is logged.
            try:
                await self.store.delete(artifact.path)
            finally:
                await self._log(verdict, artifact, submission_id, user_id, quest_id)
        else:
            await self._log(verdict, artifact, submission_id, user_id, quest_id)

        logger.info(
            "Moderation verdict for %s: %s (source=%s, relevance=%.2f, quality=%.2f)",
            submission_id, status.value, classifier_result.source,
            relevance.score, quality.overall_score,
        )
        return verdict

    async def _log(
        self,
        verdict: ModerationVerdict,
        artifact: StoredArtifact,
        submission_id: str,
        user_id: str,
        quest_id: str,
    ) -> None:
        await run_db_retrying(
            append_moderation_log,
            self.engine,
            submission_id=submission_id,
            user_id=user_id,
            quest_id=quest_id,
            artifact_path=artifact.path,
            verdict=verdict.status.value,
            source=verdict.classifier.source,
            result=verdict.to_dict(),
            reason="; ".join(verdict.reasons) or None,
            timeout=self.db_timeout,
        )
