"""
tests/test_review.py — Manual Moderation Review Tests
======================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from conftest import QUEST_LAT, QUEST_LON, clean_result, run, stored_files
from photoquest.database.models import (
    AdminLog,
    CompletedQuest,
    ModerationLog,
    ModerationQueueItem,
    QuestAttempt,
    Submission,
)
from photoquest.engine.geo import Coordinate
from photoquest.engine.moderation import Likelihood
from photoquest.errors import (
    AlreadySettledError,
    ContentRejectedError,
    NotFoundError,
    StorageFailureError,
)
from photoquest.services.review_service import ModerationReviewer

AT_QUEST = Coordinate(QUEST_LAT, QUEST_LON)


@pytest.fixture
def reviewer(machine) -> ModerationReviewer:
    return ModerationReviewer(machine)


@pytest.fixture
def pending(machine, classifier, photo, make_user, make_quest) -> str:
    """Submission id of a photo waiting in the review queue."""
    make_user("u1")
    make_quest("q1", first_time_bonus=10, speed_bonus=20)
    classifier.result = clean_result(racy=Likelihood.POSSIBLE)
    attempt_id = run(machine.start("u1", "q1"))
    outcome = run(machine.submit(attempt_id, "u1", AT_QUEST, photo, "bison.jpg"))
    assert outcome.status == "pending_review"
    return outcome.submission_id


class TestQueue:
    def test_lists_pending(self, reviewer, pending):
        items = run(reviewer.pending())
        assert [i["submission_id"] for i in items] == [pending]
        assert items[0]["moderation_result"]["flagged"] == ["racy"]

    def test_decided_items_leave_the_queue(self, reviewer, pending):
        run(reviewer.approve(pending, "mod-1"))
        assert run(reviewer.pending()) == []


class TestApprove:
    def test_approve_settles_rewards(self, engine, reviewer, pending):
        settlement = run(reviewer.approve(pending, "mod-1"))

        assert settlement.progression.xp_awarded == 130
        assert settlement.achievements == ["first-quest"]
        with Session(engine) as session:
            submission = session.get(Submission, pending)
            assert submission.moderation_status == "approved"
            assert submission.reviewed_by == "mod-1"
            assert session.query(ModerationQueueItem).one().review_status == "approved"
            assert session.query(CompletedQuest).count() == 1
            log = session.query(ModerationLog).order_by(ModerationLog.id.desc()).first()
            assert (log.source, log.actor_id, log.verdict) == ("reviewer", "mod-1", "approved")
            assert session.query(AdminLog).one().action_type == "APPROVE"

    def test_second_decision_is_already_settled(self, reviewer, pending):
        run(reviewer.approve(pending, "mod-1"))
        with pytest.raises(AlreadySettledError):
            run(reviewer.approve(pending, "mod-2"))
        with pytest.raises(AlreadySettledError):
            run(reviewer.reject(pending, "mod-2", "changed my mind"))

    def test_unknown_submission(self, reviewer, engine):
        with pytest.raises(NotFoundError):
            run(reviewer.approve("nope", "mod-1"))


class TestReject:
    def test_reject_deletes_artifact_without_reward(self, engine, reviewer, store, pending):
        assert len(stored_files(store)) == 1

        decision = run(reviewer.reject(pending, "mod-1", "  Not the bison paddock  "))

        assert decision.status == "rejected"
        assert stored_files(store) == []
        with Session(engine) as session:
            submission = session.get(Submission, pending)
            assert submission.moderation_status == "rejected"
            assert submission.artifact_deleted
            assert submission.review_reason == "Not the bison paddock"
            assert session.get(QuestAttempt, submission.attempt_id).status == "completed"
            assert session.query(CompletedQuest).count() == 0

    @pytest.mark.parametrize("reason", ["", "   "])
    def test_reason_required(self, reviewer, pending, reason):
        with pytest.raises(ValueError):
            run(reviewer.reject(pending, "mod-1", reason))

    def test_failed_delete_keeps_flag_and_sweep_cleans_up(self, engine, reviewer, store, pending, monkeypatch):
        async def broken_delete(path):
            raise StorageFailureError(f"Could not delete artifact: {path}", path=path)

        monkeypatch.setattr(store, "delete", broken_delete)
        with pytest.raises(StorageFailureError):
            run(reviewer.reject(pending, "mod-1", "blurry"))

        assert len(stored_files(store)) == 1
        with Session(engine) as session:
            submission = session.get(Submission, pending)
            assert submission.moderation_status == "rejected"
            assert not submission.artifact_deleted

        with pytest.raises(AlreadySettledError):
            run(reviewer.reject(pending, "mod-1", "blurry"))

        monkeypatch.undo()
        assert run(reviewer.purge_rejected_artifacts()) == 1
        assert stored_files(store) == []
        with Session(engine) as session:
            assert session.get(Submission, pending).artifact_deleted
        assert run(reviewer.purge_rejected_artifacts()) == 0

    def test_sweep_ignores_policy_rejections(self, reviewer, machine, classifier, photo, make_quest, pending):
        make_quest("q2")
        classifier.result = clean_result(violence=Likelihood.VERY_LIKELY)
        attempt_id = run(machine.start("u1", "q2"))
        with pytest.raises(ContentRejectedError):
            run(machine.submit(attempt_id, "u1", AT_QUEST, photo, "bison.jpg"))

        assert run(reviewer.purge_rejected_artifacts()) == 0
