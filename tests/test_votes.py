"""
tests/test_votes.py — Community Vote Tests
===========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from conftest import NOON, run, set_settings
from photoquest.database.models import Achievement, QuestAttempt, Submission, User, Vote
from photoquest.errors import NotFoundError
from photoquest.services.vote_service import cast_vote, record_vote


@pytest.fixture
def submission(engine, make_user, make_quest) -> str:
    make_user("u1")
    for voter in ("u2", "u3", "u4"):
        make_user(voter)
    make_quest("q1", quality_bonus=50)
    with Session(engine) as session:
        session.add(QuestAttempt(
            id="a1", quest_id="q1", user_id="u1", status="completed",
            started_at=NOON, completed_at=NOON, submission_id="a1_1",
        ))
        session.add(Submission(
            id="a1_1", attempt_id="a1", user_id="u1", quest_id="q1",
            artifact_path="quest-submissions/u1/q1_1.jpg",
            moderation_status="approved", timestamp=NOON,
        ))
        session.commit()
    return "a1_1"


class TestCastVote:
    def test_counts_vote(self, engine, cache, submission):
        result = cast_vote(engine, cache, submission, "u2")
        assert result.recorded
        assert result.votes == 1
        assert result.owner_id == "u1"

    def test_duplicate_vote_not_counted(self, engine, cache, submission):
        cast_vote(engine, cache, submission, "u2")
        again = cast_vote(engine, cache, submission, "u2")
        assert not again.recorded
        assert again.votes == 1
        with Session(engine) as session:
            assert session.query(Vote).count() == 1

    def test_self_vote_rejected(self, engine, cache, submission):
        with pytest.raises(ValueError):
            cast_vote(engine, cache, submission, "u1")

    def test_only_approved_submissions(self, engine, cache, submission):
        with Session(engine) as session:
            session.get(Submission, submission).moderation_status = "pending_review"
            session.commit()
        with pytest.raises(NotFoundError):
            cast_vote(engine, cache, submission, "u2")

    def test_quality_bonus_awarded_once(self, engine, cache, submission):
        set_settings(engine, cache, {"votes.quality_bonus_threshold": 2})

        first = cast_vote(engine, cache, submission, "u2")
        second = cast_vote(engine, cache, submission, "u3")
        third = cast_vote(engine, cache, submission, "u4")

        assert (first.quality_bonus_xp, second.quality_bonus_xp, third.quality_bonus_xp) == (0, 50, 0)
        with Session(engine) as session:
            assert session.get(User, "u1").total_xp == 50
            assert session.get(Submission, submission).quality_bonus_awarded


class TestRecordVote:
    def test_vote_achievement(self, engine, cache, submission):
        with Session(engine) as session:
            session.add(Achievement(
                id="crowd-pleaser", name="Crowd Pleaser", type="vote",
                description="Receive two votes", threshold=2,
            ))
            session.commit()

        first = run(record_vote(engine, cache, submission, "u2"))
        second = run(record_vote(engine, cache, submission, "u3"))

        assert first.achievements == []
        assert second.achievements == ["crowd-pleaser"]
        assert second.to_dict()["achievements_unlocked"] == ["crowd-pleaser"]

    def test_duplicate_skips_rechecks(self, engine, cache, submission):
        run(record_vote(engine, cache, submission, "u2"))
        again = run(record_vote(engine, cache, submission, "u2"))
        assert not again.recorded
        assert again.achievements == []
