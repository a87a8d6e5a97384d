"""
tests/test_achievements.py — Achievement Engine Tests
======================================================
Threshold resolution and the metric handlers (pure), then awarding and
the tag cascade against SQLite.
"""

from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import Session

from conftest import NOON
from photoquest.database.models import (
    Achievement,
    AdminLog,
    CompletedQuest,
    TagUnlockHistory,
    UserAchievement,
)
from photoquest.engine.achievements import (
    AchievementContext,
    AchievementType,
    check_achievements,
    extract_threshold,
    resolve_threshold,
)
from photoquest.errors import NotFoundError
from photoquest.services.achievement_service import grant_achievement, recheck_achievements


def _ach(id, type="quest", description="", threshold=None):
    return SimpleNamespace(id=id, type=type, description=description, threshold=threshold)


def _complete_quests(engine, make_quest, user_id: str, count: int, start: int = 0) -> None:
    for i in range(start, start + count):
        make_quest(f"q{i}")
    with Session(engine) as session:
        for i in range(start, start + count):
            session.add(CompletedQuest(
                user_id=user_id, quest_id=f"q{i}", attempt_id=f"a{i}",
                xp_earned=100, completed_at=NOON,
            ))
        session.commit()


# ---------------------------------------------------------------------------
# Pure checks
# ---------------------------------------------------------------------------
class TestThresholds:
    def test_extract_first_number(self):
        assert extract_threshold("Complete 5 different quests") == 5
        assert extract_threshold("Receive 100 votes, then 200 more") == 100

    def test_extract_none(self):
        assert extract_threshold("Do something great") is None
        assert extract_threshold(None) is None

    def test_column_wins(self):
        assert resolve_threshold(_ach("explorer", description="Complete 5 quests", threshold=3)) == 3

    def test_builtin_rule_for_known_id(self):
        assert resolve_threshold(_ach("first-quest", description="Complete your first quest")) == 1

    def test_builtin_rule_requires_matching_type(self):
        assert resolve_threshold(_ach("explorer", type="vote", description="no number")) is None

    def test_description_fallback(self):
        assert resolve_threshold(_ach("custom", description="Complete 12 quests")) == 12


class TestCheckAchievements:
    CATALOGUE = [
        _ach("first-quest"),
        _ach("explorer", description="Complete 5 different quests"),
        _ach("photographer", type="vote", description="Receive 50 votes"),
        _ach("week-warrior", type="streak", threshold=7),
    ]

    def test_quest_count(self):
        earned = check_achievements(self.CATALOGUE, AchievementContext(completed_quests=5), set())
        assert earned == ["first-quest", "explorer"]

    def test_already_earned_skipped(self):
        earned = check_achievements(
            self.CATALOGUE, AchievementContext(completed_quests=5), {"first-quest"},
        )
        assert earned == ["explorer"]

    def test_type_filter(self):
        ctx = AchievementContext(completed_quests=5, votes_received=60)
        assert check_achievements(self.CATALOGUE, ctx, set(), {AchievementType.VOTE}) == ["photographer"]

    def test_streak(self):
        assert check_achievements(self.CATALOGUE, AchievementContext(streak_count=7), set()) == [
            "week-warrior",
        ]

    def test_missing_threshold_is_skipped_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="photoquest.engine.achievements"):
            earned = check_achievements(
                [_ach("mystery", description="Be awesome")],
                AchievementContext(completed_quests=1000),
                set(),
            )
        assert earned == []
        assert "mystery" in caplog.text

    def test_unknown_type_is_skipped(self):
        assert check_achievements([_ach("odd", type="distance", threshold=1)],
                                  AchievementContext(completed_quests=9), set()) == []


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
class TestRecheckAchievements:
    def test_first_quest(self, engine, make_user, make_quest):
        make_user("u1")
        _complete_quests(engine, make_quest, "u1", 1)

        result = recheck_achievements(engine, "u1", now=NOON)

        assert result.awarded == ["first-quest"]
        assert result.tags_unlocked == []

    def test_fifth_quest_unlocks_explorer_and_cascades(self, engine, make_user, make_quest):
        make_user("u1")
        _complete_quests(engine, make_quest, "u1", 4)
        assert recheck_achievements(engine, "u1", now=NOON).awarded == ["first-quest"]

        _complete_quests(engine, make_quest, "u1", 1, start=4)
        result = recheck_achievements(engine, "u1", now=NOON)

        assert result.awarded == ["explorer"]
        assert result.tags_unlocked == ["trailblazer"]
        with Session(engine) as session:
            history = session.query(TagUnlockHistory).one()
            assert (history.tag_id, history.trigger) == ("trailblazer", "explorer")

    def test_idempotent(self, engine, make_user, make_quest):
        make_user("u1")
        _complete_quests(engine, make_quest, "u1", 5)
        recheck_achievements(engine, "u1", now=NOON)

        again = recheck_achievements(engine, "u1", now=NOON)

        assert again.awarded == []
        assert again.tags_unlocked == []
        with Session(engine) as session:
            assert session.query(UserAchievement).count() == 2

    def test_inactive_achievement_ignored(self, engine, make_user, make_quest):
        with Session(engine) as session:
            session.get(Achievement, "first-quest").is_active = False
            session.commit()
        make_user("u1")
        _complete_quests(engine, make_quest, "u1", 1)
        assert recheck_achievements(engine, "u1", now=NOON).awarded == []

    def test_streak_column_threshold(self, engine, make_user):
        make_user("u1", streak=7)
        result = recheck_achievements(engine, "u1", {AchievementType.STREAK}, now=NOON)
        assert result.awarded == ["week-warrior"]

    def test_unknown_user(self, engine):
        with pytest.raises(NotFoundError):
            recheck_achievements(engine, "ghost")


class TestGrantAchievement:
    def test_manual_grant_cascades_and_logs(self, engine, make_user):
        make_user("u1")

        ok, _, tags = grant_achievement(engine, "u1", "explorer", "admin-1", reason="event prize")

        assert ok
        assert tags == ["trailblazer"]
        with Session(engine) as session:
            row = session.get(UserAchievement, ("u1", "explorer"))
            assert row.granted_by == "admin-1"
            log = session.query(AdminLog).one()
            assert (log.action_type, log.reason) == ("MANUAL_GRANT", "event prize")

    def test_second_grant_is_noop(self, engine, make_user):
        make_user("u1")
        grant_achievement(engine, "u1", "explorer", "admin-1")

        ok, message, tags = grant_achievement(engine, "u1", "explorer", "admin-1")

        assert not ok
        assert "already" in message
        assert tags == []

    def test_unknown_achievement(self, engine, make_user):
        make_user("u1")
        with pytest.raises(NotFoundError):
            grant_achievement(engine, "u1", "nope", "admin-1")
