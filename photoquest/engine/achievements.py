"""
photoquest.engine.achievements — Achievement Check Pipeline
============================================================

Handler-registry evaluation of achievement predicates.  Each achievement
type maps to a metric handler that reads the user's progress snapshot;
the threshold comes from, in order:

1. the structured ``threshold`` column,
2. a built-in rule for well-known ids (``first-quest`` → 1 quest, ...),
3. the first integer in the description ("Complete 5 different quests").

An achievement with no resolvable threshold is skipped and logged, never
awarded.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class AchievementType(enum.StrEnum):
    QUEST = "quest"
    VOTE = "vote"
    STREAK = "streak"


class AchievementLike(Protocol):
    id: str
    type: str
    description: str
    threshold: int | None


# ---------------------------------------------------------------------------
# Achievement Context — passed to every metric handler
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AchievementContext:
    """Snapshot of user progress.

    Parameters
    ----------
    completed_quests : Distinct quests the user has completed.
    votes_received : Votes across all of the user's submissions.
    streak_count : Current consecutive-day completion streak.
    """

    completed_quests: int = 0
    votes_received: int = 0
    streak_count: int = 0


# ---------------------------------------------------------------------------
# Metric handlers — pure functions ctx → int
# ---------------------------------------------------------------------------
METRIC_HANDLERS: dict[str, Callable[[AchievementContext], int]] = {
    AchievementType.QUEST: lambda ctx: ctx.completed_quests,
    AchievementType.VOTE: lambda ctx: ctx.votes_received,
    AchievementType.STREAK: lambda ctx: ctx.streak_count,
}

# Well-known ids whose targets predate the structured threshold column
BUILTIN_THRESHOLDS: dict[str, tuple[AchievementType, int]] = {
    "first-quest": (AchievementType.QUEST, 1),
    "explorer": (AchievementType.QUEST, 5),
    "dedicated-adventurer": (AchievementType.QUEST, 50),
    "photographer": (AchievementType.VOTE, 50),
    "social-butterfly": (AchievementType.VOTE, 100),
    "streak-master": (AchievementType.STREAK, 100),
}

_NUMBER_RE = re.compile(r"\d+")


def extract_threshold(description: str | None) -> int | None:
    """First integer in *description*, or None."""
    if not description:
        return None
    match = _NUMBER_RE.search(description)
    return int(match.group()) if match else None


def resolve_threshold(achievement: AchievementLike) -> int | None:
    if achievement.threshold is not None:
        return achievement.threshold
    builtin = BUILTIN_THRESHOLDS.get(achievement.id)
    if builtin is not None and builtin[0] == achievement.type:
        return builtin[1]
    return extract_threshold(achievement.description)


# ---------------------------------------------------------------------------
# Main check function
# ---------------------------------------------------------------------------
def check_achievements(
    achievements: Iterable[AchievementLike],
    ctx: AchievementContext,
    already_earned: set[str],
    types: set[str] | None = None,
) -> list[str]:
    """Return ids of achievements newly earned by the user in *ctx*.

    *types* limits the check to the achievement types the triggering event
    can affect (a vote never changes the quest count).
    """
    newly_earned: list[str] = []

    for achievement in achievements:
        if achievement.id in already_earned:
            continue
        if types is not None and achievement.type not in types:
            continue

        handler = METRIC_HANDLERS.get(achievement.type)
        if handler is None:
            logger.warning(
                "Achievement %s has unknown type %r; skipping",
                achievement.id, achievement.type,
            )
            continue

        threshold = resolve_threshold(achievement)
        if threshold is None:
            logger.warning(
                "Achievement %s has no threshold (column, built-in rule or "
                "number in description); skipping",
                achievement.id,
            )
            continue

        if handler(ctx) >= threshold:
            newly_earned.append(achievement.id)
            logger.info("Achievement triggered: %s (threshold %d)", achievement.id, threshold)

    return newly_earned
