"""
photoquest.engine.progression — Quest Award Calculation
========================================================

Pure math for settling a completed quest: the XP award breakdown and the
daily streak.  Persistence (atomic XP increment, level recompute) lives in
:mod:`photoquest.services.progression_service`; the level curve itself is
:func:`photoquest.constants.calculate_level`.

Award pipeline::

    base_xp
      + speed_bonus        if completed ≤ speed window after starting
      + first_time_bonus   if the user never completed this quest before
      × xp_multiplier      floored to an int
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

DEFAULT_SPEED_WINDOW = timedelta(hours=2)


@dataclass(frozen=True, slots=True)
class QuestRewards:
    base_xp: int
    first_time_bonus: int = 0
    speed_bonus: int = 0
    quality_bonus: int = 0


@dataclass(frozen=True, slots=True)
class AwardBreakdown:
    base_xp: int
    speed_bonus: int
    first_time_bonus: int
    multiplier: float
    total: int

    def to_dict(self) -> dict:
        return {
            "base_xp": self.base_xp,
            "speed_bonus": self.speed_bonus,
            "first_time_bonus": self.first_time_bonus,
            "multiplier": self.multiplier,
            "total": self.total,
        }


def calculate_award(
    rewards: QuestRewards,
    started_at: datetime,
    completed_at: datetime,
    *,
    first_time: bool,
    multiplier: float = 1.0,
    speed_window: timedelta = DEFAULT_SPEED_WINDOW,
) -> AwardBreakdown:
    if multiplier < 0:
        raise ValueError(f"xp multiplier must be non-negative, got {multiplier}")

    elapsed = completed_at - started_at
    speed = rewards.speed_bonus if elapsed <= speed_window else 0
    first = rewards.first_time_bonus if first_time else 0
    total = math.floor((rewards.base_xp + speed + first) * multiplier)

    return AwardBreakdown(
        base_xp=rewards.base_xp,
        speed_bonus=speed,
        first_time_bonus=first,
        multiplier=multiplier,
        total=max(0, total),
    )


def next_streak(current: int, last_day: date | None, today: date) -> int:
    """Streak after a completion on *today*.

    Same day keeps the streak, the following day extends it, and any gap
    (or a first completion) starts over at 1.
    """
    if last_day is None:
        return 1
    if last_day == today:
        return max(current, 1)
    if last_day == today - timedelta(days=1):
        return current + 1
    return 1


def running_average(previous_avg: float, previous_count: int, sample: float) -> float:
    """Mean after adding *sample* to *previous_count* earlier samples."""
    return (previous_avg * previous_count + sample) / (previous_count + 1)
