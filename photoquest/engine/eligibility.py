"""
photoquest.engine.eligibility — Quest Start Rules
==================================================

Pure evaluation of whether a user may start a quest.  The service layer
gathers the counts (:mod:`photoquest.services.eligibility_service`); this
module only decides.

Rules run in a fixed order and the first failure is the reported reason:

1. user and quest exist              → ``NotFound``
2. user level ≥ quest minimum level  → ``LevelTooLow``
3. prior attempts < max attempts     → ``AttemptsExhausted``
4. local time inside available hours → ``OutsideWindow``
5. attempts started today < quota    → ``DailyQuotaReached``
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import time


class IneligibleReason(enum.StrEnum):
    NOT_FOUND = "NotFound"
    LEVEL_TOO_LOW = "LevelTooLow"
    ATTEMPTS_EXHAUSTED = "AttemptsExhausted"
    OUTSIDE_WINDOW = "OutsideWindow"
    DAILY_QUOTA_REACHED = "DailyQuotaReached"


@dataclass(frozen=True, slots=True)
class EligibilityContext:
    """Everything the rules need, already loaded."""

    user_exists: bool
    quest_exists: bool
    user_level: int = 1
    min_level: int = 1
    prior_attempts: int = 0
    max_attempts: int | None = None
    available_start: str | None = None
    available_end: str | None = None
    local_time: time | None = None
    attempts_today: int = 0
    max_daily_quests: int = 3


@dataclass(frozen=True, slots=True)
class EligibilityResult:
    can_attempt: bool
    reason: IneligibleReason | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        out: dict = {"can_attempt": self.can_attempt}
        if self.reason is not None:
            out["reason"] = self.reason.value
            out["message"] = self.message
        return out


ELIGIBLE = EligibilityResult(can_attempt=True)


# ---------------------------------------------------------------------------
# Time-of-day helpers
# ---------------------------------------------------------------------------
def parse_hours(text: str) -> float:
    """``"HH:MM"`` → decimal hours (``"06:30"`` → 6.5)."""
    try:
        hh, mm = text.strip().split(":")
        hours, minutes = int(hh), int(mm)
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid time of day {text!r}; expected HH:MM") from exc
    if not (0 <= hours <= 24 and 0 <= minutes < 60) or (hours == 24 and minutes):
        raise ValueError(f"Invalid time of day {text!r}")
    return hours + minutes / 60


def decimal_hours(t: time) -> float:
    return t.hour + t.minute / 60 + t.second / 3600


def within_hours(local_time: time, start: str, end: str) -> bool:
    """Inclusive check; a window whose start is after its end wraps midnight."""
    now = decimal_hours(local_time)
    lo, hi = parse_hours(start), parse_hours(end)
    if lo <= hi:
        return lo <= now <= hi
    return now >= lo or now <= hi


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------
def evaluate_eligibility(ctx: EligibilityContext) -> EligibilityResult:
    if not ctx.user_exists:
        return EligibilityResult(False, IneligibleReason.NOT_FOUND, "User not found")
    if not ctx.quest_exists:
        return EligibilityResult(False, IneligibleReason.NOT_FOUND, "Quest not found")

    if ctx.user_level < ctx.min_level:
        return EligibilityResult(
            False,
            IneligibleReason.LEVEL_TOO_LOW,
            f"Requires level {ctx.min_level} (you are level {ctx.user_level})",
        )

    if ctx.max_attempts is not None and ctx.prior_attempts >= ctx.max_attempts:
        return EligibilityResult(
            False,
            IneligibleReason.ATTEMPTS_EXHAUSTED,
            f"Maximum attempts ({ctx.max_attempts}) reached",
        )

    if ctx.available_start and ctx.available_end and ctx.local_time is not None:
        if not within_hours(ctx.local_time, ctx.available_start, ctx.available_end):
            return EligibilityResult(
                False,
                IneligibleReason.OUTSIDE_WINDOW,
                f"Available between {ctx.available_start} and {ctx.available_end}",
            )

    if ctx.attempts_today >= ctx.max_daily_quests:
        return EligibilityResult(
            False,
            IneligibleReason.DAILY_QUOTA_REACHED,
            f"Daily quest limit ({ctx.max_daily_quests}) reached",
        )

    return ELIGIBLE
