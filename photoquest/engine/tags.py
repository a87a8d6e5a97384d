"""
photoquest.engine.tags — Tag Requirement Evaluation
====================================================

A tag's ``requirements`` is a set of dimensions that must ALL hold:

    quests_completed  distinct quests completed        (int)
    total_xp          lifetime XP                      (int)
    votes             votes received on submissions    (int)
    streak_days       current completion streak        (int)
    achievements      achievement ids, all required    (list[str])

A numeric dimension is active only when > 0 and the achievements
dimension only when non-empty.  A tag with no active dimension is
eligible for everyone.

Pure calculation — no database I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

NUMERIC_DIMENSIONS: tuple[str, ...] = ("quests_completed", "total_xp", "votes", "streak_days")


class TagLike(Protocol):
    id: str
    requirements: dict | None


@dataclass(frozen=True, slots=True)
class TagContext:
    quests_completed: int = 0
    total_xp: int = 0
    votes: int = 0
    streak_days: int = 0
    achievements: frozenset[str] = field(default_factory=frozenset)


def _required_int(requirements: Mapping[str, Any], key: str) -> int:
    try:
        return int(requirements.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def _required_achievements(requirements: Mapping[str, Any]) -> list[str]:
    value = requirements.get("achievements") or []
    if isinstance(value, str):
        return [value]
    return [str(a) for a in value]


def validate_requirements(requirements: Mapping[str, Any]) -> None:
    """Raise ``ValueError`` for unknown keys or malformed values."""
    allowed = set(NUMERIC_DIMENSIONS) | {"achievements"}
    unknown = set(requirements) - allowed
    if unknown:
        raise ValueError(f"Unknown tag requirement(s): {', '.join(sorted(unknown))}")
    for key in NUMERIC_DIMENSIONS:
        value = requirements.get(key)
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
            raise ValueError(f"Tag requirement {key} must be a non-negative integer")
    achievements = requirements.get("achievements")
    if achievements is not None and not isinstance(achievements, list):
        raise ValueError("Tag requirement achievements must be a list of ids")


def unmet_requirements(requirements: Mapping[str, Any] | None, ctx: TagContext) -> list[str]:
    """Names of the active dimensions *ctx* does not yet satisfy."""
    requirements = requirements or {}
    unmet: list[str] = []
    for key in NUMERIC_DIMENSIONS:
        required = _required_int(requirements, key)
        if required > 0 and getattr(ctx, key) < required:
            unmet.append(key)
    needed = _required_achievements(requirements)
    if needed and not set(needed) <= ctx.achievements:
        unmet.append("achievements")
    return unmet


def is_tag_eligible(requirements: Mapping[str, Any] | None, ctx: TagContext) -> bool:
    return not unmet_requirements(requirements, ctx)


def eligible_tags(
    tags: Iterable[TagLike],
    ctx: TagContext,
    already_unlocked: set[str],
) -> list[str]:
    return [
        tag.id
        for tag in tags
        if tag.id not in already_unlocked and is_tag_eligible(tag.requirements, ctx)
    ]


def references_achievement(requirements: Mapping[str, Any] | None, achievement_id: str) -> bool:
    return achievement_id in _required_achievements(requirements or {})


def tag_progress(requirements: Mapping[str, Any] | None, ctx: TagContext) -> dict[str, dict[str, int]]:
    """``{dimension: {"current": n, "required": m}}`` for each active dimension.

    The achievements dimension counts how many of the listed ids are held.
    """
    requirements = requirements or {}
    progress: dict[str, dict[str, int]] = {}
    for key in NUMERIC_DIMENSIONS:
        required = _required_int(requirements, key)
        if required > 0:
            progress[key] = {"current": getattr(ctx, key), "required": required}
    needed = _required_achievements(requirements)
    if needed:
        progress["achievements"] = {
            "current": sum(1 for a in needed if a in ctx.achievements),
            "required": len(needed),
        }
    return progress
