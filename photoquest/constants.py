"""
photoquest.constants — Shared Constants & Helpers
==================================================

Single source of truth for the leveling formula, the quest difficulty
ordinal, and the UTC time helpers every service uses.  Import from here
instead of duplicating in services and routes.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from photoquest.engine.cache import ConfigCache

# ---------------------------------------------------------------------------
# Quest difficulty — ordinal
# ---------------------------------------------------------------------------
class Difficulty(enum.StrEnum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        """0 for beginner up to 3 for expert.  Compare ranks, not values."""
        return _DIFFICULTY_ORDER.index(self)

_DIFFICULTY_ORDER: list[Difficulty] = list(Difficulty)

TAG_RARITIES: tuple[str, ...] = ("common", "rare", "epic", "legendary")

# ---------------------------------------------------------------------------
# Leveling formula — THE single canonical implementation
# ---------------------------------------------------------------------------
DEFAULT_LEVEL_BASE_XP = 500
DEFAULT_LEVEL_GROWTH = 1.3

def _level_params(cache: ConfigCache | None) -> tuple[int, float]:
    if cache is not None:
        base = cache.get_int("progression.level_base_xp", DEFAULT_LEVEL_BASE_XP)
        growth = cache.get_float("progression.level_growth", DEFAULT_LEVEL_GROWTH)
    else:
        base = DEFAULT_LEVEL_BASE_XP
        growth = DEFAULT_LEVEL_GROWTH
    if base <= 0 or growth <= 0:
        raise ValueError(f"Invalid level curve: base={base}, growth={growth}")
    return base, growth

def calculate_level(total_xp: int, cache: ConfigCache | None = None) -> int:
    """Level reached with *total_xp* lifetime XP.

    Level 1 needs nothing and reaching level 2 needs ``base`` XP.  Once a
    level is reached, the next one costs another ``base * growth ** (level - 2)``
    where *level* is the level just reached::

        level 2 → 500, level 3 → 1000, level 4 → 1650, level 5 → 2495, ...

    Parameters come from the ``settings`` table via *cache*, falling back to
    (500, 1.3).  Non-decreasing in *total_xp*.
    """
    base, growth = _level_params(cache)
    level = 1
    running = float(base)
    # Thresholds are rounded so this agrees with xp_for_level exactly
    while total_xp >= round(running):
        level += 1
        running += base * (growth ** (level - 2))
    return level

def xp_for_level(level: int, cache: ConfigCache | None = None) -> int:
    """Cumulative lifetime XP needed to reach *level*."""
    base, growth = _level_params(cache)
    if level <= 1:
        return 0
    running = float(base)
    for reached in range(2, level):
        running += base * (growth ** (reached - 2))
    return round(running)

# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)

def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from SQLite; convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
