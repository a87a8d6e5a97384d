"""
photoquest.database.seed — Default Settings & Catalogue Seeder
===============================================================

Baseline gameplay settings plus the starter achievement and tag
catalogue, seeded on first startup.

Idempotent — only inserts keys/ids that don't already exist.  Rows
edited later by operators are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from photoquest.database.models import Achievement, Setting, Tag

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "progression.xp_multiplier": (1.0, "progression", "System-wide multiplier applied to every award"),
    "progression.level_base_xp": (500, "progression", "XP needed to reach level 2"),
    "progression.level_growth": (1.3, "progression", "Growth factor for each later level"),
    "progression.speed_bonus_hours": (
        2, "progression", "Completion within this many hours of starting earns the speed bonus",
    ),
    "quests.max_daily_quests": (3, "quests", "Attempts a user may start per local day"),
    "quests.timezone": ("UTC", "quests", "IANA timezone for daily quotas and time windows"),
    "moderation.relevance_threshold": (
        0.5, "moderation", "Share of required subjects a photo must show",
    ),
    "moderation.quality_threshold": (0.6, "moderation", "Minimum overall photo quality score"),
    "moderation.manual_review_confidence": (
        0.6, "moderation", "Inappropriate verdicts below this confidence go to a reviewer",
    ),
    "votes.quality_bonus_threshold": (
        10, "votes", "Votes a submission needs to earn its quest's quality bonus",
    ),
}


# ---------------------------------------------------------------------------
# Starter catalogue
# ---------------------------------------------------------------------------
DEFAULT_ACHIEVEMENTS: list[dict] = [
    {"id": "first-quest", "name": "First Steps", "type": "quest",
     "description": "Complete your first quest"},
    {"id": "explorer", "name": "Explorer", "type": "quest",
     "description": "Complete 5 different quests"},
    {"id": "dedicated-adventurer", "name": "Dedicated Adventurer", "type": "quest",
     "description": "Complete 50 different quests"},
    {"id": "photographer", "name": "Photographer", "type": "vote",
     "description": "Receive 50 votes on your photos"},
    {"id": "social-butterfly", "name": "Social Butterfly", "type": "vote",
     "description": "Receive 100 votes on your photos"},
    {"id": "week-warrior", "name": "Week Warrior", "type": "streak",
     "description": "Complete quests 7 days in a row", "threshold": 7},
    {"id": "streak-master", "name": "Streak Master", "type": "streak",
     "description": "Complete quests 100 days in a row"},
]

DEFAULT_TAGS: list[dict] = [
    {"id": "trailblazer", "name": "Trailblazer", "rarity": "common",
     "description": "Earned the Explorer achievement",
     "requirements": {"achievements": ["explorer"]}},
    {"id": "shutterbug", "name": "Shutterbug", "rarity": "rare",
     "description": "Photos the community loves",
     "requirements": {"votes": 25, "quests_completed": 10}},
    {"id": "devoted", "name": "Devoted", "rarity": "epic",
     "description": "A two-week completion streak",
     "requirements": {"streak_days": 14}},
    {"id": "legend", "name": "Legend", "rarity": "legendary",
     "description": "Veteran of the map",
     "requirements": {"total_xp": 25000, "achievements": ["dedicated-adventurer"]}},
]


def seed_default_settings(engine: Engine) -> None:
    """Insert default settings that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            existing = session.get(Setting, key)
            if existing is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)


def seed_default_catalog(engine: Engine) -> None:
    """Insert starter achievements and tags that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        for spec in DEFAULT_ACHIEVEMENTS:
            if session.get(Achievement, spec["id"]) is None:
                session.add(Achievement(
                    id=spec["id"],
                    name=spec["name"],
                    description=spec["description"],
                    type=spec["type"],
                    threshold=spec.get("threshold"),
                ))
                inserted += 1
        for spec in DEFAULT_TAGS:
            if session.get(Tag, spec["id"]) is None:
                session.add(Tag(
                    id=spec["id"],
                    name=spec["name"],
                    description=spec["description"],
                    rarity=spec["rarity"],
                    requirements=spec["requirements"],
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default achievements/tags.", inserted)
