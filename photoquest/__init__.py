"""
PhotoQuest — Location-Gated Photo Quest Engine
================================================
Users start geofenced challenges, prove them with a photo taken inside the
quest radius, and the photo runs through an automated moderation pipeline.
Approved submissions settle XP, levels, streaks, achievements and cosmetic
tags.

Package layout::

    photoquest/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Leveling formula, difficulty ordinal, time helpers
    ├── errors.py          # Closed error taxonomy (ErrorKind + QuestError)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings, achievements and tags
    ├── engine/            # Pure rules, no I/O
    │   ├── geo.py         # Haversine distance + geofence check
    │   ├── eligibility.py # Ordered quest start rules
    │   ├── moderation.py  # Policy, relevance, verdict, local fallback
    │   ├── quality.py     # Pillow-based photo quality scoring
    │   ├── progression.py # XP award breakdown + streaks
    │   ├── achievements.py # Threshold resolution + checks
    │   ├── tags.py        # Tag requirement evaluation + progress
    │   └── cache.py       # In-memory settings cache
    ├── services/          # Persistence + orchestration
    │   ├── attempt_service.py   # QuestAttemptStateMachine
    │   ├── moderation_service.py # ModerationPipeline
    │   ├── review_service.py    # Manual review queue
    │   ├── progression_service.py
    │   ├── achievement_service.py
    │   ├── tag_service.py
    │   ├── vote_service.py
    │   └── ...
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine, auth and service wiring
        └── routes/        # Player + reviewer REST endpoints
"""

__version__ = "0.1.0"
