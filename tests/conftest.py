"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import io
import os
from datetime import UTC, datetime, timedelta

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of photoquest.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from photoquest.database.models import Base, Quest, QuestAnalytics, User  # noqa: E402
from photoquest.database.seed import seed_default_catalog, seed_default_settings  # noqa: E402
from photoquest.engine.cache import ConfigCache  # noqa: E402
from photoquest.engine.moderation import ClassifierResult, Likelihood  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

# Quest centre used throughout the suite (Golden Gate Park)
QUEST_LAT = 37.7694
QUEST_LON = -122.4862
NOON = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def run(coro):
    """Drive a coroutine to completion on a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all PhotoQuest tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine(db_engine: Engine) -> Engine:
    """db_engine with default settings, achievements and tags seeded."""
    seed_default_settings(db_engine)
    seed_default_catalog(db_engine)
    return db_engine


@pytest.fixture
def cache(engine: Engine) -> ConfigCache:
    config_cache = ConfigCache(engine)
    config_cache.load_all()
    return config_cache


@pytest.fixture
def make_user(engine: Engine):
    def _make(user_id: str = "u1", *, level: int = 1, total_xp: int = 0, streak: int = 0) -> str:
        with Session(engine) as session:
            session.add(User(
                id=user_id, display_name=user_id.title(),
                xp=total_xp, total_xp=total_xp, level=level, streak_count=streak,
            ))
            session.commit()
        return user_id
    return _make


@pytest.fixture
def make_quest(engine: Engine):
    def _make(quest_id: str = "q1", **overrides) -> str:
        fields = {
            "title": "Golden Gate Park Bison",
            "description": "Photograph the bison paddock",
            "category": "wildlife",
            "difficulty": "beginner",
            "latitude": QUEST_LAT,
            "longitude": QUEST_LON,
            "radius_m": 50.0,
            "min_level": 1,
            "base_xp": 100,
            "first_time_bonus": 0,
            "speed_bonus": 0,
            "quality_bonus": 0,
            "photo_requirements": {},
            "status": "active",
        }
        fields.update(overrides)
        with Session(engine) as session:
            session.add(Quest(id=quest_id, **fields))
            session.add(QuestAnalytics(quest_id=quest_id, total_attempts=0, total_completions=0))
            session.commit()
        return quest_id
    return _make


def jpeg_bytes(width: int = 800, height: int = 600, color=(128, 128, 128)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def photo() -> bytes:
    """A decodable mid-grey 800x600 JPEG that passes the quality check."""
    return jpeg_bytes()


class FakeClassifier:
    """Stands in for ClassifierClient; returns a canned result or raises."""

    def __init__(self, result: ClassifierResult | None = None, error: Exception | None = None) -> None:
        self.result = result or clean_result()
        self.error = error
        self.calls: list[str] = []

    async def moderate(self, artifact_url: str) -> ClassifierResult:
        self.calls.append(artifact_url)
        if self.error is not None:
            raise self.error
        return self.result


def clean_result(labels: tuple[str, ...] = (), **levels: Likelihood) -> ClassifierResult:
    categories = {name: Likelihood.VERY_UNLIKELY for name in ("adult", "violence", "racy")}
    categories.update(levels)
    return ClassifierResult(
        is_appropriate=not any(v >= Likelihood.LIKELY for v in categories.values()),
        confidence=0.95,
        categories=categories,
        labels=labels,
    )


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_token(sub="admin-1", is_admin=True)


def make_token(sub: str = "u1", username: str = "Tester", is_admin: bool = False) -> str:
    """Create a JWT.  Usable as both a fixture helper and a factory function."""
    import jwt

    from photoquest.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def set_settings(engine: Engine, cache: ConfigCache, values: dict) -> None:
    """Write settings through the settings service and refresh *cache*."""
    from photoquest.services.settings_service import update_settings

    update_settings(
        engine,
        [{"key": key, "value": value} for key, value in values.items()],
        actor_id="pytest",
        cache=cache,
    )


# ---------------------------------------------------------------------------
# State machine wiring
# ---------------------------------------------------------------------------
class Clock:
    """Settable clock so artifact paths differ between submits."""

    def __init__(self, now: datetime = NOON) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def store(tmp_path):
    from photoquest.services.storage_service import LocalObjectStore

    return LocalObjectStore(tmp_path / "artifacts", base_url="/api/artifacts")


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def machine(engine, cache, store, classifier, clock):
    from photoquest.services.attempt_service import QuestAttemptStateMachine
    from photoquest.services.moderation_service import ModerationPipeline

    pipeline = ModerationPipeline(engine, store, classifier, cache)
    return QuestAttemptStateMachine(
        engine, cache, store, pipeline, clock=clock, settlement_retry_delay=0.0,
    )


def stored_files(store) -> list[str]:
    if not store.root.exists():
        return []
    return sorted(p.relative_to(store.root).as_posix() for p in store.root.rglob("*") if p.is_file())
