"""
photoquest.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- users              — Player profiles (opaque identity-provider id PK)
- quests             — Geofenced photo challenges
- quest_attempts     — One row per attempt; never deleted (audit trail)
- submissions        — Photo proof for an attempt + moderation state
- completed_quests   — Settled rewards, unique per attempt (idempotent)
- quest_analytics    — Per-quest attempt/completion counters
- achievements       — Achievement catalogue (quest / vote / streak)
- user_achievements  — Earned achievements
- tags               — Cosmetic profile labels with composite requirements
- user_tags          — Unlocked tags (append-only set)
- tag_unlock_history — Append-only unlock journal
- votes              — One vote per (submission, voter)
- moderation_logs    — Append-only moderation audit trail
- moderation_queue   — Submissions awaiting a human reviewer
- admin_log          — Append-only admin audit trail
- settings           — Gameplay tuning key/value store
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all PhotoQuest ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class AttemptStatus(enum.StrEnum):
    """Attempt lifecycle.  Terminal states are absorbing."""
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ModerationStatus(enum.StrEnum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuestStatus(enum.StrEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    ARCHIVE = "ARCHIVE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    MANUAL_GRANT = "MANUAL_GRANT"
    MANUAL_UNLOCK = "MANUAL_UNLOCK"


# ---------------------------------------------------------------------------
# Users — one row per authenticated player
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    xp: Mapped[int] = mapped_column(Integer, default=0)
    total_xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    streak_count: Mapped[int] = mapped_column(Integer, default=0)
    last_completed_on: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    achievements: Mapped[list[UserAchievement]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    tags: Mapped[list[UserTag]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_total_xp_desc", "total_xp"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} lvl={self.level} xp={self.total_xp}>"


# ---------------------------------------------------------------------------
# Quests — geofenced photo challenges
# ---------------------------------------------------------------------------
class Quest(Base):
    """A location-bound challenge.

    ``photo_requirements`` is ``{"subjects": [...], "time_of_day": str,
    "min_resolution": {"width": int, "height": int}}``; every key optional.
    ``available_start`` / ``available_end`` are ``"HH:MM"`` local times.
    """
    __tablename__ = "quests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="beginner")

    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[float] = mapped_column(Float, nullable=False)

    min_level: Mapped[int] = mapped_column(Integer, default=1)
    max_attempts: Mapped[int | None] = mapped_column(Integer, nullable=True)
    available_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
    available_end: Mapped[str | None] = mapped_column(String(5), nullable=True)

    # Rewards
    base_xp: Mapped[int] = mapped_column(Integer, default=0)
    first_time_bonus: Mapped[int] = mapped_column(Integer, default=0)
    speed_bonus: Mapped[int] = mapped_column(Integer, default=0)
    quality_bonus: Mapped[int] = mapped_column(Integer, default=0)

    photo_requirements: Mapped[dict | None] = mapped_column(JSONB, default=dict)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QuestStatus.ACTIVE.value
    )
    created_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_quests_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Quest id={self.id!r} title={self.title!r}>"


# ---------------------------------------------------------------------------
# QuestAttempt — one row per attempt, never deleted
# ---------------------------------------------------------------------------
class QuestAttempt(Base):
    __tablename__ = "quest_attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    quest_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AttemptStatus.IN_PROGRESS.value
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    submission_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    start_latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_longitude: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_attempts_user_quest", "user_id", "quest_id"),
        Index("ix_attempts_user_started", "user_id", "started_at"),
    )

    def __repr__(self) -> str:
        return f"<QuestAttempt id={self.id!r} quest={self.quest_id!r} status={self.status}>"


# ---------------------------------------------------------------------------
# Submission — photo proof + moderation state
# ---------------------------------------------------------------------------
class Submission(Base):
    """Photo proof for one attempt.

    The id is ``{attempt_id}_{epoch_ms}``.  Immutable apart from the
    moderation/reviewer fields and the vote counter.
    """
    __tablename__ = "submissions"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    attempt_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quest_attempts.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    quest_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    artifact_path: Mapped[str] = mapped_column(String(500), nullable=False)
    artifact_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    artifact_deleted: Mapped[bool] = mapped_column(Boolean, default=False)
    moderation_status: Mapped[str] = mapped_column(String(20), nullable=False)
    moderation_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    votes: Mapped[int] = mapped_column(Integer, default=0)
    quality_bonus_awarded: Mapped[bool] = mapped_column(Boolean, default=False)
    reviewed_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_submissions_attempt", "attempt_id"),
        Index("ix_submissions_user_status", "user_id", "moderation_status"),
    )

    def __repr__(self) -> str:
        return f"<Submission id={self.id!r} status={self.moderation_status}>"


# ---------------------------------------------------------------------------
# CompletedQuest — settled rewards, one per attempt
# ---------------------------------------------------------------------------
class CompletedQuest(Base):
    __tablename__ = "completed_quests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    quest_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    attempt_id: Mapped[str] = mapped_column(String(64), nullable=False)
    xp_earned: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("attempt_id", name="uq_completed_quests_attempt"),
        Index("ix_completed_quests_user_quest", "user_id", "quest_id"),
    )

    def __repr__(self) -> str:
        return f"<CompletedQuest user={self.user_id!r} quest={self.quest_id!r} xp={self.xp_earned}>"


# ---------------------------------------------------------------------------
# QuestAnalytics — per-quest counters
# ---------------------------------------------------------------------------
class QuestAnalytics(Base):
    __tablename__ = "quest_analytics"

    quest_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("quests.id", ondelete="CASCADE"), primary_key=True
    )
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    total_completions: Mapped[int] = mapped_column(Integer, default=0)
    average_completion_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<QuestAnalytics quest={self.quest_id!r} attempts={self.total_attempts}>"


# ---------------------------------------------------------------------------
# Achievement — catalogue
# ---------------------------------------------------------------------------
class Achievement(Base):
    """An achievement definition.

    ``threshold`` is the structured target for the ``type`` metric.  When it
    is NULL the engine falls back to a built-in rule for well-known ids, then
    to the first number in ``description``.
    """
    __tablename__ = "achievements"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    earned_by: Mapped[list[UserAchievement]] = relationship(back_populates="achievement")

    def __repr__(self) -> str:
        return f"<Achievement id={self.id!r} type={self.type}>"


class UserAchievement(Base):
    __tablename__ = "user_achievements"

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    achievement_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("achievements.id", ondelete="CASCADE"), primary_key=True
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    granted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    user: Mapped[User] = relationship(back_populates="achievements")
    achievement: Mapped[Achievement] = relationship(back_populates="earned_by")

    def __repr__(self) -> str:
        return f"<UserAchievement user={self.user_id!r} achievement={self.achievement_id!r}>"


# ---------------------------------------------------------------------------
# Tags — cosmetic profile labels
# ---------------------------------------------------------------------------
class Tag(Base):
    """``requirements`` keys: quests_completed, total_xp, votes,
    streak_days (ints) and achievements (list of ids).  All present
    dimensions must hold."""
    __tablename__ = "tags"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    rarity: Mapped[str] = mapped_column(String(20), nullable=False, default="common")
    requirements: Mapped[dict | None] = mapped_column(JSONB, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Tag id={self.id!r} rarity={self.rarity}>"


class UserTag(Base):
    __tablename__ = "user_tags"

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    tag_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True
    )
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user: Mapped[User] = relationship(back_populates="tags")

    def __repr__(self) -> str:
        return f"<UserTag user={self.user_id!r} tag={self.tag_id!r}>"


class TagUnlockHistory(Base):
    __tablename__ = "tag_unlock_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    tag_id: Mapped[str] = mapped_column(String(64), nullable=False)
    trigger: Mapped[str] = mapped_column(String(64), nullable=False)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_tag_history_user_time", "user_id", "unlocked_at"),
    )


# ---------------------------------------------------------------------------
# Votes — one per (submission, voter)
# ---------------------------------------------------------------------------
class Vote(Base):
    __tablename__ = "votes"

    submission_id: Mapped[str] = mapped_column(
        String(100), ForeignKey("submissions.id", ondelete="CASCADE"), primary_key=True
    )
    voter_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# ---------------------------------------------------------------------------
# Moderation audit log + review queue
# ---------------------------------------------------------------------------
class ModerationLog(Base):
    """Append-only record of every moderation decision."""
    __tablename__ = "moderation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    quest_id: Mapped[str] = mapped_column(String(64), nullable=False)
    artifact_path: Mapped[str] = mapped_column(String(500), nullable=False)
    verdict: Mapped[str] = mapped_column(String(20), nullable=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # remote, local, reviewer
    actor_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_moderation_logs_submission", "submission_id"),
        Index("ix_moderation_logs_user_time", "user_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ModerationLog id={self.id} submission={self.submission_id!r} verdict={self.verdict}>"


class ModerationQueueItem(Base):
    __tablename__ = "moderation_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    quest_id: Mapped[str] = mapped_column(String(64), nullable=False)
    artifact_path: Mapped[str] = mapped_column(String(500), nullable=False)
    artifact_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    moderation_result: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    review_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    reviewer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_moderation_queue_status_time", "review_status", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ModerationQueueItem submission={self.submission_id!r} status={self.review_status}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"


# ---------------------------------------------------------------------------
# Settings — gameplay tuning
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Every gameplay knob (XP multiplier, daily quota, moderation thresholds)
    lives here so operators can tune it without redeploying.  Values are
    JSON strings; typed accessors live in
    :class:`~photoquest.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r}>"
