"""Initial PhotoQuest schema

Revision ID: 5a1c0e7d9b42
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5a1c0e7d9b42"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create users, quests, attempts, submissions, rewards, moderation and settings."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("xp", sa.Integer(), server_default="0"),
        sa.Column("total_xp", sa.Integer(), server_default="0"),
        sa.Column("level", sa.Integer(), server_default="1"),
        sa.Column("streak_count", sa.Integer(), server_default="0"),
        sa.Column("last_completed_on", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_total_xp_desc", "users", ["total_xp"])

    op.create_table(
        "quests",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("difficulty", sa.String(20), nullable=False, server_default="beginner"),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Float(), nullable=False),
        sa.Column("min_level", sa.Integer(), server_default="1"),
        sa.Column("max_attempts", sa.Integer(), nullable=True),
        sa.Column("available_start", sa.String(5), nullable=True),
        sa.Column("available_end", sa.String(5), nullable=True),
        sa.Column("base_xp", sa.Integer(), server_default="0"),
        sa.Column("first_time_bonus", sa.Integer(), server_default="0"),
        sa.Column("speed_bonus", sa.Integer(), server_default="0"),
        sa.Column("quality_bonus", sa.Integer(), server_default="0"),
        sa.Column("photo_requirements", postgresql.JSONB(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("created_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_quests_status", "quests", ["status"])

    op.create_table(
        "quest_attempts",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("quest_id", sa.String(64), sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="in-progress"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("submission_id", sa.String(100), nullable=True),
        sa.Column("start_latitude", sa.Float(), nullable=True),
        sa.Column("start_longitude", sa.Float(), nullable=True),
    )
    op.create_index("ix_attempts_user_quest", "quest_attempts", ["user_id", "quest_id"])
    op.create_index("ix_attempts_user_started", "quest_attempts", ["user_id", "started_at"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(100), primary_key=True),
        sa.Column(
            "attempt_id", sa.String(64),
            sa.ForeignKey("quest_attempts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quest_id", sa.String(64), sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("artifact_path", sa.String(500), nullable=False),
        sa.Column("artifact_url", sa.String(500), nullable=True),
        sa.Column("artifact_deleted", sa.Boolean(), server_default=sa.false()),
        sa.Column("moderation_status", sa.String(20), nullable=False),
        sa.Column("moderation_result", postgresql.JSONB(), nullable=True),
        sa.Column("votes", sa.Integer(), server_default="0"),
        sa.Column("quality_bonus_awarded", sa.Boolean(), server_default=sa.false()),
        sa.Column("reviewed_by", sa.String(128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_submissions_attempt", "submissions", ["attempt_id"])
    op.create_index("ix_submissions_user_status", "submissions", ["user_id", "moderation_status"])

    op.create_table(
        "completed_quests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("quest_id", sa.String(64), sa.ForeignKey("quests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("attempt_id", sa.String(64), nullable=False),
        sa.Column("xp_earned", sa.Integer(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("attempt_id", name="uq_completed_quests_attempt"),
    )
    op.create_index("ix_completed_quests_user_quest", "completed_quests", ["user_id", "quest_id"])

    op.create_table(
        "quest_analytics",
        sa.Column(
            "quest_id", sa.String(64),
            sa.ForeignKey("quests.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("total_attempts", sa.Integer(), server_default="0"),
        sa.Column("total_completions", sa.Integer(), server_default="0"),
        sa.Column("average_completion_minutes", sa.Float(), server_default="0"),
        sa.Column("popularity_score", sa.Float(), server_default="0"),
        sa.Column("last_updated", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "achievements",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("threshold", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
    )
    op.create_table(
        "user_achievements",
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "achievement_id", sa.String(64),
            sa.ForeignKey("achievements.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("earned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("granted_by", sa.String(128), nullable=True),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("rarity", sa.String(20), nullable=False, server_default="common"),
        sa.Column("requirements", postgresql.JSONB(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
    )
    op.create_table(
        "user_tags",
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", sa.String(64), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_table(
        "tag_unlock_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tag_id", sa.String(64), nullable=False),
        sa.Column("trigger", sa.String(64), nullable=False),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_tag_history_user_time", "tag_unlock_history", ["user_id", "unlocked_at"])

    op.create_table(
        "votes",
        sa.Column(
            "submission_id", sa.String(100),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("voter_id", sa.String(128), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "moderation_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("submission_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("quest_id", sa.String(64), nullable=False),
        sa.Column("artifact_path", sa.String(500), nullable=False),
        sa.Column("verdict", sa.String(20), nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(128), nullable=True),
        sa.Column("result", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_moderation_logs_submission", "moderation_logs", ["submission_id"])
    op.create_index("ix_moderation_logs_user_time", "moderation_logs", ["user_id", "timestamp"])

    op.create_table(
        "moderation_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("submission_id", sa.String(100), nullable=False, unique=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("quest_id", sa.String(64), nullable=False),
        sa.Column("artifact_path", sa.String(500), nullable=False),
        sa.Column("artifact_url", sa.String(500), nullable=True),
        sa.Column("moderation_result", postgresql.JSONB(), nullable=True),
        sa.Column("review_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("reviewer_id", sa.String(128), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_moderation_queue_status_time", "moderation_queue", ["review_status", "timestamp"])

    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(128), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop every PhotoQuest table, children first."""
    for table in (
        "settings",
        "admin_log",
        "moderation_queue",
        "moderation_logs",
        "votes",
        "tag_unlock_history",
        "user_tags",
        "tags",
        "user_achievements",
        "achievements",
        "quest_analytics",
        "completed_quests",
        "submissions",
        "quest_attempts",
        "quests",
        "users",
    ):
        op.drop_table(table)
