"""Families, users, approved videos, scheduled videos, carryover watermarks.

Revision ID: 001
Revises: None
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables."""

    # ── families ──────────────────────────────────────────────────────
    op.create_table(
        "families",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("family_id", sa.Uuid(), sa.ForeignKey("families.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("interests", postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── refresh_tokens ────────────────────────────────────────────────
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── approved_videos ───────────────────────────────────────────────
    op.create_table(
        "approved_videos",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "child_id", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("youtube_id", sa.String(32), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("thumbnail", sa.Text(), nullable=False),
        sa.Column("channel_name", sa.String(255), nullable=False),
        sa.Column("duration", sa.String(20), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("child_id", "youtube_id", name="uq_approved_video_child_youtube"),
    )

    # ── scheduled_videos ──────────────────────────────────────────────
    # No unique index on (child, video, date): duplicate active rows are
    # prevented by the per-child carryover lock.
    op.create_table(
        "scheduled_videos",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "child_id", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "approved_video_id", sa.Uuid(),
            sa.ForeignKey("approved_videos.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("original_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_watched", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("watched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("carried_over", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_scheduled_videos_child_date",
        "scheduled_videos",
        ["child_id", "scheduled_date", "is_active"],
    )
    op.create_index(
        "ix_scheduled_videos_sweep",
        "scheduled_videos",
        ["scheduled_date", "is_active", "is_watched"],
    )

    # ── carryover_watermarks ──────────────────────────────────────────
    op.create_table(
        "carryover_watermarks",
        sa.Column(
            "child_id", sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("closed_through", sa.Date(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("carryover_watermarks")
    op.drop_index("ix_scheduled_videos_sweep", table_name="scheduled_videos")
    op.drop_index("ix_scheduled_videos_child_date", table_name="scheduled_videos")
    op.drop_table("scheduled_videos")
    op.drop_table("approved_videos")
    op.drop_table("refresh_tokens")
    op.drop_table("users")
    op.drop_table("families")
