"""Initial schema — users, polls, options, predictions, snapshots.

Revision ID: 0001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ── users ──
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("username", sa.String(), nullable=True),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("avatar", sa.String(), nullable=True),
        sa.Column("reputation", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column(
            "is_moderator",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.text("now()"),
        ),
    )

    # ── polls ──
    op.create_table(
        "polls",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("creator_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("title", sa.String(), nullable=False, server_default=""),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("resolution_result", sa.String(), nullable=True),
        sa.Column("resolution_source", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.text("now()"),
        ),
    )

    # ── poll_options ──
    op.create_table(
        "poll_options",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("poll_id", sa.String(), sa.ForeignKey("polls.id"), nullable=False),
        sa.Column("text", sa.String(), nullable=False, server_default=""),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_option_poll", "poll_options", ["poll_id"])

    # ── predictions ──
    op.create_table(
        "predictions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("poll_id", sa.String(), sa.ForeignKey("polls.id"), nullable=False),
        sa.Column(
            "option_id",
            sa.String(),
            sa.ForeignKey("poll_options.id"),
            nullable=False,
        ),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("payout", sa.Integer(), nullable=True),
        sa.Column(
            "is_resolved",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("false"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(),
            server_default=sa.text("now()"),
        ),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("user_id", "poll_id", name="uq_prediction_user_poll"),
        sa.CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_prediction_confidence"),
        sa.CheckConstraint("points > 0", name="ck_prediction_points"),
    )
    op.create_index("ix_prediction_poll_resolved", "predictions", ["poll_id", "is_resolved"])
    op.create_index("ix_prediction_poll_created", "predictions", ["poll_id", "created_at"])
    op.create_index("ix_prediction_user_created", "predictions", ["user_id", "created_at"])

    # ── poll_snapshots ──
    op.create_table(
        "poll_snapshots",
        sa.Column("id", sa.Integer(), autoincrement=True, primary_key=True),
        sa.Column("poll_id", sa.String(), sa.ForeignKey("polls.id"), nullable=False),
        sa.Column("option_id", sa.String(), nullable=True),
        sa.Column("snapshot_date", sa.DateTime(), nullable=False),
        sa.Column("percentage", sa.Float(), nullable=False),
    )
    op.create_index("ix_snapshot_poll_date", "poll_snapshots", ["poll_id", "snapshot_date"])


def downgrade() -> None:
    op.drop_table("poll_snapshots")
    op.drop_table("predictions")
    op.drop_table("poll_options")
    op.drop_table("polls")
    op.drop_table("users")
