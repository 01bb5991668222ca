"""session core: users, refresh_sessions, retired_refresh_tokens

Revision ID: 0001_session_core
Revises:
Create Date: 2026-10-19 00:00:00
"""

import sqlalchemy as sa
from alembic import op

revision = "0001_session_core"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("profile_pic", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "refresh_sessions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("device_label", sa.String(100), nullable=False),
        sa.Column("device_type", sa.String(10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_refresh_sessions_user", "refresh_sessions", ["user_id"])
    op.create_index("idx_refresh_sessions_expires", "refresh_sessions", ["expires_at"])

    op.create_table(
        "retired_refresh_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column(
            "user_id",
            sa.Uuid(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("session_id", sa.Uuid(), nullable=True),
        sa.Column("retired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("replay_count", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("idx_retired_tokens_user", "retired_refresh_tokens", ["user_id"])
    op.create_index("idx_retired_tokens_expires", "retired_refresh_tokens", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_retired_tokens_expires", table_name="retired_refresh_tokens")
    op.drop_index("idx_retired_tokens_user", table_name="retired_refresh_tokens")
    op.drop_table("retired_refresh_tokens")
    op.drop_index("idx_refresh_sessions_expires", table_name="refresh_sessions")
    op.drop_index("idx_refresh_sessions_user", table_name="refresh_sessions")
    op.drop_table("refresh_sessions")
    op.drop_table("users")
