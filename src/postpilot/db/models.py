"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys via the dialect-neutral `Uuid` type (native on Postgres)
- A user's live refresh tokens are rows keyed by the token's SHA-256 hash,
  not an array on the user row: O(1) membership and per-device metadata
- Raw tokens are never stored, only their hashes
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class User(Base):
    """A principal. Owns zero or more refresh sessions (one per device)."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    profile_pic: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class RefreshSession(Base):
    """One live refresh token for one device.

    Learn: `id` is the opaque session handle shown to users. It survives
    rotation — only `token_hash` changes — so a device keeps the same
    session id and the same label for its whole lifetime. The label is
    written once at issuance and never recomputed.
    """

    __tablename__ = "refresh_sessions"
    __table_args__ = (
        Index("idx_refresh_sessions_user", "user_id"),
        Index("idx_refresh_sessions_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    device_label: Mapped[str] = mapped_column(String(100), nullable=False)
    device_type: Mapped[str] = mapped_column(String(10), nullable=False, default="web")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    last_used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RetiredRefreshToken(Base):
    """Hash of a refresh token that was rotated away.

    Learn: Kept until the token's own expiry so a replay can be told apart
    from a token that was never issued. Replays of a rotated token are the
    classic sign of a stolen refresh token; `replay_count` feeds the
    revoke-everything policy in the session manager.
    """

    __tablename__ = "retired_refresh_tokens"
    __table_args__ = (
        Index("idx_retired_tokens_user", "user_id"),
        Index("idx_retired_tokens_expires", "expires_at"),
    )

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    retired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    replay_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
