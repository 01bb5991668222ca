"""Credential store — principals and their live refresh tokens.

Learn: This is the only code allowed to touch the refresh-session tables.
Every mutation of a user's live-token set is a single conditional SQL
statement, never a read-then-write pair:

    replace: UPDATE refresh_sessions SET token_hash=:new
             WHERE token_hash=:old AND user_id=:uid
    remove:  DELETE FROM refresh_sessions WHERE token_hash=:old ...

The affected row count is the answer. If two requests race to rotate the
same token, the database serialises the two UPDATEs; the first matches one
row, the second matches zero and reports NotFound. That is the whole
concurrency story — no application-level locks.

All calls are bounded by a timeout. A timeout or a dropped connection
raises StoreUnavailableError, so callers never mistake an outage for a bad
credential. The store does not commit; the session manager owns the unit
of work and calls commit()/rollback() here.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Awaitable, Optional, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from postpilot.auth.jwt import token_fingerprint
from postpilot.db.models import RefreshSession, RetiredRefreshToken, User, utcnow
from postpilot.errors import ConflictError, ConflictKind, StoreUnavailableError

T = TypeVar("T")


class CredentialStore:
    """Async store for principals and refresh sessions, bound to one AsyncSession."""

    def __init__(self, db: AsyncSession, timeout: float = 5.0):
        self.db = db
        self.timeout = timeout

    async def _guard(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError("credential store timed out") from e
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(f"credential store unavailable: {e.__class__.__name__}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                raise StoreUnavailableError("credential store connection lost") from e
            raise

    async def _scalar(self, stmt) -> Any:
        result = await self._guard(self.db.execute(stmt))
        return result.scalars().first()

    # ─── Unit of work ─────────────────────────────────────

    async def commit(self) -> None:
        await self._guard(self.db.commit())

    async def rollback(self) -> None:
        await self._guard(self.db.rollback())

    # ─── Principals ───────────────────────────────────────

    async def find_principal_by_credential(self, email: str) -> Optional[User]:
        """Look up a principal by (normalised) email."""
        return await self._scalar(
            select(User).where(User.email == email.strip().lower())
        )

    async def find_principal_by_id(self, principal_id: uuid.UUID) -> Optional[User]:
        return await self._scalar(select(User).where(User.id == principal_id))

    async def create_principal(
        self,
        email: str,
        username: str,
        password_hash: str,
        profile_pic: Optional[str] = None,
    ) -> User:
        """Insert a new principal. Raises ConflictError(EMAIL_TAKEN) on duplicates."""
        email = email.strip().lower()
        if await self.find_principal_by_credential(email):
            raise ConflictError(ConflictKind.EMAIL_TAKEN)

        user = User(
            email=email,
            username=username,
            password_hash=password_hash,
            profile_pic=profile_pic,
        )
        self.db.add(user)
        try:
            await self._guard(self.db.flush())
        except IntegrityError as e:
            # Lost a race with a concurrent registration for the same email.
            await self.rollback()
            raise ConflictError(ConflictKind.EMAIL_TAKEN) from e
        return user

    async def find_principal_owning_token(self, token: str) -> Optional[User]:
        """Reverse lookup: refresh token → owning principal."""
        return await self._scalar(
            select(User)
            .join(RefreshSession, RefreshSession.user_id == User.id)
            .where(RefreshSession.token_hash == token_fingerprint(token))
        )

    # ─── Live refresh tokens ──────────────────────────────

    async def find_live_token(self, token: str) -> Optional[RefreshSession]:
        return await self._scalar(
            select(RefreshSession)
            .where(RefreshSession.token_hash == token_fingerprint(token))
            .execution_options(populate_existing=True)
        )

    async def add_token(
        self,
        principal_id: uuid.UUID,
        token: str,
        device_label: str,
        device_type: str,
        expires_at: datetime,
    ) -> RefreshSession:
        now = utcnow()
        row = RefreshSession(
            user_id=principal_id,
            token_hash=token_fingerprint(token),
            device_label=device_label,
            device_type=device_type,
            created_at=now,
            last_used_at=now,
            expires_at=expires_at,
        )
        self.db.add(row)
        await self._guard(self.db.flush())
        return row

    async def replace_token(
        self,
        principal_id: uuid.UUID,
        old_token: str,
        new_token: str,
        expires_at: datetime,
    ) -> bool:
        """Atomically swap old → new. False means old was not live (NotFound)."""
        stmt = (
            update(RefreshSession)
            .where(
                RefreshSession.token_hash == token_fingerprint(old_token),
                RefreshSession.user_id == principal_id,
            )
            .values(
                token_hash=token_fingerprint(new_token),
                expires_at=expires_at,
                last_used_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._guard(self.db.execute(stmt))
        return result.rowcount == 1

    async def remove_token(
        self,
        token: str,
        principal_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Delete one live token. False means it was already gone (NotFound)."""
        stmt = delete(RefreshSession).where(
            RefreshSession.token_hash == token_fingerprint(token)
        )
        if principal_id is not None:
            stmt = stmt.where(RefreshSession.user_id == principal_id)
        result = await self._guard(
            self.db.execute(stmt.execution_options(synchronize_session=False))
        )
        return result.rowcount == 1

    async def remove_session(self, principal_id: uuid.UUID, session_id: uuid.UUID) -> bool:
        stmt = (
            delete(RefreshSession)
            .where(RefreshSession.id == session_id, RefreshSession.user_id == principal_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._guard(self.db.execute(stmt))
        return result.rowcount == 1

    async def clear_all_tokens(self, principal_id: uuid.UUID) -> int:
        stmt = (
            delete(RefreshSession)
            .where(RefreshSession.user_id == principal_id)
            .execution_options(synchronize_session=False)
        )
        result = await self._guard(self.db.execute(stmt))
        return result.rowcount

    async def list_tokens(self, principal_id: uuid.UUID) -> list[RefreshSession]:
        result = await self._guard(
            self.db.execute(
                select(RefreshSession)
                .where(RefreshSession.user_id == principal_id)
                .order_by(RefreshSession.created_at)
                .execution_options(populate_existing=True)
            )
        )
        return list(result.scalars().all())

    async def count_tokens(self, principal_id: uuid.UUID) -> int:
        result = await self._guard(
            self.db.execute(
                select(func.count())
                .select_from(RefreshSession)
                .where(RefreshSession.user_id == principal_id)
            )
        )
        return int(result.scalar_one())

    async def purge_expired(
        self,
        principal_id: Optional[uuid.UUID] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Delete expired live and retired rows. Returns live rows removed."""
        now = now or utcnow()
        live = delete(RefreshSession).where(RefreshSession.expires_at <= now)
        retired = delete(RetiredRefreshToken).where(RetiredRefreshToken.expires_at <= now)
        if principal_id is not None:
            live = live.where(RefreshSession.user_id == principal_id)
            retired = retired.where(RetiredRefreshToken.user_id == principal_id)
        result = await self._guard(
            self.db.execute(live.execution_options(synchronize_session=False))
        )
        await self._guard(
            self.db.execute(retired.execution_options(synchronize_session=False))
        )
        return result.rowcount

    # ─── Retired (rotated-away) tokens ────────────────────

    async def retire_token(
        self,
        principal_id: uuid.UUID,
        token: str,
        expires_at: datetime,
        session_id: Optional[uuid.UUID] = None,
    ) -> None:
        self.db.add(
            RetiredRefreshToken(
                token_hash=token_fingerprint(token),
                user_id=principal_id,
                session_id=session_id,
                expires_at=expires_at,
                replay_count=0,
            )
        )
        await self._guard(self.db.flush())

    async def find_retired(self, token: str) -> Optional[RetiredRefreshToken]:
        return await self._scalar(
            select(RetiredRefreshToken)
            .where(RetiredRefreshToken.token_hash == token_fingerprint(token))
            .execution_options(populate_existing=True)
        )

    async def record_replay(self, token: str) -> Optional[RetiredRefreshToken]:
        """Atomically bump the replay counter of a retired token."""
        stmt = (
            update(RetiredRefreshToken)
            .where(RetiredRefreshToken.token_hash == token_fingerprint(token))
            .values(replay_count=RetiredRefreshToken.replay_count + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._guard(self.db.execute(stmt))
        if result.rowcount != 1:
            return None
        return await self.find_retired(token)
