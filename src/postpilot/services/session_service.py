"""Session manager — login, rotation, logout and session listing.

Learn: A "session" is one device's live refresh token plus its metadata.
Lifecycle of a refresh token:

    Issued → Active ──rotate──▶ Dead   (its successor becomes Active)
                    ──revoke──▶ Dead
                    ──expiry──▶ Dead

Dead is terminal. Rotation is the security-critical step: the old token is
swapped for a new one with a single conditional UPDATE (see
CredentialStore.replace_token), and the old hash is remembered as "retired"
in the same transaction. A later refresh with a retired token is reported
as REUSED, the classic sign that a refresh token was stolen; enough such
replays revoke every session the principal has. Validation only reads.

Nothing here ever logs a token value, not even a prefix. Logs carry the
opaque session id and the principal id only.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import NoReturn, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from postpilot.auth.jwt import (
    TokenError,
    TokenKind,
    expiry_of,
    issue_access_token,
    issue_refresh_token,
    token_fingerprint,
    verify,
)
from postpilot.config import Settings, settings as default_settings
from postpilot.db.models import RefreshSession, User
from postpilot.errors import (
    AuthFailure,
    BadInputError,
    ConflictError,
    ConflictKind,
    MissingResource,
    NotFoundError,
    UnauthorizedError,
)
from postpilot.store.credentials import CredentialStore

logger = structlog.get_logger()

DEVICE_TYPES = ("web", "mobile")
_DEVICE_LABELS = {"web": "Web App", "mobile": "Mobile App"}


def parse_device_type(value: Optional[str]) -> str:
    """Normalise the X-Device-Type hint. Missing → "web"."""
    if value is None or not value.strip():
        return "web"
    device_type = value.strip().lower()
    if device_type not in DEVICE_TYPES:
        raise BadInputError(f"Unsupported device type: {value!r}")
    return device_type


# ═══════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════


@dataclass
class IssuedSession:
    """Result of a login: both tokens plus the new device session."""
    access_token: str
    refresh_token: str
    session_id: uuid.UUID
    device_label: str
    device_type: str


@dataclass
class RotatedSession:
    """Result of a refresh: the successor refresh token and a fresh access token."""
    refresh_token: str
    access_token: str
    principal_id: uuid.UUID
    session_id: uuid.UUID
    device_label: str
    device_type: str


@dataclass
class SessionInfo:
    session_id: uuid.UUID
    principal_id: uuid.UUID
    device_label: str
    device_type: str
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime


@dataclass
class SessionView:
    """What a user sees in "active sessions". Carries no token material."""
    session_id: uuid.UUID
    device_name: str
    device_type: str
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime
    current: bool = False


def _info(row: RefreshSession) -> SessionInfo:
    return SessionInfo(
        session_id=row.id,
        principal_id=row.user_id,
        device_label=row.device_label,
        device_type=row.device_type,
        created_at=row.created_at,
        last_used_at=row.last_used_at,
        expires_at=row.expires_at,
    )


# ═══════════════════════════════════════════════════════════
# Session Manager
# ═══════════════════════════════════════════════════════════


class SessionManager:
    """Issues, rotates, validates, lists and revokes refresh sessions."""

    def __init__(self, db: AsyncSession, config: Settings = default_settings):
        self.config = config
        self.store = CredentialStore(db, timeout=config.store_timeout_seconds)

    # ─── Helpers ──────────────────────────────────────────

    def _verify_refresh(self, token: str) -> dict:
        try:
            return verify(token, TokenKind.REFRESH, config=self.config)
        except TokenError as e:
            raise UnauthorizedError(e.reason, str(e)) from e

    def _refresh_expiry(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(
            days=self.config.refresh_token_expire_days
        )

    def _access_token_for(self, principal: User) -> str:
        return issue_access_token(
            str(principal.id),
            {"email": principal.email},
            config=self.config,
        )

    async def _reject_dead(self, token: str) -> NoReturn:
        """Raise for a well-signed refresh token presented for rotation but not live.

        Learn: If the hash is in the retired table the token was rotated
        away and somebody is replaying it → REUSED. The replay counter is
        bumped atomically; at the configured threshold the whole live set of
        the owner is revoked. A single late loser of a rotation race lands
        here with count 1, so one race never logs anyone out.
        """
        retired = await self.store.record_replay(token)
        if retired is None:
            raise UnauthorizedError(AuthFailure.INVALID, "refresh token is not live")

        threshold = self.config.refresh_reuse_revoke_threshold
        logger.warning(
            "session.reuse_detected",
            principal_id=str(retired.user_id),
            session_id=str(retired.session_id) if retired.session_id else None,
            replay_count=retired.replay_count,
        )
        if threshold and retired.replay_count >= threshold:
            revoked = await self.store.clear_all_tokens(retired.user_id)
            logger.warning(
                "session.reuse_lockout",
                principal_id=str(retired.user_id),
                revoked=revoked,
            )
        await self.store.commit()
        raise UnauthorizedError(AuthFailure.REUSED, "rotated refresh token was replayed")

    # ─── Login ────────────────────────────────────────────

    async def create_session(
        self,
        principal_id: uuid.UUID,
        device_type: str = "web",
    ) -> IssuedSession:
        """Mint an access/refresh pair and store the refresh token as a new session.

        The device label ("Web App 2", "Mobile App 1"...) is derived from the
        number of live sessions at issuance and stored with the row.
        """
        device_type = parse_device_type(device_type)
        principal = await self.store.find_principal_by_id(principal_id)
        if principal is None:
            raise NotFoundError(MissingResource.PRINCIPAL)

        await self.store.purge_expired(principal_id)
        live_count = await self.store.count_tokens(principal_id)
        device_label = f"{_DEVICE_LABELS[device_type]} {live_count + 1}"

        refresh_token = issue_refresh_token(str(principal_id), config=self.config)
        row = await self.store.add_token(
            principal_id,
            refresh_token,
            device_label=device_label,
            device_type=device_type,
            expires_at=self._refresh_expiry(),
        )
        session_id = row.id
        await self.store.commit()

        logger.info(
            "session.created",
            principal_id=str(principal_id),
            session_id=str(session_id),
            device_type=device_type,
        )
        return IssuedSession(
            access_token=self._access_token_for(principal),
            refresh_token=refresh_token,
            session_id=session_id,
            device_label=device_label,
            device_type=device_type,
        )

    # ─── Validate ─────────────────────────────────────────

    async def validate_session(self, refresh_token: str) -> SessionInfo:
        """Check that a refresh token is signed, unexpired and live.

        Read-only: a rotated-away token is reported as REUSED but neither
        bumps the replay counter nor triggers the lockout. Only a replay
        on the rotation path does that.
        """
        claims = self._verify_refresh(refresh_token)
        row = await self.store.find_live_token(refresh_token)
        if row is None:
            if await self.store.find_retired(refresh_token) is not None:
                raise UnauthorizedError(AuthFailure.REUSED, "rotated refresh token was presented")
            raise UnauthorizedError(AuthFailure.INVALID, "refresh token is not live")
        if str(row.user_id) != claims["sub"]:
            raise UnauthorizedError(AuthFailure.INVALID, "token subject does not own session")
        return _info(row)

    # ─── Rotate ───────────────────────────────────────────

    async def rotate_session(self, old_refresh_token: str) -> RotatedSession:
        """Exchange a live refresh token for its successor.

        Learn: Steps, in one transaction:
        (a) locate the live row (and so the owner),
        (b) fail if it is not live,
        (c) swap old → new with a conditional UPDATE; if zero rows matched a
            concurrent request won the race → ConflictError(ALREADY_ROTATED),
        (d) retire the old hash and commit, then return the new token.
        """
        claims = self._verify_refresh(old_refresh_token)

        row = await self.store.find_live_token(old_refresh_token)
        if row is None:
            await self._reject_dead(old_refresh_token)
        principal_id = row.user_id
        if str(principal_id) != claims["sub"]:
            raise UnauthorizedError(AuthFailure.INVALID, "token subject does not own session")
        session_id, device_label, device_type = row.id, row.device_label, row.device_type

        principal = await self.store.find_principal_by_id(principal_id)
        if principal is None:
            raise UnauthorizedError(AuthFailure.PRINCIPAL_GONE)

        new_refresh_token = issue_refresh_token(str(principal_id), config=self.config)
        swapped = await self.store.replace_token(
            principal_id,
            old_refresh_token,
            new_refresh_token,
            expires_at=self._refresh_expiry(),
        )
        if not swapped:
            await self.store.rollback()
            logger.info(
                "session.rotation_lost_race",
                principal_id=str(principal_id),
                session_id=str(session_id),
            )
            raise ConflictError(ConflictKind.ALREADY_ROTATED)

        await self.store.retire_token(
            principal_id,
            old_refresh_token,
            expires_at=expiry_of(claims),
            session_id=session_id,
        )
        await self.store.commit()

        logger.info(
            "session.rotated",
            principal_id=str(principal_id),
            session_id=str(session_id),
        )
        return RotatedSession(
            refresh_token=new_refresh_token,
            access_token=self._access_token_for(principal),
            principal_id=principal_id,
            session_id=session_id,
            device_label=device_label,
            device_type=device_type,
        )

    # ─── Revoke ───────────────────────────────────────────

    async def revoke_one(
        self,
        refresh_token: str,
        principal_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Log out one device. Idempotent: False if the token was already gone.

        When principal_id is given, only a token owned by that principal can
        be removed.
        """
        removed = await self.store.remove_token(refresh_token, principal_id)
        await self.store.commit()
        logger.info(
            "session.revoked",
            principal_id=str(principal_id) if principal_id else None,
            removed=removed,
        )
        return removed

    async def revoke_session(self, principal_id: uuid.UUID, session_id: uuid.UUID) -> None:
        """Log out one device by its opaque session id."""
        removed = await self.store.remove_session(principal_id, session_id)
        if not removed:
            await self.store.rollback()
            raise NotFoundError(MissingResource.SESSION)
        await self.store.commit()
        logger.info(
            "session.revoked",
            principal_id=str(principal_id),
            session_id=str(session_id),
            removed=True,
        )

    async def revoke_all(self, principal_id: uuid.UUID) -> int:
        """Log out everywhere. Returns the number of sessions removed."""
        removed = await self.store.clear_all_tokens(principal_id)
        await self.store.commit()
        logger.info("session.revoked_all", principal_id=str(principal_id), removed=removed)
        return removed

    async def purge_expired(self, principal_id: Optional[uuid.UUID] = None) -> int:
        removed = await self.store.purge_expired(principal_id)
        await self.store.commit()
        return removed

    # ─── List ─────────────────────────────────────────────

    async def list_sessions(
        self,
        principal_id: uuid.UUID,
        current_refresh_token: Optional[str] = None,
    ) -> list[SessionView]:
        """Active sessions for display. `current` flags the caller's own device."""
        current_hash = (
            token_fingerprint(current_refresh_token) if current_refresh_token else None
        )
        rows = await self.store.list_tokens(principal_id)
        return [
            SessionView(
                session_id=row.id,
                device_name=row.device_label,
                device_type=row.device_type,
                created_at=row.created_at,
                last_used_at=row.last_used_at,
                expires_at=row.expires_at,
                current=current_hash is not None and row.token_hash == current_hash,
            )
            for row in rows
        ]
