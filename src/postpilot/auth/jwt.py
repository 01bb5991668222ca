"""JWT token creation and verification.

Learn: JWT (JSON Web Token) provides stateless authentication.
- Access token: short-lived (60min), used for every API call. Verified by
  signature and expiry alone — no database round trip.
- Refresh token: long-lived (30 days), single use. Each successful refresh
  rotates it, so the server-side record is what makes it revocable.

The two kinds are signed with different secrets and carry a "type" claim.
Every token gets a random "jti" so two tokens minted for the same user in
the same second are still distinct values.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

import jwt

from postpilot.config import Settings, settings as default_settings
from postpilot.errors import AuthFailure


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class TokenError(Exception):
    """Raised when token verification fails. `reason` says why."""

    def __init__(self, reason: AuthFailure, message: str):
        self.reason = reason
        super().__init__(message)


def _secret_for(kind: TokenKind, config: Settings) -> str:
    if kind is TokenKind.ACCESS:
        return config.jwt_access_secret
    return config.jwt_refresh_secret


def _encode(
    principal_id: str,
    kind: TokenKind,
    lifetime: timedelta,
    claims: Optional[dict[str, Any]],
    config: Settings,
) -> str:
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = dict(claims or {})
    payload.update(
        {
            "sub": principal_id,
            "type": kind.value,
            "jti": secrets.token_urlsafe(16),
            "iat": now,
            "exp": now + lifetime,
        }
    )
    return jwt.encode(payload, _secret_for(kind, config), algorithm=config.jwt_algorithm)


def issue_access_token(
    principal_id: str,
    extra_claims: Optional[dict[str, Any]] = None,
    expires_minutes: Optional[int] = None,
    config: Settings = default_settings,
) -> str:
    """Create a signed access token for a principal."""
    lifetime = timedelta(minutes=expires_minutes or config.access_token_expire_minutes)
    return _encode(principal_id, TokenKind.ACCESS, lifetime, extra_claims, config)


def issue_refresh_token(
    principal_id: str,
    expires_days: Optional[int] = None,
    config: Settings = default_settings,
) -> str:
    """Create a signed refresh token for a principal."""
    lifetime = timedelta(days=expires_days or config.refresh_token_expire_days)
    return _encode(principal_id, TokenKind.REFRESH, lifetime, None, config)


def verify(
    token: str,
    expected_kind: TokenKind,
    config: Settings = default_settings,
) -> dict[str, Any]:
    """Verify and decode a token of the expected kind.

    Returns the claims dict on success.
    Raises TokenError with reason EXPIRED, SIGNATURE_INVALID or MALFORMED.
    """
    try:
        claims = jwt.decode(
            token,
            _secret_for(expected_kind, config),
            algorithms=[config.jwt_algorithm],
            options={"require": ["exp", "iat", "sub", "type", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError(AuthFailure.EXPIRED, "Token has expired")
    except jwt.InvalidSignatureError:
        raise TokenError(AuthFailure.SIGNATURE_INVALID, "Token signature is invalid")
    except jwt.InvalidTokenError as e:
        raise TokenError(AuthFailure.MALFORMED, f"Invalid token: {e}")

    if claims.get("type") != expected_kind.value:
        raise TokenError(
            AuthFailure.MALFORMED, f"Expected a {expected_kind.value} token"
        )
    return claims


def expiry_of(claims: dict[str, Any]) -> datetime:
    """The `exp` claim as an aware UTC datetime."""
    return datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)


def token_fingerprint(token: str) -> str:
    """SHA-256 hex digest of a token — the only form ever persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
