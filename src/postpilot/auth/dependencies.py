"""FastAPI auth dependencies — the per-request auth gate.

Learn: These are used as Depends() in route handlers to extract and
validate the current user from the request:

1. Find the access token: `Authorization: Bearer ...` header first, then
   the `accessToken` cookie.
2. Verify it with the token codec (signature + expiry, no database).
3. Load the principal named by the `sub` claim (a read, never a write).
4. Attach it to `request.state.principal` for downstream handlers.

Every failure is an UnauthorizedError with a distinct reason. The HTTP
layer turns all of them into the same 401; the reason only reaches logs.
"""

import uuid
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from postpilot.auth.jwt import TokenError, TokenKind, verify
from postpilot.config import settings
from postpilot.db.engine import get_db
from postpilot.db.models import User
from postpilot.errors import AuthFailure, UnauthorizedError
from postpilot.store.credentials import CredentialStore


class CurrentIdentity:
    """Represents the authenticated principal making the request.

    Learn: Downstream handlers only need the id and email for most work;
    the full User row is also kept for endpoints like /auth/me.
    """

    def __init__(self, user: User, claims: Optional[dict] = None):
        self.user = user
        self.user_id: uuid.UUID = user.id
        self.email: str = user.email
        self.claims = claims or {}


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
        return token or None
    return None


def extract_access_token(request: Request) -> Optional[str]:
    """Access token from the Authorization header, else the access cookie."""
    return extract_bearer(request.headers.get("Authorization")) or request.cookies.get(
        settings.access_cookie_name
    )


async def authenticate(request: Request, db: AsyncSession) -> CurrentIdentity:
    """Run the full gate. Raises UnauthorizedError on any failure."""
    token = extract_access_token(request)
    if not token:
        raise UnauthorizedError(AuthFailure.MISSING_TOKEN)

    try:
        claims = verify(token, TokenKind.ACCESS)
    except TokenError as e:
        raise UnauthorizedError(e.reason, str(e)) from e

    try:
        principal_id = uuid.UUID(claims["sub"])
    except (ValueError, TypeError) as e:
        raise UnauthorizedError(AuthFailure.MALFORMED, "subject is not a user id") from e

    store = CredentialStore(db, timeout=settings.store_timeout_seconds)
    user = await store.find_principal_by_id(principal_id)
    if user is None:
        raise UnauthorizedError(AuthFailure.PRINCIPAL_GONE)

    request.state.principal = user
    return CurrentIdentity(user, claims)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> CurrentIdentity:
    """401 unless a valid access token is presented."""
    return await authenticate(request, db)
