"""Auth API — registration, login, refresh, logout and device sessions.

Learn: Routes for the user session lifecycle:
- POST   /auth/register          → create account + first session (201)
- POST   /auth/login             → email/password → access + refresh tokens
- POST   /auth/refresh           → rotate refresh token → new pair
- POST   /auth/logout            → revoke this device's refresh token
- POST   /auth/logout-all        → revoke every refresh token of the user
- GET    /auth/sessions          → list active devices (no token material)
- DELETE /auth/sessions/{id}     → revoke one device by session id
- GET    /auth/me                → current user info

Tokens travel both ways: as httpOnly cookies (browsers) and in the JSON
body (mobile / API clients that send `Authorization: Bearer`).
"""

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from postpilot.auth.dependencies import CurrentIdentity, extract_bearer, get_current_user
from postpilot.auth.password import hash_password, verify_password
from postpilot.config import settings
from postpilot.db.engine import get_db
from postpilot.errors import AuthFailure, BadInputError, UnauthorizedError
from postpilot.schemas.session import (
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    SessionRead,
    TokenResponse,
    UserRead,
)
from postpilot.services.session_service import SessionManager, parse_device_type

logger = structlog.get_logger()

router = APIRouter(prefix="/auth")


# ─── Cookies ─────────────────────────────────────────────


def _cookie_options() -> dict:
    return {
        "httponly": True,
        "secure": settings.secure_cookies,
        "samesite": "strict",
        "path": "/",
    }


def set_session_cookies(response: Response, access_token: str, refresh_token: str) -> None:
    options = _cookie_options()
    response.set_cookie(
        settings.refresh_cookie_name,
        refresh_token,
        max_age=settings.refresh_cookie_max_age_seconds,
        **options,
    )
    response.set_cookie(
        settings.access_cookie_name,
        access_token,
        max_age=settings.access_cookie_max_age_seconds,
        **options,
    )


def clear_session_cookies(response: Response) -> None:
    options = _cookie_options()
    response.delete_cookie(settings.refresh_cookie_name, **options)
    response.delete_cookie(settings.access_cookie_name, **options)


def _body_or_cookie_refresh_token(
    request: Request, body: Optional[RefreshRequest]
) -> Optional[str]:
    if body and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(settings.refresh_cookie_name)


def _incoming_refresh_token(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    """Refresh token from the JSON body, else the cookie, else a bearer header."""
    return _body_or_cookie_refresh_token(request, body) or extract_bearer(
        request.headers.get("Authorization")
    )


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=TokenResponse, status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    x_device_type: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Create a new user account and sign it in on this device."""
    device_type = parse_device_type(x_device_type)
    manager = SessionManager(db)

    user = await manager.store.create_principal(
        email=body.email,
        username=body.username,
        password_hash=hash_password(body.password),
        profile_pic=body.profile_pic,
    )
    await manager.store.commit()
    logger.info("auth.registered", principal_id=str(user.id))

    issued = await manager.create_session(user.id, device_type)
    set_session_cookies(response, issued.access_token, issued.refresh_token)
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        session_id=issued.session_id,
        device_name=issued.device_label,
        user=UserRead.model_validate(user),
    )


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    response: Response,
    x_device_type: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    """Login with email and password → JWT tokens + a new device session."""
    device_type = parse_device_type(x_device_type)
    manager = SessionManager(db)

    user = await manager.store.find_principal_by_credential(body.email)
    # Same failure for unknown email and wrong password.
    if not user or not verify_password(body.password, user.password_hash):
        raise UnauthorizedError(AuthFailure.BAD_CREDENTIALS)

    issued = await manager.create_session(user.id, device_type)
    logger.info("auth.login", principal_id=str(user.id), session_id=str(issued.session_id))

    set_session_cookies(response, issued.access_token, issued.refresh_token)
    return TokenResponse(
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
        session_id=issued.session_id,
        device_name=issued.device_label,
        user=UserRead.model_validate(user),
    )


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Rotate a refresh token: the presented one dies, a new pair is issued."""
    token = _incoming_refresh_token(request, body)
    if not token:
        raise UnauthorizedError(AuthFailure.MISSING_TOKEN)

    rotated = await SessionManager(db).rotate_session(token)

    set_session_cookies(response, rotated.access_token, rotated.refresh_token)
    return TokenResponse(
        access_token=rotated.access_token,
        refresh_token=rotated.refresh_token,
        session_id=rotated.session_id,
        device_name=rotated.device_label,
    )


# ─── Logout ─────────────────────────────────────────────


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Log out this device. Safe to call twice.

    The bearer header carries the access token here, so the refresh token
    must come from the JSON body or the refresh cookie.
    """
    token = _body_or_cookie_refresh_token(request, body)
    if not token:
        raise BadInputError("refresh_token is required")
    removed = await SessionManager(db).revoke_one(token, principal_id=identity.user_id)
    revoked = int(removed)

    clear_session_cookies(response)
    return MessageResponse(message="User logged out successfully", revoked=revoked)


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Log out from every device."""
    revoked = await SessionManager(db).revoke_all(identity.user_id)
    clear_session_cookies(response)
    return MessageResponse(message="Logged out from all devices successfully", revoked=revoked)


# ─── Sessions ───────────────────────────────────────────


@router.get("/sessions", response_model=list[SessionRead])
async def list_sessions(
    request: Request,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List this user's active device sessions."""
    views = await SessionManager(db).list_sessions(
        identity.user_id,
        current_refresh_token=request.cookies.get(settings.refresh_cookie_name),
    )
    return [SessionRead.model_validate(v) for v in views]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
async def revoke_session(
    session_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Revoke one device session by id (404 if it is not this user's)."""
    await SessionManager(db).revoke_session(identity.user_id, session_id)
    return MessageResponse(message="Session revoked", revoked=1)


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserRead)
async def get_me(identity: CurrentIdentity = Depends(get_current_user)):
    """Get the current authenticated user's info."""
    return identity.user
