"""Pydantic schemas for auth and device sessions.

Learn: UUID fields from the ORM need serialization to strings.
We use uuid.UUID as the Python type and let Pydantic handle
the str conversion in serialization mode.

No schema here ever carries a password hash, and session listings never
carry token material — only the opaque session id.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


# ─── Requests ─────────────────────────────────────────────


class RegisterRequest(BaseModel):
    email: str = Field(max_length=255)
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8, max_length=128)
    profile_pic: Optional[str] = Field(None, max_length=500)

    @field_validator("email")
    @classmethod
    def normalise_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("not a valid email address")
        return v

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be blank")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=1)


class RefreshRequest(BaseModel):
    """Body for /auth/refresh and /auth/logout. Cookie clients may omit it."""
    refresh_token: Optional[str] = None


# ─── Responses ────────────────────────────────────────────


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    username: str
    profile_pic: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    session_id: uuid.UUID
    device_name: str
    user: Optional[UserRead] = None


class SessionRead(BaseModel):
    session_id: uuid.UUID
    device_name: str
    device_type: str
    created_at: datetime
    last_used_at: datetime
    expires_at: datetime
    current: bool = False

    model_config = {"from_attributes": True}


class MessageResponse(BaseModel):
    message: str
    revoked: Optional[int] = None
