"""Auth API tests — register, login, refresh, logout and device sessions.

Learn: Tests cover:
1. Registration + duplicate prevention + input validation
2. Login → token pair, as JSON and as httpOnly cookies
3. Refresh rotation (body and cookie), replay of the old token
4. Uniform 401s: the body never says *why* except "token expired"
5. Logout (idempotent), logout-all, device session list and revoke

httpx keeps a cookie jar per client. Tests clear it after each auth call
and send cookies explicitly, so every request carries exactly the
credentials the test intends.
"""

import uuid

import pytest
from sqlalchemy import delete

from postpilot.auth.jwt import issue_access_token
from postpilot.config import settings
from postpilot.db.models import User

PASSWORD = "password_123"


def _email() -> str:
    return f"user-{uuid.uuid4().hex[:8]}@example.com"


async def _register(client, email=None, device_type=None) -> dict:
    headers = {"X-Device-Type": device_type} if device_type else {}
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email or _email(), "username": "Test User", "password": PASSWORD},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    client.cookies.clear()
    return r.json()


async def _login(client, email, device_type=None) -> dict:
    headers = {"X-Device-Type": device_type} if device_type else {}
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": PASSWORD},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    client.cookies.clear()
    return r.json()


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _set_cookies(response) -> str:
    return "\n".join(response.headers.get_list("set-cookie")).lower()


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_returns_tokens_and_cookies(client):
    email = _email()
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email.upper(), "username": " Test User ", "password": PASSWORD},
    )
    assert r.status_code == 201
    data = r.json()
    assert data["user"]["email"] == email
    assert data["user"]["username"] == "Test User"
    assert "password_hash" not in data["user"]
    assert data["access_token"] and data["refresh_token"]
    assert data["device_name"] == "Web App 1"

    cookies = _set_cookies(r)
    assert f"{settings.access_cookie_name.lower()}=" in cookies
    assert f"{settings.refresh_cookie_name.lower()}=" in cookies
    assert "httponly" in cookies
    assert "samesite=strict" in cookies


@pytest.mark.asyncio
async def test_register_duplicate_email(client):
    email = _email()
    await _register(client, email)
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": email, "username": "Again", "password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json()["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_register_short_password(client):
    r = await client.post(
        "/api/v1/auth/register",
        json={"email": _email(), "username": "Short", "password": "short"},
    )
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "BAD_INPUT"


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_returns_token_pair(client):
    email = _email()
    await _register(client, email)
    data = await _login(client, email)
    assert data["token_type"] == "bearer"
    assert data["device_name"] == "Web App 2"
    assert data["user"]["email"] == email


@pytest.mark.asyncio
async def test_login_failures_look_identical(client):
    email = _email()
    await _register(client, email)

    wrong_password = await client.post(
        "/api/v1/auth/login", json={"email": email, "password": "wrong_password"}
    )
    unknown_email = await client.post(
        "/api/v1/auth/login", json={"email": _email(), "password": PASSWORD}
    )
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()
    assert wrong_password.json()["message"] == "Not authorized"


@pytest.mark.asyncio
async def test_unsupported_device_type(client):
    email = _email()
    await _register(client, email)
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": PASSWORD},
        headers={"X-Device-Type": "smartwatch"},
    )
    assert r.status_code == 400


# ═══════════════════════════════════════════════════════════
# Refresh
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_refresh_rotates_and_old_token_dies(client):
    tokens = await _register(client)
    old = tokens["refresh_token"]

    r = await client.post("/api/v1/auth/refresh", json={"refresh_token": old})
    assert r.status_code == 200
    client.cookies.clear()
    rotated = r.json()
    assert rotated["refresh_token"] != old
    assert rotated["session_id"] == tokens["session_id"]

    replay = await client.post("/api/v1/auth/refresh", json={"refresh_token": old})
    assert replay.status_code == 401
    assert replay.json()["message"] == "Not authorized"
    assert replay.headers["WWW-Authenticate"] == "Bearer"

    again = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": rotated["refresh_token"]}
    )
    assert again.status_code == 200


@pytest.mark.asyncio
async def test_refresh_from_cookie(client):
    tokens = await _register(client)
    r = await client.post(
        "/api/v1/auth/refresh",
        headers={"Cookie": f"{settings.refresh_cookie_name}={tokens['refresh_token']}"},
    )
    assert r.status_code == 200
    assert f"{settings.refresh_cookie_name.lower()}=" in _set_cookies(r)


@pytest.mark.asyncio
async def test_refresh_without_token(client):
    r = await client.post("/api/v1/auth/refresh")
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


@pytest.mark.asyncio
async def test_access_token_cannot_refresh(client):
    tokens = await _register(client)
    r = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["access_token"]}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_forged_and_garbage_tokens_share_one_body(client):
    garbage = await client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
    forged = await client.post(
        "/api/v1/auth/refresh",
        json={"refresh_token": issue_access_token(str(uuid.uuid4()))},
    )
    assert garbage.status_code == forged.status_code == 401
    assert garbage.json() == forged.json()


# ═══════════════════════════════════════════════════════════
# Protected routes
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_me_with_bearer(client):
    email = _email()
    tokens = await _register(client, email)
    r = await client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))
    assert r.status_code == 200
    assert r.json()["email"] == email


@pytest.mark.asyncio
async def test_me_with_cookie(client):
    tokens = await _register(client)
    r = await client.get(
        "/api/v1/auth/me",
        headers={"Cookie": f"{settings.access_cookie_name}={tokens['access_token']}"},
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_me_without_token(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.json() == {
        "statusCode": 401,
        "message": "Not authorized",
        "code": "UNAUTHORIZED",
        "success": False,
    }


@pytest.mark.asyncio
async def test_expired_access_token_is_flagged(client):
    tokens = await _register(client)
    user_id = tokens["user"]["id"]
    r = await client.get(
        "/api/v1/auth/me",
        headers=_bearer(issue_access_token(user_id, expires_minutes=-1)),
    )
    assert r.status_code == 401
    assert r.json()["code"] == "TOKEN_EXPIRED"
    assert r.json()["message"] == "Not authorized"


@pytest.mark.asyncio
async def test_deleted_user_is_rejected(client, database):
    tokens = await _register(client)
    async with database.session() as db:
        await db.execute(delete(User).where(User.id == uuid.UUID(tokens["user"]["id"])))
        await db.commit()

    r = await client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


# ═══════════════════════════════════════════════════════════
# Logout
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_logout_twice(client):
    tokens = await _register(client)
    body = {"refresh_token": tokens["refresh_token"]}
    headers = _bearer(tokens["access_token"])

    first = await client.post("/api/v1/auth/logout", json=body, headers=headers)
    assert first.status_code == 200
    assert first.json()["revoked"] == 1
    assert f"{settings.refresh_cookie_name.lower()}=" in _set_cookies(first)

    second = await client.post("/api/v1/auth/logout", json=body, headers=headers)
    assert second.status_code == 200
    assert second.json()["revoked"] == 0

    r = await client.post("/api/v1/auth/refresh", json=body)
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_requires_access_token(client):
    tokens = await _register(client)
    r = await client.post(
        "/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]}
    )
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_without_refresh_token_is_rejected(client):
    """The bearer header holds the access token; it never names a session."""
    tokens = await _register(client)
    r = await client.post("/api/v1/auth/logout", headers=_bearer(tokens["access_token"]))
    assert r.status_code == 400
    assert r.json()["code"] == "BAD_INPUT"

    still_live = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
    )
    assert still_live.status_code == 200


@pytest.mark.asyncio
async def test_logout_with_refresh_cookie(client):
    tokens = await _register(client)
    r = await client.post(
        "/api/v1/auth/logout",
        headers={
            **_bearer(tokens["access_token"]),
            "Cookie": f"{settings.refresh_cookie_name}={tokens['refresh_token']}",
        },
    )
    assert r.status_code == 200
    assert r.json()["revoked"] == 1


@pytest.mark.asyncio
async def test_logout_cannot_revoke_someone_elses_token(client):
    alice = await _register(client)
    bob = await _register(client)

    r = await client.post(
        "/api/v1/auth/logout",
        json={"refresh_token": alice["refresh_token"]},
        headers=_bearer(bob["access_token"]),
    )
    assert r.json()["revoked"] == 0

    still_live = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": alice["refresh_token"]}
    )
    assert still_live.status_code == 200


@pytest.mark.asyncio
async def test_logout_all(client):
    email = _email()
    first = await _register(client, email)
    second = await _login(client, email, device_type="mobile")

    r = await client.post("/api/v1/auth/logout-all", headers=_bearer(second["access_token"]))
    assert r.status_code == 200
    assert r.json()["revoked"] == 2

    for tokens in (first, second):
        refreshed = await client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert refreshed.status_code == 401


# ═══════════════════════════════════════════════════════════
# Device sessions
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_sessions(client):
    email = _email()
    web = await _register(client, email)
    mobile = await _login(client, email, device_type="mobile")

    r = await client.get(
        "/api/v1/auth/sessions",
        headers={
            **_bearer(mobile["access_token"]),
            "Cookie": f"{settings.refresh_cookie_name}={mobile['refresh_token']}",
        },
    )
    assert r.status_code == 200
    sessions = r.json()
    assert {s["device_name"] for s in sessions} == {"Web App 1", "Mobile App 2"}
    assert [s["session_id"] for s in sessions if s["current"]] == [mobile["session_id"]]

    text = r.text
    assert web["refresh_token"] not in text
    assert mobile["refresh_token"] not in text
    assert "token_hash" not in text


@pytest.mark.asyncio
async def test_revoke_session_by_id(client):
    email = _email()
    web = await _register(client, email)
    mobile = await _login(client, email, device_type="mobile")
    headers = _bearer(web["access_token"])

    r = await client.delete(f"/api/v1/auth/sessions/{mobile['session_id']}", headers=headers)
    assert r.status_code == 200

    gone = await client.delete(f"/api/v1/auth/sessions/{mobile['session_id']}", headers=headers)
    assert gone.status_code == 404
    assert gone.json()["message"] == "Session not found"

    dead = await client.post(
        "/api/v1/auth/refresh", json={"refresh_token": mobile["refresh_token"]}
    )
    assert dead.status_code == 401


@pytest.mark.asyncio
async def test_revoke_unknown_session(client):
    tokens = await _register(client)
    r = await client.delete(
        f"/api/v1/auth/sessions/{uuid.uuid4()}", headers=_bearer(tokens["access_token"])
    )
    assert r.status_code == 404
