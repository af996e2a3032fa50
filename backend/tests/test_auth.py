"""Tests for auth endpoints: register, login, refresh (body and cookie transport), logout, me."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import ACCESS_SECRET, ALICE_EMAIL, ALICE_PASSWORD
from sessionguard.core.tokens import issue_token

BODY = {"X-Auth-Mode": "body"}
COOKIE = {"X-Auth-Mode": "cookie"}


async def _login_body(client: AsyncClient) -> dict:
    resp = await client.post(
        "/api/v1/auth/login",
        json={"email": ALICE_EMAIL, "password": ALICE_PASSWORD},
        headers=BODY,
    )
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_register(client: AsyncClient):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": "NewUser@Test.com", "name": "New", "password": "securepass123"},
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["email"] == "newuser@test.com"
    assert data["name"] == "New"
    assert data["message"] == "Registration successful"
    assert "password" not in data and "password_hash" not in data


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient, alice):
    resp = await client.post(
        "/api/v1/auth/register",
        json={"email": ALICE_EMAIL, "name": "Again", "password": "securepass123"},
    )
    assert resp.status_code == 409
    data = resp.json()
    assert data["errorType"] == "CONFLICT"
    assert data["statusCode"] == 409
    assert data["path"] == "/api/v1/auth/register"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_register_validation(client: AsyncClient):
    resp = await client.post("/api/v1/auth/register", json={"email": "x@test.com", "password": "short"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_login_body_mode(client: AsyncClient, alice):
    data = await _login_body(client)
    assert data["mode"] == "body"
    assert data["token_type"] == "bearer"
    assert data["expires_in"] == 900
    assert data["refresh_token_expires_in"] == 7 * 86400
    assert data["access_token"] and data["refresh_token"]


@pytest.mark.asyncio
async def test_login_cookie_mode(client: AsyncClient, alice):
    resp = await client.post(
        "/api/v1/auth/login",
        json={"email": ALICE_EMAIL, "password": ALICE_PASSWORD},
        headers=COOKIE,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["mode"] == "cookie"
    assert data["access_token"] is None and data["refresh_token"] is None
    set_cookie = " ".join(resp.headers.get_list("set-cookie"))
    assert "accessToken=" in set_cookie and "refreshToken=" in set_cookie
    assert "HttpOnly" in set_cookie
    assert "Path=/api/v1/auth" in set_cookie


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, alice):
    resp = await client.post(
        "/api/v1/auth/login",
        json={"email": ALICE_EMAIL, "password": "wrong"},
        headers=BODY,
    )
    assert resp.status_code == 401
    assert resp.json()["errorType"] == "INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_refresh_body_mode_and_replay(client: AsyncClient, alice):
    tokens = await _login_body(client)
    resp = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}, headers=BODY)
    assert resp.status_code == 200
    rotated = resp.json()
    assert rotated["refresh_token"] != tokens["refresh_token"]

    replay = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}, headers=BODY)
    garbage = await client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"}, headers=BODY)
    assert replay.status_code == garbage.status_code == 401
    assert replay.json()["errorType"] == garbage.json()["errorType"] == "INVALID_TOKEN"
    assert replay.json()["message"] == garbage.json()["message"]

    newest = await client.post("/api/v1/auth/refresh", json={"refresh_token": rotated["refresh_token"]}, headers=BODY)
    assert newest.status_code == 401


@pytest.mark.asyncio
async def test_refresh_cookie_mode(client: AsyncClient, alice):
    login = await client.post(
        "/api/v1/auth/login",
        json={"email": ALICE_EMAIL, "password": ALICE_PASSWORD},
        headers=COOKIE,
    )
    refresh_cookie = login.cookies.get("refreshToken")
    assert refresh_cookie

    client.cookies.clear()
    client.cookies.set("refreshToken", refresh_cookie)
    resp = await client.post("/api/v1/auth/refresh", headers=COOKIE)
    assert resp.status_code == 200
    assert resp.json()["mode"] == "cookie"
    assert resp.cookies.get("refreshToken") not in (None, refresh_cookie)


@pytest.mark.asyncio
async def test_refresh_missing_token(client: AsyncClient):
    resp = await client.post("/api/v1/auth/refresh", json={}, headers=BODY)
    assert resp.status_code == 401
    assert resp.json()["errorType"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_me(client: AsyncClient, alice):
    tokens = await _login_body(client)
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert resp.status_code == 200
    assert resp.json() == {"id": alice.id, "email": ALICE_EMAIL, "name": "Alice"}


@pytest.mark.asyncio
async def test_me_unauthorized(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert resp.json()["errorType"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_me_refresh_token_is_not_an_access_token(client: AsyncClient, alice):
    tokens = await _login_body(client)
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert resp.status_code == 401
    assert resp.json()["errorType"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_me_expired_access_token(client: AsyncClient, alice):
    expired = issue_token(
        alice.id,
        ALICE_EMAIL,
        ACCESS_SECRET,
        "15m",
        now=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["errorType"] == "ACCESS_TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_logout_specific_token(client: AsyncClient, alice):
    laptop = await _login_body(client)
    phone = await _login_body(client)
    resp = await client.post(
        "/api/v1/auth/logout",
        json={"refresh_token": laptop["refresh_token"]},
        headers={**BODY, "Authorization": f"Bearer {laptop['access_token']}"},
    )
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logout successful"}

    dead = await client.post("/api/v1/auth/refresh", json={"refresh_token": laptop["refresh_token"]}, headers=BODY)
    assert dead.status_code == 401
    # The revoked laptop token was then treated as reuse, so the phone session is gone too
    also_dead = await client.post("/api/v1/auth/refresh", json={"refresh_token": phone["refresh_token"]}, headers=BODY)
    assert also_dead.status_code == 401


@pytest.mark.asyncio
async def test_logout_all_then_again(client: AsyncClient, alice, list_sessions):
    tokens = await _login_body(client)
    await _login_body(client)
    headers = {**BODY, "Authorization": f"Bearer {tokens['access_token']}"}
    first = await client.post("/api/v1/auth/logout", headers=headers)
    second = await client.post("/api/v1/auth/logout", headers=headers)
    assert first.status_code == second.status_code == 200
    assert all(r.revoked for r in await list_sessions(alice.id))


@pytest.mark.asyncio
async def test_logout_requires_access_token(client: AsyncClient):
    resp = await client.post("/api/v1/auth/logout", headers=BODY)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_persistence_failure_returns_503(client: AsyncClient, alice):
    failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
    with patch.object(AsyncSession, "execute", failing):
        resp = await client.post(
            "/api/v1/auth/login",
            json={"email": ALICE_EMAIL, "password": ALICE_PASSWORD},
            headers=BODY,
        )
    assert resp.status_code == 503
    data = resp.json()
    assert data["errorType"] == "SERVICE_UNAVAILABLE"
    assert "db down" not in data["message"]
