"""Tests for auth endpoints: register, login, refresh, logout, logout-all, profile."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import verify_access_token, verify_refresh_token
from conftest import TEST_EMAIL, TEST_PASSWORD, create_user, delete_user


async def _register(client: AsyncClient, email: str = "newuser@test.com", password: str = "securepass123"):
    return await client.post("/auth/register", json={"email": email, "password": password})


@pytest.mark.asyncio
async def test_register(client: AsyncClient):
    resp = await _register(client)
    assert resp.status_code == 201
    data = resp.json()
    assert data["user"]["email"] == "newuser@test.com"
    assert data["user"]["role"] == "user"
    assert set(data["user"]) == {"id", "email", "role"}
    tokens = data["tokens"]
    assert tokens["tokenType"] == "bearer"
    assert tokens["expiresIn"] == 15 * 60
    assert tokens["accessTokenExpiry"] == "15m"
    assert tokens["refreshTokenExpiry"] == "30 days"
    assert verify_access_token(tokens["accessToken"]).email == "newuser@test.com"
    assert verify_refresh_token(tokens["refreshToken"]).user_id == data["user"]["id"]


@pytest.mark.asyncio
async def test_register_never_returns_password(client: AsyncClient):
    resp = await _register(client, password="do-not-echo-me")
    assert resp.status_code == 201
    assert "do-not-echo-me" not in resp.text
    assert "password" not in resp.text.lower()


@pytest.mark.asyncio
async def test_register_invalid_email(client: AsyncClient):
    resp = await _register(client, email="not-an-email")
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation Error"
    assert body["status"] == 400
    assert "email" in body["message"]


@pytest.mark.asyncio
async def test_register_short_password(client: AsyncClient):
    resp = await _register(client, password="123")
    assert resp.status_code == 400
    assert "password" in resp.json()["message"]


@pytest.mark.asyncio
async def test_register_missing_body(client: AsyncClient):
    resp = await client.post("/auth/register")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient):
    first = await _register(client, email="dup@test.com")
    second = await _register(client, email="dup@test.com", password="otherpass")
    assert first.status_code == 201
    assert second.status_code == 409
    assert second.json() == {
        "error": "Duplicate Error",
        "message": "User with this email already exists",
        "status": 409,
    }


@pytest.mark.asyncio
async def test_register_duplicate_email_is_case_insensitive(client: AsyncClient):
    assert (await _register(client, email="Case@Test.com")).status_code == 201
    assert (await _register(client, email="case@test.com")).status_code == 409


@pytest.mark.asyncio
async def test_register_concurrent_same_email(client: AsyncClient):
    first, second = await asyncio.gather(
        _register(client, email="race@test.com"),
        _register(client, email="race@test.com"),
    )
    assert sorted([first.status_code, second.status_code]) == [201, 409]
    loser = first if first.status_code == 409 else second
    assert loser.json() == {
        "error": "Duplicate Error",
        "message": "User with this email already exists",
        "status": 409,
    }
    login = await client.post("/auth/login", json={"email": "race@test.com", "password": "securepass123"})
    assert login.status_code == 200


@pytest.mark.asyncio
async def test_register_then_login(client: AsyncClient):
    reg = await _register(client, email="roundtrip@test.com", password="roundtrip-pass")
    assert reg.status_code == 201
    resp = await client.post(
        "/auth/login",
        json={"email": "roundtrip@test.com", "password": "roundtrip-pass"},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "Login successful"
    assert data["user"] == reg.json()["user"]
    assert data["tokens"]["refreshToken"] != reg.json()["tokens"]["refreshToken"]


@pytest.mark.asyncio
async def test_login(client: AsyncClient, test_user):
    resp = await client.post("/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    assert resp.status_code == 200
    data = resp.json()
    assert data["user"]["email"] == TEST_EMAIL
    assert "accessToken" in data["tokens"]


@pytest.mark.asyncio
async def test_login_wrong_password_and_unknown_email_look_the_same(client: AsyncClient, test_user):
    wrong = await client.post("/auth/login", json={"email": TEST_EMAIL, "password": "wrong"})
    unknown = await client.post("/auth/login", json={"email": "nobody@test.com", "password": "wrong"})
    assert wrong.status_code == 401
    assert unknown.status_code == 401
    assert wrong.json() == unknown.json()
    assert wrong.json()["message"] == "Invalid email or password"


@pytest.mark.asyncio
async def test_login_inactive_user(client: AsyncClient):
    await create_user(email="inactive@test.com", is_active=False)
    resp = await client.post("/auth/login", json={"email": "inactive@test.com", "password": TEST_PASSWORD})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login_malformed_body(client: AsyncClient):
    resp = await client.post("/auth/login", json={"email": "x"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_login_updates_last_login(client: AsyncClient, test_user, auth_headers: dict):
    before = await client.get("/auth/profile", headers=auth_headers)
    assert before.json()["user"]["lastLogin"] is None
    await client.post("/auth/login", json={"email": TEST_EMAIL, "password": TEST_PASSWORD})
    after = await client.get("/auth/profile", headers=auth_headers)
    assert after.json()["user"]["lastLogin"] is not None


@pytest.mark.asyncio
async def test_refresh_issues_access_token_with_same_claims(client: AsyncClient):
    reg = await _register(client, email="refresh@test.com")
    refresh_token = reg.json()["tokens"]["refreshToken"]
    resp = await client.post("/auth/refresh", json={"refreshToken": refresh_token})
    assert resp.status_code == 200
    data = resp.json()
    assert data["expiresIn"] == 15 * 60
    new_claims = verify_access_token(data["accessToken"])
    old_claims = verify_refresh_token(refresh_token)
    assert (new_claims.user_id, new_claims.email, new_claims.role) == (
        old_claims.user_id,
        old_claims.email,
        old_claims.role,
    )


@pytest.mark.asyncio
async def test_refresh_does_not_rotate_refresh_token(client: AsyncClient):
    reg = await _register(client)
    refresh_token = reg.json()["tokens"]["refreshToken"]
    for _ in range(2):
        resp = await client.post("/auth/refresh", json={"refreshToken": refresh_token})
        assert resp.status_code == 200
        assert "refreshToken" not in resp.json()


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(client: AsyncClient):
    reg = await _register(client)
    resp = await client.post("/auth/refresh", json={"refreshToken": reg.json()["tokens"]["accessToken"]})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_refresh_rejects_garbage(client: AsyncClient, clean_db):
    resp = await client.post("/auth/refresh", json={"refreshToken": "not.a.jwt"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_refresh_missing_token(client: AsyncClient):
    resp = await client.post("/auth/refresh", json={})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_refresh_blank_token(client: AsyncClient):
    resp = await client.post("/auth/refresh", json={"refreshToken": "   "})
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "Validation Error",
        "message": "Validation failed: refreshToken must not be blank",
        "status": 400,
    }


@pytest.mark.asyncio
async def test_refresh_after_logout_fails(client: AsyncClient):
    reg = await _register(client)
    refresh_token = reg.json()["tokens"]["refreshToken"]
    logout = await client.post("/auth/logout", json={"refreshToken": refresh_token})
    assert logout.status_code == 200
    resp = await client.post("/auth/refresh", json={"refreshToken": refresh_token})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_refresh_inactive_user_fails(client: AsyncClient):
    from sqlalchemy import update

    from app.db.session import async_session_maker
    from app.models.user import User

    reg = await _register(client, email="disabled@test.com")
    async with async_session_maker() as session:
        await session.execute(update(User).where(User.email == "disabled@test.com").values(is_active=False))
        await session.commit()
    resp = await client.post("/auth/refresh", json={"refreshToken": reg.json()["tokens"]["refreshToken"]})
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"json": {"refreshToken": "never-issued"}},
        {"json": {}},
        {"content": b"{not json", "headers": {"Content-Type": "application/json"}},
        {},
    ],
)
async def test_logout_always_succeeds(client: AsyncClient, kwargs):
    resp = await client.post("/auth/logout", **kwargs)
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logout successful"}


@pytest.mark.asyncio
async def test_logout_twice_succeeds(client: AsyncClient):
    reg = await _register(client)
    refresh_token = reg.json()["tokens"]["refreshToken"]
    for _ in range(2):
        resp = await client.post("/auth/logout", json={"refreshToken": refresh_token})
        assert resp.status_code == 200


@pytest.mark.asyncio
async def test_logout_with_invalid_bearer_still_succeeds(client: AsyncClient, clean_db):
    resp = await client.post("/auth/logout", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_logout_succeeds_when_revoke_and_rollback_fail(client: AsyncClient):
    revoke = AsyncMock(side_effect=RuntimeError("store call cancelled"))
    rollback = AsyncMock(side_effect=RuntimeError("connection is closed"))
    with patch("app.api.v1.auth.revoke_refresh_token", revoke), patch.object(AsyncSession, "rollback", rollback):
        resp = await client.post("/auth/logout", json={"refreshToken": "some-token"})
    assert resp.status_code == 200
    assert resp.json() == {"message": "Logout successful"}
    revoke.assert_awaited_once()
    rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_logout_all_revokes_every_session(client: AsyncClient):
    reg = await _register(client, email="many@test.com", password="many-sessions")
    login = await client.post("/auth/login", json={"email": "many@test.com", "password": "many-sessions"})
    tokens = [reg.json()["tokens"]["refreshToken"], login.json()["tokens"]["refreshToken"]]
    headers = {"Authorization": f"Bearer {login.json()['tokens']['accessToken']}"}

    resp = await client.post("/auth/logout-all", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["revoked"] == 2
    for token in tokens:
        r = await client.post("/auth/refresh", json={"refreshToken": token})
        assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_all_requires_auth(client: AsyncClient):
    resp = await client.post("/auth/logout-all")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_profile(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/auth/profile", headers=auth_headers)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert user["email"] == TEST_EMAIL
    assert user["role"] == "user"
    assert user["isActive"] is True
    assert not any("password" in key.lower() for key in user)


@pytest.mark.asyncio
async def test_profile_unauthorized(client: AsyncClient):
    resp = await client.get("/auth/profile")
    assert resp.status_code == 401
    assert resp.json()["status"] == 401


@pytest.mark.asyncio
async def test_profile_user_vanished(client: AsyncClient, test_user, auth_headers: dict):
    user_id, _, _ = test_user
    await delete_user(user_id)
    resp = await client.get("/auth/profile", headers=auth_headers)
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found", "message": "User not found", "status": 404}
