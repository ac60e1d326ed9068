"""Tests for auth endpoints: login, me, refresh rotation, logout, sessions, register, change-password."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient
from jose import jwt

from repairdesk.config import settings
from repairdesk.core.tokens import TokenCodec
from repairdesk.db.session import database
from repairdesk.services.credential_store import CredentialStore


async def _login(client: AsyncClient, username: str, password: str, **kwargs):
    return await client.post("/api/auth/login", json={"username": username, "password": password}, **kwargs)


async def _active_sessions(user_id: int) -> list:
    async with database.session_maker() as session:
        return await CredentialStore(session).list_active_refresh_tokens(user_id, datetime.now(timezone.utc))


@pytest.mark.asyncio
async def test_login(client: AsyncClient, test_user):
    resp = await _login(client, "alice", "correct")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    data = body["data"]
    assert data["user"]["username"] == "alice"
    assert data["user"]["role"] == "employee"
    assert data["expiresIn"]["accessToken"] == settings.jwt_access_expires_in
    assert data["expiresIn"]["refreshToken"] == settings.jwt_refresh_expires_in
    assert TokenCodec.from_settings().verify_access(data["accessToken"]) == test_user.id
    assert len(data["refreshToken"]) == 128


@pytest.mark.asyncio
async def test_login_then_me(client: AsyncClient, test_user):
    resp = await _login(client, "alice", "correct")
    access = resp.json()["data"]["accessToken"]
    me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert me.status_code == 200
    user = me.json()["data"]["user"]
    assert user["username"] == "alice"
    assert user["full_name"] == "Alice Smith"
    assert "password_hash" not in user


@pytest.mark.asyncio
async def test_login_with_email(client: AsyncClient, test_user):
    resp = await _login(client, "alice@repairs.test", "correct")
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["id"] == test_user.id


@pytest.mark.asyncio
async def test_login_records_metadata_and_last_login(client: AsyncClient, test_user):
    resp = await _login(client, "alice", "correct", headers={"User-Agent": "bench-tablet/1.0"})
    assert resp.status_code == 200
    rows = await _active_sessions(test_user.id)
    assert len(rows) == 1
    assert rows[0].user_agent == "bench-tablet/1.0"
    assert rows[0].ip_address == "127.0.0.1"
    async with database.session_maker() as session:
        user = await CredentialStore(session).get_user(test_user.id)
        assert user.last_login is not None


@pytest.mark.asyncio
async def test_wrong_password_and_unknown_user_are_indistinguishable(client: AsyncClient, test_user):
    wrong = await _login(client, "alice", "wrong")
    unknown = await _login(client, "mallory", "correct")
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json()
    assert wrong.json()["error"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_inactive_user_rejected(client: AsyncClient, make_user):
    await make_user("gone", "secret1", is_active=False)
    resp = await _login(client, "gone", "secret1")
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid credentials"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"username": "alice"}, {"password": "correct"}, {}])
async def test_login_requires_username_and_password(client: AsyncClient, test_user, payload):
    resp = await client.post("/api/auth/login", json=payload)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Username and password are required"


@pytest.mark.asyncio
async def test_me(client: AsyncClient, auth_headers: dict):
    resp = await client.get("/api/auth/me", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["user"]["username"] == "alice"


@pytest.mark.asyncio
async def test_me_unauthorized(client: AsyncClient, clean_db):
    resp = await client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json()["code"] == "TOKEN_MISSING"


@pytest.mark.asyncio
async def test_me_invalid_token(client: AsyncClient, test_user):
    resp = await client.get("/api/auth/me", headers={"Authorization": "Bearer not.a.token"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_me_expired_token(client: AsyncClient, test_user):
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token, _ = TokenCodec.from_settings(clock=lambda: past).issue_access(test_user.id, timedelta(minutes=15))
    resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "TOKEN_EXPIRED"


@pytest.mark.asyncio
async def test_me_wrong_token_type(client: AsyncClient, test_user):
    exp = (datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp()
    token = jwt.encode(
        {"sub": str(test_user.id), "type": "refresh", "exp": exp}, settings.secret_key, algorithm="HS256"
    )
    resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_TOKEN_TYPE"


@pytest.mark.asyncio
async def test_refresh_token_not_accepted_as_access_token(client: AsyncClient, test_user):
    login = await _login(client, "alice", "correct")
    refresh = login.json()["data"]["refreshToken"]
    resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {refresh}"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_TOKEN"


@pytest.mark.asyncio
async def test_me_for_deactivated_user(client: AsyncClient, make_user, headers_for):
    user = await make_user("former", "secret1", is_active=False)
    resp = await client.get("/api/auth/me", headers=headers_for(user))
    assert resp.status_code == 401
    assert resp.json()["code"] == "PRINCIPAL_UNAVAILABLE"


@pytest.mark.asyncio
async def test_refresh_rotates_tokens(client: AsyncClient, test_user):
    login = (await _login(client, "alice", "correct")).json()["data"]
    resp = await client.post("/api/auth/refresh", json={"refreshToken": login["refreshToken"]})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["refreshToken"] != login["refreshToken"]
    assert TokenCodec.from_settings().verify_access(data["accessToken"]) == test_user.id
    assert data["user"]["username"] == "alice"

    # The new refresh token is usable, the old one is not
    again = await client.post("/api/auth/refresh", json={"refreshToken": data["refreshToken"]})
    assert again.status_code == 200


@pytest.mark.asyncio
async def test_refresh_reuse_is_rejected(client: AsyncClient, test_user):
    original = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    first = await client.post("/api/auth/refresh", json={"refreshToken": original})
    assert first.status_code == 200
    replay = await client.post("/api/auth/refresh", json={"refreshToken": original})
    assert replay.status_code == 401
    assert replay.json()["error"] == "Invalid or expired refresh token"


@pytest.mark.asyncio
async def test_refresh_unknown_and_missing_token(client: AsyncClient, clean_db):
    unknown = await client.post("/api/auth/refresh", json={"refreshToken": "deadbeef"})
    assert unknown.status_code == 401
    assert unknown.json()["error"] == "Invalid or expired refresh token"
    missing = await client.post("/api/auth/refresh", json={})
    assert missing.status_code == 401
    assert missing.json()["error"] == "Refresh token required"


@pytest.mark.asyncio
async def test_concurrent_refresh_succeeds_exactly_once(client: AsyncClient, test_user):
    original = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    responses = await asyncio.gather(
        *[client.post("/api/auth/refresh", json={"refreshToken": original}) for _ in range(5)]
    )
    codes = sorted(r.status_code for r in responses)
    assert codes == [200, 401, 401, 401, 401]
    for r in responses:
        if r.status_code == 401:
            assert r.json()["error"] == "Invalid or expired refresh token"
    winner = next(r for r in responses if r.status_code == 200).json()["data"]["refreshToken"]
    active = await _active_sessions(test_user.id)
    assert len(active) == 1
    follow_up = await client.post("/api/auth/refresh", json={"refreshToken": winner})
    assert follow_up.status_code == 200


@pytest.mark.asyncio
async def test_refresh_rejected_for_deactivated_user(client: AsyncClient, test_user, admin_headers):
    refresh = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    resp = await client.put(
        f"/api/auth/users/{test_user.id}",
        json={"full_name": "Alice Smith", "role": "employee", "is_active": False},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    denied = await client.post("/api/auth/refresh", json={"refreshToken": refresh})
    assert denied.status_code == 401


@pytest.mark.asyncio
async def test_logout_is_idempotent(client: AsyncClient, test_user):
    refresh = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    for _ in range(2):
        resp = await client.post("/api/auth/logout", json={"refreshToken": refresh})
        assert resp.status_code == 200
        assert resp.json()["success"] is True
    denied = await client.post("/api/auth/refresh", json={"refreshToken": refresh})
    assert denied.status_code == 401


@pytest.mark.asyncio
async def test_logout_without_token(client: AsyncClient, clean_db):
    assert (await client.post("/api/auth/logout")).status_code == 200
    assert (await client.post("/api/auth/logout", json={})).status_code == 200
    assert (await client.post("/api/auth/logout", json={"refreshToken": "unknown"})).status_code == 200


@pytest.mark.asyncio
async def test_logout_all(client: AsyncClient, test_user, auth_headers):
    tokens = [(await _login(client, "alice", "correct")).json()["data"]["refreshToken"] for _ in range(3)]
    resp = await client.post("/api/auth/logout-all", headers=auth_headers)
    assert resp.status_code == 200
    for token in tokens:
        denied = await client.post("/api/auth/refresh", json={"refreshToken": token})
        assert denied.status_code == 401
    assert await _active_sessions(test_user.id) == []


@pytest.mark.asyncio
async def test_logout_all_requires_auth(client: AsyncClient, clean_db):
    assert (await client.post("/api/auth/logout-all")).status_code == 401


@pytest.mark.asyncio
async def test_sessions_list_most_recent_first(client: AsyncClient, test_user, auth_headers):
    await _login(client, "alice", "correct", headers={"User-Agent": "first"})
    second = (await _login(client, "alice", "correct", headers={"User-Agent": "second"})).json()["data"]
    await client.post("/api/auth/logout", json={"refreshToken": second["refreshToken"]})
    await _login(client, "alice", "correct", headers={"User-Agent": "third"})

    resp = await client.get("/api/auth/sessions", headers=auth_headers)
    assert resp.status_code == 200
    sessions = resp.json()["data"]
    assert [s["user_agent"] for s in sessions] == ["third", "first"]
    assert set(sessions[0]) == {"id", "created_at", "last_used_at", "user_agent", "ip_address"}


@pytest.mark.asyncio
async def test_revoke_own_session(client: AsyncClient, test_user, auth_headers):
    refresh = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    session_id = (await client.get("/api/auth/sessions", headers=auth_headers)).json()["data"][0]["id"]
    resp = await client.delete(f"/api/auth/sessions/{session_id}", headers=auth_headers)
    assert resp.status_code == 200
    assert (await client.post("/api/auth/refresh", json={"refreshToken": refresh})).status_code == 401


@pytest.mark.asyncio
async def test_revoke_other_users_session_is_not_found(client: AsyncClient, test_user, make_user, headers_for):
    await _login(client, "alice", "correct")
    bob = await make_user("bob", "bobpass1")
    alice_session = (await _active_sessions(test_user.id))[0]
    resp = await client.delete(f"/api/auth/sessions/{alice_session.id}", headers=headers_for(bob))
    assert resp.status_code == 404
    assert resp.json()["error"] == "Session not found"
    assert len(await _active_sessions(test_user.id)) == 1


@pytest.mark.asyncio
async def test_change_password_revokes_all_sessions(client: AsyncClient, test_user, auth_headers):
    tokens = [(await _login(client, "alice", "correct")).json()["data"]["refreshToken"] for _ in range(2)]
    resp = await client.post(
        "/api/auth/change-password",
        json={"currentPassword": "correct", "newPassword": "better-pass"},
        headers=auth_headers,
    )
    assert resp.status_code == 200
    for token in tokens:
        assert (await client.post("/api/auth/refresh", json={"refreshToken": token})).status_code == 401
    assert (await _login(client, "alice", "correct")).status_code == 401
    assert (await _login(client, "alice", "better-pass")).status_code == 200


@pytest.mark.asyncio
async def test_change_password_wrong_current(client: AsyncClient, test_user, auth_headers):
    refresh = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    resp = await client.post(
        "/api/auth/change-password",
        json={"currentPassword": "nope", "newPassword": "better-pass"},
        headers=auth_headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Current password is incorrect"
    # Sessions survive a failed attempt
    assert (await client.post("/api/auth/refresh", json={"refreshToken": refresh})).status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, error",
    [
        ({"currentPassword": "correct"}, "Current password and new password are required"),
        ({"currentPassword": "correct", "newPassword": "abc"}, "New password must be at least 6 characters long"),
    ],
)
async def test_change_password_validation(client: AsyncClient, auth_headers, payload, error):
    resp = await client.post("/api/auth/change-password", json=payload, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == error


@pytest.mark.asyncio
async def test_register_by_admin(client: AsyncClient, admin_headers):
    resp = await client.post(
        "/api/auth/register",
        json={
            "username": "carol",
            "email": "carol@repairs.test",
            "password": "carolpass",
            "full_name": "Carol Tech",
            "role": "manager",
        },
        headers=admin_headers,
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["username"] == "carol"
    assert data["role"] == "manager"
    assert data["message"] == "User created successfully"
    assert (await _login(client, "carol", "carolpass")).status_code == 200


@pytest.mark.asyncio
async def test_register_defaults_to_employee(client: AsyncClient, admin_headers):
    resp = await client.post(
        "/api/auth/register",
        json={"username": "dave", "email": "dave@repairs.test", "password": "davepass", "full_name": "Dave"},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["role"] == "employee"


@pytest.mark.asyncio
async def test_register_by_non_admin_forbidden(client: AsyncClient, auth_headers):
    resp = await client.post(
        "/api/auth/register",
        json={"username": "eve", "email": "eve@repairs.test", "password": "evepass1", "full_name": "Eve"},
        headers=auth_headers,
    )
    assert resp.status_code == 403
    assert resp.json()["error"] == "Insufficient permissions"


@pytest.mark.asyncio
async def test_register_requires_auth(client: AsyncClient, clean_db):
    resp = await client.post("/api/auth/register", json={})
    assert resp.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, error",
    [
        ({"username": "x", "email": "x@r.t", "password": "secret1"}, "Username, email, password, and full name are required"),
        ({"username": "x", "email": "x@r.t", "password": "abc", "full_name": "X"}, "Password must be at least 6 characters long"),
        (
            {"username": "x", "email": "x@r.t", "password": "secret1", "full_name": "X", "role": "owner"},
            "Invalid role. Must be admin, manager, or employee",
        ),
        (
            {"username": "alice", "email": "new@r.t", "password": "secret1", "full_name": "Dup"},
            "User with this username or email already exists",
        ),
        (
            {"username": "newname", "email": "alice@repairs.test", "password": "secret1", "full_name": "Dup"},
            "User with this username or email already exists",
        ),
    ],
)
async def test_register_validation(client: AsyncClient, test_user, admin_headers, payload, error):
    resp = await client.post("/api/auth/register", json=payload, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == error


def _raw_json(body: str) -> dict:
    # Sent as bytes: a lone surrogate escape is valid JSON but cannot be encoded by the client
    return {"content": body.encode("ascii"), "headers": {"Content-Type": "application/json"}}


@pytest.mark.asyncio
async def test_lone_surrogate_refresh_token_is_rejected_not_500(client: AsyncClient, clean_db):
    resp = await client.post("/api/auth/refresh", **_raw_json('{"refreshToken": "\\ud800"}'))
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid or expired refresh token"


@pytest.mark.asyncio
async def test_lone_surrogate_logout_still_succeeds(client: AsyncClient, clean_db):
    resp = await client.post("/api/auth/logout", **_raw_json('{"refreshToken": "\\ud800"}'))
    assert resp.status_code == 200


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        '{"username": "alice", "password": "\\ud800"}',
        '{"username": "\\ud800", "password": "correct"}',
        '{"username": "alice\\udfff", "password": "\\ud800x"}',
    ],
)
async def test_lone_surrogate_login_is_invalid_credentials(client: AsyncClient, test_user, body):
    resp = await client.post("/api/auth/login", **_raw_json(body))
    assert resp.status_code == 401
    assert resp.json()["code"] == "INVALID_CREDENTIALS"
    assert resp.json()["error"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_lone_surrogate_register_is_validation_error(client: AsyncClient, admin_headers):
    resp = await client.post(
        "/api/auth/register",
        content=b'{"username": "\\ud800", "email": "x@repairs.test", "password": "secret1", "full_name": "X"}',
        headers={**admin_headers, "Content-Type": "application/json"},
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False


@pytest.mark.asyncio
async def test_wrongly_typed_login_field_is_400_envelope(client: AsyncClient, clean_db):
    resp = await client.post("/api/auth/login", json={"username": 123, "password": "x"})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Invalid request body", "code": "VALIDATION_ERROR"}


@pytest.mark.asyncio
async def test_malformed_json_is_400_envelope(client: AsyncClient, clean_db):
    resp = await client.post(
        "/api/auth/refresh", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"content": b"not json", "headers": {"Content-Type": "application/json"}},
        {"json": ["refreshToken"]},
        {"json": {"refreshToken": 42}},
    ],
)
async def test_logout_ignores_malformed_body(client: AsyncClient, test_user, kwargs):
    refresh = (await _login(client, "alice", "correct")).json()["data"]["refreshToken"]
    resp = await client.post("/api/auth/logout", **kwargs)
    assert resp.status_code == 200
    # Session untouched
    assert (await client.post("/api/auth/refresh", json={"refreshToken": refresh})).status_code == 200


@pytest.mark.asyncio
async def test_unknown_user_login_still_runs_bcrypt(client: AsyncClient, test_user):
    with patch(
        "repairdesk.services.sessions.verify_unknown_user_async", AsyncMock(return_value=False)
    ) as dummy_check:
        resp = await _login(client, "nobody", "whatever")
    assert resp.status_code == 401
    dummy_check.assert_awaited_once_with("whatever")
