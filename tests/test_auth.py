from __future__ import annotations

from conftest import bearer, login, register

from undercovered.db import connect
from undercovered.util.time import iso_in


def test_register_returns_tokens_and_hides_password(client):
    data = register(client, "carol")
    assert data["token_type"] == "bearer"
    assert data["access_token"] and data["refresh_token"]
    assert data["expires_in"] > 0
    assert "password_hash" not in data["user"]
    assert data["user"]["subscription"]["plan"] == "free"


def test_register_collects_all_validation_errors(client):
    r = client.post("/api/auth/register", json={"email": "nope", "password": "x", "username": "a!"})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    fields = {e["field"] for e in body["errors"]}
    assert {"email", "password", "username", "first_name", "last_name"} <= fields


def test_register_duplicate_email_and_username(client, alice):
    r = client.post(
        "/api/auth/register",
        json={
            "email": "ALICE@example.com",
            "password": "secret123",
            "username": "someoneelse",
            "first_name": "A",
            "last_name": "B",
        },
    )
    assert r.status_code == 400
    assert r.json()["message"] == "User with this email already exists"

    r = client.post(
        "/api/auth/register",
        json={
            "email": "new@example.com",
            "password": "secret123",
            "username": "alice",
            "first_name": "A",
            "last_name": "B",
        },
    )
    assert r.status_code == 400
    assert r.json()["message"] == "Username is already taken"


def test_login_wrong_password_is_generic(client, alice):
    r = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid email or password"

    r = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "wrong"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid email or password"


def test_two_logins_create_two_sessions(client, alice):
    first = login(client, "alice@example.com", "secret123")
    second = login(client, "alice@example.com", "secret123")
    assert first["session_id"] != second["session_id"]

    r = client.get("/api/auth/sessions", headers=bearer(second["access_token"]))
    assert r.status_code == 200
    sessions = r.json()["data"]["sessions"]
    # register + two logins
    assert len(sessions) == 3
    current = [s for s in sessions if s["is_current"]]
    assert len(current) == 1 and current[0]["session_id"] == second["session_id"]


def test_me_has_no_password(client, alice):
    r = client.get("/api/auth/me", headers=bearer(alice["access_token"]))
    assert r.status_code == 200
    user = r.json()["data"]["user"]
    assert user["username"] == "alice"
    assert "password" not in user and "password_hash" not in user


def test_missing_and_garbage_tokens(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["message"] == "Access denied. No token provided."

    r = client.get("/api/auth/me", headers=bearer("not-a-jwt"))
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token."


def test_refresh_token_cannot_be_used_as_access_token(client, alice):
    r = client.get("/api/auth/me", headers=bearer(alice["refresh_token"]))
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token type."


def test_refresh_rejects_access_token(client, alice):
    r = client.post("/api/auth/refresh", json={"refresh_token": alice["access_token"]})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid token type"


def test_refresh_rotates_and_old_refresh_token_is_single_use(client, alice):
    r = client.post("/api/auth/refresh", json={"refresh_token": alice["refresh_token"]})
    assert r.status_code == 200
    fresh = r.json()["data"]
    assert fresh["access_token"] != alice["access_token"]
    assert fresh["refresh_token"] != alice["refresh_token"]

    # Old access token no longer matches the session row.
    assert client.get("/api/auth/me", headers=bearer(alice["access_token"])).status_code == 401
    assert client.get("/api/auth/me", headers=bearer(fresh["access_token"])).status_code == 200

    r = client.post("/api/auth/refresh", json={"refresh_token": alice["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid or expired refresh token"


def test_refresh_rejected_after_refresh_window_while_session_active(client, cfg, alice):
    with connect(cfg.DB_DSN) as conn:
        conn.execute(
            "UPDATE sessions SET refresh_expires_at=? WHERE session_id=?",
            (iso_in(minutes=-1), alice["session_id"]),
        )
        status = conn.execute("SELECT status FROM sessions WHERE session_id=?", (alice["session_id"],)).fetchone()
    assert status["status"] == "active"

    r = client.post("/api/auth/refresh", json={"refresh_token": alice["refresh_token"]})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid or expired refresh token"


def test_logout_revokes_only_current_session(client, alice):
    other = login(client, "alice@example.com", "secret123")
    r = client.post("/api/auth/logout", headers=bearer(alice["access_token"]))
    assert r.status_code == 200

    r = client.get("/api/auth/me", headers=bearer(alice["access_token"]))
    assert r.status_code == 401
    assert r.json()["message"] == "Session expired or invalid."
    assert client.get("/api/auth/me", headers=bearer(other["access_token"])).status_code == 200

    # A revoked session cannot be refreshed either.
    r = client.post("/api/auth/refresh", json={"refresh_token": alice["refresh_token"]})
    assert r.status_code == 401


def test_logout_all(client, alice):
    other = login(client, "alice@example.com", "secret123")
    r = client.post("/api/auth/logout-all", headers=bearer(other["access_token"]))
    assert r.status_code == 200
    assert r.json()["data"]["revoked_sessions"] == 2
    assert client.get("/api/auth/me", headers=bearer(alice["access_token"])).status_code == 401
    assert client.get("/api/auth/me", headers=bearer(other["access_token"])).status_code == 401


def test_revoke_specific_session(client, alice, bob):
    other = login(client, "alice@example.com", "secret123")

    # Bob cannot revoke Alice's session.
    r = client.delete(f"/api/auth/sessions/{other['session_id']}", headers=bearer(bob["access_token"]))
    assert r.status_code == 404

    r = client.delete(f"/api/auth/sessions/{other['session_id']}", headers=bearer(alice["access_token"]))
    assert r.status_code == 200
    assert client.get("/api/auth/me", headers=bearer(other["access_token"])).status_code == 401
    assert client.get("/api/auth/me", headers=bearer(alice["access_token"])).status_code == 200


def test_expired_session_is_rejected(client, cfg, alice):
    with connect(cfg.DB_DSN) as conn:
        conn.execute(
            "UPDATE sessions SET expires_at=? WHERE session_id=?",
            (iso_in(minutes=-1), alice["session_id"]),
        )
    r = client.get("/api/auth/me", headers=bearer(alice["access_token"]))
    assert r.status_code == 401
    assert r.json()["message"] == "Session expired or invalid."


def test_deactivated_user_is_rejected(client, cfg, alice):
    with connect(cfg.DB_DSN) as conn:
        conn.execute("UPDATE users SET is_active=0 WHERE user_id=?", (alice["user"]["user_id"],))
    r = client.get("/api/auth/me", headers=bearer(alice["access_token"]))
    assert r.status_code == 401
    assert r.json()["message"] == "User not found or inactive."

    r = client.post("/api/auth/login", json={"email": "alice@example.com", "password": "secret123"})
    assert r.status_code == 401


def test_check_is_optional(client, alice):
    r = client.get("/api/auth/check")
    assert r.status_code == 200
    assert r.json()["data"]["is_authenticated"] is False

    r = client.get("/api/auth/check", headers=bearer(alice["access_token"]))
    assert r.json()["data"]["is_authenticated"] is True
    assert r.json()["data"]["user"]["username"] == "alice"


def test_register_in_other_case_logs_in(client):
    register(client, "dave")
    data = login(client, "DAVE@Example.com", "secret123")
    assert data["user"]["username"] == "dave"
