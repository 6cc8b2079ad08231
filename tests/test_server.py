from __future__ import annotations

import dataclasses

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, bearer

from undercovered.api.server import create_app
from undercovered.auth.deps import AuthContext, require_premium
from undercovered.db import drop_memory_database
from undercovered.errors import Forbidden


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"success": True, "status": "ok", "environment": "test"}


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json() == {"success": False, "message": "Route not found"}


def test_unexpected_error_detail_depends_on_environment(cfg):
    def build(env):
        app = create_app(dataclasses.replace(cfg, ENVIRONMENT=env))

        @app.get("/boom")
        def boom():
            raise RuntimeError("kaboom")

        return app

    with TestClient(build("test"), raise_server_exceptions=False) as c:
        r = c.get("/boom")
        assert r.status_code == 500
        assert r.json() == {"success": False, "message": "Internal server error", "error": "kaboom"}

    with TestClient(build("production"), raise_server_exceptions=False) as c:
        r = c.get("/boom")
        assert r.status_code == 500
        assert "error" not in r.json()


def test_require_premium(cfg, alice, admin, client):
    app = create_app(cfg)

    @app.get("/premium-only")
    def premium_only(ctx: AuthContext = Depends(require_premium)):
        return {"ok": ctx.user_id}

    with TestClient(app) as c:
        r = c.get("/premium-only", headers=bearer(alice["access_token"]))
        assert r.status_code == 403
        body = r.json()
        assert body["message"] == "Premium subscription required."
        assert body["current_plan"] == "free"
        assert body["subscription_status"] == "inactive"

        # The bootstrap admin is on an active enterprise plan.
        assert c.get("/premium-only", headers=bearer(admin["access_token"])).status_code == 200


def test_in_memory_store(cfg):
    mem_cfg = dataclasses.replace(cfg, DB_DSN="memory://undercovered-test")
    try:
        with TestClient(create_app(mem_cfg)) as c:
            r = c.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
            assert r.status_code == 200
            token = r.json()["data"]["access_token"]
            assert c.get("/api/auth/me", headers=bearer(token)).json()["data"]["user"]["role"] == "admin"
    finally:
        drop_memory_database(mem_cfg.DB_DSN)


def test_forbidden_payload_shape():
    err = Forbidden("nope", extra={"plan": "free"})
    assert err.status_code == 403
    assert err.to_payload() == {"success": False, "message": "nope", "plan": "free"}


@pytest.mark.parametrize("path", ["/api/user/profile", "/api/media/stats/overview", "/api/payment/subscription"])
def test_protected_routes_need_token(client, path):
    r = client.get(path)
    assert r.status_code == 401
    assert r.headers.get("www-authenticate") == "Bearer"
