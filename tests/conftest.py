from __future__ import annotations

from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

from undercovered.api.server import create_app
from undercovered.config import Config


ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "test.sqlite"),
        ENVIRONMENT="test",
        AUTH_JWT_SECRET="test-secret",
        AUTH_BOOTSTRAP_ADMIN_USERNAME="admin",
        AUTH_BOOTSTRAP_ADMIN_EMAIL=ADMIN_EMAIL,
        AUTH_BOOTSTRAP_ADMIN_PASSWORD=ADMIN_PASSWORD,
        CORS_ALLOW_ORIGINS="",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        STRIPE_SECRET_KEY=None,
        STRIPE_WEBHOOK_SECRET=None,
    )


@pytest.fixture
def client(cfg: Config):
    with TestClient(create_app(cfg)) as c:
        yield c


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def register(client: TestClient, username: str, password: str = "secret123") -> Dict[str, Any]:
    r = client.post(
        "/api/auth/register",
        json={
            "email": f"{username}@example.com",
            "password": password,
            "username": username,
            "first_name": username.capitalize(),
            "last_name": "Tester",
        },
    )
    assert r.status_code == 201, r.text
    return r.json()["data"]


def login(client: TestClient, email: str, password: str) -> Dict[str, Any]:
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return r.json()["data"]


@pytest.fixture
def admin(client: TestClient) -> Dict[str, Any]:
    return login(client, ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def alice(client: TestClient) -> Dict[str, Any]:
    return register(client, "alice")


@pytest.fixture
def bob(client: TestClient) -> Dict[str, Any]:
    return register(client, "bob")
