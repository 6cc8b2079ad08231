from __future__ import annotations

from pathlib import Path

from conftest import bearer, login, register


FORM = {
    "username": "frank",
    "password": "frankpass",
    "email": "frank@example.com",
    "phone": "555-0100",
    "selected_plan": "6month",
    "payment_method": "interac",
    "payment_confirmation": "REF-12345",
}


def submit(client, **overrides):
    data = dict(FORM)
    data.update(overrides)
    return client.post("/api/contact/payment", data=data)


def act(client, token, submission_id, action, notes=None):
    return client.put(
        f"/api/contact/submissions/{submission_id}",
        headers=bearer(token),
        json={"action": action, "notes": notes},
    )


def test_submission_validation_collects_errors(client):
    r = client.post("/api/contact/payment", data={"username": "x", "selected_plan": "weekly"})
    assert r.status_code == 400
    fields = {e["field"] for e in r.json()["errors"]}
    assert {"username", "password", "email", "selected_plan", "payment_method", "payment_confirmation"} <= fields


def test_submission_with_confirmation_file(client, cfg):
    r = client.post(
        "/api/contact/payment",
        data=FORM,
        files={"confirmation_file": ("receipt.png", b"\x89PNG fake", "image/png")},
    )
    assert r.status_code == 201, r.text
    assert r.json()["data"]["status"] == "pending"
    assert len(list(Path(cfg.UPLOAD_DIR, "images").iterdir())) == 1


def test_submissions_are_admin_only_and_hide_password(client, alice, admin):
    submit(client)
    assert client.get("/api/contact/submissions", headers=bearer(alice["access_token"])).status_code == 403

    r = client.get("/api/contact/submissions", headers=bearer(admin["access_token"]))
    assert r.status_code == 200
    subs = r.json()["data"]["submissions"]
    assert len(subs) == 1
    assert "password" not in subs[0] and "password_hash" not in subs[0]


def test_full_flow_provisions_account(client, admin):
    sid = submit(client).json()["data"]["submission_id"]
    token = admin["access_token"]

    r = act(client, token, sid, "create_account")
    assert r.status_code == 400
    assert r.json()["message"] == "Submission must be approved before creating account"

    r = act(client, token, sid, "approve", notes="paid")
    assert r.status_code == 200
    assert r.json()["data"]["submission"]["status"] == "approved"

    r = act(client, token, sid, "reject")
    assert r.status_code == 400
    assert r.json()["message"] == "Only pending submissions can be rejected"

    r = act(client, token, sid, "create_account")
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["submission"]["status"] == "account_created"
    user = data["user"]
    assert user["subscription"]["plan"] == "premium"
    assert user["subscription"]["status"] == "active"
    assert user["first_name"] == "frank"
    assert user["created_from_submission_id"] == sid

    # The submitted password works for the new account.
    session = login(client, "frank@example.com", "frankpass")
    assert session["user"]["username"] == "frank"

    r = act(client, token, sid, "create_account")
    assert r.status_code == 400
    assert r.json()["message"] == "User with this email or username already exists"


def test_reject_and_invalid_action(client, admin):
    sid = submit(client).json()["data"]["submission_id"]
    token = admin["access_token"]

    r = act(client, token, sid, "explode")
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid action"

    assert act(client, token, sid, "reject").json()["data"]["submission"]["status"] == "rejected"
    r = act(client, token, sid, "approve")
    assert r.status_code == 400
    assert r.json()["message"] == "Only pending submissions can be approved"

    assert act(client, token, 9999, "approve").status_code == 404


def test_create_account_conflicts_with_existing_user(client, admin):
    register(client, "frank")
    sid = submit(client).json()["data"]["submission_id"]
    act(client, admin["access_token"], sid, "approve")
    r = act(client, admin["access_token"], sid, "create_account")
    assert r.status_code == 400
    assert r.json()["message"] == "User with this email or username already exists"
