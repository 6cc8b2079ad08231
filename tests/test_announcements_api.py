from __future__ import annotations

from conftest import bearer

from undercovered.db import connect
from undercovered.util.time import iso_in


def create(client, token, **body):
    payload = {"title": "Maintenance tonight", "content": "We will be down for 5 minutes."}
    payload.update(body)
    r = client.post("/api/announcements", headers=bearer(token), json=payload)
    assert r.status_code == 201, r.text
    return r.json()["data"]["announcement"]


def publish(client, token, announcement_id, **body):
    r = client.post(f"/api/announcements/{announcement_id}/publish", headers=bearer(token), json=body)
    assert r.status_code == 200, r.text
    return r.json()["data"]["announcement"]


def listed_ids(client, token=None, **params):
    headers = bearer(token) if token else {}
    r = client.get("/api/announcements", headers=headers, params=params)
    assert r.status_code == 200
    return [a["announcement_id"] for a in r.json()["data"]["announcements"]]


def test_only_staff_can_create(client, alice, admin):
    r = client.post("/api/announcements", headers=bearer(alice["access_token"]), json={"title": "x", "content": "y"})
    assert r.status_code == 403
    body = r.json()
    assert body["message"] == "Access denied. Insufficient permissions."
    assert body["required_roles"] == ["admin", "moderator"]
    assert body["user_role"] == "user"

    r = client.post("/api/announcements", headers=bearer(admin["access_token"]), json={"type": "bogus"})
    assert r.status_code == 400
    fields = {e["field"] for e in r.json()["errors"]}
    assert {"title", "content", "type"} <= fields


def test_unpublished_is_hidden_until_published(client, alice, admin):
    a = create(client, admin["access_token"], audience={"is_global": True})
    assert a["is_published"] is False
    assert listed_ids(client, alice["access_token"]) == []

    publish(client, admin["access_token"], a["announcement_id"])
    assert listed_ids(client, alice["access_token"]) == [a["announcement_id"]]
    assert listed_ids(client) == [a["announcement_id"]]

    r = client.post(f"/api/announcements/{a['announcement_id']}/unpublish", headers=bearer(admin["access_token"]))
    assert r.status_code == 200
    assert listed_ids(client, alice["access_token"]) == []


def test_scheduled_publish_is_hidden_until_due(client, alice, admin):
    a = create(client, admin["access_token"], audience={"is_global": True})
    published = publish(client, admin["access_token"], a["announcement_id"], scheduled_for=iso_in(minutes=60))
    assert published["is_published"] is True
    assert published["is_published_now"] is False
    assert listed_ids(client, alice["access_token"]) == []


def test_audience_targeting_over_http(client, cfg, alice, bob, admin):
    by_user = create(client, admin["access_token"], audience={"target_users": [bob["user"]["user_id"]]})
    by_plan = create(client, admin["access_token"], audience={"target_plans": ["premium"]})
    for a in (by_user, by_plan):
        publish(client, admin["access_token"], a["announcement_id"])

    assert listed_ids(client, alice["access_token"]) == []
    assert listed_ids(client, bob["access_token"]) == [by_user["announcement_id"]]
    # Anonymous callers only ever see global announcements.
    assert listed_ids(client) == []

    with connect(cfg.DB_DSN) as conn:
        conn.execute("UPDATE users SET subscription_plan='premium' WHERE user_id=?", (alice["user"]["user_id"],))
    assert listed_ids(client, alice["access_token"]) == [by_plan["announcement_id"]]

    r = client.get(f"/api/announcements/{by_user['announcement_id']}", headers=bearer(alice["access_token"]))
    assert r.status_code == 403


def test_dismiss_and_undismiss(client, alice, admin):
    a = create(client, admin["access_token"], audience={"is_global": True})
    aid = a["announcement_id"]
    publish(client, admin["access_token"], aid)

    r = client.post(f"/api/announcements/{aid}/dismiss", headers=bearer(alice["access_token"]))
    assert r.status_code == 200
    assert listed_ids(client, alice["access_token"]) == []
    assert listed_ids(client, alice["access_token"], include_dismissed=True) == [aid]

    # Dismissing twice changes nothing.
    client.post(f"/api/announcements/{aid}/dismiss", headers=bearer(alice["access_token"]))
    stats = client.get(f"/api/announcements/{aid}/stats", headers=bearer(admin["access_token"])).json()["data"]["stats"]
    assert stats["dismissals"] == 1

    r = client.post(f"/api/announcements/{aid}/undismiss", headers=bearer(alice["access_token"]))
    assert r.status_code == 200
    assert listed_ids(client, alice["access_token"]) == [aid]


def test_dismiss_not_allowed(client, alice, admin):
    a = create(client, admin["access_token"], audience={"is_global": True}, display={"allow_dismiss": False})
    publish(client, admin["access_token"], a["announcement_id"])
    r = client.post(f"/api/announcements/{a['announcement_id']}/dismiss", headers=bearer(alice["access_token"]))
    assert r.status_code == 400
    assert r.json()["message"] == "This announcement cannot be dismissed"


def test_views_are_unique_and_clicks_counted(client, alice, admin):
    a = create(client, admin["access_token"], audience={"is_global": True})
    aid = a["announcement_id"]
    publish(client, admin["access_token"], aid)

    for _ in range(3):
        assert client.get(f"/api/announcements/{aid}", headers=bearer(alice["access_token"])).status_code == 200
    client.post(f"/api/announcements/{aid}/click", headers=bearer(alice["access_token"]), json={"action": "link"})

    stats = client.get(f"/api/announcements/{aid}/stats", headers=bearer(admin["access_token"])).json()["data"]["stats"]
    assert stats["views"] == 1
    assert stats["clicks"] == 1
    assert stats["engagement_rate"] == 100


def test_priority_order(client, alice, admin):
    low = create(client, admin["access_token"], audience={"is_global": True}, priority="low")
    urgent = create(client, admin["access_token"], audience={"is_global": True}, priority="urgent")
    for a in (low, urgent):
        publish(client, admin["access_token"], a["announcement_id"])
    assert listed_ids(client, alice["access_token"]) == [urgent["announcement_id"], low["announcement_id"]]


def test_update_and_delete_permissions(client, alice, admin):
    a = create(client, admin["access_token"])
    aid = a["announcement_id"]

    r = client.put(f"/api/announcements/{aid}", headers=bearer(admin["access_token"]), json={"priority": "high"})
    assert r.status_code == 200
    assert r.json()["data"]["announcement"]["priority"] == "high"

    assert client.delete(f"/api/announcements/{aid}", headers=bearer(alice["access_token"])).status_code == 403
    assert client.delete(f"/api/announcements/{aid}", headers=bearer(admin["access_token"])).status_code == 200
    assert client.get(f"/api/announcements/{aid}", headers=bearer(admin["access_token"])).status_code == 404


def test_malformed_dates_are_rejected(client, admin):
    token = admin["access_token"]
    r = client.post(
        "/api/announcements",
        headers=bearer(token),
        json={"title": "Sale", "content": "Half off", "expires_at": "31/12/2020", "scheduled_for": "soon"},
    )
    assert r.status_code == 400
    assert {e["field"] for e in r.json()["errors"]} == {"expires_at", "scheduled_for"}

    a = create(client, token, audience={"is_global": True})
    aid = a["announcement_id"]

    r = client.put(f"/api/announcements/{aid}", headers=bearer(token), json={"expires_at": "tomorrow-ish"})
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "expires_at"

    r = client.post(f"/api/announcements/{aid}/publish", headers=bearer(token), json={"scheduled_for": "next tuesday"})
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "scheduled_for"
    fetched = client.get(f"/api/announcements/{aid}", headers=bearer(token)).json()["data"]["announcement"]
    assert fetched["is_published"] is False


def test_blank_expiry_clears_and_valid_expiry_is_normalized(client, admin):
    token = admin["access_token"]
    a = create(client, token, expires_at="2030-06-01T12:00:00+02:00")
    assert a["expires_at"] == "2030-06-01T10:00:00Z"

    r = client.put(f"/api/announcements/{a['announcement_id']}", headers=bearer(token), json={"expires_at": ""})
    assert r.status_code == 200
    assert r.json()["data"]["announcement"]["expires_at"] is None
