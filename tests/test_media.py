from __future__ import annotations

import dataclasses
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import bearer, register

from undercovered.api.server import create_app
from undercovered.db import connect
from undercovered.media import crud as media_crud
from undercovered.plans import PlanLimits


PNG = b"\x89PNG\r\n\x1a\n" + b"0" * 64


def upload(
    client, token, *, title="Holiday", visibility="public", content=PNG, mimetype="image/png", tags=None, path="/api/media/upload"
):
    data = {"title": title, "visibility": visibility}
    if tags is not None:
        data["tags"] = tags
    return client.post(
        path,
        headers=bearer(token),
        files={"media": ("photo.png", content, mimetype)},
        data=data,
    )


def set_uploaded(cfg, user_id, n, plan=None):
    with connect(cfg.DB_DSN) as conn:
        conn.execute("UPDATE users SET media_uploaded=? WHERE user_id=?", (n, user_id))
        if plan is not None:
            conn.execute("UPDATE users SET subscription_plan=? WHERE user_id=?", (plan, user_id))


def test_upload_creates_media_and_counts(client, cfg, alice):
    r = upload(client, alice["access_token"], tags='["beach", "sun"]')
    assert r.status_code == 201, r.text
    media = r.json()["data"]["media"]
    assert media["category"] == "image"
    assert media["size"] == len(PNG)
    assert media["tags"] == ["beach", "sun"]
    assert media["url"].startswith("/uploads/images/")
    assert Path(cfg.UPLOAD_DIR, "images", media["filename"]).exists()

    me = client.get("/api/auth/me", headers=bearer(alice["access_token"])).json()["data"]["user"]
    assert me["stats"]["media_uploaded"] == 1


def test_collection_post_uploads_too(client, alice):
    r = upload(client, alice["access_token"], path="/api/media")
    assert r.status_code == 201, r.text
    assert r.json()["data"]["media"]["title"] == "Holiday"


def test_upload_requires_title_and_allowed_type(client, alice):
    r = upload(client, alice["access_token"], title="")
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "title"

    r = upload(client, alice["access_token"], mimetype="application/x-msdownload")
    assert r.status_code == 400
    assert r.json()["message"].startswith("File type not allowed")


def test_upload_requires_auth(client):
    r = client.post("/api/media/upload", files={"media": ("a.png", PNG, "image/png")}, data={"title": "x"})
    assert r.status_code == 401


def test_upload_limit_rejects_at_exact_ceiling(client, cfg, alice):
    uid = alice["user"]["user_id"]
    set_uploaded(cfg, uid, 10)
    r = upload(client, alice["access_token"])
    assert r.status_code == 403
    body = r.json()
    assert body["message"] == "Upload limit reached. Your free plan allows 10 uploads."
    assert body["current_usage"] == 10
    assert body["limit"] == 10
    assert body["plan"] == "free"


def test_upload_limit_allows_one_below_ceiling(client, cfg, alice):
    set_uploaded(cfg, alice["user"]["user_id"], 9)
    assert upload(client, alice["access_token"]).status_code == 201
    assert upload(client, alice["access_token"]).status_code == 403


def test_unlimited_plan_is_never_blocked(client, cfg, alice):
    set_uploaded(cfg, alice["user"]["user_id"], 100000, plan="enterprise")
    assert upload(client, alice["access_token"]).status_code == 201


@pytest.fixture
def tiny_client(cfg):
    limits = dict(cfg.PLAN_LIMITS)
    limits["free"] = PlanLimits(media_uploads=10, media_size=16, storage=1024, api_calls=100)
    small = dataclasses.replace(cfg, PLAN_LIMITS=limits)
    with TestClient(create_app(small)) as c:
        yield c


def test_per_plan_file_size_limit(tiny_client, cfg):
    user = register(tiny_client, "erin")
    r = upload(tiny_client, user["access_token"])
    assert r.status_code == 400
    body = r.json()
    assert body["message"].startswith("File too large")
    assert body["max_size"] == 16
    assert body["user_plan"] == "free"
    # Nothing was left behind.
    images = Path(cfg.UPLOAD_DIR, "images")
    assert not images.exists() or list(images.iterdir()) == []


def test_private_media_visibility(client, alice, bob, admin):
    r = upload(client, alice["access_token"], visibility="private")
    media_id = r.json()["data"]["media"]["media_id"]

    r = client.get(f"/api/media/{media_id}", headers=bearer(bob["access_token"]))
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied to private media"
    assert client.get(f"/api/media/{media_id}").status_code == 403

    assert client.get(f"/api/media/{media_id}", headers=bearer(alice["access_token"])).status_code == 200
    assert client.get(f"/api/media/{media_id}", headers=bearer(admin["access_token"])).status_code == 200


def test_listing_respects_visibility(client, alice, bob):
    upload(client, alice["access_token"], title="pub", visibility="public")
    upload(client, alice["access_token"], title="hidden", visibility="private")
    upload(client, alice["access_token"], title="link", visibility="unlisted")

    anon = client.get("/api/media").json()["data"]
    assert [m["title"] for m in anon["media"]] == ["pub"]
    assert anon["pagination"]["total_items"] == 1

    as_bob = {m["title"] for m in client.get("/api/media", headers=bearer(bob["access_token"])).json()["data"]["media"]}
    assert as_bob == {"pub", "link"}

    as_alice = {m["title"] for m in client.get("/api/media", headers=bearer(alice["access_token"])).json()["data"]["media"]}
    assert as_alice == {"pub", "hidden", "link"}


def test_view_counts_only_non_owner_views(client, alice, bob):
    media_id = upload(client, alice["access_token"]).json()["data"]["media"]["media_id"]

    r = client.get(f"/api/media/{media_id}", headers=bearer(alice["access_token"]))
    assert r.json()["data"]["media"]["stats"]["views"] == 0

    r = client.get(f"/api/media/{media_id}", headers=bearer(bob["access_token"]))
    assert r.json()["data"]["media"]["stats"]["views"] == 1


def test_update_and_delete_require_ownership(client, cfg, alice, bob, admin):
    media = upload(client, alice["access_token"]).json()["data"]["media"]
    media_id = media["media_id"]

    r = client.put(f"/api/media/{media_id}", headers=bearer(bob["access_token"]), json={"title": "mine now"})
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied. You do not own this resource."

    r = client.put(f"/api/media/{media_id}", headers=bearer(alice["access_token"]), json={"title": "Renamed"})
    assert r.status_code == 200
    assert r.json()["data"]["media"]["title"] == "Renamed"

    assert client.delete(f"/api/media/{media_id}", headers=bearer(bob["access_token"])).status_code == 403
    assert client.delete("/api/media/99999", headers=bearer(alice["access_token"])).status_code == 404

    r = client.delete(f"/api/media/{media_id}", headers=bearer(admin["access_token"]))
    assert r.status_code == 200
    assert not Path(cfg.UPLOAD_DIR, "images", media["filename"]).exists()
    me = client.get("/api/auth/me", headers=bearer(alice["access_token"])).json()["data"]["user"]
    assert me["stats"]["media_uploaded"] == 0


def test_like_toggle_and_comment(client, alice, bob):
    media_id = upload(client, alice["access_token"]).json()["data"]["media"]["media_id"]

    r = client.post(f"/api/media/{media_id}/like", headers=bearer(bob["access_token"]))
    assert r.json()["data"] == {"liked": True, "like_count": 1}
    r = client.post(f"/api/media/{media_id}/like", headers=bearer(bob["access_token"]))
    assert r.json()["data"] == {"liked": False, "like_count": 0}

    r = client.post(f"/api/media/{media_id}/comment", headers=bearer(bob["access_token"]), json={"text": "nice"})
    assert r.status_code == 201
    assert r.json()["data"]["comment_count"] == 1

    r = client.post(f"/api/media/{media_id}/comment", headers=bearer(bob["access_token"]), json={"text": ""})
    assert r.status_code == 400

    r = client.get(f"/api/media/{media_id}", headers=bearer(alice["access_token"]))
    assert [c["text"] for c in r.json()["data"]["media"]["comments"]] == ["nice"]


def test_upload_multiple(client, alice):
    r = client.post(
        "/api/media/upload-multiple",
        headers=bearer(alice["access_token"]),
        files=[
            ("media", ("one.png", PNG, "image/png")),
            ("media", ("two.pdf", b"%PDF-1.4 test", "application/pdf")),
        ],
        data={"title_0": "First", "visibility": "unlisted"},
    )
    assert r.status_code == 201, r.text
    created = r.json()["data"]["media"]
    assert [m["title"] for m in created] == ["First", "two.pdf"]
    assert [m["category"] for m in created] == ["image", "document"]
    assert all(m["visibility"] == "unlisted" for m in created)


def test_stats_overview_and_user_media(client, alice, bob):
    upload(client, alice["access_token"], visibility="public")
    upload(client, alice["access_token"], visibility="private")

    r = client.get("/api/media/stats/overview", headers=bearer(alice["access_token"]))
    assert r.status_code == 200

    uid = alice["user"]["user_id"]
    r = client.get(f"/api/media/user/{uid}", headers=bearer(bob["access_token"]))
    assert r.json()["data"]["pagination"]["total_items"] == 1
    r = client.get(f"/api/media/user/{uid}", headers=bearer(alice["access_token"]))
    assert r.json()["data"]["pagination"]["total_items"] == 2


def test_changing_mimetype_rederives_category(client, cfg, alice):
    media = upload(client, alice["access_token"]).json()["data"]["media"]
    assert media["category"] == "image"

    with connect(cfg.DB_DSN) as conn:
        updated = media_crud.update_media(conn, media["media_id"], mimetype="video/mp4")
    assert updated["mimetype"] == "video/mp4"
    assert updated["category"] == "video"

    with connect(cfg.DB_DSN) as conn:
        updated = media_crud.update_media(conn, media["media_id"], mimetype="application/pdf")
    assert updated["category"] == "document"
