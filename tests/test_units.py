from __future__ import annotations

import io
from datetime import datetime, timedelta, timezone

import pytest

from undercovered.auth.deps import require_ownership
from undercovered.auth.sessions import device_info_from_request, is_session_expired, seconds_until_expiry
from undercovered.config import Config
from undercovered.db import connect, init_db
from undercovered.jobs.maintenance import run_maintenance_once
from undercovered.media.crud import parse_tags
from undercovered.media.storage import FileTooLarge, category_for_mimetype, human_size, save_upload
from undercovered.plans import catalogue_with_limits, default_plan_limits, limits_for_plan, normalize_plan, within_limit
from undercovered.util.time import iso_in, to_iso


def test_within_limit_boundaries():
    assert within_limit(9, 10)
    assert not within_limit(10, 10)
    assert not within_limit(11, 10)
    assert within_limit(10**9, -1)


def test_plan_aliases_and_fallback():
    assert normalize_plan("monthly") == "basic"
    assert normalize_plan("6month") == "premium"
    assert normalize_plan("Enterprise") == "enterprise"
    assert normalize_plan("platinum") == "free"
    assert normalize_plan(None) == "free"
    assert limits_for_plan(default_plan_limits(), "6month").media_uploads == 1000


def test_catalogue_carries_limits():
    ids = [p["id"] for p in catalogue_with_limits(default_plan_limits())]
    assert ids == ["basic", "premium", "enterprise"]


@pytest.mark.parametrize(
    "n,expected",
    [(0, "0 Bytes"), (512, "512 Bytes"), (1024, "1 KB"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5 MB"), (1024**3, "1 GB")],
)
def test_human_size(n, expected):
    assert human_size(n) == expected


def test_category_for_mimetype():
    assert category_for_mimetype("image/png") == "image"
    assert category_for_mimetype("video/mp4") == "video"
    assert category_for_mimetype("audio/mpeg") == "audio"
    assert category_for_mimetype("application/pdf") == "document"
    assert category_for_mimetype("text/plain") == "other"


def test_save_upload_enforces_size(tmp_path):
    stored = save_upload(
        io.BytesIO(b"x" * 10),
        upload_dir=str(tmp_path),
        public_base_url="/uploads",
        original_name="a.txt",
        mimetype="text/plain",
        max_size=10,
    )
    assert stored.size == 10
    assert stored.url.startswith("/uploads/documents/")

    with pytest.raises(FileTooLarge):
        save_upload(
            io.BytesIO(b"x" * 11),
            upload_dir=str(tmp_path),
            public_base_url="/uploads",
            original_name="b.txt",
            mimetype="text/plain",
            max_size=10,
        )
    assert [p.name for p in (tmp_path / "documents").iterdir()] == [stored.filename]


def test_parse_tags_forms():
    assert parse_tags('["a", "b", "a"]') == ["a", "b"]
    assert parse_tags(" a, b ,,c") == ["a", "b", "c"]
    assert parse_tags(None) == []


def test_device_info():
    info = device_info_from_request("Mozilla/5.0 (iPhone; Mac OS X) Mobile Safari", "10.0.0.1")
    assert info["browser"] == "Safari"
    assert info["os"] == "macOS"
    assert info["device"] == "Mobile"


def test_session_expiry_helpers():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    s = {"expires_at": to_iso(now + timedelta(seconds=90))}
    assert not is_session_expired(s, now)
    assert seconds_until_expiry(s, now) == 90
    assert is_session_expired(s, now + timedelta(seconds=90))
    assert seconds_until_expiry(s, now + timedelta(hours=1)) == 0


def test_maintenance_expires_and_purges(tmp_path):
    cfg = Config(DB_DSN=str(tmp_path / "m.sqlite"), SESSION_PURGE_AFTER_DAYS=30)
    init_db(cfg.DB_DSN)
    with connect(cfg.DB_DSN) as conn:
        conn.execute(
            """
            INSERT INTO users (username, email, password_hash, joined_at, created_at, updated_at)
            VALUES ('u1', 'u1@example.com', 'x', ?, ?, ?)
            """,
            (iso_in(), iso_in(), iso_in()),
        )
        rows = [
            # still valid
            ("t1", "r1", "active", iso_in(minutes=10), iso_in(days=1), iso_in()),
            # access window passed
            ("t2", "r2", "active", iso_in(minutes=-1), iso_in(days=1), iso_in()),
            # revoked long ago
            ("t3", "r3", "revoked", iso_in(days=-40), iso_in(days=-35), iso_in(days=-40)),
        ]
        for token, refresh, status, exp, rexp, created in rows:
            conn.execute(
                """
                INSERT INTO sessions (user_id, token, refresh_token, status, login_at, last_activity_at,
                                      expires_at, refresh_expires_at, created_at, updated_at)
                VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (token, refresh, status, created, created, exp, rexp, created, created),
            )

    assert run_maintenance_once(cfg) == {"expired": 1, "purged": 1}
    with connect(cfg.DB_DSN) as conn:
        statuses = {r["token"]: r["status"] for r in conn.execute("SELECT token, status FROM sessions").fetchall()}
    assert statuses == {"t1": "active", "t2": "expired"}


def test_ownership_gate_only_knows_registered_resources():
    require_ownership("media")
    with pytest.raises(ValueError):
        require_ownership("announcement")
