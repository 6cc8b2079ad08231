"""Server-side login sessions.

A session binds one access/refresh token pair to a user. It is usable only while
`status == 'active'` and `now < expires_at`; the refresh token additionally needs
`now < refresh_expires_at`. Refreshing rotates both tokens in place on the same row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from undercovered.db import dump_json, insert_returning_id, load_json
from undercovered.util.time import iso_in, parse_iso, utcnow, utcnow_iso

from .security import TokenPair


def _debug(msg: str) -> None:
    print(f"[sessions] {msg}")


LOGOUT_REASONS = (
    "user_logout",
    "user_logout_all",
    "user_revoke",
    "admin_revoke",
    "security_revoke",
    "expired",
)


def device_info_from_request(user_agent: Optional[str], ip: Optional[str]) -> Dict[str, Any]:
    ua = user_agent or ""
    if "Chrome" in ua:
        browser = "Chrome"
    elif "Firefox" in ua:
        browser = "Firefox"
    elif "Safari" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    if "Windows" in ua:
        os_name = "Windows"
    elif "Mac" in ua:
        os_name = "macOS"
    elif "Linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    return {
        "user_agent": ua,
        "ip": ip,
        "browser": browser,
        "os": os_name,
        "device": "Mobile" if "Mobile" in ua else "Desktop",
    }


def create_session(
    conn: Any,
    *,
    user_id: int,
    tokens: TokenPair,
    access_expires_minutes: int,
    refresh_expires_minutes: int,
    device_info: Optional[Dict[str, Any]] = None,
    login_method: str = "email_password",
) -> Dict[str, Any]:
    now = utcnow()
    now_iso = utcnow_iso()
    session_id = insert_returning_id(
        conn,
        """
        INSERT INTO sessions (
            user_id, token, refresh_token, device_info_json, login_method, status,
            login_at, last_activity_at, expires_at, refresh_expires_at, created_at, updated_at
        )
        VALUES (?,?,?,?,?,'active',?,?,?,?,?,?)
        """,
        (
            int(user_id),
            tokens.access_token,
            tokens.refresh_token,
            dump_json(device_info or {}),
            login_method,
            now_iso,
            now_iso,
            iso_in(minutes=access_expires_minutes, now=now),
            iso_in(minutes=refresh_expires_minutes, now=now),
            now_iso,
            now_iso,
        ),
        "session_id",
    )
    row = get_session_by_id(conn, session_id)
    assert row is not None
    return dict(row)


def get_session_by_id(conn: Any, session_id: int) -> Optional[Any]:
    return conn.execute("SELECT * FROM sessions WHERE session_id=?", (int(session_id),)).fetchone()


def find_active_session(conn: Any, *, token: str, user_id: int) -> Optional[Any]:
    """Session matching an access token that is still usable right now."""
    return conn.execute(
        """
        SELECT * FROM sessions
        WHERE token=? AND user_id=? AND status='active' AND expires_at > ?
        """,
        (token, int(user_id), utcnow_iso()),
    ).fetchone()


def find_refreshable_session(conn: Any, *, refresh_token: str, user_id: int) -> Optional[Any]:
    return conn.execute(
        """
        SELECT * FROM sessions
        WHERE refresh_token=? AND user_id=? AND status='active' AND refresh_expires_at > ?
        """,
        (refresh_token, int(user_id), utcnow_iso()),
    ).fetchone()


def touch_session(conn: Any, session_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE sessions SET last_activity_at=?, updated_at=? WHERE session_id=?",
        (now, now, int(session_id)),
    )


def rotate_session_tokens(
    conn: Any,
    *,
    session_id: int,
    presented_refresh_token: str,
    tokens: TokenPair,
    access_expires_minutes: int,
    refresh_expires_minutes: int,
) -> bool:
    """Swap in a new token pair if the presented refresh token is still current.

    The WHERE clause makes the refresh token single-use: when two requests race with
    the same refresh token only the first update matches a row.
    """
    now = utcnow()
    now_iso = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE sessions
        SET token=?,
            refresh_token=?,
            last_activity_at=?,
            expires_at=?,
            refresh_expires_at=?,
            status='active',
            updated_at=?
        WHERE session_id=? AND refresh_token=? AND status='active'
        """,
        (
            tokens.access_token,
            tokens.refresh_token,
            now_iso,
            iso_in(minutes=access_expires_minutes, now=now),
            iso_in(minutes=refresh_expires_minutes, now=now),
            now_iso,
            int(session_id),
            presented_refresh_token,
        ),
    )
    return int(cur.rowcount or 0) == 1


def revoke_session(conn: Any, session_id: int, reason: str = "user_logout") -> bool:
    now = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE sessions
        SET status='revoked', logout_at=?, logout_reason=?, updated_at=?
        WHERE session_id=? AND status='active'
        """,
        (now, reason, now, int(session_id)),
    )
    return int(cur.rowcount or 0) == 1


def revoke_all_user_sessions(conn: Any, user_id: int, reason: str = "security_revoke") -> int:
    now = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE sessions
        SET status='revoked', logout_at=?, logout_reason=?, updated_at=?
        WHERE user_id=? AND status='active'
        """,
        (now, reason, now, int(user_id)),
    )
    n = int(cur.rowcount or 0)
    if n:
        _debug(f"Revoked {n} session(s) for user_id={user_id} reason={reason}")
    return n


def list_active_sessions(conn: Any, user_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT * FROM sessions
        WHERE user_id=? AND status='active' AND expires_at > ?
        ORDER BY last_activity_at DESC, session_id DESC
        """,
        (int(user_id), utcnow_iso()),
    ).fetchall()
    return [dict(r) for r in rows]


def expire_stale_sessions(conn: Any) -> int:
    """Mark active sessions whose access or refresh window has passed as expired."""
    now = utcnow_iso()
    cur = conn.execute(
        """
        UPDATE sessions
        SET status='expired', logout_at=?, logout_reason='expired', updated_at=?
        WHERE status='active' AND (expires_at <= ? OR refresh_expires_at <= ?)
        """,
        (now, now, now, now),
    )
    return int(cur.rowcount or 0)


def purge_inactive_sessions(conn: Any, *, older_than_days: int) -> int:
    """Delete revoked/expired sessions created more than `older_than_days` ago."""
    cutoff = iso_in(days=-abs(int(older_than_days)))
    cur = conn.execute(
        "DELETE FROM sessions WHERE status<>'active' AND created_at < ?",
        (cutoff,),
    )
    return int(cur.rowcount or 0)


# -----------------------------
# Derived values
# -----------------------------


def is_session_expired(session: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    exp = parse_iso(session.get("expires_at"))
    return exp is None or (now or utcnow()) >= exp


def seconds_until_expiry(session: Dict[str, Any], now: Optional[datetime] = None) -> int:
    exp = parse_iso(session.get("expires_at"))
    current = now or utcnow()
    if exp is None or current >= exp:
        return 0
    return int(round((exp - current).total_seconds()))


def session_duration_seconds(session: Dict[str, Any], now: Optional[datetime] = None) -> int:
    start = parse_iso(session.get("login_at"))
    if start is None:
        return 0
    end = parse_iso(session.get("logout_at")) or now or utcnow()
    return max(0, int(round((end - start).total_seconds())))


def public_session(session: Any | Dict[str, Any], *, current_session_id: Optional[int] = None) -> Dict[str, Any]:
    d = dict(session)
    out = {
        "session_id": int(d["session_id"]),
        "device_info": load_json(d.get("device_info_json"), {}),
        "login_method": d.get("login_method"),
        "status": d.get("status"),
        "login_at": d.get("login_at"),
        "last_activity_at": d.get("last_activity_at"),
        "expires_at": d.get("expires_at"),
        "duration_seconds": session_duration_seconds(d),
        "seconds_until_expiry": seconds_until_expiry(d),
    }
    if current_session_id is not None:
        out["is_current"] = int(d["session_id"]) == int(current_session_id)
    return out
