from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from undercovered.auth.crud import ROLES, get_user_by_id, get_user_by_username, public_user, update_user_subscription
from undercovered.auth.sessions import revoke_all_user_sessions
from undercovered.errors import Forbidden, NotFound, ValidationError, raise_if_errors
from undercovered.media.storage import human_size
from undercovered.plans import PLANS, SUBSCRIPTION_STATUSES
from undercovered.util.normalization import check_length, clean_text, field_error, is_valid_username, normalize_username
from undercovered.util.time import utcnow_iso


def _debug(msg: str) -> None:
    print(f"[users] {msg}")


THEMES = ("light", "dark", "auto")


def update_profile(
    conn: Any,
    user_id: int,
    *,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    username: Optional[str] = None,
    phone: Optional[str] = None,
    avatar: Optional[str] = None,
) -> Dict[str, Any]:
    errors: List[Dict[str, Any]] = []
    if first_name is not None:
        check_length(errors, "first_name", clean_text(first_name), min_len=1, max_len=50, message="First name must be 1-50 characters")
    if last_name is not None:
        check_length(errors, "last_name", clean_text(last_name), min_len=1, max_len=50, message="Last name must be 1-50 characters")
    if username is not None and not is_valid_username(username):
        errors.append(field_error("username", "Username must be 3-30 characters and alphanumeric"))
    raise_if_errors(errors)

    current = get_user_by_id(conn, user_id)
    if current is None:
        raise NotFound("User not found")

    fields: List[Tuple[str, Any]] = []
    if username is not None:
        u = normalize_username(username)
        if u != current["username"]:
            other = get_user_by_username(conn, u)
            if other is not None and int(other["user_id"]) != int(user_id):
                raise ValidationError("Username is already taken", errors=[field_error("username", "Username is already taken")])
            fields.append(("username", u))
    if first_name is not None:
        fields.append(("first_name", clean_text(first_name)))
    if last_name is not None:
        fields.append(("last_name", clean_text(last_name)))
    if phone is not None:
        fields.append(("phone", phone.strip() or None))
    if avatar is not None:
        fields.append(("avatar", avatar.strip() or None))

    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", [v for _, v in fields] + [int(user_id)])

    return public_user(get_user_by_id(conn, user_id))


def update_preferences(
    conn: Any,
    user_id: int,
    *,
    theme: Optional[str] = None,
    notifications: Optional[Dict[str, Any]] = None,
    privacy: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    if theme is not None and theme not in THEMES:
        raise ValidationError("Validation failed", errors=[field_error("theme", "Theme must be light, dark, or auto")])

    fields: List[Tuple[str, Any]] = []
    if theme:
        fields.append(("pref_theme", theme))
    n = notifications or {}
    for key, col in (("email", "pref_notify_email"), ("push", "pref_notify_push"), ("announcements", "pref_notify_announcements")):
        if n.get(key) is not None:
            fields.append((col, 1 if n[key] else 0))
    p = privacy or {}
    for key, col in (("profile_visible", "pref_profile_visible"), ("media_visible", "pref_media_visible")):
        if p.get(key) is not None:
            fields.append((col, 1 if p[key] else 0))

    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", [v for _, v in fields] + [int(user_id)])

    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("User not found")
    return public_user(row)["preferences"]


# -----------------------------
# Stats / dashboard
# -----------------------------


def media_totals(conn: Any, user_id: int) -> Dict[str, Any]:
    r = conn.execute(
        """
        SELECT COUNT(*) AS total_media,
               COALESCE(SUM(views), 0) AS total_views,
               COALESCE(SUM(likes), 0) AS total_likes,
               COALESCE(SUM(size), 0) AS total_size
        FROM media
        WHERE owner_id=? AND is_active=1
        """,
        (int(user_id),),
    ).fetchone()
    out = {k: int(r[k] or 0) for k in ("total_media", "total_views", "total_likes", "total_size")}
    out["human_size"] = human_size(out["total_size"])
    return out


def payment_totals(conn: Any, user_id: int) -> Dict[str, int]:
    r = conn.execute(
        """
        SELECT COUNT(*) AS total_payments,
               COALESCE(SUM(CASE WHEN status='succeeded' THEN amount ELSE 0 END), 0) AS total_amount,
               COALESCE(SUM(CASE WHEN status='succeeded' THEN 1 ELSE 0 END), 0) AS successful_payments
        FROM payments
        WHERE user_id=?
        """,
        (int(user_id),),
    ).fetchone()
    return {k: int(r[k] or 0) for k in ("total_payments", "total_amount", "successful_payments")}


def user_stats(conn: Any, user_id: int) -> Dict[str, Any]:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("User not found")
    u = public_user(row)
    return {
        "account": u["stats"],
        "media": media_totals(conn, user_id),
        "payments": payment_totals(conn, user_id),
    }


def dashboard(conn: Any, user_id: int) -> Dict[str, Any]:
    row = get_user_by_id(conn, user_id)
    if row is None:
        raise NotFound("User not found")
    u = public_user(row)
    recent = conn.execute(
        """
        SELECT media_id, title, category, views, likes, created_at
        FROM media
        WHERE owner_id=? AND is_active=1
        ORDER BY created_at DESC, media_id DESC
        LIMIT 5
        """,
        (int(user_id),),
    ).fetchall()
    return {
        "user": u,
        "stats": {"media": media_totals(conn, user_id), "payments": payment_totals(conn, user_id)},
        "recent_media": [
            {
                "media_id": int(r["media_id"]),
                "title": r["title"],
                "category": r["category"],
                "views": int(r["views"] or 0),
                "likes": int(r["likes"] or 0),
                "created_at": r["created_at"],
            }
            for r in recent
        ],
        "subscription": u["subscription"],
    }


# -----------------------------
# Public directory
# -----------------------------

ACTIVITY_TYPES = ("media_upload", "payment")


def _directory_entry(row: Any) -> Dict[str, Any]:
    return {
        "user_id": int(row["user_id"]),
        "username": row["username"],
        "first_name": row["first_name"] or "",
        "last_name": row["last_name"] or "",
        "avatar": row["avatar"],
        "media_uploaded": int(row["media_uploaded"] or 0),
        "joined_at": row["joined_at"],
    }


def search_users(conn: Any, query: Optional[str], *, page: int = 1, limit: int = 20) -> Tuple[List[Dict[str, Any]], int]:
    """Active users with a visible profile whose username or name contains `query`."""
    q = clean_text(query).lower()
    if len(q) < 2:
        raise ValidationError("Search query must be at least 2 characters")

    like = f"%{q}%"
    where = (
        "is_active=1 AND pref_profile_visible=1 "
        "AND (LOWER(username) LIKE ? OR LOWER(first_name) LIKE ? OR LOWER(last_name) LIKE ?)"
    )
    params: List[Any] = [like, like, like]
    total = conn.execute(f"SELECT COUNT(*) AS n FROM users WHERE {where}", params).fetchone()["n"]
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    rows = conn.execute(
        f"SELECT * FROM users WHERE {where} ORDER BY media_uploaded DESC, user_id ASC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return [_directory_entry(r) for r in rows], int(total)


def public_profile(conn: Any, user_id: int, *, viewer_id: Optional[int] = None, viewer_is_admin: bool = False) -> Dict[str, Any]:
    """Profile card shown to other users.

    A hidden profile is 403 for everyone but its owner and admins. The public media
    count is only disclosed when the owner keeps media visible.
    """
    row = get_user_by_id(conn, user_id)
    if row is None or not row["is_active"]:
        raise NotFound("User not found")
    is_self = viewer_id is not None and int(viewer_id) == int(user_id)
    if not row["pref_profile_visible"] and not (is_self or viewer_is_admin):
        raise Forbidden("User profile is private")

    out = _directory_entry(row)
    out["media_visible"] = bool(row["pref_media_visible"])
    out["media_count"] = 0
    if row["pref_media_visible"] or is_self or viewer_is_admin:
        out["media_count"] = int(
            conn.execute(
                "SELECT COUNT(*) AS n FROM media WHERE owner_id=? AND visibility='public' AND is_active=1",
                (int(user_id),),
            ).fetchone()["n"]
        )
    return out


def activity_log(conn: Any, user_id: int, *, type: Optional[str] = None) -> List[Dict[str, Any]]:
    """Recent uploads (last 10) and payments (last 5), newest first."""
    if type is not None and type not in ACTIVITY_TYPES:
        raise ValidationError("Validation failed", errors=[field_error("type", "Type must be media_upload or payment")])

    activities: List[Dict[str, Any]] = []
    if type in (None, "media_upload"):
        for r in conn.execute(
            """
            SELECT media_id, title, category, created_at FROM media
            WHERE owner_id=? AND is_active=1
            ORDER BY created_at DESC, media_id DESC LIMIT 10
            """,
            (int(user_id),),
        ).fetchall():
            activities.append(
                {
                    "type": "media_upload",
                    "description": f"Uploaded {r['category']}: {r['title']}",
                    "timestamp": r["created_at"],
                    "data": {"media_id": int(r["media_id"])},
                }
            )
    if type in (None, "payment"):
        for r in conn.execute(
            """
            SELECT payment_id, amount, status, description, created_at FROM payments
            WHERE user_id=?
            ORDER BY created_at DESC, payment_id DESC LIMIT 5
            """,
            (int(user_id),),
        ).fetchall():
            activities.append(
                {
                    "type": "payment",
                    "description": f"Payment {r['status']}: {r['description'] or 'subscription'}",
                    "timestamp": r["created_at"],
                    "data": {"payment_id": int(r["payment_id"]), "amount": int(r["amount"] or 0)},
                }
            )

    activities.sort(key=lambda a: a["timestamp"] or "", reverse=True)
    return activities


# -----------------------------
# Admin
# -----------------------------


def admin_list_users(
    conn: Any,
    *,
    search: Optional[str] = None,
    role: Optional[str] = None,
    plan: Optional[str] = None,
    is_active: Optional[bool] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    where: List[str] = []
    params: List[Any] = []
    if search:
        s = f"%{search.strip().lower()}%"
        where.append("(LOWER(username) LIKE ? OR LOWER(email) LIKE ? OR LOWER(first_name) LIKE ? OR LOWER(last_name) LIKE ?)")
        params.extend([s, s, s, s])
    if role:
        where.append("role=?")
        params.append(role)
    if plan:
        where.append("subscription_plan=?")
        params.append(plan)
    if is_active is not None:
        where.append("is_active=?")
        params.append(1 if is_active else 0)
    where_sql = ("WHERE " + " AND ".join(where)) if where else ""

    total = conn.execute(f"SELECT COUNT(*) AS n FROM users {where_sql}", params).fetchone()["n"]
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    rows = conn.execute(
        f"SELECT * FROM users {where_sql} ORDER BY created_at DESC, user_id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return [public_user(r) for r in rows], int(total)


def admin_update_user(
    conn: Any,
    user_id: int,
    *,
    role: Optional[str] = None,
    is_active: Optional[bool] = None,
    plan: Optional[str] = None,
    subscription_status: Optional[str] = None,
) -> Dict[str, Any]:
    """Apply an admin edit. Takes effect on the user's next request.

    Deactivating an account also revokes its sessions.
    """
    errors: List[Dict[str, Any]] = []
    if role is not None and role not in ROLES:
        errors.append(field_error("role", "Invalid role"))
    if plan is not None and plan not in PLANS:
        errors.append(field_error("subscription.plan", "Invalid plan"))
    if subscription_status is not None and subscription_status not in SUBSCRIPTION_STATUSES:
        errors.append(field_error("subscription.status", "Invalid subscription status"))
    raise_if_errors(errors)

    if get_user_by_id(conn, user_id) is None:
        raise NotFound("User not found")

    fields: List[Tuple[str, Any]] = []
    if role is not None:
        fields.append(("role", role))
    if is_active is not None:
        fields.append(("is_active", 1 if is_active else 0))
    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", [v for _, v in fields] + [int(user_id)])

    if plan is not None or subscription_status is not None:
        update_user_subscription(conn, user_id=user_id, plan=plan, subscription_status=subscription_status)

    if is_active is False:
        revoke_all_user_sessions(conn, user_id, reason="admin_revoke")
        _debug(f"Deactivated user_id={user_id}")

    return public_user(get_user_by_id(conn, user_id))
