from __future__ import annotations

from typing import Any, Dict, Optional

from undercovered.config import Config
from undercovered.db import connect, insert_returning_id
from undercovered.plans import PREMIUM_PLANS, normalize_plan
from undercovered.util.normalization import normalize_email, normalize_username
from undercovered.util.time import utcnow_iso

from .security import hash_password, verify_password


ROLES = ("user", "admin", "moderator")

# Compared against when the email is unknown so both failure paths hash once.
_DUMMY_HASH = hash_password("not-a-real-password")


def full_name(row: Any | Dict[str, Any]) -> str:
    d = dict(row)
    return f"{d.get('first_name') or ''} {d.get('last_name') or ''}".strip()


def is_premium(row: Any | Dict[str, Any]) -> bool:
    d = dict(row)
    status = (d.get("subscription_status") or "").strip().lower()
    plan = (d.get("subscription_plan") or "").strip().lower()
    return status == "active" and plan in PREMIUM_PLANS


def public_user(row: Any | Dict[str, Any]) -> Dict[str, Any]:
    """Shape a users row for clients. The password hash never leaves this module."""
    d = dict(row)
    d.pop("password_hash", None)
    return {
        "user_id": int(d["user_id"]),
        "username": d.get("username"),
        "email": d.get("email"),
        "first_name": d.get("first_name") or "",
        "last_name": d.get("last_name") or "",
        "full_name": full_name(d),
        "phone": d.get("phone"),
        "avatar": d.get("avatar"),
        "role": d.get("role") or "user",
        "is_admin": d.get("role") == "admin",
        "is_active": bool(d.get("is_active")),
        "email_verified": bool(d.get("email_verified")),
        "subscription": {
            "plan": d.get("subscription_plan") or "free",
            "status": d.get("subscription_status") or "inactive",
            "current_period_end": d.get("current_period_end"),
            "cancel_at_period_end": bool(d.get("cancel_at_period_end")),
            "stripe_customer_id": d.get("stripe_customer_id"),
        },
        "is_premium": is_premium(d),
        "preferences": preferences_from_row(d),
        "stats": {
            "media_uploaded": int(d.get("media_uploaded") or 0),
            "total_views": int(d.get("total_views") or 0),
            "login_count": int(d.get("login_count") or 0),
            "last_login_at": d.get("last_login_at"),
            "joined_at": d.get("joined_at"),
        },
        "created_from_submission_id": d.get("created_from_submission_id"),
        "created_at": d.get("created_at"),
        "updated_at": d.get("updated_at"),
    }


def preferences_from_row(d: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "theme": d.get("pref_theme") or "dark",
        "notifications": {
            "email": bool(d.get("pref_notify_email", 1)),
            "push": bool(d.get("pref_notify_push", 1)),
            "announcements": bool(d.get("pref_notify_announcements", 1)),
        },
        "privacy": {
            "profile_visible": bool(d.get("pref_profile_visible", 1)),
            "media_visible": bool(d.get("pref_media_visible", 1)),
        },
    }


def get_user_by_id(conn: Any, user_id: int) -> Optional[Any]:
    return conn.execute(
        "SELECT * FROM users WHERE user_id=?",
        (int(user_id),),
    ).fetchone()


def get_user_by_email(conn: Any, email: str) -> Optional[Any]:
    e = normalize_email(email)
    if not e:
        return None
    return conn.execute("SELECT * FROM users WHERE email=?", (e,)).fetchone()


def get_user_by_username(conn: Any, username: str) -> Optional[Any]:
    u = normalize_username(username)
    if not u:
        return None
    return conn.execute("SELECT * FROM users WHERE username=?", (u,)).fetchone()


def get_user_by_stripe_customer_id(conn: Any, stripe_customer_id: str) -> Optional[Any]:
    cid = (stripe_customer_id or "").strip()
    if not cid:
        return None
    return conn.execute(
        "SELECT * FROM users WHERE stripe_customer_id=?",
        (cid,),
    ).fetchone()


def find_conflicting_user(conn: Any, *, email: str, username: str) -> Optional[str]:
    """Return "email_exists" / "username_exists" if either identity is taken."""
    if get_user_by_email(conn, email) is not None:
        return "email_exists"
    if get_user_by_username(conn, username) is not None:
        return "username_exists"
    return None


def verify_user_credentials(conn: Any, email: str, password: str) -> Optional[Any]:
    """Return the user row for a valid, active login; None otherwise.

    Callers must not tell the client which check failed.
    """
    row = get_user_by_email(conn, email)
    if row is None:
        # Burn comparable time so unknown emails are not distinguishable by latency.
        verify_password(password, _DUMMY_HASH)
        return None
    if int(row["is_active"] or 0) != 1:
        return None
    if not verify_password(password, str(row["password_hash"])):
        return None
    return row


def create_user(
    conn: Any,
    *,
    username: str,
    email: str,
    password: str | None = None,
    password_hash: str | None = None,
    first_name: str = "",
    last_name: str = "",
    phone: str | None = None,
    role: str = "user",
    plan: str = "free",
    subscription_status: str = "inactive",
    is_active: bool = True,
    created_from_submission_id: int | None = None,
) -> Dict[str, Any]:
    """Insert a user. Exactly one of `password` / `password_hash` must be given."""
    u = normalize_username(username)
    e = normalize_email(email)
    if not u:
        raise ValueError("username_blank")
    if not e:
        raise ValueError("email_blank")
    if role not in ROLES:
        raise ValueError("invalid_role")
    if (password is None) == (password_hash is None):
        raise ValueError("password_or_hash_required")

    conflict = find_conflicting_user(conn, email=e, username=u)
    if conflict is not None:
        raise ValueError(conflict)

    now = utcnow_iso()
    user_id = insert_returning_id(
        conn,
        """
        INSERT INTO users (
            username, email, password_hash, first_name, last_name, phone, role, is_active,
            subscription_plan, subscription_status, created_from_submission_id,
            joined_at, created_at, updated_at
        )
        VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            u,
            e,
            password_hash if password_hash is not None else hash_password(str(password)),
            first_name,
            last_name,
            phone,
            role,
            1 if is_active else 0,
            normalize_plan(plan),
            subscription_status,
            created_from_submission_id,
            now,
            now,
            now,
        ),
        "user_id",
    )
    row = get_user_by_id(conn, user_id)
    assert row is not None
    return public_user(row)


def touch_last_login(conn: Any, user_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE users SET last_login_at=?, login_count=login_count+1, updated_at=? WHERE user_id=?",
        (now, now, int(user_id)),
    )


def adjust_media_uploaded(conn: Any, user_id: int, delta: int) -> None:
    conn.execute(
        """
        UPDATE users
        SET media_uploaded = CASE WHEN media_uploaded + ? < 0 THEN 0 ELSE media_uploaded + ? END,
            updated_at=?
        WHERE user_id=?
        """,
        (int(delta), int(delta), utcnow_iso(), int(user_id)),
    )


def update_user_subscription(
    conn: Any,
    *,
    user_id: int,
    plan: str | None = None,
    subscription_status: str | None = None,
    stripe_customer_id: str | None = None,
    stripe_subscription_id: str | None = None,
    current_period_end: str | None = None,
    cancel_at_period_end: bool | None = None,
    clear_subscription: bool = False,
) -> None:
    """Persist subscription state onto the user row. Only provided fields are touched."""
    now = utcnow_iso()
    fields: list[tuple[str, Any]] = []
    if plan is not None:
        fields.append(("subscription_plan", normalize_plan(plan)))
    if subscription_status is not None:
        fields.append(("subscription_status", subscription_status))
    if stripe_customer_id is not None:
        fields.append(("stripe_customer_id", stripe_customer_id))
    if clear_subscription:
        fields.append(("stripe_subscription_id", None))
        fields.append(("current_period_end", None))
    else:
        if stripe_subscription_id is not None:
            fields.append(("stripe_subscription_id", stripe_subscription_id))
        if current_period_end is not None:
            fields.append(("current_period_end", current_period_end))
    if cancel_at_period_end is not None:
        fields.append(("cancel_at_period_end", 1 if cancel_at_period_end else 0))

    if not fields:
        return

    fields.append(("subscription_updated_at", now))
    fields.append(("updated_at", now))

    sets = ", ".join([f"{k}=?" for k, _ in fields])
    params = [v for _, v in fields] + [int(user_id)]
    conn.execute(f"UPDATE users SET {sets} WHERE user_id=?", params)


def bootstrap_admin_if_needed(cfg: Config) -> Optional[Dict[str, Any]]:
    """Create the first admin user if the users table is empty.

    - AUTH_BOOTSTRAP_ADMIN_USERNAME (default: admin)
    - AUTH_BOOTSTRAP_ADMIN_EMAIL
    - AUTH_BOOTSTRAP_ADMIN_PASSWORD

    This only runs when there are 0 rows in `users`.
    """

    with connect(cfg.DB_DSN) as conn:
        n = conn.execute("SELECT COUNT(*) AS n FROM users").fetchone()["n"]
        if int(n) > 0:
            return None

        username = normalize_username(cfg.AUTH_BOOTSTRAP_ADMIN_USERNAME)
        email = normalize_email(cfg.AUTH_BOOTSTRAP_ADMIN_EMAIL)
        password = cfg.AUTH_BOOTSTRAP_ADMIN_PASSWORD

        # If env explicitly clears these, don't create anything.
        if not username or not email or not password:
            return None

        return create_user(
            conn,
            username=username,
            email=email,
            password=password,
            first_name="Admin",
            last_name="User",
            role="admin",
            plan="enterprise",
            subscription_status="active",
        )
