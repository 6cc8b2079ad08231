from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Set

from undercovered.auth.crud import ROLES
from undercovered.db import dump_json, insert_returning_id, load_json
from undercovered.plans import PLANS
from undercovered.util.normalization import check_length, clean_text, field_error
from undercovered.util.time import normalize_iso, parse_iso, utcnow, utcnow_iso

from .visibility import engagement_rate, is_expired, is_published_now, is_visible


TYPES = ("info", "warning", "success", "error", "maintenance", "feature", "promotion")
PRIORITIES = ("low", "medium", "high", "urgent")
ACTION_TYPES = ("link", "dismiss", "upgrade", "contact", "custom")
ACTION_STYLES = ("primary", "secondary", "success", "warning", "danger")

_PRIORITY_RANK = {p: i for i, p in enumerate(PRIORITIES)}

_DISPLAY_DEFAULTS = {
    "show_on_dashboard": True,
    "show_as_popup": False,
    "show_in_notifications": True,
    "allow_dismiss": True,
    "sticky": False,
}

_SELECT = """
    SELECT a.*,
           u.username AS author_username,
           u.first_name AS author_first_name,
           u.last_name AS author_last_name
    FROM announcements a
    LEFT JOIN users u ON u.user_id = a.author_id
"""


def check_datetime(errors: List[Dict[str, Any]], field: str, value: Optional[str]) -> None:
    """Blank clears the field; anything else must parse as ISO-8601."""
    if clean_text(value) and parse_iso(value) is None:
        errors.append(field_error(field, f"{field} must be a valid ISO-8601 date"))


def validate_announcement(
    *,
    title: Optional[str],
    content: Optional[str],
    type: Optional[str] = None,
    priority: Optional[str] = None,
    audience: Optional[Dict[str, Any]] = None,
    actions: Optional[Sequence[Dict[str, Any]]] = None,
    scheduled_for: Optional[str] = None,
    expires_at: Optional[str] = None,
    partial: bool = False,
) -> List[Dict[str, Any]]:
    """Collect every problem with an announcement payload.

    With `partial=True` (updates) absent fields are not checked.
    """
    errors: List[Dict[str, Any]] = []
    if title is not None or not partial:
        check_length(errors, "title", clean_text(title), min_len=1, max_len=200, message="Title must be 1-200 characters")
    if content is not None or not partial:
        check_length(errors, "content", clean_text(content), min_len=1, max_len=2000, message="Content must be 1-2000 characters")
    if type is not None and type not in TYPES:
        errors.append(field_error("type", "Invalid announcement type"))
    if priority is not None and priority not in PRIORITIES:
        errors.append(field_error("priority", "Invalid priority level"))
    check_datetime(errors, "scheduled_for", scheduled_for)
    check_datetime(errors, "expires_at", expires_at)

    aud = audience or {}
    for r in aud.get("target_roles") or []:
        if r not in ROLES:
            errors.append(field_error("audience.target_roles", f"Invalid role: {r}"))
    for p in aud.get("target_plans") or []:
        if p not in PLANS:
            errors.append(field_error("audience.target_plans", f"Invalid plan: {p}"))
    for u in aud.get("target_users") or []:
        try:
            int(u)
        except (TypeError, ValueError):
            errors.append(field_error("audience.target_users", f"Invalid user id: {u}"))

    for i, a in enumerate(actions or []):
        label = clean_text(str(a.get("label") or ""))
        if not label or len(label) > 50:
            errors.append(field_error(f"actions[{i}].label", "Action label is required and cannot exceed 50 characters"))
        if a.get("action") is not None and a.get("action") not in ACTION_TYPES:
            errors.append(field_error(f"actions[{i}].action", "Invalid action type"))
        if a.get("style") is not None and a.get("style") not in ACTION_STYLES:
            errors.append(field_error(f"actions[{i}].style", "Invalid action style"))
    return errors


def _clean_actions(actions: Optional[Sequence[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for a in actions or []:
        out.append(
            {
                "label": clean_text(str(a.get("label") or "")),
                "url": a.get("url"),
                "action": a.get("action") or "link",
                "style": a.get("style") or "primary",
            }
        )
    return out


def public_announcement(row: Any | Dict[str, Any], *, dismissed: Optional[bool] = None) -> Dict[str, Any]:
    d = dict(row)
    views = int(d.get("views") or 0)
    clicks = int(d.get("clicks") or 0)
    dismissals = int(d.get("dismissals") or 0)
    out: Dict[str, Any] = {
        "announcement_id": int(d["announcement_id"]),
        "title": d.get("title"),
        "content": d.get("content"),
        "type": d.get("type"),
        "priority": d.get("priority"),
        "author_id": int(d["author_id"]),
        "target_users": [int(u) for u in load_json(d.get("target_users_json"), [])],
        "target_roles": load_json(d.get("target_roles_json"), []),
        "target_plans": load_json(d.get("target_plans_json"), []),
        "is_global": bool(d.get("is_global")),
        "is_published": bool(d.get("is_published")),
        "published_at": d.get("published_at"),
        "scheduled_for": d.get("scheduled_for"),
        "expires_at": d.get("expires_at"),
        "show_on_dashboard": bool(d.get("show_on_dashboard")),
        "show_as_popup": bool(d.get("show_as_popup")),
        "show_in_notifications": bool(d.get("show_in_notifications")),
        "allow_dismiss": bool(d.get("allow_dismiss")),
        "sticky": bool(d.get("sticky")),
        "actions": load_json(d.get("actions_json"), []),
        "stats": {"views": views, "clicks": clicks, "dismissals": dismissals},
        "is_active": bool(d.get("is_active")),
        "created_at": d.get("created_at"),
        "updated_at": d.get("updated_at"),
    }
    out["is_published_now"] = is_published_now(out)
    out["is_expired"] = is_expired(out)
    out["is_visible"] = is_visible(out)
    out["engagement_rate"] = engagement_rate(views, clicks, dismissals)
    if d.get("author_username") is not None:
        out["author"] = {
            "user_id": int(d["author_id"]),
            "username": d.get("author_username"),
            "first_name": d.get("author_first_name") or "",
            "last_name": d.get("author_last_name") or "",
        }
    if dismissed is not None:
        out["dismissed"] = dismissed
    return out


def get_announcement(conn: Any, announcement_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(f"{_SELECT} WHERE a.announcement_id=?", (int(announcement_id),)).fetchone()
    return public_announcement(row) if row is not None else None


def create_announcement(
    conn: Any,
    *,
    author_id: int,
    title: str,
    content: str,
    type: str = "info",
    priority: str = "medium",
    audience: Optional[Dict[str, Any]] = None,
    display: Optional[Dict[str, Any]] = None,
    actions: Optional[Sequence[Dict[str, Any]]] = None,
    scheduled_for: Optional[str] = None,
    expires_at: Optional[str] = None,
) -> Dict[str, Any]:
    aud = audience or {}
    disp = dict(_DISPLAY_DEFAULTS)
    disp.update({k: bool(v) for k, v in (display or {}).items() if k in _DISPLAY_DEFAULTS and v is not None})
    now = utcnow_iso()

    announcement_id = insert_returning_id(
        conn,
        """
        INSERT INTO announcements (
            title, content, type, priority, author_id,
            target_users_json, target_roles_json, target_plans_json, is_global,
            is_published, scheduled_for, expires_at,
            show_on_dashboard, show_as_popup, show_in_notifications, allow_dismiss, sticky,
            actions_json, created_at, updated_at
        )
        VALUES (?,?,?,?,?,?,?,?,?,0,?,?,?,?,?,?,?,?,?,?)
        """,
        (
            clean_text(title),
            clean_text(content),
            type,
            priority,
            int(author_id),
            dump_json([int(u) for u in aud.get("target_users") or []]),
            dump_json(list(aud.get("target_roles") or [])),
            dump_json(list(aud.get("target_plans") or [])),
            1 if aud.get("is_global") else 0,
            normalize_iso(scheduled_for),
            normalize_iso(expires_at),
            1 if disp["show_on_dashboard"] else 0,
            1 if disp["show_as_popup"] else 0,
            1 if disp["show_in_notifications"] else 0,
            1 if disp["allow_dismiss"] else 0,
            1 if disp["sticky"] else 0,
            dump_json(_clean_actions(actions)),
            now,
            now,
        ),
        "announcement_id",
    )
    created = get_announcement(conn, announcement_id)
    assert created is not None
    return created


def update_announcement(
    conn: Any,
    announcement_id: int,
    *,
    title: Optional[str] = None,
    content: Optional[str] = None,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    audience: Optional[Dict[str, Any]] = None,
    display: Optional[Dict[str, Any]] = None,
    actions: Optional[Sequence[Dict[str, Any]]] = None,
    scheduled_for: Optional[str] = None,
    expires_at: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Dict[str, Any]:
    fields: List[tuple[str, Any]] = []
    if title is not None:
        fields.append(("title", clean_text(title)))
    if content is not None:
        fields.append(("content", clean_text(content)))
    if type is not None:
        fields.append(("type", type))
    if priority is not None:
        fields.append(("priority", priority))
    if audience is not None:
        if "target_users" in audience:
            fields.append(("target_users_json", dump_json([int(u) for u in audience.get("target_users") or []])))
        if "target_roles" in audience:
            fields.append(("target_roles_json", dump_json(list(audience.get("target_roles") or []))))
        if "target_plans" in audience:
            fields.append(("target_plans_json", dump_json(list(audience.get("target_plans") or []))))
        if "is_global" in audience:
            fields.append(("is_global", 1 if audience.get("is_global") else 0))
    for k, v in (display or {}).items():
        if k in _DISPLAY_DEFAULTS and v is not None:
            fields.append((k, 1 if v else 0))
    if actions is not None:
        fields.append(("actions_json", dump_json(_clean_actions(actions))))
    if scheduled_for is not None:
        fields.append(("scheduled_for", normalize_iso(scheduled_for)))
    if expires_at is not None:
        fields.append(("expires_at", normalize_iso(expires_at)))
    if is_active is not None:
        fields.append(("is_active", 1 if is_active else 0))

    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(
            f"UPDATE announcements SET {sets} WHERE announcement_id=?",
            [v for _, v in fields] + [int(announcement_id)],
        )

    updated = get_announcement(conn, announcement_id)
    if updated is None:
        raise ValueError("announcement_not_found")
    return updated


def delete_announcement(conn: Any, announcement_id: int) -> None:
    aid = int(announcement_id)
    conn.execute("DELETE FROM announcement_views WHERE announcement_id=?", (aid,))
    conn.execute("DELETE FROM announcement_clicks WHERE announcement_id=?", (aid,))
    conn.execute("DELETE FROM announcement_dismissals WHERE announcement_id=?", (aid,))
    conn.execute("DELETE FROM announcements WHERE announcement_id=?", (aid,))


def publish_announcement(conn: Any, announcement_id: int, scheduled_for: Optional[str] = None) -> Dict[str, Any]:
    """Publish now, or at `scheduled_for` when that lies in the future."""
    when = parse_iso(scheduled_for)
    now_iso = utcnow_iso()
    future = when is not None and when > utcnow()
    conn.execute(
        """
        UPDATE announcements
        SET is_published=1, published_at=?, scheduled_for=?, updated_at=?
        WHERE announcement_id=?
        """,
        (
            normalize_iso(scheduled_for) if when is not None else now_iso,
            normalize_iso(scheduled_for) if future else None,
            now_iso,
            int(announcement_id),
        ),
    )
    updated = get_announcement(conn, announcement_id)
    if updated is None:
        raise ValueError("announcement_not_found")
    return updated


def unpublish_announcement(conn: Any, announcement_id: int) -> Dict[str, Any]:
    conn.execute(
        "UPDATE announcements SET is_published=0, updated_at=? WHERE announcement_id=?",
        (utcnow_iso(), int(announcement_id)),
    )
    updated = get_announcement(conn, announcement_id)
    if updated is None:
        raise ValueError("announcement_not_found")
    return updated


def list_announcements(
    conn: Any,
    *,
    type: Optional[str] = None,
    priority: Optional[str] = None,
    global_only: bool = False,
) -> List[Dict[str, Any]]:
    """Active, published announcements, highest priority first.

    Schedule, expiry and audience are left to the visibility predicates.
    """
    where = ["a.is_active=1", "a.is_published=1"]
    params: List[Any] = []
    if type:
        where.append("a.type=?")
        params.append(type)
    if priority:
        where.append("a.priority=?")
        params.append(priority)
    if global_only:
        where.append("a.is_global=1")
    rows = conn.execute(
        f"{_SELECT} WHERE {' AND '.join(where)} ORDER BY a.created_at DESC, a.announcement_id DESC",
        params,
    ).fetchall()
    items = [public_announcement(r) for r in rows]
    items.sort(key=lambda a: _PRIORITY_RANK.get(str(a.get("priority")), 0), reverse=True)
    return items


# -----------------------------
# Interactions
# -----------------------------


def add_view(conn: Any, announcement_id: int, user_id: int, *, user_agent: Optional[str] = None, ip: Optional[str] = None) -> bool:
    """Record a view once per user. Returns True when this was the first view."""
    aid, uid = int(announcement_id), int(user_id)
    seen = conn.execute(
        "SELECT 1 FROM announcement_views WHERE announcement_id=? AND user_id=?",
        (aid, uid),
    ).fetchone()
    if seen is not None:
        return False
    conn.execute(
        "INSERT INTO announcement_views (announcement_id, user_id, user_agent, ip, viewed_at) VALUES (?,?,?,?,?)",
        (aid, uid, user_agent, ip, utcnow_iso()),
    )
    conn.execute("UPDATE announcements SET views=views+1 WHERE announcement_id=?", (aid,))
    return True


def add_click(conn: Any, announcement_id: int, user_id: int, action: Optional[str] = None) -> None:
    aid = int(announcement_id)
    conn.execute(
        "INSERT INTO announcement_clicks (announcement_id, user_id, action, clicked_at) VALUES (?,?,?,?)",
        (aid, int(user_id), action, utcnow_iso()),
    )
    conn.execute("UPDATE announcements SET clicks=clicks+1 WHERE announcement_id=?", (aid,))


def is_dismissed(conn: Any, announcement_id: int, user_id: int) -> bool:
    r = conn.execute(
        "SELECT 1 FROM announcement_dismissals WHERE announcement_id=? AND user_id=?",
        (int(announcement_id), int(user_id)),
    ).fetchone()
    return r is not None


def dismissed_ids(conn: Any, user_id: int) -> Set[int]:
    rows = conn.execute(
        "SELECT announcement_id FROM announcement_dismissals WHERE user_id=?",
        (int(user_id),),
    ).fetchall()
    return {int(r["announcement_id"]) for r in rows}


def dismiss(conn: Any, announcement_id: int, user_id: int) -> bool:
    aid = int(announcement_id)
    if is_dismissed(conn, aid, user_id):
        return False
    conn.execute(
        "INSERT INTO announcement_dismissals (announcement_id, user_id, dismissed_at) VALUES (?,?,?)",
        (aid, int(user_id), utcnow_iso()),
    )
    conn.execute("UPDATE announcements SET dismissals=dismissals+1 WHERE announcement_id=?", (aid,))
    return True


def undismiss(conn: Any, announcement_id: int, user_id: int) -> bool:
    aid = int(announcement_id)
    cur = conn.execute(
        "DELETE FROM announcement_dismissals WHERE announcement_id=? AND user_id=?",
        (aid, int(user_id)),
    )
    if int(cur.rowcount or 0) == 0:
        return False
    conn.execute(
        "UPDATE announcements SET dismissals=CASE WHEN dismissals > 0 THEN dismissals-1 ELSE 0 END WHERE announcement_id=?",
        (aid,),
    )
    return True


def announcement_stats(conn: Any, announcement_id: int) -> Dict[str, Any]:
    aid = int(announcement_id)
    ann = get_announcement(conn, aid)
    if ann is None:
        raise ValueError("announcement_not_found")

    unique_clickers = conn.execute(
        "SELECT COUNT(DISTINCT user_id) AS n FROM announcement_clicks WHERE announcement_id=?",
        (aid,),
    ).fetchone()["n"]
    by_action = conn.execute(
        """
        SELECT COALESCE(action, '') AS action, COUNT(*) AS n
        FROM announcement_clicks
        WHERE announcement_id=?
        GROUP BY COALESCE(action, '')
        ORDER BY n DESC
        """,
        (aid,),
    ).fetchall()

    s = ann["stats"]
    return {
        "announcement_id": aid,
        "views": s["views"],
        "clicks": s["clicks"],
        "dismissals": s["dismissals"],
        "unique_clickers": int(unique_clickers),
        "engagement_rate": ann["engagement_rate"],
        "clicks_by_action": [{"action": r["action"] or None, "count": int(r["n"])} for r in by_action],
        "is_visible": ann["is_visible"],
    }
