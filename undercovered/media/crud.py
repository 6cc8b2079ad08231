from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from undercovered.db import dump_json, insert_returning_id, load_json
from undercovered.util.normalization import check_length, clean_tags, clean_text, field_error
from undercovered.util.time import utcnow_iso

from .storage import StoredFile, category_for_mimetype, human_size, media_extension


VISIBILITIES = ("public", "private", "unlisted")
STATUSES = ("processing", "ready", "failed")

MAX_TITLE = 100
MAX_DESCRIPTION = 500
MAX_TAG = 30
MAX_COMMENT = 500

_SORT_COLUMNS = {
    "created_at": "m.created_at",
    "createdAt": "m.created_at",
    "uploaded_at": "m.uploaded_at",
    "views": "m.views",
    "likes": "m.likes",
    "title": "m.title",
    "size": "m.size",
}

_MEDIA_SELECT = """
    SELECT m.*,
           u.username AS owner_username,
           u.first_name AS owner_first_name,
           u.last_name AS owner_last_name,
           u.avatar AS owner_avatar,
           (SELECT COUNT(*) FROM media_comments c WHERE c.media_id = m.media_id) AS comment_count
    FROM media m
    JOIN users u ON u.user_id = m.owner_id
"""


def validate_media_fields(
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    visibility: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    require_title: bool = False,
) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    if title is not None or require_title:
        check_length(errors, "title", clean_text(title), min_len=1, max_len=MAX_TITLE, message="Title must be 1-100 characters")
    if description is not None:
        check_length(errors, "description", clean_text(description), max_len=MAX_DESCRIPTION, message="Description cannot exceed 500 characters")
    if visibility is not None and visibility not in VISIBILITIES:
        errors.append(field_error("visibility", "Visibility must be public, private, or unlisted"))
    for t in tags or []:
        if len(clean_text(str(t))) > MAX_TAG:
            errors.append(field_error("tags", "Tag cannot exceed 30 characters"))
            break
    return errors


def parse_tags(raw: Optional[str | Sequence[str]]) -> List[str]:
    """Tags arrive as a JSON list, a comma separated string, or a list."""
    if raw is None:
        return []
    if isinstance(raw, str):
        s = raw.strip()
        if s.startswith("["):
            parsed = load_json(s, [])
            return clean_tags(parsed if isinstance(parsed, list) else [])
        return clean_tags(s.split(","))
    return clean_tags(raw)


def public_media(row: Any | Dict[str, Any], *, liked_by_me: Optional[bool] = None) -> Dict[str, Any]:
    d = dict(row)
    out: Dict[str, Any] = {
        "media_id": int(d["media_id"]),
        "owner_id": int(d["owner_id"]),
        "title": d.get("title"),
        "description": d.get("description") or "",
        "filename": d.get("filename"),
        "original_name": d.get("original_name"),
        "mimetype": d.get("mimetype"),
        "size": int(d.get("size") or 0),
        "human_size": human_size(int(d.get("size") or 0)),
        "extension": media_extension(d.get("original_name")),
        "url": d.get("url"),
        "thumbnail_url": d.get("thumbnail_url"),
        "category": d.get("category"),
        "tags": load_json(d.get("tags_json"), []),
        "visibility": d.get("visibility"),
        "status": d.get("status"),
        "stats": {
            "views": int(d.get("views") or 0),
            "downloads": int(d.get("downloads") or 0),
            "likes": int(d.get("likes") or 0),
            "shares": int(d.get("shares") or 0),
        },
        "like_count": int(d.get("likes") or 0),
        "comment_count": int(d.get("comment_count") or 0),
        "is_active": bool(d.get("is_active")),
        "uploaded_at": d.get("uploaded_at"),
        "last_accessed_at": d.get("last_accessed_at"),
        "created_at": d.get("created_at"),
        "updated_at": d.get("updated_at"),
    }
    if "owner_username" in d:
        out["owner"] = {
            "user_id": int(d["owner_id"]),
            "username": d.get("owner_username"),
            "first_name": d.get("owner_first_name") or "",
            "last_name": d.get("owner_last_name") or "",
            "avatar": d.get("owner_avatar"),
        }
    if liked_by_me is not None:
        out["liked_by_me"] = liked_by_me
    return out


def get_media(conn: Any, media_id: int) -> Optional[Dict[str, Any]]:
    row = conn.execute(f"{_MEDIA_SELECT} WHERE m.media_id=?", (int(media_id),)).fetchone()
    return dict(row) if row is not None else None


def create_media(
    conn: Any,
    *,
    owner_id: int,
    stored: StoredFile,
    title: str,
    description: str = "",
    visibility: str = "public",
    tags: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    now = utcnow_iso()
    media_id = insert_returning_id(
        conn,
        """
        INSERT INTO media (
            owner_id, title, description, filename, original_name, mimetype, size, path, url,
            category, tags_json, visibility, status, uploaded_at, created_at, updated_at
        )
        VALUES (?,?,?,?,?,?,?,?,?,?,?,?,'ready',?,?,?)
        """,
        (
            int(owner_id),
            clean_text(title),
            clean_text(description),
            stored.filename,
            stored.original_name,
            stored.mimetype,
            int(stored.size),
            stored.path,
            stored.url,
            category_for_mimetype(stored.mimetype),
            dump_json(clean_tags(tags)),
            visibility,
            now,
            now,
            now,
        ),
        "media_id",
    )
    row = get_media(conn, media_id)
    assert row is not None
    return row


def _visibility_clause(viewer_id: Optional[int]) -> Tuple[str, List[Any]]:
    if viewer_id is None:
        return "m.visibility='public'", []
    return "(m.visibility IN ('public','unlisted') OR m.owner_id=?)", [int(viewer_id)]


def list_media(
    conn: Any,
    *,
    viewer_id: Optional[int] = None,
    category: Optional[str] = None,
    visibility: Optional[str] = None,
    owner_id: Optional[int] = None,
    tags: Optional[Sequence[str]] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    """Active media the viewer may see. Anonymous viewers only ever see public items."""
    where = ["m.is_active=1"]
    params: List[Any] = []

    clause, clause_params = _visibility_clause(viewer_id)
    where.append(clause)
    params.extend(clause_params)

    if visibility:
        where.append("m.visibility=?")
        params.append(visibility)
    if category:
        where.append("m.category=?")
        params.append(category)
    if owner_id is not None:
        where.append("m.owner_id=?")
        params.append(int(owner_id))
    tag_list = clean_tags(tags)
    if tag_list:
        # tags_json is a JSON array of strings; match the quoted element.
        where.append("(" + " OR ".join(["m.tags_json LIKE ?"] * len(tag_list)) + ")")
        params.extend([f"%{dump_json(t)}%" for t in tag_list])
    if search:
        where.append("(LOWER(m.title) LIKE ? OR LOWER(m.description) LIKE ?)")
        s = f"%{search.strip().lower()}%"
        params.extend([s, s])

    order_col = _SORT_COLUMNS.get(sort_by, "m.created_at")
    direction = "ASC" if str(sort_order).lower() == "asc" else "DESC"
    where_sql = " AND ".join(where)

    total = conn.execute(f"SELECT COUNT(*) AS n FROM media m WHERE {where_sql}", params).fetchone()["n"]

    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    rows = conn.execute(
        f"{_MEDIA_SELECT} WHERE {where_sql} ORDER BY {order_col} {direction}, m.media_id {direction} LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit],
    ).fetchall()
    return [dict(r) for r in rows], int(total)


def list_user_media(
    conn: Any,
    *,
    owner_id: int,
    viewer_id: Optional[int],
    category: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Dict[str, Any]], int]:
    if viewer_id is not None and int(viewer_id) == int(owner_id):
        # Owners see everything of theirs, the visibility clause already covers it.
        return list_media(conn, viewer_id=viewer_id, owner_id=owner_id, category=category, page=page, limit=limit)
    return list_media(conn, viewer_id=None, owner_id=owner_id, category=category, page=page, limit=limit)


def can_view_media(media: Dict[str, Any], *, viewer_id: Optional[int], is_admin: bool = False) -> bool:
    if media.get("visibility") != "private":
        return True
    if is_admin:
        return True
    return viewer_id is not None and int(media["owner_id"]) == int(viewer_id)


def record_view(conn: Any, media_id: int, owner_id: int) -> None:
    now = utcnow_iso()
    conn.execute(
        "UPDATE media SET views=views+1, last_accessed_at=? WHERE media_id=?",
        (now, int(media_id)),
    )
    conn.execute("UPDATE users SET total_views=total_views+1 WHERE user_id=?", (int(owner_id),))


def update_media(
    conn: Any,
    media_id: int,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
    visibility: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    mimetype: Optional[str] = None,
) -> Dict[str, Any]:
    fields: List[Tuple[str, Any]] = []
    if title is not None:
        fields.append(("title", clean_text(title)))
    if description is not None:
        fields.append(("description", clean_text(description)))
    if visibility is not None:
        fields.append(("visibility", visibility))
    if tags is not None:
        fields.append(("tags_json", dump_json(clean_tags(tags))))
    if mimetype is not None:
        fields.append(("mimetype", mimetype))
        fields.append(("category", category_for_mimetype(mimetype)))

    if fields:
        fields.append(("updated_at", utcnow_iso()))
        sets = ", ".join([f"{k}=?" for k, _ in fields])
        conn.execute(f"UPDATE media SET {sets} WHERE media_id=?", [v for _, v in fields] + [int(media_id)])

    row = get_media(conn, media_id)
    if row is None:
        raise ValueError("media_not_found")
    return row


def delete_media(conn: Any, media_id: int) -> None:
    conn.execute("DELETE FROM media_likes WHERE media_id=?", (int(media_id),))
    conn.execute("DELETE FROM media_comments WHERE media_id=?", (int(media_id),))
    conn.execute("DELETE FROM media WHERE media_id=?", (int(media_id),))


def has_liked(conn: Any, media_id: int, user_id: int) -> bool:
    r = conn.execute(
        "SELECT 1 FROM media_likes WHERE media_id=? AND user_id=?",
        (int(media_id), int(user_id)),
    ).fetchone()
    return r is not None


def toggle_like(conn: Any, media_id: int, user_id: int) -> Tuple[bool, int]:
    """Like if not yet liked, otherwise unlike. Returns (liked, like_count)."""
    if has_liked(conn, media_id, user_id):
        conn.execute("DELETE FROM media_likes WHERE media_id=? AND user_id=?", (int(media_id), int(user_id)))
        liked = False
    else:
        conn.execute(
            "INSERT INTO media_likes (media_id, user_id, created_at) VALUES (?,?,?)",
            (int(media_id), int(user_id), utcnow_iso()),
        )
        liked = True

    n = conn.execute("SELECT COUNT(*) AS n FROM media_likes WHERE media_id=?", (int(media_id),)).fetchone()["n"]
    conn.execute("UPDATE media SET likes=?, updated_at=? WHERE media_id=?", (int(n), utcnow_iso(), int(media_id)))
    return liked, int(n)


def validate_comment(text: Optional[str]) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    check_length(errors, "text", clean_text(text), min_len=1, max_len=MAX_COMMENT, message="Comment must be 1-500 characters")
    return errors


def add_comment(conn: Any, media_id: int, user_id: int, text: str) -> Dict[str, Any]:
    comment_id = insert_returning_id(
        conn,
        "INSERT INTO media_comments (media_id, user_id, text, created_at) VALUES (?,?,?,?)",
        (int(media_id), int(user_id), clean_text(text), utcnow_iso()),
        "comment_id",
    )
    row = conn.execute(
        """
        SELECT c.*, u.username, u.first_name, u.last_name, u.avatar
        FROM media_comments c
        JOIN users u ON u.user_id = c.user_id
        WHERE c.comment_id=?
        """,
        (comment_id,),
    ).fetchone()
    return public_comment(row)


def list_comments(conn: Any, media_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT c.*, u.username, u.first_name, u.last_name, u.avatar
        FROM media_comments c
        JOIN users u ON u.user_id = c.user_id
        WHERE c.media_id=?
        ORDER BY c.created_at ASC, c.comment_id ASC
        """,
        (int(media_id),),
    ).fetchall()
    return [public_comment(r) for r in rows]


def comment_count(conn: Any, media_id: int) -> int:
    r = conn.execute("SELECT COUNT(*) AS n FROM media_comments WHERE media_id=?", (int(media_id),)).fetchone()
    return int(r["n"])


def public_comment(row: Any) -> Dict[str, Any]:
    d = dict(row)
    return {
        "comment_id": int(d["comment_id"]),
        "media_id": int(d["media_id"]),
        "text": d.get("text"),
        "created_at": d.get("created_at"),
        "user": {
            "user_id": int(d["user_id"]),
            "username": d.get("username"),
            "first_name": d.get("first_name") or "",
            "last_name": d.get("last_name") or "",
            "avatar": d.get("avatar"),
        },
    }


def media_overview(conn: Any, owner_id: int) -> Dict[str, Any]:
    totals = conn.execute(
        """
        SELECT COUNT(*) AS total_media,
               COALESCE(SUM(views), 0) AS total_views,
               COALESCE(SUM(likes), 0) AS total_likes,
               COALESCE(SUM(size), 0) AS total_size
        FROM media
        WHERE owner_id=? AND is_active=1
        """,
        (int(owner_id),),
    ).fetchone()
    cats = conn.execute(
        """
        SELECT category, COUNT(*) AS count, COALESCE(SUM(size), 0) AS total_size
        FROM media
        WHERE owner_id=? AND is_active=1
        GROUP BY category
        ORDER BY category
        """,
        (int(owner_id),),
    ).fetchall()
    overview = {k: int(totals[k] or 0) for k in ("total_media", "total_views", "total_likes", "total_size")}
    overview["human_size"] = human_size(overview["total_size"])
    return {
        "overview": overview,
        "categories": [
            {"category": r["category"], "count": int(r["count"]), "total_size": int(r["total_size"] or 0)}
            for r in cats
        ],
    }
