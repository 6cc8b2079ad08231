"""Who may see an announcement, as pure functions over plain dicts.

An announcement dict uses the shape produced by `public_announcement`:

    {"is_active", "is_global", "target_users", "target_roles", "target_plans",
     "is_published", "scheduled_for", "expires_at", "allow_dismiss", ...}

A user dict needs `user_id`, `role` and `subscription.plan` (the public user shape).
Nothing here touches the database; callers pass `dismissed_by_user` in.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from undercovered.util.time import parse_iso, utcnow


def is_published_now(ann: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    if not ann.get("is_published"):
        return False
    scheduled = parse_iso(ann.get("scheduled_for"))
    return scheduled is None or scheduled <= (now or utcnow())


def is_expired(ann: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    expires = parse_iso(ann.get("expires_at"))
    return expires is not None and expires <= (now or utcnow())


def is_visible(ann: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    return bool(ann.get("is_active")) and is_published_now(ann, now) and not is_expired(ann, now)


def _user_plan(user: Dict[str, Any]) -> str:
    sub = user.get("subscription")
    if isinstance(sub, dict):
        return str(sub.get("plan") or "free")
    return str(user.get("subscription_plan") or "free")


def audience_matches(ann: Dict[str, Any], user: Dict[str, Any]) -> bool:
    """Global wins; otherwise explicit users, then roles, then plans.

    An empty list for a dimension means that dimension does not restrict.
    """
    if ann.get("is_global"):
        return True

    target_users = ann.get("target_users") or []
    if target_users:
        return int(user["user_id"]) in {int(u) for u in target_users}

    target_roles = ann.get("target_roles") or []
    if target_roles and user.get("role") not in target_roles:
        return False

    target_plans = ann.get("target_plans") or []
    if target_plans and _user_plan(user) not in target_plans:
        return False

    return True


def can_user_view(
    ann: Dict[str, Any],
    user: Dict[str, Any],
    *,
    dismissed_by_user: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    if not is_visible(ann, now):
        return False
    if ann.get("allow_dismiss") and dismissed_by_user:
        return False
    return audience_matches(ann, user)


def can_anonymous_view(ann: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    return bool(ann.get("is_global")) and is_visible(ann, now)


def engagement_rate(views: int, clicks: int, dismissals: int) -> int:
    """Percentage of views followed by a click or dismissal, rounded."""
    if int(views or 0) <= 0:
        return 0
    # Halves round up.
    return int((100 * (int(clicks) + int(dismissals)) / int(views)) + 0.5)
