from __future__ import annotations

from datetime import datetime, timedelta, timezone

from undercovered.announcements.visibility import (
    audience_matches,
    can_anonymous_view,
    can_user_view,
    engagement_rate,
    is_visible,
)


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def ann(**kw):
    base = {
        "announcement_id": 1,
        "is_active": True,
        "is_published": True,
        "scheduled_for": None,
        "expires_at": None,
        "is_global": False,
        "target_users": [],
        "target_roles": [],
        "target_plans": [],
        "allow_dismiss": True,
    }
    base.update(kw)
    return base


def user(user_id=7, role="user", plan="free"):
    return {"user_id": user_id, "role": role, "subscription": {"plan": plan}}


def iso(dt):
    return dt.isoformat().replace("+00:00", "Z")


def test_global_beats_every_other_target():
    a = ann(is_global=True, target_users=[99], target_roles=["admin"], target_plans=["enterprise"])
    assert audience_matches(a, user())


def test_explicit_users_override_roles_and_plans():
    a = ann(target_users=[7], target_roles=["admin"], target_plans=["enterprise"])
    assert audience_matches(a, user(user_id=7))
    assert not audience_matches(a, user(user_id=8, role="admin", plan="enterprise"))


def test_roles_and_plans_both_restrict():
    a = ann(target_roles=["moderator"], target_plans=["premium"])
    assert audience_matches(a, user(role="moderator", plan="premium"))
    assert not audience_matches(a, user(role="moderator", plan="free"))
    assert not audience_matches(a, user(role="user", plan="premium"))


def test_empty_targets_do_not_restrict():
    assert audience_matches(ann(), user())


def test_schedule_and_expiry_window():
    assert not is_visible(ann(is_published=False), NOW)
    assert not is_visible(ann(is_active=False), NOW)
    assert not is_visible(ann(scheduled_for=iso(NOW + timedelta(minutes=5))), NOW)
    assert is_visible(ann(scheduled_for=iso(NOW - timedelta(minutes=5))), NOW)
    assert not is_visible(ann(expires_at=iso(NOW)), NOW)
    assert is_visible(ann(expires_at=iso(NOW + timedelta(seconds=1))), NOW)


def test_dismissal_hides_only_when_dismiss_is_allowed():
    a = ann(is_global=True)
    assert can_user_view(a, user(), now=NOW)
    assert not can_user_view(a, user(), dismissed_by_user=True, now=NOW)
    # Undismissing restores visibility.
    assert can_user_view(a, user(), dismissed_by_user=False, now=NOW)

    sticky = ann(is_global=True, allow_dismiss=False)
    assert can_user_view(sticky, user(), dismissed_by_user=True, now=NOW)


def test_dismissal_never_makes_an_announcement_visible():
    hidden = ann(target_users=[1])
    assert not can_user_view(hidden, user(user_id=2), dismissed_by_user=False, now=NOW)
    assert not can_user_view(hidden, user(user_id=2), dismissed_by_user=True, now=NOW)


def test_anonymous_sees_only_visible_global():
    assert can_anonymous_view(ann(is_global=True), NOW)
    assert not can_anonymous_view(ann(), NOW)
    assert not can_anonymous_view(ann(is_global=True, is_published=False), NOW)


def test_engagement_rate_rounds_halves_up():
    assert engagement_rate(0, 5, 5) == 0
    assert engagement_rate(8, 1, 0) == 13  # 12.5
    assert engagement_rate(3, 1, 0) == 33
    assert engagement_rate(4, 2, 2) == 100
