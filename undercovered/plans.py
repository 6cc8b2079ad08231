"""Subscription plans and their feature ceilings.

The limit table is plain configuration data. It is attached to `Config.PLAN_LIMITS`
and read by the authorization layer; nothing else should hardcode these numbers.

`-1` means "unlimited" for any numeric limit.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


UNLIMITED = -1

PLANS = ("free", "basic", "premium", "enterprise")
SUBSCRIPTION_STATUSES = ("active", "inactive", "cancelled", "past_due")

# Contact-form plans map onto the billing plans.
PLAN_ALIASES: Dict[str, str] = {
    "monthly": "basic",
    "6month": "premium",
}

PREMIUM_PLANS = ("premium", "enterprise")

_MB = 1024 * 1024
_GB = 1024 * _MB


@dataclass(frozen=True)
class PlanLimits:
    media_uploads: int
    media_size: int
    storage: int
    api_calls: int

    def get(self, feature: str) -> int:
        if feature not in FEATURES:
            raise KeyError(feature)
        return int(getattr(self, feature))


FEATURES = ("media_uploads", "media_size", "storage", "api_calls")


def default_plan_limits() -> Dict[str, PlanLimits]:
    return {
        "free": PlanLimits(media_uploads=10, media_size=5 * _MB, storage=100 * _MB, api_calls=100),
        "basic": PlanLimits(media_uploads=100, media_size=25 * _MB, storage=1 * _GB, api_calls=1000),
        "premium": PlanLimits(media_uploads=1000, media_size=100 * _MB, storage=10 * _GB, api_calls=10000),
        "enterprise": PlanLimits(
            media_uploads=UNLIMITED,
            media_size=500 * _MB,
            storage=UNLIMITED,
            api_calls=UNLIMITED,
        ),
    }


# Catalogue shown on the pricing page (amounts in cents).
PLAN_CATALOGUE = (
    {
        "id": "basic",
        "name": "Basic",
        "description": "Perfect for individuals getting started",
        "prices": {"monthly": {"amount": 999, "currency": "usd"}, "yearly": {"amount": 9999, "currency": "usd"}},
    },
    {
        "id": "premium",
        "name": "Premium",
        "description": "For professionals and growing businesses",
        "prices": {"monthly": {"amount": 1999, "currency": "usd"}, "yearly": {"amount": 19999, "currency": "usd"}},
    },
    {
        "id": "enterprise",
        "name": "Enterprise",
        "description": "For large organizations with advanced needs",
        "prices": {"monthly": {"amount": 4999, "currency": "usd"}, "yearly": {"amount": 49999, "currency": "usd"}},
    },
)


def normalize_plan(plan: Optional[str]) -> str:
    """Map a raw plan name (including contact-form aliases) to a billing plan.

    Unknown or blank plans fall back to "free".
    """
    p = (plan or "").strip().lower()
    p = PLAN_ALIASES.get(p, p)
    return p if p in PLANS else "free"


def limits_for_plan(table: Mapping[str, PlanLimits], plan: Optional[str]) -> PlanLimits:
    p = normalize_plan(plan)
    limits = table.get(p)
    if limits is None:
        limits = table["free"]
    return limits


def is_unlimited(limit: int) -> bool:
    return int(limit) == UNLIMITED


def within_limit(usage: int, limit: int) -> bool:
    """True if one more unit of usage is allowed.

    A user sitting exactly at the ceiling is rejected.
    """
    if is_unlimited(limit):
        return True
    return int(usage) < int(limit)


def describe_limit(limit: int) -> str:
    return "unlimited" if is_unlimited(limit) else str(int(limit))


def catalogue_with_limits(table: Mapping[str, PlanLimits]) -> list[Dict[str, object]]:
    out: list[Dict[str, object]] = []
    for entry in PLAN_CATALOGUE:
        limits = limits_for_plan(table, str(entry["id"]))
        item = dict(entry)
        item["limits"] = {
            "media_uploads": limits.media_uploads,
            "media_size": limits.media_size,
            "storage": limits.storage,
            "api_calls": limits.api_calls,
        }
        out.append(item)
    return out
