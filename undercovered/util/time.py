from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def to_iso(dt: datetime) -> str:
    """ISO-8601 string in UTC with a trailing Z."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(utcnow())


def iso_in(*, minutes: float = 0, days: float = 0, now: Optional[datetime] = None) -> str:
    base = now or utcnow()
    return to_iso(base + timedelta(minutes=minutes, days=days))


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp (Z or offset form). Returns None for blanks/garbage."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    s = str(value).strip()
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_iso(value: Optional[str | datetime]) -> Optional[str]:
    """Accept client-provided datetimes and store them in the project convention."""
    dt = parse_iso(value)  # type: ignore[arg-type]
    return to_iso(dt) if dt is not None else None
