from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, Iterable, List, Optional


_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}$")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def normalize_username(username: Optional[str]) -> str:
    """Usernames are compared case-sensitively but never carry outer whitespace."""
    return unicodedata.normalize("NFKC", (username or "")).strip()


def clean_text(value: Optional[str]) -> str:
    s = unicodedata.normalize("NFKC", value or "")
    s = s.replace("\u00a0", " ")
    return s.strip()


def is_valid_email(email: Optional[str]) -> bool:
    e = normalize_email(email)
    return bool(e) and _EMAIL_RE.match(e) is not None


def is_valid_username(username: Optional[str]) -> bool:
    u = normalize_username(username)
    return 3 <= len(u) <= 30 and u.isascii() and u.isalnum()


def clean_tags(tags: Optional[Iterable[Any]]) -> List[str]:
    """Trim tags, drop blanks, keep first occurrence order."""
    out: List[str] = []
    seen: set[str] = set()
    for t in tags or []:
        s = clean_text(str(t))
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def field_error(field: str, message: str) -> Dict[str, str]:
    return {"field": field, "message": message}


def check_length(
    errors: List[Dict[str, str]],
    field: str,
    value: Optional[str],
    *,
    min_len: int = 0,
    max_len: int,
    message: str,
) -> None:
    n = len(value or "")
    if n < min_len or n > max_len:
        errors.append(field_error(field, message))
