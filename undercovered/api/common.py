from __future__ import annotations

import math
from typing import Any, Dict, Optional

from fastapi import Request

from undercovered.auth.sessions import device_info_from_request


def client_ip(request: Request) -> Optional[str]:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else None


def device_info(request: Request) -> Dict[str, Any]:
    return device_info_from_request(request.headers.get("user-agent"), client_ip(request))


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "current_page": int(page),
        "total_pages": int(math.ceil(total / limit)) if limit else 0,
        "total_items": int(total),
        "items_per_page": int(limit),
    }


def ok(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """The `{"success": true, ...}` envelope every route returns."""
    out: Dict[str, Any] = {"success": True}
    if message:
        out["message"] = message
    if data is not None:
        out["data"] = data
    out.update(extra)
    return out
