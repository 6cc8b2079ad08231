from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from undercovered.config import Config
from undercovered.db import connect
from undercovered.errors import AppError, Forbidden, NotFound, Unauthenticated
from undercovered.plans import PlanLimits, describe_limit, limits_for_plan, normalize_plan, within_limit

from .crud import get_user_by_id, public_user
from .security import REFRESH, decode_token, token_type, token_user_id
from .sessions import find_active_session, touch_session


_bearer = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """The resolved caller for one request. `user` is the public user shape."""

    user: Dict[str, Any]
    session: Dict[str, Any]
    token: str

    @property
    def user_id(self) -> int:
        return int(self.user["user_id"])

    @property
    def session_id(self) -> int:
        return int(self.session["session_id"])

    @property
    def role(self) -> str:
        return str(self.user.get("role") or "user")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_cfg(request: Request) -> Config:
    cfg = getattr(request.app.state, "cfg", None)
    if cfg is None:
        raise AppError("server_config_missing")
    return cfg


def _resolve(cfg: Config, token: Optional[str]) -> AuthContext:
    if not token:
        raise Unauthenticated("Access denied. No token provided.")

    try:
        payload = decode_token(token=token, secret=cfg.AUTH_JWT_SECRET)
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired.")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token.")

    if token_type(payload) == REFRESH:
        raise Unauthenticated("Invalid token type.")

    user_id = token_user_id(payload)
    if user_id is None:
        raise Unauthenticated("Invalid token.")

    with connect(cfg.DB_DSN) as conn:
        session = find_active_session(conn, token=token, user_id=user_id)
        if session is None:
            raise Unauthenticated("Session expired or invalid.")

        row = get_user_by_id(conn, user_id)
        if row is None or int(row["is_active"] or 0) != 1:
            raise Unauthenticated("User not found or inactive.")

        touch_session(conn, int(session["session_id"]))
        return AuthContext(user=public_user(row), session=dict(session), token=token)


def get_auth_context(
    cfg: Config = Depends(get_cfg),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> AuthContext:
    """Authenticate a request from `Authorization: Bearer <access token>`.

    Role and plan are read from the users row on every request, so admin edits take
    effect without a re-login.
    """
    token = credentials.credentials if credentials is not None else None
    return _resolve(cfg, token)


def get_optional_auth_context(
    cfg: Config = Depends(get_cfg),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[AuthContext]:
    if credentials is None or not credentials.credentials:
        return None
    try:
        return _resolve(cfg, credentials.credentials)
    except Unauthenticated:
        return None


def require_roles(*roles: str) -> Callable[..., AuthContext]:
    allowed = tuple(roles)

    def _dep(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.role not in allowed:
            raise Forbidden(
                "Access denied. Insufficient permissions.",
                extra={"required_roles": list(allowed), "user_role": ctx.role},
            )
        return ctx

    return _dep


require_admin = require_roles("admin")
require_staff = require_roles("admin", "moderator")


def require_premium(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not ctx.user.get("is_premium"):
        sub = ctx.user.get("subscription") or {}
        raise Forbidden(
            "Premium subscription required.",
            extra={"subscription_status": sub.get("status"), "current_plan": sub.get("plan")},
        )
    return ctx


# -----------------------------
# Subscription limits
# -----------------------------


def storage_used(conn: Any, user_id: int) -> int:
    r = conn.execute(
        "SELECT COALESCE(SUM(size), 0) AS n FROM media WHERE owner_id=? AND is_active=1",
        (int(user_id),),
    ).fetchone()
    return int(r["n"] or 0)


def feature_usage(conn: Any, user: Dict[str, Any], feature: str) -> Optional[int]:
    """Current usage counter for a gated feature, or None if it is not metered."""
    if feature == "media_uploads":
        return int((user.get("stats") or {}).get("media_uploaded") or 0)
    if feature == "storage":
        return storage_used(conn, int(user["user_id"]))
    return None


def enforce_plan_limit(conn: Any, table: Dict[str, PlanLimits], user: Dict[str, Any], feature: str) -> PlanLimits:
    plan = normalize_plan((user.get("subscription") or {}).get("plan"))
    limits = limits_for_plan(table, plan)
    limit = limits.get(feature)
    usage = feature_usage(conn, user, feature)
    if usage is not None and not within_limit(usage, limit):
        if feature == "media_uploads":
            message = f"Upload limit reached. Your {plan} plan allows {describe_limit(limit)} uploads."
        else:
            message = f"Limit reached for {feature}. Your {plan} plan allows {describe_limit(limit)}."
        raise Forbidden(message, extra={"current_usage": usage, "limit": limit, "plan": plan})
    return limits


def check_subscription_limit(feature: str) -> Callable[..., PlanLimits]:
    """Dependency factory: 403 when the caller's plan ceiling for `feature` is reached.

    The caller's resolved limits are returned so handlers can apply the rest
    (e.g. per-file size).
    """

    def _dep(
        cfg: Config = Depends(get_cfg),
        ctx: AuthContext = Depends(get_auth_context),
    ) -> PlanLimits:
        with connect(cfg.DB_DSN) as conn:
            return enforce_plan_limit(conn, cfg.PLAN_LIMITS, ctx.user, feature)

    return _dep


# -----------------------------
# Ownership
# -----------------------------

_OWNED_RESOURCES = {
    "media": ("media", "media_id", "owner_id"),
}


def load_owned_resource(conn: Any, ctx: AuthContext, resource_type: str, resource_id: int) -> Dict[str, Any]:
    table, pk, owner_col = _OWNED_RESOURCES[resource_type]
    row = conn.execute(f"SELECT * FROM {table} WHERE {pk}=?", (int(resource_id),)).fetchone()
    if row is None:
        raise NotFound("Resource not found.")
    if int(row[owner_col]) != ctx.user_id and not ctx.is_admin:
        raise Forbidden("Access denied. You do not own this resource.")
    return dict(row)


def require_ownership(resource_type: str, id_param: Optional[str] = None) -> Callable[..., Dict[str, Any]]:
    """Dependency factory loading the resource named by the route's id parameter.

    Owners and admins pass; everyone else gets 403. Missing resources are 404.
    """
    if resource_type not in _OWNED_RESOURCES:
        raise ValueError(f"unknown_resource_type:{resource_type}")
    param = id_param or _OWNED_RESOURCES[resource_type][1]

    def _dep(
        request: Request,
        cfg: Config = Depends(get_cfg),
        ctx: AuthContext = Depends(get_auth_context),
    ) -> Dict[str, Any]:
        raw = request.path_params.get(param)
        try:
            resource_id = int(raw)
        except (TypeError, ValueError):
            raise NotFound("Resource not found.")
        with connect(cfg.DB_DSN) as conn:
            return load_owned_resource(conn, ctx, resource_type, resource_id)

    return _dep
