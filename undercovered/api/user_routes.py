from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from undercovered.auth.deps import AuthContext, get_auth_context, get_cfg, get_optional_auth_context, require_admin
from undercovered.auth.sessions import revoke_all_user_sessions
from undercovered.config import Config
from undercovered.db import connect
from undercovered.errors import NotFound
from undercovered.users import profile

from .common import ok, pagination


router = APIRouter()


class ProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None


class PreferencesRequest(BaseModel):
    theme: Optional[str] = None
    notifications: Optional[Dict[str, Optional[bool]]] = None
    privacy: Optional[Dict[str, Optional[bool]]] = None


class SubscriptionPatch(BaseModel):
    plan: Optional[str] = None
    status: Optional[str] = None


class AdminUserRequest(BaseModel):
    role: Optional[str] = None
    is_active: Optional[bool] = None
    subscription: Optional[SubscriptionPatch] = None


@router.get("/profile")
def get_profile(ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    return ok({"user": ctx.user})


@router.put("/profile")
def update_profile(
    req: ProfileRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = profile.update_profile(
            conn,
            ctx.user_id,
            first_name=req.first_name,
            last_name=req.last_name,
            username=req.username,
            phone=req.phone,
            avatar=req.avatar,
        )
    return ok({"user": user}, "Profile updated successfully")


@router.put("/preferences")
def update_preferences(
    req: PreferencesRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        prefs = profile.update_preferences(
            conn,
            ctx.user_id,
            theme=req.theme,
            notifications=req.notifications,
            privacy=req.privacy,
        )
    return ok({"preferences": prefs}, "Preferences updated successfully")


@router.get("/stats")
def stats(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return ok({"stats": profile.user_stats(conn, ctx.user_id)})


@router.get("/dashboard")
def dashboard(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return ok(profile.dashboard(conn, ctx.user_id))


@router.get("/activity")
def activity(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[str] = None,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items = profile.activity_log(conn, ctx.user_id, type=type)
    start = (page - 1) * limit
    return ok({"activities": items[start : start + limit], "pagination": pagination(page, limit, len(items))})


@router.get("/search")
def search_users(
    q: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    cfg: Config = Depends(get_cfg),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        users, total = profile.search_users(conn, q, page=page, limit=limit)
    return ok({"users": users, "pagination": pagination(page, limit, total)})


# -----------------------------
# Admin
# -----------------------------


@router.get("/admin/users")
def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[str] = None,
    plan: Optional[str] = None,
    is_active: Optional[bool] = None,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        users, total = profile.admin_list_users(
            conn,
            search=search,
            role=role,
            plan=plan,
            is_active=is_active,
            page=page,
            limit=limit,
        )
    return ok({"users": users, "pagination": pagination(page, limit, total)})


@router.put("/admin/users/{user_id}")
def admin_update_user(
    user_id: int,
    req: AdminUserRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    sub = req.subscription or SubscriptionPatch()
    with connect(cfg.DB_DSN) as conn:
        user = profile.admin_update_user(
            conn,
            user_id,
            role=req.role,
            is_active=req.is_active,
            plan=sub.plan,
            subscription_status=sub.status,
        )
    return ok({"user": user}, "User updated successfully")


@router.post("/admin/users/{user_id}/revoke-sessions")
def admin_revoke_sessions(
    user_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        if conn.execute("SELECT 1 FROM users WHERE user_id=?", (int(user_id),)).fetchone() is None:
            raise NotFound("User not found")
        n = revoke_all_user_sessions(conn, user_id, reason="admin_revoke")
    return ok({"revoked_sessions": n}, "User sessions revoked")


# Keep below every fixed path in this router.
@router.get("/{user_id:int}")
def get_public_profile(
    user_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        user = profile.public_profile(
            conn,
            user_id,
            viewer_id=ctx.user_id if ctx is not None else None,
            viewer_is_admin=ctx.is_admin if ctx is not None else False,
        )
    return ok({"user": user})
