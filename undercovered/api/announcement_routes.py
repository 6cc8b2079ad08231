from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from undercovered.announcements import crud as ann_crud
from undercovered.announcements.visibility import can_anonymous_view, can_user_view
from undercovered.auth.deps import (
    AuthContext,
    get_auth_context,
    get_cfg,
    get_optional_auth_context,
    require_admin,
    require_staff,
)
from undercovered.config import Config
from undercovered.db import connect
from undercovered.errors import Forbidden, NotFound, ValidationError, raise_if_errors

from .common import client_ip, ok, pagination


router = APIRouter()


class AudienceModel(BaseModel):
    target_users: Optional[List[int]] = None
    target_roles: Optional[List[str]] = None
    target_plans: Optional[List[str]] = None
    is_global: Optional[bool] = None


class DisplayModel(BaseModel):
    show_on_dashboard: Optional[bool] = None
    show_as_popup: Optional[bool] = None
    show_in_notifications: Optional[bool] = None
    allow_dismiss: Optional[bool] = None
    sticky: Optional[bool] = None


class ActionModel(BaseModel):
    label: Optional[str] = None
    url: Optional[str] = None
    action: Optional[str] = None
    style: Optional[str] = None


class AnnouncementRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    priority: Optional[str] = None
    audience: Optional[AudienceModel] = None
    display: Optional[DisplayModel] = None
    actions: Optional[List[ActionModel]] = None
    scheduled_for: Optional[str] = None
    expires_at: Optional[str] = None
    is_active: Optional[bool] = None


class PublishRequest(BaseModel):
    scheduled_for: Optional[str] = None


class ClickRequest(BaseModel):
    action: Optional[str] = None


def _dump(model: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    if model is None:
        return None
    return {k: v for k, v in model.model_dump().items() if v is not None}


def _actions(req: AnnouncementRequest) -> Optional[List[Dict[str, Any]]]:
    if req.actions is None:
        return None
    return [a.model_dump() for a in req.actions]


def _load(conn: Any, announcement_id: int) -> Dict[str, Any]:
    ann = ann_crud.get_announcement(conn, announcement_id)
    if ann is None:
        raise NotFound("Announcement not found")
    return ann


@router.post("", status_code=201)
def create_announcement(
    req: AnnouncementRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_staff),
) -> Dict[str, Any]:
    audience = _dump(req.audience)
    actions = _actions(req)
    raise_if_errors(
        ann_crud.validate_announcement(
            title=req.title,
            content=req.content,
            type=req.type,
            priority=req.priority,
            audience=audience,
            actions=actions,
            scheduled_for=req.scheduled_for,
            expires_at=req.expires_at,
        )
    )
    with connect(cfg.DB_DSN) as conn:
        ann = ann_crud.create_announcement(
            conn,
            author_id=ctx.user_id,
            title=req.title or "",
            content=req.content or "",
            type=req.type or "info",
            priority=req.priority or "medium",
            audience=audience,
            display=_dump(req.display),
            actions=actions,
            scheduled_for=req.scheduled_for,
            expires_at=req.expires_at,
        )
    return ok({"announcement": ann}, "Announcement created successfully")


@router.get("")
def list_announcements(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    type: Optional[str] = None,
    priority: Optional[str] = None,
    include_dismissed: bool = False,
    cfg: Config = Depends(get_cfg),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        candidates = ann_crud.list_announcements(conn, type=type, priority=priority, global_only=ctx is None)
        if ctx is None:
            visible = [a for a in candidates if can_anonymous_view(a)]
        else:
            dismissed = ann_crud.dismissed_ids(conn, ctx.user_id)
            visible = []
            for a in candidates:
                was_dismissed = a["announcement_id"] in dismissed
                if can_user_view(a, ctx.user, dismissed_by_user=was_dismissed and not include_dismissed):
                    a["dismissed"] = was_dismissed
                    visible.append(a)

    total = len(visible)
    start = (page - 1) * limit
    return ok({"announcements": visible[start : start + limit], "pagination": pagination(page, limit, total)})


@router.get("/{announcement_id}")
def get_announcement(
    announcement_id: int,
    request: Request,
    cfg: Config = Depends(get_cfg),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        ann = _load(conn, announcement_id)
        if ctx is None:
            if not can_anonymous_view(ann):
                raise Forbidden("Access denied to this announcement")
            return ok({"announcement": ann})

        staff = ctx.role in ("admin", "moderator")
        dismissed = ann_crud.is_dismissed(conn, announcement_id, ctx.user_id)
        # A dismissed announcement can still be opened directly.
        if not staff and not can_user_view(ann, ctx.user):
            raise Forbidden("Access denied to this announcement")

        ann_crud.add_view(
            conn,
            announcement_id,
            ctx.user_id,
            user_agent=request.headers.get("user-agent"),
            ip=client_ip(request),
        )
        ann = _load(conn, announcement_id)
        ann["dismissed"] = dismissed
    return ok({"announcement": ann})


@router.put("/{announcement_id}")
def update_announcement(
    announcement_id: int,
    req: AnnouncementRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_staff),
) -> Dict[str, Any]:
    audience = _dump(req.audience)
    actions = _actions(req)
    raise_if_errors(
        ann_crud.validate_announcement(
            title=req.title,
            content=req.content,
            type=req.type,
            priority=req.priority,
            audience=audience,
            actions=actions,
            scheduled_for=req.scheduled_for,
            expires_at=req.expires_at,
            partial=True,
        )
    )
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        ann = ann_crud.update_announcement(
            conn,
            announcement_id,
            title=req.title,
            content=req.content,
            type=req.type,
            priority=req.priority,
            audience=audience,
            display=_dump(req.display),
            actions=actions,
            scheduled_for=req.scheduled_for,
            expires_at=req.expires_at,
            is_active=req.is_active,
        )
    return ok({"announcement": ann}, "Announcement updated successfully")


@router.delete("/{announcement_id}")
def delete_announcement(
    announcement_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_admin),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        ann_crud.delete_announcement(conn, announcement_id)
    return ok(message="Announcement deleted successfully")


@router.post("/{announcement_id}/publish")
def publish_announcement(
    announcement_id: int,
    req: Optional[PublishRequest] = None,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_staff),
) -> Dict[str, Any]:
    scheduled_for = req.scheduled_for if req is not None else None
    errors: List[Dict[str, Any]] = []
    ann_crud.check_datetime(errors, "scheduled_for", scheduled_for)
    raise_if_errors(errors)
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        ann = ann_crud.publish_announcement(conn, announcement_id, scheduled_for)
    msg = "Announcement scheduled successfully" if ann.get("scheduled_for") else "Announcement published successfully"
    return ok({"announcement": ann}, msg)


@router.post("/{announcement_id}/unpublish")
def unpublish_announcement(
    announcement_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_staff),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        ann = ann_crud.unpublish_announcement(conn, announcement_id)
    return ok({"announcement": ann}, "Announcement unpublished successfully")


@router.post("/{announcement_id}/dismiss")
def dismiss_announcement(
    announcement_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        ann = _load(conn, announcement_id)
        if not ann.get("allow_dismiss"):
            raise ValidationError("This announcement cannot be dismissed")
        ann_crud.dismiss(conn, announcement_id, ctx.user_id)
    return ok(message="Announcement dismissed successfully")


@router.post("/{announcement_id}/undismiss")
def undismiss_announcement(
    announcement_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        ann_crud.undismiss(conn, announcement_id, ctx.user_id)
    return ok(message="Announcement restored successfully")


@router.post("/{announcement_id}/click")
def click_announcement(
    announcement_id: int,
    req: Optional[ClickRequest] = None,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        ann_crud.add_click(conn, announcement_id, ctx.user_id, req.action if req is not None else None)
    return ok(message="Click recorded successfully")


@router.get("/{announcement_id}/stats")
def announcement_stats(
    announcement_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(require_staff),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _load(conn, announcement_id)
        stats = ann_crud.announcement_stats(conn, announcement_id)
    return ok({"stats": stats})
