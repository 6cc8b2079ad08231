from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from undercovered.auth.crud import adjust_media_uploaded
from undercovered.auth.deps import (
    AuthContext,
    check_subscription_limit,
    get_auth_context,
    get_cfg,
    get_optional_auth_context,
    require_ownership,
)
from undercovered.config import Config
from undercovered.db import connect
from undercovered.errors import Forbidden, NotFound, ValidationError, raise_if_errors
from undercovered.media import crud as media_crud
from undercovered.media.storage import FileTooLarge, StoredFile, delete_file, save_upload
from undercovered.plans import PlanLimits, is_unlimited

from .common import ok, pagination


router = APIRouter()


class MediaUpdateRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    visibility: Optional[str] = None
    tags: Optional[List[str]] = None


class CommentRequest(BaseModel):
    text: Optional[str] = None


def _store_file(cfg: Config, ctx: AuthContext, limits: PlanLimits, upload: UploadFile) -> StoredFile:
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")

    mimetype = (upload.content_type or "").lower()
    allowed = cfg.allowed_file_types()
    if mimetype not in allowed:
        raise ValidationError(f"File type not allowed. Allowed types: {', '.join(allowed)}")

    max_size = None if is_unlimited(limits.media_size) else int(limits.media_size)
    try:
        return save_upload(
            upload.file,
            upload_dir=cfg.UPLOAD_DIR,
            public_base_url=cfg.PUBLIC_MEDIA_BASE_URL,
            original_name=upload.filename,
            mimetype=mimetype,
            field_name="media",
            max_size=max_size,
        )
    except FileTooLarge as e:
        plan = (ctx.user.get("subscription") or {}).get("plan") or "free"
        raise ValidationError(
            f"File too large. Maximum size allowed: {round(e.max_size / (1024 * 1024))}MB",
            extra={"max_size": e.max_size, "user_plan": plan},
        )


def _create_records(
    cfg: Config,
    ctx: AuthContext,
    items: List[Dict[str, Any]],
    visibility: str,
) -> List[Dict[str, Any]]:
    """Insert media rows for already stored files; stored files are removed if this fails."""
    try:
        with connect(cfg.DB_DSN) as conn:
            created = [
                media_crud.create_media(
                    conn,
                    owner_id=ctx.user_id,
                    stored=it["stored"],
                    title=it["title"],
                    description=it["description"],
                    visibility=visibility,
                    tags=it["tags"],
                )
                for it in items
            ]
            adjust_media_uploaded(conn, ctx.user_id, len(created))
    except Exception:
        for it in items:
            delete_file(it["stored"].path)
        raise
    return [media_crud.public_media(m) for m in created]


@router.post("", status_code=201)
@router.post("/upload", status_code=201)
def upload_media(
    media: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    visibility: str = Form("public"),
    tags: Optional[str] = Form(None),
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
    limits: PlanLimits = Depends(check_subscription_limit("media_uploads")),
) -> Dict[str, Any]:
    tag_list = media_crud.parse_tags(tags)
    raise_if_errors(
        media_crud.validate_media_fields(
            title=title,
            description=description,
            visibility=visibility,
            tags=tag_list,
            require_title=True,
        )
    )

    stored = _store_file(cfg, ctx, limits, media)
    created = _create_records(
        cfg,
        ctx,
        [{"stored": stored, "title": title or "", "description": description or "", "tags": tag_list}],
        visibility,
    )
    return ok({"media": created[0]}, "Media uploaded successfully")


@router.post("/upload-multiple", status_code=201)
async def upload_multiple(
    request: Request,
    media: List[UploadFile] = File(...),
    visibility: str = Form("public"),
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
    limits: PlanLimits = Depends(check_subscription_limit("media_uploads")),
) -> Dict[str, Any]:
    files = [f for f in media if f is not None and f.filename]
    if not files:
        raise ValidationError("No files uploaded")
    if len(files) > cfg.MAX_FILES_PER_UPLOAD:
        raise ValidationError(
            f"Too many files. Maximum allowed: {cfg.MAX_FILES_PER_UPLOAD}",
            extra={"max_files": cfg.MAX_FILES_PER_UPLOAD},
        )
    if visibility not in media_crud.VISIBILITIES:
        raise ValidationError(
            "Validation failed",
            errors=[{"field": "visibility", "message": "Visibility must be public, private, or unlisted"}],
        )

    # Per-file fields are sent as title_<i>, description_<i>, tags_<i>.
    form = await request.form()
    meta: List[Dict[str, Any]] = []
    for i, f in enumerate(files):
        title = str(form.get(f"title_{i}") or f.filename)[: media_crud.MAX_TITLE]
        description = str(form.get(f"description_{i}") or "")
        raw_tags = form.get(f"tags_{i}")
        meta.append(
            {
                "title": title,
                "description": description,
                "tags": media_crud.parse_tags(str(raw_tags) if raw_tags is not None else None),
            }
        )

    def _work() -> List[Dict[str, Any]]:
        stored: List[StoredFile] = []
        try:
            for f in files:
                stored.append(_store_file(cfg, ctx, limits, f))
        except Exception:
            for s in stored:
                delete_file(s.path)
            raise
        items = [dict(m, stored=s) for m, s in zip(meta, stored)]
        return _create_records(cfg, ctx, items, visibility)

    created = await run_in_threadpool(_work)
    return ok({"media": created, "count": len(created)}, f"{len(created)} files uploaded successfully")


@router.get("")
def list_media(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    visibility: Optional[str] = None,
    owner: Optional[int] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    tags: Optional[List[str]] = Query(None),
    cfg: Config = Depends(get_cfg),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items, total = media_crud.list_media(
            conn,
            viewer_id=ctx.user_id if ctx is not None else None,
            category=category,
            visibility=visibility,
            owner_id=owner,
            tags=tags,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )
    return ok({"media": [media_crud.public_media(m) for m in items], "pagination": pagination(page, limit, total)})


@router.get("/stats/overview")
def stats_overview(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        return ok(media_crud.media_overview(conn, ctx.user_id))


@router.get("/user/{user_id}")
def list_user_media(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    cfg: Config = Depends(get_cfg),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items, total = media_crud.list_user_media(
            conn,
            owner_id=user_id,
            viewer_id=ctx.user_id if ctx is not None else None,
            category=category,
            page=page,
            limit=limit,
        )
    return ok({"media": [media_crud.public_media(m) for m in items], "pagination": pagination(page, limit, total)})


def _load_viewable(conn: Any, media_id: int, ctx: Optional[AuthContext]) -> Dict[str, Any]:
    m = media_crud.get_media(conn, media_id)
    if m is None or not m.get("is_active"):
        raise NotFound("Media not found")
    if not media_crud.can_view_media(
        m,
        viewer_id=ctx.user_id if ctx is not None else None,
        is_admin=ctx.is_admin if ctx is not None else False,
    ):
        raise Forbidden("Access denied to private media")
    return m


@router.get("/{media_id}")
def get_media(
    media_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: Optional[AuthContext] = Depends(get_optional_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        m = _load_viewable(conn, media_id, ctx)
        if ctx is None or int(m["owner_id"]) != ctx.user_id:
            media_crud.record_view(conn, media_id, int(m["owner_id"]))
            m = media_crud.get_media(conn, media_id) or m
        liked = media_crud.has_liked(conn, media_id, ctx.user_id) if ctx is not None else None
        out = media_crud.public_media(m, liked_by_me=liked)
        out["comments"] = media_crud.list_comments(conn, media_id)
    return ok({"media": out})


@router.put("/{media_id}")
def update_media(
    media_id: int,
    req: MediaUpdateRequest,
    cfg: Config = Depends(get_cfg),
    resource: Dict[str, Any] = Depends(require_ownership("media")),
) -> Dict[str, Any]:
    raise_if_errors(
        media_crud.validate_media_fields(
            title=req.title,
            description=req.description,
            visibility=req.visibility,
            tags=req.tags,
        )
    )
    with connect(cfg.DB_DSN) as conn:
        m = media_crud.update_media(
            conn,
            media_id,
            title=req.title,
            description=req.description,
            visibility=req.visibility,
            tags=req.tags,
        )
    return ok({"media": media_crud.public_media(m)}, "Media updated successfully")


@router.delete("/{media_id}")
def delete_media(
    media_id: int,
    cfg: Config = Depends(get_cfg),
    resource: Dict[str, Any] = Depends(require_ownership("media")),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        media_crud.delete_media(conn, media_id)
        adjust_media_uploaded(conn, int(resource["owner_id"]), -1)
    delete_file(resource.get("path"))
    return ok(message="Media deleted successfully")


@router.post("/{media_id}/like")
def like_media(
    media_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        _load_viewable(conn, media_id, ctx)
        liked, count = media_crud.toggle_like(conn, media_id, ctx.user_id)
    return ok({"liked": liked, "like_count": count}, "Media liked" if liked else "Media unliked")


@router.post("/{media_id}/comment", status_code=201)
def comment_media(
    media_id: int,
    req: CommentRequest,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    raise_if_errors(media_crud.validate_comment(req.text))
    with connect(cfg.DB_DSN) as conn:
        _load_viewable(conn, media_id, ctx)
        comment = media_crud.add_comment(conn, media_id, ctx.user_id, req.text or "")
        count = media_crud.comment_count(conn, media_id)
    return ok({"comment": comment, "comment_count": count}, "Comment added successfully")
