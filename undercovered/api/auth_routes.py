from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from undercovered.auth import service
from undercovered.auth.deps import AuthContext, get_auth_context, get_cfg, get_optional_auth_context
from undercovered.config import Config
from undercovered.db import connect

from .common import device_info, ok


router = APIRouter()


class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


@router.post("/register", status_code=201)
def register(req: RegisterRequest, request: Request, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        out = service.register(
            conn,
            cfg,
            email=req.email or "",
            password=req.password or "",
            username=req.username or "",
            first_name=req.first_name or "",
            last_name=req.last_name or "",
            device_info=device_info(request),
        )
    return ok(out, "User registered successfully")


@router.post("/login")
def login(req: LoginRequest, request: Request, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        out = service.login(
            conn,
            cfg,
            email=req.email or "",
            password=req.password or "",
            device_info=device_info(request),
        )
    return ok(out, "Login successful")


@router.post("/refresh")
def refresh(req: RefreshRequest, cfg: Config = Depends(get_cfg)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        out = service.refresh(conn, cfg, refresh_token=req.refresh_token or "")
    return ok(out, "Token refreshed successfully")


@router.post("/logout")
def logout(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        service.logout(conn, session_id=ctx.session_id)
    return ok(message="Logout successful")


@router.post("/logout-all")
def logout_all(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        n = service.logout_all(conn, user_id=ctx.user_id)
    return ok({"revoked_sessions": n}, "Logged out from all devices")


@router.get("/me")
def me(ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    return ok({"user": ctx.user})


@router.get("/sessions")
def sessions(cfg: Config = Depends(get_cfg), ctx: AuthContext = Depends(get_auth_context)) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        items = service.list_sessions(conn, user_id=ctx.user_id, current_session_id=ctx.session_id)
    return ok({"sessions": items})


@router.delete("/sessions/{session_id}")
def revoke_session(
    session_id: int,
    cfg: Config = Depends(get_cfg),
    ctx: AuthContext = Depends(get_auth_context),
) -> Dict[str, Any]:
    with connect(cfg.DB_DSN) as conn:
        service.revoke_user_session(conn, user_id=ctx.user_id, session_id=session_id)
    return ok(message="Session revoked successfully")


@router.get("/check")
def check(ctx: Optional[AuthContext] = Depends(get_optional_auth_context)) -> Dict[str, Any]:
    return ok({"is_authenticated": ctx is not None, "user": ctx.user if ctx is not None else None})
