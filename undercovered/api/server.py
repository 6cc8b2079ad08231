from __future__ import annotations

import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from undercovered import __version__
from undercovered.auth.crud import bootstrap_admin_if_needed
from undercovered.config import Config, load_config
from undercovered.db import init_db
from undercovered.errors import AppError

from .announcement_routes import router as announcement_router
from .auth_routes import router as auth_router
from .contact_routes import router as contact_router
from .media_routes import router as media_router
from .payment_routes import router as payment_router
from .user_routes import router as user_router


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


def _validation_errors(exc: RequestValidationError) -> List[Dict[str, str]]:
    out: List[Dict[str, str]] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        out.append({"field": ".".join(loc) or "request", "message": str(err.get("msg") or "Invalid value")})
    return out


def _install_error_handlers(app: FastAPI, cfg: Config) -> None:
    @app.exception_handler(AppError)
    def _app_error(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=exc.headers or None)

    @app.exception_handler(RequestValidationError)
    def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": "Validation failed", "errors": _validation_errors(exc)},
        )

    @app.exception_handler(StarletteHTTPException)
    def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        if exc.status_code == 404 and message == "Not Found":
            message = "Route not found"
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        _debug(f"Unhandled error on {request.method} {request.url.path}: {exc!r}")
        _debug(traceback.format_exc())
        content: Dict[str, Any] = {"success": False, "message": "Internal server error"}
        if not cfg.is_production:
            content["error"] = str(exc)
        return JSONResponse(status_code=500, content=content)


def create_app(cfg: Optional[Config] = None) -> FastAPI:
    cfg = cfg or load_config()
    app = FastAPI(title="Undercovered API", version=__version__)
    app.state.cfg = cfg

    # CORS is mainly needed for local development (Vite on :5173 -> API on :8000).
    _cors_origins = [o.strip() for o in (cfg.CORS_ALLOW_ORIGINS or "").split(",") if o.strip()]
    if _cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=_cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _install_error_handlers(app, cfg)

    @app.on_event("startup")
    def _on_startup() -> None:
        # Ensure schema exists.
        init_db(cfg.DB_DSN)

        # Bootstrap first admin if needed (only when users table is empty)
        boot = bootstrap_admin_if_needed(cfg)
        if boot:
            _debug(f"Bootstrapped initial admin user: username={boot.get('username')} role={boot.get('role')}")

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"success": True, "status": "ok", "environment": cfg.ENVIRONMENT}

    app.include_router(auth_router, prefix="/api/auth", tags=["auth"])
    app.include_router(media_router, prefix="/api/media", tags=["media"])
    app.include_router(announcement_router, prefix="/api/announcements", tags=["announcements"])
    app.include_router(user_router, prefix="/api/user", tags=["user"])
    app.include_router(contact_router, prefix="/api/contact", tags=["contact"])
    app.include_router(payment_router, prefix="/api/payment", tags=["payment"])

    if cfg.SERVE_UPLOADS:
        Path(cfg.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)
        app.mount(cfg.PUBLIC_MEDIA_BASE_URL, StaticFiles(directory=cfg.UPLOAD_DIR), name="uploads")

    return app


app = create_app()
