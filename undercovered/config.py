import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

from undercovered.plans import PlanLimits, default_plan_limits

# Load a local .env file if present.
load_dotenv()


def _env_bool(name: str, default: Optional[bool] = None) -> Optional[bool]:
    """Parse a boolean environment variable.

    Returns:
      - True/False if the env var is set to a recognizable value
      - default if unset or unrecognized

    Accepted truthy: 1, true, yes, y, on
    Accepted falsy:  0, false, no, n, off
    """

    raw = os.environ.get(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    return default


_DEFAULT_ALLOWED_FILE_TYPES = ",".join(
    [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "video/mp4",
        "video/webm",
        "video/quicktime",
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ]
)


@dataclass(frozen=True)
class Config:
    """Runtime configuration.

    IMPORTANT: Provide secrets via environment variables or a .env file.
    Do not hardcode secrets in source code.
    """

    # -----------------
    # Core
    # -----------------
    # Preferred: set UNDERCOVERED_DATABASE_URL (or DATABASE_URL) to use Postgres.
    # Fallback: UNDERCOVERED_DB_PATH for SQLite. "memory://<name>" keeps everything
    # in-process (local development only; nothing survives a restart).
    DB_DSN: str = (
        os.environ.get("UNDERCOVERED_DATABASE_URL")
        or os.environ.get("DATABASE_URL")
        or os.environ.get("UNDERCOVERED_DB_PATH", "./undercovered.sqlite")
    )

    # development | production | test
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development").strip().lower()

    # -----------------
    # Auth (JWT + server-side sessions)
    # -----------------
    # NOTE: In dev, this defaults to a fixed string so you can get started.
    # In production, you MUST set AUTH_JWT_SECRET to a strong random value.
    AUTH_JWT_SECRET: str = os.environ.get("AUTH_JWT_SECRET", "dev_change_me")
    AUTH_ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.environ.get("AUTH_ACCESS_TOKEN_EXPIRE_MINUTES", "10080"))  # 7 days
    AUTH_REFRESH_TOKEN_EXPIRE_MINUTES: int = int(
        os.environ.get("AUTH_REFRESH_TOKEN_EXPIRE_MINUTES", "43200")
    )  # 30 days

    # Bootstrap first admin user if users table is empty
    AUTH_BOOTSTRAP_ADMIN_USERNAME: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_USERNAME", "admin")
    AUTH_BOOTSTRAP_ADMIN_EMAIL: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_EMAIL", "admin@undercovered.local")
    AUTH_BOOTSTRAP_ADMIN_PASSWORD: str = os.environ.get("AUTH_BOOTSTRAP_ADMIN_PASSWORD", "admin123")

    # -----------------
    # CORS (development)
    # -----------------
    CORS_ALLOW_ORIGINS: str = os.environ.get(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
    )

    # -----------------
    # Uploads
    # -----------------
    UPLOAD_DIR: str = os.environ.get("UPLOAD_DIR", "./uploads")
    PUBLIC_MEDIA_BASE_URL: str = os.environ.get("PUBLIC_MEDIA_BASE_URL", "/uploads")
    ALLOWED_FILE_TYPES: str = os.environ.get("ALLOWED_FILE_TYPES", _DEFAULT_ALLOWED_FILE_TYPES)
    MAX_FILES_PER_UPLOAD: int = int(os.environ.get("MAX_FILES_PER_UPLOAD", "10"))

    # Per-plan feature ceilings (uploads, size, storage, api calls). -1 = unlimited.
    PLAN_LIMITS: Dict[str, PlanLimits] = field(default_factory=default_plan_limits)

    # -----------------
    # Billing (Stripe)
    # -----------------
    STRIPE_SECRET_KEY: str | None = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: str | None = os.environ.get("STRIPE_WEBHOOK_SECRET")

    # -----------------
    # Maintenance worker
    # -----------------
    SESSION_CLEANUP_INTERVAL_SECONDS: float = float(os.environ.get("SESSION_CLEANUP_INTERVAL_SECONDS", "300"))
    # Sessions that are no longer active are purged after this many days.
    SESSION_PURGE_AFTER_DAYS: int = int(os.environ.get("SESSION_PURGE_AFTER_DAYS", "30"))

    # If set, the API also exposes uploaded files under PUBLIC_MEDIA_BASE_URL.
    SERVE_UPLOADS: bool = _env_bool("SERVE_UPLOADS", False) is True

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    def allowed_file_types(self) -> list[str]:
        return [t.strip() for t in (self.ALLOWED_FILE_TYPES or "").split(",") if t.strip()]


def load_config() -> Config:
    return Config()
