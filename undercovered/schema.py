"""Database schema for the Undercovered backend.

Timestamps are ISO-8601 TEXT (UTC, with 'Z') for portability across engines. ISO strings
sort lexicographically in time order, so comparisons like `expires_at > now_iso` behave
correctly. Booleans are INTEGER 0/1. List-valued fields are stored as JSON text in
`*_json` columns.

NOTE: The Postgres schema is generated from the SQLite schema with a small set of
transformations (types + autoincrement).
"""

from __future__ import annotations

import re


SCHEMA_SQLITE = r"""
PRAGMA foreign_keys = ON;

-- Users / Auth
CREATE TABLE IF NOT EXISTS users (
    user_id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    phone TEXT,
    avatar TEXT,
    role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user','admin','moderator')),
    is_active INTEGER NOT NULL DEFAULT 1,
    email_verified INTEGER NOT NULL DEFAULT 0,

    -- Subscription
    subscription_plan TEXT NOT NULL DEFAULT 'free',
    subscription_status TEXT NOT NULL DEFAULT 'inactive',
    stripe_customer_id TEXT,
    stripe_subscription_id TEXT,
    current_period_end TEXT,
    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
    subscription_updated_at TEXT,

    -- Preferences
    pref_theme TEXT NOT NULL DEFAULT 'dark',
    pref_notify_email INTEGER NOT NULL DEFAULT 1,
    pref_notify_push INTEGER NOT NULL DEFAULT 1,
    pref_notify_announcements INTEGER NOT NULL DEFAULT 1,
    pref_profile_visible INTEGER NOT NULL DEFAULT 1,
    pref_media_visible INTEGER NOT NULL DEFAULT 1,

    -- Usage stats
    media_uploaded INTEGER NOT NULL DEFAULT 0,
    total_views INTEGER NOT NULL DEFAULT 0,
    login_count INTEGER NOT NULL DEFAULT 0,
    last_login_at TEXT,
    joined_at TEXT NOT NULL,

    created_from_submission_id INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_users_role_active ON users (role, is_active);
CREATE INDEX IF NOT EXISTS idx_users_stripe_customer ON users (stripe_customer_id);
CREATE INDEX IF NOT EXISTS idx_users_plan ON users (subscription_plan, subscription_status);

-- Login sessions (one per device login; tokens are rotated in place on refresh)
CREATE TABLE IF NOT EXISTS sessions (
    session_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    token TEXT NOT NULL UNIQUE,
    refresh_token TEXT NOT NULL UNIQUE,
    device_info_json TEXT NOT NULL DEFAULT '{}',
    login_method TEXT NOT NULL DEFAULT 'email_password',
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','expired','revoked')),
    login_at TEXT NOT NULL,
    last_activity_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    refresh_expires_at TEXT NOT NULL,
    logout_at TEXT,
    logout_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_sessions_user_status ON sessions (user_id, status);
CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions (status, expires_at);

-- Pre-account payment/contact submissions
CREATE TABLE IF NOT EXISTS contact_submissions (
    submission_id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL,
    email TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    phone TEXT,
    selected_plan TEXT NOT NULL CHECK (selected_plan IN ('monthly','6month')),
    payment_method TEXT NOT NULL CHECK (payment_method IN ('interac','paypal')),
    payment_confirmation TEXT NOT NULL,
    confirmation_file_json TEXT,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending','approved','rejected','account_created')),
    notes TEXT NOT NULL DEFAULT '',
    processed_at TEXT,
    created_user_id INTEGER,
    submitted_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_contact_email ON contact_submissions (email);
CREATE INDEX IF NOT EXISTS idx_contact_status ON contact_submissions (status, submitted_at);

-- Media
CREATE TABLE IF NOT EXISTS media (
    media_id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    filename TEXT NOT NULL,
    original_name TEXT NOT NULL,
    mimetype TEXT NOT NULL,
    size BIGINT NOT NULL,
    path TEXT NOT NULL,
    url TEXT NOT NULL,
    thumbnail_url TEXT,
    category TEXT NOT NULL CHECK (category IN ('image','video','audio','document','other')),
    tags_json TEXT NOT NULL DEFAULT '[]',
    visibility TEXT NOT NULL DEFAULT 'public' CHECK (visibility IN ('public','private','unlisted')),
    status TEXT NOT NULL DEFAULT 'ready' CHECK (status IN ('processing','ready','failed')),
    views INTEGER NOT NULL DEFAULT 0,
    downloads INTEGER NOT NULL DEFAULT 0,
    likes INTEGER NOT NULL DEFAULT 0,
    shares INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    uploaded_at TEXT NOT NULL,
    last_accessed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (owner_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_media_owner_created ON media (owner_id, created_at);
CREATE INDEX IF NOT EXISTS idx_media_category_visibility ON media (category, visibility);

CREATE TABLE IF NOT EXISTS media_likes (
    media_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (media_id, user_id),
    FOREIGN KEY (media_id) REFERENCES media(media_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS media_comments (
    comment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    media_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    text TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (media_id) REFERENCES media(media_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_media_comments_media ON media_comments (media_id, created_at);

-- Announcements
CREATE TABLE IF NOT EXISTS announcements (
    announcement_id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'info',
    priority TEXT NOT NULL DEFAULT 'medium',
    author_id INTEGER NOT NULL,

    -- Audience targeting
    target_users_json TEXT NOT NULL DEFAULT '[]',
    target_roles_json TEXT NOT NULL DEFAULT '[]',
    target_plans_json TEXT NOT NULL DEFAULT '[]',
    is_global INTEGER NOT NULL DEFAULT 0,

    -- Visibility
    is_published INTEGER NOT NULL DEFAULT 0,
    published_at TEXT,
    scheduled_for TEXT,
    expires_at TEXT,

    -- Display
    show_on_dashboard INTEGER NOT NULL DEFAULT 1,
    show_as_popup INTEGER NOT NULL DEFAULT 0,
    show_in_notifications INTEGER NOT NULL DEFAULT 1,
    allow_dismiss INTEGER NOT NULL DEFAULT 1,
    sticky INTEGER NOT NULL DEFAULT 0,

    actions_json TEXT NOT NULL DEFAULT '[]',
    views INTEGER NOT NULL DEFAULT 0,
    clicks INTEGER NOT NULL DEFAULT 0,
    dismissals INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (author_id) REFERENCES users(user_id)
);
CREATE INDEX IF NOT EXISTS idx_announcements_published ON announcements (is_active, is_published, scheduled_for);
CREATE INDEX IF NOT EXISTS idx_announcements_author ON announcements (author_id, created_at);

CREATE TABLE IF NOT EXISTS announcement_views (
    announcement_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    user_agent TEXT,
    ip TEXT,
    viewed_at TEXT NOT NULL,
    PRIMARY KEY (announcement_id, user_id),
    FOREIGN KEY (announcement_id) REFERENCES announcements(announcement_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS announcement_clicks (
    click_id INTEGER PRIMARY KEY AUTOINCREMENT,
    announcement_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    action TEXT,
    clicked_at TEXT NOT NULL,
    FOREIGN KEY (announcement_id) REFERENCES announcements(announcement_id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS announcement_dismissals (
    announcement_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    dismissed_at TEXT NOT NULL,
    PRIMARY KEY (announcement_id, user_id),
    FOREIGN KEY (announcement_id) REFERENCES announcements(announcement_id) ON DELETE CASCADE
);

-- Payments observed through Stripe webhooks
CREATE TABLE IF NOT EXISTS payments (
    payment_id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    stripe_payment_intent_id TEXT UNIQUE,
    amount BIGINT NOT NULL DEFAULT 0,
    currency TEXT NOT NULL DEFAULT 'usd',
    status TEXT NOT NULL,
    description TEXT,
    failure_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_payments_user ON payments (user_id, created_at);

-- Stripe webhook idempotency
CREATE TABLE IF NOT EXISTS stripe_events (
    event_id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    received_at TEXT NOT NULL
);
"""


def _sqlite_to_postgres(ddl: str) -> str:
    # Remove SQLite pragmas
    lines: list[str] = []
    for line in ddl.splitlines():
        if line.strip().upper().startswith("PRAGMA "):
            continue
        lines.append(line)
    out = "\n".join(lines)

    # Types
    out = re.sub(r"\bREAL\b", "DOUBLE PRECISION", out)

    # AUTOINCREMENT primary keys
    out = re.sub(
        r"INTEGER\s+PRIMARY\s+KEY\s+AUTOINCREMENT",
        "BIGSERIAL PRIMARY KEY",
        out,
        flags=re.IGNORECASE,
    )
    out = re.sub(r"\bAUTOINCREMENT\b", "", out, flags=re.IGNORECASE)

    return out


SCHEMA_POSTGRES = _sqlite_to_postgres(SCHEMA_SQLITE)


def get_schema_sql(dialect: str) -> str:
    d = (dialect or "").lower()
    if d.startswith("post"):
        return SCHEMA_POSTGRES
    return SCHEMA_SQLITE
