"""Account and session operations behind the /api/auth routes.

Every function takes an open connection so the caller controls the unit of work.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import jwt

from undercovered.config import Config
from undercovered.errors import InvalidCredentials, InvalidToken, NotFound, ValidationError, raise_if_errors
from undercovered.util.normalization import (
    check_length,
    field_error,
    is_valid_email,
    is_valid_username,
    normalize_email,
    normalize_username,
)

from .crud import create_user, find_conflicting_user, get_user_by_id, public_user, touch_last_login, verify_user_credentials
from .security import REFRESH, create_token_pair, decode_token, token_type, token_user_id
from .sessions import (
    create_session,
    find_refreshable_session,
    get_session_by_id,
    list_active_sessions,
    public_session,
    revoke_all_user_sessions,
    revoke_session,
    rotate_session_tokens,
)


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


MIN_PASSWORD_LENGTH = 6


def _issue_session(
    conn: Any,
    cfg: Config,
    *,
    user_id: int,
    device_info: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    tokens = create_token_pair(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=user_id,
        access_expires_minutes=cfg.AUTH_ACCESS_TOKEN_EXPIRE_MINUTES,
        refresh_expires_minutes=cfg.AUTH_REFRESH_TOKEN_EXPIRE_MINUTES,
    )
    session = create_session(
        conn,
        user_id=user_id,
        tokens=tokens,
        access_expires_minutes=cfg.AUTH_ACCESS_TOKEN_EXPIRE_MINUTES,
        refresh_expires_minutes=cfg.AUTH_REFRESH_TOKEN_EXPIRE_MINUTES,
        device_info=device_info,
    )
    return {
        "session_id": int(session["session_id"]),
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "token_type": "bearer",
        "expires_in": int(cfg.AUTH_ACCESS_TOKEN_EXPIRE_MINUTES) * 60,
    }


def validate_registration(
    *,
    email: str,
    password: str,
    username: str,
    first_name: str,
    last_name: str,
) -> List[Dict[str, Any]]:
    errors: List[Dict[str, Any]] = []
    if not is_valid_email(email):
        errors.append(field_error("email", "Please provide a valid email"))
    if len(password or "") < MIN_PASSWORD_LENGTH:
        errors.append(field_error("password", f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"))
    if not is_valid_username(username):
        errors.append(field_error("username", "Username must be 3-30 characters and contain only letters and numbers"))
    check_length(errors, "first_name", first_name, min_len=1, max_len=50, message="First name is required and must be less than 50 characters")
    check_length(errors, "last_name", last_name, min_len=1, max_len=50, message="Last name is required and must be less than 50 characters")
    return errors


def register(
    conn: Any,
    cfg: Config,
    *,
    email: str,
    password: str,
    username: str,
    first_name: str,
    last_name: str,
    device_info: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    raise_if_errors(
        validate_registration(
            email=email,
            password=password,
            username=username,
            first_name=first_name,
            last_name=last_name,
        )
    )

    e = normalize_email(email)
    u = normalize_username(username)
    conflict = find_conflicting_user(conn, email=e, username=u)
    if conflict == "email_exists":
        raise ValidationError("User with this email already exists", errors=[field_error("email", "User with this email already exists")])
    if conflict == "username_exists":
        raise ValidationError("Username is already taken", errors=[field_error("username", "Username is already taken")])

    user = create_user(
        conn,
        username=u,
        email=e,
        password=password,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
    )
    issued = _issue_session(conn, cfg, user_id=user["user_id"], device_info=device_info)
    touch_last_login(conn, user["user_id"])

    row = get_user_by_id(conn, user["user_id"])
    _debug(f"Registered user_id={user['user_id']} username={u}")
    return {"user": public_user(row), **issued}


def login(
    conn: Any,
    cfg: Config,
    *,
    email: str,
    password: str,
    device_info: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    row = verify_user_credentials(conn, email, password)
    if row is None:
        raise InvalidCredentials("Invalid email or password")

    user_id = int(row["user_id"])
    issued = _issue_session(conn, cfg, user_id=user_id, device_info=device_info)
    touch_last_login(conn, user_id)
    return {"user": public_user(get_user_by_id(conn, user_id)), **issued}


def refresh(conn: Any, cfg: Config, *, refresh_token: str) -> Dict[str, Any]:
    try:
        payload = decode_token(token=refresh_token, secret=cfg.AUTH_JWT_SECRET)
    except jwt.InvalidTokenError:
        raise InvalidToken("Invalid or expired refresh token")

    if token_type(payload) != REFRESH:
        raise InvalidToken("Invalid token type")

    user_id = token_user_id(payload)
    if user_id is None:
        raise InvalidToken("Invalid or expired refresh token")

    session = find_refreshable_session(conn, refresh_token=refresh_token, user_id=user_id)
    if session is None:
        raise InvalidToken("Invalid or expired refresh token")

    user = get_user_by_id(conn, user_id)
    if user is None or int(user["is_active"] or 0) != 1:
        raise InvalidToken("Invalid or expired refresh token")

    tokens = create_token_pair(
        secret=cfg.AUTH_JWT_SECRET,
        user_id=user_id,
        access_expires_minutes=cfg.AUTH_ACCESS_TOKEN_EXPIRE_MINUTES,
        refresh_expires_minutes=cfg.AUTH_REFRESH_TOKEN_EXPIRE_MINUTES,
    )
    rotated = rotate_session_tokens(
        conn,
        session_id=int(session["session_id"]),
        presented_refresh_token=refresh_token,
        tokens=tokens,
        access_expires_minutes=cfg.AUTH_ACCESS_TOKEN_EXPIRE_MINUTES,
        refresh_expires_minutes=cfg.AUTH_REFRESH_TOKEN_EXPIRE_MINUTES,
    )
    if not rotated:
        _debug(f"Refresh token already used for session_id={session['session_id']}")
        raise InvalidToken("Invalid or expired refresh token")

    return {
        "access_token": tokens.access_token,
        "refresh_token": tokens.refresh_token,
        "token_type": "bearer",
        "expires_in": int(cfg.AUTH_ACCESS_TOKEN_EXPIRE_MINUTES) * 60,
    }


def logout(conn: Any, *, session_id: int) -> None:
    revoke_session(conn, session_id, reason="user_logout")


def logout_all(conn: Any, *, user_id: int) -> int:
    return revoke_all_user_sessions(conn, user_id, reason="user_logout_all")


def list_sessions(conn: Any, *, user_id: int, current_session_id: int) -> List[Dict[str, Any]]:
    return [
        public_session(s, current_session_id=current_session_id)
        for s in list_active_sessions(conn, user_id)
    ]


def revoke_user_session(conn: Any, *, user_id: int, session_id: int) -> None:
    row = get_session_by_id(conn, session_id)
    if row is None or int(row["user_id"]) != int(user_id) or row["status"] != "active":
        raise NotFound("Session not found")
    revoke_session(conn, session_id, reason="user_revoke")
