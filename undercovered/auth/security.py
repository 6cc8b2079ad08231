from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext


_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_JWT_ALG = "HS256"

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd.verify(password, password_hash)
    except (ValueError, TypeError):
        return False


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def create_token(
    *,
    secret: str,
    user_id: int,
    token_type: str,
    expires_minutes: int,
    now: Optional[datetime] = None,
) -> str:
    """Mint a signed token.

    Claims are deliberately minimal: the user id, the token type and a random jti
    (so two tokens minted in the same second still differ). Role and plan are
    always re-read from the users table on each request.
    """
    if not secret:
        raise ValueError("jwt_secret_blank")
    if token_type not in (ACCESS, REFRESH):
        raise ValueError("invalid_token_type")

    issued = now or datetime.now(timezone.utc)
    exp = issued + timedelta(minutes=max(1, int(expires_minutes)))

    payload: Dict[str, Any] = {
        "sub": str(user_id),
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": int(issued.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=_JWT_ALG)


def create_token_pair(
    *,
    secret: str,
    user_id: int,
    access_expires_minutes: int,
    refresh_expires_minutes: int,
) -> TokenPair:
    return TokenPair(
        access_token=create_token(
            secret=secret, user_id=user_id, token_type=ACCESS, expires_minutes=access_expires_minutes
        ),
        refresh_token=create_token(
            secret=secret, user_id=user_id, token_type=REFRESH, expires_minutes=refresh_expires_minutes
        ),
    )


def decode_token(*, token: str, secret: str) -> Dict[str, Any]:
    """Verify signature + expiry. Raises jwt.ExpiredSignatureError / jwt.InvalidTokenError."""
    if not token:
        raise jwt.InvalidTokenError("token_blank")
    if not secret:
        raise ValueError("jwt_secret_blank")
    return jwt.decode(token, secret, algorithms=[_JWT_ALG])


def token_type(payload: Dict[str, Any]) -> str:
    # Tokens without an explicit type are access tokens.
    return str(payload.get("type") or ACCESS)


def token_user_id(payload: Dict[str, Any]) -> Optional[int]:
    sub = payload.get("sub")
    if sub is None or sub == "":
        return None
    try:
        return int(sub)
    except (TypeError, ValueError):
        return None
