"""Error taxonomy for the API.

Every error carries the HTTP status it maps to. The API renders them as

    {"success": false, "message": "...", "errors": [...], ...extra}

`errors` is only present for validation failures, where all problems are
collected before raising so the client gets them in one round-trip.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class AppError(Exception):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        errors: Optional[List[Dict[str, Any]]] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = str(message or self.default_message)
        super().__init__(self.message)
        self.errors = list(errors) if errors else None
        self.extra = dict(extra or {})
        self.headers = dict(headers or {})

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            payload["errors"] = self.errors
        payload.update(self.extra)
        return payload


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation failed"


class InvalidCredentials(AppError):
    status_code = 401
    default_message = "Invalid email or password"


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Authentication required."

    def __init__(self, message: Optional[str] = None, **kwargs: Any):
        headers = kwargs.pop("headers", None) or {}
        headers.setdefault("WWW-Authenticate", "Bearer")
        super().__init__(message, headers=headers, **kwargs)


class InvalidToken(Unauthenticated):
    default_message = "Invalid or expired refresh token"


class Forbidden(AppError):
    status_code = 403
    default_message = "Access denied."


class NotFound(AppError):
    status_code = 404
    default_message = "Resource not found."


class UpstreamFailure(AppError):
    status_code = 500
    default_message = "Upstream service unavailable"


class NotConfigured(AppError):
    """A third-party integration (e.g. Stripe) is not configured on this server."""

    status_code = 501
    default_message = "Feature not configured"


def raise_if_errors(errors: List[Dict[str, Any]], message: str = "Validation failed") -> None:
    if errors:
        raise ValidationError(message, errors=errors)
