"""Authentication / authorization helpers.

- Users table (username/email/password hash + role + subscription)
- Sessions table binding each access/refresh token pair to one login
- JWT tokens carrying only the user id; role and plan are re-read per request

Requests authenticate with `Authorization: Bearer <access token>`.
"""

from .deps import (
    AuthContext,
    check_subscription_limit,
    get_auth_context,
    get_optional_auth_context,
    require_admin,
    require_ownership,
    require_premium,
    require_roles,
    require_staff,
)
from .crud import bootstrap_admin_if_needed, create_user

__all__ = [
    "AuthContext",
    "check_subscription_limit",
    "get_auth_context",
    "get_optional_auth_context",
    "require_admin",
    "require_ownership",
    "require_premium",
    "require_roles",
    "require_staff",
    "bootstrap_admin_if_needed",
    "create_user",
]
