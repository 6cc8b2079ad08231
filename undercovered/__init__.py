"""Undercovered - subscription media-sharing backend.

Core concepts:
- Accounts carry a role (user/admin/moderator) and a subscription plan.
- Every login creates a server-side session bound to an access/refresh token pair.
- Media, announcements and contact submissions are plain CRUD resources behind
  the authorization dependencies in `undercovered.auth`.

Run `scripts/init_db.py` then `scripts/run_api.py` to serve the API.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
