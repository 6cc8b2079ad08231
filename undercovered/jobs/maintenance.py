from __future__ import annotations

import time
from typing import Dict, Optional

from undercovered.auth.sessions import expire_stale_sessions, purge_inactive_sessions
from undercovered.config import Config
from undercovered.db import connect


def _debug(msg: str) -> None:
    print(f"[maintenance] {msg}")


def run_maintenance_once(cfg: Config) -> Dict[str, int]:
    """Expire sessions past their window, then drop old non-active ones."""
    with connect(cfg.DB_DSN) as conn:
        expired = expire_stale_sessions(conn)
        purged = purge_inactive_sessions(conn, older_than_days=cfg.SESSION_PURGE_AFTER_DAYS)
    if expired or purged:
        _debug(f"Sessions expired={expired} purged={purged}")
    return {"expired": expired, "purged": purged}


def run_maintenance_forever(cfg: Config, *, max_iterations: Optional[int] = None) -> None:
    _debug(f"Maintenance starting; db={cfg.DB_DSN} interval={cfg.SESSION_CLEANUP_INTERVAL_SECONDS}s")
    n = 0
    while max_iterations is None or n < max_iterations:
        n += 1
        try:
            run_maintenance_once(cfg)
        except Exception as e:
            # Keep the loop alive; the next tick retries.
            _debug(f"Maintenance error: {e}")
        if max_iterations is None or n < max_iterations:
            time.sleep(cfg.SESSION_CLEANUP_INTERVAL_SECONDS)
