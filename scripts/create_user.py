"""Create a user directly in the database.

Usage:
  python scripts/create_user.py --email alice@example.com --username alice --password '...' --role user --plan premium

NOTE: This is intended for local/dev.
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from undercovered.auth.crud import ROLES, create_user
from undercovered.config import load_config
from undercovered.db import connect, init_db
from undercovered.plans import PLANS


def main() -> None:
    ap = argparse.ArgumentParser()
    ap.add_argument("--email", required=True)
    ap.add_argument("--username", required=True)
    ap.add_argument("--password", required=True)
    ap.add_argument("--role", choices=list(ROLES), default="user")
    ap.add_argument("--plan", choices=list(PLANS), default="free")
    args = ap.parse_args()

    cfg = load_config()
    init_db(cfg.DB_DSN)

    status = "inactive" if args.plan == "free" else "active"
    with connect(cfg.DB_DSN) as conn:
        u = create_user(
            conn,
            email=args.email,
            username=args.username,
            password=args.password,
            role=args.role,
            plan=args.plan,
            subscription_status=status,
        )

    print("Created user:")
    print(u)


if __name__ == "__main__":
    main()
