import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from undercovered.auth.crud import bootstrap_admin_if_needed
from undercovered.config import load_config
from undercovered.db import init_db
from undercovered.media.storage import UPLOAD_SUBDIRS


def main() -> None:
    cfg = load_config()
    init_db(cfg.DB_DSN)
    print(f"Schema ready: {cfg.DB_DSN}")

    for sub in UPLOAD_SUBDIRS:
        Path(cfg.UPLOAD_DIR, sub).mkdir(parents=True, exist_ok=True)
    print(f"Upload directories ready under {cfg.UPLOAD_DIR}")

    boot = bootstrap_admin_if_needed(cfg)
    if boot:
        print(f"Bootstrapped admin {boot.get('email')} (change the password after first login)")


if __name__ == "__main__":
    main()
