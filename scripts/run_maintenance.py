import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from undercovered.config import load_config
from undercovered.jobs.maintenance import run_maintenance_forever


def main() -> None:
    cfg = load_config()
    run_maintenance_forever(cfg)


if __name__ == "__main__":
    main()
