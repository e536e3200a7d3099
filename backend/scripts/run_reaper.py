"""
Run the stale-entity reaper once, for cron or manual maintenance.

Usage:
    python -m scripts.run_reaper [--stale-minutes 120] [--retention-hours 24] [--json]

Environment:
    APP_DATABASE_URL: Database connection (default: sqlite:///./dineflow.db)
"""

import argparse
import json
import logging
import sys
from datetime import timedelta
from typing import Optional

from dineflow import config

logging.basicConfig(
    level=config.LOG_LEVEL,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main(argv: Optional[list] = None) -> int:
    parser = argparse.ArgumentParser(description="Deactivate idle diners and purge expired data")
    parser.add_argument("--stale-minutes", type=int, default=config.STALE_DINER_MINUTES)
    parser.add_argument("--retention-hours", type=int, default=config.RETENTION_HOURS)
    parser.add_argument("--batch-size", type=int, default=config.PURGE_BATCH_SIZE)
    parser.add_argument("--time-budget", type=float, default=config.PURGE_TIME_BUDGET_SECONDS)
    parser.add_argument("--json", action="store_true", help="Print the run report as JSON")
    args = parser.parse_args(argv)

    from dineflow.services.reaper import StaleEntityReaper
    from dineflow.storage import SQLAlchemyStorage

    storage = SQLAlchemyStorage()
    try:
        report = StaleEntityReaper(
            storage,
            stale_after=timedelta(minutes=args.stale_minutes),
            retention=timedelta(hours=args.retention_hours),
            batch_size=args.batch_size,
            time_budget=args.time_budget,
        ).run()
    finally:
        storage.close()

    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    return 1 if report.errors else 0


if __name__ == "__main__":
    sys.exit(main())
