#!/usr/bin/env python3
"""
Daily trial maintenance: logs warnings for trials ending within a week and
downgrades expired trials to FREE.

Usage:
  python trial_maintenance.py [--batch-size 100] [--skip-warnings]

Cron example (every day at 02:00):
  0 2 * * * cd /path/to/backend && python trial_maintenance.py >> trials.log 2>&1
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from sqlmodel import Session

from restohub.core.errors import DomainError
from restohub.core.logging_setup import logger
from restohub.db.session import engine
from restohub.services.cache import RedisCache
from restohub.services.trial import TrialService


def main() -> int:
    parser = argparse.ArgumentParser(description="Expire finished trials and warn trials about to end")
    parser.add_argument("--batch-size", type=int, default=100, help="Stores processed per run (default: 100)")
    parser.add_argument("--skip-warnings", action="store_true", help="Only downgrade expired trials")
    args = parser.parse_args()

    cache = RedisCache.from_settings()
    try:
        with Session(engine) as session:
            service = TrialService(session, cache)
            warned = 0 if args.skip_warnings else service.send_trial_warnings(args.batch_size)
            downgraded = service.auto_downgrade_expired_trials(args.batch_size)
    except DomainError as exc:
        logger.exception("[trial_maintenance] run failed: %s", exc.detail)
        return 1
    finally:
        cache.close()

    logger.info("[trial_maintenance] %s warnings logged, %s trials downgraded", warned, downgraded)
    return 0


if __name__ == "__main__":
    sys.exit(main())
