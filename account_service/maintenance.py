"""
CLI entrypoint for the maintenance job. Run from cron, e.g.:

  python -m account_service.maintenance

Or hourly: 0 * * * * cd /path/to/account-service && .venv/bin/python -m account_service.maintenance
"""

import logging
import sys

from account_service.core.config import get_settings
from account_service.core.database import SessionLocal
from account_service.services.maintenance import run_maintenance

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Release expired locks and clean up stale uploads."""
    settings = get_settings()
    db = SessionLocal()
    try:
        locks_released, files_deleted = run_maintenance(db, settings)
        logger.info(
            "Maintenance completed: locks_released=%s files_deleted=%s",
            locks_released,
            files_deleted,
        )
        return 0
    except Exception as e:
        logger.exception("Maintenance job failed: %s", e)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
