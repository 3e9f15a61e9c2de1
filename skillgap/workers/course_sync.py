import sys
from typing import Dict

from skillgap.core.logging import logger, setup_logging
from skillgap.services.graph.sync import bulk_sync


def run_once() -> Dict:
    """One repair pass over every course still flagged unsynced."""
    tally = bulk_sync()
    logger.info("course_sync_pass", total=tally.total, success=tally.success, failed=tally.failed)
    return tally.model_dump()


def main() -> int:
    setup_logging()
    result = run_once()
    return 0 if result["failed"] == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
