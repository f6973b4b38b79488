from __future__ import annotations

import argparse
import logging
import sys

from bootstrap import missing_indexes, run_bootstrap_migrations
from database import DatabaseUnavailableError, check_database_health, wait_for_database

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create or update the registration schema.")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only report database connectivity and missing unique indexes.",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Connection attempts before giving up (default: DB_CONNECT_MAX_ATTEMPTS or 5).",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        wait_for_database(max_attempts=args.max_attempts)
    except DatabaseUnavailableError as exc:
        logger.error("%s", exc)
        return 1

    if args.check:
        health = check_database_health()
        missing = missing_indexes()
        logger.info("Database status: %s", health["status"])
        if missing:
            logger.warning("Missing indexes: %s", ", ".join(sorted(missing)))
            return 2
        logger.info("All unique indexes present.")
        return 0

    logger.info("Running registration schema migrations...")
    run_bootstrap_migrations(wait=False)
    logger.info("Migrations completed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
