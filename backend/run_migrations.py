from __future__ import annotations

import argparse
import logging
import sys

from bootstrap import (
    DEFAULT_CONFIG,
    MIGRATION_MARKER_KEY,
    clear_bootstrap_marker,
    has_bootstrap_marker,
    run_bootstrap_migrations,
    set_bootstrap_marker,
)
from database import get_db
from models import SystemConfig

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create tables and seed default configuration once.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if the one-time marker already exists.",
    )
    parser.add_argument(
        "--clear-marker",
        action="store_true",
        help=f"Clear marker key `{MIGRATION_MARKER_KEY}` before running.",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the marker and runtime switches, then exit.",
    )
    return parser.parse_args()


def print_status() -> None:
    db = next(get_db())
    try:
        logger.info("Marker `%s` present: %s", MIGRATION_MARKER_KEY, has_bootstrap_marker())
        for key in DEFAULT_CONFIG:
            row = db.query(SystemConfig).filter(SystemConfig.key == key).first()
            logger.info("%s = %s", key, row.value if row else "(unset)")
    finally:
        db.close()


def main() -> int:
    args = parse_args()

    if args.status:
        print_status()
        return 0

    if args.clear_marker:
        if clear_bootstrap_marker():
            logger.info("Cleared migration marker `%s`.", MIGRATION_MARKER_KEY)
        else:
            logger.info("Marker `%s` was already absent.", MIGRATION_MARKER_KEY)

    if has_bootstrap_marker() and not args.force:
        logger.info("Marker `%s` already exists. Nothing to do. Use --force to rerun.", MIGRATION_MARKER_KEY)
        return 0

    logger.info("Creating tables and seeding defaults...")
    run_bootstrap_migrations()
    set_bootstrap_marker()
    logger.info("Bootstrap completed and marker `%s` updated.", MIGRATION_MARKER_KEY)
    return 0


if __name__ == "__main__":
    sys.exit(main())
