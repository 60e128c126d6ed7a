#!/usr/bin/env python3
"""CLI entry point for integration sync.

Usage:
    # Daily run: trailing window for all active integrations
    PYTHONPATH=. python scripts/run_daily_sync.py

    # One client's active integrations
    PYTHONPATH=. python scripts/run_daily_sync.py --client-id acme

    # Explicit range (backfill)
    PYTHONPATH=. python scripts/run_daily_sync.py --start 2024-12-01 --end 2024-12-31
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.portal_core.config import load_settings
from src.portal_core.scheduler.triggers import sync_job


logger = logging.getLogger("run_daily_sync")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Portal integration sync")
    parser.add_argument(
        "--client-id",
        type=str,
        help="Only sync this client's active integrations",
    )
    parser.add_argument(
        "--start",
        type=str,
        help="Start date (YYYY-MM-DD). Defaults to the trailing window start.",
    )
    parser.add_argument(
        "--end",
        type=str,
        help="End date (YYYY-MM-DD). Defaults to today.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    date_from = datetime.strptime(args.start, "%Y-%m-%d").date() if args.start else None
    date_to = datetime.strptime(args.end, "%Y-%m-%d").date() if args.end else None

    batch = await sync_job(
        load_settings(),
        client_id=args.client_id,
        date_from=date_from,
        date_to=date_to,
    )

    if batch.error:
        logger.error("Sync did not run: %s", batch.error)
        return 1

    for result in batch.results:
        if result.success:
            logger.info("  %s (%s): %s records", result.integration_id, result.platform, result.record_count)
        else:
            logger.warning(
                "  %s (%s): FAILED [%s] %s",
                result.integration_id,
                result.platform,
                result.error_kind,
                result.error,
            )
    logger.info("Synced %s/%s integrations", batch.succeeded, batch.total)

    return 0 if batch.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
