#!/usr/bin/env python3
"""CLI entry point for the weekly report hand-off.

Delivers each client's last completed week to REPORT_WEBHOOK_URL, or logs
the summaries when no webhook is configured.

Usage:
    PYTHONPATH=. python scripts/run_weekly_reports.py
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.portal_core.config import load_settings
from src.portal_core.scheduler.triggers import report_job


logger = logging.getLogger("run_weekly_reports")


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
    parser = argparse.ArgumentParser(description="Portal weekly report hand-off")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    result = await report_job(load_settings())

    logger.info(
        "Week %s..%s: delivered=%s missing=%s failed=%s",
        result.period_start,
        result.period_end,
        len(result.delivered),
        len(result.missing),
        len(result.failed),
    )
    for client_id, error in result.failed.items():
        logger.warning("  %s: %s", client_id, error)

    return 0 if not result.failed else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
