#!/usr/bin/env python3
"""CLI entry point for client metrics aggregation.

Usage:
    # Scheduled run: last completed week (+ last month while still re-synced)
    PYTHONPATH=. python scripts/run_aggregation.py

    # Explicit period
    PYTHONPATH=. python scripts/run_aggregation.py --period monthly --start 2024-11-01 --end 2024-11-30

    # Scheduled periods for one client
    PYTHONPATH=. python scripts/run_aggregation.py --client-id acme
"""
import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.portal_core.config import load_settings
from src.portal_core.metrics.aggregator import AggregateScope
from src.portal_core.scheduler.triggers import aggregation_job
from src.portal_core.schemas.metrics import PeriodType


logger = logging.getLogger("run_aggregation")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Portal client metrics aggregation")
    parser.add_argument(
        "--period",
        choices=[item.value for item in PeriodType],
        default=PeriodType.WEEKLY.value,
        help="Period type for an explicit range",
    )
    parser.add_argument("--start", type=str, help="Period start (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, help="Period end (YYYY-MM-DD)")
    parser.add_argument("--client-id", type=str, help="Only aggregate this client")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    scope = None
    if args.start or args.end:
        if not (args.start and args.end):
            parser.error("--start and --end must be given together")
        scope = AggregateScope(
            period_type=PeriodType(args.period),
            date_from=datetime.strptime(args.start, "%Y-%m-%d").date(),
            date_to=datetime.strptime(args.end, "%Y-%m-%d").date(),
            client_id=args.client_id,
        )

    outcomes = aggregation_job(load_settings(), scope=scope, client_id=args.client_id)

    ok = True
    for period, result in outcomes:
        logger.info(
            "%s %s..%s: success=%s inserted=%s updated=%s skipped=%s",
            period.period_type.value,
            period.date_from,
            period.date_to,
            result.success,
            result.inserted,
            result.updated,
            result.skipped,
        )
        if result.message:
            logger.warning("  %s", result.message)
        for error in result.errors:
            logger.warning("  %s", error)
        ok = ok and result.success

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
