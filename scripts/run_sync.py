#!/usr/bin/env python3
"""
Run one marketplace order sync from the command line

Imports orders from every configured marketplace (or the ones named) and
prints the per-platform report. Safe to re-run: orders already imported are
skipped.
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shopsync.models.base import SessionLocal, init_db
from shopsync.services.runtime import get_runtime
from shopsync.utils.helpers import calculate_date_range
from shopsync.utils.logger import log


def print_header(text):
    print(f"\n{'='*70}")
    print(f"  {text}")
    print('='*70)


async def run_sync(days: int, platforms=None) -> int:
    init_db()
    since, _ = calculate_date_range(days)

    db = SessionLocal()
    try:
        report = await get_runtime().orchestrator(db).sync(since=since, platforms=platforms)
    finally:
        db.close()

    print_header(f"Sync since {since.date()}")
    if not report.platforms:
        print("  No marketplace integrations configured")
        return 0

    for outcome in report.platforms:
        status = "OK" if outcome.succeeded else f"FAILED ({outcome.error_type}: {outcome.error})"
        print(
            f"  {outcome.platform:<10} fetched {outcome.orders_fetched:>5}  new {outcome.orders_new:>5}  "
            f"dup {outcome.orders_duplicate:>5}  failed {outcome.orders_failed:>4}  "
            f"{outcome.duration_seconds:6.1f}s  {status}"
        )
        if outcome.needs_reconnect:
            print(f"  {'':<10} reconnect required: save new credentials for {outcome.platform}")

    print(f"\n  Total new orders: {report.orders_new}")
    return 1 if report.failed_platforms else 0


def main():
    parser = argparse.ArgumentParser(
        description="Import marketplace orders",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Last 7 days from every configured marketplace
  python scripts/run_sync.py

  # Last 30 days from Etsy and eBay only
  python scripts/run_sync.py --days 30 --platform etsy --platform ebay
"""
    )
    parser.add_argument(
        "--days", type=int, default=7,
        help="Days to look back (default: 7)"
    )
    parser.add_argument(
        "--platform", action="append", dest="platforms",
        choices=["shopify", "etsy", "amazon", "ebay"],
        help="Limit to a platform (repeatable, default: all configured)"
    )
    args = parser.parse_args()

    try:
        exit_code = asyncio.run(run_sync(args.days, args.platforms))
    except KeyboardInterrupt:
        log.warning("Sync interrupted, orders imported so far are kept")
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
