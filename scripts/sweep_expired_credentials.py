#!/usr/bin/env python3
"""
Kuiqlee Expired Credential Sweep

Deletes bearer credentials whose expiry has passed. Expired credentials can
never authenticate again, so deleting them is safe under live traffic and
running the sweep twice is harmless.

Usage:
    # Sweep everything expired as of now (default - for cron)
    python3 scripts/sweep_expired_credentials.py

    # Keep a grace window of 7 days past expiry
    python3 scripts/sweep_expired_credentials.py --grace-days 7

    # Dry run (count only)
    python3 scripts/sweep_expired_credentials.py --dry-run
"""

import argparse
import asyncio
import sys
from datetime import UTC, datetime, timedelta

from kuiqlee.db.session import close_engines, get_session_factory
from kuiqlee.exceptions import StoreUnavailableError
from kuiqlee.observability import get_logger, setup_logging
from kuiqlee.services.credential_store import CredentialStore

setup_logging()
logger = get_logger("kuiqlee.scripts.sweep_expired_credentials")


async def sweep(cutoff: datetime, dry_run: bool) -> int:
    """Delete (or count, when dry_run) credentials expired before cutoff."""
    try:
        async with get_session_factory()() as session:
            store = CredentialStore(session)
            if dry_run:
                count = await store.count_expired(cutoff)
                logger.info("sweep_dry_run", cutoff=cutoff.isoformat(), would_delete=count)
                return count
            return await store.sweep_expired(cutoff)
    finally:
        await close_engines()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Delete expired Kuiqlee bearer credentials",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                  # Sweep credentials expired as of now
  %(prog)s --grace-days 7   # Only sweep credentials expired over a week ago
  %(prog)s --dry-run        # Count without deleting
        """,
    )
    parser.add_argument(
        "--grace-days",
        type=int,
        default=0,
        help="Only delete credentials expired at least this many days ago",
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Don't delete, just count what would be removed"
    )

    args = parser.parse_args()

    if args.grace_days < 0:
        parser.error("--grace-days cannot be negative")

    cutoff = datetime.now(UTC) - timedelta(days=args.grace_days)

    try:
        count = asyncio.run(sweep(cutoff, args.dry_run))
    except StoreUnavailableError as e:
        logger.error("sweep_failed", error=str(e))
        sys.exit(1)

    print(f"{'Would delete' if args.dry_run else 'Deleted'} {count} expired credential(s)")
    sys.exit(0)


if __name__ == "__main__":
    main()
