#!/usr/bin/env python3
"""
Reconcile Payments Script

Runs one reconciliation sweep: payments stuck in processing or monitoring
longer than the reconciliation window are confirmed or failed against
on-chain state. Intended for cron or manual recovery after an outage.
"""

import argparse
import asyncio
import sys
from dataclasses import replace

from tokenpay.api.dependencies import close_chain_client, get_chain_client
from tokenpay.config import get_settlement_config
from tokenpay.db.session import close_engines, session_scope
from tokenpay.observability import get_logger, setup_logging
from tokenpay.services.reconciliation import ReconciliationService

logger = get_logger(__name__)


async def reconcile(window_seconds: int | None, batch_size: int | None) -> int:
    """Run one sweep; returns the number of payments examined."""
    config = get_settlement_config()
    if window_seconds is not None:
        config = replace(config, reconciliation_window_seconds=window_seconds)
    if batch_size is not None:
        config = replace(config, reconciliation_batch_size=batch_size)

    try:
        async with session_scope() as session:
            result = await ReconciliationService(session, get_chain_client(), config).run_once()
    finally:
        await close_chain_client()
        await close_engines()

    print(
        f"examined={result.examined} confirmed={result.confirmed} "
        f"failed={result.failed} skipped={result.skipped}"
    )
    return result.examined


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Reconcile stale token settlements against the chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sweep with the configured window
  python3 scripts/reconcile_payments.py

  # Sweep everything older than 60 seconds, 500 at a time
  python3 scripts/reconcile_payments.py --window-seconds 60 --batch-size 500
        """,
    )
    parser.add_argument("--window-seconds", type=int, help="Minimum age of swept payments")
    parser.add_argument("--batch-size", type=int, help="Maximum payments per sweep")
    args = parser.parse_args()

    if args.window_seconds is not None and args.window_seconds < 0:
        logger.error("invalid_window_seconds", window_seconds=args.window_seconds)
        sys.exit(1)
    if args.batch_size is not None and args.batch_size <= 0:
        logger.error("invalid_batch_size", batch_size=args.batch_size)
        sys.exit(1)

    setup_logging()
    try:
        asyncio.run(reconcile(args.window_seconds, args.batch_size))
    except Exception as exc:
        logger.error("reconciliation_script_failed", error=str(exc))
        sys.exit(1)


if __name__ == "__main__":
    main()
