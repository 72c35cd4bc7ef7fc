#!/usr/bin/env python3
"""
Provision Inventory Script

Creates the token inventory row for a network, or adds supply to it, after
tokens have been moved into the central custodial wallet.
"""

import argparse
import asyncio
import sys

from algosdk import encoding

from tokenpay.config import get_settlement_config, settings
from tokenpay.db.session import close_engines, session_scope
from tokenpay.observability import get_logger, setup_logging
from tokenpay.services.inventory import InventoryManager

logger = get_logger(__name__)


async def provision(network: str, asset_id: int, amount: int, wallet: str) -> None:
    """Add amount base units to the inventory pool."""
    try:
        async with session_scope() as session:
            snapshot = await InventoryManager(session, get_settlement_config()).provision(
                network=network,
                asset_id=asset_id,
                additional_supply=amount,
                central_wallet_address=wallet,
            )
            await session.commit()
    finally:
        await close_engines()

    print(
        f"{snapshot.network}/{snapshot.asset_id}: total_supply={snapshot.total_supply} "
        f"available={snapshot.available_balance} reserved={snapshot.reserved_balance}"
    )


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Provision token inventory for settlement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Add 1,000,000 base units of the configured asset
  python3 scripts/provision_inventory.py 1000000
        """,
    )
    parser.add_argument("amount", type=int, help="Base units to add to the pool")
    parser.add_argument("--network", default=settings.network, help="Network name")
    parser.add_argument("--asset-id", type=int, default=settings.token_asset_id)
    parser.add_argument(
        "--wallet", default=settings.central_wallet_address, help="Central wallet address"
    )
    args = parser.parse_args()

    if args.amount <= 0:
        logger.error("invalid_amount", amount=args.amount)
        sys.exit(1)
    if not encoding.is_valid_address(args.wallet):
        logger.error("invalid_wallet_address", wallet=args.wallet)
        sys.exit(1)

    setup_logging()
    asyncio.run(provision(args.network, args.asset_id, args.amount, args.wallet))


if __name__ == "__main__":
    main()
