#!/usr/bin/env python
"""Script to rebuild the derived order views from the orders collection.

Usage:
    python scripts/reconcile_order_views.py [ORDER_CODE ...]

Re-runs state reflection for the given order codes, or for every order
when none are given. Use it after reflection failures were logged.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.database import close_database, get_database
from src.services.order_state_service import OrderStateReflector

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def main() -> None:
    """Reconcile ongoing, history and cancellation rows."""
    codes = sys.argv[1:] or None
    logger.info("Starting reconciliation for %s", ", ".join(codes) if codes else "all orders")

    try:
        reflector = OrderStateReflector(get_database())
        result = await reflector.reconcile(codes)

        logger.info("Reconciliation complete!")
        logger.info("Total orders: %d", result["total"])
        logger.info("Reconciled: %d", result["reconciled"])
        logger.info("Failed: %d", result["failed"])
        logger.info("Orphaned ongoing rows removed: %d", result["orphans"])

        if result["failed"] > 0:
            logger.warning("Some orders could not be reconciled. Check logs for details.")
            sys.exit(1)

    except Exception as e:
        logger.error("Reconciliation failed: %s", e)
        sys.exit(1)
    finally:
        await close_database()


if __name__ == "__main__":
    asyncio.run(main())
