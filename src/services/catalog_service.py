"""Product catalog lookups used by order placement."""

import logging
from decimal import Decimal
from typing import Iterable

from src.core.database import Database, get_database, to_object_id
from src.models.catalog import PRODUCTS_COLLECTION

logger = logging.getLogger(__name__)


class CatalogService:
    """Read-only access to product prices."""

    def __init__(self, db: Database | None = None) -> None:
        """Initialize catalog service.

        Args:
            db: Optional database for testing.
        """
        self.db = db or get_database()

    async def price_map_for_products(self, product_ids: Iterable[str]) -> dict[str, Decimal]:
        """Resolve product ids to their current unit prices.

        Unknown or malformed ids are simply absent from the result; callers
        treat absence as an invalid product.

        Args:
            product_ids: Product ids as hex strings.

        Returns:
            dict[str, Decimal]: Unit price keyed by product id.
        """
        object_ids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
        if not object_ids:
            return {}

        cursor = self.db[PRODUCTS_COLLECTION].find(
            {"_id": {"$in": object_ids}},
            {"_id": 1, "price": 1},
        )
        products = await cursor.to_list(length=None)

        prices = {str(p["_id"]): Decimal(str(p.get("price") or 0)) for p in products}
        logger.debug("Resolved %d of %d product prices", len(prices), len(object_ids))
        return prices
