"""MongoDB client singleton and transaction helpers."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

from bson import ObjectId
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.asynchronous.collection import AsyncCollection

from src.core.config import get_settings
from src.models.coupon import COUPONS_COLLECTION
from src.models.order import ORDERS_COLLECTION
from src.models.order_view import (
    ONGOING_ORDERS_COLLECTION,
    ORDER_CANCELLATIONS_COLLECTION,
    ORDER_HISTORY_COLLECTION,
)

logger = logging.getLogger(__name__)


class Database:
    """Thin wrapper over an async MongoDB database.

    Exposes collections by name and a transaction context manager so that
    services never deal with sessions directly outside a unit of work.
    """

    def __init__(self, client: AsyncMongoClient, name: str) -> None:
        self.client = client
        self.db = client[name]

    def __getitem__(self, name: str) -> AsyncCollection:
        return self.db[name]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncClientSession]:
        """Run a block inside a multi-document transaction.

        The transaction commits when the block exits normally and aborts
        when it raises; the exception is re-raised to the caller.

        Yields:
            AsyncClientSession: Session to pass to every read and write.
        """
        async with self.client.start_session() as session:
            async with await session.start_transaction():
                yield session

    async def ping(self) -> None:
        """Round-trip to the server; raises if it is unreachable."""
        await self.db.command("ping")


@lru_cache
def get_mongo_client() -> AsyncMongoClient:
    """Get cached MongoDB client singleton.

    Returns:
        AsyncMongoClient: Client returning timezone-aware datetimes.
    """
    settings = get_settings()
    return AsyncMongoClient(
        settings.mongodb_url,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.mongodb_server_selection_timeout_ms,
    )


def get_database() -> Database:
    """Get the application database.

    Used directly by scripts and as a FastAPI dependency by routes.

    Returns:
        Database: Wrapper bound to the configured database name.
    """
    return Database(get_mongo_client(), get_settings().mongodb_database)


async def close_database() -> None:
    """Close the cached client if one was created."""
    if get_mongo_client.cache_info().currsize:
        await get_mongo_client().close()
        get_mongo_client.cache_clear()


# (collection, field, unique)
INDEXES: tuple[tuple[str, str, bool], ...] = (
    (ORDERS_COLLECTION, "code", True),
    (ORDERS_COLLECTION, "user", False),
    (COUPONS_COLLECTION, "code", True),
    (ONGOING_ORDERS_COLLECTION, "order", True),
    (ONGOING_ORDERS_COLLECTION, "user", True),
    (ORDER_HISTORY_COLLECTION, "order", True),
    (ORDER_CANCELLATIONS_COLLECTION, "order", True),
)


async def ensure_indexes(database: Database) -> None:
    """Create the indexes the order engine relies on.

    The unique indexes are what make a retried create with the same order
    code fail, and what stops a user from ever holding two ongoing orders.
    """
    for collection, field, unique in INDEXES:
        await database[collection].create_index([(field, ASCENDING)], unique=unique)
    logger.info("Database indexes ensured")


async def check_database_connection(database: Database) -> dict[str, Any]:
    """Check if database connection is healthy.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        await database.ping()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}


def to_object_id(value: Any) -> ObjectId | None:
    """Coerce a reference to an ObjectId.

    Accepts ObjectIds, 24-hex strings and populated documents carrying `_id`.

    Returns:
        ObjectId | None: The id, or None when the value is not a valid reference.
    """
    if isinstance(value, dict):
        value = value.get("_id")
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def serialize_document(value: Any) -> Any:
    """Recursively convert ObjectIds to strings for API responses."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    return value
