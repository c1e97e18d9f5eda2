"""Shipping address resolution for orders."""

import logging
from datetime import datetime, timezone
from typing import Any

from bson import ObjectId
from pymongo.asynchronous.client_session import AsyncClientSession

from src.api.middleware.error_handler import ValidationError
from src.core.database import Database, get_database, to_object_id
from src.models.order import ADDRESSES_COLLECTION

logger = logging.getLogger(__name__)


class AddressService:
    """Creates inline addresses and passes existing references through."""

    def __init__(self, db: Database | None = None) -> None:
        self.db = db or get_database()

    async def resolve(
        self,
        address: str | ObjectId | dict[str, Any],
        session: AsyncClientSession | None = None,
    ) -> ObjectId:
        """Turn a shipping address input into an address reference.

        Args:
            address: Either the id of an existing address or the fields of a
                new one.
            session: Transaction session of the surrounding order write.

        Returns:
            ObjectId: Id of the existing or newly created address.

        Raises:
            ValidationError: If the input is a reference to an unknown address
                or neither a reference nor address fields.
        """
        if isinstance(address, dict):
            document = {key: value for key, value in address.items() if key != "_id"}
            document["createdAt"] = datetime.now(timezone.utc)
            result = await self.db[ADDRESSES_COLLECTION].insert_one(document, session=session)
            logger.debug("Created inline shipping address %s", result.inserted_id)
            return result.inserted_id

        address_id = to_object_id(address)
        if address_id is None:
            raise ValidationError("Invalid shipping address")

        existing = await self.db[ADDRESSES_COLLECTION].find_one(
            {"_id": address_id}, {"_id": 1}, session=session
        )
        if not existing:
            raise ValidationError("Shipping address not found")
        return address_id
