"""Unit tests for the database helpers."""

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from src.core.database import (
    check_database_connection,
    ensure_indexes,
    serialize_document,
    to_object_id,
)
from tests.fakes import FakeDatabase


class TestEnsureIndexes:
    """Tests for ensure_indexes."""

    @pytest.mark.asyncio
    async def test_creates_unique_indexes(self) -> None:
        """Test that order codes and ongoing rows are unique."""
        db = FakeDatabase()

        await ensure_indexes(db)

        assert db["orders"].unique_fields == {"code"}
        assert db["coupons"].unique_fields == {"code"}
        assert db["ongoing_orders"].unique_fields == {"order", "user"}
        assert db["order_history"].unique_fields == {"order"}
        assert db["order_cancellations"].unique_fields == {"order"}


class TestCheckDatabaseConnection:
    """Tests for check_database_connection."""

    @pytest.mark.asyncio
    async def test_healthy(self) -> None:
        """Test that a successful ping is healthy."""
        assert await check_database_connection(FakeDatabase()) == {"healthy": True}

    @pytest.mark.asyncio
    async def test_unhealthy(self) -> None:
        """Test that a failed ping reports the error."""
        db = FakeDatabase()
        db.healthy = False

        result = await check_database_connection(db)

        assert result["healthy"] is False
        assert "server selection timeout" in result["error"]


class TestToObjectId:
    """Tests for to_object_id."""

    def test_accepts_references(self) -> None:
        """Test ids, hex strings and populated documents."""
        oid = ObjectId()

        assert to_object_id(oid) == oid
        assert to_object_id(str(oid)) == oid
        assert to_object_id({"_id": oid, "email": "a@example.com"}) == oid

    def test_rejects_garbage(self) -> None:
        """Test that invalid references become None."""
        assert to_object_id("not-an-id") is None
        assert to_object_id(None) is None
        assert to_object_id(42) is None


class TestSerializeDocument:
    """Tests for serialize_document."""

    def test_converts_nested_ids(self) -> None:
        """Test that ids inside dicts and lists become strings."""
        oid = ObjectId()
        placed_at = datetime(2024, 5, 1, tzinfo=timezone.utc)

        result = serialize_document({"_id": oid, "items": [{"products": [oid]}], "placedAt": placed_at})

        assert result == {"_id": str(oid), "items": [{"products": [str(oid)]}], "placedAt": placed_at}
