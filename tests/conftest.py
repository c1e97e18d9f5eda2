"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("MONGODB_DATABASE", "storefront_test")
os.environ.setdefault("NOTIFIER_WEBHOOK_URL", "")
os.environ.setdefault("NOTIFIER_BACKOFF_SECONDS", "0")

from src.core.database import INDEXES  # noqa: E402
from src.models.catalog import PRODUCTS_COLLECTION, USERS_COLLECTION  # noqa: E402
from src.models.coupon import COUPONS_COLLECTION  # noqa: E402
from src.models.order import ADDRESSES_COLLECTION  # noqa: E402
from src.services.notification_service import OrderNotifier  # noqa: E402
from src.services.order_state_service import OrderLockRegistry, OrderStateReflector  # noqa: E402
from tests.fakes import FakeDatabase  # noqa: E402


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def fake_db() -> FakeDatabase:
    """Provide an empty in-memory database with the production indexes."""
    db = FakeDatabase()
    for collection, field, unique in INDEXES:
        if unique:
            db[collection].unique_fields.add(field)
    return db


@pytest.fixture
def notifier() -> OrderNotifier:
    """Provide a log-only notifier."""
    return OrderNotifier(webhook_url="", backoff_seconds=0)


@pytest.fixture
def reflector(fake_db: FakeDatabase) -> OrderStateReflector:
    """Provide a reflector with its own lock registry."""
    return OrderStateReflector(fake_db, locks=OrderLockRegistry(), max_attempts=2, backoff_seconds=0)


@pytest.fixture
def customer(fake_db: FakeDatabase) -> dict:
    """Insert a customer."""
    user = {"_id": ObjectId(), "firstName": "Mariam", "lastName": "Al-Thani", "email": "mariam@example.com"}
    fake_db[USERS_COLLECTION].seed(user)
    return user


@pytest.fixture
def products(fake_db: FakeDatabase) -> dict[str, dict]:
    """Insert a small catalog: roses at 50.00 and a vase at 25.00."""
    roses = {"_id": ObjectId(), "title": "Red Roses", "price": 50.0, "isActive": True}
    vase = {"_id": ObjectId(), "title": "Glass Vase", "price": 25.0, "isActive": True}
    free = {"_id": ObjectId(), "title": "Ribbon", "price": 0, "isActive": True}
    fake_db[PRODUCTS_COLLECTION].seed(roses, vase, free)
    return {"roses": roses, "vase": vase, "free": free}


@pytest.fixture
def address(fake_db: FakeDatabase, customer: dict) -> dict:
    """Insert a saved shipping address for the customer."""
    doc = {"_id": ObjectId(), "user": customer["_id"], "city": "Doha", "street": "Corniche St"}
    fake_db[ADDRESSES_COLLECTION].seed(doc)
    return doc


@pytest.fixture
def save10(fake_db: FakeDatabase) -> dict:
    """Insert an active 10% coupon capped at 20.00, valid for a week."""
    now = datetime.now(timezone.utc)
    coupon = {
        "_id": ObjectId(),
        "code": "SAVE10",
        "type": "percentage",
        "value": 10,
        "maxDiscount": 20,
        "minOrderAmount": 0,
        "startAt": now - timedelta(days=1),
        "endAt": now + timedelta(days=7),
        "maxUsesTotal": 100,
        "maxUsesPerUser": 1,
        "usedCount": 0,
        "usedBy": [],
        "isActive": True,
        "createdAt": now,
        "updatedAt": now,
    }
    fake_db[COUPONS_COLLECTION].seed(coupon)
    return coupon


@pytest.fixture
def client(fake_db: FakeDatabase, notifier: OrderNotifier) -> Generator[TestClient, None, None]:
    """Provide a test client wired to the in-memory database.

    Args:
        fake_db: In-memory database fixture.
        notifier: Log-only notifier fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.core.database import get_database
    from src.main import app
    from src.services.notification_service import get_order_notifier

    app.dependency_overrides[get_database] = lambda: fake_db
    app.dependency_overrides[get_order_notifier] = lambda: notifier

    with patch("src.main.get_database", return_value=fake_db), \
         patch("src.main.get_order_notifier", return_value=notifier), \
         patch("src.main.close_database", new=AsyncMock()):
        with TestClient(app) as test_client:
            yield test_client

    app.dependency_overrides.clear()
