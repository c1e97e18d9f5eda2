"""Unit tests for FastAPI dependency injection functions."""

from src.api.deps import get_coupon_service, get_order_service
from src.services.notification_service import OrderNotifier
from src.services.order_state_service import get_order_locks
from tests.fakes import FakeDatabase


class TestServiceFactories:
    """Tests for the service dependency factories."""

    def test_order_service_shares_request_database(self, fake_db: FakeDatabase, notifier: OrderNotifier) -> None:
        """Test that every collaborator uses the same database."""
        service = get_order_service(fake_db, notifier)

        assert service.db is fake_db
        assert service.coupons.db is fake_db
        assert service.catalog.db is fake_db
        assert service.addresses.db is fake_db
        assert service.reflector.db is fake_db
        assert service.notifier is notifier

    def test_order_services_share_lock_registry(self, fake_db: FakeDatabase, notifier: OrderNotifier) -> None:
        """Test that reflections from different requests serialize on one registry."""
        first = get_order_service(fake_db, notifier)
        second = get_order_service(fake_db, notifier)

        assert first.reflector.locks is second.reflector.locks
        assert first.reflector.locks is get_order_locks()

    def test_coupon_service(self, fake_db: FakeDatabase) -> None:
        """Test that the coupon service is bound to the database."""
        assert get_coupon_service(fake_db).db is fake_db
