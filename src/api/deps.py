"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends

from src.core.database import Database, get_database
from src.services.coupon_service import CouponService
from src.services.notification_service import OrderNotifier, get_order_notifier
from src.services.order_service import OrderService
from src.services.order_state_service import OrderStateReflector

DatabaseDep = Annotated[Database, Depends(get_database)]
NotifierDep = Annotated[OrderNotifier, Depends(get_order_notifier)]


def get_coupon_service(db: DatabaseDep) -> CouponService:
    """Build a coupon service bound to the request's database."""
    return CouponService(db)


def get_order_service(db: DatabaseDep, notifier: NotifierDep) -> OrderService:
    """Build an order service bound to the request's database.

    Args:
        db: Application database.
        notifier: Process-wide snapshot notifier, so pending pushes can be
            drained on shutdown.

    Returns:
        OrderService: Service sharing the process-wide order lock registry.
    """
    return OrderService(
        db,
        coupons=CouponService(db),
        reflector=OrderStateReflector(db),
        notifier=notifier,
    )


# Type aliases for cleaner dependency injection
CouponServiceDep = Annotated[CouponService, Depends(get_coupon_service)]
OrderServiceDep = Annotated[OrderService, Depends(get_order_service)]
