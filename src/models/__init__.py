"""Database model type definitions."""

from src.models.catalog import Product, User
from src.models.coupon import Coupon
from src.models.order import Order, OrderItem, OrderPatch
from src.models.order_view import OngoingOrder, OrderCancellation, OrderHistoryEntry

__all__ = [
    "Coupon",
    "OngoingOrder",
    "Order",
    "OrderCancellation",
    "OrderHistoryEntry",
    "OrderItem",
    "OrderPatch",
    "Product",
    "User",
]
