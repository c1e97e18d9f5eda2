"""Order document type definitions for database operations."""

from datetime import datetime
from typing import Any, Literal, TypedDict

from bson import ObjectId

ORDERS_COLLECTION = "orders"
ORDER_ITEMS_COLLECTION = "order_items"
ADDRESSES_COLLECTION = "addresses"

# Order status enum values
OrderStatus = Literal["pending", "confirmed", "shipped", "delivered", "cancelled", "returned"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded", "partial"]

ORDER_STATUSES: tuple[str, ...] = ("pending", "confirmed", "shipped", "delivered", "cancelled", "returned")
PAYMENT_STATUSES: tuple[str, ...] = ("pending", "paid", "failed", "refunded", "partial")

# Payments that count as a redeemed coupon for the per-user cap
REDEEMED_PAYMENT_STATUSES: tuple[str, ...] = ("paid", "partial")

# Fields an order update may touch; everything else is owned by the create path
UPDATABLE_ORDER_FIELDS: tuple[str, ...] = (
    "status",
    "confirmedAt",
    "cancelReason",
    "payment",
    "satisfaction",
    "deliveryInstructions",
    "arDeliveryInstructions",
    "cardMessage",
    "arCardMessage",
    "cardImage",
    "shippingAddress",
)


class OrderItem(TypedDict):
    """Order line item document.

    Owned by exactly one order and created in the same transaction.
    """

    _id: ObjectId
    products: list[ObjectId]
    quantity: int
    discountForProducts: float
    totalAmount: float
    createdAt: datetime


class Order(TypedDict, total=False):
    """Order collection document.

    The authoritative record; the derived order views are computed from it.
    """

    _id: ObjectId
    code: str
    user: ObjectId
    status: OrderStatus
    payment: PaymentStatus
    items: list[ObjectId]
    totalItems: int
    subtotalAmount: float
    discountAmount: float
    taxAmount: float
    grandTotal: float
    appliedCoupon: ObjectId | None
    couponRedeemedAt: datetime | None
    shippingAddress: ObjectId
    deliveryInstructions: str | None
    arDeliveryInstructions: str | None
    cardMessage: str | None
    arCardMessage: str | None
    cardImage: str | None
    satisfaction: int | None
    placedAt: datetime
    confirmedAt: datetime | None
    deliveredAt: datetime | None
    cancelReason: str | None
    createdAt: datetime
    updatedAt: datetime


class OrderPatch(TypedDict, total=False):
    """Sparse order update restricted to UPDATABLE_ORDER_FIELDS."""

    status: OrderStatus
    confirmedAt: datetime | None
    cancelReason: str | None
    payment: PaymentStatus
    satisfaction: int | None
    deliveryInstructions: str | None
    arDeliveryInstructions: str | None
    cardMessage: str | None
    arCardMessage: str | None
    cardImage: str | None
    shippingAddress: str | dict[str, Any]
