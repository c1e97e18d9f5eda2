"""Derived order view documents.

One row per order in each collection, keyed by the `order` reference.
Only the order state reflector writes these collections.
"""

from datetime import datetime
from typing import Literal, TypedDict

from bson import ObjectId

ONGOING_ORDERS_COLLECTION = "ongoing_orders"
ORDER_HISTORY_COLLECTION = "order_history"
ORDER_CANCELLATIONS_COLLECTION = "order_cancellations"


class OngoingOrder(TypedDict):
    """An order that has not reached a terminal status."""

    _id: ObjectId
    order: ObjectId
    user: ObjectId
    status: str
    paymentStatus: Literal["paid", "pending"]
    createdAt: datetime


class OrderHistoryEntry(TypedDict):
    """A delivered, cancelled or returned order."""

    _id: ObjectId
    order: ObjectId
    user: ObjectId
    status: str
    notes: str | None
    arNotes: str | None
    at: datetime


class OrderCancellation(TypedDict):
    """A cancelled or returned order awaiting refund handling."""

    _id: ObjectId
    order: ObjectId
    user: ObjectId
    status: str
    refundReason: str | None
    paymentStatus: Literal["paid", "unpaid"]
    refundAmount: float
    at: datetime
