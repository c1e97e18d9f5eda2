"""Coupon document type definitions."""

from datetime import datetime
from typing import Literal, TypedDict

from bson import ObjectId

COUPONS_COLLECTION = "coupons"

CouponType = Literal["percentage", "fixed"]


class Coupon(TypedDict, total=False):
    """Coupon collection document.

    `code` is stored upper-cased so lookups are case-insensitive.
    `usedCount` and `usedBy` are only written by order redemption.
    """

    _id: ObjectId
    code: str
    type: CouponType
    value: float
    maxDiscount: float | None
    minOrderAmount: float | None
    startAt: datetime | None
    endAt: datetime | None
    maxUsesTotal: int | None
    maxUsesPerUser: int | None
    usedCount: int
    usedBy: list[ObjectId]
    isActive: bool
    createdAt: datetime
    updatedAt: datetime
