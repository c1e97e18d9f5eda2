"""Coupon Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, Field

from src.models.coupon import CouponType
from src.schemas.common import CamelModel, ObjectIdStr


class CouponCreate(CamelModel):
    """Schema for creating a coupon via POST /coupons."""

    code: str = Field(min_length=1, description="Coupon code, stored upper-cased")
    type: CouponType = Field(description="percentage or fixed")
    value: float = Field(ge=0, description="Percent for percentage coupons, amount for fixed ones")
    max_discount: float | None = Field(default=None, ge=0, description="Cap for percentage discounts")
    min_order_amount: float | None = Field(default=None, ge=0, description="Minimum subtotal")
    start_at: datetime | None = Field(default=None, description="Start of validity window")
    end_at: datetime | None = Field(default=None, description="End of validity window")
    max_uses_total: int | None = Field(default=None, ge=0, description="Global redemption cap")
    max_uses_per_user: int | None = Field(default=None, ge=0, description="Per-customer redemption cap")
    is_active: bool = Field(default=True, description="Whether the coupon can be applied")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class CouponUpdate(CamelModel):
    """Schema for PUT /coupons/{coupon_id}; usage counters are not editable."""

    code: str | None = Field(default=None, min_length=1)
    type: CouponType | None = None
    value: float | None = Field(default=None, ge=0)
    max_discount: float | None = Field(default=None, ge=0)
    min_order_amount: float | None = Field(default=None, ge=0)
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_uses_total: int | None = Field(default=None, ge=0)
    max_uses_per_user: int | None = Field(default=None, ge=0)
    is_active: bool | None = None

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class CouponResponse(CamelModel):
    """Schema for coupon API responses."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"), description="Coupon id")
    code: str
    type: CouponType
    value: float
    max_discount: float | None = None
    min_order_amount: float | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None
    max_uses_total: int | None = None
    max_uses_per_user: int | None = None
    used_count: int = 0
    used_by: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CouponListResponse(CamelModel):
    items: list[CouponResponse]


class CouponValidateRequest(CamelModel):
    """Cart preview request for POST /coupons/validate."""

    code: str = Field(min_length=1, description="Coupon code as typed by the customer")
    user: ObjectIdStr = Field(description="Customer id")
    subtotal: Decimal = Field(ge=0, description="Cart subtotal before discount")


class CouponValidateResponse(CamelModel):
    """Whether the coupon would apply, and the discount it would grant."""

    valid: bool
    reason: str | None = None
    code: str
    discount_amount: float = 0.0
