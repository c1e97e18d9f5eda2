"""Order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, ConfigDict, Field

from src.models.order import OrderStatus, PaymentStatus
from src.schemas.common import CamelModel, ObjectIdStr


class OrderItemInput(CamelModel):
    """A requested order line."""

    product: ObjectIdStr = Field(description="Product id")
    quantity: int = Field(default=1, ge=1, description="Units ordered")


class AddressInput(CamelModel):
    """Inline shipping address, stored as a new address document.

    Unknown fields are kept so storefront-specific address parts survive.
    """

    model_config = ConfigDict(extra="allow")

    full_name: str | None = Field(default=None, description="Recipient name")
    phone: str | None = Field(default=None, description="Recipient phone number")
    street: str | None = Field(default=None, description="Street and building")
    city: str | None = Field(default=None, description="City")
    area: str | None = Field(default=None, description="Area or district")
    country: str | None = Field(default=None, description="Country")


class OrderCreate(CamelModel):
    """Schema for creating an order via POST /orders."""

    code: str = Field(min_length=1, description="Caller-supplied unique order code")
    user: ObjectIdStr = Field(description="Customer id")
    items: list[OrderItemInput] = Field(min_length=1, description="Requested lines")
    shipping_address: ObjectIdStr | AddressInput = Field(
        description="Existing address id or the fields of a new address"
    )
    coupon_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("couponCode", "coupon_code", "appliedCoupon"),
        description="Coupon code; `appliedCoupon` is accepted for older storefront builds",
    )
    delivery_instructions: str | None = Field(default=None, description="Delivery note")
    ar_delivery_instructions: str | None = Field(default=None, description="Arabic delivery note")
    card_message: str | None = Field(default=None, description="Gift card message")
    ar_card_message: str | None = Field(default=None, description="Arabic gift card message")
    card_image: str | None = Field(default=None, description="Gift card image URL")
    tax_amount: Decimal = Field(default=Decimal("0"), ge=0, description="Externally computed tax")

    def address_payload(self) -> str | dict[str, Any]:
        """Shipping address in the form the order service expects."""
        if isinstance(self.shipping_address, AddressInput):
            return self.shipping_address.model_dump(by_alias=True, exclude_none=True)
        return self.shipping_address


class OrderUpdate(CamelModel):
    """Schema for PUT /orders/{order_id}; only provided fields are applied."""

    status: OrderStatus | None = None
    payment: PaymentStatus | None = None
    confirmed_at: datetime | None = None
    cancel_reason: str | None = None
    satisfaction: int | None = Field(default=None, ge=1, le=5, description="Customer rating")
    delivery_instructions: str | None = None
    ar_delivery_instructions: str | None = None
    card_message: str | None = None
    ar_card_message: str | None = None
    card_image: str | None = None
    shipping_address: ObjectIdStr | AddressInput | None = None

    def to_patch(self) -> dict[str, Any]:
        """Provided fields as camelCase document keys.

        An inline shipping address keeps only the fields it was given.
        """
        patch = self.model_dump(by_alias=True, exclude_unset=True)
        if isinstance(self.shipping_address, AddressInput):
            patch["shippingAddress"] = self.shipping_address.model_dump(by_alias=True, exclude_none=True)
        return patch


class OrderPlacementResponse(CamelModel):
    """Result of POST /orders.

    `placed` is False when the customer still has an ongoing order.
    """

    placed: bool = Field(description="Whether an order was created")
    message: str = Field(description="Outcome message for the customer")
    order: dict[str, Any] | None = Field(default=None, description="Created order")


class OrderListResponse(CamelModel):
    """Schema for order list API responses."""

    items: list[dict[str, Any]] = Field(description="Hydrated orders")


class BulkDeleteRequest(CamelModel):
    """Schema for POST /orders/bulk-delete."""

    ids: list[str] = Field(default_factory=list, description="Ids of orders to delete")


class BulkDeleteResponse(CamelModel):
    deleted_count: int = Field(description="Number of orders removed")


class OrderViewListResponse(CamelModel):
    """Rows of a derived order view with their order summary populated."""

    items: list[dict[str, Any]] = Field(description="View rows")
