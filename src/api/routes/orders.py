"""Order API routes."""

from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Query, Response, status

from src.api.deps import OrderServiceDep
from src.core.database import serialize_document
from src.schemas.order import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    OrderCreate,
    OrderListResponse,
    OrderPlacementResponse,
    OrderUpdate,
)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=OrderPlacementResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        200: {"description": "Not placed, the customer already has an ongoing order"},
        400: {"description": "Invalid product or coupon"},
        409: {"description": "Order code already used"},
    },
    summary="Place an order",
    description="Prices the cart, applies the coupon and stores a pending order.",
)
async def create_order(
    data: OrderCreate,
    response: Response,
    service: OrderServiceDep,
) -> OrderPlacementResponse:
    """Place a new order.

    Args:
        data: Order creation data.
        response: FastAPI response object for setting status code.
        service: Order service.

    Returns:
        OrderPlacementResponse: The created order, or `placed: false` when
            the customer must wait for their current order.
    """
    result = await service.create_order(
        code=data.code,
        user=data.user,
        items=[item.model_dump() for item in data.items],
        shipping_address=data.address_payload(),
        coupon_code=data.coupon_code,
        delivery_instructions=data.delivery_instructions,
        ar_delivery_instructions=data.ar_delivery_instructions,
        card_message=data.card_message,
        ar_card_message=data.ar_card_message,
        card_image=data.card_image,
        tax_amount=data.tax_amount,
    )

    if not result.placed:
        response.status_code = status.HTTP_200_OK

    return OrderPlacementResponse(
        placed=result.placed,
        message=result.message,
        order=serialize_document(result.order),
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List orders",
    description="Returns hydrated orders, newest first, optionally filtered by status and placement date.",
)
async def list_orders(
    service: OrderServiceDep,
    order_status: Annotated[str | None, Query(alias="status")] = None,
    placed_from: Annotated[date | None, Query(alias="from")] = None,
    placed_to: Annotated[date | None, Query(alias="to")] = None,
) -> OrderListResponse:
    """List orders.

    Args:
        service: Order service.
        order_status: Optional status filter.
        placed_from: Earliest placement date.
        placed_to: Latest placement date, inclusive.

    Returns:
        OrderListResponse: Matching orders.
    """
    orders = await service.list_orders(order_status, placed_from, placed_to)
    return OrderListResponse(items=serialize_document(orders))


@router.get(
    "/user/{user_id}",
    response_model=OrderListResponse,
    summary="List a customer's orders",
)
async def list_user_orders(user_id: str, service: OrderServiceDep) -> OrderListResponse:
    orders = await service.list_orders_for_user(user_id)
    return OrderListResponse(items=serialize_document(orders))


@router.post(
    "/bulk-delete",
    response_model=BulkDeleteResponse,
    summary="Delete several orders",
)
async def bulk_delete_orders(data: BulkDeleteRequest, service: OrderServiceDep) -> BulkDeleteResponse:
    """Hard-delete the given orders.

    Raises:
        ValidationError: 422 if no ids were given.
    """
    result = await service.bulk_delete_orders(data.ids)
    return BulkDeleteResponse(deleted_count=result["deletedCount"])


@router.get(
    "/{order_id}",
    summary="Get order by ID",
    responses={404: {"description": "Order not found"}},
)
async def get_order(order_id: str, service: OrderServiceDep) -> dict[str, Any]:
    order = await service.get_order(order_id)
    return serialize_document(order)


@router.put(
    "/{order_id}",
    summary="Update an order",
    description="Applies status, payment and note changes. The first paid transition redeems the order's coupon.",
    responses={
        400: {"description": "Coupon usage limit reached"},
        404: {"description": "Order not found"},
        422: {"description": "Empty or invalid update"},
    },
)
async def update_order(order_id: str, data: OrderUpdate, service: OrderServiceDep) -> dict[str, Any]:
    """Update an order.

    Args:
        order_id: The order's id.
        data: Fields to change.
        service: Order service.

    Returns:
        dict: The hydrated updated order.
    """
    order = await service.update_order(order_id, data.to_patch())
    return serialize_document(order)


@router.delete(
    "/{order_id}",
    summary="Delete an order",
    responses={404: {"description": "Order not found"}},
)
async def delete_order(order_id: str, service: OrderServiceDep) -> dict[str, Any]:
    order = await service.delete_order(order_id)
    return serialize_document(order)
