"""Read-only routes over the derived order views."""

from fastapi import APIRouter

from src.api.deps import OrderServiceDep
from src.core.database import serialize_document
from src.models.order_view import (
    ONGOING_ORDERS_COLLECTION,
    ORDER_CANCELLATIONS_COLLECTION,
    ORDER_HISTORY_COLLECTION,
)
from src.schemas.order import OrderViewListResponse

router = APIRouter(tags=["order views"])


@router.get(
    "/ongoing-orders",
    response_model=OrderViewListResponse,
    summary="List ongoing orders",
    description="Orders that are pending, confirmed or shipped.",
)
async def list_ongoing_orders(service: OrderServiceDep, user: str | None = None) -> OrderViewListResponse:
    rows = await service.list_view(ONGOING_ORDERS_COLLECTION, user)
    return OrderViewListResponse(items=serialize_document(rows))


@router.get(
    "/order-history",
    response_model=OrderViewListResponse,
    summary="List order history",
    description="Orders that reached a terminal status.",
)
async def list_order_history(service: OrderServiceDep, user: str | None = None) -> OrderViewListResponse:
    rows = await service.list_view(ORDER_HISTORY_COLLECTION, user)
    return OrderViewListResponse(items=serialize_document(rows))


@router.get(
    "/order-cancellations",
    response_model=OrderViewListResponse,
    summary="List cancelled and returned orders",
)
async def list_order_cancellations(service: OrderServiceDep, user: str | None = None) -> OrderViewListResponse:
    rows = await service.list_view(ORDER_CANCELLATIONS_COLLECTION, user)
    return OrderViewListResponse(items=serialize_document(rows))
