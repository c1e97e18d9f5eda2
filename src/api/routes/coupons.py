"""Coupon maintenance and cart preview routes."""

from fastapi import APIRouter, status

from src.api.deps import CouponServiceDep
from src.core.database import serialize_document
from src.schemas.coupon import (
    CouponCreate,
    CouponListResponse,
    CouponResponse,
    CouponUpdate,
    CouponValidateRequest,
    CouponValidateResponse,
)

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post(
    "",
    response_model=CouponResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "Coupon code already exists"}},
    summary="Create a coupon",
)
async def create_coupon(data: CouponCreate, service: CouponServiceDep) -> CouponResponse:
    coupon = await service.create_coupon(data.to_document())
    return CouponResponse.model_validate(serialize_document(coupon))


@router.get("", response_model=CouponListResponse, summary="List coupons")
async def list_coupons(service: CouponServiceDep) -> CouponListResponse:
    coupons = await service.list_coupons()
    return CouponListResponse(
        items=[CouponResponse.model_validate(serialize_document(c)) for c in coupons]
    )


@router.post(
    "/validate",
    response_model=CouponValidateResponse,
    summary="Preview a coupon",
    description="Checks whether a coupon applies to a cart and returns the discount it would grant. Nothing is written.",
)
async def validate_coupon(data: CouponValidateRequest, service: CouponServiceDep) -> CouponValidateResponse:
    """Preview a coupon for a cart.

    Args:
        data: Code, customer and cart subtotal.
        service: Coupon service.

    Returns:
        CouponValidateResponse: Validity, failure reason and discount.
    """
    result = await service.preview(data.code, data.user, data.subtotal)
    return CouponValidateResponse(
        valid=result["valid"],
        reason=result["reason"],
        code=result["code"],
        discount_amount=float(result["discountAmount"]),
    )


@router.get(
    "/{coupon_id}",
    response_model=CouponResponse,
    responses={404: {"description": "Coupon not found"}},
    summary="Get coupon by ID",
)
async def get_coupon(coupon_id: str, service: CouponServiceDep) -> CouponResponse:
    coupon = await service.get_coupon(coupon_id)
    return CouponResponse.model_validate(serialize_document(coupon))


@router.put(
    "/{coupon_id}",
    response_model=CouponResponse,
    responses={404: {"description": "Coupon not found"}, 409: {"description": "Coupon code already exists"}},
    summary="Update a coupon",
)
async def update_coupon(coupon_id: str, data: CouponUpdate, service: CouponServiceDep) -> CouponResponse:
    coupon = await service.update_coupon(coupon_id, data.to_patch())
    return CouponResponse.model_validate(serialize_document(coupon))


@router.delete(
    "/{coupon_id}",
    response_model=CouponResponse,
    responses={404: {"description": "Coupon not found"}},
    summary="Delete a coupon",
)
async def delete_coupon(coupon_id: str, service: CouponServiceDep) -> CouponResponse:
    coupon = await service.delete_coupon(coupon_id)
    return CouponResponse.model_validate(serialize_document(coupon))
