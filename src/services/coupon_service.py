"""Coupon validation, redemption and admin maintenance."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.errors import DuplicateKeyError

from src.api.middleware.error_handler import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.core.database import Database, get_database, to_object_id
from src.models.coupon import COUPONS_COLLECTION
from src.models.order import ORDERS_COLLECTION, REDEEMED_PAYMENT_STATUSES
from src.services.pricing_service import compute_discount, round_money

logger = logging.getLogger(__name__)

# Fields an admin may edit; usage counters belong to redemption only
UPDATABLE_COUPON_FIELDS = (
    "code",
    "type",
    "value",
    "maxDiscount",
    "minOrderAmount",
    "startAt",
    "endAt",
    "maxUsesTotal",
    "maxUsesPerUser",
    "isActive",
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CouponService:
    """Service for coupon lookups, validation and usage accounting."""

    def __init__(self, db: Database | None = None) -> None:
        """Initialize coupon service.

        Args:
            db: Optional database for testing.
        """
        self.db = db or get_database()

    async def find_by_code(
        self, code: str, session: AsyncClientSession | None = None
    ) -> dict[str, Any] | None:
        """Look up a coupon by code, case-insensitively.

        Args:
            code: Coupon code as typed by the customer.
            session: Optional transaction session.

        Returns:
            dict | None: The coupon document or None if not found.
        """
        normalized = (code or "").strip().upper()
        if not normalized:
            return None
        return await self.db[COUPONS_COLLECTION].find_one({"code": normalized}, session=session)

    async def count_user_redemptions(
        self,
        coupon_id: ObjectId,
        user_id: ObjectId,
        exclude_order_id: ObjectId | None = None,
        session: AsyncClientSession | None = None,
    ) -> int:
        """Count a user's orders that redeemed a coupon.

        An order counts once its payment is paid or partial.

        Args:
            coupon_id: The coupon's id.
            user_id: The customer's id.
            exclude_order_id: Order to leave out, e.g. the one being updated.
            session: Optional transaction session.

        Returns:
            int: Number of redeeming orders.
        """
        query: dict[str, Any] = {
            "user": user_id,
            "appliedCoupon": coupon_id,
            "payment": {"$in": list(REDEEMED_PAYMENT_STATUSES)},
        }
        if exclude_order_id is not None:
            query["_id"] = {"$ne": exclude_order_id}
        return await self.db[ORDERS_COLLECTION].count_documents(query, session=session)

    async def validate(
        self,
        coupon: dict[str, Any] | None,
        user_id: ObjectId,
        subtotal: Decimal,
        session: AsyncClientSession | None = None,
        now: datetime | None = None,
    ) -> str | None:
        """Check whether a coupon may be applied to an order.

        Checks run in a fixed order and the first failure wins. Nothing is
        written; usage is only counted when the order is paid.

        Args:
            coupon: Coupon document from find_by_code.
            user_id: Customer placing the order.
            subtotal: Order subtotal before discount.
            session: Optional transaction session.
            now: Evaluation time, defaults to the current UTC time.

        Returns:
            str | None: Human-readable failure reason, or None if valid.
        """
        if not coupon:
            return "Invalid coupon"
        if not coupon.get("isActive"):
            return "Coupon is inactive"

        now = now or datetime.now(timezone.utc)
        start_at = coupon.get("startAt")
        end_at = coupon.get("endAt")
        if start_at and now < _as_utc(start_at):
            return "Coupon not started yet"
        if end_at and now > _as_utc(end_at):
            return "Coupon expired"

        min_order_amount = coupon.get("minOrderAmount")
        if min_order_amount and subtotal < round_money(min_order_amount):
            return f"Minimum order amount is {min_order_amount}"

        max_uses_total = coupon.get("maxUsesTotal")
        if max_uses_total and coupon.get("usedCount", 0) >= max_uses_total:
            return "Total usage limit reached"

        max_uses_per_user = coupon.get("maxUsesPerUser")
        if max_uses_per_user and max_uses_per_user > 0:
            used_times = await self.count_user_redemptions(coupon["_id"], user_id, session=session)
            if used_times >= max_uses_per_user:
                return "Per-user usage limit reached"

        return None

    async def redeem(
        self,
        coupon_id: ObjectId,
        user_id: ObjectId,
        order_id: ObjectId,
        session: AsyncClientSession,
    ) -> bool:
        """Record one redemption of a coupon for a paid order.

        Must run inside the transaction that moves the order to paid. The
        global cap is enforced by the update filter itself, so two orders
        racing on the last use cannot both increment.

        Args:
            coupon_id: Coupon applied to the order.
            user_id: Customer who owns the order.
            order_id: Order being paid.
            session: Transaction session of the order update.

        Returns:
            bool: False if the coupon no longer exists, True once redeemed.

        Raises:
            BusinessRuleError: If the total or per-user cap is exhausted.
        """
        coupons = self.db[COUPONS_COLLECTION]
        coupon = await coupons.find_one({"_id": coupon_id}, session=session)
        if not coupon:
            logger.warning("Coupon %s applied to order %s no longer exists", coupon_id, order_id)
            return False

        max_uses_per_user = coupon.get("maxUsesPerUser")
        if max_uses_per_user and max_uses_per_user > 0:
            already_paid = await self.count_user_redemptions(
                coupon_id, user_id, exclude_order_id=order_id, session=session
            )
            if already_paid >= max_uses_per_user:
                raise BusinessRuleError("Per-user usage limit reached")

        cap_filter: dict[str, Any] = {"_id": coupon_id}
        max_uses_total = coupon.get("maxUsesTotal")
        if max_uses_total:
            cap_filter["usedCount"] = {"$lt": max_uses_total}

        result = await coupons.update_one(
            cap_filter,
            {"$addToSet": {"usedBy": user_id}, "$inc": {"usedCount": 1}},
            session=session,
        )
        if result.matched_count == 0:
            raise BusinessRuleError("Coupon usage limit reached")

        logger.info("Coupon %s redeemed by order %s", coupon.get("code"), order_id)
        return True

    async def preview(self, code: str, user_id: str | ObjectId, subtotal: Decimal) -> dict[str, Any]:
        """Validate a coupon for a cart without writing anything.

        Returns:
            dict: `valid`, `reason` and the `discountAmount` it would grant.
        """
        subtotal = round_money(subtotal)
        coupon = await self.find_by_code(code)
        reason = await self.validate(coupon, to_object_id(user_id), subtotal)
        discount = compute_discount(coupon, subtotal) if reason is None else round_money(0)
        return {
            "valid": reason is None,
            "reason": reason,
            "code": coupon["code"] if coupon else (code or "").strip().upper(),
            "discountAmount": discount,
        }

    async def list_coupons(self) -> list[dict[str, Any]]:
        """List all coupons, newest first."""
        cursor = self.db[COUPONS_COLLECTION].find({}).sort("createdAt", -1)
        return await cursor.to_list(length=None)

    async def get_coupon(self, coupon_id: str) -> dict[str, Any]:
        """Get a coupon by id.

        Raises:
            NotFoundError: If the coupon does not exist.
        """
        oid = to_object_id(coupon_id)
        coupon = await self.db[COUPONS_COLLECTION].find_one({"_id": oid}) if oid else None
        if not coupon:
            raise NotFoundError("Coupon not found")
        return coupon

    async def create_coupon(self, data: dict[str, Any]) -> dict[str, Any]:
        """Create a coupon with zeroed usage.

        Args:
            data: Coupon fields (camelCase document keys).

        Returns:
            dict: The stored coupon document.

        Raises:
            ValidationError: If code, type or value are missing.
            ConflictError: If a coupon with the same code exists.
        """
        if not data.get("code") or not data.get("type") or data.get("value") is None:
            raise ValidationError("Coupon code, type and value are required")

        now = datetime.now(timezone.utc)
        document = {key: data[key] for key in UPDATABLE_COUPON_FIELDS if key in data}
        document["code"] = document["code"].strip().upper()
        document.setdefault("isActive", True)
        document.update({"usedCount": 0, "usedBy": [], "createdAt": now, "updatedAt": now})

        try:
            result = await self.db[COUPONS_COLLECTION].insert_one(document)
        except DuplicateKeyError as e:
            raise ConflictError(f"Coupon {document['code']} already exists") from e

        document["_id"] = result.inserted_id
        logger.info("Coupon %s created", document["code"])
        return document

    async def update_coupon(self, coupon_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply an admin edit to a coupon.

        Raises:
            NotFoundError: If the coupon does not exist.
            ConflictError: If the new code collides with another coupon.
        """
        oid = to_object_id(coupon_id)
        changes = {key: patch[key] for key in UPDATABLE_COUPON_FIELDS if key in patch}
        if "code" in changes and changes["code"]:
            changes["code"] = changes["code"].strip().upper()
        changes["updatedAt"] = datetime.now(timezone.utc)

        try:
            coupon = (
                await self.db[COUPONS_COLLECTION].find_one_and_update(
                    {"_id": oid},
                    {"$set": changes},
                    return_document=ReturnDocument.AFTER,
                )
                if oid
                else None
            )
        except DuplicateKeyError as e:
            raise ConflictError(f"Coupon {changes.get('code')} already exists") from e

        if not coupon:
            raise NotFoundError("Coupon not found")
        return coupon

    async def delete_coupon(self, coupon_id: str) -> dict[str, Any]:
        """Delete a coupon.

        Orders keep their `appliedCoupon` reference; a later paid
        transition simply finds nothing to redeem.

        Raises:
            NotFoundError: If the coupon does not exist.
        """
        oid = to_object_id(coupon_id)
        coupon = await self.db[COUPONS_COLLECTION].find_one_and_delete({"_id": oid}) if oid else None
        if not coupon:
            raise NotFoundError("Coupon not found")
        logger.info("Coupon %s deleted", coupon.get("code"))
        return coupon
