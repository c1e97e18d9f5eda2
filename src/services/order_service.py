"""Order placement, update and deletion.

Creates and updates run as single MongoDB transactions spanning the line
items, the shipping address, the order and (on the first paid transition)
the coupon usage counter. Derived views and the snapshot notifier run
strictly after commit and can never undo or fail a committed change.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Mapping

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
from src.models.catalog import PRODUCTS_COLLECTION, USERS_COLLECTION
from src.models.coupon import COUPONS_COLLECTION
from src.models.order import (
    ADDRESSES_COLLECTION,
    ORDER_ITEMS_COLLECTION,
    ORDER_STATUSES,
    ORDERS_COLLECTION,
    PAYMENT_STATUSES,
    UPDATABLE_ORDER_FIELDS,
)
from src.models.order_view import ONGOING_ORDERS_COLLECTION
from src.services.address_service import AddressService
from src.services.catalog_service import CatalogService
from src.services.coupon_service import CouponService
from src.services.notification_service import OrderNotifier, get_order_notifier
from src.services.order_state_service import OrderStateReflector
from src.services.pricing_service import compute_totals, price_lines, subtotal_of

logger = logging.getLogger(__name__)

ACTIVE_ORDER_MESSAGE = "Please place your next order after your current order is delivered."
ORDER_PLACED_MESSAGE = "Order placed successfully"

USER_SUMMARY_FIELDS = {"firstName": 1, "lastName": 1, "email": 1}
COUPON_SUMMARY_FIELDS = {"code": 1, "type": 1, "value": 1}


@dataclass
class OrderPlacementResult:
    """Outcome of a create request.

    `placed` is False for the soft rejection when the customer still has
    an ongoing order; no order is written in that case.
    """

    placed: bool
    message: str
    order: dict[str, Any] | None = None


class OrderService:
    """Service for the order lifecycle."""

    def __init__(
        self,
        db: Database | None = None,
        catalog: CatalogService | None = None,
        coupons: CouponService | None = None,
        addresses: AddressService | None = None,
        reflector: OrderStateReflector | None = None,
        notifier: OrderNotifier | None = None,
    ) -> None:
        """Initialize order service with its collaborators.

        Args:
            db: Optional database for testing.
            catalog: Optional catalog service for testing.
            coupons: Optional coupon service for testing.
            addresses: Optional address service for testing.
            reflector: Optional state reflector for testing.
            notifier: Optional snapshot notifier for testing.
        """
        self.db = db or get_database()
        self.catalog = catalog or CatalogService(self.db)
        self.coupons = coupons or CouponService(self.db)
        self.addresses = addresses or AddressService(self.db)
        self.reflector = reflector or OrderStateReflector(self.db)
        self.notifier = notifier or get_order_notifier()

    async def create_order(
        self,
        code: str,
        user: str | ObjectId,
        items: list[Mapping[str, Any]],
        shipping_address: str | ObjectId | dict[str, Any],
        *,
        coupon_code: str | None = None,
        delivery_instructions: str | None = None,
        ar_delivery_instructions: str | None = None,
        card_message: str | None = None,
        ar_card_message: str | None = None,
        card_image: str | None = None,
        tax_amount: Any = 0,
    ) -> OrderPlacementResult:
        """Place a new pending order.

        Args:
            code: Caller-supplied, globally unique order code.
            user: Customer placing the order.
            items: Requested lines with `product` and `quantity`.
            shipping_address: Existing address id or inline address fields.
            coupon_code: Optional coupon code, matched case-insensitively.
            delivery_instructions: Optional delivery note.
            ar_delivery_instructions: Optional Arabic delivery note.
            card_message: Optional gift card message.
            ar_card_message: Optional Arabic gift card message.
            card_image: Optional gift card image URL.
            tax_amount: Externally computed tax, defaults to 0.

        Returns:
            OrderPlacementResult: The stored order, or the soft rejection.

        Raises:
            ValidationError: If required fields are missing or malformed.
            BusinessRuleError: If a product or the coupon is rejected.
            ConflictError: If the order code is already taken.
        """
        code = (code or "").strip()
        user_id = to_object_id(user)
        if not code or user_id is None or not items or not shipping_address:
            raise ValidationError("Please provide complete order details")
        for item in items:
            if to_object_id(item.get("product")) is None or int(item.get("quantity") or 1) < 1:
                raise ValidationError("Each item needs a valid product and a quantity of at least 1")

        if await self.db[ONGOING_ORDERS_COLLECTION].find_one({"user": user_id}):
            logger.info("User %s already has an ongoing order, refusing order %s", user_id, code)
            return OrderPlacementResult(placed=False, message=ACTIVE_ORDER_MESSAGE)

        try:
            async with self.db.transaction() as session:
                order = await self._insert_order(
                    session,
                    code=code,
                    user_id=user_id,
                    items=items,
                    shipping_address=shipping_address,
                    coupon_code=coupon_code,
                    tax_amount=tax_amount,
                    extra={
                        "deliveryInstructions": delivery_instructions,
                        "arDeliveryInstructions": ar_delivery_instructions,
                        "cardMessage": card_message,
                        "arCardMessage": ar_card_message,
                        "cardImage": card_image,
                    },
                )
        except DuplicateKeyError as e:
            logger.warning("Order code %s already exists", code)
            raise ConflictError(f"Order code {code} already exists") from e

        logger.info(
            "Order %s placed for user %s: subtotal=%s discount=%s tax=%s total=%s",
            code,
            user_id,
            order["subtotalAmount"],
            order["discountAmount"],
            order["taxAmount"],
            order["grandTotal"],
        )
        await self._after_commit(order["_id"], code, "create", wait_for_notifier=False)
        return OrderPlacementResult(placed=True, message=ORDER_PLACED_MESSAGE, order=order)

    async def _insert_order(
        self,
        session: AsyncClientSession,
        *,
        code: str,
        user_id: ObjectId,
        items: list[Mapping[str, Any]],
        shipping_address: str | ObjectId | dict[str, Any],
        coupon_code: str | None,
        tax_amount: Any,
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        prices = await self.catalog.price_map_for_products(str(item["product"]) for item in items)
        lines = price_lines(items, prices)
        subtotal = subtotal_of(lines)

        coupon = None
        if coupon_code and coupon_code.strip():
            coupon = await self.coupons.find_by_code(coupon_code, session=session)
            reason = await self.coupons.validate(coupon, user_id, subtotal, session=session)
            if reason:
                raise BusinessRuleError(reason)

        totals = compute_totals(lines, coupon, tax_amount)
        now = datetime.now(timezone.utc)

        item_docs = [
            {
                "products": [ObjectId(line.product_id)],
                "quantity": line.quantity,
                "discountForProducts": 0,
                "totalAmount": float(line.line_total),
                "createdAt": now,
            }
            for line in lines
        ]
        inserted = await self.db[ORDER_ITEMS_COLLECTION].insert_many(item_docs, session=session)
        address_id = await self.addresses.resolve(shipping_address, session=session)

        order = {
            "code": code,
            "user": user_id,
            "items": list(inserted.inserted_ids),
            "totalItems": totals.total_items,
            "subtotalAmount": float(totals.subtotal),
            "discountAmount": float(totals.discount),
            "taxAmount": float(totals.tax),
            "grandTotal": float(totals.grand_total),
            "appliedCoupon": coupon["_id"] if coupon else None,
            "couponRedeemedAt": None,
            "shippingAddress": address_id,
            **extra,
            "placedAt": now,
            "confirmedAt": None,
            "deliveredAt": None,
            "cancelReason": None,
            "status": "pending",
            "payment": "pending",
            "createdAt": now,
            "updatedAt": now,
        }
        result = await self.db[ORDERS_COLLECTION].insert_one(order, session=session)
        order["_id"] = result.inserted_id
        return order

    async def update_order(self, order_id: str | ObjectId, patch: Mapping[str, Any]) -> dict[str, Any]:
        """Apply an allow-listed patch to an order.

        The first time an order's payment becomes paid, its coupon is
        redeemed in the same transaction; a redemption rejected by a usage
        cap aborts the whole update.

        Args:
            order_id: The order's id.
            patch: Sparse camelCase changes; unknown fields are ignored.

        Returns:
            dict: The hydrated updated order.

        Raises:
            NotFoundError: If the order does not exist.
            ValidationError: If the patch is empty or has invalid values.
            BusinessRuleError: If the coupon redemption is rejected.
        """
        oid = to_object_id(order_id)
        if oid is None:
            raise NotFoundError("Order not found")

        changes = {key: patch[key] for key in UPDATABLE_ORDER_FIELDS if key in patch}
        if not changes:
            raise ValidationError("No updatable order fields provided")
        if "status" in changes and changes["status"] not in ORDER_STATUSES:
            raise ValidationError(f"Invalid order status: {changes['status']}")
        if "payment" in changes and changes["payment"] not in PAYMENT_STATUSES:
            raise ValidationError(f"Invalid payment status: {changes['payment']}")

        orders = self.db[ORDERS_COLLECTION]
        async with self.db.transaction() as session:
            current = await orders.find_one({"_id": oid}, session=session)
            if not current:
                raise NotFoundError("Order not found")

            now = datetime.now(timezone.utc)
            if changes.get("status") == "delivered":
                changes["deliveredAt"] = now
            if "shippingAddress" in changes:
                changes["shippingAddress"] = await self.addresses.resolve(
                    changes["shippingAddress"], session=session
                )
            changes["updatedAt"] = now

            updated = await orders.find_one_and_update(
                {"_id": oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
                session=session,
            )

            paid_now = current.get("payment") != "paid" and updated.get("payment") == "paid"
            if (
                paid_now
                and updated.get("appliedCoupon")
                and updated.get("user")
                and not updated.get("couponRedeemedAt")
            ):
                redeemed = await self.coupons.redeem(
                    updated["appliedCoupon"], updated["user"], oid, session
                )
                if redeemed:
                    await orders.update_one(
                        {"_id": oid}, {"$set": {"couponRedeemedAt": now}}, session=session
                    )
                    updated["couponRedeemedAt"] = now

        logger.info(
            "Order %s updated: %s",
            updated.get("code"),
            ", ".join(sorted(key for key in changes if key != "updatedAt")),
        )
        hydrated = await self._after_commit(oid, updated.get("code"), "update", wait_for_notifier=True)
        return hydrated or updated

    async def delete_order(self, order_id: str | ObjectId) -> dict[str, Any]:
        """Hard-delete an order.

        Its line items and ongoing row are cleaned up best-effort; history
        and cancellation rows are kept as an audit trail.

        Raises:
            NotFoundError: If the order does not exist.
        """
        oid = to_object_id(order_id)
        async with self.reflector.locks.hold(str(oid)):
            order = await self.db[ORDERS_COLLECTION].find_one_and_delete({"_id": oid}) if oid else None
            if not order:
                raise NotFoundError("Order not found")
            logger.info("Order %s deleted", order.get("code"))
            await self._cleanup_deleted([oid], order.get("items") or [], "delete")
        return order

    async def bulk_delete_orders(self, ids: Iterable[str | ObjectId]) -> dict[str, int]:
        """Hard-delete several orders.

        Holds every order's reflection lock, so a reflection already in
        flight finishes before its ongoing row is cleaned up.

        Returns:
            dict: `deletedCount` of removed orders.

        Raises:
            ValidationError: If no ids were given.
        """
        ids = list(ids or [])
        if not ids:
            raise ValidationError("ids array is required")
        object_ids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
        if not object_ids:
            return {"deletedCount": 0}

        orders = self.db[ORDERS_COLLECTION]
        async with AsyncExitStack() as stack:
            # Sorted so two overlapping bulk deletes take the locks in the same order
            for key in sorted({str(oid) for oid in object_ids}):
                await stack.enter_async_context(self.reflector.locks.hold(key))

            doomed = await orders.find({"_id": {"$in": object_ids}}, {"items": 1}).to_list(length=None)
            result = await orders.delete_many({"_id": {"$in": object_ids}})
            logger.info("Bulk deleted %d of %d orders", result.deleted_count, len(ids))

            item_ids = [item_id for order in doomed for item_id in order.get("items") or []]
            await self._cleanup_deleted([order["_id"] for order in doomed], item_ids, "bulk_delete")
        return {"deletedCount": result.deleted_count}

    async def _cleanup_deleted(
        self, order_ids: list[ObjectId], item_ids: list[ObjectId], action: str
    ) -> None:
        if not order_ids:
            return
        try:
            await self.db[ONGOING_ORDERS_COLLECTION].delete_many({"order": {"$in": order_ids}})
        except Exception as e:
            logger.error("Ongoing cleanup after %s failed for %s: %s", action, order_ids, e)
        if item_ids:
            try:
                await self.db[ORDER_ITEMS_COLLECTION].delete_many({"_id": {"$in": item_ids}})
            except Exception as e:
                logger.error("Line item cleanup after %s failed for %s: %s", action, order_ids, e)

    async def get_order(self, order_id: str | ObjectId) -> dict[str, Any]:
        """Get one hydrated order.

        Raises:
            NotFoundError: If the order does not exist.
        """
        oid = to_object_id(order_id)
        order = await self._get_hydrated(oid) if oid else None
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def list_orders(
        self,
        status: str | None = None,
        placed_from: date | None = None,
        placed_to: date | None = None,
    ) -> list[dict[str, Any]]:
        """List hydrated orders, newest first.

        Args:
            status: Optional status filter.
            placed_from: Earliest placement date, inclusive.
            placed_to: Latest placement date, inclusive through end of day.
        """
        query: dict[str, Any] = {}
        if status and status.lower() in ORDER_STATUSES:
            query["status"] = status.lower()
        if placed_from or placed_to:
            query["placedAt"] = {}
            if placed_from:
                query["placedAt"]["$gte"] = datetime.combine(placed_from, time.min, tzinfo=timezone.utc)
            if placed_to:
                query["placedAt"]["$lte"] = datetime.combine(placed_to, time.max, tzinfo=timezone.utc)

        orders = await self.db[ORDERS_COLLECTION].find(query).sort("placedAt", -1).to_list(length=None)
        return await self.hydrate(orders)

    async def list_orders_for_user(self, user_id: str) -> list[dict[str, Any]]:
        """List one customer's hydrated orders, newest first."""
        oid = to_object_id(user_id)
        if oid is None:
            return []
        orders = await self.db[ORDERS_COLLECTION].find({"user": oid}).sort("placedAt", -1).to_list(length=None)
        return await self.hydrate(orders)

    async def list_view(self, collection: str, user_id: str | None = None) -> list[dict[str, Any]]:
        """List rows of a derived order view with their orders populated.

        Args:
            collection: One of the derived view collections.
            user_id: Optional customer filter.
        """
        query: dict[str, Any] = {}
        if user_id:
            oid = to_object_id(user_id)
            if oid is None:
                return []
            query["user"] = oid

        rows = await self.db[collection].find(query).sort("createdAt", -1).to_list(length=None)
        orders = await self._load_by_ids(
            ORDERS_COLLECTION,
            [row.get("order") for row in rows],
            {"code": 1, "status": 1, "payment": 1, "grandTotal": 1, "placedAt": 1},
        )
        return [{**row, "order": orders.get(row.get("order"), row.get("order"))} for row in rows]

    async def _get_hydrated(self, order_id: ObjectId) -> dict[str, Any] | None:
        order = await self.db[ORDERS_COLLECTION].find_one({"_id": order_id})
        if not order:
            return None
        return (await self.hydrate([order]))[0]

    async def hydrate(self, orders: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Replace references with their documents, batching lookups.

        References that no longer resolve are left as they are.
        """
        if not orders:
            return []

        users = await self._load_by_ids(
            USERS_COLLECTION, [o.get("user") for o in orders], USER_SUMMARY_FIELDS
        )
        coupons = await self._load_by_ids(
            COUPONS_COLLECTION, [o.get("appliedCoupon") for o in orders], COUPON_SUMMARY_FIELDS
        )
        addresses = await self._load_by_ids(
            ADDRESSES_COLLECTION, [o.get("shippingAddress") for o in orders]
        )
        items = await self._load_by_ids(
            ORDER_ITEMS_COLLECTION, [i for o in orders for i in o.get("items") or []]
        )
        products = await self._load_by_ids(
            PRODUCTS_COLLECTION, [p for item in items.values() for p in item.get("products") or []]
        )

        hydrated = []
        for order in orders:
            order_items = []
            for item_id in order.get("items") or []:
                item = items.get(item_id)
                if item is None:
                    order_items.append(item_id)
                    continue
                order_items.append(
                    {**item, "products": [products.get(p, p) for p in item.get("products") or []]}
                )
            hydrated.append(
                {
                    **order,
                    "user": users.get(order.get("user"), order.get("user")),
                    "appliedCoupon": coupons.get(order.get("appliedCoupon"), order.get("appliedCoupon")),
                    "shippingAddress": addresses.get(order.get("shippingAddress"), order.get("shippingAddress")),
                    "items": order_items,
                }
            )
        return hydrated

    async def _load_by_ids(
        self,
        collection: str,
        ids: Iterable[Any],
        projection: dict[str, int] | None = None,
    ) -> dict[ObjectId, dict[str, Any]]:
        unique_ids = list({i for i in ids if isinstance(i, ObjectId)})
        if not unique_ids:
            return {}
        docs = await self.db[collection].find({"_id": {"$in": unique_ids}}, projection).to_list(length=None)
        return {doc["_id"]: doc for doc in docs}

    async def _after_commit(
        self,
        order_id: ObjectId,
        code: str | None,
        action: str,
        *,
        wait_for_notifier: bool,
    ) -> dict[str, Any] | None:
        try:
            reflection = await self.reflector.sync(order_id)
            if reflection and not reflection.ok:
                logger.error(
                    "Order %s %s committed but views %s are stale",
                    code,
                    action,
                    ", ".join(reflection.failed),
                )
        except Exception as e:
            logger.error("Order %s state reflection failed after %s: %s", code, action, e)

        try:
            hydrated = await self._get_hydrated(order_id)
        except Exception as e:
            logger.error("Order %s could not be re-read after %s: %s", code, action, e)
            return None

        if hydrated is None:
            return None
        if wait_for_notifier:
            await self.notifier.push_safely(hydrated, action)
        else:
            self.notifier.dispatch(hydrated, action)
        return hydrated
