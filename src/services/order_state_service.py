"""Keeps the derived order views in step with the order record.

Every order belongs to a fixed set of derived collections depending only
on its status:

    status                      ongoing  history  cancellations
    pending/confirmed/shipped   yes      no       no
    delivered                   no       yes      no
    cancelled/returned          no       yes      yes

After each committed order change the reflector upserts the order's row
in the collections it belongs to and deletes it from the others. It is
the only writer of those collections, and running it twice on an
unchanged order writes nothing new.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from bson import ObjectId
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from src.core.config import get_settings
from src.core.database import Database, get_database, to_object_id
from src.models.order import ORDERS_COLLECTION
from src.models.order_view import (
    ONGOING_ORDERS_COLLECTION,
    ORDER_CANCELLATIONS_COLLECTION,
    ORDER_HISTORY_COLLECTION,
)

logger = logging.getLogger(__name__)

ONGOING_STATUSES = ("pending", "confirmed", "shipped")
HISTORY_STATUSES = ("delivered", "cancelled", "returned")
CANCELLED_STATUSES = ("cancelled", "returned")

# Upper bound for the delay between two reflection attempts
MAX_BACKOFF_SECONDS = 2


@dataclass(frozen=True)
class ViewPlacement:
    """Which derived collections an order must appear in."""

    ongoing: bool
    history: bool
    cancelled: bool


def placement_for(status: str | None) -> ViewPlacement:
    """Map an order status to its derived-collection placement.

    Unknown statuses belong nowhere, which clears every view.
    """
    status = (status or "").lower()
    return ViewPlacement(
        ongoing=status in ONGOING_STATUSES,
        history=status in HISTORY_STATUSES,
        cancelled=status in CANCELLED_STATUSES,
    )


def ongoing_fields(order: dict[str, Any]) -> dict[str, Any]:
    return {
        "user": to_object_id(order.get("user")),
        "status": order.get("status"),
        "paymentStatus": "paid" if order.get("payment") == "paid" else "pending",
    }


def history_fields(order: dict[str, Any]) -> dict[str, Any]:
    return {
        "user": to_object_id(order.get("user")),
        "status": order.get("status"),
        "notes": order.get("cardMessage") or None,
        "arNotes": order.get("arCardMessage") or None,
    }


def cancellation_fields(order: dict[str, Any]) -> dict[str, Any]:
    # refundAmount is only set on insert; refunds are processed elsewhere
    return {
        "user": to_object_id(order.get("user")),
        "status": order.get("status"),
        "refundReason": order.get("cancelReason") or None,
        "paymentStatus": "paid" if order.get("payment") == "paid" else "unpaid",
    }


@dataclass
class ReflectionResult:
    """Outcome of reflecting one order into the derived collections."""

    order_id: ObjectId
    code: str | None
    placement: ViewPlacement
    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class OrderLockRegistry:
    """Per-order asyncio locks, dropped once nobody holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


@lru_cache
def get_order_locks() -> OrderLockRegistry:
    """Get the process-wide lock registry shared by every reflector."""
    return OrderLockRegistry()


class OrderStateReflector:
    """Synchronizes ongoing, history and cancellation rows for an order."""

    def __init__(
        self,
        db: Database | None = None,
        locks: OrderLockRegistry | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        """Initialize the reflector.

        Args:
            db: Optional database for testing.
            locks: Lock registry; defaults to the process-wide one.
            max_attempts: Attempts per collection; defaults to settings.
            backoff_seconds: Base retry delay; defaults to settings.
        """
        settings = get_settings()
        self.db = db or get_database()
        self.locks = locks if locks is not None else get_order_locks()
        self.max_attempts = max_attempts or settings.reflection_max_attempts
        self.backoff_seconds = settings.reflection_backoff_seconds if backoff_seconds is None else backoff_seconds

    async def sync(self, order_id: ObjectId) -> ReflectionResult | None:
        """Reflect the latest committed state of an order.

        Calls for the same order are serialized and each one re-reads the
        order under the lock, so a slow earlier call can never overwrite
        the views written for a newer state.

        Args:
            order_id: The order to reflect.

        Returns:
            ReflectionResult | None: None if the order no longer exists.
        """
        async with self.locks.hold(str(order_id)):
            order = await self.db[ORDERS_COLLECTION].find_one({"_id": order_id})
            if order is None:
                logger.warning("Skipping reflection for missing order %s", order_id)
                return None
            return await self.reflect(order)

    async def reflect(self, order: dict[str, Any]) -> ReflectionResult:
        """Apply the placement table to one order document.

        Failures are retried per collection and then logged; they never
        raise, and one collection failing does not stop the others.
        """
        order_id = order["_id"]
        placement = placement_for(order.get("status"))
        result = ReflectionResult(order_id=order_id, code=order.get("code"), placement=placement)
        now = datetime.now(timezone.utc)

        steps: list[tuple[str, bool, dict[str, Any], dict[str, Any]]] = [
            (
                ONGOING_ORDERS_COLLECTION,
                placement.ongoing,
                ongoing_fields(order),
                {"createdAt": now},
            ),
            (
                ORDER_HISTORY_COLLECTION,
                placement.history,
                history_fields(order),
                {"at": order.get("deliveredAt") or now, "createdAt": now},
            ),
            (
                ORDER_CANCELLATIONS_COLLECTION,
                placement.cancelled,
                cancellation_fields(order),
                {"refundAmount": 0, "at": now, "createdAt": now},
            ),
        ]

        for collection, present, set_fields, insert_fields in steps:
            if present:
                operation = self._upsert_op(collection, order_id, set_fields, insert_fields)
            else:
                operation = self._delete_op(collection, order_id)

            if await self._run_with_retry(operation, collection, result):
                result.applied.append(collection)
            else:
                result.failed.append(collection)

        if result.ok:
            logger.debug("Reflected order %s into %s", result.code, placement)
        return result

    async def reconcile(self, codes: list[str] | None = None) -> dict[str, int]:
        """Re-run reflection over stored orders.

        Args:
            codes: Order codes to reconcile; all orders when omitted.

        Ongoing rows left behind by deleted orders are removed as well, since
        they would keep blocking their customer's next order.

        Returns:
            dict: Counts of `total`, `reconciled` and `failed` orders, and
            `orphans` ongoing rows.
        """
        query: dict[str, Any] = {"code": {"$in": codes}} if codes else {}
        order_ids = [
            order["_id"]
            for order in await self.db[ORDERS_COLLECTION].find(query, {"_id": 1}).to_list(length=None)
        ]

        stats = {"total": len(order_ids), "reconciled": 0, "failed": 0}
        for order_id in order_ids:
            result = await self.sync(order_id)
            if result is None:
                continue
            if result.ok:
                stats["reconciled"] += 1
            else:
                stats["failed"] += 1
        stats["orphans"] = await self.remove_orphaned_ongoing()
        return stats

    async def remove_orphaned_ongoing(self) -> int:
        """Delete ongoing rows whose order no longer exists.

        Each candidate is re-checked under its order lock so a row written
        for an order committed meanwhile is kept.

        Returns:
            int: Number of rows removed.
        """
        rows = await self.db[ONGOING_ORDERS_COLLECTION].find({}, {"order": 1}).to_list(length=None)
        removed = 0
        for row in rows:
            order_id = row.get("order")
            async with self.locks.hold(str(order_id)):
                if await self.db[ORDERS_COLLECTION].find_one({"_id": order_id}, {"_id": 1}) is not None:
                    continue
                await self.db[ONGOING_ORDERS_COLLECTION].delete_one({"order": order_id})
            logger.warning("Removed ongoing row for deleted order %s", order_id)
            removed += 1
        return removed

    def _upsert_op(
        self,
        collection: str,
        order_id: ObjectId,
        set_fields: dict[str, Any],
        insert_fields: dict[str, Any],
    ) -> Callable[[], Awaitable[Any]]:
        async def run() -> Any:
            return await self.db[collection].update_one(
                {"order": order_id},
                {"$set": set_fields, "$setOnInsert": insert_fields},
                upsert=True,
            )

        return run

    def _delete_op(self, collection: str, order_id: ObjectId) -> Callable[[], Awaitable[Any]]:
        async def run() -> Any:
            return await self.db[collection].delete_one({"order": order_id})

        return run

    async def _run_with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        collection: str,
        result: ReflectionResult,
    ) -> bool:
        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Reflection of order %s into %s failed (attempt %d/%d): %s",
                result.code,
                collection,
                retry_state.attempt_number,
                self.max_attempts,
                retry_state.outcome.exception(),
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=MAX_BACKOFF_SECONDS),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            await retrying(operation)
            return True
        except Exception as e:
            logger.error(
                "Reflection of order %s into %s failed, needs reconciliation: %s",
                result.code,
                collection,
                e,
                extra={"order_id": str(result.order_id), "collection": collection},
            )
            return False
