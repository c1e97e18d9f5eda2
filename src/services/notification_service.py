"""Best-effort export of order snapshots to an external bookkeeping endpoint."""

import asyncio
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import httpx
from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Upper bound for the delay between two push attempts
MAX_BACKOFF_SECONDS = 30


class OrderNotifier:
    """Pushes hydrated order snapshots after an order change commits.

    Failures are logged and swallowed: by the time a snapshot is pushed the
    order change is already committed and must not be reported as failed.
    """

    def __init__(
        self,
        webhook_url: str | None = None,
        timeout_seconds: float | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
        currency: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the notifier from settings, with per-argument overrides.

        Args:
            webhook_url: Snapshot endpoint; empty means log-only.
            timeout_seconds: HTTP timeout per attempt.
            max_attempts: Attempts before giving up.
            backoff_seconds: Base delay of the exponential backoff.
            currency: Currency label sent with the snapshot.
            transport: Optional httpx transport for testing.
        """
        settings = get_settings()
        self.webhook_url = settings.notifier_webhook_url if webhook_url is None else webhook_url
        self.timeout_seconds = timeout_seconds or settings.notifier_timeout_seconds
        self.max_attempts = max_attempts or settings.notifier_max_attempts
        self.backoff_seconds = settings.notifier_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.currency = currency or settings.currency
        self._transport = transport
        self._pending: set[asyncio.Task] = set()

    def build_payload(self, order: dict[str, Any], action: str) -> dict[str, Any]:
        """Build the JSON body describing one order snapshot."""
        return {
            "action": action,
            "currency": self.currency,
            "sentAt": datetime.now(timezone.utc),
            "order": order,
        }

    async def push_order_snapshot(self, order: dict[str, Any], action: str = "update") -> None:
        """Send a snapshot, retrying transport and HTTP errors with exponential backoff.

        Raises:
            httpx.HTTPError: If every attempt failed.
        """
        code = order.get("code")
        payload = jsonable_encoder(self.build_payload(order, action), custom_encoder={ObjectId: str})
        if not self.webhook_url:
            logger.info("Order snapshot %s (%s): no webhook configured", code, action)
            return

        def log_retry(retry_state: RetryCallState) -> None:
            logger.warning(
                "Order snapshot %s push failed (attempt %d/%d): %s",
                code,
                retry_state.attempt_number,
                self.max_attempts,
                retry_state.outcome.exception(),
            )

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(httpx.HTTPError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=MAX_BACKOFF_SECONDS),
            before_sleep=log_retry,
            reraise=True,
        )

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            async for attempt in retrying:
                with attempt:
                    response = await client.post(self.webhook_url, json=payload)
                    response.raise_for_status()

        logger.info("Order snapshot %s pushed (%s)", code, action)

    async def push_safely(self, order: dict[str, Any], action: str = "update") -> bool:
        """Push a snapshot and log instead of raising.

        Returns:
            bool: True if the snapshot was delivered (or only logged).
        """
        try:
            await self.push_order_snapshot(order, action)
            return True
        except Exception as e:
            logger.error(
                "Order snapshot %s push failed after %s: %s",
                order.get("code"),
                action,
                e,
                extra={"order_code": order.get("code"), "action": action},
            )
            return False

    def dispatch(self, order: dict[str, Any], action: str = "create") -> asyncio.Task:
        """Schedule a snapshot push without waiting for it."""
        task = asyncio.create_task(self.push_safely(order, action))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for scheduled pushes, e.g. on shutdown."""
        if self._pending:
            logger.info("Waiting for %d pending order snapshot(s)", len(self._pending))
            await asyncio.gather(*self._pending, return_exceptions=True)


@lru_cache
def get_order_notifier() -> OrderNotifier:
    """Get the process-wide notifier so pending pushes can be drained."""
    return OrderNotifier()
