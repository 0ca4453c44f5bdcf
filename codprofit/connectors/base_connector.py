"""
Base connector classes for courier and storefront integrations

Adapters are the only code that performs network I/O. They raise on
failure; the sync service catches and records the failure so one broken
integration never blocks the others.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List
import asyncio

from codprofit.schemas import Order, TimeWindow, TrackingUpdate
from codprofit.utils.logger import log
from codprofit.utils.retry import calculate_backoff, is_retryable_error


class RetryMixin:
    """Retry with backoff for transient failures"""

    RETRY_MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 2.0  # seconds
    RETRY_MAX_DELAY = 30.0  # seconds

    name = "connector"

    def __init__(self):
        self.last_sync = None
        self.sync_count = 0
        self.error_count = 0
        self.retry_count = 0

    async def _retry_operation(self, operation: Callable[[], Awaitable[Any]], operation_name: str = "operation") -> Any:
        """
        Execute an async operation, retrying transient errors.

        Non-retryable errors (bad credentials, 4xx) propagate immediately.
        """
        for attempt in range(1, self.RETRY_MAX_ATTEMPTS + 1):
            try:
                result = await operation()
                if attempt > 1:
                    self.retry_count += attempt - 1
                return result
            except Exception as e:
                if attempt >= self.RETRY_MAX_ATTEMPTS or not is_retryable_error(e):
                    self.error_count += 1
                    raise

                delay = calculate_backoff(
                    attempt,
                    base_delay=self.RETRY_BASE_DELAY,
                    max_delay=self.RETRY_MAX_DELAY
                )
                log.warning(
                    f"{self.name} {operation_name} attempt {attempt} failed: {e}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

    def _mark_synced(self):
        self.last_sync = datetime.utcnow()
        self.sync_count += 1

    def get_status(self) -> Dict[str, Any]:
        """Get connector status"""
        return {
            "name": self.name,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "sync_count": self.sync_count,
            "error_count": self.error_count,
            "retry_count": self.retry_count,
            "error_rate": self.error_count / max(self.sync_count, 1),
        }


class BaseCourierConnector(RetryMixin, ABC):
    """
    Contract every courier adapter fulfils.

    Orders returned by `fetch_recent_orders` already carry a mapped
    OrderStatus; their cost fields are placeholders that the enrichment
    pipeline overwrites.
    """

    @abstractmethod
    async def fetch_recent_orders(self, window: TimeWindow) -> List[Order]:
        """Orders booked with this courier inside the window"""
        pass

    @abstractmethod
    async def track(self, tracking_number: str) -> TrackingUpdate:
        """Latest status of a single shipment"""
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the saved credentials work"""
        pass

    @property
    def supports_listing(self) -> bool:
        """False for couriers whose orders must be backfilled from the storefront"""
        return True

    async def sync(self, window: TimeWindow) -> List[Order]:
        orders = await self._retry_operation(
            lambda: self.fetch_recent_orders(window),
            operation_name="fetch_recent_orders",
        )
        self._mark_synced()
        log.info(f"Fetched {len(orders)} orders from {self.name}")
        return orders
