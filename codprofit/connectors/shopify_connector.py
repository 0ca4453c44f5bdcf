"""
Shopify storefront connector
Fetches orders (the demand side) for backfill and reconciliation
"""
from typing import Any, Dict, List, Optional
import asyncio

import shopify

from codprofit.config import get_settings
from codprofit.connectors.base_connector import RetryMixin
from codprofit.exceptions import ConnectorError, ConnectorNotConfigured
from codprofit.schemas import StorefrontOrder, TimeWindow
from codprofit.utils.logger import log

settings = get_settings()

ORDER_FIELDS = ",".join([
    "id", "name", "created_at", "total_price", "cancel_reason", "fulfillment_status",
    "financial_status", "tags", "line_items", "fulfillments", "customer", "shipping_address",
])


class ShopifyConnector(RetryMixin):
    """Connector for the Shopify Admin API"""

    name = "Shopify"

    def __init__(
        self,
        store_url: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
    ):
        super().__init__()
        self.store_url = store_url or settings.shopify_store_url
        self.access_token = access_token or settings.shopify_access_token
        self.api_version = api_version or settings.shopify_api_version
        self.session = None

    def _require_credentials(self):
        if not self.store_url or not self.access_token:
            raise ConnectorNotConfigured(self.name, "store URL and access token are required")

    def connect(self):
        """Activate a Shopify session for this store on the calling thread"""
        self._require_credentials()
        if self.session is None:
            self.session = shopify.Session(self.store_url, self.api_version, self.access_token)
        shopify.ShopifyResource.activate_session(self.session)
        log.debug(f"Activated Shopify session: {self.store_url}")

    def _current_shop(self):
        self.connect()
        return shopify.Shop.current()

    async def test_connection(self) -> bool:
        try:
            shop = await asyncio.to_thread(self._current_shop)
            return shop is not None
        except Exception as e:
            log.error(f"Shopify connection validation failed: {e}")
            return False

    async def fetch_orders(self, window: TimeWindow) -> List[StorefrontOrder]:
        """All orders (any status) created inside the window"""
        self._require_credentials()
        raw_orders = await self._retry_operation(
            lambda: asyncio.to_thread(self._fetch_order_pages, window),
            operation_name="fetch_orders",
        )
        self._mark_synced()
        orders = [StorefrontOrder.from_dict(o) for o in raw_orders]
        log.info(f"Fetched {len(orders)} orders from Shopify")
        return orders

    def _fetch_order_pages(self, window: TimeWindow) -> List[Dict[str, Any]]:
        self.connect()  # ShopifyAPI keeps auth headers per thread
        all_orders = []
        page = 1
        try:
            orders = shopify.Order.find(
                status="any",
                created_at_min=window.start.isoformat(),
                created_at_max=window.end.isoformat(),
                fields=ORDER_FIELDS,
                limit=250,  # Max allowed by Shopify
            )
            while orders:
                log.debug(f"Fetching orders page {page}: got {len(orders)} orders")
                all_orders.extend(order.to_dict() for order in orders)

                # Cursor-based pagination
                if orders.has_next_page():
                    orders = orders.next_page()
                    page += 1
                else:
                    break
        except Exception as e:
            raise ConnectorError(self.name, f"order fetch failed on page {page}: {e}") from e

        return all_orders
