"""
PostEx courier connector

API structure:
  - GET /order/v1/get-all-order?startDate&endDate: list orders in a range
  - GET /order/v1/track-order/{tracking_number}: single shipment status
  - GET /order/v2/get-operational-city: auth check

Every call authenticates with a `token` header.
"""
from typing import Any, Dict, List, Optional

import aiohttp

from codprofit.config import get_settings
from codprofit.connectors.base_connector import BaseCourierConnector
from codprofit.exceptions import ConnectorAuthError, ConnectorError, ConnectorNotConfigured
from codprofit.schemas import Order, OrderItem, OrderStatus, PaymentStatus, TimeWindow, TrackingUpdate
from codprofit.utils.helpers import create_fingerprint, to_float, to_int
from codprofit.utils.logger import log

settings = get_settings()


def map_postex_status(raw_status: Optional[str]) -> OrderStatus:
    """Map PostEx transactionStatus text onto OrderStatus"""
    status = (raw_status or "").strip().lower()

    if status == "delivered":
        return OrderStatus.DELIVERED
    if status == "returned":
        return OrderStatus.RETURNED
    if status in ("out for return", "return to shipper"):
        return OrderStatus.RTO_INITIATED
    if status == "cancelled":
        return OrderStatus.CANCELLED
    if status == "unbooked":
        return OrderStatus.PENDING
    if status == "booked":
        return OrderStatus.BOOKED
    # Warehouse, out-for-delivery, attempted, under review
    return OrderStatus.IN_TRANSIT


class PostExConnector(BaseCourierConnector):
    """Connector for PostEx COD shipments"""

    name = "PostEx"

    def __init__(self, api_token: Optional[str] = None, base_url: Optional[str] = None):
        super().__init__()
        self.api_token = (api_token or settings.postex_api_token or "").strip()
        self.base_url = (base_url or settings.postex_base_url).rstrip("/")

    @property
    def headers(self) -> Dict[str, str]:
        return {"token": self.api_token, "Accept": "application/json"}

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict:
        if not self.api_token:
            raise ConnectorNotConfigured(self.name, "API token not configured")

        timeout = aiohttp.ClientTimeout(total=30)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(f"{self.base_url}{endpoint}", headers=self.headers, params=params) as response:
                if response.status in (401, 403):
                    raise ConnectorAuthError(self.name, "authentication failed, check API token")
                if response.status != 200:
                    body = await response.text()
                    raise ConnectorError(self.name, f"HTTP {response.status}: {body[:200]}")
                return await response.json(content_type=None)

    async def test_connection(self) -> bool:
        try:
            await self._get("/order/v2/get-operational-city")
            log.info("Connected to PostEx API")
            return True
        except Exception as e:
            log.error(f"PostEx connection test failed: {e}")
            return False

    async def track(self, tracking_number: str) -> TrackingUpdate:
        data = await self._get(f"/order/v1/track-order/{tracking_number}")
        dist = data.get("dist")
        order = dist[0] if isinstance(dist, list) and dist else dist
        if not order:
            raise ConnectorError(self.name, f"tracking data not found for {tracking_number}")

        raw_status = order.get("transactionStatus") or order.get("orderStatus") or "Unknown"
        return TrackingUpdate(
            tracking_number=tracking_number,
            status=map_postex_status(raw_status),
            raw_status_text=raw_status,
            courier_timestamp=order.get("transactionDate") or "",
            balance_payable=to_float(order.get("invoicePayment")),
        )

    async def fetch_recent_orders(self, window: TimeWindow) -> List[Order]:
        data = await self._get("/order/v1/get-all-order", params={
            "orderStatusID": 0,
            "startDate": window.start.date().isoformat(),
            "endDate": window.end.date().isoformat(),
        })
        return [self._normalize_order(po) for po in data.get("dist") or []]

    def _normalize_order(self, po: Dict[str, Any]) -> Order:
        status = map_postex_status(po.get("transactionStatus"))
        amount = to_float(po.get("invoicePayment"))

        raw_items = po.get("orderItems") or []
        items = []
        for raw in raw_items:
            name = raw.get("productName") or raw.get("productSKU") or "Unknown"
            fingerprint = create_fingerprint(name) or "unknown-item"
            items.append(OrderItem(
                product_id="unknown",
                quantity=to_int(raw.get("quantity"), 1) or 1,
                sale_price=to_float(raw.get("price")) or amount / len(raw_items),
                product_name=name,
                sku=fingerprint,
                variant_fingerprint=fingerprint,
            ))

        if not items:
            # Older bookings only carry a free-text order detail
            name = po.get("orderDetail") or po.get("productName") or po.get("orderRefNumber") or "General Item"
            fingerprint = create_fingerprint(name) or "unknown-item"
            items.append(OrderItem(
                product_id="unknown",
                quantity=1,
                sale_price=amount,
                product_name=name,
                sku=fingerprint,
                variant_fingerprint=fingerprint,
            ))

        tracking_number = po.get("trackingNumber") or ""
        return Order(
            id=tracking_number or str(po.get("orderRefNumber") or ""),
            shopify_order_number=str(po.get("orderRefNumber") or tracking_number),
            created_at=po.get("transactionDate") or po.get("orderDate") or "",
            customer_city=po.get("cityName") or "Unknown",
            courier=self.name,
            tracking_number=tracking_number,
            status=status,
            payment_status=PaymentStatus.UNPAID,
            cod_amount=amount,
            items=items,
        )
