"""
TCS courier connector

TCS only exposes a settlement report (GET /ecom/api/Payment/detail), so
shipments that have not been settled yet are invisible here. The
enrichment pipeline backfills those from storefront fulfillments.

Auth: GET /auth/api/auth?clientid&clientsecret returns an access token;
a long pre-issued token can be saved instead.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from codprofit.config import get_settings
from codprofit.connectors.base_connector import BaseCourierConnector
from codprofit.exceptions import ConnectorAuthError, ConnectorError, ConnectorNotConfigured
from codprofit.schemas import Order, OrderItem, OrderStatus, PaymentStatus, TimeWindow, TrackingUpdate
from codprofit.utils.helpers import parse_datetime, to_float
from codprofit.utils.logger import log

settings = get_settings()

# Tokens longer than this are treated as pre-issued access tokens
_MANUAL_TOKEN_MIN_LENGTH = 50


def map_tcs_status(raw_status: Optional[str]) -> OrderStatus:
    """Map TCS consignment status text/codes onto OrderStatus"""
    s = (raw_status or "").strip().lower()

    if "delivered" in s:
        return OrderStatus.DELIVERED
    if "return" in s or "rto" in s:
        return OrderStatus.RETURNED
    if "cancel" in s:
        return OrderStatus.CANCELLED
    if "booked" in s:
        return OrderStatus.BOOKED
    # Short codes from the settlement report
    if s == "ok":
        return OrderStatus.DELIVERED
    if s in ("ro", "cr"):
        return OrderStatus.RETURNED
    return OrderStatus.IN_TRANSIT


class TcsConnector(BaseCourierConnector):
    """Connector for the TCS settlement API"""

    name = "TCS"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        account_number: Optional[str] = None,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        super().__init__()
        self.client_id = client_id or settings.tcs_client_id
        self.client_secret = client_secret or settings.tcs_client_secret
        self.account_number = (account_number or settings.tcs_account_number or "").strip()
        self.access_token = (access_token or settings.tcs_access_token or "").strip()
        self.base_url = (base_url or settings.tcs_base_url).rstrip("/")

    @property
    def supports_listing(self) -> bool:
        return False

    async def _request(self, session: aiohttp.ClientSession, url: str, params: Dict[str, Any]) -> Dict:
        async with session.get(url, params=params) as response:
            if response.status in (401, 403):
                raise ConnectorAuthError(self.name, "authentication failed, check client id and secret")
            if response.status != 200:
                body = await response.text()
                raise ConnectorError(self.name, f"HTTP {response.status}: {body[:200]}")
            return await response.json(content_type=None)

    async def _get_token(self, session: aiohttp.ClientSession) -> str:
        if len(self.access_token) > _MANUAL_TOKEN_MIN_LENGTH:
            return self.access_token
        if not self.client_id or not self.client_secret:
            raise ConnectorNotConfigured(self.name, "client id and client secret are required")

        data = await self._request(session, f"{self.base_url}/auth/api/auth", {
            "clientid": self.client_id,
            "clientsecret": self.client_secret,
        })
        token = (data.get("result") or {}).get("accessToken") or data.get("access_token")
        if not token:
            raise ConnectorAuthError(self.name, "no access token returned")
        return token

    async def _payment_detail(self, start: datetime, end: datetime) -> List[Dict]:
        if not self.account_number:
            raise ConnectorNotConfigured(self.name, "account number is missing")

        timeout = aiohttp.ClientTimeout(total=60)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            token = await self._get_token(session)
            data = await self._request(session, f"{self.base_url}/ecom/api/Payment/detail", {
                "accesstoken": token,
                "customerno": self.account_number,
                "fromdate": start.date().isoformat(),
                "todate": end.date().isoformat(),
            })
        detail = data.get("detail")
        return detail if isinstance(detail, list) else []

    async def test_connection(self) -> bool:
        """Checks credentials and account number with a one-day report"""
        try:
            today = datetime.utcnow()
            await self._payment_detail(today, today)
            log.info("Connected to TCS API")
            return True
        except Exception as e:
            log.error(f"TCS connection test failed: {e}")
            return False

    async def track(self, tracking_number: str) -> TrackingUpdate:
        # The settlement API has no per-consignment lookup
        return TrackingUpdate(
            tracking_number=tracking_number,
            status=OrderStatus.IN_TRANSIT,
            raw_status_text="Tracking Not Synced",
            courier_timestamp="",
        )

    async def fetch_recent_orders(self, window: TimeWindow) -> List[Order]:
        rows = await self._payment_detail(window.start, window.end)
        return [self._normalize_order(row, window.end) for row in rows]

    def _normalize_order(self, row: Dict[str, Any], now: datetime) -> Order:
        reference = row.get("order no") or row.get("refNo") or ""
        tracking_number = row.get("cn by courier") or row.get("consignmentNo") or ""
        cod = to_float(row.get("codamount") or row.get("cod amount") or row.get("amount paid"))
        status = map_tcs_status(row.get("cn status") or row.get("status"))
        remitted = row.get("payment status") in ("Y", "Paid")

        return Order(
            id=tracking_number or str(reference),
            shopify_order_number=str(reference),
            created_at=parse_datetime(row.get("booking date"), now).isoformat(),
            customer_city=row.get("city") or "Unknown",
            courier=self.name,
            tracking_number=tracking_number,
            status=status,
            payment_status=PaymentStatus.REMITTED if remitted else PaymentStatus.UNPAID,
            cod_amount=cod,
            items=[OrderItem(
                product_id="unknown",
                quantity=1,
                sale_price=cod,
                product_name="TCS Order",
                sku="TCS-GENERIC",
                variant_fingerprint="tcs-generic",
            )],
        )
