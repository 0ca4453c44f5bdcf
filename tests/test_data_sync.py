"""
Data sync orchestration tests.

Guards against:
1. One broken integration blocking the others
2. A refresh with no data being reported as a successful empty report
3. Inferred products not being persisted for cost entry
"""
import asyncio
from datetime import datetime

from codprofit.connectors.base_connector import BaseCourierConnector
from codprofit.exceptions import ConnectorAuthError
from codprofit.schemas import (
    CostSettings, Fulfillment, Order, OrderItem, OrderStatus, RateCard,
    StorefrontLineItem, StorefrontOrder, TrackingUpdate,
)
from codprofit.services.catalog_repository import CatalogRepository
from codprofit.services.data_sync_service import DataSyncService

NOW = datetime(2024, 5, 31, 12, 0)
SETTINGS = CostSettings(rates={"PostEx": RateCard(170.0, 85.0), "TCS": RateCard(250.0, 0.0)})


class FakeCourier(BaseCourierConnector):
    RETRY_BASE_DELAY = 0

    def __init__(self, name, orders=None, error=None, listing=True):
        super().__init__()
        self.name = name
        self.orders = orders or []
        self.error = error
        self.listing = listing
        self.tracked = []

    @property
    def supports_listing(self):
        return self.listing

    async def fetch_recent_orders(self, window):
        if self.error:
            raise self.error
        return self.orders

    async def track(self, tracking_number):
        self.tracked.append(tracking_number)
        return TrackingUpdate(tracking_number, OrderStatus.DELIVERED, "Delivered", "")

    async def test_connection(self):
        return self.error is None


class FakeStorefront:
    name = "Shopify"

    def __init__(self, orders=None, error=None):
        self.orders = orders or []
        self.error = error

    async def fetch_orders(self, window):
        if self.error:
            raise self.error
        return self.orders


def _postex_order(ref="#1", fingerprint="phone-case") -> Order:
    return Order(
        id=f"PX-{ref}",
        shopify_order_number=ref,
        created_at="2024-05-20",
        courier="PostEx",
        status=OrderStatus.DELIVERED,
        cod_amount=1500.0,
        items=[OrderItem(product_id="unknown", quantity=1, sale_price=1500.0, product_name="Phone Case",
                         sku=fingerprint, variant_fingerprint=fingerprint)],
    )


def _tcs_storefront_order() -> StorefrontOrder:
    return StorefrontOrder(
        id="gid-2001",
        name="#2001",
        created_at="2024-05-25T10:00:00",
        total_price=2800.0,
        fulfillment_status="fulfilled",
        tags="tcs",
        line_items=[StorefrontLineItem(title="Smart Watch", quantity=1, price=2800.0, sku="SW-01")],
        fulfillments=[Fulfillment(tracking_number="123456789012")],
    )


class TestRefresh:

    def test_failed_source_becomes_warning(self, db):
        couriers = [
            FakeCourier("PostEx", orders=[_postex_order()]),
            FakeCourier("Trax", error=ConnectorAuthError("Trax", "authentication failed")),
        ]
        service = DataSyncService(db, couriers=couriers, storefront=FakeStorefront(), cost_settings=SETTINGS)

        outcome = asyncio.run(service.refresh(NOW))

        assert outcome.has_data
        assert outcome.warnings == ["Trax: authentication failed"]
        assert [o.shopify_order_number for o in outcome.orders] == ["#1"]
        assert outcome.orders[0].courier_fee == 170.0

    def test_nothing_fetched_is_no_data(self, db):
        service = DataSyncService(
            db,
            couriers=[FakeCourier("PostEx", error=RuntimeError("boom"))],
            storefront=FakeStorefront(error=RuntimeError("shop down")),
            cost_settings=SETTINGS,
        )
        outcome = asyncio.run(service.refresh(NOW))

        assert not outcome.has_data
        assert outcome.warnings == ["PostEx: boom", "Shopify: shop down"]

    def test_backfill_uses_courier_tracking_and_saves_inferred(self, db):
        tcs = FakeCourier("TCS", listing=False)
        service = DataSyncService(
            db,
            couriers=[FakeCourier("PostEx", orders=[_postex_order()]), tcs],
            storefront=FakeStorefront(orders=[_tcs_storefront_order()]),
            cost_settings=SETTINGS,
        )
        outcome = asyncio.run(service.refresh(NOW))

        backfilled = [o for o in outcome.orders if o.courier == "TCS"]
        assert tcs.tracked == ["123456789012"]
        assert backfilled[0].status == OrderStatus.DELIVERED
        assert outcome.needs_cost_entry == 2

        saved = {p.id for p in CatalogRepository(db).load_products()}
        assert saved == {"phone-case", "sw-01"}
