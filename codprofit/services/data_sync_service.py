"""
Data Synchronization Service
Pulls courier and storefront data, enriches it and persists new products

Fetches run concurrently. A failing source becomes a warning on the
outcome and never stops the others; only when every source comes back
empty is the refresh reported as having no data.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from codprofit.config import get_settings
from codprofit.connectors.base_connector import BaseCourierConnector
from codprofit.connectors.shopify_connector import ShopifyConnector
from codprofit.exceptions import ConnectorError
from codprofit.schemas import AdSpend, CostSettings, Order, Product, StorefrontOrder, TimeWindow
from codprofit.services.carrier_detection import CarrierProfile, TCS_PROFILE
from codprofit.services.catalog_repository import CatalogRepository
from codprofit.services.enrichment_service import OrderEnrichmentPipeline
from codprofit.utils.logger import log

settings = get_settings()


@dataclass
class SyncOutcome:
    """Everything one refresh produced"""
    window: TimeWindow
    orders: List[Order] = field(default_factory=list)
    storefront_orders: List[StorefrontOrder] = field(default_factory=list)
    catalog: Tuple[Product, ...] = ()
    ad_spend: List[AdSpend] = field(default_factory=list)
    needs_cost_entry: int = 0
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.orders or self.storefront_orders)


class DataSyncService:
    """Orchestrates one refresh across every configured source"""

    def __init__(
        self,
        db: Session,
        couriers: Sequence[BaseCourierConnector] = (),
        storefront: Optional[ShopifyConnector] = None,
        cost_settings: Optional[CostSettings] = None,
        backfill_profiles: Sequence[CarrierProfile] = (TCS_PROFILE,),
    ):
        self.repository = CatalogRepository(db)
        self.couriers = list(couriers)
        self.storefront = storefront
        self.cost_settings = cost_settings or CostSettings.from_settings(settings)
        self.pipeline = OrderEnrichmentPipeline(
            self.cost_settings,
            backfill_profiles=backfill_profiles,
            backfill_window_days=settings.backfill_window_days,
            tracking_timeout=settings.tracking_timeout_seconds,
            tracking_concurrency=settings.tracking_concurrency,
            max_tracking_calls=settings.max_tracking_calls,
        )

    async def refresh(self, now: Optional[datetime] = None) -> SyncOutcome:
        now = now or datetime.utcnow()
        window = TimeWindow.last_days(settings.report_window_days, now)
        outcome = SyncOutcome(window=window)

        log.info(f"Starting data refresh for {window.start.date()} to {window.end.date()}")

        listing = [c for c in self.couriers if c.supports_listing]
        fetches = [c.sync(window) for c in listing]
        if self.storefront is not None:
            fetches.append(self.storefront.fetch_orders(window))

        results = await asyncio.gather(*fetches, return_exceptions=True)

        courier_lists: List[List[Order]] = []
        for connector, result in zip(listing, results):
            if isinstance(result, Exception):
                outcome.warnings.append(self._warning(connector.name, result))
            else:
                courier_lists.append(result)

        if self.storefront is not None:
            result = results[-1]
            if isinstance(result, Exception):
                outcome.warnings.append(self._warning(self.storefront.name, result))
            else:
                outcome.storefront_orders = result

        if not courier_lists and not outcome.storefront_orders:
            log.warning("No data source returned any records")
            return outcome

        trackers: Dict = {c.name: c.track for c in self.couriers}
        enrichment = await self.pipeline.run(
            courier_lists,
            outcome.storefront_orders,
            self.repository.load_products(),
            now,
            trackers=trackers,
        )

        outcome.orders = enrichment.orders
        outcome.catalog = enrichment.catalog
        outcome.needs_cost_entry = enrichment.needs_cost_entry
        outcome.info.extend(enrichment.info)
        outcome.warnings.extend(enrichment.warnings)
        outcome.ad_spend = self.repository.load_ad_spend()

        if enrichment.inferred_products:
            try:
                self.repository.save_products(enrichment.inferred_products)
            except Exception as e:
                outcome.warnings.append(f"Could not save inferred products: {e}")

        log.info(
            f"Refresh complete: {len(outcome.orders)} orders, "
            f"{len(outcome.storefront_orders)} storefront orders, {len(outcome.warnings)} warnings"
        )
        return outcome

    @staticmethod
    def _warning(source: str, error: Exception) -> str:
        message = str(error) if isinstance(error, ConnectorError) else f"{source}: {error}"
        log.error(f"Sync failed: {message}")
        return message
