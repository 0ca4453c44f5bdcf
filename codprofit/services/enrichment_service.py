"""
Order Enrichment Pipeline

Turns raw courier order lists plus storefront orders into one deduplicated,
cost-stamped list of orders:

1. Merge courier lists, deduplicating on the normalized order reference.
   Courier data is canonical for any reference it covers.
2. Backfill shipments for couriers whose API cannot list them, by
   classifying recent fulfilled storefront orders (see carrier_detection).
3. Grow the working catalog with inferred products for unseen items.
4. Stamp courier fee, RTO penalty, packaging, overhead and tax from the
   rate card, and the historical COGS of every line item.

Derived fields are recomputed from scratch on every run, so the output is a
view over the sources, not a ledger.
"""
import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from codprofit.schemas import (
    CostSettings, Fulfillment, Order, OrderItem, OrderStatus, PaymentStatus,
    Product, StorefrontOrder, TrackingUpdate, is_rto,
)
from codprofit.services.carrier_detection import CarrierProfile, TCS_PROFILE, matches_carrier, pick_fulfillment
from codprofit.services.cost_history import cost_at_date, needs_cost_entry
from codprofit.services.identity_resolver import CatalogBuilder, ProductIdentityResolver, UNKNOWN
from codprofit.utils.helpers import create_fingerprint, normalize_order_ref, parse_datetime
from codprofit.utils.logger import log

# Storefront fulfillment states that mean a parcel was handed to a courier
FULFILLED_STATES = frozenset({"fulfilled", "partial"})

Tracker = Callable[[str], Awaitable[TrackingUpdate]]


@dataclass
class EnrichmentResult:
    orders: List[Order]
    catalog: Tuple[Product, ...]
    inferred_products: List[Product] = field(default_factory=list)
    needs_cost_entry: int = 0
    warnings: List[str] = field(default_factory=list)
    info: List[str] = field(default_factory=list)


def order_key(order: Order) -> str:
    """Dedup key; orders without a reference are keyed by their own id"""
    return normalize_order_ref(order.shopify_order_number) or f"id:{order.id}"


def merge_courier_orders(sources: Iterable[Sequence[Order]]) -> List[Order]:
    """Concatenate courier lists, keeping the first order seen per reference"""
    merged: List[Order] = []
    seen: Set[str] = set()
    for orders in sources:
        for order in orders:
            key = order_key(order)
            if key in seen:
                log.debug(f"Dropping duplicate courier record for order {key} ({order.courier})")
                continue
            seen.add(key)
            merged.append(order)
    return merged


def select_backfill_candidates(
    storefront_orders: Iterable[StorefrontOrder],
    existing_keys: Set[str],
    profile: CarrierProfile,
    now: datetime,
    window_days: int,
) -> List[Tuple[StorefrontOrder, Fulfillment]]:
    """Recent fulfilled storefront orders that look like `profile`'s shipments"""
    cutoff = parse_datetime(now) - timedelta(days=window_days)
    seen = set(existing_keys)
    candidates = []
    for sorder in storefront_orders:
        created = parse_datetime(sorder.created_at, now)
        if created < cutoff:
            continue
        if sorder.cancel_reason:
            continue
        if (sorder.fulfillment_status or "").lower() not in FULFILLED_STATES:
            continue
        ref = normalize_order_ref(sorder.name)
        if ref in seen:
            continue
        if not matches_carrier(sorder, profile):
            continue
        fulfillment = pick_fulfillment(sorder, profile)
        if fulfillment is None:
            continue
        seen.add(ref)
        candidates.append((sorder, fulfillment))
    return candidates


def build_backfill_order(
    sorder: StorefrontOrder,
    fulfillment: Fulfillment,
    courier: str,
    status: OrderStatus = OrderStatus.IN_TRANSIT,
) -> Order:
    items = []
    for li in sorder.line_items:
        fingerprint = create_fingerprint(li.sku or li.title) or UNKNOWN
        items.append(OrderItem(
            product_id=li.product_id or UNKNOWN,
            quantity=li.quantity,
            sale_price=li.price,
            product_name=li.title,
            sku=li.sku,
            variant_fingerprint=fingerprint,
            cogs_at_time_of_order=0.0,
        ))

    return Order(
        id=fulfillment.tracking_number,
        shopify_order_number=sorder.name,
        created_at=sorder.created_at,
        customer_city=sorder.customer_city or "Unknown",
        courier=courier,
        tracking_number=fulfillment.tracking_number,
        status=status,
        payment_status=PaymentStatus.UNPAID,
        cod_amount=sorder.total_price,
        items=items,
        data_source="backfill",
    )


def stamp_financials(order: Order, settings: CostSettings) -> Order:
    """Recompute the derived cost fields of one order from the rate card"""
    card = settings.rate_for(order.courier)
    delivered = order.status == OrderStatus.DELIVERED
    return replace(
        order,
        courier_fee=card.forward,
        rto_penalty=card.rto if is_rto(order.status) else 0.0,
        packaging_cost=settings.packaging_cost,
        overhead_cost=settings.overhead_cost,
        tax_amount=order.cod_amount * settings.tax_rate / 100 if delivered else 0.0,
    )


def stamp_cogs(order: Order, resolver, fallback: Optional[datetime] = None) -> Order:
    """Re-price every line item at the cost in effect on the order date"""
    items = []
    for item in order.items:
        product = resolver.resolve(item)
        if product is None:
            items.append(item)
        else:
            cogs = cost_at_date(product, order.created_at, fallback)
            items.append(replace(item, cogs_at_time_of_order=cogs))
    return replace(order, items=items)


def recalculate_order_costs(orders: Iterable[Order], products: Iterable[Product],
                            fallback: Optional[datetime] = None) -> List[Order]:
    """Re-stamp COGS after a catalog edit, without re-fetching any source"""
    resolver = ProductIdentityResolver(products)
    return [stamp_cogs(order, resolver, fallback) for order in orders]


class OrderEnrichmentPipeline:
    """Merge, backfill and cost-stamp orders from every source"""

    def __init__(
        self,
        settings: CostSettings,
        backfill_profiles: Sequence[CarrierProfile] = (TCS_PROFILE,),
        backfill_window_days: int = 60,
        tracking_timeout: float = 10.0,
        tracking_concurrency: int = 5,
        max_tracking_calls: int = 200,
    ):
        self.settings = settings
        self.backfill_profiles = list(backfill_profiles)
        self.backfill_window_days = backfill_window_days
        self.tracking_timeout = tracking_timeout
        self.tracking_concurrency = tracking_concurrency
        self.max_tracking_calls = max_tracking_calls

    async def run(
        self,
        courier_orders: Iterable[Sequence[Order]],
        storefront_orders: Sequence[StorefrontOrder],
        products: Iterable[Product],
        now: datetime,
        trackers: Optional[Dict[str, Tracker]] = None,
    ) -> EnrichmentResult:
        """
        Produce the enriched order list for one refresh.

        Args:
            courier_orders: One list per courier integration, already status-mapped
            storefront_orders: Storefront orders used for backfill
            products: Persisted catalog
            now: Reference time for the backfill window and bad-date fallback
            trackers: Optional live tracking callables keyed by courier name
        """
        trackers = trackers or {}
        info: List[str] = []

        orders = merge_courier_orders(courier_orders)
        keys = {order_key(o) for o in orders}
        couriers_with_data = {o.courier for o in orders}

        for profile in self.backfill_profiles:
            candidates = select_backfill_candidates(
                storefront_orders, keys, profile, now, self.backfill_window_days
            )
            if not candidates:
                continue

            log.info(f"[{profile.courier} backfill] Found {len(candidates)} candidates "
                     f"from last {self.backfill_window_days} days")
            backfilled = await self._build_backfill(candidates, profile, trackers.get(profile.courier))
            orders.extend(backfilled)
            keys.update(order_key(o) for o in backfilled)

            if backfilled and profile.courier not in couriers_with_data:
                info.append(
                    f"Populated {len(backfilled)} {profile.courier} orders from storefront "
                    f"(last {self.backfill_window_days} days)."
                )

        # Grow the catalog first so COGS is stamped against the final version
        catalog = CatalogBuilder(products)
        for order in orders:
            for item in order.items:
                catalog.resolve_or_infer(item, order.status)

        enriched = [
            stamp_cogs(stamp_financials(order, self.settings), catalog, now)
            for order in orders
        ]

        snapshot = catalog.snapshot()
        if catalog.inferred:
            log.info(f"Inferred {len(catalog.inferred)} new products from order data")

        return EnrichmentResult(
            orders=enriched,
            catalog=snapshot,
            inferred_products=list(catalog.inferred),
            needs_cost_entry=len(needs_cost_entry(snapshot)),
            info=info,
        )

    async def _build_backfill(
        self,
        candidates: List[Tuple[StorefrontOrder, Fulfillment]],
        profile: CarrierProfile,
        tracker: Optional[Tracker],
    ) -> List[Order]:
        if tracker is None:
            return [build_backfill_order(s, f, profile.courier) for s, f in candidates]

        sem = asyncio.Semaphore(max(1, self.tracking_concurrency))
        budget = [self.max_tracking_calls]

        async def _one(sorder: StorefrontOrder, fulfillment: Fulfillment) -> Order:
            status = OrderStatus.IN_TRANSIT  # Fulfilled but no scan yet
            async with sem:
                if budget[0] > 0:
                    budget[0] -= 1
                    status = await self._live_status(tracker, fulfillment.tracking_number, status)
            return build_backfill_order(sorder, fulfillment, profile.courier, status)

        return list(await asyncio.gather(*[_one(s, f) for s, f in candidates]))

    async def _live_status(self, tracker: Tracker, tracking_number: str, default: OrderStatus) -> OrderStatus:
        """Live status when tracking answers in time, `default` otherwise"""
        try:
            update = await asyncio.wait_for(tracker(tracking_number), timeout=self.tracking_timeout)
        except Exception as e:
            log.debug(f"Live tracking failed for {tracking_number}, keeping {default.value}: {e}")
            return default
        if update is None or update.status is None:
            return default
        return update.status
