"""
Demand vs Dispatch Reconciliation

Compares what customers ordered on the storefront ("demand") with what
the couriers actually have on record ("dispatch"). Active orders with no
courier record are missed bookings or sync gaps.

Products here are keyed by a slug of the storefront line-item title, a
namespace separate from catalog fingerprints.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional

from codprofit.schemas import Order, OrderStatus, StorefrontOrder, TimeWindow, is_dispatched
from codprofit.utils.helpers import create_fingerprint, normalize_order_ref, safe_divide


@dataclass
class ProductDemandStats:
    id: str
    title: str
    total_ordered: int = 0
    cancelled: int = 0
    pending_fulfillment: int = 0
    fulfilled: int = 0
    dispatched: int = 0
    delivered: int = 0
    returned: int = 0
    in_transit: int = 0


@dataclass
class MissedOrder:
    reference: str
    created_at: str
    total_price: float
    fulfillment_status: Optional[str]
    items: List[str] = field(default_factory=list)


@dataclass
class MisclassifiedOrder:
    reference: str
    reason: str
    courier: str
    courier_status: str


@dataclass
class ReconciliationReport:
    total_demand: int = 0
    cancelled: int = 0
    valid_demand: int = 0
    dispatched: int = 0
    dispatch_rate: float = 0.0  # Fraction of valid demand found with a courier
    missed_orders: List[MissedOrder] = field(default_factory=list)
    misclassified_orders: List[MisclassifiedOrder] = field(default_factory=list)
    per_product_breakdown: List[ProductDemandStats] = field(default_factory=list)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["dispatch_rate"] = round(self.dispatch_rate, 4)
        return data


class DemandDispatchReconciler:
    """Find storefront orders that never reached a courier"""

    def reconcile(
        self,
        storefront_orders: Iterable[StorefrontOrder],
        courier_orders: Iterable[Order],
        window: Optional[TimeWindow] = None,
    ) -> ReconciliationReport:
        courier_map: Dict[str, Order] = {}
        for order in courier_orders:
            key = normalize_order_ref(order.shopify_order_number)
            if key:
                courier_map.setdefault(key, order)

        # The storefront API can page the same order twice
        unique: Dict[str, StorefrontOrder] = {}
        for sorder in storefront_orders:
            if window is not None and not window.contains(sorder.created_at):
                continue
            unique.setdefault(sorder.id, sorder)

        report = ReconciliationReport()
        stats: Dict[str, ProductDemandStats] = {}

        for sorder in unique.values():
            reference = normalize_order_ref(sorder.name)
            courier_order = courier_map.get(reference)
            cancelled = bool(sorder.cancel_reason)
            fulfilled = (sorder.fulfillment_status or "").lower() == "fulfilled"

            report.total_demand += 1
            if cancelled:
                report.cancelled += 1
                if courier_order is not None and is_dispatched(courier_order.status):
                    report.misclassified_orders.append(MisclassifiedOrder(
                        reference=sorder.name,
                        reason="cancelled_on_storefront_but_shipped",
                        courier=courier_order.courier,
                        courier_status=courier_order.status.value,
                    ))
            elif courier_order is not None:
                report.dispatched += 1
                if fulfilled and courier_order.status in (OrderStatus.PENDING, OrderStatus.BOOKED):
                    report.misclassified_orders.append(MisclassifiedOrder(
                        reference=sorder.name,
                        reason="fulfilled_on_storefront_but_not_picked_up",
                        courier=courier_order.courier,
                        courier_status=courier_order.status.value,
                    ))
            else:
                report.missed_orders.append(MissedOrder(
                    reference=sorder.name,
                    created_at=sorder.created_at,
                    total_price=sorder.total_price,
                    fulfillment_status=sorder.fulfillment_status,
                    items=[li.title for li in sorder.line_items],
                ))

            self._accumulate_products(sorder, courier_order, cancelled, fulfilled, stats)

        report.valid_demand = report.total_demand - report.cancelled
        report.dispatch_rate = safe_divide(report.dispatched, report.valid_demand)
        report.missed_orders.sort(key=lambda m: m.created_at, reverse=True)
        report.per_product_breakdown = sorted(stats.values(), key=lambda s: s.total_ordered, reverse=True)
        return report

    @staticmethod
    def _accumulate_products(sorder: StorefrontOrder, courier_order: Optional[Order], cancelled: bool,
                             fulfilled: bool, stats: Dict[str, ProductDemandStats]):
        # An order counts once per distinct product it contains
        seen = set()
        for li in sorder.line_items:
            key = create_fingerprint(li.title) or "untitled"
            if key in seen:
                continue
            seen.add(key)

            stat = stats.get(key)
            if stat is None:
                stat = stats[key] = ProductDemandStats(id=key, title=li.title or key)

            stat.total_ordered += 1
            if cancelled:
                stat.cancelled += 1
                continue

            if fulfilled:
                stat.fulfilled += 1
            else:
                stat.pending_fulfillment += 1

            if courier_order is None:
                continue
            if is_dispatched(courier_order.status):
                stat.dispatched += 1
            if courier_order.status == OrderStatus.DELIVERED:
                stat.delivered += 1
            elif courier_order.status in (OrderStatus.RETURNED, OrderStatus.RTO_INITIATED):
                stat.returned += 1
            elif courier_order.status == OrderStatus.IN_TRANSIT:
                stat.in_transit += 1
