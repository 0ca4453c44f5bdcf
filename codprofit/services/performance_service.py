"""
Product Profitability Aggregation

Rolls enriched orders, the catalog and ad spend into per-variant and
per-group profit and loss:

- Revenue and COGS are realized only on delivered units.
- Units still with the courier (in transit, RTO initiated) are "cash in
  stock": their COGS and fee share are tied up, not lost. Gross profit
  ignores them, net profit subtracts them.
- Every unit's fee share lands in exactly one place: the realized
  shipping/overhead allocation (delivered, returned) or cash in stock
  (unresolved).

All functions here are pure: same snapshot in, same numbers out.
"""
from dataclasses import dataclass, field, asdict
from typing import Dict, Iterable, List, Optional, Sequence, Set

from codprofit.schemas import (
    AdSpend, CostSettings, Order, OrderStatus, PaymentStatus, Product, TimeWindow,
    is_dispatched,
)
from codprofit.services.identity_resolver import ProductIdentityResolver
from codprofit.utils.helpers import safe_divide

GROUP_SKU = "GROUP"

ADDITIVE_FIELDS = (
    "units_sold",
    "units_returned",
    "units_in_transit",
    "gross_revenue",
    "cogs_total",
    "cash_in_stock",
    "shipping_cost_allocation",
    "overhead_allocation",
    "tax_allocation",
    "ad_spend_allocation",
    "marketing_purchases",
)


@dataclass
class ProductPerformance:
    id: str
    title: str
    sku: str
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    units_sold: int = 0
    units_returned: int = 0
    units_in_transit: int = 0
    gross_revenue: float = 0.0
    cogs_total: float = 0.0
    cash_in_stock: float = 0.0
    shipping_cost_allocation: float = 0.0
    overhead_allocation: float = 0.0
    tax_allocation: float = 0.0
    ad_spend_allocation: float = 0.0
    marketing_purchases: int = 0
    gross_profit: float = 0.0
    net_profit: float = 0.0
    rto_rate: float = 0.0
    variants: List["ProductPerformance"] = field(default_factory=list)

    @property
    def is_group(self) -> bool:
        return self.sku == GROUP_SKU

    @property
    def units_dispatched(self) -> int:
        return self.units_sold + self.units_returned + self.units_in_transit

    def finalize(self) -> "ProductPerformance":
        """Derive rates and profits from the accumulated totals"""
        self.rto_rate = safe_divide(self.units_returned, self.units_sold + self.units_returned) * 100
        self.gross_profit = self.gross_revenue - self.cogs_total - self.ad_spend_allocation
        self.net_profit = (
            self.gross_revenue
            - self.cogs_total
            - self.shipping_cost_allocation
            - self.overhead_allocation
            - self.tax_allocation
            - self.ad_spend_allocation
            - self.cash_in_stock
        )
        return self

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["units_dispatched"] = self.units_dispatched
        for key, value in data.items():
            if isinstance(value, float):
                data[key] = round(value, 2)
        data["variants"] = [v.to_dict() for v in self.variants]
        return data


@dataclass
class DashboardMetrics:
    total_orders: int = 0
    dispatched_orders: int = 0
    delivered_orders: int = 0
    rto_orders: int = 0
    in_transit_orders: int = 0
    booked_orders: int = 0
    unbooked_orders: int = 0
    gross_revenue: float = 0.0
    total_cogs: float = 0.0
    total_shipping_expense: float = 0.0
    total_overhead_cost: float = 0.0
    total_courier_tax: float = 0.0
    total_ad_spend: float = 0.0
    total_ads_tax: float = 0.0
    cash_in_transit_stock: float = 0.0
    pending_remittance: float = 0.0
    gross_profit: float = 0.0
    net_profit: float = 0.0
    rto_rate: float = 0.0
    roi: float = 0.0

    def to_dict(self) -> Dict:
        return {k: round(v, 2) if isinstance(v, float) else v for k, v in asdict(self).items()}


@dataclass
class CourierStats:
    name: str
    total_orders: int = 0
    delivered: int = 0
    rto: int = 0
    in_transit: int = 0
    delivery_rate: float = 0.0
    cash_pending: float = 0.0
    shipping_spend: float = 0.0

    def to_dict(self) -> Dict:
        return {k: round(v, 2) if isinstance(v, float) else v for k, v in asdict(self).items()}


def _in_window(window: Optional[TimeWindow], value) -> bool:
    return window is None or window.contains(value)


def ads_tax_multiplier(settings: Optional[CostSettings]) -> float:
    return 1 + (settings.ads_tax_rate if settings else 0.0) / 100


def _empty_row(product: Product) -> ProductPerformance:
    return ProductPerformance(
        id=product.id,
        title=product.title,
        sku=product.sku,
        group_id=product.group_id,
        group_name=product.group_name,
    )


class PerformanceAggregator:
    """Per-variant and per-group profitability for one snapshot and window"""

    def __init__(self, settings: Optional[CostSettings] = None):
        self.settings = settings

    def calculate_product_performance(
        self,
        orders: Sequence[Order],
        products: Sequence[Product],
        ad_spend: Sequence[AdSpend] = (),
        window: Optional[TimeWindow] = None,
    ) -> List[ProductPerformance]:
        """
        Per-variant rows (no grouping), sorted by net profit descending.

        Includes every catalog product, even with no activity in the window.
        """
        orders = [o for o in orders if _in_window(window, o.created_at)]
        ad_spend = [a for a in ad_spend if _in_window(window, a.date)]
        multiplier = ads_tax_multiplier(self.settings)

        rows: Dict[str, ProductPerformance] = {}
        for product in products:
            if product.id in rows:
                continue
            row = _empty_row(product)
            relevant = [a for a in ad_spend if a.product_id == product.id]
            row.ad_spend_allocation = sum(a.amount_spent for a in relevant) * multiplier
            row.marketing_purchases = sum(a.purchases for a in relevant)
            rows[product.id] = row

        resolver = ProductIdentityResolver(products)
        for order in orders:
            self._accumulate_order(order, resolver, rows)

        return sorted(
            (row.finalize() for row in rows.values()),
            key=lambda r: r.net_profit,
            reverse=True,
        )

    def _accumulate_order(self, order: Order, resolver: ProductIdentityResolver,
                          rows: Dict[str, ProductPerformance]):
        if not order.items or not is_dispatched(order.status):
            return

        # Per-unit split of order-level fees across its line items
        units = sum(max(item.quantity, 0) for item in order.items)
        if units == 0:
            return
        shipping_per_unit = order.shipping_total / units
        overhead_per_unit = order.overhead_cost / units
        tax_per_unit = order.tax_amount / units

        for item in order.items:
            qty = max(item.quantity, 0)
            row = self._row_for(item, resolver, rows)
            cogs = item.cogs_at_time_of_order * qty
            shipping = shipping_per_unit * qty
            overhead = overhead_per_unit * qty

            if order.status == OrderStatus.DELIVERED:
                row.units_sold += qty
                row.gross_revenue += item.sale_price * qty
                row.cogs_total += cogs
                row.shipping_cost_allocation += shipping
                row.overhead_allocation += overhead
                row.tax_allocation += tax_per_unit * qty
            elif order.status == OrderStatus.RETURNED:
                # Goods are back, only the courier fees are lost
                row.units_returned += qty
                row.shipping_cost_allocation += shipping
                row.overhead_allocation += overhead
            elif order.status == OrderStatus.RTO_INITIATED:
                row.units_returned += qty
                row.cash_in_stock += cogs + shipping + overhead
            else:
                row.units_in_transit += qty
                row.cash_in_stock += cogs + shipping + overhead

    @staticmethod
    def _row_for(item, resolver: ProductIdentityResolver, rows: Dict[str, ProductPerformance]) -> ProductPerformance:
        product = resolver.resolve(item)
        if product is not None and product.id in rows:
            return rows[product.id]

        # Item unknown to the catalog: keep it visible under its own key
        key = item.variant_fingerprint or item.sku or item.product_id
        if key not in rows:
            rows[key] = ProductPerformance(id=key, title=item.product_name or key, sku=item.sku or "N/A")
        return rows[key]

    def rollup_groups(
        self,
        variants: Sequence[ProductPerformance],
        products: Sequence[Product],
        ad_spend: Sequence[AdSpend] = (),
        window: Optional[TimeWindow] = None,
        include_inactive: bool = False,
    ) -> List[ProductPerformance]:
        """
        Merge grouped variants into one row per group.

        Ad spend booked against a group id (rather than a variant) is added
        to that group's row. Ungrouped variants stay standalone.
        """
        product_ids: Set[str] = {p.id for p in products}
        ad_spend = [a for a in ad_spend if _in_window(window, a.date)]
        multiplier = ads_tax_multiplier(self.settings)

        groups: Dict[str, ProductPerformance] = {}
        singles: List[ProductPerformance] = []

        for variant in variants:
            if not variant.group_id:
                singles.append(variant)
                continue

            group = groups.get(variant.group_id)
            if group is None:
                group = ProductPerformance(
                    id=variant.group_id,
                    title=variant.group_name or variant.group_id,
                    sku=GROUP_SKU,
                    group_id=variant.group_id,
                    group_name=variant.group_name,
                )
                groups[variant.group_id] = group

            group.variants.append(variant)
            for name in ADDITIVE_FIELDS:
                setattr(group, name, getattr(group, name) + getattr(variant, name))

        for group_id, group in groups.items():
            # A product id match always wins over a group id match
            if group_id in product_ids:
                continue
            direct = [a for a in ad_spend if a.product_id == group_id]
            group.ad_spend_allocation += sum(a.amount_spent for a in direct) * multiplier
            group.marketing_purchases += sum(a.purchases for a in direct)

        for group in groups.values():
            group.variants.sort(key=lambda v: v.net_profit, reverse=True)
            group.finalize()

        rows = list(groups.values()) + singles
        if not include_inactive:
            rows = [r for r in rows if r.units_dispatched > 0 or r.ad_spend_allocation > 0]
        return sorted(rows, key=lambda r: r.net_profit, reverse=True)

    def build_report(
        self,
        orders: Sequence[Order],
        products: Sequence[Product],
        ad_spend: Sequence[AdSpend] = (),
        window: Optional[TimeWindow] = None,
        include_inactive: bool = False,
    ) -> List[ProductPerformance]:
        """Variant rows rolled into groups, sorted by net profit"""
        variants = self.calculate_product_performance(orders, products, ad_spend, window)
        return self.rollup_groups(variants, products, ad_spend, window, include_inactive)

    def calculate_dashboard_metrics(
        self,
        orders: Sequence[Order],
        ad_spend: Sequence[AdSpend] = (),
        window: Optional[TimeWindow] = None,
    ) -> DashboardMetrics:
        """Store-wide totals for the window, on the same basis as the product rows"""
        m = DashboardMetrics()
        orders = [o for o in orders if _in_window(window, o.created_at)]
        ad_spend = [a for a in ad_spend if _in_window(window, a.date)]
        m.total_orders = len(orders)

        for order in orders:
            status = order.status
            if status == OrderStatus.BOOKED:
                m.booked_orders += 1
            elif status == OrderStatus.PENDING:
                m.unbooked_orders += 1
            if not is_dispatched(status):
                continue

            m.dispatched_orders += 1
            order_cogs = sum(i.cogs_at_time_of_order * max(i.quantity, 0) for i in order.items)

            if status == OrderStatus.DELIVERED:
                m.delivered_orders += 1
                m.gross_revenue += order.cod_amount
                m.total_cogs += order_cogs
                m.total_shipping_expense += order.shipping_total
                m.total_overhead_cost += order.overhead_cost
                m.total_courier_tax += order.tax_amount
                if order.payment_status == PaymentStatus.UNPAID:
                    m.pending_remittance += order.cod_amount
            elif status == OrderStatus.RETURNED:
                m.rto_orders += 1
                m.total_shipping_expense += order.shipping_total
                m.total_overhead_cost += order.overhead_cost
            else:
                if status == OrderStatus.RTO_INITIATED:
                    m.rto_orders += 1
                else:
                    m.in_transit_orders += 1
                m.cash_in_transit_stock += order_cogs + order.shipping_total + order.overhead_cost

        raw_ad_spend = sum(a.amount_spent for a in ad_spend)
        m.total_ad_spend = raw_ad_spend * ads_tax_multiplier(self.settings)
        m.total_ads_tax = m.total_ad_spend - raw_ad_spend

        m.gross_profit = m.gross_revenue - m.total_cogs - m.total_ad_spend
        m.net_profit = (
            m.gross_revenue
            - m.total_cogs
            - m.total_shipping_expense
            - m.total_overhead_cost
            - m.total_courier_tax
            - m.total_ad_spend
            - m.cash_in_transit_stock
        )
        m.rto_rate = safe_divide(m.rto_orders, m.delivered_orders + m.rto_orders) * 100

        investment = (
            m.total_cogs + m.total_shipping_expense + m.total_overhead_cost
            + m.total_ad_spend + m.cash_in_transit_stock
        )
        m.roi = safe_divide(m.net_profit, investment) * 100
        return m


def calculate_courier_performance(orders: Iterable[Order], couriers: Iterable[str] = ()) -> List[CourierStats]:
    """Delivery rate, cash pending and shipping spend per courier"""
    stats: Dict[str, CourierStats] = {name: CourierStats(name=name) for name in couriers}

    for order in orders:
        if not is_dispatched(order.status):
            continue
        s = stats.setdefault(order.courier, CourierStats(name=order.courier))
        s.total_orders += 1
        s.shipping_spend += order.courier_fee + order.rto_penalty

        if order.status == OrderStatus.DELIVERED:
            s.delivered += 1
            if order.payment_status == PaymentStatus.UNPAID:
                s.cash_pending += order.cod_amount
        elif order.status in (OrderStatus.RETURNED, OrderStatus.RTO_INITIATED):
            s.rto += 1
        else:
            s.in_transit += 1

    for s in stats.values():
        s.delivery_rate = safe_divide(s.delivered, s.delivered + s.rto) * 100

    return sorted(stats.values(), key=lambda s: s.delivery_rate, reverse=True)
