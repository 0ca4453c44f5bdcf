"""
Profitability aggregation tests.

Guards against:
1. Fees of unresolved parcels being counted both as shipping and as cash in stock
2. Group rows drifting from the sum of their variants
3. Group-level ad spend being lost or double counted
4. Orders and ad spend outside the window leaking into the totals
"""
import pytest

from codprofit.schemas import AdSpend, CostSettings, Order, OrderItem, OrderStatus, Product, TimeWindow
from codprofit.services.performance_service import (
    ADDITIVE_FIELDS,
    GROUP_SKU,
    PerformanceAggregator,
    calculate_courier_performance,
)

SETTINGS = CostSettings(rates={}, ads_tax_rate=10.0)
WINDOW = TimeWindow.from_dates("2024-05-01", "2024-05-31")

PRODUCTS = [
    Product(id="a", title="Earbuds Black", sku="EB-B", variant_fingerprint="a", group_id="g1", group_name="Earbuds"),
    Product(id="b", title="Earbuds White", sku="EB-W", variant_fingerprint="b", group_id="g1", group_name="Earbuds"),
    Product(id="c", title="Smart Watch", sku="SW", variant_fingerprint="c"),
]


def _item(fingerprint, qty=1, price=1000.0, cogs=500.0) -> OrderItem:
    return OrderItem(
        product_id="unknown",
        quantity=qty,
        sale_price=price,
        product_name=fingerprint,
        sku=fingerprint,
        variant_fingerprint=fingerprint,
        cogs_at_time_of_order=cogs,
    )


def _order(ref, status, items, created="2024-05-10", courier="PostEx", cod=3000.0,
           courier_fee=170.0, rto_penalty=0.0, packaging=40.0, overhead=20.0, tax=0.0) -> Order:
    return Order(
        id=ref,
        shopify_order_number=ref,
        created_at=created,
        courier=courier,
        status=status,
        cod_amount=cod,
        items=items,
        courier_fee=courier_fee,
        rto_penalty=rto_penalty,
        packaging_cost=packaging,
        overhead_cost=overhead,
        tax_amount=tax,
    )


ORDERS = [
    _order("1", OrderStatus.DELIVERED, [_item("a", price=2000.0, cogs=1000.0), _item("b", price=1000.0, cogs=500.0)],
           tax=120.0),
    _order("2", OrderStatus.RETURNED, [_item("a", cogs=1000.0)], rto_penalty=85.0, packaging=45.0),
    _order("3", OrderStatus.IN_TRANSIT, [_item("c", qty=2, cogs=400.0)], courier="Trax", packaging=30.0, overhead=0.0),
    _order("4", OrderStatus.PENDING, [_item("c")]),
    _order("5", OrderStatus.DELIVERED, [_item("c")], created="2024-01-01"),
]

AD_SPEND = [
    AdSpend(id="ad1", date="2024-05-05", platform="Facebook", amount_spent=100.0, product_id="a", purchases=2),
    AdSpend(id="ad2", date="2024-05-06", platform="Facebook", amount_spent=200.0, product_id="g1"),
    AdSpend(id="ad3", date="2024-02-01", platform="Facebook", amount_spent=999.0, product_id="a"),
]


def _variants():
    return PerformanceAggregator(SETTINGS).calculate_product_performance(ORDERS, PRODUCTS, AD_SPEND, WINDOW)


def _by_id(rows):
    return {r.id: r for r in rows}


# ────────────────────────────────────────────
# VARIANT ROWS
# ────────────────────────────────────────────


class TestVariantPerformance:

    def test_delivered_and_returned_allocation(self):
        a = _by_id(_variants())["a"]

        assert a.units_sold == 1
        assert a.units_returned == 1
        assert a.gross_revenue == 2000.0
        assert a.cogs_total == 1000.0  # Returned units don't realize COGS
        assert a.shipping_cost_allocation == pytest.approx(105.0 + 300.0)
        assert a.overhead_allocation == pytest.approx(10.0 + 20.0)
        assert a.tax_allocation == pytest.approx(60.0)
        assert a.ad_spend_allocation == pytest.approx(110.0)
        assert a.marketing_purchases == 2
        assert a.rto_rate == pytest.approx(50.0)
        assert a.gross_profit == pytest.approx(890.0)
        assert a.net_profit == pytest.approx(395.0)

    def test_in_transit_is_cash_in_stock_only(self):
        c = _by_id(_variants())["c"]

        assert c.units_in_transit == 2
        assert c.cash_in_stock == pytest.approx(800.0 + 200.0)
        assert c.shipping_cost_allocation == 0.0
        assert c.gross_profit == 0.0
        assert c.net_profit == pytest.approx(-1000.0)

    def test_sorted_by_net_profit(self):
        assert [r.id for r in _variants()] == ["a", "b", "c"]

    def test_unknown_item_gets_own_row(self):
        orders = [_order("9", OrderStatus.DELIVERED, [_item("mystery-mug", price=800.0, cogs=0.0)])]
        rows = PerformanceAggregator(SETTINGS).calculate_product_performance(orders, PRODUCTS, [], WINDOW)

        mug = _by_id(rows)["mystery-mug"]
        assert mug.units_sold == 1
        assert mug.gross_revenue == 800.0

    def test_rto_rate_zero_without_resolved_units(self):
        rows = PerformanceAggregator(SETTINGS).calculate_product_performance([], PRODUCTS, [], WINDOW)
        assert all(r.rto_rate == 0.0 for r in rows)

    def test_pure_and_repeatable(self):
        first = [r.to_dict() for r in _variants()]
        second = [r.to_dict() for r in _variants()]
        assert first == second


# ────────────────────────────────────────────
# RETURN IN PROGRESS
# ────────────────────────────────────────────


RTO_ORDERS = [
    _order("11", OrderStatus.DELIVERED, [_item("c", cogs=400.0)], cod=1000.0),
    _order("12", OrderStatus.RTO_INITIATED, [_item("c", cogs=400.0)], rto_penalty=85.0, packaging=45.0),
]


class TestReturnInProgress:

    def test_variant_counts_return_but_holds_cost_in_stock(self):
        rows = PerformanceAggregator(SETTINGS).calculate_product_performance(RTO_ORDERS, PRODUCTS, [], WINDOW)
        c = _by_id(rows)["c"]

        assert (c.units_sold, c.units_returned, c.units_in_transit) == (1, 1, 0)
        assert c.rto_rate == pytest.approx(50.0)
        assert c.gross_revenue == 1000.0
        assert c.cogs_total == 400.0
        # Only the delivered parcel's fees are shipping expense
        assert c.shipping_cost_allocation == pytest.approx(210.0)
        assert c.overhead_allocation == pytest.approx(20.0)
        assert c.cash_in_stock == pytest.approx(400.0 + 300.0 + 20.0)
        assert c.gross_profit == pytest.approx(600.0)
        assert c.net_profit == pytest.approx(-350.0)

    def test_only_returning_parcel_has_no_shipping_allocation(self):
        rows = PerformanceAggregator(SETTINGS).calculate_product_performance(RTO_ORDERS[1:], PRODUCTS, [], WINDOW)
        c = _by_id(rows)["c"]

        assert c.units_returned == 1
        assert c.shipping_cost_allocation == 0.0
        assert c.overhead_allocation == 0.0
        assert c.cash_in_stock == pytest.approx(720.0)
        assert c.rto_rate == pytest.approx(100.0)

    def test_dashboard_counts_rto_and_cash_in_stock(self):
        m = PerformanceAggregator(SETTINGS).calculate_dashboard_metrics(RTO_ORDERS, [], WINDOW)

        assert (m.delivered_orders, m.rto_orders, m.in_transit_orders) == (1, 1, 0)
        assert m.rto_rate == pytest.approx(50.0)
        assert m.gross_revenue == 1000.0
        assert m.total_cogs == 400.0
        assert m.total_shipping_expense == pytest.approx(210.0)
        assert m.cash_in_transit_stock == pytest.approx(720.0)
        assert m.gross_profit == pytest.approx(600.0)
        assert m.net_profit == pytest.approx(-350.0)
        assert m.roi == pytest.approx(-350.0 / 1350.0 * 100)


# ────────────────────────────────────────────
# GROUP ROLLUP
# ────────────────────────────────────────────


class TestGroupRollup:

    def _report(self, **kwargs):
        return PerformanceAggregator(SETTINGS).build_report(ORDERS, PRODUCTS, AD_SPEND, WINDOW, **kwargs)

    def test_group_row_sums_variants(self):
        group = _by_id(self._report())["g1"]

        assert group.is_group
        assert group.sku == GROUP_SKU
        assert [v.id for v in group.variants] == ["a", "b"]
        for name in ADDITIVE_FIELDS:
            if name in ("ad_spend_allocation", "marketing_purchases"):
                continue
            assert getattr(group, name) == pytest.approx(sum(getattr(v, name) for v in group.variants))

    def test_group_level_ad_spend_added(self):
        group = _by_id(self._report())["g1"]

        assert group.ad_spend_allocation == pytest.approx(110.0 + 220.0)
        assert group.net_profit == pytest.approx(500.0)
        assert group.gross_profit == pytest.approx(1170.0)
        assert group.rto_rate == pytest.approx(100 / 3)

    def test_group_id_matching_product_id_skips_group_spend(self):
        products = [
            Product(id="a", title="A", sku="A", variant_fingerprint="a", group_id="a", group_name="Self"),
        ]
        ads = [AdSpend(id="x", date="2024-05-05", platform="Facebook", amount_spent=100.0, product_id="a")]
        rows = PerformanceAggregator(SETTINGS).build_report(ORDERS, products, ads, WINDOW)

        assert _by_id(rows)["a"].ad_spend_allocation == pytest.approx(110.0)

    def test_report_sorted_and_ungrouped_rows_kept(self):
        assert [r.id for r in self._report()] == ["g1", "c"]

    def test_inactive_rows_dropped_unless_requested(self):
        products = PRODUCTS + [Product(id="d", title="Dormant", sku="D", variant_fingerprint="d")]
        aggregator = PerformanceAggregator(SETTINGS)

        assert "d" not in _by_id(aggregator.build_report(ORDERS, products, AD_SPEND, WINDOW))
        assert "d" in _by_id(aggregator.build_report(ORDERS, products, AD_SPEND, WINDOW, include_inactive=True))

    def test_to_dict_nests_variants(self):
        data = _by_id(self._report())["g1"].to_dict()
        assert data["units_dispatched"] == 3
        assert [v["id"] for v in data["variants"]] == ["a", "b"]


# ────────────────────────────────────────────
# DASHBOARD AND COURIERS
# ────────────────────────────────────────────


class TestDashboard:

    def test_store_totals(self):
        m = PerformanceAggregator(SETTINGS).calculate_dashboard_metrics(ORDERS, AD_SPEND, WINDOW)

        assert m.total_orders == 4
        assert m.dispatched_orders == 3
        assert m.unbooked_orders == 1
        assert (m.delivered_orders, m.rto_orders, m.in_transit_orders) == (1, 1, 1)
        assert m.gross_revenue == 3000.0
        assert m.total_cogs == 1500.0
        assert m.total_shipping_expense == pytest.approx(210.0 + 300.0)
        assert m.cash_in_transit_stock == pytest.approx(1000.0)
        assert m.pending_remittance == 3000.0
        assert m.total_ad_spend == pytest.approx(330.0)
        assert m.total_ads_tax == pytest.approx(30.0)
        assert m.net_profit == pytest.approx(-500.0)
        assert m.rto_rate == pytest.approx(50.0)
        assert m.roi == pytest.approx(-500.0 / 3380.0 * 100)

    def test_courier_performance(self):
        in_window = [o for o in ORDERS if WINDOW.contains(o.created_at)]
        stats = calculate_courier_performance(in_window, ["PostEx", "Trax", "TCS"])
        by_name = {s.name: s for s in stats}

        assert stats[0].name == "PostEx"
        assert by_name["PostEx"].delivery_rate == pytest.approx(50.0)
        assert by_name["PostEx"].cash_pending == 3000.0
        assert by_name["PostEx"].shipping_spend == pytest.approx(170.0 + 255.0)
        assert by_name["Trax"].in_transit == 1
        assert by_name["TCS"].total_orders == 0
