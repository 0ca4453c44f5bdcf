"""
Demand vs dispatch reconciliation tests.

Guards against:
1. "#1050" on the storefront not matching "1050" at the courier
2. Cancelled orders dragging the dispatch rate down
3. The same storefront order counted twice after a paging overlap
"""
import pytest

from codprofit.schemas import Order, OrderItem, OrderStatus, StorefrontLineItem, StorefrontOrder, TimeWindow
from codprofit.services.reconciliation_service import DemandDispatchReconciler
from codprofit.utils.helpers import normalize_order_ref


def _sorder(name, created="2024-05-10T08:00:00", cancel_reason=None, fulfillment_status=None,
            titles=("Wireless Earbuds",), oid=None) -> StorefrontOrder:
    return StorefrontOrder(
        id=oid or f"gid-{name}",
        name=name,
        created_at=created,
        total_price=2500.0,
        cancel_reason=cancel_reason,
        fulfillment_status=fulfillment_status,
        line_items=[StorefrontLineItem(title=t) for t in titles],
    )


def _corder(ref, status=OrderStatus.IN_TRANSIT, courier="PostEx") -> Order:
    return Order(
        id=f"trk-{ref}",
        shopify_order_number=ref,
        created_at="2024-05-11",
        courier=courier,
        status=status,
        items=[OrderItem(product_id="unknown", quantity=1, sale_price=2500.0, product_name="Item")],
    )


def _reconcile(storefront, courier, window=None):
    return DemandDispatchReconciler().reconcile(storefront, courier, window)


# ---------------------------------------------------------------------------
# Matching and counts
# ---------------------------------------------------------------------------

class TestDemandDispatch:

    def test_unbooked_order_is_missed(self):
        report = _reconcile([_sorder("#1050")], [])
        assert [m.reference for m in report.missed_orders] == ["#1050"]
        assert report.dispatched == 0

    def test_reference_without_hash_matches(self):
        report = _reconcile([_sorder("#1050")], [_corder("1050")])
        assert report.missed_orders == []
        assert report.dispatched == 1
        assert report.dispatch_rate == 1.0

    def test_only_leading_hash_stripped(self):
        assert normalize_order_ref(" #1050 ") == "1050"
        assert normalize_order_ref("SO#12") == "SO#12"
        assert _reconcile([_sorder("#SO#12")], [_corder("SO#12")]).missed_orders == []

    def test_cancelled_excluded_from_valid_demand(self):
        storefront = [
            _sorder("#1"),
            _sorder("#2"),
            _sorder("#3", cancel_reason="customer"),
        ]
        report = _reconcile(storefront, [_corder("1")])

        assert report.total_demand == 3
        assert report.cancelled == 1
        assert report.valid_demand == 2
        assert report.dispatch_rate == pytest.approx(0.5)
        assert [m.reference for m in report.missed_orders] == ["#2"]

    def test_no_valid_demand_gives_zero_rate(self):
        report = _reconcile([_sorder("#1", cancel_reason="fraud")], [])
        assert report.dispatch_rate == 0.0

    def test_duplicate_storefront_orders_counted_once(self):
        report = _reconcile([_sorder("#1", oid="42"), _sorder("#1", oid="42")], [])
        assert report.total_demand == 1

    def test_window_filters_demand(self):
        window = TimeWindow.from_dates("2024-05-01", "2024-05-31")
        storefront = [_sorder("#1"), _sorder("#2", created="2024-04-01T00:00:00")]
        assert _reconcile(storefront, [], window).total_demand == 1

    def test_missed_orders_newest_first(self):
        storefront = [
            _sorder("#1", created="2024-05-01T00:00:00"),
            _sorder("#2", created="2024-05-09T00:00:00"),
        ]
        assert [m.reference for m in _reconcile(storefront, []).missed_orders] == ["#2", "#1"]


# ---------------------------------------------------------------------------
# Misclassified orders
# ---------------------------------------------------------------------------

class TestMisclassified:

    def test_cancelled_but_shipped(self):
        report = _reconcile([_sorder("#7", cancel_reason="customer")], [_corder("7", OrderStatus.DELIVERED)])
        assert [m.reason for m in report.misclassified_orders] == ["cancelled_on_storefront_but_shipped"]

    def test_cancelled_and_courier_cancelled_is_fine(self):
        report = _reconcile([_sorder("#7", cancel_reason="customer")], [_corder("7", OrderStatus.CANCELLED)])
        assert report.misclassified_orders == []

    def test_fulfilled_but_not_picked_up(self):
        report = _reconcile([_sorder("#8", fulfillment_status="fulfilled")], [_corder("8", OrderStatus.BOOKED)])

        assert report.dispatched == 1
        assert report.misclassified_orders[0].reason == "fulfilled_on_storefront_but_not_picked_up"
        assert report.misclassified_orders[0].courier_status == "BOOKED"


# ---------------------------------------------------------------------------
# Per-product breakdown
# ---------------------------------------------------------------------------

class TestPerProductBreakdown:

    def test_breakdown_by_title_slug(self):
        storefront = [
            _sorder("#1", fulfillment_status="fulfilled", titles=("Wireless Earbuds", "Wireless Earbuds")),
            _sorder("#2", titles=("Wireless Earbuds", "Smart Watch")),
            _sorder("#3", cancel_reason="customer", titles=("Smart Watch",)),
        ]
        courier = [_corder("1", OrderStatus.DELIVERED), _corder("2", OrderStatus.RETURNED)]

        stats = {s.id: s for s in _reconcile(storefront, courier).per_product_breakdown}
        earbuds = stats["wireless-earbuds"]
        watch = stats["smart-watch"]

        assert earbuds.total_ordered == 2  # Once per order, not per line
        assert (earbuds.fulfilled, earbuds.pending_fulfillment) == (1, 1)
        assert (earbuds.dispatched, earbuds.delivered, earbuds.returned) == (2, 1, 1)
        assert (watch.total_ordered, watch.cancelled, watch.dispatched) == (2, 1, 1)

    def test_booked_record_not_counted_as_product_dispatch(self):
        report = _reconcile([_sorder("#1")], [_corder("1", OrderStatus.BOOKED)])
        [stat] = report.per_product_breakdown

        assert report.dispatched == 1
        assert (stat.total_ordered, stat.dispatched, stat.in_transit) == (1, 0, 0)

    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.CANCELLED])
    def test_undispatched_statuses_not_counted(self, status):
        [stat] = _reconcile([_sorder("#1")], [_corder("1", status)]).per_product_breakdown
        assert stat.dispatched == 0

    def test_report_dict_rounds_rate(self):
        storefront = [_sorder("#1"), _sorder("#2"), _sorder("#3")]
        data = _reconcile(storefront, [_corder("1")]).to_dict()
        assert data["dispatch_rate"] == 0.3333
        assert data["missed_orders"][0]["reference"] in ("#2", "#3")
