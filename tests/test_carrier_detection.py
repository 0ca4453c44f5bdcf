"""
Carrier detection for storefront backfill.

Guards against:
1. Another carrier's parcels being backfilled as TCS because the tracking
   number happens to have the same digit format
2. Tagged orders being skipped when the fulfillment has no company name
"""
from codprofit.schemas import Fulfillment, StorefrontOrder
from codprofit.services.carrier_detection import (
    CarrierProfile,
    TCS_PROFILE,
    matches_carrier,
    pick_fulfillment,
    tags_match,
)


def _order(name="#1001", tags="", company=None, tracking="123456789012") -> StorefrontOrder:
    return StorefrontOrder(
        id=name,
        name=name,
        created_at="2024-05-01T10:00:00",
        total_price=2500.0,
        fulfillment_status="fulfilled",
        tags=tags,
        fulfillments=[Fulfillment(tracking_company=company, tracking_number=tracking)],
    )


# ────────────────────────────────────────────
# NEGATIVE EXCLUSION
# ────────────────────────────────────────────


class TestTagsAndExclusions:

    def test_tagged_orders_match_and_other_carrier_excluded(self):
        orders = [
            _order("#1", tags="tcs"),
            _order("#2", tags="COD, TCS"),
            _order("#3", tags="postex"),
        ]
        matched = [o.name for o in orders if matches_carrier(o, TCS_PROFILE)]
        assert matched == ["#1", "#2"]

    def test_tag_naming_two_carriers_is_not_a_tag_match(self):
        assert not tags_match(_order(tags="tcs, leopards"), TCS_PROFILE)

    def test_company_names_carrier(self):
        assert matches_carrier(_order(company="TCS Express", tracking="ABC"), TCS_PROFILE)

    def test_company_names_other_carrier(self):
        assert not matches_carrier(_order(company="Trax", tracking="123456789012"), TCS_PROFILE)

    def test_tracking_format_only_when_nothing_else_implicates(self):
        assert matches_carrier(_order(tracking="1234-5678-9012"), TCS_PROFILE)
        assert not matches_carrier(_order(tracking="PX12345"), TCS_PROFILE)
        assert not matches_carrier(_order(tracking="12345678"), TCS_PROFILE)

    def test_profile_exclusions_are_other_carriers(self):
        profile = CarrierProfile.for_courier("Trax", r"^\d{12}$")
        assert profile.keywords == ("trax",)
        assert "tcs" in profile.exclusions
        assert "trax" not in profile.exclusions


# ────────────────────────────────────────────
# FULFILLMENT PICKING
# ────────────────────────────────────────────


class TestPickFulfillment:

    def test_tagged_order_accepts_unnamed_fulfillment(self):
        order = _order(tags="tcs", tracking="AB-77")
        assert pick_fulfillment(order, TCS_PROFILE).tracking_number == "AB-77"

    def test_fulfillment_without_tracking_skipped(self):
        order = _order(tags="tcs", tracking=None)
        assert pick_fulfillment(order, TCS_PROFILE) is None

    def test_picks_matching_fulfillment(self):
        order = _order()
        order.fulfillments = [
            Fulfillment(tracking_company="Leopards", tracking_number="LE123"),
            Fulfillment(tracking_company=None, tracking_number="998877665544"),
        ]
        assert pick_fulfillment(order, TCS_PROFILE).tracking_number == "998877665544"

    def test_tagged_order_skips_other_carrier_fulfillment(self):
        order = _order(tags="tcs", company="PostEx", tracking="CX-1")
        assert pick_fulfillment(order, TCS_PROFILE) is None
