"""
Carrier detection for storefront backfill

Some courier APIs cannot list recent shipments (TCS only exposes a
settlement report), so their orders are rebuilt from storefront orders.
This module decides, without any network access, whether a storefront
order was shipped with a given carrier.

Rules, in priority order, each guarded by a negative check against the
other known carriers:
  1. the order's tags name the carrier
  2. a fulfillment's tracking company names the carrier
  3. a fulfillment's tracking number has the carrier's format
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern, Tuple

from codprofit.schemas import Fulfillment, StorefrontOrder

# Keywords for every carrier we know about, lower-case
KNOWN_CARRIER_KEYWORDS = {
    "TCS": ("tcs",),
    "Trax": ("trax",),
    "Leopards": ("leopard",),
    "PostEx": ("postex",),
    "CallCourier": ("callcourier",),
    "M&P": ("mnp", "m&p"),
    "Daewoo": ("daewoo", "fastex"),
}


@dataclass(frozen=True)
class CarrierProfile:
    courier: str
    keywords: Tuple[str, ...]
    exclusions: Tuple[str, ...]
    tracking_pattern: Pattern

    @classmethod
    def for_courier(cls, courier: str, tracking_regex: str) -> "CarrierProfile":
        keywords = KNOWN_CARRIER_KEYWORDS.get(courier, (courier.lower(),))
        exclusions = tuple(
            kw
            for name, kws in KNOWN_CARRIER_KEYWORDS.items()
            if name != courier
            for kw in kws
        )
        return cls(
            courier=courier,
            keywords=keywords,
            exclusions=exclusions,
            tracking_pattern=re.compile(tracking_regex),
        )


# TCS consignment numbers are 9-16 digits
TCS_PROFILE = CarrierProfile.for_courier("TCS", r"^\d{9,16}$")


def _mentions(text: str, keywords: Iterable[str]) -> bool:
    text = (text or "").lower()
    return any(kw in text for kw in keywords)


def _clean_tracking(number: Optional[str]) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "", number or "")


def _fulfillment_matches(fulfillment: Fulfillment, profile: CarrierProfile, tags_implicate_other: bool) -> bool:
    company = fulfillment.tracking_company or ""
    if _mentions(company, profile.exclusions):
        return False
    if _mentions(company, profile.keywords):
        return True
    if tags_implicate_other:
        return False
    return bool(profile.tracking_pattern.match(_clean_tracking(fulfillment.tracking_number)))


def tags_match(order: StorefrontOrder, profile: CarrierProfile) -> bool:
    return _mentions(order.tags, profile.keywords) and not _mentions(order.tags, profile.exclusions)


def matches_carrier(order: StorefrontOrder, profile: CarrierProfile) -> bool:
    """True when the storefront order looks like it shipped with `profile`'s carrier"""
    if tags_match(order, profile):
        return True
    other = _mentions(order.tags, profile.exclusions)
    return any(_fulfillment_matches(f, profile, other) for f in order.fulfillments)


def pick_fulfillment(order: StorefrontOrder, profile: CarrierProfile) -> Optional[Fulfillment]:
    """
    The fulfillment to use as the carrier's shipment, or None.

    A tagged order accepts any fulfillment with a tracking number that no
    other carrier claims; otherwise the fulfillment itself must match.
    """
    tagged = tags_match(order, profile)
    other = _mentions(order.tags, profile.exclusions)
    for fulfillment in order.fulfillments:
        if not fulfillment.tracking_number:
            continue
        if tagged and not _mentions(fulfillment.tracking_company or "", profile.exclusions):
            return fulfillment
        if _fulfillment_matches(fulfillment, profile, other):
            return fulfillment
    return None
