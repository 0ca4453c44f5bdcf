"""
Domain records shared by the enrichment, aggregation and reconciliation services.

These are plain dataclasses rather than ORM rows: orders and their derived
cost fields are rebuilt on every refresh, so nothing here is persisted
directly. `codprofit.models` maps the seller-owned parts (catalog, ad spend)
to and from the database.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from codprofit.utils.helpers import parse_datetime, to_float, to_int


class OrderStatus(str, Enum):
    PENDING = "PENDING"  # Unbooked
    BOOKED = "BOOKED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"  # COD collected
    RTO_INITIATED = "RTO_INITIATED"
    RETURNED = "RETURNED"  # Back with the seller
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"  # Courier still holds the cash
    REMITTED = "REMITTED"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"


# Statuses that never reach the courier network (no fees, no stock movement)
UNDISPATCHED_STATUSES = frozenset({
    OrderStatus.PENDING,
    OrderStatus.BOOKED,
    OrderStatus.CANCELLED,
})
RTO_STATUSES = frozenset({OrderStatus.RETURNED, OrderStatus.RTO_INITIATED})


def is_dispatched(status: OrderStatus) -> bool:
    """True once a shipment has actually left (or come back through) the courier"""
    return status not in UNDISPATCHED_STATUSES


def is_rto(status: OrderStatus) -> bool:
    return status in RTO_STATUSES


def coerce_status(value: Any) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).upper())
    except ValueError:
        return OrderStatus.IN_TRANSIT


def coerce_payment_status(value: Any) -> PaymentStatus:
    if isinstance(value, PaymentStatus):
        return value
    try:
        return PaymentStatus(str(value).upper())
    except ValueError:
        return PaymentStatus.UNPAID


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] reporting window"""
    start: datetime
    end: datetime

    @classmethod
    def last_days(cls, days: int, now: datetime) -> "TimeWindow":
        now = parse_datetime(now)
        start = (now - timedelta(days=days)).replace(hour=0, minute=0, second=0, microsecond=0)
        return cls(start=start, end=now)

    @classmethod
    def from_dates(cls, start: Any, end: Any, now: Optional[datetime] = None) -> "TimeWindow":
        """Whole-day window: start at 00:00:00, end at 23:59:59.999999"""
        start_dt = parse_datetime(start, now).replace(hour=0, minute=0, second=0, microsecond=0)
        end_dt = parse_datetime(end, now).replace(hour=23, minute=59, second=59, microsecond=999999)
        return cls(start=start_dt, end=end_dt)

    def contains(self, value: Any) -> bool:
        moment = parse_datetime(value, self.end)
        return self.start <= moment <= self.end


@dataclass
class CostEntry:
    date: str
    cogs: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostEntry":
        return cls(date=str(data.get("date") or ""), cogs=max(0.0, to_float(data.get("cogs"))))


@dataclass
class Product:
    id: str
    title: str
    sku: str
    current_cogs: float = 0.0
    cost_history: List[CostEntry] = field(default_factory=list)
    variant_fingerprint: Optional[str] = None
    group_id: Optional[str] = None
    group_name: Optional[str] = None
    aliases: List[str] = field(default_factory=list)
    shopify_id: Optional[str] = None
    inferred: bool = False  # Created by the resolver, cost still to be entered

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            sku=data.get("sku") or "",
            current_cogs=max(0.0, to_float(data.get("current_cogs"))),
            cost_history=[CostEntry.from_dict(h) for h in data.get("cost_history") or []],
            variant_fingerprint=data.get("variant_fingerprint") or None,
            group_id=data.get("group_id") or None,
            group_name=data.get("group_name") or None,
            aliases=list(data.get("aliases") or []),
            shopify_id=data.get("shopify_id") or None,
            inferred=bool(data.get("inferred", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class OrderItem:
    product_id: str
    quantity: int
    sale_price: float
    product_name: str
    sku: Optional[str] = None
    variant_fingerprint: Optional[str] = None
    cogs_at_time_of_order: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=str(data.get("product_id") or "unknown"),
            quantity=to_int(data.get("quantity"), 1),
            sale_price=to_float(data.get("sale_price")),
            product_name=data.get("product_name") or "",
            sku=data.get("sku") or None,
            variant_fingerprint=data.get("variant_fingerprint") or None,
            cogs_at_time_of_order=to_float(data.get("cogs_at_time_of_order")),
        )


@dataclass
class Order:
    id: str
    shopify_order_number: str
    created_at: str
    courier: str
    status: OrderStatus
    cod_amount: float = 0.0
    items: List[OrderItem] = field(default_factory=list)
    tracking_number: str = ""
    customer_city: str = "Unknown"
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    shipping_fee_paid_by_customer: float = 0.0

    # Derived on every refresh, never authoritative
    courier_fee: float = 0.0
    rto_penalty: float = 0.0
    packaging_cost: float = 0.0
    overhead_cost: float = 0.0
    tax_amount: float = 0.0

    data_source: str = "courier"  # courier | backfill

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=str(data.get("id") or data.get("tracking_number") or ""),
            shopify_order_number=str(data.get("shopify_order_number") or ""),
            created_at=str(data.get("created_at") or ""),
            courier=data.get("courier") or "",
            status=coerce_status(data.get("status")),
            cod_amount=to_float(data.get("cod_amount")),
            items=[OrderItem.from_dict(i) for i in data.get("items") or []],
            tracking_number=data.get("tracking_number") or "",
            customer_city=data.get("customer_city") or "Unknown",
            payment_status=coerce_payment_status(data.get("payment_status")),
            shipping_fee_paid_by_customer=to_float(data.get("shipping_fee_paid_by_customer")),
            courier_fee=to_float(data.get("courier_fee")),
            rto_penalty=to_float(data.get("rto_penalty")),
            packaging_cost=to_float(data.get("packaging_cost")),
            overhead_cost=to_float(data.get("overhead_cost")),
            tax_amount=to_float(data.get("tax_amount")),
            data_source=data.get("data_source") or "courier",
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["payment_status"] = self.payment_status.value
        return data

    @property
    def shipping_total(self) -> float:
        """Forward fee + return penalty + packaging"""
        return self.courier_fee + self.rto_penalty + self.packaging_cost


@dataclass
class AdSpend:
    id: str
    date: str
    platform: str
    amount_spent: float
    product_id: Optional[str] = None  # Product id or group id
    purchases: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdSpend":
        return cls(
            id=str(data.get("id") or ""),
            date=str(data.get("date") or ""),
            platform=data.get("platform") or "Facebook",
            amount_spent=to_float(data.get("amount_spent")),
            product_id=data.get("product_id") or None,
            purchases=to_int(data.get("purchases")),
        )


@dataclass(frozen=True)
class RateCard:
    forward: float
    rto: float


@dataclass
class CostSettings:
    rates: Dict[str, RateCard]
    packaging_cost: float = 45.0
    overhead_cost: float = 0.0
    tax_rate: float = 0.0
    ads_tax_rate: float = 0.0
    default_courier: str = "PostEx"

    @classmethod
    def from_settings(cls, settings) -> "CostSettings":
        return cls.from_dict({
            "rates": settings.courier_rates,
            "packaging_cost": settings.packaging_cost,
            "overhead_cost": settings.overhead_cost,
            "tax_rate": settings.courier_tax_rate,
            "ads_tax_rate": settings.ads_tax_rate,
            "default_courier": settings.default_courier,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostSettings":
        rates = {
            name: RateCard(forward=to_float(card.get("forward")), rto=to_float(card.get("rto")))
            for name, card in (data.get("rates") or {}).items()
        }
        return cls(
            rates=rates,
            packaging_cost=to_float(data.get("packaging_cost"), 45.0),
            overhead_cost=to_float(data.get("overhead_cost")),
            tax_rate=to_float(data.get("tax_rate")),
            ads_tax_rate=to_float(data.get("ads_tax_rate")),
            default_courier=data.get("default_courier") or "PostEx",
        )

    def rate_for(self, courier: str) -> RateCard:
        """Rate card for a courier, falling back to the default courier's card"""
        card = self.rates.get(courier)
        if card is None:
            card = self.rates.get(self.default_courier, RateCard(forward=0.0, rto=0.0))
        return card


@dataclass
class Fulfillment:
    tracking_company: Optional[str] = None
    tracking_number: Optional[str] = None


@dataclass
class StorefrontLineItem:
    title: str
    quantity: int = 1
    price: float = 0.0
    sku: Optional[str] = None
    product_id: Optional[str] = None
    variant_id: Optional[str] = None


@dataclass
class StorefrontOrder:
    id: str
    name: str
    created_at: str
    total_price: float = 0.0
    cancel_reason: Optional[str] = None
    fulfillment_status: Optional[str] = None
    financial_status: Optional[str] = None
    tags: str = ""
    line_items: List[StorefrontLineItem] = field(default_factory=list)
    fulfillments: List[Fulfillment] = field(default_factory=list)
    customer_city: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorefrontOrder":
        """Build from a Shopify Admin API order payload"""
        customer = data.get("customer") or {}
        address = customer.get("default_address") or data.get("shipping_address") or {}
        tags = data.get("tags") or ""
        if isinstance(tags, (list, tuple)):
            tags = ", ".join(str(t) for t in tags)
        return cls(
            id=str(data.get("id") or data.get("name") or ""),
            name=str(data.get("name") or ""),
            created_at=str(data.get("created_at") or ""),
            total_price=to_float(data.get("total_price")),
            cancel_reason=data.get("cancel_reason") or None,
            fulfillment_status=data.get("fulfillment_status") or None,
            financial_status=data.get("financial_status") or None,
            tags=tags,
            line_items=[
                StorefrontLineItem(
                    title=li.get("title") or li.get("name") or "",
                    quantity=to_int(li.get("quantity"), 1),
                    price=to_float(li.get("price")),
                    sku=li.get("sku") or None,
                    product_id=str(li["product_id"]) if li.get("product_id") else None,
                    variant_id=str(li["variant_id"]) if li.get("variant_id") else None,
                )
                for li in data.get("line_items") or []
            ],
            fulfillments=[
                Fulfillment(
                    tracking_company=f.get("tracking_company"),
                    tracking_number=f.get("tracking_number"),
                )
                for f in data.get("fulfillments") or []
            ],
            customer_city=customer.get("city") or address.get("city"),
        )


@dataclass
class TrackingUpdate:
    tracking_number: str
    status: OrderStatus
    raw_status_text: str
    courier_timestamp: str
    balance_payable: Optional[float] = None
