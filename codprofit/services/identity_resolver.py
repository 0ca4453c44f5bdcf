"""
Product Identity Resolution

Storefront, PostEx and TCS each describe the same physical product
differently: a slug of the product name, a merchant SKU, or a storefront
product id. Line items are matched against the catalog with a strict
priority cascade (first match wins, no scoring):

    1. variant_fingerprint  (both sides non-empty)
    2. sku
    3. catalog id == item.product_id

Items that match nothing on a dispatched order become inferred catalog
entries with zero cost, so they show up as "needs cost entry" instead of
silently dropping out of the P&L.
"""
from typing import Dict, Iterable, List, Optional, Set, Tuple

from codprofit.schemas import OrderItem, OrderStatus, Product, is_dispatched
from codprofit.utils.logger import log

UNKNOWN = "unknown"


class ProductIdentityResolver:
    """Priority-ordered matcher over an indexed catalog"""

    def __init__(self, products: Iterable[Product]):
        self.products: List[Product] = list(products)
        self._by_fingerprint: Dict[str, Product] = {}
        self._by_sku: Dict[str, Product] = {}
        self._by_id: Dict[str, Product] = {}
        for product in self.products:
            self._index(product)

    def _index(self, product: Product):
        # setdefault: earlier catalog entries win on duplicate keys
        if product.variant_fingerprint:
            self._by_fingerprint.setdefault(product.variant_fingerprint, product)
        if product.sku:
            self._by_sku.setdefault(product.sku, product)
        if product.id:
            self._by_id.setdefault(product.id, product)

    def add(self, product: Product):
        self.products.append(product)
        self._index(product)

    def resolve(self, item: OrderItem) -> Optional[Product]:
        if item.variant_fingerprint:
            match = self._by_fingerprint.get(item.variant_fingerprint)
            if match is not None:
                return match
        if item.sku:
            match = self._by_sku.get(item.sku)
            if match is not None:
                return match
        if item.product_id:
            return self._by_id.get(item.product_id)
        return None


def item_fingerprint(item: OrderItem) -> str:
    return item.variant_fingerprint or item.sku or UNKNOWN


class CatalogBuilder:
    """
    Working catalog for one enrichment pass.

    Seeded from the persisted catalog, grows only through `resolve_or_infer`
    and is handed on as an immutable snapshot. A fingerprint is inferred at
    most once per pass.
    """

    def __init__(self, products: Iterable[Product]):
        seed = list(products)
        self.resolver = ProductIdentityResolver(seed)
        self.inferred: List[Product] = []
        self._seen: Set[str] = {p.variant_fingerprint or p.sku for p in seed}

    def resolve(self, item: OrderItem) -> Optional[Product]:
        return self.resolver.resolve(item)

    def resolve_or_infer(self, item: OrderItem, status: OrderStatus) -> Optional[Product]:
        match = self.resolver.resolve(item)
        if match is not None:
            return match

        # Unbooked / booked / cancelled items never left the warehouse
        if not is_dispatched(status):
            return None

        fingerprint = item_fingerprint(item)
        if fingerprint in self._seen:
            return None
        self._seen.add(fingerprint)

        # Never let several inferred products share the literal "unknown" id
        if item.product_id and item.product_id != UNKNOWN:
            product_id = item.product_id
        else:
            product_id = fingerprint

        product = Product(
            id=product_id,
            title=item.product_name or fingerprint,
            sku=fingerprint,
            variant_fingerprint=fingerprint,
            current_cogs=0.0,
            cost_history=[],
            inferred=True,
        )
        self.resolver.add(product)
        self.inferred.append(product)
        log.debug(f"Inferred catalog entry {product.id} ({product.title}) from courier data")
        return product

    def snapshot(self) -> Tuple[Product, ...]:
        return tuple(self.resolver.products)
