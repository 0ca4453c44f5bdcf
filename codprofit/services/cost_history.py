"""
Date-based costing

An order's margin has to use the cost that was paid for the unit when the
order was placed, not today's cost: sellers renegotiate supplier prices
often, and re-pricing old orders at the new cost hides real losses.

`cost_history` is kept sorted newest-first. Entries that share a date are
resolved by insertion order: the most recently added entry wins.
"""
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from codprofit.schemas import CostEntry, Product
from codprofit.utils.helpers import parse_datetime
from codprofit.utils.logger import log


def sort_history(history: Iterable[CostEntry], fallback: Optional[datetime] = None) -> List[CostEntry]:
    """Newest first. Stable, so list order decides between same-date entries."""
    return sorted(
        history,
        key=lambda h: parse_datetime(h.date, fallback),
        reverse=True,
    )


def cost_at_date(product: Product, as_of, fallback: Optional[datetime] = None) -> float:
    """
    Cost of goods for `product` as of `as_of`.

    Picks the newest entry dated on or before `as_of`. An order older than
    every entry gets the earliest entry; a product with no history gets
    `current_cogs`.
    """
    if not product.cost_history:
        return product.current_cogs

    order_date = parse_datetime(as_of, fallback)
    history = sort_history(product.cost_history, fallback)

    for entry in history:
        if parse_datetime(entry.date, fallback) <= order_date:
            return entry.cogs

    return history[-1].cogs


def add_cost_entry(product: Product, date, cogs: float) -> Product:
    """
    Return a copy of `product` with a new cost rule.

    The new entry goes in front of the existing ones before the stable
    re-sort, so it wins over any older entry carrying the same date.
    """
    if cogs < 0:
        raise ValueError("cogs must be non-negative")

    date_str = parse_datetime(date).date().isoformat()
    entries = [CostEntry(date=date_str, cogs=float(cogs))] + list(product.cost_history)
    return replace(product, cost_history=sort_history(entries))


def remove_cost_entry(product: Product, index: int) -> Product:
    """Drop the entry at `index` of the newest-first history"""
    history = sort_history(product.cost_history)
    if 0 <= index < len(history):
        del history[index]
    else:
        log.warning(f"Cost entry {index} not found on product {product.id}")
    return replace(product, cost_history=history)


def set_current_cogs(products: Sequence[Product], product_ids: Iterable[str], cogs: float) -> List[Product]:
    """Set the base cost on one product, or on every variant of a group at once"""
    if cogs < 0:
        raise ValueError("cogs must be non-negative")
    targets = set(product_ids)
    return [
        replace(p, current_cogs=float(cogs), inferred=False) if p.id in targets else p
        for p in products
    ]


def assign_group(products: Sequence[Product], product_ids: Iterable[str], group_id: str, group_name: str) -> List[Product]:
    """Put the selected variants under a shared group"""
    targets = set(product_ids)
    return [
        replace(p, group_id=group_id, group_name=group_name) if p.id in targets else p
        for p in products
    ]


def map_alias(products: Sequence[Product], alias: str, product_id: str) -> List[Product]:
    """
    Attach a storefront title to a catalog product.

    An alias belongs to exactly one product, so any other product that
    claimed it loses it.
    """
    updated = []
    for p in products:
        if p.id == product_id:
            aliases = p.aliases if alias in p.aliases else p.aliases + [alias]
            updated.append(replace(p, aliases=list(aliases)))
        elif alias in p.aliases:
            updated.append(replace(p, aliases=[a for a in p.aliases if a != alias]))
        else:
            updated.append(p)
    return updated


def needs_cost_entry(products: Iterable[Product]) -> List[Product]:
    """Products still at zero cost (usually inferred from courier data)"""
    return [p for p in products if p.current_cogs == 0 and not p.cost_history]
