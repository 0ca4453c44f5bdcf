"""
Catalog persistence

Loads the seller's catalog and ad spend into domain records and stores
products the enrichment pass inferred. The engine itself never touches
the database; the sync service and API go through this class.
"""
from typing import Iterable, List

from sqlalchemy.orm import Session

from codprofit.models.catalog import AdSpendRecord, ProductRecord
from codprofit.schemas import AdSpend, CostEntry, Product
from codprofit.services.cost_history import sort_history
from codprofit.utils.logger import log


def _to_product(record: ProductRecord) -> Product:
    return Product(
        id=record.id,
        shopify_id=record.shopify_id,
        title=record.title or "",
        sku=record.sku or "",
        variant_fingerprint=record.variant_fingerprint or None,
        current_cogs=record.current_cogs or 0.0,
        cost_history=sort_history(CostEntry.from_dict(h) for h in (record.cost_history or [])),
        group_id=record.group_id,
        group_name=record.group_name,
        aliases=list(record.aliases or []),
        inferred=bool(record.inferred),
    )


class CatalogRepository:
    """Read/write access to products and ad spend"""

    def __init__(self, db: Session):
        self.db = db

    def load_products(self) -> List[Product]:
        records = self.db.query(ProductRecord).order_by(ProductRecord.created_at, ProductRecord.id).all()
        return [_to_product(r) for r in records]

    def save_products(self, products: Iterable[Product]) -> int:
        """Upsert products by id"""
        count = 0
        for product in products:
            record = self.db.get(ProductRecord, product.id)
            if record is None:
                record = ProductRecord(id=product.id)
                self.db.add(record)
            record.shopify_id = product.shopify_id
            record.title = product.title
            record.sku = product.sku
            record.variant_fingerprint = product.variant_fingerprint
            record.current_cogs = product.current_cogs
            record.cost_history = [
                {"date": h.date, "cogs": h.cogs} for h in sort_history(product.cost_history)
            ]
            record.group_id = product.group_id
            record.group_name = product.group_name
            record.aliases = list(product.aliases)
            record.inferred = product.inferred
            count += 1

        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            log.error(f"Failed to save products: {e}")
            raise

        log.info(f"Saved {count} products")
        return count

    def load_ad_spend(self) -> List[AdSpend]:
        records = self.db.query(AdSpendRecord).order_by(AdSpendRecord.date.desc(), AdSpendRecord.id).all()
        return [
            AdSpend(
                id=r.id,
                date=r.date,
                platform=r.platform,
                amount_spent=r.amount_spent or 0.0,
                product_id=r.product_id,
                purchases=r.purchases or 0,
            )
            for r in records
        ]

    def add_ad_spend(self, entries: Iterable[AdSpend]) -> int:
        count = 0
        for entry in entries:
            self.db.merge(AdSpendRecord(
                id=entry.id,
                date=entry.date,
                platform=entry.platform,
                amount_spent=entry.amount_spent,
                product_id=entry.product_id,
                purchases=entry.purchases,
            ))
            count += 1
        self.db.commit()
        return count

    def delete_ad_spend(self, entry_id: str) -> bool:
        deleted = self.db.query(AdSpendRecord).filter(AdSpendRecord.id == entry_id).delete()
        self.db.commit()
        return bool(deleted)
