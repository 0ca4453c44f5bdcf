"""
Catalog API

Cost entry, grouping and alias maintenance for the seller's products, plus
manual ad spend records. Every edit is applied to a copy of the stored
product and written back through the repository.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Any, Dict, List, Optional
from dataclasses import asdict, replace
import datetime
from uuid import uuid4
from pydantic import BaseModel, Field

from codprofit.models.base import get_db
from codprofit.schemas import AdSpend, Product
from codprofit.services import cost_history
from codprofit.services.catalog_repository import CatalogRepository
from codprofit.utils.logger import log

router = APIRouter(prefix="/catalog", tags=["catalog"])


class CostEntryRequest(BaseModel):
    date: datetime.date
    cogs: float = Field(ge=0)


class BulkCogsRequest(BaseModel):
    """One product id, or every variant id of a group"""
    product_ids: List[str]
    cogs: float = Field(ge=0)


class GroupRequest(BaseModel):
    product_ids: List[str]
    group_id: str
    group_name: str


class AliasRequest(BaseModel):
    alias: str
    product_id: str


class AdSpendRequest(BaseModel):
    entries: List[Dict[str, Any]] = Field(default_factory=list)


def _get_product(products: List[Product], product_id: str) -> Product:
    for product in products:
        if product.id == product_id:
            return product
    raise HTTPException(status_code=404, detail=f"Product {product_id} not found")


def _catalog_payload(products: List[Product]) -> Dict[str, Any]:
    return {
        "products": [p.to_dict() for p in products],
        "needs_cost_entry": len(cost_history.needs_cost_entry(products)),
    }


@router.get("/products")
def get_products(db: Session = Depends(get_db)):
    """Stored catalog and how many products still have no cost"""
    return _catalog_payload(CatalogRepository(db).load_products())


@router.get("/products/needs-cost")
def get_products_needing_cost(db: Session = Depends(get_db)):
    """Products still at zero cost, usually inferred from courier data"""
    products = CatalogRepository(db).load_products()
    return {"products": [p.to_dict() for p in cost_history.needs_cost_entry(products)]}


@router.post("/products/{product_id}/costs")
def add_cost_entry(product_id: str, request: CostEntryRequest, db: Session = Depends(get_db)):
    """Record the unit cost that applies from `date` onwards"""
    repo = CatalogRepository(db)
    product = _get_product(repo.load_products(), product_id)

    updated = cost_history.add_cost_entry(product, request.date.isoformat(), request.cogs)
    repo.save_products([updated])
    log.info(f"Added cost entry {request.date} = {request.cogs} to product {product_id}")
    return updated.to_dict()


@router.delete("/products/{product_id}/costs/{index}")
def remove_cost_entry(product_id: str, index: int, db: Session = Depends(get_db)):
    """Drop the entry at `index` of the newest-first cost history"""
    repo = CatalogRepository(db)
    product = _get_product(repo.load_products(), product_id)
    if not 0 <= index < len(product.cost_history):
        raise HTTPException(status_code=404, detail=f"Cost entry {index} not found")

    updated = cost_history.remove_cost_entry(product, index)
    repo.save_products([updated])
    return updated.to_dict()


@router.put("/products/cogs")
def set_current_cogs(request: BulkCogsRequest, db: Session = Depends(get_db)):
    """Set the base cost on one product or a whole group"""
    repo = CatalogRepository(db)
    products = repo.load_products()
    for product_id in request.product_ids:
        _get_product(products, product_id)

    targets = set(request.product_ids)
    products = cost_history.set_current_cogs(products, targets, request.cogs)
    repo.save_products(p for p in products if p.id in targets)
    return _catalog_payload(products)


@router.put("/products/group")
def assign_group(request: GroupRequest, db: Session = Depends(get_db)):
    """Put the selected variants under a shared group"""
    repo = CatalogRepository(db)
    products = repo.load_products()
    for product_id in request.product_ids:
        _get_product(products, product_id)

    targets = set(request.product_ids)
    products = cost_history.assign_group(products, targets, request.group_id, request.group_name)
    repo.save_products(p for p in products if p.id in targets)
    return _catalog_payload(products)


@router.put("/products/alias")
def map_alias(request: AliasRequest, db: Session = Depends(get_db)):
    """Attach a storefront title to a product, taking it from any other product"""
    repo = CatalogRepository(db)
    before = repo.load_products()
    _get_product(before, request.product_id)

    after = cost_history.map_alias(before, request.alias, request.product_id)
    repo.save_products(new for old, new in zip(before, after) if new is not old)
    return _catalog_payload(after)


@router.get("/ad-spend")
def get_ad_spend(product_id: Optional[str] = None, db: Session = Depends(get_db)):
    """Ad spend records, newest first"""
    entries = CatalogRepository(db).load_ad_spend()
    if product_id:
        entries = [a for a in entries if a.product_id == product_id]
    return {"ad_spend": [asdict(a) for a in entries]}


@router.post("/ad-spend")
def add_ad_spend(request: AdSpendRequest, db: Session = Depends(get_db)):
    """Add or replace ad spend records; entries without an id get one"""
    entries = []
    for raw in request.entries:
        entry = AdSpend.from_dict(raw)
        if not entry.date:
            raise HTTPException(status_code=422, detail="Ad spend entry is missing a date")
        if not entry.id:
            entry = replace(entry, id=uuid4().hex)
        entries.append(entry)

    count = CatalogRepository(db).add_ad_spend(entries)
    return {"status": "success", "added": count, "ids": [e.id for e in entries]}


@router.delete("/ad-spend/{entry_id}")
def delete_ad_spend(entry_id: str, db: Session = Depends(get_db)):
    if not CatalogRepository(db).delete_ad_spend(entry_id):
        raise HTTPException(status_code=404, detail="Ad spend entry not found")
    return {"status": "removed"}
