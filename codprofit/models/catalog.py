"""
Seller-owned catalog and ad spend

Only data the seller edits by hand lives here. Orders and their derived
costs are rebuilt from the courier and storefront APIs on every refresh.
"""
from sqlalchemy import Column, Integer, String, Float, DateTime, Boolean, JSON
from datetime import datetime

from codprofit.models.base import Base


class ProductRecord(Base):
    """
    Catalog entry

    cost_history is stored newest-first as a JSON list of {date, cogs}.
    aliases holds storefront titles manually mapped onto this product.
    """
    __tablename__ = "products"

    id = Column(String, primary_key=True)
    shopify_id = Column(String, nullable=True)
    title = Column(String, nullable=False, default="")
    sku = Column(String, index=True, nullable=False, default="")
    variant_fingerprint = Column(String, unique=True, nullable=True)

    current_cogs = Column(Float, nullable=False, default=0.0)
    cost_history = Column(JSON, nullable=False, default=list)

    group_id = Column(String, index=True, nullable=True)
    group_name = Column(String, nullable=True)
    aliases = Column(JSON, nullable=False, default=list)

    inferred = Column(Boolean, default=False)  # Created from courier data, cost not entered yet

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AdSpendRecord(Base):
    """Daily ad spend, optionally attributed to a product id or a group id"""
    __tablename__ = "ad_spend"

    id = Column(String, primary_key=True)
    date = Column(String, index=True, nullable=False)  # YYYY-MM-DD
    platform = Column(String, nullable=False)  # Facebook, TikTok, Google
    amount_spent = Column(Float, nullable=False, default=0.0)
    product_id = Column(String, index=True, nullable=True)
    purchases = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
