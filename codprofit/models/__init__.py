"""Database models for the COD profit engine"""

from codprofit.models.catalog import ProductRecord, AdSpendRecord

__all__ = ["ProductRecord", "AdSpendRecord"]
