"""Courier and storefront connectors"""

from codprofit.connectors.base_connector import BaseCourierConnector
from codprofit.connectors.postex_connector import PostExConnector
from codprofit.connectors.tcs_connector import TcsConnector
from codprofit.connectors.shopify_connector import ShopifyConnector

__all__ = [
    "BaseCourierConnector",
    "PostExConnector",
    "TcsConnector",
    "ShopifyConnector",
]
