"""COD profit reconciliation engine"""

__version__ = "0.4.0"
