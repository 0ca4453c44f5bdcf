"""
Helper utilities
"""
from datetime import datetime, timezone
from typing import Any, Optional
import re

from dateutil import parser as date_parser


def parse_datetime(value: Any, fallback: Optional[datetime] = None) -> datetime:
    """
    Coerce a date/datetime/string into a naive UTC datetime.

    Courier APIs hand back ISO strings, "09/09/2024" style day-first strings
    and the occasional empty value. Anything unparseable becomes `fallback`
    (or the current UTC time when no fallback is given) instead of raising.
    """
    if isinstance(value, datetime):
        dt = value
    elif value is None or (isinstance(value, str) and not value.strip()):
        return _fallback(fallback)
    elif hasattr(value, "year") and hasattr(value, "month") and hasattr(value, "day"):
        dt = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        try:
            dayfirst = bool(re.match(r"^\d{1,2}/\d{1,2}/\d{4}", text))
            dt = date_parser.parse(text, dayfirst=dayfirst)
        except (ValueError, OverflowError, TypeError):
            return _fallback(fallback)

    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _fallback(fallback: Optional[datetime]) -> datetime:
    if fallback is None:
        return datetime.utcnow()
    return parse_datetime(fallback)


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse money-ish values ("1,250.00", None, 3) into a float"""
    if value is None:
        return default
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    """Parse a quantity into an int"""
    try:
        return int(to_float(value, default))
    except (TypeError, ValueError, OverflowError):
        return default


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def normalize_order_ref(reference: Any) -> str:
    """
    Normalize a storefront order reference for cross-source matching.

    "#1050", " 1050 " and "1050" all become "1050".
    """
    if reference is None:
        return ""
    return str(reference).strip().lstrip("#").strip()


def create_fingerprint(value: Any) -> str:
    """Slugify a product title or SKU: "Wireless Earbuds (Pro)" -> "wireless-earbuds-pro" """
    if not value:
        return ""
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower().strip())
    return slug.strip("-")
