"""
Helper utilities
"""
import math
from typing import Any, Dict, List, Optional


def num(value: Any) -> float:
    """Coerce an externally-sourced value to a finite number, 0 when that fails.

    Report exports and API payloads hand us None, "", "12.5", NaN and the
    occasional nested object; aggregation only ever sees a usable float.
    """
    if value is None:
        return 0.0
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(n) or math.isinf(n):
        return 0.0
    return n


def first_present(*values: Any) -> Any:
    """Return the first value that is not None (JS-style ``a ?? b``)."""
    for value in values:
        if value is not None:
            return value
    return None


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def normalize_sku_key(sku: Optional[str]) -> str:
    """Canonical SKU used to match Amazon, Shopify and 3PL rows.

    Shopify listings carry a trailing "Shop" on the same physical SKU
    (DDPE0022Shop == DDPE0022), and casing differs between sources.
    """
    if not sku:
        return ""
    key = str(sku).strip()
    if key[-4:].lower() == "shop":
        key = key[:-4]
    return key.upper()


def sku_key_variants(sku: Optional[str]) -> List[str]:
    """Spellings under which one SKU may appear in a non-canonical lookup."""
    if not sku:
        return []
    raw = str(sku).strip()
    base = normalize_sku_key(raw)
    variants = [
        raw, raw.lower(), raw.upper(),
        base, base.lower(),
        base + "Shop", base.lower() + "shop", base + "SHOP",
    ]
    seen = set()
    return [v for v in variants if not (v in seen or seen.add(v))]


def as_dict(value: Any) -> Dict[str, Any]:
    """The value when it is a mapping, else an empty dict."""
    return value if isinstance(value, dict) else {}


def sku_rows(value: Any) -> List[Dict[str, Any]]:
    """SKU rows from a ``skuData`` value: a list, or a map keyed by SKU."""
    if isinstance(value, dict):
        value = list(value.values())
    if not isinstance(value, list):
        return []
    return [row for row in value if isinstance(row, dict)]
