"""
Stored / Derived Week Merge

A week can exist twice: the rollup saved when a weekly report was uploaded
("stored") and the rollup rebuilt from daily records ("derived"). Derived
values win because they reconcile to day-level data, with two exceptions:

  * ad metrics: a derived block with no impressions/clicks/conversions would
    wipe out ad data saved with the stored week, so the stored block wins
  * SKU lists: an empty derived list falls back to the stored one

Totals are recomputed from the merged channels every time; neither input's
``total`` is trusted.
"""
from typing import Any, Callable, Dict, List, Optional

from app.services.weekly_aggregation import compute_totals
from app.utils.helpers import as_dict, num, sku_rows

WEEK_KEY_FIELDS = ("weekEnding", "week_end", "week", "weekKey")

ADS_SIGNAL_FIELDS = (
    "metaImpressions", "googleImpressions",
    "metaClicks", "googleClicks",
    "metaPurchases", "googleConversions",
    "metaPurchaseValue",
)


def has_ads_signals(metrics: Optional[Dict[str, Any]]) -> bool:
    """True when any ad counter is non-zero."""
    metrics = as_dict(metrics)
    return any(num(metrics.get(f)) > 0 for f in ADS_SIGNAL_FIELDS)


def prefer_by_signal(
    stored: Optional[Dict[str, Any]],
    derived: Optional[Dict[str, Any]],
    has_signal: Callable[[Dict[str, Any]], bool],
) -> Dict[str, Any]:
    """Overlay the two blocks, letting derived win only when it carries signal."""
    stored = as_dict(stored)
    derived = as_dict(derived)
    if has_signal(derived):
        return {**stored, **derived}
    return {**derived, **stored}


def _sku_list(channel: Any) -> List[Dict[str, Any]]:
    return sku_rows(as_dict(channel).get("skuData"))


def _merge_channel(stored_channel, derived_channel) -> Dict[str, Any]:
    merged = {**as_dict(stored_channel), **as_dict(derived_channel)}
    derived_rows = _sku_list(derived_channel)
    merged["skuData"] = list(derived_rows if derived_rows else _sku_list(stored_channel))
    return merged


def _week_key(stored, derived) -> Optional[str]:
    for record in (stored, derived):
        for f in WEEK_KEY_FIELDS:
            if record and record.get(f):
                return record[f]
    return None


def merge_week_data(
    stored: Optional[Dict[str, Any]],
    derived: Optional[Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    """Merge a saved weekly record with one derived from daily data."""
    if stored is None and derived is None:
        return None
    base = as_dict(stored if stored is not None else derived)
    stored = as_dict(stored)
    derived = as_dict(derived)

    amazon = _merge_channel(stored.get("amazon"), derived.get("amazon"))
    shopify = _merge_channel(stored.get("shopify"), derived.get("shopify"))
    # A winning stored block keeps its own rates, even against a derived metaSpend
    shopify["adsMetrics"] = prefer_by_signal(
        as_dict(stored.get("shopify")).get("adsMetrics"),
        as_dict(derived.get("shopify")).get("adsMetrics"),
        has_ads_signals,
    )

    merged = dict(base)
    merged.update({
        "weekEnding": _week_key(stored, derived),
        "amazon": amazon,
        "shopify": shopify,
        "total": compute_totals(amazon, shopify),
        "meta": {**as_dict(stored.get("meta")), **as_dict(derived.get("meta"))},
        "days": list(derived.get("days") or stored.get("days") or []),
    })
    return merged


def merge_weeks(
    stored_weeks: Optional[Dict[str, Dict[str, Any]]],
    derived_weeks: Optional[Dict[str, Dict[str, Any]]],
) -> Dict[str, Dict[str, Any]]:
    """Merge every week present in either mapping, keyed by week ending."""
    stored_weeks = stored_weeks or {}
    derived_weeks = derived_weeks or {}
    merged = {}
    for week_key in sorted(set(stored_weeks) | set(derived_weeks)):
        week = merge_week_data(stored_weeks.get(week_key), derived_weeks.get(week_key))
        if week is not None:
            week["weekEnding"] = week.get("weekEnding") or week_key
            merged[week_key] = week
    return merged
