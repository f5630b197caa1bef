"""
Monthly / yearly roll-ups of weekly records.

A week belongs to the month (and year) of its week-ending Sunday. Shopify
profit is recomputed with 3PL fulfilment cost, taken from the per-week 3PL
ledger when one is supplied and from the week's own ``threeplCosts``
otherwise. Totals are rebuilt from the channel sums, like weeks.
"""
from typing import Any, Dict, List, Optional

from app.utils.dates import month_key, to_date
from app.utils.helpers import as_dict, num, safe_divide

AMAZON_FIELDS = ("revenue", "units", "returns", "cogs", "fees", "adSpend", "netProfit")
SHOPIFY_FIELDS = ("revenue", "units", "cogs", "adSpend", "metaSpend", "googleSpend", "discounts")
THREEPL_BREAKDOWN_FIELDS = ("storage", "shipping", "pickFees", "boxCharges", "receiving", "other")


def get_months(weeks: Optional[Dict[str, Any]]) -> List[str]:
    """Distinct YYYY-MM keys, newest first."""
    return sorted({month_key(k) for k in (weeks or {})}, reverse=True)


def get_years(weeks: Optional[Dict[str, Any]]) -> List[int]:
    return sorted({to_date(k).year for k in (weeks or {})}, reverse=True)


def _empty_rollup(week_keys: List[str]) -> Dict[str, Any]:
    return {
        "weeks": week_keys,
        "amazon": {f: 0.0 for f in AMAZON_FIELDS},
        "shopify": {
            **{f: 0.0 for f in SHOPIFY_FIELDS},
            "threeplCosts": 0.0,
            "netProfit": 0.0,
            "threeplBreakdown": {f: 0.0 for f in THREEPL_BREAKDOWN_FIELDS},
            "threeplMetrics": {"orderCount": 0.0, "totalUnits": 0.0},
        },
        "total": {},
    }


def _threepl_for_week(week_key: str, week: Dict[str, Any], ledger: Optional[Dict[str, Any]]):
    entry = as_dict(as_dict(ledger).get(week_key))
    shopify = as_dict(week.get("shopify"))
    metrics = as_dict(entry.get("metrics"))
    cost = num(metrics.get("totalCost")) or num(shopify.get("threeplCosts"))
    breakdown = as_dict(entry.get("breakdown") or shopify.get("threeplBreakdown"))
    week_metrics = metrics or as_dict(shopify.get("threeplMetrics"))
    return cost, breakdown, week_metrics


def _add_week(agg: Dict[str, Any], week_key: str, week: Dict[str, Any], ledger) -> float:
    """Fold one week into agg; returns the week's net profit after 3PL cost."""
    amazon = as_dict(week.get("amazon"))
    shopify = as_dict(week.get("shopify"))
    threepl_cost, breakdown, metrics = _threepl_for_week(week_key, week, ledger)

    for f in AMAZON_FIELDS:
        agg["amazon"][f] += num(amazon.get(f))
    for f in SHOPIFY_FIELDS:
        agg["shopify"][f] += num(shopify.get(f))
    agg["shopify"]["threeplCosts"] += threepl_cost
    for f in THREEPL_BREAKDOWN_FIELDS:
        agg["shopify"]["threeplBreakdown"][f] += num(breakdown.get(f))
    agg["shopify"]["threeplMetrics"]["orderCount"] += num(metrics.get("orderCount"))
    agg["shopify"]["threeplMetrics"]["totalUnits"] += num(metrics.get("totalUnits"))

    shop_profit = (
        num(shopify.get("revenue")) - num(shopify.get("cogs")) - threepl_cost - num(shopify.get("adSpend"))
    )
    agg["shopify"]["netProfit"] += shop_profit
    return num(amazon.get("netProfit")) + shop_profit


def _finalize(agg: Dict[str, Any]) -> Dict[str, Any]:
    amazon = agg["amazon"]
    shopify = agg["shopify"]
    tpl = shopify["threeplMetrics"]
    order_count = tpl["orderCount"]

    tpl["avgCostPerOrder"] = safe_divide(shopify["threeplCosts"] - shopify["threeplBreakdown"]["storage"], order_count)
    tpl["avgUnitsPerOrder"] = safe_divide(tpl["totalUnits"], order_count)

    amazon["margin"] = safe_divide(amazon["netProfit"], amazon["revenue"]) * 100
    amazon["aov"] = safe_divide(amazon["revenue"], amazon["units"])
    amazon["roas"] = safe_divide(amazon["revenue"], amazon["adSpend"])
    amazon["returnRate"] = safe_divide(amazon["returns"], amazon["units"]) * 100
    shopify["netMargin"] = safe_divide(shopify["netProfit"], shopify["revenue"]) * 100
    shopify["aov"] = safe_divide(shopify["revenue"], shopify["units"])
    shopify["roas"] = safe_divide(shopify["revenue"], shopify["adSpend"])

    revenue = amazon["revenue"] + shopify["revenue"]
    net_profit = amazon["netProfit"] + shopify["netProfit"]
    ad_spend = amazon["adSpend"] + shopify["adSpend"]
    agg["total"] = {
        "revenue": revenue,
        "units": amazon["units"] + shopify["units"],
        "cogs": amazon["cogs"] + shopify["cogs"],
        "adSpend": ad_spend,
        "netProfit": net_profit,
        "netMargin": safe_divide(net_profit, revenue) * 100,
        "roas": safe_divide(revenue, ad_spend),
        "amazonShare": safe_divide(amazon["revenue"], revenue) * 100,
        "shopifyShare": safe_divide(shopify["revenue"], revenue) * 100,
    }
    return agg


def get_monthly_data(
    month: str,
    weeks: Optional[Dict[str, Any]],
    threepl_ledger: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Roll up every week ending in ``month`` (YYYY-MM). None when there are none."""
    matching = sorted(k for k in (weeks or {}) if month_key(k) == month)
    if not matching:
        return None

    agg = _empty_rollup(matching)
    for week_key in matching:
        _add_week(agg, week_key, as_dict(weeks[week_key]), threepl_ledger)
    return _finalize(agg)


def get_yearly_data(
    year: int,
    weeks: Optional[Dict[str, Any]],
    threepl_ledger: Optional[Dict[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Roll up a calendar year, with a revenue / profit breakdown per month."""
    matching = sorted(k for k in (weeks or {}) if to_date(k).year == int(year))
    if not matching:
        return None

    agg = _empty_rollup(matching)
    breakdown: Dict[str, Dict[str, float]] = {}
    for week_key in matching:
        week = as_dict(weeks[week_key])
        week_profit = _add_week(agg, week_key, week, threepl_ledger)
        month = breakdown.setdefault(month_key(week_key), {"revenue": 0.0, "netProfit": 0.0})
        month["revenue"] += num(as_dict(week.get("amazon")).get("revenue")) + num(as_dict(week.get("shopify")).get("revenue"))
        month["netProfit"] += week_profit

    agg["monthlyBreakdown"] = breakdown
    return _finalize(agg)
