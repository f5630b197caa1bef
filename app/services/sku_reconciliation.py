"""
SKU Reconciliation

Channel reports give us two views of the same week: header totals (revenue,
units, profit) and a per-SKU breakdown. Exports regularly disagree by a few
percent (timing, rounding, refunds landing on a different day), which makes
the SKU table not add up to the summary card.

reconcile_amazon_skus() scales the breakdown so it sums to the header, one
factor per measure, without ever scaling from a zero base.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from app.config import DEFAULT_CONFIG, EngineConfig
from app.utils.helpers import as_dict, first_present, num
from app.utils.logger import log

# header field -> line-item field it is reconciled against
SCALED_FIELDS = {
    "revenue": "netSales",
    "units": "unitsSold",
    "profit": "netProceeds",
}


@dataclass
class SkuReconciliation:
    """Outcome of one reconciliation pass."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    revenue_scale: float = 1.0
    units_scale: float = 1.0
    profit_scale: float = 1.0
    # Measures with a positive header total but a zero line-item sum.
    # Nothing can be scaled, so the SKU table silently undercounts them.
    zero_basis_fields: List[str] = field(default_factory=list)

    @property
    def was_scaled(self) -> bool:
        return any(s != 1.0 for s in (self.revenue_scale, self.units_scale, self.profit_scale))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skuData": self.items,
            "scales": {
                "revenue": self.revenue_scale,
                "units": self.units_scale,
                "profit": self.profit_scale,
            },
            "zeroBasisFields": list(self.zero_basis_fields),
        }


def header_targets(channel_totals: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """Read the header totals, accepting the alternate field names."""
    totals = as_dict(channel_totals)
    return {
        "revenue": num(first_present(totals.get("revenue"), totals.get("netSales"))),
        "units": num(totals.get("units")),
        "profit": num(first_present(totals.get("netProfit"), totals.get("netProceeds"))),
    }


def scale_factor(target: float, total: float, tolerance: float) -> float:
    """target/total when both are positive and they differ by more than tolerance, else 1."""
    if target > 0 and total > 0 and abs(total - target) / target > tolerance:
        return target / total
    return 1.0


def reconcile_skus(
    channel_totals: Optional[Dict[str, Any]],
    sku_line_items: Optional[Iterable[Dict[str, Any]]],
    config: Optional[EngineConfig] = None,
) -> SkuReconciliation:
    config = config or DEFAULT_CONFIG
    items = [dict(item) for item in (sku_line_items or []) if isinstance(item, dict)]
    if not items:
        return SkuReconciliation(items=[])

    targets = header_targets(channel_totals)
    sums = {
        measure: sum(num(item.get(item_field)) for item in items)
        for measure, item_field in SCALED_FIELDS.items()
    }

    scales = {
        measure: scale_factor(targets[measure], sums[measure], config.sku_scale_tolerance)
        for measure in SCALED_FIELDS
    }
    zero_basis = [m for m in SCALED_FIELDS if targets[m] > 0 and sums[m] == 0]
    if zero_basis:
        log.warning(
            f"SKU reconciliation: header has {', '.join(zero_basis)} but line items sum to 0 "
            f"({len(items)} rows); SKU detail undercounts the channel total"
        )

    reconciled = []
    for item in items:
        out = dict(item)
        out["unitsSold"] = num(item.get("unitsSold")) * scales["units"]
        out["netSales"] = num(item.get("netSales")) * scales["revenue"]
        out["netProceeds"] = num(item.get("netProceeds")) * scales["profit"]
        out["returns"] = num(item.get("returns"))
        out["adSpend"] = num(item.get("adSpend"))
        out["cogs"] = num(item.get("cogs"))
        out["netProceedsPerUnit"] = item.get("netProceedsPerUnit")
        reconciled.append(out)

    return SkuReconciliation(
        items=reconciled,
        revenue_scale=scales["revenue"],
        units_scale=scales["units"],
        profit_scale=scales["profit"],
        zero_basis_fields=zero_basis,
    )


def reconcile_amazon_skus(
    channel_totals: Optional[Dict[str, Any]],
    sku_line_items: Optional[Iterable[Dict[str, Any]]],
    config: Optional[EngineConfig] = None,
) -> List[Dict[str, Any]]:
    """Scale Amazon SKU rows so they add up to the channel header.

    An empty list comes back empty; callers should surface that as a
    data-quality warning since there is nothing to distribute.
    """
    return reconcile_skus(channel_totals, sku_line_items, config).items


def sum_sku_rows(
    rows: Optional[Iterable[Dict[str, Any]]],
    fields: Optional[Dict[str, str]] = None,
) -> Dict[str, float]:
    """Sum units / revenue / cogs / profit over SKU rows."""
    fields = fields or {"units": "unitsSold", "revenue": "netSales", "cogs": "cogs", "profit": "profit"}
    acc = {"units": 0.0, "revenue": 0.0, "cogs": 0.0, "profit": 0.0}
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        for key in acc:
            acc[key] += num(row.get(fields[key]))
    return acc


def _is_shipping_row(row: Optional[Dict[str, Any]]) -> bool:
    if not isinstance(row, dict):
        return False
    return bool(row.get("isShipping")) or str(row.get("sku") or "").lower() == "shipping"


def with_shipping_sku_row(
    rows: Optional[Iterable[Dict[str, Any]]],
    shipping_collected: Any,
) -> List[Dict[str, Any]]:
    """Append a synthetic Shipping row so Shopify SKU tables include collected shipping."""
    out = list(rows or [])
    ship = num(shipping_collected)
    if ship <= 0 or any(_is_shipping_row(r) for r in out):
        return out

    out.append({
        "sku": "Shipping",
        "name": "Shipping (collected)",
        "unitsSold": 0,
        "grossSales": ship,
        "discounts": 0,
        "netSales": ship,
        "cogs": 0,
        "profit": ship,
        "isShipping": True,
    })
    return out
