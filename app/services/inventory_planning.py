"""
Inventory Planning

Applies velocity estimates to an inventory snapshot after a 3PL sync:

  - joins 3PL quantities onto snapshot items by canonical SKU
  - days of supply from the corrected velocity (raw velocity is kept for display)
  - safety stock, reorder point, stockout / reorder-by dates, order quantity
  - appends physical 3PL items the snapshot did not know about

Demand statistics (weekly std dev, CV, seasonality) come from the weekly
rollups via compute_demand_stats().
"""
import math
import statistics
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.config import DEFAULT_CONFIG, EngineConfig
from app.services.velocity_service import VelocityEstimator
from app.utils.dates import to_date
from app.utils.helpers import as_dict, first_present, normalize_sku_key, num, safe_divide, sku_key_variants, sku_rows
from app.utils.logger import log

NO_SUPPLY_DAYS = 999
MIN_WEEKS_FOR_CLASS = 4
SEASONAL_FLOOR = 0.5
SEASONAL_CEILING = 2.0


@dataclass
class InventoryPlanResult:
    items: List[Dict[str, Any]] = field(default_factory=list)
    matched_count: int = 0
    added_count: int = 0
    threepl_units: float = 0.0
    threepl_value: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "matchedCount": self.matched_count,
            "addedCount": self.added_count,
            "threeplUnits": self.threepl_units,
            "threeplValue": self.threepl_value,
        }


def _threepl_qty(item: Optional[Dict[str, Any]]) -> float:
    # a zero on one field falls through to the next
    item = as_dict(item)
    return num(item.get("quantityOnHand")) or num(item.get("quantity_on_hand")) or num(item.get("totalQty"))


def _threepl_inbound(item: Optional[Dict[str, Any]]) -> float:
    item = as_dict(item)
    return num(item.get("quantityInbound")) or num(item.get("quantity_inbound"))


def _lookup(mapping: Dict[str, Any], sku: Optional[str]) -> Any:
    """First hit among the spellings a SKU may be stored under."""
    for variant in sku_key_variants(sku):
        if variant in mapping:
            return mapping[variant]
    return None


def _classify_demand(cv: float, weeks: int) -> str:
    if weeks < MIN_WEEKS_FOR_CLASS:
        return "unknown"
    if cv < 0.5:
        return "smooth"
    if cv <= 1.0:
        return "erratic"
    return "lumpy"


def compute_demand_stats(
    weekly_records: Optional[Dict[str, Any]],
    today: Optional[date] = None,
) -> Dict[str, Dict[str, Any]]:
    """Weekly demand statistics per canonical SKU, both channels combined.

    Weeks in which a SKU did not sell count as zero demand.
    """
    weekly_records = weekly_records or {}
    week_keys = sorted(weekly_records.keys())
    if not week_keys:
        return {}
    today = today or date.today()

    series: Dict[str, List[float]] = {}
    for index, week_key in enumerate(week_keys):
        week = as_dict(weekly_records.get(week_key))
        for channel in ("amazon", "shopify"):
            for row in sku_rows(as_dict(week.get(channel)).get("skuData")):
                sku = normalize_sku_key(row.get("sku"))
                if not sku:
                    continue
                values = series.setdefault(sku, [0.0] * len(week_keys))
                values[index] += num(first_present(row.get("unitsSold"), row.get("units")))

    current_month = today.month
    month_mask = [to_date(k).month == current_month for k in week_keys]

    stats = {}
    for sku, values in series.items():
        mean = statistics.mean(values)
        sd = statistics.stdev(values) if len(values) > 1 else 0.0
        cv = safe_divide(sd, mean)

        in_month = [v for v, hit in zip(values, month_mask) if hit]
        if in_month and mean > 0:
            seasonal = max(SEASONAL_FLOOR, min(SEASONAL_CEILING, statistics.mean(in_month) / mean))
        else:
            seasonal = 1.0

        stats[sku] = {
            "weeklyMean": mean,
            "weeklyStdDev": sd,
            "cv": round(cv, 2),
            "demandClass": _classify_demand(cv, len(values)),
            "currentSeasonalFactor": seasonal,
        }
    return stats


class InventoryPlanner:
    """Annotates inventory items with velocity and reorder timing.

    Usage:
        planner = InventoryPlanner(estimator, demand_stats=compute_demand_stats(weeks))
        result = planner.merge_threepl_quantities(snapshot["items"], packiyo["inventoryBySku"])
    """

    def __init__(
        self,
        estimator: VelocityEstimator,
        config: Optional[EngineConfig] = None,
        demand_stats: Optional[Dict[str, Dict[str, Any]]] = None,
        today: Optional[date] = None,
    ):
        self.estimator = estimator
        self.config = config or DEFAULT_CONFIG
        self.demand_stats = demand_stats or {}
        self.today = today or date.today()

    def plan_item(self, item: Dict[str, Any], total_qty: float) -> Dict[str, Any]:
        """Velocity, supply and reorder fields for one item holding total_qty units."""
        cfg = self.config
        velocity = self.estimator.estimate(item.get("sku"))
        amz_vel = velocity.amazon if velocity.amazon > 0 else num(item.get("amzWeeklyVel"))
        shop_vel = velocity.shopify if velocity.shopify > 0 else num(item.get("shopWeeklyVel"))
        raw_vel = amz_vel + shop_vel
        # Supply math runs on the corrected figure; raw stays visible in the UI
        corrected_vel = velocity.corrected if velocity.corrected > 0 else raw_vel

        dos = round(total_qty / corrected_vel * 7) if corrected_vel > 0 else NO_SUPPLY_DAYS
        lead_time_days = num(item.get("leadTimeDays")) or cfg.default_lead_time_days

        demand = self.demand_stats.get(normalize_sku_key(item.get("sku")))
        safety_stock = (
            math.ceil(cfg.safety_stock_z * num(demand.get("weeklyStdDev")) * math.sqrt(lead_time_days / 7))
            if demand else 0
        )
        seasonal_factor = num((demand or {}).get("currentSeasonalFactor")) or 1.0
        seasonal_vel = corrected_vel * seasonal_factor
        reorder_point = math.ceil(seasonal_vel / 7 * lead_time_days + safety_stock)

        stockout_date = None
        reorder_by_date = None
        days_until_must_order = None
        if corrected_vel > 0 and dos < NO_SUPPLY_DAYS:
            stockout_date = (self.today + timedelta(days=dos)).isoformat()
            reorder_point_days = round(reorder_point / seasonal_vel * 7) if seasonal_vel > 0 else lead_time_days
            days_until_must_order = dos - cfg.reorder_trigger_days - reorder_point_days
            reorder_by_date = (self.today + timedelta(days=days_until_must_order)).isoformat()

        return {
            "weeklyVel": raw_vel,
            "rawWeeklyVel": raw_vel,
            "correctedVel": corrected_vel,
            "amzWeeklyVel": amz_vel,
            "shopWeeklyVel": shop_vel,
            "correctionApplied": velocity.correction_applied,
            "velocityTrend": velocity.trend,
            "daysOfSupply": dos,
            "stockoutDate": stockout_date,
            "reorderByDate": reorder_by_date,
            "daysUntilMustOrder": days_until_must_order,
            "leadTimeDays": lead_time_days,
            "suggestedOrderQty": (
                math.ceil(corrected_vel * cfg.min_order_weeks) + safety_stock if corrected_vel > 0 else 0
            ),
            "safetyStock": safety_stock,
            "reorderPoint": reorder_point,
            "seasonalFactor": round(seasonal_factor, 2),
            "seasonalVel": round(seasonal_vel, 1),
            "cv": num((demand or {}).get("cv")),
            "demandClass": (demand or {}).get("demandClass") or "unknown",
        }

    def merge_threepl_quantities(
        self,
        snapshot_items: Optional[List[Dict[str, Any]]],
        threepl_inventory: Optional[Dict[str, Dict[str, Any]]],
        cost_lookup: Optional[Dict[str, float]] = None,
        name_lookup: Optional[Dict[str, str]] = None,
    ) -> InventoryPlanResult:
        """Join 3PL stock onto the snapshot and re-plan every item."""
        cost_lookup = cost_lookup or {}
        name_lookup = name_lookup or {}
        threepl_lookup: Dict[str, Dict[str, Any]] = {}
        for sku, item in (threepl_inventory or {}).items():
            key = normalize_sku_key(sku)
            if key:
                # the last spelling of a SKU wins
                threepl_lookup[key] = as_dict(item)

        result = InventoryPlanResult()
        matched = set()
        updated = []
        for item in snapshot_items or []:
            if not isinstance(item, dict):
                continue
            key = normalize_sku_key(item.get("sku"))
            tpl = threepl_lookup.get(key)
            if tpl is not None:
                matched.add(key)
            qty = _threepl_qty(tpl)
            cost = num(item.get("cost")) or num(_lookup(cost_lookup, item.get("sku")))
            total_qty = num(item.get("amazonQty")) + qty + num(item.get("homeQty"))

            result.threepl_units += qty
            result.threepl_value += qty * cost

            out = dict(item)
            out.update({
                "threeplQty": qty,
                "threeplInbound": _threepl_inbound(tpl),
                "totalQty": total_qty,
                "totalValue": total_qty * num(item.get("cost")),
            })
            out.update(self.plan_item(item, total_qty))
            updated.append(out)
        result.matched_count = len(matched)

        additions = []
        for key, tpl in threepl_lookup.items():
            qty = _threepl_qty(tpl)
            # zero-quantity 3PL rows are digital or retired products
            if key in matched or qty <= 0:
                continue
            cost = num(tpl.get("cost")) or num(_lookup(cost_lookup, key))
            new_item = {
                "sku": key,
                "name": tpl.get("name") or _lookup(name_lookup, key) or key,
                "threeplQty": qty,
                "threeplInbound": _threepl_inbound(tpl),
                "amazonQty": 0,
                "homeQty": 0,
                "totalQty": qty,
                "cost": cost,
                "totalValue": qty * cost,
                "source": "packiyo",
            }
            new_item.update(self.plan_item(new_item, qty))
            result.threepl_units += qty
            result.threepl_value += qty * cost
            additions.append(new_item)

        if additions:
            if not matched:
                # Nothing lined up: keep only snapshot rows backed by Amazon or home stock
                updated = [i for i in updated if num(i.get("amazonQty")) > 0 or num(i.get("homeQty")) > 0]
            updated = sorted(updated + additions, key=lambda i: num(i.get("totalValue")), reverse=True)
            log.info(f"Inventory plan: added {len(additions)} 3PL-only SKUs to the snapshot")

        result.items = updated
        result.added_count = len(additions)
        log.debug(
            f"Inventory plan: {result.matched_count} SKUs matched to 3PL, "
            f"{result.threepl_units:.0f} 3PL units"
        )
        return result
