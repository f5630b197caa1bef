"""
Daily -> Weekly Derivation

Turns the per-day records produced by uploads and API syncs into week-ending
(Sunday) rollups the weekly dashboard renders:

  1. normalize_day()          - resolve alternate field locations once
  2. derive_weeks_from_days() - bucket days by week ending, add up channel
                                fields and per-SKU rows
  3. finalize                 - reconcile Amazon SKU rows to the header,
                                derive ad rates from counters, compute totals

Totals and ad rates are never accumulated or read from input; they are always
computed from the week's own channel fields, so a derived week cannot
disagree with its parts.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.config import DEFAULT_CONFIG, EngineConfig
from app.services.sku_reconciliation import reconcile_skus
from app.utils.dates import week_ending_sunday
from app.utils.helpers import as_dict, first_present, num, safe_divide, sku_rows
from app.utils.logger import log

AMAZON_FIELDS = ("revenue", "units", "returns", "cogs", "fees", "adSpend", "netProfit")
SHOPIFY_FIELDS = ("revenue", "units", "cogs", "discounts", "adSpend", "metaSpend", "googleSpend", "netProfit")

ADS_COUNTERS = (
    "metaImpressions", "metaClicks", "metaPurchases", "metaPurchaseValue",
    "googleImpressions", "googleClicks", "googleConversions",
)
ADS_RATES = (
    "metaCTR", "metaCPC", "metaCPM", "metaROAS",
    "googleCTR", "googleCPC", "googleCostPerConv",
)

# Flat root-level aliases used by older bulk ad imports
_FLAT_ADS_ALIASES = {
    "metaPurchases": ("metaPurchases", "metaConversions"),
}

AMAZON_SKU_FIELDS = ("unitsSold", "returns", "netSales", "netProceeds", "adSpend", "cogs")
SHOPIFY_SKU_FIELDS = ("unitsSold", "netSales", "discounts", "cogs")


@dataclass
class DerivationStats:
    """Counters describing one derivation run."""
    days_seen: int = 0
    days_skipped: int = 0
    weeks_built: int = 0
    skipped_sku_rows: int = 0
    zero_basis_weeks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daysSeen": self.days_seen,
            "daysSkipped": self.days_skipped,
            "weeksBuilt": self.weeks_built,
            "skippedSkuRows": self.skipped_sku_rows,
            "zeroBasisWeeks": list(self.zero_basis_weeks),
        }


# ─────────────────────────────────────────────
# INGESTION
# ─────────────────────────────────────────────


def normalize_day(day: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Canonical shape for one daily record.

    Ad counters may live under ``shopify.adsMetrics`` or flat on the day
    (bulk imports); nested wins. Ad spend at the day root wins over the
    copy under ``shopify``. Missing channels come back as ``None``.
    """
    day = as_dict(day)
    amazon_in = day.get("amazon")
    shopify_in = day.get("shopify")
    shopify_block = as_dict(shopify_in)

    amazon = None
    if isinstance(amazon_in, dict):
        amazon = {f: num(amazon_in.get(f)) for f in AMAZON_FIELDS if f != "netProfit"}
        amazon["netProfit"] = num(first_present(amazon_in.get("netProfit"), amazon_in.get("netProceeds")))
        amazon["skuData"] = sku_rows(amazon_in.get("skuData"))

    meta_spend = num(first_present(day.get("metaSpend"), shopify_block.get("metaSpend")))
    google_spend = num(first_present(day.get("googleSpend"), shopify_block.get("googleSpend")))
    nested = as_dict(shopify_block.get("adsMetrics"))
    ads = {}
    for counter in ADS_COUNTERS:
        flat_names = _FLAT_ADS_ALIASES.get(counter, (counter,))
        ads[counter] = num(first_present(nested.get(counter), *(day.get(n) for n in flat_names)))

    shopify = None
    # Flat bulk ad imports arrive without a shopify block; their spend still belongs to it
    if isinstance(shopify_in, dict) or meta_spend > 0 or google_spend > 0:
        shopify = {
            "revenue": num(shopify_block.get("revenue")),
            "units": num(shopify_block.get("units")),
            "cogs": num(shopify_block.get("cogs")),
            "discounts": num(shopify_block.get("discounts")),
            "metaSpend": meta_spend,
            "googleSpend": google_spend,
            "adSpend": num(first_present(shopify_block.get("adSpend"), meta_spend + google_spend)),
            "netProfit": num(shopify_block.get("netProfit")),
            "adsMetrics": ads,
            "skuData": sku_rows(shopify_block.get("skuData")),
        }

    return {
        "amazon": amazon,
        "shopify": shopify,
        "metaSpend": meta_spend,
        "googleSpend": google_spend,
    }


def has_signal(day: Dict[str, Any]) -> bool:
    """A normalized day counts when any channel sold or any ad money was spent."""
    amazon = as_dict(day.get("amazon"))
    shopify = as_dict(day.get("shopify"))
    return (
        num(amazon.get("revenue")) > 0
        or num(shopify.get("revenue")) > 0
        or num(day.get("metaSpend")) > 0
        or num(day.get("googleSpend")) > 0
    )


# ─────────────────────────────────────────────
# DERIVED METRICS
# ─────────────────────────────────────────────


def compute_ads_rates(counters: Dict[str, Any], meta_spend: Any, google_spend: Any) -> Dict[str, float]:
    """Ratio KPIs from accumulated counters. Rates are never summed across days."""
    meta_spend = num(meta_spend)
    google_spend = num(google_spend)
    meta_impr = num(counters.get("metaImpressions"))
    meta_clicks = num(counters.get("metaClicks"))
    google_impr = num(counters.get("googleImpressions"))
    google_clicks = num(counters.get("googleClicks"))

    return {
        "metaCTR": safe_divide(meta_clicks, meta_impr) * 100,
        "metaCPC": safe_divide(meta_spend, meta_clicks),
        "metaCPM": safe_divide(meta_spend, meta_impr) * 1000,
        "metaROAS": safe_divide(num(counters.get("metaPurchaseValue")), meta_spend),
        "googleCTR": safe_divide(google_clicks, google_impr) * 100,
        "googleCPC": safe_divide(google_spend, google_clicks),
        "googleCostPerConv": safe_divide(google_spend, num(counters.get("googleConversions"))),
    }


def compute_totals(amazon: Optional[Dict[str, Any]], shopify: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """Cross-channel totals for a record, computed only from its channel fields."""
    amazon = as_dict(amazon)
    shopify = as_dict(shopify)
    amazon_revenue = num(amazon.get("revenue"))
    shopify_revenue = num(shopify.get("revenue"))

    revenue = amazon_revenue + shopify_revenue
    units = num(amazon.get("units")) + num(shopify.get("units"))
    cogs = num(amazon.get("cogs")) + num(shopify.get("cogs"))
    ad_spend = num(amazon.get("adSpend")) + num(shopify.get("adSpend"))
    net_profit = (
        num(first_present(amazon.get("netProfit"), amazon.get("netProceeds")))
        + num(shopify.get("netProfit"))
    )

    return {
        "revenue": revenue,
        "units": units,
        "cogs": cogs,
        "adSpend": ad_spend,
        "netProfit": net_profit,
        "netMargin": safe_divide(net_profit, revenue) * 100,
        "roas": safe_divide(revenue, ad_spend),
        "amazonShare": safe_divide(amazon_revenue, revenue) * 100,
        "shopifyShare": safe_divide(shopify_revenue, revenue) * 100,
    }


# ─────────────────────────────────────────────
# WEEK ACCUMULATOR
# ─────────────────────────────────────────────


class _WeekBuilder:
    """Mutable accumulator for one week; build() returns a fresh record."""

    def __init__(self, week_ending: str):
        self.week_ending = week_ending
        self.days: List[str] = []
        self.amazon = {f: 0.0 for f in AMAZON_FIELDS}
        self.shopify = {f: 0.0 for f in SHOPIFY_FIELDS}
        self.ads = {c: 0.0 for c in ADS_COUNTERS}
        self.amazon_skus: Dict[str, Dict[str, Any]] = {}
        self.shopify_skus: Dict[str, Dict[str, Any]] = {}
        self.skipped_sku_rows = 0

    def add_day(self, day_key: str, day: Dict[str, Any]) -> None:
        self.days.append(day_key)

        amazon = day.get("amazon")
        if amazon is not None:
            for f in AMAZON_FIELDS:
                self.amazon[f] += amazon[f]
            for row in amazon["skuData"]:
                self._add_sku(self.amazon_skus, row, AMAZON_SKU_FIELDS, amazon_row=True)

        shopify = day.get("shopify")
        if shopify is not None:
            for f in SHOPIFY_FIELDS:
                self.shopify[f] += shopify[f]
            for c in ADS_COUNTERS:
                self.ads[c] += shopify["adsMetrics"][c]
            for row in shopify["skuData"]:
                self._add_sku(self.shopify_skus, row, SHOPIFY_SKU_FIELDS)

    def _add_sku(self, bucket: Dict[str, Dict[str, Any]], row: Dict[str, Any], fields, amazon_row: bool = False) -> None:
        sku = str(row.get("sku") or "").strip()
        if not sku:
            # Still counted in the channel header above
            self.skipped_sku_rows += 1
            return

        entry = bucket.get(sku)
        if entry is None:
            entry = {"sku": sku, "name": row.get("name") or sku}
            entry.update({f: 0.0 for f in fields})
            if amazon_row:
                entry["netProceedsPerUnit"] = row.get("netProceedsPerUnit")
            bucket[sku] = entry

        for f in fields:
            entry[f] += num(row.get(f))
        if amazon_row and entry.get("netProceedsPerUnit") is None:
            entry["netProceedsPerUnit"] = row.get("netProceedsPerUnit")

    def build(self, config: EngineConfig, stats: Optional[DerivationStats] = None) -> Dict[str, Any]:
        amazon = dict(self.amazon)
        amazon_rows = _sorted_by_net_sales(self.amazon_skus.values())
        reconciliation = reconcile_skus(amazon, amazon_rows, config)
        amazon["skuData"] = reconciliation.items
        if stats is not None and reconciliation.zero_basis_fields:
            stats.zero_basis_weeks.append(self.week_ending)

        shopify = dict(self.shopify)
        # Shopify rows are left as exported; only Amazon is reconciled to its header
        shopify["skuData"] = _sorted_by_net_sales(self.shopify_skus.values())
        ads = dict(self.ads)
        ads.update(compute_ads_rates(ads, shopify["metaSpend"], shopify["googleSpend"]))
        shopify["adsMetrics"] = ads

        return {
            "weekEnding": self.week_ending,
            "days": list(self.days),
            "meta": {
                "isInProgress": len(self.days) < config.full_week_days,
                "daysPresent": len(self.days),
            },
            "amazon": amazon,
            "shopify": shopify,
            "total": compute_totals(amazon, shopify),
        }


def _sorted_by_net_sales(rows) -> List[Dict[str, Any]]:
    return sorted((dict(r) for r in rows), key=lambda r: num(r.get("netSales")), reverse=True)


# ─────────────────────────────────────────────
# ENTRY POINT
# ─────────────────────────────────────────────


def derive_weeks_from_days(
    daily_records: Optional[Dict[str, Any]],
    config: Optional[EngineConfig] = None,
    stats: Optional[DerivationStats] = None,
) -> Dict[str, Dict[str, Any]]:
    """Build week-ending-Sunday rollups from daily records.

    Days with no revenue on either channel and no Meta/Google spend are
    skipped entirely. Same input always gives the same output.
    """
    config = config or DEFAULT_CONFIG
    stats = stats if stats is not None else DerivationStats()
    builders: Dict[str, _WeekBuilder] = {}

    for day_key in sorted((daily_records or {}).keys()):
        raw = daily_records[day_key]
        if not raw:
            continue
        stats.days_seen += 1

        day = normalize_day(raw)
        if not has_signal(day):
            stats.days_skipped += 1
            continue

        week_key = week_ending_sunday(day_key)
        builder = builders.get(week_key)
        if builder is None:
            builder = builders[week_key] = _WeekBuilder(week_key)
        builder.add_day(day_key, day)

    weeks = {}
    for week_key in sorted(builders):
        builder = builders[week_key]
        stats.skipped_sku_rows += builder.skipped_sku_rows
        weeks[week_key] = builder.build(config, stats)
    stats.weeks_built = len(weeks)

    if stats.skipped_sku_rows:
        log.warning(f"Weekly derivation: {stats.skipped_sku_rows} SKU rows without a SKU left out of SKU rollups")
    log.debug(
        f"Weekly derivation: {stats.days_seen} days -> {stats.weeks_built} weeks "
        f"({stats.days_skipped} days without signal)"
    )
    return weeks
