"""
Inventory Velocity Estimator

Weekly sales velocity per SKU and channel, feeding days-of-supply and reorder
math:

  * Weighted moving average over the last 28 daily records: the most recent
    14 days count twice, so (recent*2 + prior) spans 6 week-equivalents
  * Trend: recent vs prior weekly average per channel
  * Weekly-rollup fallback for slow movers with no sales in the daily window
  * Learned forecast corrections, then a +/-10% nudge for strong trends

All SKU lookups go through normalize_sku_key(), so "DDPE0022Shop",
"ddpe0022" and "DDPE0022" resolve to the same SKU.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from app.config import DEFAULT_CONFIG, EngineConfig
from app.utils.helpers import as_dict, first_present, normalize_sku_key, num, safe_divide, sku_rows
from app.utils.logger import log

CHANNELS = ("amazon", "shopify")


class SkuCorrection(BaseModel):
    units: float = 1.0
    samples: int = 0


class OverallCorrection(BaseModel):
    units: Optional[float] = None


class ForecastCorrections(BaseModel):
    """Multipliers learned by comparing past forecasts with actual sales."""
    confidence: float = 0.0
    samples_used: int = Field(0, alias="samplesUsed")
    overall: OverallCorrection = Field(default_factory=OverallCorrection)
    by_sku: Dict[str, SkuCorrection] = Field(default_factory=dict, alias="bySku")

    model_config = {"populate_by_name": True}

    def is_active(self, config: EngineConfig) -> bool:
        return (
            self.confidence >= config.correction_min_confidence
            and self.samples_used >= config.correction_min_samples
        )

    def sku_correction(self, key: str, config: EngineConfig) -> Optional[SkuCorrection]:
        """Correction for a canonical SKU key, if it has enough samples."""
        correction = self.by_sku.get(key)
        if correction is None:
            for raw_key, candidate in self.by_sku.items():
                if normalize_sku_key(raw_key) == key:
                    correction = candidate
                    break
        if correction is not None and correction.samples >= config.correction_min_samples:
            return correction
        return None


@dataclass
class VelocityTrend:
    shopify_trend: int = 0  # percent
    amazon_trend: int = 0
    total_trend: int = 0
    accelerating: bool = False
    decelerating: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "shopifyTrend": self.shopify_trend,
            "amazonTrend": self.amazon_trend,
            "totalTrend": self.total_trend,
            "accelerating": self.accelerating,
            "decelerating": self.decelerating,
        }


@dataclass
class VelocityEstimate:
    """Weekly units velocity for one SKU."""
    amazon: float = 0.0
    shopify: float = 0.0
    total: float = 0.0
    corrected: float = 0.0
    correction_applied: bool = False
    trend: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amazon": self.amazon,
            "shopify": self.shopify,
            "total": self.total,
            "corrected": self.corrected,
            "correctionApplied": self.correction_applied,
            "trend": self.trend,
        }


def _sku_rows(channel: Any) -> List[Dict[str, Any]]:
    return sku_rows(as_dict(channel).get("skuData"))


def _row_units(row: Dict[str, Any]) -> float:
    return num(first_present(row.get("unitsSold"), row.get("units")))


def _channel_trend(recent: float, prior: float) -> float:
    return safe_divide(recent / 2 - prior / 2, prior / 2)


class VelocityEstimator:
    """Per-SKU weekly velocity from daily history with weekly fallback.

    Usage:
        estimator = VelocityEstimator(all_days, all_weeks, corrections)
        estimator.estimate("DDPE0022Shop").corrected
    """

    def __init__(
        self,
        daily_records: Optional[Dict[str, Any]] = None,
        weekly_records: Optional[Dict[str, Any]] = None,
        corrections: Optional[ForecastCorrections] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.corrections = corrections or ForecastCorrections()
        self.velocity: Dict[str, Dict[str, float]] = {c: {} for c in CHANNELS}
        self.trends: Dict[str, VelocityTrend] = {}
        self.weekly_supplemented: Dict[str, int] = {c: 0 for c in CHANNELS}

        self._compute_daily(daily_records or {})
        self._supplement_from_weeks(weekly_records or {})

    # ── Daily window ─────────────────────────────────────────────────

    def _compute_daily(self, daily_records: Dict[str, Any]) -> None:
        cfg = self.config
        window = sorted(daily_records.keys(), reverse=True)[: cfg.velocity_window_days]
        if not window:
            return

        recent = {c: {} for c in CHANNELS}
        prior = {c: {} for c in CHANNELS}
        for index, day_key in enumerate(window):
            day = as_dict(daily_records.get(day_key))
            bucket = recent if index < cfg.velocity_recent_days else prior
            for channel in CHANNELS:
                for row in _sku_rows(day.get(channel)):
                    sku = normalize_sku_key(row.get("sku"))
                    if not sku:
                        continue
                    bucket[channel][sku] = bucket[channel].get(sku, 0.0) + _row_units(row)

        weeks_equiv = cfg.velocity_weeks_equivalent
        skus = set()
        for channel in CHANNELS:
            skus.update(recent[channel])
            skus.update(prior[channel])

        for sku in skus:
            channel_trends = {}
            for channel in CHANNELS:
                r = recent[channel].get(sku, 0.0)
                p = prior[channel].get(sku, 0.0)
                weighted = r * cfg.velocity_recent_weight + p
                self.velocity[channel][sku] = safe_divide(weighted, weeks_equiv)
                channel_trends[channel] = _channel_trend(r, p)

            combined = channel_trends["shopify"] + channel_trends["amazon"]
            self.trends[sku] = VelocityTrend(
                shopify_trend=round(channel_trends["shopify"] * 100),
                amazon_trend=round(channel_trends["amazon"] * 100),
                total_trend=round(combined / 2 * 100),
                accelerating=combined > cfg.trend_signal_threshold,
                decelerating=combined < -cfg.trend_signal_threshold,
            )

        log.debug(f"Velocity: {len(skus)} SKUs from {len(window)} daily records")

    # ── Weekly fallback ──────────────────────────────────────────────

    def _supplement_from_weeks(self, weekly_records: Dict[str, Any]) -> None:
        """Fill zero-velocity SKUs with their average over every stored week."""
        week_keys = sorted(weekly_records.keys())
        if not week_keys:
            return

        totals = {c: {} for c in CHANNELS}
        for week_key in week_keys:
            week = as_dict(weekly_records.get(week_key))
            for channel in CHANNELS:
                for row in _sku_rows(week.get(channel)):
                    sku = normalize_sku_key(row.get("sku"))
                    if not sku:
                        continue
                    totals[channel][sku] = totals[channel].get(sku, 0.0) + _row_units(row)

        week_count = len(week_keys)
        for channel in CHANNELS:
            for sku, units in totals[channel].items():
                weekly_avg = units / week_count
                if weekly_avg > 0 and not self.velocity[channel].get(sku):
                    self.velocity[channel][sku] = weekly_avg
                    self.weekly_supplemented[channel] += 1

        if any(self.weekly_supplemented.values()):
            log.debug(
                f"Velocity: weekly fallback filled {self.weekly_supplemented['shopify']} Shopify / "
                f"{self.weekly_supplemented['amazon']} Amazon slow movers"
            )

    # ── Lookups ──────────────────────────────────────────────────────

    @property
    def skus(self) -> List[str]:
        found = set()
        for channel in CHANNELS:
            found.update(self.velocity[channel])
        return sorted(found)

    def trend_for(self, sku: str) -> VelocityTrend:
        return self.trends.get(normalize_sku_key(sku), VelocityTrend())

    def estimate(self, sku: Optional[str]) -> VelocityEstimate:
        key = normalize_sku_key(sku)
        if not key:
            return VelocityEstimate()
        return self._estimate_key(key)

    def _estimate_key(self, key: str) -> VelocityEstimate:
        cfg = self.config
        amazon = self.velocity["amazon"].get(key, 0.0)
        shopify = self.velocity["shopify"].get(key, 0.0)
        total = amazon + shopify
        trend = self.trends.get(key, VelocityTrend()).total_trend

        corrected = total
        correction_applied = False
        if self.corrections.is_active(cfg):
            # SKU-specific factor beats the store-wide one
            sku_correction = self.corrections.sku_correction(key, cfg)
            if sku_correction is not None:
                corrected = total * (sku_correction.units or 1)
                correction_applied = True
            elif self.corrections.overall.units:
                corrected = total * self.corrections.overall.units
                correction_applied = True

        if abs(trend) > cfg.trend_adjust_threshold_pct:
            factor = 1 + cfg.trend_adjust_factor if trend > 0 else 1 - cfg.trend_adjust_factor
            corrected = corrected * factor

        return VelocityEstimate(
            amazon=amazon,
            shopify=shopify,
            total=total,
            corrected=corrected,
            correction_applied=correction_applied,
            trend=trend,
        )

    def estimate_all(self, skus: Optional[Iterable[str]] = None) -> Dict[str, VelocityEstimate]:
        """Estimates keyed by canonical SKU; every known SKU when skus is None."""
        if skus is None:
            return {key: self._estimate_key(key) for key in self.skus}
        keys = [normalize_sku_key(s) for s in skus if s]
        return {key: self._estimate_key(key) for key in keys if key}
