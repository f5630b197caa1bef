"""
Inventory velocity estimator.

Daily window of 28 days, the newest 14 weighted double:
velocity = (recent * 2 + prior) / 6 units per week.
"""
from datetime import date, timedelta

import pytest

from app.config import EngineConfig
from app.services.velocity_service import (
    ForecastCorrections,
    VelocityEstimate,
    VelocityEstimator,
)

WINDOW_END = date(2024, 6, 28)


def _window_keys(n=28, end=WINDOW_END):
    """Date keys, newest first."""
    return [(end - timedelta(days=i)).isoformat() for i in range(n)]


def _add_sales(days, channel, sku, recent_per_day, prior_per_day, n=28):
    for index, key in enumerate(_window_keys(n)):
        units = recent_per_day if index < 14 else prior_per_day
        day = days.setdefault(key, {})
        block = day.setdefault(channel, {"skuData": []})
        block["skuData"].append({"sku": sku, "unitsSold": units})
    return days


def _steady(sku="A1", channel="shopify", per_day=1):
    return _add_sales({}, channel, sku, per_day, per_day)


def _corrections(**overrides):
    payload = {"confidence": 50, "samplesUsed": 3, "overall": {"units": 1.2}, "bySku": {}}
    payload.update(overrides)
    return ForecastCorrections.model_validate(payload)


# ────────────────────────────────────────────
# WEIGHTED WINDOW
# ────────────────────────────────────────────


class TestWeightedWindow:
    """Recent half counts twice over a six week-equivalent window."""

    def test_steady_seller(self):
        est = VelocityEstimator(_steady()).estimate("A1")
        assert est.shopify == pytest.approx(7.0)
        assert est.amazon == 0
        assert est.total == pytest.approx(7.0)
        assert est.corrected == pytest.approx(7.0)
        assert est.trend == 0

    def test_recent_half_weighted_double(self):
        days = _add_sales({}, "amazon", "A1", 2, 1)
        est = VelocityEstimator(days).estimate("A1")
        # (28 * 2 + 14) / 6
        assert est.amazon == pytest.approx(70 / 6)

    def test_days_outside_window_ignored(self):
        days = _steady()
        days["2024-05-01"] = {"shopify": {"skuData": [{"sku": "A1", "unitsSold": 500}]}}
        assert VelocityEstimator(days).estimate("A1").shopify == pytest.approx(7.0)

    def test_units_field_fallback(self):
        days = {"2024-06-28": {"amazon": {"skuData": [{"sku": "A1", "units": 6}]}}}
        assert VelocityEstimator(days).estimate("A1").amazon == pytest.approx(12 / 6)

    def test_velocity_weeks_equivalent(self):
        assert EngineConfig().velocity_weeks_equivalent == pytest.approx(6.0)


# ────────────────────────────────────────────
# TREND
# ────────────────────────────────────────────


class TestTrend:
    """Recent vs prior weekly average per channel."""

    def test_accelerating(self):
        estimator = VelocityEstimator(_add_sales({}, "amazon", "A1", 2, 1))
        trend = estimator.trend_for("A1")
        assert trend.amazon_trend == 100
        assert trend.shopify_trend == 0
        assert trend.total_trend == 50
        assert trend.accelerating is True
        assert trend.decelerating is False

        est = estimator.estimate("A1")
        assert est.trend == 50
        # |trend| > 20 nudges the corrected figure up 10%
        assert est.corrected == pytest.approx(70 / 6 * 1.1)
        assert est.total == pytest.approx(70 / 6)

    def test_decelerating(self):
        estimator = VelocityEstimator(_add_sales({}, "amazon", "A1", 1, 2))
        trend = estimator.trend_for("A1")
        assert trend.amazon_trend == -50
        assert trend.total_trend == -25
        assert trend.decelerating is True
        assert estimator.estimate("A1").corrected == pytest.approx(56 / 6 * 0.9)

    def test_no_prior_sales_gives_zero_trend(self):
        days = _add_sales({}, "shopify", "NEW", 1, 0)
        trend = VelocityEstimator(days).trend_for("NEW")
        assert trend.shopify_trend == 0
        assert trend.accelerating is False

    def test_small_trend_not_adjusted(self):
        # recent 15/14d vs prior 14/14d on one channel, ~7% -> total ~4%
        days = _steady()
        days["2024-06-28"]["shopify"]["skuData"].append({"sku": "A1", "unitsSold": 1})
        est = VelocityEstimator(days).estimate("A1")
        assert est.corrected == pytest.approx(est.total)


# ────────────────────────────────────────────
# SKU IDENTITY
# ────────────────────────────────────────────


def test_shop_suffix_and_case_resolve_to_one_sku():
    days = _add_sales({}, "shopify", "DDPE0022Shop", 1, 1)
    _add_sales(days, "amazon", "ddpe0022", 1, 1)
    estimator = VelocityEstimator(days)
    assert estimator.skus == ["DDPE0022"]
    for raw in ("DDPE0022", "ddpe0022shop", "DDPE0022Shop"):
        est = estimator.estimate(raw)
        assert est.amazon == pytest.approx(7.0)
        assert est.shopify == pytest.approx(7.0)
        assert est.total == pytest.approx(14.0)


class TestMalformedRecords:
    """Channels, weeks or rows that are not mappings contribute nothing."""

    def test_non_dict_channel(self):
        days = _steady()
        days[WINDOW_END.isoformat()]["amazon"] = ["bad"]
        est = VelocityEstimator(days).estimate("A1")
        assert est.amazon == 0
        assert est.shopify == pytest.approx(7.0)

    def test_non_dict_day_and_rows(self):
        days = _steady()
        days["2024-06-27"] = ["bad"]
        days["2024-06-26"]["shopify"]["skuData"].append("junk")
        est = VelocityEstimator(days).estimate("A1")
        assert est.shopify == pytest.approx((13 * 2 + 14) / 6)

    def test_non_dict_week_counts_as_empty(self):
        weeks = {
            "2024-04-07": ["bad"],
            "2024-04-14": {"shopify": {"skuData": [{"sku": "SLOW", "unitsSold": 4}]}},
        }
        assert VelocityEstimator({}, weeks).estimate("SLOW").shopify == pytest.approx(2.0)


def test_unknown_sku_is_zero():
    est = VelocityEstimator(_steady()).estimate("NOPE")
    assert est == VelocityEstimate()
    assert VelocityEstimator().estimate(None).total == 0


# ────────────────────────────────────────────
# WEEKLY FALLBACK
# ────────────────────────────────────────────


class TestWeeklyFallback:
    """Slow movers absent from the daily window use their weekly average."""

    def _weeks(self):
        return {
            "2024-04-07": {"shopify": {"skuData": [{"sku": "SLOW", "unitsSold": 2}, {"sku": "A1", "unitsSold": 90}]}},
            "2024-04-14": {"amazon": {"skuData": [{"sku": "A1", "unitsSold": 90}]}},
            "2024-04-21": {"shopify": {"skuData": [{"sku": "SLOWShop", "unitsSold": 2}]}},
            "2024-04-28": {},
        }

    def test_zero_daily_velocity_filled(self):
        estimator = VelocityEstimator(_steady(), self._weeks())
        assert estimator.estimate("SLOW").shopify == pytest.approx(1.0)
        assert estimator.weekly_supplemented["shopify"] == 1

    def test_daily_velocity_not_overridden(self):
        estimator = VelocityEstimator(_steady(), self._weeks())
        est = estimator.estimate("A1")
        assert est.shopify == pytest.approx(7.0)

    def test_channel_with_no_daily_velocity_is_filled_independently(self):
        estimator = VelocityEstimator(_steady(), self._weeks())
        # A1 sells on Shopify daily; its Amazon history only exists weekly
        assert estimator.estimate("A1").amazon == pytest.approx(90 / 4)
        assert estimator.weekly_supplemented["amazon"] == 1

    def test_weekly_only(self):
        estimator = VelocityEstimator({}, self._weeks())
        assert estimator.estimate("SLOW").total == pytest.approx(1.0)


# ────────────────────────────────────────────
# FORECAST CORRECTIONS
# ────────────────────────────────────────────


class TestCorrections:
    """Learned multipliers only apply above the confidence/sample thresholds."""

    def _days(self):
        days = _steady("A1")
        return _add_sales(days, "shopify", "B2", 1, 1)

    def test_sku_factor_preferred(self):
        corrections = _corrections(bySku={"A1": {"units": 0.5, "samples": 2}})
        est = VelocityEstimator(self._days(), corrections=corrections).estimate("A1")
        assert est.corrected == pytest.approx(3.5)
        assert est.correction_applied is True
        assert est.total == pytest.approx(7.0)

    def test_overall_factor_when_no_sku_factor(self):
        corrections = _corrections(bySku={"A1": {"units": 0.5, "samples": 2}})
        est = VelocityEstimator(self._days(), corrections=corrections).estimate("B2")
        assert est.corrected == pytest.approx(8.4)
        assert est.correction_applied is True

    def test_sku_factor_needs_two_samples(self):
        corrections = _corrections(bySku={"A1": {"units": 0.5, "samples": 1}})
        est = VelocityEstimator(self._days(), corrections=corrections).estimate("A1")
        assert est.corrected == pytest.approx(8.4)

    def test_sku_factor_matched_by_canonical_key(self):
        corrections = _corrections(bySku={"a1shop": {"units": 0.5, "samples": 4}})
        est = VelocityEstimator(self._days(), corrections=corrections).estimate("A1")
        assert est.corrected == pytest.approx(3.5)

    @pytest.mark.parametrize("confidence,samples", [(29.9, 5), (80, 1)])
    def test_thresholds_not_met(self, confidence, samples):
        corrections = _corrections(confidence=confidence, samplesUsed=samples)
        est = VelocityEstimator(self._days(), corrections=corrections).estimate("A1")
        assert est.correction_applied is False
        assert est.corrected == pytest.approx(est.total)

    def test_correction_then_trend_adjustment(self):
        days = _add_sales({}, "amazon", "A1", 2, 1)
        corrections = _corrections(bySku={"A1": {"units": 0.5, "samples": 2}})
        est = VelocityEstimator(days, corrections=corrections).estimate("A1")
        assert est.corrected == pytest.approx(70 / 6 * 0.5 * 1.1)

    def test_populate_by_field_name(self):
        corrections = ForecastCorrections(confidence=40, samples_used=2)
        assert corrections.is_active(EngineConfig())


# ────────────────────────────────────────────
# OUTPUT
# ────────────────────────────────────────────


def test_estimate_to_dict_keys():
    payload = VelocityEstimator(_steady()).estimate("A1").to_dict()
    assert set(payload) == {"amazon", "shopify", "total", "corrected", "correctionApplied", "trend"}


def test_estimate_all():
    days = _add_sales(_steady("A1"), "amazon", "B2Shop", 1, 1)
    estimator = VelocityEstimator(days)
    assert sorted(estimator.estimate_all()) == ["A1", "B2"]
    assert list(estimator.estimate_all(["b2shop", "", None])) == ["B2"]
