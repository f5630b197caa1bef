"""
SKU reconciliation against channel header totals.

Guards against:
1. Scaling from a zero base (Infinity / fabricated values)
2. Scaling inside the 1% tolerance
3. Scaling fields that have no header total (cogs, adSpend, returns)
4. Mutating the caller's line items
"""
import copy

import pytest

from app.config import EngineConfig
from app.services.sku_reconciliation import (
    reconcile_amazon_skus,
    reconcile_skus,
    scale_factor,
    sum_sku_rows,
    with_shipping_sku_row,
)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------

def test_empty_line_items_return_empty():
    assert reconcile_amazon_skus({"revenue": 100, "units": 10, "netProfit": 20}, []) == []
    assert reconcile_amazon_skus({"revenue": 100}, None) == []


def test_discrepancy_under_one_percent_is_left_alone():
    items = reconcile_amazon_skus({"revenue": 100}, [{"netSales": 99.6}])
    assert items[0]["netSales"] == 99.6


def test_zero_header_never_scales():
    items = reconcile_amazon_skus({"revenue": 0, "units": 0}, [{"sku": "A", "netSales": 40, "unitsSold": 4}])
    assert items[0]["netSales"] == 40
    assert items[0]["unitsSold"] == 4


def test_scale_factor_guard():
    assert scale_factor(100, 0, 0.01) == 1.0
    assert scale_factor(0, 100, 0.01) == 1.0
    assert scale_factor(100, 99.5, 0.01) == 1.0
    assert scale_factor(110, 100, 0.01) == pytest.approx(1.1)


def test_non_dict_rows_and_header_are_ignored():
    items = reconcile_amazon_skus({"revenue": 110}, [{"netSales": 100}, "junk", None])
    assert len(items) == 1
    assert items[0]["netSales"] == pytest.approx(110)
    assert reconcile_amazon_skus(["bad"], [{"netSales": 5}])[0]["netSales"] == 5


def test_custom_tolerance():
    loose = EngineConfig(sku_scale_tolerance=0.2)
    items = reconcile_amazon_skus({"revenue": 110}, [{"netSales": 100}], loose)
    assert items[0]["netSales"] == 100


# ---------------------------------------------------------------------------
# Scaling
# ---------------------------------------------------------------------------

def test_revenue_scaled_to_header():
    items = reconcile_amazon_skus(
        {"revenue": 110, "units": 10},
        [
            {"sku": "A", "netSales": 50, "unitsSold": 5},
            {"sku": "B", "netSales": 50, "unitsSold": 5},
        ],
    )
    assert [i["netSales"] for i in items] == [pytest.approx(55), pytest.approx(55)]
    assert [i["unitsSold"] for i in items] == [5, 5]


def test_each_measure_has_its_own_factor():
    items = reconcile_amazon_skus(
        {"revenue": 200, "units": 20, "netProfit": 30},
        [{"sku": "A", "netSales": 100, "unitsSold": 10, "netProceeds": 60, "cogs": 40, "adSpend": 5, "returns": 1}],
    )
    item = items[0]
    assert item["netSales"] == pytest.approx(200)
    assert item["unitsSold"] == pytest.approx(20)
    assert item["netProceeds"] == pytest.approx(30)
    # no header total for these
    assert item["cogs"] == 40
    assert item["adSpend"] == 5
    assert item["returns"] == 1


def test_alternate_header_names():
    items = reconcile_amazon_skus(
        {"netSales": 120, "netProceeds": 50},
        [{"sku": "A", "netSales": 100, "netProceeds": 25}],
    )
    assert items[0]["netSales"] == pytest.approx(120)
    assert items[0]["netProceeds"] == pytest.approx(50)


def test_unscaled_fields_are_coerced_and_per_unit_kept():
    items = reconcile_amazon_skus(
        {"revenue": 10},
        [{"sku": "A", "netSales": 10, "returns": "2", "cogs": None, "netProceedsPerUnit": 3.25}],
    )
    assert items[0]["returns"] == 2
    assert items[0]["cogs"] == 0
    assert items[0]["netProceedsPerUnit"] == 3.25


def test_input_items_not_mutated():
    rows = [{"sku": "A", "netSales": 50, "unitsSold": 5}, {"sku": "B", "netSales": 50, "unitsSold": 5}]
    before = copy.deepcopy(rows)
    out = reconcile_amazon_skus({"revenue": 110}, rows)
    assert rows == before
    assert out[0] is not rows[0]


# ---------------------------------------------------------------------------
# Monitoring flags
# ---------------------------------------------------------------------------

def test_zero_basis_is_flagged_but_not_filled():
    result = reconcile_skus({"revenue": 100, "units": 3}, [{"sku": "A", "netSales": 0, "unitsSold": 3}])
    assert result.zero_basis_fields == ["revenue"]
    assert result.items[0]["netSales"] == 0
    assert result.revenue_scale == 1.0


def test_reconciliation_result_reports_scales():
    result = reconcile_skus({"revenue": 110}, [{"sku": "A", "netSales": 100}])
    assert result.was_scaled
    payload = result.to_dict()
    assert payload["scales"]["revenue"] == pytest.approx(1.1)
    assert payload["scales"]["units"] == 1.0
    assert payload["zeroBasisFields"] == []
    assert len(payload["skuData"]) == 1


def test_unscaled_result_is_not_marked_scaled():
    result = reconcile_skus({"revenue": 100}, [{"sku": "A", "netSales": 100}])
    assert not result.was_scaled


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def test_sum_sku_rows_skips_empty_rows():
    totals = sum_sku_rows([
        {"unitsSold": 2, "netSales": 10, "cogs": 4, "profit": 6},
        None,
        {"unitsSold": "3", "netSales": 5},
    ])
    assert totals == {"units": 5, "revenue": 15, "cogs": 4, "profit": 6}


def test_sum_sku_rows_custom_fields():
    totals = sum_sku_rows(
        [{"units": 4, "revenue": 40, "cost": 10, "margin": 30}],
        {"units": "units", "revenue": "revenue", "cogs": "cost", "profit": "margin"},
    )
    assert totals == {"units": 4, "revenue": 40, "cogs": 10, "profit": 30}


def test_shipping_row_appended_once():
    rows = with_shipping_sku_row([{"sku": "A", "netSales": 20}], 12.5)
    assert len(rows) == 2
    shipping = rows[-1]
    assert shipping["sku"] == "Shipping"
    assert shipping["netSales"] == 12.5
    assert shipping["isShipping"] is True

    assert len(with_shipping_sku_row(rows, 12.5)) == 2


def test_shipping_row_skipped_without_shipping_or_when_present():
    assert with_shipping_sku_row([{"sku": "A"}], 0) == [{"sku": "A"}]
    assert with_shipping_sku_row([{"sku": "A"}], None) == [{"sku": "A"}]
    existing = [{"sku": "shipping", "netSales": 9}]
    assert with_shipping_sku_row(existing, 9) == existing
