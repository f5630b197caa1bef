"""
Weekly Aggregation API

Derive weeks from daily records, merge them with stored weeks, reconcile SKU
tables and roll weeks up into months or years. Every endpoint is a pure
computation over the posted payload; nothing is persisted.
"""
import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.config import get_engine_config
from app.services.period_rollup import get_monthly_data, get_yearly_data
from app.services.sku_reconciliation import reconcile_skus
from app.services.week_merge import merge_week_data, merge_weeks
from app.services.weekly_aggregation import DerivationStats, derive_weeks_from_days
from app.utils.logger import log

router = APIRouter(prefix="/weekly", tags=["weekly"])

_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")
_YEAR_RE = re.compile(r"^\d{4}$")


class DeriveWeeksRequest(BaseModel):
    """Daily records keyed by YYYY-MM-DD"""
    days: Dict[str, Optional[Dict[str, Any]]] = Field(default_factory=dict)
    stored_weeks: Optional[Dict[str, Dict[str, Any]]] = Field(None, alias="storedWeeks")

    model_config = {"populate_by_name": True}


class MergeWeekRequest(BaseModel):
    stored: Optional[Dict[str, Any]] = None
    derived: Optional[Dict[str, Any]] = None


class ReconcileSkusRequest(BaseModel):
    totals: Dict[str, Any] = Field(default_factory=dict)
    sku_data: List[Dict[str, Any]] = Field(default_factory=list, alias="skuData")

    model_config = {"populate_by_name": True}


class RollupRequest(BaseModel):
    """period is YYYY-MM for a month or YYYY for a year"""
    period: str
    weeks: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    threepl_ledger: Optional[Dict[str, Any]] = Field(None, alias="threeplLedger")

    model_config = {"populate_by_name": True}


@router.post("/derive")
async def derive_weeks(request: DeriveWeeksRequest):
    """
    Build week-ending-Sunday rollups from daily records.

    When storedWeeks is supplied the derived weeks are merged over them, so
    the response is what the weekly view should render.
    """
    try:
        stats = DerivationStats()
        weeks = derive_weeks_from_days(request.days, get_engine_config(), stats)
        if request.stored_weeks is not None:
            weeks = merge_weeks(request.stored_weeks, weeks)

        return {
            "success": True,
            "count": len(weeks),
            "weeks": weeks,
            "stats": stats.to_dict(),
        }
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error deriving weeks: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/merge")
async def merge_week(request: MergeWeekRequest):
    """Merge one stored week with the week derived from daily data."""
    try:
        week = merge_week_data(request.stored, request.derived)
    except Exception as e:
        log.error(f"Error merging week: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

    if week is None:
        raise HTTPException(status_code=404, detail="No stored or derived week supplied")
    return {"success": True, "week": week}


@router.post("/reconcile-skus")
async def reconcile_sku_rows(request: ReconcileSkusRequest):
    """Scale SKU rows so they add up to the channel header totals."""
    try:
        result = reconcile_skus(request.totals, request.sku_data, get_engine_config())
        return {"success": True, **result.to_dict()}
    except Exception as e:
        log.error(f"Error reconciling SKU rows: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/rollup")
async def rollup_weeks(request: RollupRequest):
    """Monthly (YYYY-MM) or yearly (YYYY) rollup of weekly records."""
    period = request.period.strip()
    try:
        if _MONTH_RE.match(period):
            data = get_monthly_data(period, request.weeks, request.threepl_ledger)
        elif _YEAR_RE.match(period):
            data = get_yearly_data(int(period), request.weeks, request.threepl_ledger)
        else:
            raise HTTPException(status_code=400, detail=f"Invalid period '{period}' (expected YYYY-MM or YYYY)")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if data is None:
        raise HTTPException(status_code=404, detail=f"No weeks found for {period}")
    return {"success": True, "period": period, "data": data}
