"""
Inventory Velocity API

Endpoints for per-SKU sales velocity and 3PL-synced inventory planning.
"""
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.config import get_engine_config
from app.services.inventory_planning import InventoryPlanner, compute_demand_stats
from app.services.velocity_service import ForecastCorrections, VelocityEstimator, VelocityTrend
from app.utils.logger import log

router = APIRouter(prefix="/inventory", tags=["inventory"])


class VelocityRequest(BaseModel):
    days: Dict[str, Optional[Dict[str, Any]]] = Field(default_factory=dict)
    weeks: Dict[str, Optional[Dict[str, Any]]] = Field(default_factory=dict)
    corrections: Optional[ForecastCorrections] = None
    skus: Optional[List[str]] = None


class InventoryPlanRequest(BaseModel):
    days: Dict[str, Optional[Dict[str, Any]]] = Field(default_factory=dict)
    weeks: Dict[str, Optional[Dict[str, Any]]] = Field(default_factory=dict)
    corrections: Optional[ForecastCorrections] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)
    threepl: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    costs: Dict[str, float] = Field(default_factory=dict)
    names: Dict[str, str] = Field(default_factory=dict)
    today: Optional[date] = None


@router.post("/velocity")
async def get_velocity(request: VelocityRequest):
    """Weekly velocity per SKU (raw and forecast-corrected) with trend."""
    try:
        estimator = VelocityEstimator(request.days, request.weeks, request.corrections, get_engine_config())
        estimates = estimator.estimate_all(request.skus)
        return {
            "success": True,
            "count": len(estimates),
            "data": {
                sku: {**est.to_dict(), "trendDetail": estimator.trends.get(sku, VelocityTrend()).to_dict()}
                for sku, est in estimates.items()
            },
            "weeklySupplemented": estimator.weekly_supplemented,
        }
    except Exception as e:
        log.error(f"Error computing velocity: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/plan")
async def plan_inventory(request: InventoryPlanRequest):
    """Merge 3PL quantities into the snapshot and recompute supply / reorder dates."""
    try:
        config = get_engine_config()
        estimator = VelocityEstimator(request.days, request.weeks, request.corrections, config)
        planner = InventoryPlanner(
            estimator,
            config,
            demand_stats=compute_demand_stats(request.weeks, request.today),
            today=request.today,
        )
        result = planner.merge_threepl_quantities(request.items, request.threepl, request.costs, request.names)
        return {"success": True, **result.to_dict()}
    except Exception as e:
        log.error(f"Error planning inventory: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
