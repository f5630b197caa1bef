"""
Weekly Reconciliation Service
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from app.config import get_settings, get_engine_config
from app.utils.logger import log
from app import __version__

# Import routers
from app.api import health, weekly, inventory

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    engine = get_engine_config()
    log.info(
        f"Velocity window {engine.velocity_window_days}d "
        f"(recent {engine.velocity_recent_days}d x{engine.velocity_recent_weight}), "
        f"SKU scale tolerance {engine.sku_scale_tolerance:.0%}"
    )

    yield

    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Weekly and daily sales reconciliation for a two-channel store

    - Derives week-ending-Sunday rollups from daily Amazon / Shopify records
    - Scales SKU line items so they add up to the channel header totals
    - Merges stored weekly uploads with weeks derived from daily data
    - Rolls weeks up into months and years
    - Estimates per-SKU weekly velocity and reorder timing after a 3PL sync
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Week payloads with SKU tables get large
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(weekly.router)
app.include_router(inventory.router)


@app.get("/")
async def root():
    """Root endpoint with API information"""
    return {
        "app": settings.app_name,
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
        "status": "/status",
        "endpoints": {
            "derive_weeks": "POST /weekly/derive",
            "merge_week": "POST /weekly/merge",
            "reconcile_skus": "POST /weekly/reconcile-skus",
            "rollup": "POST /weekly/rollup",
            "velocity": "POST /inventory/velocity",
            "inventory_plan": "POST /inventory/plan",
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
