"""
Health check and status endpoints
"""
from fastapi import APIRouter
from datetime import datetime
from app.config import get_settings, get_engine_config
from app import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status():
    """Get system status"""
    engine = get_engine_config()
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "engine": {
            "sku_scale_tolerance": engine.sku_scale_tolerance,
            "velocity_window_days": engine.velocity_window_days,
            "velocity_recent_days": engine.velocity_recent_days,
            "correction_min_confidence": engine.correction_min_confidence,
            "correction_min_samples": engine.correction_min_samples,
        },
        "timestamp": datetime.utcnow().isoformat()
    }
