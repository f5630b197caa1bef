"""
Configuration management for the weekly reconciliation service
"""
from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "Weekly Reconciliation Service"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_to_file: bool = False
    log_dir: str = "logs"

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # SKU reconciliation
    sku_scale_tolerance: float = 0.01  # relative gap before line items are scaled
    full_week_days: int = 7

    # Velocity
    velocity_window_days: int = 28
    velocity_recent_days: int = 14
    velocity_recent_weight: int = 2
    trend_signal_threshold: float = 0.10  # accelerating / decelerating cutoff
    trend_adjust_threshold_pct: float = 20.0
    trend_adjust_factor: float = 0.10
    correction_min_confidence: float = 30.0
    correction_min_samples: int = 2

    # Inventory planning
    reorder_trigger_days: int = 60
    min_order_weeks: int = 22
    default_lead_time_days: int = 14
    safety_stock_z: float = 1.65

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


@dataclass(frozen=True)
class EngineConfig:
    """Tuning constants handed to the aggregation and velocity functions."""

    sku_scale_tolerance: float = 0.01
    full_week_days: int = 7

    velocity_window_days: int = 28
    velocity_recent_days: int = 14
    velocity_recent_weight: int = 2
    trend_signal_threshold: float = 0.10
    trend_adjust_threshold_pct: float = 20.0
    trend_adjust_factor: float = 0.10
    correction_min_confidence: float = 30.0
    correction_min_samples: int = 2

    reorder_trigger_days: int = 60
    min_order_weeks: int = 22
    default_lead_time_days: int = 14
    safety_stock_z: float = 1.65

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            sku_scale_tolerance=settings.sku_scale_tolerance,
            full_week_days=settings.full_week_days,
            velocity_window_days=settings.velocity_window_days,
            velocity_recent_days=settings.velocity_recent_days,
            velocity_recent_weight=settings.velocity_recent_weight,
            trend_signal_threshold=settings.trend_signal_threshold,
            trend_adjust_threshold_pct=settings.trend_adjust_threshold_pct,
            trend_adjust_factor=settings.trend_adjust_factor,
            correction_min_confidence=settings.correction_min_confidence,
            correction_min_samples=settings.correction_min_samples,
            reorder_trigger_days=settings.reorder_trigger_days,
            min_order_weeks=settings.min_order_weeks,
            default_lead_time_days=settings.default_lead_time_days,
            safety_stock_z=settings.safety_stock_z,
        )

    @property
    def velocity_weeks_equivalent(self) -> float:
        """Weeks the weighted window stands for (3 periods x 2 weeks = 6 by default)."""
        periods = self.velocity_recent_weight + 1
        return periods * (self.velocity_recent_days / 7)


DEFAULT_CONFIG = EngineConfig()


@lru_cache()
def get_engine_config() -> EngineConfig:
    """Engine configuration derived from the environment-backed settings"""
    return EngineConfig.from_settings(get_settings())
