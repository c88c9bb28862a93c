import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: Literal["development", "test", "production"] = Field("development", alias="LEVELUP_ENVIRONMENT")
    debug_endpoints: bool = Field(False, alias="LEVELUP_DEBUG_ENDPOINTS")
    database_url: Optional[str] = Field(None, alias="LEVELUP_DATABASE_URL")
    database_pool_size: int = Field(10, alias="LEVELUP_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="LEVELUP_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="LEVELUP_DATABASE_ECHO")
    database_auto_create: bool = Field(False, alias="LEVELUP_DATABASE_AUTO_CREATE")
    persistence_mode: Literal["database", "json", "memory"] = Field(
        "database",
        alias="LEVELUP_PERSISTENCE_MODE",
    )
    json_store_path: Optional[str] = Field(None, alias="LEVELUP_JSON_STORE_PATH")
    fallback_cache_size: int = Field(1000, ge=1, alias="LEVELUP_FALLBACK_CACHE_SIZE")

    # Performance tracker
    tracker_capacity: int = Field(2000, ge=1, alias="LEVELUP_TRACKER_CAPACITY")
    tracker_slow_threshold_ms: float = Field(50.0, gt=0, alias="LEVELUP_TRACKER_SLOW_MS")
    tracker_frequency_threshold: float = Field(0.5, gt=0, le=1, alias="LEVELUP_TRACKER_FREQUENCY_SHARE")

    # Profile estimator calibration
    confidence_growth: float = Field(0.25, gt=0, alias="LEVELUP_CONFIDENCE_GROWTH")
    confidence_cap: float = Field(0.95, gt=0, le=1, alias="LEVELUP_CONFIDENCE_CAP")
    confidence_floor: float = Field(0.3, ge=0, le=1, alias="LEVELUP_CONFIDENCE_FLOOR")
    refresh_confidence: float = Field(0.5, ge=0, le=1, alias="LEVELUP_REFRESH_CONFIDENCE")
    staleness_window_hours: float = Field(72.0, gt=0, alias="LEVELUP_STALENESS_WINDOW_HOURS")
    confidence_half_life_hours: float = Field(168.0, gt=0, alias="LEVELUP_CONFIDENCE_HALF_LIFE_HOURS")
    min_events_for_inference: int = Field(2, ge=1, alias="LEVELUP_MIN_EVENTS_FOR_INFERENCE")
    momentum_window: int = Field(5, ge=2, alias="LEVELUP_MOMENTUM_WINDOW")
    momentum_flat_threshold: float = Field(0.03, ge=0, alias="LEVELUP_MOMENTUM_FLAT_THRESHOLD")
    momentum_stall_after: int = Field(3, ge=1, alias="LEVELUP_MOMENTUM_STALL_AFTER")
    load_window: int = Field(3, ge=1, alias="LEVELUP_LOAD_WINDOW")
    load_overloaded_error_rate: float = Field(0.6, ge=0, le=1, alias="LEVELUP_LOAD_OVERLOADED_ERROR_RATE")
    load_high_error_rate: float = Field(0.4, ge=0, le=1, alias="LEVELUP_LOAD_HIGH_ERROR_RATE")
    load_low_error_rate: float = Field(0.1, ge=0, le=1, alias="LEVELUP_LOAD_LOW_ERROR_RATE")
    load_overloaded_variation: float = Field(0.9, ge=0, alias="LEVELUP_LOAD_OVERLOADED_VARIATION")
    load_high_variation: float = Field(0.6, ge=0, alias="LEVELUP_LOAD_HIGH_VARIATION")
    load_low_variation: float = Field(0.25, ge=0, alias="LEVELUP_LOAD_LOW_VARIATION")
    fast_response_ms: float = Field(2000.0, gt=0, alias="LEVELUP_FAST_RESPONSE_MS")
    moderate_response_ms: float = Field(4000.0, gt=0, alias="LEVELUP_MODERATE_RESPONSE_MS")
    motivation_smoothing: float = Field(0.3, gt=0, le=1, alias="LEVELUP_MOTIVATION_SMOOTHING")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True

    @model_validator(mode="after")
    def _check_bands(self) -> "Settings":
        if not self.load_low_error_rate < self.load_high_error_rate < self.load_overloaded_error_rate:
            raise ValueError("load error-rate bands must satisfy low < high < overloaded")
        if not self.load_low_variation < self.load_high_variation < self.load_overloaded_variation:
            raise ValueError("load variation bands must satisfy low < high < overloaded")
        if not self.fast_response_ms < self.moderate_response_ms:
            raise ValueError("fast response threshold must be below the moderate one")
        if not self.confidence_floor < self.confidence_cap:
            raise ValueError("confidence floor must be below the cap")
        return self

    @property
    def debug_surface_enabled(self) -> bool:
        return self.debug_endpoints and self.environment != "production"


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid backend configuration: {exc}") from exc
