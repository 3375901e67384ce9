"""Application configuration objects."""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UNIT_COSTS: dict[str, float] = {
    "Electronics": 150.0,
    "Raw Materials": 50.0,
    "Components": 75.0,
    "Packaging": 20.0,
    "Tools": 200.0,
}


class AlertThresholds(BaseModel):
    """Business thresholds used by the alert rule engine."""

    mismatch_min_units: float = Field(
        default=1,
        ge=0,
        description="Absolute variance (units) at or above which a mismatch is flagged.",
    )
    mismatch_min_percent: float = Field(
        default=1,
        ge=0,
        description="Relative variance (%) above which a mismatch is flagged.",
    )
    critical_percent: float = Field(default=20, ge=0)
    critical_units: float = Field(default=100, ge=0)
    error_percent: float = Field(default=10, ge=0)
    error_units: float = Field(default=50, ge=0)
    low_stock_threshold: float = Field(
        default=10,
        ge=0,
        description="Stock at or below this (and above zero) raises a low-stock alert.",
    )
    low_stock_critical: float = Field(
        default=5,
        ge=0,
        description="Low stock at or below this level is critical.",
    )


class Settings(BaseSettings):
    """Pydantic settings used to configure the application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = Field(
        default="Warehouse Inventory Service",
        description="Human friendly name for the API.",
    )
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment flag used for logging.",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./warehouse.db",
        description="SQLAlchemy compatible database URL.",
    )
    echo_sql: bool = Field(
        default=False,
        description="Enable SQL echo logging for debugging.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    default_timezone: str = Field(
        default="UTC",
        description="Timezone used to bucket timestamps into calendar days.",
    )
    repository_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound for a single repository round trip.",
    )
    alerts: AlertThresholds = Field(default_factory=AlertThresholds)
    unit_costs: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_UNIT_COSTS),
        description="Estimated unit cost per material category.",
    )
    default_unit_cost: float = Field(
        default=100.0,
        ge=0,
        description="Unit cost used for categories missing from unit_costs.",
    )
    defect_loss_factor: float = Field(default=0.5, ge=0, le=1)

    @field_validator("database_url")
    @classmethod
    def _validate_sqlite_path(cls, value: str) -> str:
        if value.startswith("sqlite") and ":memory:" not in value and "///" not in value:
            raise ValueError(
                "SQLite database URLs should be in the form sqlite+aiosqlite:///path/to/db"
            )
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of :class:`Settings`."""

    return Settings()


__all__ = ["AlertThresholds", "DEFAULT_UNIT_COSTS", "Settings", "get_settings"]
