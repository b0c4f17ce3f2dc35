"""
Cumulative Activity Engine
Centralized Configuration Management

Configuration is loaded with Pydantic settings from environment variables
(and an optional .env file), validated, and cached for the process.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MAX_BIT_WIDTH = 64


class ActivitySettings(BaseSettings):
    """Activity history representation and window sizes"""

    model_config = SettingsConfigDict(env_prefix="ACTIVITY_")

    bit_width: int = Field(default=32, description="Number of days tracked by a datelist integer")
    weekly_window: int = Field(default=7, description="Window used for weekly-active flags")
    monthly_window: Optional[int] = Field(
        default=None,
        description="Window used for monthly-active flags (defaults to bit_width)",
    )
    history_format: str = Field(default="datelist", description="History format: datelist or bitset")

    @field_validator("bit_width")
    @classmethod
    def validate_bit_width(cls, v: int) -> int:
        """Bit width must fit an unsigned 64-bit column"""
        if not 1 <= v <= MAX_BIT_WIDTH:
            raise ValueError(f"bit_width must be between 1 and {MAX_BIT_WIDTH}")
        return v

    @field_validator("history_format")
    @classmethod
    def validate_history_format(cls, v: str) -> str:
        allowed = ["datelist", "bitset"]
        if v.lower() not in allowed:
            raise ValueError(f"history_format must be one of: {allowed}")
        return v.lower()

    @model_validator(mode="after")
    def validate_windows(self) -> "ActivitySettings":
        if self.weekly_window > self.bit_width:
            raise ValueError("weekly_window cannot exceed bit_width")
        if self.monthly_window is not None and self.monthly_window > self.bit_width:
            raise ValueError("monthly_window cannot exceed bit_width")
        return self

    @property
    def effective_monthly_window(self) -> int:
        return self.monthly_window or self.bit_width


class ReducedSettings(BaseSettings):
    """Reduced fact table (monthly arrays) configuration"""

    model_config = SettingsConfigDict(env_prefix="REDUCED_")

    metric_name: str = Field(default="event_count", description="Metric stored in monthly arrays")
    backfill_mode: str = Field(
        default="zero",
        description="Fill for days before first appearance: zero or sentinel",
    )

    @field_validator("backfill_mode")
    @classmethod
    def validate_backfill_mode(cls, v: str) -> str:
        allowed = ["zero", "sentinel"]
        if v.lower() not in allowed:
            raise ValueError(f"backfill_mode must be one of: {allowed}")
        return v.lower()


class DataLakeSettings(BaseSettings):
    """Data Lake Storage Configuration"""

    model_config = SettingsConfigDict(env_prefix="DATA_")

    facts_path: str = Field(default="./data/facts", description="Daily fact zone path")
    cumulative_path: str = Field(default="./data/cumulative", description="Cumulative snapshot zone path")
    reduced_path: str = Field(default="./data/reduced", description="Reduced monthly array zone path")

    compression: str = Field(default="snappy", description="Parquet compression codec")


class ProcessingSettings(BaseSettings):
    """Per-run parallelism"""

    model_config = SettingsConfigDict(env_prefix="PROCESSING_")

    max_workers: int = Field(default=4, description="Worker threads used to merge entity shards")
    shard_count: Optional[int] = Field(default=None, description="Number of entity shards per run")

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v

    @property
    def effective_shard_count(self) -> int:
        return self.shard_count or self.max_workers


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="cumulative-activity", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    activity: ActivitySettings = Field(default_factory=ActivitySettings)
    reduced: ReducedSettings = Field(default_factory=ReducedSettings)
    data_lake: DataLakeSettings = Field(default_factory=DataLakeSettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
