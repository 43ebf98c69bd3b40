"""
Inventory Sync Service
Centralized Configuration Management

Pydantic settings with environment variable support, validation, and type safety.
Every tunable of the ingestion pipeline (batch sizes, throttles, thresholds) lives here
so that deployments can adjust them without code changes.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="inventory_sync", alias="database", description="Database name")
    user: str = Field(default="inventory", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full database URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL - uses DATABASE_URL if set, otherwise asyncpg from host/port"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class SecuritySettings(BaseSettings):
    """Shared-secret and CORS Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    webhook_secret: SecretStr = Field(
        default="change-me-in-production",
        alias="WEBHOOK_SECRET",
        description="Shared secret expected in the X-Webhook-Secret header",
    )
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class IngestionSettings(BaseSettings):
    """Ingestion pipeline tunables"""

    model_config = SettingsConfigDict(env_prefix="INGEST_")

    upsert_batch_size: int = Field(default=500, ge=1, description="Variants per upsert statement")
    error_buffer_size: int = Field(default=100, ge=1, description="Buffered sync errors before a flush")
    error_value_max_length: int = Field(default=500, description="Max stored length of an offending raw value")
    error_record_max_bytes: int = Field(default=10_000, description="Raw records larger than this are not attached to errors")
    error_flush_retries: int = Field(default=1, ge=0, description="Times a failed error flush is retried")
    progress_throttle_ms: int = Field(default=500, ge=0, description="Minimum interval between progress writes")
    progress_reset_delay_seconds: float = Field(default=5.0, ge=0, description="Delay before completed progress resets to idle")
    mapping_coverage_threshold: float = Field(
        default=0.5, ge=0, le=1,
        description="Field-mapping coverage below this needs manual confirmation",
    )
    stock_sanity_ceiling: int = Field(default=1_000_000, description="Stock above this raises a warning")
    session_retention_days: int = Field(default=30, ge=1, description="Terminal sessions older than this are purged")
    metrics_window: int = Field(default=12, ge=1, description="Most recent periods used for accuracy metrics")
    primary_metric_zero_ratio: float = Field(
        default=0.3, ge=0, le=1,
        description="Share of zero-actual periods above which WAPE becomes the headline metric",
    )
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, description="Largest accepted upload file")


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")
    log_max_value_length: int = Field(
        default=500, ge=50, alias="LOG_MAX_VALUE_LENGTH", description="Longer string values are cut in log events"
    )

    # Metrics
    enable_prometheus: bool = Field(default=True, alias="ENABLE_PROMETHEUS", description="Expose /metrics")


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
    app_name: str = Field(default="inventory-sync", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
