"""
Runtime configuration for the auth247 platform services.

Values come from the process environment and an optional ``.env`` file.
Grouped values use ``__`` as the separator, e.g. ``METERING__JOB_CONCURRENCY=8``
or ``BILLING__DEFAULT_TRIAL_DAYS=30``.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class DatabaseSettings(BaseModel):
    """Where usage and billing tables live.

    ``url`` wins when set; otherwise a PostgreSQL URL is assembled from the
    individual parts.
    """

    url: str | None = Field(None, description="Complete SQLAlchemy URL")
    host: str = Field("localhost", description="PostgreSQL server")
    port: int = Field(5432, description="PostgreSQL port")
    database: str = Field("auth247", description="Schema owner database")
    username: str = Field("auth247", description="Login role")
    password: str = Field("", description="Login password")

    pool_size: int = Field(10, description="Persistent pooled connections")
    max_overflow: int = Field(20, description="Burst connections above pool_size")
    pool_timeout: int = Field(30, description="Seconds to wait for a free connection")
    pool_recycle: int = Field(3600, description="Seconds before a connection is replaced")
    pool_pre_ping: bool = Field(True, description="Ping connections on checkout")
    echo: bool = Field(False, description="Log every SQL statement")


class CelerySettings(BaseModel):
    """Worker and beat configuration for the billing batch tasks."""

    broker_url: str = Field("redis://localhost:6379/0", description="Message broker")
    result_backend: str = Field("redis://localhost:6379/1", description="Task result store")
    timezone: str = Field("UTC", description="Beat schedule timezone")
    task_soft_time_limit: int = Field(3300, description="Seconds before SoftTimeLimitExceeded")
    task_time_limit: int = Field(3600, description="Seconds before the worker kills a task")

    monthly_mau_day_of_month: str = Field("1", description="Reconciliation day (crontab)")
    monthly_mau_hour: str = Field("2", description="Reconciliation hour in UTC (crontab)")
    trial_sweep_interval_seconds: float = Field(
        3600.0, description="Seconds between expired-trial sweeps"
    )


class ObservabilitySettings(BaseModel):
    """Logging, tracing and metric export."""

    log_level: LogLevel = LogLevel.INFO
    log_format: str = Field("json", description="'json' for machines, anything else for humans")
    enable_correlation_ids: bool = Field(True, description="Merge bound contextvars into logs")

    enable_tracing: bool = True
    tracing_sample_rate: float = Field(1.0, ge=0.0, le=1.0)
    enable_metrics: bool = True

    otel_enabled: bool = Field(False, description="Export spans and metrics over OTLP")
    otel_endpoint: str | None = Field("http://localhost:4318", description="OTLP/HTTP collector")
    otel_service_name: str = "auth247-platform"
    otel_resource_attributes: dict[str, str] = Field(default_factory=dict)
    otel_instrument_fastapi: bool = True
    otel_instrument_sqlalchemy: bool = True


class BillingSettings(BaseModel):
    """Prices, plans and trials.

    The price values are only used until an administrator stores a
    ``pricing_config`` row.
    """

    default_currency: str = Field("USD", description="ISO 4217 code for all invoices")
    default_locale: str = Field("en_US", description="Babel locale for formatted amounts")

    default_price_per_user: Decimal = Field(Decimal("0.89"), description="Charge per MAU")
    platform_maintenance_fee: Decimal = Field(Decimal("1.99"), description="Monthly flat fee")
    annual_discount_percent: int = Field(15, ge=0, le=100)

    default_trial_days: int = Field(14, description="Length of a new trial")
    free_plan_name: str = Field("free", description="Plan every tenant starts on")
    trial_plan_name: str = Field("professional", description="Plan a trial unlocks")


class MeteringSettings(BaseModel):
    """Activity capture and monthly active user reconciliation."""

    billable_activity_types: list[str] = Field(
        default_factory=list,
        description="Activity types that make a user active; empty counts every type",
    )
    recorder_queue_size: int = Field(10_000, description="Events held before dropping")
    recorder_batch_size: int = Field(200, description="Events per insert")
    job_concurrency: int = Field(4, description="Tenants reconciled at once")
    tenant_timeout_seconds: float = Field(300.0, description="Per-tenant reconciliation limit")
    analytics_default_months: int = Field(6, description="Months in the MAU trend by default")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "auth247-platform"
    app_version: str = "1.0.0"
    environment: Environment = Environment.DEVELOPMENT
    testing: bool = False

    host: str = "0.0.0.0"  # nosec B104 - served behind the ingress proxy
    port: int = 8000

    # Nested groups, overridable as GROUP__FIELD
    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]
    celery: CelerySettings = CelerySettings()  # type: ignore[call-arg]
    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]
    billing: BillingSettings = BillingSettings()  # type: ignore[call-arg]
    metering: MeteringSettings = MeteringSettings()  # type: ignore[call-arg]

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: Any) -> Any:
        return Environment(value.lower()) if isinstance(value, str) else value

    @property
    def is_production(self) -> bool:
        return self.environment is Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment is Environment.DEVELOPMENT

    @property
    def is_testing(self) -> bool:
        return self.testing or self.environment is Environment.TEST


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings


def reset_settings() -> Settings:
    """Reload settings from the environment.

    Modules that imported ``settings`` keep the instance they already hold.
    """
    global _settings
    _settings = None
    return get_settings()


settings = get_settings()
