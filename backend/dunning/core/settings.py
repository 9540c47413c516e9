from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_name: str = "Invoice Dunning API"
    project_version: str = "1.0.0"
    environment: str = Field(
        default="development",
        description="Deployment environment name",
        validation_alias=AliasChoices("ENV", "ENVIRONMENT"),
    )
    log_level: str = Field(default="INFO", description="Logging level")

    # Database
    database_url: str = Field(
        default="postgresql+psycopg2://postgres@localhost:5432/dunning",
        description="SQLAlchemy database URL",
    )
    db_pool_size: int = Field(default=5, description="Base DB connection pool size")
    db_max_overflow: int = Field(default=10, description="Additional DB connections beyond pool size")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a DB connection")
    db_pool_recycle: int = Field(default=1800, description="Recycle DB connections after N seconds")

    # Email delivery
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL for invoice links in reminder emails",
        validation_alias=AliasChoices("APP_BASE_URL", "FRONTEND_BASE_URL"),
    )
    email_provider: str = Field(
        default="disabled",
        description="Email provider: resend, postmark, smtp, disabled",
        validation_alias=AliasChoices("EMAIL_PROVIDER"),
    )
    email_api_key: str | None = Field(
        default=None,
        description="API key for Resend/Postmark",
        validation_alias=AliasChoices("EMAIL_API_KEY", "RESEND_API_KEY"),
    )
    email_from: str | None = Field(
        default=None,
        description="From address for outbound email",
        validation_alias=AliasChoices("EMAIL_FROM"),
    )
    email_timeout_seconds: float = Field(default=15.0, description="Timeout for a single provider call")

    smtp_host: str | None = Field(default=None, description="SMTP host")
    smtp_port: int = Field(default=587, description="SMTP port")
    smtp_username: str | None = Field(default=None, description="SMTP username")
    smtp_password: str | None = Field(default=None, description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use TLS for SMTP")

    # Reminders
    reminder_send_interval_ms: int = Field(
        default=600,
        description="Minimum delay between provider calls during batch dispatch",
    )
    reminder_collapse_overdue: bool = Field(
        default=False,
        description="Only dispatch the most severe due reminder kind per invoice and pass",
    )
    free_plan_reminders_per_invoice: int = Field(default=4, description="Sent reminders allowed per invoice on the free plan")
    reminder_daily_limit: int = Field(default=0, description="Max reminders per account per UTC day (0 disables)")
    reconciliation_batch_limit: int = Field(default=500, description="Max invoices examined per reconciliation pass")
    cron_secret: str | None = Field(
        default=None,
        description="Shared secret required by the reconciliation trigger endpoint",
        validation_alias=AliasChoices("CRON_SECRET"),
    )

    @field_validator("email_provider")
    @classmethod
    def normalize_email_provider(cls, value: str) -> str:
        return (value or "disabled").strip().lower()

    @field_validator("reminder_send_interval_ms", "free_plan_reminders_per_invoice", "reminder_daily_limit")
    @classmethod
    def non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
