"""
Shared configuration management for the Automation Layer.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.retry import RetryConfig


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="AUTOMATION_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/automation")

    # Definition store and audit sink backends ("memory" or "postgres")
    definition_store: str = Field(default="memory")
    audit_sink: str = Field(default="memory")

    # Eligible definition cache
    definition_cache_enabled: bool = Field(default=False)
    definition_cache_ttl_seconds: int = Field(default=30)

    # Action execution
    action_timeout_seconds: float = Field(default=10.0)
    webhook_timeout_seconds: float = Field(default=2.5)
    webhook_max_attempts: int = Field(default=3)
    webhook_retry_base_delay: float = Field(default=0.5)
    record_skipped: bool = Field(default=False)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: Optional[str] = Field(default=None)
    enable_console_tracing: bool = Field(default=False)

    def webhook_retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.webhook_max_attempts,
            base_delay=self.webhook_retry_base_delay,
            max_delay=5.0,
        )

    @property
    def webhook_budget_seconds(self) -> float:
        """Worst-case time one call_webhook action spends on attempts and backoff."""
        retry = self.webhook_retry_config()
        return retry.max_attempts * self.webhook_timeout_seconds + retry.total_delay()


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
