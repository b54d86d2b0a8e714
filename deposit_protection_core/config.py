"""
Centralized configuration management for the deposit protection core.

This module provides a unified configuration system with support for:
- Environment variables
- Feature flags
- Adapter endpoints and timeouts
- Validation using Pydantic
"""

import os
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from .constants import EnvironmentVariable, Limits, LogLevel, QueueName


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class DatabaseConfig(BaseModel):
    """Database connection configuration."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./deposit_protection.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Maximum overflow connections")
    pool_timeout: int = Field(default=30, description="Pool timeout in seconds")
    echo: bool = Field(default=False, description="Echo SQL statements")


class QueueConfig(BaseModel):
    """Azure Storage Queue settings used for log shipping."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.AZURE_STORAGE_CONNECTION.value, ""),
        description="Azure Storage connection string",
    )
    logs_queue_name: str = Field(default=QueueName.LOGS.value, description="Structured logs queue name")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
        validate_default=True,
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class FeatureFlags(BaseModel):
    """Feature flags for controlling core behavior."""

    simulate_scheme_calls: bool = Field(
        default_factory=lambda: _env_flag(EnvironmentVariable.SIMULATE_SCHEME_CALLS.value),
        description="Serve simulated scheme adapters instead of calling the schemes",
    )
    enable_logs_queue: bool = Field(
        default=False, description="Ship structured logs to an Azure Storage Queue"
    )
    enable_audit_logging: bool = Field(
        default=True, description="Log credential access and state transitions"
    )


class AdapterConfig(BaseModel):
    """Endpoints and timeouts for scheme and CRM adapters."""

    dps_api_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DPS_API_URL.value, "https://api.depositprotection.com/v1"
        )
    )
    mydeposits_api_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.MYDEPOSITS_API_URL.value, "https://api.mydeposits.co.uk/v1"
        )
    )
    tds_api_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.TDS_API_URL.value, "https://api.tenancydepositscheme.com/v1"
        )
    )
    crm_api_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.CRM_API_URL.value, "https://api.unirent-crm.com/v1"
        )
    )
    crm_api_key: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.CRM_API_KEY.value, ""),
        repr=False,
    )
    timeout_seconds: float = Field(
        default_factory=lambda: float(
            os.getenv(
                EnvironmentVariable.ADAPTER_TIMEOUT_SECONDS.value,
                Limits.DEFAULT_ADAPTER_TIMEOUT_SECONDS,
            )
        ),
        gt=0,
        description="Default timeout for a single adapter call",
    )
    max_workers: int = Field(
        default=Limits.DEFAULT_ADAPTER_WORKERS, gt=0, description="Adapter worker pool size"
    )
    verify_ssl: bool = Field(default=True)


class SecurityConfig(BaseModel):
    """Security-related configuration."""

    encryption_key: Optional[str] = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.ENCRYPTION_KEY.value),
        description="Master key mixed into pgcrypto keys for credential secrets",
        repr=False,
    )


class RegistrationConfig(BaseModel):
    """Registration lifecycle settings."""

    protection_period_days: int = Field(
        default=Limits.PROTECTION_PERIOD_DAYS,
        gt=0,
        description="Protection lasts this many days after the tenancy end date",
    )
    stuck_threshold_minutes: int = Field(
        default=Limits.STUCK_THRESHOLD_MINUTES,
        gt=0,
        description="In-progress attempts older than this are reported as stuck",
    )
    document_base_url: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DOCUMENT_BASE_URL.value, "http://localhost:5000/uploads/documents"
        ),
        description="Base URL for documents produced by simulated adapters",
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: _env_flag(EnvironmentVariable.DEBUG.value),
        description="Debug mode",
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    features: FeatureFlags = Field(default_factory=FeatureFlags)
    adapters: AdapterConfig = Field(default_factory=AdapterConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)

    custom: Dict[str, Any] = Field(default_factory=dict, description="Custom configuration values")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()

    def get_custom(self, key: str, default: Any = None) -> Any:
        """Get a custom configuration value."""
        return self.custom.get(key, default)


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
