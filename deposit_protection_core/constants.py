"""
Constants for the deposit protection core.

This module centralizes environment variable names, log levels and numeric
limits so that configuration and services read them from one place.
"""

from enum import Enum


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    AZURE_STORAGE_CONNECTION = "AzureWebJobsStorage"
    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    DEBUG = "DEBUG"
    DPS_API_URL = "DPS_API_URL"
    MYDEPOSITS_API_URL = "MYDEPOSITS_API_URL"
    TDS_API_URL = "TDS_API_URL"
    CRM_API_URL = "CRM_API_URL"
    CRM_API_KEY = "CRM_API_KEY"
    ENCRYPTION_KEY = "DEPOSIT_ENCRYPTION_KEY"
    DOCUMENT_BASE_URL = "DOCUMENT_BASE_URL"
    SIMULATE_SCHEME_CALLS = "SIMULATE_SCHEME_CALLS"
    ADAPTER_TIMEOUT_SECONDS = "ADAPTER_TIMEOUT_SECONDS"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class QueueName(str, Enum):
    """Queue names used for structured log shipping."""

    LOGS = "logs-queue"


class Limits:
    """System limits and thresholds."""

    DEFAULT_ADAPTER_TIMEOUT_SECONDS = 30
    DEFAULT_ADAPTER_WORKERS = 8
    PROTECTION_PERIOD_DAYS = 90
    STUCK_THRESHOLD_MINUTES = 30
    MAX_ERROR_MESSAGE_LENGTH = 2000
