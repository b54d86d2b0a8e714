"""Utility modules for the deposit protection core."""

from .encryption_utils import decrypt_secrets, decrypt_value, encrypt_secrets, encrypt_value
from .locks import KeyedLock
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    configure_logging,
    get_logger,
    mask_sensitive,
)

__all__ = [
    "AzureQueueHandler",
    "ContextAwareLogger",
    "KeyedLock",
    "configure_logging",
    "decrypt_secrets",
    "decrypt_value",
    "encrypt_secrets",
    "encrypt_value",
    "get_logger",
    "mask_sensitive",
]
