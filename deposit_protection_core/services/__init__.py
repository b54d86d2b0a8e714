"""Service layer for deposit registration and scheme credentials."""

from .adapter_executor import AdapterExecutor
from .credential_service import CredentialService
from .registration_service import RegistrationService
from .tenancy_directory import InMemoryTenancyDirectory, TenancyDirectory

__all__ = [
    "AdapterExecutor",
    "CredentialService",
    "InMemoryTenancyDirectory",
    "RegistrationService",
    "TenancyDirectory",
]
