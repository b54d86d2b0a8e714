"""Pydantic schemas for deposit protection credentials and registrations."""

from .credential_schemas import (
    SchemeCredentialCreate,
    SchemeCredentialRead,
    SchemeCredentialSecrets,
    VerificationResult,
)
from .registration_schemas import (
    BulkRegistrationSummary,
    ContactDetails,
    PrescribedInfoResult,
    PropertyDetails,
    RegisterDepositRequest,
    RegistrationRead,
    RegistrationStats,
    RegistrationTransitionRead,
    RetryOverrides,
    SchemeDetails,
    SubmissionResult,
    TenancySnapshot,
    TenantDetails,
)

__all__ = [
    # Credentials
    "SchemeCredentialCreate",
    "SchemeCredentialRead",
    "SchemeCredentialSecrets",
    "VerificationResult",
    # Tenancy snapshot
    "ContactDetails",
    "PropertyDetails",
    "TenancySnapshot",
    "TenantDetails",
    # Registrations
    "BulkRegistrationSummary",
    "PrescribedInfoResult",
    "RegisterDepositRequest",
    "RegistrationRead",
    "RegistrationStats",
    "RegistrationTransitionRead",
    "RetryOverrides",
    "SchemeDetails",
    "SubmissionResult",
]
