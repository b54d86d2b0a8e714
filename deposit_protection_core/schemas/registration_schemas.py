"""
Pydantic schemas for deposit registrations.

Covers the tenancy snapshot read from the tenancy directory, the request that
starts a registration, the read models returned to callers, and the result
shapes exchanged with scheme and CRM adapters.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..enums import (
    CrmSystem,
    ProtectionType,
    RegistrationMode,
    RegistrationStatus,
    SchemeName,
    TransitionTrigger,
    TransitionTypeEnum,
)


class ContactDetails(BaseModel):
    name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None


class TenantDetails(ContactDetails):
    tenant_id: Optional[str] = Field(None, description="Platform id of the tenant")
    is_lead: bool = False


class PropertyDetails(BaseModel):
    address: str = Field(..., min_length=1, description="Comma-separated address lines")
    city: Optional[str] = None
    postcode: Optional[str] = None
    bedrooms: Optional[int] = None
    property_type: Optional[str] = None

    @property
    def address_lines(self) -> List[str]:
        return [part.strip() for part in self.address.split(",") if part.strip()]


class TenancySnapshot(BaseModel):
    """Read-only view of a tenancy as supplied by the tenancy directory."""

    tenancy_id: str
    property_id: str
    owner_user_id: str = Field(..., description="Landlord or agent that owns the property")
    deposit_amount: Decimal = Field(..., gt=0)
    rent_amount: Optional[Decimal] = None
    start_date: date
    end_date: date
    deposit_paid_date: Optional[date] = None
    property_details: PropertyDetails
    landlord: ContactDetails
    tenants: List[TenantDetails] = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True)

    @property
    def lead_tenant(self) -> TenantDetails:
        for tenant in self.tenants:
            if tenant.is_lead:
                return tenant
        return self.tenants[0]


class RegisterDepositRequest(BaseModel):
    """
    Payload for ``RegistrationService.register_deposit``.

    Which fields are required depends on the mode:
    - manual: ``scheme_name`` and a non-empty ``manual_deposit_id``
    - api: ``scheme_name`` or ``credential_id`` (the owner's credential is resolved otherwise)
    - crm: ``crm_system`` and ``credential_id``
    """

    scheme_name: Optional[SchemeName] = None
    credential_id: Optional[str] = None
    crm_system: Optional[CrmSystem] = None
    manual_deposit_id: Optional[str] = None
    protection_type: Optional[ProtectionType] = None
    certificate_url: Optional[str] = Field(None, description="Manual mode only")
    actor: Optional[str] = None
    timeout_seconds: Optional[float] = Field(None, gt=0)

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


class RetryOverrides(BaseModel):
    """Fields a retry may change; everything else is reused from the failed attempt."""

    credential_id: Optional[str] = None
    deposit_amount: Optional[Decimal] = Field(None, gt=0)
    manual_deposit_id: Optional[str] = Field(None, description="Required to retry a manual registration")
    timeout_seconds: Optional[float] = Field(None, gt=0)
    actor: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class RegistrationRead(BaseModel):
    id: str
    tenancy_id: str
    property_id: Optional[str] = None
    owner_user_id: str
    scheme_name: SchemeName
    protection_type: ProtectionType
    scheme_credential_id: Optional[str] = None
    mode: RegistrationMode
    crm_system: Optional[CrmSystem] = None
    deposit_amount: Decimal
    tenant_names: List[str] = Field(default_factory=list)
    tenant_emails: List[str] = Field(default_factory=list)
    status: RegistrationStatus
    deposit_reference_id: Optional[str] = None
    certificate_url: Optional[str] = None
    prescribed_info_url: Optional[str] = None
    error_message: Optional[str] = None
    registered_at: datetime
    expiry_date: Optional[date] = None
    attempt_count: int = 0
    last_attempt_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tenant_names", "tenant_emails", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []

    @property
    def is_protected(self) -> bool:
        return self.status in (RegistrationStatus.REGISTERED, RegistrationStatus.RENEWED)


class RegistrationTransitionRead(BaseModel):
    id: str
    registration_id: str
    tenancy_id: str
    sequence: int
    from_status: Optional[RegistrationStatus] = None
    to_status: RegistrationStatus
    trigger: TransitionTrigger
    transition_type: TransitionTypeEnum
    actor: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionResult(BaseModel):
    """What a scheme (or a CRM on its behalf) returns for an accepted deposit."""

    deposit_reference_id: str = Field(..., min_length=1)
    certificate_url: Optional[str] = None
    prescribed_info_url: Optional[str] = None
    expiry_date: Optional[date] = None
    raw_response: Dict[str, Any] = Field(default_factory=dict)


class PrescribedInfoResult(BaseModel):
    prescribed_info_url: str = Field(..., min_length=1)
    generated_at: Optional[datetime] = None


class BulkRegistrationSummary(BaseModel):
    success: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    registrations: List[RegistrationRead] = Field(default_factory=list)


class RegistrationStats(BaseModel):
    total: int = 0
    by_status: Dict[RegistrationStatus, int] = Field(default_factory=dict)
    protected: int = 0
    protection_rate: float = 0.0

    @model_validator(mode="after")
    def fill_statuses(self):
        for status in RegistrationStatus:
            self.by_status.setdefault(status, 0)
        return self


class SchemeDetails(BaseModel):
    scheme_name: SchemeName
    name: str
    website: str
    description: str
