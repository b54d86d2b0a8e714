"""
Pydantic schemas for deposit scheme credentials.

Schemes accept either username/password (HTTP Basic) or an API key, with TDS
also taking an API secret. The create schema enforces that at least one of
the two authentication shapes is complete.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..enums import ProtectionType, SchemeName


class BaseCredentialSchema(BaseModel):
    model_config = ConfigDict(
        str_strip_whitespace=True,
        use_enum_values=False,
        extra="forbid",
    )


class SchemeCredentialCreate(BaseCredentialSchema):
    """Input for adding a scheme credential."""

    scheme_name: SchemeName = Field(..., description="Scheme the credential authenticates against")
    username: str = Field(..., min_length=1, description="Scheme account username")
    password: Optional[str] = Field(None, repr=False)
    api_key: Optional[str] = Field(None, repr=False)
    api_secret: Optional[str] = Field(None, repr=False)
    account_number: Optional[str] = Field(None, description="Scheme account or member number")
    protection_type: ProtectionType = Field(default=ProtectionType.CUSTODIAL)
    is_default: bool = Field(default=False)

    @field_validator("password", "api_key", "api_secret", "account_number")
    @classmethod
    def blank_to_none(cls, v):
        """Treat empty strings from forms as absent."""
        if v is not None and not v:
            return None
        return v

    @model_validator(mode="after")
    def check_auth_shape(self):
        if self.api_secret and not self.api_key:
            raise ValueError("api_secret requires api_key")
        if not self.password and not self.api_key:
            raise ValueError("Either password or api_key is required")
        return self


class SchemeCredentialRead(BaseModel):
    """Safe view of a credential. Secrets are reduced to presence flags."""

    id: str
    owner_user_id: str
    scheme_name: SchemeName
    protection_type: ProtectionType
    username: str
    account_number: Optional[str] = None
    has_password: bool = False
    has_api_key: bool = False
    has_api_secret: bool = False
    is_default: bool = False
    is_verified: bool = False
    last_verified_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SchemeCredentialSecrets(BaseModel):
    """Decrypted credential material handed to adapters. Never log or return this."""

    id: str
    owner_user_id: str
    scheme_name: SchemeName
    protection_type: ProtectionType = ProtectionType.CUSTODIAL
    username: str
    account_number: Optional[str] = None
    password: Optional[str] = Field(None, repr=False)
    api_key: Optional[str] = Field(None, repr=False)
    api_secret: Optional[str] = Field(None, repr=False)

    model_config = ConfigDict(frozen=True)

    @property
    def uses_api_key(self) -> bool:
        return bool(self.api_key)


class VerificationResult(BaseModel):
    success: bool
    message: str
    verified_at: Optional[datetime] = None
