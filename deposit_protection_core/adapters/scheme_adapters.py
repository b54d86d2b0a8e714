"""
Scheme adapters for DPS, mydeposits and TDS, plus a simulated scheme.

The HTTP adapters share request handling through HttpSchemeAdapter; each
subclass only knows its auth headers, endpoint and payload layout.
"""

import random
import string
import time
from abc import abstractmethod
from datetime import UTC, date, datetime
from typing import Any, Dict, Optional

from ..config import get_config
from ..enums import ProtectionType, SchemeName
from ..exceptions import AdapterError, ErrorCode
from ..schemas import (
    PrescribedInfoResult,
    RegistrationRead,
    SchemeCredentialSecrets,
    SchemeDetails,
    SubmissionResult,
    TenancySnapshot,
    VerificationResult,
)
from ..utils import get_logger
from .base import HttpClient, SchemeAdapter, basic_auth_header

SCHEME_DETAILS: Dict[SchemeName, SchemeDetails] = {
    SchemeName.DPS: SchemeDetails(
        scheme_name=SchemeName.DPS,
        name="Deposit Protection Service",
        website="https://www.depositprotection.com",
        description="The DPS is a government-approved scheme for the protection of tenancy deposits.",
    ),
    SchemeName.MYDEPOSITS: SchemeDetails(
        scheme_name=SchemeName.MYDEPOSITS,
        name="mydeposits",
        website="https://www.mydeposits.co.uk",
        description="mydeposits offers deposit protection to landlords, letting agents and tenants.",
    ),
    SchemeName.TDS: SchemeDetails(
        scheme_name=SchemeName.TDS,
        name="Tenancy Deposit Scheme",
        website="https://www.tenancydepositscheme.com",
        description="The TDS is a government-approved tenancy deposit protection scheme in the UK.",
    ),
}


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class HttpSchemeAdapter(HttpClient, SchemeAdapter):
    """Common request flow for the scheme REST APIs."""

    registration_path = "/deposits"
    reference_field = "depositId"

    @abstractmethod
    def build_registration_request(
        self, tenancy: TenancySnapshot, credential: SchemeCredentialSecrets
    ) -> Dict[str, Any]:
        """Map the tenancy onto the scheme's registration payload."""

    def auth_headers(self, credential: SchemeCredentialSecrets) -> Dict[str, str]:
        return basic_auth_header(credential.username, credential.password or "")

    def _require_credential(
        self, credential: Optional[SchemeCredentialSecrets]
    ) -> SchemeCredentialSecrets:
        if credential is None:
            raise AdapterError(
                f"No {self.service_name} credential available",
                service_name=self.service_name,
                error_code=ErrorCode.MISSING_REQUIRED,
            )
        return credential

    def submit_registration(
        self, tenancy: TenancySnapshot, credential: Optional[SchemeCredentialSecrets]
    ) -> SubmissionResult:
        credential = self._require_credential(credential)
        body = self._request(
            "POST",
            self.registration_path,
            headers=self.auth_headers(credential),
            json=self.build_registration_request(tenancy, credential),
        )

        reference_id = body.get(self.reference_field)
        if not reference_id:
            raise AdapterError(
                f"{self.service_name} API response did not include {self.reference_field}",
                service_name=self.service_name,
                error_code=ErrorCode.MALFORMED_RESPONSE,
                tenancy_id=tenancy.tenancy_id,
            )

        self.logger.info(
            "Deposit accepted by scheme",
            extra={
                "scheme_name": self.scheme_name.value,
                "tenancy_id": tenancy.tenancy_id,
                "deposit_reference_id": reference_id,
            },
        )
        return SubmissionResult(
            deposit_reference_id=str(reference_id),
            certificate_url=body.get("certificateUrl"),
            prescribed_info_url=body.get("prescribedInfoUrl"),
            expiry_date=_parse_date(body.get("expiryDate")),
            raw_response=body,
        )

    def verify_credentials(self, credential: SchemeCredentialSecrets) -> VerificationResult:
        try:
            self._request("GET", "/account", headers=self.auth_headers(credential))
        except AdapterError as e:
            return VerificationResult(success=False, message=e.message)
        return VerificationResult(
            success=True,
            message=f"{self.service_name} credentials verified",
            verified_at=datetime.now(UTC),
        )

    def fetch_certificate(
        self, deposit_reference_id: str, credential: Optional[SchemeCredentialSecrets]
    ) -> Optional[str]:
        credential = self._require_credential(credential)
        body = self._request(
            "GET",
            f"/deposits/{deposit_reference_id}/certificate",
            headers=self.auth_headers(credential),
        )
        return body.get("certificateUrl")

    def generate_prescribed_info(
        self, registration: RegistrationRead, credential: Optional[SchemeCredentialSecrets]
    ) -> PrescribedInfoResult:
        credential = self._require_credential(credential)
        if not registration.deposit_reference_id:
            raise AdapterError(
                "Registration has no deposit reference",
                service_name=self.service_name,
                error_code=ErrorCode.MISSING_REQUIRED,
                registration_id=registration.id,
            )
        body = self._request(
            "POST",
            f"/deposits/{registration.deposit_reference_id}/prescribed-information",
            headers=self.auth_headers(credential),
        )
        url = body.get("prescribedInfoUrl")
        if not url:
            raise AdapterError(
                f"{self.service_name} API response did not include prescribedInfoUrl",
                service_name=self.service_name,
                error_code=ErrorCode.MALFORMED_RESPONSE,
                registration_id=registration.id,
            )
        return PrescribedInfoResult(prescribed_info_url=url, generated_at=datetime.now(UTC))


class DpsAdapter(HttpSchemeAdapter):
    scheme_name = SchemeName.DPS
    service_name = "DPS"
    registration_path = "/deposits/register"
    reference_field = "referenceId"

    def auth_headers(self, credential: SchemeCredentialSecrets) -> Dict[str, str]:
        if credential.uses_api_key:
            return {"X-API-KEY": credential.api_key}
        return super().auth_headers(credential)

    def build_registration_request(
        self, tenancy: TenancySnapshot, credential: SchemeCredentialSecrets
    ) -> Dict[str, Any]:
        lines = tenancy.property_details.address_lines
        address = {
            "address1": lines[0] if lines else tenancy.property_details.address,
            "town": tenancy.property_details.city,
            "postcode": tenancy.property_details.postcode,
        }
        if len(lines) > 2:
            address["address2"] = ", ".join(lines[1:-1])

        paid = tenancy.deposit_paid_date or date.today()
        return {
            "accountNumber": credential.account_number,
            "depositAmount": float(tenancy.deposit_amount),
            "propertyAddress": address,
            "tenancyDetails": {
                "startDate": tenancy.start_date.isoformat(),
                "endDate": tenancy.end_date.isoformat(),
                "tenancyType": "AST",
                "depositPaidDate": paid.isoformat(),
            },
            "landlordDetails": {
                "name": tenancy.landlord.name,
                "email": tenancy.landlord.email,
                "phone": tenancy.landlord.phone,
            },
            "tenantDetails": [
                {
                    "name": tenant.name,
                    "email": tenant.email,
                    "phone": tenant.phone,
                    "leadTenant": tenant is tenancy.lead_tenant,
                }
                for tenant in tenancy.tenants
            ],
        }


class MyDepositsAdapter(HttpSchemeAdapter):
    scheme_name = SchemeName.MYDEPOSITS
    service_name = "MyDeposits"

    def auth_headers(self, credential: SchemeCredentialSecrets) -> Dict[str, str]:
        if credential.uses_api_key:
            return {"ApiKey": credential.api_key}
        return super().auth_headers(credential)

    def build_registration_request(
        self, tenancy: TenancySnapshot, credential: SchemeCredentialSecrets
    ) -> Dict[str, Any]:
        paid = tenancy.deposit_paid_date or date.today()
        return {
            "landlordReference": f"PROP-{tenancy.property_id}",
            "depositAmount": float(tenancy.deposit_amount),
            "propertyAddress": tenancy.property_details.address,
            "postcode": tenancy.property_details.postcode,
            "tenancyStartDate": tenancy.start_date.strftime("%d/%m/%Y"),
            "tenancyEndDate": tenancy.end_date.strftime("%d/%m/%Y"),
            "depositCollectionDate": paid.strftime("%d/%m/%Y"),
            "protectionType": credential.protection_type.value,
            "tenants": [
                {
                    "name": tenant.name,
                    "email": tenant.email,
                    "phone": tenant.phone,
                    "isPrimaryTenant": tenant is tenancy.lead_tenant,
                }
                for tenant in tenancy.tenants
            ],
        }


class TdsAdapter(HttpSchemeAdapter):
    scheme_name = SchemeName.TDS
    service_name = "TDS"

    def auth_headers(self, credential: SchemeCredentialSecrets) -> Dict[str, str]:
        if credential.uses_api_key:
            return {"X-API-KEY": credential.api_key, "X-API-SECRET": credential.api_secret or ""}
        return super().auth_headers(credential)

    def build_registration_request(
        self, tenancy: TenancySnapshot, credential: SchemeCredentialSecrets
    ) -> Dict[str, Any]:
        return {
            "landlordDetails": {
                "accountId": credential.account_number or "",
                "name": tenancy.landlord.name,
                "email": tenancy.landlord.email,
            },
            "propertyDetails": {
                "address": tenancy.property_details.address,
                "city": tenancy.property_details.city,
                "postcode": tenancy.property_details.postcode,
            },
            "tenancyDetails": {
                "startDate": tenancy.start_date.isoformat(),
                "endDate": tenancy.end_date.isoformat(),
                "type": "AST",
                "depositAmount": float(tenancy.deposit_amount),
                "protectionType": credential.protection_type.value,
            },
            "tenantDetails": [
                {
                    "name": tenant.name,
                    "email": tenant.email,
                    "phone": tenant.phone,
                    "leadTenant": tenant is tenancy.lead_tenant,
                }
                for tenant in tenancy.tenants
            ],
        }


class SimulatedSchemeAdapter(SchemeAdapter):
    """
    Stand-in scheme for environments without scheme API access.

    Issues ``<SCHEME>-<RANDOM>-<DIGITS>`` references and scheme-style
    certificate URLs, and points prescribed information at the local
    document store.
    """

    def __init__(self, scheme_name: SchemeName, document_base_url: Optional[str] = None):
        self.scheme_name = SchemeName(scheme_name)
        self.document_base_url = (
            document_base_url or get_config().registration.document_base_url
        ).rstrip("/")
        self.logger = get_logger()

    def _protection_id(self) -> str:
        suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=8))
        digits = str(int(time.time() * 1000))[6:]
        return f"{self.scheme_name.value.upper()}-{suffix}-{digits}"

    def _certificate_url(self, deposit_reference_id: str) -> str:
        return f"https://certificate.{self.scheme_name.value}.co.uk/deposits/{deposit_reference_id}"

    def submit_registration(
        self, tenancy: TenancySnapshot, credential: Optional[SchemeCredentialSecrets]
    ) -> SubmissionResult:
        reference_id = self._protection_id()
        protection_type = credential.protection_type if credential else ProtectionType.CUSTODIAL
        self.logger.info(
            "Simulated scheme registration",
            extra={
                "scheme_name": self.scheme_name.value,
                "tenancy_id": tenancy.tenancy_id,
                "deposit_reference_id": reference_id,
            },
        )
        return SubmissionResult(
            deposit_reference_id=reference_id,
            certificate_url=self._certificate_url(reference_id),
            raw_response={
                "simulation": True,
                "protectionType": protection_type.value,
                "message": "This is a simulated deposit registration",
            },
        )

    def verify_credentials(self, credential: SchemeCredentialSecrets) -> VerificationResult:
        return VerificationResult(
            success=True,
            message=f"Simulated {self.scheme_name.value} credentials accepted",
            verified_at=datetime.now(UTC),
        )

    def fetch_certificate(
        self, deposit_reference_id: str, credential: Optional[SchemeCredentialSecrets]
    ) -> Optional[str]:
        return self._certificate_url(deposit_reference_id)

    def generate_prescribed_info(
        self, registration: RegistrationRead, credential: Optional[SchemeCredentialSecrets]
    ) -> PrescribedInfoResult:
        generated_at = datetime.now(UTC)
        stamp = generated_at.strftime("%Y%m%d%H%M%S")
        token = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        return PrescribedInfoResult(
            prescribed_info_url=(
                f"{self.document_base_url}/prescribed_info_{registration.id}_{stamp}_{token}.pdf"
            ),
            generated_at=generated_at,
        )
