"""
Adapter contracts for deposit schemes and property-management CRMs.

Scheme adapters talk to one protection scheme; CRM adapters sync a tenancy
into a CRM and hand the registration itself to a scheme adapter. Both raise
AdapterError for every remote failure so the registration engine can record
the attempt as failed.
"""

import base64
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from ..enums import CrmSystem, SchemeName
from ..exceptions import AdapterError, ErrorCode
from ..schemas import (
    PrescribedInfoResult,
    RegistrationRead,
    SchemeCredentialSecrets,
    SubmissionResult,
    TenancySnapshot,
    VerificationResult,
)
from ..utils import get_logger

_OK_STATUSES = (200, 201)


class SchemeAdapter(ABC):
    """Client for one deposit protection scheme."""

    scheme_name: SchemeName

    @abstractmethod
    def submit_registration(
        self, tenancy: TenancySnapshot, credential: Optional[SchemeCredentialSecrets]
    ) -> SubmissionResult:
        """Register the tenancy's deposit and return the scheme's reference."""

    @abstractmethod
    def verify_credentials(self, credential: SchemeCredentialSecrets) -> VerificationResult:
        """Check that the scheme accepts the credential."""

    @abstractmethod
    def fetch_certificate(
        self, deposit_reference_id: str, credential: Optional[SchemeCredentialSecrets]
    ) -> Optional[str]:
        """Return the protection certificate URL for a registered deposit."""

    @abstractmethod
    def generate_prescribed_info(
        self, registration: RegistrationRead, credential: Optional[SchemeCredentialSecrets]
    ) -> PrescribedInfoResult:
        """Produce a fresh prescribed information document for a registered deposit."""


class CrmAdapter(ABC):
    """Registers deposits through a property-management CRM."""

    crm_system: CrmSystem

    @abstractmethod
    def register_via_crm(
        self, tenancy: TenancySnapshot, credential: SchemeCredentialSecrets
    ) -> SubmissionResult:
        """Sync the tenancy into the CRM and register its deposit with the credential's scheme."""


class HttpClient:
    """
    Thin ``requests`` wrapper shared by the HTTP adapters.

    Every transport problem, non-2xx status and unparseable body becomes an
    AdapterError tagged with ``service_name``.
    """

    service_name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 30,
        verify_ssl: bool = True,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.session = session or requests.Session()
        self.logger = get_logger()

    def _request(
        self,
        method: str,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
        request_headers.update(headers or {})

        try:
            response = self.session.request(
                method,
                url,
                headers=request_headers,
                json=json,
                timeout=self.timeout,
                verify=self.verify_ssl,
            )
        except requests.Timeout as e:
            raise AdapterError(
                f"{self.service_name} API timed out after {self.timeout}s",
                service_name=self.service_name,
                error_code=ErrorCode.ADAPTER_TIMEOUT,
                cause=e,
                url=url,
            ) from e
        except requests.RequestException as e:
            raise AdapterError(
                f"{self.service_name} API error: {e}",
                service_name=self.service_name,
                error_code=ErrorCode.CONNECTION_ERROR,
                cause=e,
                url=url,
            ) from e

        if response.status_code not in _OK_STATUSES:
            raise AdapterError(
                f"{self.service_name} API returned status {response.status_code}: {response.reason}",
                service_name=self.service_name,
                error_code=ErrorCode.REMOTE_REJECTED,
                url=url,
                http_status=response.status_code,
                response_body=response.text[:500] if response.text else None,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise AdapterError(
                f"{self.service_name} API returned a non-JSON response",
                service_name=self.service_name,
                error_code=ErrorCode.MALFORMED_RESPONSE,
                cause=e,
                url=url,
            ) from e

        if not isinstance(body, dict):
            raise AdapterError(
                f"{self.service_name} API returned an unexpected payload",
                service_name=self.service_name,
                error_code=ErrorCode.MALFORMED_RESPONSE,
                url=url,
            )
        return body


def basic_auth_header(username: str, password: str) -> Dict[str, str]:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return {"Authorization": f"Basic {token}"}
