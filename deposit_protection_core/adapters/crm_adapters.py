"""
CRM adapters for PropertyFile, Fixflo, Reapit and Jupix.

A CRM registration is three steps: sync the property, tenants and tenancy into
the CRM; register the deposit with the scheme adapter for the credential's
scheme; write the deposit reference back to the CRM. The CRM steps are best
effort and only logged when they fail. A scheme failure fails the registration.
"""

from datetime import UTC, datetime
from typing import Any, Callable, Dict, Optional

import requests

from ..enums import CrmSystem, SchemeName
from ..exceptions import AdapterError
from ..schemas import SchemeCredentialSecrets, SubmissionResult, TenancySnapshot
from .base import CrmAdapter, HttpClient, SchemeAdapter

SchemeResolver = Callable[[SchemeName], SchemeAdapter]


class HttpCrmAdapter(HttpClient, CrmAdapter):
    """Shared CRM flow against ``{crm_api_url}/{crm_system}``."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        scheme_resolver: SchemeResolver,
        timeout: float = 30,
        verify_ssl: bool = True,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(
            f"{base_url.rstrip('/')}/{self.crm_system.value}",
            timeout=timeout,
            verify_ssl=verify_ssl,
            session=session,
        )
        self.api_key = api_key
        self.scheme_resolver = scheme_resolver

    @property
    def service_name(self) -> str:
        return f"{self.crm_system.value} CRM"

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _find(self, path: str) -> Optional[Dict[str, Any]]:
        """GET a CRM record; None when the CRM does not know it."""
        try:
            body = self._request("GET", path, headers=self._headers())
        except AdapterError as e:
            if e.context.get("http_status") == 404:
                return None
            raise
        if not body.get("success"):
            return None
        return body

    def sync_tenancy(self, tenancy: TenancySnapshot, scheme_name: SchemeName) -> None:
        details = tenancy.property_details
        if self._find(f"/properties/{tenancy.property_id}") is None:
            self._request(
                "POST",
                "/properties",
                headers=self._headers(),
                json={
                    "externalId": tenancy.property_id,
                    "address": details.address,
                    "postcode": details.postcode,
                    "city": details.city,
                    "bedrooms": details.bedrooms,
                    "propertyType": details.property_type,
                    "landlordId": tenancy.owner_user_id,
                },
            )

        for tenant in tenancy.tenants:
            if not tenant.tenant_id:
                continue
            if self._find(f"/tenants/{tenant.tenant_id}") is None:
                self._request(
                    "POST",
                    "/tenants",
                    headers=self._headers(),
                    json={
                        "externalId": tenant.tenant_id,
                        "name": tenant.name,
                        "email": tenant.email,
                        "phone": tenant.phone,
                        "contactPreference": "email",
                    },
                )

        body = self._request(
            "POST",
            "/tenancies",
            headers=self._headers(),
            json={
                "externalId": tenancy.tenancy_id,
                "propertyId": tenancy.property_id,
                "tenantId": tenancy.lead_tenant.tenant_id,
                "startDate": tenancy.start_date.isoformat(),
                "endDate": tenancy.end_date.isoformat(),
                "rentAmount": float(tenancy.rent_amount) if tenancy.rent_amount else None,
                "depositAmount": float(tenancy.deposit_amount),
                "depositScheme": scheme_name.value,
            },
        )
        if not body.get("success"):
            raise AdapterError(
                "Failed to create tenancy in CRM",
                service_name=self.service_name,
                tenancy_id=tenancy.tenancy_id,
            )

    def push_deposit(
        self, tenancy: TenancySnapshot, scheme_name: SchemeName, result: SubmissionResult
    ) -> None:
        self._request(
            "PUT",
            f"/tenancies/{tenancy.tenancy_id}/deposit",
            headers=self._headers(),
            json={
                "depositRegistrationId": result.deposit_reference_id,
                "depositScheme": scheme_name.value,
                "registrationDate": datetime.now(UTC).isoformat(),
                "certificateUrl": result.certificate_url,
                "prescribedInfoUrl": result.prescribed_info_url,
            },
        )

    def register_via_crm(
        self, tenancy: TenancySnapshot, credential: SchemeCredentialSecrets
    ) -> SubmissionResult:
        scheme_name = credential.scheme_name
        log_context = {
            "crm_system": self.crm_system.value,
            "tenancy_id": tenancy.tenancy_id,
            "scheme_name": scheme_name.value,
        }

        try:
            self.sync_tenancy(tenancy, scheme_name)
            self.logger.info("Synced tenancy with CRM", extra=log_context)
        except AdapterError as e:
            self.logger.warning(
                "CRM sync failed, continuing with scheme registration",
                extra={**log_context, "error_message": e.message},
            )

        result = self.scheme_resolver(scheme_name).submit_registration(tenancy, credential)

        try:
            self.push_deposit(tenancy, scheme_name, result)
            self.logger.info(
                "Updated CRM with deposit registration",
                extra={**log_context, "deposit_reference_id": result.deposit_reference_id},
            )
        except AdapterError as e:
            self.logger.warning(
                "CRM deposit update failed",
                extra={**log_context, "error_message": e.message},
            )

        raw_response = dict(result.raw_response)
        raw_response["crm_system"] = self.crm_system.value
        return result.model_copy(update={"raw_response": raw_response})


class PropertyFileAdapter(HttpCrmAdapter):
    crm_system = CrmSystem.PROPERTYFILE


class FixfloAdapter(HttpCrmAdapter):
    crm_system = CrmSystem.FIXFLO


class ReapitAdapter(HttpCrmAdapter):
    crm_system = CrmSystem.REAPIT


class JupixAdapter(HttpCrmAdapter):
    crm_system = CrmSystem.JUPIX
