"""
Resolves scheme and CRM names to adapter instances.

This is the one place that maps a closed enum value onto a concrete adapter;
the registration engine asks the registry and never branches on scheme names.
"""

import threading
from typing import Dict, Optional, Type, Union

import requests

from ..config import AppConfig, get_config
from ..enums import CrmSystem, SchemeName
from ..exceptions import ErrorCode, ValidationError
from .base import CrmAdapter, SchemeAdapter
from .crm_adapters import (
    FixfloAdapter,
    HttpCrmAdapter,
    JupixAdapter,
    PropertyFileAdapter,
    ReapitAdapter,
)
from .scheme_adapters import (
    DpsAdapter,
    HttpSchemeAdapter,
    MyDepositsAdapter,
    SimulatedSchemeAdapter,
    TdsAdapter,
)

SCHEME_ADAPTER_CLASSES: Dict[SchemeName, Type[HttpSchemeAdapter]] = {
    SchemeName.DPS: DpsAdapter,
    SchemeName.MYDEPOSITS: MyDepositsAdapter,
    SchemeName.TDS: TdsAdapter,
}

CRM_ADAPTER_CLASSES: Dict[CrmSystem, Type[HttpCrmAdapter]] = {
    CrmSystem.PROPERTYFILE: PropertyFileAdapter,
    CrmSystem.FIXFLO: FixfloAdapter,
    CrmSystem.REAPIT: ReapitAdapter,
    CrmSystem.JUPIX: JupixAdapter,
}


def parse_scheme_name(value: Union[str, SchemeName, None]) -> SchemeName:
    try:
        return SchemeName(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown deposit scheme: {value}",
            field="scheme_name",
            error_code=ErrorCode.UNKNOWN_VARIANT,
            cause=e,
            value=str(value),
        ) from e


def parse_crm_system(value: Union[str, CrmSystem, None]) -> CrmSystem:
    try:
        return CrmSystem(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown CRM system: {value}",
            field="crm_system",
            error_code=ErrorCode.UNKNOWN_VARIANT,
            cause=e,
            value=str(value),
        ) from e


class AdapterRegistry:
    """
    Lazily builds one adapter per scheme and per CRM from the adapter config.

    Adapters can be registered up front (tests, alternative implementations);
    registered adapters always win over built ones.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or get_config()
        self.session = session
        self._schemes: Dict[SchemeName, SchemeAdapter] = {}
        self._crms: Dict[CrmSystem, CrmAdapter] = {}
        self._lock = threading.Lock()

    def register_scheme_adapter(self, scheme_name: Union[str, SchemeName], adapter: SchemeAdapter):
        self._schemes[parse_scheme_name(scheme_name)] = adapter

    def register_crm_adapter(self, crm_system: Union[str, CrmSystem], adapter: CrmAdapter):
        self._crms[parse_crm_system(crm_system)] = adapter

    def _scheme_url(self, scheme_name: SchemeName) -> str:
        adapters = self.config.adapters
        return {
            SchemeName.DPS: adapters.dps_api_url,
            SchemeName.MYDEPOSITS: adapters.mydeposits_api_url,
            SchemeName.TDS: adapters.tds_api_url,
        }[scheme_name]

    def scheme_adapter(self, scheme_name: Union[str, SchemeName]) -> SchemeAdapter:
        scheme_name = parse_scheme_name(scheme_name)
        with self._lock:
            adapter = self._schemes.get(scheme_name)
            if adapter is None:
                adapter = self._schemes[scheme_name] = self._build_scheme_adapter(scheme_name)
            return adapter

    def crm_adapter(self, crm_system: Union[str, CrmSystem]) -> CrmAdapter:
        crm_system = parse_crm_system(crm_system)
        with self._lock:
            adapter = self._crms.get(crm_system)
            if adapter is None:
                adapter = self._crms[crm_system] = self._build_crm_adapter(crm_system)
            return adapter

    def _build_scheme_adapter(self, scheme_name: SchemeName) -> SchemeAdapter:
        if self.config.features.simulate_scheme_calls:
            return SimulatedSchemeAdapter(scheme_name, self.config.registration.document_base_url)
        return SCHEME_ADAPTER_CLASSES[scheme_name](
            self._scheme_url(scheme_name),
            timeout=self.config.adapters.timeout_seconds,
            verify_ssl=self.config.adapters.verify_ssl,
            session=self.session,
        )

    def _build_crm_adapter(self, crm_system: CrmSystem) -> CrmAdapter:
        adapters = self.config.adapters
        return CRM_ADAPTER_CLASSES[crm_system](
            adapters.crm_api_url,
            adapters.crm_api_key,
            scheme_resolver=self.scheme_adapter,
            timeout=adapters.timeout_seconds,
            verify_ssl=adapters.verify_ssl,
            session=self.session,
        )
