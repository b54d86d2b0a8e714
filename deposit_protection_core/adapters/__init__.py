"""Scheme and CRM adapters."""

from .base import CrmAdapter, HttpClient, SchemeAdapter
from .crm_adapters import (
    FixfloAdapter,
    HttpCrmAdapter,
    JupixAdapter,
    PropertyFileAdapter,
    ReapitAdapter,
)
from .registry import AdapterRegistry, parse_crm_system, parse_scheme_name
from .scheme_adapters import (
    SCHEME_DETAILS,
    DpsAdapter,
    HttpSchemeAdapter,
    MyDepositsAdapter,
    SimulatedSchemeAdapter,
    TdsAdapter,
)

__all__ = [
    "AdapterRegistry",
    "CrmAdapter",
    "DpsAdapter",
    "FixfloAdapter",
    "HttpClient",
    "HttpCrmAdapter",
    "HttpSchemeAdapter",
    "JupixAdapter",
    "MyDepositsAdapter",
    "PropertyFileAdapter",
    "ReapitAdapter",
    "SCHEME_DETAILS",
    "SchemeAdapter",
    "SimulatedSchemeAdapter",
    "TdsAdapter",
    "parse_crm_system",
    "parse_scheme_name",
]
