"""
Tests for AdapterRegistry and the AdapterExecutor worker pool.
"""

import time

import pytest

from deposit_protection_core.adapters import (
    AdapterRegistry,
    DpsAdapter,
    ReapitAdapter,
    SimulatedSchemeAdapter,
    TdsAdapter,
    parse_crm_system,
    parse_scheme_name,
)
from deposit_protection_core.enums import CrmSystem, SchemeName
from deposit_protection_core.exceptions import (
    AdapterError,
    ErrorCode,
    NotFoundError,
    ValidationError,
    not_found,
)
from deposit_protection_core.services import AdapterExecutor
from tests.fixtures.adapters import FakeSchemeAdapter


class TestParsing:
    def test_parse_scheme_name(self):
        assert parse_scheme_name("tds") == SchemeName.TDS
        assert parse_scheme_name(SchemeName.DPS) == SchemeName.DPS

    @pytest.mark.parametrize("value", ["acme", "", None, "DPS"])
    def test_unknown_scheme(self, value):
        with pytest.raises(ValidationError) as exc_info:
            parse_scheme_name(value)

        assert exc_info.value.error_code == ErrorCode.UNKNOWN_VARIANT

    def test_unknown_crm(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_crm_system("salesforce")

        assert exc_info.value.context["field"] == "crm_system"


class TestAdapterRegistry:
    def test_builds_http_adapters_from_config(self, app_config):
        registry = AdapterRegistry(app_config)

        dps = registry.scheme_adapter("dps")
        tds = registry.scheme_adapter(SchemeName.TDS)

        assert isinstance(dps, DpsAdapter)
        assert isinstance(tds, TdsAdapter)
        assert dps.base_url == "https://dps.test/v1"
        assert dps.timeout == 5
        assert registry.scheme_adapter("dps") is dps

    def test_simulation_mode(self, app_config):
        app_config.features.simulate_scheme_calls = True
        registry = AdapterRegistry(app_config)

        adapter = registry.scheme_adapter("mydeposits")

        assert isinstance(adapter, SimulatedSchemeAdapter)
        assert adapter.scheme_name == SchemeName.MYDEPOSITS

    def test_registered_adapter_wins(self, app_config):
        registry = AdapterRegistry(app_config)
        fake = FakeSchemeAdapter(SchemeName.DPS)

        registry.register_scheme_adapter("dps", fake)

        assert registry.scheme_adapter(SchemeName.DPS) is fake

    def test_crm_adapter_uses_registry_for_schemes(self, app_config):
        registry = AdapterRegistry(app_config)
        fake = FakeSchemeAdapter(SchemeName.TDS)
        registry.register_scheme_adapter("tds", fake)

        crm = registry.crm_adapter(CrmSystem.REAPIT)

        assert isinstance(crm, ReapitAdapter)
        assert crm.base_url == "https://crm.test/v1/reapit"
        assert crm.api_key == "crm-key"
        assert crm.scheme_resolver(SchemeName.TDS) is fake

    def test_unknown_adapter(self, app_config):
        registry = AdapterRegistry(app_config)

        with pytest.raises(ValidationError):
            registry.scheme_adapter("acme")
        with pytest.raises(ValidationError):
            registry.crm_adapter("acme")


class TestAdapterExecutor:
    @pytest.fixture
    def executor(self):
        executor = AdapterExecutor(max_workers=2, default_timeout=2)
        yield executor
        executor.shutdown(wait=False)

    def test_returns_result(self, executor):
        assert executor.call(lambda a, b=0: a + b, 2, b=3, service_name="test") == 5

    def test_timeout(self, executor):
        with pytest.raises(AdapterError) as exc_info:
            executor.call(time.sleep, 1, service_name="slow", timeout=0.05)

        assert exc_info.value.error_code == ErrorCode.ADAPTER_TIMEOUT
        assert exc_info.value.service_name == "slow"

    def test_unexpected_exception_is_wrapped(self, executor):
        def explode():
            raise KeyError("referenceId")

        with pytest.raises(AdapterError) as exc_info:
            executor.call(explode, service_name="dps")

        assert exc_info.value.error_code == ErrorCode.ADAPTER_ERROR
        assert isinstance(exc_info.value.cause, KeyError)

    def test_domain_errors_pass_through(self, executor):
        def missing():
            raise not_found("Tenancy", tenancy_id="t-1")

        with pytest.raises(NotFoundError):
            executor.call(missing, service_name="dps")

    def test_defaults_from_config(self, app_config):
        executor = AdapterExecutor()

        assert executor.max_workers == 4
        assert executor.default_timeout == 5
