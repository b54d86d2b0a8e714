"""
Shared fixtures for the deposit protection core tests.

Every test gets fresh configuration and its own SQLite file database. A file
is used instead of ``:memory:`` because adapter calls run on worker threads
and each service call opens its own session.
"""

import pytest

from deposit_protection_core.adapters import AdapterRegistry
from deposit_protection_core.config import (
    AdapterConfig,
    AppConfig,
    DatabaseConfig,
    FeatureFlags,
    reset_config,
    set_config,
)
from deposit_protection_core.db import DatabaseManager, import_all_models, set_db_manager
from deposit_protection_core.enums import CrmSystem, SchemeName
from deposit_protection_core.exceptions import clear_correlation_id
from deposit_protection_core.services import (
    AdapterExecutor,
    CredentialService,
    InMemoryTenancyDirectory,
    RegistrationService,
)
from deposit_protection_core.utils.logger import reset_logging
from tests.fixtures.adapters import FakeCrmAdapter, FakeSchemeAdapter
from tests.fixtures.factories import DEFAULT_OWNER, TenancySnapshotFactory

# ==================== CONFIGURATION AND DATABASE ====================


@pytest.fixture(autouse=True)
def app_config(tmp_path) -> AppConfig:
    """Test configuration; real scheme calls are never simulated unless a test opts in."""
    config = AppConfig(
        environment="test",
        database=DatabaseConfig(connection_string=f"sqlite:///{tmp_path / 'deposits.db'}"),
        features=FeatureFlags(simulate_scheme_calls=False, enable_logs_queue=False),
        adapters=AdapterConfig(
            dps_api_url="https://dps.test/v1",
            mydeposits_api_url="https://mydeposits.test/v1",
            tds_api_url="https://tds.test/v1",
            crm_api_url="https://crm.test/v1",
            crm_api_key="crm-key",
            timeout_seconds=5,
            max_workers=4,
        ),
    )
    set_config(config)
    reset_logging()
    yield config
    reset_config()
    reset_logging()
    clear_correlation_id()


@pytest.fixture
def db_manager(app_config) -> DatabaseManager:
    """Create the schema in the test database and install the manager globally."""
    import_all_models()
    manager = DatabaseManager(app_config.database)
    manager.create_tables()
    set_db_manager(manager)

    yield manager

    set_db_manager(None)
    manager.close()


# ==================== ADAPTERS ====================


@pytest.fixture
def scheme_adapters():
    """One scripted adapter per scheme."""
    return {scheme: FakeSchemeAdapter(scheme) for scheme in SchemeName}


@pytest.fixture
def dps_adapter(scheme_adapters) -> FakeSchemeAdapter:
    return scheme_adapters[SchemeName.DPS]


@pytest.fixture
def crm_adapter(scheme_adapters) -> FakeCrmAdapter:
    return FakeCrmAdapter(CrmSystem.REAPIT, scheme_adapters)


@pytest.fixture
def adapter_registry(app_config, scheme_adapters, crm_adapter) -> AdapterRegistry:
    registry = AdapterRegistry(app_config)
    for scheme, adapter in scheme_adapters.items():
        registry.register_scheme_adapter(scheme, adapter)
    registry.register_crm_adapter(CrmSystem.REAPIT, crm_adapter)
    return registry


@pytest.fixture
def executor() -> AdapterExecutor:
    executor = AdapterExecutor(max_workers=4, default_timeout=5)
    yield executor
    executor.shutdown(wait=False)


# ==================== SERVICES ====================


@pytest.fixture
def tenancy_directory() -> InMemoryTenancyDirectory:
    return InMemoryTenancyDirectory()


@pytest.fixture
def tenancy(tenancy_directory):
    """A tenancy owned by the default landlord, registered in the directory."""
    snapshot = TenancySnapshotFactory()
    tenancy_directory.add(snapshot)
    return snapshot


@pytest.fixture
def credential_service(db_manager, adapter_registry, executor) -> CredentialService:
    return CredentialService(db_manager, adapter_registry, executor)


@pytest.fixture
def registration_service(
    db_manager, tenancy_directory, credential_service, adapter_registry, executor
) -> RegistrationService:
    return RegistrationService(
        tenancy_directory,
        db_manager=db_manager,
        credential_service=credential_service,
        adapter_registry=adapter_registry,
        executor=executor,
    )


@pytest.fixture
def dps_credential_id(credential_service) -> str:
    """The default landlord's default DPS credential."""
    return credential_service.add_credential(
        DEFAULT_OWNER,
        {
            "scheme_name": "dps",
            "username": "lettings@agency.test",
            "password": "dps-password",
            "account_number": "DPS-000123",
            "is_default": True,
        },
    )
