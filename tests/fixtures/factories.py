"""
Factory Boy factories for generating consistent test data.

Tenancy snapshots are plain pydantic models built with ``factory.Factory``;
credential and registration rows go straight into the test database through
the database manager's scoped session.
"""

from datetime import UTC, date, datetime
from decimal import Decimal

import factory

from deposit_protection_core.db import DepositRegistration, SchemeCredential, get_db_manager
from deposit_protection_core.enums import (
    ProtectionType,
    RegistrationMode,
    RegistrationStatus,
    SchemeName,
)
from deposit_protection_core.schemas import (
    ContactDetails,
    PropertyDetails,
    TenancySnapshot,
    TenantDetails,
)
from deposit_protection_core.utils import json_utils

DEFAULT_OWNER = "landlord_1"

# ==================== TENANCY SNAPSHOT FACTORIES ====================


class ContactDetailsFactory(factory.Factory):
    class Meta:
        model = ContactDetails

    name = factory.Faker("name")
    email = factory.Faker("email")
    phone = factory.Faker("phone_number")


class TenantDetailsFactory(ContactDetailsFactory):
    class Meta:
        model = TenantDetails

    tenant_id = factory.Sequence(lambda n: f"tenant_{n}")
    is_lead = False


class PropertyDetailsFactory(factory.Factory):
    class Meta:
        model = PropertyDetails

    address = "Flat 2, 14 Albion Street, Leeds"
    city = "Leeds"
    postcode = "LS1 6AD"
    bedrooms = 2
    property_type = "flat"


class TenancySnapshotFactory(factory.Factory):
    """A twelve month tenancy with a lead tenant and one co-tenant."""

    class Meta:
        model = TenancySnapshot

    tenancy_id = factory.Sequence(lambda n: f"tenancy_{n}")
    property_id = factory.Sequence(lambda n: f"property_{n}")
    owner_user_id = DEFAULT_OWNER
    deposit_amount = Decimal("1200.00")
    rent_amount = Decimal("950.00")
    start_date = date(2026, 9, 1)
    end_date = date(2027, 8, 31)
    deposit_paid_date = date(2026, 8, 20)
    property_details = factory.SubFactory(PropertyDetailsFactory)
    landlord = factory.SubFactory(ContactDetailsFactory)
    tenants = factory.LazyFunction(
        lambda: [TenantDetailsFactory(is_lead=True), TenantDetailsFactory()]
    )


# ==================== DATABASE FACTORIES ====================


class BaseFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Base factory with common patterns."""

    class Meta:
        abstract = True
        sqlalchemy_session_factory = lambda: get_db_manager().get_session()  # noqa: E731
        sqlalchemy_session_persistence = "commit"


class SchemeCredentialFactory(BaseFactory):
    class Meta:
        model = SchemeCredential

    owner_user_id = DEFAULT_OWNER
    scheme_name = SchemeName.DPS.value
    protection_type = ProtectionType.CUSTODIAL.value
    username = factory.Sequence(lambda n: f"agent{n}@lettings.test")
    account_number = factory.Sequence(lambda n: f"ACC{n:05d}")
    # SQLite stores the secret blob as plain JSON
    secret_data = factory.LazyFunction(lambda: json_utils.dumps({"password": "s3cret"}))
    has_password = True
    has_api_key = False
    has_api_secret = False
    is_default = False
    is_verified = False


class DepositRegistrationFactory(BaseFactory):
    class Meta:
        model = DepositRegistration

    tenancy_id = factory.Sequence(lambda n: f"tenancy_row_{n}")
    property_id = factory.Sequence(lambda n: f"property_row_{n}")
    owner_user_id = DEFAULT_OWNER
    scheme_name = SchemeName.DPS.value
    protection_type = ProtectionType.CUSTODIAL.value
    mode = RegistrationMode.API.value
    deposit_amount = Decimal("1200.00")
    tenant_names = factory.LazyFunction(lambda: ["Alex Tenant"])
    tenant_emails = factory.LazyFunction(lambda: ["alex@tenant.test"])
    status = RegistrationStatus.REGISTERED.value
    deposit_reference_id = factory.Sequence(lambda n: f"DPS-ROW-{n}")
    registered_at = factory.LazyFunction(lambda: datetime.now(UTC))
    expiry_date = date(2027, 11, 29)
    attempt_count = 1
    last_attempt_at = factory.LazyFunction(lambda: datetime.now(UTC))
