"""
Enums used across the deposit_protection_core package.

Kept in their own module so that models, schemas and adapters can share them
without circular imports.
"""

import enum


class SchemeName(str, enum.Enum):
    """Government-approved UK deposit protection schemes."""

    DPS = "dps"
    MYDEPOSITS = "mydeposits"
    TDS = "tds"


class CrmSystem(str, enum.Enum):
    """Property-management CRMs that can register deposits on a user's behalf."""

    PROPERTYFILE = "propertyfile"
    FIXFLO = "fixflo"
    REAPIT = "reapit"
    JUPIX = "jupix"


class ProtectionType(str, enum.Enum):
    """Custodial: the scheme holds the funds. Insured: the landlord holds them."""

    CUSTODIAL = "custodial"
    INSURED = "insured"


class RegistrationMode(str, enum.Enum):
    """How a registration attempt reaches its scheme."""

    MANUAL = "manual"
    API = "api"
    CRM = "crm"


class RegistrationStatus(str, enum.Enum):
    """Lifecycle states of a deposit registration."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REGISTERED = "registered"
    FAILED = "failed"
    EXPIRED = "expired"
    RENEWED = "renewed"
    RELEASED = "released"


# At most one registration per tenancy may sit in one of these
IN_FLIGHT_STATUSES = frozenset({RegistrationStatus.PENDING, RegistrationStatus.IN_PROGRESS})

# Registered and renewed behave the same for documents and release
ACTIVE_STATUSES = frozenset({RegistrationStatus.REGISTERED, RegistrationStatus.RENEWED})

# Historical records; a new register() call may open a fresh registration
TERMINAL_STATUSES = frozenset({RegistrationStatus.EXPIRED, RegistrationStatus.RELEASED})


class TransitionTrigger(str, enum.Enum):
    """What caused a registration to change status."""

    REGISTER = "register"
    DISPATCH = "dispatch"
    ADAPTER_SUCCESS = "adapter_success"
    ADAPTER_FAILURE = "adapter_failure"
    RETRY = "retry"
    MARK_EXPIRED = "mark_expired"
    RENEW = "renew"
    RELEASE = "release"
    RESET_STUCK = "reset_stuck"


class TransitionTypeEnum(str, enum.Enum):
    """Types of state transitions."""

    NORMAL = "NORMAL"
    ERROR = "ERROR"
    RETRY = "RETRY"
    MANUAL = "MANUAL"
    TIMEOUT = "TIMEOUT"
