"""
SQLAlchemy models and database management for the deposit protection core.
"""

from .db_base import JSON, EncryptedBinary, TimestampMixin, UUIDMixin, as_utc, utc_now
from .db_config import (
    Base,
    DatabaseManager,
    close_db,
    get_db_manager,
    import_all_models,
    initialize_db,
    set_db_manager,
)
from .db_credential_models import SchemeCredential
from .db_registration_models import DepositRegistration, RegistrationTransition

__all__ = [
    # Base definitions
    "Base",
    "JSON",
    "EncryptedBinary",
    "TimestampMixin",
    "UUIDMixin",
    "as_utc",
    "utc_now",
    # Database management
    "DatabaseManager",
    "close_db",
    "get_db_manager",
    "import_all_models",
    "initialize_db",
    "set_db_manager",
    # Models
    "SchemeCredential",
    "DepositRegistration",
    "RegistrationTransition",
]
