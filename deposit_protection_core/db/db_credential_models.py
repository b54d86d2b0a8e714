"""
Scheme credential model.

Secrets live in one encrypted JSON blob; everything a listing needs to show
(username, account number, which secrets are present) stays in clear columns.
"""

from sqlalchemy import Boolean, Column, DateTime, Index, String

from ..enums import ProtectionType
from .db_base import EncryptedBinary, TimestampMixin, UUIDMixin
from .db_config import Base


class SchemeCredential(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "scheme_credentials"

    owner_user_id = Column(String(100), nullable=False, index=True)
    scheme_name = Column(String(20), nullable=False)
    protection_type = Column(String(20), nullable=False, default=ProtectionType.CUSTODIAL.value)

    username = Column(String(255), nullable=False)
    account_number = Column(String(100), nullable=True)
    secret_data = Column(EncryptedBinary, nullable=False)

    has_password = Column(Boolean, nullable=False, default=False)
    has_api_key = Column(Boolean, nullable=False, default=False)
    has_api_secret = Column(Boolean, nullable=False, default=False)

    is_default = Column(Boolean, nullable=False, default=False)
    is_verified = Column(Boolean, nullable=False, default=False)
    last_verified_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_scheme_credentials_owner_scheme", "owner_user_id", "scheme_name"),
    )

    def __repr__(self) -> str:
        return (
            f"<SchemeCredential(id={self.id}, owner={self.owner_user_id}, "
            f"scheme={self.scheme_name}, default={self.is_default})>"
        )
