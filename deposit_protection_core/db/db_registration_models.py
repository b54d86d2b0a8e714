"""
Deposit registration and its append-only transition history.

A registration row is created on the first attempt for a tenancy and reused by
retries. The partial unique index keeps a tenancy to one in-flight attempt
across processes; the registration service adds an in-process lock on top.
"""

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from ..enums import RegistrationStatus
from .db_base import JSON, TimestampMixin, UUIDMixin, utc_now
from .db_config import Base

_IN_FLIGHT_PREDICATE = text("status IN ('pending', 'in_progress')")


class DepositRegistration(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "deposit_registrations"

    tenancy_id = Column(String(100), nullable=False, index=True)
    property_id = Column(String(100), nullable=True)
    owner_user_id = Column(String(100), nullable=False, index=True)

    # Snapshot of what the live attempt used; credentials can be deleted later
    scheme_name = Column(String(20), nullable=False)
    protection_type = Column(String(20), nullable=False)
    scheme_credential_id = Column(String(36), nullable=True)
    mode = Column(String(20), nullable=False)
    crm_system = Column(String(20), nullable=True)

    deposit_amount = Column(Numeric(12, 2), nullable=False)
    tenant_names = Column(JSON, nullable=True)
    tenant_emails = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=RegistrationStatus.PENDING.value, index=True)
    deposit_reference_id = Column(String(100), nullable=True)
    certificate_url = Column(Text, nullable=True)
    prescribed_info_url = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)

    registered_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    expiry_date = Column(Date, nullable=True)

    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    api_response = Column(JSON, nullable=True)

    transitions = relationship(
        "RegistrationTransition",
        back_populates="registration",
        order_by="RegistrationTransition.sequence",
        lazy="select",
    )

    __table_args__ = (
        Index(
            "uq_deposit_registrations_in_flight_tenancy",
            "tenancy_id",
            unique=True,
            postgresql_where=_IN_FLIGHT_PREDICATE,
            sqlite_where=_IN_FLIGHT_PREDICATE,
        ),
        Index("ix_deposit_registrations_tenancy_created", "tenancy_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<DepositRegistration(id={self.id}, tenancy={self.tenancy_id}, "
            f"scheme={self.scheme_name}, status={self.status})>"
        )


class RegistrationTransition(Base, UUIDMixin):
    """One status change of a registration. Rows are never updated."""

    __tablename__ = "deposit_registration_transitions"

    registration_id = Column(
        String(36), ForeignKey("deposit_registrations.id"), nullable=False, index=True
    )
    tenancy_id = Column(String(100), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=False)
    trigger = Column(String(30), nullable=False)
    transition_type = Column(String(20), nullable=False)

    actor = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    context = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    registration = relationship("DepositRegistration", back_populates="transitions")

    __table_args__ = (
        Index(
            "uq_registration_transition_sequence", "registration_id", "sequence", unique=True
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<RegistrationTransition(registration={self.registration_id}, "
            f"{self.from_status} -> {self.to_status}, trigger={self.trigger})>"
        )
