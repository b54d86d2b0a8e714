"""
Data access for deposit registrations and their transition history.

The repository works inside a session owned by the caller; the registration
service decides the transaction boundaries. Every status change goes through
``transition()`` so the history row and the structured log event are never
skipped.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_config
from ..db import DepositRegistration, RegistrationTransition, utc_now
from ..enums import (
    IN_FLIGHT_STATUSES,
    RegistrationStatus,
    TransitionTrigger,
    TransitionTypeEnum,
)
from ..exceptions import ConflictError, ErrorCode
from ..utils import get_logger

_IN_FLIGHT_VALUES = [status.value for status in IN_FLIGHT_STATUSES]


class RegistrationRepository:
    """Registration rows plus append-only transition history."""

    def __init__(self, session: Session, logger=None):
        self.session = session
        self.logger = logger or get_logger()

    def _query(self, for_update: bool = False):
        query = self.session.query(DepositRegistration)
        if for_update:
            # Row lock on PostgreSQL; SQLite serializes writers on its own
            query = query.with_for_update()
        return query

    def get(self, registration_id: str, for_update: bool = False) -> Optional[DepositRegistration]:
        return self._query(for_update).filter(DepositRegistration.id == registration_id).first()

    def latest_for_tenancy(
        self, tenancy_id: str, for_update: bool = False
    ) -> Optional[DepositRegistration]:
        return (
            self._query(for_update)
            .filter(DepositRegistration.tenancy_id == tenancy_id)
            .order_by(DepositRegistration.created_at.desc(), DepositRegistration.attempt_count.desc())
            .first()
        )

    def in_flight_for_tenancy(self, tenancy_id: str) -> Optional[DepositRegistration]:
        return (
            self._query()
            .filter(
                DepositRegistration.tenancy_id == tenancy_id,
                DepositRegistration.status.in_(_IN_FLIGHT_VALUES),
            )
            .first()
        )

    def list_for_owner(self, owner_user_id: str) -> List[DepositRegistration]:
        return (
            self._query()
            .filter(DepositRegistration.owner_user_id == owner_user_id)
            .order_by(DepositRegistration.created_at.desc())
            .all()
        )

    def list_stuck(self, started_before: datetime) -> List[DepositRegistration]:
        return (
            self._query()
            .filter(
                DepositRegistration.status == RegistrationStatus.IN_PROGRESS.value,
                DepositRegistration.last_attempt_at < started_before,
            )
            .order_by(DepositRegistration.last_attempt_at.asc())
            .all()
        )

    def credential_in_use(self, credential_id: str) -> bool:
        """True when an in-progress attempt is using the credential right now."""
        return (
            self._query()
            .filter(
                DepositRegistration.scheme_credential_id == credential_id,
                DepositRegistration.status == RegistrationStatus.IN_PROGRESS.value,
            )
            .first()
            is not None
        )

    def count_by_status(self, owner_user_id: str) -> Dict[str, int]:
        rows = (
            self.session.query(DepositRegistration.status, func.count(DepositRegistration.id))
            .filter(DepositRegistration.owner_user_id == owner_user_id)
            .group_by(DepositRegistration.status)
            .all()
        )
        return {status: count for status, count in rows}

    def history(self, registration_id: str) -> List[RegistrationTransition]:
        return (
            self.session.query(RegistrationTransition)
            .filter(RegistrationTransition.registration_id == registration_id)
            .order_by(RegistrationTransition.sequence.asc())
            .all()
        )

    def create(
        self,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        **fields: Any,
    ) -> DepositRegistration:
        """
        Insert a pending registration and its creation history row.

        Raises:
            ConflictError: another in-flight registration exists for the tenancy
                (the partial unique index rejected the insert)
        """
        registration = DepositRegistration(
            status=RegistrationStatus.PENDING.value,
            registered_at=utc_now(),
            attempt_count=0,
            **fields,
        )
        self.session.add(registration)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Tenancy {fields.get('tenancy_id')} already has a registration in flight",
                error_code=ErrorCode.DUPLICATE,
                cause=e,
                tenancy_id=fields.get("tenancy_id"),
            ) from e

        self._record(
            registration,
            from_status=None,
            trigger=TransitionTrigger.REGISTER,
            transition_type=TransitionTypeEnum.NORMAL,
            actor=actor,
            notes=notes,
        )
        return registration

    def transition(
        self,
        registration: DepositRegistration,
        to_status: RegistrationStatus,
        trigger: TransitionTrigger,
        transition_type: TransitionTypeEnum = TransitionTypeEnum.NORMAL,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        **changes: Any,
    ) -> DepositRegistration:
        """Move a registration to ``to_status``, apply ``changes`` and append history."""
        from_status = registration.status
        registration.status = to_status.value
        if to_status != RegistrationStatus.FAILED:
            registration.error_message = None
        for key, value in changes.items():
            setattr(registration, key, value)

        try:
            self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                f"Tenancy {registration.tenancy_id} already has a registration in flight",
                error_code=ErrorCode.DUPLICATE,
                cause=e,
                tenancy_id=registration.tenancy_id,
            ) from e

        self._record(
            registration,
            from_status=from_status,
            trigger=trigger,
            transition_type=transition_type,
            actor=actor,
            notes=notes,
            context=context,
        )
        return registration

    def _record(
        self,
        registration: DepositRegistration,
        from_status: Optional[str],
        trigger: TransitionTrigger,
        transition_type: TransitionTypeEnum,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> RegistrationTransition:
        last_sequence = (
            self.session.query(func.max(RegistrationTransition.sequence))
            .filter(RegistrationTransition.registration_id == registration.id)
            .scalar()
        )
        row = RegistrationTransition(
            registration_id=registration.id,
            tenancy_id=registration.tenancy_id,
            sequence=(last_sequence or 0) + 1,
            from_status=from_status,
            to_status=registration.status,
            trigger=trigger.value,
            transition_type=transition_type.value,
            actor=actor,
            notes=notes,
            context=context,
            created_at=utc_now(),
        )
        self.session.add(row)
        self.session.flush()

        if get_config().features.enable_audit_logging:
            self.logger.info(
                "Registration state transition",
                extra={
                    "event_type": "state_transition",
                    "registration_id": registration.id,
                    "tenancy_id": registration.tenancy_id,
                    "from_status": from_status,
                    "to_status": registration.status,
                    "trigger": trigger.value,
                    "transition_type": transition_type.value,
                    "actor": actor,
                },
            )
        return row
