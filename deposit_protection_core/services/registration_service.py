"""
Registration engine for tenancy deposits.

Drives each registration through its lifecycle:

    (none) -> pending -> in_progress -> registered | failed
    failed -> in_progress                  (retry_registration)
    registered | renewed -> expired        (mark_expired)
    expired -> renewed                     (renew)
    registered | renewed -> released       (release, terminal)
    in_progress -> failed                  (reset_stuck_registration)

Input is validated before any row is written. The in_progress transition is
committed before the adapter is called, so a crash leaves a visible
in_progress row that ``list_stuck_registrations`` can find. Adapter failures
of any kind end the attempt as ``failed`` with the adapter's message; they
are not raised to the caller.

Per-tenancy work (read, decide, write, dispatch) runs under an in-process
keyed lock; a second caller for the same tenancy waits and then sees the
first caller's result. The partial unique index on in-flight registrations
covers other processes.
"""

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..adapters import SCHEME_DETAILS, AdapterRegistry, parse_crm_system, parse_scheme_name
from ..config import get_config
from ..constants import Limits
from ..db import DatabaseManager, DepositRegistration, SchemeCredential, get_db_manager, utc_now
from ..enums import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    CrmSystem,
    ProtectionType,
    RegistrationMode,
    RegistrationStatus,
    SchemeName,
    TransitionTrigger,
    TransitionTypeEnum,
)
from ..exceptions import (
    BaseError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    PreconditionError,
    ValidationError,
    invalid_transition,
    not_found,
)
from ..repositories import RegistrationRepository
from ..schemas import (
    BulkRegistrationSummary,
    PrescribedInfoResult,
    RegisterDepositRequest,
    RegistrationRead,
    RegistrationStats,
    RegistrationTransitionRead,
    RetryOverrides,
    SchemeCredentialRead,
    SchemeCredentialSecrets,
    SchemeDetails,
    SubmissionResult,
    TenancySnapshot,
)
from ..utils import KeyedLock, get_logger
from .adapter_executor import AdapterExecutor
from .credential_service import CredentialService
from .tenancy_directory import TenancyDirectory

# Shared by every service instance in the process
_tenancy_locks = KeyedLock("tenancy")

_DEFAULT_ACTOR = "registration_service"


@dataclass(frozen=True)
class _Attempt:
    """Everything needed to dispatch one attempt, resolved before any state change."""

    mode: RegistrationMode
    scheme_name: SchemeName
    protection_type: ProtectionType
    credential: Optional[SchemeCredentialSecrets] = None
    crm_system: Optional[CrmSystem] = None
    manual_deposit_id: Optional[str] = None
    certificate_url: Optional[str] = None

    @property
    def credential_id(self) -> Optional[str]:
        return self.credential.id if self.credential else None

    @property
    def service_name(self) -> str:
        if self.crm_system:
            return f"{self.crm_system.value}:{self.scheme_name.value}"
        return self.scheme_name.value


def _parse(schema: type, data: Any, what: str) -> Any:
    if data is None:
        return schema()
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ValidationError(
            f"Invalid {what}: {first.get('msg')}", field=field, cause=e
        ) from e


def _parse_mode(mode: Union[str, RegistrationMode]) -> RegistrationMode:
    try:
        return RegistrationMode(mode)
    except ValueError as e:
        raise ValidationError(
            f"Unknown registration mode: {mode}",
            field="mode",
            error_code=ErrorCode.UNKNOWN_VARIANT,
            cause=e,
        ) from e


def _to_read(registration: DepositRegistration) -> RegistrationRead:
    return RegistrationRead.model_validate(registration)


class RegistrationService:
    """Registers tenancy deposits and manages their lifecycle."""

    def __init__(
        self,
        tenancy_directory: TenancyDirectory,
        db_manager: Optional[DatabaseManager] = None,
        credential_service: Optional[CredentialService] = None,
        adapter_registry: Optional[AdapterRegistry] = None,
        executor: Optional[AdapterExecutor] = None,
    ):
        self.tenancy_directory = tenancy_directory
        self.db_manager = db_manager or get_db_manager()
        self.adapter_registry = adapter_registry or AdapterRegistry()
        self.executor = executor or AdapterExecutor()
        self.credential_service = credential_service or CredentialService(
            self.db_manager, self.adapter_registry, self.executor
        )
        self.config = get_config()
        self.logger = get_logger()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_deposit(
        self,
        tenancy_id: str,
        mode: Union[str, RegistrationMode],
        payload: Union[RegisterDepositRequest, Dict[str, Any], None] = None,
    ) -> RegistrationRead:
        """
        Register the tenancy's deposit, or return its current registration.

        If the tenancy's latest registration is not expired or released it is
        returned unchanged and nothing is dispatched.

        Args:
            tenancy_id: Tenancy whose deposit is being protected
            mode: manual, api or crm
            payload: RegisterDepositRequest fields for the mode

        Returns:
            The registration after this call

        Raises:
            ValidationError: Missing or inconsistent input for the mode
            NotFoundError: Unknown tenancy or credential
        """
        mode = _parse_mode(mode)
        request: RegisterDepositRequest = _parse(RegisterDepositRequest, payload, "registration request")
        tenancy = self.tenancy_directory.get_tenancy(tenancy_id)
        attempt = self._plan_attempt(tenancy, mode, request)
        actor = request.actor or _DEFAULT_ACTOR

        with _tenancy_locks.hold(tenancy_id):
            try:
                with self.db_manager.session_scope() as session:
                    repository = RegistrationRepository(session, self.logger)
                    existing = repository.latest_for_tenancy(tenancy_id, for_update=True)
                    if existing is not None and RegistrationStatus(existing.status) not in TERMINAL_STATUSES:
                        self.logger.info(
                            "Tenancy already has a registration",
                            extra={
                                "tenancy_id": tenancy_id,
                                "registration_id": existing.id,
                                "status": existing.status,
                            },
                        )
                        return _to_read(existing)

                    registration = repository.create(
                        actor=actor,
                        tenancy_id=tenancy_id,
                        property_id=tenancy.property_id,
                        owner_user_id=tenancy.owner_user_id,
                        scheme_name=attempt.scheme_name.value,
                        protection_type=attempt.protection_type.value,
                        mode=attempt.mode.value,
                        crm_system=attempt.crm_system.value if attempt.crm_system else None,
                        deposit_amount=tenancy.deposit_amount,
                        tenant_names=[tenant.name for tenant in tenancy.tenants],
                        tenant_emails=[tenant.email for tenant in tenancy.tenants if tenant.email],
                    )
                    self._dispatch(repository, registration, attempt, TransitionTrigger.DISPATCH, actor)
                    registration_id = registration.id
            except ConflictError as e:
                if e.error_code != ErrorCode.DUPLICATE:
                    raise
                # Another process opened the attempt first; report theirs
                current = self.get_registration(tenancy_id)
                if current is None:
                    raise
                return current

            return self._run_attempt(
                registration_id, tenancy, attempt, actor, request.timeout_seconds
            )

    def retry_registration(
        self,
        registration_id: str,
        overrides: Union[RetryOverrides, Dict[str, Any], None] = None,
    ) -> RegistrationRead:
        """
        Run a new attempt for a failed registration on the same row.

        Scheme, mode and amount are reused unless ``overrides`` changes them.

        Raises:
            NotFoundError: Unknown registration
            ConflictError: The registration is not failed (nothing is changed)
        """
        overrides: RetryOverrides = _parse(RetryOverrides, overrides, "retry overrides")
        current = self.get_registration_by_id(registration_id)
        if current.status != RegistrationStatus.FAILED:
            raise invalid_transition(
                registration_id,
                current.status.value,
                RegistrationStatus.IN_PROGRESS.value,
                "only failed registrations can be retried",
            )

        tenancy = self.tenancy_directory.get_tenancy(current.tenancy_id)
        amount = overrides.deposit_amount or current.deposit_amount
        tenancy = tenancy.model_copy(update={"deposit_amount": amount})
        attempt = self._plan_retry(current, tenancy, overrides)
        actor = overrides.actor or _DEFAULT_ACTOR

        with _tenancy_locks.hold(current.tenancy_id):
            with self.db_manager.session_scope() as session:
                repository = RegistrationRepository(session, self.logger)
                registration = repository.get(registration_id, for_update=True)
                if registration.status != RegistrationStatus.FAILED.value:
                    raise invalid_transition(
                        registration_id,
                        registration.status,
                        RegistrationStatus.IN_PROGRESS.value,
                        "only failed registrations can be retried",
                    )
                self._dispatch(
                    repository,
                    registration,
                    attempt,
                    TransitionTrigger.RETRY,
                    actor,
                    deposit_amount=amount,
                )

            return self._run_attempt(
                registration_id, tenancy, attempt, actor, overrides.timeout_seconds
            )

    def register_unprotected(
        self,
        owner_user_id: str,
        tenancy_ids: Iterable[str],
        scheme_name: Union[str, SchemeName] = SchemeName.DPS,
        credential_id: Optional[str] = None,
    ) -> BulkRegistrationSummary:
        """
        Register every listed tenancy of the owner through the scheme API.

        Tenancies that already have a live registration are skipped. Per-tenancy
        problems are collected in the summary instead of being raised.
        """
        scheme_name = parse_scheme_name(scheme_name)
        tenancy_ids = list(tenancy_ids)
        summary = BulkRegistrationSummary()

        if credential_id:
            try:
                credential = self.credential_service.get_credential(credential_id, owner_user_id)
            except NotFoundError:
                summary.failed = len(tenancy_ids)
                summary.errors.append("Specified deposit scheme credentials not found")
                return summary
            if credential.scheme_name != scheme_name:
                summary.failed = len(tenancy_ids)
                summary.errors.append(
                    f"Credentials are for {credential.scheme_name.value} scheme, "
                    f"but {scheme_name.value} was requested"
                )
                return summary

        for tenancy_id in tenancy_ids:
            try:
                tenancy = self.tenancy_directory.get_tenancy(tenancy_id)
                if tenancy.owner_user_id != owner_user_id:
                    raise not_found("Tenancy", tenancy_id=tenancy_id, owner_user_id=owner_user_id)

                existing = self.get_registration(tenancy_id)
                if existing is not None and existing.status not in TERMINAL_STATUSES:
                    summary.skipped += 1
                    continue

                registration = self.register_deposit(
                    tenancy_id,
                    RegistrationMode.API,
                    RegisterDepositRequest(scheme_name=scheme_name, credential_id=credential_id),
                )
            except BaseError as e:
                summary.failed += 1
                summary.errors.append(f"Tenancy ID {tenancy_id}: {e.message}")
                continue

            summary.registrations.append(registration)
            if registration.status in ACTIVE_STATUSES:
                summary.success += 1
            else:
                summary.failed += 1
                summary.errors.append(f"Tenancy ID {tenancy_id}: {registration.error_message}")

        self.logger.info(
            "Bulk registration finished",
            extra={
                "owner_user_id": owner_user_id,
                "scheme_name": scheme_name.value,
                "success": summary.success,
                "failed": summary.failed,
                "skipped": summary.skipped,
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_registration(self, tenancy_id: str) -> Optional[RegistrationRead]:
        """The tenancy's most recent registration, if any."""
        with self.db_manager.session_scope() as session:
            registration = RegistrationRepository(session, self.logger).latest_for_tenancy(tenancy_id)
            return _to_read(registration) if registration else None

    def get_registration_by_id(self, registration_id: str) -> RegistrationRead:
        with self.db_manager.session_scope() as session:
            registration = RegistrationRepository(session, self.logger).get(registration_id)
            if registration is None:
                raise not_found("DepositRegistration", registration_id=registration_id)
            return _to_read(registration)

    def list_registrations(self, owner_user_id: str) -> List[RegistrationRead]:
        with self.db_manager.session_scope() as session:
            repository = RegistrationRepository(session, self.logger)
            return [_to_read(r) for r in repository.list_for_owner(owner_user_id)]

    def get_registration_history(self, registration_id: str) -> List[RegistrationTransitionRead]:
        with self.db_manager.session_scope() as session:
            repository = RegistrationRepository(session, self.logger)
            if repository.get(registration_id) is None:
                raise not_found("DepositRegistration", registration_id=registration_id)
            return [
                RegistrationTransitionRead.model_validate(row)
                for row in repository.history(registration_id)
            ]

    def list_stuck_registrations(
        self, threshold_minutes: Optional[int] = None
    ) -> List[RegistrationRead]:
        """In-progress registrations whose last attempt started more than ``threshold_minutes`` ago."""
        threshold = threshold_minutes
        if threshold is None:
            threshold = self.config.registration.stuck_threshold_minutes
        cutoff = datetime.now(UTC) - timedelta(minutes=threshold)
        with self.db_manager.session_scope() as session:
            repository = RegistrationRepository(session, self.logger)
            return [_to_read(r) for r in repository.list_stuck(cutoff)]

    def get_registration_stats(self, owner_user_id: str) -> RegistrationStats:
        with self.db_manager.session_scope() as session:
            counts = RegistrationRepository(session, self.logger).count_by_status(owner_user_id)

        by_status = {RegistrationStatus(status): count for status, count in counts.items()}
        total = sum(by_status.values())
        protected = sum(by_status.get(status, 0) for status in ACTIVE_STATUSES)
        return RegistrationStats(
            total=total,
            by_status=by_status,
            protected=protected,
            protection_rate=round(protected / total, 4) if total else 0.0,
        )

    @staticmethod
    def get_scheme_details(scheme_name: Union[str, SchemeName]) -> SchemeDetails:
        return SCHEME_DETAILS[parse_scheme_name(scheme_name)]

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def generate_prescribed_info(
        self, registration_id: str, timeout: Optional[float] = None
    ) -> PrescribedInfoResult:
        """
        Regenerate the prescribed information document.

        Always allowed on registered or renewed registrations; the new URL
        replaces the old one and the status does not change.

        Raises:
            NotFoundError: Unknown registration
            PreconditionError: The registration is not registered or renewed
            AdapterError: The scheme could not produce the document (nothing is changed)
        """
        registration = self.get_registration_by_id(registration_id)
        self._require_active(registration.id, registration.status)

        credential = self._credential_for_documents(registration)
        adapter = self.adapter_registry.scheme_adapter(registration.scheme_name)
        result: PrescribedInfoResult = self.executor.call(
            adapter.generate_prescribed_info,
            registration,
            credential,
            service_name=registration.scheme_name.value,
            timeout=timeout,
        )

        with self.db_manager.session_scope() as session:
            row = RegistrationRepository(session, self.logger).get(registration_id, for_update=True)
            self._require_active(row.id, RegistrationStatus(row.status))
            row.prescribed_info_url = result.prescribed_info_url

        self.logger.info(
            "Prescribed information generated",
            extra={
                "registration_id": registration_id,
                "tenancy_id": registration.tenancy_id,
                "prescribed_info_url": result.prescribed_info_url,
            },
        )
        if result.generated_at is None:
            result = result.model_copy(update={"generated_at": datetime.now(UTC)})
        return result

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def mark_expired(self, registration_id: str, actor: Optional[str] = None) -> RegistrationRead:
        return self._lifecycle(
            registration_id,
            allowed_from=ACTIVE_STATUSES,
            to_status=RegistrationStatus.EXPIRED,
            trigger=TransitionTrigger.MARK_EXPIRED,
            actor=actor,
        )

    def renew(
        self, registration_id: str, new_expiry_date: date, actor: Optional[str] = None
    ) -> RegistrationRead:
        """
        Renew an expired registration until ``new_expiry_date``.

        Raises:
            ValidationError: If the new expiry date is not in the future
            ConflictError: If the registration is not expired, or the tenancy has a newer registration
        """
        if new_expiry_date is None or new_expiry_date <= date.today():
            raise ValidationError(
                "Renewal expiry date must be in the future",
                field="new_expiry_date",
                value=str(new_expiry_date),
            )
        return self._lifecycle(
            registration_id,
            allowed_from=frozenset({RegistrationStatus.EXPIRED}),
            to_status=RegistrationStatus.RENEWED,
            trigger=TransitionTrigger.RENEW,
            actor=actor,
            latest_only=True,
            expiry_date=new_expiry_date,
        )

    def release(
        self, registration_id: str, actor: Optional[str] = None, notes: Optional[str] = None
    ) -> RegistrationRead:
        """Release the deposit at the end of the tenancy. Released registrations never change again."""
        return self._lifecycle(
            registration_id,
            allowed_from=ACTIVE_STATUSES,
            to_status=RegistrationStatus.RELEASED,
            trigger=TransitionTrigger.RELEASE,
            actor=actor,
            notes=notes,
        )

    def reset_stuck_registration(
        self,
        registration_id: str,
        reason: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> RegistrationRead:
        """
        Move an interrupted in-progress attempt to failed so it can be retried.

        Waits for any attempt running in this process for the same tenancy,
        so only attempts abandoned by a crashed process end up here.
        """
        message = reason or "Registration attempt was interrupted before the scheme responded"
        return self._lifecycle(
            registration_id,
            allowed_from=frozenset({RegistrationStatus.IN_PROGRESS}),
            to_status=RegistrationStatus.FAILED,
            trigger=TransitionTrigger.RESET_STUCK,
            transition_type=TransitionTypeEnum.TIMEOUT,
            actor=actor,
            notes=message,
            error_message=message,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lifecycle(
        self,
        registration_id: str,
        allowed_from: frozenset,
        to_status: RegistrationStatus,
        trigger: TransitionTrigger,
        transition_type: TransitionTypeEnum = TransitionTypeEnum.MANUAL,
        actor: Optional[str] = None,
        notes: Optional[str] = None,
        latest_only: bool = False,
        **changes: Any,
    ) -> RegistrationRead:
        tenancy_id = self.get_registration_by_id(registration_id).tenancy_id
        with _tenancy_locks.hold(tenancy_id):
            with self.db_manager.session_scope() as session:
                repository = RegistrationRepository(session, self.logger)
                registration = repository.get(registration_id, for_update=True)
                if RegistrationStatus(registration.status) not in allowed_from:
                    raise invalid_transition(registration_id, registration.status, to_status.value)
                if latest_only:
                    latest = repository.latest_for_tenancy(tenancy_id, for_update=True)
                    if latest.id != registration_id:
                        raise invalid_transition(
                            registration_id,
                            registration.status,
                            to_status.value,
                            f"tenancy has a newer registration {latest.id}",
                        )
                repository.transition(
                    registration,
                    to_status,
                    trigger,
                    transition_type=transition_type,
                    actor=actor or _DEFAULT_ACTOR,
                    notes=notes,
                    **changes,
                )
                return _to_read(registration)

    def _require_active(self, registration_id: str, status: RegistrationStatus) -> None:
        if status not in ACTIVE_STATUSES:
            raise PreconditionError(
                f"Prescribed information needs a registered deposit, registration is '{status.value}'",
                registration_id=registration_id,
                status=status.value,
            )

    def _load_credential(
        self,
        credential_id: str,
        owner_user_id: str,
        scheme_name: Optional[SchemeName],
    ) -> SchemeCredentialSecrets:
        credential = self.credential_service.load_secrets(credential_id, owner_user_id, mark_used=False)
        if scheme_name is not None and credential.scheme_name != scheme_name:
            raise ValidationError(
                f"Credentials are for {credential.scheme_name.value} scheme, "
                f"but {scheme_name.value} was requested",
                field="credential_id",
                credential_id=credential_id,
            )
        return credential

    def _resolve_credential(
        self, owner_user_id: str, scheme_name: SchemeName
    ) -> Optional[SchemeCredentialSecrets]:
        resolved: Optional[SchemeCredentialRead] = self.credential_service.resolve_for_scheme(
            owner_user_id, scheme_name
        )
        if resolved is not None:
            return self.credential_service.load_secrets(resolved.id, owner_user_id, mark_used=False)
        if self.config.features.simulate_scheme_calls:
            return None
        raise ValidationError(
            f"No {scheme_name.value} credential found for owner",
            field="credential_id",
            error_code=ErrorCode.MISSING_REQUIRED,
            owner_user_id=owner_user_id,
        )

    def _plan_attempt(
        self, tenancy: TenancySnapshot, mode: RegistrationMode, request: RegisterDepositRequest
    ) -> _Attempt:
        if mode == RegistrationMode.MANUAL:
            if request.scheme_name is None:
                raise ValidationError("scheme_name is required for manual registration", field="scheme_name")
            if not request.manual_deposit_id:
                raise ValidationError(
                    "manual_deposit_id is required for manual registration",
                    field="manual_deposit_id",
                    error_code=ErrorCode.MISSING_REQUIRED,
                )
            return _Attempt(
                mode=mode,
                scheme_name=request.scheme_name,
                protection_type=request.protection_type or ProtectionType.CUSTODIAL,
                manual_deposit_id=request.manual_deposit_id,
                certificate_url=request.certificate_url,
            )

        if mode == RegistrationMode.CRM:
            if request.crm_system is None:
                raise ValidationError("crm_system is required for CRM registration", field="crm_system")
            if not request.credential_id:
                raise ValidationError(
                    "credential_id is required for CRM registration",
                    field="credential_id",
                    error_code=ErrorCode.MISSING_REQUIRED,
                )
            crm_system = parse_crm_system(request.crm_system)
            self.adapter_registry.crm_adapter(crm_system)
            credential = self._load_credential(
                request.credential_id, tenancy.owner_user_id, request.scheme_name
            )
            return _Attempt(
                mode=mode,
                scheme_name=credential.scheme_name,
                protection_type=credential.protection_type,
                credential=credential,
                crm_system=crm_system,
            )

        if request.credential_id:
            credential = self._load_credential(
                request.credential_id, tenancy.owner_user_id, request.scheme_name
            )
            scheme_name = credential.scheme_name
        elif request.scheme_name is not None:
            scheme_name = request.scheme_name
            credential = self._resolve_credential(tenancy.owner_user_id, scheme_name)
        else:
            raise ValidationError(
                "scheme_name or credential_id is required for API registration",
                field="scheme_name",
                error_code=ErrorCode.MISSING_REQUIRED,
            )
        self.adapter_registry.scheme_adapter(scheme_name)
        return _Attempt(
            mode=mode,
            scheme_name=scheme_name,
            protection_type=credential.protection_type if credential else ProtectionType.CUSTODIAL,
            credential=credential,
        )

    def _plan_retry(
        self, current: RegistrationRead, tenancy: TenancySnapshot, overrides: RetryOverrides
    ) -> _Attempt:
        if current.mode == RegistrationMode.MANUAL:
            if not overrides.manual_deposit_id:
                raise ValidationError(
                    "manual_deposit_id is required to retry a manual registration",
                    field="manual_deposit_id",
                    error_code=ErrorCode.MISSING_REQUIRED,
                )
            return _Attempt(
                mode=current.mode,
                scheme_name=current.scheme_name,
                protection_type=current.protection_type,
                manual_deposit_id=overrides.manual_deposit_id,
            )

        credential_id = overrides.credential_id or current.scheme_credential_id
        credential = None
        if credential_id:
            try:
                credential = self._load_credential(
                    credential_id, tenancy.owner_user_id, current.scheme_name
                )
            except NotFoundError:
                if overrides.credential_id:
                    raise
                # The credential used last time was deleted; fall back to the owner's current one
                credential = None
        if credential is None:
            credential = self._resolve_credential(tenancy.owner_user_id, current.scheme_name)
        if credential is None and current.mode == RegistrationMode.CRM:
            raise ValidationError(
                "A credential is required to retry a CRM registration",
                field="credential_id",
                error_code=ErrorCode.MISSING_REQUIRED,
            )

        return _Attempt(
            mode=current.mode,
            scheme_name=current.scheme_name,
            protection_type=credential.protection_type if credential else current.protection_type,
            credential=credential,
            crm_system=current.crm_system,
        )

    def _dispatch(
        self,
        repository: RegistrationRepository,
        registration: DepositRegistration,
        attempt: _Attempt,
        trigger: TransitionTrigger,
        actor: str,
        **changes: Any,
    ) -> None:
        repository.transition(
            registration,
            RegistrationStatus.IN_PROGRESS,
            trigger,
            transition_type=(
                TransitionTypeEnum.RETRY
                if trigger == TransitionTrigger.RETRY
                else TransitionTypeEnum.NORMAL
            ),
            actor=actor,
            context={"mode": attempt.mode.value, "service_name": attempt.service_name},
            attempt_count=(registration.attempt_count or 0) + 1,
            last_attempt_at=datetime.now(UTC),
            scheme_credential_id=attempt.credential_id,
            protection_type=attempt.protection_type.value,
            **changes,
        )
        if attempt.credential_id:
            credential = repository.session.get(SchemeCredential, attempt.credential_id)
            if credential is not None:
                credential.last_used_at = utc_now()

    def _submit(self, tenancy: TenancySnapshot, attempt: _Attempt) -> Callable[[], SubmissionResult]:
        if attempt.crm_system is not None:
            adapter = self.adapter_registry.crm_adapter(attempt.crm_system)
            return lambda: adapter.register_via_crm(tenancy, attempt.credential)
        adapter = self.adapter_registry.scheme_adapter(attempt.scheme_name)
        return lambda: adapter.submit_registration(tenancy, attempt.credential)

    def _run_attempt(
        self,
        registration_id: str,
        tenancy: TenancySnapshot,
        attempt: _Attempt,
        actor: str,
        timeout: Optional[float],
    ) -> RegistrationRead:
        if attempt.mode == RegistrationMode.MANUAL:
            result = SubmissionResult(
                deposit_reference_id=attempt.manual_deposit_id,
                certificate_url=attempt.certificate_url,
                raw_response={"manual": True},
            )
            return self._record_success(
                registration_id, tenancy, result, actor, TransitionTypeEnum.MANUAL
            )

        try:
            result = self.executor.call(
                self._submit(tenancy, attempt),
                service_name=attempt.service_name,
                timeout=timeout,
            )
            if not result.certificate_url:
                result = self._with_certificate(result, attempt, timeout)
        except BaseError as e:
            return self._record_failure(registration_id, e, actor)
        return self._record_success(registration_id, tenancy, result, actor)

    def _with_certificate(
        self, result: SubmissionResult, attempt: _Attempt, timeout: Optional[float]
    ) -> SubmissionResult:
        """Ask the scheme for the certificate when the submission response lacked one."""
        adapter = self.adapter_registry.scheme_adapter(attempt.scheme_name)
        try:
            certificate_url = self.executor.call(
                adapter.fetch_certificate,
                result.deposit_reference_id,
                attempt.credential,
                service_name=attempt.scheme_name.value,
                timeout=timeout,
            )
        except BaseError as e:
            self.logger.warning(
                "Certificate not available after registration",
                extra={
                    "deposit_reference_id": result.deposit_reference_id,
                    "error_message": e.message,
                },
            )
            return result
        return result.model_copy(update={"certificate_url": certificate_url})

    def _record_success(
        self,
        registration_id: str,
        tenancy: TenancySnapshot,
        result: SubmissionResult,
        actor: str,
        transition_type: TransitionTypeEnum = TransitionTypeEnum.NORMAL,
    ) -> RegistrationRead:
        expiry_date = result.expiry_date or tenancy.end_date + timedelta(
            days=self.config.registration.protection_period_days
        )
        changes: Dict[str, Any] = {
            "deposit_reference_id": result.deposit_reference_id,
            "certificate_url": result.certificate_url,
            "expiry_date": expiry_date,
            "api_response": result.raw_response,
        }
        if result.prescribed_info_url:
            changes["prescribed_info_url"] = result.prescribed_info_url

        with self.db_manager.session_scope() as session:
            repository = RegistrationRepository(session, self.logger)
            registration = repository.get(registration_id, for_update=True)
            if registration.status != RegistrationStatus.IN_PROGRESS.value:
                # Reset by another process while the scheme was working
                self.logger.warning(
                    "Scheme accepted a registration that is no longer in progress",
                    extra={
                        "registration_id": registration_id,
                        "status": registration.status,
                        "deposit_reference_id": result.deposit_reference_id,
                    },
                )
                registration.api_response = result.raw_response
                return _to_read(registration)

            repository.transition(
                registration,
                RegistrationStatus.REGISTERED,
                TransitionTrigger.ADAPTER_SUCCESS,
                transition_type=transition_type,
                actor=actor,
                **changes,
            )
            return _to_read(registration)

    def _record_failure(self, registration_id: str, error: BaseError, actor: str) -> RegistrationRead:
        message = (error.message or "Unknown error")[: Limits.MAX_ERROR_MESSAGE_LENGTH]
        transition_type = (
            TransitionTypeEnum.TIMEOUT
            if error.error_code == ErrorCode.ADAPTER_TIMEOUT
            else TransitionTypeEnum.ERROR
        )

        with self.db_manager.session_scope() as session:
            repository = RegistrationRepository(session, self.logger)
            registration = repository.get(registration_id, for_update=True)
            if registration.status != RegistrationStatus.IN_PROGRESS.value:
                return _to_read(registration)

            repository.transition(
                registration,
                RegistrationStatus.FAILED,
                TransitionTrigger.ADAPTER_FAILURE,
                transition_type=transition_type,
                actor=actor,
                notes=message,
                context={"error_code": error.error_code.value, "error_id": error.error_id},
                error_message=message,
                api_response={
                    "error_code": error.error_code.value,
                    "error_id": error.error_id,
                    "response_body": error.context.get("response_body"),
                },
            )
            return _to_read(registration)

    def _credential_for_documents(
        self, registration: RegistrationRead
    ) -> Optional[SchemeCredentialSecrets]:
        if registration.scheme_credential_id:
            try:
                return self.credential_service.load_secrets(
                    registration.scheme_credential_id, registration.owner_user_id
                )
            except NotFoundError:
                pass
        resolved = self.credential_service.resolve_for_scheme(
            registration.owner_user_id, registration.scheme_name
        )
        if resolved is None:
            return None
        return self.credential_service.load_secrets(resolved.id, registration.owner_user_id)
