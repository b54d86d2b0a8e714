"""
Service for managing deposit scheme credentials with audit logging.

Secrets are encrypted at rest and only leave the service through
``load_secrets``, which the registration service uses to call adapters.
Everything else returns SchemeCredentialRead, which carries presence flags
instead of secret values.
"""

from datetime import UTC, datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from ..adapters import AdapterRegistry, parse_scheme_name
from ..db import DatabaseManager, SchemeCredential, get_db_manager
from ..enums import SchemeName
from ..exceptions import AdapterError, ConflictError, ErrorCode, ValidationError, not_found
from ..repositories import RegistrationRepository
from ..schemas import (
    SchemeCredentialCreate,
    SchemeCredentialRead,
    SchemeCredentialSecrets,
    VerificationResult,
)
from ..utils import KeyedLock, decrypt_secrets, encrypt_secrets, get_logger
from .adapter_executor import AdapterExecutor

# Shared by every service instance in the process
_owner_locks = KeyedLock("credential_owner")


def _validation_error(e: PydanticValidationError) -> ValidationError:
    first = e.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return ValidationError(
        f"Invalid credential: {first.get('msg')}",
        field=field,
        cause=e,
        errors=[error.get("msg") for error in e.errors()],
    )


class CredentialService:
    """
    Scheme credential operations.

    Owns default-credential resolution: ``get_default`` and
    ``resolve_for_scheme`` are the only places the default is looked up.
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        adapter_registry: Optional[AdapterRegistry] = None,
        executor: Optional[AdapterExecutor] = None,
    ):
        self.db_manager = db_manager or get_db_manager()
        self.adapter_registry = adapter_registry or AdapterRegistry()
        self.executor = executor or AdapterExecutor()
        self.logger = get_logger()

    def _get_owned(
        self, session: Session, credential_id: str, owner_user_id: Optional[str] = None
    ) -> SchemeCredential:
        credential = session.get(SchemeCredential, credential_id)
        if credential is None or (
            owner_user_id is not None and credential.owner_user_id != owner_user_id
        ):
            raise not_found("SchemeCredential", credential_id=credential_id)
        return credential

    @staticmethod
    def _clear_default(session: Session, owner_user_id: str, keep_id: Optional[str] = None) -> None:
        query = session.query(SchemeCredential).filter(
            SchemeCredential.owner_user_id == owner_user_id,
            SchemeCredential.is_default.is_(True),
        )
        if keep_id:
            query = query.filter(SchemeCredential.id != keep_id)
        query.update({SchemeCredential.is_default: False}, synchronize_session="fetch")

    def add_credential(
        self, owner_user_id: str, data: Union[SchemeCredentialCreate, Dict[str, Any]]
    ) -> str:
        """
        Store a new scheme credential.

        Args:
            owner_user_id: Landlord or agent that owns the credential
            data: Credential fields; needs a username plus a password or an API key

        Returns:
            ID of the created credential

        Raises:
            ValidationError: If the credential fields are incomplete or unknown
        """
        if not owner_user_id:
            raise ValidationError("owner_user_id is required", field="owner_user_id")
        if isinstance(data, SchemeCredentialCreate):
            payload = data
        else:
            try:
                payload = SchemeCredentialCreate.model_validate(data)
            except PydanticValidationError as e:
                raise _validation_error(e) from e

        secrets = {
            key: value
            for key, value in {
                "password": payload.password,
                "api_key": payload.api_key,
                "api_secret": payload.api_secret,
            }.items()
            if value
        }

        with _owner_locks.hold(owner_user_id):
            with self.db_manager.session_scope() as session:
                if payload.is_default:
                    self._clear_default(session, owner_user_id)

                credential = SchemeCredential(
                    owner_user_id=owner_user_id,
                    scheme_name=payload.scheme_name.value,
                    protection_type=payload.protection_type.value,
                    username=payload.username,
                    account_number=payload.account_number,
                    secret_data=encrypt_secrets(
                        session, secrets, owner_user_id, payload.scheme_name.value
                    ),
                    has_password=bool(payload.password),
                    has_api_key=bool(payload.api_key),
                    has_api_secret=bool(payload.api_secret),
                    is_default=payload.is_default,
                )
                session.add(credential)
                session.flush()
                credential_id = credential.id

        self.logger.info(
            "Scheme credential stored",
            extra={
                "credential_id": credential_id,
                "owner_user_id": owner_user_id,
                "scheme_name": payload.scheme_name.value,
                "is_default": payload.is_default,
                "secret_fields": sorted(secrets),
            },
        )
        return credential_id

    def list_credentials(self, owner_user_id: str) -> List[SchemeCredentialRead]:
        with self.db_manager.session_scope() as session:
            credentials = (
                session.query(SchemeCredential)
                .filter(SchemeCredential.owner_user_id == owner_user_id)
                .order_by(SchemeCredential.created_at.asc())
                .all()
            )
            return [SchemeCredentialRead.model_validate(c) for c in credentials]

    def get_credential(
        self, credential_id: str, owner_user_id: Optional[str] = None
    ) -> SchemeCredentialRead:
        with self.db_manager.session_scope() as session:
            return SchemeCredentialRead.model_validate(
                self._get_owned(session, credential_id, owner_user_id)
            )

    def get_default(self, owner_user_id: str) -> Optional[SchemeCredentialRead]:
        with self.db_manager.session_scope() as session:
            credential = (
                session.query(SchemeCredential)
                .filter(
                    SchemeCredential.owner_user_id == owner_user_id,
                    SchemeCredential.is_default.is_(True),
                )
                .first()
            )
            return SchemeCredentialRead.model_validate(credential) if credential else None

    def resolve_for_scheme(
        self, owner_user_id: str, scheme_name: Union[str, SchemeName]
    ) -> Optional[SchemeCredentialRead]:
        """The owner's default if it is for ``scheme_name``, else their first credential for it."""
        scheme_name = parse_scheme_name(scheme_name)
        default = self.get_default(owner_user_id)
        if default is not None and default.scheme_name == scheme_name:
            return default
        with self.db_manager.session_scope() as session:
            credential = (
                session.query(SchemeCredential)
                .filter(
                    SchemeCredential.owner_user_id == owner_user_id,
                    SchemeCredential.scheme_name == scheme_name.value,
                )
                .order_by(SchemeCredential.created_at.asc())
                .first()
            )
            return SchemeCredentialRead.model_validate(credential) if credential else None

    def set_default(self, credential_id: str, owner_user_id: str) -> SchemeCredentialRead:
        """
        Make ``credential_id`` the owner's only default credential.

        Raises:
            NotFoundError: If the credential does not exist or belongs to someone else
        """
        with _owner_locks.hold(owner_user_id):
            with self.db_manager.session_scope() as session:
                credential = self._get_owned(session, credential_id, owner_user_id)
                self._clear_default(session, owner_user_id, keep_id=credential_id)
                credential.is_default = True
                session.flush()
                result = SchemeCredentialRead.model_validate(credential)

        self.logger.info(
            "Default scheme credential changed",
            extra={"credential_id": credential_id, "owner_user_id": owner_user_id},
        )
        return result

    def verify(
        self, credential_id: str, owner_user_id: str, timeout: Optional[float] = None
    ) -> VerificationResult:
        """
        Check the credential against its scheme.

        Adapter failures and timeouts come back as ``success=False``. Only a
        successful check changes the stored verification state.
        """
        secrets = self.load_secrets(credential_id, owner_user_id, mark_used=False)
        adapter = self.adapter_registry.scheme_adapter(secrets.scheme_name)

        try:
            result = self.executor.call(
                adapter.verify_credentials,
                secrets,
                service_name=secrets.scheme_name.value,
                timeout=timeout,
            )
        except AdapterError as e:
            result = VerificationResult(success=False, message=e.message)

        if result.success:
            verified_at = result.verified_at or datetime.now(UTC)
            with self.db_manager.session_scope() as session:
                credential = self._get_owned(session, credential_id, owner_user_id)
                credential.is_verified = True
                credential.last_verified_at = verified_at
            result = result.model_copy(update={"verified_at": verified_at})

        self.logger.info(
            "Scheme credential verification",
            extra={
                "credential_id": credential_id,
                "scheme_name": secrets.scheme_name.value,
                "success": result.success,
                "result_message": result.message,
            },
        )
        return result

    def delete(self, credential_id: str, owner_user_id: str) -> None:
        """
        Delete a credential. Registrations keep their own snapshot of it.

        Raises:
            NotFoundError: If the credential does not exist or belongs to someone else
            ConflictError: If an in-progress registration attempt is using it
        """
        with _owner_locks.hold(owner_user_id):
            with self.db_manager.session_scope() as session:
                credential = self._get_owned(session, credential_id, owner_user_id)
                if RegistrationRepository(session, self.logger).credential_in_use(credential_id):
                    raise ConflictError(
                        "Credential is being used by a registration in progress",
                        error_code=ErrorCode.CREDENTIAL_IN_USE,
                        credential_id=credential_id,
                    )
                session.delete(credential)

        self.logger.info(
            "Scheme credential deleted",
            extra={"credential_id": credential_id, "owner_user_id": owner_user_id},
        )

    def load_secrets(
        self,
        credential_id: str,
        owner_user_id: Optional[str] = None,
        mark_used: bool = True,
    ) -> SchemeCredentialSecrets:
        """Decrypted credential material for adapter calls."""
        with self.db_manager.session_scope() as session:
            credential = self._get_owned(session, credential_id, owner_user_id)
            secrets = decrypt_secrets(
                session, credential.secret_data, credential.owner_user_id, credential.scheme_name
            )
            if mark_used:
                credential.last_used_at = datetime.now(UTC)

            self.logger.info(
                "Credential access granted",
                extra={
                    "credential_id": credential_id,
                    "scheme_name": credential.scheme_name,
                    "owner_user_id": credential.owner_user_id,
                },
            )
            return SchemeCredentialSecrets(
                id=credential.id,
                owner_user_id=credential.owner_user_id,
                scheme_name=credential.scheme_name,
                protection_type=credential.protection_type,
                username=credential.username,
                account_number=credential.account_number,
                password=secrets.get("password"),
                api_key=secrets.get("api_key"),
                api_secret=secrets.get("api_secret"),
            )
