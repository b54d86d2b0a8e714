"""
Tests for CredentialService: storage, default exclusivity, verification and deletion.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from deposit_protection_core.db import SchemeCredential
from deposit_protection_core.enums import ProtectionType, RegistrationStatus, SchemeName
from deposit_protection_core.exceptions import ConflictError, ErrorCode, NotFoundError, ValidationError
from deposit_protection_core.schemas import SchemeCredentialCreate
from tests.fixtures.factories import DEFAULT_OWNER, DepositRegistrationFactory


def _defaults(credential_service, owner=DEFAULT_OWNER):
    return [c.id for c in credential_service.list_credentials(owner) if c.is_default]


class TestAddCredential:
    def test_add_and_read(self, credential_service):
        credential_id = credential_service.add_credential(
            DEFAULT_OWNER,
            SchemeCredentialCreate(
                scheme_name=SchemeName.MYDEPOSITS,
                username="agent@lettings.test",
                api_key="md-key",
                account_number="MD-42",
                protection_type=ProtectionType.INSURED,
            ),
        )

        credential = credential_service.get_credential(credential_id, DEFAULT_OWNER)
        assert credential.scheme_name == SchemeName.MYDEPOSITS
        assert credential.protection_type == ProtectionType.INSURED
        assert credential.has_api_key is True
        assert credential.has_password is False
        assert credential.is_verified is False
        assert not hasattr(credential, "api_key")

    def test_secrets_are_not_stored_in_clear_columns(self, credential_service, db_manager):
        credential_id = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "u", "password": "hunter2"}
        )

        with db_manager.session_scope() as session:
            row = session.get(SchemeCredential, credential_id)
            assert row.username == "u"
            assert row.has_password is True

        secrets = credential_service.load_secrets(credential_id, DEFAULT_OWNER)
        assert secrets.password == "hunter2"
        assert secrets.api_key is None

    @pytest.mark.parametrize(
        "data",
        [
            {"scheme_name": "dps", "username": "u"},
            {"scheme_name": "dps", "username": "u", "password": ""},
            {"scheme_name": "tds", "username": "u", "api_secret": "s"},
            {"scheme_name": "dps", "username": "", "password": "p"},
            {"scheme_name": "acme", "username": "u", "password": "p"},
        ],
    )
    def test_invalid_credentials_are_rejected(self, credential_service, data):
        with pytest.raises(ValidationError):
            credential_service.add_credential(DEFAULT_OWNER, data)

        assert credential_service.list_credentials(DEFAULT_OWNER) == []

    def test_owner_required(self, credential_service):
        with pytest.raises(ValidationError):
            credential_service.add_credential("", {"scheme_name": "dps", "username": "u", "password": "p"})


class TestDefaultCredential:
    def test_new_default_replaces_old(self, credential_service):
        first = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "a", "password": "p", "is_default": True}
        )
        second = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "tds", "username": "b", "password": "p", "is_default": True}
        )

        assert _defaults(credential_service) == [second]
        assert credential_service.get_default(DEFAULT_OWNER).id == second
        assert credential_service.get_credential(first).is_default is False

    def test_set_default(self, credential_service):
        first = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "a", "password": "p", "is_default": True}
        )
        second = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "b", "password": "p"}
        )

        result = credential_service.set_default(second, DEFAULT_OWNER)

        assert result.is_default is True
        assert _defaults(credential_service) == [second]
        assert first not in _defaults(credential_service)

    def test_defaults_are_per_owner(self, credential_service):
        mine = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "a", "password": "p", "is_default": True}
        )
        theirs = credential_service.add_credential(
            "landlord_2", {"scheme_name": "dps", "username": "b", "password": "p", "is_default": True}
        )

        assert _defaults(credential_service) == [mine]
        assert _defaults(credential_service, "landlord_2") == [theirs]

    def test_set_default_for_other_owner(self, credential_service):
        theirs = credential_service.add_credential(
            "landlord_2", {"scheme_name": "dps", "username": "b", "password": "p"}
        )

        with pytest.raises(NotFoundError):
            credential_service.set_default(theirs, DEFAULT_OWNER)

    @pytest.mark.concurrency
    def test_concurrent_set_default_leaves_one_default(self, credential_service):
        ids = [
            credential_service.add_credential(
                DEFAULT_OWNER, {"scheme_name": "dps", "username": f"user{i}", "password": "p"}
            )
            for i in range(5)
        ]
        barrier = threading.Barrier(len(ids))

        def promote(credential_id):
            barrier.wait()
            return credential_service.set_default(credential_id, DEFAULT_OWNER)

        with ThreadPoolExecutor(max_workers=len(ids)) as pool:
            list(pool.map(promote, ids))

        assert len(_defaults(credential_service)) == 1

    def test_resolve_for_scheme_prefers_default(self, credential_service):
        credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "a", "password": "p"}
        )
        default = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "b", "password": "p", "is_default": True}
        )

        assert credential_service.resolve_for_scheme(DEFAULT_OWNER, "dps").id == default

    def test_resolve_for_scheme_falls_back_to_first_match(self, credential_service):
        credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "tds", "username": "a", "password": "p", "is_default": True}
        )
        first_dps = credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "b", "password": "p"}
        )
        credential_service.add_credential(
            DEFAULT_OWNER, {"scheme_name": "dps", "username": "c", "password": "p"}
        )

        assert credential_service.resolve_for_scheme(DEFAULT_OWNER, SchemeName.DPS).id == first_dps
        assert credential_service.resolve_for_scheme(DEFAULT_OWNER, "mydeposits") is None


class TestVerifyCredential:
    def test_verify_success(self, credential_service, dps_credential_id):
        result = credential_service.verify(dps_credential_id, DEFAULT_OWNER)

        assert result.success is True
        assert result.verified_at is not None
        credential = credential_service.get_credential(dps_credential_id)
        assert credential.is_verified is True
        assert credential.last_verified_at is not None

    def test_verify_rejected(self, credential_service, dps_credential_id, dps_adapter):
        dps_adapter.verify_ok = False

        result = credential_service.verify(dps_credential_id, DEFAULT_OWNER)

        assert result.success is False
        assert result.message == "Invalid username or password"
        assert credential_service.get_credential(dps_credential_id).is_verified is False

    def test_verify_timeout(self, credential_service, dps_credential_id, dps_adapter):
        dps_adapter.verify_delay = 1.0

        result = credential_service.verify(dps_credential_id, DEFAULT_OWNER, timeout=0.1)

        assert result.success is False
        assert "timed out" in result.message
        assert credential_service.get_credential(dps_credential_id).is_verified is False

    def test_verify_does_not_touch_last_used(self, credential_service, dps_credential_id):
        credential_service.verify(dps_credential_id, DEFAULT_OWNER)

        assert credential_service.get_credential(dps_credential_id).last_used_at is None


class TestDeleteCredential:
    def test_delete(self, credential_service, dps_credential_id):
        credential_service.delete(dps_credential_id, DEFAULT_OWNER)

        with pytest.raises(NotFoundError):
            credential_service.get_credential(dps_credential_id)

    def test_delete_other_owner(self, credential_service, dps_credential_id):
        with pytest.raises(NotFoundError):
            credential_service.delete(dps_credential_id, "landlord_2")

        assert credential_service.get_credential(dps_credential_id) is not None

    def test_delete_in_use_is_rejected(self, credential_service, dps_credential_id):
        DepositRegistrationFactory(
            status=RegistrationStatus.IN_PROGRESS.value,
            deposit_reference_id=None,
            scheme_credential_id=dps_credential_id,
        )

        with pytest.raises(ConflictError) as exc_info:
            credential_service.delete(dps_credential_id, DEFAULT_OWNER)

        assert exc_info.value.error_code == ErrorCode.CREDENTIAL_IN_USE
        assert credential_service.get_credential(dps_credential_id).id == dps_credential_id

    def test_delete_after_registration_finished(self, credential_service, dps_credential_id):
        """Finished registrations keep their own snapshot and do not block deletion."""
        DepositRegistrationFactory(scheme_credential_id=dps_credential_id)

        credential_service.delete(dps_credential_id, DEFAULT_OWNER)

        assert credential_service.list_credentials(DEFAULT_OWNER) == []

    @pytest.mark.concurrency
    def test_delete_during_registration_attempt(
        self, credential_service, registration_service, tenancy, dps_adapter, dps_credential_id
    ):
        """Deleting a credential while an attempt is using it fails; the attempt completes."""
        dps_adapter.gate = threading.Event()

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(
                registration_service.register_deposit,
                tenancy.tenancy_id,
                "api",
                {"scheme_name": "dps"},
            )
            assert dps_adapter.started.wait(timeout=5)

            try:
                with pytest.raises(ConflictError):
                    credential_service.delete(dps_credential_id, DEFAULT_OWNER)
            finally:
                dps_adapter.gate.set()

            registration = future.result(timeout=10)

        assert registration.status == RegistrationStatus.REGISTERED
        assert credential_service.get_credential(dps_credential_id).id == dps_credential_id


class TestLoadSecrets:
    def test_load_marks_used(self, credential_service, dps_credential_id):
        secrets = credential_service.load_secrets(dps_credential_id, DEFAULT_OWNER)

        assert secrets.scheme_name == SchemeName.DPS
        assert secrets.password == "dps-password"
        assert secrets.account_number == "DPS-000123"
        assert credential_service.get_credential(dps_credential_id).last_used_at is not None

    def test_secrets_repr_hides_values(self, credential_service, dps_credential_id):
        secrets = credential_service.load_secrets(dps_credential_id)

        assert "dps-password" not in repr(secrets)

    def test_load_for_wrong_owner(self, credential_service, dps_credential_id):
        with pytest.raises(NotFoundError):
            credential_service.load_secrets(dps_credential_id, "landlord_2")
