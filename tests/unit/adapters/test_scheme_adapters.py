"""
Tests for the scheme adapters against a mocked ``requests`` session.
"""

import base64
import re
from datetime import date
from unittest.mock import Mock

import pytest
import requests

from deposit_protection_core.adapters import (
    DpsAdapter,
    MyDepositsAdapter,
    SimulatedSchemeAdapter,
    TdsAdapter,
)
from deposit_protection_core.enums import SchemeName
from deposit_protection_core.exceptions import AdapterError, ErrorCode
from deposit_protection_core.schemas import RegistrationRead, SchemeCredentialSecrets
from tests.fixtures.factories import DepositRegistrationFactory, TenancySnapshotFactory


def _response(status_code=200, body=None, text="", reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.reason = reason
    response.text = text
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


def _credential(scheme=SchemeName.DPS, **overrides):
    values = {
        "id": "cred-1",
        "owner_user_id": "landlord_1",
        "scheme_name": scheme,
        "username": "agent",
        "password": "pw",
        "account_number": "ACC-1",
    }
    values.update(overrides)
    return SchemeCredentialSecrets(**values)


@pytest.fixture
def session():
    return Mock(spec=requests.Session)


@pytest.fixture
def snapshot():
    return TenancySnapshotFactory()


class TestDpsAdapter:
    def test_submit_registration(self, session, snapshot):
        session.request.return_value = _response(
            201,
            {
                "referenceId": "DPS-1001",
                "certificateUrl": "https://dps.test/cert/DPS-1001",
                "expiryDate": "2027-11-29",
            },
        )
        adapter = DpsAdapter("https://dps.test/v1/", timeout=12, session=session)

        result = adapter.submit_registration(snapshot, _credential(api_key="dps-key"))

        assert result.deposit_reference_id == "DPS-1001"
        assert result.certificate_url == "https://dps.test/cert/DPS-1001"
        assert result.expiry_date == date(2027, 11, 29)
        assert result.raw_response["referenceId"] == "DPS-1001"

        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", "https://dps.test/v1/deposits/register")
        assert kwargs["headers"]["X-API-KEY"] == "dps-key"
        assert kwargs["timeout"] == 12
        assert kwargs["verify"] is True

        payload = kwargs["json"]
        assert payload["accountNumber"] == "ACC-1"
        assert payload["depositAmount"] == 1200.0
        assert payload["propertyAddress"] == {
            "address1": "Flat 2",
            "address2": "14 Albion Street",
            "town": "Leeds",
            "postcode": "LS1 6AD",
        }
        assert payload["tenancyDetails"]["startDate"] == "2026-09-01"
        assert payload["tenancyDetails"]["depositPaidDate"] == "2026-08-20"
        assert [t["leadTenant"] for t in payload["tenantDetails"]] == [True, False]

    def test_basic_auth_without_api_key(self, session, snapshot):
        session.request.return_value = _response(200, {"referenceId": "DPS-1"})
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        adapter.submit_registration(snapshot, _credential())

        expected = base64.b64encode(b"agent:pw").decode()
        assert session.request.call_args.kwargs["headers"]["Authorization"] == f"Basic {expected}"

    def test_rejected_status(self, session, snapshot):
        session.request.return_value = _response(
            400, {}, text='{"error": "Invalid postcode"}', reason="Bad Request"
        )
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        with pytest.raises(AdapterError) as exc_info:
            adapter.submit_registration(snapshot, _credential())

        error = exc_info.value
        assert error.error_code == ErrorCode.REMOTE_REJECTED
        assert error.context["http_status"] == 400
        assert "Invalid postcode" in error.context["response_body"]
        assert "status 400" in error.message

    def test_timeout(self, session, snapshot):
        session.request.side_effect = requests.Timeout("read timed out")
        adapter = DpsAdapter("https://dps.test/v1", timeout=3, session=session)

        with pytest.raises(AdapterError) as exc_info:
            adapter.submit_registration(snapshot, _credential())

        assert exc_info.value.error_code == ErrorCode.ADAPTER_TIMEOUT

    def test_connection_error(self, session, snapshot):
        session.request.side_effect = requests.ConnectionError("refused")
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        with pytest.raises(AdapterError) as exc_info:
            adapter.submit_registration(snapshot, _credential())

        assert exc_info.value.error_code == ErrorCode.CONNECTION_ERROR

    def test_non_json_response(self, session, snapshot):
        session.request.return_value = _response(200, ValueError("No JSON object"))
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        with pytest.raises(AdapterError) as exc_info:
            adapter.submit_registration(snapshot, _credential())

        assert exc_info.value.error_code == ErrorCode.MALFORMED_RESPONSE

    def test_missing_reference(self, session, snapshot):
        session.request.return_value = _response(200, {"status": "ok"})
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        with pytest.raises(AdapterError) as exc_info:
            adapter.submit_registration(snapshot, _credential())

        assert exc_info.value.error_code == ErrorCode.MALFORMED_RESPONSE

    def test_missing_credential(self, session, snapshot):
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        with pytest.raises(AdapterError) as exc_info:
            adapter.submit_registration(snapshot, None)

        assert exc_info.value.error_code == ErrorCode.MISSING_REQUIRED
        session.request.assert_not_called()

    def test_verify_credentials(self, session):
        session.request.return_value = _response(200, {"accountId": "ACC-1"})
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        result = adapter.verify_credentials(_credential())

        assert result.success is True
        assert session.request.call_args.args == ("GET", "https://dps.test/v1/account")

    def test_verify_credentials_rejected(self, session):
        session.request.return_value = _response(401, {}, reason="Unauthorized")
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        result = adapter.verify_credentials(_credential())

        assert result.success is False
        assert "401" in result.message

    def test_fetch_certificate(self, session):
        session.request.return_value = _response(200, {"certificateUrl": "https://dps.test/c/1"})
        adapter = DpsAdapter("https://dps.test/v1", session=session)

        assert adapter.fetch_certificate("DPS-1", _credential()) == "https://dps.test/c/1"
        assert session.request.call_args.args == ("GET", "https://dps.test/v1/deposits/DPS-1/certificate")


class TestMyDepositsAdapter:
    def test_submit_registration(self, session, snapshot):
        session.request.return_value = _response(201, {"depositId": "MD-55"})
        adapter = MyDepositsAdapter("https://mydeposits.test/v1", session=session)

        result = adapter.submit_registration(
            snapshot, _credential(SchemeName.MYDEPOSITS, api_key="md-key")
        )

        assert result.deposit_reference_id == "MD-55"
        method, url = session.request.call_args.args
        kwargs = session.request.call_args.kwargs
        assert (method, url) == ("POST", "https://mydeposits.test/v1/deposits")
        assert kwargs["headers"]["ApiKey"] == "md-key"
        payload = kwargs["json"]
        assert payload["landlordReference"] == f"PROP-{snapshot.property_id}"
        assert payload["tenancyStartDate"] == "01/09/2026"
        assert payload["tenancyEndDate"] == "31/08/2027"
        assert payload["depositCollectionDate"] == "20/08/2026"
        assert payload["protectionType"] == "custodial"
        assert payload["tenants"][0]["isPrimaryTenant"] is True


class TestTdsAdapter:
    def test_submit_registration(self, session, snapshot):
        session.request.return_value = _response(201, {"depositId": "TDS-9"})
        adapter = TdsAdapter("https://tds.test/v1", session=session)

        result = adapter.submit_registration(
            snapshot, _credential(SchemeName.TDS, api_key="tds-key", api_secret="tds-secret")
        )

        assert result.deposit_reference_id == "TDS-9"
        headers = session.request.call_args.kwargs["headers"]
        assert headers["X-API-KEY"] == "tds-key"
        assert headers["X-API-SECRET"] == "tds-secret"
        payload = session.request.call_args.kwargs["json"]
        assert payload["landlordDetails"]["accountId"] == "ACC-1"
        assert payload["tenancyDetails"]["depositAmount"] == 1200.0

    def test_generate_prescribed_info(self, session, db_manager):
        session.request.return_value = _response(
            201, {"prescribedInfoUrl": "https://tds.test/pi/TDS-9.pdf"}
        )
        adapter = TdsAdapter("https://tds.test/v1", session=session)
        registration = _registration(SchemeName.TDS, deposit_reference_id="TDS-9")

        result = adapter.generate_prescribed_info(registration, _credential(SchemeName.TDS))

        assert result.prescribed_info_url == "https://tds.test/pi/TDS-9.pdf"
        assert session.request.call_args.args == (
            "POST",
            "https://tds.test/v1/deposits/TDS-9/prescribed-information",
        )

    def test_generate_prescribed_info_without_url(self, session, db_manager):
        session.request.return_value = _response(201, {})
        adapter = TdsAdapter("https://tds.test/v1", session=session)

        with pytest.raises(AdapterError):
            adapter.generate_prescribed_info(
                _registration(SchemeName.TDS, deposit_reference_id="TDS-9"),
                _credential(SchemeName.TDS),
            )


class TestSimulatedSchemeAdapter:
    def test_submit_registration(self, snapshot):
        adapter = SimulatedSchemeAdapter(SchemeName.DPS, "https://docs.test/uploads/")

        result = adapter.submit_registration(snapshot, None)

        assert re.fullmatch(r"DPS-[A-Z0-9]{8}-\d+", result.deposit_reference_id)
        assert result.certificate_url == (
            f"https://certificate.dps.co.uk/deposits/{result.deposit_reference_id}"
        )
        assert result.raw_response["simulation"] is True

    def test_prescribed_info_is_new_each_time(self, db_manager):
        adapter = SimulatedSchemeAdapter(SchemeName.TDS, "https://docs.test/uploads/")
        registration = _registration(SchemeName.TDS)

        first = adapter.generate_prescribed_info(registration, None)
        second = adapter.generate_prescribed_info(registration, None)

        assert first.prescribed_info_url.startswith(
            f"https://docs.test/uploads/prescribed_info_{registration.id}_"
        )
        assert first.prescribed_info_url != second.prescribed_info_url

    def test_verify_always_succeeds(self):
        adapter = SimulatedSchemeAdapter(SchemeName.MYDEPOSITS)

        assert adapter.verify_credentials(_credential(SchemeName.MYDEPOSITS)).success is True


def _registration(scheme, **overrides):
    """A registered deposit as the registration service would hand it to an adapter."""
    row = DepositRegistrationFactory(scheme_name=scheme.value, **overrides)
    return RegistrationRead.model_validate(row)
