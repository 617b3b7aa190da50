"""Tests for auth/exceptions.py - Typed exceptions for step-up failures."""

import pytest

from auth.exceptions import (
    AuthError,
    InputInvalidError,
    AcquisitionFailedError,
    TransportError,
    AuthorityRejectedError,
    PolicyViolationError,
    FlowClosedError,
)
from auth.types import FactorKind


class TestExceptionInheritance:
    """All step-up exceptions should inherit from AuthError."""

    @pytest.mark.parametrize("error_type", [
        InputInvalidError,
        AcquisitionFailedError,
        TransportError,
        AuthorityRejectedError,
        PolicyViolationError,
        FlowClosedError,
    ])
    def test_inherits_auth_error(self, error_type):
        assert issubclass(error_type, AuthError)


class TestInputInvalidError:

    def test_stores_field(self):
        err = InputInvalidError("Bad code", field="email_code")
        assert err.field == "email_code"
        assert str(err) == "Bad code"


class TestTransportError:
    """Transport failures show one generic message; detail is for logs."""

    def test_message_is_generic(self):
        err = TransportError("ConnectTimeout to 10.0.0.1")
        assert str(err) == "Error connecting to the server"
        assert err.detail == "ConnectTimeout to 10.0.0.1"


class TestAuthorityRejectedError:

    def test_stores_message_and_cleared(self):
        err = AuthorityRejectedError("Incorrect password", cleared=[FactorKind.PASSWORD])
        assert err.message == "Incorrect password"
        assert err.cleared == (FactorKind.PASSWORD,)

    def test_cleared_defaults_empty(self):
        assert AuthorityRejectedError("No").cleared == ()
