"""Tests for auth/enrollment.py - TOTP enrollment state machine."""

import pytest

from auth.config import AuthConfig
from auth.enrollment import EnrollmentState, TotpEnrollment
from auth.exceptions import AuthorityRejectedError, InputInvalidError
from auth.totp import TotpEngine

NOW = 1_700_000_000


@pytest.fixture
def engine():
    return TotpEngine(AuthConfig())


@pytest.fixture
def enrollment(engine):
    return TotpEnrollment(engine, "testuser@test.local")


def wrong_code(engine, secret):
    code = engine.code(secret, for_time=NOW)
    return f"{(int(code) + 1) % 1_000_000:06d}"


class TestSetup:

    def test_starts_in_setup_with_secret_and_uri(self, enrollment):
        assert enrollment.state is EnrollmentState.SETUP
        assert enrollment.secret
        assert enrollment.secret in enrollment.provisioning_uri
        assert "testuser%40test.local" in enrollment.provisioning_uri
        assert enrollment.verified is False

    def test_presented_moves_to_awaiting_code(self, enrollment):
        enrollment.presented()
        assert enrollment.state is EnrollmentState.AWAITING_CODE

    def test_restart_draws_new_secret(self, enrollment):
        first = enrollment.secret
        enrollment.presented()
        enrollment.restart()
        assert enrollment.secret != first
        assert enrollment.state is EnrollmentState.SETUP


class TestCheck:

    def test_correct_code_passes(self, engine, enrollment):
        enrollment.presented()
        enrollment.check(engine.code(enrollment.secret, for_time=NOW), for_time=NOW)
        assert enrollment.state is EnrollmentState.AWAITING_CODE
        # not DONE until the authority stores the secret
        assert enrollment.verified is False

    def test_wrong_code_returns_to_setup_with_same_secret(self, engine, enrollment):
        secret = enrollment.secret
        enrollment.presented()

        with pytest.raises(InputInvalidError, match="Invalid code"):
            enrollment.check(wrong_code(engine, secret), for_time=NOW)

        assert enrollment.state is EnrollmentState.SETUP
        assert enrollment.secret == secret

    def test_retry_after_wrong_code(self, engine, enrollment):
        enrollment.presented()
        with pytest.raises(InputInvalidError):
            enrollment.check(wrong_code(engine, enrollment.secret), for_time=NOW)

        enrollment.presented()
        enrollment.check(engine.code(enrollment.secret, for_time=NOW), for_time=NOW)
        assert enrollment.state is EnrollmentState.AWAITING_CODE


class TestPersisted:

    def test_success_marks_done(self, enrollment):
        enrollment.persisted(True)
        assert enrollment.state is EnrollmentState.DONE
        assert enrollment.verified is True

    def test_failure_returns_to_setup(self, enrollment):
        with pytest.raises(AuthorityRejectedError, match="Failed to enable 2FA: already on"):
            enrollment.persisted(False, "already on")
        assert enrollment.state is EnrollmentState.SETUP
        assert enrollment.verified is False

    def test_failure_without_reason(self, enrollment):
        with pytest.raises(AuthorityRejectedError, match="Unknown error"):
            enrollment.persisted(False)

    def test_presented_after_done_is_ignored(self, enrollment):
        enrollment.persisted(True)
        enrollment.presented()
        assert enrollment.state is EnrollmentState.DONE
