"""Shared test fixtures for the step-up test suite."""

from unittest.mock import Mock

import pytest

from auth.camera import CameraArbiter
from auth.config import AuthConfig
from auth.types import AccountState, AuthSession
from clients.authority_client import (
    AccountProfile,
    ActionResponse,
    CredentialCheck,
    FundsLockState,
    IdentityResolution,
    LoginConfirmation,
    LoginResponse,
    RemoteAuthorityClient,
)
from core.event_bus import EventBus


# =============================================================================
# TEST ACCOUNT CONSTANTS
# =============================================================================

TEST_USER_ID = "user-001"
TEST_EMAIL = "testuser@test.local"
TEST_PASSWORD = "correct horse"
TEST_ALT_ID = "1234567"
TEST_TOKEN = "token-abc"
TEST_NAME = "Test User"
# RFC 6238 test secret, base32
TEST_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


# =============================================================================
# CONFIG
# =============================================================================


@pytest.fixture
def config():
    """Fast polling so out-of-band tests finish in milliseconds."""
    return AuthConfig(
        authority_base_url="https://auth.test.local",
        poll_interval_seconds=0.01,
        poll_max_wait_seconds=5,
    )


# =============================================================================
# AUTHORITY
# =============================================================================


@pytest.fixture
def authority():
    """
    Mock authority that says yes to everything.

    Tests override the one call they care about.
    """
    mock = Mock(spec=RemoteAuthorityClient)
    mock.validate_credentials.return_value = CredentialCheck(valid=True)
    mock.login_with_biometric.return_value = LoginResponse(
        accepted=True, token=TEST_TOKEN, user_id=TEST_USER_ID, name=TEST_NAME
    )
    mock.poll_login_confirmation.return_value = LoginConfirmation(verified=False)
    mock.resolve_alternate_identity.return_value = IdentityResolution(
        accepted=True, full_name=TEST_NAME
    )
    mock.login_alternate_identity.return_value = LoginResponse(
        accepted=True, token=TEST_TOKEN, user_id=TEST_USER_ID, name=TEST_NAME
    )
    mock.get_account_profile.return_value = AccountProfile(email=TEST_EMAIL, two_factor_enabled=False)
    mock.enable_totp.return_value = ActionResponse(success=True)
    mock.send_email_code.return_value = ActionResponse(success=True, message="Code sent")
    mock.verify_and_apply.return_value = ActionResponse(success=True, message="Updated")
    mock.get_funds_lock_state.return_value = FundsLockState(funds_locked=False)
    mock.set_funds_lock.return_value = ActionResponse(success=True)
    return mock


# =============================================================================
# EVENTS
# =============================================================================


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def events(event_bus):
    """Every published event, in order."""
    received = []
    for name in (
        "FlowStarted",
        "SubmissionStarted",
        "FlowSucceeded",
        "FlowFailed",
        "FlowDiscarded",
        "FactorAccepted",
        "StepUnlocked",
        "EmailConfirmationRequired",
    ):
        event_bus.subscribe(name, received.append)
    return received


# =============================================================================
# CAMERA
# =============================================================================


class FakeStream:
    """Camera stream that hands out a fixed frame and counts stops."""

    def __init__(self, frame: bytes = JPEG_BYTES):
        self.frame = frame
        self.stops = 0
        self.captures = []

    def capture_still(self, width: int, height: int) -> bytes:
        self.captures.append((width, height))
        return self.frame

    def stop(self) -> None:
        self.stops += 1


class FakeCamera:
    """Camera device. Set `denied` to simulate a refused permission prompt."""

    def __init__(self, frame: bytes = JPEG_BYTES):
        self.frame = frame
        self.denied = False
        self.streams: list[FakeStream] = []

    async def open(self) -> FakeStream:
        if self.denied:
            raise PermissionError("Permission denied")
        stream = FakeStream(self.frame)
        self.streams.append(stream)
        return stream


@pytest.fixture
def camera():
    return FakeCamera()


@pytest.fixture
def arbiter(camera):
    return CameraArbiter(camera)


# =============================================================================
# ACCOUNT
# =============================================================================


@pytest.fixture
def account():
    return AccountState(user_id=TEST_USER_ID, email=TEST_EMAIL)


@pytest.fixture
def session():
    return AuthSession(session_token=TEST_TOKEN, user_id=TEST_USER_ID, display_name=TEST_NAME)


@pytest.fixture
def credential_store():
    """CredentialStore stand-in; the real one is covered against a mock redis."""
    from auth.credential_store import CredentialStore

    mock = Mock(spec=CredentialStore)
    mock.load.return_value = None
    return mock
