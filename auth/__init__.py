"""Step-up verification: policies, factor collection and flow orchestration."""

from auth.exceptions import (
    AuthError,
    InputInvalidError,
    AcquisitionFailedError,
    TransportError,
    AuthorityRejectedError,
    PolicyViolationError,
    FlowClosedError,
)
from auth.types import (
    AuthSession,
    AccountState,
    FactorKind,
    Password,
    BiometricImage,
    EmailCode,
    AuthenticatorCode,
    AlternateIdentity,
    VerificationFactor,
)
from auth.config import AuthConfig
from auth.policy import Action, ActionPolicy, resolve_policy
from auth.totp import TotpEngine
from auth.enrollment import TotpEnrollment, EnrollmentState
from auth.camera import CameraArbiter
from auth.polling import PollingSession
from auth.credential_store import CredentialStore
from auth.orchestrator import StepUpOrchestrator, StepUpFlow, StepUpResult, FlowStatus
from auth.service import AuthService, AuthenticatorDisplay
