"""Step-up orchestrator - drives one action's verification flow end to end.

A StepUpFlow holds the per-attempt state; the orchestrator moves it through

    IDLE -> COLLECTING_FACTORS -> SUBMITTING -> SUCCEEDED
                  ^                   |
                  +---- rejected -----+
                                      +-> AWAITING_OUT_OF_BAND -> SUCCEEDED | FAILED

and publishes an event for every step so views never hold flow state.
Authority calls are blocking requests; they run in a worker thread so the
event loop (and any live camera preview) keeps going.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from uuid import uuid4

from auth.camera import CameraArbiter
from auth.collectors import (
    AlternateIdentityCollector,
    AuthenticatorCodeCollector,
    BiometricCollector,
    EmailCodeCollector,
    FactorCollector,
    PasswordCollector,
)
from auth.config import AuthConfig
from auth.credential_store import CredentialStore
from auth.enrollment import TotpEnrollment
from auth.exceptions import (
    AcquisitionFailedError,
    AuthError,
    AuthorityRejectedError,
    FlowClosedError,
    InputInvalidError,
    PolicyViolationError,
    TransportError,
)
from auth.policy import Action, ActionPolicy, resolve_policy, validate_payload
from auth.polling import Confirmed, Pending, PollingSession
from auth.totp import TotpEngine
from auth.types import AccountState, AuthSession, FactorKind, VerificationFactor
from clients.authority_client import (
    AuthorityConnectionError,
    LoginConfirmation,
    RemoteAuthorityClient,
)
from core.event_bus import EventBus
from core.events import (
    EmailConfirmationRequired,
    FactorAccepted,
    FlowDiscarded,
    FlowFailed,
    FlowStarted,
    FlowSucceeded,
    StepUnlocked,
    StepUpEvent,
    SubmissionStarted,
)

logger = logging.getLogger(__name__)


class FlowStatus(Enum):
    IDLE = "idle"
    COLLECTING_FACTORS = "collecting_factors"
    AWAITING_OUT_OF_BAND = "awaiting_out_of_band"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DISCARDED = "discarded"


_TERMINAL = frozenset({FlowStatus.SUCCEEDED, FlowStatus.FAILED, FlowStatus.DISCARDED})


async def call_authority(fn, *args):
    """Run a blocking authority call off the event loop.

    Raises:
        TransportError: The authority could not be reached
    """
    try:
        return await asyncio.to_thread(fn, *args)
    except AuthorityConnectionError as e:
        raise TransportError(str(e)) from e


@dataclass
class StepUpResult:
    """Outcome of a submission or of the whole flow."""

    action: Action
    status: FlowStatus
    session: AuthSession | None = None
    message: str | None = None


@dataclass(frozen=True)
class FailureReason:
    error: str
    message: str


class StepUpFlow:
    """Mutable state of one in-flight action attempt."""

    def __init__(
        self,
        action: Action,
        policy: ActionPolicy,
        account: AccountState | None = None,
        session: AuthSession | None = None,
        payload: dict | None = None,
    ):
        self.id = str(uuid4())
        self.action = action
        self.policy = policy
        self.account = account
        self.session = session
        self.payload = dict(payload or {})
        self.collected: dict[FactorKind, VerificationFactor] = {}
        self.status = FlowStatus.IDLE
        self.display_name: str | None = None
        self.last_failure: FailureReason | None = None
        self.result: StepUpResult | None = None
        self.enrollment: TotpEnrollment | None = None
        self.poll: PollingSession | None = None
        self.collectors: list[FactorCollector] = []
        self._deadline: asyncio.TimerHandle | None = None
        self._done = asyncio.Event()

    @property
    def terminal(self) -> bool:
        return self.status in _TERMINAL

    def missing(self) -> list[FactorKind]:
        """Required kinds not collected yet, in policy order."""
        return [kind for kind in self.policy.required if kind not in self.collected]

    def next_kind(self) -> FactorKind | None:
        missing = self.missing()
        return missing[0] if missing else None

    def is_unlocked(self, kind: FactorKind) -> bool:
        """Sequential policies unlock a required kind once all earlier ones are in."""
        if not self.policy.sequential or kind not in self.policy.required:
            return True
        index = self.policy.required.index(kind)
        return all(k in self.collected for k in self.policy.required[:index])

    def update_payload(self, **values) -> None:
        """Set the non-factor values the action changes (new name, passwords...)."""
        self.payload.update(values)

    async def wait(self) -> StepUpResult:
        """Wait for a terminal state (success, expiry, or discard)."""
        await self._done.wait()
        return self.result


class StepUpOrchestrator:
    """Runs step-up flows against the remote authority.

    Handles:
    - Policy lookup per action and account state
    - Gated steps (credential check, alternate-ID resolution)
    - Single-flight submission of the full factor bundle
    - Email out-of-band confirmation via a polling session
    - Cancellation with camera release and poll teardown
    """

    def __init__(
        self,
        config: AuthConfig,
        authority: RemoteAuthorityClient,
        event_bus: EventBus,
        credential_store: CredentialStore | None = None,
        camera: CameraArbiter | None = None,
        totp: TotpEngine | None = None,
    ):
        self._config = config
        self._authority = authority
        self._events = event_bus
        self._credential_store = credential_store
        self._camera = camera
        self._totp = totp or TotpEngine(config)

    # =========================================================================
    # FLOW LIFECYCLE
    # =========================================================================

    def start(
        self,
        action: Action,
        account: AccountState | None = None,
        payload: dict | None = None,
        session: AuthSession | None = None,
    ) -> StepUpFlow:
        """Open a flow for `action` and activate its collectors.

        Raises:
            PolicyViolationError: Account-scoped action started without an account
        """
        if not action.is_login and account is None:
            raise PolicyViolationError(f"{action.value} requires an account")

        policy = resolve_policy(action, account)
        flow = StepUpFlow(action, policy, account=account, session=session, payload=payload)

        if action is Action.ENABLE_TWO_FACTOR:
            flow.enrollment = TotpEnrollment(self._totp, account.email or account.user_id)

        flow.status = FlowStatus.COLLECTING_FACTORS
        logger.info(f"Flow {flow.id} started for {action.value}")
        self._publish(flow, FlowStarted, required=tuple(k.value for k in policy.required))
        return flow

    def cancel(self, flow: StepUpFlow) -> None:
        """Discard the flow: stop polling, release the camera, drop factors.

        Idempotent. A finished flow is left as is (its poll is still torn down).
        """
        self._teardown(flow)
        if flow.terminal:
            return

        flow.status = FlowStatus.DISCARDED
        flow.collected.clear()
        flow.result = StepUpResult(action=flow.action, status=FlowStatus.DISCARDED)
        flow._done.set()
        logger.info(f"Flow {flow.id} discarded")
        self._publish(flow, FlowDiscarded)

    # =========================================================================
    # FACTOR COLLECTION
    # =========================================================================

    def collector_for(self, flow: StepUpFlow, kind: FactorKind) -> FactorCollector:
        """Build the collector for `kind`, owned by `flow` until it ends.

        Raises:
            PolicyViolationError: Kind not part of this action's policy
            AcquisitionFailedError: Biometric requested with no camera configured
        """
        self._ensure_collecting(flow)
        if kind not in flow.policy.kinds:
            raise PolicyViolationError(f"{kind.value} is not used by {flow.action.value}")

        if kind is FactorKind.PASSWORD:
            collector = PasswordCollector()
        elif kind is FactorKind.AUTHENTICATOR_CODE:
            collector = AuthenticatorCodeCollector()
        elif kind is FactorKind.ALTERNATE_IDENTITY:
            collector = AlternateIdentityCollector()
        elif kind is FactorKind.EMAIL_CODE:
            collector = EmailCodeCollector(lambda: self.request_email_code(flow))
        else:
            if self._camera is None:
                raise AcquisitionFailedError("No camera available on this device")
            collector = BiometricCollector(
                self._camera,
                width=self._config.capture_width,
                height=self._config.capture_height,
            )

        flow.collectors.append(collector)
        return collector

    async def collect(self, flow: StepUpFlow, collector: FactorCollector) -> VerificationFactor:
        """Run a collector to completion and attach what it produces."""
        self._ensure_collecting(flow)
        if not collector.begun:
            await collector.begin()
        factor = await collector.result()
        await self.attach(flow, factor)
        return factor

    async def attach(self, flow: StepUpFlow, factor: VerificationFactor) -> None:
        """Add a locally-valid factor to the flow.

        Gated kinds are checked with the authority first and only stored
        once accepted; the next step unlocks after that.

        Raises:
            PolicyViolationError: Kind not in policy, or still locked
            InputInvalidError: Gate needs a payload value that is missing
            AuthorityRejectedError: Gate check refused the factor
            TransportError: Gate check could not reach the authority
        """
        self._ensure_collecting(flow)
        kind = factor.kind
        if kind not in flow.policy.kinds:
            raise PolicyViolationError(f"{kind.value} is not used by {flow.action.value}")
        if not flow.is_unlocked(kind):
            raise PolicyViolationError(f"{kind.value} is locked until earlier steps resolve")

        if kind in flow.policy.gated:
            try:
                await self._check_gate(flow, factor)
            except (AuthorityRejectedError, InputInvalidError, TransportError) as e:
                if flow.terminal:
                    raise FlowClosedError("Flow was closed during verification") from e
                self._report(flow, e, getattr(e, "cleared", ()))
                raise
            if flow.terminal:
                raise FlowClosedError("Flow was closed during verification")
            self._drop_later_steps(flow, kind)

        flow.collected[kind] = factor
        self._publish(flow, FactorAccepted, kind=kind.value)

        if kind in flow.policy.gated:
            next_kind = flow.next_kind()
            logger.info(f"Flow {flow.id}: {kind.value} resolved")
            self._publish(
                flow,
                StepUnlocked,
                kind=next_kind.value if next_kind else "",
                display_name=flow.display_name,
            )

    async def request_email_code(self, flow: StepUpFlow) -> str | None:
        """Ask the authority to email a code for this flow's action.

        Returns:
            The authority's confirmation message, if any

        Raises:
            InputInvalidError: Payload incomplete (e.g. no new name yet)
            AcquisitionFailedError: Send failed or the authority refused
        """
        self._ensure_collecting(flow)
        if FactorKind.EMAIL_CODE not in flow.policy.kinds:
            raise PolicyViolationError(f"{flow.action.value} does not use emailed codes")

        try:
            if flow.policy.validate_before_send:
                validate_payload(flow.action, flow.payload)

            try:
                response = await self._call(
                    self._authority.send_email_code,
                    flow.action.value,
                    flow.account.user_id,
                    flow.payload,
                    flow.session.session_token if flow.session else None,
                )
            except TransportError as e:
                raise AcquisitionFailedError(f"Error sending code: {e}") from e

            if not response.success:
                raise AcquisitionFailedError(response.reason or "Failed to send code.")
        except (InputInvalidError, AcquisitionFailedError) as e:
            self._report(flow, e)
            raise

        logger.info(f"Flow {flow.id}: email code sent")
        return response.message

    # =========================================================================
    # SUBMISSION
    # =========================================================================

    async def submit(self, flow: StepUpFlow) -> StepUpResult | None:
        """Send the complete factor bundle to the authority, once.

        A submit while another is in flight is dropped (returns None).
        Missing factors never reach the authority: the flow stays in
        COLLECTING_FACTORS and InputInvalidError is raised.

        Returns:
            StepUpResult with SUCCEEDED, or AWAITING_OUT_OF_BAND when the
            login must be confirmed by email

        Raises:
            InputInvalidError: Required factor or payload value missing
            AuthorityRejectedError: Negative verdict; policy's fields cleared
            TransportError: Authority unreachable; nothing cleared
            FlowClosedError: Flow was discarded or already finished

        Any other error from the authority call also puts the flow back in
        COLLECTING_FACTORS with its factors kept, then propagates.
        """
        if flow.status is FlowStatus.SUBMITTING:
            logger.debug(f"Flow {flow.id}: submit dropped, one already in flight")
            return None
        self._ensure_collecting(flow)

        try:
            validate_payload(flow.action, flow.payload)
            missing = flow.missing()
            if missing:
                raise InputInvalidError(
                    "Please fill in all required fields.", field=missing[0].value
                )
        except InputInvalidError as e:
            self._report(flow, e)
            raise

        flow.status = FlowStatus.SUBMITTING
        logger.info(f"Flow {flow.id}: submitting {flow.action.value}")
        self._publish(flow, SubmissionStarted)

        try:
            result = await self._dispatch(flow)
        except Exception as e:
            if flow.status is FlowStatus.DISCARDED:
                raise FlowClosedError("Flow was closed during submission") from e
            if flow.terminal:
                raise
            if isinstance(e, (AuthorityRejectedError, InputInvalidError, TransportError)):
                self._fail_attempt(flow, e)
            else:
                self._fail_unexpected(flow, e)
            raise

        if flow.status is FlowStatus.DISCARDED:
            logger.info(f"Flow {flow.id}: result arrived after discard, ignored")
            raise FlowClosedError("Flow was closed during submission")
        return result

    async def _dispatch(self, flow: StepUpFlow) -> StepUpResult:
        missing = flow.missing()
        if missing:
            # submit() filters this; reaching here is a bug
            raise PolicyViolationError(
                f"{flow.action.value} dispatched without {', '.join(k.value for k in missing)}"
            )

        action = flow.action
        if action is Action.LOGIN:
            return await self._submit_login(flow)
        if action in (Action.LOGIN_ALTERNATE_ID, Action.AUTHENTICATOR_LOGIN):
            return await self._submit_alternate_login(flow)
        if action is Action.ENABLE_TWO_FACTOR:
            return await self._submit_enable_two_factor(flow)
        if action in (Action.ENABLE_FUNDS_LOCK, Action.DISABLE_FUNDS_LOCK):
            return await self._submit_funds_lock(flow)
        return await self._submit_code_action(flow)

    async def _submit_login(self, flow: StepUpFlow) -> StepUpResult:
        email = flow.payload["email"]
        image = flow.collected[FactorKind.BIOMETRIC_IMAGE].image

        response = await self._call(self._authority.login_with_biometric, email, image)
        if flow.status is FlowStatus.DISCARDED:
            return flow.result

        if response.succeeded:
            return self._succeed_login(flow, response.token, response.user_id, response.name)
        if response.email_verification:
            return self._await_email_confirmation(flow, response.email or email)
        raise AuthorityRejectedError(response.message or "Face login failed.")

    async def _submit_alternate_login(self, flow: StepUpFlow) -> StepUpResult:
        identity = flow.collected[FactorKind.ALTERNATE_IDENTITY]
        password = flow.collected[FactorKind.PASSWORD]

        response = await self._call(
            self._authority.login_alternate_identity,
            identity.id,
            password.value,
            flow.action is Action.AUTHENTICATOR_LOGIN,
        )
        if flow.status is FlowStatus.DISCARDED:
            return flow.result

        if not response.succeeded:
            raise AuthorityRejectedError(response.message or "Incorrect password")
        return self._succeed_login(flow, response.token, response.user_id, response.name)

    async def _submit_enable_two_factor(self, flow: StepUpFlow) -> StepUpResult:
        code = flow.collected[FactorKind.AUTHENTICATOR_CODE].value
        enrollment = flow.enrollment

        enrollment.check(code)
        response = await self._call(
            self._authority.enable_totp, flow.account.user_id, enrollment.secret
        )
        if flow.status is FlowStatus.DISCARDED:
            return flow.result

        enrollment.persisted(response.success, response.error)
        flow.account.two_factor_enabled = True
        return self._succeed_action(flow, "Two-factor authentication enabled.")

    async def _submit_code_action(self, flow: StepUpFlow) -> StepUpResult:
        code = flow.collected[FactorKind.EMAIL_CODE].value
        authenticator = flow.collected.get(FactorKind.AUTHENTICATOR_CODE)

        response = await self._call(
            self._authority.verify_and_apply,
            flow.action.value,
            flow.account.user_id,
            code,
            authenticator.value if authenticator else None,
            flow.payload,
        )
        if flow.status is FlowStatus.DISCARDED:
            return flow.result

        if not response.success:
            raise AuthorityRejectedError(response.reason or "Verification failed.")
        return self._succeed_action(flow, response.message)

    async def _submit_funds_lock(self, flow: StepUpFlow) -> StepUpResult:
        # Wire verbs name the funds, not the lock: "disable" stops withdrawals
        verb = "enable" if flow.action is Action.ENABLE_FUNDS_LOCK else "disable"
        identity = flow.collected[FactorKind.ALTERNATE_IDENTITY]
        authenticator = flow.collected.get(FactorKind.AUTHENTICATOR_CODE)
        face = flow.collected.get(FactorKind.BIOMETRIC_IMAGE)

        response = await self._call(
            self._authority.set_funds_lock,
            flow.account.user_id,
            identity.id,
            verb,
            authenticator.value if authenticator else None,
            face.image if face else None,
        )
        if flow.status is FlowStatus.DISCARDED:
            return flow.result

        if not response.success:
            raise AuthorityRejectedError(response.error or "Failed to update funds lock status.")

        flow.account.funds_locked = verb == "disable"
        default = "Funds disabled." if verb == "disable" else "Funds enabled."
        return self._succeed_action(flow, response.message or default)

    # =========================================================================
    # GATES
    # =========================================================================

    async def _check_gate(self, flow: StepUpFlow, factor: VerificationFactor) -> None:
        if flow.action is Action.LOGIN and factor.kind is FactorKind.PASSWORD:
            validate_payload(flow.action, flow.payload)
            check = await self._call(
                self._authority.validate_credentials, flow.payload["email"], factor.value
            )
            if not check.valid:
                raise AuthorityRejectedError(
                    check.message or "Invalid email or password.", cleared=(FactorKind.PASSWORD,)
                )
            return

        if factor.kind is FactorKind.ALTERNATE_IDENTITY:
            resolution = await self._call(self._authority.resolve_alternate_identity, factor.id)
            if not resolution.accepted:
                raise AuthorityRejectedError(
                    resolution.message or "ID not found",
                    cleared=(FactorKind.ALTERNATE_IDENTITY,),
                )
            flow.display_name = resolution.full_name or ""
            return

        raise PolicyViolationError(f"No gate check for {factor.kind.value} in {flow.action.value}")

    def _drop_later_steps(self, flow: StepUpFlow, kind: FactorKind) -> None:
        """A re-resolved gate invalidates everything collected after it."""
        if not flow.policy.sequential:
            return
        index = flow.policy.required.index(kind)
        for later in flow.policy.required[index + 1:]:
            flow.collected.pop(later, None)

    # =========================================================================
    # OUT-OF-BAND CONFIRMATION
    # =========================================================================

    def _await_email_confirmation(self, flow: StepUpFlow, email: str) -> StepUpResult:
        flow.status = FlowStatus.AWAITING_OUT_OF_BAND
        flow.collected.clear()

        async def check():
            confirmation = await self._call(self._authority.poll_login_confirmation, email)
            return Confirmed(confirmation) if confirmation.succeeded else Pending()

        poll = PollingSession(self._config.poll_interval_seconds, target=email)
        flow.poll = poll
        poll.start(check, on_confirmed=lambda confirmation: self._confirm_out_of_band(flow, confirmation))
        flow._deadline = asyncio.get_running_loop().call_later(
            self._config.poll_max_wait_seconds, self._expire_out_of_band, flow
        )

        logger.info(f"Flow {flow.id}: waiting for email confirmation")
        self._publish(flow, EmailConfirmationRequired, email=email)
        return StepUpResult(action=flow.action, status=FlowStatus.AWAITING_OUT_OF_BAND)

    def _confirm_out_of_band(self, flow: StepUpFlow, confirmation: LoginConfirmation) -> None:
        if flow.status is not FlowStatus.AWAITING_OUT_OF_BAND:
            return
        try:
            self._succeed_login(flow, confirmation.token, confirmation.user_id, confirmation.name)
        except Exception as e:
            logger.exception(f"Flow {flow.id}: could not complete confirmed login")
            self._fail_terminal(flow, type(e).__name__, f"Unable to complete login: {e}")

    def _expire_out_of_band(self, flow: StepUpFlow) -> None:
        if flow.status is not FlowStatus.AWAITING_OUT_OF_BAND:
            return
        logger.warning(f"Flow {flow.id}: email confirmation expired")
        self._fail_terminal(flow, "timeout", "Email confirmation timed out. Please log in again.")

    # =========================================================================
    # TERMINAL TRANSITIONS
    # =========================================================================

    def _succeed_login(self, flow: StepUpFlow, token: str, user_id: str, name: str | None) -> StepUpResult:
        """Persist the new session, then finish.

        The login responses carry no 2FA status, so the session starts with
        two_factor_enabled=False. AuthService.load_account_state() fetches
        the profile and updates it; call it after any login.
        """
        session = AuthSession(
            session_token=token,
            user_id=user_id,
            display_name=name or flow.display_name or "",
        )
        if self._credential_store is not None:
            self._credential_store.save(session)
        return self._finish(flow, StepUpResult(flow.action, FlowStatus.SUCCEEDED, session=session))

    def _succeed_action(self, flow: StepUpFlow, message: str | None) -> StepUpResult:
        return self._finish(flow, StepUpResult(flow.action, FlowStatus.SUCCEEDED, message=message))

    def _finish(self, flow: StepUpFlow, result: StepUpResult) -> StepUpResult:
        self._teardown(flow)
        flow.status = FlowStatus.SUCCEEDED
        flow.collected.clear()
        flow.last_failure = None
        flow.result = result
        flow._done.set()
        logger.info(f"Flow {flow.id}: {flow.action.value} succeeded")
        self._publish(flow, FlowSucceeded, session=result.session, message=result.message)
        return result

    def _fail_attempt(self, flow: StepUpFlow, error: AuthError) -> None:
        """Back to collecting after a failed submission."""
        cleared = () if isinstance(error, TransportError) else flow.policy.clear_on_reject
        for kind in cleared:
            flow.collected.pop(kind, None)
        if isinstance(error, AuthorityRejectedError):
            error.cleared = tuple(cleared)

        flow.status = FlowStatus.COLLECTING_FACTORS
        self._report(flow, error, cleared)

    def _fail_unexpected(self, flow: StepUpFlow, error: Exception) -> None:
        """Back to collecting after an error no handler expected. Nothing cleared."""
        logger.exception(f"Flow {flow.id}: {flow.action.value} submission failed unexpectedly")
        flow.status = FlowStatus.COLLECTING_FACTORS
        self._report(flow, error)

    def _fail_terminal(self, flow: StepUpFlow, error: str, message: str) -> None:
        self._teardown(flow)
        flow.status = FlowStatus.FAILED
        flow.last_failure = FailureReason(error=error, message=message)
        flow.result = StepUpResult(action=flow.action, status=FlowStatus.FAILED, message=message)
        flow._done.set()
        self._publish(flow, FlowFailed, message=message, terminal=True)

    def _teardown(self, flow: StepUpFlow) -> None:
        if flow.poll is not None:
            flow.poll.stop()
        if flow._deadline is not None:
            flow._deadline.cancel()
            flow._deadline = None
        for collector in flow.collectors:
            collector.cancel()
        flow.collectors.clear()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _call(self, fn, *args):
        return await call_authority(fn, *args)

    def _ensure_collecting(self, flow: StepUpFlow) -> None:
        if flow.terminal:
            raise FlowClosedError(f"Flow {flow.id} is {flow.status.value}")
        if flow.status is FlowStatus.AWAITING_OUT_OF_BAND:
            raise FlowClosedError("Waiting for email confirmation")
        if flow.status is FlowStatus.SUBMITTING:
            raise FlowClosedError("Submission in progress")

    def _report(self, flow: StepUpFlow, error: Exception, cleared: tuple = ()) -> None:
        error_name = type(error).__name__
        flow.last_failure = FailureReason(error=error_name, message=str(error))
        if isinstance(error, TransportError):
            logger.error(f"Flow {flow.id}: transport failure: {error.detail}")
        elif isinstance(error, AuthorityRejectedError):
            logger.warning(f"Flow {flow.id}: {flow.action.value} rejected: {error.message}")
        self._publish(
            flow,
            FlowFailed,
            message=str(error),
            cleared=tuple(k.value for k in cleared),
        )

    def _publish(self, flow: StepUpFlow, event_type: type[StepUpEvent], **fields) -> None:
        self._events.publish(event_type(flow_id=flow.id, action=flow.action.value, **fields))
