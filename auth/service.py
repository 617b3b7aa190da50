"""Authentication service - process-level facade over step-up flows."""

import logging
from dataclasses import dataclass

from auth.config import AuthConfig
from auth.credential_store import CredentialStore
from auth.exceptions import AuthError, PolicyViolationError
from auth.orchestrator import StepUpFlow, StepUpOrchestrator, call_authority
from auth.policy import Action
from auth.totp import TotpEngine, sanitize_secret
from auth.types import AccountState, AuthSession
from clients.authority_client import RemoteAuthorityClient
from core.event_bus import EventBus
from core.events import FlowSucceeded

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatorDisplay:
    """What the authenticator screen shows for a stored secret."""

    code: str
    seconds_remaining: int


class AuthService:
    """Owns the current session and the open flows.

    Handles:
    - Restoring persisted credentials at process start
    - Loading account state that step-up policies depend on
    - One open flow per action (opening a new one dismisses the old)
    - Logout
    - Live authenticator code display
    """

    def __init__(
        self,
        config: AuthConfig,
        authority: RemoteAuthorityClient,
        orchestrator: StepUpOrchestrator,
        credential_store: CredentialStore,
        event_bus: EventBus,
        totp: TotpEngine | None = None,
    ):
        self._config = config
        self._authority = authority
        self._orchestrator = orchestrator
        self._credential_store = credential_store
        self._totp = totp or TotpEngine(config)
        self._session: AuthSession | None = None
        self._account: AccountState | None = None
        self._flows: dict[Action, StepUpFlow] = {}
        event_bus.subscribe("FlowSucceeded", self._on_flow_succeeded)

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def account(self) -> AccountState | None:
        return self._account

    def restore_session(self) -> AuthSession | None:
        """Load persisted credentials; a hit skips re-authentication."""
        self._session = self._credential_store.load()
        if self._session is not None:
            logger.info(f"Restored session for user {self._session.user_id}")
        return self._session

    def logout(self) -> None:
        """Close every flow and forget the session. Safe when logged out."""
        for flow in list(self._flows.values()):
            self._orchestrator.cancel(flow)
        self._flows.clear()
        self._credential_store.clear()
        if self._session is not None:
            logger.info(f"Logged out user {self._session.user_id}")
        self._session = None
        self._account = None

    async def load_account_state(self) -> AccountState:
        """Fetch 2FA and funds-lock state for the logged-in user.

        Raises:
            PolicyViolationError: No session
            TransportError: Authority unreachable
        """
        if self._session is None:
            raise PolicyViolationError("No session; log in first")

        user_id = self._session.user_id
        profile = await call_authority(self._authority.get_account_profile, user_id)
        funds = await call_authority(self._authority.get_funds_lock_state, user_id)

        self._account = AccountState(
            user_id=user_id,
            email=profile.email,
            two_factor_enabled=profile.two_factor_enabled,
            funds_locked=funds.funds_locked,
        )
        self._session = self._session.model_copy(
            update={"two_factor_enabled": profile.two_factor_enabled}
        )
        return self._account

    def open_flow(self, action: Action, payload: dict | None = None) -> StepUpFlow:
        """Start a flow for `action`, dismissing any flow already open for it.

        Raises:
            PolicyViolationError: Account action without loaded account state
        """
        previous = self._flows.pop(action, None)
        if previous is not None:
            self._orchestrator.cancel(previous)

        account = None
        if not action.is_login:
            if self._account is None:
                raise PolicyViolationError(f"{action.value} needs account state; call load_account_state()")
            account = self._account

        flow = self._orchestrator.start(action, account=account, payload=payload, session=self._session)
        self._flows[action] = flow
        return flow

    def close_flow(self, action: Action) -> None:
        """The host view for `action` was dismissed."""
        flow = self._flows.pop(action, None)
        if flow is not None:
            self._orchestrator.cancel(flow)

    def flow(self, action: Action) -> StepUpFlow | None:
        return self._flows.get(action)

    def authenticator_display(self, secret: str, for_time: float | None = None) -> AuthenticatorDisplay:
        """Current code and countdown for a secret the user saved.

        Raises:
            AuthError: Secret is empty after sanitizing
        """
        cleaned = sanitize_secret(secret)
        if not cleaned:
            raise AuthError("No authenticator secret saved")
        return AuthenticatorDisplay(
            code=self._totp.code(cleaned, for_time=for_time),
            seconds_remaining=self._totp.seconds_remaining(for_time=for_time),
        )

    def _on_flow_succeeded(self, event: FlowSucceeded) -> None:
        if event.session is not None:
            self._session = event.session
