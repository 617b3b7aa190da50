"""TOTP enrollment state machine.

SETUP -> AWAITING_CODE -> DONE. A wrong code sends the enrollment back to
SETUP with the same secret so the user can retry without rescanning; only
restart() draws a new secret. DONE is reached only after the authority
has stored the secret.
"""

import logging
from enum import Enum

from auth.exceptions import AuthorityRejectedError, InputInvalidError
from auth.totp import TotpEngine
from auth.types import FactorKind

logger = logging.getLogger(__name__)


class EnrollmentState(Enum):
    SETUP = "setup"
    AWAITING_CODE = "awaiting_code"
    DONE = "done"


class TotpEnrollment:
    """One enrollment attempt: secret, provisioning URI, verified flag."""

    def __init__(self, engine: TotpEngine, account_label: str):
        self._engine = engine
        self.account_label = account_label
        self.secret = ""
        self.provisioning_uri = ""
        self.verified = False
        self.state = EnrollmentState.SETUP
        self.restart()

    def restart(self) -> None:
        """Discard the current secret and start over with a fresh one."""
        self.secret = self._engine.generate_secret()
        self.provisioning_uri = self._engine.provisioning_uri(self.secret, self.account_label)
        self.verified = False
        self.state = EnrollmentState.SETUP

    def presented(self) -> None:
        """The user has scanned the QR code or copied the secret."""
        if self.state is EnrollmentState.DONE:
            return
        self.state = EnrollmentState.AWAITING_CODE

    def check(self, candidate: str, for_time: float | None = None) -> None:
        """
        Verify a code from the user's authenticator app locally.

        Raises:
            InputInvalidError: Code does not match; state returns to SETUP
        """
        if self._engine.verify(self.secret, candidate, for_time=for_time):
            self.state = EnrollmentState.AWAITING_CODE
            return

        self.state = EnrollmentState.SETUP
        raise InputInvalidError(
            "Invalid code. Please try again.", field=FactorKind.AUTHENTICATOR_CODE.value
        )

    def persisted(self, success: bool, error: str | None = None) -> None:
        """
        Record the authority's answer to storing the secret.

        Raises:
            AuthorityRejectedError: Authority refused; state returns to SETUP
        """
        if not success:
            self.state = EnrollmentState.SETUP
            raise AuthorityRejectedError(
                f"Failed to enable 2FA: {error or 'Unknown error'}",
                cleared=(FactorKind.AUTHENTICATOR_CODE,),
            )

        self.verified = True
        self.state = EnrollmentState.DONE
        logger.info(f"TOTP enrollment complete for {self.account_label}")
