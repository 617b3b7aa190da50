"""Action policy registry.

Static table of which factors each action needs, plus resolve_policy() for
requirements that depend on account state (change name needs the
authenticator code only once 2FA is on).
"""

import re
from dataclasses import dataclass, replace
from enum import Enum

from auth.exceptions import InputInvalidError
from auth.types import AccountState, FactorKind

_FUNDING_PASSWORD = re.compile(r"[0-9]{8}")


class Action(Enum):
    """Actions that go through step-up verification."""

    LOGIN = "login"
    LOGIN_ALTERNATE_ID = "login_alternate_id"
    AUTHENTICATOR_LOGIN = "authenticator_login"
    ENABLE_TWO_FACTOR = "enable_two_factor"
    CHANGE_NAME = "change_name"
    CHANGE_FUNDING_PASSWORD = "change_funding_password"
    CHANGE_PASSWORD = "change_password"
    DISABLE_FUNDS_LOCK = "disable_funds_lock"
    ENABLE_FUNDS_LOCK = "enable_funds_lock"

    @property
    def is_login(self) -> bool:
        return self in _LOGIN_ACTIONS


_LOGIN_ACTIONS = frozenset({Action.LOGIN, Action.LOGIN_ALTERNATE_ID, Action.AUTHENTICATOR_LOGIN})


@dataclass(frozen=True)
class ActionPolicy:
    """
    What one action requires.

    `required` is ordered. When `sequential` is set, each kind unlocks only
    after every earlier required kind is collected; kinds in `gated` are
    collected only once the authority accepts them in an intermediate check.
    """

    action: Action
    required: tuple[FactorKind, ...]
    optional: frozenset = frozenset()
    gated: frozenset = frozenset()
    sequential: bool = False
    clear_on_reject: tuple[FactorKind, ...] = ()
    payload_fields: tuple[str, ...] = ()
    # check payload before asking the authority to email a code
    validate_before_send: bool = False

    @property
    def kinds(self) -> frozenset:
        return frozenset(self.required) | self.optional


POLICIES: dict[Action, ActionPolicy] = {
    Action.LOGIN: ActionPolicy(
        action=Action.LOGIN,
        required=(FactorKind.PASSWORD, FactorKind.BIOMETRIC_IMAGE),
        gated=frozenset({FactorKind.PASSWORD}),
        sequential=True,
        clear_on_reject=(FactorKind.BIOMETRIC_IMAGE,),
        payload_fields=("email",),
    ),
    Action.LOGIN_ALTERNATE_ID: ActionPolicy(
        action=Action.LOGIN_ALTERNATE_ID,
        required=(FactorKind.ALTERNATE_IDENTITY, FactorKind.PASSWORD),
        gated=frozenset({FactorKind.ALTERNATE_IDENTITY}),
        sequential=True,
        clear_on_reject=(FactorKind.PASSWORD,),
    ),
    Action.AUTHENTICATOR_LOGIN: ActionPolicy(
        action=Action.AUTHENTICATOR_LOGIN,
        required=(FactorKind.ALTERNATE_IDENTITY, FactorKind.PASSWORD),
        clear_on_reject=(FactorKind.PASSWORD,),
    ),
    Action.ENABLE_TWO_FACTOR: ActionPolicy(
        action=Action.ENABLE_TWO_FACTOR,
        required=(FactorKind.AUTHENTICATOR_CODE,),
        clear_on_reject=(FactorKind.AUTHENTICATOR_CODE,),
    ),
    Action.CHANGE_NAME: ActionPolicy(
        action=Action.CHANGE_NAME,
        required=(FactorKind.EMAIL_CODE,),
        optional=frozenset({FactorKind.AUTHENTICATOR_CODE}),
        clear_on_reject=(FactorKind.AUTHENTICATOR_CODE,),
        payload_fields=("new_name",),
        validate_before_send=True,
    ),
    Action.CHANGE_FUNDING_PASSWORD: ActionPolicy(
        action=Action.CHANGE_FUNDING_PASSWORD,
        required=(FactorKind.EMAIL_CODE, FactorKind.AUTHENTICATOR_CODE),
        clear_on_reject=(FactorKind.AUTHENTICATOR_CODE,),
        payload_fields=("new_funding_password",),
    ),
    Action.CHANGE_PASSWORD: ActionPolicy(
        action=Action.CHANGE_PASSWORD,
        required=(FactorKind.EMAIL_CODE,),
        clear_on_reject=(FactorKind.EMAIL_CODE,),
        payload_fields=("old_password", "new_password", "confirm_new_password"),
        validate_before_send=True,
    ),
    Action.DISABLE_FUNDS_LOCK: ActionPolicy(
        action=Action.DISABLE_FUNDS_LOCK,
        required=(FactorKind.ALTERNATE_IDENTITY, FactorKind.AUTHENTICATOR_CODE),
        clear_on_reject=(FactorKind.AUTHENTICATOR_CODE,),
    ),
    Action.ENABLE_FUNDS_LOCK: ActionPolicy(
        action=Action.ENABLE_FUNDS_LOCK,
        required=(FactorKind.ALTERNATE_IDENTITY, FactorKind.BIOMETRIC_IMAGE),
        clear_on_reject=(FactorKind.BIOMETRIC_IMAGE,),
    ),
}


def resolve_policy(action: Action, account: AccountState | None = None) -> ActionPolicy:
    """Policy for `action` given the current account state."""
    policy = POLICIES[action]

    if action is Action.CHANGE_NAME and account is not None and account.two_factor_enabled:
        policy = replace(
            policy,
            required=policy.required + (FactorKind.AUTHENTICATOR_CODE,),
            optional=frozenset(),
        )

    return policy


def validate_payload(action: Action, payload: dict) -> None:
    """Check the non-factor values an action changes.

    Raises:
        InputInvalidError: Missing or malformed payload value
    """
    policy = POLICIES[action]
    for name in policy.payload_fields:
        if not str(payload.get(name) or "").strip():
            raise InputInvalidError(_MISSING_MESSAGES.get(name, f"Please enter {name}"), field=name)

    if action is Action.CHANGE_FUNDING_PASSWORD:
        if not _FUNDING_PASSWORD.fullmatch(str(payload["new_funding_password"]).strip()):
            raise InputInvalidError(
                "Funding password must be exactly 8 digits.", field="new_funding_password"
            )

    if action is Action.CHANGE_PASSWORD:
        if payload["new_password"] != payload["confirm_new_password"]:
            raise InputInvalidError(
                "New password and confirm password do not match.", field="confirm_new_password"
            )


_MISSING_MESSAGES = {
    "email": "Please enter your email",
    "new_name": "Please enter your new name.",
    "new_funding_password": "Please enter your new funding password.",
    "old_password": "Please enter all password fields.",
    "new_password": "Please enter all password fields.",
    "confirm_new_password": "Please enter all password fields.",
}
