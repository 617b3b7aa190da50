"""
Remote authority client for login and step-up verification.

JSON over HTTPS. Explicit negative verdicts come back as response models
(the caller decides what a rejection means for its flow); only transport
failures raise.
"""

import base64
import logging
from dataclasses import dataclass

import requests
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class AuthorityConnectionError(Exception):
    """Raised when the authority cannot be reached or returns garbage."""


class _WireModel(BaseModel):
    model_config = {"populate_by_name": True, "coerce_numbers_to_str": True}


class CredentialCheck(_WireModel):
    valid: bool = False
    message: str | None = None


class LoginResponse(_WireModel):
    """Terminal login verdict, or a request for email confirmation."""

    accepted: bool = False
    token: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    name: str | None = None
    email_verification: bool = Field(default=False, alias="emailVerification")
    email: str | None = None
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.accepted and bool(self.token) and bool(self.user_id)


class LoginConfirmation(_WireModel):
    verified: bool = False
    token: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    name: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.verified and bool(self.token) and bool(self.user_id)


class IdentityResolution(_WireModel):
    accepted: bool = False
    full_name: str | None = Field(default=None, alias="fullName")
    message: str | None = None


class ActionResponse(_WireModel):
    success: bool = False
    message: str | None = None
    error: str | None = None

    @property
    def reason(self) -> str | None:
        return self.error or self.message


class FundsLockState(_WireModel):
    funds_locked: bool = Field(default=False, alias="fundsLocked")


class AccountProfile(_WireModel):
    email: str | None = None
    two_factor_enabled: bool = False


@dataclass(frozen=True)
class _CodeEndpoints:
    """Send-code and verify endpoints for one emailed-code action."""

    send_path: str
    verify_path: str
    # payload key -> wire field
    send_fields: dict
    verify_fields: dict
    authenticator_field: str | None = None
    send_uses_bearer: bool = False


_CODE_ACTIONS = {
    "change_name": _CodeEndpoints(
        send_path="/api/changeName/changeNameSendCode",
        verify_path="/api/changeName/changeNameVerifyAndUpdate",
        send_fields={"new_name": "newName"},
        verify_fields={},
        authenticator_field="twoFactorCode",
    ),
    "change_funding_password": _CodeEndpoints(
        send_path="/api/funds/fundingPasswordSendCode",
        verify_path="/api/funds/fundingPasswordVerifyAndUpdate",
        send_fields={},
        verify_fields={"new_funding_password": "newFundingPassword"},
        authenticator_field="authenticatorCode",
    ),
    "change_password": _CodeEndpoints(
        send_path="/api/auth/sendPasswordChangeCode",
        verify_path="/api/auth/changePassword",
        send_fields={},
        verify_fields={
            "old_password": "oldPassword",
            "new_password": "newPassword",
            "confirm_new_password": "confirmNewPassword",
        },
        send_uses_bearer=True,
    ),
}


def _parse(model: type[_WireModel], data: dict):
    """Validate a decoded body. A body of the wrong shape is unreadable."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Authority returned malformed {model.__name__}: {e.error_count()} field error(s)")
        raise AuthorityConnectionError("Invalid response from authority") from e


def encode_image(image: bytes) -> str:
    """JPEG bytes as the data URL the authority expects."""
    return "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")


class RemoteAuthorityClient:
    """Request/response boundary to the backend verification service."""

    AUTHENTICATOR_HEADER = "x-authenticator-login"

    def __init__(self, base_url: str, timeout_seconds: float = 10):
        """
        Args:
            base_url: Scheme and host of the authority, e.g. https://auth.example.com
            timeout_seconds: Per-request timeout

        Raises:
            ValueError: If base_url is empty
        """
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def _request(
        self,
        method: str,
        path: str,
        json_body: dict | None = None,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> tuple[bool, dict]:
        """
        Send one request and decode its JSON body.

        Returns:
            (HTTP status was 2xx, decoded body)

        Raises:
            AuthorityConnectionError: Network failure or non-JSON body
        """
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(
                method,
                url,
                json=json_body,
                params=params,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except (requests.exceptions.RequestException, ConnectionError) as e:
            logger.error(f"Authority connection failed ({method} {path}): {e}")
            raise AuthorityConnectionError(f"Connection failed: {e}")

        try:
            data = response.json()
        except ValueError:
            logger.error(f"Authority returned invalid JSON for {path} (status {response.status_code})")
            raise AuthorityConnectionError("Invalid response from authority")

        if not isinstance(data, dict):
            raise AuthorityConnectionError("Invalid response from authority")

        return response.ok, data

    # Login

    def validate_credentials(self, email: str, password: str) -> CredentialCheck:
        ok, data = self._request(
            "POST", "/api/auth/validate-login", json_body={"email": email, "password": password}
        )
        check = _parse(CredentialCheck, data)
        if not ok:
            check.valid = False
        return check

    def login_with_biometric(self, email: str, image: bytes) -> LoginResponse:
        ok, data = self._request(
            "POST", "/api/auth/login", json_body={"email": email, "faceImage": encode_image(image)}
        )
        return _parse(LoginResponse, {**data, "accepted": ok})

    def poll_login_confirmation(self, email: str) -> LoginConfirmation:
        _, data = self._request("GET", "/api/auth/login-email-status", params={"email": email})
        return _parse(LoginConfirmation, data)

    def resolve_alternate_identity(self, alternate_id: str) -> IdentityResolution:
        ok, data = self._request("POST", "/api/auth/verify-spotid", json_body={"spotId": alternate_id})
        return _parse(IdentityResolution, {**data, "accepted": ok})

    def login_alternate_identity(
        self, alternate_id: str, password: str, authenticator: bool = False
    ) -> LoginResponse:
        """Password login for a resolved alternate ID.

        `authenticator` marks logins made from the authenticator screen.
        """
        headers = {self.AUTHENTICATOR_HEADER: "true"} if authenticator else None
        ok, data = self._request(
            "POST",
            "/api/auth/spotid-login",
            json_body={"spotId": alternate_id, "password": password},
            headers=headers,
        )
        return _parse(LoginResponse, {**data, "accepted": ok})

    # Account

    def get_account_profile(self, user_id: str) -> AccountProfile:
        _, data = self._request("GET", f"/api/auth/user/{user_id}")
        user = data.get("user")
        if not isinstance(user, dict):
            user = {}
        return _parse(
            AccountProfile,
            {
                "email": data.get("email") or user.get("email"),
                "two_factor_enabled": bool(user.get("twoFactorEnabled")),
            },
        )

    def enable_totp(self, user_id: str, secret: str) -> ActionResponse:
        _, data = self._request(
            "POST", "/api/auth/enable-2fa", json_body={"userId": user_id, "secret": secret}
        )
        return _parse(ActionResponse, data)

    # Emailed-code actions

    def send_email_code(
        self,
        action: str,
        user_id: str,
        payload: dict | None = None,
        session_token: str | None = None,
    ) -> ActionResponse:
        """Ask the authority to email a one-time code for `action`.

        Raises:
            ValueError: If the action has no emailed-code endpoint
        """
        endpoints = self._code_endpoints(action)
        payload = payload or {}

        if endpoints.send_uses_bearer:
            ok, data = self._request(
                "POST",
                endpoints.send_path,
                headers={"Authorization": f"Bearer {session_token or ''}"},
            )
        else:
            body = {"userId": user_id}
            for key, wire in endpoints.send_fields.items():
                body[wire] = payload.get(key)
            ok, data = self._request("POST", endpoints.send_path, json_body=body)

        result = _parse(ActionResponse, data)
        if not ok:
            result.success = False
        return result

    def verify_and_apply(
        self,
        action: str,
        user_id: str,
        code: str,
        authenticator_code: str | None = None,
        payload: dict | None = None,
    ) -> ActionResponse:
        """Submit the emailed code plus extra factors and apply the change.

        Raises:
            ValueError: If the action has no emailed-code endpoint
        """
        endpoints = self._code_endpoints(action)
        payload = payload or {}

        body = {"userId": user_id, "code": code}
        for key, wire in endpoints.verify_fields.items():
            body[wire] = payload.get(key)
        if authenticator_code is not None and endpoints.authenticator_field:
            body[endpoints.authenticator_field] = authenticator_code

        ok, data = self._request("POST", endpoints.verify_path, json_body=body)
        result = _parse(ActionResponse, data)
        if not ok:
            result.success = False
        return result

    def _code_endpoints(self, action: str) -> _CodeEndpoints:
        try:
            return _CODE_ACTIONS[action]
        except KeyError:
            raise ValueError(f"No emailed-code endpoint for action '{action}'")

    # Funds lock

    def get_funds_lock_state(self, user_id: str) -> FundsLockState:
        _, data = self._request("GET", "/api/funds/fundsLocked", params={"userId": user_id})
        return _parse(FundsLockState, data)

    def set_funds_lock(
        self,
        user_id: str,
        alternate_id: str,
        action: str,
        authenticator_code: str | None = None,
        face_image: bytes | None = None,
    ) -> ActionResponse:
        """Lock ("disable") or unlock ("enable") withdrawals.

        Raises:
            ValueError: If action is not "enable" or "disable"
        """
        if action not in ("enable", "disable"):
            raise ValueError(f"action must be 'enable' or 'disable', got '{action}'")

        body = {"userId": user_id, "spotId": alternate_id, "action": action}
        if authenticator_code is not None:
            body["authenticatorCode"] = authenticator_code
        if face_image is not None:
            body["faceImage"] = encode_image(face_image)

        ok, data = self._request("POST", "/api/funds/fundsLocked", json_body=body)
        result = _parse(ActionResponse, data)
        if not ok:
            result.success = False
        return result
