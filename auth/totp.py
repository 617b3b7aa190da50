"""TOTP secret generation, provisioning URIs and code verification.

HMAC/TOTP math comes from pyotp. This module owns the parts the client
decides for itself: secret format, URI shape, and keeping the period in
agreement between the QR code and the verifier.
"""

import base64
import re
import secrets
from urllib.parse import quote

import pyotp

from auth.config import AuthConfig
from utils.timezone import unix_time

SECRET_BYTES = 20
DEFAULT_PERIOD = 30

_NON_BASE32 = re.compile(r"[^A-Z2-7]")
# Characters encodeURIComponent leaves alone; authenticator apps expect them raw
_LABEL_SAFE = "!*'()"


def sanitize_secret(secret: str) -> str:
    """Uppercase a base32 secret and drop anything outside [A-Z2-7]."""
    return _NON_BASE32.sub("", (secret or "").upper())


def generate_secret() -> str:
    """Fresh 160-bit secret, base32 without padding."""
    raw = secrets.token_bytes(SECRET_BYTES)
    return sanitize_secret(base64.b32encode(raw).decode("ascii").rstrip("="))


def build_provisioning_uri(
    secret: str,
    account_label: str,
    issuer: str,
    period: int = DEFAULT_PERIOD,
) -> str:
    """
    otpauth:// URI for QR rendering.

    `period` is only written when it differs from the RFC default, since
    authenticator apps assume 30s when the parameter is absent.
    """
    uri = (
        f"otpauth://totp/{issuer}:{quote(account_label, safe=_LABEL_SAFE)}"
        f"?secret={secret}&issuer={issuer}"
    )
    if period != DEFAULT_PERIOD:
        uri += f"&period={period}"
    return uri


def compute_code(secret: str, period: int, digits: int, for_time: float | None = None) -> str:
    """TOTP value for the step containing `for_time` (default: now)."""
    when = unix_time() if for_time is None else for_time
    return pyotp.TOTP(secret, digits=digits, interval=period).at(int(when))


def verify_code(
    secret: str,
    period: int,
    digits: int,
    candidate: str,
    for_time: float | None = None,
    valid_window: int = 0,
) -> bool:
    """Recompute the code and compare in constant time."""
    if not candidate:
        return False
    when = unix_time() if for_time is None else for_time
    totp = pyotp.TOTP(secret, digits=digits, interval=period)
    return totp.verify(candidate, for_time=int(when), valid_window=valid_window)


def seconds_remaining(period: int, for_time: float | None = None) -> int:
    """Seconds until the current code rolls over."""
    when = unix_time() if for_time is None else for_time
    return period - int(when) % period


class TotpEngine:
    """TOTP operations bound to one agreed period/digits/issuer."""

    def __init__(self, config: AuthConfig):
        self.period = config.totp_period_seconds
        self.digits = config.totp_digits
        self.valid_window = config.totp_valid_window
        self.issuer = config.totp_issuer

    def generate_secret(self) -> str:
        return generate_secret()

    def provisioning_uri(self, secret: str, account_label: str) -> str:
        return build_provisioning_uri(secret, account_label, self.issuer, self.period)

    def code(self, secret: str, for_time: float | None = None) -> str:
        return compute_code(secret, self.period, self.digits, for_time)

    def verify(self, secret: str, candidate: str, for_time: float | None = None) -> bool:
        return verify_code(
            secret,
            self.period,
            self.digits,
            candidate,
            for_time=for_time,
            valid_window=self.valid_window,
        )

    def seconds_remaining(self, for_time: float | None = None) -> int:
        return seconds_remaining(self.period, for_time)
